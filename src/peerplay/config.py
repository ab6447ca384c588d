"""Environment-driven settings for the relay server and peer clients."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

ROOM_TTL_SECONDS = 20 * 60  # 20 minutes
MAX_ACTIVE_PARTICIPANTS = 2
ROOM_CODE_LENGTH = 6
EXPIRY_WARNING_SECONDS = 60


def _split_origins(raw: str) -> List[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass
class Settings:
    """Runtime configuration, read from ``PEERPLAY_*`` environment variables."""

    host: str = "0.0.0.0"
    port: int = 8000
    room_ttl_seconds: int = ROOM_TTL_SECONDS
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    log_file: Optional[str] = None
    public_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            host=os.environ.get("PEERPLAY_HOST", "0.0.0.0"),
            port=int(os.environ.get("PEERPLAY_PORT", "8000")),
            room_ttl_seconds=int(
                os.environ.get("PEERPLAY_ROOM_TTL_SECONDS", str(ROOM_TTL_SECONDS))
            ),
            cors_origins=_split_origins(os.environ.get("PEERPLAY_CORS_ORIGINS", "*")),
            log_level=os.environ.get("PEERPLAY_LOG_LEVEL", "INFO"),
            log_file=os.environ.get("PEERPLAY_LOG_FILE") or None,
            public_url=os.environ.get("PEERPLAY_PUBLIC_URL") or None,
        )
