"""Entry point for running the relay via ``python -m peerplay``."""

from __future__ import annotations

import uvicorn

from .config import Settings


def main() -> None:
    """Start the FastAPI-powered signaling relay."""

    settings = Settings.from_env()
    uvicorn.run(
        "peerplay.server:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
