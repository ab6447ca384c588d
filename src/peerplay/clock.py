"""Per-side countdown clock, ticked by the host and mirrored by the guest."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .protocol import ClockSyncPayload

INITIAL_SECONDS = 600


@dataclass
class GameClock:
    time_white: int = INITIAL_SECONDS
    time_black: int = INITIAL_SECONDS

    def tick(self, elapsed: int, turn: str) -> None:
        """Charge ``elapsed`` seconds to the side to move, stopping at zero."""

        if turn == "w":
            self.time_white = max(0, self.time_white - elapsed)
        elif turn == "b":
            self.time_black = max(0, self.time_black - elapsed)
        else:
            raise ValueError(f"Unknown color {turn!r}")

    def overwrite(self, time_white: int, time_black: int) -> None:
        self.time_white = time_white
        self.time_black = time_black

    def reset(self, seconds: int = INITIAL_SECONDS) -> None:
        self.overwrite(seconds, seconds)

    @property
    def flagged(self) -> Optional[str]:
        """The color whose time has run out, if any."""

        if self.time_white <= 0:
            return "w"
        if self.time_black <= 0:
            return "b"
        return None

    def as_payload(self) -> ClockSyncPayload:
        return ClockSyncPayload(time_white=self.time_white, time_black=self.time_black)
