"""Wrappers around the external move-selection and text-generation services."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Sequence

from .collaborators import MoveSelector, TextGenerator
from .logging_config import get_logger
from .protocol import ChatPayload

logger = get_logger(__name__)


@dataclass
class MoveAdvisor:
    """Picks a move for the computer side.

    - MoveAdvisor(selector)
    - choose(board_state, candidate_moves) -> move
    """

    selector: MoveSelector

    def choose(self, board_state: str, candidate_moves: Sequence[str]) -> str:
        if not candidate_moves:
            raise RuntimeError("No valid moves available")

        try:
            index = self.selector.choose_move(board_state, candidate_moves)
        except Exception:
            logger.warning("Move selection failed, using the first legal move", exc_info=True)
            return candidate_moves[0]

        if not isinstance(index, int) or not 0 <= index < len(candidate_moves):
            # Fallback to first legal move
            logger.warning(
                f"Move selection returned {index!r} for {len(candidate_moves)} moves"
            )
            return candidate_moves[0]
        return candidate_moves[index]


@dataclass
class ChatCoach:
    generator: TextGenerator
    clock: Callable[[], float] = time.time

    def reply(self, context: str) -> ChatPayload:
        text = self.generator.generate(context)
        return ChatPayload(
            text=text, sender=None, timestamp=int(self.clock() * 1000)
        )
