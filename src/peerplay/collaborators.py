"""Services the session relies on but does not implement."""

from __future__ import annotations

from typing import Any, List, Optional, Protocol, Sequence


class RulesEngine(Protocol):
    """Game rules used to replay the opponent's moves locally."""

    def legal_moves(self, square: str) -> List[str]: ...

    def apply_move(self, from_square: str, to_square: str) -> Optional[Any]:
        """Apply a move, returning ``None`` when it is illegal."""

    def is_game_over(self) -> bool: ...

    def is_check(self) -> bool: ...


class MoveSelector(Protocol):
    def choose_move(self, board_state: str, candidate_moves: Sequence[str]) -> int:
        """Return the index of the chosen move in ``candidate_moves``."""


class TextGenerator(Protocol):
    def generate(self, context: str) -> str: ...
