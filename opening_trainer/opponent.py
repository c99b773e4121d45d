"""Scripted opponent that follows opening theory.

Plays the matched line's move for its side while it is still legal on the
live board, and otherwise falls back to a simple heuristic: a checking
move, else a capture, else any legal move, chosen uniformly at random
within the tier.
"""

from __future__ import annotations

import logging
import random

from opening_trainer.board import LiveBoard
from opening_trainer.models import Move, Opening
from opening_trainer.theory import expected_move, is_in_theory

logger = logging.getLogger(__name__)


class ScriptedOpponent:
    """Theory-following opponent bound to a live board."""

    def __init__(
        self,
        board: LiveBoard,
        opening: Opening | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._board = board
        self._opening = opening
        self._rng = rng or random.Random()
        self._history: list[Move] = []

    @property
    def opening(self) -> Opening | None:
        return self._opening

    @property
    def history(self) -> tuple[Move, ...]:
        return tuple(self._history)

    def set_opening(self, opening: Opening | None) -> None:
        """Follow a new opening and forget the previous history."""
        self._opening = opening
        self._history = []

    def set_board(self, board: LiveBoard) -> None:
        self._board = board

    def record_move(self, move: Move) -> None:
        """Record a move made by either side so theory lookups stay in sync."""
        self._history.append(move)

    def reset(self) -> None:
        self._history = []

    def theory_move(self) -> Move | None:
        """Return the theory move for the side to move, if any."""
        if self._opening is None:
            return None
        return expected_move(self._opening, self._history, self._board.side_to_move())

    def next_move(self) -> Move | None:
        """Choose the opponent's next move without playing it.

        Returns:
            The theory move when available and legal, otherwise a heuristic
            move. None only when the position has no legal moves.
        """
        theory = self.theory_move()
        if theory is not None:
            if self._board.is_legal(theory):
                return theory
            logger.warning(
                "Theory move %s for %s is no longer legal in %s; using fallback",
                theory.uci,
                self._opening.id if self._opening else "?",
                self._board.current_position(),
            )
        return self.fallback_move()

    def fallback_move(self) -> Move | None:
        """Pick a checking move, else a capture, else any legal move."""
        legal = self._board.legal_moves()
        if not legal:
            return None

        checks = [m for m in legal if self._board.gives_check(m)]
        if checks:
            return self._rng.choice(checks)

        captures = [m for m in legal if self._board.is_capture(m)]
        if captures:
            return self._rng.choice(captures)

        return self._rng.choice(legal)

    def is_move_in_theory(self, move: Move) -> bool:
        """Check a move against theory using the opponent's own history."""
        if self._opening is None:
            return False
        return is_in_theory(self._opening, self._history, move)
