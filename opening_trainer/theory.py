"""Opening theory matcher.

Resolves which line of an opening a move history follows and what the
next theory move is for either side.

Candidate lines are tried alternate lines first (catalog order), then the
main line, and the first structurally consistent line wins. This is not a
longest-prefix search: when two lines share a prefix, the earlier-listed
one is selected even if a later one would match more deeply. Session
completion checks depend on this ordering.
"""

from __future__ import annotations

from collections.abc import Sequence

from opening_trainer.models import Line, Move, Opening


def _matches(line: Line, history: Sequence[Move]) -> bool:
    """Check that every history ply agrees with the line on (from, to, promotion)."""
    if not history:
        return True
    if len(history) > len(line):
        return False
    for played, expected in zip(history, line.moves):
        if played.key != expected.key:
            return False
    return True


def match_line(opening: Opening, history: Sequence[Move]) -> Line | None:
    """Find the first line consistent with the move history.

    Args:
        opening: The opening being practiced.
        history: Moves played so far, in order.

    Returns:
        The first matching Line, or None if the history left theory.
    """
    for line in opening.lines():
        if _matches(line, history):
            return line
    return None


def expected_move(opening: Opening, history: Sequence[Move], side: str) -> Move | None:
    """Return the theory move for ``side`` after ``history``.

    Takes the matched line's moves belonging to ``side`` and picks the one
    at ``len(history) // 2``.

    Returns:
        The expected Move, or None when no line matches or the line has no
        further move for that side.
    """
    line = match_line(opening, history)
    if line is None:
        return None
    side_moves = line.moves_for(side)
    index = len(history) // 2
    if index < len(side_moves):
        return side_moves[index]
    return None


def is_in_theory(opening: Opening, history: Sequence[Move], move: Move) -> bool:
    """Check whether ``move``, played after ``history``, follows theory."""
    if match_line(opening, history) is None:
        return False
    return move.same_as(expected_move(opening, history, move.side))


def theory_moves(opening: Opening, history: Sequence[Move], side: str) -> list[Move]:
    """Return the remaining theory moves for ``side`` on the matched line."""
    line = match_line(opening, history)
    if line is None:
        return []
    return line.moves_for(side)[len(history) // 2:]


def is_line_complete(opening: Opening, history: Sequence[Move]) -> bool:
    """True once the history covers the whole of its matched line."""
    if not history:
        return False
    line = match_line(opening, history)
    return line is not None and len(history) >= len(line)


def remaining_plies(opening: Opening, history: Sequence[Move]) -> int:
    """Number of plies left on the matched line (0 when out of theory)."""
    line = match_line(opening, history)
    if line is None:
        return 0
    return max(0, len(line) - len(history))
