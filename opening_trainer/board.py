"""Live board wrapper over python-chess.

Provides the move-legality surface the practice engine relies on:
- Legal move listing (optionally from one square)
- Move application returning a notated Move, or None if illegal
- Side to move and check/mate/stalemate status
- Check and capture tests used by the opponent's fallback heuristic
"""

from __future__ import annotations

import chess

from opening_trainer.models import BLACK, WHITE, Move


def _side_name(color: chess.Color) -> str:
    return WHITE if color == chess.WHITE else BLACK


def _promotion_symbol(piece_type: int | None) -> str | None:
    if piece_type is None:
        return None
    return chess.piece_symbol(piece_type)


class LiveBoard:
    """python-chess board exposing moves as trainer Move values."""

    def __init__(self, fen: str | None = None) -> None:
        """Initialize the board.

        Args:
            fen: Optional starting FEN. Defaults to the initial position.

        Raises:
            ValueError: If the FEN cannot be parsed.
        """
        self._starting_fen = fen or chess.STARTING_FEN
        self._board = chess.Board(self._starting_fen)

    @property
    def board(self) -> chess.Board:
        """The underlying python-chess board (do not push moves on it)."""
        return self._board

    def _to_move(self, chess_move: chess.Move, board: chess.Board | None = None) -> Move:
        """Convert a python-chess move (legal in ``board``) to a trainer Move."""
        board = board or self._board
        return Move(
            origin=chess.square_name(chess_move.from_square),
            destination=chess.square_name(chess_move.to_square),
            notation=board.san(chess_move),
            side=_side_name(board.turn),
            promotion=_promotion_symbol(chess_move.promotion),
        )

    def _to_chess_move(
        self,
        origin: str,
        destination: str,
        promotion: str | None = None,
    ) -> chess.Move | None:
        """Build a python-chess move, auto-queening bare promotions.

        Returns:
            The legal python-chess move, or None if it is illegal or the
            squares cannot be parsed.
        """
        try:
            from_square = chess.parse_square(origin)
            to_square = chess.parse_square(destination)
        except ValueError:
            return None

        piece_type = None
        if promotion is not None:
            if promotion.lower() not in ("q", "r", "b", "n"):
                return None
            piece_type = chess.PIECE_SYMBOLS.index(promotion.lower())

        candidate = chess.Move(from_square, to_square, promotion=piece_type)
        if candidate in self._board.legal_moves:
            return candidate

        if piece_type is None:
            # A bare pawn move onto the last rank promotes to a queen
            queened = chess.Move(from_square, to_square, promotion=chess.QUEEN)
            if queened in self._board.legal_moves:
                return queened
        return None

    def legal_moves(self, from_square: str | None = None) -> list[Move]:
        """List legal moves, optionally restricted to one origin square.

        Args:
            from_square: Optional origin square name (e.g. "e2").

        Returns:
            Legal moves in python-chess generation order.
        """
        moves = list(self._board.legal_moves)
        if from_square is not None:
            try:
                square = chess.parse_square(from_square)
            except ValueError:
                return []
            moves = [m for m in moves if m.from_square == square]
        return [self._to_move(m) for m in moves]

    def is_legal(self, move: Move) -> bool:
        """Check whether a move (origin, destination, promotion) is legal now."""
        return self._to_chess_move(move.origin, move.destination, move.promotion) is not None

    def parse_move(self, text: str) -> Move | None:
        """Read a move typed as UCI ("g1f3", "e7e8q") or SAN ("Nf3").

        Returns:
            The legal Move it denotes (not applied), or None.
        """
        text = text.strip()
        if not text:
            return None
        if 4 <= len(text) <= 5 and text[:4].isalnum():
            move = self._to_chess_move(text[:2], text[2:4], text[4:] or None)
            if move is not None:
                return self._to_move(move)
        try:
            move = self._board.parse_san(text)
        except ValueError:
            return None
        return self._to_move(move)

    def apply_move(
        self,
        origin: str,
        destination: str,
        promotion: str | None = None,
    ) -> Move | None:
        """Apply a move to the live position.

        Args:
            origin: Origin square name.
            destination: Destination square name.
            promotion: Optional promotion piece ("q", "r", "b", "n").

        Returns:
            The applied Move with SAN notation, or None if illegal.
        """
        chess_move = self._to_chess_move(origin, destination, promotion)
        if chess_move is None:
            return None
        move = self._to_move(chess_move)
        self._board.push(chess_move)
        return move

    def gives_check(self, move: Move) -> bool:
        chess_move = self._to_chess_move(move.origin, move.destination, move.promotion)
        return chess_move is not None and self._board.gives_check(chess_move)

    def is_capture(self, move: Move) -> bool:
        chess_move = self._to_chess_move(move.origin, move.destination, move.promotion)
        return chess_move is not None and self._board.is_capture(chess_move)

    def piece_at(self, square: str) -> tuple[str, str] | None:
        """Return (piece symbol, side) on a square, or None if empty."""
        piece = self._board.piece_at(chess.parse_square(square))
        if piece is None:
            return None
        return piece.symbol().lower(), _side_name(piece.color)

    def side_to_move(self) -> str:
        return _side_name(self._board.turn)

    def is_check(self) -> bool:
        return self._board.is_check()

    def is_checkmate(self) -> bool:
        return self._board.is_checkmate()

    def is_stalemate(self) -> bool:
        return self._board.is_stalemate()

    def is_game_over(self) -> bool:
        return self._board.is_game_over()

    def current_position(self) -> str:
        """Return the current position as FEN."""
        return self._board.fen()

    def history(self) -> list[Move]:
        """Replay the move stack and return every applied move."""
        replay = chess.Board(self._starting_fen)
        moves = []
        for chess_move in self._board.move_stack:
            moves.append(self._to_move(chess_move, replay))
            replay.push(chess_move)
        return moves

    def copy(self) -> LiveBoard:
        clone = LiveBoard(self._starting_fen)
        clone._board = self._board.copy()
        return clone

    def reset(self) -> None:
        """Return to the starting position."""
        self._board = chess.Board(self._starting_fen)

    def __str__(self) -> str:
        return str(self._board)
