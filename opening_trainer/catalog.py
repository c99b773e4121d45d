"""Opening catalog loaded from data/openings.json.

The catalog is static reference data: it is read once into immutable
Opening values and never mutated afterwards.

Usage:
    from opening_trainer.catalog import OpeningCatalog
    catalog = OpeningCatalog()
    opening = catalog.require("italian-game")
"""

from __future__ import annotations

import json
import logging
import os

import chess

from opening_trainer.errors import CatalogError, UnknownOpeningError
from opening_trainer.models import BLACK, DIFFICULTIES, SIDES, WHITE, Line, Move, Opening

logger = logging.getLogger(__name__)

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
_PROJECT_ROOT = os.path.dirname(_PACKAGE_DIR)
_DEFAULT_CATALOG = os.path.join(_PROJECT_ROOT, "data", "openings.json")


def _explicit_move(entry: dict, ply: int) -> Move:
    """Build a Move from a spelled-out entry, taken verbatim."""
    side = entry.get("side") or entry.get("color")
    if side not in SIDES:
        side = WHITE if ply % 2 == 0 else BLACK
    return Move(
        origin=entry["from"],
        destination=entry["to"],
        notation=entry.get("san") or f"{entry['from']}{entry['to']}",
        side=side,
        promotion=entry.get("promotion"),
    )


def parse_line_moves(entries: list, label: str = "line") -> tuple[Move, ...]:
    """Turn catalog move entries into Move values.

    UCI strings are replayed from the initial position to derive SAN and
    the mover's side. Dict entries are accepted as-is and do not take part
    in the replay.

    Args:
        entries: List of UCI strings or move dicts.
        label: Name used in error messages.

    Returns:
        Tuple of Move values.

    Raises:
        CatalogError: If a UCI move is malformed or illegal in sequence.
    """
    board = chess.Board()
    moves: list[Move] = []
    replaying = True

    for ply, entry in enumerate(entries):
        if isinstance(entry, dict):
            try:
                moves.append(_explicit_move(entry, ply))
            except KeyError as exc:
                raise CatalogError(f"{label}: move {ply + 1} is missing {exc}") from exc
            replaying = False
            continue

        if not replaying:
            raise CatalogError(
                f"{label}: UCI move {entry!r} cannot follow spelled-out moves"
            )
        try:
            chess_move = chess.Move.from_uci(entry)
        except (chess.InvalidMoveError, ValueError) as exc:
            raise CatalogError(f"{label}: invalid UCI move {entry!r}") from exc
        if chess_move not in board.legal_moves:
            raise CatalogError(f"{label}: illegal move {entry!r} at ply {ply + 1}")

        moves.append(Move(
            origin=chess.square_name(chess_move.from_square),
            destination=chess.square_name(chess_move.to_square),
            notation=board.san(chess_move),
            side=WHITE if board.turn == chess.WHITE else BLACK,
            promotion=(
                chess.piece_symbol(chess_move.promotion)
                if chess_move.promotion else None
            ),
        ))
        board.push(chess_move)

    return tuple(moves)


def parse_opening(data: dict) -> Opening:
    """Build an Opening from one catalog JSON object.

    Raises:
        CatalogError: If required fields are missing or invalid.
    """
    try:
        opening_id = data["id"]
        main_moves = parse_line_moves(data["main_line"], f"{opening_id} main line")
        alternates = []
        for alt in data.get("alternate_lines", []):
            alt_moves = parse_line_moves(
                alt["moves"], f"{opening_id} / {alt.get('name', '?')}"
            )
            alternates.append(Line(
                moves=alt_moves,
                name=alt["name"],
                deviation_index=alt.get("deviation_index"),
                description=alt.get("description", ""),
                id=alt.get("id"),
            ))
        name = data["name"]
        difficulty = data["difficulty"]
        side = data.get("side", WHITE)
    except KeyError as exc:
        raise CatalogError(f"Opening entry missing field {exc}: {data!r:.80}") from exc

    if difficulty not in DIFFICULTIES:
        raise CatalogError(f"{opening_id}: unknown difficulty {difficulty!r}")
    if side not in SIDES:
        raise CatalogError(f"{opening_id}: unknown side {side!r}")

    return Opening(
        id=opening_id,
        name=name,
        eco=data.get("eco", ""),
        difficulty=difficulty,
        description=data.get("description", ""),
        main_line=Line(moves=main_moves),
        alternate_lines=tuple(alternates),
        tags=tuple(data.get("tags", [])),
        category=data.get("category", ""),
        side=side,
    )


class OpeningCatalog:
    """In-memory catalog of known openings.

    Loaded once from JSON; query helpers return Opening values in catalog
    order.
    """

    def __init__(self, path=None, openings: list[Opening] | None = None):
        self._path = path or _DEFAULT_CATALOG
        if openings is not None:
            self._openings = list(openings)
        else:
            self._openings = self._load()
        self._by_id = {opening.id: opening for opening in self._openings}

    def _load(self) -> list[Opening]:
        """Load the catalog file. Returns an empty list if it is missing."""
        if not os.path.exists(self._path):
            logger.warning("Opening catalog not found at %s", self._path)
            return []
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise CatalogError(f"Catalog {self._path} is not valid JSON: {exc}") from exc

        entries = data.get("openings", []) if isinstance(data, dict) else data
        if not isinstance(entries, list):
            raise CatalogError(f"Catalog {self._path} must contain a list of openings")

        openings = [parse_opening(entry) for entry in entries]
        logger.debug("Loaded %d openings from %s", len(openings), self._path)
        return openings

    def __len__(self) -> int:
        return len(self._openings)

    def __iter__(self):
        return iter(self._openings)

    def __contains__(self, opening_id) -> bool:
        return opening_id in self._by_id

    def all(self) -> list[Opening]:
        return list(self._openings)

    def get(self, opening_id: str) -> Opening | None:
        return self._by_id.get(opening_id)

    def require(self, opening_id: str) -> Opening:
        """Get an opening by id.

        Raises:
            UnknownOpeningError: If the id is not in the catalog.
        """
        opening = self._by_id.get(opening_id)
        if opening is None:
            raise UnknownOpeningError(opening_id)
        return opening

    def by_difficulty(self, difficulty: str) -> list[Opening]:
        return [o for o in self._openings if o.difficulty == difficulty]

    def by_category(self, category: str) -> list[Opening]:
        return [o for o in self._openings if o.category == category]

    def by_side(self, side: str) -> list[Opening]:
        return [o for o in self._openings if o.side == side]

    def categories(self) -> list[str]:
        """Distinct categories in first-seen order."""
        seen: dict[str, None] = {}
        for opening in self._openings:
            seen.setdefault(opening.category, None)
        return list(seen)

    def search(self, query: str) -> list[Opening]:
        """Case-insensitive search over name, ECO code and tags."""
        needle = query.lower()
        return [
            o for o in self._openings
            if needle in o.name.lower()
            or needle in o.eco.lower()
            or any(needle in tag.lower() for tag in o.tags)
        ]
