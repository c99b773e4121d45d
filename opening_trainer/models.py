"""Shared data models for the Opening Trainer.

Move, Line and Opening are immutable reference data shared by the theory
matcher, the scripted opponent and the roulette. ProgressRecord and
SessionStats are the records exchanged with the progress store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

WHITE = "white"
BLACK = "black"
SIDES = (WHITE, BLACK)

BEGINNER = "beginner"
INTERMEDIATE = "intermediate"
ADVANCED = "advanced"
DIFFICULTIES = (BEGINNER, INTERMEDIATE, ADVANCED)

HARD = "hard"
GOOD = "good"
EASY = "easy"
UNRATED = "unrated"
RATINGS = (HARD, GOOD, EASY)

PROMOTION_PIECES = ("q", "r", "b", "n")

# Session outcomes
ACTIVE = "active"
COMPLETED = "completed"
FAILED = "failed"
THEORY_EXHAUSTED = "theory_exhausted"
ABANDONED = "abandoned"
TERMINAL_OUTCOMES = (COMPLETED, FAILED, THEORY_EXHAUSTED, ABANDONED)

# Rating prompt phases
RATING_NONE = "none"
RATING_AWAITING_INTERACTION = "awaiting_interaction"
RATING_PROMPTING = "prompting"
RATING_RESOLVED = "resolved"


def opposite_side(side: str) -> str:
    """Return the other side."""
    return BLACK if side == WHITE else WHITE


def _parse_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _format_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


@dataclass(frozen=True)
class Move:
    """A single ply: origin and destination squares plus display notation."""

    origin: str
    destination: str
    notation: str
    side: str
    promotion: str | None = None

    @property
    def key(self) -> tuple[str, str, str | None]:
        """Identity used for theory comparisons (notation and side ignored)."""
        return (self.origin, self.destination, self.promotion)

    @property
    def uci(self) -> str:
        return f"{self.origin}{self.destination}{self.promotion or ''}"

    def same_as(self, other: Move | None) -> bool:
        return other is not None and self.key == other.key

    def to_dict(self) -> dict:
        return {
            "from": self.origin,
            "to": self.destination,
            "san": self.notation,
            "side": self.side,
            "promotion": self.promotion,
        }


@dataclass(frozen=True)
class Line:
    """An ordered sequence of moves through an opening.

    Alternate lines carry a name, the ply where they leave the main line
    (informational only) and an optional description.
    """

    moves: tuple[Move, ...]
    name: str = "Main Line"
    deviation_index: int | None = None
    description: str = ""
    id: str | None = None

    def __len__(self) -> int:
        return len(self.moves)

    def __getitem__(self, index: int) -> Move:
        return self.moves[index]

    def moves_for(self, side: str) -> list[Move]:
        """Return the moves played by ``side`` in line order."""
        return [move for move in self.moves if move.side == side]

    def notation(self) -> str:
        """Render the line as numbered move text (1.e4 e5 2.Nf3 ...)."""
        parts = []
        for i, move in enumerate(self.moves):
            if i % 2 == 0:
                parts.append(f"{i // 2 + 1}.{move.notation}")
            else:
                parts.append(move.notation)
        return " ".join(parts)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "deviation_index": self.deviation_index,
            "description": self.description,
            "moves": self.notation(),
            "uci": [move.uci for move in self.moves],
        }


@dataclass(frozen=True)
class Opening:
    """One catalog entry: a main line plus zero or more alternate lines."""

    id: str
    name: str
    eco: str
    difficulty: str
    description: str
    main_line: Line
    alternate_lines: tuple[Line, ...] = ()
    tags: tuple[str, ...] = ()
    category: str = ""
    side: str = WHITE

    def lines(self) -> list[Line]:
        """Candidate lines in matching order: alternates first, then main."""
        return [*self.alternate_lines, self.main_line]

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "eco": self.eco,
            "difficulty": self.difficulty,
            "side": self.side,
            "category": self.category,
            "tags": list(self.tags),
            "description": self.description,
        }
        if include_lines:
            data["main_line"] = self.main_line.to_dict()
            data["alternate_lines"] = [line.to_dict() for line in self.alternate_lines]
        return data


@dataclass(frozen=True)
class RatingEntry:
    at: datetime
    rating: str


@dataclass
class ProgressRecord:
    """Per-opening progress, keyed by opening id in the store."""

    opening_id: str
    times_practiced: int = 0
    last_practiced_at: datetime | None = None
    best_accuracy: float = 0.0
    average_accuracy: float = 0.0
    completed: bool = False
    mastery_level: int = 0
    difficulty_rating: str | None = None
    last_rated_at: datetime | None = None
    rating_history: list[RatingEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "opening_id": self.opening_id,
            "times_practiced": self.times_practiced,
            "last_practiced_at": _format_time(self.last_practiced_at),
            "best_accuracy": self.best_accuracy,
            "average_accuracy": self.average_accuracy,
            "completed": self.completed,
            "mastery_level": self.mastery_level,
            "difficulty_rating": self.difficulty_rating,
            "last_rated_at": _format_time(self.last_rated_at),
            "rating_history": [
                {"at": entry.at.isoformat(), "rating": entry.rating}
                for entry in self.rating_history
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> ProgressRecord:
        return cls(
            opening_id=data["opening_id"],
            times_practiced=data.get("times_practiced", 0),
            last_practiced_at=_parse_time(data.get("last_practiced_at")),
            best_accuracy=data.get("best_accuracy", 0.0),
            average_accuracy=data.get("average_accuracy", 0.0),
            completed=data.get("completed", False),
            mastery_level=data.get("mastery_level", 0),
            difficulty_rating=data.get("difficulty_rating"),
            last_rated_at=_parse_time(data.get("last_rated_at")),
            rating_history=[
                RatingEntry(at=datetime.fromisoformat(e["at"]), rating=e["rating"])
                for e in data.get("rating_history", [])
            ],
        )


@dataclass
class SessionStats:
    """One finished practice session, appended to the session history."""

    session_id: str
    opening_id: str
    at: datetime
    accuracy: float
    total_moves: int
    correct_moves: int
    duration_seconds: int
    outcome: str

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "opening_id": self.opening_id,
            "at": self.at.isoformat(),
            "accuracy": self.accuracy,
            "total_moves": self.total_moves,
            "correct_moves": self.correct_moves,
            "duration_seconds": self.duration_seconds,
            "outcome": self.outcome,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SessionStats:
        return cls(
            session_id=data["session_id"],
            opening_id=data["opening_id"],
            at=datetime.fromisoformat(data["at"]),
            accuracy=data["accuracy"],
            total_moves=data["total_moves"],
            correct_moves=data["correct_moves"],
            duration_seconds=data.get("duration_seconds", 0),
            outcome=data.get("outcome", COMPLETED),
        )
