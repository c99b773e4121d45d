"""Progress store and session scoring for the Opening Trainer.

Per-opening progress, session history and gamification state are kept in
JSON files under the data directory. The store API is async: file IO runs
in a worker thread and an asyncio lock serialises read-modify-write cycles.
put() replaces a record outright (last writer wins); update() reads,
modifies and writes one record while holding the lock, and
update_gamification() does the same for the gamification state.

The scoring helpers (accuracy, mastery level, applying a session result or
a difficulty rating to a record) are pure functions.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from opening_trainer.models import RATINGS, ProgressRecord, RatingEntry, SessionStats

logger = logging.getLogger(__name__)

# (min average accuracy, min times practiced) -> stars, checked top-down
_MASTERY_THRESHOLDS = [
    (95.0, 5, 5),
    (90.0, 4, 4),
    (80.0, 3, 3),
    (70.0, 2, 2),
    (60.0, 1, 1),
]

_PROGRESS_FILE = "progress.json"
_HISTORY_FILE = "session_history.json"
_GAMIFICATION_FILE = "gamification.json"
_XP_HISTORY_FILE = "xp_history.json"

_MAX_XP_EVENTS = 100


# ---------------------------------------------------------------------------
# Scoring helpers
# ---------------------------------------------------------------------------


def session_accuracy(correct: int, total: int) -> float:
    """Percentage of correct moves, 0 when no move was made."""
    if total <= 0:
        return 0.0
    return correct / total * 100


def mastery_level(average_accuracy: float, times_practiced: int) -> int:
    """Compute the 0-5 star mastery level.

    Args:
        average_accuracy: Running average accuracy (0-100).
        times_practiced: Number of recorded sessions.

    Returns:
        Star count; always 0 for an opening never practiced.
    """
    if times_practiced <= 0:
        return 0
    for min_accuracy, min_count, stars in _MASTERY_THRESHOLDS:
        if average_accuracy >= min_accuracy and times_practiced >= min_count:
            return stars
    return 0


def apply_session_result(
    record: ProgressRecord | None,
    opening_id: str,
    accuracy: float,
    correct: int,
    total: int,
    now: datetime | None = None,
) -> ProgressRecord:
    """Fold one finished session into a progress record.

    Args:
        record: Current record, or None on first practice.
        opening_id: Opening the session practiced.
        accuracy: Session accuracy (0-100).
        correct: Correct learner moves.
        total: Total learner moves.
        now: Timestamp to record. Defaults to the current UTC time.

    Returns:
        A new ProgressRecord; the input is not mutated.
    """
    now = now or datetime.now(timezone.utc)
    flawless = total > 0 and correct == total

    if record is None:
        return ProgressRecord(
            opening_id=opening_id,
            times_practiced=1,
            last_practiced_at=now,
            best_accuracy=accuracy,
            average_accuracy=accuracy,
            completed=flawless,
            mastery_level=mastery_level(accuracy, 1),
        )

    times = record.times_practiced + 1
    average = (record.average_accuracy * record.times_practiced + accuracy) / times
    return replace(
        record,
        times_practiced=times,
        last_practiced_at=now,
        best_accuracy=max(record.best_accuracy, accuracy),
        average_accuracy=average,
        completed=record.completed or flawless,
        mastery_level=mastery_level(average, times),
        rating_history=list(record.rating_history),
    )


def apply_rating(
    record: ProgressRecord | None,
    opening_id: str,
    rating: str,
    now: datetime | None = None,
) -> ProgressRecord:
    """Record a self-reported difficulty rating.

    Raises:
        ValueError: If the rating is not hard, good or easy.
    """
    if rating not in RATINGS:
        raise ValueError(f"Rating must be one of {RATINGS}, got {rating!r}")

    now = now or datetime.now(timezone.utc)
    entry = RatingEntry(at=now, rating=rating)

    if record is None:
        # Rated before ever finishing a session
        return ProgressRecord(
            opening_id=opening_id,
            last_practiced_at=now,
            difficulty_rating=rating,
            last_rated_at=now,
            rating_history=[entry],
        )

    return replace(
        record,
        difficulty_rating=rating,
        last_rated_at=now,
        rating_history=[*record.rating_history, entry],
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ProgressStore:
    """Async JSON-file store for progress, history and gamification state."""

    def __init__(self, data_dir: str | Path = "data") -> None:
        """Bind the store to a data directory.

        Args:
            data_dir: Directory holding the JSON files. Created on first write.
        """
        self._data_dir = Path(data_dir)
        self._lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def _guard(self) -> asyncio.Lock:
        """Return the write lock for the running event loop."""
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    # -- file helpers (run in worker threads) --------------------------------

    def _read_json(self, name: str, default):
        """Read a JSON file, handling corruption gracefully.

        A file that cannot be parsed, or holds the wrong top-level type, is
        backed up as .bak and the default is returned.
        """
        path = self._data_dir / name
        if not path.exists():
            return default

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(data, type(default)):
                raise ValueError(f"{name} must contain a JSON {type(default).__name__}")
            return data
        except (json.JSONDecodeError, ValueError) as exc:
            backup_path = path.with_suffix(".bak")
            shutil.copy2(path, backup_path)
            logger.warning("Corrupt %s backed up to %s: %s", name, backup_path, exc)
            return default

    def _write_json(self, name: str, data) -> None:
        """Save a JSON file with atomic write."""
        self._data_dir.mkdir(parents=True, exist_ok=True)
        path = self._data_dir / name
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(
            json.dumps(data, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        os.replace(tmp_path, path)

    def _remove(self, name: str) -> None:
        (self._data_dir / name).unlink(missing_ok=True)

    async def _read(self, name: str, default):
        return await asyncio.to_thread(self._read_json, name, default)

    async def _write(self, name: str, data) -> None:
        await asyncio.to_thread(self._write_json, name, data)

    # -- progress ------------------------------------------------------------

    async def get(self, opening_id: str) -> ProgressRecord | None:
        """Return the progress record for an opening, or None."""
        data = await self._read(_PROGRESS_FILE, {})
        raw = data.get(opening_id)
        if raw is None:
            return None
        return ProgressRecord.from_dict(raw)

    async def get_all(self) -> dict[str, ProgressRecord]:
        """Return every progress record keyed by opening id."""
        data = await self._read(_PROGRESS_FILE, {})
        return {key: ProgressRecord.from_dict(value) for key, value in data.items()}

    async def put(self, opening_id: str, record: ProgressRecord) -> None:
        """Replace the stored record for an opening."""
        async with self._guard():
            data = await self._read(_PROGRESS_FILE, {})
            data[opening_id] = record.to_dict()
            await self._write(_PROGRESS_FILE, data)

    async def update(
        self,
        opening_id: str,
        mutate: Callable[[ProgressRecord | None], ProgressRecord],
    ) -> ProgressRecord:
        """Read-modify-write one record while holding the store lock.

        Args:
            opening_id: Opening whose record is updated.
            mutate: Receives the current record (or None) and returns the
                replacement.

        Returns:
            The record that was written.
        """
        async with self._guard():
            data = await self._read(_PROGRESS_FILE, {})
            raw = data.get(opening_id)
            current = ProgressRecord.from_dict(raw) if raw is not None else None
            updated = mutate(current)
            data[opening_id] = updated.to_dict()
            await self._write(_PROGRESS_FILE, data)
            return updated

    async def reset(self, opening_id: str) -> bool:
        """Delete one opening's record. Returns True if one existed."""
        async with self._guard():
            data = await self._read(_PROGRESS_FILE, {})
            if opening_id not in data:
                return False
            del data[opening_id]
            await self._write(_PROGRESS_FILE, data)
            return True

    # -- session history -----------------------------------------------------

    async def append_session_history(self, stats: SessionStats) -> None:
        async with self._guard():
            history = await self._read(_HISTORY_FILE, [])
            history.append(stats.to_dict())
            await self._write(_HISTORY_FILE, history)

    async def list_session_history(self) -> list[SessionStats]:
        history = await self._read(_HISTORY_FILE, [])
        return [SessionStats.from_dict(item) for item in history]

    # -- gamification --------------------------------------------------------

    async def load_gamification(self) -> dict | None:
        """Return the raw gamification dict, or None if never saved."""
        data = await self._read(_GAMIFICATION_FILE, {})
        return data or None

    async def save_gamification(self, data: dict) -> None:
        async with self._guard():
            await self._write(_GAMIFICATION_FILE, data)

    async def update_gamification(self, mutate: Callable[[dict | None], dict]) -> dict:
        """Read-modify-write the gamification dict while holding the store lock.

        ``mutate`` receives the stored dict (None if never saved) and returns
        the replacement, which is written and returned.
        """
        async with self._guard():
            current = await self._read(_GAMIFICATION_FILE, {})
            updated = mutate(current or None)
            await self._write(_GAMIFICATION_FILE, updated)
            return updated

    async def append_xp_event(self, event: dict) -> None:
        """Prepend an XP event, keeping only the newest 100."""
        async with self._guard():
            events = await self._read(_XP_HISTORY_FILE, [])
            events.insert(0, event)
            await self._write(_XP_HISTORY_FILE, events[:_MAX_XP_EVENTS])

    async def list_xp_events(self, limit: int = 20) -> list[dict]:
        events = await self._read(_XP_HISTORY_FILE, [])
        return events[:limit]

    # -- maintenance ---------------------------------------------------------

    async def clear_all(self) -> None:
        """Remove every stored file (progress, history and gamification)."""
        async with self._guard():
            for name in (_PROGRESS_FILE, _HISTORY_FILE, _GAMIFICATION_FILE, _XP_HISTORY_FILE):
                await asyncio.to_thread(self._remove, name)
