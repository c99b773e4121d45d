"""MCP server for the Opening Trainer.

Exposes opening practice tools to an LLM agent via FastMCP. Practice
sessions are stored in memory keyed by UUID. The session snapshot is
synced to data/current_practice.json after every change for TUI
consumption (``python -m opening_trainer.cli watch``).
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

from mcp.server.fastmcp import FastMCP  # noqa: E402

from opening_trainer.catalog import OpeningCatalog  # noqa: E402
from opening_trainer.errors import TrainerError  # noqa: E402
from opening_trainer.gamification import GamificationTracker  # noqa: E402
from opening_trainer.models import DIFFICULTIES, RATINGS, SIDES  # noqa: E402
from opening_trainer.progress import ProgressStore  # noqa: E402
from opening_trainer.roulette import OpeningRoulette  # noqa: E402
from opening_trainer.session import AsyncioScheduler, PracticeSession  # noqa: E402
from opening_trainer.settings import Settings, configure_logging, load_settings  # noqa: E402

from response_schemas import (  # noqa: E402
    minify_opening,
    minify_progress,
    minify_session,
)

logger = logging.getLogger("opening_trainer.mcp")

mcp = FastMCP("opening-trainer")

# In-memory session store: session_id -> {session, scheduler}
_sessions: dict[str, dict] = {}

_SNAPSHOT_FILE = "current_practice.json"

_settings: Settings
_catalog: OpeningCatalog
_store: ProgressStore
_tracker: GamificationTracker
_roulette = OpeningRoulette()


def _configure(settings: Settings) -> None:
    """Bind the server to a data directory and catalog."""
    global _settings, _catalog, _store, _tracker
    _settings = settings
    _catalog = OpeningCatalog(settings.catalog_path)
    _store = ProgressStore(settings.data_dir)
    _tracker = GamificationTracker(_store)
    _sessions.clear()
    logger.debug("Serving %d openings from %s", len(_catalog), settings.catalog_path)


_configure(load_settings())


def _sync_practice_json(snapshot: dict) -> None:
    """Write the session snapshot to data/current_practice.json atomically.

    Args:
        snapshot: Full PracticeSession snapshot.
    """
    data_dir = _settings.data_dir
    data_dir.mkdir(parents=True, exist_ok=True)
    target = data_dir / _SNAPSHOT_FILE
    tmp = data_dir / "current_practice.tmp"
    tmp.write_text(
        json.dumps(snapshot, indent=2, default=str, ensure_ascii=False),
        encoding="utf-8",
    )
    os.replace(tmp, target)


def _get_session(session_id: str) -> dict | None:
    """Look up a practice session by ID.

    Args:
        session_id: UUID string.

    Returns:
        Session record dict or None if not found.
    """
    return _sessions.get(session_id)


async def _settle(record: dict) -> dict:
    """Wait for the opponent reply and persistence, then sync and minify."""
    await record["scheduler"].wait_idle()
    session: PracticeSession = record["session"]
    # A retry or next action restarts the session under a new id
    _sessions.setdefault(session.session_id, record)
    snapshot = session.snapshot()
    _sync_practice_json(snapshot)
    result = minify_session(snapshot)
    reward = session.last_reward
    if reward is not None and session.is_terminal:
        result["reward"] = reward.to_dict()
    return result


def _not_found(session_id: str) -> dict:
    return {"error": f"Session not found: {session_id}"}


# ---------------------------------------------------------------------------
# Catalog tools
# ---------------------------------------------------------------------------


@mcp.tool()
def list_openings(
    difficulty: str | None = None,
    side: str | None = None,
    query: str | None = None,
) -> dict:
    """List openings in the catalog.

    Args:
        difficulty: Optional filter: beginner, intermediate or advanced.
        side: Optional filter: the side the learner plays (white/black).
        query: Optional case-insensitive match on name, ECO code or tag.

    Returns:
        Dict with openings (id, name, eco, difficulty, side) and count.
    """
    if difficulty is not None and difficulty not in DIFFICULTIES:
        return {"error": f"Unknown difficulty: {difficulty}. Use one of {list(DIFFICULTIES)}"}
    if side is not None and side not in SIDES:
        return {"error": f"Unknown side: {side}. Use one of {list(SIDES)}"}

    openings = _catalog.search(query) if query else _catalog.all()
    if difficulty:
        openings = [o for o in openings if o.difficulty == difficulty]
    if side:
        openings = [o for o in openings if o.side == side]
    return {
        "openings": [minify_opening(o.to_dict()) for o in openings],
        "count": len(openings),
    }


@mcp.tool()
async def get_opening(opening_id: str) -> dict:
    """Get an opening with its lines and the learner's progress on it.

    Args:
        opening_id: Catalog id, e.g. 'italian-game'.

    Returns:
        Opening dict with main_line, alternate_lines and progress.
    """
    opening = _catalog.get(opening_id)
    if opening is None:
        return {"error": f"Opening not found: {opening_id}"}
    record = await _store.get(opening_id)
    data = opening.to_dict(include_lines=True)
    data["progress"] = minify_progress(record.to_dict() if record else None)
    return data


@mcp.tool()
async def pick_opening(difficulty: str | None = None) -> dict:
    """Draw the next opening to practice from the weighted roulette.

    Hard-rated openings come up about 3x as often, easy-rated ones less
    often until they have not been practiced for a week.

    Args:
        difficulty: Optional difficulty to draw from.

    Returns:
        Minified opening dict plus its main line move text.
    """
    openings = _catalog.by_difficulty(difficulty) if difficulty else _catalog.all()
    progress = await _store.get_all()
    try:
        opening = _roulette.select(openings, progress)
    except TrainerError as exc:
        return {"error": str(exc)}
    result = minify_opening(opening.to_dict())
    result["main_line"] = opening.main_line.notation()
    return result


@mcp.tool()
async def recommend_openings(n: int = 5) -> dict:
    """Rank openings by current roulette weight.

    Args:
        n: How many openings to return. Default 5.

    Returns:
        Dict with openings (id, name, weight, reason), highest weight first.
    """
    progress = await _store.get_all()
    selections = _roulette.weight_distribution(_catalog.all(), progress)
    ranked = sorted(
        enumerate(selections), key=lambda item: (-item[1].weight, item[0])
    )[:max(n, 0)]
    return {
        "openings": [
            {
                "id": s.opening.id,
                "name": s.opening.name,
                "weight": round(s.weight, 3),
                "reason": s.reason,
            }
            for _, s in ranked
        ],
    }


@mcp.tool()
async def get_progress(opening_id: str | None = None) -> dict:
    """Get practice progress.

    Args:
        opening_id: Optional opening id. Without it, every record is
            returned together with XP, level and streak.

    Returns:
        Progress dict for one opening, or all records plus gamification.
    """
    if opening_id is not None:
        record = await _store.get(opening_id)
        return {
            "opening_id": opening_id,
            "progress": minify_progress(record.to_dict() if record else None),
        }

    records = await _store.get_all()
    state = await _tracker.load()
    return {
        "openings": [minify_progress(r.to_dict()) for r in records.values()],
        "total_xp": state.total_xp,
        "level": state.level,
        "current_streak": state.current_streak,
        "longest_streak": state.longest_streak,
        "achievements": list(state.unlocked_achievements),
    }


# ---------------------------------------------------------------------------
# Practice tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def start_practice(opening_id: str | None = None, side: str | None = None) -> dict:
    """Start practicing an opening against the scripted opponent.

    When the learner plays Black the opponent's first move is already
    on the board in the response.

    Args:
        opening_id: Opening to practice. Default: roulette pick.
        side: 'white' or 'black'. Default: the opening's own side.

    Returns:
        Minified session state with session_id.
    """
    if side is not None and side not in SIDES:
        return {"error": f"Unknown side: {side}. Use one of {list(SIDES)}"}

    if opening_id is None:
        try:
            opening = _roulette.select(_catalog.all(), await _store.get_all())
        except TrainerError as exc:
            return {"error": str(exc)}
    else:
        opening = _catalog.get(opening_id)
        if opening is None:
            return {"error": f"Opening not found: {opening_id}"}

    scheduler = AsyncioScheduler()
    session = PracticeSession(
        _store,
        scheduler,
        reply_delay=_settings.reply_delay,
        first_move_delay=_settings.first_move_delay,
        gamification=_tracker,
    )
    session.start_session(opening, side or opening.side)

    record = {"session": session, "scheduler": scheduler}
    _sessions[session.session_id] = record
    return await _settle(record)


@mcp.tool()
async def practice_move(session_id: str, move: str) -> dict:
    """Play the learner's move and wait for the opponent's reply.

    Args:
        session_id: UUID from start_practice.
        move: Move in UCI (e.g. 'g1f3') or SAN (e.g. 'Nf3').

    Returns:
        Minified session state. last_move_was_correct tells whether the
        move followed theory; after a miss, expected_move holds the
        theory move.
    """
    record = _get_session(session_id)
    if record is None:
        return _not_found(session_id)

    session: PracticeSession = record["session"]
    if session.is_terminal:
        return {"error": f"Session is over: {session.outcome}"}
    if not session.is_user_turn:
        return {"error": "Not your turn"}

    parsed = session.board.parse_move(move)
    if parsed is None or not session.submit_move(
        parsed.origin, parsed.destination, parsed.promotion
    ):
        legal = ", ".join(m.notation for m in session.board.legal_moves())
        return {"error": f"Illegal move: {move}. Legal moves: {legal}"}

    return await _settle(record)


@mcp.tool()
async def get_practice_state(session_id: str) -> dict:
    """Get the current state of a practice session.

    Args:
        session_id: UUID from start_practice.

    Returns:
        Minified session state.
    """
    record = _get_session(session_id)
    if record is None:
        return _not_found(session_id)
    return await _settle(record)


@mcp.tool()
async def acknowledge(session_id: str, next_action: str | None = None) -> dict:
    """Acknowledge a finished session and reveal the rating prompt.

    Args:
        session_id: UUID from start_practice.
        next_action: Optional follow-up to run once the rating is done:
            'retry' (same opening again) or 'next' (roulette pick).

    Returns:
        Minified session state; rating_phase becomes 'prompting'.
    """
    record = _get_session(session_id)
    if record is None:
        return _not_found(session_id)
    session: PracticeSession = record["session"]

    if next_action == "retry":
        session.request_action(session.reset_session)
    elif next_action == "next":
        progress = await _store.get_all()

        def _next() -> None:
            chosen = _roulette.select(_catalog.all(), progress)
            session.start_session(chosen, chosen.side)

        session.request_action(_next)
    elif next_action is not None:
        return {"error": f"Unknown next_action: {next_action}. Use 'retry' or 'next'"}

    session.acknowledge_interaction()
    return await _settle(record)


@mcp.tool()
async def rate_opening(session_id: str, rating: str) -> dict:
    """Rate how hard the opening felt; steers how often it comes up again.

    Args:
        session_id: UUID from start_practice.
        rating: 'hard', 'good' or 'easy'.

    Returns:
        Minified session state (after any queued next_action ran).
    """
    record = _get_session(session_id)
    if record is None:
        return _not_found(session_id)
    if rating not in RATINGS:
        return {"error": f"Unknown rating: {rating}. Use one of {list(RATINGS)}"}

    session: PracticeSession = record["session"]
    try:
        session.submit_rating(rating)
    except TrainerError as exc:
        # The rating is saved even when the queued next action fails
        await record["scheduler"].wait_idle()
        return {"error": str(exc)}
    return await _settle(record)


@mcp.tool()
async def skip_rating(session_id: str) -> dict:
    """Dismiss the rating prompt without rating.

    Args:
        session_id: UUID from start_practice.

    Returns:
        Minified session state (after any queued next_action ran).
    """
    record = _get_session(session_id)
    if record is None:
        return _not_found(session_id)
    try:
        record["session"].skip_rating()
    except TrainerError as exc:
        return {"error": str(exc)}
    return await _settle(record)


@mcp.tool()
async def end_practice(session_id: str) -> dict:
    """End a practice session early.

    An active session is abandoned and the moves made so far are recorded.
    A session that already finished keeps its outcome.

    Args:
        session_id: UUID from start_practice.

    Returns:
        Minified final session state.
    """
    record = _get_session(session_id)
    if record is None:
        return _not_found(session_id)
    record["session"].end_session_early()
    return await _settle(record)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    configure_logging(_settings.log_level)
    mcp.run()
