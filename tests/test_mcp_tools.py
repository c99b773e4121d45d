"""Per-tool MCP integration tests verifying minified response shapes.

Tests the opening practice tools for correct minification, TUI JSON
integrity, schema validation and the rating protocol. The server is
pointed at tmp_path with zero opponent delays, so no real data is touched.

Run:
    uv run pytest tests/test_mcp_tools.py -v
"""

from __future__ import annotations

import asyncio
import importlib.util
import json
import sys
from pathlib import Path

import pytest

# Add project root so imports resolve
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_PROJECT_ROOT))

# Import server module from hyphenated directory via importlib
_server_path = _PROJECT_ROOT / "mcp-server" / "server.py"
_spec = importlib.util.spec_from_file_location("mcp_server_tools_test", _server_path)
_server = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(_server)

from opening_trainer.catalog import OpeningCatalog  # noqa: E402
from opening_trainer.settings import Settings  # noqa: E402

# Import response schemas for validation
sys.path.insert(0, str(_PROJECT_ROOT / "mcp-server"))
from response_schemas import (  # noqa: E402
    ERROR_SCHEMA,
    OPENING_SCHEMA,
    PROGRESS_SCHEMA,
    SESSION_SCHEMA,
    validate_response,
)

_CATALOG_PATH = _PROJECT_ROOT / "data" / "openings.json"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Snapshot fields that must NOT be in minified session responses
_REMOVED_FIELDS = {"opening_name", "awaiting_rating_interaction", "show_rating_prompt"}


def _call(tool, *args, **kwargs):
    """Run a tool function, awaiting it when it is async."""
    result = tool(*args, **kwargs)
    if asyncio.iscoroutine(result):
        return asyncio.run(result)
    return result


def _assert_session(response: dict) -> None:
    """Assert a response is a properly minified session state."""
    assert "error" not in response, response.get("error")
    for field in _REMOVED_FIELDS:
        assert field not in response, f"Removed field '{field}' found in response"
    assert isinstance(response["moves"], str), "moves must be a PGN string"

    errors = validate_response(response, SESSION_SCHEMA)
    assert not errors, f"Schema validation errors: {errors}"


def _assert_error(response: dict, text: str) -> None:
    assert text in response["error"]
    assert not validate_response(response, ERROR_SCHEMA)


def _read_current_practice_json(data_dir: Path) -> dict:
    return json.loads((data_dir / "current_practice.json").read_text(encoding="utf-8"))


def _play(session_id: str, *moves: str) -> dict:
    response = None
    for move in moves:
        response = _call(_server.practice_move, session_id, move)
        _assert_session(response)
    return response


@pytest.fixture(autouse=True)
def data_dir(tmp_path):
    """Point the server at an empty data directory for each test."""
    _server._configure(Settings(
        data_dir=tmp_path,
        catalog_path=_CATALOG_PATH,
        reply_delay=0,
        first_move_delay=0,
    ))
    yield tmp_path
    _server._sessions.clear()


# ---------------------------------------------------------------------------
# Catalog tools
# ---------------------------------------------------------------------------


class TestListOpenings:

    def test_all_openings_minified(self):
        response = _call(_server.list_openings)
        assert response["count"] == len(response["openings"]) >= 15
        for opening in response["openings"]:
            assert not validate_response(opening, OPENING_SCHEMA)
            assert "main_line" not in opening

    def test_filters(self):
        response = _call(_server.list_openings, difficulty="advanced", side="black")
        assert response["count"] > 0
        assert all(o["difficulty"] == "advanced" for o in response["openings"])
        assert all(o["side"] == "black" for o in response["openings"])

    def test_query(self):
        response = _call(_server.list_openings, query="italian")
        assert [o["id"] for o in response["openings"]] == ["italian-game"]

    def test_bad_filter(self):
        _assert_error(_call(_server.list_openings, difficulty="expert"), "Unknown difficulty")
        _assert_error(_call(_server.list_openings, side="red"), "Unknown side")


class TestGetOpening:

    def test_lines_and_progress(self):
        response = _call(_server.get_opening, "italian-game")
        assert response["main_line"]["moves"] == "1.e4 e5 2.Nf3 Nc6 3.Bc4"
        assert [line["name"] for line in response["alternate_lines"]] == [
            "Two Knights Defense", "Giuoco Piano",
        ]
        assert response["progress"] is None

    def test_unknown(self):
        _assert_error(_call(_server.get_opening, "bongcloud"), "Opening not found")


class TestRoulette:

    def test_pick_opening(self):
        response = _call(_server.pick_opening)
        assert not validate_response(response, OPENING_SCHEMA)
        assert response["main_line"].startswith("1.")

    def test_pick_by_difficulty(self):
        response = _call(_server.pick_opening, difficulty="advanced")
        assert response["difficulty"] == "advanced"

    def test_recommend(self):
        response = _call(_server.recommend_openings, n=3)
        assert len(response["openings"]) == 3
        assert all(o["reason"] == "unrated-rated" for o in response["openings"])


# ---------------------------------------------------------------------------
# Practice tools
# ---------------------------------------------------------------------------


class TestStartPractice:

    def test_white_session(self, data_dir):
        response = _call(_server.start_practice, "italian-game")
        _assert_session(response)
        assert response["moves"] == ""
        assert response["is_user_turn"] is True
        assert response["outcome"] == "active"
        assert response["score"] == "0/0"

    def test_black_session_has_opponent_move(self):
        response = _call(_server.start_practice, "sicilian-defense")
        _assert_session(response)
        assert response["user_side"] == "black"
        assert response["moves"] == "1.e4"
        assert response["is_user_turn"] is True

    def test_side_override(self):
        response = _call(_server.start_practice, "italian-game", side="black")
        assert response["moves"] == "1.e4"

    def test_roulette_pick(self):
        response = _call(_server.start_practice)
        _assert_session(response)

    def test_tui_json_has_full_state(self, data_dir):
        _call(_server.start_practice, "italian-game")
        tui = _read_current_practice_json(data_dir)
        assert tui["opening_name"] == "Italian Game"
        assert isinstance(tui["moves"], list)
        assert "show_rating_prompt" in tui

    def test_errors(self):
        _assert_error(_call(_server.start_practice, "bongcloud"), "Opening not found")
        _assert_error(_call(_server.start_practice, "italian-game", side="red"), "Unknown side")


class TestPracticeMove:

    def test_correct_move_gets_reply(self):
        session_id = _call(_server.start_practice, "italian-game")["session_id"]
        response = _play(session_id, "e4")
        assert response["moves"] == "1.e4 e5"
        assert response["last_move"] == "e5"
        assert response["last_move_was_correct"] is True
        assert response["score"] == "1/1"

    def test_uci_and_san_accepted(self):
        session_id = _call(_server.start_practice, "italian-game")["session_id"]
        response = _play(session_id, "e2e4", "Nf3")
        assert response["moves"] == "1.e4 e5 2.Nf3 Nc6"

    def test_illegal_move(self):
        session_id = _call(_server.start_practice, "italian-game")["session_id"]
        response = _call(_server.practice_move, session_id, "Qd8")
        _assert_error(response, "Illegal move: Qd8")
        assert "Nf3" in response["error"]

    def test_wrong_move_fails(self, data_dir):
        session_id = _call(_server.start_practice, "italian-game")["session_id"]
        response = _play(session_id, "d4")

        assert response["outcome"] == "failed"
        assert response["expected_move"] == "e4"
        assert response["rating_phase"] == "awaiting_interaction"
        assert response["reward"]["session_xp"] == 40
        assert _read_current_practice_json(data_dir)["expected_move"]["san"] == "e4"

        _assert_error(_call(_server.practice_move, session_id, "e4"), "Session is over: failed")

    def test_completed_line(self):
        session_id = _call(_server.start_practice, "italian-game")["session_id"]
        response = _play(session_id, "e4", "Nf3", "Bc4")
        assert response["outcome"] == "completed"
        assert response["matched_line"] == "Two Knights Defense"
        assert response["moves"] == "1.e4 e5 2.Nf3 Nc6 3.Bc4 Nf6"
        assert response["remaining_plies"] == 0
        assert "first_perfect" in response["reward"]["new_achievements"]

    def test_unknown_session(self):
        _assert_error(_call(_server.practice_move, "nope", "e4"), "Session not found")
        _assert_error(_call(_server.get_practice_state, "nope"), "Session not found")


class TestRatingFlow:

    def _finished(self) -> str:
        session_id = _call(_server.start_practice, "italian-game")["session_id"]
        _play(session_id, "d4")
        return session_id

    def test_acknowledge_then_rate(self):
        session_id = self._finished()
        _assert_error(_call(_server.rate_opening, session_id, "hard"), "not showing")

        response = _call(_server.acknowledge, session_id)
        assert response["rating_phase"] == "prompting"

        response = _call(_server.rate_opening, session_id, "hard")
        _assert_session(response)
        assert response["rating_phase"] == "resolved"

        progress = _call(_server.get_progress, "italian-game")["progress"]
        assert not validate_response(progress, PROGRESS_SCHEMA)
        assert progress["difficulty_rating"] == "hard"
        assert progress["times_practiced"] == 1

    def test_bad_rating(self):
        session_id = self._finished()
        _call(_server.acknowledge, session_id)
        _assert_error(_call(_server.rate_opening, session_id, "brutal"), "Unknown rating")

    def test_retry_runs_after_skip(self):
        session_id = self._finished()
        _call(_server.acknowledge, session_id, next_action="retry")
        response = _call(_server.skip_rating, session_id)

        _assert_session(response)
        assert response["outcome"] == "active"
        assert response["session_id"] != session_id
        assert response["moves"] == ""

        follow_up = _play(response["session_id"], "e4")
        assert follow_up["moves"] == "1.e4 e5"

    def test_next_action_picks_new_session(self):
        session_id = self._finished()
        _call(_server.acknowledge, session_id, next_action="next")
        response = _call(_server.rate_opening, session_id, "easy")
        assert response["outcome"] == "active"
        assert response["rating_phase"] == "none"

    def test_failed_next_action_returns_error(self, monkeypatch):
        session_id = self._finished()
        _call(_server.acknowledge, session_id, next_action="next")
        monkeypatch.setattr(_server, "_catalog", OpeningCatalog(openings=[]))

        response = _call(_server.rate_opening, session_id, "hard")
        _assert_error(response, "No openings available")
        progress = _call(_server.get_progress, "italian-game")["progress"]
        assert progress["difficulty_rating"] == "hard"

    def test_failed_next_action_after_skip(self, monkeypatch):
        session_id = self._finished()
        _call(_server.acknowledge, session_id, next_action="next")
        monkeypatch.setattr(_server, "_catalog", OpeningCatalog(openings=[]))

        _assert_error(_call(_server.skip_rating, session_id), "No openings available")

    def test_unknown_next_action(self):
        session_id = self._finished()
        _assert_error(_call(_server.acknowledge, session_id, next_action="dance"), "Unknown next_action")

    def test_skip_without_prompt(self):
        session_id = _call(_server.start_practice, "italian-game")["session_id"]
        _assert_error(_call(_server.skip_rating, session_id), "No rating is waiting")


class TestEndPractice:

    def test_abandon_records_progress(self):
        session_id = _call(_server.start_practice, "italian-game")["session_id"]
        _play(session_id, "e4")
        response = _call(_server.end_practice, session_id)

        assert response["outcome"] == "abandoned"
        assert response["rating_phase"] == "none"

        progress = _call(_server.get_progress, "italian-game")["progress"]
        assert progress["times_practiced"] == 1

    def test_overall_progress(self):
        session_id = _call(_server.start_practice, "italian-game")["session_id"]
        _play(session_id, "e4", "Nf3", "Bc4")

        response = _call(_server.get_progress)
        assert [p["opening_id"] for p in response["openings"]] == ["italian-game"]
        assert response["total_xp"] == 130
        assert response["level"] == 2
        assert response["current_streak"] == 1
        assert response["achievements"] == ["first_perfect"]
