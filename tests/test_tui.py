"""Tests for the Rich terminal UI: rendering and the interactive loop."""

from __future__ import annotations

import io

import pytest
from rich.console import Console

from opening_trainer import tui
from opening_trainer.models import COMPLETED
from opening_trainer.session import AsyncioScheduler, PracticeSession


def _console() -> Console:
    return Console(file=io.StringIO(), width=120, record=True)


def _answers(monkeypatch, *answers):
    remaining = iter(answers)
    monkeypatch.setattr(tui.Prompt, "ask", lambda *args, **kwargs: next(remaining))


class TestRendering:

    def test_snapshot_renders_opening_and_moves(self, italian):
        snapshot = {
            "session_id": "abc",
            "opening_name": italian.name,
            "user_side": "white",
            "fen": "rnbqkbnr/pppp1ppp/8/4p3/4P3/8/PPPP1PPP/RNBQKBNR w KQkq - 0 2",
            "moves": [
                {"from": "e2", "to": "e4", "san": "e4", "side": "white", "promotion": None},
                {"from": "e7", "to": "e5", "san": "e5", "side": "black", "promotion": None},
            ],
            "accuracy": 100.0,
            "correct_count": 1,
            "total_count": 1,
            "outcome": "active",
            "is_user_turn": True,
            "matched_line": "Two Knights Defense",
        }
        console = _console()
        console.print(tui.render_practice(snapshot))
        text = console.export_text()

        assert "Italian Game" in text
        assert "1. e4 e5" in text
        assert "Your move" in text
        assert "100.0% (1/1)" in text

    def test_failed_snapshot_shows_expected_move(self):
        snapshot = {
            "user_side": "black",
            "moves": [],
            "outcome": "failed",
            "expected_move": {"from": "e7", "to": "e5", "san": "e5"},
        }
        console = _console()
        console.print(tui.render_practice(snapshot))
        text = console.export_text()

        assert "Out of theory" in text
        assert "Expected: e5" in text

    def test_load_snapshot_handles_missing_and_corrupt(self, tmp_path):
        path = tmp_path / "current_practice.json"
        assert tui._load_snapshot(path) is None
        path.write_text("{broken", encoding="utf-8")
        assert tui._load_snapshot(path) is None
        path.write_text('{"session_id": "x"}', encoding="utf-8")
        assert tui._load_snapshot(path) == {"session_id": "x"}


class TestPlay:

    @pytest.fixture
    def make_session(self, store, rng):
        def factory(scheduler):
            return PracticeSession(store, scheduler, rng=rng, reply_delay=0, first_move_delay=0)
        return factory

    def test_full_line_then_rate(self, monkeypatch, make_session, italian, store, run_async):
        _answers(monkeypatch, "e4", "Nf3", "Bc4", "quit", "hard")
        console = _console()

        async def scenario():
            scheduler = AsyncioScheduler()
            session = make_session(scheduler)
            session.start_session(italian)
            await tui.play(session, scheduler, lambda: None, console=console)
            return session

        session = run_async(scenario())
        assert session.outcome == COMPLETED
        record = run_async(store.get("italian-game"))
        assert record.difficulty_rating == "hard"
        assert "Line complete!" in console.export_text()

    def test_illegal_input_reprompts(self, monkeypatch, make_session, italian, run_async):
        _answers(monkeypatch, "Ke2", "quit", "quit")
        console = _console()

        async def scenario():
            scheduler = AsyncioScheduler()
            session = make_session(scheduler)
            session.start_session(italian)
            await tui.play(session, scheduler, lambda: None, console=console)
            return session

        session = run_async(scenario())
        assert session.total_count == 0
        assert "Illegal move: Ke2" in console.export_text()

    def test_retry_restarts_line(self, monkeypatch, make_session, italian, run_async):
        # Miss, ask to retry, skip the rating, then quit the new attempt
        _answers(monkeypatch, "d4", "retry", "skip", "quit", "quit")

        async def scenario():
            scheduler = AsyncioScheduler()
            session = make_session(scheduler)
            session.start_session(italian)
            first_id = session.session_id
            await tui.play(session, scheduler, lambda: None, console=_console())
            return first_id, session

        first_id, session = run_async(scenario())
        assert session.session_id != first_id
        assert session.total_count == 0
