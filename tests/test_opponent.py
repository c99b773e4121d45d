"""Tests for the scripted opponent: theory replies and fallback heuristic."""

from __future__ import annotations

import logging
import random

from opening_trainer.board import LiveBoard
from opening_trainer.models import BLACK, Move
from opening_trainer.opponent import ScriptedOpponent


def _play(board: LiveBoard, opponent: ScriptedOpponent, *uci: str) -> None:
    for text in uci:
        move = board.apply_move(text[:2], text[2:4], text[4:] or None)
        opponent.record_move(move)


class TestTheoryReplies:

    def test_replies_with_theory_move(self, italian, rng):
        board = LiveBoard()
        opponent = ScriptedOpponent(board, italian, rng=rng)
        _play(board, opponent, "e2e4")
        move = opponent.next_move()
        assert move.uci == "e7e5"
        assert move.side == BLACK

    def test_follows_first_matching_line(self, italian, rng):
        board = LiveBoard()
        opponent = ScriptedOpponent(board, italian, rng=rng)
        _play(board, opponent, "e2e4", "e7e5", "g1f3", "b8c6", "f1c4")
        assert opponent.next_move().uci == "g8f6"

    def test_opening_move_as_white(self, sicilian, rng):
        opponent = ScriptedOpponent(LiveBoard(), sicilian, rng=rng)
        assert opponent.next_move().uci == "e2e4"

    def test_is_move_in_theory(self, italian, rng):
        board = LiveBoard()
        opponent = ScriptedOpponent(board, italian, rng=rng)
        assert opponent.is_move_in_theory(Move("e2", "e4", "e4", "white"))
        assert not opponent.is_move_in_theory(Move("d2", "d4", "d4", "white"))

    def test_set_opening_clears_history(self, italian, sicilian, rng):
        board = LiveBoard()
        opponent = ScriptedOpponent(board, italian, rng=rng)
        _play(board, opponent, "e2e4")
        opponent.set_opening(sicilian)
        assert opponent.history == ()
        assert opponent.opening is sicilian


class TestFallback:

    def test_out_of_theory_uses_heuristic(self, italian):
        board = LiveBoard()
        opponent = ScriptedOpponent(board, italian, rng=random.Random(7))
        _play(board, opponent, "d2d4")
        move = opponent.next_move()
        assert move is not None
        assert board.is_legal(move)

    def test_prefers_checks(self, rng):
        board = LiveBoard()
        opponent = ScriptedOpponent(board, None, rng=rng)
        # After 1.e4 f6 white can check with Qh5+
        _play(board, opponent, "e2e4", "f7f6")
        move = opponent.fallback_move()
        assert board.gives_check(move)

    def test_prefers_captures_without_checks(self, rng):
        board = LiveBoard()
        opponent = ScriptedOpponent(board, None, rng=rng)
        _play(board, opponent, "d2d4", "e7e5")
        move = opponent.fallback_move()
        assert board.is_capture(move)

    def test_no_moves_in_mate(self, rng):
        board = LiveBoard("rnb1kbnr/pppp1ppp/8/4p3/6Pq/5P2/PPPPP2P/RNBQKBNR w KQkq - 1 3")
        assert ScriptedOpponent(board, None, rng=rng).next_move() is None

    def test_stale_theory_move_falls_back_with_warning(self, italian, rng, caplog):
        # Board and history disagree: history says 1.e4, board shows 1.d4
        board = LiveBoard()
        opponent = ScriptedOpponent(board, italian, rng=rng)
        board.apply_move("d2", "d4")
        opponent.record_move(Move("e2", "e4", "e4", "white"))
        board.apply_move("d7", "d5")
        opponent.record_move(Move("e7", "e5", "e5", "black"))
        board.apply_move("c2", "c4")
        opponent.record_move(Move("g1", "f3", "Nf3", "white"))
        board.apply_move("b8", "c6")
        opponent.record_move(Move("b8", "c6", "Nc6", "black"))
        board.apply_move("b1", "c3")
        opponent.record_move(Move("f1", "c4", "Bc4", "white"))
        # Theory now wants ...Nf6, but that knight already left g8
        board.apply_move("g8", "f6")
        board.apply_move("c1", "g5")

        with caplog.at_level(logging.WARNING):
            move = opponent.next_move()

        assert move is not None
        assert board.is_legal(move)
        assert move.uci != "g8f6"
        assert "no longer legal" in caplog.text
