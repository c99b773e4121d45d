"""Practice session state machine.

A session drills one opening from one side against the scripted opponent:

    Active -> Completed | Failed | TheoryExhausted   (then the rating prompt)
    Active -> Abandoned                              (ended early, no prompt)

After a Completed, Failed or TheoryExhausted outcome the rating prompt is
deferred: the session sits in the ``awaiting_interaction`` phase until the
learner acknowledges the board, then shows the Hard/Good/Easy/Skip prompt.
Rating or skipping runs the one action the learner asked for meanwhile
(next opening, retry, back to the browser).

Opponent replies and persistence go through a Scheduler, so the session
itself holds no threads and no event loop. Replies carry the generation
number current when they were scheduled and are dropped once the session
has been restarted or has ended.
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Protocol

from opening_trainer.board import LiveBoard
from opening_trainer.errors import OpponentMoveError, SessionStateError
from opening_trainer.models import (
    ABANDONED,
    ACTIVE,
    BLACK,
    COMPLETED,
    FAILED,
    RATING_AWAITING_INTERACTION,
    RATING_NONE,
    RATING_PROMPTING,
    RATING_RESOLVED,
    RATINGS,
    SIDES,
    TERMINAL_OUTCOMES,
    THEORY_EXHAUSTED,
    WHITE,
    Line,
    Move,
    Opening,
    SessionStats,
)
from opening_trainer.opponent import ScriptedOpponent
from opening_trainer.progress import (
    ProgressStore,
    apply_rating,
    apply_session_result,
    session_accuracy,
)
from opening_trainer.theory import (
    expected_move,
    is_in_theory,
    is_line_complete,
    match_line,
    remaining_plies,
)

logger = logging.getLogger(__name__)


class Scheduler(Protocol):
    """Deferred work used by a session: timed callbacks and background tasks."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> None: ...

    def spawn(self, coro: Awaitable) -> None: ...


class AsyncioScheduler:
    """Scheduler running on the current asyncio event loop.

    Failures in spawned tasks and timed callbacks are logged, never raised
    to the caller. ``wait_idle()`` drains everything still pending, which
    is how the CLI and the MCP tools wait for the opponent's reply.
    """

    def __init__(self) -> None:
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def call_later(self, delay: float, callback: Callable[[], None]) -> None:
        self.spawn(self._delayed(delay, callback))

    @staticmethod
    async def _delayed(delay: float, callback: Callable[[], None]) -> None:
        await asyncio.sleep(delay)
        callback()

    def spawn(self, coro: Awaitable) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed: %s", exc, exc_info=exc)

    async def wait_idle(self) -> None:
        """Wait until no timer or task is pending, including ones spawned meanwhile."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._pending):
            task.cancel()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PracticeSession:
    """Drives one practice session at a time."""

    def __init__(
        self,
        store: ProgressStore,
        scheduler: Scheduler,
        board_factory: Callable[[], LiveBoard] = LiveBoard,
        rng: random.Random | None = None,
        reply_delay: float = 0.5,
        first_move_delay: float = 0.3,
        gamification=None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Create an idle session; call ``start_session`` to begin.

        Args:
            store: Progress store receiving session results and ratings.
            scheduler: Runs opponent replies and persistence tasks.
            board_factory: Builds a fresh live board per session.
            rng: Random source for the opponent's fallback moves.
            reply_delay: Seconds before the opponent answers a correct move.
            first_move_delay: Seconds before the opponent's opening move
                when the learner plays Black.
            gamification: Optional GamificationTracker fed with each
                persisted session.
            clock: Returns the current time. Defaults to UTC now.
        """
        self._store = store
        self._scheduler = scheduler
        self._board_factory = board_factory
        self._rng = rng or random.Random()
        self._reply_delay = reply_delay
        self._first_move_delay = first_move_delay
        self._gamification = gamification
        self._clock = clock or _utcnow

        self._opening: Opening | None = None
        self._user_side = WHITE
        self._board: LiveBoard | None = None
        self._opponent: ScriptedOpponent | None = None
        self._history: list[Move] = []
        self._correct = 0
        self._total = 0
        self._outcome: str | None = None
        self._rating_phase = RATING_NONE
        self._pending_action: Callable[[], None] | None = None
        self._last_move_was_correct: bool | None = None
        self._expected_on_failure: Move | None = None
        self._generation = 0
        self._session_id: str | None = None
        self._started_at: datetime | None = None
        self._last_reward = None

    # -- read-only state -----------------------------------------------------

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def opening(self) -> Opening | None:
        return self._opening

    @property
    def user_side(self) -> str:
        return self._user_side

    @property
    def board(self) -> LiveBoard | None:
        return self._board

    @property
    def move_history(self) -> tuple[Move, ...]:
        return tuple(self._history)

    @property
    def correct_count(self) -> int:
        return self._correct

    @property
    def total_count(self) -> int:
        return self._total

    @property
    def accuracy(self) -> float:
        return session_accuracy(self._correct, self._total)

    @property
    def outcome(self) -> str | None:
        """Current outcome, or None before the first session starts."""
        return self._outcome

    @property
    def rating_phase(self) -> str:
        return self._rating_phase

    @property
    def awaiting_rating_interaction(self) -> bool:
        return self._rating_phase == RATING_AWAITING_INTERACTION

    @property
    def show_rating_prompt(self) -> bool:
        return self._rating_phase == RATING_PROMPTING

    @property
    def last_move_was_correct(self) -> bool | None:
        return self._last_move_was_correct

    @property
    def expected_move_on_failure(self) -> Move | None:
        return self._expected_on_failure

    @property
    def matched_line(self) -> Line | None:
        if self._opening is None:
            return None
        return match_line(self._opening, self._history)

    @property
    def is_terminal(self) -> bool:
        return self._outcome in TERMINAL_OUTCOMES

    @property
    def is_user_turn(self) -> bool:
        return (
            self._outcome == ACTIVE
            and self._board is not None
            and self._board.side_to_move() == self._user_side
        )

    @property
    def has_pending_action(self) -> bool:
        return self._pending_action is not None

    @property
    def last_reward(self):
        """SessionReward from the last persisted session, when tracked."""
        return self._last_reward

    def snapshot(self) -> dict:
        """Plain-dict view of the session for rendering and tool responses."""
        if self._opening is None:
            return {"session_id": None, "outcome": None}

        line = self.matched_line
        expected = self._expected_on_failure
        return {
            "session_id": self._session_id,
            "opening_id": self._opening.id,
            "opening_name": self._opening.name,
            "user_side": self._user_side,
            "fen": self._board.current_position(),
            "moves": [move.to_dict() for move in self._history],
            "correct_count": self._correct,
            "total_count": self._total,
            "accuracy": round(self.accuracy, 1),
            "outcome": self._outcome,
            "rating_phase": self._rating_phase,
            "awaiting_rating_interaction": self.awaiting_rating_interaction,
            "show_rating_prompt": self.show_rating_prompt,
            "is_user_turn": self.is_user_turn,
            "last_move_was_correct": self._last_move_was_correct,
            "expected_move": expected.to_dict() if expected else None,
            "matched_line": line.name if line else None,
            "remaining_plies": remaining_plies(self._opening, self._history),
        }

    # -- lifecycle -----------------------------------------------------------

    def _require_session(self) -> None:
        if self._opening is None:
            raise SessionStateError("No practice session has been started")

    def start_session(self, opening: Opening, side: str = WHITE) -> None:
        """Begin practicing ``opening`` as ``side`` from the initial position.

        Any reply still scheduled for a previous session is discarded. When
        the learner plays Black the opponent's first move is scheduled.

        Raises:
            ValueError: If ``side`` is not white or black.
        """
        if side not in SIDES:
            raise ValueError(f"Side must be one of {SIDES}, got {side!r}")

        self._generation += 1
        self._opening = opening
        self._user_side = side
        self._board = self._board_factory()
        self._opponent = ScriptedOpponent(self._board, opening, rng=self._rng)
        self._history = []
        self._correct = 0
        self._total = 0
        self._outcome = ACTIVE
        self._rating_phase = RATING_NONE
        self._pending_action = None
        self._last_move_was_correct = None
        self._expected_on_failure = None
        self._session_id = str(uuid.uuid4())
        self._started_at = self._clock()
        self._last_reward = None

        logger.info("Started %s as %s (session %s)", opening.id, side, self._session_id)

        if side == BLACK:
            self._schedule_reply(self._first_move_delay)

    def reset_session(self) -> None:
        """Restart the current opening from scratch without recording anything."""
        self._require_session()
        self.start_session(self._opening, self._user_side)

    def end_session_early(self) -> str:
        """Stop the session now.

        An active session is Abandoned: moves made so far are recorded but
        no rating is asked for. A session that already finished keeps its
        outcome.

        Returns:
            The final outcome.
        """
        self._require_session()
        if self.is_terminal:
            return self._outcome

        self._generation += 1
        self._finish(ABANDONED)
        return self._outcome

    # -- moves ---------------------------------------------------------------

    def submit_move(self, origin: str, destination: str, promotion: str | None = None) -> bool:
        """Play the learner's move.

        Returns:
            True if the move was applied (right or wrong), False if it was
            ignored: illegal, not the learner's turn, or the session is over.
        """
        self._require_session()
        if not self.is_user_turn:
            return False

        before = list(self._history)
        move = self._board.apply_move(origin, destination, promotion)
        if move is None:
            return False

        self._record(move)
        self._total += 1

        if is_in_theory(self._opening, before, move):
            self._correct += 1
            self._last_move_was_correct = True
            if is_line_complete(self._opening, self._history):
                self._finish(COMPLETED)
            else:
                self._schedule_reply(self._reply_delay)
        else:
            self._last_move_was_correct = False
            self._expected_on_failure = expected_move(self._opening, before, self._user_side)
            logger.info(
                "Left theory with %s in %s (expected %s)",
                move.notation,
                self._opening.id,
                self._expected_on_failure.notation if self._expected_on_failure else "none",
            )
            self._finish(FAILED)
        return True

    def _record(self, move: Move) -> None:
        self._history.append(move)
        self._opponent.record_move(move)

    def _schedule_reply(self, delay: float) -> None:
        generation = self._generation
        self._scheduler.call_later(delay, lambda: self._on_reply_due(generation))

    def _on_reply_due(self, generation: int) -> None:
        if generation != self._generation or self._outcome != ACTIVE:
            logger.debug("Dropping stale opponent reply (generation %d)", generation)
            return
        self.play_opponent_move()

    def _theory_exhausted(self) -> bool:
        return (
            expected_move(self._opening, self._history, WHITE) is None
            and expected_move(self._opening, self._history, BLACK) is None
        )

    def play_opponent_move(self) -> Move | None:
        """Let the opponent move now.

        Returns:
            The move played, or None if the session ended instead.

        Raises:
            OpponentMoveError: If the live board rejects the opponent's move.
        """
        self._require_session()
        if self._outcome != ACTIVE or self.is_user_turn:
            return None

        if self._theory_exhausted():
            self._finish(THEORY_EXHAUSTED)
            return None

        proposed = self._opponent.next_move()
        if proposed is None:
            # No legal moves left on the board
            self._finish(THEORY_EXHAUSTED)
            return None

        move = self._board.apply_move(proposed.origin, proposed.destination, proposed.promotion)
        if move is None:
            logger.error(
                "Opponent move %s rejected in %s (%s)",
                proposed.uci,
                self._board.current_position(),
                self._opening.id,
            )
            raise OpponentMoveError(f"Opponent proposed illegal move {proposed.uci}")

        self._record(move)
        if is_line_complete(self._opening, self._history):
            self._finish(COMPLETED)
        elif self._theory_exhausted():
            self._finish(THEORY_EXHAUSTED)
        return move

    # -- terminal transition and persistence ----------------------------------

    def _finish(self, outcome: str) -> None:
        self._outcome = outcome
        if outcome == ABANDONED:
            self._rating_phase = RATING_NONE
        else:
            self._rating_phase = RATING_AWAITING_INTERACTION

        logger.info(
            "Session %s for %s ended: %s (%d/%d correct)",
            self._session_id,
            self._opening.id,
            outcome,
            self._correct,
            self._total,
        )

        if self._total == 0:
            return

        now = self._clock()
        stats = SessionStats(
            session_id=self._session_id,
            opening_id=self._opening.id,
            at=now,
            accuracy=self.accuracy,
            total_moves=self._total,
            correct_moves=self._correct,
            duration_seconds=max(0, int((now - self._started_at).total_seconds())),
            outcome=outcome,
        )
        self._scheduler.spawn(self._persist_session(self._opening, stats, self._generation))

    async def _persist_session(self, opening: Opening, stats: SessionStats, generation: int) -> None:
        try:
            record = await self._store.update(
                opening.id,
                lambda current: apply_session_result(
                    current,
                    opening.id,
                    stats.accuracy,
                    stats.correct_moves,
                    stats.total_moves,
                    now=stats.at,
                ),
            )
            await self._store.append_session_history(stats)
            if self._gamification is not None:
                reward = await self._gamification.record_session(stats, record, opening)
                if generation == self._generation:
                    self._last_reward = reward
        except Exception:
            logger.exception("Failed to save session %s for %s", stats.session_id, opening.id)

    async def _persist_rating(self, opening_id: str, rating: str, at: datetime) -> None:
        try:
            await self._store.update(
                opening_id,
                lambda current: apply_rating(current, opening_id, rating, now=at),
            )
        except Exception:
            logger.exception("Failed to save %s rating for %s", rating, opening_id)

    # -- rating protocol -----------------------------------------------------

    def acknowledge_interaction(self) -> bool:
        """Reveal the rating prompt after the learner has seen the result.

        Returns:
            True if the prompt is now showing, False if nothing was waiting.
        """
        if self._rating_phase != RATING_AWAITING_INTERACTION:
            return False
        self._rating_phase = RATING_PROMPTING
        return True

    def submit_rating(self, rating: str) -> None:
        """Rate the opening hard, good or easy and resolve the prompt.

        Raises:
            SessionStateError: If the rating prompt is not showing.
            ValueError: If ``rating`` is not hard, good or easy.
        """
        if self._rating_phase != RATING_PROMPTING:
            raise SessionStateError("The rating prompt is not showing")
        if rating not in RATINGS:
            raise ValueError(f"Rating must be one of {RATINGS}, got {rating!r}")

        self._scheduler.spawn(self._persist_rating(self._opening.id, rating, self._clock()))
        self._resolve_rating()

    def skip_rating(self) -> None:
        """Dismiss the rating without changing the stored rating.

        Raises:
            SessionStateError: If no rating is waiting.
        """
        if self._rating_phase not in (RATING_AWAITING_INTERACTION, RATING_PROMPTING):
            raise SessionStateError("No rating is waiting")
        self._resolve_rating()

    def _resolve_rating(self) -> None:
        self._rating_phase = RATING_RESOLVED
        action, self._pending_action = self._pending_action, None
        if action is not None:
            action()

    def request_action(self, action: Callable[[], None]) -> bool:
        """Run ``action`` now, or hold it until the rating is resolved.

        Only one action is held; a later request replaces an earlier one.

        Returns:
            True if the action ran immediately.
        """
        if self.is_terminal and self._rating_phase in (
            RATING_AWAITING_INTERACTION,
            RATING_PROMPTING,
        ):
            self._pending_action = action
            return False
        action()
        return True
