"""XP, levels, practice streaks and achievements.

Each persisted practice session earns XP:

    (10 base + floor(accuracy * 0.4) + 20 if flawless + 30 on first practice)
    * difficulty multiplier (beginner 1.0, intermediate 1.5, advanced 2.0)

Level 1 needs 100 XP; each further level needs floor(100 * 1.5^(level-1))
more. Streaks count consecutive UTC calendar days with at least one session.
Achievements unlock once their category's counter reaches the requirement
and award their own XP on top.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from opening_trainer.models import (
    ADVANCED,
    BEGINNER,
    INTERMEDIATE,
    Opening,
    ProgressRecord,
    SessionStats,
)
from opening_trainer.progress import ProgressStore

logger = logging.getLogger(__name__)

BASE_SESSION_XP = 10
ACCURACY_XP_FACTOR = 0.4
FLAWLESS_BONUS = 20
FIRST_PRACTICE_BONUS = 30
DIFFICULTY_MULTIPLIERS = {
    BEGINNER: 1.0,
    INTERMEDIATE: 1.5,
    ADVANCED: 2.0,
}

FIRST_LEVEL_XP = 100
LEVEL_GROWTH = 1.5

MASTERY = "mastery"
STREAK = "streak"
ACCURACY = "accuracy"
EXPLORATION = "exploration"
DEDICATION = "dedication"


@dataclass(frozen=True)
class Achievement:
    id: str
    name: str
    description: str
    category: str
    requirement: int
    xp_reward: int
    tier: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "requirement": self.requirement,
            "xp_reward": self.xp_reward,
            "tier": self.tier,
        }


ACHIEVEMENTS: tuple[Achievement, ...] = (
    # Mastery: openings at 5 stars
    Achievement("first_master", "First Master",
                "Achieve 5-star mastery in any opening", MASTERY, 1, 50, "bronze"),
    Achievement("opening_scholar", "Opening Scholar",
                "Master 5 different openings", MASTERY, 5, 200, "gold"),
    Achievement("opening_expert", "Opening Expert",
                "Master 10 different openings", MASTERY, 10, 350, "gold"),
    Achievement("grandmaster", "Grandmaster",
                "Master 15 openings", MASTERY, 15, 500, "platinum"),
    # Streak: longest run of consecutive days
    Achievement("getting_started", "Getting Started",
                "Practice 3 days in a row", STREAK, 3, 25, "bronze"),
    Achievement("week_warrior", "Week Warrior",
                "Practice 7 days in a row", STREAK, 7, 100, "silver"),
    Achievement("fortnight_champion", "Fortnight Champion",
                "Practice 14 days in a row", STREAK, 14, 250, "gold"),
    Achievement("month_master", "Month Master",
                "Practice 30 days in a row", STREAK, 30, 500, "platinum"),
    Achievement("century_legend", "Century Legend",
                "Practice 100 days in a row", STREAK, 100, 1000, "platinum"),
    # Accuracy: flawless sessions
    Achievement("first_perfect", "First Perfect",
                "Complete your first perfect session", ACCURACY, 1, 30, "bronze"),
    Achievement("perfectionist", "Perfectionist",
                "Complete 10 perfect sessions", ACCURACY, 10, 150, "gold"),
    Achievement("flawless_master", "Flawless Master",
                "Complete 25 perfect sessions", ACCURACY, 25, 400, "platinum"),
    # Exploration: distinct openings practiced
    Achievement("curious_mind", "Curious Mind",
                "Try 5 different openings", EXPLORATION, 5, 40, "bronze"),
    Achievement("explorer", "Explorer",
                "Try 10 different openings", EXPLORATION, 10, 100, "silver"),
    Achievement("repertoire_builder", "Repertoire Builder",
                "Try 20 different openings", EXPLORATION, 20, 250, "gold"),
    Achievement("opening_encyclopedia", "Opening Encyclopedia",
                "Try 30 different openings", EXPLORATION, 30, 500, "platinum"),
    # Dedication: total practice minutes
    Achievement("first_hour", "First Hour",
                "Practice for 1 hour total", DEDICATION, 60, 30, "bronze"),
    Achievement("committed_learner", "Committed Learner",
                "Practice for 5 hours total", DEDICATION, 300, 150, "silver"),
    Achievement("dedicated_student", "Dedicated Student",
                "Practice for 10 hours total", DEDICATION, 600, 200, "gold"),
    Achievement("chess_devotee", "Chess Devotee",
                "Practice for 25 hours total", DEDICATION, 1500, 500, "platinum"),
)

_ACHIEVEMENTS_BY_ID = {achievement.id: achievement for achievement in ACHIEVEMENTS}


def get_achievement(achievement_id: str) -> Achievement | None:
    return _ACHIEVEMENTS_BY_ID.get(achievement_id)


@dataclass
class GamificationState:
    """Persistent XP, level, streak and achievement state."""

    total_xp: int = 0
    level: int = 1
    xp_for_next_level: int = FIRST_LEVEL_XP
    current_streak: int = 0
    longest_streak: int = 0
    last_practice_at: datetime | None = None
    unlocked_achievements: list[str] = field(default_factory=list)
    achievement_progress: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total_xp": self.total_xp,
            "level": self.level,
            "xp_for_next_level": self.xp_for_next_level,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_practice_at": (
                self.last_practice_at.isoformat() if self.last_practice_at else None
            ),
            "unlocked_achievements": list(self.unlocked_achievements),
            "achievement_progress": dict(self.achievement_progress),
        }

    @classmethod
    def from_dict(cls, data: dict) -> GamificationState:
        last = data.get("last_practice_at")
        return cls(
            total_xp=data.get("total_xp", 0),
            level=data.get("level", 1),
            xp_for_next_level=data.get("xp_for_next_level", FIRST_LEVEL_XP),
            current_streak=data.get("current_streak", 0),
            longest_streak=data.get("longest_streak", 0),
            last_practice_at=datetime.fromisoformat(last) if last else None,
            unlocked_achievements=list(data.get("unlocked_achievements", [])),
            achievement_progress=dict(data.get("achievement_progress", {})),
        )


@dataclass
class SessionReward:
    """What one session earned."""

    session_xp: int
    achievement_xp: int
    level: int
    leveled_up: bool
    current_streak: int
    streak_continued: bool
    new_achievements: list[Achievement] = field(default_factory=list)

    @property
    def total_xp(self) -> int:
        return self.session_xp + self.achievement_xp

    def to_dict(self) -> dict:
        return {
            "session_xp": self.session_xp,
            "achievement_xp": self.achievement_xp,
            "total_xp": self.total_xp,
            "level": self.level,
            "leveled_up": self.leveled_up,
            "current_streak": self.current_streak,
            "streak_continued": self.streak_continued,
            "new_achievements": [a.id for a in self.new_achievements],
        }


def calculate_session_xp(stats: SessionStats, progress: ProgressRecord, opening: Opening) -> int:
    """XP earned by one session.

    Args:
        stats: The finished session.
        progress: The opening's record after the session was applied, so
            ``times_practiced == 1`` marks a first practice.
        opening: The practiced opening (its difficulty scales the XP).
    """
    xp = BASE_SESSION_XP + math.floor(stats.accuracy * ACCURACY_XP_FACTOR)
    if stats.total_moves > 0 and stats.correct_moves == stats.total_moves:
        xp += FLAWLESS_BONUS
    if progress.times_practiced == 1:
        xp += FIRST_PRACTICE_BONUS
    return math.floor(xp * DIFFICULTY_MULTIPLIERS.get(opening.difficulty, 1.0))


def calculate_level(xp: int) -> tuple[int, int]:
    """Return (level, XP needed to go from that level to the next)."""
    level = 1
    required = FIRST_LEVEL_XP
    spent = 0
    while spent + required <= xp:
        spent += required
        level += 1
        required = math.floor(FIRST_LEVEL_XP * LEVEL_GROWTH ** (level - 1))
    return level, required


def _utc_day(moment: datetime):
    return moment.astimezone(timezone.utc).date()


def update_streak(state: GamificationState, practiced_at: datetime) -> bool:
    """Fold a practice time into the streak.

    Days are UTC calendar days, whatever offset the timestamps carry. The
    same day leaves the streak alone, the next day extends it and any
    longer gap restarts it at 1.

    Returns:
        True if the streak was extended.
    """
    if state.last_practice_at is None:
        state.current_streak = 1
        state.longest_streak = max(state.longest_streak, 1)
        state.last_practice_at = practiced_at
        return False

    days = (_utc_day(practiced_at) - _utc_day(state.last_practice_at)).days
    if days <= 0:
        return False

    state.last_practice_at = practiced_at
    if days == 1:
        state.current_streak += 1
        state.longest_streak = max(state.longest_streak, state.current_streak)
        return True

    state.current_streak = 1
    state.longest_streak = max(state.longest_streak, 1)
    return False


def achievement_progress(
    achievement: Achievement,
    state: GamificationState,
    progress_map: Mapping[str, ProgressRecord],
    history: Sequence[SessionStats],
) -> int:
    """Current counter for an achievement's category."""
    if achievement.category == MASTERY:
        return sum(1 for record in progress_map.values() if record.mastery_level == 5)
    if achievement.category == STREAK:
        return state.longest_streak
    if achievement.category == ACCURACY:
        return sum(
            1 for s in history
            if s.total_moves > 0 and s.correct_moves == s.total_moves
        )
    if achievement.category == EXPLORATION:
        return sum(1 for record in progress_map.values() if record.times_practiced > 0)
    if achievement.category == DEDICATION:
        return sum(s.duration_seconds for s in history) // 60
    return 0


def check_achievements(
    state: GamificationState,
    progress_map: Mapping[str, ProgressRecord],
    history: Sequence[SessionStats],
) -> list[Achievement]:
    """Refresh progress counters and unlock every achievement now reached.

    Mutates ``state``; XP for the unlocked achievements is left to the caller.
    """
    unlocked = []
    for achievement in ACHIEVEMENTS:
        if achievement.id in state.unlocked_achievements:
            continue
        current = achievement_progress(achievement, state, progress_map, history)
        state.achievement_progress[achievement.id] = current
        if current >= achievement.requirement:
            state.unlocked_achievements.append(achievement.id)
            unlocked.append(achievement)
    return unlocked


class GamificationTracker:
    """Applies session rewards to the gamification state held by a store."""

    def __init__(self, store: ProgressStore) -> None:
        self._store = store

    async def load(self) -> GamificationState:
        data = await self._store.load_gamification()
        if data is None:
            return GamificationState()
        return GamificationState.from_dict(data)

    async def record_session(
        self,
        stats: SessionStats,
        progress: ProgressRecord,
        opening: Opening,
    ) -> SessionReward:
        """Award XP for a persisted session and unlock achievements.

        Args:
            stats: The session, already appended to the session history.
            progress: The opening's updated progress record.
            opening: The practiced opening.
        """
        session_xp = calculate_session_xp(stats, progress, opening)
        progress_map = await self._store.get_all()
        history = await self._store.list_session_history()
        outcome = {}

        def apply(data: dict | None) -> dict:
            state = GamificationState() if data is None else GamificationState.from_dict(data)
            outcome["level_before"] = state.level
            outcome["streak_continued"] = update_streak(state, stats.at)
            outcome["new_achievements"] = check_achievements(state, progress_map, history)
            achievement_xp = sum(a.xp_reward for a in outcome["new_achievements"])
            state.total_xp += session_xp + achievement_xp
            state.level, state.xp_for_next_level = calculate_level(state.total_xp)
            outcome["state"] = state
            return state.to_dict()

        await self._store.update_gamification(apply)
        state = outcome["state"]
        new_achievements = outcome["new_achievements"]
        achievement_xp = sum(a.xp_reward for a in new_achievements)

        await self._store.append_xp_event({
            "type": "session_complete",
            "xp": session_xp,
            "at": stats.at.isoformat(),
            "opening_id": opening.id,
            "accuracy": stats.accuracy,
        })
        for achievement in new_achievements:
            logger.info("Achievement unlocked: %s", achievement.name)
            await self._store.append_xp_event({
                "type": "achievement_unlock",
                "xp": achievement.xp_reward,
                "at": stats.at.isoformat(),
                "achievement_id": achievement.id,
            })

        return SessionReward(
            session_xp=session_xp,
            achievement_xp=achievement_xp,
            level=state.level,
            leveled_up=state.level > outcome["level_before"],
            current_streak=state.current_streak,
            streak_continued=outcome["streak_continued"],
            new_achievements=new_achievements,
        )

    async def locked_achievements(self) -> list[dict]:
        """Locked achievements with their current counter and percentage."""
        state = await self.load()
        progress_map = await self._store.get_all()
        history = await self._store.list_session_history()
        locked = []
        for achievement in ACHIEVEMENTS:
            if achievement.id in state.unlocked_achievements:
                continue
            current = achievement_progress(achievement, state, progress_map, history)
            locked.append({
                "achievement": achievement.to_dict(),
                "progress": current,
                "percentage": min(current / achievement.requirement * 100, 100.0),
            })
        return locked

    async def unlocked_achievements(self) -> list[Achievement]:
        state = await self.load()
        return [a for a in ACHIEVEMENTS if a.id in state.unlocked_achievements]

    async def summary(self) -> dict:
        """State plus unlocked achievements, ready for JSON output."""
        state = await self.load()
        return {
            **state.to_dict(),
            "unlocked": [
                a.to_dict() for a in ACHIEVEMENTS if a.id in state.unlocked_achievements
            ],
            "recent_xp": await self._store.list_xp_events(limit=10),
        }
