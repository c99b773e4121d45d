"""Opening roulette: weighted random selection of the next opening.

Weights come from the learner's self-reported difficulty rating:
- Hard-rated openings appear 3x as often (they need more practice)
- Easy-rated openings appear 0.3x as often, but regain weight once they
  have not been practiced for a while (time decay)
- Good and unrated openings use the standard weight

Every weight gets +/-10% fuzz so the order is not predictable, and is
floored at 0.01 so every opening keeps a non-zero chance. This is a
heuristic multiplier scheme, not a spaced-repetition scheduler.
"""

from __future__ import annotations

import random
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from opening_trainer.errors import EmptyCatalogError
from opening_trainer.models import EASY, UNRATED, Opening, ProgressRecord

_MIN_WEIGHT = 0.01
_SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class RouletteWeights:
    """Weight multipliers per difficulty rating."""

    hard: float = 3.0
    good: float = 1.0
    easy: float = 0.3
    unrated: float = 1.0

    def for_rating(self, rating: str | None) -> float:
        return getattr(self, rating or UNRATED, self.unrated)


@dataclass(frozen=True)
class TimeDecayConfig:
    """Easy openings gain weight once ``decay_days`` pass without practice."""

    enabled: bool = True
    decay_days: int = 7
    max_multiplier: float = 2.0


@dataclass(frozen=True)
class RouletteSelection:
    """Weight of one opening plus a short human-readable reason."""

    opening: Opening
    weight: float
    reason: str
    last_practiced_at: datetime | None = None


def _days_since(then: datetime, now: datetime) -> int:
    if then.tzinfo is None:
        then = then.replace(tzinfo=timezone.utc)
    return int((now - then).total_seconds() // _SECONDS_PER_DAY)


class OpeningRoulette:
    """Weighted random opening selector.

    Stateless apart from its random source; unseeded by default so every
    call is independently randomized.
    """

    def __init__(
        self,
        weights: RouletteWeights | None = None,
        time_decay: TimeDecayConfig | None = None,
        fuzz_factor: float = 0.1,
        rng: random.Random | None = None,
    ) -> None:
        self._weights = weights or RouletteWeights()
        self._time_decay = time_decay or TimeDecayConfig()
        self._fuzz_factor = fuzz_factor
        self._rng = rng or random.Random()

    @property
    def weights(self) -> RouletteWeights:
        return self._weights

    @property
    def time_decay(self) -> TimeDecayConfig:
        return self._time_decay

    def decay_multiplier(self, last_practiced_at: datetime, now: datetime | None = None) -> float:
        """Multiplier for an easy opening last practiced at ``last_practiced_at``.

        Formula: 1 + (days - decay_days) / decay_days, capped at
        max_multiplier. 14 days with decay_days=7 gives 2.0.
        """
        now = now or datetime.now(timezone.utc)
        days = _days_since(last_practiced_at, now)
        decay_days = self._time_decay.decay_days
        if days <= decay_days:
            return 1.0
        multiplier = 1 + (days - decay_days) / decay_days
        return min(multiplier, self._time_decay.max_multiplier)

    def _decays(self, progress: ProgressRecord | None) -> bool:
        return (
            self._time_decay.enabled
            and progress is not None
            and progress.difficulty_rating == EASY
            and progress.last_practiced_at is not None
        )

    def base_weight(
        self,
        opening: Opening,
        progress: ProgressRecord | None,
        now: datetime | None = None,
    ) -> float:
        """Weight before fuzz: rating weight times any time-decay multiplier."""
        rating = progress.difficulty_rating if progress else None
        weight = self._weights.for_rating(rating)
        if self._decays(progress):
            weight *= self.decay_multiplier(progress.last_practiced_at, now)
        return weight

    def weight(
        self,
        opening: Opening,
        progress: ProgressRecord | None,
        now: datetime | None = None,
    ) -> float:
        """Selection weight with fuzz applied, never below 0.01."""
        weight = self.base_weight(opening, progress, now)
        fuzz = (self._rng.random() - 0.5) * 2 * self._fuzz_factor
        weight *= 1 + fuzz
        return max(weight, _MIN_WEIGHT)

    def select(
        self,
        openings: Sequence[Opening],
        progress_map: Mapping[str, ProgressRecord],
        now: datetime | None = None,
    ) -> Opening:
        """Draw one opening by cumulative weight.

        Args:
            openings: Candidate openings, in catalog order.
            progress_map: Progress records keyed by opening id.
            now: Reference time for time decay. Defaults to now (UTC).

        Returns:
            The selected opening.

        Raises:
            EmptyCatalogError: If ``openings`` is empty.
        """
        if not openings:
            raise EmptyCatalogError("No openings available for selection")
        if len(openings) == 1:
            return openings[0]

        weighted = [
            (opening, self.weight(opening, progress_map.get(opening.id), now))
            for opening in openings
        ]
        total = sum(weight for _, weight in weighted)

        remaining = self._rng.uniform(0, total)
        for opening, weight in weighted:
            remaining -= weight
            if remaining <= 0:
                return opening

        # Floating point can leave a sliver above zero
        return weighted[-1][0]

    def rank(
        self,
        openings: Sequence[Opening],
        progress_map: Mapping[str, ProgressRecord],
        n: int,
        now: datetime | None = None,
    ) -> list[Opening]:
        """Return the top ``n`` openings by weight, ties in catalog order."""
        weighted = [
            (index, opening, self.weight(opening, progress_map.get(opening.id), now))
            for index, opening in enumerate(openings)
        ]
        weighted.sort(key=lambda item: (-item[2], item[0]))
        return [opening for _, opening, _ in weighted[:max(n, 0)]]

    def weight_distribution(
        self,
        openings: Sequence[Opening],
        progress_map: Mapping[str, ProgressRecord],
        now: datetime | None = None,
    ) -> list[RouletteSelection]:
        """Weights for every opening with the reason behind each."""
        now = now or datetime.now(timezone.utc)
        selections = []
        for opening in openings:
            progress = progress_map.get(opening.id)
            rating = (progress.difficulty_rating if progress else None) or UNRATED
            reason = f"{rating}-rated"
            if self._decays(progress):
                days = _days_since(progress.last_practiced_at, now)
                if days > self._time_decay.decay_days:
                    reason += f" (time decay: {days} days)"
            selections.append(RouletteSelection(
                opening=opening,
                weight=self.weight(opening, progress, now),
                reason=reason,
                last_practiced_at=progress.last_practiced_at if progress else None,
            ))
        return selections
