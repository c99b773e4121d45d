"""Shared test fixtures.

Usage:
    uv run pytest tests/

Fixtures:
    italian            - Italian Game (white) with a Two Knights alternate line.
    sicilian           - Sicilian Defense (black) with an Open Sicilian line.
    queens_gambit      - Queen's Gambit (white), main line only.
    catalog            - Small in-memory OpeningCatalog built from the above.
    store              - ProgressStore rooted in tmp_path.
    rng                - Seeded random.Random.
    run_async          - Runs a coroutine to completion with asyncio.run.
    enable_validation  - Sets OPENING_TRAINER_VALIDATE=1 for schema validation.
"""

from __future__ import annotations

import asyncio
import os
import random

import pytest

from opening_trainer.catalog import OpeningCatalog, parse_opening
from opening_trainer.progress import ProgressStore


# ---------------------------------------------------------------------------
# Opening fixtures
# ---------------------------------------------------------------------------

ITALIAN = {
    "id": "italian-game",
    "name": "Italian Game",
    "eco": "C50",
    "difficulty": "beginner",
    "side": "white",
    "category": "King's Pawn",
    "tags": ["classical"],
    "main_line": ["e2e4", "e7e5", "g1f3", "b8c6", "f1c4"],
    "alternate_lines": [
        {
            "name": "Two Knights Defense",
            "deviation_index": 5,
            "moves": ["e2e4", "e7e5", "g1f3", "b8c6", "f1c4", "g8f6"],
        },
    ],
}

SICILIAN = {
    "id": "sicilian-defense",
    "name": "Sicilian Defense",
    "eco": "B20",
    "difficulty": "intermediate",
    "side": "black",
    "category": "Sicilian Defense",
    "tags": ["aggressive"],
    "main_line": ["e2e4", "c7c5"],
    "alternate_lines": [
        {
            "name": "Open Sicilian",
            "deviation_index": 2,
            "moves": ["e2e4", "c7c5", "g1f3", "d7d6", "d2d4", "c5d4", "f3d4"],
        },
    ],
}

QUEENS_GAMBIT = {
    "id": "queens-gambit",
    "name": "Queen's Gambit",
    "eco": "D06",
    "difficulty": "advanced",
    "side": "white",
    "category": "Queen's Pawn",
    "tags": ["gambit"],
    "main_line": ["d2d4", "d7d5", "c2c4"],
}


@pytest.fixture
def italian():
    return parse_opening(ITALIAN)


@pytest.fixture
def sicilian():
    return parse_opening(SICILIAN)


@pytest.fixture
def queens_gambit():
    return parse_opening(QUEENS_GAMBIT)


@pytest.fixture
def catalog(italian, sicilian, queens_gambit):
    return OpeningCatalog(openings=[italian, sicilian, queens_gambit])


# ---------------------------------------------------------------------------
# Store, randomness and async helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path):
    return ProgressStore(tmp_path / "data")


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def run_async():
    """Run a coroutine on a fresh event loop and return its result."""
    return asyncio.run


# ---------------------------------------------------------------------------
# Schema validation fixture
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def enable_validation():
    """Set OPENING_TRAINER_VALIDATE=1 for the test.

    Restores the original env var value after the test.
    """
    original = os.environ.get("OPENING_TRAINER_VALIDATE")
    os.environ["OPENING_TRAINER_VALIDATE"] = "1"
    yield
    if original is None:
        os.environ.pop("OPENING_TRAINER_VALIDATE", None)
    else:
        os.environ["OPENING_TRAINER_VALIDATE"] = original
