"""Exception types raised by the Opening Trainer."""

from __future__ import annotations


class TrainerError(Exception):
    """Base class for trainer errors."""


class CatalogError(TrainerError):
    """The opening catalog file could not be parsed or replayed."""


class UnknownOpeningError(TrainerError, KeyError):
    """No opening with the requested id exists in the catalog."""

    def __init__(self, opening_id: str) -> None:
        super().__init__(f"Opening not found: {opening_id}")
        self.opening_id = opening_id

    def __str__(self) -> str:
        return self.args[0]


class EmptyCatalogError(TrainerError, ValueError):
    """Selection was requested from an empty list of openings."""


class SessionStateError(TrainerError):
    """An entry point was called in a state that does not accept it."""


class OpponentMoveError(TrainerError):
    """The live board rejected a move proposed by the scripted opponent."""
