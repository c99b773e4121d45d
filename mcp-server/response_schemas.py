"""Response schemas and minification for MCP tool responses.

Minifies MCP tool return values to reduce LLM context token waste.
data/current_practice.json (TUI sync) keeps the full session snapshot;
only MCP return values are compacted.

Move lists are returned as numbered move text (1.e4 e5 2.Nf3 ...), which
is natural for the LLM agent to read.
"""

from __future__ import annotations

import os


# ---------------------------------------------------------------------------
# Minification functions
# ---------------------------------------------------------------------------


def minify_session(snapshot: dict) -> dict:
    """Minify a session snapshot for MCP response.

    Compacts the move dicts to a SAN move string, reduces the expected
    move to its SAN and drops the rating flags that ``rating_phase``
    already covers.

    Args:
        snapshot: Full snapshot (as produced by PracticeSession.snapshot).

    Returns:
        Minified dict with reduced token footprint.
    """
    result = {}

    for key in (
        "session_id", "opening_id", "user_side", "fen", "outcome",
        "rating_phase", "is_user_turn", "last_move_was_correct",
        "matched_line", "remaining_plies",
    ):
        if key in snapshot:
            result[key] = snapshot[key]

    moves = snapshot.get("moves", [])
    result["moves"] = _moves_to_pgn_string([m["san"] for m in moves])
    result["last_move"] = moves[-1]["san"] if moves else None

    result["accuracy"] = snapshot.get("accuracy", 0.0)
    result["score"] = f"{snapshot.get('correct_count', 0)}/{snapshot.get('total_count', 0)}"

    expected = snapshot.get("expected_move")
    result["expected_move"] = expected["san"] if expected else None

    # Removed fields: opening_name, awaiting_rating_interaction, show_rating_prompt

    return result


def minify_opening(opening: dict) -> dict:
    """Minify an opening dict for list responses.

    Keeps identity fields and drops description, tags and lines.

    Args:
        opening: Opening dict (from Opening.to_dict).

    Returns:
        Minified dict.
    """
    return {
        key: opening.get(key)
        for key in ("id", "name", "eco", "difficulty", "side")
    }


def minify_progress(record: dict | None) -> dict | None:
    """Minify a progress record for MCP response.

    Drops the rating history and rounds accuracies to one decimal.

    Args:
        record: ProgressRecord dict, or None if never practiced.

    Returns:
        Minified dict, or None.
    """
    if record is None:
        return None
    return {
        "opening_id": record.get("opening_id"),
        "times_practiced": record.get("times_practiced", 0),
        "best_accuracy": round(record.get("best_accuracy", 0.0), 1),
        "average_accuracy": round(record.get("average_accuracy", 0.0), 1),
        "mastery_level": record.get("mastery_level", 0),
        "difficulty_rating": record.get("difficulty_rating"),
        "last_practiced_at": record.get("last_practiced_at"),
    }


# ---------------------------------------------------------------------------
# Helper: move list to PGN string
# ---------------------------------------------------------------------------


def _moves_to_pgn_string(moves: list[str]) -> str:
    """Convert a list of SAN moves to a PGN move string.

    E.g., ['e4', 'e5', 'Nf3', 'Nc6'] -> '1.e4 e5 2.Nf3 Nc6'
    """
    parts = []
    for i, move in enumerate(moves):
        if i % 2 == 0:
            parts.append(f"{i // 2 + 1}.{move}")
        else:
            parts.append(move)
    return " ".join(parts)


# ---------------------------------------------------------------------------
# Validation schemas (dict-based)
# ---------------------------------------------------------------------------

SESSION_SCHEMA = {
    "session_id": str,
    "opening_id": str,
    "user_side": str,
    "fen": str,
    "outcome": str,
    "rating_phase": str,
    "is_user_turn": bool,
    "last_move_was_correct": (bool, type(None)),
    "matched_line": (str, type(None)),
    "remaining_plies": int,
    "moves": str,
    "last_move": (str, type(None)),
    "accuracy": (int, float),
    "score": str,
    "expected_move": (str, type(None)),
}

OPENING_SCHEMA = {
    "id": str,
    "name": str,
    "eco": str,
    "difficulty": str,
    "side": str,
}

PROGRESS_SCHEMA = {
    "opening_id": str,
    "times_practiced": int,
    "best_accuracy": (int, float),
    "average_accuracy": (int, float),
    "mastery_level": int,
    "difficulty_rating": (str, type(None)),
    "last_practiced_at": (str, type(None)),
}

ERROR_SCHEMA = {
    "error": str,
}


def validate_response(response: dict, schema: dict) -> list[str]:
    """Validate a response dict against a schema.

    Only runs when OPENING_TRAINER_VALIDATE=1 env var is set.

    Args:
        response: Response dict to validate.
        schema: Dict mapping key names to expected types (or tuple of types).

    Returns:
        List of validation error strings (empty = valid).
    """
    if os.environ.get("OPENING_TRAINER_VALIDATE") != "1":
        return []

    if not isinstance(response, dict):
        return [f"Response is not a dict: {type(response).__name__}"]

    errors = []
    for key, expected_types in schema.items():
        if key not in response:
            errors.append(f"Missing key: {key}")
            continue

        value = response[key]
        if not isinstance(expected_types, tuple):
            expected_types = (expected_types,)
        # bool is an int subclass; only accept it where bool is listed
        if isinstance(value, bool) and bool not in expected_types:
            matched = False
        else:
            matched = isinstance(value, expected_types)
        if not matched:
            type_names = ", ".join(t.__name__ for t in expected_types)
            errors.append(
                f"Key '{key}': expected ({type_names}), got {type(value).__name__}"
            )

    return errors
