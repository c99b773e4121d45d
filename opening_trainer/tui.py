"""Terminal UI for opening practice.

Renders a Rich board plus a sidebar (opening, line, moves, accuracy,
result) from a session snapshot. Two ways to use it:

- ``play()`` drives an interactive session, prompting for moves, the
  follow-up action and the difficulty rating.
- ``watch()`` follows data/current_practice.json, which the MCP server
  rewrites after every move, and redraws on change via watchdog.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from pathlib import Path

import chess
from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from opening_trainer.models import (
    ABANDONED,
    BLACK,
    COMPLETED,
    FAILED,
    RATINGS,
    THEORY_EXHAUSTED,
)
from opening_trainer.session import AsyncioScheduler, PracticeSession

# Unicode piece symbols
_PIECE_SYMBOLS = {
    "K": "♔", "Q": "♕", "R": "♖", "B": "♗",
    "N": "♘", "P": "♙",
    "k": "♚", "q": "♛", "r": "♜", "b": "♝",
    "n": "♞", "p": "♟",
}

_LIGHT_SQ = "grey85"
_DARK_SQ = "grey50"
_HIGHLIGHT = "yellow"
_MISS = "red"

_BANNERS = {
    COMPLETED: ("Line complete!", "bold green"),
    FAILED: ("Out of theory", "bold red"),
    THEORY_EXHAUSTED: ("End of known theory", "bold yellow"),
    ABANDONED: ("Session ended", "dim"),
}


def _load_snapshot(path: Path) -> dict | None:
    """Load a session snapshot written by the MCP server.

    Returns:
        Parsed dict or None if the file is missing or corrupt.
    """
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        return None
    return data if isinstance(data, dict) else None


def render_practice(snapshot: dict) -> Layout:
    """Render the board and sidebar for a session snapshot."""
    layout = Layout()
    layout.split_row(
        Layout(name="board", ratio=2),
        Layout(name="sidebar", ratio=1),
    )
    layout["board"].update(_render_board_panel(snapshot))
    layout["sidebar"].update(_render_sidebar(snapshot))
    return layout


def _square_set(move: dict | None) -> set[int]:
    if not move:
        return set()
    return {chess.parse_square(move["from"]), chess.parse_square(move["to"])}


def _render_board_panel(snapshot: dict) -> Panel:
    """Render the position, flipped when the learner plays Black.

    The last move is highlighted; after a miss the expected move's squares
    are marked instead.
    """
    board = chess.Board(snapshot.get("fen", chess.STARTING_FEN))
    is_flipped = snapshot.get("user_side") == BLACK

    moves = snapshot.get("moves") or []
    highlight = _square_set(moves[-1] if moves else None)
    missed = _square_set(snapshot.get("expected_move"))

    table = Table(show_header=False, show_edge=False, pad_edge=False,
                  box=None, padding=(0, 1))
    table.add_column(width=2, justify="right")
    for _ in range(8):
        table.add_column(width=3, justify="center")

    ranks = range(8) if is_flipped else range(7, -1, -1)
    files = list(range(7, -1, -1)) if is_flipped else list(range(8))

    for rank in ranks:
        row: list[Text] = [Text(str(rank + 1), style="bold")]
        for file in files:
            sq = chess.square(file, rank)
            bg = _LIGHT_SQ if (rank + file) % 2 == 1 else _DARK_SQ
            if sq in missed:
                bg = _MISS
            elif sq in highlight:
                bg = _HIGHLIGHT

            piece = board.piece_at(sq)
            symbol = _PIECE_SYMBOLS.get(piece.symbol(), "?") if piece else " "
            row.append(Text(f" {symbol} ", style=f"on {bg}"))
        table.add_row(*row)

    file_labels = [Text("  ")]
    for f in files:
        file_labels.append(Text(f" {chr(ord('a') + f)} ", style="bold"))
    table.add_row(*file_labels)

    title = snapshot.get("opening_name") or "Opening Trainer"
    return Panel(table, title=title, border_style="blue")


def _move_text(moves: list[dict]) -> list[str]:
    lines = []
    for i in range(0, len(moves), 2):
        white = moves[i]["san"]
        black = moves[i + 1]["san"] if i + 1 < len(moves) else ""
        lines.append(f"  {i // 2 + 1}. {white} {black}")
    return lines


def _render_sidebar(snapshot: dict) -> Panel:
    parts: list[str] = []

    parts.append(f"Playing as: {snapshot.get('user_side', 'white')}")
    line = snapshot.get("matched_line")
    if line:
        parts.append(f"Line: [italic]{line}[/italic]")
    parts.append("")

    moves = snapshot.get("moves") or []
    if moves:
        parts.append("[bold]Moves:[/bold]")
        parts.extend(_move_text(moves))
        parts.append("")

    parts.append(
        f"[bold]Accuracy:[/bold] {snapshot.get('accuracy', 0.0):.1f}% "
        f"({snapshot.get('correct_count', 0)}/{snapshot.get('total_count', 0)})"
    )

    outcome = snapshot.get("outcome")
    banner = _BANNERS.get(outcome)
    if banner:
        text, style = banner
        parts.append("")
        parts.append(f"[{style}]{text}[/{style}]")
        expected = snapshot.get("expected_move")
        if expected:
            parts.append(f"Expected: [bold]{expected['san']}[/bold]")
    elif snapshot.get("is_user_turn"):
        parts.append("")
        parts.append("[bold]Your move[/bold]")

    return Panel("\n".join(parts), title="Practice", border_style="green")


def _render_waiting() -> Panel:
    return Panel(
        Text("Waiting for a practice session...\n\n"
             "Start one via the MCP server to see the board.",
             justify="center"),
        title="Opening Trainer",
        border_style="dim",
    )


def watch(path: Path, console: Console | None = None) -> None:
    """Redraw whenever the snapshot file changes, until Ctrl-C."""
    from watchdog.events import FileSystemEventHandler
    from watchdog.observers import Observer

    console = console or Console()
    changed = True

    class _Handler(FileSystemEventHandler):
        def on_any_event(self, event):
            nonlocal changed
            if str(event.src_path).endswith(path.name):
                changed = True

    path.parent.mkdir(parents=True, exist_ok=True)
    observer = Observer()
    observer.schedule(_Handler(), str(path.parent), recursive=False)
    observer.start()

    last: dict | None = None
    try:
        with Live(console=console, refresh_per_second=4) as live:
            while True:
                if changed:
                    changed = False
                    snapshot = _load_snapshot(path)
                    if snapshot is not None and snapshot.get("session_id"):
                        last = snapshot
                        live.update(render_practice(snapshot))
                    elif last is None:
                        live.update(_render_waiting())
                time.sleep(0.25)
    except KeyboardInterrupt:
        pass
    finally:
        observer.stop()
        observer.join()


async def play(
    session: PracticeSession,
    scheduler: AsyncioScheduler,
    next_opening: Callable[[], None],
    console: Console | None = None,
) -> None:
    """Interactive practice loop for an already started session.

    Moves are typed as UCI or SAN; "reset" restarts the line and "quit"
    ends the session. After a result the learner picks what to do next,
    then rates the opening.

    Args:
        session: Session with ``start_session`` already called.
        scheduler: The scheduler the session was built with.
        next_opening: Starts the session on another opening.
        console: Rich console to draw on.
    """
    console = console or Console()
    done = False

    def _quit() -> None:
        nonlocal done
        done = True

    while not done:
        await scheduler.wait_idle()
        console.print(render_practice(session.snapshot()))

        if session.is_user_turn:
            text = Prompt.ask("Your move", console=console).strip()
            if text == "quit":
                session.end_session_early()
            elif text == "reset":
                session.reset_session()
            else:
                move = session.board.parse_move(text)
                if move is None or not session.submit_move(
                    move.origin, move.destination, move.promotion
                ):
                    console.print(f"[red]Illegal move: {text}[/red]")
            continue

        if not session.is_terminal:
            # The opponent reply failed; wait_idle() drained everything
            console.print("[red]The opponent could not move; ending the session.[/red]")
            session.end_session_early()
            continue

        reward = session.last_reward
        if reward is not None:
            console.print(f"+{reward.total_xp} XP (level {reward.level}, streak {reward.current_streak})")
            for achievement in reward.new_achievements:
                console.print(f"[bold magenta]Achievement unlocked: {achievement.name}[/bold magenta]")

        actions = {"next": next_opening, "retry": session.reset_session, "quit": _quit}
        choice = Prompt.ask(
            "What next?", choices=list(actions), default="next", console=console
        )
        queued = not session.request_action(actions[choice])
        if queued and session.acknowledge_interaction():
            rating = Prompt.ask(
                "How hard was it?", choices=[*RATINGS, "skip"], default="skip",
                console=console,
            )
            if rating == "skip":
                session.skip_rating()
            else:
                session.submit_rating(rating)

    await scheduler.wait_idle()
