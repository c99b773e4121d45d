"""Command line interface for the Opening Trainer.

Usage:
    python -m opening_trainer.cli list [--difficulty D] [--side S] [--query Q]
    python -m opening_trainer.cli pick [--difficulty D]
    python -m opening_trainer.cli rank [-n N]
    python -m opening_trainer.cli weights
    python -m opening_trainer.cli progress [OPENING_ID]
    python -m opening_trainer.cli history [--limit N]
    python -m opening_trainer.cli stats
    python -m opening_trainer.cli reset (OPENING_ID | --all)
    python -m opening_trainer.cli practice [OPENING_ID] [--side S]
    python -m opening_trainer.cli watch

Every command except practice and watch prints JSON to stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from opening_trainer.catalog import OpeningCatalog
from opening_trainer.errors import TrainerError
from opening_trainer.gamification import GamificationTracker
from opening_trainer.models import DIFFICULTIES, SIDES
from opening_trainer.progress import ProgressStore
from opening_trainer.roulette import OpeningRoulette
from opening_trainer.session import AsyncioScheduler, PracticeSession
from opening_trainer.settings import Settings, configure_logging, load_settings

SNAPSHOT_FILE = "current_practice.json"


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _candidates(catalog: OpeningCatalog, difficulty: str | None = None) -> list:
    if difficulty:
        return catalog.by_difficulty(difficulty)
    return catalog.all()


def _cli_list(catalog: OpeningCatalog, difficulty, side, query) -> None:
    openings = catalog.search(query) if query else catalog.all()
    if difficulty:
        openings = [o for o in openings if o.difficulty == difficulty]
    if side:
        openings = [o for o in openings if o.side == side]
    _print_json([o.to_dict() for o in openings])


async def _cli_pick(catalog: OpeningCatalog, store: ProgressStore, difficulty) -> None:
    progress = await store.get_all()
    opening = OpeningRoulette().select(_candidates(catalog, difficulty), progress)
    _print_json(opening.to_dict(include_lines=True))


async def _cli_rank(catalog: OpeningCatalog, store: ProgressStore, n: int) -> None:
    progress = await store.get_all()
    ranked = OpeningRoulette().rank(catalog.all(), progress, n)
    _print_json([o.to_dict() for o in ranked])


async def _cli_weights(catalog: OpeningCatalog, store: ProgressStore) -> None:
    progress = await store.get_all()
    selections = OpeningRoulette().weight_distribution(catalog.all(), progress)
    _print_json([
        {
            "opening_id": s.opening.id,
            "weight": round(s.weight, 3),
            "reason": s.reason,
            "last_practiced_at": s.last_practiced_at,
        }
        for s in selections
    ])


async def _cli_progress(store: ProgressStore, opening_id: str | None) -> None:
    if opening_id:
        record = await store.get(opening_id)
        _print_json(record.to_dict() if record else None)
        return
    records = await store.get_all()
    _print_json({key: record.to_dict() for key, record in records.items()})


async def _cli_history(store: ProgressStore, limit: int) -> None:
    history = await store.list_session_history()
    _print_json([stats.to_dict() for stats in history[-limit:]])


async def _cli_stats(store: ProgressStore) -> None:
    tracker = GamificationTracker(store)
    summary = await tracker.summary()
    summary["locked"] = await tracker.locked_achievements()
    _print_json(summary)


async def _cli_reset(store: ProgressStore, opening_id: str | None) -> None:
    if opening_id:
        _print_json({"opening_id": opening_id, "reset": await store.reset(opening_id)})
        return
    await store.clear_all()
    _print_json({"reset": "all"})


async def _cli_practice(
    settings: Settings,
    catalog: OpeningCatalog,
    store: ProgressStore,
    opening_id: str | None,
    side: str | None,
) -> None:
    from opening_trainer import tui

    scheduler = AsyncioScheduler()
    session = PracticeSession(
        store,
        scheduler,
        reply_delay=settings.reply_delay,
        first_move_delay=settings.first_move_delay,
        gamification=GamificationTracker(store),
    )
    roulette = OpeningRoulette()
    progress = await store.get_all()

    if opening_id:
        opening = catalog.require(opening_id)
    else:
        opening = roulette.select(catalog.all(), progress)
    session.start_session(opening, side or opening.side)

    def next_opening() -> None:
        # Weights use the progress read when practice began
        chosen = roulette.select(catalog.all(), progress)
        session.start_session(chosen, side or chosen.side)

    await tui.play(session, scheduler, next_opening)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the opening trainer."""
    parser = argparse.ArgumentParser(
        description="Opening Trainer - drill chess opening lines"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    list_parser = subparsers.add_parser("list", help="List openings")
    list_parser.add_argument("--difficulty", choices=DIFFICULTIES, default=None)
    list_parser.add_argument("--side", choices=SIDES, default=None)
    list_parser.add_argument("--query", type=str, default=None,
                             help="Match name, ECO code or tag")

    pick_parser = subparsers.add_parser("pick", help="Draw an opening from the roulette")
    pick_parser.add_argument("--difficulty", choices=DIFFICULTIES, default=None)

    rank_parser = subparsers.add_parser("rank", help="Top openings by roulette weight")
    rank_parser.add_argument("-n", type=int, default=5, help="How many to show")

    subparsers.add_parser("weights", help="Roulette weight of every opening")

    progress_parser = subparsers.add_parser("progress", help="Show progress records")
    progress_parser.add_argument("opening_id", nargs="?", default=None)

    history_parser = subparsers.add_parser("history", help="Recent practice sessions")
    history_parser.add_argument("--limit", type=int, default=20)

    subparsers.add_parser("stats", help="XP, level, streak and achievements")

    reset_parser = subparsers.add_parser("reset", help="Delete stored progress")
    reset_target = reset_parser.add_mutually_exclusive_group(required=True)
    reset_target.add_argument("opening_id", nargs="?", default=None)
    reset_target.add_argument("--all", action="store_true",
                              help="Delete progress, history and gamification data")

    practice_parser = subparsers.add_parser("practice", help="Practice in the terminal")
    practice_parser.add_argument("opening_id", nargs="?", default=None,
                                 help="Opening to practice (default: roulette pick)")
    practice_parser.add_argument("--side", choices=SIDES, default=None)

    subparsers.add_parser("watch", help="Follow the MCP server's current session")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    settings = load_settings()
    configure_logging(settings.log_level)

    if args.command == "watch":
        from opening_trainer import tui

        tui.watch(settings.data_dir / SNAPSHOT_FILE)
        return

    store = ProgressStore(settings.data_dir)
    try:
        catalog = OpeningCatalog(settings.catalog_path)
        if args.command == "list":
            _cli_list(catalog, args.difficulty, args.side, args.query)
        elif args.command == "pick":
            asyncio.run(_cli_pick(catalog, store, args.difficulty))
        elif args.command == "rank":
            asyncio.run(_cli_rank(catalog, store, args.n))
        elif args.command == "weights":
            asyncio.run(_cli_weights(catalog, store))
        elif args.command == "progress":
            asyncio.run(_cli_progress(store, args.opening_id))
        elif args.command == "history":
            asyncio.run(_cli_history(store, args.limit))
        elif args.command == "stats":
            asyncio.run(_cli_stats(store))
        elif args.command == "reset":
            asyncio.run(_cli_reset(store, None if args.all else args.opening_id))
        elif args.command == "practice":
            asyncio.run(_cli_practice(settings, catalog, store, args.opening_id, args.side))
    except TrainerError as exc:
        print(json.dumps({"error": str(exc)}), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
