"""
Command line entry point for the autonomous profit optimizer.

    profit-optimizer optimize [--dry-run]
    profit-optimizer continuous [--max-cycles N] [--dry-run]
    profit-optimizer status
    profit-optimizer stop [--reason TEXT | --clear]

Runs against the in-memory demo market; an embedding application supplies
its own collaborators to agents.controller.build_controller().
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

import pandas as pd

from agents.controller import CycleController, build_controller
from agents.reporter import ProgressReporter
from config.config import ENV_PREFIX, OptimizationConfig
from connectors.dummy_competitor_intel import build_demo_competitors
from connectors.dummy_execution import DummyPricingService, DummyTransferService
from connectors.dummy_signals import build_demo_market
from connectors.history_store import JsonlRunHistoryStore, results_frame
from connectors.kill_switch import FileKillSwitch
from models.errors import ConfigurationError, CycleFatalError
from models.state import CycleResult
from utils.clock import SystemClock
from utils.event_bus import EventBus
from utils.logger import get_logger

logger = logging.getLogger("demos.profit_optimizer_cli")

EXIT_OK = 0
EXIT_CYCLE_FAILED = 1
EXIT_CONFIG_ERROR = 2

HISTORY_FILE = "run_history.jsonl"


def default_storage_dir() -> Path:
    return Path(os.environ.get(f"{ENV_PREFIX}STORAGE_DIR", "storage"))


def load_config(args: argparse.Namespace) -> OptimizationConfig:
    config = OptimizationConfig.from_env()
    if getattr(args, "dry_run", False):
        config.dry_run = True
    return config.validate()


def create_controller(
    config: OptimizationConfig, storage_dir: Path, event_bus: EventBus
) -> CycleController:
    clock = SystemClock()
    catalog, sales, inventory = build_demo_market()
    return build_controller(
        config,
        catalog,
        sales,
        inventory,
        build_demo_competitors(now=clock.now),
        DummyTransferService(),
        DummyPricingService(),
        FileKillSwitch(storage_dir),
        history_store=JsonlRunHistoryStore(storage_dir / HISTORY_FILE),
        event_bus=event_bus,
        clock=clock,
    )


def print_result(result: CycleResult) -> None:
    rows = [
        {"type": kind, **counts.model_dump()}
        for kind, counts in (
            ("transfers", result.transfers),
            ("price_changes", result.price_changes),
            ("clearances", result.clearances),
        )
    ]
    print(f"\nRun {result.run_id}: {result.outcome.value}")
    print(pd.DataFrame(rows).to_string(index=False))
    print(f"Profit impact: ${result.total_profit_impact:,.2f} "
          f"(estimated ${result.estimated_profit_impact:,.2f})")
    print(f"Market sentiment: {result.market_sentiment.value}; "
          f"competitor data: {result.competitor_data_source}"
          + (" (stale)" if result.competitor_data_stale else ""))
    for diagnostic in result.diagnostics:
        print(f"  ! {diagnostic}")
    if result.next_run_recommended_seconds is not None:
        print(f"Next run recommended in {result.next_run_recommended_seconds:.0f}s")


async def run_optimize(args: argparse.Namespace, config: OptimizationConfig) -> int:
    event_bus = EventBus()
    ProgressReporter(event_bus)
    controller = create_controller(config, args.storage_dir, event_bus)
    try:
        result = await controller.run_once()
    except CycleFatalError as e:
        logger.error(f"Optimization failed: {e}")
        return EXIT_CYCLE_FAILED
    if result is None:
        print("Kill switch is active; no cycle was run. Use `stop --clear` to resume.")
        return EXIT_OK
    print_result(result)
    return EXIT_OK


async def run_continuous(args: argparse.Namespace, config: OptimizationConfig) -> int:
    event_bus = EventBus()
    ProgressReporter(event_bus)
    controller = create_controller(config, args.storage_dir, event_bus)
    try:
        await controller.run_forever(max_cycles=args.max_cycles)
    except asyncio.CancelledError:
        await controller.emergency_stop("interrupted by user")
        raise
    status = controller.status()
    print(f"Stopped after {status['run_number']} runs; cumulative profit impact "
          f"${status['cumulative_profit_impact']:,.2f}")
    return EXIT_OK


def run_status(args: argparse.Namespace) -> int:
    kill_switch = FileKillSwitch(args.storage_dir)
    store = JsonlRunHistoryStore(args.storage_dir / HISTORY_FILE)
    recent = store.recent(args.limit)
    print(f"Kill switch: {'ACTIVE' if kill_switch.is_active() else 'inactive'}")
    if not recent:
        print("No runs recorded yet.")
        return EXIT_OK
    frame = results_frame(recent)
    print(frame.to_string(index=False))
    print(f"Total profit impact (last {len(recent)} runs): ${frame['profit_impact'].sum():,.2f}")
    return EXIT_OK


def run_stop(args: argparse.Namespace) -> int:
    kill_switch = FileKillSwitch(args.storage_dir)
    if args.clear:
        kill_switch.clear()
        print("Kill switch cleared; optimization may resume.")
    else:
        path = kill_switch.activate(args.reason)
        print(f"Kill switch activated ({path}); running loops stop before their next cycle.")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Autonomous profit optimizer")
    parser.add_argument(
        "--storage-dir",
        type=Path,
        default=default_storage_dir(),
        help="Directory holding the kill switch files and run history",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    optimize = subparsers.add_parser("optimize", help="Run one optimization cycle")
    optimize.add_argument("--dry-run", action="store_true", help="Simulate all actions")

    continuous = subparsers.add_parser("continuous", help="Run the optimization loop")
    continuous.add_argument("--dry-run", action="store_true", help="Simulate all actions")
    continuous.add_argument("--max-cycles", type=int, default=None, help="Stop after N cycles")

    status = subparsers.add_parser("status", help="Show kill switch and recent runs")
    status.add_argument("--limit", type=int, default=10, help="Number of runs to show")

    stop = subparsers.add_parser("stop", help="Activate (or clear) the kill switch")
    stop.add_argument("--reason", default="manual stop via CLI")
    stop.add_argument("--clear", action="store_true", help="Remove the kill switch")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    get_logger(level=logging.DEBUG if args.verbose else logging.INFO)

    if args.command == "status":
        return run_status(args)
    if args.command == "stop":
        return run_stop(args)

    try:
        config = load_config(args)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIG_ERROR

    try:
        if args.command == "optimize":
            return asyncio.run(run_optimize(args, config))
        return asyncio.run(run_continuous(args, config))
    except KeyboardInterrupt:
        logger.info("Stopped by user.")
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
