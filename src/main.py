# src/main.py — v1
"""CLI entry point: start, continue, status, cancel, retry, list, cleanup, health, api.

Usage:
    pulsecollect start "<instruction>" [--follow]
    pulsecollect continue [run_id]
    pulsecollect status <run_id>
    pulsecollect cancel <run_id>
    pulsecollect retry <run_id>
    pulsecollect list [--limit N]
    pulsecollect cleanup [--keep N]
    pulsecollect health
    pulsecollect api <action> [--param key=value ...] [--body JSON]

Without --follow a run advances one invocation at a time; an external
timer (cron, a serverless schedule) calls ``pulsecollect continue``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from pulsecollect.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        settings = _load_settings()
    except Exception as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    _setup_logging(settings, args.verbose)
    args.settings = settings

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pulsecollect",
        description=f"pulsecollect v{__version__}: resumable social media collection",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- start ---
    p_start = subparsers.add_parser("start", help="Start a new collection run")
    p_start.add_argument("instruction", help="Natural-language collection request")
    p_start.add_argument(
        "--external-run-id", default=None,
        help="Use this run id instead of generating one",
    )
    p_start.add_argument(
        "--target-container", default=None,
        help="Parent container for run artifacts",
    )
    p_start.add_argument(
        "--follow", action="store_true",
        help="Keep running in-process until the run is finished",
    )
    p_start.set_defaults(func=_cmd_start)

    # --- continue ---
    p_continue = subparsers.add_parser(
        "continue", help="Resume a run for one invocation (oldest pending if omitted)",
    )
    p_continue.add_argument("run_id", nargs="?", default=None)
    p_continue.set_defaults(func=_cmd_continue)

    # --- status ---
    p_status = subparsers.add_parser("status", help="Show run status")
    p_status.add_argument("run_id")
    p_status.add_argument("--json", action="store_true", help="Print raw JSON")
    p_status.set_defaults(func=_cmd_status)

    # --- cancel / retry ---
    p_cancel = subparsers.add_parser("cancel", help="Cancel a running run")
    p_cancel.add_argument("run_id")
    p_cancel.set_defaults(func=_cmd_cancel)

    p_retry = subparsers.add_parser("retry", help="Retry a failed run")
    p_retry.add_argument("run_id")
    p_retry.set_defaults(func=_cmd_retry)

    # --- list ---
    p_list = subparsers.add_parser("list", help="List recent runs")
    p_list.add_argument("--limit", type=int, default=10)
    p_list.set_defaults(func=_cmd_list)

    # --- cleanup ---
    p_cleanup = subparsers.add_parser("cleanup", help="Delete old finished run states")
    p_cleanup.add_argument(
        "--keep", type=int, default=None,
        help="Runs to keep (default: RETENTION_KEEP)",
    )
    p_cleanup.set_defaults(func=_cmd_cleanup)

    # --- health ---
    p_health = subparsers.add_parser("health", help="Check configuration and backends")
    p_health.set_defaults(func=_cmd_health)

    # --- api ---
    p_api = subparsers.add_parser("api", help="Call the JSON API handler")
    p_api.add_argument("action")
    p_api.add_argument(
        "--param", action="append", default=[], metavar="KEY=VALUE",
        help="Query parameter (repeatable)",
    )
    p_api.add_argument("--body", default=None, help="JSON request body")
    p_api.set_defaults(func=_cmd_api)

    return parser


async def _cmd_start(args: argparse.Namespace) -> int:
    """Start a run; with --follow, drive it to completion in-process."""
    from pulsecollect.core.models import RunOptions

    scheduler = None
    if args.follow:
        from pulsecollect.scheduling.asyncio_scheduler import AsyncioContinuationScheduler

        scheduler = AsyncioContinuationScheduler(delay_s=args.settings.continuation_delay_s)

    orchestrator = _orchestrator(args, scheduler)
    try:
        result = await orchestrator.start_run(
            args.instruction,
            RunOptions(
                external_run_id=args.external_run_id,
                target_container_id=args.target_container,
                origin="cli",
            ),
        )
        print(f"\nRun started:")
        print(f"  Run ID:   {result.run_id}")
        print(f"  Status:   {result.status}")
        print(f"  Output:   {result.sink_location}")
        if result.plan is not None:
            targets = ", ".join(
                f"{s}={n}" for s, n in result.plan.target_counts.items() if n > 0
            )
            print(f"  Targets:  {targets or 'none'}")

        if not args.follow:
            print("\nRun `pulsecollect continue` to collect.")
            return 0

        await scheduler.wait_idle()
        summary = await orchestrator.get_run_status(result.run_id)
        _print_status(summary)
        return 0 if summary.status == "COMPLETED" else 1
    finally:
        await orchestrator.aclose()


async def _cmd_continue(args: argparse.Namespace) -> int:
    orchestrator = _orchestrator(args)
    try:
        summary = await orchestrator.continue_run(args.run_id)
    finally:
        await orchestrator.aclose()
    if summary is None:
        print("Nothing to continue.")
        return 0
    _print_status(summary)
    return 1 if summary.status == "FAILED" else 0


async def _cmd_status(args: argparse.Namespace) -> int:
    orchestrator = _orchestrator(args)
    try:
        summary = await orchestrator.get_run_status(args.run_id)
    finally:
        await orchestrator.aclose()
    if args.json:
        print(summary.model_dump_json(indent=2))
    else:
        _print_status(summary)
    return 0


async def _cmd_cancel(args: argparse.Namespace) -> int:
    orchestrator = _orchestrator(args)
    try:
        result = await orchestrator.cancel_run(args.run_id)
    finally:
        await orchestrator.aclose()
    print(f"{result.run_id}: {result.message}")
    return 0


async def _cmd_retry(args: argparse.Namespace) -> int:
    orchestrator = _orchestrator(args)
    try:
        result = await orchestrator.retry_run(args.run_id)
    finally:
        await orchestrator.aclose()
    print(f"{result.run_id}: {result.message}")
    return 0


async def _cmd_list(args: argparse.Namespace) -> int:
    orchestrator = _orchestrator(args)
    try:
        runs = await orchestrator.list_runs(args.limit)
    finally:
        await orchestrator.aclose()
    if not runs:
        print("No runs.")
        return 0
    for run in runs:
        total = sum(p.collected for p in run.progress.values())
        print(f"{run.run_id}  {run.status:<10s}  {total:>5d} collected  {run.last_message or ''}")
    return 0


async def _cmd_cleanup(args: argparse.Namespace) -> int:
    orchestrator = _orchestrator(args)
    try:
        deleted = await orchestrator.cleanup_old_runs(args.keep)
    finally:
        await orchestrator.aclose()
    print(f"Deleted {deleted} old run(s).")
    return 0


async def _cmd_health(args: argparse.Namespace) -> int:
    from pulsecollect.api.facade import health_check

    report = await health_check(args.settings)
    print(json.dumps(report, indent=2, default=str))
    return 0 if report["healthy"] else 1


async def _cmd_api(args: argparse.Namespace) -> int:
    from pulsecollect.api.handler import route_api_request

    params: dict[str, Any] = {}
    for pair in args.param:
        key, sep, value = pair.partition("=")
        if not sep:
            print(f"Invalid --param {pair!r}, expected KEY=VALUE", file=sys.stderr)
            return 2
        params[key] = value

    orchestrator = _orchestrator(args)
    try:
        response = await route_api_request(
            orchestrator, args.action, params, body=args.body,
            secret=args.settings.api_secret,
        )
    finally:
        await orchestrator.aclose()
    print(response.model_dump_json(indent=2))
    return 0 if response.ok else 1


def _orchestrator(args: argparse.Namespace, scheduler: Any = None) -> Any:
    from pulsecollect.api.facade import build_orchestrator

    return build_orchestrator(args.settings, scheduler=scheduler)


def _print_status(summary: Any) -> None:
    """Print a human-readable RunStatusSummary."""
    print(f"\nRun {summary.run_id}:")
    print(f"  Status:   {summary.status}"
          + (f" ({summary.current_source})" if summary.current_source else ""))
    for source, progress in summary.progress.items():
        if progress.target > 0:
            print(f"  {source:<10s} {progress.collected}/{progress.target}")
    if summary.last_message:
        print(f"  Message:  {summary.last_message}")
    if summary.last_error:
        print(f"  Error:    {summary.last_error}")
    if summary.warning:
        print(f"  Warning:  {summary.warning}")
    if summary.sink_location:
        print(f"  Output:   {summary.sink_location}")


def _load_settings() -> Any:
    from pulsecollect.config.settings import load_settings

    return load_settings()


def _setup_logging(settings: Any, verbose: bool) -> None:
    """Configure logging for CLI usage."""
    from pulsecollect.logging.logger import setup_logging

    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format="text" if verbose else settings.log_format,
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


if __name__ == "__main__":
    sys.exit(main())
