"""Command-line entry points.

``vulndelta check`` runs one tick, ``vulndelta watch`` keeps ticking on
a fixed interval (the bundled scheduler), ``vulndelta show`` and
``vulndelta reset`` inspect and clear stored checkpoints.
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Callable, Sequence

from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from . import __version__
from .checkpoint import CheckpointStore
from .client import FeedClient, requests_session
from .config import ScheduleConfig, Settings, build_store, find_settings, load_settings
from .detector import ChangeDetector
from .errors import CheckError, ConfigError
from .models import ChangeResult
from .notifications import deliver, load_providers
from .report import write_markdown_report

logger = logging.getLogger(__name__)


def _configure_logging(verbose: int, quiet: bool) -> None:
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, CheckError) and exc.transient


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning("Attempt %d failed (%s), retrying", state.attempt_number, exc)


def run_tick(
    detector: ChangeDetector,
    feed_ids: Sequence[str],
    schedule: ScheduleConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, ChangeResult | CheckError]:
    """Run one scheduled tick, retrying transient failures per feed.

    Persistent failures (bad gzip, undecodable feed) are not retried;
    they would fail the same way until upstream changes.

    Args:
        detector: Configured change detector.
        feed_ids: Feeds to check.
        schedule: Retry settings.
        sleep: Sleep function used between attempts.

    Returns:
        Mapping of feed id to ``ChangeResult`` or the final ``CheckError``.
    """
    results: dict[str, ChangeResult | CheckError] = {}
    for feed_id in feed_ids:
        retrying = Retrying(
            stop=stop_after_attempt(schedule.retry_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=schedule.retry_max_wait),
            retry=retry_if_exception(_is_transient),
            before_sleep=_log_retry,
            sleep=sleep,
            reraise=True,
        )
        try:
            results[feed_id] = retrying(detector.run_check, feed_id)
        except CheckError as e:
            results[feed_id] = e
    return results


def _result_to_dict(outcome: ChangeResult | CheckError) -> dict[str, Any]:
    if isinstance(outcome, CheckError):
        return {
            "ok": False,
            "feed_id": outcome.feed_id,
            "stage": outcome.stage.value,
            "error": type(outcome).__name__,
            "transient": outcome.transient,
            "message": outcome.message,
        }
    return {
        "ok": True,
        "feed_id": outcome.feed_id,
        "snapshot_hash": outcome.snapshot_hash,
        "checked_at": outcome.checked_at.isoformat() if outcome.checked_at else None,
        "fast_path": outcome.fast_path,
        "first_run": outcome.first_run,
        "total_records": outcome.total_records,
        "changes": [
            {
                "cve_id": c.cve_id,
                "change_type": c.change_type,
                "new_hash": c.new_hash,
                "old_hash": c.old_hash,
            }
            for c in outcome.changes
        ],
    }


def _print_results(results: dict[str, ChangeResult | CheckError], as_json: bool) -> None:
    if as_json:
        print(json.dumps({k: _result_to_dict(v) for k, v in results.items()}, indent=2))
        return
    for feed_id, outcome in results.items():
        if isinstance(outcome, CheckError):
            kind = "transient" if outcome.transient else "persistent"
            print(f"❌ {feed_id}: {type(outcome).__name__} at {outcome.stage.value} ({kind}): {outcome.message}")
        elif outcome.fast_path:
            print(f"✅ {feed_id}: unchanged")
        else:
            suffix = " (first run)" if outcome.first_run else ""
            print(
                f"✅ {feed_id}: {len(outcome)} changed of {outcome.total_records} "
                f"({len(outcome.new)} new, {len(outcome.modified)} modified){suffix}"
            )
            for change in outcome.changes:
                print(f"    {change}")


def _build(settings: Settings, store: CheckpointStore | None = None) -> ChangeDetector:
    client = FeedClient(
        settings.feed_urls,
        session=requests_session(settings.http.user_agent),
        timeout=settings.http.timeout,
    )
    return ChangeDetector(client, store or build_store(settings.store))


def _select_feeds(settings: Settings, requested: Sequence[str]) -> list[str]:
    if not requested:
        return settings.feed_ids
    unknown = [f for f in requested if f not in settings.feed_urls]
    if unknown:
        raise ConfigError(f"unknown feed(s): {', '.join(unknown)} (configured: {', '.join(settings.feed_ids)})")
    return list(requested)


def _after_tick(
    settings: Settings,
    results: dict[str, ChangeResult | CheckError],
    args: argparse.Namespace,
) -> None:
    _print_results(results, getattr(args, "json", False))
    if args.report:
        write_markdown_report(Path(args.report), results)
        print(f"Report written to {args.report}")
    if args.notify:
        providers = load_providers(settings.notifications)
        if not providers:
            print("No notification routes configured, skipping delivery")
        else:
            failures = deliver(providers, results)
            if failures:
                print(f"⚠️ {failures} notification(s) failed")


def cmd_check(settings: Settings, args: argparse.Namespace) -> int:
    detector = _build(settings)
    feed_ids = _select_feeds(settings, args.feeds)
    if args.parallel:
        results = detector.run_all_parallel(feed_ids)
    else:
        results = detector.run_all(feed_ids)
    _after_tick(settings, results, args)
    return 1 if any(isinstance(v, CheckError) for v in results.values()) else 0


def cmd_watch(settings: Settings, args: argparse.Namespace, sleep: Callable[[float], None] | None = None) -> int:
    sleep = sleep or time.sleep
    detector = _build(settings)
    feed_ids = _select_feeds(settings, args.feeds)
    interval = args.interval or settings.schedule.interval_seconds
    print(f"Watching {', '.join(feed_ids)} every {interval}s")

    tick = 0
    try:
        while True:
            tick += 1
            logger.info("Tick %d", tick)
            results = run_tick(detector, feed_ids, settings.schedule, sleep=sleep)
            _after_tick(settings, results, args)
            if args.max_ticks and tick >= args.max_ticks:
                break
            sleep(interval)
    except KeyboardInterrupt:
        print("Interrupted, stopping")
    return 0


def cmd_show(settings: Settings, args: argparse.Namespace) -> int:
    store = build_store(settings.store)
    for feed_id in _select_feeds(settings, args.feeds):
        cp = store.load(feed_id)
        if cp is None:
            print(f"{feed_id}: never checked")
            continue
        print(
            f"{feed_id}: checked {cp.checked_at.isoformat()} | "
            f"snapshot {cp.snapshot_hash[:16]}… | {len(cp.record_hashes)} records"
        )
    return 0


def cmd_reset(settings: Settings, args: argparse.Namespace) -> int:
    store = build_store(settings.store)
    for feed_id in _select_feeds(settings, args.feeds):
        if store.delete(feed_id):
            print(f"{feed_id}: checkpoint removed")
        else:
            print(f"{feed_id}: no checkpoint")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vulndelta", description="Report new and modified CVEs in NVD feeds.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", type=Path, default=None, help="Settings file (default: vulndelta.yaml)")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Debug logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Warnings only")
    sub = parser.add_subparsers(dest="command", required=True)

    def _tick_options(p: argparse.ArgumentParser) -> None:
        p.add_argument("feeds", nargs="*", help="Feed ids (default: all configured)")
        p.add_argument("--report", default=None, help="Write a Markdown change report to this path")
        p.add_argument("--notify", action="store_true", help="Deliver results to configured webhooks")
        p.add_argument("--json", action="store_true", help="Print results as JSON")

    p_check = sub.add_parser("check", help="Run one check of each feed")
    _tick_options(p_check)
    p_check.add_argument("--parallel", action="store_true", help="Fetch feeds concurrently")

    p_watch = sub.add_parser("watch", help="Check feeds on a fixed interval")
    _tick_options(p_watch)
    p_watch.add_argument("--interval", type=int, default=None, help="Seconds between ticks")
    p_watch.add_argument("--max-ticks", type=int, default=None, help="Stop after this many ticks")

    p_show = sub.add_parser("show", help="Show stored checkpoints")
    p_show.add_argument("feeds", nargs="*")

    p_reset = sub.add_parser("reset", help="Delete stored checkpoints")
    p_reset.add_argument("feeds", nargs="+")

    return parser


_COMMANDS = {
    "check": cmd_check,
    "watch": cmd_watch,
    "show": cmd_show,
    "reset": cmd_reset,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose, args.quiet)
    try:
        settings = load_settings(args.config or find_settings())
        return _COMMANDS[args.command](settings, args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except CheckError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
