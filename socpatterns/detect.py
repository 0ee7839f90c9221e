from __future__ import annotations

import argparse
import sys
from datetime import datetime
from typing import List

import structlog
from sqlalchemy.exc import SQLAlchemyError

from socpatterns.config import SETTINGS, Settings
from socpatterns.db import init_db, make_engine, ping
from socpatterns.logging_config import setup_logging
from socpatterns.persistence.patterns import PatternStore
from socpatterns.runtime.engine import RunReport, run_detection
from socpatterns.schemas import ACTIVITY_SPIKE, REACTIVATED_ACTOR
from socpatterns.sources.incidents import IncidentSource
from socpatterns.utils.time import now_utc, parse_ts, to_iso_utc

logger = structlog.get_logger(__name__)

EXIT_STORE_UNREACHABLE = 2
MAX_LISTED_REACTIVATIONS = 5


def format_summary(report: RunReport, settings: Settings) -> str:
    lines: List[str] = [
        "=== Temporal Pattern Detection ===",
        f"Run time: {to_iso_utc(report.now)}",
        f"Dormancy threshold: {settings.dormancy_threshold_days} days",
        f"Reactivation window: {settings.reactivation_window_days} days",
        "",
        f"Total patterns detected: {len(report.patterns)}",
    ]
    if not report.patterns:
        lines.append("No temporal patterns detected")

    persist = report.persist
    lines.append(f"Inserted: {persist.inserted}, Updated: {persist.updated}, Failed: {persist.failed}")

    by_type = report.by_type()
    if by_type:
        lines += ["", "By pattern type:"]
        for pattern_type, found in by_type.items():
            lines.append(f"  {pattern_type}: {len(found)}")

    reactivated = by_type.get(REACTIVATED_ACTOR, [])
    if reactivated:
        lines += ["", "Reactivated actors (potential threat):"]
        for p in reactivated[:MAX_LISTED_REACTIVATIONS]:
            lines.append(f"  - {p.data['actor_name']}: dormant for {p.data['dormant_days']} days")
        if len(reactivated) > MAX_LISTED_REACTIVATIONS:
            lines.append(f"  ... and {len(reactivated) - MAX_LISTED_REACTIVATIONS} more")

    spikes = by_type.get(ACTIVITY_SPIKE, [])
    if spikes:
        lines += ["", "Activity anomalies:"]
        for p in spikes:
            d = p.data
            lines.append(
                f"  - {d['direction']}: {d['recent_avg']}/day vs baseline {d['baseline_avg']}/day ({d['ratio']}x)"
            )

    if report.detector_failures:
        lines += ["", "Detector failures:"]
        for name, reason in report.detector_failures.items():
            lines.append(f"  - {name}: {reason}")

    return "\n".join(lines)


def _parse_now(value: str) -> datetime:
    try:
        return parse_ts(value)
    except (ValueError, OverflowError) as e:
        raise argparse.ArgumentTypeError(f"invalid timestamp: {value!r}") from e


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Detect reactivated/dormant actors and activity spikes in incident history.")
    p.add_argument("--dormancy-days", type=int, default=SETTINGS.dormancy_threshold_days, help="Dormancy threshold in days")
    p.add_argument("--db", default=SETTINGS.database_url, help="Database URL holding incidents and detected_patterns")
    p.add_argument("--now", type=_parse_now, default=None, help="Evaluate as of this ISO-8601 time (default: now)")
    p.add_argument("--timeout", type=float, default=SETTINGS.store_timeout_seconds, help="Store timeout in seconds")
    p.add_argument("--dry-run", action="store_true", help="Detect and report without writing patterns")
    p.add_argument("--log-format", choices=["dev", "json"], default=None)
    args = p.parse_args(argv)

    setup_logging(log_format=args.log_format)
    try:
        settings = SETTINGS.with_dormancy_days(args.dormancy_days)
    except ValueError as e:
        p.error(str(e))

    # Single clock read per run
    now = args.now or now_utc()

    engine = make_engine(args.db, timeout=args.timeout)
    try:
        init_db(engine)
        ping(engine)
    except SQLAlchemyError as e:
        logger.error("store_unreachable", db=args.db, error=str(e))
        print(f"Cannot reach incident/pattern store at {args.db}: {e}", file=sys.stderr)
        return EXIT_STORE_UNREACHABLE

    source = IncidentSource(engine)
    store = None if args.dry_run else PatternStore(engine)
    try:
        report = run_detection(source, store, now, settings)
    finally:
        engine.dispose()

    print(format_summary(report, settings))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
