"""
run_sessions.py
===============
Command-line entry point: builds the sessions table from GA4 export files.

Stages
------
  1. Config        config.yaml + config.{env}.yaml -> SessionConfig
  2. Read          EventSource (incremental when the target table exists)
  3. Preprocess    schema / datatype / session scope / duplicate checks
  4. Build         SessionBuilder (source/medium, channel, last non-direct)
  5. Assert        unique (date, session_id), not-null key columns
  6. Write         date-partitioned upsert, optional S3 mirror
  7. Lineage       JSON run record (S3 when LOGS_BUCKET is set)

Nothing is written when a stage before Write fails.

Usage
-----
    # dev config, reads tests/data/<dataset>/events_*.json
    python src/run_sessions.py

    # one week, full refresh, no lookback step
    python src/run_sessions.py --env prod --events-dir /data/ga4 \\
        --start-date 2024-03-01 --end-date 2024-03-07 \\
        --full-refresh --skip-step sessions_with_last_non_direct
"""

import argparse
import logging
import os
import sys
import time
import uuid

# Lets the script run from the project root without installing the package.
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pandas as pd  # noqa: E402

from config.config_loader                 import ConfigurationError, load_config  # noqa: E402
from config.session_config                import SessionConfig  # noqa: E402
from governance.assertions                import AssertionFailure, SessionAssertions  # noqa: E402
from governance.lineage_tracker           import LineageTracker  # noqa: E402
from output.writer                        import MissingTargetError, SessionTableWriter  # noqa: E402
from preprocessing.event_source           import EventSource  # noqa: E402
from preprocessing.preprocessing_pipeline import EventPreprocessingPipeline  # noqa: E402
from preprocessing.schema_validator       import SchemaValidationError  # noqa: E402
from processing.pipeline                  import DependencyViolation  # noqa: E402
from processing.session_builder           import SessionBuilder  # noqa: E402

logger = logging.getLogger("run_sessions")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"

PREVIEW_COLUMNS = ["date", "session_id", "source", "medium", "campaign", "channel", "landing_page"]


def print_preview(sessions: list, limit: int = 10) -> None:
    """Print the first sessions to stdout so a run is visible without opening a file."""
    if not sessions:
        return
    df = pd.DataFrame(sessions)
    columns = [c for c in PREVIEW_COLUMNS if c in df.columns]
    print("\nSessions Preview")
    print("=" * 16)
    print(df[columns].head(limit).to_string(index=False))
    if "channel" in df.columns:
        print("\nSessions by channel")
        print(df["channel"].value_counts().to_string())
    print()


# ---------------------------------------------------------------------------
# CLI entry-point
# ---------------------------------------------------------------------------

def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Build the GA4 sessions table with last-non-direct attribution.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--env",
        default=None,
        help="Config environment (config.{env}.yaml); default: $APP_ENV or dev",
    )
    parser.add_argument(
        "--events-dir",
        default=None,
        metavar="PATH",
        help="Directory holding <dataset>/events_*.json  (default: source.events_dir)",
    )
    parser.add_argument(
        "--output-dir",
        default=None,
        metavar="PATH",
        help="Root of the materialized tables  (default: target.output_dir)",
    )
    parser.add_argument("--start-date", default=None, metavar="YYYY-MM-DD",
                        help="First export table date to read")
    parser.add_argument("--end-date", default=None, metavar="YYYY-MM-DD",
                        help="Last export table date to read")
    parser.add_argument(
        "--full-refresh",
        action="store_true",
        help="Read the non-incremental table even when the target table exists",
    )
    parser.add_argument(
        "--skip-step",
        action="append",
        default=[],
        metavar="STEP",
        help="Remove a processing step by name (repeatable, dependents first)",
    )
    parser.add_argument(
        "--no-preview",
        action="store_true",
        help="Suppress the stdout table preview",
    )
    return parser.parse_args(argv)


def run(args) -> int:
    start_ts = time.time()
    run_id   = str(uuid.uuid4())

    # -- 1. Config ------------------------------------------------------------
    try:
        cfg = load_config(args.env)
    except ConfigurationError as exc:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
        logger.error("Configuration could not be loaded: %s", exc)
        return 1

    logging.basicConfig(
        level=getattr(logging, str(cfg.get("logging.level", default="INFO")).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    lineage = LineageTracker(cfg)
    stats   = {"run_id": run_id, "incremental": False, "engine_used": "python"}

    try:
        session_cfg = SessionConfig.from_config(cfg)
        for step_name in args.skip_step:
            session_cfg.skip_step(step_name)

        table_config = session_cfg.table_config()
        writer       = SessionTableWriter(cfg, output_dir=args.output_dir)
        writer.table_dir(table_config)

        stats.update(
            source_dataset=session_cfg.source.dataset,
            target_table=f"{table_config['schema']}.{table_config['name']}",
            steps=session_cfg.processing_steps.names,
            lookback_window_days=session_cfg.last_non_direct_lookback_window,
            tags=session_cfg.tags,
        )

        # -- 2. Read ----------------------------------------------------------
        events_dir = args.events_dir or cfg.get("source.events_dir")
        if not events_dir or str(events_dir).startswith("${"):
            raise ConfigurationError("No events directory: pass --events-dir or set EVENTS_DIR")
        incremental = (
            not args.full_refresh
            and bool(session_cfg.source.incremental_table_name)
            and writer.table_exists(table_config)
        )
        stats["incremental"] = incremental
        source = EventSource(events_dir, session_cfg.source)
        events = source.read(incremental=incremental, start_date=args.start_date, end_date=args.end_date)
        stats["input_events"] = len(events)

        # -- 3. Preprocess ----------------------------------------------------
        clean, errors, dq_report = EventPreprocessingPipeline(cfg).run(events)
        stats["clean_events"] = len(clean)
        stats["dq_passed"]    = dq_report["overall_passed"]
        if errors:
            logger.warning("%d event(s) rejected by preprocessing.", len(errors))

        # -- 4. Build ---------------------------------------------------------
        sessions = SessionBuilder(session_cfg).build(clean)

        # -- 5. Assert --------------------------------------------------------
        SessionAssertions(cfg).run(sessions)

        # -- 6. Write ---------------------------------------------------------
        summary = writer.upsert(sessions, table_config)
        stats["output_sessions"] = len(sessions)
        stats["partitions"]      = summary["partitions"]

    except (ConfigurationError, DependencyViolation, MissingTargetError,
            SchemaValidationError, AssertionFailure, ValueError, OSError) as exc:
        logger.error("Session build failed: %s", exc, exc_info=True)
        lineage.record(error=str(exc), duration_seconds=time.time() - start_ts, **stats)
        return 1

    # -- 7. Lineage -----------------------------------------------------------
    lineage.record(duration_seconds=time.time() - start_ts, **stats)
    logger.info(
        "=== Run %s complete. Sessions: %d | Partitions: %d | Duration: %.2fs ===",
        run_id, len(sessions), len(summary["partitions"]), time.time() - start_ts,
    )

    if not args.no_preview:
        print_preview(sessions)
    return 0


def main(argv=None) -> int:
    return run(parse_args(argv))


if __name__ == "__main__":
    sys.exit(main())
