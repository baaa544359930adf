"""
spark_session_pipeline.py
=========================
PySpark implementation of the session attribution pipeline, for export
volumes that do not fit the pure Python path.

Mirrors SessionBuilder for the built-in session fields. Output must match
the Python path row for row on the same input (see
tests/integration/test_spark_parity.py). Declared column / parameter
projections are not carried on this path.

  Step 1 - Read NDJSON export files with an explicit schema
  Step 2 - Extract event rows (identity UDFs, local date, params)
  Step 3 - Deduplicate on event_id
  Step 4 - Group into (date, session_id) rows; first non-direct triple
  Step 5 - Channel (source category + decision table UDFs)
  Step 6 - Last non-direct lookback (Window per user_pseudo_id)

The rule engine and channel table run as UDFs over the same Python code as
the pure Python path, so both paths share one implementation of the rules.

Usage (local):
  spark-submit src/processing/spark_session_pipeline.py \\
    --events-dir tests/data --output output/spark --env dev --local
"""

import argparse
import logging
import os
import sys
import time
from pathlib import Path

from pyspark.sql import SparkSession, Window
from pyspark.sql import functions as F
from pyspark.sql.types import (
    ArrayType, DoubleType, LongType, StringType, StructField, StructType,
)

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from config.config_loader import load_config  # noqa: E402
from config.session_config import SessionConfig  # noqa: E402
from preprocessing.event_source import EventSource  # noqa: E402
from preprocessing.param_extractor import get_query_param  # noqa: E402
from processing.attribution_rules import DEFAULT_TRIPLE, classify_source_medium  # noqa: E402
from processing.channel_grouping import (  # noqa: E402
    DIRECT, classify_channel, load_source_categories, lookup_source_category,
)
from processing.identity import fingerprint  # noqa: E402
from processing.processing_steps import (  # noqa: E402
    CHANNEL_STEP, LAST_NON_DIRECT_STEP, SOURCE_MEDIUM_STEP, attribution_fields,
)

logger = logging.getLogger("spark_session_pipeline")

SRC_DIR = Path(__file__).resolve().parents[1]

_PARAM_VALUE = StructType([
    StructField("string_value", StringType(), True),
    StructField("int_value",    StringType(), True),
    StructField("float_value",  DoubleType(), True),
    StructField("double_value", DoubleType(), True),
])
_PARAMS = ArrayType(StructType([
    StructField("key",   StringType(), True),
    StructField("value", _PARAM_VALUE, True),
]))

# INT64 values arrive as JSON strings or numbers; both read as strings.
EVENT_SCHEMA = StructType([
    StructField("event_timestamp", StringType(), True),
    StructField("event_name",      StringType(), True),
    StructField("user_pseudo_id",  StringType(), True),
    StructField("user_id",         StringType(), True),
    StructField("event_params",    _PARAMS,      True),
])

ATTRIBUTION_COLUMNS = (
    "page_location", "page_referrer", "ignore_referrer",
    "source", "medium", "campaign", "gclid",
    "utm_source", "utm_medium", "utm_campaign",
)

SESSION_COLUMNS = [
    "date", "session_id", "user_pseudo_id", "user_id",
    "session_start", "session_end", "event_count",
    "session_engaged", "engagement_time_msec",
]


# ══════════════════════════════════════════════════════════════════════
# SPARK SESSION
# ══════════════════════════════════════════════════════════════════════

def create_spark_session(app_name="SessionAttribution", local=False):
    """
    Create and configure SparkSession.

    The session timezone is pinned to UTC; local dates are derived
    explicitly with from_utc_timestamp.
    """
    if local:
        # Python workers import the shared rule code from src/.
        paths = [str(SRC_DIR)] + [p for p in os.environ.get("PYTHONPATH", "").split(os.pathsep) if p]
        os.environ["PYTHONPATH"] = os.pathsep.join(dict.fromkeys(paths))

    builder = SparkSession.builder.appName(app_name).config("spark.sql.session.timeZone", "UTC")
    if local:
        builder = (
            builder
            .master("local[*]")
            .config("spark.sql.shuffle.partitions", "8")
            .config("spark.driver.memory", "2g")
        )
    else:
        builder = (
            builder
            .config("spark.sql.shuffle.partitions", "200")
            .config("spark.sql.adaptive.enabled", "true")
            .config("spark.sql.adaptive.coalescePartitions.enabled", "true")
        )

    spark = builder.getOrCreate()
    spark.sparkContext.setLogLevel("WARN")
    return spark


# ══════════════════════════════════════════════════════════════════════
# STEP 1: READ
# ══════════════════════════════════════════════════════════════════════

def read_events(spark, paths):
    """Read NDJSON export files (one GA4 event per line)."""
    paths = [str(p) for p in paths]
    logger.info("Reading %d export file(s).", len(paths))
    return spark.read.schema(EVENT_SCHEMA).json(paths)


# ══════════════════════════════════════════════════════════════════════
# STEP 2: EXTRACT EVENT ROWS
# ══════════════════════════════════════════════════════════════════════

def _param_sql(name, field="string_value"):
    """SQL for the first event_params entry of `name` (null when absent)."""
    return f"try_element_at(filter(event_params, p -> p.key = '{name}'), 1).value.{field}"


def _param(name, field="string_value"):
    return F.expr(_param_sql(name, field))


def _long(sql):
    return F.expr(f"try_cast({sql} AS BIGINT)")


@F.udf(returnType=LongType())
def fingerprint_udf(*parts):
    return fingerprint(*parts)


@F.udf(returnType=StringType())
def query_param_udf(url, name):
    return get_query_param(url, name)


def extract_events(df, session_config):
    """
    One row per event with identities, local date and attribution fields.

    Events with no session param (no session identity) are dropped.
    """
    session_param   = session_config.session_param
    timestamp_param = session_config.timestamp_param

    df = (
        df
        .withColumn("_scope", _long(_param_sql(session_param, "int_value")))
        .filter(F.col("_scope").isNotNull() & F.col("user_pseudo_id").isNotNull())
        .withColumn("_event_ts", _long("event_timestamp"))
    )
    if timestamp_param:
        df = df.withColumn(
            "timestamp",
            F.coalesce(_long(_param_sql(timestamp_param, "int_value")), F.col("_event_ts")),
        )
    else:
        df = df.withColumn("timestamp", F.col("_event_ts"))

    df = (
        df
        .filter(F.col("timestamp").isNotNull())
        .withColumn("engagement_time_msec", _long(_param_sql("engagement_time_msec", "int_value")))
        .withColumn("event_id", fingerprint_udf(
            F.col("timestamp"), F.col("event_name"), F.col("user_pseudo_id"),
            F.coalesce(F.col("engagement_time_msec"), F.lit(0)),
        ))
        .withColumn("session_id", fingerprint_udf(F.col("_scope"), F.col("user_pseudo_id")))
        .withColumn("event_timestamp", F.expr("timestamp_micros(`timestamp`)"))
        .withColumn("date", F.to_date(F.from_utc_timestamp("event_timestamp", session_config.timezone)))
        .withColumn("session_engaged", F.coalesce(
            _long(_param_sql("session_engaged", "int_value")),
            F.when(_param("session_engaged") == "1", F.lit(1).cast(LongType())),
        ))
    )
    for name in ("page_location", "page_referrer", "ignore_referrer",
                 "source", "medium", "campaign", "gclid"):
        df = df.withColumn(name, _param(name))
    for name in ("utm_source", "utm_medium", "utm_campaign"):
        df = df.withColumn(name, query_param_udf(F.col("page_location"), F.lit(name)))
    df = df.withColumn("gclid", F.coalesce(F.col("gclid"), query_param_udf(F.col("page_location"), F.lit("gclid"))))

    return df.select(
        "event_id", "session_id", "date", "timestamp", "event_timestamp",
        "user_pseudo_id", "user_id", "session_engaged", "engagement_time_msec",
        *ATTRIBUTION_COLUMNS,
    )


# ══════════════════════════════════════════════════════════════════════
# STEP 3: DEDUPLICATE
# ══════════════════════════════════════════════════════════════════════

def deduplicate(df):
    df_deduped = df.dropDuplicates(["event_id"])
    logger.info("Deduplicated events on event_id.")
    return df_deduped


# ══════════════════════════════════════════════════════════════════════
# STEP 4: SESSIONS + SOURCE / MEDIUM
# ══════════════════════════════════════════════════════════════════════

def _first_by_order(value_col, condition=None):
    """Value from the earliest (timestamp, event_id) row where condition holds."""
    condition = F.col(value_col).isNotNull() if condition is None else condition
    return F.min(F.when(
        condition, F.struct(F.col("timestamp"), F.col("event_id"), F.col(value_col).alias("v"))
    ))["v"]


def build_sessions(events, session_config, with_source_medium=True):
    """
    Group events into one row per (date, session_id).

    The triple of a session comes from its earliest event whose own
    triple is not the direct default.
    """
    rules = session_config.source_medium_rules

    @F.udf(returnType=StructType([
        StructField("source",   StringType(), True),
        StructField("medium",   StringType(), True),
        StructField("campaign", StringType(), True),
    ]))
    def source_medium_udf(*values):
        triple = classify_source_medium(attribution_fields(dict(zip(ATTRIBUTION_COLUMNS, values))), rules)
        return triple if triple != DEFAULT_TRIPLE else None

    aggregates = [
        _first_by_order("user_pseudo_id").alias("user_pseudo_id"),
        _first_by_order("user_id").alias("user_id"),
        F.min("event_timestamp").alias("session_start"),
        F.max("event_timestamp").alias("session_end"),
        F.count(F.lit(1)).alias("event_count"),
        F.max("session_engaged").alias("session_engaged"),
        F.sum(F.coalesce(F.col("engagement_time_msec"), F.lit(0))).alias("engagement_time_msec"),
    ]
    if with_source_medium:
        events = events.withColumn("_triple", source_medium_udf(*[F.col(c) for c in ATTRIBUTION_COLUMNS]))
        aggregates += [
            _first_by_order("page_location").alias("landing_page"),
            _first_by_order("_triple").alias("_triple"),
        ]

    sessions = events.groupBy("date", "session_id").agg(*aggregates)
    if with_source_medium:
        source, medium, campaign = DEFAULT_TRIPLE
        sessions = (
            sessions
            .withColumn("source",   F.coalesce(F.col("_triple.source"),   F.lit(source)))
            .withColumn("medium",   F.coalesce(F.col("_triple.medium"),   F.lit(medium)))
            .withColumn("campaign", F.coalesce(F.col("_triple.campaign"), F.lit(campaign)))
            .drop("_triple")
        )
    return sessions


# ══════════════════════════════════════════════════════════════════════
# STEP 5: CHANNEL
# ══════════════════════════════════════════════════════════════════════

def with_channel(sessions):
    catalog = dict(load_source_categories())

    @F.udf(returnType=StringType())
    def source_category_udf(source):
        return lookup_source_category(source, catalog)

    @F.udf(returnType=StringType())
    def channel_udf(source, medium, source_category):
        return classify_channel(source, medium, source_category)

    return (
        sessions
        .withColumn("source_category", source_category_udf(F.col("source")))
        .withColumn("channel", channel_udf(F.col("source"), F.col("medium"), F.col("source_category")))
    )


# ══════════════════════════════════════════════════════════════════════
# STEP 6: LAST NON-DIRECT LOOKBACK
# ══════════════════════════════════════════════════════════════════════

def with_last_non_direct(sessions, lookback_window_days):
    """
    Re-attribute Direct sessions to the user's latest earlier non-direct
    session (by original channel) no more than lookback_window_days back.
    """
    window = (
        Window.partitionBy("user_pseudo_id")
        .orderBy(F.col("session_start"), F.col("session_id").cast(StringType()))
        .rowsBetween(Window.unboundedPreceding, -1)
    )
    is_direct = F.col("channel") == F.lit(DIRECT)
    touch = F.when(~is_direct, F.struct("date", "source", "medium", "campaign", "channel"))

    sessions = sessions.withColumn("_touch", F.last(touch, ignorenulls=True).over(window))
    age_days = F.datediff(F.col("date"), F.col("_touch.date"))
    use_touch = is_direct & F.col("_touch").isNotNull() & age_days.between(0, lookback_window_days)

    for field in ("source", "medium", "campaign", "channel"):
        sessions = sessions.withColumn(
            field, F.when(use_touch, F.col(f"_touch.{field}")).otherwise(F.col(field))
        )
    return (
        sessions
        .withColumn("last_non_direct_date", F.when(~is_direct, F.col("date"))
                    .when(use_touch, F.col("_touch.date")))
        .drop("_touch")
    )


# ══════════════════════════════════════════════════════════════════════
# MAIN PIPELINE ORCHESTRATOR
# ══════════════════════════════════════════════════════════════════════

def build_sessions_df(df_events, session_config):
    """Run every configured built-in step on a raw events DataFrame."""
    steps = session_config.processing_steps.names
    events = deduplicate(extract_events(df_events, session_config))

    sessions = build_sessions(events, session_config, with_source_medium=SOURCE_MEDIUM_STEP in steps)
    columns = list(SESSION_COLUMNS)
    if SOURCE_MEDIUM_STEP in steps:
        columns += ["landing_page", "source", "medium", "campaign"]
    if CHANNEL_STEP in steps:
        sessions = with_channel(sessions)
        columns += ["source_category", "channel"]
    if LAST_NON_DIRECT_STEP in steps:
        sessions = with_last_non_direct(sessions, session_config.last_non_direct_lookback_window)
        columns += ["last_non_direct_date"]

    delete = set(session_config.post_processing["delete"])
    return sessions.select(*[c for c in columns if c not in delete])


def run_pipeline(events_dir, output_path, env="dev", local=False, incremental=False,
                 start_date=None, end_date=None):
    """Read, build and write the sessions table. Returns the session count."""
    start_ts = time.time()
    cfg = load_config(env)
    session_config = SessionConfig.from_config(cfg)
    source = EventSource(events_dir, session_config.source)
    table_name, predicate = session_config.source.table(incremental)
    if predicate is not None:
        logger.warning("where clauses are applied on the Python path only; ignored here.")
    files = source.table_files(table_name, start_date, end_date)
    if not files:
        raise ValueError(f"No export files matched {source.dataset_dir}/{table_name}")

    spark = create_spark_session(local=local)
    try:
        sessions = build_sessions_df(read_events(spark, files), session_config)
        count = sessions.count()
        (
            sessions
            .write
            .partitionBy("date")
            .option("delimiter", "\t")
            .option("header", "true")
            .mode("overwrite")
            .csv(output_path)
        )
        logger.info("Wrote %d session(s) to %s in %.2fs", count, output_path, time.time() - start_ts)
        return count
    finally:
        spark.stop()


def main(argv=None):
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    parser = argparse.ArgumentParser(description="Session attribution pipeline (PySpark)")
    parser.add_argument("--events-dir", required=True)
    parser.add_argument("--output", required=True)
    parser.add_argument("--env", default="dev")
    parser.add_argument("--local", action="store_true")
    parser.add_argument("--incremental", action="store_true")
    parser.add_argument("--start-date", default=None)
    parser.add_argument("--end-date", default=None)
    args = parser.parse_args(argv)

    run_pipeline(args.events_dir, args.output, env=args.env, local=args.local,
                 incremental=args.incremental, start_date=args.start_date, end_date=args.end_date)
    return 0


if __name__ == "__main__":
    sys.exit(main())
