"""
lineage_tracker.py
==================
Writes a JSON lineage record after every session table build.
Auditability: source dataset -> processing steps -> target table -> duration.
"""

import json
import logging
import os
import uuid
from datetime import datetime, timezone

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class LineageTracker:

    def __init__(self, cfg):
        self.enabled     = cfg.get("lineage.enabled", default=True)
        self.logs_bucket = os.environ.get("LOGS_BUCKET", "")
        self.prefix      = cfg.get("lineage.s3_prefix", default="lineage/")

    def record(self, **kwargs) -> dict:
        """
        Build a lineage record and write it to S3 (or the log).

        Keyword args accepted:
            run_id, source_dataset, input_events, clean_events, target_table,
            output_sessions, partitions, steps, lookback_window_days, tags,
            incremental, engine_used, dq_passed, duration_seconds, error
        """
        if not self.enabled:
            return {}

        record = {
            "run_id":               kwargs.get("run_id", str(uuid.uuid4())),
            "execution_date":       datetime.now(timezone.utc).isoformat(),
            "status":               "FAILED" if kwargs.get("error") else "SUCCEEDED",
            "source_dataset":       kwargs.get("source_dataset", ""),
            "input_events":         kwargs.get("input_events", 0),
            "clean_events":         kwargs.get("clean_events", 0),
            "target_table":         kwargs.get("target_table", ""),
            "output_sessions":      kwargs.get("output_sessions", 0),
            "partitions":           list(kwargs.get("partitions", [])),
            "steps":                list(kwargs.get("steps", [])),
            "lookback_window_days": kwargs.get("lookback_window_days"),
            "tags":                 list(kwargs.get("tags", [])),
            "incremental":          kwargs.get("incremental", False),
            "engine_used":          kwargs.get("engine_used", "python"),
            "dq_passed":            kwargs.get("dq_passed", False),
            "duration_seconds":     round(kwargs.get("duration_seconds", 0.0), 2),
            "git_commit":           os.environ.get("GIT_COMMIT", "local"),
            "attribution_model":    "last_non_direct",
            "error":                kwargs.get("error", None),
        }

        if self.logs_bucket:
            key = f"{self.prefix}{record['execution_date'][:10]}/{record['run_id']}.json"
            try:
                boto3.client("s3").put_object(
                    Bucket=self.logs_bucket,
                    Key=key,
                    Body=json.dumps(record, indent=2),
                    ContentType="application/json",
                )
                logger.info("Lineage record written: s3://%s/%s", self.logs_bucket, key)
            except (BotoCoreError, ClientError) as exc:
                logger.warning("Failed to write lineage record: %s", exc)
        else:
            logger.info("Lineage record (no S3 bucket set): %s", json.dumps(record))

        return record
