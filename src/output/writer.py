"""
writer.py
=========
Session table materialization: tab-delimited, date-partitioned files with
upsert-on-unique-key semantics, optionally mirrored to S3.

    <output_dir>/<schema>/<table>/date=YYYY-MM-DD/sessions.tab

Each run rewrites only the partitions it touches. Rows already in a
partition are merged with the new ones on the unique key (date, session_id);
a new row replaces an existing row with the same key.
"""
import csv
import logging
import os
from datetime import date, datetime
from pathlib import Path

import boto3

logger = logging.getLogger(__name__)


class MissingTargetError(Exception):
    """Raised when a run has no output table configured."""
    pass


def _serialise(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class SessionTableWriter:

    def __init__(self, cfg, output_dir: str = None):
        self.output_dir       = Path(output_dir or cfg.get("target.output_dir", default="output"))
        self.delimiter        = cfg.get("output.file_delimiter", default="\t")
        self.filename         = cfg.get("output.filename",       default="sessions.tab")
        self.prefix           = cfg.get("output.s3_prefix",      default="sessions/")
        self.processed_bucket = os.environ.get("PROCESSED_BUCKET", "")

    # ---------------------------------------------------------------- #
    # Paths
    # ---------------------------------------------------------------- #

    def table_dir(self, table_config: dict) -> Path:
        name = table_config.get("name")
        if not name:
            raise MissingTargetError("Table name is required, please set target.table_name")
        return self.output_dir / table_config.get("schema", "") / name

    def partition_path(self, table_config: dict, partition_value) -> Path:
        column = table_config.get("partition_by", "date")
        return self.table_dir(table_config) / f"{column}={_serialise(partition_value)}" / self.filename

    def table_exists(self, table_config: dict) -> bool:
        table_dir = self.table_dir(table_config)
        return table_dir.is_dir() and any(table_dir.glob(f"*/{self.filename}"))

    # ---------------------------------------------------------------- #
    # Upsert
    # ---------------------------------------------------------------- #

    def upsert(self, sessions: list, table_config: dict) -> dict:
        """
        Merge sessions into their date partitions.

        Returns:
            dict with partitions written, row counts, local paths and S3 URIs.

        Raises:
            MissingTargetError: table_config has no table name. Nothing is
                written in that case.
        """
        self.table_dir(table_config)
        unique_key   = list(table_config.get("unique_key", ["date", "session_id"]))
        partition_by = table_config.get("partition_by", "date")
        cluster_by   = list(table_config.get("cluster_by", []))

        partitions = {}
        for session in sessions:
            partitions.setdefault(_serialise(session.get(partition_by)), []).append(session)

        summary = {"partitions": [], "rows_written": 0, "files": [], "s3_uris": []}
        for partition_value, rows in sorted(partitions.items()):
            path = self.partition_path(table_config, partition_value)
            merged, columns = self._merge(path, rows, unique_key)
            merged.sort(key=lambda r: tuple(r.get(c, "") for c in cluster_by + unique_key))
            self._write(path, merged, columns)

            summary["partitions"].append(partition_value)
            summary["rows_written"] += len(merged)
            summary["files"].append(str(path))
            s3_uri = self.upload_to_s3(path, table_config, partition_value)
            if s3_uri:
                summary["s3_uris"].append(s3_uri)

        logger.info(
            "Upserted %d session(s) into %s across %d partition(s).",
            len(sessions), self.table_dir(table_config), len(summary["partitions"]),
        )
        return summary

    def _merge(self, path: Path, rows: list, unique_key: list) -> tuple:
        columns, merged = [], {}
        if path.exists():
            with open(path, newline="", encoding="utf-8") as fh:
                reader = csv.DictReader(fh, delimiter=self.delimiter)
                columns = list(reader.fieldnames or [])
                for row in reader:
                    merged[tuple(row.get(k, "") for k in unique_key)] = row

        replaced = 0
        for session in rows:
            row = {k: _serialise(v) for k, v in session.items()}
            for column in row:
                if column not in columns:
                    columns.append(column)
            key = tuple(row.get(k, "") for k in unique_key)
            if key in merged:
                replaced += 1
            merged[key] = row

        if replaced:
            logger.info("%s: %d existing row(s) replaced on key %s.", path.parent.name, replaced, unique_key)
        return list(merged.values()), columns

    def _write(self, path: Path, rows: list, columns: list) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", newline="", encoding="utf-8") as fh:
            writer = csv.DictWriter(fh, fieldnames=columns, delimiter=self.delimiter, restval="")
            writer.writeheader()
            writer.writerows(rows)
        logger.debug("Partition written: %s (%d rows)", path, len(rows))

    # ---------------------------------------------------------------- #
    # S3
    # ---------------------------------------------------------------- #

    def upload_to_s3(self, local_path: Path, table_config: dict, partition_value: str) -> str:
        """Upload one partition file to the processed bucket, when configured."""
        if not self.processed_bucket:
            logger.debug("PROCESSED_BUCKET env var not set - skipping S3 upload")
            return ""

        s3_key = (f"{self.prefix}{table_config.get('schema', '')}/{table_config['name']}/"
                  f"{table_config.get('partition_by', 'date')}={partition_value}/{self.filename}")
        s3 = boto3.client("s3")
        with open(local_path, "rb") as f:
            s3.put_object(
                Bucket=self.processed_bucket,
                Key=s3_key,
                Body=f.read(),
                ContentType="text/tab-separated-values",
            )

        s3_uri = f"s3://{self.processed_bucket}/{s3_key}"
        logger.info("Partition uploaded to S3: %s", s3_uri)
        return s3_uri
