"""
test_writer.py
==============
Unit tests for the date-partitioned session table writer: partition
layout, upsert on the unique key, cluster ordering and the S3 mirror.
"""

import csv
import os
import sys
import tempfile
import unittest
from datetime import date, datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

sys.path.insert(0, str(Path(__file__).parents[2] / "src"))

from config.config_loader import ConfigLoader
from output.writer import MissingTargetError, SessionTableWriter, _serialise

TABLE = {
    "type":         "incremental",
    "schema":       "staging",
    "name":         "sessions",
    "unique_key":   ["date", "session_id"],
    "partition_by": "date",
    "tags":         ["analytics_123"],
}


def _session(session_id, day, channel="Direct", **extra):
    row = {"date": day, "session_id": session_id, "channel": channel,
           "session_start": datetime(day.year, day.month, day.day, 12, tzinfo=timezone.utc)}
    row.update(extra)
    return row


def _read(path):
    with open(path, newline="", encoding="utf-8") as fh:
        return list(csv.DictReader(fh, delimiter="\t"))


class TestSerialise(unittest.TestCase):

    def test_values(self):
        self.assertEqual(_serialise(None), "")
        self.assertEqual(_serialise(date(2024, 3, 1)), "2024-03-01")
        self.assertEqual(_serialise(42), "42")


class TestSessionTableWriter(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.env = patch.dict(os.environ, {"PROCESSED_BUCKET": ""})
        self.env.start()
        self.writer = SessionTableWriter(ConfigLoader.from_dict({}), output_dir=self.tmpdir)

    def tearDown(self):
        self.env.stop()

    def test_missing_table_name_raises(self):
        with self.assertRaises(MissingTargetError):
            self.writer.upsert([_session(1, date(2024, 3, 1))], dict(TABLE, name=None))
        self.assertEqual(os.listdir(self.tmpdir), [])

    def test_partition_layout(self):
        path = self.writer.partition_path(TABLE, date(2024, 3, 1))
        self.assertEqual(path, Path(self.tmpdir) / "staging" / "sessions" / "date=2024-03-01" / "sessions.tab")

    def test_table_exists_after_write(self):
        self.assertFalse(self.writer.table_exists(TABLE))
        self.writer.upsert([_session(1, date(2024, 3, 1))], TABLE)
        self.assertTrue(self.writer.table_exists(TABLE))

    def test_one_file_per_date(self):
        summary = self.writer.upsert(
            [_session(1, date(2024, 3, 1)), _session(2, date(2024, 3, 2)), _session(3, date(2024, 3, 1))],
            TABLE,
        )
        self.assertEqual(summary["partitions"], ["2024-03-01", "2024-03-02"])
        self.assertEqual(summary["rows_written"], 3)
        rows = _read(self.writer.partition_path(TABLE, "2024-03-01"))
        self.assertEqual([r["session_id"] for r in rows], ["1", "3"])

    def test_upsert_replaces_on_unique_key(self):
        day = date(2024, 3, 1)
        self.writer.upsert([_session(1, day), _session(2, day)], TABLE)
        self.writer.upsert([_session(2, day, channel="Email")], TABLE)
        rows = {r["session_id"]: r for r in _read(self.writer.partition_path(TABLE, day))}
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows["2"]["channel"], "Email")
        self.assertEqual(rows["1"]["channel"], "Direct")

    def test_untouched_partitions_kept(self):
        self.writer.upsert([_session(1, date(2024, 3, 1))], TABLE)
        self.writer.upsert([_session(2, date(2024, 3, 2))], TABLE)
        self.assertTrue(self.writer.partition_path(TABLE, "2024-03-01").exists())

    def test_new_columns_added_to_partition(self):
        day = date(2024, 3, 1)
        self.writer.upsert([_session(1, day)], TABLE)
        self.writer.upsert([_session(2, day, landing_page="https://shop.example.com/")], TABLE)
        rows = {r["session_id"]: r for r in _read(self.writer.partition_path(TABLE, day))}
        self.assertEqual(rows["1"]["landing_page"], "")
        self.assertEqual(rows["2"]["landing_page"], "https://shop.example.com/")

    def test_cluster_by_orders_rows(self):
        day = date(2024, 3, 1)
        table = dict(TABLE, cluster_by=["channel"])
        self.writer.upsert([_session(1, day, channel="Referral"), _session(2, day, channel="Email")], table)
        rows = _read(self.writer.partition_path(table, day))
        self.assertEqual([r["channel"] for r in rows], ["Email", "Referral"])

    def test_none_written_as_empty(self):
        day = date(2024, 3, 1)
        self.writer.upsert([_session(1, day, last_non_direct_date=None)], TABLE)
        self.assertEqual(_read(self.writer.partition_path(TABLE, day))[0]["last_non_direct_date"], "")

    def test_no_upload_without_bucket(self):
        summary = self.writer.upsert([_session(1, date(2024, 3, 1))], TABLE)
        self.assertEqual(summary["s3_uris"], [])

    @patch("output.writer.boto3")
    def test_upload_to_s3(self, mock_boto3):
        client = MagicMock()
        mock_boto3.client.return_value = client
        self.writer.processed_bucket = "processed"
        summary = self.writer.upsert([_session(1, date(2024, 3, 1))], TABLE)
        self.assertEqual(summary["s3_uris"],
                         ["s3://processed/sessions/staging/sessions/date=2024-03-01/sessions.tab"])
        kwargs = client.put_object.call_args.kwargs
        self.assertEqual(kwargs["Bucket"], "processed")
        self.assertEqual(kwargs["Key"], "sessions/staging/sessions/date=2024-03-01/sessions.tab")


if __name__ == "__main__":
    unittest.main(verbosity=2)
