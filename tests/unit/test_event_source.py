"""
test_event_source.py
====================
Unit tests for reading NDJSON export tables: table selection, date range
filtering and where predicates.
"""

import json
import sys
import tempfile
import unittest
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parents[2] / "src"))

from config.config_loader import ConfigLoader, ConfigurationError
from preprocessing.event_source import EventSource, SourceConfig, build_predicate, table_date

DATASET = "analytics_123"


def _write(directory, name, events):
    path = Path(directory) / DATASET / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(json.dumps(e) + "\n" for e in events), encoding="utf-8")
    return path


class TestPredicates(unittest.TestCase):

    def test_none_is_unfiltered(self):
        self.assertIsNone(build_predicate(None))

    def test_callable_passed_through(self):
        fn = lambda event: True  # noqa: E731
        self.assertIs(build_predicate(fn), fn)

    def test_mapping_with_list(self):
        predicate = build_predicate({"event_name": ["page_view", "session_start"]})
        self.assertTrue(predicate({"event_name": "page_view"}))
        self.assertFalse(predicate({"event_name": "scroll"}))

    def test_mapping_dotted_path(self):
        predicate = build_predicate({"device.category": "mobile"})
        self.assertTrue(predicate({"device": {"category": "mobile"}}))
        self.assertFalse(predicate({}))

    def test_unsupported_where_raises(self):
        with self.assertRaises(ConfigurationError):
            build_predicate("event_name = 'page_view'")


class TestSourceConfig(unittest.TestCase):

    def test_defaults(self):
        source = SourceConfig(DATASET)
        self.assertEqual(source.table(False), ("events_*", None))

    def test_incremental_without_table_raises(self):
        with self.assertRaises(ConfigurationError):
            SourceConfig(DATASET).table(True)

    def test_empty_dataset_raises(self):
        with self.assertRaises(ConfigurationError):
            SourceConfig("")

    def test_from_config(self):
        cfg = ConfigLoader.from_dict({"source": {
            "dataset": DATASET,
            "incremental_table_name": "events_intraday_*",
            "incremental_where": {"event_name": "page_view"},
        }})
        source = SourceConfig.from_config(cfg)
        name, predicate = source.table(True)
        self.assertEqual(name, "events_intraday_*")
        self.assertTrue(predicate({"event_name": "page_view"}))


class TestEventSource(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        _write(self.tmpdir, "events_20240301.json", [{"event_name": "page_view"}, {"event_name": "scroll"}])
        _write(self.tmpdir, "events_20240302.json", [{"event_name": "page_view"}])
        _write(self.tmpdir, "events_intraday_20240303.json", [{"event_name": "session_start"}])

    def test_table_date(self):
        self.assertEqual(table_date(Path("events_20240301.json")), date(2024, 3, 1))
        self.assertIsNone(table_date(Path("events_latest.json")))

    def test_full_read(self):
        source = EventSource(self.tmpdir, SourceConfig(DATASET, non_incremental_table_name="events_2*"))
        self.assertEqual(len(source.read()), 3)

    def test_incremental_read(self):
        source = EventSource(self.tmpdir, SourceConfig(DATASET, incremental_table_name="events_intraday_*"))
        events = source.read(incremental=True)
        self.assertEqual(events, [{"event_name": "session_start"}])

    def test_date_range(self):
        source = EventSource(self.tmpdir, SourceConfig(DATASET, non_incremental_table_name="events_2*"))
        self.assertEqual(len(source.read(start_date="2024-03-02")), 1)
        self.assertEqual(len(source.read(end_date="20240301")), 2)

    def test_where_applied(self):
        source = EventSource(self.tmpdir, SourceConfig(
            DATASET, non_incremental_table_name="events_2*", non_incremental_where={"event_name": "page_view"},
        ))
        self.assertEqual(len(source.read()), 2)

    def test_no_files_reads_nothing(self):
        source = EventSource(self.tmpdir, SourceConfig("analytics_missing"))
        self.assertEqual(source.read(), [])

    def test_bad_json_raises(self):
        path = Path(self.tmpdir) / DATASET / "events_20240304.json"
        path.write_text("{not json}\n", encoding="utf-8")
        source = EventSource(self.tmpdir, SourceConfig(DATASET, non_incremental_table_name="events_2*"))
        with self.assertRaises(ValueError):
            source.read()

    def test_events_dir_required(self):
        with self.assertRaises(ConfigurationError):
            EventSource("", SourceConfig(DATASET))


if __name__ == "__main__":
    unittest.main(verbosity=2)
