"""
event_source.py
===============
Reads raw GA4 export events from newline-delimited JSON files.

Layout (one file per daily / intraday export table):

    <events_dir>/<dataset>/events_20240301.json
    <events_dir>/<dataset>/events_intraday_20240302.json

A table name is a glob ("events_*", "events_intraday_*"). Incremental runs
read the incremental table, full refreshes read the non-incremental one.
Which mode to use is the caller's decision.

A `where` predicate may be attached to each table. It is applied here,
before any event reaches identity derivation. Accepted forms:
  - a callable(event) -> bool
  - a mapping of dotted field path -> allowed value or list of values,
    e.g. {"event_name": ["page_view", "session_start"]}
"""

import json
import logging
import re
from datetime import date, datetime
from pathlib import Path

from config.config_loader import ConfigurationError
from preprocessing.param_extractor import get_column

logger = logging.getLogger(__name__)

_TABLE_DATE = re.compile(r"(\d{8})$")

DEFAULT_NON_INCREMENTAL_TABLE = "events_*"


def build_predicate(where):
    """Normalise a where clause to a callable, or None when unfiltered."""
    if where is None or where is False:
        return None
    if callable(where):
        return where
    if isinstance(where, dict):
        allowed = {
            path: frozenset(v if isinstance(v, (list, tuple, set)) else [v])
            for path, v in where.items()
        }

        def predicate(event):
            return all(get_column(event, path) in values for path, values in allowed.items())

        return predicate
    raise ConfigurationError(f"Unsupported where clause {where!r}: use a callable or a mapping")


def _to_date(value):
    if value is None or isinstance(value, date):
        return value
    return datetime.strptime(str(value).replace("-", ""), "%Y%m%d").date()


def table_date(path: Path):
    """Date suffix of an export table file (events_YYYYMMDD), or None."""
    match = _TABLE_DATE.search(path.stem)
    if not match:
        return None
    try:
        return datetime.strptime(match.group(1), "%Y%m%d").date()
    except ValueError:
        return None


class SourceConfig:

    def __init__(self, dataset: str, incremental_table_name: str = None, incremental_where=None,
                 non_incremental_table_name: str = None, non_incremental_where=None):
        if not isinstance(dataset, str) or not dataset.strip():
            raise ConfigurationError("source.dataset is required")
        self.dataset                    = dataset
        self.incremental_table_name     = incremental_table_name
        self.incremental_where          = build_predicate(incremental_where)
        self.non_incremental_table_name = non_incremental_table_name or DEFAULT_NON_INCREMENTAL_TABLE
        self.non_incremental_where      = build_predicate(non_incremental_where)

    @classmethod
    def from_config(cls, cfg) -> "SourceConfig":
        return cls(
            dataset=cfg.require("source.dataset"),
            incremental_table_name=cfg.get("source.incremental_table_name"),
            incremental_where=cfg.get("source.incremental_where"),
            non_incremental_table_name=cfg.get("source.non_incremental_table_name"),
            non_incremental_where=cfg.get("source.non_incremental_where"),
        )

    def table(self, incremental: bool) -> tuple:
        """(table name glob, predicate) for the requested mode."""
        if incremental:
            if not self.incremental_table_name:
                raise ConfigurationError(
                    "Incremental read requested but source.incremental_table_name is not set"
                )
            return self.incremental_table_name, self.incremental_where
        return self.non_incremental_table_name, self.non_incremental_where


class EventSource:
    """Newline-delimited JSON reader for one GA4 export dataset."""

    def __init__(self, events_dir, source_config: SourceConfig):
        if not events_dir:
            raise ConfigurationError("source.events_dir is required")
        self.events_dir = Path(events_dir)
        self.source     = source_config

    @property
    def dataset_dir(self) -> Path:
        return self.events_dir / self.source.dataset

    def table_files(self, table_name: str, start_date=None, end_date=None) -> list:
        start_date, end_date = _to_date(start_date), _to_date(end_date)
        files = []
        for path in sorted(self.dataset_dir.glob(table_name)):
            if not path.is_file():
                continue
            day = table_date(path)
            if day is not None:
                if start_date and day < start_date:
                    continue
                if end_date and day > end_date:
                    continue
            files.append(path)
        return files

    def read(self, incremental: bool = False, start_date=None, end_date=None) -> list:
        """
        Load events from the table selected by `incremental`.

        Returns:
            List of raw event dicts, predicate applied, file order preserved.
        """
        table_name, predicate = self.source.table(incremental)
        files = self.table_files(table_name, start_date, end_date)
        logger.info(
            "Reading %s table '%s' from %s: %d file(s)",
            "incremental" if incremental else "full", table_name, self.dataset_dir, len(files),
        )
        if not files:
            logger.warning("No export files matched %s/%s", self.dataset_dir, table_name)

        events, filtered = [], 0
        for path in files:
            with open(path, encoding="utf-8") as fh:
                for line_no, line in enumerate(fh, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        event = json.loads(line)
                    except json.JSONDecodeError as exc:
                        raise ValueError(f"{path.name}:{line_no} is not valid JSON: {exc}") from exc
                    if predicate is not None and not predicate(event):
                        filtered += 1
                        continue
                    events.append(event)

        logger.info("Read %d event(s); %d filtered out by where clause.", len(events), filtered)
        return events
