"""
session_builder.py
==================
Builds the session table from GA4 export events. Pure Python path.

  1. Extract  - one flat row per event: identities, local date, attribution
                fields and declared column / parameter projections
  2. Group    - one base row per (date, session_id), events ordered by
                (timestamp, event_id) and kept under the transient `_events`
  3. Process  - run the configured processing steps in order
  4. Finalise - drop `_events` and the post_processing.delete columns

The session date is the event's local calendar date in the configured
timezone, so a session that crosses local midnight yields one row per date.
"""

import logging
import time
from datetime import datetime, timedelta, timezone

from preprocessing.param_extractor import (
    declared_column_name,
    extract_declared,
    get_event_param,
    get_query_param,
)
from processing.identity import derive_event_id, derive_session_id, event_timestamp
from processing.processing_steps import EVENTS_KEY

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Event params read for every event, as strings
ATTRIBUTION_PARAMS = (
    "page_location",
    "page_referrer",
    "ignore_referrer",
    "source",
    "medium",
    "campaign",
    "gclid",
)

UTM_PARAMS = ("utm_source", "utm_medium", "utm_campaign")

PROJECTED_KINDS = ("columns", "event_params", "user_properties", "query_parameters")


def micros_to_datetime(micros: int) -> datetime:
    return _EPOCH + timedelta(microseconds=int(micros))


def session_engaged_flag(event: dict):
    """1 when session_engaged is set as int or as the string "1", else the int value / None."""
    value = get_event_param(event, "session_engaged", "int")
    if value is not None:
        return value
    if get_event_param(event, "session_engaged", "string") == "1":
        return 1
    return None


def _first_not_null(rows, field):
    for row in rows:
        value = row.get(field)
        if value is not None:
            return value
    return None


class SessionBuilder:

    def __init__(self, session_config):
        self.config = session_config

    # ---------------------------------------------------------------- #
    # Public entry point
    # ---------------------------------------------------------------- #

    def build(self, events) -> list:
        """
        Turn raw events into session rows.

        Returns:
            List of session dicts, one per (date, session_id), ordered by
            date then session start.
        """
        start_ts = time.time()
        events = list(events)
        logger.info("=== Session Builder Start. Input events: %d ===", len(events))

        rows = self.extract_events(events)
        sessions = self.group_sessions(rows)
        logger.info("Grouped %d event row(s) into %d session(s).", len(rows), len(sessions))

        pipeline = self.config.processing_steps
        sessions = pipeline.execute(self.config, sessions)
        sessions = self.post_process(sessions)

        logger.info(
            "=== Session Builder Complete. Sessions: %d | Steps: %s | Duration: %.2fs ===",
            len(sessions), pipeline.names, time.time() - start_ts,
        )
        return sessions

    # ---------------------------------------------------------------- #
    # 1. Extract
    # ---------------------------------------------------------------- #

    def extract_event(self, event: dict):
        """Flat row for one event, or None when it has no session scope."""
        session_id = derive_session_id(event, self.config.session_param)
        if session_id is None:
            return None

        micros = event_timestamp(event, self.config.timestamp_param)
        timestamp = micros_to_datetime(micros)

        row = {
            "event_id":             derive_event_id(event, self.config.timestamp_param),
            "session_id":           session_id,
            "date":                 timestamp.astimezone(self.config.tzinfo).date(),
            "timestamp":            micros,
            "event_timestamp":      timestamp,
            "event_name":           event.get("event_name"),
            "user_pseudo_id":       event.get("user_pseudo_id"),
            "user_id":              event.get("user_id"),
            "session_engaged":      session_engaged_flag(event),
            "engagement_time_msec": get_event_param(event, "engagement_time_msec", "int"),
        }
        for name in ATTRIBUTION_PARAMS:
            row[name] = get_event_param(event, name, "string")
        for name in UTM_PARAMS:
            row[name] = get_query_param(row["page_location"], name)
        if row["gclid"] is None:
            row["gclid"] = get_query_param(row["page_location"], "gclid")

        for kind in PROJECTED_KINDS:
            declarations = self.config.declarations(kind)
            if declarations:
                row.update(extract_declared(event, declarations, kind, row["page_location"]))
        return row

    def extract_events(self, events) -> list:
        rows, skipped = [], 0
        for event in events:
            row = self.extract_event(event)
            if row is None:
                skipped += 1
                continue
            rows.append(row)
        if skipped:
            logger.warning(
                "%d event(s) without '%s' skipped: no session identity.",
                skipped, self.config.session_param,
            )
        return rows

    # ---------------------------------------------------------------- #
    # 2. Group
    # ---------------------------------------------------------------- #

    def projected_columns(self) -> list:
        columns = []
        for kind in PROJECTED_KINDS:
            for declaration in self.config.declarations(kind):
                name = declared_column_name(declaration, kind)
                if name not in columns:
                    columns.append(name)
        return columns

    @staticmethod
    def unique_events(events) -> list:
        """First row per event_id, in input order."""
        seen, unique = set(), []
        for event in events:
            if event["event_id"] in seen:
                continue
            seen.add(event["event_id"])
            unique.append(event)
        if len(unique) < len(events):
            logger.debug("Dropped %d duplicate event(s) in session.", len(events) - len(unique))
        return unique

    def group_sessions(self, rows) -> list:
        grouped = {}
        for row in rows:
            grouped.setdefault((row["date"], row["session_id"]), []).append(row)

        projected = self.projected_columns()
        sessions = []
        for (day, session_id), events in grouped.items():
            events = self.unique_events(events)
            events.sort(key=lambda r: (r["timestamp"], r["event_id"]))
            engaged = [e["session_engaged"] for e in events if e["session_engaged"] is not None]
            session = {
                "date":                 day,
                "session_id":           session_id,
                "user_pseudo_id":       events[0]["user_pseudo_id"],
                "user_id":              _first_not_null(events, "user_id"),
                "session_start":        events[0]["event_timestamp"],
                "session_end":          events[-1]["event_timestamp"],
                "event_count":          len(events),
                "session_engaged":      max(engaged) if engaged else None,
                "engagement_time_msec": sum(e["engagement_time_msec"] or 0 for e in events),
            }
            for column in projected:
                session[column] = _first_not_null(events, column)
            session[EVENTS_KEY] = events
            sessions.append(session)

        sessions.sort(key=lambda s: (s["date"], s["session_start"], s["session_id"]))
        return sessions

    # ---------------------------------------------------------------- #
    # 4. Finalise
    # ---------------------------------------------------------------- #

    def post_process(self, sessions) -> list:
        drop = {EVENTS_KEY, *self.config.post_processing["delete"]}
        return [{k: v for k, v in s.items() if k not in drop} for s in sessions]
