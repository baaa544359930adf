"""
processing_steps.py
===================
The three built-in session processing steps and the default chain.

Each step is a pure function `(context, sessions) -> sessions` where context
is the SessionConfig of the run and sessions is a list of session dicts.
Every session row carries its events (ordered by timestamp) under the
transient `_events` key until post-processing drops it.

  sessions_with_source_medium_and_lp
      landing_page, source, medium, campaign
  sessions_with_channel                 (needs source / medium)
      source_category, channel
  sessions_with_last_non_direct         (needs source / medium and channel)
      re-attributed source / medium / campaign / channel, last_non_direct_date
"""

import logging

from preprocessing.param_extractor import get_url_host
from processing.attribution_rules import DEFAULT_TRIPLE, classify_source_medium
from processing.channel_grouping import classify_channel, lookup_source_category
from processing.last_non_direct import resolve_last_non_direct
from processing.pipeline import Pipeline, ProcessingStep

logger = logging.getLogger(__name__)

SOURCE_MEDIUM_STEP = "sessions_with_source_medium_and_lp"
CHANNEL_STEP = "sessions_with_channel"
LAST_NON_DIRECT_STEP = "sessions_with_last_non_direct"

EVENTS_KEY = "_events"


def attribution_fields(event: dict) -> dict:
    """
    Fields the source/medium rules may reference for one extracted event.

    page_referrer (and the referrer_host derived from it) is dropped when
    the event carries ignore_referrer = "true".
    """
    referrer = event.get("page_referrer")
    if str(event.get("ignore_referrer")).lower() == "true":
        referrer = None
    return {
        "page_location": event.get("page_location"),
        "page_referrer": referrer,
        "referrer_host": get_url_host(referrer),
        "source":        event.get("source"),
        "medium":        event.get("medium"),
        "campaign":      event.get("campaign"),
        "gclid":         event.get("gclid"),
        "utm_source":    event.get("utm_source"),
        "utm_medium":    event.get("utm_medium"),
        "utm_campaign":  event.get("utm_campaign"),
    }


def session_source_medium(events, rules) -> tuple:
    """Triple of the earliest event that is not attributed to direct."""
    for event in events:
        triple = classify_source_medium(attribution_fields(event), rules)
        if triple != DEFAULT_TRIPLE:
            return triple
    return DEFAULT_TRIPLE


def landing_page(events):
    for event in events:
        if event.get("page_location") is not None:
            return event["page_location"]
    return None


# ------------------------------------------------------------------ #
# Steps
# ------------------------------------------------------------------ #

def sessions_with_source_medium_and_lp(context, sessions) -> list:
    rules = context.source_medium_rules
    out = []
    for session in sessions:
        events = session.get(EVENTS_KEY, ())
        row = dict(session)
        row["landing_page"] = landing_page(events)
        row["source"], row["medium"], row["campaign"] = session_source_medium(events, rules)
        out.append(row)
    return out


def sessions_with_channel(context, sessions) -> list:
    out = []
    for session in sessions:
        row = dict(session)
        row["source_category"] = lookup_source_category(row.get("source"))
        row["channel"] = classify_channel(row.get("source"), row.get("medium"), row["source_category"])
        out.append(row)
    return out


def sessions_with_last_non_direct(context, sessions) -> list:
    return resolve_last_non_direct(sessions, context.last_non_direct_lookback_window)


def default_processing_steps() -> tuple:
    return (
        ProcessingStep(SOURCE_MEDIUM_STEP, sessions_with_source_medium_and_lp),
        ProcessingStep(CHANNEL_STEP, sessions_with_channel, depends_on=(SOURCE_MEDIUM_STEP,)),
        ProcessingStep(LAST_NON_DIRECT_STEP, sessions_with_last_non_direct,
                       depends_on=(SOURCE_MEDIUM_STEP, CHANNEL_STEP)),
    )


def default_pipeline() -> Pipeline:
    return Pipeline(default_processing_steps())
