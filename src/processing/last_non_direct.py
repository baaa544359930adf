"""
last_non_direct.py
==================
Last-non-direct-click re-attribution.

For each user, sessions are walked in (session_start, session_id) order.
A Direct session inherits source / medium / campaign / channel from the
user's most recent earlier session whose *own* channel is not Direct,
provided that touch falls within `lookback_window_days` of the session's
date:

    0 <= (session.date - touch.date).days <= lookback_window_days

Candidates are judged on the channel they arrived with. A Direct session
that was itself re-attributed is never a candidate, so a run of Direct
sessions cannot carry an old touch forward past its window. Example with a
30 day window:

    day 1   Organic Search            -> Organic Search
    day 10  Direct                    -> Organic Search (day 1 touch)
    day 50  Direct                    -> Direct (day 1 is 49 days back)

This is what a warehouse LAST_VALUE(... IGNORE NULLS) window over the input
rows computes, which keeps the PySpark path in parity.

Users are independent: the walk may be sharded by user_pseudo_id.
"""

import logging
from collections import OrderedDict

from processing.attribution_rules import DEFAULT_MEDIUM, DEFAULT_SOURCE
from processing.channel_grouping import DIRECT
from utils.pii_masker import mask as mask_pii

logger = logging.getLogger(__name__)

ATTRIBUTION_FIELDS = ("source", "medium", "campaign", "channel")


def is_direct(session: dict) -> bool:
    """Direct by channel label, or by the direct default source/medium."""
    channel = session.get("channel")
    if channel is not None:
        return channel == DIRECT
    source, medium = session.get("source"), session.get("medium")
    if source is None and medium is None:
        return True
    return source == DEFAULT_SOURCE and medium in (DEFAULT_MEDIUM, "(not set)")


def _chronological_key(session: dict):
    return (session.get("session_start"), str(session.get("session_id")))


def group_by_user(sessions) -> "OrderedDict":
    """Shard sessions by user_pseudo_id, each shard in chronological order."""
    shards = OrderedDict()
    for session in sessions:
        shards.setdefault(session.get("user_pseudo_id"), []).append(session)
    for user_sessions in shards.values():
        user_sessions.sort(key=_chronological_key)
    return shards


def resolve_user_sessions(user_sessions, lookback_window_days: int) -> list:
    """
    Re-attribute one user's sessions (already in chronological order).

    Returns new dicts; the input sessions are not mutated.
    """
    resolved = []
    last_touch = None
    for session in user_sessions:
        out = dict(session)
        if is_direct(session):
            out["last_non_direct_date"] = None
            if last_touch is not None:
                age_days = (session["date"] - last_touch["date"]).days
                if 0 <= age_days <= lookback_window_days:
                    for field in ATTRIBUTION_FIELDS:
                        out[field] = last_touch[field]
                    out["last_non_direct_date"] = last_touch["date"]
        else:
            out["last_non_direct_date"] = session["date"]
            last_touch = session
        resolved.append(out)
    return resolved


def resolve_last_non_direct(sessions, lookback_window_days: int = 30) -> list:
    """
    Apply last-non-direct attribution to a batch of sessions.

    Output keeps the input order. Sessions whose window holds no non-direct
    touch stay Direct.
    """
    sessions = list(sessions)
    if lookback_window_days is None:
        lookback_window_days = 30

    resolved_by_key = {}
    reattributed = 0
    for user, user_sessions in group_by_user(sessions).items():
        for before, after in zip(user_sessions, resolve_user_sessions(user_sessions, lookback_window_days)):
            if is_direct(before) and not is_direct(after):
                reattributed += 1
                logger.debug(
                    "Session %s of user %s re-attributed to %s / %s (%s)",
                    after.get("session_id"), mask_pii(str(user)),
                    after.get("source"), after.get("medium"), after.get("last_non_direct_date"),
                )
            resolved_by_key[id(before)] = after

    logger.info(
        "Last non-direct lookback (%d days): %d of %d session(s) re-attributed.",
        lookback_window_days, reattributed, len(sessions),
    )
    return [resolved_by_key[id(s)] for s in sessions]
