"""
identity.py
===========
Deterministic fingerprints for events and sessions.

    event_id   = fingerprint(timestamp, event_name, user_pseudo_id, engagement_time_msec)
    session_id = fingerprint(ga_session_id, user_pseudo_id)

A fingerprint is the first 8 bytes of a SHA-256 digest read as a signed
64-bit integer, so the values fit an INT64 warehouse column and are stable
across runs, processes and machines (unlike the builtin hash()).
Parts are joined with a unit separator so ("1", "23") and ("12", "3") do not
collide.
"""

import hashlib

from config.defaults import DEFAULT_ENGAGEMENT_PARAM, DEFAULT_SESSION_PARAM
from preprocessing.param_extractor import get_event_param

_SEPARATOR = "\x1f"


def fingerprint(*parts) -> int:
    """Return a signed 64-bit fingerprint of the stringified parts."""
    payload = _SEPARATOR.join("" if p is None else str(p) for p in parts)
    digest = hashlib.sha256(payload.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], byteorder="big", signed=True)


def event_timestamp(event: dict, timestamp_param: str = None) -> int:
    """
    Microsecond timestamp used for identity and ordering.

    With timestamp_param set (e.g. a client-side event timestamp), that
    integer param wins when present; the export's event_timestamp is the
    fallback.
    """
    if timestamp_param:
        custom = get_event_param(event, timestamp_param, "int")
        if custom is not None:
            return custom
    return int(event["event_timestamp"])


def derive_event_id(event: dict, timestamp_param: str = None,
                    engagement_param: str = DEFAULT_ENGAGEMENT_PARAM) -> int:
    """EventIdentity. A missing engagement time counts as 0."""
    engagement = get_event_param(event, engagement_param, "int")
    return fingerprint(
        event_timestamp(event, timestamp_param),
        event.get("event_name"),
        event["user_pseudo_id"],
        engagement if engagement is not None else 0,
    )


def derive_session_id(event: dict, session_param: str = DEFAULT_SESSION_PARAM):
    """
    SessionIdentity, or None when the event carries no session-scope param.

    Every event sharing (session_param value, user_pseudo_id) maps to the
    same id.
    """
    scope = get_event_param(event, session_param, "int")
    if scope is None:
        return None
    return fingerprint(scope, event["user_pseudo_id"])
