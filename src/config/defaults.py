"""
defaults.py
===========
Static default tables for the session attribution pipeline.

Everything here is immutable reference data, loaded once at import time and
passed explicitly into SessionConfig / the processing steps. Nothing in this
module is mutated at runtime: callers copy before they customise.
"""

from types import MappingProxyType

DEFAULT_TIMEZONE = "America/Los_Angeles"
DEFAULT_LOOKBACK_WINDOW_DAYS = 30
DEFAULT_SESSION_PARAM = "ga_session_id"
DEFAULT_ENGAGEMENT_PARAM = "engagement_time_msec"
DEFAULT_SCHEMA = "dataform_staging"
DEFAULT_TABLE_NAME = "sessions"

# Closed set of declaration types (case-insensitive)
VALID_DECLARATION_TYPES = (
    "string",
    "int",
    "double",
    "float",
    "coalesce",
    "coalesce_float",
)

# Names owned by the session builder and its steps. User declarations whose
# output column lands on one of these are skipped.
RESERVED_SESSION_COLUMNS = frozenset([
    "date",
    "session_id",
    "user_pseudo_id",
    "user_id",
    "session_start",
    "session_end",
    "event_count",
    "session_engaged",
    "engagement_time_msec",
    "landing_page",
    "page_location",
    "page_referrer",
    "ignore_referrer",
    "gclid",
    "source",
    "medium",
    "campaign",
    "source_category",
    "channel",
    "last_non_direct_date",
])

SESSION_PRESETS = MappingProxyType({
    "none": {
        "columns": (),
        "event_params": (),
        "user_properties": (),
    },
    "standard": {
        "columns": (
            {"name": "device.category"},
            {"name": "device.operating_system"},
            {"name": "geo.country"},
            {"name": "geo.city"},
        ),
        "event_params": (),
        "user_properties": (),
    },
    "extended": {
        "columns": (
            {"name": "device.category"},
            {"name": "device.operating_system"},
            {"name": "device.language"},
            {"name": "device.web_info.browser", "columnName": "browser"},
            {"name": "geo.country"},
            {"name": "geo.region"},
            {"name": "geo.city"},
            {"name": "app_info.id", "columnName": "app_id"},
        ),
        "event_params": (
            {"name": "page_title", "type": "string"},
            {"name": "term", "type": "string"},
            {"name": "content", "type": "string"},
        ),
        "user_properties": (),
    },
})

# Ordered, first-match-wins. A result value is either a literal string or a
# {"column": <field or [fields]>} reference into the event's attribution
# fields; a list of fields is coalesced left to right.
DEFAULT_SOURCE_MEDIUM_RULES = (
    {
        "conditionType": "NOT_NULL",
        "columns": ["gclid"],
        "result": {
            "source": "google",
            "medium": "cpc",
            "campaign": {"column": ["campaign", "utm_campaign"]},
        },
    },
    {
        "conditionType": "NOT_NULL",
        "columns": ["source", "utm_source"],
        "result": {
            "source": {"column": ["source", "utm_source"]},
            "medium": {"column": ["medium", "utm_medium"]},
            "campaign": {"column": ["campaign", "utm_campaign"]},
        },
    },
    {
        "conditionType": "REGEXP_CONTAINS",
        "columns": ["referrer_host"],
        "conditionValue": r"(^|\.)(google|bing|yahoo|duckduckgo|yandex|baidu|ecosia|ask|aol)\.",
        "result": {
            "source": {"column": "referrer_host"},
            "medium": "organic",
            "campaign": "(organic)",
        },
    },
    {
        "conditionType": "NOT_NULL",
        "columns": ["referrer_host"],
        "result": {
            "source": {"column": "referrer_host"},
            "medium": "referral",
            "campaign": "(referral)",
        },
    },
)

DEFAULT_POST_PROCESSING = MappingProxyType({"delete": ()})
