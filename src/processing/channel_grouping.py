"""
channel_grouping.py
===================
Default channel grouping: (source, medium, source_category) -> channel.

The decision table below is evaluated top to bottom and the first matching
row wins. Order matters: later rows are broader and would shadow the more
specific ones above them (e.g. facebook / cpc must land in Paid Social
before the Organic Social test sees it).

Source categories come from config/source_categories.csv, an immutable
reference table loaded once per process.
"""

import csv
import logging
from functools import lru_cache
from types import MappingProxyType

from config.config_loader import CONFIG_DIR
from processing.conditions import AllOf, AnyOf, Equals, IsNull, Matches, OneOf

logger = logging.getLogger(__name__)

SOURCE_CATEGORIES_FILE = CONFIG_DIR / "source_categories.csv"

SOURCE_CATEGORY_SEARCH = "SOURCE_CATEGORY_SEARCH"
SOURCE_CATEGORY_SOCIAL = "SOURCE_CATEGORY_SOCIAL"
SOURCE_CATEGORY_SHOPPING = "SOURCE_CATEGORY_SHOPPING"
SOURCE_CATEGORY_VIDEO = "SOURCE_CATEGORY_VIDEO"

DIRECT = "Direct"
OTHER = "(Other)"

SOCIAL_SOURCE_PATTERN = r"facebook|instagram|pinterest|reddit|twitter|linkedin"
PAID_MEDIUM_PATTERN = r"^(.*cp.*|ppc|retargeting|paid.*)$"
EMAIL_PATTERN = r"email|e-mail|e_mail|e mail"
SOCIAL_MEDIUMS = ("social", "social-network", "social-media", "sm", "social network", "social media")

VIDEO_AD_SOURCE = "dv360_video"
DISPLAY_AD_SOURCE = "dv360_display"


class ChannelRule:

    def __init__(self, channel: str, condition):
        self.channel = channel
        self.condition = condition

    def matches(self, row: dict) -> bool:
        return self.condition.evaluate(row)

    def __repr__(self):
        return f"ChannelRule({self.channel!r})"


_social_source = AnyOf(
    Matches("source", SOCIAL_SOURCE_PATTERN),
    Equals("source_category", SOURCE_CATEGORY_SOCIAL),
)
_paid_medium = Matches("medium", PAID_MEDIUM_PATTERN)

CHANNEL_RULES = (
    ChannelRule(DIRECT, AnyOf(
        AllOf(IsNull("source"), IsNull("medium")),
        AllOf(Equals("source", "(direct)"), OneOf("medium", ("(none)", "(not set)"))),
    )),
    ChannelRule("Paid Social", AllOf(_social_source, _paid_medium)),
    ChannelRule("Organic Social", AnyOf(_social_source, OneOf("medium", SOCIAL_MEDIUMS))),
    ChannelRule("Email", AnyOf(Matches("medium", EMAIL_PATTERN), Matches("source", EMAIL_PATTERN))),
    ChannelRule("Affiliates", Matches("medium", r"affiliate|affiliates")),
    ChannelRule("Paid Shopping", AllOf(Equals("source_category", SOURCE_CATEGORY_SHOPPING), _paid_medium)),
    ChannelRule("Paid Video", AnyOf(
        AllOf(Equals("source_category", SOURCE_CATEGORY_VIDEO), _paid_medium),
        Equals("source", VIDEO_AD_SOURCE),
    )),
    ChannelRule("Display", AnyOf(
        Matches("medium", r"display|cpm|banner"),
        Equals("source", DISPLAY_AD_SOURCE),
    )),
    ChannelRule("Paid Search", AllOf(Equals("source_category", SOURCE_CATEGORY_SEARCH), _paid_medium)),
    ChannelRule("Other Advertising", Matches("medium", r"^(cpv|cpa|cpp|content-text)$")),
    ChannelRule("Organic Search", AnyOf(
        Equals("medium", "organic"),
        Equals("source_category", SOURCE_CATEGORY_SEARCH),
    )),
    ChannelRule("Organic Video", AnyOf(
        Equals("source_category", SOURCE_CATEGORY_VIDEO),
        Matches("medium", r"^(.*video.*)$"),
    )),
    ChannelRule("Organic Shopping", Equals("source_category", SOURCE_CATEGORY_SHOPPING)),
    ChannelRule("Referral", OneOf("medium", ("referral", "app", "link"))),
    ChannelRule("Audio", Equals("medium", "audio")),
    ChannelRule("SMS", AnyOf(Equals("medium", "sms"), Equals("source", "sms"))),
    ChannelRule("Push Notifications", AnyOf(
        Matches("medium", r"(mobile|notification|push)$"),
        Equals("source", "firebase"),
    )),
)


def classify_channel(source, medium, source_category=None, rules=CHANNEL_RULES) -> str:
    """Return the channel label for one (source, medium, source_category)."""
    row = {"source": source, "medium": medium, "source_category": source_category}
    for rule in rules:
        if rule.matches(row):
            return rule.channel
    return OTHER


# ------------------------------------------------------------------ #
# Source category catalog
# ------------------------------------------------------------------ #

@lru_cache(maxsize=None)
def load_source_categories(path=SOURCE_CATEGORIES_FILE):
    """Read the source -> category catalog once; returns a read-only mapping."""
    catalog = {}
    with open(path, newline="", encoding="utf-8") as fh:
        for row in csv.DictReader(fh):
            source = (row.get("source") or "").strip().lower()
            category = (row.get("source_category") or "").strip()
            if source and category:
                catalog.setdefault(source, category)
    logger.debug("Loaded %d source categories from %s", len(catalog), path)
    return MappingProxyType(catalog)


def lookup_source_category(source, catalog=None):
    """Exact, case-insensitive lookup. Unknown or null sources give None."""
    if source is None:
        return None
    if catalog is None:
        catalog = load_source_categories()
    return catalog.get(str(source).strip().lower())
