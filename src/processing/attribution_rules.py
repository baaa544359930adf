"""
attribution_rules.py
====================
Source / medium / campaign rule engine.

Rules are plain data (see config/defaults.py or session.source_medium_rules
in config.yaml) compiled into AttributionRule objects once, at configuration
time. Evaluation is a small interpreter over an event's attribution fields:

  - rules are tried in list order, first match wins
  - a rule's `columns` are coalesced left to right (first non-null wins)
  - NOT_NULL matches when the coalesced value is non-null
  - REGEXP_CONTAINS matches when the coalesced value contains the pattern
    (re.search, so the pattern must anchor itself for a full match)
  - on match, each element of the result triple is a literal or a
    {"column": ...} reference; a reference that resolves to null falls back
    to that position's default
  - no match returns ('(direct)', '(none)', '(not set)')
"""

import logging
import re

from config.config_loader import ConfigurationError
from processing.conditions import Matches, NotNull, coalesce

logger = logging.getLogger(__name__)

NOT_NULL = "NOT_NULL"
REGEXP_CONTAINS = "REGEXP_CONTAINS"
CONDITION_TYPES = (NOT_NULL, REGEXP_CONTAINS)

DEFAULT_SOURCE = "(direct)"
DEFAULT_MEDIUM = "(none)"
DEFAULT_CAMPAIGN = "(not set)"
DEFAULT_TRIPLE = (DEFAULT_SOURCE, DEFAULT_MEDIUM, DEFAULT_CAMPAIGN)

RESULT_KEYS = ("source", "medium", "campaign")


class FieldRef:
    """Reference to one or more attribution fields, coalesced in order."""

    def __init__(self, columns):
        if isinstance(columns, str):
            columns = [columns]
        if not columns or not all(isinstance(c, str) and c for c in columns):
            raise ConfigurationError(
                f"A column reference needs one or more non-empty field names, got {columns!r}"
            )
        self.columns = tuple(columns)

    def resolve(self, fields: dict):
        return coalesce(fields, self.columns)

    def __eq__(self, other):
        return isinstance(other, FieldRef) and other.columns == self.columns

    def __repr__(self):
        return f"FieldRef({list(self.columns)})"


def _compile_result_value(key: str, raw):
    if raw is None or isinstance(raw, str):
        return raw
    if isinstance(raw, FieldRef):
        return raw
    if isinstance(raw, dict) and "column" in raw:
        return FieldRef(raw["column"])
    raise ConfigurationError(
        f"Rule result '{key}' must be a string literal or {{'column': ...}}, got {raw!r}"
    )


class AttributionRule:

    def __init__(self, condition_type, columns, condition_value=None, result=None):
        kind = str(condition_type or "").upper()
        if kind not in CONDITION_TYPES:
            raise ConfigurationError(
                f"Unsupported conditionType '{condition_type}'. "
                f"Supported: {', '.join(CONDITION_TYPES)}"
            )
        if isinstance(columns, str):
            columns = [columns]
        if not columns or not all(isinstance(c, str) and c.strip() for c in columns):
            raise ConfigurationError("A rule needs a non-empty list of column names")

        self.condition_type = kind
        self.columns = tuple(columns)
        self.condition_value = condition_value

        if kind == REGEXP_CONTAINS:
            if not isinstance(condition_value, str) or not condition_value:
                raise ConfigurationError(
                    f"REGEXP_CONTAINS rule on {list(self.columns)} requires a conditionValue pattern"
                )
            try:
                self._condition = Matches(self.columns, condition_value)
            except re.error as exc:
                raise ConfigurationError(
                    f"Invalid conditionValue pattern {condition_value!r}: {exc}"
                ) from exc
        else:
            self._condition = NotNull(*self.columns)

        result = result or {}
        if not isinstance(result, dict):
            raise ConfigurationError(f"Rule result must be a mapping, got {result!r}")
        unknown = sorted(set(result) - set(RESULT_KEYS))
        if unknown:
            raise ConfigurationError(f"Unknown rule result keys: {unknown}")
        self.result = tuple(_compile_result_value(k, result.get(k)) for k in RESULT_KEYS)

    @classmethod
    def from_dict(cls, rule: dict) -> "AttributionRule":
        """Build from the camelCase (config.yaml) or snake_case form."""
        if isinstance(rule, cls):
            return rule
        if not isinstance(rule, dict):
            raise ConfigurationError(f"Each source/medium rule should be a mapping, got {rule!r}")
        return cls(
            condition_type=rule.get("conditionType", rule.get("condition_type")),
            columns=rule.get("columns"),
            condition_value=rule.get("conditionValue", rule.get("condition_value")),
            result=rule.get("result"),
        )

    def resolve_column(self, fields: dict):
        return coalesce(fields, self.columns)

    def matches(self, fields: dict) -> bool:
        return self._condition.evaluate(fields)

    def apply(self, fields: dict) -> tuple:
        triple = []
        for value, default in zip(self.result, DEFAULT_TRIPLE):
            if isinstance(value, FieldRef):
                value = value.resolve(fields)
            triple.append(default if value is None else value)
        return tuple(triple)

    def __repr__(self):
        return (f"AttributionRule({self.condition_type}, {list(self.columns)}, "
                f"{self.condition_value!r}, {self.result})")


def build_rules(rules) -> tuple:
    """Compile a list of rule dicts (or AttributionRule objects)."""
    if rules is None:
        return ()
    if not isinstance(rules, (list, tuple)):
        raise ConfigurationError("sourceMediumRules should be a list")
    return tuple(AttributionRule.from_dict(r) for r in rules)


def classify_source_medium(fields: dict, rules) -> tuple:
    """Return (source, medium, campaign) for one set of candidate fields."""
    for rule in rules:
        if rule.matches(fields):
            return rule.apply(fields)
    return DEFAULT_TRIPLE
