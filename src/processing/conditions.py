"""
conditions.py
=============
Row predicates shared by the source/medium rule table and the channel
decision table.

A row is a plain dict. A field that is missing or None is null, and null
never matches a pattern or a value set (SQL three-valued logic collapsed
to False).
"""

import re


class NotNull:

    def __init__(self, *fields):
        self.fields = fields

    def evaluate(self, row: dict) -> bool:
        return coalesce(row, self.fields) is not None

    def __repr__(self):
        return f"NotNull{self.fields}"


class IsNull:

    def __init__(self, field):
        self.field = field

    def evaluate(self, row: dict) -> bool:
        return row.get(self.field) is None

    def __repr__(self):
        return f"IsNull({self.field!r})"


class Matches:
    """Partial regex match (re.search); anchor in the pattern for full match."""

    def __init__(self, fields, pattern):
        self.fields = (fields,) if isinstance(fields, str) else tuple(fields)
        self.pattern = pattern
        self.regex = re.compile(pattern)

    def evaluate(self, row: dict) -> bool:
        value = coalesce(row, self.fields)
        if value is None:
            return False
        return self.regex.search(str(value)) is not None

    def __repr__(self):
        return f"Matches({self.fields}, {self.pattern!r})"


class Equals:

    def __init__(self, field, value):
        self.field = field
        self.value = value

    def evaluate(self, row: dict) -> bool:
        return row.get(self.field) == self.value

    def __repr__(self):
        return f"Equals({self.field!r}, {self.value!r})"


class OneOf:

    def __init__(self, field, values):
        self.field = field
        self.values = frozenset(values)

    def evaluate(self, row: dict) -> bool:
        return row.get(self.field) in self.values

    def __repr__(self):
        return f"OneOf({self.field!r}, {sorted(self.values)})"


class AllOf:

    def __init__(self, *conditions):
        self.conditions = conditions

    def evaluate(self, row: dict) -> bool:
        return all(c.evaluate(row) for c in self.conditions)

    def __repr__(self):
        return f"AllOf{self.conditions}"


class AnyOf:

    def __init__(self, *conditions):
        self.conditions = conditions

    def evaluate(self, row: dict) -> bool:
        return any(c.evaluate(row) for c in self.conditions)

    def __repr__(self):
        return f"AnyOf{self.conditions}"


def coalesce(row: dict, fields):
    """First non-null value among fields, in order."""
    for field in fields:
        value = row.get(field)
        if value is not None:
            return value
    return None
