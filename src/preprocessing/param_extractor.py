"""
param_extractor.py
==================
Typed value extraction from GA4 export rows.

GA4 exports carry event parameters and user properties as a repeated
key/value bag:

    "event_params": [
        {"key": "ga_session_id", "value": {"int_value": "1709280000"}},
        {"key": "page_location", "value": {"string_value": "https://..."}},
    ]

Exactly one of string_value / int_value / float_value / double_value is
populated per entry. Integers may arrive as JSON strings (BigQuery JSON
export serialises INT64 that way) and are coerced here.

Lookups have "LIMIT 1" semantics: if a key repeats, the first entry wins.
A missing key, or a key whose value does not carry the requested type,
resolves to None. None of these helpers raise on data-level gaps.
"""

import logging
import re
from urllib.parse import urlparse, unquote_plus

from config.config_loader import ConfigurationError

logger = logging.getLogger(__name__)

_TYPED_FIELDS = {
    "string":  "string_value",
    "int":     "int_value",
    "integer": "int_value",
    "float":   "float_value",
    "double":  "double_value",
}

# Try order for the two coalescing types
_COALESCE_ORDER = ("string_value", "int_value", "float_value", "double_value")


def find_param_value(params, name: str):
    """
    Return the raw tagged value dict for `name`, or None.

    Accepts the GA4 repeated form (list of {"key", "value"}) or a plain
    mapping of key -> tagged value.
    """
    if not params:
        return None
    if isinstance(params, dict):
        return params.get(name)
    for entry in params:
        if entry.get("key") == name:
            return entry.get("value") or {}
    return None


def _to_int(raw):
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _to_float(raw):
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def get_param(params, name: str, param_type: str = "string"):
    """
    Extract a single typed value from a parameter bag.

    Args:
        params:     event_params or user_properties bag.
        name:       Parameter key.
        param_type: string | int | float | double | coalesce | coalesce_float

    Returns:
        The value converted to the declared type, or None when absent.

    Raises:
        ConfigurationError: unknown param_type.
    """
    kind = (param_type or "string").lower()
    if kind not in _TYPED_FIELDS and kind not in ("coalesce", "coalesce_float"):
        raise ConfigurationError(f"Unsupported parameter type '{param_type}' for '{name}'")

    value = find_param_value(params, name)
    if value is None:
        return None

    if kind == "coalesce":
        for field in _COALESCE_ORDER:
            raw = value.get(field)
            if raw is not None:
                return str(raw)
        return None

    if kind == "coalesce_float":
        for field in _COALESCE_ORDER:
            parsed = _to_float(value.get(field))
            if parsed is not None:
                return parsed
        return None

    raw = value.get(_TYPED_FIELDS[kind])
    if kind in ("int", "integer"):
        return _to_int(raw)
    if kind in ("float", "double"):
        return _to_float(raw)
    return raw


def get_event_param(event: dict, name: str, param_type: str = "string"):
    return get_param(event.get("event_params"), name, param_type)


def get_user_property(event: dict, name: str, param_type: str = "string"):
    return get_param(event.get("user_properties"), name, param_type)


def get_column(event: dict, path: str):
    """Walk a dotted path (e.g. 'device.web_info.browser') through nested dicts."""
    node = event
    for part in path.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(part)
        if node is None:
            return None
    return node


def get_query_param(url, name: str):
    """
    Pull one query parameter out of a URL.

    Matches `name=value` pairs delimited by ?, & or #, with a
    case-insensitive key match. The value is URL-decoded; an empty value
    counts as absent.
    """
    if not url:
        return None
    pattern = r"[?&#]" + re.escape(name) + r"=([^&#]*)"
    match = re.search(pattern, url, re.IGNORECASE)
    if not match or not match.group(1):
        return None
    return unquote_plus(match.group(1))


def get_url_host(url):
    """Return the lower-cased host of a URL without a leading 'www.'."""
    if not url:
        return None
    try:
        hostname = (urlparse(url).hostname or "").lower()
    except ValueError as exc:
        logger.debug("Could not parse URL '%s': %s", str(url)[:80], exc)
        return None
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return hostname or None


# ------------------------------------------------------------------ #
# Declaration-driven projection
# ------------------------------------------------------------------ #

def declared_column_name(declaration: dict, kind: str) -> str:
    """Output column name for a declaration: columnName, else name."""
    if declaration.get("columnName"):
        return declaration["columnName"]
    if kind == "columns":
        return declaration["name"].replace(".", "_")
    return declaration["name"]


def extract_declared(event: dict, declarations, kind: str, page_location=None) -> dict:
    """
    Project one event through a list of validated declarations.

    kind is one of: columns, event_params, user_properties, query_parameters.
    Query parameters are read from page_location.
    """
    out = {}
    for decl in declarations:
        column = declared_column_name(decl, kind)
        name = decl["name"]
        decl_type = decl.get("type", "string")
        if kind == "columns":
            out[column] = get_column(event, name)
        elif kind == "event_params":
            out[column] = get_event_param(event, name, decl_type)
        elif kind == "user_properties":
            out[column] = get_user_property(event, name, decl_type)
        elif kind == "query_parameters":
            out[column] = get_query_param(page_location, name)
        else:
            raise ConfigurationError(f"Unknown declaration kind '{kind}'")
    return out
