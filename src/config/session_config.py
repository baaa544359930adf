"""
session_config.py
=================
Explicit configuration for one session table build.

Every option is a named attribute with a validating setter; invalid values
raise ConfigurationError at assignment time, before any event is read.

Usage:
    from config.session_config import SessionConfig
    from preprocessing.event_source import SourceConfig

    sc = SessionConfig(SourceConfig("analytics_123456"), {"schema": "staging"})
    sc.timezone = "Europe/Berlin"
    sc.last_non_direct_lookback_window = 60
    sc.add_event_params([{"name": "page_title"}])
    sc.skip_last_non_direct_step()

    # or straight from YAML
    sc = SessionConfig.from_config(ConfigLoader.load())
"""

import copy
import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config.config_loader import ConfigurationError
from config.defaults import (
    DEFAULT_LOOKBACK_WINDOW_DAYS,
    DEFAULT_POST_PROCESSING,
    DEFAULT_SCHEMA,
    DEFAULT_SESSION_PARAM,
    DEFAULT_SOURCE_MEDIUM_RULES,
    DEFAULT_TABLE_NAME,
    DEFAULT_TIMEZONE,
    RESERVED_SESSION_COLUMNS,
    SESSION_PRESETS,
    VALID_DECLARATION_TYPES,
)
from preprocessing.event_source import SourceConfig
from preprocessing.param_extractor import declared_column_name
from processing.attribution_rules import build_rules
from processing.pipeline import Pipeline, ProcessingStep
from processing.processing_steps import (
    CHANNEL_STEP,
    LAST_NON_DIRECT_STEP,
    SOURCE_MEDIUM_STEP,
    default_pipeline,
)

logger = logging.getLogger(__name__)

DECLARATION_KINDS = (
    "columns",
    "event_params",
    "user_properties",
    "query_parameters",
    "item_columns",
    "item_params",
)

UNIQUE_KEY = ("date", "session_id")
PARTITION_BY = "date"


def validate_declarations(value) -> None:
    """
    Check a column / parameter declaration list.

    Raises:
        ConfigurationError: not a list of mappings, missing or empty `name`,
            non-string `columnName`, or a `type` outside the supported set.
    """
    if not isinstance(value, (list, tuple)):
        raise ConfigurationError("Columns should be a list")
    for declaration in value:
        if not isinstance(declaration, dict):
            raise ConfigurationError("Each column should be a mapping")
        name = declaration.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(
                "Each column should have a required 'name' property of string type "
                "and it should not be empty"
            )
        if "columnName" in declaration and not isinstance(declaration["columnName"], str):
            raise ConfigurationError("Each column should have a 'columnName' property of string type")
        if "type" in declaration:
            decl_type = declaration["type"]
            if not isinstance(decl_type, str) or decl_type.lower() not in VALID_DECLARATION_TYPES:
                raise ConfigurationError(
                    f"Each column should have a 'type' property with one of the following "
                    f"values: {', '.join(VALID_DECLARATION_TYPES)}"
                )


def _normalise(declaration: dict) -> dict:
    out = dict(declaration)
    if "type" in out:
        out["type"] = out["type"].lower()
    return out


class SessionConfig:

    def __init__(self, source, target: dict = None):
        if isinstance(source, dict):
            source = SourceConfig(**source)
        if not isinstance(source, SourceConfig):
            raise ConfigurationError(f"source should be a SourceConfig or mapping, got {source!r}")

        self._source                 = source
        self._target                 = None
        self._timezone               = DEFAULT_TIMEZONE
        self._tzinfo                 = ZoneInfo(DEFAULT_TIMEZONE)
        self._tags                   = [source.dataset]
        self._cluster_by             = []
        self._lookback_window        = DEFAULT_LOOKBACK_WINDOW_DAYS
        self._source_medium_rules    = build_rules(DEFAULT_SOURCE_MEDIUM_RULES)
        self._post_processing        = {"delete": list(DEFAULT_POST_PROCESSING["delete"])}
        self._pipeline               = default_pipeline()
        self._declarations           = {kind: [] for kind in DECLARATION_KINDS}
        self.session_param           = DEFAULT_SESSION_PARAM
        self.timestamp_param         = None

        self.target = target or {}
        self.apply_preset("standard")

    # ------------------------------------------------------------------ #
    # Construction from YAML
    # ------------------------------------------------------------------ #

    @classmethod
    def from_config(cls, cfg) -> "SessionConfig":
        """Build from a loaded ConfigLoader (source / target / session sections)."""
        session_cfg = cls(
            SourceConfig.from_config(cfg),
            {
                "schema":     cfg.get("target.schema", default=DEFAULT_SCHEMA),
                "table_name": cfg.get("target.table_name"),
            },
        )
        session_cfg.timezone = cfg.get("session.timezone", default=DEFAULT_TIMEZONE)
        session_cfg.last_non_direct_lookback_window = cfg.get("session.last_non_direct_lookback_window")
        session_cfg.apply_preset(cfg.get("session.preset", default="standard"))
        session_cfg.session_param = cfg.get("session.session_param", default=DEFAULT_SESSION_PARAM)
        session_cfg.timestamp_param = cfg.get("session.timestamp_param")

        for kind in DECLARATION_KINDS:
            declarations = cfg.get(f"session.{kind}", default=[])
            if declarations:
                session_cfg._add_declarations(kind, declarations)

        rules = cfg.get("session.source_medium_rules")
        if rules is not None:
            session_cfg.source_medium_rules = rules
        session_cfg.post_processing = cfg.get("session.post_processing", default={"delete": []})

        tags = cfg.get("session.tags", default=[])
        if tags:
            session_cfg.add_tags(tags)
        session_cfg.cluster_by = cfg.get("target.cluster_by", default=[])

        for step_name in cfg.get("session.skip_steps", default=[]):
            session_cfg.skip_step(step_name)

        logger.info(
            "Session config: dataset=%s | target=%s.%s | tz=%s | lookback=%dd | steps=%s",
            session_cfg.source.dataset, session_cfg.target["schema"], session_cfg.target["table_name"],
            session_cfg.timezone, session_cfg.last_non_direct_lookback_window,
            session_cfg.processing_steps.names,
        )
        return session_cfg

    # ------------------------------------------------------------------ #
    # Source / target
    # ------------------------------------------------------------------ #

    @property
    def source(self) -> SourceConfig:
        return self._source

    @property
    def target(self) -> dict:
        return dict(self._target)

    @target.setter
    def target(self, config: dict):
        if not isinstance(config, dict):
            raise ConfigurationError(f"target should be a mapping, got {config!r}")
        table_name = config.get("table_name", config.get("tableName", DEFAULT_TABLE_NAME))
        self._target = {
            "schema":     config.get("schema") or DEFAULT_SCHEMA,
            "table_name": table_name,
        }

    # ------------------------------------------------------------------ #
    # Scalar options
    # ------------------------------------------------------------------ #

    @property
    def timezone(self) -> str:
        return self._timezone

    @timezone.setter
    def timezone(self, name):
        name = name or DEFAULT_TIMEZONE
        try:
            tzinfo = ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError, TypeError) as exc:
            raise ConfigurationError(f"Unknown timezone '{name}'") from exc
        self._timezone = name
        self._tzinfo = tzinfo

    @property
    def tzinfo(self) -> ZoneInfo:
        return self._tzinfo

    @property
    def last_non_direct_lookback_window(self) -> int:
        return self._lookback_window

    @last_non_direct_lookback_window.setter
    def last_non_direct_lookback_window(self, days):
        if days is None:
            days = DEFAULT_LOOKBACK_WINDOW_DAYS
        if isinstance(days, bool) or not isinstance(days, int) or days < 0:
            raise ConfigurationError(
                f"last_non_direct_lookback_window should be a non-negative integer, got {days!r}"
            )
        self._lookback_window = days

    @property
    def source_medium_rules(self) -> tuple:
        return self._source_medium_rules

    @source_medium_rules.setter
    def source_medium_rules(self, rules):
        self._source_medium_rules = build_rules(
            DEFAULT_SOURCE_MEDIUM_RULES if rules is None else rules
        )

    @property
    def post_processing(self) -> dict:
        return copy.deepcopy(self._post_processing)

    @post_processing.setter
    def post_processing(self, config):
        config = config or {}
        if not isinstance(config, dict):
            raise ConfigurationError("post_processing should be a mapping")
        delete = config.get("delete") or []
        if isinstance(delete, str) or not all(isinstance(c, str) for c in delete):
            raise ConfigurationError("post_processing.delete should be a list of column names")
        self._post_processing = {"delete": list(delete)}

    @property
    def cluster_by(self) -> list:
        return list(self._cluster_by)

    @cluster_by.setter
    def cluster_by(self, columns):
        columns = columns or []
        if isinstance(columns, str):
            columns = [columns]
        if not all(isinstance(c, str) for c in columns):
            raise ConfigurationError("cluster_by should be a list of column names")
        self._cluster_by = list(columns)

    # ------------------------------------------------------------------ #
    # Tags
    # ------------------------------------------------------------------ #

    @property
    def tags(self) -> list:
        return list(self._tags)

    def add_tags(self, value) -> None:
        if isinstance(value, str):
            self._tags.append(value)
        elif isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            self._tags.extend(value)
        else:
            raise ConfigurationError("Tags should be a list or a string")

    # ------------------------------------------------------------------ #
    # Processing steps
    # ------------------------------------------------------------------ #

    @property
    def processing_steps(self) -> Pipeline:
        return self._pipeline

    @processing_steps.setter
    def processing_steps(self, steps):
        if isinstance(steps, Pipeline):
            self._pipeline = steps.copy()
        else:
            if not all(isinstance(s, ProcessingStep) for s in steps):
                raise ConfigurationError("processing_steps should hold ProcessingStep objects")
            self._pipeline = Pipeline(steps)

    def skip_last_non_direct_step(self) -> None:
        self._pipeline.remove(LAST_NON_DIRECT_STEP)

    def skip_channel_step(self) -> None:
        self._pipeline.remove(CHANNEL_STEP)

    def skip_source_medium_step(self) -> None:
        self._pipeline.remove(SOURCE_MEDIUM_STEP)

    def skip_step(self, name: str) -> None:
        self._pipeline.remove(name)

    # ------------------------------------------------------------------ #
    # Column / parameter declarations
    # ------------------------------------------------------------------ #

    def apply_preset(self, name: str) -> None:
        """Replace columns / event params / user properties with a preset."""
        if name not in SESSION_PRESETS:
            raise ConfigurationError(
                f"Invalid session preset '{name}'. Possible names are: {', '.join(SESSION_PRESETS)}"
            )
        preset = SESSION_PRESETS[name]
        for kind in ("columns", "event_params", "user_properties"):
            self._declarations[kind] = [dict(d) for d in preset[kind]]

    def _add_declarations(self, kind: str, declarations) -> None:
        validate_declarations(declarations)
        current = self._declarations[kind]
        for declaration in declarations:
            declaration = _normalise(declaration)
            column = declared_column_name(declaration, kind)
            if column in RESERVED_SESSION_COLUMNS:
                logger.warning("Skipping %s declaration '%s': reserved session column", kind, column)
                continue
            names = [d["name"] for d in current]
            if declaration["name"] in names:
                current[names.index(declaration["name"])] = declaration
            else:
                current.append(declaration)

    def add_columns(self, columns) -> None:
        self._add_declarations("columns", columns)

    def add_event_params(self, event_params) -> None:
        self._add_declarations("event_params", event_params)

    def add_user_properties(self, user_properties) -> None:
        self._add_declarations("user_properties", user_properties)

    def add_query_parameters(self, query_parameters) -> None:
        self._add_declarations("query_parameters", query_parameters)

    def add_item_columns(self, item_columns) -> None:
        self._add_declarations("item_columns", item_columns)

    def add_item_params(self, item_params) -> None:
        self._add_declarations("item_params", item_params)

    def declarations(self, kind: str) -> list:
        if kind not in self._declarations:
            raise ConfigurationError(f"Unknown declaration kind '{kind}'")
        return [dict(d) for d in self._declarations[kind]]

    @property
    def columns(self) -> list:
        return self.declarations("columns")

    @property
    def event_params(self) -> list:
        return self.declarations("event_params")

    @property
    def user_properties(self) -> list:
        return self.declarations("user_properties")

    @property
    def query_parameters(self) -> list:
        return self.declarations("query_parameters")

    @property
    def item_columns(self) -> list:
        return self.declarations("item_columns")

    @property
    def item_params(self) -> list:
        return self.declarations("item_params")

    # ------------------------------------------------------------------ #
    # Materialization config
    # ------------------------------------------------------------------ #

    def table_config(self) -> dict:
        config = {
            "type":         "incremental",
            "schema":       self._target["schema"],
            "name":         self._target["table_name"],
            "unique_key":   list(UNIQUE_KEY),
            "partition_by": PARTITION_BY,
            "tags":         list(self._tags),
        }
        if self._cluster_by:
            config["cluster_by"] = list(self._cluster_by)
        return config
