"""
config_loader.py
================
YAML configuration for the session attribution pipeline.

config.yaml holds the defaults; config.{env}.yaml (env from APP_ENV, default
dev) is deep-merged over it and ${VAR} placeholders are filled from the
process environment.

    cfg = load_config(env="prod")
    tz     = cfg.get("session.timezone")
    window = cfg.get("session.last_non_direct_lookback_window", default=30)
    table  = cfg.require("target.table_name")
"""

import copy
import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).parent

APP_ENV_VAR = "APP_ENV"

ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class ConfigurationError(Exception):
    """Invalid or missing configuration, raised before any data is read."""
    pass


def _read_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as fh:
            return yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Failed to parse YAML at {path}: {exc}") from exc


def deep_merge(base: dict, override: dict) -> dict:
    """Override wins at every level; lists (rule tables, cluster_by) are replaced whole."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _substitute(match) -> str:
    value = os.getenv(match.group(1))
    if value is None:
        logger.warning("Environment variable '%s' referenced in config is not set.", match.group(1))
        return match.group(0)
    return value


def substitute_env_vars(node: Any) -> Any:
    if isinstance(node, dict):
        return {k: substitute_env_vars(v) for k, v in node.items()}
    if isinstance(node, list):
        return [substitute_env_vars(v) for v in node]
    if isinstance(node, str):
        return ENV_VAR_PATTERN.sub(_substitute, node)
    return node


class ConfigLoader:

    def __init__(self, config: dict, env: str):
        self._config = config
        self._env = env

    @classmethod
    def load(cls, env: Optional[str] = None) -> "ConfigLoader":
        """Merged config for env (APP_ENV when None). Raises ConfigurationError on bad YAML."""
        env = env or os.getenv(APP_ENV_VAR, "dev")
        override_path = CONFIG_DIR / f"config.{env}.yaml"
        if not override_path.exists():
            logger.warning("No override file %s; using config.yaml only.", override_path)

        config = substitute_env_vars(
            deep_merge(_read_yaml(CONFIG_DIR / "config.yaml"), _read_yaml(override_path))
        )
        config.setdefault("environment", {})["resolved"] = env

        session = config.get("session") or {}
        logger.info(
            "Configuration loaded. Environment: %s | Timezone: %s | "
            "Lookback window: %s days | Source/medium rules: %d",
            env,
            session.get("timezone"),
            session.get("last_non_direct_lookback_window"),
            len(session.get("source_medium_rules") or []),
        )
        return cls(config, env)

    @classmethod
    def from_dict(cls, config: dict, env: str = "test") -> "ConfigLoader":
        return cls(copy.deepcopy(config), env)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Dot-path lookup; missing keys and null values give default."""
        node = self._config
        for key in key_path.split("."):
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return default if node is None else node

    def require(self, key_path: str) -> Any:
        value = self.get(key_path)
        if value is None:
            raise ConfigurationError(
                f"Required configuration key '{key_path}' is missing or null. "
                f"Check config.yaml or config.{self._env}.yaml."
            )
        return value

    @property
    def env(self) -> str:
        return self._env


def load_config(env: Optional[str] = None) -> ConfigLoader:
    return ConfigLoader.load(env=env)
