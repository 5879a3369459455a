"""Configuration loading from env vars and an optional YAML file."""

import logging
import os
import sys
from dataclasses import dataclass, fields, replace

import yaml

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [VSL] %(levelname)s %(message)s"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Config:
    log_level: str = "INFO"
    max_parent_depth: int = 100
    encoding: str = "utf-8"
    include_sessions: bool = True


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"invalid boolean value {value!r}")


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path or no file."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as exc:
        raise ValueError(f"invalid YAML in config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"config file {path} must contain a mapping")
    logger.info("Loaded YAML config from %s", path)
    return data


def load_config(path: str | None = None) -> Config:
    """Build Config from defaults, then YAML ($CONFIG_PATH or path), then env vars."""
    known = {f.name for f in fields(Config)}
    yaml_data = load_yaml_config(os.environ.get("CONFIG_PATH", path))
    for key in yaml_data:
        if key not in known:
            logger.warning("Ignoring unknown config key %r", key)
    config = replace(Config(), **{k: v for k, v in yaml_data.items() if k in known})

    env = os.environ
    return Config(
        log_level=str(env.get("VSL_LOG_LEVEL", config.log_level)).upper(),
        max_parent_depth=int(env.get("VSL_MAX_PARENT_DEPTH", config.max_parent_depth)),
        encoding=env.get("VSL_ENCODING", config.encoding),
        include_sessions=_parse_bool(env.get("VSL_INCLUDE_SESSIONS", config.include_sessions)),
    )


def setup_logging(config: Config) -> None:
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
