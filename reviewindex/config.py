"""Site configuration for reviewindex.

Configuration is a plain dictionary: ``DEFAULT_CONFIG`` overlaid with the
optional ``reviewindex.yaml`` in the project root, overlaid with a handful of
environment variables (so the store token never has to live in a file).

Key functions:
- load_config: Load and validate configuration for a project root.
"""

from __future__ import annotations

import copy
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

CONFIG_FILENAME = "reviewindex.yaml"

# Route name -> seconds
DEFAULT_TTL = {
    "home": 3 * 60 * 60,
    "listing": 3 * 60 * 60,
    "review": 15552000,
    "comparison": 15552000,
    "sitemap": 24 * 60 * 60,
    "robots": 24 * 60 * 60,
    "api": 5 * 60,
    "document": 5 * 60,
}

DEFAULT_CONFIG: dict[str, Any] = {
    "site_name": "ReviewIndex",
    "site_url": "",
    "description": "Honest product reviews and head-to-head comparisons.",
    "owner": "",
    "repo": "",
    "branch": "",
    "api_url": "https://api.github.com",
    "token": "",
    "reviews_dir": "content/reviews",
    "comparisons_dir": "content/comparisons",
    "template_dir": "",
    "fetch_timeout": 8.0,
    "max_listing": 100,
    "cache_backend": "memory",
    "cache_path": ".reviewindex/cache.sqlite3",
    "ttl": DEFAULT_TTL,
    "embed_domains": ["youtube.com", "youtube-nocookie.com", "player.vimeo.com"],
    "host": "127.0.0.1",
    "port": 8000,
    "log_level": "info",
    "log_format": "text",
}

# Environment variable -> config key, first set variable wins per key.
ENV_OVERRIDES = (
    ("REVIEWINDEX_GITHUB_TOKEN", "token"),
    ("GITHUB_TOKEN", "token"),
    ("REVIEWINDEX_SITE_URL", "site_url"),
    ("REVIEWINDEX_LOG_LEVEL", "log_level"),
    ("REVIEWINDEX_CACHE_PATH", "cache_path"),
)


class ConfigError(Exception):
    """Invalid configuration file or value.

    Attributes:
        source_path: Config file involved, when there is one.
        message: Human-readable error message.
    """

    def __init__(self, message: str, source_path: Path | None = None):
        self.source_path = source_path
        self.message = message
        super().__init__(f"{source_path}: {message}" if source_path else message)


def _apply_env(config: dict[str, Any], environ: Mapping[str, str]) -> None:
    seen: set[str] = set()
    for variable, key in ENV_OVERRIDES:
        value = environ.get(variable)
        if value and key not in seen:
            config[key] = value
            seen.add(key)


def _validate(config: dict[str, Any], config_path: Path | None) -> None:
    if config["cache_backend"] not in ("memory", "sqlite"):
        raise ConfigError(
            f"cache_backend must be 'memory' or 'sqlite', got {config['cache_backend']!r}",
            config_path,
        )
    if str(config["log_level"]).lower() not in ("debug", "info", "warning", "error", "critical"):
        raise ConfigError(f"unknown log_level {config['log_level']!r}", config_path)
    if config["log_format"] not in ("text", "json"):
        raise ConfigError(
            f"log_format must be 'text' or 'json', got {config['log_format']!r}", config_path
        )
    for key, cast in (("port", int), ("max_listing", int), ("fetch_timeout", float)):
        try:
            config[key] = cast(config[key])
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{key} must be a number", config_path) from exc
    if not isinstance(config["ttl"], Mapping):
        raise ConfigError("ttl must be a mapping of route name to seconds", config_path)
    try:
        config["ttl"] = {**DEFAULT_TTL, **{k: int(v) for k, v in config["ttl"].items()}}
    except (TypeError, ValueError) as exc:
        raise ConfigError("ttl values must be whole seconds", config_path) from exc


def load_config(project_root: Path, environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Load site configuration from reviewindex.yaml and the environment.

    Args:
        project_root: Root directory of the project.
        environ: Environment mapping; defaults to ``os.environ``.

    Returns:
        Dictionary containing configuration values, with defaults applied.

    Raises:
        ConfigError: If the file is not valid YAML, is not a mapping, or
            holds an invalid value.
    """
    config_path = project_root / CONFIG_FILENAME
    config = copy.deepcopy(DEFAULT_CONFIG)
    source: Path | None = None
    if config_path.exists():
        source = config_path
        try:
            with open(config_path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"invalid YAML: {exc}", config_path) from exc
        if not isinstance(loaded, dict):
            raise ConfigError("expected a mapping at the top level", config_path)
        config.update(loaded)
    _apply_env(config, os.environ if environ is None else environ)
    _validate(config, source)
    return config


def directories(config: Mapping[str, Any]) -> dict[str, str]:
    """Collection name -> store directory."""
    return {"review": config["reviews_dir"], "comparison": config["comparisons_dir"]}
