"""
Configuration - chargement YAML + valeurs par défaut

La config reste un dict imbriqué (comme config.yaml) : chaque composant lit
sa section avec config.get("section", {}).
"""
import copy
import logging
import pathlib
from typing import Any

import yaml

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG: dict[str, Any] = {
    "apis": {
        "timeout": 10.0,
        "igdb_proxy_url": "http://localhost:3000/api/igdb-proxy",
        "rawg_key": "",
        "rawg_base_url": "https://api.rawg.io/api",
        "igdb_rate_limit": {"max_calls": 4, "period": 1.0},
        "rawg_rate_limit": {"max_calls": 20, "period": 1.0},
    },
    "cache": {
        "mapping_ttl_hours": 24,
        "bulk_ttl_minutes": 15,
        "validation_ttl_hours": 24,
        "search_ttl_minutes": 5,
        "search_max_entries": 100,
        "details_ttl_minutes": 10,
        "sweep_interval_seconds": 300,
    },
    "mapping": {
        "confidence_threshold": 0.7,
        "candidate_limit": 10,
        "max_concurrency": 5,
        "manual_overrides": {},
    },
    "bulk": {
        "max_batch_size": 500,
        "max_concurrency": 4,
    },
    "validation": {
        "max_retries": 3,
        "retry_base_delay": 1.0,
        "schedule_retries": True,
        "chunk_size": 10,
        "chunk_delay": 0.2,
        "max_plausible_id": 10_000_000,
    },
    "search": {
        "duplicate_threshold": 0.85,
        "hybrid_match_threshold": 0.8,
        "default_page_size": 20,
        "min_query_length": 2,
        "health_window_seconds": 300,
    },
    "preload": {
        "batch_size": 5,
        "stagger": 0.1,
    },
    "logging": {
        "level": "INFO",
    },
}


def merge_config(base: dict[str, Any], override: dict[str, Any] | None) -> dict[str, Any]:
    """Fusion récursive : override gagne, base n'est jamais modifié."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(config_path: str | pathlib.Path = "config/config.yaml") -> dict[str, Any]:
    """Charge config.yaml et le fusionne avec DEFAULT_CONFIG."""
    config_file = pathlib.Path(config_path)
    if not config_file.exists():
        LOGGER.warning(f"⚠️ Config file {config_path} not found, using defaults")
        return merge_config(DEFAULT_CONFIG, None)

    with open(config_file, "r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}

    if not isinstance(loaded, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping, got {type(loaded).__name__}")

    LOGGER.info(f"📄 Config chargée depuis {config_file}")
    return merge_config(DEFAULT_CONFIG, loaded)
