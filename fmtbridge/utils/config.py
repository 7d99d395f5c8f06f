# fmtbridge/utils/config.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)

import yaml
from pathlib import Path
from pydantic_settings import BaseSettings

CONFIG_PATH = Path(__file__).parent.parent / "hostconfig.yaml"


def load_yaml_config(config_path: str | Path | None = None):
    target = Path(config_path) if config_path else CONFIG_PATH
    if target.exists():
        with open(target, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return data if isinstance(data, dict) else {}
    return {}


class Settings(BaseSettings):
    APP_NAME: str = "fmtbridge"
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_RETENTION_DAYS: int = 7

    PLUGINS_DIR: str = "plugins"
    MAX_INSTANCES_PER_PLUGIN: int = 4
    MAX_NESTING_DEPTH: int = 8
    BORROW_TIMEOUT_SEC: float = 10.0
    FORMAT_TIMEOUT_SEC: float = 30.0
    MAX_CRASHES: int = 3

    class Config:
        env_prefix = "FMTBRIDGE_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


def load_settings(config_path: str | Path | None = None) -> Settings:
    yaml_config = load_yaml_config(config_path)
    host = yaml_config.get("host") or {}
    return Settings(**{str(k).upper(): v for k, v in host.items()})


def pool_config(settings: Settings, yaml_config: dict | None = None) -> dict:
    """Translate settings plus the formatting sections of the YAML file into PluginPool config."""
    yaml_config = yaml_config or {}
    return {
        "max_instances_per_plugin": settings.MAX_INSTANCES_PER_PLUGIN,
        "max_nesting_depth": settings.MAX_NESTING_DEPTH,
        "borrow_timeout_sec": settings.BORROW_TIMEOUT_SEC,
        "format_timeout_sec": settings.FORMAT_TIMEOUT_SEC,
        "max_crashes": settings.MAX_CRASHES,
        "global_config": yaml_config.get("formatting") or {},
        "plugin_configs": yaml_config.get("plugins") or {},
    }
