from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from src.core.config.env import load_env_from_path
from src.core.config.models import DomainConfig, EngineConfig
from src.core.exceptions import ConfigError

# ENGINE_<FIELD> env vars override the "engine" section, e.g. ENGINE_MAX_ATTEMPTS=2
ENGINE_ENV_PREFIX = "ENGINE_"


def _engine_overrides(env: dict[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for field in EngineConfig.model_fields:
        value = env.get(f"{ENGINE_ENV_PREFIX}{field.upper()}")
        if value is not None and value != "":
            overrides[field] = value
    return overrides


def load_domain_config(config_path: str | Path, project_root: Path | None = None) -> DomainConfig:
    root = project_root or Path.cwd()
    path = Path(config_path)
    if not path.is_absolute():
        path = root / path
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be an object in {path}")
    # env file first so overrides defined there are visible
    load_env_from_path(data.get("env_file_path"), root)
    overrides = _engine_overrides(dict(os.environ))
    if overrides:
        data["engine"] = {**(data.get("engine") or {}), **overrides}
    try:
        return DomainConfig.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid config schema in {path}: {e}") from e
