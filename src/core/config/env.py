from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_ENV_FILES = ("config/env/.env", ".env")


def load_env_from_path(env_file_path: str | None, project_root: Path | None = None) -> bool:
    if not env_file_path:
        return False
    root = project_root or Path.cwd()
    path = root / env_file_path
    if not path.exists():
        return False
    load_dotenv(path, override=False)
    return True


def load_default_env(project_root: Path | None = None) -> None:
    """Load the first existing of config/env/.env and .env; existing env vars win."""
    for candidate in DEFAULT_ENV_FILES:
        if load_env_from_path(candidate, project_root):
            break


def get_env_vars(env_file_path: str | None = None, project_root: Path | None = None) -> dict[str, str]:
    load_env_from_path(env_file_path, project_root)
    return dict(os.environ)
