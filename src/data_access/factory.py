from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from src.core.config.env import load_env_from_path
from src.core.config.models import DomainConfig
from src.data_access.relational.postgres import create_engine as create_pg_engine

log = logging.getLogger("data_access")


def build_clients(
    domain_config: DomainConfig,
    project_root: Path | None = None,
) -> dict[str, Any]:
    """Build data access clients from domain config. Keys = data_sources[].id, values = connection URLs."""
    load_env_from_path(domain_config.env_file_path, project_root)
    env = dict(os.environ)
    clients: dict[str, Any] = {}

    for ds in domain_config.data_sources:
        if ds.type == "rel_db" and ds.engine == "postgres":
            url = env.get(ds.connection_id)
            if not url:
                log.warning("data source %s: env var %s not set, skipping", ds.id, ds.connection_id)
                continue
            create_pg_engine(url, key=ds.id)
            clients[ds.id] = url
        else:
            log.warning("data source %s: unsupported %s/%s", ds.id, ds.type, ds.engine)

    return clients
