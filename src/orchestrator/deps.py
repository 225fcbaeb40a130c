"""Process-level wiring: config, registry, engine and agents are built once and injected."""
from __future__ import annotations

import logging
import os
from pathlib import Path

from src.agent.agent import Agent, build_agents
from src.core.config.env import load_default_env
from src.core.config.loader import load_domain_config
from src.core.config.models import AuditStoreConfig, DomainConfig
from src.core.exceptions import ConfigError
from src.data_access.factory import build_clients
from src.engine.audit import AuditSink, InMemoryAuditSink, LoggingAuditSink
from src.engine.engine import ExecutionEngine
from src.engine.events import EventBus, log_event
from src.orchestrator.session import PostgresAuditSink, get_app_db_url
from src.tools.registry import ToolRegistry, build_registry

log = logging.getLogger("orchestrator")

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
CONFIG_PATH = os.environ.get("CONFIG_PATH", "config/domains/lms.json")

_config: DomainConfig | None = None
_clients: dict[str, str] | None = None
_registry: ToolRegistry | None = None
_engine: ExecutionEngine | None = None
_agents: dict[str, Agent] | None = None


def get_config() -> DomainConfig:
    global _config
    if _config is None:
        load_default_env(PROJECT_ROOT)
        _config = load_domain_config(CONFIG_PATH, project_root=PROJECT_ROOT)
    return _config


def build_audit_sink(store: AuditStoreConfig, env: dict[str, str]) -> AuditSink:
    if store.type == "memory":
        return InMemoryAuditSink()
    if store.type == "log":
        return LoggingAuditSink()
    if store.type == "postgres":
        url = env.get(store.connection_id or "POSTGRES_APP_URL")
        if not url:
            raise ConfigError(f"audit_store: env var {store.connection_id or 'POSTGRES_APP_URL'} not set")
        return PostgresAuditSink(url)
    raise ConfigError(f"Unknown audit_store type: {store.type}")


def build_engine(config: DomainConfig, registry: ToolRegistry) -> ExecutionEngine:
    events = EventBus()
    events.subscribe(log_event)
    return ExecutionEngine(
        registry,
        config=config.engine,
        audit_sink=build_audit_sink(config.audit_store, dict(os.environ)),
        events=events,
    )


def get_clients() -> dict[str, str]:
    global _clients
    if _clients is None:
        _clients = build_clients(get_config(), PROJECT_ROOT)
    return _clients


def get_registry() -> ToolRegistry:
    global _registry
    if _registry is None:
        _registry = build_registry(get_clients())
    return _registry


def get_lms_db() -> str | None:
    """LMS database URL from the configured data sources, or None."""
    return get_clients().get("lms_db")


def get_engine() -> ExecutionEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(get_config(), get_registry())
        log.info("engine ready: %d tool(s)", len(get_registry()))
    return _engine


def get_agents() -> dict[str, Agent]:
    global _agents
    if _agents is None:
        _agents = build_agents(get_config(), get_engine(), get_registry())
    return _agents


def get_app_db() -> str | None:
    """App database URL for persistence, or None when persistence is off."""
    try:
        return get_app_db_url(dict(os.environ))
    except ValueError:
        return None
