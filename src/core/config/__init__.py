from src.core.config.loader import load_domain_config
from src.core.config.models import AgentConfig, AuditStoreConfig, DataSourceConfig, DomainConfig, EngineConfig
from src.core.config.env import get_env_vars

__all__ = [
    "load_domain_config",
    "DomainConfig",
    "EngineConfig",
    "AgentConfig",
    "DataSourceConfig",
    "AuditStoreConfig",
    "get_env_vars",
]
