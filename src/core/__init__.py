from src.core.config.loader import load_domain_config
from src.core.config.models import DomainConfig, EngineConfig
from src.core.exceptions import ConfigError, EngineError, PlanValidationError

__all__ = [
    "load_domain_config",
    "DomainConfig",
    "EngineConfig",
    "ConfigError",
    "EngineError",
    "PlanValidationError",
]
