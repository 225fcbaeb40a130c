from __future__ import annotations

from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    backoff_base_seconds: float = Field(default=0.5, ge=0)
    step_timeout_seconds: float | None = Field(default=30.0, gt=0)
    max_concurrency: int = Field(default=8, ge=1)  # per batch
    confirmation_staleness_seconds: float = Field(default=300.0, ge=0)
    confirmation_timeout_seconds: float = Field(default=3600.0, gt=0)
    max_audit_value_length: int = Field(default=200, ge=8)

    @property
    def effective_max_attempts(self) -> int:
        """Retry bound is capped at 3 attempts regardless of configuration."""
        return min(3, self.max_attempts)


class AgentConfig(BaseModel):
    name: str
    description: str = ""
    tool_names: list[str] = Field(default_factory=list)


class DataSourceConfig(BaseModel):
    id: str
    type: str  # "rel_db"
    engine: str  # "postgres"
    connection_id: str  # env var name


class AuditStoreConfig(BaseModel):
    type: str = "log"  # "memory" | "log" | "postgres"
    connection_id: str | None = None


class DomainConfig(BaseModel):
    domain_id: str
    domain_name: str
    env_file_path: str | None = None
    engine: EngineConfig = Field(default_factory=EngineConfig)
    agents: list[AgentConfig] = Field(default_factory=list)
    data_sources: list[DataSourceConfig] = Field(default_factory=list)
    audit_store: AuditStoreConfig = Field(default_factory=AuditStoreConfig)

    def get_agent_by_name(self, name: str) -> AgentConfig | None:
        for a in self.agents:
            if a.name == name:
                return a
        return None

    def get_data_source(self, source_id: str) -> DataSourceConfig | None:
        for ds in self.data_sources:
            if ds.id == source_id:
                return ds
        return None
