from src.engine.audit import AuditSink, FanOutAuditSink, InMemoryAuditSink, LoggingAuditSink
from src.engine.confirmation import ConfirmationGate, RiskAssessment
from src.engine.engine import ExecutionEngine, StepResultLog
from src.engine.events import EventBus
from src.engine.rollback import RollbackCoordinator
from src.engine.scheduler import DependencyScheduler
from src.engine.step_executor import StepExecutor
from src.engine.validator import PlanValidator

__all__ = [
    "AuditSink",
    "FanOutAuditSink",
    "InMemoryAuditSink",
    "LoggingAuditSink",
    "ConfirmationGate",
    "RiskAssessment",
    "ExecutionEngine",
    "StepResultLog",
    "EventBus",
    "RollbackCoordinator",
    "DependencyScheduler",
    "StepExecutor",
    "PlanValidator",
]
