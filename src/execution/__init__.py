"""Execution — машина состояний запроса и оркестратор исполнения сделок."""

from .lifecycle import ALLOWED_TRANSITIONS, RequestLifecycle, RequestTransitionResult
from .orchestrator import (
    ExecutionConfig,
    ExecutionOutcome,
    TradeExecutionOrchestrator,
    TradeParams,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "RequestLifecycle",
    "RequestTransitionResult",
    "ExecutionConfig",
    "ExecutionOutcome",
    "TradeExecutionOrchestrator",
    "TradeParams",
]
