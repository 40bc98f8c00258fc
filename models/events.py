"""
Data models for events published by the optimization loop.
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import AgentType


class OptimizationEvent(BaseModel):
    """Structured event emitted at phase boundaries of a cycle."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str
    payload: dict[str, Any]
    source: AgentType
    run_id: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)


# Event type names, grouped by the phase that publishes them
CYCLE_STARTED = "cycle.started"
CYCLE_COMPLETED = "cycle.completed"
CYCLE_FAILED = "cycle.failed"
CYCLE_SKIPPED = "cycle.skipped"
SIGNALS_GATHERED = "signals.gathered"
ANALYSIS_COMPLETED = "analysis.completed"
MATRIX_BUILT = "matrix.built"
VALIDATION_COMPLETED = "validation.completed"
EXECUTION_ITEM = "execution.item"
EXECUTION_COMPLETED = "execution.completed"
CONTROLLER_STATE_CHANGED = "controller.state_changed"
EMERGENCY_STOP = "controller.emergency_stop"
SYSTEM_EXCEPTION = "system.exception"

ALL_EVENT_TYPES = [
    CYCLE_STARTED,
    CYCLE_COMPLETED,
    CYCLE_FAILED,
    CYCLE_SKIPPED,
    SIGNALS_GATHERED,
    ANALYSIS_COMPLETED,
    MATRIX_BUILT,
    VALIDATION_COMPLETED,
    EXECUTION_ITEM,
    EXECUTION_COMPLETED,
    CONTROLLER_STATE_CHANGED,
    EMERGENCY_STOP,
    SYSTEM_EXCEPTION,
]
