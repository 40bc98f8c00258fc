"""
Data models for run state: the per-cycle context, execution records and the
persisted cycle summary.
"""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, Field, computed_field

from .enums import CycleOutcome, ExecutionStatus, MarketSentiment, OpportunityType
from .opportunity import Opportunity

# Legal moves of the per-item state machine
ALLOWED_TRANSITIONS: dict[ExecutionStatus, set[ExecutionStatus]] = {
    ExecutionStatus.PENDING: {ExecutionStatus.VALIDATED, ExecutionStatus.SKIPPED},
    ExecutionStatus.VALIDATED: {
        ExecutionStatus.EXECUTING,
        ExecutionStatus.DEFERRED,
        ExecutionStatus.SIMULATED,
    },
    ExecutionStatus.EXECUTING: {ExecutionStatus.EXECUTED, ExecutionStatus.FAILED},
    ExecutionStatus.EXECUTED: set(),
    ExecutionStatus.FAILED: set(),
    ExecutionStatus.SKIPPED: set(),
    ExecutionStatus.DEFERRED: set(),
    ExecutionStatus.SIMULATED: set(),
}


@dataclass
class ExecutionRecord:
    """Tracks one opportunity through PENDING -> VALIDATED -> EXECUTING -> EXECUTED/FAILED."""

    opportunity: Opportunity
    status: ExecutionStatus = ExecutionStatus.PENDING
    reason: str | None = None
    error: str | None = None
    history: list[ExecutionStatus] = field(
        default_factory=lambda: [ExecutionStatus.PENDING]
    )

    def transition(
        self,
        new_status: ExecutionStatus,
        reason: str | None = None,
        error: str | None = None,
    ) -> None:
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise ValueError(
                f"Illegal transition {self.status.value} -> {new_status.value} "
                f"for {self.opportunity.kind.value} {self.opportunity.product_id}"
            )
        self.status = new_status
        self.history.append(new_status)
        if reason is not None:
            self.reason = reason
        if error is not None:
            self.error = error

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.status]


@dataclass
class RunStats:
    """Mutable accumulator for one cycle. Written only by the cycle coroutine."""

    products_analyzed: int = 0
    opportunities_identified: int = 0
    executed: int = 0
    failed: int = 0
    skipped: int = 0
    deferred: int = 0
    simulated: int = 0
    profit_impact: float = 0.0

    def record(self, record: ExecutionRecord) -> None:
        status = record.status
        if status == ExecutionStatus.EXECUTED:
            self.executed += 1
            self.profit_impact += record.opportunity.expected_profit_delta
        elif status == ExecutionStatus.FAILED:
            self.failed += 1
        elif status == ExecutionStatus.SKIPPED:
            self.skipped += 1
        elif status == ExecutionStatus.DEFERRED:
            self.deferred += 1
        elif status == ExecutionStatus.SIMULATED:
            self.simulated += 1


@dataclass
class RunContext:
    """Identity, config snapshot and stats of one cycle."""

    run_id: str
    run_number: int
    started_at: datetime
    config: Mapping[str, Any]
    stats: RunStats = field(default_factory=RunStats)

    @classmethod
    def create(
        cls, run_number: int, config_snapshot: dict[str, Any], now: datetime
    ) -> "RunContext":
        run_id = f"AUTO_{now.strftime('%Y%m%d%H%M%S')}_{run_number:04d}"
        return cls(
            run_id=run_id,
            run_number=run_number,
            started_at=now,
            config=MappingProxyType(dict(config_snapshot)),
        )


class TypeCounts(BaseModel):
    """Counters for one opportunity type within a cycle."""

    identified: int = 0
    executed: int = 0
    skipped_by_guardrail: int = 0
    failed: int = 0
    deferred: int = 0
    simulated: int = 0

    def add(self, status: ExecutionStatus) -> None:
        if status == ExecutionStatus.EXECUTED:
            self.executed += 1
        elif status == ExecutionStatus.FAILED:
            self.failed += 1
        elif status == ExecutionStatus.SKIPPED:
            self.skipped_by_guardrail += 1
        elif status == ExecutionStatus.DEFERRED:
            self.deferred += 1
        elif status == ExecutionStatus.SIMULATED:
            self.simulated += 1


class CycleResult(BaseModel):
    """Per-cycle summary record handed to the run history store."""

    run_id: str
    run_number: int
    started_at: datetime
    finished_at: datetime | None = None
    duration_seconds: float = 0.0
    dry_run: bool = False
    interrupted: bool = False
    products_analyzed: int = 0
    transfers: TypeCounts = Field(default_factory=TypeCounts)
    price_changes: TypeCounts = Field(default_factory=TypeCounts)
    clearances: TypeCounts = Field(default_factory=TypeCounts)
    total_profit_impact: float = 0.0
    estimated_profit_impact: float = 0.0
    profit_by_type: dict[str, float] = Field(default_factory=dict)
    next_run_recommended_seconds: float | None = None
    market_sentiment: MarketSentiment = MarketSentiment.NEUTRAL
    competitor_data_stale: bool = False
    competitor_data_source: str = "none"
    diagnostics: list[str] = Field(default_factory=list)

    def counts_for(self, kind: OpportunityType) -> TypeCounts:
        if kind == OpportunityType.TRANSFER:
            return self.transfers
        if kind == OpportunityType.PRICE_CHANGE:
            return self.price_changes
        if kind == OpportunityType.CLEARANCE:
            return self.clearances
        raise TypeError(f"Unknown opportunity type: {kind}")

    def _total(self, attr: str) -> int:
        return sum(
            getattr(counts, attr)
            for counts in (self.transfers, self.price_changes, self.clearances)
        )

    @property
    def action_count(self) -> int:
        return self._total("executed")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def outcome(self) -> CycleOutcome:
        identified = self._total("identified")
        executed = self._total("executed")
        failed = self._total("failed")
        if self.interrupted:
            return CycleOutcome.INTERRUPTED
        if identified == 0:
            return CycleOutcome.NOTHING_TO_DO
        if self._total("skipped_by_guardrail") == identified:
            return CycleOutcome.GUARDRAILS_BLOCKED
        if self.dry_run:
            return CycleOutcome.DRY_RUN
        if failed > 0 and executed == 0:
            return CycleOutcome.EXECUTION_BROKEN
        if failed > 0:
            return CycleOutcome.PARTIAL_FAILURE
        return CycleOutcome.COMPLETED
