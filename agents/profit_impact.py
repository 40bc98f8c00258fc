"""
Profit Impact Aggregator: per-cycle counters and profit totals.
"""

import logging
from dataclasses import dataclass, field

from models.enums import ExecutionStatus, OpportunityType
from models.state import CycleResult, ExecutionRecord

logger = logging.getLogger(__name__)

# Statuses whose expected delta counts towards the estimate
ESTIMATED_STATUSES = {
    ExecutionStatus.EXECUTED,
    ExecutionStatus.SIMULATED,
    ExecutionStatus.DEFERRED,
    ExecutionStatus.FAILED,
}


@dataclass
class ProfitImpact:
    realized: float = 0.0
    estimated: float = 0.0
    by_type: dict[str, float] = field(default_factory=dict)


class ProfitImpactAggregator:
    """Sums expected profit deltas of executed items; keeps a running total across cycles."""

    def __init__(self):
        self.cumulative_profit = 0.0
        self.cycles_aggregated = 0

    def summarize(self, records: list[ExecutionRecord]) -> ProfitImpact:
        impact = ProfitImpact(by_type={t.value: 0.0 for t in OpportunityType})
        for record in records:
            delta = record.opportunity.expected_profit_delta
            if record.status in ESTIMATED_STATUSES:
                impact.estimated += delta
            if record.status == ExecutionStatus.EXECUTED:
                impact.realized += delta
                impact.by_type[record.opportunity.kind.value] += delta
        impact.realized = round(impact.realized, 2)
        impact.estimated = round(impact.estimated, 2)
        impact.by_type = {k: round(v, 2) for k, v in impact.by_type.items()}
        return impact

    def apply(self, result: CycleResult, records: list[ExecutionRecord]) -> CycleResult:
        """Fill the per-type counters and profit fields of a cycle result."""
        for record in records:
            counts = result.counts_for(record.opportunity.kind)
            counts.identified += 1
            counts.add(record.status)
        impact = self.summarize(records)
        result.total_profit_impact = impact.realized
        result.estimated_profit_impact = impact.estimated
        result.profit_by_type = impact.by_type
        self.cumulative_profit = round(self.cumulative_profit + impact.realized, 2)
        self.cycles_aggregated += 1
        logger.debug(
            f"Cycle {result.run_id}: realized {impact.realized:.2f}, "
            f"estimated {impact.estimated:.2f}, cumulative {self.cumulative_profit:.2f}"
        )
        return result
