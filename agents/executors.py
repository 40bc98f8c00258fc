"""
Transfer and Pricing Executors.

Drive validated opportunities through EXECUTING to EXECUTED or FAILED,
honouring per-cycle caps, dry run, the kill switch and emergency stop.
A failed item never stops the items after it.
"""

import logging
from dataclasses import dataclass

from .base import BaseAgent
from connectors.interfaces import (
    ExecutionReceipt,
    KillSwitchSignal,
    PricingExecutionService,
    TransferExecutionService,
)
from connectors.kill_switch import kill_switch_engaged
from models.enums import AgentType, ExecutionStatus
from models.errors import CycleCancelled, ExecutionFailure
from models.events import EXECUTION_ITEM
from models.opportunity import (
    ClearanceOpportunity,
    Opportunity,
    PriceChangeOpportunity,
    TransferOpportunity,
)
from models.state import ExecutionRecord
from utils.cancellation import CancellationToken, call_with_timeout

logger = logging.getLogger(__name__)


@dataclass
class CapBudget:
    """Execution attempts allowed per cycle. Shared by price changes and clearances."""

    limit: int
    used: int = 0

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit

    def consume(self) -> None:
        self.used += 1


class OpportunityExecutor(BaseAgent):
    """Common item loop; subclasses provide the collaborator call."""

    def __init__(
        self,
        agent_id: str,
        agent_type: AgentType,
        kill_switch: KillSwitchSignal | None = None,
        token: CancellationToken | None = None,
        call_timeout_seconds: float = 30.0,
        event_bus=None,
    ):
        super().__init__(agent_id, agent_type, event_bus)
        self.kill_switch = kill_switch
        self.token = token
        self.call_timeout_seconds = call_timeout_seconds

    def interrupt_reason(self) -> str | None:
        if self.token is not None and self.token.cancelled:
            return f"emergency stop: {self.token.reason}"
        if self.kill_switch is not None and kill_switch_engaged(self.kill_switch):
            return "kill switch active"
        return None

    async def invoke(self, opportunity: Opportunity) -> ExecutionReceipt:
        raise NotImplementedError

    async def execute_all(
        self,
        records: list[ExecutionRecord],
        budget: CapBudget,
        dry_run: bool = False,
        run_id: str | None = None,
    ) -> bool:
        """
        Execute VALIDATED records in order. Returns True if the loop was
        interrupted by the kill switch or an emergency stop.
        """
        pending = [r for r in records if r.status == ExecutionStatus.VALIDATED]
        for index, record in enumerate(pending):
            reason = self.interrupt_reason()
            if reason is not None:
                defer_all(pending[index:], reason)
                logger.warning(
                    f"{self.agent_id}: {reason}; deferred {len(pending) - index} remaining items"
                )
                return True

            if budget.exhausted:
                record.transition(
                    ExecutionStatus.DEFERRED, reason=f"per-cycle cap of {budget.limit} reached"
                )
            else:
                budget.consume()
                if dry_run:
                    record.transition(ExecutionStatus.SIMULATED, reason="dry run")
                else:
                    interrupted = await self._execute_one(record)
                    if interrupted:
                        await self._publish_item(record, run_id)
                        defer_all(pending[index + 1 :], f"emergency stop: {self.token.reason}")
                        return True
            await self._publish_item(record, run_id)
        return False

    async def _execute_one(self, record: ExecutionRecord) -> bool:
        """Run one collaborator call. Returns True when an emergency stop aborted it."""
        opportunity = record.opportunity
        record.transition(ExecutionStatus.EXECUTING)
        try:
            receipt = await call_with_timeout(
                self.invoke(opportunity), self.call_timeout_seconds, self.token
            )
            if not receipt.success:
                raise ExecutionFailure(
                    opportunity.product_id, receipt.error or "rejected by service"
                )
        except CycleCancelled as e:
            record.transition(ExecutionStatus.FAILED, error=f"aborted: {e}")
            return True
        except ExecutionFailure as e:
            logger.error(f"{self.agent_id}: {e}")
            record.transition(ExecutionStatus.FAILED, error=e.reason)
            return False
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(
                f"{self.agent_id}: {opportunity.kind.value} for {opportunity.product_id} failed: {message}"
            )
            record.transition(ExecutionStatus.FAILED, error=message)
            return False

        record.transition(ExecutionStatus.EXECUTED)
        logger.info(
            f"{self.agent_id}: executed {opportunity.kind.value} for {opportunity.product_id} "
            f"(expected profit delta {opportunity.expected_profit_delta:.2f})"
        )
        return False

    async def _publish_item(self, record: ExecutionRecord, run_id: str | None) -> None:
        o = record.opportunity
        await self.publish_event(
            EXECUTION_ITEM,
            {
                "kind": o.kind.value,
                "product_id": o.product_id,
                "status": record.status.value,
                "reason": record.reason,
                "error": record.error,
                "current_value": o.current_value,
                "proposed_value": o.proposed_value,
                "expected_profit_delta": o.expected_profit_delta,
            },
            run_id=run_id,
        )


def defer_all(records: list[ExecutionRecord], reason: str) -> None:
    for record in records:
        if record.status == ExecutionStatus.VALIDATED:
            record.transition(ExecutionStatus.DEFERRED, reason=reason)


class TransferExecutor(OpportunityExecutor):
    def __init__(self, service: TransferExecutionService, **kwargs):
        super().__init__("transfer_executor", AgentType.TRANSFER, **kwargs)
        self.service = service

    async def invoke(self, opportunity: Opportunity) -> ExecutionReceipt:
        if not isinstance(opportunity, TransferOpportunity):
            raise TypeError(f"Transfer executor cannot run {type(opportunity).__name__}")
        return await self.service.execute(
            opportunity.product_id,
            opportunity.from_location,
            opportunity.to_location,
            opportunity.quantity,
        )


class PricingExecutor(OpportunityExecutor):
    """Applies competitive price changes and clearance markdowns."""

    def __init__(self, service: PricingExecutionService, **kwargs):
        super().__init__("pricing_executor", AgentType.PRICING, **kwargs)
        self.service = service

    async def invoke(self, opportunity: Opportunity) -> ExecutionReceipt:
        if not isinstance(opportunity, PriceChangeOpportunity | ClearanceOpportunity):
            raise TypeError(f"Pricing executor cannot run {type(opportunity).__name__}")
        return await self.service.set_price(opportunity.product_id, opportunity.proposed_value)
