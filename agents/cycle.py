"""
One optimization cycle: gather signals, analyze, build the decision matrix,
validate, execute, and summarize.
"""

import logging

from .base import BaseAgent
from agents.competitive import CompetitiveAnalysis, CompetitiveAnalyzer
from agents.decision_matrix import DecisionMatrixBuilder
from agents.executors import CapBudget, PricingExecutor, TransferExecutor, defer_all
from agents.guardrails import GuardrailValidator
from agents.market_signals import MarketSignalGateway
from agents.profit_impact import ProfitImpactAggregator
from config.config import OptimizationConfig
from models.enums import AgentType, ExecutionStatus, OpportunityType
from models.errors import CycleCancelled, MalformedOpportunityError, SignalUnavailableError
from models.events import (
    ANALYSIS_COMPLETED,
    CYCLE_COMPLETED,
    CYCLE_STARTED,
    EXECUTION_COMPLETED,
    MATRIX_BUILT,
    VALIDATION_COMPLETED,
)
from models.opportunity import Opportunity
from models.outcomes import Accepted, Fatal, Recoverable
from models.signals import MarketSignals
from models.state import CycleResult, ExecutionRecord, RunContext
from utils.cancellation import CancellationToken
from utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class OptimizationCycle(BaseAgent):
    """Runs a single pass of the loop for a RunContext."""

    def __init__(
        self,
        config: OptimizationConfig,
        gateway: MarketSignalGateway,
        transfer_executor: TransferExecutor,
        pricing_executor: PricingExecutor,
        analyzer: CompetitiveAnalyzer | None = None,
        builder: DecisionMatrixBuilder | None = None,
        validator: GuardrailValidator | None = None,
        aggregator: ProfitImpactAggregator | None = None,
        token: CancellationToken | None = None,
        clock: Clock | None = None,
        event_bus=None,
    ):
        super().__init__("optimization_cycle", AgentType.CONTROLLER, event_bus)
        self.config = config
        self.gateway = gateway
        self.transfer_executor = transfer_executor
        self.pricing_executor = pricing_executor
        self.analyzer = analyzer or CompetitiveAnalyzer(config.signals)
        self.builder = builder or DecisionMatrixBuilder(config)
        self.validator = validator or GuardrailValidator(config.guardrails)
        self.aggregator = aggregator or ProfitImpactAggregator()
        self.token = token
        self.clock = clock or SystemClock()

    async def run(self, context: RunContext) -> CycleResult:
        run_id = context.run_id
        dry_run = bool(context.config.get("dry_run", self.config.dry_run))
        started = self.clock.monotonic()
        result = CycleResult(
            run_id=run_id,
            run_number=context.run_number,
            started_at=context.started_at,
            dry_run=dry_run,
        )
        logger.info(f"Cycle {run_id} started{' (dry run)' if dry_run else ''}")
        await self.publish_event(
            CYCLE_STARTED, {"run_number": context.run_number, "dry_run": dry_run}, run_id
        )

        signals = MarketSignals()
        analysis = CompetitiveAnalysis()
        records: list[ExecutionRecord] = []
        interrupted = False
        try:
            if self.token is not None:
                self.token.raise_if_cancelled()
            signals = await self.gather_signals(run_id)
            context.stats.products_analyzed = len(signals.products)

            analysis = self.analyzer.analyze(signals.products, signals.competitors)
            await self.publish_event(
                ANALYSIS_COMPLETED,
                {
                    "threats": len(analysis.threats),
                    "opportunities": len(analysis.opportunities),
                    "sentiment": analysis.sentiment.value,
                    "stale": analysis.stale,
                },
                run_id,
            )

            matrix = self.builder.build(signals, analysis)
            context.stats.opportunities_identified = len(matrix)
            await self.publish_event(
                MATRIX_BUILT,
                {
                    "transfers": len(matrix.transfers),
                    "price_changes": len(matrix.price_changes),
                    "clearances": len(matrix.clearances),
                },
                run_id,
            )

            records = self.validate(matrix.all())
            await self.publish_event(
                VALIDATION_COMPLETED,
                {
                    "validated": sum(r.status == ExecutionStatus.VALIDATED for r in records),
                    "skipped": sum(r.status == ExecutionStatus.SKIPPED for r in records),
                },
                run_id,
            )

            interrupted = await self.execute(records, dry_run, run_id)
        except CycleCancelled as e:
            logger.warning(f"Cycle {run_id} cancelled: {e}")
            defer_all(records, f"emergency stop: {e}")
            interrupted = True

        for record in records:
            context.stats.record(record)
        result.products_analyzed = context.stats.products_analyzed
        result.interrupted = interrupted
        self.aggregator.apply(result, records)
        result.market_sentiment = analysis.sentiment
        result.competitor_data_stale = signals.competitors.stale
        result.competitor_data_source = signals.competitors.source.value
        result.diagnostics = [f"{d.source}: {d.reason}" for d in signals.diagnostics]
        result.finished_at = self.clock.now()
        result.duration_seconds = round(self.clock.monotonic() - started, 3)

        logger.info(
            f"Cycle {run_id} finished: {result.outcome.value}, "
            f"{result.action_count} actions, profit impact {result.total_profit_impact:.2f}"
        )
        await self.publish_event(CYCLE_COMPLETED, result.model_dump(mode="json"), run_id)
        return result

    async def gather_signals(self, run_id: str) -> MarketSignals:
        try:
            return await self.gateway.gather(run_id=run_id, token=self.token)
        except SignalUnavailableError as e:
            logger.warning(f"Cycle {run_id} has no market signals: {e}")
            return MarketSignals(diagnostics=[Recoverable(e.source, e.reason)])

    def validate(self, opportunities: list[Opportunity]) -> list[ExecutionRecord]:
        """
        Move every opportunity to VALIDATED or SKIPPED.
        Raises MalformedOpportunityError, before anything executes, if any item is malformed.
        """
        outcomes = self.validator.validate_all(opportunities)
        fatal = [outcome.reason for _, outcome in outcomes if isinstance(outcome, Fatal)]
        if fatal:
            raise MalformedOpportunityError("; ".join(fatal))

        records = []
        for opportunity, outcome in outcomes:
            record = ExecutionRecord(opportunity)
            if isinstance(outcome, Accepted):
                record.transition(ExecutionStatus.VALIDATED)
            else:
                logger.info(
                    f"Guardrail {outcome.guardrail} blocked {opportunity.kind.value} "
                    f"for {opportunity.product_id}: {outcome.reason}"
                )
                record.transition(
                    ExecutionStatus.SKIPPED, reason=f"{outcome.guardrail}: {outcome.reason}"
                )
            records.append(record)
        return records

    async def execute(
        self, records: list[ExecutionRecord], dry_run: bool, run_id: str
    ) -> bool:
        g = self.config.guardrails
        transfers = [r for r in records if r.opportunity.kind == OpportunityType.TRANSFER]
        pricing = [r for r in records if r.opportunity.kind == OpportunityType.PRICE_CHANGE]
        pricing += [r for r in records if r.opportunity.kind == OpportunityType.CLEARANCE]

        interrupted = await self.transfer_executor.execute_all(
            transfers, CapBudget(g.max_transfers_per_cycle), dry_run=dry_run, run_id=run_id
        )
        if interrupted:
            defer_all(pricing, "cycle interrupted")
        else:
            interrupted = await self.pricing_executor.execute_all(
                pricing, CapBudget(g.max_price_changes_per_cycle), dry_run=dry_run, run_id=run_id
            )

        await self.publish_event(
            EXECUTION_COMPLETED,
            {
                "executed": sum(r.status == ExecutionStatus.EXECUTED for r in records),
                "failed": sum(r.status == ExecutionStatus.FAILED for r in records),
                "deferred": sum(r.status == ExecutionStatus.DEFERRED for r in records),
                "simulated": sum(r.status == ExecutionStatus.SIMULATED for r in records),
                "interrupted": interrupted,
            },
            run_id,
        )
        return interrupted
