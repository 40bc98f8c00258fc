from unittest.mock import AsyncMock, MagicMock

import pytest

from agents.decision_matrix import DecisionMatrix
from config.config import GuardrailConfig, OptimizationConfig
from connectors.dummy_execution import DummyTransferService
from connectors.kill_switch import ManualKillSwitch
from models.enums import CycleOutcome
from models.errors import MalformedOpportunityError
from models.events import (
    ALL_EVENT_TYPES,
    CYCLE_COMPLETED,
    CYCLE_STARTED,
    EXECUTION_COMPLETED,
    MATRIX_BUILT,
    SIGNALS_GATHERED,
    VALIDATION_COMPLETED,
)
from models.state import RunContext
from tests.mocks import FakeClock, build_test_controller, price_change, transfer
from utils.event_bus import EventBus


def make_context(config: OptimizationConfig, clock: FakeClock, **overrides) -> RunContext:
    snapshot = {**config.snapshot(), **overrides}
    return RunContext.create(1, snapshot, clock.now())


@pytest.mark.asyncio
async def test_cycle_executes_every_opportunity_type(clock):
    config = OptimizationConfig()
    controller, parts = build_test_controller(config, clock)

    result = await controller.cycle.run(make_context(config, clock))

    assert result.outcome == CycleOutcome.COMPLETED
    assert result.transfers.identified == 2
    assert result.transfers.executed == 2
    assert result.price_changes.executed == 1
    assert result.clearances.executed == 1
    assert result.total_profit_impact == pytest.approx(1890.0)
    assert result.competitor_data_source == "crawl"
    assert parts["transfer_service"].moved == {
        ("STORE-A", "P-FAST"): 60,
        ("STORE-B", "P-FAST"): 30,
    }
    assert parts["pricing_service"].prices == {"P-CHEAP": 47.5, "P-OLD": 24.0}


@pytest.mark.asyncio
async def test_transfers_run_before_pricing(clock):
    config = OptimizationConfig()
    order = []
    controller, parts = build_test_controller(config, clock)
    transfer_service = parts["transfer_service"]
    pricing_service = parts["pricing_service"]
    original_execute = transfer_service.execute
    original_set_price = pricing_service.set_price

    async def execute(*args):
        order.append("transfer")
        return await original_execute(*args)

    async def set_price(*args):
        order.append("price")
        return await original_set_price(*args)

    transfer_service.execute = execute
    pricing_service.set_price = set_price

    await controller.cycle.run(make_context(config, clock))

    assert order == ["transfer", "transfer", "price", "price"]


@pytest.mark.asyncio
async def test_dry_run_simulates_everything(clock):
    config = OptimizationConfig()
    controller, parts = build_test_controller(config, clock)

    result = await controller.cycle.run(make_context(config, clock, dry_run=True))

    assert result.dry_run is True
    assert result.outcome == CycleOutcome.DRY_RUN
    assert result.total_profit_impact == 0.0
    assert result.estimated_profit_impact == pytest.approx(1890.0)
    assert result.transfers.simulated == 2
    assert parts["transfer_service"].calls == []
    assert parts["pricing_service"].calls == []


@pytest.mark.asyncio
async def test_partial_failure_keeps_going(clock):
    config = OptimizationConfig()
    service = DummyTransferService()
    service.fail_on_calls = {1}
    controller, parts = build_test_controller(config, clock, transfer_service=service)

    result = await controller.cycle.run(make_context(config, clock))

    assert result.outcome == CycleOutcome.PARTIAL_FAILURE
    assert result.transfers.failed == 1
    assert result.transfers.executed == 1
    assert result.total_profit_impact == pytest.approx(1890.0 - 480.0)
    assert len(parts["pricing_service"].calls) == 2


@pytest.mark.asyncio
async def test_guardrail_blocks_are_counted(clock):
    # A 10% window rejects the 18.75% increase on P-CHEAP
    config = OptimizationConfig(guardrails=GuardrailConfig(max_price_change_percent=10.0))
    controller, parts = build_test_controller(config, clock)

    result = await controller.cycle.run(make_context(config, clock))

    assert result.price_changes.identified == 1
    assert result.price_changes.skipped_by_guardrail == 1
    assert "P-CHEAP" not in parts["pricing_service"].prices
    assert result.outcome == CycleOutcome.COMPLETED


@pytest.mark.asyncio
async def test_malformed_opportunity_aborts_before_execution(clock):
    config = OptimizationConfig()
    controller, parts = build_test_controller(config, clock)
    cycle = controller.cycle
    cycle.builder = MagicMock()
    cycle.builder.build.return_value = DecisionMatrix(
        transfers=[transfer()], price_changes=[price_change(current=0.0)]
    )

    with pytest.raises(MalformedOpportunityError, match="current price must be positive"):
        await cycle.run(make_context(config, clock))

    assert parts["transfer_service"].calls == []
    assert parts["pricing_service"].calls == []


@pytest.mark.asyncio
async def test_catalog_outage_means_nothing_to_do(clock):
    config = OptimizationConfig()
    controller, parts = build_test_controller(config, clock)
    parts["catalog"].fail = True

    result = await controller.cycle.run(make_context(config, clock))

    assert result.outcome == CycleOutcome.NOTHING_TO_DO
    assert result.diagnostics == ["catalog: catalog service unavailable"]


@pytest.mark.asyncio
async def test_kill_switch_mid_cycle_defers_pricing(clock):
    config = OptimizationConfig()
    kill_switch = ManualKillSwitch()
    controller, parts = build_test_controller(config, clock, kill_switch=kill_switch)
    transfer_service = parts["transfer_service"]
    original = transfer_service.execute

    async def execute_then_trip(*args):
        receipt = await original(*args)
        kill_switch.active = True
        return receipt

    transfer_service.execute = execute_then_trip

    result = await controller.cycle.run(make_context(config, clock))

    assert result.interrupted is True
    assert result.outcome == CycleOutcome.INTERRUPTED
    assert result.transfers.executed == 1
    assert result.transfers.deferred == 1
    assert result.price_changes.deferred == 1
    assert result.clearances.deferred == 1
    assert parts["pricing_service"].calls == []


@pytest.mark.asyncio
async def test_cancelled_token_interrupts_cycle(clock):
    config = OptimizationConfig()
    controller, parts = build_test_controller(config, clock)
    controller.token.cancel("operator stop")

    result = await controller.cycle.run(make_context(config, clock))

    assert result.interrupted is True
    assert parts["sales"].calls == []


@pytest.mark.asyncio
async def test_cycle_publishes_phase_events_in_order(clock):
    bus = EventBus()
    seen = []

    async def record(event):
        seen.append(event.event_type)

    for event_type in ALL_EVENT_TYPES:
        bus.subscribe(event_type, record)
    config = OptimizationConfig()
    controller, _ = build_test_controller(config, clock, event_bus=bus)

    await controller.cycle.run(make_context(config, clock))

    phases = [
        e
        for e in seen
        if e
        in (
            CYCLE_STARTED,
            SIGNALS_GATHERED,
            MATRIX_BUILT,
            VALIDATION_COMPLETED,
            EXECUTION_COMPLETED,
            CYCLE_COMPLETED,
        )
    ]
    assert phases == [
        CYCLE_STARTED,
        SIGNALS_GATHERED,
        MATRIX_BUILT,
        VALIDATION_COMPLETED,
        EXECUTION_COMPLETED,
        CYCLE_COMPLETED,
    ]


@pytest.mark.asyncio
async def test_cycle_completed_payload_is_the_result(clock):
    bus = EventBus()
    seen = AsyncMock()
    bus.subscribe(CYCLE_COMPLETED, seen)
    config = OptimizationConfig()
    controller, _ = build_test_controller(config, clock, event_bus=bus)

    result = await controller.cycle.run(make_context(config, clock))

    payload = seen.call_args.args[0].payload
    assert payload["run_id"] == result.run_id
    assert payload["outcome"] == "completed"
    assert payload["total_profit_impact"] == pytest.approx(1890.0)


@pytest.mark.asyncio
async def test_records_feed_run_stats(clock):
    config = OptimizationConfig()
    controller, _ = build_test_controller(config, clock)
    context = make_context(config, clock)

    result = await controller.cycle.run(context)

    assert context.stats.products_analyzed == 3
    assert result.products_analyzed == 3
    assert context.stats.opportunities_identified == 4
    assert context.stats.executed == 4
    assert context.stats.profit_impact == pytest.approx(1890.0)
