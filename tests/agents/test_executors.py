import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from agents.executors import CapBudget, PricingExecutor, TransferExecutor, defer_all
from connectors.dummy_execution import DummyPricingService, DummyTransferService
from connectors.interfaces import ExecutionReceipt
from connectors.kill_switch import ManualKillSwitch
from models.enums import ExecutionStatus
from models.events import EXECUTION_ITEM
from models.state import ExecutionRecord
from tests.mocks import BlockingPricingService, clearance, price_change, transfer
from utils.cancellation import CancellationToken
from utils.event_bus import EventBus


def validated(opportunities) -> list[ExecutionRecord]:
    records = [ExecutionRecord(o) for o in opportunities]
    for record in records:
        record.transition(ExecutionStatus.VALIDATED)
    return records


@pytest.mark.asyncio
async def test_failure_of_third_item_does_not_stop_the_rest():
    service = DummyTransferService()
    service.fail_on_calls = {3}
    executor = TransferExecutor(service)
    records = validated([transfer(product_id=f"P{i}") for i in range(1, 6)])

    interrupted = await executor.execute_all(records, CapBudget(50))

    assert interrupted is False
    assert len(service.calls) == 5
    statuses = [r.status for r in records]
    assert statuses.count(ExecutionStatus.FAILED) == 1
    assert records[2].status == ExecutionStatus.FAILED
    assert records[2].error == "rejected P3"
    assert [r.status for r in records[3:]] == [ExecutionStatus.EXECUTED] * 2


@pytest.mark.asyncio
async def test_exception_from_service_is_captured():
    service = DummyPricingService()
    service.raise_on_calls = {1}
    executor = PricingExecutor(service)
    records = validated([price_change(product_id="A"), price_change(product_id="B")])

    await executor.execute_all(records, CapBudget(10))

    assert records[0].status == ExecutionStatus.FAILED
    assert "unreachable" in records[0].error
    assert records[1].status == ExecutionStatus.EXECUTED
    assert service.prices == {"B": 95.0}


@pytest.mark.asyncio
async def test_timeout_marks_item_failed():
    service = DummyTransferService()
    service.delay_seconds = 0.2
    executor = TransferExecutor(service, call_timeout_seconds=0.01)
    records = validated([transfer()])

    await executor.execute_all(records, CapBudget(10))

    assert records[0].status == ExecutionStatus.FAILED
    assert records[0].history == [
        ExecutionStatus.PENDING,
        ExecutionStatus.VALIDATED,
        ExecutionStatus.EXECUTING,
        ExecutionStatus.FAILED,
    ]


@pytest.mark.asyncio
async def test_cap_defers_items_beyond_limit():
    service = DummyTransferService()
    executor = TransferExecutor(service)
    records = validated([transfer(product_id=f"P{i}") for i in range(4)])

    await executor.execute_all(records, CapBudget(2))

    assert [r.status for r in records] == [
        ExecutionStatus.EXECUTED,
        ExecutionStatus.EXECUTED,
        ExecutionStatus.DEFERRED,
        ExecutionStatus.DEFERRED,
    ]
    assert "cap of 2" in records[2].reason


@pytest.mark.asyncio
async def test_failed_attempts_count_towards_cap():
    service = DummyTransferService()
    service.fail_on_calls = {1}
    executor = TransferExecutor(service)
    records = validated([transfer(product_id="A"), transfer(product_id="B")])

    await executor.execute_all(records, CapBudget(1))

    assert records[0].status == ExecutionStatus.FAILED
    assert records[1].status == ExecutionStatus.DEFERRED


@pytest.mark.asyncio
async def test_price_changes_and_clearances_share_budget():
    service = DummyPricingService()
    executor = PricingExecutor(service)
    budget = CapBudget(2)
    changes = validated([price_change(product_id="A"), price_change(product_id="B")])
    markdowns = validated([clearance(product_id="C")])

    await executor.execute_all(changes, budget)
    await executor.execute_all(markdowns, budget)

    assert markdowns[0].status == ExecutionStatus.DEFERRED
    assert len(service.calls) == 2


@pytest.mark.asyncio
async def test_dry_run_simulates_without_calling_service():
    service = DummyPricingService()
    executor = PricingExecutor(service)
    records = validated([price_change(), clearance(product_id="P2")])

    await executor.execute_all(records, CapBudget(10), dry_run=True)

    assert [r.status for r in records] == [ExecutionStatus.SIMULATED] * 2
    assert service.calls == []


@pytest.mark.asyncio
async def test_kill_switch_defers_remaining_items():
    kill_switch = ManualKillSwitch()
    service = DummyTransferService()
    executor = TransferExecutor(service, kill_switch=kill_switch)
    records = validated([transfer(product_id=f"P{i}") for i in range(3)])

    original = service.execute

    async def execute_then_trip(*args):
        receipt = await original(*args)
        kill_switch.active = True
        return receipt

    service.execute = execute_then_trip
    interrupted = await executor.execute_all(records, CapBudget(10))

    assert interrupted is True
    assert records[0].status == ExecutionStatus.EXECUTED
    assert [r.status for r in records[1:]] == [ExecutionStatus.DEFERRED] * 2
    assert records[1].reason == "kill switch active"


@pytest.mark.asyncio
async def test_unreadable_kill_switch_defers_items():
    kill_switch = MagicMock()
    kill_switch.is_active.side_effect = PermissionError("storage dir unreadable")
    service = DummyTransferService()
    executor = TransferExecutor(service, kill_switch=kill_switch)
    records = validated([transfer(product_id=f"P{i}") for i in range(2)])

    interrupted = await executor.execute_all(records, CapBudget(10))

    assert interrupted is True
    assert [r.status for r in records] == [ExecutionStatus.DEFERRED] * 2
    assert service.calls == []


@pytest.mark.asyncio
async def test_emergency_stop_aborts_in_flight_call():
    service = BlockingPricingService()
    token = CancellationToken()
    executor = PricingExecutor(service, token=token, call_timeout_seconds=5)
    records = validated([price_change(product_id="A"), price_change(product_id="B")])

    task = asyncio.create_task(executor.execute_all(records, CapBudget(10)))
    await service.started.wait()
    token.cancel("operator panic")
    interrupted = await task

    assert interrupted is True
    assert records[0].status == ExecutionStatus.FAILED
    assert "operator panic" in records[0].error
    assert records[1].status == ExecutionStatus.DEFERRED
    assert service.prices == {}


@pytest.mark.asyncio
async def test_only_validated_records_are_executed():
    service = DummyTransferService()
    executor = TransferExecutor(service)
    skipped = ExecutionRecord(transfer(product_id="SKIP"))
    skipped.transition(ExecutionStatus.SKIPPED, reason="warehouse_fraction: too many")
    records = [skipped, *validated([transfer(product_id="GO")])]

    await executor.execute_all(records, CapBudget(10))

    assert [c[0] for c in service.calls] == ["GO"]
    assert skipped.status == ExecutionStatus.SKIPPED


@pytest.mark.asyncio
async def test_execution_item_events_published():
    bus = EventBus()
    seen = AsyncMock()
    bus.subscribe(EXECUTION_ITEM, seen)
    executor = TransferExecutor(DummyTransferService(), event_bus=bus)

    await executor.execute_all(validated([transfer()]), CapBudget(10), run_id="AUTO_X")

    seen.assert_awaited_once()
    event = seen.call_args.args[0]
    assert event.payload["status"] == "EXECUTED"
    assert event.run_id == "AUTO_X"


@pytest.mark.asyncio
async def test_wrong_opportunity_type_fails_item():
    executor = TransferExecutor(AsyncMock())
    records = validated([price_change()])

    await executor.execute_all(records, CapBudget(10))

    assert records[0].status == ExecutionStatus.FAILED
    assert "cannot run" in records[0].error


@pytest.mark.asyncio
async def test_failed_receipt_without_message():
    service = AsyncMock()
    service.set_price.return_value = ExecutionReceipt(success=False)
    executor = PricingExecutor(service)
    records = validated([price_change()])

    await executor.execute_all(records, CapBudget(10))

    assert records[0].error == "rejected by service"


def test_defer_all_leaves_terminal_records_untouched():
    done = ExecutionRecord(transfer())
    done.transition(ExecutionStatus.SKIPPED)
    pending = validated([transfer(product_id="P2")])

    defer_all([done, *pending], "stop")

    assert done.status == ExecutionStatus.SKIPPED
    assert pending[0].status == ExecutionStatus.DEFERRED
