import asyncio
import logging
import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from agents.controller import SleepPolicy
from config.config import ControllerConfig, OptimizationConfig
from connectors.dummy_execution import DummyPricingService, DummyTransferService
from connectors.kill_switch import ManualKillSwitch
from models.enums import ControllerState, CycleOutcome
from models.errors import ConfigurationError, CycleFatalError
from models.events import CYCLE_COMPLETED, CYCLE_FAILED, CYCLE_SKIPPED, EMERGENCY_STOP
from tests.mocks import BlockingPricingService, FakeClock, build_test_controller
from utils.event_bus import EventBus


class ParkedClock(FakeClock):
    """Sleeps never finish on their own; only a wake-up ends them."""

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await asyncio.Event().wait()


class UnreadableKillSwitch(ManualKillSwitch):
    """Raises on every poll while broken, as a storage dir without read access would."""

    def __init__(self, broken: bool = True):
        super().__init__()
        self.broken = broken

    def is_active(self) -> bool:
        if self.broken:
            raise PermissionError("storage dir unreadable")
        return super().is_active()


# --- Sleep policy --- #


def test_base_sleep_scales_with_actions():
    policy = SleepPolicy(ControllerConfig(), random.Random(1))

    assert policy.base_sleep(0) == 3600.0
    assert policy.base_sleep(5) == pytest.approx(1950.0)
    assert policy.base_sleep(10) == 300.0
    assert policy.base_sleep(40) == 300.0


def test_next_sleep_without_jitter_is_exact():
    policy = SleepPolicy(ControllerConfig(jitter_fraction=0.0))

    assert policy.next_sleep(4) == pytest.approx(2280.0)


@pytest.mark.parametrize("actions", [0, 3, 10, 100])
def test_next_sleep_stays_within_bounds(actions):
    config = ControllerConfig()
    policy = SleepPolicy(config, random.Random(42))

    for _ in range(50):
        value = policy.next_sleep(actions)
        assert config.min_sleep_seconds <= value <= config.max_sleep_seconds
        base = policy.base_sleep(actions)
        assert abs(value - base) <= base * config.jitter_fraction + 1e-6


def test_seeded_policies_agree():
    first = SleepPolicy(ControllerConfig(), random.Random(3))
    second = SleepPolicy(ControllerConfig(), random.Random(3))

    assert [first.next_sleep(2) for _ in range(5)] == [second.next_sleep(2) for _ in range(5)]


# --- Single runs --- #


@pytest.mark.asyncio
async def test_run_once_returns_result_with_run_id(clock):
    controller, parts = build_test_controller(clock=clock)

    result = await controller.run_once()

    assert result.run_id == "AUTO_20240301090000_0001"
    assert result.run_number == 1
    assert result.outcome == CycleOutcome.COMPLETED
    assert 2052.0 <= result.next_run_recommended_seconds <= 2508.0
    assert controller.state == ControllerState.IDLE
    assert controller.last_result is result
    assert parts["history_store"].results == [result]
    assert controller.monitor.summary()["actions"] == 4.0


@pytest.mark.asyncio
async def test_run_numbers_increase(clock):
    controller, _ = build_test_controller(clock=clock)

    first = await controller.run_once()
    clock.advance(60)
    second = await controller.run_once()

    assert first.run_id != second.run_id
    assert second.run_id == "AUTO_20240301090100_0002"
    assert [r.run_number for r in controller.history] == [1, 2]


@pytest.mark.asyncio
async def test_kill_switch_skips_cycle_without_counting_run(clock):
    bus = EventBus()
    skipped = AsyncMock()
    bus.subscribe(CYCLE_SKIPPED, skipped)
    controller, parts = build_test_controller(
        clock=clock, kill_switch=ManualKillSwitch(active=True), event_bus=bus
    )

    result = await controller.run_once()

    assert result is None
    assert controller.run_number == 0
    assert controller.skipped_cycles == 1
    assert parts["sales"].calls == []
    skipped.assert_awaited_once()


@pytest.mark.asyncio
async def test_failed_cycle_raises_fatal_and_records_error(clock):
    bus = EventBus()
    failed = AsyncMock()
    bus.subscribe(CYCLE_FAILED, failed)
    controller, _ = build_test_controller(clock=clock, event_bus=bus)
    controller.cycle.run = AsyncMock(side_effect=RuntimeError("boom"))

    with pytest.raises(CycleFatalError) as exc_info:
        await controller.run_once()

    assert isinstance(exc_info.value.cause, RuntimeError)
    assert exc_info.value.run_id == "AUTO_20240301090000_0001"
    assert controller.failed_cycles == 1
    assert "boom" in controller.last_error
    assert controller.state == ControllerState.IDLE
    assert failed.call_args.args[0].payload["error_type"] == "RuntimeError"


@pytest.mark.asyncio
async def test_cycle_exceeding_time_limit_is_fatal(clock):
    config = OptimizationConfig(controller=ControllerConfig(max_cycle_seconds=0.05))
    controller, _ = build_test_controller(config, clock=clock)

    async def slow_cycle(context):
        await asyncio.sleep(1)

    controller.cycle.run = slow_cycle

    with pytest.raises(CycleFatalError, match="exceeded"):
        await controller.run_once()


@pytest.mark.asyncio
async def test_time_limit_cancels_hung_price_change(clock):
    config = OptimizationConfig(controller=ControllerConfig(max_cycle_seconds=0.2))
    service = BlockingPricingService()
    controller, parts = build_test_controller(config, clock=clock, pricing_service=service)

    with pytest.raises(CycleFatalError, match="exceeded"):
        await controller.run_once()
    service.release.set()
    await asyncio.sleep(0.01)

    assert service.prices == {}
    assert parts["history_store"].results == []


@pytest.mark.asyncio
async def test_unreadable_kill_switch_skips_cycle(clock, caplog):
    switch = UnreadableKillSwitch()
    controller, parts = build_test_controller(clock=clock, kill_switch=switch)

    with caplog.at_level(logging.ERROR):
        result = await controller.run_once()

    assert result is None
    assert controller.skipped_cycles == 1
    assert parts["sales"].calls == []
    assert "Kill switch unreadable" in caplog.text
    assert controller.status()["kill_switch_active"] is True


@pytest.mark.asyncio
async def test_unreadable_kill_switch_does_not_end_loop(clock):
    bus = EventBus()
    switch = UnreadableKillSwitch(broken=False)
    controller, _ = build_test_controller(clock=clock, kill_switch=switch, event_bus=bus)

    async def break_switch(event):
        switch.broken = True

    bus.subscribe(CYCLE_COMPLETED, break_switch)

    await controller.run_forever(max_cycles=3)

    assert controller.run_number == 1
    assert controller.skipped_cycles == 2
    assert clock.sleeps[1:] == [300.0]
    assert controller.state == ControllerState.STOPPED


@pytest.mark.asyncio
async def test_post_cycle_error_is_fatal_and_backs_off(clock):
    controller, _ = build_test_controller(clock=clock)
    controller.monitor.record_cycle = MagicMock(side_effect=ValueError("bad metric"))

    await controller.run_forever(max_cycles=2)

    assert controller.failed_cycles == 2
    assert "bad metric" in controller.last_error
    assert clock.sleeps == [600.0]


@pytest.mark.asyncio
async def test_pre_cycle_error_is_fatal(clock):
    controller, parts = build_test_controller(clock=clock)
    controller.config.snapshot = MagicMock(side_effect=TypeError("unserializable"))

    with pytest.raises(CycleFatalError) as exc_info:
        await controller.run_once()

    assert exc_info.value.run_id == "#1"
    assert parts["sales"].calls == []
    assert controller.state == ControllerState.IDLE


@pytest.mark.asyncio
async def test_history_store_error_does_not_fail_cycle(clock):
    controller, parts = build_test_controller(clock=clock)
    parts["history_store"].persist = MagicMock(side_effect=OSError("disk full"))

    result = await controller.run_once()

    assert result is not None
    assert controller.last_result is result


def test_invalid_config_rejected_at_build():
    config = OptimizationConfig(controller=ControllerConfig(min_sleep_seconds=0))

    with pytest.raises(ConfigurationError):
        build_test_controller(config)


# --- Continuous loop --- #


@pytest.mark.asyncio
async def test_run_forever_respects_max_cycles(clock):
    controller, _ = build_test_controller(clock=clock)

    await controller.run_forever(max_cycles=3)

    assert controller.run_number == 3
    # No sleep after the final pass
    assert len(clock.sleeps) == 2
    assert all(300.0 <= s <= 3600.0 for s in clock.sleeps)
    assert controller.state == ControllerState.STOPPED


@pytest.mark.asyncio
async def test_kill_switch_cooldown_between_skipped_passes(clock):
    controller, _ = build_test_controller(clock=clock, kill_switch=ManualKillSwitch(active=True))

    await controller.run_forever(max_cycles=3)

    assert controller.run_number == 0
    assert controller.skipped_cycles == 3
    assert clock.sleeps == [300.0, 300.0]


@pytest.mark.asyncio
async def test_failures_back_off_and_loop_continues(clock):
    controller, _ = build_test_controller(clock=clock)
    controller.cycle.run = AsyncMock(side_effect=RuntimeError("downstream outage"))

    await controller.run_forever(max_cycles=2)

    assert controller.failed_cycles == 2
    assert clock.sleeps == [600.0]


@pytest.mark.asyncio
async def test_stop_lets_current_cycle_finish(clock):
    bus = EventBus()
    controller, _ = build_test_controller(clock=clock, event_bus=bus)

    async def stop_after_first(event):
        controller.stop()

    bus.subscribe(CYCLE_COMPLETED, stop_after_first)

    await controller.run_forever()

    assert controller.run_number == 1
    assert controller.last_result.outcome == CycleOutcome.COMPLETED
    assert clock.sleeps == []
    assert controller.state == ControllerState.STOPPED


@pytest.mark.asyncio
async def test_stop_wakes_sleeping_loop():
    clock = ParkedClock()
    controller, _ = build_test_controller(clock=clock)

    task = asyncio.create_task(controller.run_forever())
    while controller.state != ControllerState.SLEEPING:
        await asyncio.sleep(0)
    controller.stop()
    await asyncio.wait_for(task, timeout=1)

    assert controller.run_number == 1
    assert controller.state == ControllerState.STOPPED


@pytest.mark.asyncio
async def test_stopped_controller_stays_stopped(clock):
    controller, _ = build_test_controller(clock=clock)
    await controller.run_forever(max_cycles=1)

    assert await controller.run_once() is None
    assert controller.state == ControllerState.STOPPED


# --- Emergency stop --- #


@pytest.mark.asyncio
async def test_emergency_stop_aborts_in_flight_cycle(clock):
    bus = EventBus()
    stopped = AsyncMock()
    bus.subscribe(EMERGENCY_STOP, stopped)
    service = BlockingPricingService()
    controller, _ = build_test_controller(clock=clock, pricing_service=service, event_bus=bus)

    task = asyncio.create_task(controller.run_once())
    await service.started.wait()
    await controller.emergency_stop("margin collapse")
    result = await asyncio.wait_for(task, timeout=1)

    assert result.interrupted is True
    assert result.outcome == CycleOutcome.INTERRUPTED
    assert result.price_changes.failed + result.clearances.failed == 1
    assert service.prices == {}
    assert controller.state == ControllerState.STOPPED
    assert stopped.call_args.args[0].payload == {"reason": "margin collapse"}
    assert await controller.run_once() is None


@pytest.mark.asyncio
async def test_emergency_stop_while_idle(clock):
    controller, parts = build_test_controller(clock=clock)

    await controller.emergency_stop()
    await controller.run_forever()

    assert controller.run_number == 0
    assert parts["sales"].calls == []
    assert controller.state == ControllerState.STOPPED


# --- Status --- #


@pytest.mark.asyncio
async def test_status_reports_last_run(clock):
    controller, _ = build_test_controller(clock=clock)
    await controller.run_once()

    status = controller.status()

    assert status["state"] == "IDLE"
    assert status["run_number"] == 1
    assert status["kill_switch_active"] is False
    assert status["last_run_id"] == "AUTO_20240301090000_0001"
    assert status["last_outcome"] == "completed"
    assert status["cumulative_profit_impact"] == pytest.approx(1890.0)
    assert status["alerts"] == []
    assert status["recommendations"] == []
    assert status["last_run_stats"]["products_analyzed"] == 3
    assert status["last_run_stats"]["executed"] == 4
    assert controller.contexts[-1].run_id == status["last_run_id"]


def test_status_before_any_run():
    controller, _ = build_test_controller()

    status = controller.status()

    assert status["state"] == "IDLE"
    assert status["last_run_id"] is None
    assert status["next_run_recommended_seconds"] is None
    assert status["last_run_stats"] is None


@pytest.mark.asyncio
async def test_failure_rate_alert_raised(clock):
    transfers = DummyTransferService()
    transfers.fail_products = {"P-FAST"}
    pricing = DummyPricingService()
    pricing.fail_products = {"P-CHEAP", "P-OLD"}
    controller, _ = build_test_controller(
        clock=clock, transfer_service=transfers, pricing_service=pricing
    )

    result = await controller.run_once()

    assert result.outcome == CycleOutcome.EXECUTION_BROKEN
    assert any("failure_rate_percent" in alert for alert in controller.status()["alerts"])


def test_status_surfaces_monitor_recommendations():
    controller, _ = build_test_controller()
    for failures in [0.0, 1.0, 2.0, 2.0, 3.0]:
        controller.monitor.record_metrics({"failures": failures})

    recommendations = controller.status()["recommendations"]

    assert any("Execution failures" in r for r in recommendations)
