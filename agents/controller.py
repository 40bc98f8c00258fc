"""
Cycle Controller.

Owns the loop: IDLE -> RUNNING -> (SLEEPING -> RUNNING)* -> STOPPED. Polls the
kill switch before each cycle, adapts the sleep to the amount of work done,
backs off after failures and supports graceful and emergency stops.
"""

import asyncio
import logging
import random
from collections import deque
from dataclasses import asdict
from typing import Any

from .base import BaseAgent
from agents.cycle import OptimizationCycle
from agents.executors import PricingExecutor, TransferExecutor
from agents.market_signals import MarketSignalGateway
from config.config import ControllerConfig, OptimizationConfig
from connectors.interfaces import (
    CatalogProvider,
    CompetitorIntelligenceProvider,
    InventoryProvider,
    KillSwitchSignal,
    PricingExecutionService,
    RunHistoryStore,
    SalesSignalProvider,
    TransferExecutionService,
)
from connectors.kill_switch import kill_switch_engaged
from models.enums import AgentType, ControllerState
from models.errors import CycleFatalError
from models.events import (
    CONTROLLER_STATE_CHANGED,
    CYCLE_FAILED,
    CYCLE_SKIPPED,
    EMERGENCY_STOP,
)
from models.state import CycleResult, RunContext
from utils.cancellation import CancellationToken, interruptible_sleep
from utils.clock import Clock, SystemClock
from utils.event_bus import EventBus
from utils.monitoring import CycleMonitor

logger = logging.getLogger(__name__)


class SleepPolicy:
    """Busy cycles shorten the next sleep; idle cycles stretch it."""

    def __init__(self, config: ControllerConfig, rng: random.Random | None = None):
        self.config = config
        self.rng = rng or random.Random()

    def base_sleep(self, actions: int) -> float:
        c = self.config
        ratio = min(max(actions, 0), c.actions_for_min_sleep) / c.actions_for_min_sleep
        return c.max_sleep_seconds - (c.max_sleep_seconds - c.min_sleep_seconds) * ratio

    def next_sleep(self, actions: int) -> float:
        c = self.config
        base = self.base_sleep(actions)
        jitter = base * c.jitter_fraction * self.rng.uniform(-1.0, 1.0)
        return round(min(c.max_sleep_seconds, max(c.min_sleep_seconds, base + jitter)), 3)


class CycleController(BaseAgent):
    def __init__(
        self,
        cycle: OptimizationCycle,
        config: OptimizationConfig,
        kill_switch: KillSwitchSignal,
        history_store: RunHistoryStore | None = None,
        token: CancellationToken | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        monitor: CycleMonitor | None = None,
        event_bus: EventBus | None = None,
        history_limit: int = 100,
    ):
        super().__init__("cycle_controller", AgentType.CONTROLLER, event_bus)
        self.cycle = cycle
        self.config = config
        self.kill_switch = kill_switch
        self.history_store = history_store
        self.token = token or cycle.token or CancellationToken()
        self.clock = clock or SystemClock()
        self.sleep_policy = SleepPolicy(config.controller, rng)
        self.monitor = monitor or CycleMonitor()
        self.state = ControllerState.IDLE
        self.run_number = 0
        self.history: deque[CycleResult] = deque(maxlen=history_limit)
        self.contexts: deque[RunContext] = deque(maxlen=history_limit)
        self.last_result: CycleResult | None = None
        self.last_error: str | None = None
        self.skipped_cycles = 0
        self.failed_cycles = 0
        self._stop_requested = False
        # Wakes the loop from SLEEPING on stop() or emergency_stop()
        self._wake = CancellationToken()

    async def _set_state(self, state: ControllerState) -> None:
        if self.state == state or self.state == ControllerState.STOPPED:
            return
        previous, self.state = self.state, state
        logger.debug(f"Controller {previous.value} -> {state.value}")
        await self.publish_event(
            CONTROLLER_STATE_CHANGED, {"from": previous.value, "to": state.value}
        )

    async def run_once(self) -> CycleResult | None:
        """
        Run one cycle. Returns None if the kill switch skipped it or the
        controller is stopped. Raises CycleFatalError if the cycle failed.
        """
        if self.state == ControllerState.STOPPED or self.token.cancelled:
            return None
        if kill_switch_engaged(self.kill_switch):
            self.skipped_cycles += 1
            logger.warning("Kill switch active; skipping optimization cycle")
            await self.publish_event(
                CYCLE_SKIPPED, {"reason": "kill switch active", "run_number": self.run_number}
            )
            return None

        self.run_number += 1
        context: RunContext | None = None
        await self._set_state(ControllerState.RUNNING)
        try:
            context = RunContext.create(self.run_number, self.config.snapshot(), self.clock.now())
            result = await self._run_guarded(context)
            result.next_run_recommended_seconds = self.sleep_policy.next_sleep(
                result.action_count
            )
            self._archive(result, context)
        except Exception as e:
            run_id = context.run_id if context is not None else f"#{self.run_number}"
            error = CycleFatalError(run_id, e)
            await self._record_failure(error)
            raise error from e
        finally:
            if self.state == ControllerState.RUNNING:
                await self._set_state(ControllerState.IDLE)
        return result

    async def _run_guarded(self, context: RunContext) -> CycleResult:
        limit = self.config.controller.max_cycle_seconds
        try:
            return await asyncio.wait_for(self.cycle.run(context), limit)
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"cycle exceeded {limit:g}s") from e

    def _archive(self, result: CycleResult, context: RunContext) -> None:
        self.last_result = result
        self.last_error = None
        self.history.append(result)
        self.contexts.append(context)
        self.monitor.record_cycle(result)
        if self.history_store is not None:
            try:
                self.history_store.persist(result)
            except Exception as e:
                logger.error(f"Failed to persist run {result.run_id}: {e}", exc_info=True)

    async def _record_failure(self, error: CycleFatalError) -> None:
        self.failed_cycles += 1
        self.last_error = str(error)
        await self.handle_exception(
            error.cause, {"stage": "cycle", "run_number": self.run_number}, run_id=error.run_id
        )
        await self.publish_event(
            CYCLE_FAILED,
            {"error_type": type(error.cause).__name__, "error_message": str(error.cause)},
            run_id=error.run_id,
        )

    async def run_forever(self, max_cycles: int | None = None) -> None:
        """
        Loop until stop(), emergency_stop() or `max_cycles` loop passes
        (skipped and failed passes count).
        """
        c = self.config.controller
        passes = 0
        logger.info(
            "Continuous optimization started"
            + (f" for {max_cycles} cycles" if max_cycles is not None else "")
        )
        try:
            while not self._stop_requested and not self.token.cancelled:
                try:
                    result = await self.run_once()
                    if result is not None:
                        sleep_for = result.next_run_recommended_seconds
                    else:
                        sleep_for = c.kill_switch_cooldown_seconds
                except CycleFatalError as e:
                    logger.error(f"{e}; backing off for {c.error_backoff_seconds:.0f}s")
                    sleep_for = c.error_backoff_seconds

                passes += 1
                if max_cycles is not None and passes >= max_cycles:
                    break
                if self._stop_requested or self.token.cancelled:
                    break
                await self._set_state(ControllerState.SLEEPING)
                logger.info(f"Sleeping {sleep_for:.0f}s before the next cycle")
                if await interruptible_sleep(self.clock, sleep_for, self._wake):
                    break
        finally:
            await self._set_state(ControllerState.STOPPED)
            logger.info(f"Continuous optimization stopped after {self.run_number} runs")

    def stop(self) -> None:
        """Graceful stop: the current cycle finishes, the loop does not sleep again."""
        self._stop_requested = True
        self._wake.cancel("stop requested")

    async def emergency_stop(self, reason: str = "emergency stop") -> None:
        """Abort immediately: in-flight calls are cancelled and the controller is STOPPED."""
        logger.critical(f"EMERGENCY STOP: {reason}")
        self._stop_requested = True
        self.token.cancel(reason)
        self._wake.cancel(reason)
        await self._set_state(ControllerState.STOPPED)
        await self.publish_event(EMERGENCY_STOP, {"reason": reason})

    def status(self) -> dict[str, Any]:
        last = self.last_result
        return {
            "state": self.state.value,
            "run_number": self.run_number,
            "kill_switch_active": kill_switch_engaged(self.kill_switch),
            "dry_run": self.config.dry_run,
            "skipped_cycles": self.skipped_cycles,
            "failed_cycles": self.failed_cycles,
            "last_run_id": last.run_id if last else None,
            "last_outcome": last.outcome.value if last else None,
            "last_error": self.last_error,
            "next_run_recommended_seconds": last.next_run_recommended_seconds if last else None,
            "cumulative_profit_impact": self.cycle.aggregator.cumulative_profit,
            "last_run_stats": asdict(self.contexts[-1].stats) if self.contexts else None,
            "alerts": list(self.monitor.alerts),
            "recommendations": self.monitor.recommend_adaptation(),
        }


def build_controller(
    config: OptimizationConfig,
    catalog: CatalogProvider,
    sales: SalesSignalProvider,
    inventory: InventoryProvider,
    competitors: CompetitorIntelligenceProvider,
    transfer_service: TransferExecutionService,
    pricing_service: PricingExecutionService,
    kill_switch: KillSwitchSignal,
    history_store: RunHistoryStore | None = None,
    event_bus: EventBus | None = None,
    clock: Clock | None = None,
    rng: random.Random | None = None,
) -> CycleController:
    """Wire the loop components around one shared cancellation token."""
    config.validate()
    clock = clock or SystemClock()
    token = CancellationToken()
    timeout = config.signals.call_timeout_seconds
    gateway = MarketSignalGateway(
        catalog, sales, inventory, competitors, config, event_bus=event_bus, clock=clock
    )
    cycle = OptimizationCycle(
        config,
        gateway,
        TransferExecutor(
            transfer_service,
            kill_switch=kill_switch,
            token=token,
            call_timeout_seconds=timeout,
            event_bus=event_bus,
        ),
        PricingExecutor(
            pricing_service,
            kill_switch=kill_switch,
            token=token,
            call_timeout_seconds=timeout,
            event_bus=event_bus,
        ),
        token=token,
        clock=clock,
        event_bus=event_bus,
    )
    return CycleController(
        cycle,
        config,
        kill_switch,
        history_store=history_store,
        token=token,
        clock=clock,
        rng=rng,
        event_bus=event_bus,
    )
