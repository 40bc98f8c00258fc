"""
Progress reporter: turns structured loop events into human-readable log lines.
"""

import logging

from models.events import (
    ALL_EVENT_TYPES,
    CYCLE_COMPLETED,
    CYCLE_FAILED,
    CYCLE_SKIPPED,
    CYCLE_STARTED,
    EMERGENCY_STOP,
    EXECUTION_ITEM,
    MATRIX_BUILT,
    SIGNALS_GATHERED,
    OptimizationEvent,
)
from utils.event_bus import EventBus

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Subscribes to every event type; keeps the rendered lines for inspection."""

    def __init__(self, event_bus: EventBus, echo: bool = False):
        self.event_bus = event_bus
        self.echo = echo
        self.lines: list[str] = []
        for event_type in ALL_EVENT_TYPES:
            event_bus.subscribe(event_type, self.handle_event)

    def close(self) -> None:
        for event_type in ALL_EVENT_TYPES:
            self.event_bus.unsubscribe(event_type, self.handle_event)

    async def handle_event(self, event: OptimizationEvent) -> None:
        line = self.render(event)
        if line is None:
            return
        self.lines.append(line)
        logger.info(line)
        if self.echo:
            print(line)

    def render(self, event: OptimizationEvent) -> str | None:
        p = event.payload
        prefix = f"[{event.run_id}] " if event.run_id else ""
        if event.event_type == CYCLE_STARTED:
            mode = " in dry-run mode" if p.get("dry_run") else ""
            return f"{prefix}Starting optimization run #{p.get('run_number')}{mode}"
        if event.event_type == SIGNALS_GATHERED:
            stale = " (stale)" if p.get("competitor_stale") else ""
            return (
                f"{prefix}Analyzed {p.get('products')} products across {p.get('outlets')} outlets; "
                f"{p.get('competitor_records')} competitor prices from {p.get('competitor_source')}{stale}"
            )
        if event.event_type == MATRIX_BUILT:
            return (
                f"{prefix}Identified {p.get('transfers')} transfers, "
                f"{p.get('price_changes')} price changes, {p.get('clearances')} clearances"
            )
        if event.event_type == EXECUTION_ITEM:
            detail = p.get("error") or p.get("reason") or ""
            return (
                f"{prefix}  {p.get('status'):<9} {p.get('kind')} {p.get('product_id')}"
                + (f" ({detail})" if detail else "")
            )
        if event.event_type == CYCLE_COMPLETED:
            return (
                f"{prefix}Run finished: {p.get('outcome')}, "
                f"profit impact ${p.get('total_profit_impact', 0.0):,.2f}"
                f" (estimated ${p.get('estimated_profit_impact', 0.0):,.2f})"
            )
        if event.event_type == CYCLE_FAILED:
            return f"{prefix}Run failed: {p.get('error_type')}: {p.get('error_message')}"
        if event.event_type == CYCLE_SKIPPED:
            return f"Cycle skipped: {p.get('reason')}"
        if event.event_type == EMERGENCY_STOP:
            return f"EMERGENCY STOP: {p.get('reason')}"
        return None
