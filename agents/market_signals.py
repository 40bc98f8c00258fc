"""
Market Signal Gateway.

Collects sales velocity, inventory positions and competitor prices for one
optimization cycle. Per-product lookups fan out through a bounded pool;
failures degrade into diagnostics instead of aborting the cycle.
"""

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import replace
from typing import Any, TypeVar

from .base import BaseAgent
from config.config import OptimizationConfig
from connectors.interfaces import (
    CatalogProvider,
    CompetitorIntelligenceProvider,
    InventoryProvider,
    SalesSignalProvider,
)
from models.enums import AgentType, CompetitorDataSource, SnapshotState
from models.errors import CycleCancelled, SignalUnavailableError
from models.events import SIGNALS_GATHERED
from models.inventory import InventoryPosition, ProductVelocity
from models.outcomes import Recoverable
from models.pricing import CompetitorDataset
from models.signals import MarketSignals
from utils.cancellation import CancellationToken, call_with_timeout
from utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MarketSignalGateway(BaseAgent):
    """Fetches and normalizes the signals the decision matrix consumes."""

    def __init__(
        self,
        catalog: CatalogProvider,
        sales: SalesSignalProvider,
        inventory: InventoryProvider,
        competitors: CompetitorIntelligenceProvider,
        config: OptimizationConfig,
        event_bus=None,
        clock: Clock | None = None,
        agent_id: str = "market_signals",
    ):
        super().__init__(agent_id, AgentType.MARKET_SIGNALS, event_bus)
        self.catalog = catalog
        self.sales = sales
        self.inventory = inventory
        self.competitors = competitors
        self.config = config
        self.clock = clock or SystemClock()
        self.last_known: CompetitorDataset | None = None

    async def _call(
        self, awaitable: Awaitable[T], token: CancellationToken | None
    ) -> T:
        return await call_with_timeout(
            awaitable, self.config.signals.call_timeout_seconds, token
        )

    async def gather(
        self, run_id: str | None = None, token: CancellationToken | None = None
    ) -> MarketSignals:
        """
        Build the signal snapshot for one cycle.
        Raises SignalUnavailableError only when the catalog itself is unavailable.
        """
        signals = MarketSignals()
        try:
            products = await self._call(self.catalog.products(), token)
            outlets = await self._call(self.catalog.outlets(), token)
        except CycleCancelled:
            raise
        except SignalUnavailableError:
            raise
        except Exception as e:
            raise SignalUnavailableError("catalog", f"{type(e).__name__}: {e}") from e

        signals.products = {p.product_id: p for p in products}
        signals.outlets = sorted(outlets)
        product_ids = sorted(signals.products)

        signals.seasonal_factors = await self._optional(
            "seasonal",
            self.sales.seasonal_trends(self.config.signals.seasonal_window_days),
            token,
            signals,
        )
        signals.store_performance = await self._optional(
            "store_performance", self.sales.store_performance(), token, signals
        )

        semaphore = asyncio.Semaphore(self.config.signals.max_concurrency)
        velocity_results = await asyncio.gather(
            *(self._velocity(pid, semaphore, token) for pid in product_ids)
        )
        inventory_results = await asyncio.gather(
            *(
                self._inventory(pid, signals.outlets, semaphore, token)
                for pid in product_ids
            )
        )

        # Single writer: results are merged only after every lookup returned
        for pid, result in zip(product_ids, velocity_results):
            if isinstance(result, Recoverable):
                signals.diagnostics.append(result)
            elif result is not None:
                signals.velocity[pid] = result
        for pid, result in zip(product_ids, inventory_results):
            if isinstance(result, Recoverable):
                signals.diagnostics.append(result)
                continue
            positions, warehouse = result
            for position in positions:
                signals.inventory[(position.outlet_id, pid)] = position
            signals.warehouse_stock[pid] = warehouse

        signals.competitors = await self.competitor_dataset(product_ids, token)
        if signals.competitors.reason:
            signals.diagnostics.append(
                Recoverable("competitors", signals.competitors.reason)
            )

        logger.info(
            f"Signals gathered: {len(signals.products)} products, {len(signals.outlets)} outlets, "
            f"{len(signals.competitors.records)} competitor prices "
            f"({signals.competitors.source.value}), {len(signals.diagnostics)} diagnostics"
        )
        await self.publish_event(
            SIGNALS_GATHERED,
            {
                "products": len(signals.products),
                "outlets": len(signals.outlets),
                "velocity_records": len(signals.velocity),
                "competitor_records": len(signals.competitors.records),
                "competitor_source": signals.competitors.source.value,
                "competitor_stale": signals.competitors.stale,
                "diagnostics": [f"{d.source}: {d.reason}" for d in signals.diagnostics],
            },
            run_id=run_id,
        )
        return signals

    async def _optional(
        self,
        source: str,
        awaitable: Awaitable[dict[str, Any]],
        token: CancellationToken | None,
        signals: MarketSignals,
    ) -> dict[str, Any]:
        """Fetch a supplementary signal; fall back to defaults on failure."""
        try:
            return dict(await self._call(awaitable, token) or {})
        except CycleCancelled:
            raise
        except Exception as e:
            logger.warning(f"{source} unavailable, using defaults: {e}")
            signals.diagnostics.append(Recoverable(source, str(e) or type(e).__name__))
            return {}

    async def _velocity(
        self,
        product_id: str,
        semaphore: asyncio.Semaphore,
        token: CancellationToken | None,
    ) -> ProductVelocity | Recoverable | None:
        async with semaphore:
            try:
                return await self._call(
                    self.sales.velocity_for(
                        product_id, self.config.signals.velocity_window_days
                    ),
                    token,
                )
            except CycleCancelled:
                raise
            except Exception as e:
                logger.warning(f"Velocity lookup failed for {product_id}: {e}")
                return Recoverable("sales", f"{product_id}: {str(e) or type(e).__name__}")

    async def _inventory(
        self,
        product_id: str,
        outlets: list[str],
        semaphore: asyncio.Semaphore,
        token: CancellationToken | None,
    ) -> tuple[list[InventoryPosition], int] | Recoverable:
        async with semaphore:
            try:
                warehouse = await self._call(
                    self.inventory.warehouse_stock_for(product_id), token
                )
                positions = []
                for outlet_id in outlets:
                    on_hand = await self._call(
                        self.inventory.stock_for(outlet_id, product_id), token
                    )
                    reorder_point = await self._call(
                        self.inventory.reorder_point_for(outlet_id, product_id), token
                    )
                    positions.append(
                        InventoryPosition(outlet_id, product_id, on_hand, reorder_point)
                    )
                return positions, warehouse
            except CycleCancelled:
                raise
            except Exception as e:
                logger.warning(f"Inventory lookup failed for {product_id}: {e}")
                return Recoverable("inventory", f"{product_id}: {str(e) or type(e).__name__}")

    async def competitor_dataset(
        self, product_ids: list[str], token: CancellationToken | None = None
    ) -> CompetitorDataset:
        """
        Serve the collaborator's snapshot while it is younger than the crawl
        frequency, otherwise crawl. A failed crawl falls back to the last known
        dataset (stale) or to an empty dataset with a reason.
        """
        max_age = self.config.signals.crawl_frequency_hours * 3600
        try:
            snapshot = await self._call(self.competitors.fresh_snapshot(max_age), token)
        except CycleCancelled:
            raise
        except Exception as e:
            logger.warning(f"Competitor snapshot unavailable, crawling instead: {e}")
            snapshot = SnapshotState.STALE

        if not isinstance(snapshot, SnapshotState):
            dataset = CompetitorDataset(
                records=list(snapshot),
                fetched_at=self.clock.now(),
                source=CompetitorDataSource.SNAPSHOT,
            )
            self.last_known = dataset
            return dataset

        if not product_ids:
            return CompetitorDataset(reason="no competitive signal: empty catalog")

        try:
            records = await self._call(self.competitors.trigger_crawl(product_ids), token)
        except CycleCancelled:
            raise
        except Exception as e:
            reason = f"competitor crawl failed: {str(e) or type(e).__name__}"
            logger.warning(reason)
            if self.last_known is not None:
                return replace(
                    self.last_known,
                    stale=True,
                    source=CompetitorDataSource.LAST_KNOWN,
                    reason=reason,
                )
            return CompetitorDataset(reason=f"no competitive signal ({reason})")

        dataset = CompetitorDataset(
            records=list(records),
            fetched_at=self.clock.now(),
            source=CompetitorDataSource.CRAWL,
        )
        self.last_known = dataset
        return dataset

