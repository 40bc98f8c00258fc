"""
Module: connectors.interfaces

Protocols for the external collaborators the optimization loop depends on.
Implementations live alongside this module (in-memory and file based) or in
the host application.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from models.enums import SnapshotState
from models.inventory import ProductInfo, ProductVelocity
from models.pricing import CompetitorPriceRecord
from models.state import CycleResult


@dataclass(frozen=True)
class ExecutionReceipt:
    """Answer of an execution service for one action."""

    success: bool
    error: str | None = None
    reference: str | None = None


@runtime_checkable
class SalesSignalProvider(Protocol):
    async def velocity_for(
        self, product_id: str, window_days: int
    ) -> ProductVelocity | None: ...

    async def seasonal_trends(self, window_days: int) -> dict[str, float]: ...

    async def store_performance(self) -> dict[str, float]: ...


@runtime_checkable
class InventoryProvider(Protocol):
    async def stock_for(self, outlet_id: str, product_id: str) -> int: ...

    async def warehouse_stock_for(self, product_id: str) -> int: ...

    async def reorder_point_for(self, outlet_id: str, product_id: str) -> int: ...


@runtime_checkable
class CatalogProvider(Protocol):
    async def products(self) -> list[ProductInfo]: ...

    async def outlets(self) -> list[str]: ...


@runtime_checkable
class CompetitorIntelligenceProvider(Protocol):
    async def fresh_snapshot(
        self, max_age_seconds: float
    ) -> list[CompetitorPriceRecord] | SnapshotState: ...

    async def trigger_crawl(self, targets: list[str]) -> list[CompetitorPriceRecord]:
        """Crawl competitors for the given product ids. Raises on error."""
        ...


@runtime_checkable
class TransferExecutionService(Protocol):
    async def execute(
        self, product_id: str, from_outlet: str, to_outlet: str, qty: int
    ) -> ExecutionReceipt: ...


@runtime_checkable
class PricingExecutionService(Protocol):
    async def set_price(self, product_id: str, new_price: float) -> ExecutionReceipt: ...


@runtime_checkable
class KillSwitchSignal(Protocol):
    def is_active(self) -> bool: ...


@runtime_checkable
class RunHistoryStore(Protocol):
    def persist(self, result: CycleResult) -> str: ...

    def recent(self, limit: int = 10) -> list[CycleResult]: ...
