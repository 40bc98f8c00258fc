"""
Module: connectors.dummy_signals

In-memory sales, inventory and catalog sources for demos and tests.
"""

import asyncio
import logging

from models.enums import TrendDirection
from models.errors import SignalUnavailableError
from models.inventory import ProductInfo, ProductVelocity

logger = logging.getLogger(__name__)


class DummyCatalog:
    """Catalog of products and outlets held in memory."""

    def __init__(self, products: list[ProductInfo], outlets: list[str]):
        self._products = list(products)
        self._outlets = list(outlets)
        self.fail = False

    async def products(self) -> list[ProductInfo]:
        await asyncio.sleep(0)
        if self.fail:
            raise SignalUnavailableError("catalog", "catalog service unavailable")
        return list(self._products)

    async def outlets(self) -> list[str]:
        await asyncio.sleep(0)
        if self.fail:
            raise SignalUnavailableError("catalog", "catalog service unavailable")
        return list(self._outlets)


class DummySalesSignals:
    """
    Sales history aggregates. Products listed in `failing_products` raise,
    mimicking a flaky analytics backend.
    """

    def __init__(
        self,
        velocities: dict[str, ProductVelocity],
        seasonal: dict[str, float] | None = None,
        performance: dict[str, float] | None = None,
    ):
        self.velocities = velocities
        self.seasonal = seasonal or {}
        self.performance = performance or {}
        self.failing_products: set[str] = set()
        self.fail_seasonal = False
        self.fail_performance = False
        self.calls: list[str] = []

    async def velocity_for(self, product_id: str, window_days: int) -> ProductVelocity | None:
        await asyncio.sleep(0)
        self.calls.append(product_id)
        if product_id in self.failing_products:
            raise SignalUnavailableError("sales", f"no sales aggregate for {product_id}")
        return self.velocities.get(product_id)

    async def seasonal_trends(self, window_days: int) -> dict[str, float]:
        await asyncio.sleep(0)
        if self.fail_seasonal:
            raise SignalUnavailableError("seasonal", "seasonal trend query failed")
        return dict(self.seasonal)

    async def store_performance(self) -> dict[str, float]:
        await asyncio.sleep(0)
        if self.fail_performance:
            raise SignalUnavailableError("store_performance", "store ranking query failed")
        return dict(self.performance)


class DummyInventory:
    """
    Outlet and warehouse stock levels keyed by (outlet_id, product_id).
    """

    def __init__(
        self,
        stock: dict[tuple[str, str], int],
        warehouse: dict[str, int],
        reorder_points: dict[tuple[str, str], int] | None = None,
    ):
        self.stock = stock
        self.warehouse = warehouse
        self.reorder_points = reorder_points or {}
        self.failing_products: set[str] = set()

    async def stock_for(self, outlet_id: str, product_id: str) -> int:
        await asyncio.sleep(0)
        if product_id in self.failing_products:
            raise SignalUnavailableError("inventory", f"stock lookup failed for {product_id}")
        return self.stock.get((outlet_id, product_id), 0)

    async def warehouse_stock_for(self, product_id: str) -> int:
        await asyncio.sleep(0)
        if product_id in self.failing_products:
            raise SignalUnavailableError("inventory", f"warehouse lookup failed for {product_id}")
        return self.warehouse.get(product_id, 0)

    async def reorder_point_for(self, outlet_id: str, product_id: str) -> int:
        await asyncio.sleep(0)
        return self.reorder_points.get((outlet_id, product_id), 0)


def build_demo_market() -> tuple[DummyCatalog, DummySalesSignals, DummyInventory]:
    """
    A small chain with three outlets and a handful of products covering each
    opportunity type: a fast seller running short, a product priced above a
    competitor, one priced below, and aged stock.
    """
    products = [
        ProductInfo("SKU-1001", "Wireless Earbuds", 65.00, 40.00, monthly_volume=120),
        ProductInfo("SKU-1002", "Phone Case", 19.99, 6.50, monthly_volume=300),
        ProductInfo("SKU-1003", "USB-C Cable", 12.99, 3.20),
        ProductInfo("SKU-1004", "Smart Watch Band", 24.99, 9.00),
        ProductInfo("SKU-1005", "Bluetooth Speaker", 89.00, 52.00, monthly_volume=45),
    ]
    outlets = ["STORE-NORTH", "STORE-SOUTH", "STORE-CENTRAL"]
    velocities = {
        "SKU-1001": ProductVelocity("SKU-1001", 4.0, TrendDirection.UP),
        "SKU-1002": ProductVelocity("SKU-1002", 15.0, TrendDirection.FLAT),
        "SKU-1003": ProductVelocity("SKU-1003", 9.0, TrendDirection.FLAT),
        "SKU-1004": ProductVelocity("SKU-1004", 0.1, TrendDirection.DOWN, days_since_last_sale=65),
        "SKU-1005": ProductVelocity("SKU-1005", 1.5, TrendDirection.FLAT),
    }
    performance = {"STORE-NORTH": 0.5, "STORE-SOUTH": 0.3, "STORE-CENTRAL": 0.2}
    stock = {}
    for outlet in outlets:
        stock[(outlet, "SKU-1001")] = 6
        stock[(outlet, "SKU-1002")] = 15
        stock[(outlet, "SKU-1003")] = 80
        stock[(outlet, "SKU-1004")] = 40
        stock[(outlet, "SKU-1005")] = 12
    warehouse = {
        "SKU-1001": 200,
        "SKU-1002": 500,
        "SKU-1003": 1000,
        "SKU-1004": 0,
        "SKU-1005": 60,
    }
    return (
        DummyCatalog(products, outlets),
        DummySalesSignals(velocities, seasonal={"SKU-1002": 1.2}, performance=performance),
        DummyInventory(stock, warehouse),
    )
