from datetime import datetime, timedelta

import pytest

from connectors.dummy_competitor_intel import DummyCompetitorIntel, build_demo_competitors
from connectors.dummy_execution import DummyPricingService, DummyTransferService
from connectors.dummy_signals import build_demo_market
from connectors.interfaces import (
    CatalogProvider,
    CompetitorIntelligenceProvider,
    InventoryProvider,
    PricingExecutionService,
    SalesSignalProvider,
    TransferExecutionService,
)
from models.enums import STALE
from models.errors import SignalUnavailableError


class Now:
    def __init__(self):
        self.value = datetime(2024, 3, 1, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.value


def test_dummies_satisfy_protocols():
    catalog, sales, inventory = build_demo_market()
    assert isinstance(catalog, CatalogProvider)
    assert isinstance(sales, SalesSignalProvider)
    assert isinstance(inventory, InventoryProvider)
    assert isinstance(build_demo_competitors(), CompetitorIntelligenceProvider)
    assert isinstance(DummyTransferService(), TransferExecutionService)
    assert isinstance(DummyPricingService(), PricingExecutionService)


@pytest.mark.asyncio
async def test_transfer_service_ledger_and_scripted_failure():
    service = DummyTransferService()
    service.fail_products = {"P2"}

    ok = await service.execute("P1", "WH", "S1", 5)
    again = await service.execute("P1", "WH", "S1", 3)
    rejected = await service.execute("P2", "WH", "S1", 1)

    assert ok.success and again.success
    assert ok.reference == "DummyTransferService-1"
    assert rejected.success is False
    assert rejected.error == "rejected P2"
    assert service.moved == {("S1", "P1"): 8}
    assert len(service.calls) == 3


@pytest.mark.asyncio
async def test_pricing_service_raises_on_scripted_call():
    service = DummyPricingService()
    service.raise_on_calls = {2}

    await service.set_price("P1", 9.99)
    with pytest.raises(ConnectionError, match="call 2"):
        await service.set_price("P2", 19.99)

    assert service.prices == {"P1": 9.99}


@pytest.mark.asyncio
async def test_competitor_snapshot_goes_stale():
    now = Now()
    intel = DummyCompetitorIntel({"COMP-A": {"P1": 10.0, "P2": 20.0}}, now=now)

    assert await intel.fresh_snapshot(3600) == STALE

    records = await intel.trigger_crawl(["P1"])
    assert [(r.competitor_id, r.product_id, r.price) for r in records] == [("COMP-A", "P1", 10.0)]
    assert await intel.fresh_snapshot(3600) == records

    now.value += timedelta(seconds=3601)
    assert await intel.fresh_snapshot(3600) == STALE


@pytest.mark.asyncio
async def test_competitor_crawl_failure():
    intel = DummyCompetitorIntel({})
    intel.fail_crawl = True

    with pytest.raises(SignalUnavailableError, match="503"):
        await intel.trigger_crawl(["P1"])
    assert intel.crawl_count == 1


@pytest.mark.asyncio
async def test_demo_market_is_consistent():
    catalog, sales, inventory = build_demo_market()
    products = await catalog.products()
    outlets = await catalog.outlets()

    for product in products:
        assert await sales.velocity_for(product.product_id, 30) is not None
        assert await inventory.warehouse_stock_for(product.product_id) >= 0
    assert sum((await sales.store_performance()).values()) == pytest.approx(1.0)
    assert len(outlets) == 3
