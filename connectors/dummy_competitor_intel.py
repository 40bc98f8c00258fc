"""
Module: connectors.dummy_competitor_intel

In-memory competitor price intelligence. Serves a cached snapshot while it is
fresh enough and "crawls" from a fixed price book otherwise.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from models.enums import STALE, SnapshotState
from models.errors import SignalUnavailableError
from models.pricing import CompetitorPriceRecord

logger = logging.getLogger(__name__)


class DummyCompetitorIntel:
    """
    `price_book` maps competitor id -> {product id: price}. A product id of
    None in `unmapped` simulates listings the crawler could not match.
    """

    def __init__(
        self,
        price_book: dict[str, dict[str, float]],
        now: Callable[[], datetime] = datetime.now,
        confidence: float = 0.9,
    ):
        self.price_book = price_book
        self.now = now
        self.confidence = confidence
        self.snapshot: list[CompetitorPriceRecord] = []
        self.snapshot_at: datetime | None = None
        self.fail_crawl = False
        self.crawl_count = 0

    async def fresh_snapshot(
        self, max_age_seconds: float
    ) -> list[CompetitorPriceRecord] | SnapshotState:
        await asyncio.sleep(0)
        if self.snapshot_at is None:
            return STALE
        age = (self.now() - self.snapshot_at).total_seconds()
        if age > max_age_seconds:
            return STALE
        return list(self.snapshot)

    async def trigger_crawl(self, targets: list[str]) -> list[CompetitorPriceRecord]:
        await asyncio.sleep(0)
        self.crawl_count += 1
        if self.fail_crawl:
            raise SignalUnavailableError("competitor_crawl", "crawler returned HTTP 503")
        observed_at = self.now()
        wanted = set(targets)
        records = [
            CompetitorPriceRecord(
                competitor_id=competitor_id,
                product_id=product_id,
                price=price,
                observed_at=observed_at,
                confidence=self.confidence,
            )
            for competitor_id, prices in sorted(self.price_book.items())
            for product_id, price in sorted(prices.items())
            if product_id in wanted
        ]
        self.snapshot = records
        self.snapshot_at = observed_at
        logger.info(f"Crawled {len(records)} competitor prices for {len(wanted)} products")
        return list(records)


def build_demo_competitors(now: Callable[[], datetime] = datetime.now) -> DummyCompetitorIntel:
    """Price book matching connectors.dummy_signals.build_demo_market()."""
    return DummyCompetitorIntel(
        {
            "COMP-A": {"SKU-1001": 57.50, "SKU-1002": 24.99, "SKU-1005": 88.00},
            "COMP-B": {"SKU-1001": 62.00, "SKU-1003": 12.49, "SKU-1005": 68.00},
        },
        now=now,
    )
