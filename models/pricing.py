"""
Competitor pricing data models.
Includes CompetitorPriceRecord, CompetitorDataset and the PriceGap analysis record.
"""

from dataclasses import dataclass, field
from datetime import datetime

from models.enums import (
    CompetitorDataSource,
    GapLevel,
    MarketPosition,
    PriceGapClass,
)


@dataclass(frozen=True)
class CompetitorPriceRecord:
    """
    One structured observation from the competitor crawler.
    `product_id` is None when the identity mapping to our catalog is unconfirmed.
    """

    competitor_id: str
    product_id: str | None
    price: float
    observed_at: datetime
    confidence: float = 1.0


@dataclass
class CompetitorDataset:
    """Competitor records for one cycle, with provenance and staleness."""

    records: list[CompetitorPriceRecord] = field(default_factory=list)
    fetched_at: datetime | None = None
    stale: bool = False
    source: CompetitorDataSource = CompetitorDataSource.NONE
    reason: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.records


@dataclass(frozen=True)
class PriceGap:
    """Classified price difference between our product and one competitor."""

    product_id: str
    competitor_id: str
    our_price: float
    competitor_price: float
    diff_percent: float
    classification: PriceGapClass
    level: GapLevel
    position: MarketPosition
