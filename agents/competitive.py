"""
Competitive Analyzer.

Compares our prices with mapped competitor observations and classifies each
gap as a threat, an opportunity or neutral.
"""

import logging
from dataclasses import dataclass, field

from config.config import SignalConfig
from models.enums import (
    GapLevel,
    MarketPosition,
    MarketSentiment,
    PriceGapClass,
)
from models.inventory import ProductInfo
from models.pricing import CompetitorDataset, CompetitorPriceRecord, PriceGap

logger = logging.getLogger(__name__)

THREAT_THRESHOLD = 10.0  # We are this much more expensive
HIGH_THREAT_THRESHOLD = 20.0
OPPORTUNITY_THRESHOLD = -5.0  # We are this much cheaper
HIGH_OPPORTUNITY_THRESHOLD = 15.0  # Absolute value


def diff_percent(our_price: float, competitor_price: float) -> float:
    """Percentage by which our price exceeds the competitor's, relative to ours."""
    if our_price <= 0:
        return 0.0
    return (our_price - competitor_price) / our_price * 100


def classify(diff: float) -> tuple[PriceGapClass, GapLevel]:
    """
    > 10% more expensive is a threat (high above 20%).
    < -5% (cheaper) is an opportunity (high when more than 15% cheaper).
    """
    if diff > THREAT_THRESHOLD:
        level = GapLevel.HIGH if diff > HIGH_THREAT_THRESHOLD else GapLevel.MEDIUM
        return PriceGapClass.THREAT, level
    if diff < OPPORTUNITY_THRESHOLD:
        level = GapLevel.HIGH if abs(diff) > HIGH_OPPORTUNITY_THRESHOLD else GapLevel.MEDIUM
        return PriceGapClass.OPPORTUNITY, level
    return PriceGapClass.NEUTRAL, GapLevel.NONE


def market_position(diff: float) -> MarketPosition:
    if diff > 20:
        return MarketPosition.PREMIUM
    if diff > 5:
        return MarketPosition.ABOVE_MARKET
    if diff > -5:
        return MarketPosition.COMPETITIVE
    if diff > -20:
        return MarketPosition.BELOW_MARKET
    return MarketPosition.DISCOUNT


@dataclass
class CompetitiveAnalysis:
    """Classified gaps for one cycle."""

    gaps: list[PriceGap] = field(default_factory=list)
    threats: list[PriceGap] = field(default_factory=list)
    opportunities: list[PriceGap] = field(default_factory=list)
    # product_id -> position against the average mapped competitor price
    positions: dict[str, MarketPosition] = field(default_factory=dict)
    sentiment: MarketSentiment = MarketSentiment.NEUTRAL
    stale: bool = False
    unmatched_records: int = 0

    @property
    def high_threats(self) -> list[PriceGap]:
        return [g for g in self.threats if g.level == GapLevel.HIGH]

    @property
    def high_opportunities(self) -> list[PriceGap]:
        return [g for g in self.opportunities if g.level == GapLevel.HIGH]


class CompetitiveAnalyzer:
    def __init__(self, config: SignalConfig | None = None):
        self.config = config or SignalConfig()

    def is_confirmed(self, record: CompetitorPriceRecord) -> bool:
        return (
            record.product_id is not None
            and record.confidence >= self.config.min_match_confidence
            and record.price > 0
        )

    def analyze(
        self, products: dict[str, ProductInfo], dataset: CompetitorDataset
    ) -> CompetitiveAnalysis:
        analysis = CompetitiveAnalysis(stale=dataset.stale)
        by_product: dict[str, list[float]] = {}

        for record in dataset.records:
            if not self.is_confirmed(record) or record.product_id not in products:
                analysis.unmatched_records += 1
                continue
            product = products[record.product_id]
            diff = diff_percent(product.current_price, record.price)
            classification, level = classify(diff)
            gap = PriceGap(
                product_id=product.product_id,
                competitor_id=record.competitor_id,
                our_price=product.current_price,
                competitor_price=record.price,
                diff_percent=diff,
                classification=classification,
                level=level,
                position=market_position(diff),
            )
            analysis.gaps.append(gap)
            by_product.setdefault(product.product_id, []).append(record.price)

        analysis.gaps.sort(key=lambda g: (g.product_id, g.competitor_id))
        analysis.threats = [
            g for g in analysis.gaps if g.classification == PriceGapClass.THREAT
        ]
        analysis.opportunities = [
            g for g in analysis.gaps if g.classification == PriceGapClass.OPPORTUNITY
        ]
        for product_id, prices in sorted(by_product.items()):
            average = sum(prices) / len(prices)
            analysis.positions[product_id] = market_position(
                diff_percent(products[product_id].current_price, average)
            )
        analysis.sentiment = self.sentiment(analysis)

        if analysis.unmatched_records:
            logger.debug(
                f"Ignored {analysis.unmatched_records} competitor records without a confirmed mapping"
            )
        logger.info(
            f"Competitive analysis: {len(analysis.threats)} threats, "
            f"{len(analysis.opportunities)} opportunities, sentiment {analysis.sentiment.value}"
            + (" (stale data)" if analysis.stale else "")
        )
        return analysis

    @staticmethod
    def sentiment(analysis: CompetitiveAnalysis) -> MarketSentiment:
        if len(analysis.high_opportunities) > 2:
            return MarketSentiment.BULLISH
        if len(analysis.high_threats) > 3:
            return MarketSentiment.BEARISH
        return MarketSentiment.NEUTRAL
