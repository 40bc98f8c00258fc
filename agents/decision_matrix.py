"""
Decision Matrix Builder.

Turns market signals and competitive analysis into ranked transfer, price
change and clearance opportunities.
"""

import logging
import math
from dataclasses import dataclass, field

from agents.clearance import ClearanceScheduler
from agents.competitive import CompetitiveAnalysis
from agents.guardrails import clears_floor, transfer_cap
from config.config import OptimizationConfig
from models.enums import GapLevel, PriceGapClass, Priority, TrendDirection
from models.opportunity import (
    ClearanceOpportunity,
    Opportunity,
    PriceChangeOpportunity,
    TransferOpportunity,
    opportunity_sort_key,
    rank_opportunities,
)
from models.pricing import PriceGap
from models.signals import MarketSignals

logger = logging.getLogger(__name__)

OPPORTUNITY_CONFIDENCE = 0.85
THREAT_CONFIDENCE = 0.75
TREND_CONFIDENCE = {
    TrendDirection.UP: 0.9,
    TrendDirection.FLAT: 0.8,
    TrendDirection.DOWN: 0.7,
}


def calculate_transfer_quantity(
    daily_velocity: float,
    current_stock: int,
    warehouse_stock: int,
    target_days: int,
    max_fraction: float,
    reorder_point: int = 0,
) -> int:
    """
    Units needed to cover target_days of sales, or to refill up to the reorder
    point if that is higher, capped at a fraction of the warehouse.
    """
    target = max(math.ceil(round(daily_velocity * target_days, 6)), reorder_point)
    needed = target - current_stock
    return max(0, min(needed, transfer_cap(warehouse_stock, max_fraction)))


def transfer_priority(profit_delta: float) -> Priority:
    if profit_delta > 500:
        return Priority.HIGH
    if profit_delta > 200:
        return Priority.MEDIUM
    return Priority.LOW


@dataclass
class DecisionMatrix:
    transfers: list[TransferOpportunity] = field(default_factory=list)
    price_changes: list[PriceChangeOpportunity] = field(default_factory=list)
    clearances: list[ClearanceOpportunity] = field(default_factory=list)

    def all(self) -> list[Opportunity]:
        return [*self.transfers, *self.price_changes, *self.clearances]

    def __len__(self) -> int:
        return len(self.transfers) + len(self.price_changes) + len(self.clearances)


class DecisionMatrixBuilder:
    def __init__(self, config: OptimizationConfig | None = None):
        self.config = config or OptimizationConfig()
        self.clearance = ClearanceScheduler(self.config.guardrails, self.config.decision)

    def build(
        self, signals: MarketSignals, analysis: CompetitiveAnalysis
    ) -> DecisionMatrix:
        matrix = DecisionMatrix()
        if self.config.clearance_enabled:
            matrix.clearances = self.clearance.schedule(signals)
        if self.config.transfer_enabled:
            matrix.transfers = self.transfer_opportunities(signals)
        if self.config.pricing_enabled:
            skip = {c.product_id for c in matrix.clearances}
            matrix.price_changes = self.price_change_opportunities(
                signals, analysis, skip_products=skip
            )
        logger.info(
            f"Decision matrix: {len(matrix.transfers)} transfers, "
            f"{len(matrix.price_changes)} price changes, {len(matrix.clearances)} clearances"
        )
        return matrix

    def outlet_velocity(self, signals: MarketSignals, outlet_id: str, product_id: str) -> float:
        velocity = signals.velocity.get(product_id)
        if velocity is None:
            return 0.0
        seasonal = signals.seasonal_factors.get(product_id, 1.0)
        return velocity.daily_units * seasonal * signals.outlet_share(outlet_id)

    def transfer_opportunities(self, signals: MarketSignals) -> list[TransferOpportunity]:
        d = self.config.decision
        fraction = self.config.guardrails.max_transfer_fraction_of_warehouse
        # Warehouse stock left after earlier allocations in this cycle
        remaining = dict(signals.warehouse_stock)
        transfers = []
        for product_id in sorted(signals.products):
            product = signals.products[product_id]
            cost = product.resolved_cost(d.fallback_cost_ratio)
            for outlet_id in signals.outlets:
                position = signals.inventory.get((outlet_id, product_id))
                if position is None:
                    continue
                velocity = self.outlet_velocity(signals, outlet_id, product_id)
                if velocity <= 0 or velocity < d.velocity_threshold:
                    continue
                short = position.days_of_cover(velocity) < d.target_days
                if not short and not position.below_reorder_point():
                    continue
                warehouse = remaining.get(product_id, 0)
                quantity = calculate_transfer_quantity(
                    velocity,
                    position.on_hand,
                    warehouse,
                    d.target_days,
                    fraction,
                    reorder_point=position.reorder_point,
                )
                if quantity <= 0:
                    continue
                remaining[product_id] = warehouse - quantity
                profit = round(quantity * (product.current_price - cost), 2)
                trend = signals.velocity[product_id].trend
                transfers.append(
                    TransferOpportunity(
                        product_id=product_id,
                        from_location=self.config.warehouse_id,
                        to_location=outlet_id,
                        quantity=quantity,
                        current_value=position.on_hand,
                        proposed_value=position.on_hand + quantity,
                        warehouse_stock=warehouse,
                        daily_velocity=round(velocity, 4),
                        priority=transfer_priority(profit),
                        expected_profit_delta=profit,
                        confidence=TREND_CONFIDENCE.get(trend, 0.8),
                        reason=(
                            f"{position.days_of_cover(velocity):.1f} days of cover at "
                            f"{velocity:.2f}/day, target {d.target_days}"
                            if short
                            else f"{position.on_hand} on hand below reorder point "
                            f"{position.reorder_point}"
                        ),
                    )
                )
        return rank_opportunities(transfers)

    def monthly_volume(self, signals: MarketSignals, product_id: str) -> float:
        product = signals.products[product_id]
        if product.monthly_volume:
            return product.monthly_volume
        velocity = signals.velocity.get(product_id)
        if velocity is not None and velocity.daily_units > 0:
            return velocity.daily_units * 30
        return self.config.decision.default_monthly_volume

    def price_change_opportunities(
        self,
        signals: MarketSignals,
        analysis: CompetitiveAnalysis,
        skip_products: set[str] | None = None,
    ) -> list[PriceChangeOpportunity]:
        skip_products = skip_products or set()
        best: dict[str, PriceChangeOpportunity] = {}
        for gap in [*analysis.opportunities, *analysis.threats]:
            if gap.product_id in skip_products or gap.product_id not in signals.products:
                continue
            candidate = self._price_change_for(signals, gap, analysis.stale)
            if candidate is None:
                continue
            current = best.get(gap.product_id)
            if current is None or opportunity_sort_key(candidate) < opportunity_sort_key(current):
                best[gap.product_id] = candidate
        return rank_opportunities(list(best.values()))

    def _price_change_for(
        self, signals: MarketSignals, gap: PriceGap, stale: bool
    ) -> PriceChangeOpportunity | None:
        d = self.config.decision
        g = self.config.guardrails
        product = signals.products[gap.product_id]
        cost = product.resolved_cost(d.fallback_cost_ratio)
        volume = self.monthly_volume(signals, gap.product_id)

        if gap.classification == PriceGapClass.OPPORTUNITY:
            proposed = round(gap.competitor_price * d.opportunity_price_factor, 2)
            confidence = OPPORTUNITY_CONFIDENCE
            profit = round((proposed - product.current_price) * volume, 2)
            if not profit > g.min_profit_increase_threshold:
                return None
            reason = (
                f"{abs(gap.diff_percent):.1f}% below {gap.competitor_id}; "
                f"room to raise towards {gap.competitor_price:.2f}"
            )
        elif gap.classification == PriceGapClass.THREAT and gap.level == GapLevel.HIGH:
            proposed = round(gap.competitor_price * d.threat_price_factor, 2)
            confidence = THREAT_CONFIDENCE
            if not clears_floor(proposed, cost, g.min_margin_percent):
                return None
            profit = round((proposed - product.current_price) * volume, 2)
            reason = (
                f"{gap.diff_percent:.1f}% above {gap.competitor_id}; "
                f"match at {proposed:.2f}"
            )
        else:
            return None

        if stale:
            confidence *= d.stale_confidence_factor
        return PriceChangeOpportunity(
            product_id=gap.product_id,
            current_value=product.current_price,
            proposed_value=proposed,
            cost_price=cost,
            competitor_id=gap.competitor_id,
            competitor_price=gap.competitor_price,
            classification=gap.classification,
            level=gap.level,
            priority=Priority.HIGH if gap.level == GapLevel.HIGH else Priority.MEDIUM,
            expected_profit_delta=profit,
            confidence=round(confidence, 4),
            reason=reason,
            source=f"competitor:{gap.competitor_id}",
        )
