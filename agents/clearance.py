"""
Clearance Scheduler: markdowns for aged and overstocked inventory.
"""

import logging

from agents.guardrails import clears_floor
from config.config import DecisionConfig, GuardrailConfig
from models.enums import Priority
from models.opportunity import ClearanceOpportunity, rank_opportunities
from models.signals import MarketSignals

logger = logging.getLogger(__name__)

# (minimum days without a sale, discount, reason), checked top down
AGE_TIERS = [
    (90, 0.40, "aged_inventory_90d"),
    (60, 0.30, "aged_inventory_60d"),
    (30, 0.20, "aged_inventory_30d"),
    (14, 0.15, "slow_moving_14d"),
]
OVERSTOCK_DISCOUNT = 0.10
BASELINE_DISCOUNT = 0.05


def clearance_discount(days_without_sale: int, overstocked: bool) -> tuple[float, str]:
    for min_days, discount, reason in AGE_TIERS:
        if days_without_sale >= min_days:
            return discount, reason
    if overstocked:
        return OVERSTOCK_DISCOUNT, "overstock"
    return BASELINE_DISCOUNT, "baseline_clearance"


def clearance_priority(days_without_sale: int) -> Priority:
    if days_without_sale >= 60:
        return Priority.HIGH
    if days_without_sale >= 30:
        return Priority.MEDIUM
    return Priority.LOW


class ClearanceScheduler:
    def __init__(
        self,
        guardrails: GuardrailConfig | None = None,
        decision: DecisionConfig | None = None,
    ):
        self.guardrails = guardrails or GuardrailConfig()
        self.decision = decision or DecisionConfig()

    def schedule(self, signals: MarketSignals) -> list[ClearanceOpportunity]:
        candidates = []
        for product_id in sorted(signals.products):
            candidate = self.candidate_for(signals, product_id)
            if candidate is not None:
                candidates.append(candidate)
        return rank_opportunities(candidates)

    def candidate_for(
        self, signals: MarketSignals, product_id: str
    ) -> ClearanceOpportunity | None:
        product = signals.products[product_id]
        velocity = signals.velocity.get(product_id)
        days = velocity.days_since_last_sale if velocity else 0
        stock = signals.total_on_hand(product_id)
        overstocked = stock > self.decision.overstock_units
        if stock <= 0 or not (days >= self.decision.slow_mover_days or overstocked):
            return None

        cost = product.resolved_cost(self.decision.fallback_cost_ratio)
        discount, reason = clearance_discount(days, overstocked)
        clearance_price = round(product.current_price * (1 - discount), 2)
        if not clears_floor(
            clearance_price, cost, self.guardrails.clearance_min_margin_percent
        ):
            logger.debug(
                f"No clearance for {product_id}: {clearance_price:.2f} would not keep "
                f"{self.guardrails.clearance_min_margin_percent}% over cost {cost:.2f}"
            )
            return None

        return ClearanceOpportunity(
            product_id=product_id,
            current_value=product.current_price,
            proposed_value=clearance_price,
            cost_price=cost,
            discount_percent=discount * 100,
            days_without_sale=days,
            current_stock=stock,
            priority=clearance_priority(days),
            expected_profit_delta=round((clearance_price - cost) * stock, 2),
            confidence=0.8 if days >= self.decision.slow_mover_days else 0.7,
            reason=reason,
        )
