"""
Guardrail Validator.

Pure checks applied to every opportunity before execution. Floors are strict
(a value must exceed them); caps and windows are inclusive.
"""

import logging
import math
from numbers import Real

from config.config import GuardrailConfig
from models.enums import Priority
from models.opportunity import (
    ClearanceOpportunity,
    Opportunity,
    PriceChangeOpportunity,
    TransferOpportunity,
)
from models.outcomes import Accepted, Fatal, Rejected, ValidationOutcome

logger = logging.getLogger(__name__)

_PRECISION = 6


def margin_floor(cost: float, margin_percent: float) -> float:
    """Lowest price that still earns the margin, rounded to absorb float noise."""
    return round(cost * (1 + margin_percent / 100), _PRECISION)


def clears_floor(price: float, cost: float, margin_percent: float) -> bool:
    return round(price, _PRECISION) > margin_floor(cost, margin_percent)


def transfer_cap(warehouse_stock: int, fraction: float) -> int:
    return math.floor(round(warehouse_stock * fraction, _PRECISION))


def _is_number(value) -> bool:
    return (
        isinstance(value, Real)
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


class GuardrailValidator:
    """Returns Accepted, Rejected or Fatal per opportunity. Never raises for bad input."""

    def __init__(self, config: GuardrailConfig | None = None):
        self.config = config or GuardrailConfig()

    def validate(self, opportunity: Opportunity) -> ValidationOutcome:
        problem = self._malformed(opportunity)
        if problem:
            return Fatal(problem)
        if isinstance(opportunity, TransferOpportunity):
            return self._validate_transfer(opportunity)
        if isinstance(opportunity, PriceChangeOpportunity):
            return self._validate_price_change(opportunity)
        if isinstance(opportunity, ClearanceOpportunity):
            return self._validate_clearance(opportunity)
        return Fatal(f"unknown opportunity type {type(opportunity).__name__}")

    def validate_all(
        self, opportunities: list[Opportunity]
    ) -> list[tuple[Opportunity, ValidationOutcome]]:
        return [(o, self.validate(o)) for o in opportunities]

    def _malformed(self, opportunity) -> str | None:
        if not isinstance(
            opportunity,
            TransferOpportunity | PriceChangeOpportunity | ClearanceOpportunity,
        ):
            return f"unknown opportunity type {type(opportunity).__name__}"
        product_id = getattr(opportunity, "product_id", None)
        if not isinstance(product_id, str) or not product_id:
            return "missing product_id"
        if not isinstance(opportunity.priority, Priority):
            return f"{product_id}: invalid priority {opportunity.priority!r}"
        numeric = ["current_value", "proposed_value", "expected_profit_delta", "confidence"]
        if isinstance(opportunity, TransferOpportunity):
            numeric += ["quantity", "warehouse_stock"]
        else:
            numeric += ["cost_price"]
        for name in numeric:
            if not _is_number(getattr(opportunity, name, None)):
                return f"{product_id}: {name} must be a finite number"
        if isinstance(opportunity, TransferOpportunity) and not isinstance(
            opportunity.quantity, int
        ):
            return f"{product_id}: quantity must be an integer"
        if not isinstance(opportunity, TransferOpportunity) and opportunity.current_value <= 0:
            return f"{product_id}: current price must be positive"
        return None

    def _validate_transfer(self, t: TransferOpportunity) -> ValidationOutcome:
        if t.quantity <= 0:
            return Rejected("transfer_quantity", f"non-positive quantity {t.quantity}")
        if not t.from_location or not t.to_location:
            return Rejected("transfer_locations", "missing source or destination")
        if t.from_location == t.to_location:
            return Rejected("transfer_locations", f"source equals destination {t.to_location}")
        cap = transfer_cap(t.warehouse_stock, self.config.max_transfer_fraction_of_warehouse)
        if t.quantity > cap:
            return Rejected(
                "warehouse_fraction",
                f"quantity {t.quantity} exceeds {cap} "
                f"({self.config.max_transfer_fraction_of_warehouse:.0%} of {t.warehouse_stock})",
            )
        return Accepted()

    def _validate_price_change(self, p: PriceChangeOpportunity) -> ValidationOutcome:
        change = round(abs(p.change_percent), _PRECISION)
        if change < self.config.min_price_change_percent:
            return Rejected(
                "price_change_window",
                f"change {change:.2f}% below minimum {self.config.min_price_change_percent}%",
            )
        if change > self.config.max_price_change_percent:
            return Rejected(
                "price_change_window",
                f"change {change:.2f}% above maximum {self.config.max_price_change_percent}%",
            )
        if not clears_floor(p.proposed_value, p.cost_price, self.config.min_margin_percent):
            return Rejected(
                "margin_floor",
                f"price {p.proposed_value:.2f} does not exceed floor "
                f"{margin_floor(p.cost_price, self.config.min_margin_percent):.2f}",
            )
        return Accepted()

    def _validate_clearance(self, c: ClearanceOpportunity) -> ValidationOutcome:
        if c.proposed_value >= c.current_value:
            return Rejected("clearance_markdown", "clearance price is not a markdown")
        if not clears_floor(
            c.proposed_value, c.cost_price, self.config.clearance_min_margin_percent
        ):
            return Rejected(
                "clearance_margin",
                f"clearance price {c.proposed_value:.2f} does not exceed floor "
                f"{margin_floor(c.cost_price, self.config.clearance_min_margin_percent):.2f}",
            )
        return Accepted()
