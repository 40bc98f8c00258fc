"""
Opportunity data models: a closed variant of Transfer, PriceChange and Clearance.
"""

from dataclasses import dataclass
from typing import ClassVar

from models.enums import GapLevel, OpportunityType, PriceGapClass, Priority


@dataclass(frozen=True)
class TransferOpportunity:
    """Move stock from the warehouse to an outlet running short."""

    kind: ClassVar[OpportunityType] = OpportunityType.TRANSFER

    product_id: str
    from_location: str
    to_location: str
    quantity: int
    current_value: float  # On-hand at the destination
    proposed_value: float  # On-hand after the transfer
    warehouse_stock: int
    daily_velocity: float
    priority: Priority
    expected_profit_delta: float
    confidence: float
    reason: str
    source: str = "velocity"

    @property
    def location_key(self) -> str:
        return f"{self.from_location}->{self.to_location}"


@dataclass(frozen=True)
class PriceChangeOpportunity:
    """Reprice a product in response to a competitor price gap."""

    kind: ClassVar[OpportunityType] = OpportunityType.PRICE_CHANGE

    product_id: str
    current_value: float  # Current price
    proposed_value: float  # New price
    cost_price: float
    competitor_id: str
    competitor_price: float
    classification: PriceGapClass
    level: GapLevel
    priority: Priority
    expected_profit_delta: float
    confidence: float
    reason: str
    source: str = "competitor"

    @property
    def location_key(self) -> str:
        return ""

    @property
    def change_percent(self) -> float:
        if self.current_value <= 0:
            return 0.0
        return (self.proposed_value - self.current_value) / self.current_value * 100


@dataclass(frozen=True)
class ClearanceOpportunity:
    """Mark down slow-moving or overstocked inventory."""

    kind: ClassVar[OpportunityType] = OpportunityType.CLEARANCE

    product_id: str
    current_value: float  # Current price
    proposed_value: float  # Clearance price
    cost_price: float
    discount_percent: float
    days_without_sale: int
    current_stock: int
    priority: Priority
    expected_profit_delta: float
    confidence: float
    reason: str
    source: str = "inventory_age"

    @property
    def location_key(self) -> str:
        return ""


Opportunity = TransferOpportunity | PriceChangeOpportunity | ClearanceOpportunity


def opportunity_sort_key(opportunity: Opportunity) -> tuple:
    """
    Shared ordering: priority desc, |expected profit delta| desc, product id asc.
    Location breaks the remaining tie so transfers to different outlets stay stable.
    """
    return (
        -int(opportunity.priority),
        -abs(opportunity.expected_profit_delta),
        opportunity.product_id,
        opportunity.location_key,
    )


def rank_opportunities(opportunities: list) -> list:
    """Return a new list in the shared deterministic order."""
    return sorted(opportunities, key=opportunity_sort_key)
