"""
Inventory and sales-velocity data models.
Includes ProductInfo, ProductVelocity and InventoryPosition dataclasses.
"""

from dataclasses import dataclass

from models.enums import TrendDirection


@dataclass(frozen=True)
class ProductInfo:
    """
    Catalog entry for a product: selling price, cost and expected volume.
    """

    product_id: str
    name: str
    current_price: float
    cost_price: float | None = None
    monthly_volume: float | None = None

    def resolved_cost(self, fallback_cost_ratio: float) -> float:
        """Cost price, or an estimate from the selling price when cost is unknown."""
        if self.cost_price is not None:
            return self.cost_price
        return self.current_price * fallback_cost_ratio


@dataclass(frozen=True)
class ProductVelocity:
    """
    Average units sold per day over a trailing window, chain-wide.
    """

    product_id: str
    daily_units: float
    trend: TrendDirection = TrendDirection.FLAT
    days_since_last_sale: int = 0


@dataclass(frozen=True)
class InventoryPosition:
    """Stock of one product at one outlet."""

    outlet_id: str
    product_id: str
    on_hand: int
    reorder_point: int = 0

    def days_of_cover(self, daily_velocity: float) -> float:
        """Days of sales remaining (DSR) at the given velocity."""
        if daily_velocity <= 0:
            return float("inf")
        return self.on_hand / daily_velocity

    def below_reorder_point(self) -> bool:
        return self.on_hand < self.reorder_point
