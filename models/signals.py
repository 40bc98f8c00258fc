"""
Market signal snapshot consumed by the decision matrix.
"""

from dataclasses import dataclass, field

from models.inventory import InventoryPosition, ProductInfo, ProductVelocity
from models.outcomes import Recoverable
from models.pricing import CompetitorDataset


@dataclass
class MarketSignals:
    """Everything the gateway gathered for one cycle."""

    products: dict[str, ProductInfo] = field(default_factory=dict)
    outlets: list[str] = field(default_factory=list)
    velocity: dict[str, ProductVelocity] = field(default_factory=dict)
    # Keyed by (outlet_id, product_id)
    inventory: dict[tuple[str, str], InventoryPosition] = field(default_factory=dict)
    warehouse_stock: dict[str, int] = field(default_factory=dict)
    # outlet_id -> share of chain sales
    store_performance: dict[str, float] = field(default_factory=dict)
    # product_id -> multiplier applied to velocity
    seasonal_factors: dict[str, float] = field(default_factory=dict)
    competitors: CompetitorDataset = field(default_factory=CompetitorDataset)
    diagnostics: list[Recoverable] = field(default_factory=list)

    def outlet_share(self, outlet_id: str) -> float:
        """Share of chain velocity attributed to an outlet (equal split when unknown)."""
        if outlet_id in self.store_performance:
            return self.store_performance[outlet_id]
        if not self.outlets:
            return 1.0
        return 1.0 / len(self.outlets)

    def total_on_hand(self, product_id: str) -> int:
        return sum(
            pos.on_hand for (_, pid), pos in self.inventory.items() if pid == product_id
        )

    @property
    def degraded(self) -> bool:
        return bool(self.diagnostics) or self.competitors.stale
