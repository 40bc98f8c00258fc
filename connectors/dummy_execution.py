"""
Module: connectors.dummy_execution

In-memory transfer and pricing services that record every call.
Failures can be scripted by call number or by product.
"""

import asyncio
import logging

from connectors.interfaces import ExecutionReceipt

logger = logging.getLogger(__name__)


class _ScriptedService:
    def __init__(self):
        self.calls: list[tuple] = []
        self.fail_on_calls: set[int] = set()  # 1-based call numbers
        self.fail_products: set[str] = set()
        self.raise_on_calls: set[int] = set()
        self.delay_seconds = 0.0

    async def _answer(self, product_id: str, call: tuple) -> ExecutionReceipt:
        self.calls.append(call)
        number = len(self.calls)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        else:
            await asyncio.sleep(0)
        if number in self.raise_on_calls:
            raise ConnectionError(f"service unreachable on call {number}")
        if number in self.fail_on_calls or product_id in self.fail_products:
            return ExecutionReceipt(success=False, error=f"rejected {product_id}")
        return ExecutionReceipt(success=True, reference=f"{type(self).__name__}-{number}")


class DummyTransferService(_ScriptedService):
    """Accepts stock transfers and keeps a ledger of moved units."""

    def __init__(self):
        super().__init__()
        self.moved: dict[tuple[str, str], int] = {}

    async def execute(
        self, product_id: str, from_outlet: str, to_outlet: str, qty: int
    ) -> ExecutionReceipt:
        receipt = await self._answer(product_id, (product_id, from_outlet, to_outlet, qty))
        if receipt.success:
            key = (to_outlet, product_id)
            self.moved[key] = self.moved.get(key, 0) + qty
            logger.debug(f"Moved {qty} x {product_id} {from_outlet} -> {to_outlet}")
        return receipt


class DummyPricingService(_ScriptedService):
    """Accepts price updates and keeps the latest price per product."""

    def __init__(self):
        super().__init__()
        self.prices: dict[str, float] = {}

    async def set_price(self, product_id: str, new_price: float) -> ExecutionReceipt:
        receipt = await self._answer(product_id, (product_id, new_price))
        if receipt.success:
            self.prices[product_id] = new_price
            logger.debug(f"Price of {product_id} set to {new_price:.2f}")
        return receipt
