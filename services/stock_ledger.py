#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Stock ledger: the only code that writes product and variant stock.

Every adjustment is a single UPDATE expression evaluated by the database, so
two concurrent adjustments to the same counter never lose an update. The
ledger does not commit; its writes join the caller's transaction so that
stock and order state change together.

Inventory events form a closed set (`OrderPaid`, `ItemSold`,
`StockRestored`). `StockLedger.apply` dispatches on the event type and
rejects anything else.
"""

import dataclasses
import logging
from typing import List
from typing import Optional
from typing import Union

import db
from exceptions import NotFoundError
from models import OrderItem
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class StockAdjustment:
  """Outcome of one stock adjustment.

  `oversold` is the number of units a consumption could not be covered by,
  in which case the counter was clamped at zero instead of going negative.
  """

  product_id: int
  variant_index: Optional[int]
  delta: int
  oversold: int = 0


@dataclasses.dataclass(frozen=True)
class OrderPaid:
  order_id: int


@dataclasses.dataclass(frozen=True)
class ItemSold:
  product_id: int
  quantity: int
  variant_index: Optional[int] = None


@dataclasses.dataclass(frozen=True)
class StockRestored:
  product_id: int
  quantity: int
  variant_index: Optional[int] = None


InventoryEvent = Union[OrderPaid, ItemSold, StockRestored]


def available_stock(product: db.Product, variant_index: Optional[int]) -> int:
  """Returns the sellable quantity for a product or one of its variants.

  When a product has variants, the product-level counter is ignored: a
  specific variant reports its own stock and the product as a whole reports
  the sum of its variants.
  """
  if variant_index is not None:
    for variant in product.variants:
      if variant.variant_index == variant_index:
        return variant.stock_quantity or 0
    return 0
  if product.variants:
    return sum(v.stock_quantity or 0 for v in product.variants)
  return product.stock_quantity or 0


class StockLedger:
  """Applies stock deltas and inventory events inside a session."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def adjust_stock(
      self,
      product_id: int,
      delta: int,
      variant_index: Optional[int] = None,
  ) -> StockAdjustment:
    """Applies a signed delta to a stock counter.

    A negative delta is a sale: the counter is decremented and the product's
    sales count grows by the same amount. A positive delta is a restore and
    is applied unconditionally.

    Args:
      product_id: The product whose stock changes.
      delta: Units to add (positive) or consume (negative).
      variant_index: Targets a variant's counter instead of the product's.

    Returns:
      The applied adjustment, including any oversold units.

    Raises:
      NotFoundError: If the product or variant does not exist.
    """
    if delta == 0:
      return StockAdjustment(product_id, variant_index, 0)

    if delta > 0:
      if not await db.add_stock(
          self.session, product_id, delta, variant_index
      ):
        raise NotFoundError(
            f"Product {product_id} variant {variant_index} not found"
        )
      logger.info(
          "Restored %d units of product %s (variant %s)",
          delta,
          product_id,
          variant_index,
      )
      return StockAdjustment(product_id, variant_index, delta)

    quantity = -delta
    oversold = 0
    if not await db.consume_stock(
        self.session, product_id, quantity, variant_index
    ):
      available = await db.get_stock(self.session, product_id, variant_index)
      if available is None:
        raise NotFoundError(
            f"Product {product_id} variant {variant_index} not found"
        )
      # A paid sale is never rejected; record the shortfall instead.
      oversold = max(quantity - available, 0)
      await db.drain_stock(self.session, product_id, quantity, variant_index)
      logger.warning(
          "Oversold product %s (variant %s): %d units requested, %d in stock",
          product_id,
          variant_index,
          quantity,
          available,
      )

    await db.increment_sales_count(self.session, product_id, quantity)
    logger.info(
        "Consumed %d units of product %s (variant %s)",
        quantity,
        product_id,
        variant_index,
    )
    return StockAdjustment(product_id, variant_index, delta, oversold)

  async def consume_items(self, items: List[OrderItem]) -> List[StockAdjustment]:
    """Consumes stock for every line of a paid order."""
    adjustments = []
    for item in items:
      adjustments.extend(
          await self.apply(
              ItemSold(item.product_id, item.quantity, item.variant_index)
          )
      )
    return adjustments

  async def restore_items(self, items: List[OrderItem]) -> List[StockAdjustment]:
    """Returns stock for every line of a cancelled order."""
    adjustments = []
    for item in items:
      adjustments.extend(
          await self.apply(
              StockRestored(item.product_id, item.quantity, item.variant_index)
          )
      )
    return adjustments

  async def apply(self, event: InventoryEvent) -> List[StockAdjustment]:
    """Applies an inventory event and returns the adjustments it caused."""
    if isinstance(event, OrderPaid):
      order = await db.get_order(self.session, event.order_id)
      if not order:
        raise NotFoundError(f"Order {event.order_id} not found")
      items = [OrderItem.model_validate(i) for i in order.items or []]
      return await self.consume_items(items)
    if isinstance(event, ItemSold):
      return [
          await self.adjust_stock(
              event.product_id, -event.quantity, event.variant_index
          )
      ]
    if isinstance(event, StockRestored):
      return [
          await self.adjust_stock(
              event.product_id, event.quantity, event.variant_index
          )
      ]
    raise ValueError(f"Unknown inventory event: {event!r}")

  async def find_low_stock(
      self, shop_id: int, threshold: int = 10
  ) -> List[db.Product]:
    return await db.find_low_stock(self.session, shop_id, threshold)

  async def find_best_selling(
      self, shop_id: int, limit: int = 10
  ) -> List[db.Product]:
    return await db.find_best_selling(self.session, shop_id, limit)
