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

"""Cart service for the server-side cart of a (user, shop) pair.

This module provides the `CartService` class, which owns every write to a
cart. Line subtotals are always derived from the live product or variant
price and discount; a price supplied by a client is never trusted.

Key responsibilities include:
- Adding, updating and removing items keyed by (product_id, variant_index).
- Re-validating a cart against live products before an order is placed.
- Merging an anonymous cart into the user's cart with per-item caps.
- Snapshotting a validated cart into order items.
"""

import logging
from decimal import Decimal
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

import db
from enums import ProductStatus
from exceptions import NotFoundError
from exceptions import ValidationError
import money
from models import CartItem
from models import CartResponse
from models import CartValidation
from models import MAX_ITEM_QUANTITY
from models import MergeCartItem
from models import OrderItem
from services.stock_ledger import available_stock
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

ItemKey = Tuple[int, Optional[int]]


def _find_variant(
    product: db.Product, variant_index: int
) -> Optional[db.ProductVariant]:
  for variant in product.variants:
    if variant.variant_index == variant_index:
      return variant
  return None


def resolve_variant_index(
    product: db.Product, variant_index: Optional[int]
) -> Optional[int]:
  """Normalizes the variant a cart line refers to.

  A product with variants always sells a specific variant, so a missing index
  resolves to the default variant (or the first one).

  Raises:
    ValidationError: If the index does not name one of the product's variants.
  """
  if variant_index is not None:
    if _find_variant(product, variant_index) is None:
      raise ValidationError(
          f"Product {product.id} has no variant {variant_index}"
      )
    return variant_index
  if not product.variants:
    return None
  for variant in product.variants:
    if variant.is_default:
      return variant.variant_index
  return product.variants[0].variant_index


def unit_pricing(
    product: db.Product, variant_index: Optional[int]
) -> Tuple[Decimal, Decimal]:
  """Returns the (price, discount percentage) that applies to a line."""
  price = money.to_decimal(product.price)
  discount = money.to_decimal(product.discount)
  if variant_index is not None:
    variant = _find_variant(product, variant_index)
    if variant is not None:
      if variant.price is not None:
        price = money.to_decimal(variant.price)
      if variant.discount is not None:
        discount = money.to_decimal(variant.discount)
  return price, discount


def compute_subtotal(
    product: db.Product, variant_index: Optional[int], quantity: int
) -> Decimal:
  price, discount = unit_pricing(product, variant_index)
  return money.line_subtotal(quantity, price, discount)


def summarize(items: List[CartItem]) -> CartResponse:
  return CartResponse(
      items=items,
      total_items=sum(i.quantity for i in items),
      total_amount=money.quantize(sum((i.subtotal for i in items), Decimal(0))),
  )


class CartService:
  """Service for reading and mutating carts."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def get_cart(self, user_id: int, shop_id: int) -> CartResponse:
    return summarize(await self._load_items(user_id, shop_id))

  async def add_item(
      self,
      user_id: int,
      shop_id: int,
      product_id: int,
      quantity: int,
      variant_index: Optional[int] = None,
  ) -> CartResponse:
    """Adds units of a product, accumulating onto an existing line."""
    if quantity < 1:
      raise ValidationError("Quantity must be at least 1")
    product = await self._get_shop_product(shop_id, product_id)
    if product.status != ProductStatus.ACTIVE.value:
      raise ValidationError(f'Product "{product.name}" is not available')
    variant_index = resolve_variant_index(product, variant_index)

    items = await self._load_items(user_id, shop_id)
    existing = self._index(items).get((product_id, variant_index))
    total = quantity + (existing.quantity if existing else 0)
    total = min(total, MAX_ITEM_QUANTITY)
    line = CartItem(
        product_id=product_id,
        variant_index=variant_index,
        quantity=total,
        subtotal=compute_subtotal(product, variant_index, total),
    )
    if existing:
      items = [line if i.key == line.key else i for i in items]
    else:
      items.append(line)

    logger.info(
        "Cart of user %s in shop %s: product %s (variant %s) now x%d",
        user_id,
        shop_id,
        product_id,
        variant_index,
        total,
    )
    return await self._save(user_id, shop_id, items)

  async def update_quantity(
      self,
      user_id: int,
      shop_id: int,
      product_id: int,
      quantity: int,
      variant_index: Optional[int] = None,
  ) -> CartResponse:
    """Sets the absolute quantity of a line. Zero or less removes it."""
    if quantity <= 0:
      return await self.remove_item(user_id, shop_id, product_id, variant_index)

    product = await self._get_shop_product(shop_id, product_id)
    variant_index = resolve_variant_index(product, variant_index)
    items = await self._load_items(user_id, shop_id)
    key = (product_id, variant_index)
    if key not in self._index(items):
      raise NotFoundError(f"Product {product_id} is not in the cart")

    quantity = min(quantity, MAX_ITEM_QUANTITY)
    items = [
        CartItem(
            product_id=product_id,
            variant_index=variant_index,
            quantity=quantity,
            subtotal=compute_subtotal(product, variant_index, quantity),
        )
        if i.key == key
        else i
        for i in items
    ]
    return await self._save(user_id, shop_id, items)

  async def remove_item(
      self,
      user_id: int,
      shop_id: int,
      product_id: int,
      variant_index: Optional[int] = None,
  ) -> CartResponse:
    items = await self._load_items(user_id, shop_id)
    if variant_index is None:
      product = await db.get_product(self.session, product_id)
      if product is not None and product.variants:
        variant_index = resolve_variant_index(product, None)
    key = (product_id, variant_index)
    remaining = [i for i in items if i.key != key]
    return await self._save(user_id, shop_id, remaining)

  async def clear_cart(self, user_id: int, shop_id: int) -> None:
    await db.save_cart_items(self.session, user_id, shop_id, [])
    await self.session.commit()
    logger.info("Cleared cart of user %s in shop %s", user_id, shop_id)

  async def validate_cart(self, user_id: int, shop_id: int) -> CartValidation:
    """Re-checks every line against the live product data.

    Checks that each product still exists and is active, that the requested
    quantity is in stock and that the stored subtotal matches current pricing.
    Corrections are reported in `updated_items` but not persisted.

    Args:
      user_id: The cart owner.
      shop_id: The shop the cart belongs to.

    Returns:
      A CartValidation that is valid only when no line needed correcting.
    """
    items = await self._load_items(user_id, shop_id)
    products = await db.get_products(
        self.session, [i.product_id for i in items]
    )
    errors: List[str] = []
    updated: List[CartItem] = []

    for item in items:
      product = products.get(item.product_id)
      if product is None or product.shop_id != shop_id:
        errors.append(f"Product with ID {item.product_id} no longer exists")
        continue
      if product.status != ProductStatus.ACTIVE.value:
        errors.append(f'Product "{product.name}" is no longer available')
        continue
      if (
          item.variant_index is not None
          and _find_variant(product, item.variant_index) is None
      ):
        errors.append(
            f'Variant {item.variant_index} of "{product.name}" no longer'
            " exists"
        )
        continue

      quantity = item.quantity
      available = available_stock(product, item.variant_index)
      if available < quantity:
        errors.append(
            f'Insufficient stock for "{product.name}". Available:'
            f" {available}, Requested: {quantity}"
        )
        quantity = max(available, 0)

      expected = compute_subtotal(product, item.variant_index, quantity)
      if quantity == item.quantity and expected != money.quantize(
          item.subtotal
      ):
        errors.append(f'Price changed for "{product.name}"')

      if quantity > 0:
        updated.append(
            CartItem(
                product_id=item.product_id,
                variant_index=item.variant_index,
                quantity=quantity,
                subtotal=expected,
            )
        )

    return CartValidation(
        valid=not errors, errors=errors, updated_items=updated
    )

  async def merge_carts(
      self,
      user_id: int,
      shop_id: int,
      incoming_items: List[MergeCartItem],
  ) -> CartResponse:
    """Merges anonymous cart items into the user's server-side cart.

    Every incoming product must belong to the shop or nothing is merged.
    Quantities for the same (product_id, variant_index) are summed and then
    capped at the per-item maximum and at available stock; the excess is
    dropped silently.

    Raises:
      ValidationError: If any product is foreign to the shop or names an
        unknown variant.
    """
    if not incoming_items:
      return await self.get_cart(user_id, shop_id)

    product_ids = [i.product_id for i in incoming_items]
    owned = await db.get_product_ids_in_shop(self.session, shop_id, product_ids)
    if owned != set(product_ids):
      raise ValidationError(
          "Some products do not belong to this shop",
          details=[
              f"Product {pid} does not belong to this shop"
              for pid in sorted(set(product_ids) - owned)
          ],
      )

    products = await db.get_products(self.session, product_ids)
    incoming: Dict[ItemKey, int] = {}
    for item in incoming_items:
      product = products[item.product_id]
      key = (item.product_id, resolve_variant_index(product, item.variant_index))
      incoming[key] = incoming.get(key, 0) + item.quantity

    items = await self._load_items(user_id, shop_id)
    merged = self._index(items)
    for key, quantity in incoming.items():
      product_id, variant_index = key
      product = products[product_id]
      existing = merged.get(key)
      total = quantity + (existing.quantity if existing else 0)
      capped = min(
          total, MAX_ITEM_QUANTITY, available_stock(product, variant_index)
      )
      if capped < total:
        logger.info(
            "Merge capped product %s (variant %s) from %d to %d",
            product_id,
            variant_index,
            total,
            capped,
        )
      if capped <= 0:
        merged.pop(key, None)
        continue
      merged[key] = CartItem(
          product_id=product_id,
          variant_index=variant_index,
          quantity=capped,
          subtotal=compute_subtotal(product, variant_index, capped),
      )

    return await self._save(user_id, shop_id, list(merged.values()))

  async def snapshot_order_items(
      self, user_id: int, shop_id: int
  ) -> List[OrderItem]:
    """Freezes the cart's lines and current pricing into order items."""
    items = await self._load_items(user_id, shop_id)
    products = await db.get_products(
        self.session, [i.product_id for i in items]
    )
    snapshot = []
    for item in items:
      product = products.get(item.product_id)
      if product is None:
        raise NotFoundError(f"Product {item.product_id} not found")
      price, discount = unit_pricing(product, item.variant_index)
      snapshot.append(
          OrderItem(
              product_id=item.product_id,
              variant_index=item.variant_index,
              name=product.name,
              quantity=item.quantity,
              unit_price_at_purchase=price,
              discount_at_purchase=discount,
              subtotal=money.line_subtotal(item.quantity, price, discount),
          )
      )
    return snapshot

  async def _get_shop_product(
      self, shop_id: int, product_id: int
  ) -> db.Product:
    product = await db.get_product(self.session, product_id)
    if product is None or product.shop_id != shop_id:
      raise NotFoundError(f"Product {product_id} not found")
    return product

  async def _load_items(self, user_id: int, shop_id: int) -> List[CartItem]:
    cart = await db.get_cart(self.session, user_id, shop_id)
    if not cart or not cart.items:
      return []
    return [CartItem.model_validate(i) for i in cart.items]

  async def _save(
      self, user_id: int, shop_id: int, items: List[CartItem]
  ) -> CartResponse:
    await db.save_cart_items(
        self.session,
        user_id,
        shop_id,
        [i.model_dump(mode="json") for i in items],
    )
    await self.session.commit()
    return summarize(items)

  @staticmethod
  def _index(items: List[CartItem]) -> Dict[ItemKey, CartItem]:
    return {i.key: i for i in items}
