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

"""Order service for the lifecycle of placed orders.

This module provides the `OrderService` class, which owns the two interlocking
state machines of an order: its fulfillment `status` and its
`payment_status`.

Key responsibilities include:
- Creating orders from snapshotted cart items and computing their totals.
- Admin-driven status and payment status updates with audit timestamps.
- Cancellation, which restores stock for every item.
- Marking an order paid, which is the only path that consumes stock.
- Listing, counting and summarizing orders for customers and shop owners.
"""

import datetime
import logging
import secrets
import string
import time
from decimal import Decimal
from typing import List
from typing import Optional
from typing import Tuple

import db
from enums import CANCELLABLE_STATUSES
from enums import OrderStatus
from enums import PaymentStatus
from exceptions import ConflictError
from exceptions import InvalidStateError
from exceptions import NotFoundError
from exceptions import ValidationError
import money
from models import OrderDraft
from models import OrderItem
from models import ShopStats
from models import UpdateOrderRequest
from services.stock_ledger import OrderPaid
from services.stock_ledger import StockAdjustment
from services.stock_ledger import StockLedger
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_CANCEL_REASON = "Cancelled by user"
ADMIN_CANCEL_REASON = "Cancelled by shop owner"

_BASE36_ALPHABET = string.digits + string.ascii_uppercase
_TRACKING_ID_ATTEMPTS = 5


def _to_base36(value: int) -> str:
  if value == 0:
    return "0"
  digits = []
  while value:
    value, remainder = divmod(value, 36)
    digits.append(_BASE36_ALPHABET[remainder])
  return "".join(reversed(digits))


def generate_tracking_id() -> str:
  """Returns an identifier like `ORD-LX3K9ZQ1-7F2KQA`."""
  timestamp = _to_base36(time.time_ns() // 1_000_000)
  suffix = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(6))
  return f"ORD-{timestamp}-{suffix}".upper()


def compute_totals(
    items: List[OrderItem],
    tax_rate: Decimal,
    shipping_cost: Decimal,
    discount_amount: Decimal,
) -> Tuple[Decimal, Decimal, Decimal]:
  """Returns (total, tax, final) for a set of order items.

  Tax applies to the item total only; shipping and the order-level discount
  are added and subtracted afterwards.
  """
  total = money.quantize(sum((i.subtotal for i in items), Decimal(0)))
  tax = money.quantize(total * money.to_decimal(tax_rate) / money.HUNDRED)
  final = money.quantize(
      total
      + tax
      + money.to_decimal(shipping_cost)
      - money.to_decimal(discount_amount)
  )
  return total, tax, final


def order_items(order: db.Order) -> List[OrderItem]:
  return [OrderItem.model_validate(i) for i in order.items or []]


def _ensure_not_paid_by_admin(payment_status: PaymentStatus) -> None:
  if payment_status == PaymentStatus.PAID:
    raise InvalidStateError(
        "Payment can only be marked paid by a confirmed payment event"
    )


def _ensure_cancellable(order: db.Order) -> None:
  if OrderStatus(order.status) not in CANCELLABLE_STATUSES:
    raise InvalidStateError(
        f"Order {order.tracking_id} cannot be cancelled from status"
        f" {order.status}"
    )


class OrderService:
  """Service for creating and transitioning orders."""

  def __init__(self, session: AsyncSession):
    self.session = session
    self.ledger = StockLedger(session)

  async def create(self, draft: OrderDraft) -> db.Order:
    """Persists a new order from already-validated items.

    Args:
      draft: Items snapshotted from the cart plus addresses and adjustments.

    Returns:
      The stored order with status and payment status both pending.

    Raises:
      ValidationError: If the draft has no items.
      ConflictError: If no unused tracking id could be generated.
    """
    if not draft.items:
      raise ValidationError("Cannot create an order without items")

    total, tax, final = compute_totals(
        draft.items, draft.tax_rate, draft.shipping_cost, draft.discount_amount
    )
    tracking_id = await self._new_tracking_id()
    billing = draft.billing_address or draft.shipping_address

    order = db.Order(
        user_id=draft.user_id,
        shop_id=draft.shop_id,
        tracking_id=tracking_id,
        total_amount=total,
        discount_amount=money.quantize(draft.discount_amount),
        tax_amount=tax,
        shipping_amount=money.quantize(draft.shipping_cost),
        final_amount=final,
        items=[i.model_dump(mode="json") for i in draft.items],
        status=OrderStatus.PENDING.value,
        payment_status=PaymentStatus.PENDING.value,
        payment_method=draft.payment_method,
        shipping_address=draft.shipping_address.model_dump(mode="json"),
        billing_address=billing.model_dump(mode="json"),
        notes=draft.notes,
    )
    await db.insert_order(self.session, order)
    await self.session.commit()
    logger.info(
        "Created order %s for user %s in shop %s (final %s)",
        tracking_id,
        draft.user_id,
        draft.shop_id,
        final,
    )
    return order

  async def get_by_tracking_id(self, tracking_id: str) -> db.Order:
    order = await db.get_order_by_tracking_id(self.session, tracking_id)
    if not order:
      raise NotFoundError(f"Order {tracking_id} not found")
    return order

  async def get_for_shop(self, shop_id: int, tracking_id: str) -> db.Order:
    """Like `get_by_tracking_id`, but hides orders of other shops."""
    order = await self.get_by_tracking_id(tracking_id)
    if order.shop_id != shop_id:
      raise NotFoundError(f"Order {tracking_id} not found")
    return order

  async def list_for_user(
      self,
      user_id: int,
      shop_id: int,
      status: Optional[str] = None,
      limit: int = 10,
      offset: int = 0,
  ) -> Tuple[List[db.Order], int]:
    orders = await db.list_orders(
        self.session,
        shop_id=shop_id,
        user_id=user_id,
        status=status,
        limit=limit,
        offset=offset,
    )
    total = await db.count_orders(
        self.session, shop_id=shop_id, user_id=user_id, status=status
    )
    return orders, total

  async def list_for_shop(
      self,
      shop_id: int,
      status: Optional[str] = None,
      limit: int = 20,
      offset: int = 0,
  ) -> Tuple[List[db.Order], int]:
    orders = await db.list_orders(
        self.session,
        shop_id=shop_id,
        status=status,
        limit=limit,
        offset=offset,
    )
    total = await db.count_orders(self.session, shop_id=shop_id, status=status)
    return orders, total

  async def recent_orders(self, shop_id: int, limit: int = 10) -> List[db.Order]:
    return await db.list_orders(self.session, shop_id=shop_id, limit=limit)

  async def shop_stats(self, shop_id: int, days: int = 30) -> ShopStats:
    since = db.utcnow() - datetime.timedelta(days=days)
    stats = await db.get_shop_order_stats(self.session, shop_id, since)
    stats["total_revenue"] = money.quantize(stats["total_revenue"])
    return ShopStats(**stats)

  async def find_stale_unpaid(self, hours: float) -> List[db.Order]:
    """Lists orders that never received a payment confirmation."""
    cutoff = db.utcnow() - datetime.timedelta(hours=hours)
    return await db.find_stale_pending_orders(self.session, cutoff)

  async def update_status(
      self,
      order: db.Order,
      status: OrderStatus,
      reason: Optional[str] = None,
  ) -> db.Order:
    """Moves an order to a new fulfillment status.

    Writes only when the status differs. Reaching shipped or delivered stamps
    the matching timestamp; cancelled is routed through `cancel` so its
    preconditions and stock restore apply.
    """
    status = OrderStatus(status)
    if status == OrderStatus.CANCELLED:
      return await self.cancel(order, reason or ADMIN_CANCEL_REASON)
    if order.status == status.value:
      return order

    self._set_status(order, status)
    await self.session.commit()
    logger.info("Order %s status -> %s", order.tracking_id, status.value)
    return order

  async def update_payment_status(
      self, order: db.Order, payment_status: PaymentStatus
  ) -> db.Order:
    """Admin change of payment status. `paid` is reserved for the webhook."""
    payment_status = PaymentStatus(payment_status)
    _ensure_not_paid_by_admin(payment_status)
    if order.payment_status == payment_status.value:
      return order
    order.payment_status = payment_status.value
    order.updated_at = db.utcnow()
    await self.session.commit()
    logger.info(
        "Order %s payment status -> %s",
        order.tracking_id,
        payment_status.value,
    )
    return order

  async def admin_update(
      self, order: db.Order, update: UpdateOrderRequest
  ) -> db.Order:
    """Applies a shop owner's changes to notes, payment status and status.

    Every requested change is checked before anything is written, and all of
    them are committed together. A cancellation commits them along with the
    stock restore.

    Raises:
      InvalidStateError: If payment status `paid` is requested, or the order
        can no longer be cancelled.
    """
    payment_status = (
        PaymentStatus(update.payment_status)
        if update.payment_status is not None
        else None
    )
    status = OrderStatus(update.status) if update.status is not None else None
    if payment_status is not None:
      _ensure_not_paid_by_admin(payment_status)
    if status == OrderStatus.CANCELLED:
      _ensure_cancellable(order)

    changed = []
    if update.admin_notes is not None and update.admin_notes != order.admin_notes:
      order.admin_notes = update.admin_notes
      changed.append("admin_notes")
    if payment_status is not None and order.payment_status != payment_status.value:
      order.payment_status = payment_status.value
      changed.append("payment_status")

    if status == OrderStatus.CANCELLED:
      return await self.cancel(
          order, update.cancellation_reason or ADMIN_CANCEL_REASON
      )
    if status is not None and order.status != status.value:
      self._set_status(order, status)
      changed.append("status")

    if changed:
      order.updated_at = db.utcnow()
      await self.session.commit()
      logger.info(
          "Admin updated order %s: %s", order.tracking_id, ", ".join(changed)
      )
    return order

  async def cancel(
      self, order: db.Order, reason: Optional[str] = None
  ) -> db.Order:
    """Cancels an order and returns its items to stock.

    Args:
      order: The order to cancel.
      reason: Appended to the admin notes.

    Returns:
      The refreshed order.

    Raises:
      InvalidStateError: If the order is shipped, delivered, cancelled or
        refunded. Stock is left untouched.
    """
    _ensure_cancellable(order)
    reason = reason or DEFAULT_CANCEL_REASON
    try:
      cancelled = await db.cancel_order(
          self.session,
          order.id,
          [s.value for s in CANCELLABLE_STATUSES],
          note=f"\nCancellation reason: {reason}",
      )
      if not cancelled:
        raise InvalidStateError(
            f"Order {order.tracking_id} is no longer cancellable"
        )
      await self.ledger.restore_items(order_items(order))
      await self.session.commit()
    except Exception:
      await self.session.rollback()
      raise

    logger.info("Cancelled order %s: %s", order.tracking_id, reason)
    return await self.get_by_tracking_id(order.tracking_id)

  async def mark_paid(
      self, order: db.Order, payment_method: Optional[str] = None
  ) -> List[StockAdjustment]:
    """Records a confirmed payment and consumes stock for every item.

    The payment transition and the stock consumption commit together. An
    order that is already paid is left as is. An order cancelled before its
    payment arrived stays cancelled and is logged for a refund; its stock is
    still consumed, which balances the units its cancellation returned.

    Returns:
      The stock adjustments made, empty if the order was already paid.
    """
    if order.payment_status == PaymentStatus.PAID.value:
      logger.info("Order %s already paid", order.tracking_id)
      return []
    try:
      if not await db.mark_order_paid(self.session, order.id, payment_method):
        await self.session.rollback()
        logger.info("Order %s already paid", order.tracking_id)
        return []
      adjustments = await self.ledger.apply(OrderPaid(order.id))
      await self.session.commit()
    except Exception:
      await self.session.rollback()
      raise

    if order.status == OrderStatus.CANCELLED.value:
      logger.warning(
          "Order %s was paid after it was cancelled; it needs a refund",
          order.tracking_id,
      )
    oversold = sum(a.oversold for a in adjustments)
    logger.info(
        "Payment confirmed for order %s (%d lines, %d units oversold)",
        order.tracking_id,
        len(adjustments),
        oversold,
    )
    return adjustments

  async def delete(self, order_id: int) -> None:
    """Hard-deletes an order whose checkout could not be started."""
    await db.delete_order(self.session, order_id)
    await self.session.commit()
    logger.info("Deleted order %s", order_id)

  async def _new_tracking_id(self) -> str:
    for _ in range(_TRACKING_ID_ATTEMPTS):
      tracking_id = generate_tracking_id()
      if not await db.get_order_by_tracking_id(self.session, tracking_id):
        return tracking_id
    raise ConflictError("Could not allocate a unique tracking id")

  @staticmethod
  def _set_status(order: db.Order, status: OrderStatus) -> None:
    now = db.utcnow()
    order.status = status.value
    order.updated_at = now
    if status == OrderStatus.SHIPPED:
      order.shipped_at = now
    elif status == OrderStatus.DELIVERED:
      order.delivered_at = now
