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

"""Database management and persistence layer for the shop orders service.

This module provides the schema definitions, database session management, and
asynchronous data access helpers used by the services. It utilizes SQLAlchemy
with SQLite (via aiosqlite).

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and session
  factory setup. An instance is created per application (see
  `config.lifespan`) and sessions are passed explicitly to every service.
- WAL Mode: Automatically enables SQLite Write-Ahead Logging so the storefront
  requests and the webhook deliveries can hit the database concurrently.
- Declarative Models: Tables for users, shops, products and their variants,
  carts, orders and the Stripe event ledger.
- Data Access Helpers: Asynchronous functions for reads and for the atomic
  single-statement stock updates the ledger relies on.
"""

import datetime
import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from sqlalchemy import Boolean
from sqlalchemy import case
from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import delete
from sqlalchemy import ForeignKey
from sqlalchemy import func
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import Numeric
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import text
from sqlalchemy import UniqueConstraint
from sqlalchemy import update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()

MONEY = Numeric(14, 4)


def utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.timezone.utc)


class DatabaseManager:
  """Manages the database engine and session factory."""

  def __init__(self) -> None:
    self.engine: Optional[AsyncEngine] = None
    self.session_factory: Optional[sessionmaker] = None

  async def init_db(self, database_path: str) -> None:
    """Initializes the database engine and creates tables."""
    url = f"sqlite+aiosqlite:///{database_path}"
    self.engine = create_async_engine(url, echo=False)

    async with self.engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

    async with self.engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)

  async def close(self) -> None:
    """Closes the database engine."""
    if self.engine:
      await self.engine.dispose()


class User(Base):
  __tablename__ = "users"

  id = Column(Integer, primary_key=True)
  email = Column(String, index=True)
  username = Column(String)


class Shop(Base):
  __tablename__ = "shops"

  id = Column(Integer, primary_key=True)
  owner_id = Column(Integer, ForeignKey("users.id"))
  name = Column(String)
  domain = Column(String, unique=True, index=True)
  currency = Column(String, default="USD")
  status = Column(String, default="active")
  stripe_account_id = Column(String, nullable=True, index=True)
  stripe_account_connected = Column(Boolean, default=False)
  created_at = Column(DateTime, default=utcnow)
  updated_at = Column(DateTime, default=utcnow)


class Product(Base):
  __tablename__ = "products"

  id = Column(Integer, primary_key=True)
  shop_id = Column(Integer, ForeignKey("shops.id"), index=True)
  name = Column(String)
  slug = Column(String)
  price = Column(MONEY)
  discount = Column(MONEY, default=0)  # Percentage, 0-100
  stock_quantity = Column(Integer, default=0)
  status = Column(String, default="active")
  sales_count = Column(Integer, default=0)
  created_at = Column(DateTime, default=utcnow)
  updated_at = Column(DateTime, default=utcnow)

  variants = relationship(
      "ProductVariant",
      lazy="selectin",
      order_by="ProductVariant.variant_index",
      cascade="all, delete-orphan",
  )


class ProductVariant(Base):
  __tablename__ = "product_variants"

  product_id = Column(Integer, ForeignKey("products.id"), primary_key=True)
  variant_index = Column(Integer, primary_key=True)
  attributes = Column(JSON, nullable=True)  # e.g. {"size": "M"}
  is_default = Column(Boolean, default=False)
  price = Column(MONEY, nullable=True)  # Overrides product price when set
  discount = Column(MONEY, nullable=True)  # Overrides product discount
  stock_quantity = Column(Integer, default=0)


def product_availability():
  """SQL expression for a product's sellable stock.

  The sum of the variant counters, or the product's own counter when it has
  no variants.
  """
  variant_stock = (
      select(func.sum(ProductVariant.stock_quantity))
      .where(ProductVariant.product_id == Product.id)
      .correlate(Product)
      .scalar_subquery()
  )
  return func.coalesce(variant_stock, Product.stock_quantity)


class Cart(Base):
  __tablename__ = "carts"
  __table_args__ = (UniqueConstraint("user_id", "shop_id"),)

  id = Column(Integer, primary_key=True)
  user_id = Column(Integer, ForeignKey("users.id"))
  shop_id = Column(Integer, ForeignKey("shops.id"))
  # List of {product_id, variant_index, quantity, subtotal}
  items = Column(JSON, default=list)
  created_at = Column(DateTime, default=utcnow)
  updated_at = Column(DateTime, default=utcnow)


class Order(Base):
  __tablename__ = "orders"

  id = Column(Integer, primary_key=True)
  user_id = Column(Integer, ForeignKey("users.id"), index=True)
  shop_id = Column(Integer, ForeignKey("shops.id"), index=True)
  tracking_id = Column(String, unique=True, index=True)

  total_amount = Column(MONEY)
  discount_amount = Column(MONEY, default=0)
  tax_amount = Column(MONEY, default=0)
  shipping_amount = Column(MONEY, default=0)
  final_amount = Column(MONEY)

  # Snapshotted OrderItems; never recomputed from live products.
  items = Column(JSON)

  status = Column(String, default="pending")
  payment_status = Column(String, default="pending")
  payment_method = Column(String, nullable=True)

  shipping_address = Column(JSON)
  billing_address = Column(JSON, nullable=True)

  notes = Column(String, nullable=True)
  admin_notes = Column(String, nullable=True)

  shipped_at = Column(DateTime, nullable=True)
  delivered_at = Column(DateTime, nullable=True)
  cancelled_at = Column(DateTime, nullable=True)
  created_at = Column(DateTime, default=utcnow)
  updated_at = Column(DateTime, default=utcnow)


class StripeEvent(Base):
  __tablename__ = "stripe_events"

  event_id = Column(String, primary_key=True)
  event_type = Column(String)
  payload = Column(JSON)
  received_at = Column(DateTime, default=utcnow)


# --- Data Access Helpers ---


async def get_user(session: AsyncSession, user_id: int) -> Optional[User]:
  """Retrieves a user by ID."""
  return await session.get(User, user_id)


async def get_shop_by_domain(
    session: AsyncSession, domain: str
) -> Optional[Shop]:
  """Retrieves a shop by its subdomain."""
  result = await session.execute(select(Shop).where(Shop.domain == domain))
  return result.scalar_one_or_none()


async def get_shop_by_stripe_account_id(
    session: AsyncSession, account_id: str
) -> Optional[Shop]:
  """Retrieves the shop owning a connected payment account."""
  result = await session.execute(
      select(Shop).where(Shop.stripe_account_id == account_id)
  )
  return result.scalars().first()


async def set_shop_account_connected(
    session: AsyncSession, shop_id: int, connected: bool
) -> None:
  """Flags whether the shop's connected account can accept payments."""
  await session.execute(
      update(Shop)
      .where(Shop.id == shop_id)
      .values(stripe_account_connected=connected, updated_at=utcnow())
      .execution_options(synchronize_session=False)
  )


async def get_product(
    session: AsyncSession, product_id: int
) -> Optional[Product]:
  """Retrieves a product and its variants, bypassing stale identity state."""
  result = await session.execute(
      select(Product)
      .where(Product.id == product_id)
      .execution_options(populate_existing=True)
  )
  return result.scalar_one_or_none()


async def get_products(
    session: AsyncSession, product_ids: List[int]
) -> Dict[int, Product]:
  """Retrieves several products in one query, keyed by ID.

  Args:
    session: The database session to use.
    product_ids: The product IDs to look up. Duplicates are allowed.

  Returns:
    A mapping of product ID to Product for the IDs that exist.
  """
  if not product_ids:
    return {}
  result = await session.execute(
      select(Product)
      .where(Product.id.in_(set(product_ids)))
      .execution_options(populate_existing=True)
  )
  return {p.id: p for p in result.scalars().all()}


async def get_product_ids_in_shop(
    session: AsyncSession, shop_id: int, product_ids: List[int]
) -> set[int]:
  """Returns the subset of `product_ids` that belong to the shop."""
  if not product_ids:
    return set()
  result = await session.execute(
      select(Product.id).where(
          Product.id.in_(set(product_ids)), Product.shop_id == shop_id
      )
  )
  return set(result.scalars().all())


async def get_stock(
    session: AsyncSession, product_id: int, variant_index: Optional[int] = None
) -> Optional[int]:
  """Reads a stock counter straight from the table."""
  if variant_index is None:
    stmt = select(Product.stock_quantity).where(Product.id == product_id)
  else:
    stmt = select(ProductVariant.stock_quantity).where(
        ProductVariant.product_id == product_id,
        ProductVariant.variant_index == variant_index,
    )
  result = await session.execute(stmt)
  return result.scalar_one_or_none()


def _stock_target(product_id: int, variant_index: Optional[int]):
  """Returns the (model, where-clauses) pair addressing one stock counter."""
  if variant_index is None:
    return Product, [Product.id == product_id]
  return ProductVariant, [
      ProductVariant.product_id == product_id,
      ProductVariant.variant_index == variant_index,
  ]


async def add_stock(
    session: AsyncSession,
    product_id: int,
    quantity: int,
    variant_index: Optional[int] = None,
) -> bool:
  """Atomically increments a stock counter. Returns False if no row matched."""
  model, where = _stock_target(product_id, variant_index)
  stmt = (
      update(model)
      .where(*where)
      .values(stock_quantity=model.stock_quantity + quantity)
      .execution_options(synchronize_session=False)
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def consume_stock(
    session: AsyncSession,
    product_id: int,
    quantity: int,
    variant_index: Optional[int] = None,
) -> bool:
  """Atomically decrements a stock counter if sufficient stock exists."""
  model, where = _stock_target(product_id, variant_index)
  stmt = (
      update(model)
      .where(*where)
      .where(model.stock_quantity >= quantity)
      .values(stock_quantity=model.stock_quantity - quantity)
      .execution_options(synchronize_session=False)
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def drain_stock(
    session: AsyncSession,
    product_id: int,
    quantity: int,
    variant_index: Optional[int] = None,
) -> bool:
  """Decrements a stock counter, clamping at zero, in one statement."""
  model, where = _stock_target(product_id, variant_index)
  stmt = (
      update(model)
      .where(*where)
      .values(
          stock_quantity=case(
              (model.stock_quantity >= quantity,
               model.stock_quantity - quantity),
              else_=0,
          )
      )
      .execution_options(synchronize_session=False)
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def increment_sales_count(
    session: AsyncSession, product_id: int, quantity: int
) -> None:
  """Atomically bumps the product's sales counter."""
  await session.execute(
      update(Product)
      .where(Product.id == product_id)
      .values(
          sales_count=Product.sales_count + quantity, updated_at=utcnow()
      )
      .execution_options(synchronize_session=False)
  )


async def find_low_stock(
    session: AsyncSession, shop_id: int, threshold: int
) -> List[Product]:
  """Lists active products whose available stock is at or below a threshold.

  A product with variants is measured by the sum of its variant counters;
  its own counter only counts when it has no variants.
  """
  availability = product_availability()
  result = await session.execute(
      select(Product)
      .where(
          Product.shop_id == shop_id,
          Product.status == "active",
          availability <= threshold,
      )
      .order_by(availability.asc(), Product.id.asc())
  )
  return list(result.scalars().all())


async def find_best_selling(
    session: AsyncSession, shop_id: int, limit: int
) -> List[Product]:
  """Lists the shop's active products ordered by sales count."""
  result = await session.execute(
      select(Product)
      .where(Product.shop_id == shop_id, Product.status == "active")
      .order_by(Product.sales_count.desc(), Product.id.asc())
      .limit(limit)
  )
  return list(result.scalars().all())


async def get_cart(
    session: AsyncSession, user_id: int, shop_id: int
) -> Optional[Cart]:
  """Retrieves the server-side cart for a (user, shop) pair."""
  result = await session.execute(
      select(Cart)
      .where(Cart.user_id == user_id, Cart.shop_id == shop_id)
      .execution_options(populate_existing=True)
  )
  return result.scalar_one_or_none()


async def save_cart_items(
    session: AsyncSession,
    user_id: int,
    shop_id: int,
    items: List[Dict[str, Any]],
) -> Cart:
  """Creates or replaces the item list of a (user, shop) cart."""
  cart = await get_cart(session, user_id, shop_id)
  if cart:
    cart.items = items
    cart.updated_at = utcnow()
  else:
    cart = Cart(user_id=user_id, shop_id=shop_id, items=items)
    session.add(cart)
  await session.flush()
  return cart


async def delete_cart(session: AsyncSession, user_id: int, shop_id: int) -> bool:
  """Deletes a cart entirely."""
  result = await session.execute(
      delete(Cart).where(Cart.user_id == user_id, Cart.shop_id == shop_id)
  )
  return result.rowcount > 0


async def insert_order(session: AsyncSession, order: Order) -> Order:
  """Adds an order and flushes to obtain its primary key."""
  session.add(order)
  await session.flush()
  return order


async def get_order(session: AsyncSession, order_id: int) -> Optional[Order]:
  """Retrieves an order by internal ID, bypassing stale identity state."""
  return await session.get(Order, order_id, populate_existing=True)


async def get_order_by_tracking_id(
    session: AsyncSession, tracking_id: str
) -> Optional[Order]:
  """Retrieves an order by its external tracking ID."""
  result = await session.execute(
      select(Order)
      .where(Order.tracking_id == tracking_id)
      .execution_options(populate_existing=True)
  )
  return result.scalar_one_or_none()


async def delete_order(session: AsyncSession, order_id: int) -> bool:
  """Hard-deletes an order."""
  result = await session.execute(delete(Order).where(Order.id == order_id))
  return result.rowcount > 0


def _order_filters(
    shop_id: Optional[int],
    user_id: Optional[int],
    status: Optional[str],
) -> list:
  filters = []
  if shop_id is not None:
    filters.append(Order.shop_id == shop_id)
  if user_id is not None:
    filters.append(Order.user_id == user_id)
  if status:
    filters.append(Order.status == status)
  return filters


async def list_orders(
    session: AsyncSession,
    shop_id: Optional[int] = None,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = 10,
    offset: int = 0,
) -> List[Order]:
  """Lists orders, newest first, with optional shop/user/status filters."""
  result = await session.execute(
      select(Order)
      .where(*_order_filters(shop_id, user_id, status))
      .order_by(Order.created_at.desc(), Order.id.desc())
      .limit(limit)
      .offset(offset)
  )
  return list(result.scalars().all())


async def count_orders(
    session: AsyncSession,
    shop_id: Optional[int] = None,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
) -> int:
  """Counts orders matching the same filters as `list_orders`."""
  result = await session.execute(
      select(func.count(Order.id)).where(
          *_order_filters(shop_id, user_id, status)
      )
  )
  return int(result.scalar_one())


async def get_shop_order_stats(
    session: AsyncSession, shop_id: int, since: datetime.datetime
) -> Dict[str, Any]:
  """Aggregates order counts and revenue for a shop since a point in time."""
  stmt = select(
      func.count(Order.id),
      func.coalesce(func.sum(Order.final_amount), 0),
      func.count(case((Order.status == "pending", 1))),
      func.count(case((Order.status == "delivered", 1))),
      func.count(case((Order.status == "cancelled", 1))),
  ).where(Order.shop_id == shop_id, Order.created_at >= since)
  row = (await session.execute(stmt)).one()
  return {
      "total_orders": int(row[0]),
      "total_revenue": row[1],
      "pending_orders": int(row[2]),
      "completed_orders": int(row[3]),
      "cancelled_orders": int(row[4]),
  }


async def find_stale_pending_orders(
    session: AsyncSession, older_than: datetime.datetime
) -> List[Order]:
  """Lists orders still awaiting payment that were created before a cutoff."""
  result = await session.execute(
      select(Order)
      .where(
          Order.payment_status == "pending",
          Order.status == "pending",
          Order.created_at < older_than,
      )
      .order_by(Order.created_at.asc())
  )
  return list(result.scalars().all())


async def get_stripe_event(
    session: AsyncSession, event_id: str
) -> Optional[StripeEvent]:
  """Retrieves a recorded provider event by its upstream ID."""
  return await session.get(StripeEvent, event_id)


async def record_stripe_event(
    session: AsyncSession,
    event_id: str,
    event_type: str,
    payload: Dict[str, Any],
) -> bool:
  """Inserts a provider event once.

  Returns:
    True if the row was inserted, False if the event ID was already present.
    A duplicate is a no-op, never an error.
  """
  stmt = (
      sqlite_insert(StripeEvent)
      .values(
          event_id=event_id,
          event_type=event_type,
          payload=payload,
          received_at=utcnow(),
      )
      .on_conflict_do_nothing(index_elements=["event_id"])
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def cancel_order(
    session: AsyncSession,
    order_id: int,
    cancellable_statuses: List[str],
    note: Optional[str] = None,
) -> bool:
  """Moves an order to cancelled if it is still in a cancellable status.

  The status check and the write are one statement, so two concurrent
  cancellations cannot both succeed.

  Args:
    session: The database session to use.
    order_id: The order to cancel.
    cancellable_statuses: Statuses from which cancelling is permitted.
    note: Text appended to the order's admin notes.

  Returns:
    True if the order was cancelled by this call.
  """
  now = utcnow()
  values: Dict[str, Any] = {
      "status": "cancelled",
      "cancelled_at": now,
      "updated_at": now,
  }
  if note:
    values["admin_notes"] = func.coalesce(Order.admin_notes, "") + note
  result = await session.execute(
      update(Order)
      .where(Order.id == order_id, Order.status.in_(cancellable_statuses))
      .values(**values)
      .execution_options(synchronize_session=False)
  )
  return result.rowcount > 0


async def mark_order_paid(
    session: AsyncSession,
    order_id: int,
    payment_method: Optional[str] = None,
) -> bool:
  """Sets payment_status=paid unless already paid.

  The status moves to confirmed, except that a cancelled order stays
  cancelled.

  Returns:
    True if this call performed the transition.
  """
  values: Dict[str, Any] = {
      "payment_status": "paid",
      "status": case(
          (Order.status == "cancelled", Order.status), else_="confirmed"
      ),
      "updated_at": utcnow(),
  }
  if payment_method:
    values["payment_method"] = payment_method
  result = await session.execute(
      update(Order)
      .where(Order.id == order_id, Order.payment_status != "paid")
      .values(**values)
      .execution_options(synchronize_session=False)
  )
  return result.rowcount > 0
