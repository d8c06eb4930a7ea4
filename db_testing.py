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

"""Shared fixtures for tests that need a seeded temporary database."""

import asyncio
from decimal import Decimal
import os
import shutil
import tempfile
from typing import Any, Awaitable, Callable, Optional, TypeVar

from absl.testing import absltest
import config
import db
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

T = TypeVar("T")

OWNER_ID = 1
BUYER_ID = 2
OTHER_OWNER_ID = 3

FLOWER_SHOP_ID = 1
TEA_SHOP_ID = 2
GADGET_SHOP_ID = 3

ROSES_ID = 1  # 20.00 with 10% off, 25 in stock
TULIPS_ID = 2  # 35.50, 8 in stock
POT_ID = 3  # Variants: 0 = S (default, 12.00, 10 in stock), 1 = L (18.00, 4)
SENCHA_ID = 4  # 1500 JPY, tea shop
GADGET_ID = 5  # Belongs to another owner's shop
RETIRED_ID = 6  # Inactive


class DatabaseTestCase(absltest.TestCase):
  """Base test case with a fresh, seeded SQLite database per test."""

  def setUp(self) -> None:
    super().setUp()
    config.ensure_flags_parsed()
    self.test_dir = tempfile.mkdtemp()
    self.db_path = os.path.join(self.test_dir, "test_shop.db")

    # Each asyncio.run() has its own event loop, so connections are not
    # pooled across calls.
    url = f"sqlite+aiosqlite:///{self.db_path}"
    self.engine = create_async_engine(url, echo=False, poolclass=NullPool)
    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

    async def init_schema() -> None:
      async with self.engine.begin() as conn:
        await conn.run_sync(db.Base.metadata.create_all)

    asyncio.run(init_schema())
    self.run_in_session(self._seed_catalog)

  def tearDown(self) -> None:
    asyncio.run(self.engine.dispose())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def run_in_session(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """Runs `fn(session)` to completion in a fresh session and event loop."""

    async def runner() -> T:
      async with self.session_factory() as session:
        return await fn(session)

    return asyncio.run(runner())

  def stock(self, product_id: int, variant_index: Optional[int] = None) -> int:
    return self.run_in_session(
        lambda s: db.get_stock(s, product_id, variant_index)
    )

  def product(self, product_id: int) -> db.Product:
    return self.run_in_session(lambda s: db.get_product(s, product_id))

  def order(self, tracking_id: str) -> db.Order:
    return self.run_in_session(
        lambda s: db.get_order_by_tracking_id(s, tracking_id)
    )

  def set_stock(
      self, product_id: int, quantity: int, variant_index: Optional[int] = None
  ) -> None:
    async def update(session: AsyncSession) -> None:
      if variant_index is None:
        row = await session.get(db.Product, product_id)
      else:
        row = await session.get(db.ProductVariant, (product_id, variant_index))
      row.stock_quantity = quantity
      await session.commit()

    self.run_in_session(update)

  def update_product(self, product_id: int, **fields: Any) -> None:
    async def update(session: AsyncSession) -> None:
      product = await session.get(db.Product, product_id)
      for name, value in fields.items():
        setattr(product, name, value)
      await session.commit()

    self.run_in_session(update)

  async def _seed_catalog(self, session: AsyncSession) -> None:
    session.add_all([
        db.User(id=OWNER_ID, email="owner@example.com", username="owner"),
        db.User(id=BUYER_ID, email="buyer@example.com", username="buyer"),
        db.User(id=OTHER_OWNER_ID, email="other@example.com", username="other"),
    ])
    session.add_all([
        db.Shop(
            id=FLOWER_SHOP_ID,
            owner_id=OWNER_ID,
            name="The Flower Shop",
            domain="flowers",
            currency="USD",
            stripe_account_id="acct_flowers",
            stripe_account_connected=True,
        ),
        db.Shop(
            id=TEA_SHOP_ID,
            owner_id=OWNER_ID,
            name="Tokyo Teas",
            domain="teas",
            currency="JPY",
            stripe_account_id="acct_teas",
            stripe_account_connected=False,
        ),
        db.Shop(
            id=GADGET_SHOP_ID,
            owner_id=OTHER_OWNER_ID,
            name="Gadgets",
            domain="gadgets",
            currency="USD",
            stripe_account_id="acct_gadgets",
            stripe_account_connected=True,
        ),
    ])
    session.add_all([
        db.Product(
            id=ROSES_ID,
            shop_id=FLOWER_SHOP_ID,
            name="Red Roses",
            slug="red-roses",
            price=Decimal("20.00"),
            discount=Decimal("10"),
            stock_quantity=25,
        ),
        db.Product(
            id=TULIPS_ID,
            shop_id=FLOWER_SHOP_ID,
            name="Tulip Bouquet",
            slug="tulip-bouquet",
            price=Decimal("35.50"),
            discount=Decimal("0"),
            stock_quantity=8,
        ),
        db.Product(
            id=POT_ID,
            shop_id=FLOWER_SHOP_ID,
            name="Flower Pot",
            slug="flower-pot",
            price=Decimal("12.00"),
            discount=Decimal("0"),
            stock_quantity=0,
            variants=[
                db.ProductVariant(
                    variant_index=0,
                    attributes={"size": "S"},
                    is_default=True,
                    stock_quantity=10,
                ),
                db.ProductVariant(
                    variant_index=1,
                    attributes={"size": "L"},
                    price=Decimal("18.00"),
                    stock_quantity=4,
                ),
            ],
        ),
        db.Product(
            id=SENCHA_ID,
            shop_id=TEA_SHOP_ID,
            name="Sencha",
            slug="sencha",
            price=Decimal("1500"),
            discount=Decimal("0"),
            stock_quantity=40,
        ),
        db.Product(
            id=GADGET_ID,
            shop_id=GADGET_SHOP_ID,
            name="Gadget",
            slug="gadget",
            price=Decimal("9.99"),
            discount=Decimal("0"),
            stock_quantity=5,
        ),
        db.Product(
            id=RETIRED_ID,
            shop_id=FLOWER_SHOP_ID,
            name="Retired Wreath",
            slug="retired-wreath",
            price=Decimal("50.00"),
            discount=Decimal("0"),
            stock_quantity=3,
            status="inactive",
        ),
    ])
    await session.commit()
