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

"""Utility script to dump stock levels.

This script reads product and variant stock counters and sales counts from
the configured SQLite database and outputs them to standard output in CSV
format. Variant rows carry their variant index; product rows leave it empty.

Usage:
  python dump_inventory.py --database_path=... [--shop_id=...]
"""

import asyncio
import csv
import sys
from absl import app as absl_app
from absl import flags
from db import Product
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker

FLAGS = flags.FLAGS
flags.DEFINE_string("database_path", None, "Path to the shop database")
flags.DEFINE_integer("shop_id", None, "Only dump products of this shop")


async def dump_inventory():
  """Queries the database and prints current stock levels."""
  if not FLAGS.database_path:
    print("Error: --database_path is required.")
    sys.exit(1)

  db_url = f"sqlite+aiosqlite:///{FLAGS.database_path}"
  engine = create_async_engine(db_url, echo=False)
  session_factory = sessionmaker(
      engine, expire_on_commit=False, class_=AsyncSession
  )

  async with session_factory() as session:
    query = select(Product).order_by(Product.shop_id, Product.id)
    if FLAGS.shop_id is not None:
      query = query.where(Product.shop_id == FLAGS.shop_id)
    result = await session.execute(query)
    products = result.scalars().all()

    writer = csv.writer(sys.stdout)
    writer.writerow([
        "shop_id",
        "product_id",
        "variant_index",
        "name",
        "stock_quantity",
        "sales_count",
        "status",
    ])
    for product in products:
      writer.writerow([
          product.shop_id,
          product.id,
          "",
          product.name,
          product.stock_quantity,
          product.sales_count,
          product.status,
      ])
      for variant in product.variants:
        writer.writerow([
            product.shop_id,
            product.id,
            variant.variant_index,
            product.name,
            variant.stock_quantity,
            "",
            product.status,
        ])

  await engine.dispose()


def main(argv):
  """Main entry point for the inventory dump script."""
  del argv
  asyncio.run(dump_inventory())


if __name__ == "__main__":
  absl_app.run(main)
