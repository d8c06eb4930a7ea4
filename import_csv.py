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

"""Database initialization script for the shop orders server.

This script imports users, shops, products and product variants from CSV
files into the configured SQLite database. It clears the existing rows of
those tables before populating them; carts, orders and recorded webhook
events are left alone.

Usage:
  python import_csv.py --database_path=... --data_dir=...
"""

import asyncio
import csv
import json
import logging
import os
from decimal import Decimal
from absl import app as absl_app
from absl import flags
import db
from db import Product
from db import ProductVariant
from db import Shop
from db import User
from sqlalchemy import delete

FLAGS = flags.FLAGS
flags.DEFINE_string("database_path", "shop.db", "Path to the shop database")
flags.DEFINE_string(
    "data_dir",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "data"),
    "Directory containing users.csv, shops.csv, products.csv and"
    " variants.csv",
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _read_rows(name: str) -> list[dict[str, str]]:
  path = os.path.join(FLAGS.data_dir, name)
  if not os.path.exists(path):
    logger.info("Skipping missing %s", path)
    return []
  with open(path, "r", newline="") as f:
    return list(csv.DictReader(f))


def _optional_decimal(value: str | None) -> Decimal | None:
  return Decimal(value) if value else None


def _flag(value: str | None) -> bool:
  return (value or "").strip().lower() in ("1", "true", "yes")


async def import_csv_data() -> None:
  """Reads CSV files and populates the database."""
  manager = db.DatabaseManager()
  # Ensure tables exist
  await manager.init_db(FLAGS.database_path)

  try:
    async with manager.session_factory() as session:
      logger.info("Clearing existing catalog...")
      await session.execute(delete(ProductVariant))
      await session.execute(delete(Product))
      await session.execute(delete(Shop))
      await session.execute(delete(User))

      logger.info("Importing Users from CSV...")
      session.add_all(
          User(id=int(row["id"]), email=row["email"], username=row["username"])
          for row in _read_rows("users.csv")
      )

      logger.info("Importing Shops from CSV...")
      session.add_all(
          Shop(
              id=int(row["id"]),
              owner_id=int(row["owner_id"]),
              name=row["name"],
              domain=row["domain"],
              currency=row.get("currency") or "USD",
              stripe_account_id=row.get("stripe_account_id") or None,
              stripe_account_connected=_flag(
                  row.get("stripe_account_connected")
              ),
          )
          for row in _read_rows("shops.csv")
      )

      logger.info("Importing Products from CSV...")
      session.add_all(
          Product(
              id=int(row["id"]),
              shop_id=int(row["shop_id"]),
              name=row["name"],
              slug=row["slug"],
              price=Decimal(row["price"]),
              discount=Decimal(row.get("discount") or "0"),
              stock_quantity=int(row.get("stock_quantity") or 0),
              status=row.get("status") or "active",
              sales_count=int(row.get("sales_count") or 0),
          )
          for row in _read_rows("products.csv")
      )

      logger.info("Importing Product Variants from CSV...")
      session.add_all(
          ProductVariant(
              product_id=int(row["product_id"]),
              variant_index=int(row["variant_index"]),
              attributes=(
                  json.loads(row["attributes"])
                  if row.get("attributes")
                  else None
              ),
              is_default=_flag(row.get("is_default")),
              price=_optional_decimal(row.get("price")),
              discount=_optional_decimal(row.get("discount")),
              stock_quantity=int(row.get("stock_quantity") or 0),
          )
          for row in _read_rows("variants.csv")
      )

      await session.commit()

    logger.info("Database populated from CSVs.")
  finally:
    await manager.close()


def main(argv) -> None:
  """Main entry point for the CSV import script."""
  del argv
  asyncio.run(import_csv_data())


if __name__ == "__main__":
  absl_app.run(main)
