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

"""Utility script to dump order data.

This script reads from the configured SQLite database and prints a summary of
stored orders, including their status, payment status, amounts and line
items. With `--stale_hours` it lists only orders still awaiting payment after
that many hours, which is the starting point for reconciling orders whose
payment event was received but never applied.

Usage:
  python dump_orders.py --database_path=... [--stale_hours=24]
"""

import asyncio
import sys
from absl import app as absl_app
from absl import flags
import db
from services.order_service import order_items
from services.order_service import OrderService

FLAGS = flags.FLAGS
flags.DEFINE_string("database_path", None, "Path to the shop database")
flags.DEFINE_float(
    "stale_hours",
    None,
    "Only list orders still unpaid after this many hours",
)
flags.DEFINE_integer("shop_id", None, "Only list orders of this shop")
flags.DEFINE_integer("limit", 100, "Maximum number of orders to list")


def print_order(order: db.Order) -> None:
  print(
      f"Order: {order.tracking_id} [{order.status} / {order.payment_status}]"
      f" shop={order.shop_id} user={order.user_id} created={order.created_at}"
  )
  items = order_items(order)
  if items:
    for item in items:
      variant = (
          f" variant {item.variant_index}"
          if item.variant_index is not None
          else ""
      )
      print(
          f"  - {item.name or 'Unknown Item'} (ID: {item.product_id}{variant})"
          f" x{item.quantity} @ {item.unit_price_at_purchase}"
          f" -{item.discount_at_purchase}% = {item.subtotal}"
      )
  else:
    print("  (No items)")
  print(
      f"  total={order.total_amount} tax={order.tax_amount}"
      f" shipping={order.shipping_amount} discount={order.discount_amount}"
      f" final={order.final_amount}"
  )
  print("-" * 60)


async def dump_orders():
  """Queries the database and prints orders."""
  if not FLAGS.database_path:
    print("Error: --database_path is required.")
    sys.exit(1)

  manager = db.DatabaseManager()
  await manager.init_db(FLAGS.database_path)
  try:
    async with manager.session_factory() as session:
      if FLAGS.stale_hours is not None:
        orders = await OrderService(session).find_stale_unpaid(
            FLAGS.stale_hours
        )
        if FLAGS.shop_id is not None:
          orders = [o for o in orders if o.shop_id == FLAGS.shop_id]
      else:
        orders = await db.list_orders(
            session, shop_id=FLAGS.shop_id, limit=FLAGS.limit
        )

      if not orders:
        print("No orders found.")
        return

      for order in orders[: FLAGS.limit]:
        print_order(order)
  finally:
    await manager.close()


def main(argv):
  """Main entry point for the order dump script."""
  del argv
  asyncio.run(dump_orders())


if __name__ == "__main__":
  absl_app.run(main)
