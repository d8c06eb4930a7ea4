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

"""Integration tests for the shop orders server."""

from decimal import Decimal
import json
from typing import AsyncGenerator

from absl.testing import absltest
import db_testing
import dependencies
from exceptions import UpstreamGatewayError
from fastapi import Depends
from fastapi.testclient import TestClient
from server import app
from services.webhook_processor import WebhookProcessor
from sqlalchemy.ext.asyncio import AsyncSession
import webhook_processor_test

BUYER = {"X-User-Id": str(db_testing.BUYER_ID)}
OWNER = {"X-User-Id": str(db_testing.OWNER_ID)}
STRANGER = {"X-User-Id": str(db_testing.OTHER_OWNER_ID)}

ADDRESS = {
    "name": "Ada Buyer",
    "phone": "+1 555 0100",
    "address_line_1": "1 Main St",
    "city": "Springfield",
    "state": "IL",
    "postal_code": "62701",
    "country": "US",
}


class FakeCheckoutGateway:
  """Stands in for Stripe; records calls and can be told to fail."""

  def __init__(self):
    self.calls = []
    self.fail = False

  async def checkout_items(self, items, shop, user, tracking_id):
    self.calls.append((items, shop.domain, user.id, tracking_id))
    if self.fail:
      raise UpstreamGatewayError("Failed to create checkout session")
    return f"https://checkout.stripe.test/{tracking_id}"


class IntegrationTest(db_testing.DatabaseTestCase):
  """Integration tests for the server application."""

  def setUp(self) -> None:
    """Sets up the test database, dependency overrides and the client."""
    super().setUp()
    self.gateway = FakeCheckoutGateway()

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
      async with self.session_factory() as session:
        yield session

    def override_get_webhook_processor(
        session: AsyncSession = Depends(dependencies.get_db),
    ) -> WebhookProcessor:
      return WebhookProcessor(session, webhook_processor_test.SECRET)

    app.dependency_overrides[dependencies.get_db] = override_get_db
    app.dependency_overrides[dependencies.get_checkout_gateway] = (
        lambda: self.gateway
    )
    app.dependency_overrides[dependencies.get_webhook_processor] = (
        override_get_webhook_processor
    )
    self.client = TestClient(app)

  def tearDown(self) -> None:
    app.dependency_overrides.clear()
    super().tearDown()

  def add_to_cart(self, product_id, quantity, shop="flowers", **extra):
    response = self.client.post(
        f"/shops/{shop}/cart",
        json={"product_id": product_id, "quantity": quantity, **extra},
        headers=BUYER,
    )
    self.assertEqual(response.status_code, 200, response.text)
    return response.json()

  def place_order(self, **extra):
    return self.client.post(
        "/shops/flowers/orders",
        json={"shipping_address": ADDRESS, **extra},
        headers=BUYER,
    )

  def pay(self, tracking_id, event_id="evt_paid"):
    payload = webhook_processor_test.checkout_completed(event_id, tracking_id)
    return self.client.post(
        "/webhook/stripe",
        content=payload,
        headers={"Stripe-Signature": webhook_processor_test.sign(payload)},
    )

  # --- Cart ---

  def test_cart_lifecycle(self):
    body = self.add_to_cart(db_testing.ROSES_ID, 3)
    self.assertEqual(body["message"], "Item added to cart successfully")
    self.assertEqual(
        Decimal(body["cart"]["total_amount"]), Decimal("54.00")
    )

    response = self.client.put(
        "/shops/flowers/cart",
        json={"product_id": db_testing.ROSES_ID, "quantity": 1},
        headers=BUYER,
    )
    self.assertEqual(response.status_code, 200)
    self.assertEqual(response.json()["cart"]["total_items"], 1)

    response = self.client.request(
        "DELETE",
        "/shops/flowers/cart",
        json={"product_id": db_testing.ROSES_ID},
        headers=BUYER,
    )
    self.assertEqual(response.status_code, 200)

    response = self.client.get("/shops/flowers/cart", headers=BUYER)
    self.assertEqual(response.json()["items"], [])

  def test_cart_rejects_out_of_range_quantity(self):
    response = self.client.post(
        "/shops/flowers/cart",
        json={"product_id": db_testing.ROSES_ID, "quantity": 100},
        headers=BUYER,
    )
    self.assertEqual(response.status_code, 422)

  def test_identity_and_shop_resolution(self):
    self.assertEqual(self.client.get("/shops/flowers/cart").status_code, 422)

    response = self.client.get(
        "/shops/flowers/cart", headers={"X-User-Id": "999"}
    )
    self.assertEqual(response.status_code, 404)

    response = self.client.get("/shops/nowhere/cart", headers=BUYER)
    self.assertEqual(response.status_code, 404)
    self.assertEqual(response.json()["code"], "NOT_FOUND")

  def test_merge_and_validate(self):
    self.add_to_cart(db_testing.TULIPS_ID, 6)

    response = self.client.post(
        "/shops/flowers/cart/merge",
        json={"items": [{"product_id": db_testing.TULIPS_ID, "quantity": 5}]},
        headers=BUYER,
    )
    self.assertEqual(response.status_code, 200, response.text)
    self.assertTrue(response.json()["success"])
    self.assertEqual(response.json()["cart"]["items"][0]["quantity"], 8)

    response = self.client.get("/shops/flowers/cart/validate", headers=BUYER)
    self.assertEqual(response.status_code, 200)
    self.assertTrue(response.json()["valid"])

  def test_merge_with_foreign_product_is_rejected(self):
    response = self.client.post(
        "/shops/flowers/cart/merge",
        json={"items": [{"product_id": db_testing.GADGET_ID, "quantity": 1}]},
        headers=BUYER,
    )

    self.assertEqual(response.status_code, 400)
    self.assertEqual(response.json()["code"], "VALIDATION_ERROR")
    self.assertLen(response.json()["details"], 1)

  # --- Orders ---

  def test_place_order_and_pay(self):
    self.add_to_cart(db_testing.ROSES_ID, 3)

    response = self.place_order(tax_rate=10, shipping_cost=5)
    self.assertEqual(response.status_code, 201, response.text)
    body = response.json()
    tracking_id = body["tracking_id"]
    self.assertEqual(body["message"], "Order created successfully")
    self.assertEqual(
        body["checkout_url"], f"https://checkout.stripe.test/{tracking_id}"
    )
    # The cart is cleared and stock is untouched until payment.
    self.assertEqual(
        self.client.get("/shops/flowers/cart", headers=BUYER).json()["items"],
        [],
    )
    self.assertEqual(self.stock(db_testing.ROSES_ID), 25)

    order = self.client.get(
        f"/shops/flowers/orders/{tracking_id}", headers=BUYER
    ).json()
    self.assertEqual(Decimal(order["final_amount"]), Decimal("64.40"))
    self.assertEqual(order["billing_address"], order["shipping_address"])

    response = self.pay(tracking_id)
    self.assertEqual(response.status_code, 200)
    self.assertTrue(response.json()["received"])
    response = self.pay(tracking_id)
    self.assertTrue(response.json()["duplicate"])

    order = self.client.get(
        f"/shops/flowers/orders/{tracking_id}", headers=BUYER
    ).json()
    self.assertEqual(order["payment_status"], "paid")
    self.assertEqual(order["status"], "confirmed")
    self.assertEqual(self.stock(db_testing.ROSES_ID), 22)

  def test_place_order_with_empty_cart(self):
    response = self.place_order()

    self.assertEqual(response.status_code, 400)
    self.assertIn("empty", response.json()["detail"])

  def test_place_order_in_shop_without_payments(self):
    self.add_to_cart(db_testing.SENCHA_ID, 1, shop="teas")

    response = self.client.post(
        "/shops/teas/orders",
        json={"shipping_address": ADDRESS},
        headers=BUYER,
    )

    self.assertEqual(response.status_code, 400)
    self.assertIn("not connected", response.json()["detail"])

  def test_place_order_with_stale_cart(self):
    self.add_to_cart(db_testing.TULIPS_ID, 5)
    self.set_stock(db_testing.TULIPS_ID, 2)

    response = self.place_order()

    self.assertEqual(response.status_code, 400)
    body = response.json()
    self.assertEqual(body["detail"], "Cart validation failed")
    self.assertLen(body["details"], 1)
    self.assertEqual(body["updated_items"][0]["quantity"], 2)
    self.assertEmpty(self.gateway.calls)

  def test_gateway_failure_rolls_back_order(self):
    self.add_to_cart(db_testing.ROSES_ID, 1)
    self.gateway.fail = True

    response = self.place_order()

    self.assertEqual(response.status_code, 500)
    self.assertEqual(response.json()["code"], "UPSTREAM_GATEWAY_ERROR")
    orders = self.client.get("/shops/flowers/orders", headers=BUYER).json()
    self.assertEqual(orders["pagination"]["total"], 0)
    # The cart survives so the buyer can retry.
    cart = self.client.get("/shops/flowers/cart", headers=BUYER).json()
    self.assertLen(cart["items"], 1)

  def test_order_visibility(self):
    self.add_to_cart(db_testing.ROSES_ID, 1)
    tracking_id = self.place_order().json()["tracking_id"]
    url = f"/shops/flowers/orders/{tracking_id}"

    self.assertEqual(self.client.get(url, headers=BUYER).status_code, 200)
    self.assertEqual(self.client.get(url, headers=OWNER).status_code, 200)
    self.assertEqual(self.client.get(url, headers=STRANGER).status_code, 403)
    self.assertEqual(
        self.client.get(
            f"/shops/teas/orders/{tracking_id}", headers=BUYER
        ).status_code,
        404,
    )

  def test_list_orders_is_paginated(self):
    for _ in range(3):
      self.add_to_cart(db_testing.ROSES_ID, 1)
      self.assertEqual(self.place_order().status_code, 201)

    body = self.client.get(
        "/shops/flowers/orders?limit=2&page=2", headers=BUYER
    ).json()

    self.assertLen(body["orders"], 1)
    self.assertEqual(
        body["pagination"], {"page": 2, "limit": 2, "total": 3, "pages": 2}
    )

  def test_cancel_order(self):
    self.add_to_cart(db_testing.ROSES_ID, 3)
    tracking_id = self.place_order().json()["tracking_id"]
    self.pay(tracking_id)

    response = self.client.request(
        "DELETE",
        f"/shops/flowers/orders/{tracking_id}",
        json={"reason": "Wrong color"},
        headers=BUYER,
    )

    self.assertEqual(response.status_code, 200, response.text)
    order = response.json()["order"]
    self.assertEqual(order["status"], "cancelled")
    self.assertIn("Wrong color", order["admin_notes"])
    self.assertEqual(self.stock(db_testing.ROSES_ID), 25)

  def test_cancel_shipped_order_is_rejected(self):
    self.add_to_cart(db_testing.ROSES_ID, 3)
    tracking_id = self.place_order().json()["tracking_id"]
    self.pay(tracking_id)
    self.client.patch(
        f"/shops/flowers/admin/orders/{tracking_id}",
        json={"status": "shipped"},
        headers=OWNER,
    )

    response = self.client.delete(
        f"/shops/flowers/orders/{tracking_id}", headers=BUYER
    )

    self.assertEqual(response.status_code, 400)
    self.assertEqual(response.json()["code"], "INVALID_STATE")
    self.assertEqual(self.stock(db_testing.ROSES_ID), 22)

  def test_pay_route_reopens_checkout(self):
    self.add_to_cart(db_testing.ROSES_ID, 1)
    tracking_id = self.place_order().json()["tracking_id"]

    response = self.client.get(
        f"/shops/flowers/orders/{tracking_id}/pay", headers=BUYER
    )
    self.assertEqual(response.status_code, 200)
    self.assertIn(tracking_id, response.json()["checkout_url"])

    self.pay(tracking_id)
    response = self.client.get(
        f"/shops/flowers/orders/{tracking_id}/pay", headers=BUYER
    )
    self.assertEqual(response.status_code, 400)

  # --- Admin ---

  def test_admin_routes_require_shop_owner(self):
    for path in (
        "/shops/flowers/admin/orders",
        "/shops/flowers/admin/dashboard/stats",
        "/shops/flowers/admin/inventory/low-stock",
    ):
      response = self.client.get(path, headers=BUYER)
      self.assertEqual(response.status_code, 403, path)
      self.assertEqual(response.json()["code"], "FORBIDDEN")

  def test_admin_order_management(self):
    self.add_to_cart(db_testing.ROSES_ID, 2)
    tracking_id = self.place_order().json()["tracking_id"]
    self.pay(tracking_id)
    url = f"/shops/flowers/admin/orders/{tracking_id}"

    response = self.client.patch(
        url,
        json={"status": "shipped", "admin_notes": "Sent with courier"},
        headers=OWNER,
    )
    self.assertEqual(response.status_code, 200, response.text)
    order = response.json()["order"]
    self.assertEqual(order["status"], "shipped")
    self.assertIsNotNone(order["shipped_at"])

    response = self.client.patch(
        url, json={"payment_status": "paid"}, headers=OWNER
    )
    self.assertEqual(response.status_code, 400)

    listing = self.client.get(
        "/shops/flowers/admin/orders", headers=OWNER
    ).json()
    self.assertEqual(listing["pagination"]["total"], 1)
    self.assertEqual(listing["stats"]["total_orders"], 1)

    stats = self.client.get(
        "/shops/flowers/admin/dashboard/stats", headers=OWNER
    ).json()
    self.assertEqual(Decimal(stats["total_revenue"]), Decimal("36.00"))

    recent = self.client.get(
        "/shops/flowers/admin/dashboard/recent-orders", headers=OWNER
    ).json()
    self.assertEqual([o["tracking_id"] for o in recent], [tracking_id])

  def test_admin_cancel_records_reason(self):
    self.add_to_cart(db_testing.ROSES_ID, 2)
    tracking_id = self.place_order().json()["tracking_id"]

    response = self.client.patch(
        f"/shops/flowers/admin/orders/{tracking_id}",
        json={"status": "cancelled", "cancellation_reason": "Damaged stock"},
        headers=OWNER,
    )

    self.assertEqual(response.status_code, 200, response.text)
    order = response.json()["order"]
    self.assertEqual(order["status"], "cancelled")
    self.assertIn("Cancellation reason: Damaged stock", order["admin_notes"])

  def test_admin_inventory_views(self):
    self.add_to_cart(db_testing.TULIPS_ID, 6)
    tracking_id = self.place_order().json()["tracking_id"]
    self.pay(tracking_id)

    top = self.client.get(
        "/shops/flowers/admin/dashboard/top-products?limit=1", headers=OWNER
    ).json()
    self.assertEqual([p["id"] for p in top], [db_testing.TULIPS_ID])
    self.assertEqual(top[0]["sales_count"], 6)

    low = self.client.get(
        "/shops/flowers/admin/inventory/low-stock?threshold=14", headers=OWNER
    ).json()
    # The pot reports the sum of its variants, not its own empty counter.
    self.assertEqual(
        [(p["id"], p["stock_quantity"]) for p in low],
        [(db_testing.TULIPS_ID, 2), (db_testing.POT_ID, 14)],
    )

  # --- Webhook ---

  def test_webhook_rejects_bad_signature(self):
    payload = json.dumps({"id": "evt_x", "type": "invoice.paid"}).encode()

    response = self.client.post(
        "/webhook/stripe",
        content=payload,
        headers={"Stripe-Signature": "t=1,v1=deadbeef"},
    )

    self.assertEqual(response.status_code, 400)
    self.assertEqual(response.json()["code"], "INVALID_SIGNATURE")

  def test_webhook_acknowledges_ignored_events(self):
    payload = webhook_processor_test.event_payload(
        "evt_x", "customer.created", {"id": "cus_1"}
    )

    response = self.client.post(
        "/webhook/stripe",
        content=payload,
        headers={"Stripe-Signature": webhook_processor_test.sign(payload)},
    )

    self.assertEqual(response.status_code, 200)
    self.assertTrue(response.json()["received"])
    self.assertFalse(response.json()["handled"])


if __name__ == "__main__":
  absltest.main()
