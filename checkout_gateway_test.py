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

"""Tests for the Stripe checkout gateway and minor-unit conversion."""

import asyncio
from decimal import Decimal
import types
from unittest import mock

from absl.testing import absltest
import db
from exceptions import UpstreamGatewayError
import money
from models import OrderItem
from services.checkout_gateway import StripeCheckoutGateway
import stripe


def _item(subtotal, quantity=1, product_id=1, name="Red Roses"):
  return OrderItem(
      product_id=product_id,
      name=name,
      quantity=quantity,
      unit_price_at_purchase=Decimal(subtotal) / quantity,
      subtotal=Decimal(subtotal),
  )


class MinorUnitsTest(absltest.TestCase):

  def test_two_decimal_currency(self):
    self.assertEqual(money.to_minor_units(Decimal("19.99"), "USD"), 1999)
    self.assertEqual(money.to_minor_units(Decimal("0.005"), "eur"), 1)

  def test_zero_decimal_currency(self):
    self.assertEqual(money.to_minor_units(Decimal("1500"), "JPY"), 1500)
    self.assertEqual(money.to_minor_units(Decimal("1500.5"), "krw"), 1501)

  def test_three_decimal_currency(self):
    self.assertEqual(money.to_minor_units(Decimal("1.2345"), "KWD"), 1235)

  def test_accepts_floats_without_binary_drift(self):
    self.assertEqual(money.to_minor_units(19.99, "USD"), 1999)

  def test_line_subtotal(self):
    self.assertEqual(
        money.line_subtotal(3, Decimal("20.00"), Decimal("10")),
        Decimal("54.00"),
    )


class StripeCheckoutGatewayTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.gateway = StripeCheckoutGateway(
        api_key="sk_test_123",
        platform_fee_percentage=5.0,
        root_domain="example.com",
        url_scheme="https",
    )
    self.shop = db.Shop(
        id=1,
        domain="flowers",
        currency="USD",
        stripe_account_id="acct_flowers",
    )
    self.user = db.User(id=2, email="buyer@example.com")

  def test_session_params(self):
    params = self.gateway.build_session_params(
        [_item("54.00", quantity=3), _item("19.99", product_id=2, name="Pot")],
        self.shop,
        self.user,
        "ORD-ABC-123456",
    )

    self.assertEqual(params["mode"], "payment")
    self.assertEqual(params["customer_email"], "buyer@example.com")
    first, second = params["line_items"]
    self.assertEqual(first["quantity"], 3)
    self.assertEqual(first["price_data"]["unit_amount"], 1800)
    self.assertEqual(first["price_data"]["currency"], "usd")
    self.assertEqual(first["price_data"]["product_data"]["name"], "Red Roses")
    self.assertEqual(second["price_data"]["unit_amount"], 1999)
    # 5% of 73.99
    self.assertEqual(
        params["payment_intent_data"]["application_fee_amount"], 370
    )
    self.assertEqual(
        params["metadata"],
        {"userId": "2", "trackingId": "ORD-ABC-123456", "domain": "flowers"},
    )
    self.assertEqual(
        params["success_url"],
        "https://flowers.example.com/orders/ORD-ABC-123456?success=true",
    )
    self.assertEqual(
        params["cancel_url"],
        "https://flowers.example.com/orders/ORD-ABC-123456?success=false",
    )

  def test_zero_decimal_currency_is_not_scaled(self):
    self.shop.currency = "JPY"

    params = self.gateway.build_session_params(
        [_item("1500")], self.shop, self.user, "ORD-1"
    )

    self.assertEqual(params["line_items"][0]["price_data"]["unit_amount"], 1500)
    self.assertEqual(
        params["payment_intent_data"]["application_fee_amount"], 75
    )

  def test_checkout_items_uses_connected_account(self):
    session = types.SimpleNamespace(id="cs_1", url="https://checkout/cs_1")
    with mock.patch.object(
        stripe.checkout.Session, "create", return_value=session
    ) as create:
      url = asyncio.run(
          self.gateway.checkout_items(
              [_item("10.00")], self.shop, self.user, "ORD-1"
          )
      )

    self.assertEqual(url, "https://checkout/cs_1")
    kwargs = create.call_args.kwargs
    self.assertEqual(kwargs["api_key"], "sk_test_123")
    self.assertEqual(kwargs["stripe_account"], "acct_flowers")
    self.assertEqual(kwargs["metadata"]["trackingId"], "ORD-1")

  def test_stripe_error_becomes_upstream_error(self):
    with mock.patch.object(
        stripe.checkout.Session,
        "create",
        side_effect=stripe.StripeError("card declined"),
    ):
      with self.assertRaises(UpstreamGatewayError):
        asyncio.run(
            self.gateway.checkout_items(
                [_item("10.00")], self.shop, self.user, "ORD-1"
            )
        )

  def test_missing_url_becomes_upstream_error(self):
    with mock.patch.object(
        stripe.checkout.Session,
        "create",
        return_value=types.SimpleNamespace(id="cs_1", url=None),
    ):
      with self.assertRaises(UpstreamGatewayError):
        asyncio.run(
            self.gateway.checkout_items(
                [_item("10.00")], self.shop, self.user, "ORD-1"
            )
        )

  def test_shop_without_account_is_rejected(self):
    self.shop.stripe_account_id = None

    with self.assertRaises(UpstreamGatewayError):
      asyncio.run(
          self.gateway.checkout_items(
              [_item("10.00")], self.shop, self.user, "ORD-1"
          )
      )


if __name__ == "__main__":
  absltest.main()
