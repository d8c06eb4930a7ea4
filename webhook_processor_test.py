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

"""Tests for Stripe webhook verification, deduplication and dispatch."""

from decimal import Decimal
import hashlib
import hmac
import json
import time

from absl.testing import absltest
import db
import db_testing
from enums import OrderStatus
from enums import PaymentStatus
from exceptions import NotFoundError
from exceptions import SignatureError
from exceptions import ValidationError
from models import AddressInfo
from models import OrderDraft
from models import OrderItem
from services.order_service import OrderService
from services.webhook_processor import WebhookProcessor
from sqlalchemy import func
from sqlalchemy import select

SECRET = "whsec_test_secret"


def sign(payload: bytes, secret: str = SECRET, timestamp: int | None = None):
  """Builds a Stripe-Signature header for a payload."""
  timestamp = int(time.time()) if timestamp is None else timestamp
  signed = f"{timestamp}.".encode("utf-8") + payload
  digest = hmac.new(
      secret.encode("utf-8"), signed, hashlib.sha256
  ).hexdigest()
  return f"t={timestamp},v1={digest}"


def event_payload(event_id, event_type, data_object):
  return json.dumps({
      "id": event_id,
      "object": "event",
      "type": event_type,
      "data": {"object": data_object},
  }).encode("utf-8")


def checkout_completed(event_id, tracking_id):
  metadata = {"userId": "2", "domain": "flowers"}
  if tracking_id:
    metadata["trackingId"] = tracking_id
  return event_payload(
      event_id,
      "checkout.session.completed",
      {"id": "cs_test", "object": "checkout.session", "metadata": metadata},
  )


class WebhookProcessorTest(db_testing.DatabaseTestCase):

  def setUp(self):
    super().setUp()

    async def create_order(session):
      return await OrderService(session).create(
          OrderDraft(
              user_id=db_testing.BUYER_ID,
              shop_id=db_testing.FLOWER_SHOP_ID,
              items=[
                  OrderItem(
                      product_id=db_testing.ROSES_ID,
                      quantity=3,
                      unit_price_at_purchase=Decimal("20.00"),
                      discount_at_purchase=Decimal("10"),
                      subtotal=Decimal("54.00"),
                  )
              ],
              shipping_address=AddressInfo(
                  name="Ada Buyer",
                  phone="555",
                  address_line_1="1 Main St",
                  city="Springfield",
                  state="IL",
                  postal_code="62701",
                  country="US",
              ),
          )
      )

    self.tracking_id = self.run_in_session(create_order).tracking_id

  def deliver(self, payload, signature=None, secret=SECRET):
    if signature is None:
      signature = sign(payload)

    async def run(session):
      return await WebhookProcessor(session, secret).process(
          payload, signature
      )

    return self.run_in_session(run)

  def stored_event_count(self):
    async def count(session):
      result = await session.execute(select(func.count(db.StripeEvent.event_id)))
      return result.scalar_one()

    return self.run_in_session(count)

  def test_checkout_completed_marks_order_paid(self):
    result = self.deliver(checkout_completed("evt_1", self.tracking_id))

    self.assertTrue(result.received)
    self.assertTrue(result.handled)
    self.assertFalse(result.duplicate)
    order = self.order(self.tracking_id)
    self.assertEqual(order.payment_status, PaymentStatus.PAID.value)
    self.assertEqual(order.status, OrderStatus.CONFIRMED.value)
    self.assertEqual(self.stock(db_testing.ROSES_ID), 22)

  def test_duplicate_delivery_consumes_stock_once(self):
    payload = checkout_completed("evt_1", self.tracking_id)

    self.deliver(payload)
    second = self.deliver(payload)

    self.assertTrue(second.received)
    self.assertTrue(second.duplicate)
    self.assertEqual(self.stock(db_testing.ROSES_ID), 22)
    self.assertEqual(self.stored_event_count(), 1)

  def test_redelivered_event_with_new_id_does_not_pay_twice(self):
    self.deliver(checkout_completed("evt_1", self.tracking_id))
    self.deliver(checkout_completed("evt_2", self.tracking_id))

    self.assertEqual(self.stock(db_testing.ROSES_ID), 22)
    self.assertEqual(self.stored_event_count(), 2)

  def test_invalid_signature_stores_nothing(self):
    payload = checkout_completed("evt_1", self.tracking_id)

    with self.assertRaises(SignatureError):
      self.deliver(payload, signature=sign(payload, secret="whsec_other"))
    with self.assertRaises(SignatureError):
      self.deliver(payload, signature="")

    self.assertEqual(self.stored_event_count(), 0)
    self.assertEqual(self.stock(db_testing.ROSES_ID), 25)

  def test_stale_signature_is_rejected(self):
    payload = checkout_completed("evt_1", self.tracking_id)

    with self.assertRaises(SignatureError):
      self.deliver(
          payload, signature=sign(payload, timestamp=int(time.time()) - 3600)
      )

  def test_unconfigured_secret_rejects_everything(self):
    payload = checkout_completed("evt_1", self.tracking_id)

    with self.assertRaises(SignatureError):
      self.deliver(payload, secret="")

  def test_unlisted_event_type_is_stored_and_ignored(self):
    result = self.deliver(
        event_payload("evt_9", "invoice.paid", {"id": "in_1"})
    )

    self.assertTrue(result.received)
    self.assertFalse(result.handled)
    self.assertEqual(self.stored_event_count(), 1)

  def test_missing_tracking_id_is_a_validation_error(self):
    with self.assertRaises(ValidationError):
      self.deliver(checkout_completed("evt_1", None))

    self.assertEqual(self.stored_event_count(), 1)

  def test_unknown_tracking_id_is_not_found(self):
    with self.assertRaises(NotFoundError):
      self.deliver(checkout_completed("evt_1", "ORD-NOPE-000000"))

  def test_account_updated_enables_payments(self):
    result = self.deliver(
        event_payload(
            "evt_acct",
            "account.updated",
            {"id": "acct_teas", "object": "account", "details_submitted": True},
        )
    )

    self.assertTrue(result.shop_found)

    async def shop(session):
      return await db.get_shop_by_domain(session, "teas")

    self.assertTrue(self.run_in_session(shop).stripe_account_connected)

  def test_account_updated_for_unknown_account_is_acknowledged(self):
    result = self.deliver(
        event_payload(
            "evt_acct",
            "account.updated",
            {"id": "acct_nope", "object": "account", "details_submitted": True},
        )
    )

    self.assertTrue(result.received)
    self.assertFalse(result.shop_found)


if __name__ == "__main__":
  absltest.main()
