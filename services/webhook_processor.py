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

"""Processing of signed Stripe webhook deliveries.

Each delivery is handled in a fixed order:
1. The signature is verified before anything is read or stored.
2. The event ID is looked up in the `stripe_events` ledger; a known ID is
   acknowledged with no side effects.
3. The event is stored (write-once) and committed.
4. Allow-listed event types are dispatched; anything else is acknowledged as
   ignored.

Because the event is committed before dispatch, a redelivery after a crash in
step 4 is treated as a duplicate. `dump_orders.py --stale_hours` lists orders
left unpaid by such a gap.
"""

import json
import logging
from typing import Any
from typing import Dict
from typing import Optional

import db
from exceptions import NotFoundError
from exceptions import SignatureError
from exceptions import ValidationError
from models import WebhookResult
from services.order_service import OrderService
from sqlalchemy.ext.asyncio import AsyncSession
import stripe

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
ACCOUNT_UPDATED = "account.updated"

ALLOWED_EVENT_TYPES = frozenset({CHECKOUT_SESSION_COMPLETED, ACCOUNT_UPDATED})


class WebhookProcessor:
  """Verifies, deduplicates and dispatches Stripe events."""

  def __init__(
      self,
      session: AsyncSession,
      webhook_secret: str,
      tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
  ):
    self.session = session
    self.webhook_secret = webhook_secret
    self.tolerance = tolerance
    self.order_service = OrderService(session)

  def verify(self, payload: bytes, signature: str) -> Dict[str, Any]:
    """Checks the `Stripe-Signature` header and decodes the event.

    Raises:
      SignatureError: If the secret is unset, or the header is missing,
        malformed, stale or does not match the payload.
      ValidationError: If a correctly signed payload is not a JSON object.
    """
    if not self.webhook_secret:
      raise SignatureError("Webhook signing secret is not configured")
    if not signature:
      raise SignatureError("Missing Stripe-Signature header")
    try:
      body = payload.decode("utf-8")
      stripe.WebhookSignature.verify_header(
          body, signature, self.webhook_secret, self.tolerance
      )
    except (UnicodeDecodeError, stripe.SignatureVerificationError) as e:
      logger.warning("Rejected webhook with invalid signature: %s", e)
      raise SignatureError("Invalid webhook signature") from e

    try:
      event = json.loads(body)
    except json.JSONDecodeError as e:
      raise ValidationError("Webhook payload is not valid JSON") from e
    if not isinstance(event, dict):
      raise ValidationError("Webhook payload is not an event object")
    return event

  async def process(self, payload: bytes, signature: str) -> WebhookResult:
    """Handles one webhook delivery end to end.

    Args:
      payload: The raw request body, exactly as received.
      signature: The `Stripe-Signature` header value.

    Returns:
      The acknowledgement to send back; always `received=True`.

    Raises:
      SignatureError: If verification fails. Nothing is stored.
      ValidationError: If a checkout event lacks its tracking id.
      NotFoundError: If a checkout event names an unknown order.
    """
    event = self.verify(payload, signature)
    event_id = event.get("id")
    event_type = event.get("type")
    if not event_id or not event_type:
      raise ValidationError("Webhook event is missing its id or type")

    result = WebhookResult(event_id=event_id, event_type=event_type)

    if await db.get_stripe_event(self.session, event_id):
      logger.info("Duplicate webhook event %s (%s)", event_id, event_type)
      result.duplicate = True
      return result

    inserted = await db.record_stripe_event(
        self.session, event_id, event_type, event
    )
    await self.session.commit()
    if not inserted:
      logger.info("Webhook event %s was recorded concurrently", event_id)
      result.duplicate = True
      return result

    if event_type not in ALLOWED_EVENT_TYPES:
      logger.warning("Ignoring webhook event %s of type %s", event_id, event_type)
      return result

    data_object = (event.get("data") or {}).get("object") or {}
    if event_type == CHECKOUT_SESSION_COMPLETED:
      await self._on_checkout_completed(data_object)
    elif event_type == ACCOUNT_UPDATED:
      result.shop_found = await self._on_account_updated(data_object)
    result.handled = True
    return result

  async def _on_checkout_completed(self, session_object: Dict[str, Any]) -> None:
    metadata = session_object.get("metadata") or {}
    tracking_id = metadata.get("trackingId")
    if not tracking_id:
      raise ValidationError("Tracking ID not found in checkout metadata")

    order = await db.get_order_by_tracking_id(self.session, tracking_id)
    if not order:
      raise NotFoundError(f"Order not found for tracking ID: {tracking_id}")

    adjustments = await self.order_service.mark_paid(order)
    logger.info(
        "Checkout completed for order %s; %d stock adjustments",
        tracking_id,
        len(adjustments),
    )

  async def _on_account_updated(
      self, account: Dict[str, Any]
  ) -> Optional[bool]:
    """Marks a shop payment-enabled once its account details are submitted.

    Returns:
      Whether a shop owns the account, or None if no lookup was needed. An
      unknown account is not an error.
    """
    account_id = account.get("id")
    if not account.get("details_submitted"):
      return None
    shop = (
        await db.get_shop_by_stripe_account_id(self.session, account_id)
        if account_id
        else None
    )
    if not shop:
      logger.warning("No shop for connected account %s", account_id)
      return False
    await db.set_shop_account_connected(self.session, shop.id, True)
    await self.session.commit()
    logger.info("Shop %s can now accept payments", shop.domain)
    return True
