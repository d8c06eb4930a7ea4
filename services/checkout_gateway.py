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

"""Adapter that opens hosted Stripe Checkout sessions for orders.

Sessions are created on the shop's connected account, so the shop is the
merchant of record and the platform keeps an application fee. The order's
snapshotted lines are sent as ad-hoc prices; live product data is never
consulted here.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any
from typing import Dict
from typing import List

import db
from exceptions import UpstreamGatewayError
import money
from models import OrderItem
import stripe

logger = logging.getLogger(__name__)


class StripeCheckoutGateway:
  """Creates checkout sessions and returns their hosted URL."""

  def __init__(
      self,
      api_key: str,
      platform_fee_percentage: float,
      root_domain: str,
      url_scheme: str = "https",
  ):
    self.api_key = api_key
    self.platform_fee_percentage = money.to_decimal(platform_fee_percentage)
    self.root_domain = root_domain
    self.url_scheme = url_scheme

  def shop_url(self, domain: str) -> str:
    return f"{self.url_scheme}://{domain}.{self.root_domain}"

  def platform_fee(self, items: List[OrderItem]) -> Decimal:
    """Returns the platform's cut of the item subtotals, in major units."""
    total = sum((money.to_decimal(i.subtotal) for i in items), Decimal(0))
    return total * self.platform_fee_percentage / money.HUNDRED

  def build_session_params(
      self,
      items: List[OrderItem],
      shop: db.Shop,
      user: db.User,
      tracking_id: str,
  ) -> Dict[str, Any]:
    """Builds the `checkout.Session.create` parameters for an order.

    Args:
      items: The order's snapshotted lines.
      shop: The selling shop, which owns the connected account.
      user: The buyer.
      tracking_id: Links the session back to the order via metadata.

    Returns:
      Keyword arguments for the Stripe API call, excluding credentials.
    """
    currency = (shop.currency or "USD").upper()
    line_items = []
    for item in items:
      unit_price = money.to_decimal(item.subtotal) / item.quantity
      line_items.append({
          "price_data": {
              "currency": currency.lower(),
              "product_data": {
                  "name": item.name or f"Product {item.product_id}",
              },
              "unit_amount": money.to_minor_units(unit_price, currency),
          },
          "quantity": item.quantity,
      })

    order_url = f"{self.shop_url(shop.domain)}/orders/{tracking_id}"
    params = {
        "mode": "payment",
        "line_items": line_items,
        "success_url": f"{order_url}?success=true",
        "cancel_url": f"{order_url}?success=false",
        "invoice_creation": {"enabled": True},
        "metadata": {
            "userId": str(user.id),
            "trackingId": tracking_id,
            "domain": shop.domain,
        },
        "payment_intent_data": {
            "application_fee_amount": money.to_minor_units(
                self.platform_fee(items), currency
            ),
        },
    }
    if user.email:
      params["customer_email"] = user.email
    return params

  async def checkout_items(
      self,
      items: List[OrderItem],
      shop: db.Shop,
      user: db.User,
      tracking_id: str,
  ) -> str:
    """Opens a checkout session and returns its URL.

    Raises:
      UpstreamGatewayError: If Stripe rejects the request or returns no URL.
    """
    if not shop.stripe_account_id:
      raise UpstreamGatewayError(
          f"Shop {shop.domain} has no connected payment account"
      )
    params = self.build_session_params(items, shop, user, tracking_id)
    try:
      session = await asyncio.to_thread(
          stripe.checkout.Session.create,
          api_key=self.api_key,
          stripe_account=shop.stripe_account_id,
          **params,
      )
    except stripe.StripeError as e:
      logger.error(
          "Stripe rejected checkout for order %s: %s", tracking_id, e
      )
      raise UpstreamGatewayError(
          f"Failed to create checkout session: {e.user_message or e}"
      ) from e

    url = getattr(session, "url", None)
    if not url:
      logger.error("Checkout session for order %s has no URL", tracking_id)
      raise UpstreamGatewayError("Failed to create checkout session")
    logger.info(
        "Opened checkout session %s for order %s",
        getattr(session, "id", None),
        tracking_id,
    )
    return url
