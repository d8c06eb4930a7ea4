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

"""FastAPI dependencies for the shop orders server.

This module contains dependency injection logic for FastAPI endpoints,
including:
- Database session management from the app's `DatabaseManager`.
- Service instantiation (cart, order, checkout gateway, webhook processor).
- Caller identity from the `X-User-Id` header set by the auth layer.
- Shop resolution by domain and shop-owner checks.
"""

from typing import AsyncGenerator

import config
import db
from exceptions import ForbiddenError
from exceptions import NotFoundError
from fastapi import Depends
from fastapi import Header
from fastapi import Path
from fastapi import Request
from services.cart_service import CartService
from services.checkout_gateway import StripeCheckoutGateway
from services.order_service import OrderService
from services.webhook_processor import WebhookProcessor
from sqlalchemy.ext.asyncio import AsyncSession


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for a database session."""
  manager: db.DatabaseManager = request.app.state.db_manager
  async with manager.session_factory() as session:
    yield session


async def get_current_user(
    x_user_id: int = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_db),
) -> db.User:
  """Resolves the authenticated caller forwarded by the auth layer."""
  user = await db.get_user(session, x_user_id)
  if not user:
    raise NotFoundError(f"User {x_user_id} not found")
  return user


async def get_shop(
    domain: str = Path(...),
    session: AsyncSession = Depends(get_db),
) -> db.Shop:
  """Resolves the shop named by the `{domain}` path segment."""
  shop = await db.get_shop_by_domain(session, domain)
  if not shop:
    raise NotFoundError(f"Shop {domain} not found")
  return shop


async def get_owned_shop(
    shop: db.Shop = Depends(get_shop),
    user: db.User = Depends(get_current_user),
) -> db.Shop:
  """Like `get_shop`, but only for the shop's owner."""
  if shop.owner_id != user.id:
    raise ForbiddenError("Only the shop owner can access this resource")
  return shop


def get_cart_service(
    session: AsyncSession = Depends(get_db),
) -> CartService:
  return CartService(session)


def get_order_service(
    session: AsyncSession = Depends(get_db),
) -> OrderService:
  return OrderService(session)


def get_checkout_gateway() -> StripeCheckoutGateway:
  """Dependency provider for the payment gateway, configured from flags."""
  return StripeCheckoutGateway(
      api_key=config.FLAGS.stripe_secret_key,
      platform_fee_percentage=config.FLAGS.platform_fee_percentage,
      root_domain=config.FLAGS.root_domain,
      url_scheme=config.FLAGS.url_scheme,
  )


def get_webhook_processor(
    session: AsyncSession = Depends(get_db),
) -> WebhookProcessor:
  return WebhookProcessor(session, config.FLAGS.stripe_webhook_secret)
