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

"""Customer-facing order routes: place, list, view, cancel and pay."""

import logging
import math
from typing import Any
from typing import Optional

import db
import dependencies
from enums import OrderStatus
from enums import PaymentStatus
from exceptions import ErrorKind
from exceptions import ForbiddenError
from exceptions import InvalidStateError
from exceptions import ValidationError
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from fastapi import Query
from fastapi.responses import JSONResponse
from models import CancelOrderRequest
from models import CheckoutUrlResponse
from models import CreateOrderRequest
from models import CreateOrderResponse
from models import OrderDraft
from models import OrderListResponse
from models import OrderResponse
from models import Pagination
from services.cart_service import CartService
from services.checkout_gateway import StripeCheckoutGateway
from services.order_service import order_items
from services.order_service import OrderService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shops/{domain}/orders", tags=["orders"])

MAX_PAGE_SIZE = 50


def paginate(page: int, limit: int, total: int) -> Pagination:
  return Pagination(
      page=page, limit=limit, total=total, pages=math.ceil(total / limit)
  )


def _ensure_can_view(order: db.Order, shop: db.Shop, user: db.User) -> None:
  if order.user_id != user.id and shop.owner_id != user.id:
    raise ForbiddenError("You do not have access to this order")


def _ensure_payment_enabled(shop: db.Shop) -> None:
  if not shop.stripe_account_connected:
    raise ValidationError("Shop is not connected to Stripe")


@router.get(
    "", response_model=OrderListResponse, operation_id="list_my_orders"
)
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    status: Optional[OrderStatus] = Query(None),
    shop: db.Shop = Depends(dependencies.get_shop),
    user: db.User = Depends(dependencies.get_current_user),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> OrderListResponse:
  """List the caller's orders in this shop, newest first."""
  limit = min(limit, MAX_PAGE_SIZE)
  orders, total = await order_service.list_for_user(
      user.id,
      shop.id,
      status=status.value if status else None,
      limit=limit,
      offset=(page - 1) * limit,
  )
  return OrderListResponse(
      orders=[OrderResponse.model_validate(o) for o in orders],
      pagination=paginate(page, limit, total),
  )


@router.post(
    "",
    status_code=201,
    response_model=CreateOrderResponse,
    operation_id="create_order",
)
async def create_order(
    request: CreateOrderRequest = Body(...),
    shop: db.Shop = Depends(dependencies.get_shop),
    user: db.User = Depends(dependencies.get_current_user),
    cart_service: CartService = Depends(dependencies.get_cart_service),
    order_service: OrderService = Depends(dependencies.get_order_service),
    gateway: StripeCheckoutGateway = Depends(
        dependencies.get_checkout_gateway
    ),
) -> Any:
  """Place an order from the caller's cart and open a checkout session.

  The cart is re-validated first. If the checkout session cannot be opened,
  the new order is deleted again and the cart is left intact.
  """
  _ensure_payment_enabled(shop)

  cart = await cart_service.get_cart(user.id, shop.id)
  if not cart.items:
    raise ValidationError("Cart is empty or not found")

  validation = await cart_service.validate_cart(user.id, shop.id)
  if not validation.valid:
    return JSONResponse(
        status_code=400,
        content={
            "detail": "Cart validation failed",
            "code": ErrorKind.VALIDATION.value,
            "details": validation.errors,
            "updated_items": [
                i.model_dump(mode="json") for i in validation.updated_items
            ],
        },
    )

  items = await cart_service.snapshot_order_items(user.id, shop.id)
  order = await order_service.create(
      OrderDraft(
          user_id=user.id,
          shop_id=shop.id,
          items=items,
          shipping_address=request.shipping_address,
          billing_address=request.billing_address,
          payment_method=request.payment_method,
          notes=request.notes,
          tax_rate=request.tax_rate,
          shipping_cost=request.shipping_cost,
          discount_amount=request.discount_amount,
      )
  )

  try:
    checkout_url = await gateway.checkout_items(
        items, shop, user, order.tracking_id
    )
  except Exception:
    logger.warning(
        "Checkout failed for order %s; rolling back", order.tracking_id
    )
    try:
      await order_service.delete(order.id)
    except Exception:  # pylint: disable=broad-exception-caught
      logger.exception(
          "Orphaned order %s: rollback after checkout failure failed",
          order.tracking_id,
      )
    raise

  await cart_service.clear_cart(user.id, shop.id)
  return CreateOrderResponse(
      message="Order created successfully",
      checkout_url=checkout_url,
      tracking_id=order.tracking_id,
  )


@router.get(
    "/{tracking_id}", response_model=OrderResponse, operation_id="get_order"
)
async def get_order(
    tracking_id: str = Path(...),
    shop: db.Shop = Depends(dependencies.get_shop),
    user: db.User = Depends(dependencies.get_current_user),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> OrderResponse:
  """Get an order placed by the caller (or any order, for the shop owner)."""
  order = await order_service.get_for_shop(shop.id, tracking_id)
  _ensure_can_view(order, shop, user)
  return OrderResponse.model_validate(order)


@router.delete("/{tracking_id}", operation_id="cancel_order")
async def cancel_order(
    tracking_id: str = Path(...),
    request: Optional[CancelOrderRequest] = Body(None),
    shop: db.Shop = Depends(dependencies.get_shop),
    user: db.User = Depends(dependencies.get_current_user),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> dict[str, Any]:
  """Cancel an order and return its items to stock."""
  order = await order_service.get_for_shop(shop.id, tracking_id)
  _ensure_can_view(order, shop, user)
  order = await order_service.cancel(
      order, request.reason if request else None
  )
  return {
      "message": "Order cancelled successfully",
      "order": OrderResponse.model_validate(order).model_dump(mode="json"),
  }


@router.get(
    "/{tracking_id}/pay",
    response_model=CheckoutUrlResponse,
    operation_id="pay_order",
)
async def pay_order(
    tracking_id: str = Path(...),
    shop: db.Shop = Depends(dependencies.get_shop),
    user: db.User = Depends(dependencies.get_current_user),
    order_service: OrderService = Depends(dependencies.get_order_service),
    gateway: StripeCheckoutGateway = Depends(
        dependencies.get_checkout_gateway
    ),
) -> CheckoutUrlResponse:
  """Open a fresh checkout session for an order that is still unpaid."""
  _ensure_payment_enabled(shop)
  order = await order_service.get_for_shop(shop.id, tracking_id)
  if order.user_id != user.id:
    raise ForbiddenError("You do not have access to this order")
  if (
      order.payment_status == PaymentStatus.PAID.value
      or order.status == OrderStatus.CANCELLED.value
  ):
    raise InvalidStateError(f"Order {tracking_id} is not awaiting payment")

  checkout_url = await gateway.checkout_items(
      order_items(order), shop, user, order.tracking_id
  )
  return CheckoutUrlResponse(checkout_url=checkout_url)
