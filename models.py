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

"""Request, response and value models for the shop orders server.

Money fields are `Decimal`; pydantic serializes them as strings in JSON so no
precision is lost between the database, the API and the payment gateway.
"""

import datetime
from decimal import Decimal
from typing import Optional

from enums import OrderStatus
from enums import PaymentStatus
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

MAX_ITEM_QUANTITY = 99


class AddressInfo(BaseModel):
  """Postal address used for shipping and billing."""

  name: str = Field(..., min_length=1)
  phone: str = Field(..., min_length=1)
  address_line_1: str = Field(..., min_length=1)
  address_line_2: Optional[str] = None
  city: str = Field(..., min_length=1)
  state: str = Field(..., min_length=1)
  postal_code: str = Field(..., min_length=1)
  country: str = Field(..., min_length=1)


# --- Cart ---


class CartItem(BaseModel):
  """A line in a cart, keyed by (product_id, variant_index)."""

  product_id: int
  variant_index: Optional[int] = None
  quantity: int
  subtotal: Decimal

  @property
  def key(self) -> tuple[int, Optional[int]]:
    return (self.product_id, self.variant_index)


class CartResponse(BaseModel):
  items: list[CartItem]
  total_items: int
  total_amount: Decimal


class AddCartItemRequest(BaseModel):
  product_id: int
  quantity: int = Field(1, ge=1, le=MAX_ITEM_QUANTITY)
  variant_index: Optional[int] = Field(None, ge=0)


class UpdateCartItemRequest(BaseModel):
  """Sets an absolute quantity. Zero removes the item."""

  product_id: int
  quantity: int = Field(..., ge=0, le=MAX_ITEM_QUANTITY)
  variant_index: Optional[int] = Field(None, ge=0)


class RemoveCartItemRequest(BaseModel):
  product_id: int
  variant_index: Optional[int] = Field(None, ge=0)


class MergeCartItem(BaseModel):
  """An item from an anonymous cart. Any client-side price is ignored."""

  product_id: int
  quantity: int = Field(..., ge=1, le=MAX_ITEM_QUANTITY)
  variant_index: Optional[int] = Field(None, ge=0)


class MergeCartRequest(BaseModel):
  items: list[MergeCartItem]


class CartValidation(BaseModel):
  """Result of re-checking a cart against live product data."""

  valid: bool
  errors: list[str] = Field(default_factory=list)
  updated_items: list[CartItem] = Field(default_factory=list)


# --- Orders ---


class OrderItem(BaseModel):
  """An immutable line snapshotted from the cart when the order is placed."""

  product_id: int
  variant_index: Optional[int] = None
  name: Optional[str] = None
  quantity: int
  unit_price_at_purchase: Decimal
  discount_at_purchase: Decimal = Decimal(0)
  subtotal: Decimal


class CreateOrderRequest(BaseModel):
  shipping_address: AddressInfo
  billing_address: Optional[AddressInfo] = None
  payment_method: Optional[str] = None
  notes: Optional[str] = Field(None, max_length=500)
  tax_rate: Decimal = Field(Decimal(0), ge=0, le=100)
  shipping_cost: Decimal = Field(Decimal(0), ge=0)
  discount_amount: Decimal = Field(Decimal(0), ge=0)


class OrderDraft(BaseModel):
  """Everything `OrderService.create` needs to persist a new order."""

  user_id: int
  shop_id: int
  items: list[OrderItem]
  shipping_address: AddressInfo
  billing_address: Optional[AddressInfo] = None
  payment_method: Optional[str] = None
  notes: Optional[str] = None
  tax_rate: Decimal = Decimal(0)
  shipping_cost: Decimal = Decimal(0)
  discount_amount: Decimal = Decimal(0)


class UpdateOrderRequest(BaseModel):
  """Admin update of an order's states and notes."""

  status: Optional[OrderStatus] = None
  payment_status: Optional[PaymentStatus] = None
  admin_notes: Optional[str] = Field(None, max_length=1000)
  # Recorded in the admin notes when status is set to cancelled.
  cancellation_reason: Optional[str] = Field(None, max_length=500)


class CancelOrderRequest(BaseModel):
  reason: Optional[str] = Field(None, max_length=500)


class OrderResponse(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: int
  tracking_id: str
  user_id: int
  shop_id: int
  total_amount: Decimal
  discount_amount: Decimal
  tax_amount: Decimal
  shipping_amount: Decimal
  final_amount: Decimal
  items: list[OrderItem]
  status: OrderStatus
  payment_status: PaymentStatus
  payment_method: Optional[str] = None
  shipping_address: Optional[AddressInfo] = None
  billing_address: Optional[AddressInfo] = None
  notes: Optional[str] = None
  admin_notes: Optional[str] = None
  shipped_at: Optional[datetime.datetime] = None
  delivered_at: Optional[datetime.datetime] = None
  cancelled_at: Optional[datetime.datetime] = None
  created_at: Optional[datetime.datetime] = None
  updated_at: Optional[datetime.datetime] = None


class Pagination(BaseModel):
  page: int
  limit: int
  total: int
  pages: int


class ShopStats(BaseModel):
  total_orders: int
  total_revenue: Decimal
  pending_orders: int
  completed_orders: int
  cancelled_orders: int


class OrderListResponse(BaseModel):
  orders: list[OrderResponse]
  pagination: Pagination


class AdminOrderListResponse(OrderListResponse):
  stats: ShopStats


class CreateOrderResponse(BaseModel):
  message: str
  checkout_url: str
  tracking_id: str


class CheckoutUrlResponse(BaseModel):
  checkout_url: str


# --- Products ---


class ProductSummary(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: int
  name: str
  slug: Optional[str] = None
  price: Decimal
  stock_quantity: int
  sales_count: int
  status: str


# --- Webhooks ---


class WebhookResult(BaseModel):
  """Acknowledgement returned to the payment provider."""

  received: bool = True
  event_id: Optional[str] = None
  event_type: Optional[str] = None
  duplicate: bool = False
  handled: bool = False
  shop_found: Optional[bool] = None
