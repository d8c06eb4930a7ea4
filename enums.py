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

"""Enumerations for the shop orders service.

This module defines the two order state machines (fulfillment status and
payment status) plus the product availability states.
"""

import enum


class OrderStatus(str, enum.Enum):
  PENDING = "pending"
  CONFIRMED = "confirmed"
  PROCESSING = "processing"
  SHIPPED = "shipped"
  DELIVERED = "delivered"
  CANCELLED = "cancelled"
  REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
  PENDING = "pending"
  PAID = "paid"
  FAILED = "failed"
  REFUNDED = "refunded"


class ProductStatus(str, enum.Enum):
  ACTIVE = "active"
  INACTIVE = "inactive"
  OUT_OF_STOCK = "out_of_stock"


CANCELLABLE_STATUSES = frozenset({
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
})
