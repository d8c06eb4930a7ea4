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

"""Shop-owner routes: order management, dashboard and inventory."""

from typing import Any
from typing import Optional

import db
import dependencies
from enums import OrderStatus
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from fastapi import Query
from models import AdminOrderListResponse
from models import OrderResponse
from models import ProductSummary
from models import ShopStats
from models import UpdateOrderRequest
from routes.orders import paginate
from services.order_service import OrderService
from services.stock_ledger import available_stock
from services.stock_ledger import StockLedger
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/shops/{domain}/admin", tags=["admin"])

MAX_PAGE_SIZE = 100
STATS_WINDOW_DAYS = 30


def product_summary(product: db.Product) -> ProductSummary:
  """Summarizes a product with its variant-aware available stock."""
  summary = ProductSummary.model_validate(product)
  summary.stock_quantity = available_stock(product, None)
  return summary


def get_stock_ledger(
    session: AsyncSession = Depends(dependencies.get_db),
) -> StockLedger:
  return StockLedger(session)


@router.get(
    "/orders",
    response_model=AdminOrderListResponse,
    operation_id="admin_list_orders",
)
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    status: Optional[OrderStatus] = Query(None),
    shop: db.Shop = Depends(dependencies.get_owned_shop),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> AdminOrderListResponse:
  """List all orders of the shop with the last 30 days of stats."""
  limit = min(limit, MAX_PAGE_SIZE)
  orders, total = await order_service.list_for_shop(
      shop.id,
      status=status.value if status else None,
      limit=limit,
      offset=(page - 1) * limit,
  )
  stats = await order_service.shop_stats(shop.id, STATS_WINDOW_DAYS)
  return AdminOrderListResponse(
      orders=[OrderResponse.model_validate(o) for o in orders],
      pagination=paginate(page, limit, total),
      stats=stats,
  )


@router.get(
    "/orders/{tracking_id}",
    response_model=OrderResponse,
    operation_id="admin_get_order",
)
async def get_order(
    tracking_id: str = Path(...),
    shop: db.Shop = Depends(dependencies.get_owned_shop),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> OrderResponse:
  order = await order_service.get_for_shop(shop.id, tracking_id)
  return OrderResponse.model_validate(order)


@router.patch(
    "/orders/{tracking_id}",
    operation_id="admin_update_order",
)
async def update_order(
    tracking_id: str = Path(...),
    update: UpdateOrderRequest = Body(...),
    shop: db.Shop = Depends(dependencies.get_owned_shop),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> dict[str, Any]:
  """Update status, payment status or admin notes.

  Setting status to cancelled restores stock; setting payment status to paid
  is refused because only a confirmed payment event may do that.
  """
  order = await order_service.get_for_shop(shop.id, tracking_id)
  order = await order_service.admin_update(order, update)
  return {
      "message": "Order updated successfully",
      "order": OrderResponse.model_validate(order).model_dump(mode="json"),
  }


@router.get(
    "/dashboard/stats",
    response_model=ShopStats,
    operation_id="admin_dashboard_stats",
)
async def dashboard_stats(
    days: int = Query(STATS_WINDOW_DAYS, ge=1, le=365),
    shop: db.Shop = Depends(dependencies.get_owned_shop),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> ShopStats:
  return await order_service.shop_stats(shop.id, days)


@router.get(
    "/dashboard/recent-orders",
    response_model=list[OrderResponse],
    operation_id="admin_recent_orders",
)
async def recent_orders(
    limit: int = Query(10, ge=1, le=50),
    shop: db.Shop = Depends(dependencies.get_owned_shop),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> list[OrderResponse]:
  orders = await order_service.recent_orders(shop.id, limit)
  return [OrderResponse.model_validate(o) for o in orders]


@router.get(
    "/dashboard/top-products",
    response_model=list[ProductSummary],
    operation_id="admin_top_products",
)
async def top_products(
    limit: int = Query(10, ge=1, le=50),
    shop: db.Shop = Depends(dependencies.get_owned_shop),
    ledger: StockLedger = Depends(get_stock_ledger),
) -> list[ProductSummary]:
  """Best sellers by sales count."""
  products = await ledger.find_best_selling(shop.id, limit)
  return [product_summary(p) for p in products]


@router.get(
    "/inventory/low-stock",
    response_model=list[ProductSummary],
    operation_id="admin_low_stock",
)
async def low_stock(
    threshold: int = Query(10, ge=0),
    shop: db.Shop = Depends(dependencies.get_owned_shop),
    ledger: StockLedger = Depends(get_stock_ledger),
) -> list[ProductSummary]:
  """Active products at or below the stock threshold."""
  products = await ledger.find_low_stock(shop.id, threshold)
  return [product_summary(p) for p in products]
