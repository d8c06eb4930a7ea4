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

"""Cart routes for the shop orders server."""

from typing import Any

import db
import dependencies
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from models import AddCartItemRequest
from models import CartResponse
from models import CartValidation
from models import MergeCartRequest
from models import RemoveCartItemRequest
from models import UpdateCartItemRequest
from services.cart_service import CartService

router = APIRouter(prefix="/shops/{domain}/cart", tags=["cart"])


def _mutation(message: str, cart: CartResponse) -> dict[str, Any]:
  return {"message": message, "cart": cart.model_dump(mode="json")}


@router.get("", response_model=CartResponse, operation_id="get_cart")
async def get_cart(
    shop: db.Shop = Depends(dependencies.get_shop),
    user: db.User = Depends(dependencies.get_current_user),
    cart_service: CartService = Depends(dependencies.get_cart_service),
) -> CartResponse:
  """Get the caller's cart in this shop."""
  return await cart_service.get_cart(user.id, shop.id)


@router.post("", operation_id="add_cart_item")
async def add_cart_item(
    item: AddCartItemRequest = Body(...),
    shop: db.Shop = Depends(dependencies.get_shop),
    user: db.User = Depends(dependencies.get_current_user),
    cart_service: CartService = Depends(dependencies.get_cart_service),
) -> dict[str, Any]:
  """Add units of a product to the cart."""
  cart = await cart_service.add_item(
      user.id, shop.id, item.product_id, item.quantity, item.variant_index
  )
  return _mutation("Item added to cart successfully", cart)


@router.put("", operation_id="update_cart_item")
async def update_cart_item(
    item: UpdateCartItemRequest = Body(...),
    shop: db.Shop = Depends(dependencies.get_shop),
    user: db.User = Depends(dependencies.get_current_user),
    cart_service: CartService = Depends(dependencies.get_cart_service),
) -> dict[str, Any]:
  """Set a line's quantity; zero removes it."""
  cart = await cart_service.update_quantity(
      user.id, shop.id, item.product_id, item.quantity, item.variant_index
  )
  return _mutation("Cart updated successfully", cart)


@router.delete("", operation_id="remove_cart_item")
async def remove_cart_item(
    item: RemoveCartItemRequest = Body(...),
    shop: db.Shop = Depends(dependencies.get_shop),
    user: db.User = Depends(dependencies.get_current_user),
    cart_service: CartService = Depends(dependencies.get_cart_service),
) -> dict[str, Any]:
  cart = await cart_service.remove_item(
      user.id, shop.id, item.product_id, item.variant_index
  )
  return _mutation("Item removed from cart successfully", cart)


@router.post("/merge", operation_id="merge_cart")
async def merge_cart(
    request: MergeCartRequest = Body(...),
    shop: db.Shop = Depends(dependencies.get_shop),
    user: db.User = Depends(dependencies.get_current_user),
    cart_service: CartService = Depends(dependencies.get_cart_service),
) -> dict[str, Any]:
  """Merge an anonymous (local storage) cart into the caller's cart."""
  cart = await cart_service.merge_carts(user.id, shop.id, request.items)
  response = _mutation("Cart merged successfully", cart)
  response["success"] = True
  return response


@router.get(
    "/validate", response_model=CartValidation, operation_id="validate_cart"
)
async def validate_cart(
    shop: db.Shop = Depends(dependencies.get_shop),
    user: db.User = Depends(dependencies.get_current_user),
    cart_service: CartService = Depends(dependencies.get_cart_service),
) -> CartValidation:
  """Check the cart against live stock and prices without changing it."""
  return await cart_service.validate_cart(user.id, shop.id)
