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

"""Server-side cart routes for the storefront."""

from typing import Any, Optional

import dependencies
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from models import CartLine
from models import CartQuantityUpdate
from models import CartRemove
from models import CartSync
from services.cart_service import CartService

router = APIRouter(prefix="/api/cart")


def _user_id(user: Optional[dependencies.CurrentUser]) -> Optional[str]:
  return user.id if user else None


@router.get("", response_model=dict[str, Any], operation_id="get_cart")
async def get_cart(
    visitor_id: str = Depends(dependencies.get_visitor_id),
    user: Optional[dependencies.CurrentUser] = Depends(
        dependencies.get_current_user
    ),
    cart_service: CartService = Depends(dependencies.get_cart_service),
) -> dict[str, Any]:
  """Returns the caller's stored cart."""
  items = await cart_service.get_items(visitor_id, _user_id(user))
  return {"items": items, "visitorId": visitor_id}


@router.post("", response_model=dict[str, Any], operation_id="add_to_cart")
async def add_to_cart(
    line: CartLine = Body(...),
    visitor_id: str = Depends(dependencies.get_visitor_id),
    user: Optional[dependencies.CurrentUser] = Depends(
        dependencies.get_current_user
    ),
    cart_service: CartService = Depends(dependencies.get_cart_service),
) -> dict[str, Any]:
  """Adds a line, merging with an existing line of the same SKU."""
  items = await cart_service.add_item(visitor_id, line, _user_id(user))
  return {"success": True, "items": items, "visitorId": visitor_id}


@router.put("", response_model=dict[str, Any], operation_id="update_cart_item")
async def update_cart_item(
    body: CartQuantityUpdate = Body(...),
    visitor_id: str = Depends(dependencies.get_visitor_id),
    user: Optional[dependencies.CurrentUser] = Depends(
        dependencies.get_current_user
    ),
    cart_service: CartService = Depends(dependencies.get_cart_service),
) -> dict[str, Any]:
  """Sets a line's quantity; zero or less removes it."""
  items = await cart_service.set_quantity(
      visitor_id, body.sku, body.quantity, _user_id(user)
  )
  return {"success": True, "items": items, "visitorId": visitor_id}


@router.delete(
    "", response_model=dict[str, Any], operation_id="remove_cart_item"
)
async def remove_cart_item(
    body: CartRemove = Body(...),
    visitor_id: str = Depends(dependencies.get_visitor_id),
    user: Optional[dependencies.CurrentUser] = Depends(
        dependencies.get_current_user
    ),
    cart_service: CartService = Depends(dependencies.get_cart_service),
) -> dict[str, Any]:
  items = await cart_service.remove_item(visitor_id, body.sku, _user_id(user))
  return {"success": True, "items": items, "visitorId": visitor_id}


@router.post("/sync", response_model=dict[str, Any], operation_id="sync_cart")
async def sync_cart(
    body: CartSync = Body(...),
    visitor_id: str = Depends(dependencies.get_visitor_id),
    user: Optional[dependencies.CurrentUser] = Depends(
        dependencies.get_current_user
    ),
    cart_service: CartService = Depends(dependencies.get_cart_service),
) -> dict[str, Any]:
  """Replaces the stored cart with the client's copy."""
  items = await cart_service.sync(visitor_id, body.items, _user_id(user))
  return {"success": True, "itemCount": len(items), "visitorId": visitor_id}


@router.post("/clear", response_model=dict[str, Any], operation_id="clear_cart")
async def clear_cart(
    visitor_id: str = Depends(dependencies.get_visitor_id),
    user: Optional[dependencies.CurrentUser] = Depends(
        dependencies.get_current_user
    ),
    cart_service: CartService = Depends(dependencies.get_cart_service),
) -> dict[str, Any]:
  await cart_service.clear(visitor_id, _user_id(user))
  return {"success": True, "items": [], "visitorId": visitor_id}


@router.post("/merge", response_model=dict[str, Any], operation_id="merge_cart")
async def merge_cart(
    visitor_id: str = Depends(dependencies.get_visitor_id),
    user: dependencies.CurrentUser = Depends(dependencies.require_user),
    cart_service: CartService = Depends(dependencies.get_cart_service),
) -> dict[str, Any]:
  """Merges the anonymous visitor cart into the signed-in user's cart."""
  result = await cart_service.merge(visitor_id, user.id)
  return {"success": True, **result}


@router.post(
    "/validate", response_model=dict[str, Any], operation_id="validate_cart"
)
async def validate_cart(
    visitor_id: str = Depends(dependencies.get_visitor_id),
    user: Optional[dependencies.CurrentUser] = Depends(
        dependencies.get_current_user
    ),
    cart_service: CartService = Depends(dependencies.get_cart_service),
) -> dict[str, Any]:
  """Re-prices the stored cart against the catalog."""
  return await cart_service.validate(visitor_id, _user_id(user))
