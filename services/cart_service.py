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

"""Server-side cart storage.

Carts are JSON lists of cart lines keyed by visitor id, and by user id once
the visitor signs in. Stored prices are only what the client last saw; the
pricing service is the authority.
"""

from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional, Sequence

import db
from exceptions import InvalidRequestError
from exceptions import ResourceNotFoundError
from models import CartLine
from services.pricing_service import PricingService
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
  if isinstance(value, Decimal):
    return float(value)
  if isinstance(value, dict):
    return {k: _jsonable(v) for k, v in value.items()}
  if isinstance(value, list):
    return [_jsonable(v) for v in value]
  return value


def line_to_json(line: CartLine) -> Dict[str, Any]:
  return _jsonable(line.model_dump(exclude_none=True))


class CartService:
  """Reads and writes the stored cart of a visitor or user."""

  def __init__(
      self,
      transactions_session: AsyncSession,
      pricing_service: PricingService,
  ):
    self.session = transactions_session
    self.pricing_service = pricing_service

  async def get_items(
      self, visitor_id: str, user_id: Optional[str] = None
  ) -> List[Dict[str, Any]]:
    cart = await db.get_cart(self.session, visitor_id, user_id)
    # Copies, so in-place edits register as a change on the JSON column.
    return [dict(item) for item in cart.items or []] if cart else []

  async def _save(
      self,
      visitor_id: str,
      items: List[Dict[str, Any]],
      user_id: Optional[str] = None,
  ) -> List[Dict[str, Any]]:
    await db.save_cart_items(self.session, visitor_id, items, user_id)
    await self.session.commit()
    return items

  async def add_item(
      self, visitor_id: str, line: CartLine, user_id: Optional[str] = None
  ) -> List[Dict[str, Any]]:
    """Adds a line, merging quantities with an existing line of the same SKU."""
    if not line.sku or not line.product_slug or line.quantity < 1:
      raise InvalidRequestError("Missing required fields")

    items = await self.get_items(visitor_id, user_id)
    for item in items:
      if item.get("sku") == line.sku:
        item["quantity"] = int(item.get("quantity", 0)) + line.quantity
        break
    else:
      items.append(line_to_json(line))
    return await self._save(visitor_id, items, user_id)

  async def set_quantity(
      self,
      visitor_id: str,
      sku: Optional[str],
      quantity: Optional[int],
      user_id: Optional[str] = None,
  ) -> List[Dict[str, Any]]:
    """Sets a line's quantity; zero or less removes the line."""
    if not sku or quantity is None:
      raise InvalidRequestError("Missing sku or quantity")

    items = await self.get_items(visitor_id, user_id)
    if not any(item.get("sku") == sku for item in items):
      raise ResourceNotFoundError("Item not found in cart")
    if quantity <= 0:
      items = [item for item in items if item.get("sku") != sku]
    else:
      for item in items:
        if item.get("sku") == sku:
          item["quantity"] = quantity
    return await self._save(visitor_id, items, user_id)

  async def remove_item(
      self, visitor_id: str, sku: Optional[str], user_id: Optional[str] = None
  ) -> List[Dict[str, Any]]:
    if not sku:
      raise InvalidRequestError("Missing sku")
    items = await self.get_items(visitor_id, user_id)
    items = [item for item in items if item.get("sku") != sku]
    return await self._save(visitor_id, items, user_id)

  async def sync(
      self,
      visitor_id: str,
      lines: Sequence[CartLine],
      user_id: Optional[str] = None,
  ) -> List[Dict[str, Any]]:
    """Replaces the stored cart with the client's copy."""
    items = [line_to_json(line) for line in lines]
    return await self._save(visitor_id, items, user_id)

  async def clear(self, visitor_id: str, user_id: Optional[str] = None) -> None:
    await db.clear_cart(self.session, user_id=user_id, visitor_id=visitor_id)
    await self.session.commit()

  async def merge(self, visitor_id: str, user_id: str) -> Dict[str, Any]:
    """Merges the anonymous visitor cart into the user's cart.

    Visitor lines come first; user lines with a new SKU are appended, and for
    a SKU in both carts the larger quantity wins. The visitor cart becomes the
    user cart when the user has none, otherwise it is deleted.

    Returns:
      The merged items and how many visitor lines were merged.
    """
    visitor_cart = await db.get_cart(self.session, visitor_id=visitor_id)
    if visitor_cart is not None and visitor_cart.user_id:
      # Already attached to a user; nothing anonymous to merge.
      visitor_cart = (
          visitor_cart if visitor_cart.user_id == user_id else None
      )
    user_cart = await db.get_cart(self.session, user_id=user_id)
    if user_cart is not None and visitor_cart is not None:
      if user_cart.id == visitor_cart.id:
        return {"items": list(user_cart.items or []), "merged_count": 0}

    visitor_items = []
    if visitor_cart is not None:
      visitor_items = [dict(i) for i in visitor_cart.items or []]
    user_items = []
    if user_cart is not None:
      user_items = [dict(i) for i in user_cart.items or []]

    if not visitor_items:
      if visitor_cart is not None and user_cart is None:
        visitor_cart.user_id = user_id
        await self.session.commit()
      return {"items": user_items, "merged_count": 0}

    merged = list(visitor_items)
    for user_item in user_items:
      existing = next(
          (m for m in merged if m.get("sku") == user_item.get("sku")), None
      )
      if existing is None:
        merged.append(user_item)
      else:
        existing["quantity"] = max(
            int(existing.get("quantity", 0)), int(user_item.get("quantity", 0))
        )

    if user_cart is not None:
      user_cart.items = merged
      user_cart.updated_at = db.now_iso()
      await self.session.execute(
          delete(db.Cart).where(db.Cart.id == visitor_cart.id)
      )
    else:
      visitor_cart.user_id = user_id
      visitor_cart.items = merged
      visitor_cart.updated_at = db.now_iso()
    await self.session.commit()
    logger.info("Merged %d visitor cart line(s) for user", len(visitor_items))
    return {"items": merged, "merged_count": len(visitor_items)}

  async def validate(
      self, visitor_id: str, user_id: Optional[str] = None
  ) -> Dict[str, Any]:
    """Re-prices the stored cart, writing corrected prices back on errors."""
    items = await self.get_items(visitor_id, user_id)
    if not items:
      return {"valid": True, "items": [], "subtotal": 0.0, "errors": []}

    lines = [CartLine.model_validate(item) for item in items]
    validation = await self.pricing_service.validate_cart(lines)

    if validation.errors:
      corrected = []
      for validated in validation.items:
        data = line_to_json(validated.line)
        data["unit_price"] = float(validated.validated_unit_price)
        corrected.append(data)
      await self._save(visitor_id, corrected, user_id)

    return {
        "valid": validation.valid,
        "items": [
            {
                **line_to_json(v.line),
                "validated_unit_price": float(v.validated_unit_price),
                "validated_total": float(v.validated_total),
                "price_discrepancy": v.price_discrepancy,
            }
            for v in validation.items
        ],
        "subtotal": float(validation.subtotal),
        "errors": validation.errors,
    }
