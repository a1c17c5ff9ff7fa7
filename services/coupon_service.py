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

"""Coupon validation and administration.

Validation never changes the coupon. Usage is counted only when a payment is
finalized, through `db.increment_coupon_usage`.
"""

import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, Optional

import db
from enums import CouponType
from exceptions import InvalidRequestError
from exceptions import ResourceNotFoundError
from models import CouponCreate
from models import CouponUpdate
from models import CouponValidation
from money import as_float
from money import format_price
from money import to_money
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
  """Parses an ISO-8601 timestamp; naive values are taken as UTC."""
  if not value:
    return None
  parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
  if parsed.tzinfo is None:
    parsed = parsed.replace(tzinfo=datetime.timezone.utc)
  return parsed


def compute_discount(coupon_type: str, value: Any, subtotal: Any) -> Decimal:
  """Returns the discount a coupon gives on `subtotal`.

  Fixed coupons never discount more than the subtotal.
  """
  subtotal = to_money(subtotal)
  if coupon_type == CouponType.PERCENTAGE:
    return to_money(subtotal * Decimal(str(value)) / 100)
  return min(to_money(value), subtotal)


def coupon_to_dict(coupon: db.Coupon) -> Dict[str, Any]:
  return {
      "id": coupon.id,
      "code": coupon.code,
      "type": coupon.type,
      "value": as_float(coupon.value),
      "min_order": as_float(coupon.min_order),
      "max_uses": coupon.max_uses,
      "used_count": coupon.used_count,
      "valid_from": coupon.valid_from,
      "valid_to": coupon.valid_to,
      "is_active": coupon.is_active,
      "created_at": coupon.created_at,
  }


class CouponService:
  """Validates coupon codes and manages the coupon table."""

  def __init__(self, transactions_session: AsyncSession):
    self.transactions_session = transactions_session

  async def validate(
      self,
      code: str,
      subtotal: Any,
      now: Optional[datetime.datetime] = None,
  ) -> CouponValidation:
    """Checks whether `code` applies to an order of `subtotal`.

    The checks run in order and stop at the first failure: the code exists
    and is active, the validity window has started and not ended, the coupon
    has uses left, and the subtotal meets the minimum order.

    Args:
      code: The coupon code as typed by the customer.
      subtotal: The validated cart subtotal.
      now: Reference time, defaulting to the current UTC time.

    Returns:
      A CouponValidation with the computed discount, or the reason it does
      not apply.
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    subtotal = to_money(subtotal)

    coupon = await db.get_coupon_by_code(self.transactions_session, code)
    if coupon is None or not coupon.is_active:
      return CouponValidation(valid=False, error="Invalid coupon code")

    valid_from = parse_timestamp(coupon.valid_from)
    if valid_from and valid_from > now:
      return CouponValidation(valid=False, error="Coupon is not yet active")

    valid_to = parse_timestamp(coupon.valid_to)
    if valid_to and valid_to < now:
      return CouponValidation(valid=False, error="Coupon has expired")

    if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
      return CouponValidation(valid=False, error="Coupon usage limit reached")

    min_order = to_money(coupon.min_order)
    if subtotal < min_order:
      return CouponValidation(
          valid=False,
          error=f"Minimum order of {format_price(min_order)} required",
      )

    return CouponValidation(
        valid=True,
        discount=compute_discount(coupon.type, coupon.value, subtotal),
        type=coupon.type,
        value=to_money(coupon.value),
        code=coupon.code,
    )

  # --- Administration ---

  async def list_coupons(self, status: Optional[str] = None) -> Dict[str, Any]:
    """Lists coupons newest first, filtered by `active` or `expired`."""
    result = await self.transactions_session.execute(
        select(db.Coupon).order_by(db.Coupon.created_at.desc())
    )
    coupons = list(result.scalars().all())
    now = datetime.datetime.now(datetime.timezone.utc)

    def is_expired(coupon: db.Coupon) -> bool:
      valid_to = parse_timestamp(coupon.valid_to)
      return not coupon.is_active or bool(valid_to and valid_to < now)

    if status == "active":
      listed = [c for c in coupons if c.is_active]
    elif status == "expired":
      listed = [c for c in coupons if is_expired(c)]
    else:
      listed = coupons

    return {
        "coupons": [coupon_to_dict(c) for c in listed],
        "summary": {
            "total": len(coupons),
            "active": sum(1 for c in coupons if not is_expired(c)),
            "expired": sum(1 for c in coupons if is_expired(c)),
            "total_uses": sum(c.used_count or 0 for c in coupons),
        },
    }

  @staticmethod
  def _check_type_and_value(coupon_type: str, value: Decimal) -> None:
    if coupon_type not in (CouponType.FIXED.value, CouponType.PERCENTAGE.value):
      raise InvalidRequestError("type must be fixed or percentage")
    if coupon_type == CouponType.PERCENTAGE and not 1 <= value <= 100:
      raise InvalidRequestError("Percentage must be between 1 and 100")
    if value <= 0:
      raise InvalidRequestError("value must be positive")

  @staticmethod
  def _check_dates(*values: Optional[str]) -> None:
    for value in values:
      try:
        parse_timestamp(value)
      except ValueError as e:
        raise InvalidRequestError(f"Invalid date: {value}") from e

  async def create_coupon(self, request: CouponCreate) -> Dict[str, Any]:
    if not request.code or not request.type or request.value is None:
      raise InvalidRequestError("code, type, and value are required")
    self._check_type_and_value(request.type, request.value)
    self._check_dates(request.valid_from, request.valid_to)

    coupon = db.Coupon(
        code=request.code.strip().upper(),
        type=request.type,
        value=to_money(request.value),
        min_order=to_money(request.min_order),
        max_uses=request.max_uses or None,
        valid_from=request.valid_from or db.now_iso(),
        valid_to=request.valid_to or None,
        is_active=request.is_active,
        used_count=0,
        created_at=db.now_iso(),
    )
    self.transactions_session.add(coupon)
    try:
      await self.transactions_session.commit()
    except IntegrityError as e:
      await self.transactions_session.rollback()
      raise InvalidRequestError("Coupon code already exists") from e
    logger.info("Created coupon %s", coupon.code)
    return coupon_to_dict(coupon)

  async def update_coupon(
      self, coupon_id: str, request: CouponUpdate
  ) -> Dict[str, Any]:
    changes = request.model_dump(exclude_unset=True)
    if not changes:
      raise InvalidRequestError("No fields to update")

    coupon = await self.transactions_session.get(db.Coupon, coupon_id)
    if coupon is None:
      raise ResourceNotFoundError("Coupon not found")

    if "code" in changes:
      changes["code"] = (changes["code"] or "").strip().upper()
      if not changes["code"]:
        raise InvalidRequestError("code must not be empty")
    for field in ("valid_from", "valid_to"):
      if field in changes:
        changes[field] = changes[field] or None
    self._check_dates(changes.get("valid_from"), changes.get("valid_to"))
    if "max_uses" in changes:
      changes["max_uses"] = changes["max_uses"] or None
    for field in ("value", "min_order"):
      if field in changes:
        changes[field] = to_money(changes[field])
    if "type" in changes or "value" in changes:
      self._check_type_and_value(
          changes.get("type", coupon.type),
          changes.get("value", to_money(coupon.value)),
      )

    for field, value in changes.items():
      setattr(coupon, field, value)
    try:
      await self.transactions_session.commit()
    except IntegrityError as e:
      await self.transactions_session.rollback()
      raise InvalidRequestError("Coupon code already exists") from e
    return coupon_to_dict(coupon)

  async def delete_coupon(self, coupon_id: str) -> None:
    coupon = await self.transactions_session.get(db.Coupon, coupon_id)
    if coupon is None:
      raise ResourceNotFoundError("Coupon not found")
    await self.transactions_session.delete(coupon)
    await self.transactions_session.commit()

