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

"""Saved addresses of signed-in customers."""

import logging
from typing import Any, Dict, List, Optional

import db
from exceptions import InvalidRequestError
from exceptions import ResourceNotFoundError
from models import AddressIn
from sqlalchemy import select
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

ADDRESS_FIELDS = (
    "full_name",
    "phone",
    "email",
    "address_line1",
    "address_line2",
    "city",
    "state",
    "postal_code",
    "country",
    "label",
    "is_default",
)


def address_to_dict(address: db.Address) -> Dict[str, Any]:
  return {
      "id": address.id,
      **{field: getattr(address, field) for field in ADDRESS_FIELDS},
      "created_at": address.created_at,
  }


class AddressService:
  """Address book scoped to one user; other users' rows are never touched."""

  def __init__(self, transactions_session: AsyncSession):
    self.session = transactions_session

  async def _get_owned(self, user_id: str, address_id: Optional[str]):
    if not address_id:
      raise InvalidRequestError("Address ID required")
    result = await self.session.execute(
        select(db.Address).where(
            db.Address.id == address_id, db.Address.user_id == user_id
        )
    )
    address = result.scalar_one_or_none()
    if address is None:
      raise ResourceNotFoundError("Address not found")
    return address

  async def _clear_default(
      self, user_id: str, keep_id: Optional[str] = None
  ) -> None:
    await self.session.execute(
        update(db.Address)
        .where(db.Address.user_id == user_id, db.Address.id != keep_id)
        .values(is_default=False)
        .execution_options(synchronize_session=False)
    )

  async def list_addresses(self, user_id: str) -> List[Dict[str, Any]]:
    result = await self.session.execute(
        select(db.Address)
        .where(db.Address.user_id == user_id)
        .order_by(db.Address.is_default.desc(), db.Address.created_at.desc())
    )
    return [address_to_dict(a) for a in result.scalars().all()]

  async def create_address(
      self, user_id: str, user_email: Optional[str], request: AddressIn
  ) -> Dict[str, Any]:
    if not all((
        request.full_name,
        request.address_line1,
        request.city,
        request.state,
        request.postal_code,
    )):
      raise InvalidRequestError("Missing required fields")

    if request.is_default:
      await self._clear_default(user_id)
    address = db.Address(
        user_id=user_id,
        full_name=request.full_name,
        phone=request.phone or None,
        email=request.email or user_email,
        address_line1=request.address_line1,
        address_line2=request.address_line2 or None,
        city=request.city,
        state=request.state,
        postal_code=request.postal_code,
        country=request.country or "US",
        label=request.label or "Home",
        is_default=request.is_default,
        created_at=db.now_iso(),
    )
    self.session.add(address)
    await self.session.commit()
    logger.info("Saved address %s", address.id)
    return address_to_dict(address)

  async def update_address(
      self, user_id: str, request: AddressIn
  ) -> Dict[str, Any]:
    address = await self._get_owned(user_id, request.id)
    changes = request.model_dump(exclude_unset=True, exclude={"id"})
    if changes.get("is_default"):
      await self._clear_default(user_id, keep_id=address.id)
    for field, value in changes.items():
      setattr(address, field, value)
    await self.session.commit()
    return address_to_dict(address)

  async def delete_address(
      self, user_id: str, address_id: Optional[str]
  ) -> None:
    address = await self._get_owned(user_id, address_id)
    await self.session.delete(address)
    await self.session.commit()
