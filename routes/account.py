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

"""Customer account routes: saved addresses and order history."""

import logging
from typing import Any

import dependencies
from exceptions import InvalidRequestError
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from models import AddressIn
from services.account_service import AddressService
from services.order_service import OrderService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/account")


@router.get(
    "/addresses", response_model=dict[str, Any], operation_id="list_addresses"
)
async def list_addresses(
    user: dependencies.CurrentUser = Depends(dependencies.require_user),
    address_service: AddressService = Depends(
        dependencies.get_address_service
    ),
) -> dict[str, Any]:
  return {"addresses": await address_service.list_addresses(user.id)}


@router.post(
    "/addresses",
    response_model=dict[str, Any],
    operation_id="create_address",
    status_code=201,
)
async def create_address(
    body: AddressIn = Body(...),
    user: dependencies.CurrentUser = Depends(dependencies.require_user),
    address_service: AddressService = Depends(
        dependencies.get_address_service
    ),
) -> dict[str, Any]:
  address = await address_service.create_address(user.id, user.email, body)
  return {"success": True, "address": address}


@router.put(
    "/addresses", response_model=dict[str, Any], operation_id="update_address"
)
async def update_address(
    body: AddressIn = Body(...),
    user: dependencies.CurrentUser = Depends(dependencies.require_user),
    address_service: AddressService = Depends(
        dependencies.get_address_service
    ),
) -> dict[str, Any]:
  address = await address_service.update_address(user.id, body)
  return {"success": True, "address": address}


@router.delete(
    "/addresses", response_model=dict[str, Any], operation_id="delete_address"
)
async def delete_address(
    body: AddressIn = Body(...),
    user: dependencies.CurrentUser = Depends(dependencies.require_user),
    address_service: AddressService = Depends(
        dependencies.get_address_service
    ),
) -> dict[str, Any]:
  await address_service.delete_address(user.id, body.id)
  return {"success": True}


@router.post(
    "/migrate-orders",
    response_model=dict[str, Any],
    operation_id="migrate_orders",
)
async def migrate_orders(
    user: dependencies.CurrentUser = Depends(dependencies.require_user),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> dict[str, Any]:
  """Attaches guest orders placed with the user's email to the account."""
  if not user.email:
    raise InvalidRequestError("Email required")
  migrated = await order_service.migrate_guest_orders(user.id, user.email)
  await order_service.session.commit()
  logger.info("Migrated %d guest order(s) for user %s", migrated, user.id)
  return {"success": True, "migrated": migrated}


@router.get("/orders", response_model=dict[str, Any], operation_id="my_orders")
async def list_my_orders(
    user: dependencies.CurrentUser = Depends(dependencies.require_user),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> dict[str, Any]:
  return {"orders": await order_service.list_for_user(user.id)}
