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

"""Guest order lookup route."""

from typing import Any

import dependencies
from exceptions import InvalidRequestError
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from models import OrderLookupRequest
from services.order_service import OrderService

router = APIRouter()


@router.post(
    "/api/order-lookup",
    response_model=dict[str, Any],
    operation_id="lookup_order",
)
async def lookup_order(
    body: OrderLookupRequest = Body(...),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> dict[str, Any]:
  """Finds an order by its number and the email it was placed with."""
  if not body.order_number or not body.order_number.strip():
    raise InvalidRequestError("Order number is required.")
  if not body.email or not body.email.strip():
    raise InvalidRequestError("Email address is required.")
  return await order_service.lookup(body.order_number, body.email)
