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

"""Checkout routes: order creation, capture, payment methods and shipping."""

from typing import Any, Optional

import dependencies
from exceptions import InvalidRequestError
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Query
from models import CaptureOrderRequest
from models import CreateOrderRequest
from models import ShippingQuoteRequest
from money import as_float
from payments.registry import PaymentRegistry
from services.checkout_service import CheckoutService
from services.shipping_service import ShippingService
from services.shipping_service import zone_to_dict

router = APIRouter(prefix="/api/checkout")


@router.post(
    "/create-order",
    response_model=dict[str, Any],
    operation_id="create_order",
)
async def create_order(
    request: CreateOrderRequest = Body(...),
    visitor_id: str = Depends(dependencies.get_visitor_id),
    user: Optional[dependencies.CurrentUser] = Depends(
        dependencies.get_current_user
    ),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> dict[str, Any]:
  """Creates a pending order and its provider payment."""
  return await checkout_service.create_order(
      request, visitor_id=visitor_id, user_id=user.id if user else None
  )


@router.post(
    "/capture-order",
    response_model=dict[str, Any],
    operation_id="capture_order",
)
async def capture_order(
    request: CaptureOrderRequest = Body(...),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> dict[str, Any]:
  """Captures an approved payment. Safe to call more than once."""
  return await checkout_service.capture_order(request)


@router.get(
    "/payment-methods",
    response_model=dict[str, Any],
    operation_id="list_payment_methods",
)
async def list_payment_methods(
    payment_registry: PaymentRegistry = Depends(
        dependencies.get_payment_registry
    ),
) -> dict[str, Any]:
  methods = [
      {
          "id": cfg.id.value,
          "name": cfg.name,
          "description": cfg.description,
          "requiresRedirect": cfg.requires_redirect,
      }
      for cfg in payment_registry.available_methods()
  ]
  return {"success": True, "methods": methods}


@router.get(
    "/shipping",
    response_model=dict[str, Any],
    operation_id="get_shipping_options",
)
async def get_shipping_options(
    country: Optional[str] = Query(None),
    shipping_service: ShippingService = Depends(
        dependencies.get_shipping_service
    ),
) -> dict[str, Any]:
  """Returns shipping availability for a country, or every zone."""
  if country:
    return {
        "success": True,
        "country": country.strip().upper(),
        "shippingAvailable": await shipping_service.is_available(country),
    }
  zones = await shipping_service.zones()
  return {"success": True, "zones": [zone_to_dict(z) for z in zones]}


@router.post(
    "/shipping",
    response_model=dict[str, Any],
    operation_id="quote_shipping",
)
async def quote_shipping(
    request: ShippingQuoteRequest = Body(...),
    shipping_service: ShippingService = Depends(
        dependencies.get_shipping_service
    ),
) -> dict[str, Any]:
  """Prices shipping for a destination and cart subtotal."""
  if not request.country_code:
    raise InvalidRequestError("Country code is required")
  if not await shipping_service.is_available(request.country_code):
    raise InvalidRequestError("Shipping is not available to this country")

  quote = await shipping_service.quote(request.country_code, request.subtotal)
  return {
      "success": True,
      "shippingAvailable": True,
      "cost": as_float(quote.cost),
      "isFree": quote.is_free,
      "estimatedDays": quote.estimated_days,
  }
