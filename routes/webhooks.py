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

"""Payment provider webhook routes."""

import json
import logging
from typing import Any

import dependencies
from enums import PaymentMethodId
from exceptions import InvalidRequestError
from exceptions import UnauthorizedError
from fastapi import APIRouter
from fastapi import Depends
from fastapi import Request
from payments.registry import PaymentRegistry
from services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks")


@router.post(
    "/paypal",
    response_model=dict[str, Any],
    operation_id="paypal_webhook",
)
async def paypal_webhook(
    request: Request,
    payment_registry: PaymentRegistry = Depends(
        dependencies.get_payment_registry
    ),
    webhook_service: WebhookService = Depends(
        dependencies.get_webhook_service
    ),
) -> dict[str, Any]:
  """Receives PayPal events.

  Deliveries must pass PayPal's signature verification. Once verified, every
  delivery is acknowledged, including ones whose processing failed, so that
  PayPal does not keep retrying an event the server cannot apply.
  """
  try:
    event = json.loads(await request.body())
  except ValueError as e:
    raise InvalidRequestError("Invalid JSON body") from e
  if not isinstance(event, dict):
    raise InvalidRequestError("Invalid JSON body")

  provider = payment_registry.get(PaymentMethodId.PAYPAL)
  headers = {k.lower(): v for k, v in request.headers.items()}
  if provider is None or not await provider.verify_webhook(headers, event):
    logger.error("Rejected PayPal webhook with an invalid signature")
    raise UnauthorizedError("Invalid signature")

  try:
    await webhook_service.handle_event(event)
  except Exception:  # pylint: disable=broad-exception-caught
    await webhook_service.session.rollback()
    logger.error(
        "Failed to process PayPal webhook %s", event.get("id"), exc_info=True
    )
    return {"received": True, "error": "Processing error logged"}
  return {"received": True}
