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

"""Reconciles orders with PayPal webhook events.

Webhooks converge the same terminal states as the capture endpoint, through
the same guarded transitions, so a delivery that arrives before, after or
instead of the browser's capture call has the same effect exactly once.
"""

import logging
from typing import Any, Dict, Optional

import db
from enums import PaymentStatus
from money import to_money
from payments.base import CapturePaymentResult
from payments.paypal import parse_order_capture
from services.checkout_service import CheckoutService

logger = logging.getLogger(__name__)

ORDER_APPROVED = "CHECKOUT.ORDER.APPROVED"
ORDER_COMPLETED = "CHECKOUT.ORDER.COMPLETED"
CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
CAPTURE_DENIED = "PAYMENT.CAPTURE.DENIED"
CAPTURE_REFUNDED = "PAYMENT.CAPTURE.REFUNDED"


def related_order_id(resource: Dict[str, Any]) -> Optional[str]:
  """Returns the PayPal order id a capture resource belongs to."""
  related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
  return related.get("order_id")


def refunded_capture_id(resource: Dict[str, Any]) -> Optional[str]:
  """Returns the capture id a refund resource refers to.

  Refund resources link to their capture with `rel: up`; the resource id is
  the fallback for payloads without links.
  """
  for link in resource.get("links") or []:
    if link.get("rel") == "up" and link.get("href"):
      return link["href"].rstrip("/").rsplit("/", 1)[-1]
  return resource.get("id")


def capture_from_resource(resource: Dict[str, Any]) -> CapturePaymentResult:
  amount = resource.get("amount") or {}
  return CapturePaymentResult(
      success=True,
      transaction_id=resource.get("id"),
      amount=to_money(amount["value"]) if amount.get("value") else None,
      currency=amount.get("currency_code"),
      raw_response=resource,
  )


class WebhookService:
  """Applies verified PayPal webhook events to orders."""

  def __init__(self, checkout_service: CheckoutService):
    self.checkout_service = checkout_service
    self.order_service = checkout_service.order_service
    self.session = checkout_service.transactions_session

  async def handle_event(self, event: Dict[str, Any]) -> None:
    """Dispatches one verified event. Unknown event types are ignored."""
    event_type = event.get("event_type")
    resource = event.get("resource") or {}
    logger.info("PayPal webhook %s (%s)", event_type, event.get("id"))

    handlers = {
        ORDER_APPROVED: self._order_approved,
        ORDER_COMPLETED: self._order_completed,
        CAPTURE_COMPLETED: self._capture_completed,
        CAPTURE_DENIED: self._capture_denied,
        CAPTURE_REFUNDED: self._capture_refunded,
    }
    handler = handlers.get(event_type)
    if handler is None:
      logger.info("Ignoring unhandled webhook event %s", event_type)
      return
    await handler(resource)

  async def _capture_order(
      self, resource: Dict[str, Any]
  ) -> Optional[db.Order]:
    order = None
    if resource.get("id"):
      order = await self.order_service.find_by_capture_id(resource["id"])
    if order is None:
      external_id = related_order_id(resource)
      if external_id:
        order = await self.order_service.find_by_external_id(external_id)
    if order is None:
      logger.warning("No order for capture %s", resource.get("id"))
    return order

  async def _order_approved(self, resource: Dict[str, Any]) -> None:
    order = await self.order_service.find_by_external_id(resource.get("id"))
    if order is None:
      logger.warning(
          "No order for approved PayPal order %s", resource.get("id")
      )
      return
    if order.payment_status == PaymentStatus.UNPAID.value:
      await self.order_service.add_note(
          order.id, "PayPal order approved by payer"
      )
      await self.session.commit()

  async def _order_completed(self, resource: Dict[str, Any]) -> None:
    order = await self.order_service.find_by_external_id(resource.get("id"))
    if order is None:
      logger.warning(
          "No order for completed PayPal order %s", resource.get("id")
      )
      return
    capture = parse_order_capture(resource)
    if not capture.success:
      logger.warning(
          "Order %s completed without a completed capture: %s",
          order.order_number,
          capture.error,
      )
      return
    await self.checkout_service.finalize_payment(order.id, capture)

  async def _capture_completed(self, resource: Dict[str, Any]) -> None:
    order = await self._capture_order(resource)
    if order is None:
      return
    await self.checkout_service.finalize_payment(
        order.id, capture_from_resource(resource)
    )

  async def _capture_denied(self, resource: Dict[str, Any]) -> None:
    order = await self._capture_order(resource)
    if order is None:
      return
    applied = await self.order_service.mark_payment_failed(
        order.id, f"Capture {resource.get('id')} denied by PayPal"
    )
    await self.session.commit()
    if not applied:
      logger.info(
          "Capture denial for order %s needed no change", order.order_number
      )

  async def _capture_refunded(self, resource: Dict[str, Any]) -> None:
    capture_id = refunded_capture_id(resource)
    order = (
        await self.order_service.find_by_capture_id(capture_id)
        if capture_id
        else None
    )
    if order is None:
      logger.warning("No order for refunded capture %s", capture_id)
      return
    amount = resource.get("amount") or {}
    await self.order_service.record_refund(
        order,
        resource.get("id") or capture_id,
        to_money(amount["value"]) if amount.get("value") else None,
        resource,
    )
    await self.session.commit()
