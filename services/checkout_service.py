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

"""Checkout service orchestrating order creation and payment.

This module provides the `CheckoutService` class, which sequences the
checkout saga across the pricing engine, coupon validator, order repository
and payment providers.

Key responsibilities include:
- Creating orders from re-priced carts and the matching provider payment.
- Capturing payments idempotently: a repeated capture returns the original
  success payload.
- Finalizing a captured payment in one transaction (order paid, ledger row,
  cart cleared, coupon usage counted) for the capture endpoint, webhooks and
  manual admin confirmation alike.
- Refunds through the provider that took the payment.
"""

from decimal import Decimal
import logging
from typing import Any, Dict, Optional

import db
from enums import OrderStatus
from enums import PaymentStatus
from exceptions import InvalidRequestError
from exceptions import InvalidTransitionError
from exceptions import PaymentCaptureError
from exceptions import PaymentProviderUnavailableError
from exceptions import RefundFailedError
from exceptions import ResourceNotFoundError
from fastapi import BackgroundTasks
from models import CaptureOrderRequest
from models import CreateOrderRequest
from money import as_float
from money import to_money
from money import ZERO
from payments.base import CapturePaymentResult
from payments.base import CreatePaymentResult
from payments.base import PaymentAddress
from payments.base import PaymentItem
from payments.base import PaymentOrderData
from payments.base import PaymentProvider
from payments.registry import PaymentRegistry
from services.coupon_service import CouponService
from services.email_service import EmailService
from services.order_service import OrderDraft
from services.order_service import OrderItemDraft
from services.order_service import OrderService
from services.pricing_service import PricingService
from services.shipping_service import ShippingService
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

CAPTURED_PAYMENT_STATUSES = frozenset({
    PaymentStatus.PAID.value,
    PaymentStatus.PARTIAL_REFUND.value,
    PaymentStatus.REFUNDED.value,
})


class CheckoutService:
  """Service orchestrating checkout, capture and refunds."""

  def __init__(
      self,
      products_session: AsyncSession,
      transactions_session: AsyncSession,
      payment_registry: PaymentRegistry,
      email_service: EmailService,
      background_tasks: Optional[BackgroundTasks] = None,
      currency: str = "USD",
  ):
    self.transactions_session = transactions_session
    self.payment_registry = payment_registry
    self.email_service = email_service
    self.background_tasks = background_tasks
    self.currency = currency
    self.pricing_service = PricingService(products_session)
    self.shipping_service = ShippingService(products_session)
    self.coupon_service = CouponService(transactions_session)
    self.order_service = OrderService(transactions_session)

  def _provider(self, method_id: str) -> PaymentProvider:
    provider = self.payment_registry.get(method_id)
    if provider is None:
      raise InvalidRequestError(f"Unknown payment method: {method_id}")
    return provider

  # --- Create ---

  async def create_order(
      self,
      request: CreateOrderRequest,
      visitor_id: Optional[str] = None,
      user_id: Optional[str] = None,
  ) -> Dict[str, Any]:
    """Creates an order and its provider payment.

    Prices are re-derived from the catalog; corrected client prices are
    reported as `priceWarnings`. An inapplicable coupon is ignored.

    Args:
      request: The checkout form and cart.
      visitor_id: Anonymous visitor id of the caller.
      user_id: Signed-in user id, if any.

    Returns:
      The create-order response payload.

    Raises:
      InvalidRequestError: Empty cart, missing shipping fields, unknown
        product or unavailable payment method.
      PaymentProviderUnavailableError: The provider failed. The order has
        been cancelled.
    """
    if not request.items:
      raise InvalidRequestError("Cart is empty")
    shipping = request.shipping
    if not shipping or not all((
        shipping.email.strip(),
        shipping.first_name.strip(),
        shipping.address1.strip(),
        shipping.city.strip(),
        shipping.country.strip(),
    )):
      raise InvalidRequestError("Missing required shipping fields")

    method = request.payment_method
    provider = self._provider(method)
    if not self.payment_registry.is_available(method):
      raise InvalidRequestError(f"Payment method {method} is not available")

    validation = await self.pricing_service.validate_cart(request.items)
    if validation.rejected:
      raise InvalidRequestError(validation.rejected[0])
    price_warnings = list(validation.errors)
    if price_warnings:
      logger.warning("Corrected client prices: %s", price_warnings)
    subtotal = validation.subtotal

    discount = ZERO
    coupon_code = None
    if request.coupon_code and request.coupon_code.strip():
      coupon = await self.coupon_service.validate(request.coupon_code, subtotal)
      if coupon.valid:
        discount = coupon.discount
        coupon_code = coupon.code
      else:
        logger.info(
            "Ignoring coupon %r: %s", request.coupon_code, coupon.error
        )

    quote = await self.shipping_service.quote(shipping.country, subtotal)
    country = shipping.country.strip().upper()
    draft = OrderDraft(
        email=shipping.email,
        shipping_address={
            "full_name": f"{shipping.first_name} {shipping.last_name}".strip(),
            "address_line1": shipping.address1,
            "address_line2": shipping.address2,
            "city": shipping.city,
            "state": shipping.state,
            "postal_code": shipping.postcode,
            "country": country,
            "phone": shipping.phone,
        },
        items=[
            OrderItemDraft(
                sku=v.line.sku,
                product_slug=v.line.product_slug,
                name=v.line.name or v.line.sku,
                variant=v.line.variant,
                color=v.line.color,
                size=v.line.size,
                custom_texts=v.line.custom_texts,
                stripe=v.line.stripe.model_dump(mode="json")
                if v.line.stripe
                else None,
                addons=[a.model_dump(mode="json") for a in v.line.addons],
                unit_price=v.validated_unit_price,
                quantity=v.line.quantity,
                image=v.line.image,
            )
            for v in validation.items
        ],
        subtotal=subtotal,
        shipping_cost=quote.cost,
        tax=ZERO,
        discount=discount,
        coupon_code=coupon_code,
        currency=self.currency,
        payment_method=method,
        customer_note=request.customer_note,
        visitor_id=visitor_id,
        user_id=user_id,
    )
    order = await self.order_service.create_order(draft)

    payment_data = PaymentOrderData(
        order_id=order.id,
        order_number=order.order_number,
        email=order.email,
        items=[
            PaymentItem(
                name=item.name,
                sku=item.sku,
                quantity=item.quantity,
                unit_price=item.unit_price,
            )
            for item in draft.items
        ],
        subtotal=order.subtotal,
        shipping_cost=order.shipping_cost,
        tax=order.tax,
        discount=order.discount,
        total=order.total,
        currency=order.currency,
        shipping_address=PaymentAddress(
            first_name=shipping.first_name,
            last_name=shipping.last_name,
            address1=shipping.address1,
            address2=shipping.address2,
            city=shipping.city,
            state=shipping.state,
            postcode=shipping.postcode,
            country=country,
        ),
    )
    try:
      result = await provider.create_payment(payment_data)
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error(
          "Provider %s raised for order %s", method, order.order_number,
          exc_info=True,
      )
      result = CreatePaymentResult(success=False, error=str(e))

    if not result.success or not result.external_payment_id:
      await self.order_service.mark_payment_failed(
          order.id, f"Payment provider error: {result.error}"
      )
      await self.transactions_session.commit()
      logger.error(
          "Payment creation failed for order %s: %s",
          order.order_number,
          result.error,
      )
      raise PaymentProviderUnavailableError(order_id=order.id)

    await self.order_service.set_external_payment_id(
        order.id, result.external_payment_id
    )
    await self.transactions_session.commit()
    logger.info(
        "Order %s awaiting %s payment %s",
        order.order_number,
        method,
        result.external_payment_id,
    )

    response: Dict[str, Any] = {
        "success": True,
        "orderId": order.id,
        "orderNumber": order.order_number,
        "paypalOrderId": result.external_payment_id,
        "paymentMethod": method,
        "total": as_float(order.total),
        "priceWarnings": price_warnings,
    }
    if result.redirect_url:
      response["redirectUrl"] = result.redirect_url
    if result.metadata:
      response["metadata"] = result.metadata
    return response

  # --- Capture ---

  @staticmethod
  def _capture_payload(order: db.Order) -> Dict[str, Any]:
    return {
        "success": True,
        "orderId": order.id,
        "orderNumber": order.order_number,
        "paypalOrderId": order.paypal_order_id,
        "captureId": order.paypal_capture_id,
        "total": as_float(order.total),
        "email": order.email,
    }

  async def capture_order(self, request: CaptureOrderRequest) -> Dict[str, Any]:
    """Captures the payment of an order created by `create_order`.

    Args:
      request: The internal order id and the provider's payment id.

    Returns:
      The capture payload, identical for repeated calls.

    Raises:
      InvalidRequestError: Missing ids.
      ResourceNotFoundError: No order matches both ids.
      InvalidTransitionError: The order was cancelled before payment, or its
        payment method needs an admin to confirm the payment.
      PaymentCaptureError: The provider did not capture the payment.
    """
    if not request.order_id or not request.paypal_order_id:
      raise InvalidRequestError("Missing paypalOrderId or orderId")

    order = await self.order_service.get_for_payment(
        request.order_id, request.paypal_order_id
    )
    if order is None:
      raise ResourceNotFoundError("Order not found")

    if order.payment_status in CAPTURED_PAYMENT_STATUSES:
      return self._capture_payload(order)
    if order.status != OrderStatus.PENDING.value:
      raise InvalidTransitionError(
          f"Order {order.order_number} is {order.status} and cannot be paid"
      )
    if not self.payment_registry.supports_immediate_capture(
        order.payment_method
    ):
      logger.warning(
          "Refused capture of %s order %s from checkout",
          order.payment_method,
          order.order_number,
      )
      raise InvalidTransitionError(
          f"Order {order.order_number} awaits manual payment confirmation"
      )

    provider = self._provider(order.payment_method)
    try:
      capture = await provider.capture_payment(request.paypal_order_id)
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error(
          "Provider capture raised for order %s", order.order_number,
          exc_info=True,
      )
      capture = CapturePaymentResult(success=False, error=str(e))

    if not capture.success:
      current = await self.order_service.reload(order.id)
      if current.payment_status in CAPTURED_PAYMENT_STATUSES:
        # A webhook or a concurrent request captured it first.
        return self._capture_payload(current)
      await self.order_service.mark_payment_failed(
          order.id, f"Capture failed: {capture.error}"
      )
      await self.transactions_session.commit()
      logger.error(
          "Capture failed for order %s: %s", order.order_number, capture.error
      )
      raise PaymentCaptureError()

    await self.finalize_payment(order.id, capture)
    order = await self.order_service.reload(order.id)
    return self._capture_payload(order)

  async def finalize_payment(
      self, order_id: str, capture: CapturePaymentResult
  ) -> bool:
    """Applies a successful capture exactly once.

    Marks the order paid and, only if that transition applied, appends the
    ledger row, clears the buyer's cart and counts the coupon use, all in one
    transaction. The confirmation email is queued after the commit.

    Returns:
      True if this call finalized the payment, False if it already was.
    """
    try:
      applied = await self.order_service.mark_paid(
          order_id, capture.transaction_id, capture.payer_email
      )
      if not applied:
        await self.transactions_session.rollback()
        return False

      order = await self.order_service.reload(order_id)
      await self.order_service.record_payment(
          order,
          capture.transaction_id,
          capture.amount if capture.amount is not None else order.total,
          capture.currency,
          provider_response=capture.raw_response,
      )
      await db.clear_cart(
          self.transactions_session,
          user_id=order.user_id,
          visitor_id=order.visitor_id,
      )
      if order.coupon_code:
        counted = await db.increment_coupon_usage(
            self.transactions_session, order.coupon_code
        )
        if not counted:
          logger.warning(
              "Coupon %s had no uses left when order %s was paid",
              order.coupon_code,
              order.order_number,
          )
      await self.transactions_session.commit()
    except Exception:
      await self.transactions_session.rollback()
      raise

    logger.info(
        "Payment %s finalized for order %s",
        capture.transaction_id,
        order.order_number,
    )
    items = await self.order_service.items(order.id)
    self._queue(self.email_service.send_order_confirmation, order, items)
    return True

  def _queue(self, func, *args) -> None:
    """Runs a best-effort coroutine function after the response is sent."""
    if self.background_tasks is not None:
      self.background_tasks.add_task(func, *args)
    else:
      logger.debug("No background task queue; skipping %s", func.__name__)

  # --- Admin operations ---

  async def confirm_payment(self, order_id: str) -> Dict[str, Any]:
    """Manually captures an order, e.g. once a bank transfer has arrived."""
    order = await self.order_service.get_or_404(order_id)
    if order.payment_status in CAPTURED_PAYMENT_STATUSES:
      raise InvalidTransitionError("Order is already paid")
    if order.status != OrderStatus.PENDING.value:
      raise InvalidTransitionError(
          f"Order {order.order_number} is {order.status} and cannot be paid"
      )

    provider = self._provider(order.payment_method)
    external_id = order.paypal_order_id or f"BANK-{order.order_number}"
    capture = await provider.capture_payment(external_id)
    if not capture.success:
      logger.error(
          "Manual capture failed for order %s: %s",
          order.order_number,
          capture.error,
      )
      raise PaymentCaptureError()
    await self.finalize_payment(order.id, capture)
    return await self.order_service.detail(order.id)

  async def refund(
      self, order_id: str, amount: Optional[Decimal] = None
  ) -> Dict[str, Any]:
    """Refunds a captured order through its provider, fully by default."""
    order = await self.order_service.get_or_404(order_id)
    if order.payment_status not in (
        PaymentStatus.PAID.value,
        PaymentStatus.PARTIAL_REFUND.value,
    ):
      raise InvalidTransitionError("Order has no captured payment to refund")
    if not order.paypal_capture_id:
      raise InvalidTransitionError("Order has no capture id")
    if amount is not None:
      amount = to_money(amount)
      refunded = await self.order_service.refunded_amount(order.id)
      if amount <= 0 or amount > to_money(order.total) - refunded:
        raise InvalidRequestError(
            "Refund amount must be positive and within the unrefunded total"
        )

    # The n-th recorded refund keeps its key across retries of a failed call.
    refund_number = await self.order_service.refund_count(order.id) + 1
    request_id = f"{order.order_number}-R{refund_number}"
    provider = self._provider(order.payment_method)
    result = await provider.refund_payment(
        order.paypal_capture_id, amount, request_id=request_id
    )
    if not result.success or not result.refund_id:
      logger.error(
          "Refund failed for order %s: %s", order.order_number, result.error
      )
      raise RefundFailedError()

    await self.order_service.record_refund(
        order,
        result.refund_id,
        result.amount if result.amount is not None else amount,
        {"refund_id": result.refund_id, "request_id": request_id},
        status=result.status,
    )
    await self.transactions_session.commit()
    return await self.order_service.detail(order.id)
