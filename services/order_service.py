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

"""Order repository and state machine.

This module provides the `OrderService` class, which owns every write to the
`orders`, `order_items` and `payments` tables.

Key responsibilities include:
- Creating an order and its item snapshot atomically.
- Guarded state transitions (`mark_paid`, `mark_payment_failed`,
  `mark_shipped`, refunds) implemented as conditional updates, so repeated or
  concurrent calls converge instead of double-applying.
- Admin edits that keep `total == subtotal + shipping_cost + tax - discount`.
- Read models for admin listings, guest lookup and account migration.

Apart from `create_order`, methods do not commit: callers group them into one
transaction and commit it.
"""

from decimal import Decimal
import logging
import math
from typing import Any, Dict, List, Optional
import uuid

import db
from enums import can_transition_order
from enums import can_transition_payment
from enums import OrderStatus
from enums import PaymentDirection
from enums import PaymentStatus
from enums import TERMINAL_ORDER_STATUSES
from exceptions import InvalidRequestError
from exceptions import InvalidStatusError
from exceptions import InvalidTransitionError
from exceptions import OrderCreationError
from exceptions import ResourceNotFoundError
from models import AdminOrderUpdate
from money import as_float
from money import to_money
from money import ZERO
from pydantic import BaseModel
from pydantic import Field
from sqlalchemy import case
from sqlalchemy import func
from sqlalchemy import or_
from sqlalchemy import select
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

ADMIN_SORT_FIELDS = ("created_at", "total", "status", "order_number")
MAX_PAGE_SIZE = 100


class OrderItemDraft(BaseModel):
  sku: str
  product_slug: str
  name: str
  variant: Optional[str] = None
  color: Optional[str] = None
  size: Optional[str] = None
  custom_texts: Optional[Any] = None
  stripe: Optional[Dict[str, Any]] = None
  addons: List[Dict[str, Any]] = Field(default_factory=list)
  unit_price: Decimal
  quantity: int
  image: Optional[str] = None


class OrderDraft(BaseModel):
  """Everything needed to persist a new pending order."""

  email: str
  shipping_address: Dict[str, Any]
  items: List[OrderItemDraft]
  subtotal: Decimal
  shipping_cost: Decimal = ZERO
  tax: Decimal = ZERO
  discount: Decimal = ZERO
  coupon_code: Optional[str] = None
  currency: str = "USD"
  payment_method: str = "paypal"
  customer_note: Optional[str] = None
  visitor_id: Optional[str] = None
  user_id: Optional[str] = None
  order_number: Optional[str] = None


def compute_total(subtotal, shipping_cost, tax, discount) -> Decimal:
  return to_money(
      to_money(subtotal)
      + to_money(shipping_cost)
      + to_money(tax)
      - to_money(discount)
  )


def append_note(existing: Optional[str], note: str) -> str:
  return f"{existing}\n{note}" if existing else note


def order_to_dict(order: db.Order) -> Dict[str, Any]:
  return {
      "id": order.id,
      "order_number": order.order_number,
      "email": order.email,
      "user_id": order.user_id,
      "status": order.status,
      "payment_status": order.payment_status,
      "payment_method": order.payment_method,
      "subtotal": as_float(order.subtotal),
      "shipping_cost": as_float(order.shipping_cost),
      "tax": as_float(order.tax),
      "discount": as_float(order.discount),
      "total": as_float(order.total),
      "currency": order.currency,
      "coupon_code": order.coupon_code,
      "shipping_address": order.shipping_address,
      "customer_note": order.customer_note,
      "internal_note": order.internal_note,
      "paypal_order_id": order.paypal_order_id,
      "paypal_capture_id": order.paypal_capture_id,
      "created_at": order.created_at,
      "paid_at": order.paid_at,
      "shipped_at": order.shipped_at,
  }


def item_to_dict(item: db.OrderItem) -> Dict[str, Any]:
  return {
      "sku": item.sku,
      "product_slug": item.product_slug,
      "name": item.name,
      "variant": item.variant,
      "color": item.color,
      "size": item.size,
      "custom_texts": item.custom_texts,
      "stripe": item.stripe,
      "addons": item.addons or [],
      "unit_price": as_float(item.unit_price),
      "quantity": item.quantity,
      "line_total": as_float(item.line_total),
      "image": item.image,
  }


def payment_to_dict(payment: db.Payment) -> Dict[str, Any]:
  return {
      "payment_method": payment.payment_method,
      "transaction_id": payment.transaction_id,
      "amount": as_float(payment.amount),
      "currency": payment.currency,
      "status": payment.status,
      "direction": payment.direction,
      "created_at": payment.created_at,
  }


class OrderService:
  """Repository and state machine for orders."""

  def __init__(self, transactions_session: AsyncSession):
    self.session = transactions_session

  # --- Creation ---

  async def create_order(self, draft: OrderDraft) -> db.Order:
    """Persists an order (pending/unpaid) and its items in one transaction.

    Args:
      draft: Validated order contents.

    Returns:
      The created order.

    Raises:
      OrderCreationError: If the order or any item could not be written. No
        order row is left behind.
    """
    now = db.now_iso()
    order_number = draft.order_number or db.generate_order_number()
    order = db.Order(
        id=str(uuid.uuid4()),
        order_number=order_number,
        visitor_id=draft.visitor_id,
        user_id=draft.user_id,
        email=draft.email.strip().lower(),
        shipping_address=draft.shipping_address,
        subtotal=to_money(draft.subtotal),
        shipping_cost=to_money(draft.shipping_cost),
        tax=to_money(draft.tax),
        discount=to_money(draft.discount),
        coupon_code=draft.coupon_code,
        total=compute_total(
            draft.subtotal, draft.shipping_cost, draft.tax, draft.discount
        ),
        currency=draft.currency,
        status=OrderStatus.PENDING.value,
        payment_status=PaymentStatus.UNPAID.value,
        payment_method=draft.payment_method,
        customer_note=draft.customer_note,
        created_at=now,
    )
    try:
      self.session.add(order)
      await self.session.flush()
      for item in draft.items:
        self.session.add(
            db.OrderItem(
                order_id=order.id,
                sku=item.sku,
                product_slug=item.product_slug,
                name=item.name,
                variant=item.variant,
                color=item.color,
                size=item.size,
                custom_texts=item.custom_texts,
                stripe=item.stripe,
                addons=item.addons,
                unit_price=to_money(item.unit_price),
                quantity=item.quantity,
                line_total=to_money(to_money(item.unit_price) * item.quantity),
                image=item.image,
                created_at=now,
            )
        )
      await self.session.flush()
      await self.session.commit()
    except Exception as e:  # pylint: disable=broad-exception-caught
      await self.session.rollback()
      logger.error(
          "Failed to create order %s: %s", order_number, e, exc_info=True
      )
      raise OrderCreationError() from e

    logger.info("Created order %s (%s)", order.order_number, order.id)
    return order

  # --- Lookups ---

  async def get(self, order_id: str) -> Optional[db.Order]:
    return await db.get_order(self.session, order_id)

  async def get_or_404(self, order_id: str) -> db.Order:
    order = await db.get_order(self.session, order_id)
    if order is None:
      raise ResourceNotFoundError("Order not found")
    return order

  async def reload(self, order_id: str) -> Optional[db.Order]:
    """Re-reads an order, discarding any state cached in the session."""
    return await self.session.get(db.Order, order_id, populate_existing=True)

  async def get_for_payment(
      self, order_id: str, external_payment_id: str
  ) -> Optional[db.Order]:
    return await db.get_order_for_payment(
        self.session, order_id, external_payment_id
    )

  async def find_by_external_id(
      self, external_payment_id: str
  ) -> Optional[db.Order]:
    return await db.find_order_by_external_id(
        self.session, external_payment_id
    )

  async def find_by_capture_id(self, capture_id: str) -> Optional[db.Order]:
    return await db.find_order_by_capture_id(self.session, capture_id)

  async def items(self, order_id: str) -> List[db.OrderItem]:
    return await db.get_order_items(self.session, order_id)

  # --- Transitions ---

  async def set_external_payment_id(
      self, order_id: str, external_payment_id: str
  ) -> None:
    await self.session.execute(
        update(db.Order)
        .where(db.Order.id == order_id)
        .values(paypal_order_id=external_payment_id)
        .execution_options(synchronize_session=False)
    )

  async def mark_paid(
      self,
      order_id: str,
      capture_id: Optional[str],
      payer_email: Optional[str] = None,
  ) -> bool:
    """Moves an unpaid order to paid.

    The update only applies while `payment_status` is unpaid, so only one of
    several concurrent callers wins. A pending order moves to processing. An
    order that was already cancelled keeps its status and gets a note, since
    the money still has to be refunded.

    Args:
      order_id: Internal order id.
      capture_id: Provider capture (transaction) id.
      payer_email: Email the payer used at the provider, if known.

    Returns:
      True if this call applied the transition.
    """
    now = db.now_iso()
    result = await self.session.execute(
        update(db.Order)
        .where(
            db.Order.id == order_id,
            db.Order.payment_status == PaymentStatus.UNPAID.value,
        )
        .values(
            payment_status=PaymentStatus.PAID.value,
            status=case(
                (
                    db.Order.status == OrderStatus.PENDING.value,
                    OrderStatus.PROCESSING.value,
                ),
                else_=db.Order.status,
            ),
            paid_at=func.coalesce(db.Order.paid_at, now),
            paypal_capture_id=capture_id,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
      return False

    order = await self.reload(order_id)
    notes = []
    if payer_email and payer_email.strip().lower() != order.email:
      notes.append(f"PayPal email: {payer_email}")
    if order.status == OrderStatus.CANCELLED.value:
      notes.append("Payment captured after cancellation; refund required")
      logger.warning(
          "Order %s was paid after being cancelled", order.order_number
      )
    for note in notes:
      order.internal_note = append_note(order.internal_note, note)
    await self.session.flush()
    logger.info("Order %s marked paid", order.order_number)
    return True

  async def mark_payment_failed(self, order_id: str, note: str) -> bool:
    """Cancels an order whose payment failed.

    Only applies while the order is unpaid and not already terminal, so a
    failing racer can never cancel an order another path has paid.

    Returns:
      True if this call cancelled the order.
    """
    result = await self.session.execute(
        update(db.Order)
        .where(
            db.Order.id == order_id,
            db.Order.payment_status == PaymentStatus.UNPAID.value,
            db.Order.status.notin_([s.value for s in TERMINAL_ORDER_STATUSES]),
        )
        .values(
            status=OrderStatus.CANCELLED.value,
            internal_note=func.coalesce(db.Order.internal_note + "\n", "")
            + note,
        )
        .execution_options(synchronize_session=False)
    )
    applied = result.rowcount > 0
    if applied:
      logger.warning("Order %s cancelled: %s", order_id, note)
    return applied

  async def add_note(self, order_id: str, note: str) -> None:
    await self.session.execute(
        update(db.Order)
        .where(db.Order.id == order_id)
        .values(
            internal_note=func.coalesce(db.Order.internal_note + "\n", "")
            + note
        )
        .execution_options(synchronize_session=False)
    )

  async def mark_shipped(self, order_id: str) -> db.Order:
    """Moves an order to shipped, setting `shipped_at` once."""
    order = await self.reload(order_id)
    if order is None:
      raise ResourceNotFoundError("Order not found")
    if not can_transition_order(order.status, OrderStatus.SHIPPED.value):
      raise InvalidTransitionError(
          f"Cannot change status from {order.status} to shipped"
      )
    order.status = OrderStatus.SHIPPED.value
    if not order.shipped_at:
      order.shipped_at = db.now_iso()
    await self.session.flush()
    return order

  async def update_admin(
      self, order_id: str, changes: AdminOrderUpdate
  ) -> db.Order:
    """Applies an admin edit to an order.

    Status values are checked against their enumerations and transition
    tables. When the shipping cost or discount changes, the total is
    recomputed from the stored subtotal and tax.

    Args:
      order_id: Internal order id.
      changes: Fields to change; unset fields are left alone.

    Returns:
      The updated order.

    Raises:
      InvalidRequestError: Nothing to update, or a negative amount/total.
      InvalidStatusError: Unknown status or payment_status value.
      InvalidTransitionError: Transition not allowed from the current state.
      ResourceNotFoundError: No such order.
    """
    fields = changes.model_dump(exclude_unset=True)
    if not fields:
      raise InvalidRequestError("No fields to update")

    status = fields.get("status")
    if status is not None and status not in {s.value for s in OrderStatus}:
      raise InvalidStatusError(f"Invalid status: {status}")
    payment_status = fields.get("payment_status")
    if payment_status is not None and payment_status not in {
        s.value for s in PaymentStatus
    }:
      raise InvalidStatusError(f"Invalid payment_status: {payment_status}")

    order = await self.reload(order_id)
    if order is None:
      raise ResourceNotFoundError("Order not found")

    if status is not None and not can_transition_order(order.status, status):
      raise InvalidTransitionError(
          f"Cannot change status from {order.status} to {status}"
      )
    if payment_status is not None and not can_transition_payment(
        order.payment_status, payment_status
    ):
      raise InvalidTransitionError(
          f"Cannot change payment_status from {order.payment_status} to"
          f" {payment_status}"
      )

    shipping_cost = order.shipping_cost
    discount = order.discount
    if fields.get("shipping_cost") is not None:
      shipping_cost = to_money(fields["shipping_cost"])
    if fields.get("discount") is not None:
      discount = to_money(fields["discount"])
    if shipping_cost < 0 or discount < 0:
      raise InvalidRequestError("Amounts must not be negative")
    total = compute_total(order.subtotal, shipping_cost, order.tax, discount)
    if total < 0:
      raise InvalidRequestError("Discount exceeds order amount")

    now = db.now_iso()
    if status is not None:
      order.status = status
      if status == OrderStatus.SHIPPED.value and not order.shipped_at:
        order.shipped_at = now
    if payment_status is not None:
      order.payment_status = payment_status
      if payment_status == PaymentStatus.PAID.value and not order.paid_at:
        order.paid_at = now
    if "internal_note" in fields:
      order.internal_note = fields["internal_note"]
    order.shipping_cost = shipping_cost
    order.discount = discount
    order.total = total
    await self.session.flush()
    logger.info("Admin updated order %s: %s", order.order_number, fields)
    return order

  # --- Payment ledger ---

  async def record_payment(
      self,
      order: db.Order,
      transaction_id: Optional[str],
      amount: Decimal,
      currency: Optional[str],
      direction: PaymentDirection = PaymentDirection.IN,
      provider_response: Optional[Dict[str, Any]] = None,
      status: str = "completed",
  ) -> db.Payment:
    payment = db.Payment(
        order_id=order.id,
        payment_method=order.payment_method,
        transaction_id=transaction_id,
        amount=to_money(amount),
        currency=currency or order.currency,
        status=status,
        direction=direction.value,
        provider_response=provider_response,
        created_at=db.now_iso(),
    )
    self.session.add(payment)
    await self.session.flush()
    return payment

  async def refunded_amount(self, order_id: str) -> Decimal:
    result = await self.session.execute(
        select(func.coalesce(func.sum(db.Payment.amount), 0)).where(
            db.Payment.order_id == order_id,
            db.Payment.direction == PaymentDirection.OUT.value,
        )
    )
    return to_money(result.scalar_one())

  async def refund_count(self, order_id: str) -> int:
    result = await self.session.execute(
        select(func.count()).select_from(db.Payment).where(
            db.Payment.order_id == order_id,
            db.Payment.direction == PaymentDirection.OUT.value,
        )
    )
    return result.scalar_one()

  async def record_refund(
      self,
      order: db.Order,
      refund_id: str,
      amount: Optional[Decimal] = None,
      provider_response: Optional[Dict[str, Any]] = None,
      status: str = "completed",
  ) -> bool:
    """Records a refund against a paid order.

    Refunds are keyed by `refund_id`; a refund already on the ledger is
    skipped, except that a pending one is marked completed. Pending refunds
    count towards the refunded amount. Once refunds cover the total, the
    payment becomes refunded (and the order too, when its status allows),
    otherwise partial_refund.

    Returns:
      True if the refund was recorded by this call.
    """
    existing = await db.get_payment_by_transaction(
        self.session, order.id, refund_id, PaymentDirection.OUT.value
    )
    if existing is not None:
      if existing.status == "pending" and status == "completed":
        existing.status = status
        await self.session.flush()
        logger.info(
            "Pending refund %s for order %s completed",
            refund_id,
            order.order_number,
        )
      return False

    if order.payment_status not in (
        PaymentStatus.PAID.value,
        PaymentStatus.PARTIAL_REFUND.value,
    ):
      logger.warning(
          "Ignoring refund %s for order %s with payment_status %s",
          refund_id,
          order.order_number,
          order.payment_status,
      )
      return False

    already_refunded = await self.refunded_amount(order.id)
    remaining = to_money(order.total) - already_refunded
    amount = to_money(amount) if amount is not None else remaining
    await self.record_payment(
        order,
        refund_id,
        amount,
        order.currency,
        direction=PaymentDirection.OUT,
        provider_response=provider_response,
        status=status,
    )

    if already_refunded + amount >= to_money(order.total):
      order.payment_status = PaymentStatus.REFUNDED.value
      if can_transition_order(order.status, OrderStatus.REFUNDED.value):
        order.status = OrderStatus.REFUNDED.value
    else:
      order.payment_status = PaymentStatus.PARTIAL_REFUND.value
    order.internal_note = append_note(
        order.internal_note, f"Refund {refund_id}: {amount:.2f}"
    )
    await self.session.flush()
    logger.info(
        "Recorded refund %s of %s for order %s",
        refund_id,
        amount,
        order.order_number,
    )
    return True

  # --- Read models ---

  async def detail(self, order_id: str) -> Dict[str, Any]:
    order = await self.get_or_404(order_id)
    items = await self.items(order.id)
    payments = await db.get_payments(self.session, order.id)
    return {
        **order_to_dict(order),
        "items": [item_to_dict(i) for i in items],
        "payments": [payment_to_dict(p) for p in payments],
    }

  async def list_orders(
      self,
      status: Optional[str] = None,
      payment_status: Optional[str] = None,
      search: Optional[str] = None,
      sort: str = "created_at",
      order: str = "desc",
      page: int = 1,
      limit: int = 20,
  ) -> Dict[str, Any]:
    """Admin listing with filters, pagination and store-wide totals."""
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    filters = []
    if status:
      filters.append(db.Order.status == status)
    if payment_status:
      filters.append(db.Order.payment_status == payment_status)
    if search:
      pattern = f"%{search}%"
      filters.append(
          or_(
              db.Order.order_number.ilike(pattern),
              db.Order.email.ilike(pattern),
          )
      )

    sort_column = getattr(
        db.Order, sort if sort in ADMIN_SORT_FIELDS else "created_at"
    )
    sort_column = sort_column.asc() if order == "asc" else sort_column.desc()

    count = (
        await self.session.execute(
            select(func.count()).select_from(db.Order).where(*filters)
        )
    ).scalar_one()
    result = await self.session.execute(
        select(db.Order)
        .where(*filters)
        .order_by(sort_column)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    orders = list(result.scalars().all())
    item_counts = await db.count_order_items(
        self.session, [o.id for o in orders]
    )

    stats = (
        await self.session.execute(
            select(db.Order.status, db.Order.payment_status, db.Order.total)
        )
    ).all()
    paid = [s for s in stats if s.payment_status == PaymentStatus.PAID.value]
    summary = {
        "total_orders": len(stats),
        "pending": sum(1 for s in stats if s.status == OrderStatus.PENDING),
        "paid": len(paid),
        "shipped": sum(1 for s in stats if s.status == OrderStatus.SHIPPED),
        "total_revenue": as_float(sum((to_money(s.total) for s in paid), ZERO)),
    }

    return {
        "orders": [
            {**order_to_dict(o), "item_count": item_counts.get(o.id, 0)}
            for o in orders
        ],
        "summary": summary,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": count,
            "totalPages": math.ceil(count / limit),
        },
    }

  async def lookup(self, order_number: str, email: str) -> Dict[str, Any]:
    """Guest lookup by order number and email, without internal fields."""
    order = await db.find_order_by_number(self.session, order_number, email)
    if order is None:
      raise ResourceNotFoundError("not_found")
    items = await self.items(order.id)
    return {
        "order": {
            "order_number": order.order_number,
            "status": order.status,
            "payment_status": order.payment_status,
            "subtotal": as_float(order.subtotal),
            "shipping_cost": as_float(order.shipping_cost),
            "tax": as_float(order.tax),
            "discount": as_float(order.discount),
            "total": as_float(order.total),
            "created_at": order.created_at,
            "shipped_at": order.shipped_at,
        },
        "items": [
            {
                "name": i.name,
                "sku": i.sku,
                "variant": i.variant,
                "color": i.color,
                "size": i.size,
                "quantity": i.quantity,
                "unit_price": as_float(i.unit_price),
                "line_total": as_float(i.line_total),
                "image": i.image,
            }
            for i in items
        ],
    }

  async def migrate_guest_orders(self, user_id: str, email: str) -> int:
    """Attaches guest orders placed with `email` to the user."""
    result = await self.session.execute(
        update(db.Order)
        .where(
            db.Order.user_id.is_(None),
            db.Order.email == email.strip().lower(),
        )
        .values(user_id=user_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount

  async def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
    result = await self.session.execute(
        select(db.Order)
        .where(db.Order.user_id == user_id)
        .order_by(db.Order.created_at.desc())
    )
    return [order_to_dict(o) for o in result.scalars().all()]
