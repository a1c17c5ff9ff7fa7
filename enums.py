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

"""Enumerations for the storefront checkout server.

This module defines the order lifecycle and payment sub-state enums together
with the transition tables that the order service enforces.
"""

import enum


class OrderStatus(str, enum.Enum):
  PENDING = "pending"
  PROCESSING = "processing"
  SHIPPED = "shipped"
  DELIVERED = "delivered"
  CANCELLED = "cancelled"
  REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
  UNPAID = "unpaid"
  PAID = "paid"
  REFUNDED = "refunded"
  PARTIAL_REFUND = "partial_refund"


class CouponType(str, enum.Enum):
  FIXED = "fixed"
  PERCENTAGE = "percentage"


class PaymentMethodId(str, enum.Enum):
  PAYPAL = "paypal"
  STRIPE = "stripe"
  BANK_TRANSFER = "bank_transfer"
  COD = "cod"


class PaymentDirection(str, enum.Enum):
  IN = "in"
  OUT = "out"


TERMINAL_ORDER_STATUSES = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.REFUNDED,
})

ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.PROCESSING: {
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.SHIPPED: {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
}

PAYMENT_TRANSITIONS = {
    PaymentStatus.UNPAID: {PaymentStatus.PAID},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED, PaymentStatus.PARTIAL_REFUND},
    # Further partial refunds may complete the refund.
    PaymentStatus.PARTIAL_REFUND: {
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIAL_REFUND,
    },
    PaymentStatus.REFUNDED: set(),
}


def can_transition_order(current: str, target: str) -> bool:
  """Returns True if an order may move from `current` to `target` status."""
  if current == target:
    return True
  return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]


def can_transition_payment(current: str, target: str) -> bool:
  """Returns True if payment_status may move from `current` to `target`."""
  if current == target:
    return True
  return PaymentStatus(target) in PAYMENT_TRANSITIONS[PaymentStatus(current)]
