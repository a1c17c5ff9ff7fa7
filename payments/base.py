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

"""Payment provider interface.

Every provider (PayPal, Stripe, bank transfer) implements `PaymentProvider`.
Providers report failures through `success=False` results instead of raising,
so the checkout orchestrator can record the error on the order.
"""

import abc
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from enums import PaymentMethodId
from pydantic import BaseModel
from pydantic import Field


class PaymentItem(BaseModel):
  name: str
  sku: str
  quantity: int
  unit_price: Decimal


class PaymentAddress(BaseModel):
  first_name: str = ""
  last_name: str = ""
  address1: str = ""
  address2: Optional[str] = None
  city: str = ""
  state: str = ""
  postcode: str = ""
  country: str = ""


class PaymentOrderData(BaseModel):
  """Validated order totals and breakdown handed to a provider."""

  order_id: str
  order_number: str
  email: str
  items: List[PaymentItem]
  subtotal: Decimal
  shipping_cost: Decimal
  tax: Decimal
  discount: Decimal
  total: Decimal
  currency: str = "USD"
  shipping_address: Optional[PaymentAddress] = None


class CreatePaymentResult(BaseModel):
  success: bool
  external_payment_id: Optional[str] = None
  redirect_url: Optional[str] = None
  metadata: Optional[Dict[str, Any]] = None
  error: Optional[str] = None


class CapturePaymentResult(BaseModel):
  success: bool
  transaction_id: Optional[str] = None
  amount: Optional[Decimal] = None
  currency: Optional[str] = None
  payer_email: Optional[str] = None
  payer_name: Optional[str] = None
  raw_response: Dict[str, Any] = Field(default_factory=dict)
  error: Optional[str] = None


class RefundPaymentResult(BaseModel):
  success: bool
  refund_id: Optional[str] = None
  amount: Optional[Decimal] = None
  # "completed", or "pending" when the provider accepted but has not settled.
  status: str = "completed"
  error: Optional[str] = None


class PaymentProvider(abc.ABC):
  """Interface implemented by every payment method."""

  method_id: PaymentMethodId

  @abc.abstractmethod
  def is_configured(self) -> bool:
    """Returns True if the credentials this provider needs are present."""

  @abc.abstractmethod
  async def create_payment(self, data: PaymentOrderData) -> CreatePaymentResult:
    """Creates the external payment for an order that was just persisted."""

  @abc.abstractmethod
  async def capture_payment(self, external_id: str) -> CapturePaymentResult:
    """Captures (finalizes) a previously created payment."""

  @abc.abstractmethod
  async def refund_payment(
      self,
      transaction_id: str,
      amount: Optional[Decimal] = None,
      request_id: Optional[str] = None,
  ) -> RefundPaymentResult:
    """Refunds a capture, fully when `amount` is None.

    Args:
      transaction_id: The capture to refund.
      amount: The amount to return, or None for the unrefunded remainder.
      request_id: Idempotency key; retrying with the same key must not
        refund twice.
    """

  async def verify_webhook(
      self, headers: Mapping[str, str], body: Dict[str, Any]
  ) -> bool:
    """Returns True if the webhook delivery is authentic."""
    del headers, body  # Unused.
    return False
