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

"""Stripe payment provider placeholder.

Card payments through Stripe Checkout are not wired up yet. The provider
conforms to the interface so the method can be listed and selected, but every
operation fails.
"""

from decimal import Decimal
from typing import Optional

import config
from enums import PaymentMethodId
from payments.base import CapturePaymentResult
from payments.base import CreatePaymentResult
from payments.base import PaymentOrderData
from payments.base import PaymentProvider
from payments.base import RefundPaymentResult

NOT_IMPLEMENTED = "not implemented"


class StripeProvider(PaymentProvider):

  method_id = PaymentMethodId.STRIPE

  def __init__(
      self,
      secret_key: Optional[str] = None,
      publishable_key: Optional[str] = None,
  ):
    self.secret_key = secret_key
    self.publishable_key = publishable_key

  @classmethod
  def from_flags(cls) -> "StripeProvider":
    return cls(
        secret_key=config.get("stripe_secret_key"),
        publishable_key=config.get("stripe_publishable_key"),
    )

  def is_configured(self) -> bool:
    return bool(self.secret_key and self.publishable_key)

  async def create_payment(self, data: PaymentOrderData) -> CreatePaymentResult:
    del data  # Unused.
    return CreatePaymentResult(success=False, error=NOT_IMPLEMENTED)

  async def capture_payment(self, external_id: str) -> CapturePaymentResult:
    del external_id  # Unused.
    return CapturePaymentResult(success=False, error=NOT_IMPLEMENTED)

  async def refund_payment(
      self,
      transaction_id: str,
      amount: Optional[Decimal] = None,
      request_id: Optional[str] = None,
  ) -> RefundPaymentResult:
    del transaction_id, amount, request_id  # Unused.
    return RefundPaymentResult(success=False, error=NOT_IMPLEMENTED)
