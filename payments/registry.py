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

"""Payment method registry.

Maps a `PaymentMethodId` to its display configuration and provider instance.
"""

from typing import Dict, List, Optional

from enums import PaymentMethodId
from payments.bank_transfer import BankTransferProvider
from payments.base import PaymentProvider
from payments.paypal import PayPalProvider
from payments.stripe import StripeProvider
from pydantic import BaseModel


class PaymentMethodConfig(BaseModel):
  id: PaymentMethodId
  name: str
  description: str
  enabled: bool
  required_env_vars: List[str]
  supported_currencies: List[str]
  supports_immediate_capture: bool
  requires_redirect: bool
  sort_order: int


PAYMENT_METHOD_CONFIGS: Dict[PaymentMethodId, PaymentMethodConfig] = {
    PaymentMethodId.PAYPAL: PaymentMethodConfig(
        id=PaymentMethodId.PAYPAL,
        name="PayPal",
        description="Pay securely with PayPal or credit/debit card",
        enabled=True,
        required_env_vars=["PUBLIC_PAYPAL_CLIENT_ID", "PAYPAL_CLIENT_SECRET"],
        supported_currencies=["USD", "EUR", "GBP", "CAD", "AUD", "JPY"],
        supports_immediate_capture=True,
        requires_redirect=False,
        sort_order=1,
    ),
    PaymentMethodId.STRIPE: PaymentMethodConfig(
        id=PaymentMethodId.STRIPE,
        name="Credit Card",
        description="Pay with Visa, Mastercard, or American Express",
        enabled=True,
        required_env_vars=[
            "STRIPE_SECRET_KEY",
            "PUBLIC_STRIPE_PUBLISHABLE_KEY",
        ],
        supported_currencies=["USD", "EUR", "GBP", "CAD", "AUD", "JPY", "CNY"],
        supports_immediate_capture=True,
        requires_redirect=True,
        sort_order=2,
    ),
    PaymentMethodId.BANK_TRANSFER: PaymentMethodConfig(
        id=PaymentMethodId.BANK_TRANSFER,
        name="Bank Transfer",
        description="Pay via direct bank transfer (manual confirmation)",
        enabled=True,
        required_env_vars=["ENABLE_BANK_TRANSFER", "BANK_ACCOUNT_NUMBER"],
        supported_currencies=["USD", "EUR", "GBP"],
        supports_immediate_capture=False,
        requires_redirect=False,
        sort_order=3,
    ),
    PaymentMethodId.COD: PaymentMethodConfig(
        id=PaymentMethodId.COD,
        name="Cash on Delivery",
        description="Pay when your order arrives",
        enabled=False,
        required_env_vars=["ENABLE_COD"],
        supported_currencies=["USD"],
        supports_immediate_capture=False,
        requires_redirect=False,
        sort_order=4,
    ),
}


class PaymentRegistry:
  """Resolves payment providers by method id."""

  def __init__(self, providers: Dict[str, PaymentProvider]):
    self._providers = {PaymentMethodId(k): v for k, v in providers.items()}

  @classmethod
  def from_flags(cls) -> "PaymentRegistry":
    return cls({
        PaymentMethodId.PAYPAL: PayPalProvider.from_flags(),
        PaymentMethodId.STRIPE: StripeProvider.from_flags(),
        PaymentMethodId.BANK_TRANSFER: BankTransferProvider.from_flags(),
    })

  def get(self, method_id: str) -> Optional[PaymentProvider]:
    try:
      return self._providers.get(PaymentMethodId(method_id))
    except ValueError:
      return None

  def is_available(self, method_id: str) -> bool:
    try:
      method = PaymentMethodId(method_id)
    except ValueError:
      return False
    provider = self._providers.get(method)
    return bool(
        PAYMENT_METHOD_CONFIGS[method].enabled
        and provider
        and provider.is_configured()
    )

  def supports_immediate_capture(self, method_id: str) -> bool:
    """Returns False for methods only an admin may mark as paid."""
    try:
      method = PaymentMethodId(method_id)
    except ValueError:
      return False
    return PAYMENT_METHOD_CONFIGS[method].supports_immediate_capture

  def available_methods(self) -> List[PaymentMethodConfig]:
    """Returns enabled and configured methods in display order."""
    methods = [
        cfg for cfg in PAYMENT_METHOD_CONFIGS.values()
        if self.is_available(cfg.id)
    ]
    return sorted(methods, key=lambda cfg: cfg.sort_order)
