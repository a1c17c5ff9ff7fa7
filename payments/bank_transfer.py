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

"""Manual bank transfer payment provider.

No external API is involved. Creating a payment hands the customer the bank
details, and "capture" is an admin confirming that the money arrived.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

import config
from enums import PaymentMethodId
from money import as_float
from money import to_money
from payments.base import CapturePaymentResult
from payments.base import CreatePaymentResult
from payments.base import PaymentOrderData
from payments.base import PaymentProvider
from payments.base import RefundPaymentResult


class BankTransferProvider(PaymentProvider):
  """Shows bank details and waits for an admin to confirm the transfer."""

  method_id = PaymentMethodId.BANK_TRANSFER

  def __init__(
      self,
      enabled: bool = False,
      bank_name: str = "",
      account_name: str = "",
      account_number: str = "",
      routing_number: str = "",
      swift_code: str = "",
      iban: str = "",
      instructions: str = "",
  ):
    self.enabled = enabled
    self.bank_name = bank_name
    self.account_name = account_name
    self.account_number = account_number
    self.routing_number = routing_number
    self.swift_code = swift_code
    self.iban = iban
    self.instructions = instructions

  @classmethod
  def from_flags(cls) -> "BankTransferProvider":
    return cls(
        enabled=config.get("enable_bank_transfer"),
        bank_name=config.get("bank_name"),
        account_name=config.get("bank_account_name"),
        account_number=config.get("bank_account_number"),
        routing_number=config.get("bank_routing_number"),
        swift_code=config.get("bank_swift_code"),
        iban=config.get("bank_iban"),
        instructions=config.get("bank_transfer_instructions"),
    )

  def is_configured(self) -> bool:
    return bool(self.enabled and self.bank_name and self.account_number)

  def bank_details(self, order_number: str) -> Dict[str, Any]:
    details = {
        "bankName": self.bank_name,
        "accountName": self.account_name,
        "accountNumber": self.account_number,
        "reference": order_number,
        "instructions": self.instructions,
    }
    # Optional fields are omitted rather than sent empty.
    if self.routing_number:
      details["routingNumber"] = self.routing_number
    if self.swift_code:
      details["swiftCode"] = self.swift_code
    if self.iban:
      details["iban"] = self.iban
    return details

  async def create_payment(self, data: PaymentOrderData) -> CreatePaymentResult:
    if not self.is_configured():
      return CreatePaymentResult(
          success=False, error="Bank transfer is not configured"
      )

    total = to_money(data.total)
    return CreatePaymentResult(
        success=True,
        external_payment_id=f"BANK-{data.order_number}",
        metadata={
            "type": "bank_transfer",
            "bankDetails": self.bank_details(data.order_number),
            "amount": as_float(total),
            "currency": data.currency,
            "instructions": (
                f"Please transfer {data.currency} {total:.2f} to the bank"
                " account below. Use order number"
                f" {data.order_number} as reference."
            ),
        },
    )

  async def capture_payment(self, external_id: str) -> CapturePaymentResult:
    return CapturePaymentResult(
        success=True,
        transaction_id=external_id,
        raw_response={"note": "Manually confirmed by admin"},
    )

  async def refund_payment(
      self,
      transaction_id: str,
      amount: Optional[Decimal] = None,
      request_id: Optional[str] = None,
  ) -> RefundPaymentResult:
    del request_id  # Unused.
    # The money is returned by hand; this only records the refund.
    return RefundPaymentResult(
        success=True,
        refund_id=f"REFUND-{transaction_id}",
        amount=to_money(amount) if amount is not None else None,
    )
