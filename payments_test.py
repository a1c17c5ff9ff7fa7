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

"""Tests for the bank transfer and Stripe providers and the registry."""

import asyncio
from decimal import Decimal

from absl.testing import absltest
from absl.testing import flagsaver
from enums import PaymentMethodId
from payments.bank_transfer import BankTransferProvider
from payments.base import PaymentItem
from payments.base import PaymentOrderData
from payments.registry import PaymentRegistry
from payments.stripe import StripeProvider


def order_data():
  return PaymentOrderData(
      order_id="order-1",
      order_number="BP-20260301-ABCDEF",
      email="ada@example.com",
      items=[
          PaymentItem(
              name="Posing Pillow",
              sku="X-BLU-M",
              quantity=1,
              unit_price=Decimal("20"),
          )
      ],
      subtotal=Decimal("20"),
      shipping_cost=Decimal("6.95"),
      tax=Decimal("0"),
      discount=Decimal("0"),
      total=Decimal("26.95"),
  )


class BankTransferProviderTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.provider = BankTransferProvider(
        enabled=True,
        bank_name="First Bank",
        account_name="Baby Props LLC",
        account_number="12345",
        iban="DE89370400440532013000",
        instructions="Include your order number.",
    )

  def test_is_configured(self):
    self.assertTrue(self.provider.is_configured())
    self.assertFalse(
        BankTransferProvider(
            enabled=False, bank_name="First Bank", account_number="12345"
        ).is_configured()
    )
    self.assertFalse(
        BankTransferProvider(enabled=True, account_number="12345")
        .is_configured()
    )
    self.assertFalse(
        BankTransferProvider(enabled=True, bank_name="First Bank")
        .is_configured()
    )

  @flagsaver.flagsaver(
      enable_bank_transfer=True,
      bank_name="Flag Bank",
      bank_account_number="999",
  )
  def test_from_flags(self):
    provider = BankTransferProvider.from_flags()

    self.assertTrue(provider.is_configured())
    self.assertEqual(provider.bank_name, "Flag Bank")
    self.assertEqual(provider.account_number, "999")

  @flagsaver.flagsaver(
      enable_bank_transfer=False,
      bank_name="Flag Bank",
      bank_account_number="999",
  )
  def test_from_flags_disabled(self):
    self.assertFalse(BankTransferProvider.from_flags().is_configured())

  def test_create_payment(self):
    result = asyncio.run(self.provider.create_payment(order_data()))

    self.assertTrue(result.success)
    self.assertEqual(result.external_payment_id, "BANK-BP-20260301-ABCDEF")
    metadata = result.metadata
    self.assertEqual(metadata["type"], "bank_transfer")
    self.assertEqual(metadata["amount"], 26.95)
    self.assertEqual(metadata["currency"], "USD")
    self.assertEqual(
        metadata["instructions"],
        "Please transfer USD 26.95 to the bank account below. Use order"
        " number BP-20260301-ABCDEF as reference.",
    )
    self.assertEqual(
        metadata["bankDetails"],
        {
            "bankName": "First Bank",
            "accountName": "Baby Props LLC",
            "accountNumber": "12345",
            "reference": "BP-20260301-ABCDEF",
            "instructions": "Include your order number.",
            "iban": "DE89370400440532013000",
        },
    )

  def test_create_payment_unconfigured(self):
    self.provider.enabled = False

    result = asyncio.run(self.provider.create_payment(order_data()))

    self.assertFalse(result.success)
    self.assertIsNone(result.external_payment_id)

  def test_capture_is_a_manual_confirmation(self):
    result = asyncio.run(
        self.provider.capture_payment("BANK-BP-20260301-ABCDEF")
    )

    self.assertTrue(result.success)
    self.assertEqual(result.transaction_id, "BANK-BP-20260301-ABCDEF")
    self.assertIsNone(result.amount)

  def test_refund_is_recorded_manually(self):
    partial = asyncio.run(
        self.provider.refund_payment("BANK-BP-1", Decimal("10"))
    )
    full = asyncio.run(self.provider.refund_payment("BANK-BP-1"))

    self.assertTrue(partial.success)
    self.assertEqual(partial.refund_id, "REFUND-BANK-BP-1")
    self.assertEqual(partial.amount, Decimal("10.00"))
    self.assertEqual(partial.status, "completed")
    self.assertTrue(full.success)
    self.assertIsNone(full.amount)


class StripeProviderTest(absltest.TestCase):

  def test_is_configured(self):
    self.assertTrue(StripeProvider("sk_test", "pk_test").is_configured())
    self.assertFalse(StripeProvider("sk_test", None).is_configured())
    self.assertFalse(StripeProvider().is_configured())

  def test_every_operation_is_not_implemented(self):
    provider = StripeProvider("sk_test", "pk_test")

    results = [
        asyncio.run(provider.create_payment(order_data())),
        asyncio.run(provider.capture_payment("pi_1")),
        asyncio.run(provider.refund_payment("ch_1", Decimal("5"))),
    ]

    for result in results:
      self.assertFalse(result.success)
      self.assertEqual(result.error, "not implemented")


class PaymentRegistryTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.bank = BankTransferProvider(
        enabled=True, bank_name="First Bank", account_number="12345"
    )
    self.registry = PaymentRegistry({
        PaymentMethodId.STRIPE: StripeProvider(),
        PaymentMethodId.BANK_TRANSFER: self.bank,
    })

  def test_available_methods(self):
    self.assertEqual(
        [m.id for m in self.registry.available_methods()],
        [PaymentMethodId.BANK_TRANSFER],
    )
    self.assertFalse(self.registry.is_available("stripe"))
    self.assertFalse(self.registry.is_available("cod"))
    self.assertFalse(self.registry.is_available("bitcoin"))

  def test_get(self):
    self.assertIs(self.registry.get("bank_transfer"), self.bank)
    self.assertIsNone(self.registry.get("paypal"))
    self.assertIsNone(self.registry.get("bitcoin"))

  def test_supports_immediate_capture(self):
    self.assertTrue(self.registry.supports_immediate_capture("paypal"))
    self.assertFalse(
        self.registry.supports_immediate_capture("bank_transfer")
    )
    self.assertFalse(self.registry.supports_immediate_capture("cod"))
    self.assertFalse(self.registry.supports_immediate_capture("bitcoin"))


if __name__ == "__main__":
  absltest.main()
