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

"""Integration tests for the checkout flow of the storefront server."""

from decimal import Decimal

from absl.testing import absltest
from absl.testing import flagsaver
import db
from enums import PaymentMethodId
from payments.bank_transfer import BankTransferProvider
from payments.base import CapturePaymentResult
from payments.base import CreatePaymentResult
from payments.registry import PaymentRegistry
from services.order_service import OrderService
import testing_utils


class CreateOrderTest(testing_utils.StorefrontTestCase):
  """Tests for POST /api/checkout/create-order."""

  def test_create_order_persists_pending_order(self):
    created = self.create_order()

    self.assertTrue(created["success"])
    self.assertEqual(created["paymentMethod"], "paypal")
    self.assertEqual(created["paypalOrderId"], f"PP-{created['orderNumber']}")
    self.assertRegex(created["orderNumber"], r"^BP-\d{8}-[0-9A-F]{6}$")
    self.assertEqual(created["total"], 26.95)
    self.assertEqual(created["priceWarnings"], [])

    order = self.get_order(created["orderId"])
    self.assertEqual(order.status, "pending")
    self.assertEqual(order.payment_status, "unpaid")
    self.assertEqual(order.email, "ada@example.com")
    self.assertEqual(order.subtotal, Decimal("20.00"))
    self.assertEqual(order.shipping_cost, Decimal("6.95"))
    self.assertEqual(order.tax, Decimal("0.00"))
    self.assertEqual(order.total, Decimal("26.95"))
    self.assertEqual(order.paypal_order_id, created["paypalOrderId"])
    self.assertEqual(order.shipping_address["full_name"], "Ada Lovelace")
    self.assertEqual(order.shipping_address["country"], "US")
    self.assertEqual(self.count(db.OrderItem), 1)

    sent = self.provider.created[0]
    self.assertEqual(sent.total, Decimal("26.95"))
    self.assertEqual(sent.items[0].sku, "X-BLU-M")
    self.assertEqual(sent.items[0].unit_price, Decimal("20.00"))

  def test_empty_cart_is_rejected_without_creating_an_order(self):
    response = self.client.post(
        "/api/checkout/create-order", json=self.checkout_body(items=[])
    )

    self.assertEqual(response.status_code, 400)
    self.assertEqual(response.json()["error"], "Cart is empty")
    self.assertEqual(self.count(db.Order), 0)
    self.assertEqual(self.provider.created, [])

  def test_missing_shipping_fields_are_rejected(self):
    body = self.checkout_body()
    body["shipping"]["address1"] = ""

    response = self.client.post("/api/checkout/create-order", json=body)

    self.assertEqual(response.status_code, 400)
    self.assertEqual(
        response.json()["error"], "Missing required shipping fields"
    )
    self.assertEqual(self.count(db.Order), 0)

  def test_unknown_product_is_rejected(self):
    response = self.client.post(
        "/api/checkout/create-order",
        json=self.checkout_body(
            items=[self.cart_line(sku="NOPE-1", product_slug="nope")]
        ),
    )

    self.assertEqual(response.status_code, 400)
    self.assertEqual(response.json()["error"], "Product not found: nope")
    self.assertEqual(self.count(db.Order), 0)

  def test_client_prices_are_replaced_by_catalog_prices(self):
    created = self.create_order(
        items=[self.cart_line(sku="X-RED-M", variant="Red", unit_price=999)]
    )

    self.assertLen(created["priceWarnings"], 1)
    self.assertIn("Price mismatch", created["priceWarnings"][0])
    order = self.get_order(created["orderId"])
    self.assertEqual(order.subtotal, Decimal("25.00"))
    self.assertEqual(order.total, Decimal("31.95"))

  def test_valid_coupon_is_applied(self):
    created = self.create_order(couponCode="save10")

    order = self.get_order(created["orderId"])
    self.assertEqual(order.coupon_code, "SAVE10")
    self.assertEqual(order.discount, Decimal("2.00"))
    self.assertEqual(order.total, Decimal("24.95"))
    # Usage is only counted once the payment is captured.
    self.assertEqual(self.get_coupon("SAVE10").used_count, 0)

  def test_invalid_coupon_is_ignored(self):
    created = self.create_order(couponCode="NOT-A-CODE")

    order = self.get_order(created["orderId"])
    self.assertIsNone(order.coupon_code)
    self.assertEqual(order.discount, Decimal("0.00"))
    self.assertEqual(order.total, Decimal("26.95"))

  def test_free_shipping_over_threshold(self):
    created = self.create_order(items=[self.cart_line(quantity=4)])

    order = self.get_order(created["orderId"])
    self.assertEqual(order.subtotal, Decimal("80.00"))
    self.assertEqual(order.shipping_cost, Decimal("0.00"))
    self.assertEqual(order.total, Decimal("80.00"))

  def test_unavailable_payment_method_is_rejected(self):
    response = self.client.post(
        "/api/checkout/create-order",
        json=self.checkout_body(paymentMethod="bank_transfer"),
    )

    self.assertEqual(response.status_code, 400)
    self.assertEqual(self.count(db.Order), 0)

  def test_unconfigured_provider_is_rejected(self):
    self.provider.configured = False

    response = self.client.post(
        "/api/checkout/create-order", json=self.checkout_body()
    )

    self.assertEqual(response.status_code, 400)
    self.assertEqual(self.count(db.Order), 0)

  def test_provider_failure_cancels_the_order(self):
    self.provider.create_result = CreatePaymentResult(
        success=False, error="INTERNAL_SERVICE_ERROR"
    )

    response = self.client.post(
        "/api/checkout/create-order", json=self.checkout_body()
    )

    self.assertEqual(response.status_code, 503)
    body = response.json()
    self.assertEqual(body["error"], "Payment provider unavailable")
    self.assertEqual(body["code"], "PAYMENT_PROVIDER_UNAVAILABLE")
    self.assertNotIn("INTERNAL_SERVICE_ERROR", response.text)
    order = self.get_order(body["orderId"])
    self.assertEqual(order.status, "cancelled")
    self.assertEqual(order.payment_status, "unpaid")
    self.assertIn("INTERNAL_SERVICE_ERROR", order.internal_note)


class CaptureOrderTest(testing_utils.StorefrontTestCase):
  """Tests for POST /api/checkout/capture-order."""

  def test_capture_marks_order_paid(self):
    created = self.create_order()

    response = self.capture(created)

    self.assertEqual(response.status_code, 200, response.text)
    payload = response.json()
    self.assertEqual(
        payload,
        {
            "success": True,
            "orderId": created["orderId"],
            "orderNumber": created["orderNumber"],
            "paypalOrderId": created["paypalOrderId"],
            "captureId": f"CAP-{created['paypalOrderId']}",
            "total": 26.95,
            "email": "ada@example.com",
        },
    )
    order = self.get_order(created["orderId"])
    self.assertEqual(order.status, "processing")
    self.assertEqual(order.payment_status, "paid")
    self.assertIsNotNone(order.paid_at)

    payments = self.in_transactions(
        lambda s: db.get_payments(s, created["orderId"])
    )
    self.assertLen(payments, 1)
    self.assertEqual(payments[0].direction, "in")
    self.assertEqual(payments[0].amount, Decimal("26.95"))
    self.assertEqual(payments[0].transaction_id, payload["captureId"])
    self.assertEqual(
        self.email_service.sent,
        [("ada@example.com", f"Order Confirmed - {created['orderNumber']}")],
    )

  def test_repeated_capture_is_idempotent(self):
    created = self.create_order(couponCode="ONCE5")

    first = self.capture(created)
    second = self.capture(created)

    self.assertEqual(first.status_code, 200)
    self.assertEqual(second.status_code, 200)
    self.assertEqual(first.json(), second.json())
    self.assertLen(self.provider.captured, 1)
    self.assertEqual(
        self.count(db.Payment, db.Payment.order_id == created["orderId"]), 1
    )
    self.assertEqual(self.get_coupon("ONCE5").used_count, 1)
    self.assertLen(self.email_service.sent, 1)

  def test_mismatched_external_id_is_not_found(self):
    created = self.create_order()

    response = self.client.post(
        "/api/checkout/capture-order",
        json={"orderId": created["orderId"], "paypalOrderId": "PP-OTHER"},
    )

    self.assertEqual(response.status_code, 404)
    order = self.get_order(created["orderId"])
    self.assertEqual(order.status, "pending")
    self.assertEqual(order.payment_status, "unpaid")
    self.assertEqual(self.provider.captured, [])
    self.assertEqual(self.count(db.Payment), 0)

  def test_missing_ids_are_rejected(self):
    response = self.client.post(
        "/api/checkout/capture-order", json={"orderId": "abc"}
    )

    self.assertEqual(response.status_code, 400)

  def test_failed_capture_cancels_the_order(self):
    created = self.create_order()
    self.provider.capture_result = CapturePaymentResult(
        success=False, error="INSTRUMENT_DECLINED"
    )

    response = self.capture(created)

    self.assertEqual(response.status_code, 500)
    self.assertEqual(response.json()["error"], "Payment capture failed")
    order = self.get_order(created["orderId"])
    self.assertEqual(order.status, "cancelled")
    self.assertEqual(order.payment_status, "unpaid")
    self.assertIn("INSTRUMENT_DECLINED", order.internal_note)

    # A cancelled order cannot be captured afterwards.
    self.provider.capture_result = None
    retry = self.capture(created)
    self.assertEqual(retry.status_code, 409)
    self.assertEqual(self.count(db.Payment), 0)

  def test_failed_capture_after_concurrent_payment_reports_success(self):
    created = self.create_order()

    async def capture_lost_race(external_id):
      del external_id  # Unused.
      async with self.transactions_session_factory() as session:
        await OrderService(session).mark_paid(created["orderId"], "CAP-WEBHOOK")
        await session.commit()
      return CapturePaymentResult(success=False, error="ORDER_ALREADY_CAPTURED")

    self.provider.capture_payment = capture_lost_race

    response = self.capture(created)

    self.assertEqual(response.status_code, 200, response.text)
    self.assertEqual(response.json()["captureId"], "CAP-WEBHOOK")
    order = self.get_order(created["orderId"])
    self.assertEqual(order.status, "processing")
    self.assertEqual(order.payment_status, "paid")

  def test_capture_clears_the_buyers_cart(self):
    add = self.client.post("/api/cart", json=self.cart_line())
    self.assertEqual(add.status_code, 200)
    created = self.create_order()

    self.capture(created)

    cart = self.client.get("/api/cart")
    self.assertEqual(cart.json()["items"], [])


class CheckoutInfoTest(testing_utils.StorefrontTestCase):
  """Tests for payment method, shipping, coupon and lookup endpoints."""

  def test_payment_methods_lists_configured_providers(self):
    response = self.client.get("/api/checkout/payment-methods")

    self.assertEqual(response.status_code, 200)
    methods = response.json()["methods"]
    self.assertEqual([m["id"] for m in methods], ["paypal"])

  def test_shipping_quote(self):
    response = self.client.post(
        "/api/checkout/shipping", json={"countryCode": "us", "subtotal": 50}
    )

    self.assertEqual(response.status_code, 200)
    self.assertEqual(response.json()["cost"], 6.95)
    self.assertFalse(response.json()["isFree"])

    free = self.client.post(
        "/api/checkout/shipping", json={"countryCode": "US", "subtotal": 75}
    )
    self.assertTrue(free.json()["isFree"])
    self.assertEqual(free.json()["cost"], 0.0)

  def test_shipping_quote_for_unserved_country(self):
    response = self.client.post(
        "/api/checkout/shipping", json={"countryCode": "JP", "subtotal": 50}
    )

    self.assertEqual(response.status_code, 400)

  def test_shipping_options(self):
    zones = self.client.get("/api/checkout/shipping").json()["zones"]
    self.assertEqual([z["id"] for z in zones], ["domestic", "canada"])

    country = self.client.get("/api/checkout/shipping?country=ca").json()
    self.assertEqual(country["country"], "CA")
    self.assertTrue(country["shippingAvailable"])

  def test_coupon_validation(self):
    response = self.client.post(
        "/api/coupons/validate", json={"code": "SAVE10", "subtotal": 50}
    )

    self.assertEqual(response.status_code, 200)
    self.assertEqual(
        response.json(),
        {
            "valid": True,
            "discount": 5.0,
            "type": "percentage",
            "value": 10.0,
            "code": "SAVE10",
        },
    )

  def test_coupon_validation_failures(self):
    missing = self.client.post("/api/coupons/validate", json={"code": "SAVE10"})
    self.assertEqual(missing.status_code, 400)
    self.assertEqual(
        missing.json(), {"valid": False, "error": "Missing code or subtotal"}
    )

    unknown = self.client.post(
        "/api/coupons/validate", json={"code": "NOPE", "subtotal": 50}
    )
    self.assertEqual(unknown.status_code, 200)
    self.assertEqual(
        unknown.json(), {"valid": False, "error": "Invalid coupon code"}
    )

  def test_order_lookup(self):
    created = self.create_order()

    response = self.client.post(
        "/api/order-lookup",
        json={
            "order_number": created["orderNumber"],
            "email": "ADA@example.com",
        },
    )

    self.assertEqual(response.status_code, 200)
    body = response.json()
    self.assertEqual(body["order"]["order_number"], created["orderNumber"])
    self.assertNotIn("internal_note", body["order"])
    self.assertNotIn("email", body["order"])
    self.assertEqual(body["items"][0]["sku"], "X-BLU-M")

  def test_order_lookup_requires_matching_email(self):
    created = self.create_order()

    response = self.client.post(
        "/api/order-lookup",
        json={"order_number": created["orderNumber"], "email": "eve@x.com"},
    )

    self.assertEqual(response.status_code, 404)
    self.assertEqual(response.json()["error"], "not_found")

  def test_visitor_cookie_is_issued(self):
    response = self.client.get("/api/cart")

    self.assertEqual(response.status_code, 200)
    self.assertIn("visitor_id", response.cookies)
    self.assertEqual(
        response.json()["visitorId"], response.cookies["visitor_id"]
    )

class BankTransferCheckoutTest(testing_utils.StorefrontTestCase):
  """Tests for orders paid by manual bank transfer."""

  def setUp(self):
    super().setUp()
    self.enter_context(
        flagsaver.flagsaver(admin_api_key=testing_utils.ADMIN_KEY)
    )
    self.registry = PaymentRegistry({
        PaymentMethodId.PAYPAL: self.provider,
        PaymentMethodId.BANK_TRANSFER: BankTransferProvider(
            enabled=True, bank_name="First Bank", account_number="12345"
        ),
    })

  def test_create_returns_bank_details(self):
    created = self.create_order(paymentMethod="bank_transfer")

    number = created["orderNumber"]
    self.assertEqual(created["paypalOrderId"], f"BANK-{number}")
    details = created["metadata"]["bankDetails"]
    self.assertEqual(details["bankName"], "First Bank")
    self.assertEqual(details["reference"], number)
    self.assertEqual(self.provider.created, [])

  def test_checkout_cannot_capture_bank_transfer(self):
    created = self.create_order(
        paymentMethod="bank_transfer", couponCode="ONCE5"
    )

    response = self.capture(created)

    self.assertEqual(response.status_code, 409)
    self.assertEqual(response.json()["code"], "INVALID_TRANSITION")
    order = self.get_order(created["orderId"])
    self.assertEqual(order.status, "pending")
    self.assertEqual(order.payment_status, "unpaid")
    self.assertEqual(self.count(db.Payment), 0)
    self.assertEqual(self.get_coupon("ONCE5").used_count, 0)
    self.assertEqual(self.email_service.sent, [])

  def test_admin_confirms_bank_transfer(self):
    created = self.create_order(
        paymentMethod="bank_transfer", couponCode="ONCE5"
    )

    response = self.client.post(
        f"/api/admin/orders/{created['orderId']}/confirm-payment",
        headers={"X-Admin-Key": testing_utils.ADMIN_KEY},
    )

    self.assertEqual(response.status_code, 200, response.text)
    order = self.get_order(created["orderId"])
    self.assertEqual(order.status, "processing")
    self.assertEqual(order.payment_status, "paid")
    self.assertEqual(order.paypal_capture_id, created["paypalOrderId"])
    payments = self.in_transactions(
        lambda s: db.get_payments(s, created["orderId"])
    )
    self.assertEqual(
        [(p.transaction_id, p.amount) for p in payments],
        [(created["paypalOrderId"], Decimal("21.95"))],
    )
    self.assertEqual(self.get_coupon("ONCE5").used_count, 1)
    self.assertEqual(
        self.email_service.sent,
        [("ada@example.com", f"Order Confirmed - {created['orderNumber']}")],
    )

    # Once confirmed, the storefront's capture call reports the payment.
    capture = self.capture(created)
    self.assertEqual(capture.status_code, 200)
    self.assertEqual(capture.json()["captureId"], created["paypalOrderId"])


if __name__ == "__main__":
  absltest.main()
