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

"""Tests for the PayPal provider against a mocked PayPal API."""

import asyncio
from decimal import Decimal
import json

from absl.testing import absltest
import httpx
from payments.base import PaymentAddress
from payments.base import PaymentItem
from payments.base import PaymentOrderData
from payments.paypal import parse_order_capture
from payments.paypal import PayPalProvider

SIGNATURE_HEADERS = {
    "PAYPAL-AUTH-ALGO": "SHA256withRSA",
    "PAYPAL-CERT-URL": "https://api.paypal.com/cert.pem",
    "PAYPAL-TRANSMISSION-ID": "tx-1",
    "PAYPAL-TRANSMISSION-SIG": "sig",
    "PAYPAL-TRANSMISSION-TIME": "2026-03-01T12:00:00Z",
}


def completed_order(capture_id="CAP-1", value="26.95"):
  return {
      "id": "PP-1",
      "status": "COMPLETED",
      "payer": {
          "email_address": "buyer@example.com",
          "name": {"given_name": "Ada", "surname": "Lovelace"},
      },
      "purchase_units": [{
          "payments": {
              "captures": [{
                  "id": capture_id,
                  "status": "COMPLETED",
                  "amount": {"currency_code": "USD", "value": value},
              }]
          }
      }],
  }


class FakePayPalApi:
  """Routes mocked PayPal requests and records what was sent."""

  def __init__(self):
    self.requests = []
    # path -> (status code, JSON body)
    self.routes = {
        "/v1/oauth2/token": (
            200,
            {"access_token": "token-1", "expires_in": 32400},
        ),
    }

  def handler(self, request: httpx.Request) -> httpx.Response:
    self.requests.append(request)
    status, body = self.routes.get(
        request.url.path, (404, {"message": "RESOURCE_NOT_FOUND"})
    )
    return httpx.Response(status, json=body)

  def paths(self):
    return [r.url.path for r in self.requests]

  def body(self, path):
    request = next(r for r in self.requests if r.url.path == path)
    return json.loads(request.content)


class PayPalProviderTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.api = FakePayPalApi()
    self.provider = PayPalProvider(
        client_id="client",
        client_secret="secret",
        sandbox=True,
        webhook_id="WH-1",
        site_url="https://shop.example.com/",
        brand_name="Shop",
        transport=httpx.MockTransport(self.api.handler),
    )

  def order_data(self):
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
        shipping_address=PaymentAddress(
            first_name="Ada",
            last_name="Lovelace",
            address1="1 Main St",
            city="Springfield",
            state="IL",
            postcode="62701",
            country="US",
        ),
    )

  def test_create_payment(self):
    self.api.routes["/v2/checkout/orders"] = (
        201, {"id": "PP-1", "status": "CREATED"}
    )

    result = asyncio.run(self.provider.create_payment(self.order_data()))

    self.assertTrue(result.success)
    self.assertEqual(result.external_payment_id, "PP-1")
    self.assertEqual(
        self.api.paths(), ["/v1/oauth2/token", "/v2/checkout/orders"]
    )
    create = self.api.requests[1]
    self.assertEqual(create.url.host, "api-m.sandbox.paypal.com")
    self.assertEqual(create.headers["Authorization"], "Bearer token-1")
    self.assertEqual(create.headers["PayPal-Request-Id"], "BP-20260301-ABCDEF")
    body = self.api.body("/v2/checkout/orders")
    self.assertEqual(body["intent"], "CAPTURE")
    unit = body["purchase_units"][0]
    self.assertEqual(unit["reference_id"], "BP-20260301-ABCDEF")
    self.assertEqual(unit["amount"]["value"], "26.95")
    self.assertEqual(unit["amount"]["breakdown"]["shipping"]["value"], "6.95")
    self.assertEqual(unit["items"][0]["unit_amount"]["value"], "20.00")
    self.assertEqual(unit["shipping"]["address"]["country_code"], "US")
    self.assertEqual(
        body["application_context"]["return_url"],
        "https://shop.example.com/checkout/return",
    )

  def test_create_payment_reports_api_errors(self):
    self.api.routes["/v2/checkout/orders"] = (
        422, {"message": "UNPROCESSABLE_ENTITY"}
    )

    result = asyncio.run(self.provider.create_payment(self.order_data()))

    self.assertFalse(result.success)
    self.assertEqual(result.error, "UNPROCESSABLE_ENTITY")

  def test_failed_authentication(self):
    self.api.routes["/v1/oauth2/token"] = (
        401, {"error_description": "Client Authentication failed"}
    )

    result = asyncio.run(self.provider.create_payment(self.order_data()))

    self.assertFalse(result.success)
    self.assertIn("Client Authentication failed", result.error)

  def test_network_errors_become_failed_results(self):

    def unreachable(request):
      raise httpx.ConnectError("connection refused", request=request)

    provider = PayPalProvider(
        client_id="client",
        client_secret="secret",
        transport=httpx.MockTransport(unreachable),
    )

    result = asyncio.run(provider.capture_payment("PP-1"))

    self.assertFalse(result.success)
    self.assertIn("connection refused", result.error)

  def test_unconfigured_provider_makes_no_calls(self):
    provider = PayPalProvider(
        client_id=None,
        client_secret=None,
        transport=httpx.MockTransport(self.api.handler),
    )

    self.assertFalse(provider.is_configured())
    result = asyncio.run(provider.create_payment(self.order_data()))
    self.assertFalse(result.success)
    self.assertEqual(self.api.requests, [])

  def test_capture_payment(self):
    self.api.routes["/v2/checkout/orders/PP-1/capture"] = (
        201, completed_order()
    )

    result = asyncio.run(self.provider.capture_payment("PP-1"))

    self.assertTrue(result.success)
    self.assertEqual(result.transaction_id, "CAP-1")
    self.assertEqual(result.amount, Decimal("26.95"))
    self.assertEqual(result.currency, "USD")
    self.assertEqual(result.payer_email, "buyer@example.com")
    self.assertEqual(result.payer_name, "Ada Lovelace")

  def test_access_token_is_reused(self):
    self.api.routes["/v2/checkout/orders/PP-1/capture"] = (
        201, completed_order()
    )

    async def capture_twice():
      await self.provider.capture_payment("PP-1")
      await self.provider.capture_payment("PP-1")

    asyncio.run(capture_twice())

    self.assertEqual(self.api.paths().count("/v1/oauth2/token"), 1)

  def test_refund_payment(self):
    self.api.routes["/v2/payments/captures/CAP-1/refund"] = (
        201,
        {
            "id": "REF-1",
            "status": "COMPLETED",
            "amount": {"currency_code": "USD", "value": "10.00"},
        },
    )

    result = asyncio.run(
        self.provider.refund_payment("CAP-1", Decimal("10"))
    )

    self.assertTrue(result.success)
    self.assertEqual(result.refund_id, "REF-1")
    self.assertEqual(result.amount, Decimal("10.00"))
    self.assertEqual(result.status, "completed")
    self.assertNotIn("PayPal-Request-Id", self.api.requests[-1].headers)
    body = self.api.body("/v2/payments/captures/CAP-1/refund")
    self.assertEqual(
        body, {"amount": {"currency_code": "USD", "value": "10.00"}}
    )

  def test_pending_full_refund_is_accepted(self):
    self.api.routes["/v2/payments/captures/CAP-1/refund"] = (
        201, {"id": "REF-2", "status": "PENDING"}
    )

    result = asyncio.run(
        self.provider.refund_payment("CAP-1", request_id="BP-1-R1")
    )

    self.assertTrue(result.success)
    self.assertEqual(result.refund_id, "REF-2")
    self.assertEqual(result.status, "pending")
    self.assertIsNone(result.amount)
    self.assertEqual(self.api.body("/v2/payments/captures/CAP-1/refund"), {})
    self.assertEqual(
        self.api.requests[-1].headers["PayPal-Request-Id"], "BP-1-R1"
    )

  def test_rejected_refund_status(self):
    self.api.routes["/v2/payments/captures/CAP-1/refund"] = (
        201, {"id": "REF-3", "status": "CANCELLED"}
    )

    result = asyncio.run(self.provider.refund_payment("CAP-1"))

    self.assertFalse(result.success)
    self.assertEqual(result.error, "Refund status CANCELLED")

  def test_verify_webhook(self):
    self.api.routes["/v1/notifications/verify-webhook-signature"] = (
        200, {"verification_status": "SUCCESS"}
    )
    event = {"id": "WH-EVENT-1", "event_type": "PAYMENT.CAPTURE.COMPLETED"}

    self.assertTrue(
        asyncio.run(self.provider.verify_webhook(SIGNATURE_HEADERS, event))
    )
    body = self.api.body("/v1/notifications/verify-webhook-signature")
    self.assertEqual(body["webhook_id"], "WH-1")
    self.assertEqual(body["transmission_id"], "tx-1")
    self.assertEqual(body["webhook_event"], event)

  def test_verify_webhook_failures(self):
    self.api.routes["/v1/notifications/verify-webhook-signature"] = (
        200, {"verification_status": "FAILURE"}
    )
    headers = dict(SIGNATURE_HEADERS)

    self.assertFalse(asyncio.run(self.provider.verify_webhook(headers, {})))

    del headers["PAYPAL-TRANSMISSION-SIG"]
    self.assertFalse(asyncio.run(self.provider.verify_webhook(headers, {})))

    self.provider.webhook_id = None
    self.assertFalse(
        asyncio.run(self.provider.verify_webhook(SIGNATURE_HEADERS, {}))
    )
    # Only the first attempt reached the verification API.
    self.assertEqual(
        self.api.paths().count("/v1/notifications/verify-webhook-signature"),
        1,
    )


class ParseOrderCaptureTest(absltest.TestCase):

  def test_incomplete_order(self):
    order = completed_order()
    order["status"] = "PAYER_ACTION_REQUIRED"

    result = parse_order_capture(order)

    self.assertFalse(result.success)
    self.assertEqual(result.error, "Capture status PAYER_ACTION_REQUIRED")

  def test_missing_capture_details(self):
    result = parse_order_capture({"id": "PP-1", "status": "COMPLETED"})

    self.assertTrue(result.success)
    self.assertIsNone(result.transaction_id)
    self.assertIsNone(result.amount)
    self.assertIsNone(result.payer_email)


if __name__ == "__main__":
  absltest.main()
