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

"""PayPal REST (Orders v2) payment provider.

The provider authenticates with OAuth2 client credentials, creates orders with
an itemized amount breakdown, captures and refunds them, and verifies webhook
deliveries through PayPal's verify-signature API. A new provider is built for
each request, so the cached access token never outlives it.
"""

from decimal import Decimal
import logging
import time
from typing import Any, Dict, Mapping, Optional

import config
from enums import PaymentMethodId
import httpx
from money import to_money
from payments.base import CapturePaymentResult
from payments.base import CreatePaymentResult
from payments.base import PaymentOrderData
from payments.base import PaymentProvider
from payments.base import RefundPaymentResult

logger = logging.getLogger(__name__)

LIVE_API_URL = "https://api-m.paypal.com"
SANDBOX_API_URL = "https://api-m.sandbox.paypal.com"

# PayPal rejects item names longer than this.
MAX_ITEM_NAME_LENGTH = 127

# PayPal refund status -> ledger status. PENDING refunds (e.g. eCheck funded
# captures) are accepted by PayPal and settle later.
_ACCEPTED_REFUND_STATUSES = {"COMPLETED": "completed", "PENDING": "pending"}


class PayPalError(Exception):
  """Raised internally when a PayPal call fails."""


_CALL_ERRORS = (httpx.HTTPError, PayPalError, KeyError, ValueError)


def _amount(value: Decimal, currency: str) -> Dict[str, str]:
  return {"currency_code": currency, "value": f"{to_money(value):.2f}"}


def _error_message(response: httpx.Response, default: str) -> str:
  try:
    body = response.json()
  except ValueError:
    return f"{default} (HTTP {response.status_code})"
  if isinstance(body, dict):
    return body.get("message") or body.get("error_description") or default
  return default


def parse_order_capture(order: Dict[str, Any]) -> CapturePaymentResult:
  """Reads the first capture and the payer out of a PayPal order resource.

  Used for both the capture API response and `CHECKOUT.ORDER.COMPLETED`
  webhook resources, which share the order shape.
  """
  units = order.get("purchase_units") or [{}]
  captures = (units[0].get("payments") or {}).get("captures") or [{}]
  capture = captures[0]
  amount = capture.get("amount") or {}
  payer = order.get("payer") or {}
  name = payer.get("name") or {}
  payer_name = None
  if name:
    given = name.get("given_name", "")
    payer_name = f"{given} {name.get('surname', '')}".strip()

  status = order.get("status")
  return CapturePaymentResult(
      success=status == "COMPLETED",
      transaction_id=capture.get("id"),
      amount=to_money(amount["value"]) if amount.get("value") else None,
      currency=amount.get("currency_code"),
      payer_email=payer.get("email_address"),
      payer_name=payer_name,
      raw_response=order,
      error=None if status == "COMPLETED" else f"Capture status {status}",
  )


class PayPalProvider(PaymentProvider):
  """Payment provider backed by the PayPal Orders v2 API."""

  method_id = PaymentMethodId.PAYPAL

  def __init__(
      self,
      client_id: Optional[str],
      client_secret: Optional[str],
      sandbox: bool = False,
      webhook_id: Optional[str] = None,
      site_url: str = "",
      brand_name: str = "",
      currency: str = "USD",
      timeout: float = 15.0,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.client_id = client_id
    self.client_secret = client_secret
    self.webhook_id = webhook_id
    self.api_url = SANDBOX_API_URL if sandbox else LIVE_API_URL
    self.site_url = site_url.rstrip("/")
    self.brand_name = brand_name
    self.currency = currency
    self.timeout = timeout
    self._transport = transport
    self._access_token: Optional[str] = None
    self._token_expiry = 0.0

  @classmethod
  def from_flags(cls) -> "PayPalProvider":
    return cls(
        client_id=config.get("paypal_client_id"),
        client_secret=config.get("paypal_client_secret"),
        sandbox=config.get("paypal_sandbox"),
        webhook_id=config.get("paypal_webhook_id"),
        site_url=config.get("site_url"),
        brand_name=config.get("site_name"),
        currency=config.get("currency"),
        timeout=config.get("http_timeout_seconds"),
    )

  def is_configured(self) -> bool:
    return bool(self.client_id and self.client_secret)

  def _client(self) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=self.api_url, timeout=self.timeout, transport=self._transport
    )

  async def _get_access_token(self, client: httpx.AsyncClient) -> str:
    """Returns a cached token or fetches a new client-credentials token."""
    if self._access_token and time.monotonic() < self._token_expiry:
      return self._access_token

    response = await client.post(
        "/v1/oauth2/token",
        auth=(self.client_id, self.client_secret),
        data={"grant_type": "client_credentials"},
        headers={"Accept": "application/json"},
    )
    if response.status_code != 200:
      raise PayPalError(
          f"PayPal auth failed: {_error_message(response, 'token request')}"
      )
    data = response.json()
    self._access_token = data["access_token"]
    # Refresh five minutes before PayPal expires the token.
    expires_in = int(data.get("expires_in", 0))
    self._token_expiry = time.monotonic() + max(expires_in - 300, 0)
    return self._access_token

  async def _post(
      self,
      client: httpx.AsyncClient,
      path: str,
      body: Dict[str, Any],
      extra_headers: Optional[Dict[str, str]] = None,
  ) -> httpx.Response:
    token = await self._get_access_token(client)
    headers = {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
    }
    if extra_headers:
      headers.update(extra_headers)
    return await client.post(path, json=body, headers=headers)

  def _build_order_body(self, data: PaymentOrderData) -> Dict[str, Any]:
    currency = data.currency
    purchase_unit: Dict[str, Any] = {
        "reference_id": data.order_number,
        "amount": {
            **_amount(data.total, currency),
            "breakdown": {
                "item_total": _amount(data.subtotal, currency),
                "shipping": _amount(data.shipping_cost, currency),
                "tax_total": _amount(data.tax, currency),
                "discount": _amount(data.discount, currency),
            },
        },
        "items": [
            {
                "name": item.name[:MAX_ITEM_NAME_LENGTH],
                "quantity": str(item.quantity),
                "unit_amount": _amount(item.unit_price, currency),
                "sku": item.sku,
            }
            for item in data.items
        ],
    }
    address = data.shipping_address
    if address:
      shipping_address = {
          "address_line_1": address.address1,
          "admin_area_2": address.city,
          "admin_area_1": address.state,
          "postal_code": address.postcode,
          "country_code": address.country,
      }
      if address.address2:
        shipping_address["address_line_2"] = address.address2
      purchase_unit["shipping"] = {
          "name": {
              "full_name": f"{address.first_name} {address.last_name}".strip()
          },
          "address": shipping_address,
      }

    return {
        "intent": "CAPTURE",
        "purchase_units": [purchase_unit],
        "application_context": {
            "brand_name": self.brand_name,
            "landing_page": "NO_PREFERENCE",
            "user_action": "PAY_NOW",
            "return_url": f"{self.site_url}/checkout/return",
            "cancel_url": f"{self.site_url}/checkout/",
        },
    }

  async def create_payment(self, data: PaymentOrderData) -> CreatePaymentResult:
    if not self.is_configured():
      return CreatePaymentResult(
          success=False, error="PayPal is not configured"
      )

    try:
      async with self._client() as client:
        # The order number doubles as PayPal's idempotency key so a retried
        # create never produces a second PayPal order.
        response = await self._post(
            client,
            "/v2/checkout/orders",
            self._build_order_body(data),
            extra_headers={"PayPal-Request-Id": data.order_number},
        )
        if response.status_code not in (200, 201):
          message = _error_message(response, "Failed to create PayPal order")
          logger.error(
              "PayPal create order failed for %s: %s",
              data.order_number,
              message,
          )
          return CreatePaymentResult(success=False, error=message)
        result = response.json()
    except _CALL_ERRORS as e:
      logger.error(
          "PayPal create_payment error for %s: %s", data.order_number, e
      )
      return CreatePaymentResult(success=False, error=str(e))

    return CreatePaymentResult(
        success=True,
        external_payment_id=result.get("id"),
        metadata={"status": result.get("status")},
    )

  async def capture_payment(self, external_id: str) -> CapturePaymentResult:
    if not self.is_configured():
      return CapturePaymentResult(
          success=False, error="PayPal is not configured"
      )

    try:
      async with self._client() as client:
        response = await self._post(
            client, f"/v2/checkout/orders/{external_id}/capture", {}
        )
        if response.status_code not in (200, 201):
          message = _error_message(response, "Failed to capture payment")
          logger.error("PayPal capture failed for %s: %s", external_id, message)
          return CapturePaymentResult(success=False, error=message)
        result = response.json()
    except _CALL_ERRORS as e:
      logger.error("PayPal capture_payment error for %s: %s", external_id, e)
      return CapturePaymentResult(success=False, error=str(e))

    return parse_order_capture(result)

  async def refund_payment(
      self,
      transaction_id: str,
      amount: Optional[Decimal] = None,
      request_id: Optional[str] = None,
  ) -> RefundPaymentResult:
    if not self.is_configured():
      return RefundPaymentResult(
          success=False, error="PayPal is not configured"
      )

    body: Dict[str, Any] = {}
    if amount:
      body["amount"] = _amount(amount, self.currency)

    try:
      async with self._client() as client:
        response = await self._post(
            client,
            f"/v2/payments/captures/{transaction_id}/refund",
            body,
            extra_headers=(
                {"PayPal-Request-Id": request_id} if request_id else None
            ),
        )
        if response.status_code not in (200, 201):
          message = _error_message(response, "Failed to refund payment")
          logger.error(
              "PayPal refund failed for %s: %s", transaction_id, message
          )
          return RefundPaymentResult(success=False, error=message)
        result = response.json()
    except _CALL_ERRORS as e:
      logger.error("PayPal refund_payment error for %s: %s", transaction_id, e)
      return RefundPaymentResult(success=False, error=str(e))

    status = result.get("status")
    if status not in _ACCEPTED_REFUND_STATUSES:
      logger.error("PayPal refund %s is %s", result.get("id"), status)
      return RefundPaymentResult(
          success=False,
          refund_id=result.get("id"),
          error=f"Refund status {status}",
      )
    refunded = (result.get("amount") or {}).get("value")
    return RefundPaymentResult(
        success=True,
        refund_id=result.get("id"),
        amount=to_money(refunded) if refunded else None,
        status=_ACCEPTED_REFUND_STATUSES[status],
    )

  async def verify_webhook(
      self, headers: Mapping[str, str], body: Dict[str, Any]
  ) -> bool:
    if not self.webhook_id:
      logger.warning("PayPal webhook id not configured")
      return False
    if not self.is_configured():
      return False

    lowered = {k.lower(): v for k, v in headers.items()}
    header_names = (
        "paypal-auth-algo",
        "paypal-cert-url",
        "paypal-transmission-id",
        "paypal-transmission-sig",
        "paypal-transmission-time",
    )
    if any(not lowered.get(name) for name in header_names):
      logger.warning("PayPal webhook is missing signature headers")
      return False

    payload = {
        "auth_algo": lowered["paypal-auth-algo"],
        "cert_url": lowered["paypal-cert-url"],
        "transmission_id": lowered["paypal-transmission-id"],
        "transmission_sig": lowered["paypal-transmission-sig"],
        "transmission_time": lowered["paypal-transmission-time"],
        "webhook_id": self.webhook_id,
        "webhook_event": body,
    }
    try:
      async with self._client() as client:
        response = await self._post(
            client, "/v1/notifications/verify-webhook-signature", payload
        )
        if response.status_code != 200:
          logger.error(
              "PayPal webhook verification failed: HTTP %s",
              response.status_code,
          )
          return False
        return response.json().get("verification_status") == "SUCCESS"
    except _CALL_ERRORS as e:
      logger.error("PayPal webhook verification error: %s", e)
      return False
