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

"""Custom exceptions for the storefront checkout server."""

from typing import Any, Dict, Optional


class StorefrontError(Exception):
  """Base class for all storefront exceptions."""

  def __init__(
      self,
      message: str,
      code: str = "INTERNAL_ERROR",
      status_code: int = 500,
      extra: Optional[Dict[str, Any]] = None,
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    self.extra = extra or {}
    super().__init__(self.message)


class InvalidRequestError(StorefrontError):
  """Raised when the request is invalid (e.g. missing fields)."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_REQUEST", status_code=400)


class InvalidStatusError(StorefrontError):
  """Raised when an order status value is not in its enumeration."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_STATUS", status_code=400)


class UnauthorizedError(StorefrontError):
  """Raised when an endpoint requires a signed-in user."""

  def __init__(self, message: str = "Not authenticated"):
    super().__init__(message, code="UNAUTHORIZED", status_code=401)


class ForbiddenError(StorefrontError):
  """Raised when credentials are present but not accepted."""

  def __init__(self, message: str = "Forbidden"):
    super().__init__(message, code="FORBIDDEN", status_code=403)


class ResourceNotFoundError(StorefrontError):
  """Raised when a requested resource is not found."""

  def __init__(self, message: str):
    super().__init__(message, code="RESOURCE_NOT_FOUND", status_code=404)


class InvalidTransitionError(StorefrontError):
  """Raised when an order state change is not allowed from its current state."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_TRANSITION", status_code=409)


class OrderCreationError(StorefrontError):
  """Raised when the order and its items could not be persisted."""

  def __init__(self, message: str = "Failed to create order"):
    super().__init__(message, code="ORDER_CREATION_FAILED", status_code=500)


class PaymentCaptureError(StorefrontError):
  """Raised when the payment provider did not capture the payment."""

  def __init__(self, message: str = "Payment capture failed"):
    super().__init__(message, code="PAYMENT_CAPTURE_FAILED", status_code=500)


class PaymentProviderUnavailableError(StorefrontError):
  """Raised when the payment provider could not create a payment."""

  def __init__(
      self,
      message: str = "Payment provider unavailable",
      order_id: Optional[str] = None,
  ):
    super().__init__(
        message,
        code="PAYMENT_PROVIDER_UNAVAILABLE",
        status_code=503,
        extra={"orderId": order_id} if order_id else None,
    )


class RefundFailedError(StorefrontError):
  """Raised when the payment provider rejected a refund."""

  def __init__(self, message: str = "Refund failed"):
    super().__init__(message, code="REFUND_FAILED", status_code=502)
