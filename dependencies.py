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

"""FastAPI dependencies for the storefront server.

This module contains dependency injection logic for FastAPI endpoints,
including:
- Database session management (Products and Transactions DBs).
- Caller identity (visitor cookie, gateway user headers, admin key).
- Service instantiation (cart, checkout, orders, coupons, webhooks).
"""

import hmac
from typing import AsyncGenerator, Optional

import config
import db
from exceptions import ForbiddenError
from exceptions import InvalidRequestError
from exceptions import StorefrontError
from exceptions import UnauthorizedError
from fastapi import BackgroundTasks
from fastapi import Depends
from fastapi import Header
from fastapi import Request
from payments.registry import PaymentRegistry
from pydantic import BaseModel
from services.account_service import AddressService
from services.cart_service import CartService
from services.checkout_service import CheckoutService
from services.coupon_service import CouponService
from services.email_service import EmailService
from services.order_service import OrderService
from services.pricing_service import PricingService
from services.shipping_service import ShippingService
from services.webhook_service import WebhookService
from sqlalchemy.ext.asyncio import AsyncSession

VISITOR_COOKIE = "visitor_id"


class CurrentUser(BaseModel):
  """A signed-in user, as asserted by the authentication gateway."""

  id: str
  email: Optional[str] = None


async def get_products_db() -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for Products DB session."""
  async with db.manager.products_session_factory() as session:
    yield session


async def get_transactions_db() -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for Transactions DB session."""
  async with db.manager.transactions_session_factory() as session:
    yield session


# --- Identity ---


def get_visitor_id(request: Request) -> str:
  """Returns the visitor id issued (or read) by the cookie middleware."""
  visitor_id = getattr(request.state, VISITOR_COOKIE, None)
  visitor_id = visitor_id or request.cookies.get(VISITOR_COOKIE)
  if not visitor_id:
    raise InvalidRequestError("No visitor ID")
  return visitor_id


def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
) -> Optional[CurrentUser]:
  if not x_user_id:
    return None
  email = x_user_email.strip().lower() if x_user_email else None
  return CurrentUser(id=x_user_id, email=email)


def require_user(
    user: Optional[CurrentUser] = Depends(get_current_user),
) -> CurrentUser:
  if user is None:
    raise UnauthorizedError()
  return user


async def verify_admin_key(
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
) -> None:
  """Verifies the shared admin secret."""
  expected_key = config.get("admin_api_key")
  if not expected_key:
    raise StorefrontError(
        "Admin API key not configured", code="NOT_CONFIGURED", status_code=500
    )

  if not x_admin_key or not hmac.compare_digest(
      x_admin_key.encode(), expected_key.encode()
  ):
    raise ForbiddenError("Invalid admin key")


# --- Services ---


def get_payment_registry() -> PaymentRegistry:
  """Dependency provider for the payment provider registry."""
  return PaymentRegistry.from_flags()


def get_email_service() -> EmailService:
  """Dependency provider for EmailService."""
  return EmailService.from_flags()


def get_pricing_service(
    products_session: AsyncSession = Depends(get_products_db),
) -> PricingService:
  return PricingService(products_session)


def get_shipping_service(
    products_session: AsyncSession = Depends(get_products_db),
) -> ShippingService:
  return ShippingService(products_session)


def get_coupon_service(
    transactions_session: AsyncSession = Depends(get_transactions_db),
) -> CouponService:
  return CouponService(transactions_session)


def get_order_service(
    transactions_session: AsyncSession = Depends(get_transactions_db),
) -> OrderService:
  return OrderService(transactions_session)


def get_address_service(
    transactions_session: AsyncSession = Depends(get_transactions_db),
) -> AddressService:
  return AddressService(transactions_session)


def get_cart_service(
    transactions_session: AsyncSession = Depends(get_transactions_db),
    pricing_service: PricingService = Depends(get_pricing_service),
) -> CartService:
  return CartService(transactions_session, pricing_service)


def get_checkout_service(
    background_tasks: BackgroundTasks,
    products_session: AsyncSession = Depends(get_products_db),
    transactions_session: AsyncSession = Depends(get_transactions_db),
    payment_registry: PaymentRegistry = Depends(get_payment_registry),
    email_service: EmailService = Depends(get_email_service),
) -> CheckoutService:
  """Dependency provider for CheckoutService."""
  return CheckoutService(
      products_session,
      transactions_session,
      payment_registry,
      email_service,
      background_tasks=background_tasks,
      currency=config.get("currency"),
  )


def get_webhook_service(
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> WebhookService:
  return WebhookService(checkout_service)
