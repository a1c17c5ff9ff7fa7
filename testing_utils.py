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

"""Shared fixtures for the storefront server tests.

`StorefrontTestCase` gives every test its own temporary SQLite databases,
seeded with a small catalog, and a `TestClient` whose database, payment and
email dependencies point at them and at in-process fakes.
"""

import asyncio
from decimal import Decimal
import os
import shutil
import tempfile
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict
from typing import List, Mapping, Optional, Tuple, TypeVar

from absl.testing import absltest
import db
import dependencies
from enums import PaymentMethodId
from fastapi.testclient import TestClient
from payments.base import CapturePaymentResult
from payments.base import CreatePaymentResult
from payments.base import PaymentOrderData
from payments.base import PaymentProvider
from payments.base import RefundPaymentResult
from payments.registry import PaymentRegistry
from server import app
from services.email_service import EmailService
from sqlalchemy import func
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

T = TypeVar("T")

ADMIN_KEY = "test-admin-key"


class FakePaymentProvider(PaymentProvider):
  """In-process provider whose outcomes tests can script."""

  method_id = PaymentMethodId.PAYPAL

  def __init__(self):
    self.configured = True
    self.webhook_valid = True
    self.create_result: Optional[CreatePaymentResult] = None
    self.capture_result: Optional[CapturePaymentResult] = None
    self.refund_result: Optional[RefundPaymentResult] = None
    self.created: List[PaymentOrderData] = []
    self.captured: List[str] = []
    self.refunded: List[Tuple[str, Optional[Decimal]]] = []
    self.refund_request_ids: List[Optional[str]] = []

  def is_configured(self) -> bool:
    return self.configured

  async def create_payment(self, data: PaymentOrderData) -> CreatePaymentResult:
    self.created.append(data)
    if self.create_result is not None:
      return self.create_result
    return CreatePaymentResult(
        success=True, external_payment_id=f"PP-{data.order_number}"
    )

  async def capture_payment(self, external_id: str) -> CapturePaymentResult:
    self.captured.append(external_id)
    if self.capture_result is not None:
      return self.capture_result
    return CapturePaymentResult(
        success=True,
        transaction_id=f"CAP-{external_id}",
        currency="USD",
        raw_response={"id": external_id, "status": "COMPLETED"},
    )

  async def refund_payment(
      self,
      transaction_id: str,
      amount: Optional[Decimal] = None,
      request_id: Optional[str] = None,
  ) -> RefundPaymentResult:
    self.refunded.append((transaction_id, amount))
    self.refund_request_ids.append(request_id)
    if self.refund_result is not None:
      return self.refund_result
    return RefundPaymentResult(
        success=True, refund_id=f"REF-{len(self.refunded)}", amount=amount
    )

  async def verify_webhook(
      self, headers: Mapping[str, str], body: Dict[str, Any]
  ) -> bool:
    del headers, body  # Unused.
    return self.webhook_valid


class RecordingEmailService(EmailService):
  """Email service that records messages instead of sending them."""

  def __init__(self):
    super().__init__(
        api_key="test", sender="shop@example.com", site_name="Test"
    )
    self.sent: List[Tuple[str, str]] = []

  async def send(self, to: str, subject: str, body_html: str) -> bool:
    del body_html  # Unused.
    self.sent.append((to, subject))
    return True


class StorefrontTestCase(absltest.TestCase):
  """Base class wiring the app to temporary databases and fakes."""

  def setUp(self) -> None:
    super().setUp()
    self.test_dir = tempfile.mkdtemp()
    products_db = os.path.join(self.test_dir, "test_products.db")
    transactions_db = os.path.join(self.test_dir, "test_transactions.db")

    # NullPool: connections must not outlive the event loop that opened them.
    self.products_engine = create_async_engine(
        f"sqlite+aiosqlite:///{products_db}", poolclass=NullPool
    )
    self.products_session_factory = sessionmaker(
        self.products_engine, expire_on_commit=False, class_=AsyncSession
    )
    self.transactions_engine = create_async_engine(
        f"sqlite+aiosqlite:///{transactions_db}", poolclass=NullPool
    )
    self.transactions_session_factory = sessionmaker(
        self.transactions_engine, expire_on_commit=False, class_=AsyncSession
    )

    async def init_schemas() -> None:
      async with self.products_engine.begin() as conn:
        await conn.run_sync(db.ProductBase.metadata.create_all)
      async with self.transactions_engine.begin() as conn:
        await conn.run_sync(db.TransactionBase.metadata.create_all)

    self.run_async(init_schemas())

    self.provider = FakePaymentProvider()
    self.registry = PaymentRegistry({PaymentMethodId.PAYPAL: self.provider})
    self.email_service = RecordingEmailService()

    async def override_get_products_db() -> AsyncGenerator[AsyncSession, None]:
      async with self.products_session_factory() as session:
        yield session

    async def override_get_transactions_db() -> (
        AsyncGenerator[AsyncSession, None]
    ):
      async with self.transactions_session_factory() as session:
        yield session

    app.dependency_overrides[dependencies.get_products_db] = (
        override_get_products_db
    )
    app.dependency_overrides[dependencies.get_transactions_db] = (
        override_get_transactions_db
    )
    app.dependency_overrides[dependencies.get_payment_registry] = (
        lambda: self.registry
    )
    app.dependency_overrides[dependencies.get_email_service] = (
        lambda: self.email_service
    )

    self.client = TestClient(app)
    self.run_async(self._seed())

  def tearDown(self) -> None:
    app.dependency_overrides.clear()

    async def dispose_engines() -> None:
      await self.products_engine.dispose()
      await self.transactions_engine.dispose()

    self.run_async(dispose_engines())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def run_async(self, coro: Awaitable[T]) -> T:
    return asyncio.run(coro)

  def in_transactions(
      self, func_: Callable[[AsyncSession], Awaitable[T]]
  ) -> T:
    """Runs `func_` with a fresh transactions session and returns its result."""

    async def run() -> T:
      async with self.transactions_session_factory() as session:
        return await func_(session)

    return self.run_async(run())

  def in_products(self, func_: Callable[[AsyncSession], Awaitable[T]]) -> T:

    async def run() -> T:
      async with self.products_session_factory() as session:
        return await func_(session)

    return self.run_async(run())

  async def _seed(self) -> None:
    async with self.products_session_factory() as session:
      session.add_all([
          db.Product(
              slug="x",
              title="Posing Pillow",
              sku_prefix="X",
              base_price=Decimal("20.00"),
              variants=[
                  {"id": "red", "name": "Red", "sku": "RED", "price_mod": 5},
                  {"id": "blue", "name": "Blue", "sku": "BLU", "price_mod": 0},
              ],
              sizes=[
                  {"id": "m", "name": "M", "sku": "M", "price_mod": 0},
                  {"id": "l", "name": "L", "sku": "L", "price_mod": 4},
              ],
              stripes=[
                  {"id": "gold", "sku": "GLD", "name": "Gold", "price": 3.5}
              ],
              addons=[
                  {"id": "bow", "sku": "BOW", "name": "Bow", "price": 2},
                  {"id": "box", "sku": "BOX", "name": "Gift Box", "price": 6},
              ],
          ),
          db.Product(
              slug="wooden-bed",
              title="Wooden Posing Bed",
              sku_prefix="WB",
              base_price=Decimal("89.00"),
          ),
          db.ShippingZone(
              id="domestic",
              name="United States",
              countries=["US"],
              shipping_rate=Decimal("6.95"),
              free_shipping=False,
              free_shipping_threshold=Decimal("75.00"),
              estimated_days="3-5 business days",
              enabled=True,
              sort_order=1,
          ),
          db.ShippingZone(
              id="canada",
              name="Canada",
              countries=["CA"],
              shipping_rate=Decimal("14.95"),
              free_shipping=False,
              estimated_days="7-12 business days",
              enabled=True,
              sort_order=2,
          ),
      ])
      await session.commit()

    async with self.transactions_session_factory() as session:
      session.add_all([
          db.Coupon(
              code="SAVE10",
              type="percentage",
              value=Decimal("10"),
              min_order=Decimal("0"),
              used_count=0,
              valid_from="2020-01-01T00:00:00+00:00",
              is_active=True,
              created_at=db.now_iso(),
          ),
          db.Coupon(
              code="ONCE5",
              type="fixed",
              value=Decimal("5"),
              min_order=Decimal("0"),
              max_uses=1,
              used_count=0,
              is_active=True,
              created_at=db.now_iso(),
          ),
      ])
      await session.commit()

  # --- Request builders ---

  def cart_line(self, **overrides: Any) -> Dict[str, Any]:
    line = {
        "sku": "X-BLU-M",
        "product_slug": "x",
        "name": "Posing Pillow",
        "variant": "Blue",
        "size": "M",
        "unit_price": 20.0,
        "quantity": 1,
    }
    line.update(overrides)
    return line

  def checkout_body(
      self, items: Optional[List[Dict[str, Any]]] = None, **overrides: Any
  ) -> Dict[str, Any]:
    body = {
        "items": [self.cart_line()] if items is None else items,
        "shipping": {
            "firstName": "Ada",
            "lastName": "Lovelace",
            "email": "Ada@Example.com",
            "phone": "555-0100",
            "address1": "1 Main St",
            "city": "Springfield",
            "state": "IL",
            "postcode": "62701",
            "country": "US",
        },
        "paymentMethod": "paypal",
    }
    body.update(overrides)
    return body

  def create_order(self, **overrides: Any) -> Dict[str, Any]:
    response = self.client.post(
        "/api/checkout/create-order", json=self.checkout_body(**overrides)
    )
    self.assertEqual(response.status_code, 200, response.text)
    return response.json()

  def capture(self, created: Dict[str, Any]):
    return self.client.post(
        "/api/checkout/capture-order",
        json={
            "orderId": created["orderId"],
            "paypalOrderId": created["paypalOrderId"],
        },
    )

  # --- Database probes ---

  def get_order(self, order_id: str) -> Optional[db.Order]:
    return self.in_transactions(lambda s: db.get_order(s, order_id))

  def count(self, model, *criteria) -> int:

    async def run(session: AsyncSession) -> int:
      result = await session.execute(
          select(func.count()).select_from(model).where(*criteria)
      )
      return result.scalar_one()

    return self.in_transactions(run)

  def get_coupon(self, code: str) -> Optional[db.Coupon]:
    return self.in_transactions(lambda s: db.get_coupon_by_code(s, code))
