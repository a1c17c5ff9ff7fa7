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

"""Database management and persistence layer for the storefront server.

This module provides the schema definitions, database session management, and
asynchronous data access helpers used by the server. It utilizes SQLAlchemy with
SQLite (via aiosqlite) and separates the read-only product catalog from
transactional cart, order, coupon and payment data.

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and session
  factory setup for both 'Products' and 'Transactions' databases.
- WAL Mode: Automatically enables SQLite Write-Ahead Logging so the API and
  the webhook listener can write concurrently.
- Declarative Models: Products and shipping zones (catalog), carts, orders,
  order items, coupons, the payment ledger and saved addresses.
- Data Access Helpers: Asynchronous lookups and guarded single-row updates.
"""

import datetime
import logging
import secrets
from typing import Any, Dict, List, Optional, Sequence
import uuid

from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import ForeignKey
from sqlalchemy import func
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import Numeric
from sqlalchemy import or_
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy import text
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

ProductBase = declarative_base()
TransactionBase = declarative_base()

Money = Numeric(10, 2, asdecimal=True)


class DatabaseManager:
  """Manages database engines and sessions without using global variables."""

  def __init__(self) -> None:
    self.products_engine: Optional[AsyncEngine] = None
    self.transactions_engine: Optional[AsyncEngine] = None
    self.products_session_factory: Optional[sessionmaker] = None
    self.transactions_session_factory: Optional[sessionmaker] = None

  async def init_dbs(self, products_path: str, transactions_path: str) -> None:
    """Initializes database engines and creates tables."""
    # Products DB Setup
    prod_url = f"sqlite+aiosqlite:///{products_path}"
    self.products_engine = create_async_engine(prod_url, echo=False)

    async with self.products_engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.products_session_factory = sessionmaker(
        self.products_engine, expire_on_commit=False, class_=AsyncSession
    )

    async with self.products_engine.begin() as conn:
      await conn.run_sync(ProductBase.metadata.create_all)

    # Transactions DB Setup
    trans_url = f"sqlite+aiosqlite:///{transactions_path}"
    self.transactions_engine = create_async_engine(trans_url, echo=False)

    async with self.transactions_engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.transactions_session_factory = sessionmaker(
        self.transactions_engine, expire_on_commit=False, class_=AsyncSession
    )

    async with self.transactions_engine.begin() as conn:
      await conn.run_sync(TransactionBase.metadata.create_all)

  async def close(self) -> None:
    """Closes all database engines."""
    if self.products_engine:
      await self.products_engine.dispose()
    if self.transactions_engine:
      await self.transactions_engine.dispose()


# Global manager instance (to be initialized via lifespan)
manager = DatabaseManager()


def now_iso() -> str:
  return datetime.datetime.now(datetime.timezone.utc).isoformat()


def generate_order_number() -> str:
  """Returns a human-facing order number such as `BP-20260118-4F9A2C`."""
  today = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%d")
  return f"BP-{today}-{secrets.token_hex(3).upper()}"


# --- Catalog (Products DB) ---


class Product(ProductBase):
  __tablename__ = "products"

  slug = Column(String, primary_key=True)
  title = Column(String)
  sku_prefix = Column(String, nullable=True)
  base_price = Column(Money, nullable=False)
  image_url = Column(String, nullable=True)
  # [{id, name, sku?, price_mod}]
  variants = Column(JSON, nullable=True)
  # [{id, name, sku?, price_mod}]
  sizes = Column(JSON, nullable=True)
  # [{id, sku?, name, price}]
  stripes = Column(JSON, nullable=True)
  # [{id, sku?, name, price}]
  addons = Column(JSON, nullable=True)


class ShippingZone(ProductBase):
  __tablename__ = "shipping_zones"

  id = Column(String, primary_key=True)
  name = Column(String)
  countries = Column(JSON)  # Country codes, "*" for rest of world
  shipping_rate = Column(Money, default=0)
  free_shipping = Column(Boolean, default=False)
  free_shipping_threshold = Column(Money, nullable=True)
  estimated_days = Column(String)
  enabled = Column(Boolean, default=True)
  sort_order = Column(Integer, default=0)


# --- Transactions DB ---


class Cart(TransactionBase):
  __tablename__ = "carts"

  id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
  visitor_id = Column(String, unique=True, index=True)
  user_id = Column(String, nullable=True, index=True)
  items = Column(JSON, default=list)
  updated_at = Column(String)


class Order(TransactionBase):
  __tablename__ = "orders"

  id = Column(String, primary_key=True)
  order_number = Column(String, unique=True, nullable=False, index=True)
  visitor_id = Column(String, nullable=True)
  user_id = Column(String, nullable=True, index=True)
  email = Column(String, nullable=False, index=True)
  shipping_address = Column(JSON)
  subtotal = Column(Money, nullable=False)
  shipping_cost = Column(Money, nullable=False, default=0)
  tax = Column(Money, nullable=False, default=0)
  discount = Column(Money, nullable=False, default=0)
  coupon_code = Column(String, nullable=True)
  total = Column(Money, nullable=False)
  currency = Column(String, default="USD")
  status = Column(String, nullable=False)
  payment_status = Column(String, nullable=False)
  payment_method = Column(String, nullable=False)
  # External payment id of whichever provider created the payment.
  paypal_order_id = Column(String, nullable=True, index=True)
  paypal_capture_id = Column(String, nullable=True, index=True)
  customer_note = Column(Text, nullable=True)
  internal_note = Column(Text, nullable=True)
  created_at = Column(String)
  paid_at = Column(String, nullable=True)
  shipped_at = Column(String, nullable=True)


class OrderItem(TransactionBase):
  __tablename__ = "order_items"

  id = Column(Integer, primary_key=True, autoincrement=True)
  order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
  sku = Column(String, nullable=False)
  product_slug = Column(String, nullable=False)
  name = Column(String, nullable=False)
  variant = Column(String, nullable=True)
  color = Column(String, nullable=True)
  size = Column(String, nullable=True)
  custom_texts = Column(JSON, nullable=True)
  stripe = Column(JSON, nullable=True)
  addons = Column(JSON, default=list)
  unit_price = Column(Money, nullable=False)
  quantity = Column(Integer, nullable=False)
  line_total = Column(Money, nullable=False)
  image = Column(String, nullable=True)
  created_at = Column(String)


class Coupon(TransactionBase):
  __tablename__ = "coupons"

  id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
  code = Column(String, unique=True, nullable=False)  # Stored uppercase
  type = Column(String, nullable=False)  # 'fixed' or 'percentage'
  value = Column(Money, nullable=False)
  min_order = Column(Money, default=0)
  max_uses = Column(Integer, nullable=True)
  used_count = Column(Integer, default=0, nullable=False)
  valid_from = Column(String, nullable=True)
  valid_to = Column(String, nullable=True)
  is_active = Column(Boolean, default=True)
  created_at = Column(String)


class Payment(TransactionBase):
  """Append-only payment ledger, one row per capture or refund event."""

  __tablename__ = "payments"

  id = Column(Integer, primary_key=True, autoincrement=True)
  order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
  payment_method = Column(String)
  transaction_id = Column(String, index=True)
  amount = Column(Money)
  currency = Column(String)
  status = Column(String)
  direction = Column(String)  # 'in' or 'out'
  provider_response = Column(JSON, nullable=True)
  created_at = Column(String)


class Address(TransactionBase):
  __tablename__ = "addresses"

  id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
  user_id = Column(String, index=True, nullable=False)
  full_name = Column(String)
  phone = Column(String, nullable=True)
  email = Column(String, nullable=True)
  address_line1 = Column(String)
  address_line2 = Column(String, nullable=True)
  city = Column(String)
  state = Column(String)
  postal_code = Column(String)
  country = Column(String, default="US")
  label = Column(String, default="Home")
  is_default = Column(Boolean, default=False)
  created_at = Column(String)


# --- Data Access Helpers ---


async def get_product(session: AsyncSession, slug: str) -> Optional[Product]:
  """Retrieves a product by slug."""
  return await session.get(Product, slug)


async def get_products_by_slugs(
    session: AsyncSession, slugs: Sequence[str]
) -> Dict[str, Product]:
  """Retrieves multiple products by slug in a single query.

  Args:
    session: The products database session.
    slugs: Product slugs to look up. Duplicates are fine.

  Returns:
    A mapping of slug to Product for the slugs that exist.
  """
  if not slugs:
    return {}
  result = await session.execute(
      select(Product).where(Product.slug.in_(set(slugs)))
  )
  return {p.slug: p for p in result.scalars().all()}


async def get_shipping_zones(session: AsyncSession) -> List[ShippingZone]:
  """Retrieves enabled shipping zones in display order."""
  result = await session.execute(
      select(ShippingZone)
      .where(ShippingZone.enabled.is_(True))
      .order_by(ShippingZone.sort_order, ShippingZone.id)
  )
  return list(result.scalars().all())


async def get_cart(
    session: AsyncSession,
    visitor_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Optional[Cart]:
  """Retrieves a cart by user id (preferred) or visitor id."""
  if user_id:
    result = await session.execute(select(Cart).where(Cart.user_id == user_id))
    cart = result.scalars().first()
    if cart:
      return cart
  if visitor_id:
    result = await session.execute(
        select(Cart).where(Cart.visitor_id == visitor_id)
    )
    return result.scalar_one_or_none()
  return None


async def save_cart_items(
    session: AsyncSession,
    visitor_id: str,
    items: List[Dict[str, Any]],
    user_id: Optional[str] = None,
) -> Cart:
  """Saves or updates the cart for a visitor."""
  cart = await get_cart(session, visitor_id=visitor_id, user_id=user_id)
  if cart:
    cart.items = items
    cart.updated_at = now_iso()
    if user_id and not cart.user_id:
      cart.user_id = user_id
  else:
    cart = Cart(
        visitor_id=visitor_id,
        user_id=user_id,
        items=items,
        updated_at=now_iso(),
    )
    session.add(cart)
  return cart


async def clear_cart(
    session: AsyncSession,
    user_id: Optional[str] = None,
    visitor_id: Optional[str] = None,
) -> None:
  """Empties the user's cart if a user is known, else the visitor's."""
  stmt = update(Cart).values(items=[], updated_at=now_iso())
  if user_id:
    await session.execute(stmt.where(Cart.user_id == user_id))
  elif visitor_id:
    await session.execute(stmt.where(Cart.visitor_id == visitor_id))


async def get_coupon_by_code(
    session: AsyncSession, code: str
) -> Optional[Coupon]:
  """Retrieves a coupon by code, case-insensitively."""
  result = await session.execute(
      select(Coupon).where(Coupon.code == code.strip().upper())
  )
  return result.scalar_one_or_none()


async def increment_coupon_usage(session: AsyncSession, code: str) -> bool:
  """Atomically increments usage if the coupon has uses left."""
  stmt = (
      update(Coupon)
      .where(Coupon.code == code.strip().upper())
      .where(
          or_(Coupon.max_uses.is_(None), Coupon.used_count < Coupon.max_uses)
      )
      .values(used_count=Coupon.used_count + 1)
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def get_order(session: AsyncSession, order_id: str) -> Optional[Order]:
  """Retrieves an order by internal id."""
  return await session.get(Order, order_id)


async def get_order_for_payment(
    session: AsyncSession, order_id: str, external_payment_id: str
) -> Optional[Order]:
  """Retrieves an order only if both ids match the same row."""
  result = await session.execute(
      select(Order).where(
          Order.id == order_id, Order.paypal_order_id == external_payment_id
      )
  )
  return result.scalar_one_or_none()


async def find_order_by_external_id(
    session: AsyncSession, external_payment_id: str
) -> Optional[Order]:
  result = await session.execute(
      select(Order).where(Order.paypal_order_id == external_payment_id)
  )
  return result.scalars().first()


async def find_order_by_capture_id(
    session: AsyncSession, capture_id: str
) -> Optional[Order]:
  result = await session.execute(
      select(Order).where(Order.paypal_capture_id == capture_id)
  )
  return result.scalars().first()


async def find_order_by_number(
    session: AsyncSession, order_number: str, email: Optional[str] = None
) -> Optional[Order]:
  """Retrieves an order by order number, optionally requiring the email."""
  stmt = select(Order).where(Order.order_number == order_number.strip())
  if email is not None:
    stmt = stmt.where(Order.email == email.strip().lower())
  result = await session.execute(stmt)
  return result.scalar_one_or_none()


async def get_order_items(
    session: AsyncSession, order_id: str
) -> List[OrderItem]:
  result = await session.execute(
      select(OrderItem)
      .where(OrderItem.order_id == order_id)
      .order_by(OrderItem.id)
  )
  return list(result.scalars().all())


async def get_payments(session: AsyncSession, order_id: str) -> List[Payment]:
  """Retrieves ledger rows for an order, oldest first."""
  result = await session.execute(
      select(Payment).where(Payment.order_id == order_id).order_by(Payment.id)
  )
  return list(result.scalars().all())


async def get_payment_by_transaction(
    session: AsyncSession, order_id: str, transaction_id: str, direction: str
) -> Optional[Payment]:
  result = await session.execute(
      select(Payment).where(
          Payment.order_id == order_id,
          Payment.transaction_id == transaction_id,
          Payment.direction == direction,
      )
  )
  return result.scalars().first()


async def count_order_items(
    session: AsyncSession, order_ids: Sequence[str]
) -> Dict[str, int]:
  """Returns the number of item rows per order id."""
  if not order_ids:
    return {}
  result = await session.execute(
      select(OrderItem.order_id, func.count(OrderItem.id))
      .where(OrderItem.order_id.in_(order_ids))
      .group_by(OrderItem.order_id)
  )
  return {order_id: count for order_id, count in result.all()}
