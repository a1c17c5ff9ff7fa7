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

"""Utility script to dump order data.

This script reads from the configured transactions SQLite database and prints
a summary of all stored orders, including their status, line items and
payment ledger. It is useful for debugging and verifying the state of the
server.

Usage:
  uv run dump_orders.py --transactions_db_path=...
"""

import asyncio
import sys

from absl import app as absl_app
from absl import flags
from db import Order
from db import OrderItem
from db import Payment
from money import format_price
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker

FLAGS = flags.FLAGS
flags.DEFINE_string("transactions_db_path", None, "Path to transactions DB")


async def dump_orders():
  """Queries the database and prints all orders."""
  if not FLAGS.transactions_db_path:
    print("Error: --transactions_db_path is required.")
    sys.exit(1)

  db_url = f"sqlite+aiosqlite:///{FLAGS.transactions_db_path}"
  engine = create_async_engine(db_url, echo=False)
  session_factory = sessionmaker(
      engine, expire_on_commit=False, class_=AsyncSession
  )

  async with session_factory() as session:
    result = await session.execute(
        select(Order).order_by(Order.created_at.asc())
    )
    orders = result.scalars().all()

    if not orders:
      print("No orders found.")
      await engine.dispose()
      return

    for order in orders:
      print(
          f"Order: {order.order_number} [{order.status}/"
          f"{order.payment_status}] {order.email}"
      )
      items = (
          await session.execute(
              select(OrderItem).where(OrderItem.order_id == order.id)
          )
      ).scalars().all()
      if items:
        for item in items:
          print(
              f"  - {item.name} (SKU: {item.sku}) x{item.quantity} @"
              f" {format_price(item.unit_price)} ="
              f" {format_price(item.line_total)}"
          )
      else:
        print("  (No items)")
      print(
          f"  Subtotal {format_price(order.subtotal)}, shipping"
          f" {format_price(order.shipping_cost)}, discount"
          f" {format_price(order.discount)}, total {format_price(order.total)}"
      )
      payments = (
          await session.execute(
              select(Payment).where(Payment.order_id == order.id)
          )
      ).scalars().all()
      for payment in payments:
        print(
            f"  {payment.direction}: {payment.transaction_id}"
            f" {format_price(payment.amount)} ({payment.status})"
        )
      print("-" * 60)

  await engine.dispose()


def main(argv):
  """Main entry point for the order dump script."""
  del argv
  asyncio.run(dump_orders())


if __name__ == "__main__":
  absl_app.run(main)
