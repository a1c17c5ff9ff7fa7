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

"""Database initialization script for the storefront server.

This script imports the product catalog and shipping zones from CSV files into
the products database, replacing what is there. Coupons from coupons.csv are
added to the transactions database unless a coupon with the same code already
exists, so usage counts survive a re-import.

Usage:
  uv run import_catalog.py --products_db_path=... --transactions_db_path=...
  --data_dir=...
"""

import asyncio
import csv
import json
import logging
import os
from typing import Any, Dict, Optional

from absl import app as absl_app
from absl import flags
import db
from db import Coupon
from db import Product
from db import ShippingZone
from money import to_money
from sqlalchemy import delete
from sqlalchemy import select

FLAGS = flags.FLAGS
flags.DEFINE_string("products_db_path", "products.db", "Path to products DB")
flags.DEFINE_string(
    "transactions_db_path", "transactions.db", "Path to transactions DB"
)
flags.DEFINE_string(
    "data_dir",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "data"),
    "Directory containing products.csv, shipping_zones.csv and coupons.csv",
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _json(value: Optional[str]) -> Any:
  return json.loads(value) if value else None


def _bool(value: Optional[str]) -> bool:
  return (value or "").strip().lower() in ("1", "true", "yes")


def _read_rows(path: str):
  with open(path, "r", encoding="utf-8") as f:
    yield from csv.DictReader(f)


def product_from_row(row: Dict[str, str]) -> Product:
  return Product(
      slug=row["slug"],
      title=row["title"],
      sku_prefix=row.get("sku_prefix") or None,
      base_price=to_money(row["base_price"]),
      image_url=row.get("image_url") or None,
      variants=_json(row.get("variants")),
      sizes=_json(row.get("sizes")),
      stripes=_json(row.get("stripes")),
      addons=_json(row.get("addons")),
  )


def zone_from_row(row: Dict[str, str]) -> ShippingZone:
  threshold = row.get("free_shipping_threshold")
  return ShippingZone(
      id=row["id"],
      name=row["name"],
      countries=_json(row["countries"]) or [],
      shipping_rate=to_money(row.get("shipping_rate") or 0),
      free_shipping=_bool(row.get("free_shipping")),
      free_shipping_threshold=to_money(threshold) if threshold else None,
      estimated_days=row.get("estimated_days") or "",
      enabled=_bool(row.get("enabled", "true")),
      sort_order=int(row.get("sort_order") or 0),
  )


def coupon_from_row(row: Dict[str, str]) -> Coupon:
  return Coupon(
      code=row["code"].strip().upper(),
      type=row["type"],
      value=to_money(row["value"]),
      min_order=to_money(row.get("min_order") or 0),
      max_uses=int(row.get("max_uses") or 0) or None,
      used_count=0,
      valid_from=row.get("valid_from") or db.now_iso(),
      valid_to=row.get("valid_to") or None,
      is_active=_bool(row.get("is_active", "true")),
      created_at=db.now_iso(),
  )


async def import_catalog() -> None:
  """Reads CSV files and populates the databases."""
  data_dir = FLAGS.data_dir
  # Ensure tables exist
  await db.manager.init_dbs(FLAGS.products_db_path, FLAGS.transactions_db_path)

  try:
    async with db.manager.products_session_factory() as session:
      logger.info("Clearing existing products...")
      await session.execute(delete(Product))

      logger.info("Importing Products from CSV...")
      products = [
          product_from_row(row)
          for row in _read_rows(os.path.join(data_dir, "products.csv"))
      ]
      session.add_all(products)

      logger.info("Clearing existing shipping zones...")
      await session.execute(delete(ShippingZone))

      logger.info("Importing Shipping Zones from CSV...")
      zones_path = os.path.join(data_dir, "shipping_zones.csv")
      if os.path.exists(zones_path):
        session.add_all(zone_from_row(row) for row in _read_rows(zones_path))

      await session.commit()
      logger.info("Imported %d products", len(products))

    coupons_path = os.path.join(data_dir, "coupons.csv")
    if os.path.exists(coupons_path):
      async with db.manager.transactions_session_factory() as session:
        logger.info("Importing Coupons from CSV...")
        existing = set(
            (await session.execute(select(Coupon.code))).scalars().all()
        )
        added = 0
        for row in _read_rows(coupons_path):
          coupon = coupon_from_row(row)
          if coupon.code in existing:
            logger.info("Keeping existing coupon %s", coupon.code)
            continue
          session.add(coupon)
          existing.add(coupon.code)
          added += 1
        await session.commit()
        logger.info("Added %d coupons", added)
  finally:
    await db.manager.close()


def main(argv):
  """Main entry point for the catalog import script."""
  del argv
  asyncio.run(import_catalog())


if __name__ == "__main__":
  absl_app.run(main)
