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

"""Server-side cart pricing.

Client-submitted unit prices are never trusted. Each line is re-priced from the
product catalog as

  base_price + variant.price_mod + size.price_mod + stripe.price + addon prices

and any line whose client price is off by more than a cent is reported.
"""

from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional, Sequence

import db
from models import CartLine
from models import CartValidation
from models import ValidatedLine
from money import PRICE_EPSILON
from money import to_money
from money import ZERO
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

Option = Dict[str, Any]


def sku_prefix(product: db.Product) -> str:
  return product.sku_prefix or product.slug.split("-")[0].upper()


def _option_sku(option: Option) -> str:
  return option.get("sku") or str(option.get("id", "")).upper()


def find_variant(product: db.Product, line: CartLine) -> Optional[Option]:
  """Matches by variant name, then by the SKU segment after the prefix."""
  if not product.variants or not line.variant:
    return None
  for variant in product.variants:
    if variant.get("name") == line.variant:
      return variant
  remainder = (line.sku or "").replace(f"{sku_prefix(product)}-", "", 1)
  for variant in product.variants:
    variant_sku = _option_sku(variant)
    if variant_sku and remainder.startswith(variant_sku):
      return variant
  return None


def find_size(product: db.Product, line: CartLine) -> Optional[Option]:
  """Matches by size name or id, then by a SKU segment."""
  if not product.sizes or not line.size:
    return None
  for size in product.sizes:
    if line.size in (size.get("name"), size.get("id")):
      return size
  segments = (line.sku or "").split("-")
  for size in product.sizes:
    if _option_sku(size) in segments:
      return size
  return None


def find_stripe(product: db.Product, line: CartLine) -> Optional[Option]:
  if not product.stripes or not line.stripe:
    return None
  for stripe in product.stripes:
    if line.stripe.id in (stripe.get("sku"), stripe.get("id")):
      return stripe
  return None


def find_addons(product: db.Product, line: CartLine) -> List[Option]:
  if not product.addons or not line.addons:
    return []
  matched = []
  for selected in line.addons:
    for addon in product.addons:
      if selected.id in (addon.get("sku"), addon.get("id")):
        matched.append(addon)
        break
  return matched


def unit_price(product: db.Product, line: CartLine) -> Decimal:
  """Returns the catalog price of one unit of `line`.

  Options that cannot be matched contribute nothing.
  """
  price = to_money(product.base_price)
  variant = find_variant(product, line)
  if variant:
    price += to_money(variant.get("price_mod"))
  size = find_size(product, line)
  if size:
    price += to_money(size.get("price_mod"))
  stripe = find_stripe(product, line)
  if stripe:
    price += to_money(stripe.get("price"))
  for addon in find_addons(product, line):
    price += to_money(addon.get("price"))
  return to_money(price)


class PricingService:
  """Re-prices carts against the product catalog."""

  def __init__(self, products_session: AsyncSession):
    self.products_session = products_session

  async def validate_cart(self, lines: Sequence[CartLine]) -> CartValidation:
    """Validates cart lines against catalog prices.

    Lines for unknown products, or with no SKU or a non-positive quantity, are
    dropped and reported in `errors`. Priced lines are always returned with
    their server-side price, whether or not the client agreed.

    Args:
      lines: Cart lines as submitted by the client.

    Returns:
      The validation result. `valid` is False iff `errors` is non-empty.
    """
    products = await db.get_products_by_slugs(
        self.products_session,
        [line.product_slug for line in lines if line.product_slug],
    )

    items: List[ValidatedLine] = []
    errors: List[str] = []
    rejected: List[str] = []
    subtotal = ZERO

    for line in lines:
      rejection = None
      product = products.get(line.product_slug)
      if not line.sku or not line.product_slug:
        rejection = f"Invalid cart item: {line.name or line.sku}"
      elif line.quantity < 1:
        rejection = f"Invalid quantity for {line.name or line.sku}"
      elif product is None:
        rejection = f"Product not found: {line.product_slug}"
      if rejection:
        errors.append(rejection)
        rejected.append(rejection)
        continue

      validated_price = unit_price(product, line)
      client_price = line.unit_price
      discrepancy = abs(validated_price - client_price) > PRICE_EPSILON
      if discrepancy:
        errors.append(
            f"Price mismatch for {line.name}: client={client_price},"
            f" server={validated_price}"
        )
      line_total = to_money(validated_price * line.quantity)
      items.append(
          ValidatedLine(
              line=line,
              validated_unit_price=validated_price,
              validated_total=line_total,
              price_discrepancy=discrepancy,
          )
      )
      subtotal += line_total

    if errors:
      logger.info("Cart validation found %d issue(s)", len(errors))

    return CartValidation(
        valid=not errors,
        items=items,
        subtotal=to_money(subtotal),
        errors=errors,
        rejected=rejected,
    )
