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

"""Shipping service for calculating delivery costs.

This module encapsulates the logic for picking the shipping zone of a
destination country and pricing delivery for an order subtotal.
"""

from typing import Any, Dict, List, Optional

import db
from models import ShippingQuote
from money import as_float
from money import to_money
from money import ZERO
from sqlalchemy.ext.asyncio import AsyncSession

REST_OF_WORLD = "*"


class ShippingService:
  """Service for handling shipping logic."""

  def __init__(self, products_session: AsyncSession):
    self.products_session = products_session

  async def zones(self) -> List[db.ShippingZone]:
    return await db.get_shipping_zones(self.products_session)

  async def zone_for(self, country_code: str) -> Optional[db.ShippingZone]:
    """Returns the zone listing `country_code`, else the rest-of-world zone."""
    if not country_code:
      return None
    country_code = country_code.strip().upper()
    zones = await self.zones()
    for zone in zones:
      if country_code in (zone.countries or []):
        return zone
    for zone in zones:
      if REST_OF_WORLD in (zone.countries or []):
        return zone
    return None

  async def is_available(self, country_code: str) -> bool:
    return await self.zone_for(country_code) is not None

  async def quote(self, country_code: str, subtotal: Any) -> ShippingQuote:
    """Prices shipping to `country_code` for an order of `subtotal`.

    Args:
      country_code: ISO 3166-1 alpha-2 destination country.
      subtotal: Validated order subtotal.

    Returns:
      The quote. Destinations outside every zone cost nothing here; callers
      that must refuse them check `is_available` first.
    """
    zone = await self.zone_for(country_code)
    if zone is None:
      return ShippingQuote(
          cost=ZERO, is_free=False, estimated_days="Contact us"
      )

    subtotal = to_money(subtotal)
    threshold = to_money(zone.free_shipping_threshold)
    is_free = bool(zone.free_shipping) or (
        threshold > 0 and subtotal >= threshold
    )
    return ShippingQuote(
        cost=ZERO if is_free else to_money(zone.shipping_rate),
        is_free=is_free,
        estimated_days=zone.estimated_days or "",
    )


def zone_to_dict(zone: db.ShippingZone) -> Dict[str, Any]:
  return {
      "id": zone.id,
      "name": zone.name,
      "countries": zone.countries or [],
      "shippingRate": as_float(zone.shipping_rate),
      "freeShipping": bool(zone.free_shipping),
      "freeShippingThreshold": as_float(zone.free_shipping_threshold),
      "estimatedDays": zone.estimated_days,
  }
