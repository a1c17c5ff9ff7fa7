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

"""Money helpers.

Amounts are carried as `Decimal` in currency units (e.g. dollars) and rounded
half-up to two places. They are converted to `float` only at the JSON edge.
"""

import decimal
from decimal import Decimal
from typing import Any, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# Client/server unit prices differing by more than this are a mismatch.
PRICE_EPSILON = Decimal("0.01")


def to_money(value: Any) -> Decimal:
  """Converts a number (or numeric string) to a 2-place Decimal."""
  if value is None:
    return ZERO
  if not isinstance(value, Decimal):
    # str() avoids binary float artifacts such as 0.1 + 0.2.
    value = Decimal(str(value))
  return value.quantize(CENT, rounding=decimal.ROUND_HALF_UP)


def as_float(value: Optional[Decimal]) -> Optional[float]:
  """Converts a money Decimal to float for JSON responses."""
  if value is None:
    return None
  return float(to_money(value))


def format_price(value: Any, symbol: str = "$") -> str:
  """Formats an amount for humans, e.g. `$1,234.50`."""
  return f"{symbol}{to_money(value):,.2f}"
