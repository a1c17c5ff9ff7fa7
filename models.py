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

"""Request and response models for the storefront REST server.

Cart lines keep the snake_case field names the storefront client persists in
its cart, while checkout bodies use the camelCase names the checkout page
sends. Required-field checks that must answer 400 rather than 422 are done by
the services, so most request fields here are optional.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field


class _CamelModel(BaseModel):
  model_config = ConfigDict(populate_by_name=True)


class LineOption(BaseModel):
  """A priced option (stripe or add-on) selected on a cart line."""

  model_config = ConfigDict(extra="allow")

  id: str
  name: Optional[str] = None
  price: Optional[Decimal] = None


class CartLine(BaseModel):
  """One configured product in a cart, as submitted by the client."""

  model_config = ConfigDict(extra="allow")

  sku: Optional[str] = None
  product_slug: Optional[str] = None
  name: str = ""
  variant: Optional[str] = None
  color: Optional[str] = None
  size: Optional[str] = None
  custom_texts: Optional[Union[Dict[str, Any], List[Any]]] = None
  stripe: Optional[LineOption] = None
  addons: List[LineOption] = Field(default_factory=list)
  unit_price: Decimal = Decimal("0")
  quantity: int = 0
  image: Optional[str] = None


class ValidatedLine(BaseModel):
  """A cart line together with its server-derived price."""

  line: CartLine
  validated_unit_price: Decimal
  validated_total: Decimal
  price_discrepancy: bool


class CartValidation(BaseModel):
  valid: bool
  items: List[ValidatedLine]
  subtotal: Decimal
  errors: List[str]
  # Errors for lines that were dropped rather than re-priced.
  rejected: List[str] = Field(default_factory=list)


class CouponValidation(BaseModel):
  valid: bool
  discount: Decimal = Decimal("0")
  type: Optional[str] = None
  value: Optional[Decimal] = None
  code: Optional[str] = None
  error: Optional[str] = None


class ShippingQuote(BaseModel):
  cost: Decimal
  is_free: bool
  estimated_days: str


# --- Cart requests ---


class CartQuantityUpdate(BaseModel):
  sku: Optional[str] = None
  quantity: Optional[int] = None


class CartRemove(BaseModel):
  sku: Optional[str] = None


class CartSync(BaseModel):
  items: List[CartLine] = Field(default_factory=list)


# --- Checkout requests ---


class ShippingDetails(_CamelModel):
  first_name: str = Field("", alias="firstName")
  last_name: str = Field("", alias="lastName")
  email: str = ""
  phone: Optional[str] = None
  address1: str = ""
  address2: Optional[str] = None
  city: str = ""
  state: str = ""
  postcode: str = ""
  country: str = ""


class CreateOrderRequest(_CamelModel):
  items: List[CartLine] = Field(default_factory=list)
  shipping: Optional[ShippingDetails] = None
  coupon_code: Optional[str] = Field(None, alias="couponCode")
  payment_method: str = Field("paypal", alias="paymentMethod")
  customer_note: Optional[str] = Field(None, alias="customerNote")


class CaptureOrderRequest(_CamelModel):
  paypal_order_id: Optional[str] = Field(None, alias="paypalOrderId")
  order_id: Optional[str] = Field(None, alias="orderId")


class ShippingQuoteRequest(_CamelModel):
  country_code: Optional[str] = Field(None, alias="countryCode")
  subtotal: Decimal = Decimal("0")


class CouponValidateRequest(BaseModel):
  code: Optional[str] = None
  subtotal: Optional[Union[int, float]] = None


class OrderLookupRequest(BaseModel):
  order_number: Optional[str] = None
  email: Optional[str] = None


# --- Admin requests ---


class AdminOrderUpdate(BaseModel):
  status: Optional[str] = None
  payment_status: Optional[str] = None
  internal_note: Optional[str] = None
  shipping_cost: Optional[Decimal] = None
  discount: Optional[Decimal] = None


class NotifyRequest(_CamelModel):
  type: str = "shipping"
  tracking_number: Optional[str] = Field(None, alias="trackingNumber")
  tracking_url: Optional[str] = Field(None, alias="trackingUrl")


class RefundRequest(BaseModel):
  amount: Optional[Decimal] = None


class CouponCreate(BaseModel):
  code: Optional[str] = None
  type: Optional[str] = None
  value: Optional[Decimal] = None
  min_order: Decimal = Decimal("0")
  max_uses: Optional[int] = None
  valid_from: Optional[str] = None
  valid_to: Optional[str] = None
  is_active: bool = True


class CouponUpdate(BaseModel):
  code: Optional[str] = None
  type: Optional[str] = None
  value: Optional[Decimal] = None
  min_order: Optional[Decimal] = None
  max_uses: Optional[int] = None
  valid_from: Optional[str] = None
  valid_to: Optional[str] = None
  is_active: Optional[bool] = None


# --- Account requests ---


class AddressIn(BaseModel):
  id: Optional[str] = None
  full_name: Optional[str] = None
  phone: Optional[str] = None
  email: Optional[str] = None
  address_line1: Optional[str] = None
  address_line2: Optional[str] = None
  city: Optional[str] = None
  state: Optional[str] = None
  postal_code: Optional[str] = None
  country: str = "US"
  label: str = "Home"
  is_default: bool = False
