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

"""Tests for coupon validation and administration."""

import datetime
from decimal import Decimal

from absl.testing import absltest
import db
from exceptions import InvalidRequestError
from exceptions import ResourceNotFoundError
from models import CouponCreate
from models import CouponUpdate
from services.coupon_service import compute_discount
from services.coupon_service import CouponService
import testing_utils

NOW = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)


class ComputeDiscountTest(absltest.TestCase):

  def test_percentage(self):
    self.assertEqual(
        compute_discount("percentage", 10, Decimal("50")), Decimal("5.00")
    )

  def test_percentage_rounds_half_up(self):
    self.assertEqual(
        compute_discount("percentage", 15, Decimal("10.30")), Decimal("1.55")
    )

  def test_fixed_never_exceeds_subtotal(self):
    self.assertEqual(
        compute_discount("fixed", 25, Decimal("20")), Decimal("20.00")
    )
    self.assertEqual(
        compute_discount("fixed", 5, Decimal("20")), Decimal("5.00")
    )


class CouponValidationTest(testing_utils.StorefrontTestCase):
  """Tests for `CouponService.validate`."""

  def add_coupon(self, **fields):
    values = {
        "type": "fixed",
        "value": Decimal("5"),
        "min_order": Decimal("0"),
        "used_count": 0,
        "is_active": True,
        "created_at": db.now_iso(),
    }
    values.update(fields)

    async def run(session):
      session.add(db.Coupon(**values))
      await session.commit()

    self.in_transactions(run)

  def validate(self, code, subtotal, now=NOW):
    return self.in_transactions(
        lambda session: CouponService(session).validate(code, subtotal, now=now)
    )

  def test_percentage_coupon(self):
    result = self.validate("SAVE10", 50)

    self.assertTrue(result.valid)
    self.assertEqual(result.discount, Decimal("5.00"))
    self.assertEqual(result.type, "percentage")
    self.assertEqual(result.code, "SAVE10")

  def test_code_is_case_insensitive(self):
    self.assertTrue(self.validate(" save10 ", 50).valid)

  def test_unknown_code(self):
    result = self.validate("NOPE", 50)

    self.assertFalse(result.valid)
    self.assertEqual(result.error, "Invalid coupon code")

  def test_inactive_coupon(self):
    self.add_coupon(code="OFF", is_active=False)

    self.assertEqual(self.validate("OFF", 50).error, "Invalid coupon code")

  def test_not_yet_active(self):
    self.add_coupon(code="SOON", valid_from="2026-04-01T00:00:00Z")

    self.assertEqual(
        self.validate("SOON", 50).error, "Coupon is not yet active"
    )

  def test_expired(self):
    self.add_coupon(code="OLD", valid_to="2026-02-01T00:00:00")

    self.assertEqual(self.validate("OLD", 50).error, "Coupon has expired")

  def test_usage_limit(self):
    self.add_coupon(code="USED", max_uses=3, used_count=3)

    self.assertEqual(
        self.validate("USED", 50).error, "Coupon usage limit reached"
    )

  def test_minimum_order(self):
    self.add_coupon(code="BIG", min_order=Decimal("100"))

    result = self.validate("BIG", Decimal("99.99"))

    self.assertFalse(result.valid)
    self.assertEqual(result.error, "Minimum order of $100.00 required")
    self.assertTrue(self.validate("BIG", 100).valid)

  def test_expiry_is_checked_before_usage(self):
    self.add_coupon(
        code="BOTH", valid_to="2026-01-01T00:00:00Z", max_uses=1, used_count=1
    )

    self.assertEqual(self.validate("BOTH", 50).error, "Coupon has expired")

  def test_fixed_discount_is_capped_by_subtotal(self):
    self.add_coupon(code="TWENTY", value=Decimal("20"))

    for subtotal in ("5", "19.99", "20", "250"):
      result = self.validate("TWENTY", Decimal(subtotal))
      self.assertTrue(result.valid)
      self.assertLessEqual(result.discount, Decimal(subtotal))
      self.assertGreaterEqual(result.discount, 0)

  def test_validation_does_not_count_usage(self):
    self.validate("ONCE5", 50)
    self.validate("ONCE5", 50)

    self.assertEqual(self.get_coupon("ONCE5").used_count, 0)

  def test_usage_increment_stops_at_the_limit(self):

    async def increment_twice(session):
      first = await db.increment_coupon_usage(session, "ONCE5")
      second = await db.increment_coupon_usage(session, "ONCE5")
      await session.commit()
      return first, second

    self.assertEqual(self.in_transactions(increment_twice), (True, False))
    self.assertEqual(self.get_coupon("ONCE5").used_count, 1)


class CouponAdminTest(testing_utils.StorefrontTestCase):
  """Tests for coupon administration through `CouponService`."""

  def call(self, method_name, *args):
    return self.in_transactions(
        lambda session: getattr(CouponService(session), method_name)(*args)
    )

  def test_create_normalizes_code(self):
    created = self.call(
        "create_coupon",
        CouponCreate(code=" spring20 ", type="percentage", value=20),
    )

    self.assertEqual(created["code"], "SPRING20")
    self.assertEqual(created["value"], 20.0)
    self.assertIsNone(created["max_uses"])
    self.assertTrue(created["is_active"])
    self.assertIsNotNone(self.get_coupon("SPRING20"))

  def test_create_rejects_duplicates(self):
    with self.assertRaisesRegex(InvalidRequestError, "already exists"):
      self.call(
          "create_coupon", CouponCreate(code="save10", type="fixed", value=3)
      )

  def test_create_validates_fields(self):
    bad_requests = [
        CouponCreate(code="A", type="fixed"),
        CouponCreate(code="A", type="bogus", value=5),
        CouponCreate(code="A", type="percentage", value=150),
        CouponCreate(code="A", type="fixed", value=0),
        CouponCreate(code="A", type="fixed", value=5, valid_to="someday"),
    ]
    for request in bad_requests:
      with self.assertRaises(InvalidRequestError):
        self.call("create_coupon", request)

  def test_update(self):
    coupon_id = self.get_coupon("SAVE10").id

    updated = self.call(
        "update_coupon", coupon_id, CouponUpdate(value=15, is_active=False)
    )

    self.assertEqual(updated["value"], 15.0)
    self.assertFalse(updated["is_active"])
    self.assertFalse(self.get_coupon("SAVE10").is_active)

  def test_update_rejects_out_of_range_percentage(self):
    coupon_id = self.get_coupon("SAVE10").id

    with self.assertRaises(InvalidRequestError):
      self.call("update_coupon", coupon_id, CouponUpdate(value=101))

  def test_update_and_delete_unknown_coupon(self):
    with self.assertRaises(ResourceNotFoundError):
      self.call("update_coupon", "missing", CouponUpdate(value=5))
    with self.assertRaises(ResourceNotFoundError):
      self.call("delete_coupon", "missing")

  def test_delete(self):
    self.call("delete_coupon", self.get_coupon("ONCE5").id)

    self.assertIsNone(self.get_coupon("ONCE5"))

  def test_list_filters_and_summary(self):
    self.call(
        "create_coupon",
        CouponCreate(code="GONE", type="fixed", value=1, is_active=False),
    )

    listing = self.call("list_coupons", "active")

    self.assertCountEqual(
        [c["code"] for c in listing["coupons"]], ["SAVE10", "ONCE5"]
    )
    self.assertEqual(listing["summary"]["total"], 3)
    self.assertEqual(listing["summary"]["expired"], 1)
    expired = self.call("list_coupons", "expired")
    self.assertEqual([c["code"] for c in expired["coupons"]], ["GONE"])


if __name__ == "__main__":
  absltest.main()
