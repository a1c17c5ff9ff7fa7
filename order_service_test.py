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

"""Tests for the order repository and its state machine."""

from decimal import Decimal
from unittest import mock

from absl.testing import absltest
import db
from exceptions import InvalidRequestError
from exceptions import InvalidStatusError
from exceptions import InvalidTransitionError
from exceptions import OrderCreationError
from exceptions import ResourceNotFoundError
from models import AdminOrderUpdate
from services.order_service import OrderDraft
from services.order_service import OrderItemDraft
from services.order_service import OrderService
from sqlalchemy.exc import SQLAlchemyError
import testing_utils


def make_draft(**overrides) -> OrderDraft:
  fields = {
      "email": " Grace@Example.com ",
      "shipping_address": {"full_name": "Grace Hopper", "country": "US"},
      "items": [
          OrderItemDraft(
              sku="X-BLU-M",
              product_slug="x",
              name="Posing Pillow",
              unit_price=Decimal("20.00"),
              quantity=2,
          ),
          OrderItemDraft(
              sku="WB-1",
              product_slug="wooden-bed",
              name="Wooden Posing Bed",
              unit_price=Decimal("89.00"),
              quantity=1,
          ),
      ],
      "subtotal": Decimal("129.00"),
      "shipping_cost": Decimal("6.95"),
      "discount": Decimal("10.00"),
  }
  fields.update(overrides)
  return OrderDraft(**fields)


class OrderServiceTest(testing_utils.StorefrontTestCase):
  """Tests for `OrderService`."""

  def orders(self, method_name, *args, commit=True, **kwargs):
    """Calls an `OrderService` method in its own committed transaction."""

    async def run(session):
      result = await getattr(OrderService(session), method_name)(
          *args, **kwargs
      )
      if commit:
        await session.commit()
      return result

    return self.in_transactions(run)

  def new_order(self, **overrides) -> db.Order:
    return self.orders("create_order", make_draft(**overrides), commit=False)

  def paid_order(self) -> db.Order:
    order = self.new_order()
    self.orders("mark_paid", order.id, "CAP-1")
    return self.get_order(order.id)

  # --- Creation ---

  def test_create_order(self):
    order = self.new_order()

    stored = self.get_order(order.id)
    self.assertEqual(stored.status, "pending")
    self.assertEqual(stored.payment_status, "unpaid")
    self.assertEqual(stored.email, "grace@example.com")
    self.assertEqual(stored.total, Decimal("125.95"))
    items = self.in_transactions(lambda s: db.get_order_items(s, order.id))
    self.assertEqual(
        [(i.sku, i.line_total) for i in items],
        [("X-BLU-M", Decimal("40.00")), ("WB-1", Decimal("89.00"))],
    )

  def test_failed_item_write_leaves_no_order(self):
    with mock.patch.object(
        db, "OrderItem", side_effect=SQLAlchemyError("disk I/O error")
    ):
      with self.assertRaises(OrderCreationError):
        self.new_order(order_number="BP-20260301-ABCDEF")

    self.assertEqual(
        self.count(db.Order, db.Order.order_number == "BP-20260301-ABCDEF"), 0
    )
    self.assertEqual(self.count(db.OrderItem), 0)

  # --- Payment transitions ---

  def test_mark_paid_applies_once(self):
    order = self.new_order()

    self.assertTrue(self.orders("mark_paid", order.id, "CAP-1"))
    self.assertFalse(self.orders("mark_paid", order.id, "CAP-2"))

    stored = self.get_order(order.id)
    self.assertEqual(stored.status, "processing")
    self.assertEqual(stored.payment_status, "paid")
    self.assertEqual(stored.paypal_capture_id, "CAP-1")
    self.assertIsNotNone(stored.paid_at)

  def test_mark_paid_notes_a_different_payer_email(self):
    order = self.new_order()

    self.orders("mark_paid", order.id, "CAP-1", "other@example.com")

    note = self.get_order(order.id).internal_note
    self.assertIn("PayPal email: other@example.com", note)

  def test_payment_after_cancellation_keeps_the_order_cancelled(self):
    order = self.new_order()
    self.orders("mark_payment_failed", order.id, "Capture failed: DECLINED")

    self.assertTrue(self.orders("mark_paid", order.id, "CAP-LATE"))

    stored = self.get_order(order.id)
    self.assertEqual(stored.status, "cancelled")
    self.assertEqual(stored.payment_status, "paid")
    self.assertIn("refund required", stored.internal_note)

  def test_payment_failure_never_cancels_a_paid_order(self):
    order = self.paid_order()

    self.assertFalse(self.orders("mark_payment_failed", order.id, "late"))

    stored = self.get_order(order.id)
    self.assertEqual(stored.status, "processing")
    self.assertIsNone(stored.internal_note)

  def test_payment_failure_appends_notes(self):
    order = self.new_order()
    self.orders("add_note", order.id, "first")

    self.assertTrue(self.orders("mark_payment_failed", order.id, "second"))

    self.assertEqual(self.get_order(order.id).internal_note, "first\nsecond")

  def test_mark_shipped(self):
    order = self.paid_order()

    self.orders("mark_shipped", order.id)

    stored = self.get_order(order.id)
    self.assertEqual(stored.status, "shipped")
    self.assertIsNotNone(stored.shipped_at)

  def test_unpaid_pending_order_cannot_ship(self):
    order = self.new_order()

    with self.assertRaises(InvalidTransitionError):
      self.orders("mark_shipped", order.id)

  # --- Admin edits ---

  def test_admin_update_keeps_the_total_consistent(self):
    order = self.new_order()

    self.orders(
        "update_admin",
        order.id,
        AdminOrderUpdate(shipping_cost=Decimal("12.5"), discount=Decimal("0")),
    )

    stored = self.get_order(order.id)
    self.assertEqual(stored.shipping_cost, Decimal("12.50"))
    self.assertEqual(stored.discount, Decimal("0.00"))
    self.assertEqual(
        stored.total,
        stored.subtotal + stored.shipping_cost + stored.tax - stored.discount,
    )
    self.assertEqual(stored.total, Decimal("141.50"))

  def test_admin_update_rejects_bad_input(self):
    order = self.new_order()

    with self.assertRaises(InvalidRequestError):
      self.orders("update_admin", order.id, AdminOrderUpdate())
    with self.assertRaises(InvalidStatusError):
      self.orders("update_admin", order.id, AdminOrderUpdate(status="lost"))
    with self.assertRaises(InvalidTransitionError):
      self.orders(
          "update_admin", order.id, AdminOrderUpdate(status="delivered")
      )
    with self.assertRaises(InvalidTransitionError):
      self.orders(
          "update_admin", order.id, AdminOrderUpdate(payment_status="refunded")
      )
    with self.assertRaises(InvalidRequestError):
      self.orders(
          "update_admin", order.id, AdminOrderUpdate(discount=Decimal("500"))
      )
    with self.assertRaises(ResourceNotFoundError):
      self.orders("update_admin", "missing", AdminOrderUpdate(status="shipped"))

    self.assertEqual(self.get_order(order.id).total, Decimal("125.95"))

  def test_admin_update_sets_timestamps(self):
    order = self.paid_order()

    self.orders(
        "update_admin",
        order.id,
        AdminOrderUpdate(status="shipped", internal_note="Sent by courier"),
    )

    stored = self.get_order(order.id)
    self.assertEqual(stored.status, "shipped")
    self.assertIsNotNone(stored.shipped_at)
    self.assertEqual(stored.internal_note, "Sent by courier")

  # --- Refunds ---

  def refund(self, order_id, refund_id, amount=None):

    async def run(session):
      service = OrderService(session)
      order = await service.reload(order_id)
      recorded = await service.record_refund(order, refund_id, amount)
      await session.commit()
      return recorded

    return self.in_transactions(run)

  def test_partial_then_full_refund(self):
    order = self.paid_order()

    self.assertTrue(self.refund(order.id, "REF-1", Decimal("25.95")))
    stored = self.get_order(order.id)
    self.assertEqual(stored.payment_status, "partial_refund")
    self.assertEqual(stored.status, "processing")

    self.assertTrue(self.refund(order.id, "REF-2"))
    stored = self.get_order(order.id)
    self.assertEqual(stored.payment_status, "refunded")
    self.assertEqual(stored.status, "refunded")

    refunds = [
        p
        for p in self.in_transactions(lambda s: db.get_payments(s, order.id))
        if p.direction == "out"
    ]
    self.assertEqual(
        [p.amount for p in refunds], [Decimal("25.95"), Decimal("100.00")]
    )

  def test_duplicate_refund_is_skipped(self):
    order = self.paid_order()

    self.assertTrue(self.refund(order.id, "REF-1", Decimal("5")))
    self.assertFalse(self.refund(order.id, "REF-1", Decimal("5")))

    self.assertEqual(
        self.count(db.Payment, db.Payment.direction == "out"), 1
    )

  def test_refund_of_unpaid_order_is_ignored(self):
    order = self.new_order()

    self.assertFalse(self.refund(order.id, "REF-1"))
    self.assertEqual(self.get_order(order.id).payment_status, "unpaid")

  # --- Read models ---

  def test_list_orders(self):
    first = self.new_order(email="a@example.com")
    self.new_order(email="b@example.com")
    self.orders("mark_paid", first.id, "CAP-1")

    listing = self.orders("list_orders", limit=1)

    self.assertLen(listing["orders"], 1)
    self.assertEqual(listing["orders"][0]["item_count"], 2)
    self.assertEqual(
        listing["pagination"],
        {"page": 1, "limit": 1, "total": 2, "totalPages": 2},
    )
    self.assertEqual(listing["summary"]["total_orders"], 2)
    self.assertEqual(listing["summary"]["paid"], 1)
    self.assertEqual(listing["summary"]["pending"], 1)
    self.assertEqual(listing["summary"]["total_revenue"], 125.95)

    found = self.orders("list_orders", search="B@EXAMPLE")
    self.assertEqual(
        [o["email"] for o in found["orders"]], ["b@example.com"]
    )
    paid = self.orders("list_orders", payment_status="paid")
    self.assertEqual([o["id"] for o in paid["orders"]], [first.id])

  def test_migrate_guest_orders(self):
    mine = self.new_order()
    self.new_order(email="someone@example.com")
    theirs = self.new_order(user_id="user-9")

    migrated = self.orders(
        "migrate_guest_orders", "user-1", "GRACE@example.com"
    )

    self.assertEqual(migrated, 1)
    listed = self.orders("list_for_user", "user-1")
    self.assertEqual([o["id"] for o in listed], [mine.id])
    self.assertEqual(self.get_order(theirs.id).user_id, "user-9")


if __name__ == "__main__":
  absltest.main()
