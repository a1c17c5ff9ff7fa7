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

"""Admin routes for orders and coupons.

Every route requires the `X-Admin-Key` header.
"""

import logging
from typing import Any, Optional

import dependencies
from exceptions import InvalidRequestError
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from fastapi import Query
from models import AdminOrderUpdate
from models import CouponCreate
from models import CouponUpdate
from models import NotifyRequest
from models import RefundRequest
from services.checkout_service import CheckoutService
from services.coupon_service import CouponService
from services.email_service import EmailService
from services.order_service import order_to_dict
from services.order_service import OrderService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    dependencies=[Depends(dependencies.verify_admin_key)],
)


# --- Orders ---


@router.get(
    "/orders", response_model=dict[str, Any], operation_id="admin_list_orders"
)
async def list_orders(
    status: Optional[str] = Query(None),
    payment_status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    sort: str = Query("created_at"),
    order: str = Query("desc"),
    page: int = Query(1),
    limit: int = Query(20),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> dict[str, Any]:
  """Lists orders with filters, pagination and store-wide totals."""
  return await order_service.list_orders(
      status=status,
      payment_status=payment_status,
      search=search,
      sort=sort,
      order=order,
      page=page,
      limit=limit,
  )


@router.get(
    "/orders/{id}",
    response_model=dict[str, Any],
    operation_id="admin_get_order",
)
async def get_order(
    order_id: str = Path(..., alias="id"),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> dict[str, Any]:
  return {"order": await order_service.detail(order_id)}


@router.put(
    "/orders/{id}",
    response_model=dict[str, Any],
    operation_id="admin_update_order",
)
async def update_order(
    order_id: str = Path(..., alias="id"),
    changes: AdminOrderUpdate = Body(...),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> dict[str, Any]:
  """Edits status, payment status, internal note, shipping cost or discount."""
  order = await order_service.update_admin(order_id, changes)
  await order_service.session.commit()
  return {"success": True, "order": order_to_dict(order)}


@router.post(
    "/orders/{id}/notify",
    response_model=dict[str, Any],
    operation_id="admin_notify_order",
)
async def notify_order(
    order_id: str = Path(..., alias="id"),
    body: NotifyRequest = Body(...),
    order_service: OrderService = Depends(dependencies.get_order_service),
    email_service: EmailService = Depends(dependencies.get_email_service),
) -> dict[str, Any]:
  """Marks an order shipped and emails the customer."""
  if body.type != "shipping":
    raise InvalidRequestError("Unsupported notification type")

  order = await order_service.mark_shipped(order_id)
  await order_service.session.commit()
  items = await order_service.items(order.id)
  email_sent = await email_service.send_shipping_notification(
      order, items, body.tracking_number, body.tracking_url
  )
  logger.info(
      "Order %s shipped (email sent: %s)", order.order_number, email_sent
  )
  return {"success": True, "emailSent": email_sent}


@router.post(
    "/orders/{id}/confirm-payment",
    response_model=dict[str, Any],
    operation_id="admin_confirm_payment",
)
async def confirm_payment(
    order_id: str = Path(..., alias="id"),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> dict[str, Any]:
  """Records a manually received payment, e.g. a bank transfer."""
  order = await checkout_service.confirm_payment(order_id)
  return {"success": True, "order": order}


@router.post(
    "/orders/{id}/refund",
    response_model=dict[str, Any],
    operation_id="admin_refund_order",
)
async def refund_order(
    order_id: str = Path(..., alias="id"),
    body: Optional[RefundRequest] = Body(None),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> dict[str, Any]:
  """Refunds a captured order, fully unless an amount is given."""
  amount = body.amount if body else None
  order = await checkout_service.refund(order_id, amount)
  return {"success": True, "order": order}


# --- Coupons ---


@router.get(
    "/coupons", response_model=dict[str, Any], operation_id="admin_list_coupons"
)
async def list_coupons(
    status: Optional[str] = Query(None),
    coupon_service: CouponService = Depends(dependencies.get_coupon_service),
) -> dict[str, Any]:
  """Lists coupons, optionally only `active` or `expired` ones."""
  return await coupon_service.list_coupons(status)


@router.post(
    "/coupons",
    response_model=dict[str, Any],
    operation_id="admin_create_coupon",
    status_code=201,
)
async def create_coupon(
    body: CouponCreate = Body(...),
    coupon_service: CouponService = Depends(dependencies.get_coupon_service),
) -> dict[str, Any]:
  return {"coupon": await coupon_service.create_coupon(body)}


@router.patch(
    "/coupons/{id}",
    response_model=dict[str, Any],
    operation_id="admin_update_coupon",
)
async def update_coupon(
    coupon_id: str = Path(..., alias="id"),
    body: CouponUpdate = Body(...),
    coupon_service: CouponService = Depends(dependencies.get_coupon_service),
) -> dict[str, Any]:
  return {"coupon": await coupon_service.update_coupon(coupon_id, body)}


@router.delete(
    "/coupons/{id}",
    response_model=dict[str, Any],
    operation_id="admin_delete_coupon",
)
async def delete_coupon(
    coupon_id: str = Path(..., alias="id"),
    coupon_service: CouponService = Depends(dependencies.get_coupon_service),
) -> dict[str, Any]:
  await coupon_service.delete_coupon(coupon_id)
  return {"success": True}
