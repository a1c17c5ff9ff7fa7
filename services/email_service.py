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

"""Transactional email through the Resend REST API.

Sending is best effort: every failure is logged and reported as False, never
raised, so a broken mail setup cannot fail a checkout.
"""

import html
import logging
from typing import Any, Dict, Optional, Sequence

import config
import db
import httpx
from money import format_price
from money import to_money

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

_LAYOUT = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width,initial-scale=1"></head>
<body style="margin:0;padding:0;background:#f4f4f5;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;">
<table width="100%" cellpadding="0" cellspacing="0" style="background:#f4f4f5;padding:32px 16px;">
<tr><td align="center">
<table width="600" cellpadding="0" cellspacing="0" style="background:#ffffff;border-radius:8px;">
  <tr><td style="background:#18181b;padding:24px 32px;">
    <h1 style="margin:0;color:#ffffff;font-size:20px;font-weight:700;">{site_name}</h1>
  </td></tr>
  <tr><td style="padding:32px 32px 0;">
    <h2 style="margin:0;color:#18181b;font-size:22px;font-weight:700;">{title}</h2>
  </td></tr>
  <tr><td style="padding:16px 32px 32px;">
    {content}
  </td></tr>
  <tr><td style="background:#f9fafb;padding:20px 32px;border-top:1px solid #e4e4e7;">
    <p style="margin:0;color:#71717a;font-size:12px;text-align:center;">{site_name}</p>
  </td></tr>
</table>
</td></tr>
</table>
</body>
</html>"""


def _e(value: Any) -> str:
  return html.escape(str(value)) if value is not None else ""


def _items_table(items: Sequence[db.OrderItem]) -> str:
  rows = []
  for item in items:
    details = " / ".join(_e(d) for d in (item.variant, item.size) if d)
    details_html = (
        f'<br><span style="color:#71717a;font-size:12px;">{details}</span>'
        if details
        else ""
    )
    rows.append(
        "<tr>"
        f'<td style="padding:8px 0;">{_e(item.name)}{details_html}</td>'
        f'<td style="padding:8px 0;text-align:center;">{item.quantity}</td>'
        '<td style="padding:8px 0;text-align:right;">'
        f"{format_price(item.line_total)}</td>"
        "</tr>"
    )
  return (
      '<table width="100%" cellpadding="0" cellspacing="0"'
      ' style="margin:16px 0;">'
      '<tr><th style="text-align:left;">Item</th>'
      '<th style="text-align:center;">Qty</th>'
      '<th style="text-align:right;">Price</th></tr>'
      f"{''.join(rows)}</table>"
  )


def _summary_row(label: str, value: str, style: str = "") -> str:
  return (
      f'<tr><td style="padding:4px 0;{style}">{label}</td>'
      f'<td style="padding:4px 0;text-align:right;{style}">{value}</td></tr>'
  )


def _price_summary(order: db.Order) -> str:
  rows = [_summary_row("Subtotal", format_price(order.subtotal))]
  if to_money(order.discount) > 0:
    label = "Discount"
    if order.coupon_code:
      label += f" ({_e(order.coupon_code)})"
    rows.append(
        _summary_row(
            label, f"-{format_price(order.discount)}", "color:#16a34a;"
        )
    )
  shipping = to_money(order.shipping_cost)
  shipping_label = format_price(shipping) if shipping > 0 else "FREE"
  rows.append(_summary_row("Shipping", shipping_label))
  if to_money(order.tax) > 0:
    rows.append(_summary_row("Tax", format_price(order.tax)))
  rows.append(
      _summary_row(
          "Total", format_price(order.total), "font-size:18px;font-weight:700;"
      )
  )
  return (
      '<table width="100%" cellpadding="0" cellspacing="0">'
      f"{''.join(rows)}</table>"
  )


def _address_block(address: Optional[Dict[str, Any]]) -> str:
  if not address:
    return ""
  line2 = address.get("address_line2")
  return (
      '<div style="margin-top:24px;padding:16px;background:#f9fafb;">'
      '<h3 style="margin:0 0 8px;font-size:14px;">Shipping Address</h3>'
      '<p style="margin:0;font-size:14px;line-height:1.6;">'
      f"{_e(address.get('full_name'))}<br>"
      f"{_e(address.get('address_line1'))}<br>"
      f"{_e(line2) + '<br>' if line2 else ''}"
      f"{_e(address.get('city'))}, {_e(address.get('state'))}"
      f" {_e(address.get('postal_code'))}<br>"
      f"{_e(address.get('country'))}"
      "</p></div>"
  )


def order_confirmation_html(
    order: db.Order, items: Sequence[db.OrderItem], site_name: str
) -> str:
  content = (
      '<p style="font-size:14px;line-height:1.6;">Thank you for your order!'
      f" Your order <strong>#{_e(order.order_number)}</strong> has been"
      " confirmed and is being processed.</p>"
      f"{_items_table(items)}"
      f"{_price_summary(order)}"
      f"{_address_block(order.shipping_address)}"
  )
  return _LAYOUT.format(
      site_name=_e(site_name), title="Order Confirmed", content=content
  )


def shipping_notification_html(
    order: db.Order,
    items: Sequence[db.OrderItem],
    site_name: str,
    tracking_number: Optional[str] = None,
    tracking_url: Optional[str] = None,
) -> str:
  tracking = ""
  if tracking_number:
    link = ""
    if tracking_url:
      link = (
          f'<p style="margin:8px 0 0;"><a href="{_e(tracking_url)}">'
          "Track your package &rarr;</a></p>"
      )
    tracking = (
        '<div style="margin:16px 0;padding:16px;background:#f0fdf4;">'
        '<p style="margin:0;font-weight:600;">Tracking Number:'
        f" {_e(tracking_number)}</p>{link}</div>"
    )
  content = (
      '<p style="font-size:14px;line-height:1.6;">Great news! Your order'
      f" <strong>#{_e(order.order_number)}</strong> has been shipped.</p>"
      f"{tracking}"
      f"{_items_table(items)}"
      f"{_address_block(order.shipping_address)}"
  )
  return _LAYOUT.format(
      site_name=_e(site_name), title="Your Order Has Shipped", content=content
  )


class EmailService:
  """Sends order emails through Resend."""

  def __init__(
      self,
      api_key: Optional[str],
      sender: str,
      site_name: str = "",
      timeout: float = 15.0,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.api_key = api_key
    self.sender = sender
    self.site_name = site_name
    self.timeout = timeout
    self._transport = transport

  @classmethod
  def from_flags(cls) -> "EmailService":
    return cls(
        api_key=config.get("resend_api_key"),
        sender=config.get("email_from"),
        site_name=config.get("site_name"),
        timeout=config.get("http_timeout_seconds"),
    )

  async def send(self, to: str, subject: str, body_html: str) -> bool:
    """Sends one email. Returns False instead of raising on any failure."""
    if not self.api_key:
      logger.warning("RESEND_API_KEY not configured, skipping email")
      return False

    try:
      async with httpx.AsyncClient(
          timeout=self.timeout, transport=self._transport
      ) as client:
        response = await client.post(
            RESEND_API_URL,
            json={
                "from": self.sender,
                "to": to,
                "subject": subject,
                "html": body_html,
            },
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
      if response.status_code >= 400:
        logger.error(
            "Resend API error %s: %s", response.status_code, response.text
        )
        return False
    except httpx.HTTPError as e:
      logger.error("Failed to send email %r: %s", subject, e)
      return False
    return True

  async def send_order_confirmation(
      self, order: db.Order, items: Sequence[db.OrderItem]
  ) -> bool:
    return await self.send(
        order.email,
        f"Order Confirmed - {order.order_number}",
        order_confirmation_html(order, items, self.site_name),
    )

  async def send_shipping_notification(
      self,
      order: db.Order,
      items: Sequence[db.OrderItem],
      tracking_number: Optional[str] = None,
      tracking_url: Optional[str] = None,
  ) -> bool:
    return await self.send(
        order.email,
        f"Your Order #{order.order_number} Has Shipped",
        shipping_notification_html(
            order, items, self.site_name, tracking_number, tracking_url
        ),
    )
