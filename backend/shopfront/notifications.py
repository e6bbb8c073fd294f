import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import resend
from markupsafe import escape

from .serializers import money, serialize_order_item

log = logging.getLogger(__name__)


def send_email_via_resend(payload: Dict[str, object], api_key: str) -> Tuple[bool, Optional[str]]:
    configured_api_key = (api_key or "").strip()
    if not configured_api_key:
        return False, "Resend API key is not configured."

    previous_api_key = getattr(resend, "api_key", None)
    resend.api_key = configured_api_key
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        return False, str(exc)
    finally:
        resend.api_key = previous_api_key

    if not isinstance(response, dict) or not response.get("id"):
        return False, str(response)

    return True, None


def build_order_email_lines(order_document: Dict, currency_code: str) -> List[str]:
    lines = []
    for entry in order_document.get("items") or []:
        item = serialize_order_item(entry)
        variant = " / ".join(part for part in (item["size"], item["color"]) if part)
        label = f"{item['name'] or 'Item'}{f' ({variant})' if variant else ''}"
        lines.append(f"{label} x{item['quantity']} ({currency_code} {item['price']:.2f})")
    return lines


def send_order_confirmation_email(
    order_document: Dict[str, object],
    recipient_email: str,
    api_key: str,
    sender: str,
) -> Tuple[bool, Optional[str]]:
    if not recipient_email:
        return False, "Missing customer email for the order receipt."

    currency_code = str(order_document.get("currency") or "INR").upper()
    total_value = money(order_document.get("total_amount_minor"))
    order_identifier = str(order_document.get("_id") or "Order")
    created_at_value = order_document.get("created_at")
    if not isinstance(created_at_value, datetime):
        created_at_value = datetime.utcnow()

    item_lines = build_order_email_lines(order_document, currency_code)
    text_body = (
        f"Thank you for your purchase! Order {order_identifier} on "
        f"{created_at_value.strftime('%Y-%m-%d %H:%M')}.\n"
        f"Items: {', '.join(item_lines)}.\n"
        f"Total: {currency_code} {total_value:.2f}.\n"
    )
    html_items = "".join(f"<li>{escape(line)}</li>" for line in item_lines)
    html_body = (
        f"<p>Thank you for your purchase!</p>"
        f"<p>Order <strong>{order_identifier}</strong></p>"
        f"<ul>{html_items}</ul>"
        f"<p>Total: <strong>{currency_code} {total_value:.2f}</strong></p>"
    )

    payload: Dict[str, object] = {
        "from": sender,
        "to": [recipient_email],
        "subject": "Thank you for your purchase",
        "html": html_body,
        "text": text_body,
    }
    sent, error = send_email_via_resend(payload, api_key)
    if not sent:
        log.warning("Order confirmation for %s not sent: %s", order_identifier, error)
    return sent, error
