import hashlib
import hmac
import logging
import re
from typing import Dict, Optional

import requests

from .errors import GatewayError, GatewayUnavailableError, ValidationError

log = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.razorpay.com/v1"
GATEWAY_ID_PATTERN = re.compile(r"^[A-Za-z0-9_]{1,64}$")


def compute_payment_signature(gateway_order_id: str, gateway_payment_id: str, secret: str) -> str:
    message = f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, provided: Optional[str]) -> bool:
    if not provided or not isinstance(provided, str):
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


class RazorpayGateway:
    """Server-to-server client for the Razorpay orders and payments API."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.key_id = key_id or ""
        self.key_secret = key_secret or ""
        self.api_base = (api_base or DEFAULT_API_BASE).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def sign(self, gateway_order_id: str, gateway_payment_id: str) -> str:
        return compute_payment_signature(gateway_order_id, gateway_payment_id, self.key_secret)

    def _request(self, method: str, path: str, **kwargs) -> Dict:
        if not self.is_configured():
            raise GatewayError("Payment gateway configuration is incomplete. Please contact support.")

        url = f"{self.api_base}{path}"
        try:
            response = self.session.request(
                method,
                url,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                **kwargs,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            log.error("Payment gateway unreachable (%s %s): %s", method, path, exc)
            raise GatewayUnavailableError()
        except requests.RequestException as exc:
            log.error("Payment gateway request failed (%s %s): %s", method, path, exc)
            raise GatewayUnavailableError()

        if response.status_code >= 500:
            log.error("Payment gateway error %s: %s", response.status_code, response.text)
            raise GatewayUnavailableError()
        if response.status_code >= 400:
            log.error("Payment gateway rejected %s %s: %s", method, path, response.text)
            raise GatewayError()

        try:
            return response.json()
        except ValueError:
            log.error("Payment gateway returned a non-JSON body for %s %s", method, path)
            raise GatewayError("The payment provider returned an unreadable response.")

    def create_order(self, amount: int, currency: str, receipt: str) -> Dict:
        if not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Invalid amount")
        payload = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
        }
        log.info("Creating gateway order for receipt %s (%s %s)", receipt, amount, currency)
        return self._request("POST", "/orders", json=payload)

    def fetch_payment(self, payment_id: str) -> Dict:
        if not GATEWAY_ID_PATTERN.match(str(payment_id or "")):
            raise ValidationError("Invalid payment identifier.")
        return self._request("GET", f"/payments/{payment_id}")
