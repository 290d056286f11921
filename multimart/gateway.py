import hashlib
import hmac
import logging
from decimal import Decimal

import httpx

from multimart.errors import GatewayError

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════════
# RAZORPAY REST CLIENT
# ══════════════════════════════════════════════════════════════════════════════

class RazorpayClient:
    """
    Thin client over the Razorpay REST API.

    Only the three calls the checkout needs: create an order, fetch a
    payment, and check the signature the checkout widget hands back.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self._client = httpx.Client(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            r = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Gateway request failed | path=%s | error=%s", path, e)
            raise GatewayError("Payment gateway unavailable") from e

        if r.status_code >= 400:
            logger.error(
                "Gateway error | path=%s | status=%s | response=%s",
                path,
                r.status_code,
                r.text,
            )
            raise GatewayError("Payment gateway rejected the request")

        return r.json()

    def create_order(self, amount: Decimal, currency: str, receipt: str) -> dict:
        # amounts travel in the smallest currency unit (paise)
        paise = int((Decimal(amount) * 100).to_integral_value())
        return self._request(
            "POST",
            "/orders",
            json={"amount": paise, "currency": currency, "receipt": receipt},
        )

    def fetch_payment(self, payment_id: str) -> dict:
        return self._request("GET", f"/payments/{payment_id}")

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        expected = hmac.new(
            self.key_secret.encode("utf-8"),
            f"{order_id}|{payment_id}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature or "")
