"""SSLCommerz hosted checkout adapter.

Talks to the v4 session API to open a checkout and to the order
validation API to confirm success callbacks. Sandbox and live differ
only in host.
"""

import logging
from decimal import Decimal, InvalidOperation

import httpx

from .port import CheckoutRequest, CheckoutSession, PaymentGateway

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.sslcommerz.com"
LIVE_URL = "https://securepay.sslcommerz.com"

VALID_STATUSES = {"VALID", "VALIDATED"}


class SSLCommerzGateway(PaymentGateway):
    def __init__(
        self,
        store_id: str,
        store_password: str,
        is_live: bool = False,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.store_id = store_id
        self.store_password = store_password
        self.base_url = LIVE_URL if is_live else SANDBOX_URL
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def create_session(self, request: CheckoutRequest) -> CheckoutSession:
        form = {
            "store_id": self.store_id,
            "store_passwd": self.store_password,
            "total_amount": str(request.amount),
            "currency": request.currency,
            "tran_id": request.transaction_id,
            "success_url": request.success_url,
            "fail_url": request.fail_url,
            "cancel_url": request.cancel_url,
            "shipping_method": "Courier",
            "product_name": request.product_name,
            "product_category": "General",
            "product_profile": "general",
            "cus_name": request.customer_name,
            "cus_email": request.customer_email,
            "cus_add1": request.shipping_address,
            "cus_city": "Dhaka",
            "cus_postcode": "1000",
            "cus_country": "Bangladesh",
            "cus_phone": request.customer_phone,
            "ship_name": request.customer_name,
            "ship_add1": request.shipping_address,
            "ship_city": "Dhaka",
            "ship_postcode": "1000",
            "ship_country": "Bangladesh",
        }
        async with self._client() as client:
            resp = await client.post(f"{self.base_url}/gwprocess/v4/api.php", data=form)
            resp.raise_for_status()
        body = _json_object(resp)
        if body is None:
            return CheckoutSession(
                success=False,
                failure_reason="Unreadable response from SSLCommerz",
            )

        if body.get("status") == "SUCCESS" and body.get("GatewayPageURL"):
            return CheckoutSession(
                success=True,
                redirect_url=body["GatewayPageURL"],
                session_key=body.get("sessionkey"),
            )
        return CheckoutSession(
            success=False,
            failure_reason=body.get("failedreason") or "Session rejected by SSLCommerz",
        )

    async def verify_callback(
        self,
        transaction_id: str,
        payload: dict,
        amount: Decimal,
        currency: str,
    ) -> bool:
        val_id = payload.get("val_id")
        if not val_id:
            logger.warning("Success callback for %s carries no val_id", transaction_id)
            return False

        async with self._client() as client:
            resp = await client.get(
                f"{self.base_url}/validator/api/validationserverAPI.php",
                params={
                    "val_id": val_id,
                    "store_id": self.store_id,
                    "store_passwd": self.store_password,
                    "format": "json",
                },
            )
            resp.raise_for_status()
        body = _json_object(resp)
        if body is None:
            logger.warning("Validation response for %s is not JSON", transaction_id)
            return False

        if body.get("status") not in VALID_STATUSES or body.get("tran_id") != transaction_id:
            return False

        # currency_type/currency_amount echo what was requested at session time
        paid_currency = body.get("currency_type") or body.get("currency")
        try:
            paid_amount = Decimal(str(body.get("currency_amount") or body.get("amount")))
        except InvalidOperation:
            paid_amount = None
        if paid_currency != currency or paid_amount != amount:
            logger.warning(
                "Validated payment for %s is %s %s, expected %s %s",
                transaction_id, paid_amount, paid_currency, amount, currency,
            )
            return False
        return True


def _json_object(resp: httpx.Response) -> dict | None:
    """Decoded JSON object body, or None for HTML error pages and other junk."""
    try:
        body = resp.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None
