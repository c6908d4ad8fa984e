"""Configurable fake payment gateway for development and testing.

Never leaves the process. Behaviour is switched at runtime with
``configure()``, including simulated transport failures, and every call
is recorded in ``calls`` for assertions.
"""

from decimal import Decimal
from uuid import uuid4

import httpx

from .port import CheckoutRequest, CheckoutSession, PaymentGateway


class FakeGateway(PaymentGateway):
    def __init__(self, checkout_base_url: str = "https://checkout.fake.local/pay") -> None:
        self.checkout_base_url = checkout_base_url
        self.should_succeed: bool = True
        self.failure_reason: str = "Store credential is invalid"
        self.raise_timeout: bool = False
        self.callbacks_valid: bool = True
        self.calls: list[dict] = []

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Store credential is invalid",
        raise_timeout: bool = False,
        callbacks_valid: bool = True,
    ) -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.raise_timeout = raise_timeout
        self.callbacks_valid = callbacks_valid

    async def create_session(self, request: CheckoutRequest) -> CheckoutSession:
        self.calls.append({"method": "create_session", "request": request})

        if self.raise_timeout:
            raise httpx.ConnectTimeout("Simulated gateway timeout")
        if self.should_succeed:
            session_key = uuid4().hex
            return CheckoutSession(
                success=True,
                redirect_url=f"{self.checkout_base_url}/{session_key}",
                session_key=session_key,
            )
        return CheckoutSession(success=False, failure_reason=self.failure_reason)

    async def verify_callback(
        self,
        transaction_id: str,
        payload: dict,
        amount: Decimal,
        currency: str,
    ) -> bool:
        self.calls.append({
            "method": "verify_callback",
            "transaction_id": transaction_id,
            "payload": payload,
            "amount": amount,
            "currency": currency,
        })
        return self.callbacks_valid
