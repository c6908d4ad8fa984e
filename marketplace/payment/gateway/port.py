"""Payment gateway port.

Contract every hosted-checkout provider adapter implements. The rest of
the service only talks to this interface, so the fake adapter (dev/test)
and the SSLCommerz adapter (production) are interchangeable.

Adapters signal transport failures (timeouts, connection errors, non-2xx
responses) by letting ``httpx.HTTPError`` propagate. A provider that
answers but refuses the session, or answers with something unreadable,
yields ``CheckoutSession(success=False)``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class CheckoutRequest:
    transaction_id: str
    amount: Decimal
    currency: str
    customer_name: str
    customer_email: str
    customer_phone: str
    shipping_address: str
    product_name: str
    success_url: str
    fail_url: str
    cancel_url: str


@dataclass(frozen=True)
class CheckoutSession:
    """Outcome of a session-creation attempt."""

    success: bool
    redirect_url: str | None = None
    session_key: str | None = None
    failure_reason: str | None = None


class PaymentGateway(ABC):
    @abstractmethod
    async def create_session(self, request: CheckoutRequest) -> CheckoutSession:
        """Open a hosted checkout session and return where to send the customer."""
        ...

    @abstractmethod
    async def verify_callback(
        self,
        transaction_id: str,
        payload: dict,
        amount: Decimal,
        currency: str,
    ) -> bool:
        """Confirm with the provider that a success callback is genuine and
        that it paid ``amount`` in ``currency``."""
        ...
