"""Payment gateway factory.

get_gateway() / set_gateway() pick the active adapter:
- FakeGateway for development and testing (PAYMENT_GATEWAY=fake)
- SSLCommerzGateway in production (PAYMENT_GATEWAY=sslcommerz)
"""

from ...config import (
    GATEWAY_TIMEOUT_SECONDS,
    PAYMENT_GATEWAY,
    SSLCOMMERZ_IS_LIVE,
    SSLCOMMERZ_STORE_ID,
    SSLCOMMERZ_STORE_PASSWORD,
)
from .fake_adapter import FakeGateway
from .port import PaymentGateway
from .sslcommerz_adapter import SSLCommerzGateway

_current_gateway: PaymentGateway | None = None


def _from_config() -> PaymentGateway:
    if PAYMENT_GATEWAY == "sslcommerz":
        return SSLCommerzGateway(
            SSLCOMMERZ_STORE_ID,
            SSLCOMMERZ_STORE_PASSWORD,
            is_live=SSLCOMMERZ_IS_LIVE,
            timeout=GATEWAY_TIMEOUT_SECONDS,
        )
    return FakeGateway()


def get_gateway() -> PaymentGateway:
    """Return the active payment gateway, building it from config on first use."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = _from_config()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    global _current_gateway
    _current_gateway = None
