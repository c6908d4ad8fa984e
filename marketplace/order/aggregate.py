"""
Order Service: order aggregate

Two independent state machines live on an order.

payment_status (owned by payment reconciliation):
    Pending → Success   (provider confirmed payment)
    Pending → Failed    (provider failure/cancel, customer cancel,
                         gateway error, expiry; stock is released)
    Success and Failed are terminal.

order_status (fulfillment):
    Pending → Processing           (set together with payment Success)
    Pending → Cancelled            (set together with payment Failed)
    Processing → Shipped → Out for Delivery → Delivered
    Processing | Shipped → Cancelled

The aggregate can be rebuilt from the event store by replaying
``apply_xxx`` handlers.
"""

from decimal import Decimal
from enum import Enum

from ..errors import InvalidOrderState


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    SUCCESS = "Success"
    FAILED = "Failed"


class OrderStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class FailureReason(str, Enum):
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_CANCELLED = "payment_cancelled"
    CANCELLED_BY_CUSTOMER = "cancelled_by_customer"
    GATEWAY_ERROR = "gateway_error"
    EXPIRED = "expired"


# Moves available to staff once the order is paid
FULFILLMENT_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED},
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED},
}


class OrderAggregate:
    def __init__(self) -> None:
        self.id: str | None = None
        self.customer_id: str = ""
        self.transaction_id: str = ""
        self.items: list[dict] = []
        self.total_amount: Decimal = Decimal("0")
        self.shipping_address: str = ""
        self.payment_status: PaymentStatus = PaymentStatus.PENDING
        self.order_status: OrderStatus = OrderStatus.PENDING
        self.failure_reason: str | None = None
        self.version: int = 0

    @property
    def is_settled(self) -> bool:
        return self.payment_status is not PaymentStatus.PENDING

    # ── Event handlers ───────────────────────────────

    def apply_order_placed(self, data: dict) -> None:
        self.id = data["order_id"]
        self.customer_id = data["customer_id"]
        self.transaction_id = data["transaction_id"]
        self.items = [
            {
                "product_id": item["product_id"],
                "quantity": item["quantity"],
                "price_at_purchase": Decimal(str(item["price_at_purchase"])),
            }
            for item in data["items"]
        ]
        self.total_amount = Decimal(str(data["total_amount"]))
        self.shipping_address = data["shipping_address"]
        self.payment_status = PaymentStatus.PENDING
        self.order_status = OrderStatus.PENDING

    def apply_payment_succeeded(self, _data: dict) -> None:
        self.payment_status = PaymentStatus.SUCCESS
        self.order_status = OrderStatus.PROCESSING

    def apply_payment_failed(self, data: dict) -> None:
        self.payment_status = PaymentStatus.FAILED
        self.order_status = OrderStatus.CANCELLED
        self.failure_reason = data.get("reason")

    def apply_order_status_changed(self, data: dict) -> None:
        self.order_status = OrderStatus(data["new_status"])

    # ── Replay ───────────────────────────────────────

    def apply_event(self, event_type: str, event_data: dict) -> None:
        handler = {
            "OrderPlaced": self.apply_order_placed,
            "PaymentSucceeded": self.apply_payment_succeeded,
            "PaymentFailed": self.apply_payment_failed,
            "OrderStatusChanged": self.apply_order_status_changed,
        }.get(event_type)
        if handler:
            handler(event_data)

    @classmethod
    def from_events(cls, events: list[dict]) -> "OrderAggregate":
        agg = cls()
        for e in events:
            agg.apply_event(e["event_type"], e["event_data"])
            agg.version = e["version"]
        return agg

    # ── Rules ────────────────────────────────────────

    def ensure_fulfillment_transition(self, new_status: OrderStatus) -> None:
        """Raise InvalidOrderState unless staff may move the order to ``new_status``."""
        if self.payment_status is not PaymentStatus.SUCCESS:
            raise InvalidOrderState(
                "Order is not paid",
                order_id=self.id,
                payment_status=self.payment_status.value,
            )
        allowed = FULFILLMENT_TRANSITIONS.get(self.order_status, set())
        if new_status not in allowed:
            raise InvalidOrderState(
                f"Cannot move order from {self.order_status.value} to {new_status.value}",
                order_id=self.id,
                order_status=self.order_status.value,
                requested=new_status.value,
            )
