"""
Order Service: event definitions

Stored in the event store and published on ``order_events``.
Events are named in the past tense and never modified once written.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class LineItemSnapshot(BaseModel):
    """A line item as it was priced when the order was placed"""
    product_id: str
    quantity: int
    price_at_purchase: Decimal


class OrderPlaced(BaseModel):
    order_id: str
    customer_id: str
    transaction_id: str
    items: list[LineItemSnapshot]
    total_amount: Decimal
    shipping_address: str
    timestamp: datetime


class PaymentSucceeded(BaseModel):
    order_id: str
    transaction_id: str
    timestamp: datetime


class PaymentFailed(BaseModel):
    """Payment will not happen; ``released`` lists the stock given back."""
    order_id: str
    transaction_id: str
    reason: str
    released: list[LineItemSnapshot]
    timestamp: datetime


class OrderStatusChanged(BaseModel):
    order_id: str
    old_status: str
    new_status: str
    note: str
    changed_by: str
    timestamp: datetime
