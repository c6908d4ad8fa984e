"""
Inventory Ledger: event definitions

Published on the ``inventory_events`` channel after the owning
transaction commits.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class ProductRegistered(BaseModel):
    product_id: str
    vendor_id: str
    name: str
    price: Decimal
    stock: int
    timestamp: datetime


class ProductPriceChanged(BaseModel):
    """Live price changed. Existing orders keep their snapshot."""
    product_id: str
    old_price: Decimal
    new_price: Decimal
    timestamp: datetime


class InventoryReserved(BaseModel):
    """Stock held for a Pending order"""
    product_id: str
    order_id: str
    quantity: int
    timestamp: datetime


class InventoryReleased(BaseModel):
    """Stock returned after the order's payment failed"""
    product_id: str
    order_id: str
    quantity: int
    reason: str
    timestamp: datetime


class InventoryRestocked(BaseModel):
    product_id: str
    quantity: int
    timestamp: datetime


class ProductDeleted(BaseModel):
    """Removed from the catalog. Pending orders keep their line items."""
    product_id: str
    vendor_id: str
    timestamp: datetime
