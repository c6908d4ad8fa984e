"""
Order Service: placement input validation

Collects every problem before failing, so the caller sees all violated
fields at once.
"""

from pydantic import BaseModel

from ..config import MIN_ADDRESS_LENGTH
from ..errors import ValidationError


class LineItemInput(BaseModel):
    product_id: str
    quantity: int


def validate_placement(
    products: list[LineItemInput],
    shipping_address: str,
    min_address_length: int = MIN_ADDRESS_LENGTH,
) -> list[LineItemInput]:
    errors: dict[str, str] = {}

    if not products:
        errors["products"] = "Order must contain at least one product"
    for index, line in enumerate(products):
        if not line.product_id.strip():
            errors[f"products[{index}].product_id"] = "Product ID is required"
        if line.quantity < 1:
            errors[f"products[{index}].quantity"] = "Quantity must be at least 1"

    if len((shipping_address or "").strip()) < min_address_length:
        errors["shipping_address"] = (
            f"Address must be at least {min_address_length} characters"
        )

    if errors:
        raise ValidationError(errors)
    return products
