"""
Marketplace: error taxonomy

Every business failure is a MarketplaceError carrying the HTTP status it
maps to. main.py turns them into ``{"error", "message", "details"}``.
"""


class MarketplaceError(Exception):
    status_code = 500

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(MarketplaceError):
    """Bad input shape. ``details["fields"]`` maps field -> reason."""

    status_code = 400

    def __init__(self, fields: dict[str, str]) -> None:
        super().__init__(
            "Invalid fields: " + ", ".join(sorted(fields)),
            fields=fields,
        )
        self.fields = fields


class OutOfStock(MarketplaceError):
    status_code = 400

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        super().__init__(
            f"OutOfStock: {product_id}",
            product_id=product_id,
            requested=requested,
            available=available,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class NotFound(MarketplaceError):
    status_code = 404


class ProductNotFound(NotFound):
    def __init__(self, product_id: str) -> None:
        super().__init__(f"Product not found: {product_id}", product_id=product_id)
        self.product_id = product_id


class OrderNotFound(NotFound):
    def __init__(self, reference: str) -> None:
        super().__init__(f"Order not found: {reference}", reference=reference)
        self.reference = reference


class InvalidOrderState(MarketplaceError):
    status_code = 409


class GatewayError(MarketplaceError):
    """Payment provider refused or failed to open a checkout session."""

    status_code = 502


class Unauthorized(MarketplaceError):
    status_code = 401


class Forbidden(MarketplaceError):
    status_code = 403
