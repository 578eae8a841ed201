"""Typed API errors.

Services raise these; ``main`` renders them as ``{"status": "error", "message": ...}``
with the carried HTTP status.
"""


class ApiError(Exception):
    """Base exception for all API errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidInput(ApiError):
    """Raised for malformed identifiers or payloads the workflow refuses."""

    status_code = 400


class InsufficientStock(InvalidInput):
    """Raised when an order line asks for more units than are in stock."""

    def __init__(self, product_name: str, requested: int, available: int):
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(f"Not enough stock for product: {product_name}")


class Unauthorized(ApiError):
    status_code = 401


class Forbidden(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409


class Internal(ApiError):
    """Raised when a persistence step fails unexpectedly."""

    status_code = 500
