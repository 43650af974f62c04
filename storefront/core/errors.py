"""Error taxonomy shared by the cart, pricing, order and admin layers.

Every error carries a wire code and an HTTP status so the API layer can render
the uniform ``{success, error: {code, message}}`` envelope without knowing the
concrete type. Infrastructure failures (persistence, payment) keep their detail
in ``detail`` for logs and expose only a generic message.
"""
from typing import Optional


class StorefrontError(Exception):
    code = "INTERNAL_SERVER_ERROR"
    http_status = 500

    def __init__(self, message: str, code: Optional[str] = None, http_status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if http_status:
            self.http_status = http_status

    def to_response(self) -> dict:
        return {"success": False, "error": {"code": self.code, "message": self.message}}


class ValidationError(StorefrontError):
    code = "VALIDATION_ERROR"
    http_status = 400


class UnauthorizedError(StorefrontError):
    code = "UNAUTHORIZED"
    http_status = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class NotFoundError(StorefrontError):
    http_status = 404

    def __init__(self, entity: str, message: Optional[str] = None):
        super().__init__(
            message or f"{entity.replace('_', ' ').capitalize()} not found",
            code=f"{entity.upper()}_NOT_FOUND",
        )
        self.entity = entity


class EmptyCartError(StorefrontError):
    code = "EMPTY_CART"
    http_status = 400

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class PriceUnavailableError(StorefrontError):
    http_status = 404

    def __init__(self, product_id: int, variant_id: Optional[int] = None):
        if variant_id is None:
            super().__init__(f"Product {product_id} is not available", code="PRODUCT_NOT_FOUND")
        else:
            super().__init__(
                f"Variant {variant_id} of product {product_id} is not available",
                code="VARIANT_NOT_FOUND",
            )
        self.product_id = product_id
        self.variant_id = variant_id


class PersistenceError(StorefrontError):
    code = "INTERNAL_SERVER_ERROR"
    http_status = 500

    def __init__(self, detail: str = ""):
        super().__init__("A storage error occurred while processing the request")
        self.detail = detail


class PaymentError(StorefrontError):
    code = "INTERNAL_SERVER_ERROR"
    http_status = 500

    def __init__(self, detail: str = "", order_number: Optional[str] = None):
        super().__init__("Payment could not be initiated")
        self.detail = detail
        self.order_number = order_number
