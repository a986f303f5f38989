# chatcart/exceptions.py
"""Error taxonomy of the cart engine.

ValidationError and DomainError are expected outcomes of user input and are
not operational failures. ConcurrencyError is retryable; InfrastructureError
means storage or a collaborator failed and the transaction was rolled back.
"""


class CartError(Exception):
    """Base class for all cart engine errors."""

    retryable = False

    def __init__(self, message: str, code: str = "cart_error", **context):
        self.message = message
        self.code = code
        self.context = context
        super().__init__(message)


class ValidationError(CartError):
    """Malformed input; the cart was not touched."""

    def __init__(self, message: str, code: str = "invalid_request", **context):
        super().__init__(message, code=code, **context)


class DomainError(CartError):
    """Business rule violation that will fail again with the same arguments."""

    def __init__(self, message: str, code: str = "domain_error", product_id: int | None = None, **context):
        self.product_id = product_id
        super().__init__(message, code=code, **context)


class OutOfStockError(DomainError):
    def __init__(self, product_id: int, product_name: str = ""):
        message = (
            f'Product "{product_name}" is out of stock'
            if product_name
            else "Product is out of stock"
        )
        super().__init__(message, code="out_of_stock", product_id=product_id, product_name=product_name)


class InsufficientStockError(DomainError):
    def __init__(self, product_id: int, requested: int, available: int, product_name: str = ""):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_name or product_id}. "
            f"Available: {available}, Requested: {requested}",
            code="insufficient_stock",
            product_id=product_id,
            requested=requested,
            available=available,
        )


class CouponError(DomainError):
    """Coupon rejected; `rule` names the first check that failed."""

    def __init__(self, message: str, rule, coupon_code: str = ""):
        self.rule = rule
        self.coupon_code = coupon_code
        super().__init__(message, code="coupon_invalid", rule=getattr(rule, "value", rule), coupon_code=coupon_code)


class ConcurrencyError(CartError):
    """Lock could not be acquired in time. Safe to retry."""

    retryable = True

    def __init__(self, message: str, code: str = "cart_locked", **context):
        super().__init__(message, code=code, **context)


class InfrastructureError(CartError):
    """Storage or collaborator failure."""

    retryable = True

    def __init__(self, message: str, code: str = "infrastructure_error", **context):
        super().__init__(message, code=code, **context)
