# Overview: Typed domain errors raised by the service layer.

"""
Domain error taxonomy.

Every error carries a stable machine-readable ``code``, an HTTP-style
``status`` and a ``details`` dict. Services raise these after rolling back
their session; the app-level error handler serializes them with to_dict().
"""

from __future__ import annotations


class MallError(Exception):
    """Base class for all domain errors."""
    code = "ERROR"
    status = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None, details: dict | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# KINDS
# =============================================================================

class NotFoundError(MallError):
    code = "NOT_FOUND"
    status = 404
    default_message = "Resource not found"


class InvalidStateError(MallError):
    code = "INVALID_STATE"
    status = 409
    default_message = "Operation not allowed in the current state"


class ConflictError(MallError):
    code = "CONFLICT"
    status = 409
    default_message = "Conflicting resource"


class ValidationError(MallError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"
    status = 400
    default_message = "Invalid input"


class InsufficientStock(MallError):
    """Requested quantity exceeds what is on hand; details report what is available."""
    code = "INSUFFICIENT_STOCK"
    status = 409
    default_message = "Insufficient stock"

    def __init__(self, product_id: int, requested: int, available: int, message: str | None = None):
        super().__init__(
            message or f"Insufficient stock for product {product_id}. Available: {available}",
            details={"product_id": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


# =============================================================================
# NOT FOUND
# =============================================================================

class ProductNotFound(NotFoundError):
    code = "PRODUCT_NOT_FOUND"
    default_message = "Product not found"


class ProductUnavailable(NotFoundError):
    code = "PRODUCT_UNAVAILABLE"
    default_message = "Product not found or unavailable"


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"
    default_message = "Order not found or already processed"


class CartItemNotFound(NotFoundError):
    code = "CART_ITEM_NOT_FOUND"
    default_message = "Product not found in cart"


class PromotionNotFound(NotFoundError):
    code = "PROMOTION_NOT_FOUND"
    default_message = "Promotion not found"


class BoxNotFound(NotFoundError):
    code = "BOX_NOT_FOUND"
    default_message = "Box not found"


class ShopNotFound(NotFoundError):
    code = "SHOP_NOT_FOUND"
    default_message = "Shop not found"


class NewShopNotFound(ShopNotFound):
    code = "NEW_SHOP_NOT_FOUND"
    default_message = "Destination shop not found"


class PaymentNotFound(NotFoundError):
    code = "PAYMENT_NOT_FOUND"
    default_message = "Payment not found"


# =============================================================================
# INVALID STATE
# =============================================================================

class EmptyCart(InvalidStateError):
    code = "EMPTY_CART"
    default_message = "Cart is empty"


class OrderNotPayable(InvalidStateError):
    code = "ORDER_NOT_PAYABLE"
    default_message = "Only PENDING orders can be paid"


class OrderNotCancellable(InvalidStateError):
    code = "ORDER_NOT_CANCELLABLE"
    default_message = "Only PENDING or PAID orders can be cancelled"


class BoxOccupied(InvalidStateError):
    code = "BOX_OCCUPIED"
    default_message = "Box is already occupied"


class BoxHasHistory(InvalidStateError):
    code = "BOX_HAS_HISTORY"
    default_message = "Cannot delete a box with occupation history"


class BoxAlreadyFree(InvalidStateError):
    code = "BOX_ALREADY_FREE"
    default_message = "Box is already free"


class BoxFree(InvalidStateError):
    code = "BOX_FREE"
    default_message = "Box is free, assign it instead of transferring"


class ShopHasNoBox(InvalidStateError):
    code = "SHOP_HAS_NO_BOX"
    default_message = "No box assigned to this shop"


class DataIntegrityError(InvalidStateError):
    """Stored records contradict each other (box/shop/history links)."""
    code = "DATA_INTEGRITY_ERROR"
    status = 500
    default_message = "Inconsistent box occupancy records"


class NoShopFound(DataIntegrityError):
    code = "NO_SHOP_FOUND"
    default_message = "No shop found for this box"


class NoOpenHistory(DataIntegrityError):
    code = "NO_OPEN_HISTORY"
    default_message = "Open occupation history not found"


# =============================================================================
# CONFLICT
# =============================================================================

class DuplicateBoxNumber(ConflictError):
    code = "DUPLICATE_BOX_NUMBER"
    default_message = "A box with this number already exists"


class ShopAlreadyHasBox(ConflictError):
    code = "SHOP_ALREADY_HAS_BOX"
    default_message = "This shop already has a box assigned"


class NewShopAlreadyHasBox(ShopAlreadyHasBox):
    code = "NEW_SHOP_ALREADY_HAS_BOX"
    default_message = "The destination shop already has a box assigned"
