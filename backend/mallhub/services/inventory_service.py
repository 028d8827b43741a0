# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/mallhub/services/inventory_service.py

from flask import current_app

from ..extensions import db
from ..models import Product
from ..errors import ProductNotFound, ProductUnavailable, InsufficientStock, ValidationError
from .concurrency import lock_for_update, run_with_retry
"""
Inventory Invariants (authoritative)

- Product.stock is a mutable non-negative integer; it is the single source
  of truth for availability.
- Stock is consumed only by the order payment transaction (decrement), after
  reserve() has validated every line inside the same DB transaction.
- Checkout and cart operations only *read* stock (advisory check); nothing is
  held back between checkout and payment. Concurrent payers are resolved
  first-committer-wins; the loser gets InsufficientStock.
- Manual adjustments (SET/ADD/SUBTRACT) clamp at zero; decrement() never needs to.
"""


STOCK_STATUS_RUPTURE = "RUPTURE"
STOCK_STATUS_FAIBLE = "FAIBLE"
STOCK_STATUS_NORMAL = "NORMAL"

STOCK_OP_SET = "SET"
STOCK_OP_ADD = "ADD"
STOCK_OP_SUBTRACT = "SUBTRACT"

VALID_STOCK_OPERATIONS = [STOCK_OP_SET, STOCK_OP_ADD, STOCK_OP_SUBTRACT]


def _get_product(product_id: int, *, lock: bool = False) -> Product | None:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def require_available_product(product_id: int, *, lock: bool = False) -> Product:
    """Return the product if it exists and is active, else raise ProductUnavailable."""
    product = _get_product(product_id, lock=lock)
    if product is None or not product.is_active:
        raise ProductUnavailable(details={"product_id": product_id})
    return product


def reserve(product_id: int, quantity: int, *, lock: bool = False) -> Product:
    """
    Validate that quantity can be taken from an active product.

    Does not write anything. Callers inside a transaction pass lock=True so
    the row stays locked until they decrement and commit.
    """
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", details={"quantity": quantity})

    product = require_available_product(product_id, lock=lock)
    if product.stock < quantity:
        raise InsufficientStock(
            product_id=product.id,
            requested=quantity,
            available=product.stock,
            message=f"Insufficient stock for {product.name}. Available: {product.stock}",
        )
    return product


def decrement(product: Product, quantity: int) -> None:
    """
    Consume stock. Must run inside the caller's transaction, after reserve()
    validated the same product; does not commit.
    """
    if quantity > product.stock:
        raise InsufficientStock(product_id=product.id, requested=quantity, available=product.stock)
    product.stock = product.stock - quantity


def increment(product: Product, quantity: int) -> None:
    """Return stock to a product inside the caller's transaction; does not commit."""
    if quantity < 0:
        raise ValidationError("Quantity must be positive", details={"quantity": quantity})
    product.stock = product.stock + quantity


def adjust_stock(product_id: int, quantity: int, operation: str = STOCK_OP_SET, shop_id: int | None = None) -> Product:
    """
    Manual stock adjustment by the shop.

    SET replaces the level, ADD increases it, SUBTRACT decreases it clamped
    at zero.
    """
    if operation not in VALID_STOCK_OPERATIONS:
        raise ValidationError(
            f"Invalid stock operation: {operation}",
            details={"valid_operations": VALID_STOCK_OPERATIONS},
        )
    if quantity is None or quantity < 0:
        raise ValidationError("Quantity must be zero or positive", details={"quantity": quantity})

    def _op():
        product = _get_product(product_id, lock=True)
        if product is None or (shop_id is not None and product.shop_id != shop_id):
            raise ProductNotFound(details={"product_id": product_id})

        previous = product.stock
        if operation == STOCK_OP_ADD:
            increment(product, quantity)
        elif operation == STOCK_OP_SUBTRACT:
            product.stock = max(0, product.stock - quantity)
        else:
            product.stock = quantity
        new_stock = product.stock
        db.session.commit()

        current_app.logger.info(
            "Stock adjusted product_id=%s op=%s %s -> %s", product.id, operation, previous, new_stock
        )
        return product

    return run_with_retry(_op)


def classify_stock(stock: int, threshold: int | None = None) -> str:
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 5)
    if stock == 0:
        return STOCK_STATUS_RUPTURE
    if stock <= threshold:
        return STOCK_STATUS_FAIBLE
    return STOCK_STATUS_NORMAL


def stock_situation(product_id: int, shop_id: int | None = None) -> dict:
    """Read-only three-way stock status for a product."""
    product = _get_product(product_id)
    if product is None or (shop_id is not None and product.shop_id != shop_id):
        raise ProductNotFound(details={"product_id": product_id})

    threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 5)
    return {
        "product_id": product.id,
        "name": product.name,
        "stock": product.stock,
        "unit": product.unit,
        "threshold": threshold,
        "low_stock": product.stock <= threshold,
        "status": classify_stock(product.stock, threshold),
    }
