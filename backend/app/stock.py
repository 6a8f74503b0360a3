from typing import Optional


class SalesReconciliationError(Exception):
    """Business-rule failure while reconciling a sale; the message is safe to return to clients."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StockReferenceError(SalesReconciliationError):
    pass


class InsufficientStockError(SalesReconciliationError):
    status_code = 409


def _product_exists(cur, organization_id: int, product_id: int) -> bool:
    cur.execute(
        "SELECT 1 FROM products WHERE id = %s AND organization_id = %s",
        (product_id, organization_id),
    )
    return cur.fetchone() is not None


def _move_product(cur, organization_id: int, product_id: int, delta: int, enforce_non_negative: bool):
    guard = " AND quantity_in_stock + %s >= 0" if enforce_non_negative else ""
    params = [delta, product_id, organization_id] + ([delta] if enforce_non_negative else [])
    cur.execute(
        f"""
        UPDATE products
        SET quantity_in_stock = quantity_in_stock + %s
        WHERE id = %s AND organization_id = %s{guard}
        RETURNING id, quantity_in_stock
        """,
        params,
    )
    if not cur.fetchone():
        if enforce_non_negative and _product_exists(cur, organization_id, product_id):
            raise InsufficientStockError(f"Insufficient stock for product {product_id}.")
        raise StockReferenceError("Failed to update product stock. Product not found or permission denied.")


def _move_variant(
    cur,
    organization_id: int,
    product_id: Optional[int],
    variant_id: int,
    delta: int,
    enforce_non_negative: bool,
):
    # Without a product reference the variant is still org-scoped through its parent product.
    owner = " AND pv.product_id = %s" if product_id else ""
    guard = " AND pv.quantity_in_stock + %s >= 0" if enforce_non_negative else ""
    params = (
        [delta, variant_id]
        + ([product_id] if product_id else [])
        + [organization_id]
        + ([delta] if enforce_non_negative else [])
    )
    cur.execute(
        f"""
        UPDATE product_variants pv
        SET quantity_in_stock = pv.quantity_in_stock + %s
        FROM products p
        WHERE pv.id = %s{owner}
          AND p.id = pv.product_id AND p.organization_id = %s{guard}
        RETURNING pv.id, pv.quantity_in_stock
        """,
        params,
    )
    if cur.fetchone():
        return
    if enforce_non_negative:
        cur.execute(
            f"""
            SELECT 1
            FROM product_variants pv
            JOIN products p ON p.id = pv.product_id
            WHERE pv.id = %s{owner} AND p.organization_id = %s
            """,
            [variant_id] + ([product_id] if product_id else []) + [organization_id],
        )
        if cur.fetchone():
            raise InsufficientStockError(f"Insufficient stock for product variant {variant_id}.")
    raise StockReferenceError("Failed to update product variant stock. Variant not found.")


def apply_stock_delta(
    cur,
    organization_id: int,
    product_id: Optional[int],
    variant_id: Optional[int],
    delta: int,
    *,
    enforce_non_negative: bool = False,
):
    """
    Move `products.quantity_in_stock` and/or the variant's by a signed delta.

    Whichever of product and variant is referenced moves; a variant given without
    its product still moves on its own. Rows are scoped to the organization; an
    UPDATE that matches nothing means the row is missing or belongs to someone
    else, and aborts the caller's transaction. With `enforce_non_negative` the
    decrement is conditional, so two concurrent sales can't both take the last units.
    """
    if not delta:
        return
    if product_id:
        _move_product(cur, organization_id, product_id, delta, enforce_non_negative)
    if variant_id:
        _move_variant(cur, organization_id, product_id, variant_id, delta, enforce_non_negative)
