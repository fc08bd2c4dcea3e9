# services/api/core/cart.py
"""
Cart algebra. No board, no persistence: lists of CartItem in, lists out.
Inputs are never mutated.
"""
from __future__ import annotations

from typing import Iterable, List, Optional

from models import CartItem, Product


def apply_delta(cart: List[CartItem], product: Product, delta: int) -> List[CartItem]:
    """
    Apply a quantity change for `product`.

    - present: quantity += delta; at or below zero the line is dropped
    - absent, delta > 0: new line with quantity 1 (delta magnitude ignored)
    - absent, delta <= 0: the same list object is returned
    """
    existing = next((item for item in cart if item.product.id == product.id), None)

    if existing is not None:
        new_qty = existing.quantity + delta
        if new_qty <= 0:
            return [item for item in cart if item.product.id != product.id]
        return [
            item.model_copy(update={"quantity": new_qty}) if item.product.id == product.id else item
            for item in cart
        ]

    if delta > 0:
        # First tap always starts at 1, kept for parity with the client
        return [*cart, CartItem(product=product, quantity=1)]

    return cart


def remove_item(cart: List[CartItem], product_id: str) -> List[CartItem]:
    return [item for item in cart if item.product.id != product_id]


def clear(cart: List[CartItem]) -> List[CartItem]:
    return []


def item_count(cart: List[CartItem]) -> int:
    return sum(item.quantity for item in cart)


def find_product(product_id: str, catalog: Iterable[Product], cart: List[CartItem]) -> Optional[Product]:
    """Look the product up in the catalog first, then among the cart lines."""
    for product in catalog:
        if product.id == product_id:
            return product
    return next((item.product for item in cart if item.product.id == product_id), None)
