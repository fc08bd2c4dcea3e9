"""
Validation utilities for shift records.
Rejects bad input before any remote call, with clear error messages.
"""
from __future__ import annotations

from datetime import datetime, tzinfo
from typing import List

from models import CartItem
from core.errors import ValidationError


def validate_board(length: int, width: int, thickness: int, batch_number: str) -> None:
    """
    Validate board dimensions and batch before a shift can start.

    Rules:
    - length, width, thickness must be > 0 (millimetres)
    - batch number must be a non-empty string

    Raises:
        ValidationError: if validation fails
    """
    for name, value in (("length", length), ("width", width), ("thickness", thickness)):
        if value is None or value <= 0:
            raise ValidationError(f"Board {name} must be positive, got {value}")

    if not (batch_number or "").strip():
        raise ValidationError("Batch number is required")


def validate_cart_for_save(cart: List[CartItem]) -> None:
    """
    A saved shift must contain at least one item, each with a positive
    quantity and appearing once.

    Raises:
        ValidationError: if the cart is empty or malformed
    """
    if not cart:
        raise ValidationError("Cart is empty: add at least one product before saving")

    seen = set()
    duplicates = []
    for item in cart:
        if item.quantity <= 0:
            raise ValidationError(
                f"Product {item.product.id}: quantity must be positive, got {item.quantity}"
            )
        if item.product.id in seen:
            duplicates.append(item.product.id)
        seen.add(item.product.id)

    if duplicates:
        raise ValidationError(f"Duplicate products in cart: {sorted(set(duplicates))}")


def ensure_same_day(timestamp: datetime, now: datetime, tz: tzinfo) -> None:
    """
    History entries can only be edited on the day they were recorded
    (local date in `tz`).
    """
    if timestamp.tzinfo is None:
        raise ValidationError("History entry timestamp has no timezone")
    if timestamp.astimezone(tz).date() != now.astimezone(tz).date():
        raise ValidationError("Only today's entries can be edited")
