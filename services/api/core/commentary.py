# services/api/core/commentary.py
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import httpx

from models import Board, CartItem
from core.cart import item_count
from core.stats import ShiftStats

logger = logging.getLogger(__name__)

NOT_STARTED = ("Shift not started.", "Time is money.")
PLAIN = ("Calculation completed.", "Good work!")
FALLBACK = ("Batch recorded. Normal result.", "Keep going!")
MANUAL_EDIT = ("Updated manually", "")


def _prompt_payload(board: Optional[Board], cart: List[CartItem], stats: ShiftStats) -> dict:
    return {
        "board": board.dims_label if board else None,
        "boardVolumeM3": round(stats.board_volume_m3, 4),
        "items": item_count(cart),
        "productsVolumeM3": round(stats.products_volume_m3, 4),
        "earnings": stats.earnings,
        "yieldPercentage": stats.yield_percentage,
        "products": [f"{i.product.name} ({i.product.price:g})" for i in cart],
    }


def build_commentary(
    board: Optional[Board],
    cart: List[CartItem],
    stats: ShiftStats,
    *,
    enabled: bool = True,
    url: str = "",
    timeout: float = 30.0,
    client: Optional[httpx.Client] = None,
) -> Tuple[str, str]:
    """
    Return (message, motivational_quote) for a reviewed shift.

    Remote enrichment is best-effort: any failure falls back to a
    neutral message, it never fails the review.
    """
    if not cart:
        return NOT_STARTED
    if not enabled or not url:
        return PLAIN

    try:
        if client is not None:
            resp = client.post(url, json=_prompt_payload(board, cart, stats))
        else:
            with httpx.Client(timeout=timeout) as c:
                resp = c.post(url, json=_prompt_payload(board, cart, stats))
        resp.raise_for_status()
        data = resp.json()
        message = str(data["message"])
        quote = str(data.get("motivationalQuote") or data.get("motivational_quote") or "")
        return message, quote
    except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
        logger.warning("Commentary request failed, using fallback: %s", e)
        return FALLBACK
