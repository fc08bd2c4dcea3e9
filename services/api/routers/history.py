"""
Local shift history and same-day edits.
"""
from fastapi import APIRouter, Depends, HTTPException
from typing import List
import logging

from core import cart as cart_ops
from core.auth import can_edit_entry
from core.errors import ValidationError
from core.ledger import ShiftLedger
from models import HistoryEntry
from models.user import User
from routers.auth import current_user
from routers.shifts import get_history, get_ledger_config, get_storage, ledger_error, resolve_product
from schemas.history import EditOut, HistoryEdit

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/history", tags=["history"])


@router.get("", response_model=List[HistoryEntry])
def list_history(
    include_deleted: bool = True,
    user: User = Depends(current_user),
    history=Depends(get_history),
):
    """Newest first. Soft-deleted entries stay listed unless filtered out."""
    entries = history.load()
    if not include_deleted:
        entries = [e for e in entries if not e.is_deleted]
    return entries


@router.get("/{board_id}", response_model=HistoryEntry)
def get_entry(board_id: str, user: User = Depends(current_user), history=Depends(get_history)):
    entry = history.get(board_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"No history entry for board {board_id}")
    return entry


@router.patch("/{board_id}", response_model=EditOut)
def edit_entry(
    board_id: str,
    body: HistoryEdit,
    user: User = Depends(current_user),
    storage=Depends(get_storage),
    history=Depends(get_history),
    config=Depends(get_ledger_config),
):
    """
    Edit today's entry. Emptying the cart soft-deletes it.
    ok=false means the sheet refused the change and nothing was changed locally.
    """
    entry = history.get(board_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"No history entry for board {board_id}")
    if not can_edit_entry(user, entry.executor):
        raise HTTPException(status_code=403, detail="Cannot edit another worker's entry")

    cart = list(entry.cart)
    if body.clear:
        cart = cart_ops.clear(cart)
    for product_id in body.remove:
        cart = cart_ops.remove_item(cart, product_id)
    for change in body.changes:
        product = resolve_product(change.product_id, change.product, storage, entry.cart)
        cart = cart_ops.apply_delta(cart, product, change.delta)

    try:
        outcome = ShiftLedger(history, storage, config).edit_entry(board_id, cart)
    except ValidationError as e:
        raise ledger_error(e)

    if outcome.ok:
        logger.info(f"History entry {board_id} edited by {user.login}: {outcome.message}")
    return EditOut(ok=outcome.ok, message=outcome.message, entry=outcome.entry)
