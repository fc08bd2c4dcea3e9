"""
Shift endpoints: one ledger per open shift, driven step by step by the client.

    POST /shifts                     open
    POST /shifts/{id}/board          confirm board
    POST /shifts/{id}/cart           +/- a product
    POST /shifts/{id}/review         compute stats and commentary
    POST /shifts/{id}/save           persist
    POST /shifts/{id}/next           start the next board
"""
from fastapi import APIRouter, Depends, HTTPException, status
from typing import Optional
import logging

from core.auth import Capability
from core.cart import find_product, item_count
from core.errors import (
    SaveInProgressError,
    ShiftClosedError,
    ValidationError,
    YieldOutOfRangeError,
)
from core.ledger import ShiftLedger
from models import Product
from models.user import User
from routers.auth import current_user, require
from schemas.shift import BoardCreate, CartDelta, KPIGradeOut, SaveOut, ShiftCreate, ShiftOut

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/shifts", tags=["shifts"], dependencies=[Depends(current_user)])


def get_storage():
    from main import get_storage_adapter
    return get_storage_adapter()


def get_history():
    from main import get_history_store
    return get_history_store()


def get_registry():
    from main import get_ledger_registry
    return get_ledger_registry()


def get_ledger_config():
    from main import get_ledger_config
    return get_ledger_config()


def ledger_error(e: Exception) -> HTTPException:
    """Ledger exceptions -> HTTP status codes."""
    if isinstance(e, YieldOutOfRangeError):
        return HTTPException(
            status_code=422,
            detail={
                "error": "YIELD_OUT_OF_RANGE",
                "message": str(e),
                "yield_percentage": e.yield_percentage,
                "min_yield": e.min_yield,
                "max_yield": e.max_yield,
            },
        )
    if isinstance(e, (ShiftClosedError, SaveInProgressError)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def shift_out(shift_id: str, ledger: ShiftLedger) -> ShiftOut:
    return ShiftOut(
        shift_id=shift_id,
        state=ledger.state.value,
        executor=ledger.executor,
        board=ledger.board,
        cart=ledger.cart,
        item_count=item_count(ledger.cart),
        result=ledger.result,
        yield_violation=ledger.yield_violation(),
        yield_anomaly=ledger.yield_anomaly,
        can_save=ledger.can_save,
    )


def resolve_product(product_id: str, supplied: Optional[Product], storage, cart) -> Product:
    """
    Catalog product for `product_id`. A client-supplied product is only
    trusted when no catalog is available (no store, or an empty fetch).
    """
    catalog = storage.fetch_catalog() if storage else []
    product = find_product(product_id, catalog, cart)
    if product is None and not catalog and supplied is not None and supplied.id == product_id:
        product = supplied
    if product is None:
        raise HTTPException(status_code=404, detail=f"Product {product_id} not found")
    return product


def get_ledger(
    shift_id: str,
    user: User = Depends(current_user),
    registry=Depends(get_registry),
) -> ShiftLedger:
    ledger = registry.get(shift_id)
    if ledger is None:
        raise HTTPException(status_code=404, detail=f"Shift {shift_id} not found")
    if ledger.owner is not None and ledger.owner != user.login:
        raise HTTPException(status_code=403, detail="Shift belongs to another session user")
    return ledger


@router.post("", response_model=ShiftOut, status_code=status.HTTP_201_CREATED)
def open_shift(
    body: ShiftCreate,
    user: User = Depends(require(Capability.RECORD_SHIFTS)),
    storage=Depends(get_storage),
    history=Depends(get_history),
    registry=Depends(get_registry),
    config=Depends(get_ledger_config),
):
    ledger = ShiftLedger(
        history, storage, config, executor=body.executor or user.name or user.login, owner=user.login
    )
    shift_id = registry.open(ledger)
    logger.info(f"Shift {shift_id} opened for {ledger.executor}")
    return shift_out(shift_id, ledger)


@router.get("/{shift_id}", response_model=ShiftOut)
def get_shift(shift_id: str, ledger: ShiftLedger = Depends(get_ledger)):
    return shift_out(shift_id, ledger)


@router.delete("/{shift_id}", status_code=status.HTTP_204_NO_CONTENT)
def close_shift(
    shift_id: str,
    ledger: ShiftLedger = Depends(get_ledger),
    registry=Depends(get_registry),
):
    """Discard the shift (logout). Anything unsaved is dropped."""
    registry.close(shift_id)


@router.post("/{shift_id}/fetch", response_model=ShiftOut)
def mark_fetch(shift_id: str, ledger: ShiftLedger = Depends(get_ledger)):
    try:
        ledger.mark_fetch()
    except (ShiftClosedError, SaveInProgressError) as e:
        raise ledger_error(e)
    return shift_out(shift_id, ledger)


@router.post("/{shift_id}/measure", response_model=ShiftOut)
def mark_measure(shift_id: str, ledger: ShiftLedger = Depends(get_ledger)):
    ledger.mark_measure()
    return shift_out(shift_id, ledger)


@router.post("/{shift_id}/board", response_model=ShiftOut)
def confirm_board(
    shift_id: str,
    body: BoardCreate,
    ledger: ShiftLedger = Depends(get_ledger),
    storage=Depends(get_storage),
):
    partition = None
    if body.batch_id and storage is not None:
        partition = next((p for p in storage.fetch_open_batches() if p.id == body.batch_id), None)
        if partition is None:
            raise HTTPException(status_code=404, detail=f"Open batch {body.batch_id} not found")

    try:
        ledger.confirm_board(body.length, body.width, body.thickness, body.batch_number, partition)
    except (ValidationError, ShiftClosedError, SaveInProgressError) as e:
        raise ledger_error(e)
    return shift_out(shift_id, ledger)


@router.post("/{shift_id}/cart", response_model=ShiftOut)
def update_cart(
    shift_id: str,
    body: CartDelta,
    ledger: ShiftLedger = Depends(get_ledger),
    storage=Depends(get_storage),
):
    product = resolve_product(body.product_id, body.product, storage, ledger.cart)

    try:
        ledger.update_cart(product, body.delta)
    except (ShiftClosedError, SaveInProgressError) as e:
        raise ledger_error(e)
    return shift_out(shift_id, ledger)


@router.delete("/{shift_id}/cart/{product_id}", response_model=ShiftOut)
def remove_item(shift_id: str, product_id: str, ledger: ShiftLedger = Depends(get_ledger)):
    try:
        ledger.remove_item(product_id)
    except (ShiftClosedError, SaveInProgressError) as e:
        raise ledger_error(e)
    return shift_out(shift_id, ledger)


@router.delete("/{shift_id}/cart", response_model=ShiftOut)
def clear_cart(shift_id: str, ledger: ShiftLedger = Depends(get_ledger)):
    try:
        ledger.clear_cart()
    except (ShiftClosedError, SaveInProgressError) as e:
        raise ledger_error(e)
    return shift_out(shift_id, ledger)


@router.post("/{shift_id}/review", response_model=ShiftOut)
def review(shift_id: str, ledger: ShiftLedger = Depends(get_ledger)):
    try:
        ledger.review()
    except (ShiftClosedError, SaveInProgressError) as e:
        raise ledger_error(e)
    return shift_out(shift_id, ledger)


@router.post("/{shift_id}/save", response_model=SaveOut)
def save(shift_id: str, ledger: ShiftLedger = Depends(get_ledger)):
    """
    200 with ok=false means the entry is kept on this device but the
    sheet did not accept it; the client may simply save again.
    """
    try:
        outcome = ledger.save()
    except (ValidationError, YieldOutOfRangeError, ShiftClosedError, SaveInProgressError) as e:
        raise ledger_error(e)

    grade = outcome.kpi_grade
    return SaveOut(
        ok=outcome.ok,
        synced=outcome.synced,
        message=outcome.message,
        state=ledger.state.value,
        entry=outcome.entry,
        kpi=outcome.kpi,
        kpi_grade=KPIGradeOut(level=grade.level, emoji=grade.emoji, send=grade.send) if grade else None,
    )


@router.post("/{shift_id}/next", response_model=ShiftOut)
def next_board(shift_id: str, ledger: ShiftLedger = Depends(get_ledger)):
    try:
        ledger.next_board()
    except (ShiftClosedError, SaveInProgressError) as e:
        raise ledger_error(e)
    return shift_out(shift_id, ledger)
