"""
Read-only reference data: products, open batches, KPI thresholds, app settings.
"""
from fastapi import APIRouter, Depends
from typing import List
import logging

from core.auth import Capability
from models import Product
from models.converters import kpi_settings_from_rows
from models.partition import KPISettings, Partition
from routers.auth import current_user, require

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/catalog", tags=["catalog"], dependencies=[Depends(current_user)])


def get_storage():
    from main import get_storage_adapter
    return get_storage_adapter()


def get_ledger_config():
    from main import get_ledger_config
    return get_ledger_config()


@router.get("/products", response_model=List[Product])
def list_products(storage=Depends(get_storage)):
    """Open products; empty when no backend is configured or it is unreachable."""
    return storage.fetch_catalog() if storage else []


@router.get("/batches", response_model=List[Partition])
def list_open_batches(storage=Depends(get_storage)):
    return storage.fetch_open_batches() if storage else []


@router.get("/kpi-settings", response_model=KPISettings)
def kpi_settings(storage=Depends(get_storage), config=Depends(get_ledger_config)):
    if storage is None:
        return config.kpi_settings
    return kpi_settings_from_rows(storage.fetch_settings())


@router.get("/app-settings")
def app_settings(config=Depends(get_ledger_config)):
    return {
        "min_yield": config.min_yield,
        "max_yield": config.max_yield,
        "yield_control_enabled": config.yield_control_enabled,
        "ai_analysis_enabled": config.ai_analysis_enabled,
    }


@router.post("/refresh", dependencies=[Depends(require(Capability.MANAGE_REFERENCES))])
def refresh(storage=Depends(get_storage)):
    """Drop cached products/batches (after the owner edited the sheet)."""
    invalidate = getattr(storage, "invalidate_cache", None)
    if invalidate is not None:
        invalidate()
    return {"status": "ok"}
