# services/api/core/units.py
from __future__ import annotations

from typing import Optional

MM3_PER_M3 = 1e9


def volume_mm3(length: Optional[float], width: Optional[float], thickness: Optional[float]) -> float:
    """
    Cubic millimetres of a box. Missing or non-positive dimensions give 0
    so a "no board yet" state still renders as zero volume.
    """
    if not length or not width or not thickness:
        return 0
    if length <= 0 or width <= 0 or thickness <= 0:
        return 0
    return length * width * thickness


def volume_m3(length: Optional[float], width: Optional[float], thickness: Optional[float]) -> float:
    return volume_mm3(length, width, thickness) / MM3_PER_M3
