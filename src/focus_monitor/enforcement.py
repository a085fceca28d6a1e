"""Chooses the enforcement request that accompanies a focus alert."""

from __future__ import annotations

from datetime import timedelta
from typing import Union

from .events import ApplyDimEffect, RequestBlockIndication

EnforcementRequest = Union[ApplyDimEffect, RequestBlockIndication]


def select_enforcement(
    app_name: str,
    dim_instead_of_block: bool,
    dim_duration: timedelta = timedelta(seconds=3),
) -> EnforcementRequest:
    """Dim the screen briefly, or ask the OS bridge to indicate a block.

    The dim effect clears itself after ``dim_duration`` whatever happens to
    the alert. A block indication only signals intent; suspending the app
    is up to whoever receives it.
    """
    if dim_instead_of_block:
        return ApplyDimEffect(duration_ms=int(dim_duration.total_seconds() * 1000))
    return RequestBlockIndication(app_name=app_name)
