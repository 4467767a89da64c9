"""
modules/bindings/schemas.py — Pydantic schemas for bindings and location assignment.
"""

from typing import Optional

from pydantic import BaseModel, Field


class BindingRequest(BaseModel):
    printer_id: int
    toolhead_id: int = Field(..., ge=0)
    # 0 or null unbinds the toolhead
    spool_id: Optional[int] = Field(default=None, ge=0)


class LocationAssignRequest(BaseModel):
    spool_id: int = Field(..., gt=0)
    location: str = Field(..., min_length=1, max_length=300)
