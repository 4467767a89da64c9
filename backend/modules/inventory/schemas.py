"""
modules/inventory/schemas.py — Pydantic schemas for the inventory domain.
"""

from typing import Optional

from pydantic import BaseModel, Field


# ============== Location Schemas ==============

class LocationBody(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


# ============== Spoolman Schemas ==============

class SpoolmanTestRequest(BaseModel):
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
