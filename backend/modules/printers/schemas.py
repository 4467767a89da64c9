"""
modules/printers/schemas.py — Pydantic schemas for the printers domain.
"""

import re
from datetime import datetime
from typing import Optional, Dict

from pydantic import BaseModel, Field, ConfigDict, field_validator

from core.base import MIN_TOOLHEADS, MAX_TOOLHEADS
from modules.printers.printer_models import normalize_model_name

# Letters, digits and the separators used by hostnames, IPv4 and bracketed IPv6
_ADDRESS_RE = re.compile(r"^[A-Za-z0-9._:\[\]-]+$")
MAX_ADDRESS_LENGTH = 253


def validate_address(address: Optional[str]) -> str:
    """Boundary check for a printer address. Raises ValueError on bad input."""
    if address is None or not address.strip():
        raise ValueError("address is required")
    address = address.strip()
    if len(address) > MAX_ADDRESS_LENGTH:
        raise ValueError("invalid address format")
    if not _ADDRESS_RE.match(address):
        raise ValueError("invalid address format: contains invalid characters")
    return address


# ============== Printer Schemas ==============

class PrinterBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    model: Optional[str] = None
    address: str
    toolheads: int = Field(default=1, ge=MIN_TOOLHEADS, le=MAX_TOOLHEADS)
    is_active: bool = True
    display_order: int = 0

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("printer name is required")
        return v

    @field_validator("address")
    @classmethod
    def _check_address(cls, v):
        return validate_address(v)

    @field_validator("model")
    @classmethod
    def _normalize_model(cls, v):
        return normalize_model_name(v)


class PrinterCreate(PrinterBase):
    # Credentials are write-only and never returned in responses
    api_key: Optional[str] = None
    username: Optional[str] = "maker"
    password: Optional[str] = None


class PrinterUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    model: Optional[str] = None
    address: Optional[str] = None
    toolheads: Optional[int] = Field(default=None, ge=MIN_TOOLHEADS, le=MAX_TOOLHEADS)
    is_active: Optional[bool] = None
    display_order: Optional[int] = None
    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    @field_validator("address")
    @classmethod
    def _check_address(cls, v):
        if v is None:
            return v
        return validate_address(v)

    @field_validator("model")
    @classmethod
    def _normalize_model(cls, v):
        return normalize_model_name(v)


class PrinterResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    model: Optional[str] = None
    address: str
    toolheads: int
    is_active: bool
    display_order: int = 0
    has_api_key: bool = False
    last_state: Optional[str] = None
    last_seen: Optional[datetime] = None
    toolhead_names: Dict[int, str] = {}


class ToolheadNameUpdate(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=100)


class ConnectionTestRequest(BaseModel):
    address: str
    api_key: Optional[str] = None
    username: Optional[str] = "maker"
    password: Optional[str] = None

    @field_validator("address")
    @classmethod
    def _check_address(cls, v):
        return validate_address(v)
