"""
modules/reconciliation/schemas.py — Pydantic schemas for the reconciliation domain.
"""

from typing import Dict

from pydantic import BaseModel, Field, field_validator


class PrintCompleteTestRequest(BaseModel):
    printer_id: int
    usage: Dict[int, float] = Field(default_factory=lambda: {0: 10.0})
    job_label: str = "manual-test"

    @field_validator("usage")
    @classmethod
    def _check_usage(cls, v):
        for toolhead, grams in v.items():
            if toolhead < 0:
                raise ValueError("toolhead index must be >= 0")
            if grams < 0:
                raise ValueError("usage must not be negative")
        return v
