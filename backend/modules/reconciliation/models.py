"""
modules/reconciliation/models.py — usage ledger and reconciliation error log.

Owns tables: usage_events, reconciliation_errors
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, Text
from sqlalchemy.sql import func

from core.base import Base


class UsageEvent(Base):
    """
    Append-only ledger row: mass charged to one spool for one completed print.

    printer_id is not a foreign key so history survives printer deletion;
    printer_name is the name at the time of the print.
    """
    __tablename__ = "usage_events"

    id = Column(Integer, primary_key=True)
    printer_id = Column(Integer, nullable=False, index=True)
    printer_name = Column(String(100))
    toolhead_id = Column(Integer, nullable=False)
    spool_id = Column(Integer, nullable=False, index=True)
    grams = Column(Float, nullable=False)
    job_label = Column(String(500))
    recorded_at = Column(DateTime, server_default=func.now(), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "printer_id": self.printer_id,
            "printer_name": self.printer_name,
            "toolhead_id": self.toolhead_id,
            "spool_id": self.spool_id,
            "grams": self.grams,
            "job_label": self.job_label,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
        }


class ReconciliationError(Base):
    """
    A detected completion whose usage could not be applied.

    Stays until an operator acknowledges it (after correcting Spoolman by hand).
    """
    __tablename__ = "reconciliation_errors"

    id = Column(Integer, primary_key=True)
    printer_id = Column(Integer, nullable=False, index=True)
    printer_name = Column(String(100))
    job_label = Column(String(500))
    message = Column(Text, nullable=False)
    occurred_at = Column(DateTime, server_default=func.now(), nullable=False)
    acknowledged = Column(Boolean, default=False, nullable=False)
    acknowledged_at = Column(DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "printer_id": self.printer_id,
            "printer_name": self.printer_name,
            "job_label": self.job_label,
            "message": self.message,
            "occurred_at": self.occurred_at.isoformat() if self.occurred_at else None,
            "acknowledged": bool(self.acknowledged),
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
        }
