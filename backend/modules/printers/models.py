"""
modules/printers/models.py — ORM models for the printers domain.

Owns tables: printers, toolhead_names
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from core.base import Base, default_toolhead_name


class Printer(Base):
    """
    A PrusaLink printer being monitored.

    toolheads is the declared toolhead count; toolhead indexes are 0..toolheads-1.
    """
    __tablename__ = "printers"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)  # e.g., "CORE One", "XL-01"
    model = Column(String(50))  # normalized model name, e.g. "MK4", "XL"
    address = Column(String(253), nullable=False)  # IP or hostname
    api_key = Column(String(255))  # PrusaLink X-Api-Key (write-only)
    username = Column(String(100), default="maker")  # digest auth fallback
    password = Column(String(255))
    toolheads = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, default=True)  # monitored when true
    display_order = Column(Integer, default=0)

    # Heartbeat (written by the monitor)
    last_state = Column(String(20), nullable=True)
    last_seen = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    toolhead_names = relationship(
        "ToolheadName", back_populates="printer", cascade="all, delete-orphan",
    )

    def toolhead_display_name(self, toolhead_id: int) -> str:
        for row in self.toolhead_names:
            if row.toolhead_id == toolhead_id and row.display_name:
                return row.display_name
        return default_toolhead_name(toolhead_id)

    def toolhead_display_names(self) -> dict:
        return {tid: self.toolhead_display_name(tid) for tid in range(self.toolheads or 0)}

    def __repr__(self):
        return f"<Printer {self.name}>"


class ToolheadName(Base):
    """Operator-chosen display name for one toolhead (e.g. "Left", "Silk PLA")."""
    __tablename__ = "toolhead_names"
    __table_args__ = (UniqueConstraint("printer_id", "toolhead_id", name="uq_toolhead_name"),)

    id = Column(Integer, primary_key=True)
    printer_id = Column(Integer, ForeignKey("printers.id", ondelete="CASCADE"), nullable=False)
    toolhead_id = Column(Integer, nullable=False)
    display_name = Column(String(100), nullable=False)

    printer = relationship("Printer", back_populates="toolhead_names")
