"""
modules/bindings/models.py — ORM models for toolhead-to-spool bindings.

Owns tables: toolhead_bindings
"""

from sqlalchemy import Column, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from core.base import Base


class ToolheadBinding(Base):
    """
    One spool loaded on one printer toolhead.

    (printer_id, toolhead_id) is the primary key; spool_id is globally
    unique, so a spool is bound to at most one toolhead anywhere.
    """
    __tablename__ = "toolhead_bindings"

    printer_id = Column(Integer, ForeignKey("printers.id", ondelete="CASCADE"), primary_key=True)
    toolhead_id = Column(Integer, primary_key=True)
    spool_id = Column(Integer, nullable=False, unique=True)  # Spoolman spool id
    bound_at = Column(DateTime, server_default=func.now(), nullable=False)

    printer = relationship("Printer")

    def __repr__(self):
        return f"<ToolheadBinding {self.printer_id}:{self.toolhead_id} -> spool {self.spool_id}>"
