"""
modules/inventory/models.py — ORM models for the inventory domain.

Owns tables: locations

Spools and filaments are not stored locally; Spoolman is the source of truth.
The locations table is a local catalogue of storage locations (shelves, dry
boxes) kept in sync with Spoolman so tag URLs and dropdowns work while
Spoolman is unreachable.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func

from core.base import Base


class Location(Base):
    """A named storage location (never a printer toolhead)."""
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), unique=True, nullable=False)
    in_spoolman = Column(Boolean, default=False)  # seen in Spoolman on the last sync
    synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    def __repr__(self):
        return f"<Location {self.name}>"
