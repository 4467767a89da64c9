"""
core/models.py — Core/system ORM models.

Owns tables: system_config
"""

from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func

from core.base import Base


class SystemConfig(Base):
    """Key-value store for runtime configuration overrides."""
    __tablename__ = "system_config"

    key = Column(String(100), primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
