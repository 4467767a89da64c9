"""
modules/pairing/models.py — short-lived two-scan pairing sessions.

Owns tables: pairing_sessions
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean

from core.base import Base


class PairingSession(Base):
    """
    One client's in-progress pairing. Keyed by a hash of the client address
    so that two scans from the same phone land in the same row.

    expires_at is fixed at creation (created_at + TTL); merges never extend it.
    """
    __tablename__ = "pairing_sessions"

    session_key = Column(String(32), primary_key=True)
    spool_id = Column(Integer, nullable=True)
    location_name = Column(String(300), nullable=True)
    printer_id = Column(Integer, nullable=True)  # set when the location is a printer toolhead
    printer_name = Column(String(100), nullable=True)
    toolhead_id = Column(Integer, nullable=True)
    is_printer_location = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

    @property
    def has_spool(self) -> bool:
        return bool(self.spool_id and self.spool_id > 0)

    @property
    def has_location(self) -> bool:
        if self.is_printer_location:
            return self.printer_id is not None and self.toolhead_id is not None and self.toolhead_id >= 0
        return bool(self.location_name)

    @property
    def is_complete(self) -> bool:
        return self.has_spool and self.has_location
