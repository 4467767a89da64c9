"""
modules/system/schemas.py — Pydantic schemas for the system domain.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class HealthCheck(BaseModel):
    status: str
    version: str
    database: str
    spoolman_connected: bool
    monitors_running: bool = False
    printers_monitored: int = 0


class ConfigResponse(BaseModel):
    spoolman_url: str
    spoolman_username: Optional[str] = None
    has_spoolman_password: bool = False
    spoolman_timeout: float
    poll_interval: float
    prusalink_timeout: float
    prusalink_file_download_timeout: float
    download_attempts: int
    download_retry_delay: float
    pairing_session_ttl: int
    location_sync_interval: int
    auto_assign_previous_spool_enabled: bool
    auto_assign_previous_spool_location: str


class ConfigUpdate(BaseModel):
    spoolman_url: Optional[str] = None
    spoolman_username: Optional[str] = None
    spoolman_password: Optional[str] = None
    spoolman_timeout: Optional[float] = Field(default=None, gt=0, le=120)
    poll_interval: Optional[float] = Field(default=None, ge=1, le=3600)
    prusalink_timeout: Optional[float] = Field(default=None, gt=0, le=120)
    prusalink_file_download_timeout: Optional[float] = Field(default=None, gt=0, le=3600)
    download_attempts: Optional[int] = Field(default=None, ge=1, le=10)
    download_retry_delay: Optional[float] = Field(default=None, ge=0, le=300)
    location_sync_interval: Optional[int] = Field(default=None, ge=30, le=86400)
    auto_assign_previous_spool_enabled: Optional[bool] = None
    auto_assign_previous_spool_location: Optional[str] = Field(default=None, max_length=200)

    @field_validator("spoolman_url")
    @classmethod
    def _check_url(cls, v):
        if v is None:
            return v
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("spoolman_url must start with http:// or https://")
        return v
