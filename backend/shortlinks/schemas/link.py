from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

from ..utils.clock import as_utc


class ShortenedLink(BaseModel):
    """Stored short link record"""
    id: str
    original_url: str = Field(..., min_length=1, max_length=2048)
    short_code: str = Field(..., min_length=3, max_length=50)
    short_url: str = ""
    created_at: datetime
    expires_at: Optional[datetime] = None
    click_count: int = Field(0, ge=0)
    password_hash: Optional[str] = None
    custom_alias: bool = False
    utm_parameters: Optional[Dict[str, str]] = None
    flagged: bool = False

    @field_validator("created_at", "expires_at")
    @classmethod
    def _ensure_utc(cls, value):
        return as_utc(value) if value is not None else None

    @property
    def is_protected(self) -> bool:
        return self.password_hash is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at


class LinkOptions(BaseModel):
    """Options accepted when creating a link"""
    custom_alias: Optional[str] = Field(None, description="Custom alias for short code")
    expires_at: Optional[datetime] = Field(None, description="Expiration moment, defaults to one year")
    password: Optional[str] = Field(None, description="Optional password protection")
    utm_parameters: Optional[Dict[str, str]] = None


class LinkUpdate(BaseModel):
    """Schema for updating a link. Unset fields are left untouched."""
    original_url: Optional[str] = Field(None, min_length=1, max_length=2048)
    short_code: Optional[str] = None
    expires_at: Optional[datetime] = None
    password: Optional[str] = Field(None, description="Empty string removes protection")
    utm_parameters: Optional[Dict[str, str]] = None


class StorageSettings(BaseModel):
    """User-adjustable storage behaviour, persisted with the data"""
    default_expiration_days: int = Field(365, ge=1, le=3650)
    auto_cleanup: bool = True
