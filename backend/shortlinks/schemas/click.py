from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils.clock import as_utc


class GeoLocation(BaseModel):
    """Where a click came from"""
    model_config = ConfigDict(frozen=True)

    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class ClickEvent(BaseModel):
    """Single recorded visit. Immutable once appended."""
    model_config = ConfigDict(frozen=True)

    id: str
    link_id: str
    timestamp: datetime
    referrer: str = "Unknown"
    device: str = "Unknown"
    browser: str = "Unknown"
    location: Optional[GeoLocation] = None
    utm_parameters: Optional[Dict[str, str]] = None
    is_conversion: bool = False
    conversion_type: Optional[str] = None
    conversion_value: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    session_duration: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    exit_page: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value):
        return as_utc(value)


class ClickData(BaseModel):
    """Partial click supplied by the caller; gaps are filled on record"""
    referrer: Optional[str] = None
    device: Optional[str] = None
    browser: Optional[str] = None
    user_agent: Optional[str] = None
    location: Optional[GeoLocation] = None
    utm_parameters: Optional[Dict[str, str]] = None
    is_conversion: bool = False
    conversion_type: Optional[str] = None
    conversion_value: Optional[float] = Field(None, allow_inf_nan=False)
    session_duration: Optional[float] = Field(None, allow_inf_nan=False)
    exit_page: Optional[str] = None
