"""Pydantic schemas for persisted readings and the HTTP API layer."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from models.records import ReadingKind, SensorReading


class StoredReadingRecord(BaseModel):
    """A sensor reading persisted under a kind tag."""

    kind: ReadingKind
    created_at: float = Field(..., description="Epoch seconds when the record was written.")
    expires_at: Optional[float] = Field(
        default=None, description="Epoch seconds after which the record is ignored."
    )
    timestamp: float
    realtime_aqi: float
    ten_minute_avg_aqi: float
    stale: bool = False
    place_name: Optional[str] = None

    @classmethod
    def from_reading(
        cls,
        kind: ReadingKind,
        reading: SensorReading,
        created_at: float,
        expires_at: Optional[float] = None,
    ) -> "StoredReadingRecord":
        return cls(
            kind=kind,
            created_at=created_at,
            expires_at=expires_at,
            timestamp=reading.timestamp,
            realtime_aqi=reading.realtime_aqi,
            ten_minute_avg_aqi=reading.ten_minute_avg_aqi,
            stale=reading.stale,
            place_name=reading.place_name,
        )

    def to_reading(self) -> SensorReading:
        return SensorReading(
            timestamp=self.timestamp,
            realtime_aqi=self.realtime_aqi,
            ten_minute_avg_aqi=self.ten_minute_avg_aqi,
            stale=self.stale,
            place_name=self.place_name,
        )


class ReportResponse(BaseModel):
    """On-demand air quality report exposed via the API."""

    timestamp: float
    realtime_aqi: Optional[float] = Field(default=None, description="Null when unavailable.")
    ten_minute_avg_aqi: Optional[float] = Field(default=None, description="Null when unavailable.")
    category: str
    above_threshold: bool
    stale: bool
    cached: bool = Field(..., description="True when served from the debounce cache.")
    place_name: Optional[str] = None
    text: str
