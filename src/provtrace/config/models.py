"""Pydantic models describing configuration files."""

from __future__ import annotations

from typing import Dict, List, Literal

from pydantic import BaseModel, Field, model_validator


DEFAULT_SEASONS: Dict[str, List[int]] = {
    "Ashwagandha": [4, 5, 6, 10, 11],
    "Tulsi": [3, 4, 5, 6, 7, 8, 9],
    "Amla": [11, 12, 1, 2],
    "Brahmi": [3, 4, 5, 9, 10, 11],
    "Neem": [1, 2, 3, 4, 11, 12],
}


class GeofenceConfig(BaseModel):
    min_lat: float = 20.0
    max_lat: float = 35.5
    min_lng: float = 70.0
    max_lng: float = 90.0

    @model_validator(mode="after")
    def check_bounds(self) -> "GeofenceConfig":
        if not (-90 <= self.min_lat <= 90 and -90 <= self.max_lat <= 90):
            raise ValueError("latitude bounds must be within -90..90")
        if not (-180 <= self.min_lng <= 180 and -180 <= self.max_lng <= 180):
            raise ValueError("longitude bounds must be within -180..180")
        if self.min_lat > self.max_lat:
            raise ValueError("min_lat must not exceed max_lat")
        if self.min_lng > self.max_lng:
            raise ValueError("min_lng must not exceed max_lng")
        return self

    def as_dict(self) -> Dict[str, float]:
        return {
            "minLat": self.min_lat,
            "maxLat": self.max_lat,
            "minLng": self.min_lng,
            "maxLng": self.max_lng,
        }


class ReportConfig(BaseModel):
    compliant_min_score: int = 75
    partial_min_score: int = 50
    bulk_check_limit: int = 100
    non_compliant_limit: int = 20

    @model_validator(mode="after")
    def check_thresholds(self) -> "ReportConfig":
        if not (0 <= self.partial_min_score <= 100 and 0 <= self.compliant_min_score <= 100):
            raise ValueError("score thresholds must be within 0..100")
        if self.partial_min_score >= self.compliant_min_score:
            raise ValueError("partial_min_score must be less than compliant_min_score")
        if self.bulk_check_limit <= 0:
            raise ValueError("bulk_check_limit must be positive")
        if self.non_compliant_limit < 0:
            raise ValueError("non_compliant_limit must be >= 0")
        return self


class ComplianceConfig(BaseModel):
    geofence: GeofenceConfig = Field(default_factory=GeofenceConfig)
    seasons: Dict[str, List[int]] = Field(
        default_factory=lambda: {name: list(months) for name, months in DEFAULT_SEASONS.items()}
    )
    report: ReportConfig = Field(default_factory=ReportConfig)

    @model_validator(mode="after")
    def check_seasons(self) -> "ComplianceConfig":
        for species, months in self.seasons.items():
            if not months:
                raise ValueError(f"seasons.{species} must list at least one month")
            for month in months:
                if not 1 <= month <= 12:
                    raise ValueError(f"seasons.{species} month {month} outside 1..12")
            if len(set(months)) != len(months):
                raise ValueError(f"seasons.{species} lists a month twice")
        return self


class LedgerConfig(BaseModel):
    mode: Literal["simulated", "journal"] = "simulated"
    journal: str = "ledger.jsonl"
    workers: int = 2

    @model_validator(mode="after")
    def check_workers(self) -> "LedgerConfig":
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        if not self.journal.strip():
            raise ValueError("journal must not be empty")
        return self


class ConfigBundle(BaseModel):
    compliance: ComplianceConfig = Field(default_factory=ComplianceConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
