"""Geofence, seasonal-window and sustainability compliance checks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..config.models import ComplianceConfig, GeofenceConfig
from ..records.models import (
    ComplianceStatus,
    Contamination,
    Harvest,
    HarvestMethod,
)
from ..records.schemas import ComplianceCheckRequest, ensure_utc, parse_submission


BASE_SCORE = 50

GEOFENCE_POINTS = {
    ComplianceStatus.PASS: 20,
    ComplianceStatus.FAIL: -20,
}

SEASONAL_POINTS = {
    ComplianceStatus.PASS: 20,
    ComplianceStatus.FAIL: -15,
    ComplianceStatus.WARNING: -5,
}

METHOD_POINTS = {
    HarvestMethod.CULTIVATED: 10,
    HarvestMethod.SEMI_WILD: 5,
    HarvestMethod.WILD_COLLECTION: 0,
}

CONTAMINATION_POINTS = {
    Contamination.NONE: 10,
    Contamination.LOW: 5,
    Contamination.MEDIUM: -5,
    Contamination.HIGH: -15,
}


class OverallStatus:
    COMPLIANT = "COMPLIANT"
    PARTIAL = "PARTIAL"
    NON_COMPLIANT = "NON_COMPLIANT"


@dataclass(frozen=True)
class ComplianceResult:
    geofence_status: ComplianceStatus
    seasonal_status: ComplianceStatus
    sustainability_score: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "geofenceStatus": self.geofence_status.value,
            "seasonalStatus": self.seasonal_status.value,
            "sustainabilityScore": self.sustainability_score,
        }


def check_geofence(lat: float, lng: float, bounds: Optional[GeofenceConfig] = None) -> ComplianceStatus:
    """Return PASS when the point lies inside the inclusive rectangle."""

    bounds = bounds or GeofenceConfig()
    inside = bounds.min_lat <= lat <= bounds.max_lat and bounds.min_lng <= lng <= bounds.max_lng
    return ComplianceStatus.PASS if inside else ComplianceStatus.FAIL


def check_seasonal(
    species: str, harvest_date: datetime, rules: Mapping[str, Sequence[int]]
) -> ComplianceStatus:
    """PASS/FAIL against the species' allowed months, WARNING when no rule exists."""

    allowed = rules.get(species)
    if allowed is None:
        return ComplianceStatus.WARNING
    month = ensure_utc(harvest_date).month
    return ComplianceStatus.PASS if month in allowed else ComplianceStatus.FAIL


def sustainability_score(
    geofence: ComplianceStatus,
    seasonal: ComplianceStatus,
    method: Optional[HarvestMethod],
    contamination: Optional[Contamination],
) -> int:
    score = BASE_SCORE
    score += GEOFENCE_POINTS.get(geofence, 0)
    score += SEASONAL_POINTS.get(seasonal, 0)
    if method is not None:
        score += METHOD_POINTS.get(method, 0)
    if contamination is not None:
        score += CONTAMINATION_POINTS.get(contamination, 0)
    return max(0, min(100, score))


def evaluate_harvest(harvest: Harvest, config: Optional[ComplianceConfig] = None) -> ComplianceResult:
    config = config or ComplianceConfig()
    geofence = check_geofence(
        harvest.location.latitude, harvest.location.longitude, config.geofence
    )
    seasonal = check_seasonal(harvest.species, harvest.harvest_date, config.seasons)
    score = sustainability_score(
        geofence, seasonal, harvest.harvest_method, harvest.quality.contamination
    )
    return ComplianceResult(
        geofence_status=geofence,
        seasonal_status=seasonal,
        sustainability_score=score,
    )


def overall_status(score: int, config: Optional[ComplianceConfig] = None) -> str:
    report = (config or ComplianceConfig()).report
    if score >= report.compliant_min_score:
        return OverallStatus.COMPLIANT
    if score >= report.partial_min_score:
        return OverallStatus.PARTIAL
    return OverallStatus.NON_COMPLIANT


def check_submission(
    payload: Dict[str, Any], config: Optional[ComplianceConfig] = None
) -> Dict[str, Any]:
    """Run the compliance checks over an unsaved submission."""

    config = config or ComplianceConfig()
    request = parse_submission(ComplianceCheckRequest, payload)
    harvest_date = ensure_utc(request.harvest_date)

    geofence = check_geofence(request.location.latitude, request.location.longitude, config.geofence)
    allowed: List[int] = list(config.seasons.get(request.species) or [])
    seasonal = check_seasonal(request.species, harvest_date, config.seasons)
    score = sustainability_score(
        geofence, seasonal, request.harvest_method, request.contamination
    )

    return {
        "sampleId": request.sample_id,
        "species": request.species,
        "harvestDate": harvest_date.isoformat(),
        "checks": {
            "geofence": {
                "status": geofence.value,
                "message": _geofence_message(geofence),
                "coordinates": {
                    "lat": request.location.latitude,
                    "lng": request.location.longitude,
                },
                "boundaries": config.geofence.as_dict(),
            },
            "seasonal": {
                "status": seasonal.value,
                "message": _seasonal_message(seasonal, allowed),
                "harvestMonth": harvest_date.month,
                "allowedMonths": allowed,
            },
        },
        "overallScore": score,
        "overallStatus": overall_status(score, config),
    }


def _geofence_message(status: ComplianceStatus) -> str:
    if status == ComplianceStatus.PASS:
        return "Location within permitted area"
    return "Location outside permitted area"


def _seasonal_message(status: ComplianceStatus, allowed: List[int]) -> str:
    if status == ComplianceStatus.PASS:
        return "Harvest within permitted season"
    if status == ComplianceStatus.FAIL:
        months = ", ".join(str(month) for month in allowed)
        return f"Harvest outside permitted season. Allowed months: {months}"
    return "Unknown species - seasonal rules not defined"
