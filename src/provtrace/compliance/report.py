"""Bulk compliance re-verification, reporting and violation triage."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from ..config.models import ComplianceConfig
from ..exceptions import ProvtraceError
from ..records.exceptions import RecordValidationError
from ..records.models import ComplianceStatus, Harvest
from ..records.serialization import format_datetime
from ..storage.store import RecordStore
from .evaluator import OverallStatus, evaluate_harvest, overall_status


logger = logging.getLogger(__name__)

REPORT_COLUMNS = [
    "sampleId",
    "species",
    "region",
    "harvestDate",
    "quantityKg",
    "geofenceStatus",
    "seasonalStatus",
    "sustainabilityScore",
    "longitude",
    "latitude",
    "harvester",
]

UNKNOWN_REGION = "Unknown"
LOW_SCORE = 50
VERY_LOW_SCORE = 25

VIOLATION_TYPES = ("all", "geofence", "seasonal", "sustainability")
SEVERITIES = ("all", "high", "medium", "low")


def recheck_compliance(
    store: RecordStore,
    sample_ids: Sequence[str],
    config: Optional[ComplianceConfig] = None,
    *,
    persist: bool = False,
) -> Dict[str, Any]:
    """Recompute compliance for up to ``bulk_check_limit`` samples.

    With *persist* the recomputed values are written back; otherwise the
    stored records are left untouched. Per-sample failures are collected and
    do not stop the run.
    """

    config = config or ComplianceConfig()
    limit = config.report.bulk_check_limit
    if not sample_ids:
        raise RecordValidationError("recheck", "at least one sample id is required")
    if len(sample_ids) > limit:
        raise RecordValidationError("recheck", f"at most {limit} samples can be checked at once")

    results: List[Dict[str, Any]] = []
    errors: List[Dict[str, str]] = []
    summary = {
        "total": len(sample_ids),
        "compliant": 0,
        "partial": 0,
        "nonCompliant": 0,
        "notFound": 0,
        "failed": 0,
    }
    status_keys = {
        OverallStatus.COMPLIANT: "compliant",
        OverallStatus.PARTIAL: "partial",
        OverallStatus.NON_COMPLIANT: "nonCompliant",
    }

    for sample_id in sample_ids:
        harvest = store.find_harvest(sample_id)
        if harvest is None:
            summary["notFound"] += 1
            errors.append({"id": sample_id, "error": "not found"})
            continue

        result = evaluate_harvest(harvest, config)
        changed = (
            result.geofence_status != harvest.compliance.geofence_status
            or result.seasonal_status != harvest.compliance.seasonal_status
            or result.sustainability_score != harvest.compliance.sustainability_score
        )
        if persist and changed:
            try:
                store.update_harvest(sample_id, lambda record, result=result: _write_result(record, result))
            except (ProvtraceError, OSError) as exc:
                logger.error("Could not persist compliance for %s: %s", sample_id, exc)
                summary["failed"] += 1
                errors.append({"id": sample_id, "error": str(exc)})
                continue

        status = overall_status(result.sustainability_score, config)
        summary[status_keys[status]] += 1
        results.append(
            {
                "sampleId": harvest.sample_id,
                "species": harvest.species,
                "harvestDate": format_datetime(harvest.harvest_date),
                "compliance": {**result.as_dict(), "overallStatus": status},
                "changed": changed,
            }
        )

    logger.info(
        "Compliance recheck: %d samples, %d not found, %d failed",
        summary["total"],
        summary["notFound"],
        summary["failed"],
    )
    return {
        "results": results,
        "summary": summary,
        "errors": errors,
        "checkedAt": datetime.now(timezone.utc).isoformat(),
    }


def build_compliance_report(
    harvests: Iterable[Harvest],
    config: Optional[ComplianceConfig] = None,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    species: Optional[str] = None,
    region: Optional[str] = None,
) -> Dict[str, Any]:
    config = config or ComplianceConfig()
    df = _filter_frame(_harvest_frame(harvests), start=start, end=end, species=species, region=region)

    total = len(df)
    geofence_pass = int((df["geofenceStatus"] == ComplianceStatus.PASS.value).sum())
    seasonal_pass = int((df["seasonalStatus"] == ComplianceStatus.PASS.value).sum())
    summary: Dict[str, Any] = {
        "totalRecords": total,
        "geofencePass": geofence_pass,
        "geofenceFail": int((df["geofenceStatus"] == ComplianceStatus.FAIL.value).sum()),
        "seasonalPass": seasonal_pass,
        "seasonalFail": int((df["seasonalStatus"] == ComplianceStatus.FAIL.value).sum()),
        "seasonalWarning": int((df["seasonalStatus"] == ComplianceStatus.WARNING.value).sum()),
        "avgSustainabilityScore": _number(df["sustainabilityScore"].mean()),
        "totalQuantity": _number(df["quantityKg"].sum()),
    }
    if total:
        summary["geofencePassRate"] = _number(geofence_pass / total * 100)
        summary["seasonalPassRate"] = _number(seasonal_pass / total * 100)
        summary["overallComplianceRate"] = _number(
            (geofence_pass + seasonal_pass) / (total * 2) * 100
        )

    violating = df[_violation_mask(df)].sort_values("harvestDate", ascending=False, kind="mergesort")
    non_compliant = [
        {
            "sampleId": row["sampleId"],
            "species": row["species"],
            "harvestDate": _timestamp(row["harvestDate"]),
            "location": {"coordinates": [row["longitude"], row["latitude"]]},
            "compliance": {
                "geofenceStatus": row["geofenceStatus"],
                "seasonalStatus": row["seasonalStatus"],
                "sustainabilityScore": _integer(row["sustainabilityScore"]),
            },
            "harvester": row["harvester"],
        }
        for row in violating.head(config.report.non_compliant_limit).to_dict(orient="records")
    ]

    return {
        "summary": summary,
        "speciesBreakdown": _breakdown(df, ["species"], include_quantity=True),
        "regionBreakdown": _breakdown(df, ["region"]),
        "trends": _trends(df),
        "nonCompliantRecords": non_compliant,
        "filters": {
            "startDate": format_datetime(start),
            "endDate": format_datetime(end),
            "species": species,
            "region": region,
        },
        "generatedAt": datetime.now(timezone.utc).isoformat(),
    }


def find_violations(
    harvests: Iterable[Harvest],
    *,
    violation_type: str = "all",
    severity: str = "all",
    page: int = 1,
    limit: int = 20,
) -> Dict[str, Any]:
    """List harvests breaching a compliance rule, most recent first."""

    if violation_type not in VIOLATION_TYPES:
        raise ValueError(f"type must be one of {', '.join(VIOLATION_TYPES)}")
    if severity not in SEVERITIES:
        raise ValueError(f"severity must be one of {', '.join(SEVERITIES)}")
    if page < 1 or limit < 1:
        raise ValueError("page and limit must be positive")

    df = _harvest_frame(harvests)
    df = df[_violation_mask(df, violation_type)].sort_values(
        "harvestDate", ascending=False, kind="mergesort"
    )

    triaged = [_triage(row) for row in df.to_dict(orient="records")]
    if severity != "all":
        triaged = [item for item in triaged if item["severityLevel"] == severity]

    total = len(triaged)
    start = (page - 1) * limit
    return {
        "violations": triaged[start : start + limit],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": -(-total // limit),
        },
        "summary": {
            "totalViolations": total,
            "highSeverity": sum(1 for item in triaged if item["severityLevel"] == "high"),
            "mediumSeverity": sum(1 for item in triaged if item["severityLevel"] == "medium"),
            "lowSeverity": sum(1 for item in triaged if item["severityLevel"] == "low"),
        },
    }


def _triage(row: Dict[str, Any]) -> Dict[str, Any]:
    issues: List[Dict[str, str]] = []
    level = "low"
    score = _integer(row["sustainabilityScore"])

    if row["geofenceStatus"] == ComplianceStatus.FAIL.value:
        issues.append(
            {"type": "geofence", "message": "Harvest location outside permitted area", "severity": "high"}
        )
        level = "high"
    if row["seasonalStatus"] == ComplianceStatus.FAIL.value:
        issues.append(
            {"type": "seasonal", "message": "Harvest outside permitted season", "severity": "medium"}
        )
        if level != "high":
            level = "medium"
    if score is not None and score < VERY_LOW_SCORE:
        issues.append(
            {"type": "sustainability", "message": "Very low sustainability score", "severity": "high"}
        )
        level = "high"
    elif score is not None and score < LOW_SCORE:
        issues.append(
            {"type": "sustainability", "message": "Low sustainability score", "severity": "medium"}
        )
        if level != "high":
            level = "medium"

    return {
        "sampleId": row["sampleId"],
        "species": row["species"],
        "quantityKg": _number(row["quantityKg"]),
        "harvestDate": _timestamp(row["harvestDate"]),
        "location": {"coordinates": [row["longitude"], row["latitude"]]},
        "region": row["region"],
        "compliance": {
            "geofenceStatus": row["geofenceStatus"],
            "seasonalStatus": row["seasonalStatus"],
            "sustainabilityScore": score,
        },
        "harvester": row["harvester"],
        "issues": issues,
        "severityLevel": level,
        "riskScore": 100 - (score or 0),
    }


def _harvest_frame(harvests: Iterable[Harvest]) -> pd.DataFrame:
    records = [
        {
            "sampleId": harvest.sample_id,
            "species": harvest.species,
            "region": harvest.address.state or UNKNOWN_REGION,
            "harvestDate": harvest.harvest_date,
            "quantityKg": harvest.quantity_kg,
            "geofenceStatus": harvest.compliance.geofence_status.value,
            "seasonalStatus": harvest.compliance.seasonal_status.value,
            "sustainabilityScore": harvest.compliance.sustainability_score,
            "longitude": harvest.location.longitude,
            "latitude": harvest.location.latitude,
            "harvester": harvest.harvester.name,
        }
        for harvest in harvests
    ]
    df = pd.DataFrame(records, columns=REPORT_COLUMNS)
    df["harvestDate"] = pd.to_datetime(df["harvestDate"], utc=True)
    df["sustainabilityScore"] = pd.to_numeric(df["sustainabilityScore"], errors="coerce")
    df["quantityKg"] = pd.to_numeric(df["quantityKg"], errors="coerce")
    return df


def _filter_frame(
    df: pd.DataFrame,
    *,
    start: Optional[datetime],
    end: Optional[datetime],
    species: Optional[str],
    region: Optional[str],
) -> pd.DataFrame:
    mask = pd.Series(True, index=df.index)
    if start is not None:
        mask &= df["harvestDate"] >= _utc_timestamp(start)
    if end is not None:
        mask &= df["harvestDate"] <= _utc_timestamp(end)
    if species:
        mask &= df["species"].str.contains(species, case=False, regex=False, na=False)
    if region:
        mask &= df["region"].str.contains(region, case=False, regex=False, na=False)
    return df[mask]


def _violation_mask(df: pd.DataFrame, violation_type: str = "all") -> pd.Series:
    geofence = df["geofenceStatus"] == ComplianceStatus.FAIL.value
    seasonal = df["seasonalStatus"] == ComplianceStatus.FAIL.value
    low_score = df["sustainabilityScore"] < LOW_SCORE
    if violation_type == "geofence":
        return geofence
    if violation_type == "seasonal":
        return seasonal
    if violation_type == "sustainability":
        return low_score
    return geofence | seasonal | low_score


def _breakdown(
    df: pd.DataFrame, keys: List[str], include_quantity: bool = False
) -> List[Dict[str, Any]]:
    if df.empty:
        return []
    frame = df.assign(
        geofencePass=(df["geofenceStatus"] == ComplianceStatus.PASS.value).astype(float),
        seasonalPass=(df["seasonalStatus"] == ComplianceStatus.PASS.value).astype(float),
    )
    aggregations = {
        "totalRecords": ("sampleId", "count"),
        "geofencePassRate": ("geofencePass", "mean"),
        "seasonalPassRate": ("seasonalPass", "mean"),
        "avgSustainabilityScore": ("sustainabilityScore", "mean"),
    }
    if include_quantity:
        aggregations["totalQuantity"] = ("quantityKg", "sum")
    grouped = (
        frame.groupby(keys, sort=False)
        .agg(**aggregations)
        .reset_index()
        .sort_values(["totalRecords", *keys], ascending=[False] + [True] * len(keys), kind="mergesort")
    )
    return [_group_row(row, keys) for row in grouped.to_dict(orient="records")]


def _trends(df: pd.DataFrame) -> List[Dict[str, Any]]:
    if df.empty:
        return []
    frame = df.assign(year=df["harvestDate"].dt.year, month=df["harvestDate"].dt.month)
    aggregated = _breakdown(frame, ["year", "month"])
    return sorted(aggregated, key=lambda row: (row["year"], row["month"]))


def _group_row(row: Dict[str, Any], keys: List[str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key in keys:
        value = row[key]
        out[key] = int(value) if key in ("year", "month") else value
    out["totalRecords"] = int(row["totalRecords"])
    out["geofencePassRate"] = _number(row["geofencePassRate"] * 100)
    out["seasonalPassRate"] = _number(row["seasonalPassRate"] * 100)
    out["avgSustainabilityScore"] = _number(row["avgSustainabilityScore"])
    if "totalQuantity" in row:
        out["totalQuantity"] = _number(row["totalQuantity"])
    return out


def _write_result(harvest: Harvest, result) -> None:
    harvest.compliance.geofence_status = result.geofence_status
    harvest.compliance.seasonal_status = result.seasonal_status
    harvest.compliance.sustainability_score = result.sustainability_score
    harvest.updated_at = datetime.now(timezone.utc)


def _utc_timestamp(value: datetime) -> pd.Timestamp:
    stamp = pd.Timestamp(value)
    if stamp.tzinfo is None:
        return stamp.tz_localize("UTC")
    return stamp.tz_convert("UTC")


def _timestamp(value: Any) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    return pd.Timestamp(value).isoformat()


def _number(value: Any, digits: int = 2) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return round(float(value), digits)


def _integer(value: Any) -> Optional[int]:
    if value is None or pd.isna(value):
        return None
    return int(value)
