"""Aggregate statistics for harvests, batches and lab tests."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from ..records.models import Batch, Harvest, TestStatus


TOP_SPECIES = 10
TREND_MONTHS = 12


def harvest_stats(harvests: Iterable[Harvest]) -> Dict[str, Any]:
    df = pd.DataFrame(
        [
            {
                "sampleId": harvest.sample_id,
                "species": harvest.species,
                "quantityKg": harvest.quantity_kg,
                "sustainabilityScore": harvest.compliance.sustainability_score,
                "geofenceStatus": harvest.compliance.geofence_status.value,
                "seasonalStatus": harvest.compliance.seasonal_status.value,
                "harvestDate": harvest.harvest_date,
            }
            for harvest in harvests
        ],
        columns=[
            "sampleId",
            "species",
            "quantityKg",
            "sustainabilityScore",
            "geofenceStatus",
            "seasonalStatus",
            "harvestDate",
        ],
    )
    df = _numeric(df, "quantityKg", "sustainabilityScore")
    df["harvestDate"] = pd.to_datetime(df["harvestDate"], utc=True)

    return {
        "overview": {
            "totalHarvests": len(df),
            "totalQuantity": _number(df["quantityKg"].sum()),
            "avgQuantity": _number(df["quantityKg"].mean()),
            "avgSustainabilityScore": _number(df["sustainabilityScore"].mean()),
        },
        "speciesBreakdown": _species_breakdown(df, "sampleId", "quantityKg"),
        "complianceBreakdown": [
            {"geofence": row["geofenceStatus"], "seasonal": row["seasonalStatus"], "count": row["count"]}
            for row in _counts(df, ["geofenceStatus", "seasonalStatus"])
        ],
        "monthlyTrends": _monthly(df, "harvestDate", quantity="quantityKg"),
        "generatedAt": datetime.now(timezone.utc).isoformat(),
    }


def batch_stats(batches: Iterable[Batch]) -> Dict[str, Any]:
    df = pd.DataFrame(
        [
            {
                "batchId": batch.batch_id,
                "species": batch.species,
                "totalQuantityKg": batch.total_quantity_kg,
                "sustainabilityScore": batch.sustainability_score,
                "qualityScore": batch.quality_score,
                "status": batch.status.value,
                "qualityGrade": batch.quality_grade.value,
            }
            for batch in batches
        ],
        columns=[
            "batchId",
            "species",
            "totalQuantityKg",
            "sustainabilityScore",
            "qualityScore",
            "status",
            "qualityGrade",
        ],
    )
    df = _numeric(df, "totalQuantityKg", "sustainabilityScore", "qualityScore")

    return {
        "overview": {
            "totalBatches": len(df),
            "totalQuantity": _number(df["totalQuantityKg"].sum()),
            "avgQuantity": _number(df["totalQuantityKg"].mean()),
            "avgSustainabilityScore": _number(df["sustainabilityScore"].mean()),
            "avgQualityScore": _number(df["qualityScore"].mean()),
        },
        "statusBreakdown": _counts(df, ["status"]),
        "qualityBreakdown": _counts(df, ["qualityGrade"]),
        "speciesBreakdown": _species_breakdown(df, "batchId", "totalQuantityKg"),
        "generatedAt": datetime.now(timezone.utc).isoformat(),
    }


def lab_stats(batches: Iterable[Batch]) -> Dict[str, Any]:
    """Lab outcomes across every test of every batch.

    Pass rates are percentages of all tests of the group, RETEST included.
    """

    df = pd.DataFrame(
        [
            {
                "testId": test.test_id,
                "testType": test.test_type.value,
                "status": test.results.status.value,
                "overallScore": test.results.overall_score,
                "testDate": test.test_date,
            }
            for batch in batches
            for test in batch.lab_tests
        ],
        columns=["testId", "testType", "status", "overallScore", "testDate"],
    )
    df = _numeric(df, "overallScore")
    df["testDate"] = pd.to_datetime(df["testDate"], utc=True)
    df["passed"] = (df["status"] == TestStatus.PASS.value).astype(float)

    def status_count(status: TestStatus) -> int:
        return int((df["status"] == status.value).sum())

    type_rows: List[Dict[str, Any]] = []
    if not df.empty:
        grouped = (
            df.groupby("testType", sort=False)
            .agg(count=("testId", "count"), passRate=("passed", "mean"))
            .reset_index()
            .sort_values(["count", "testType"], ascending=[False, True], kind="mergesort")
        )
        type_rows = [
            {
                "testType": row["testType"],
                "count": int(row["count"]),
                "passRate": _number(row["passRate"] * 100),
            }
            for row in grouped.to_dict(orient="records")
        ]

    return {
        "overview": {
            "totalTests": len(df),
            "passedTests": status_count(TestStatus.PASS),
            "failedTests": status_count(TestStatus.FAIL),
            "pendingTests": status_count(TestStatus.PENDING),
            "retestTests": status_count(TestStatus.RETEST),
            "avgScore": _number(df["overallScore"].mean()),
        },
        "testTypeBreakdown": type_rows,
        "monthlyTrends": _monthly(df, "testDate", pass_rate="passed"),
        "generatedAt": datetime.now(timezone.utc).isoformat(),
    }


def _species_breakdown(df: pd.DataFrame, id_column: str, quantity: str) -> List[Dict[str, Any]]:
    if df.empty:
        return []
    grouped = (
        df.groupby("species", sort=False)
        .agg(count=(id_column, "count"), totalQuantity=(quantity, "sum"))
        .reset_index()
        .sort_values(["count", "species"], ascending=[False, True], kind="mergesort")
        .head(TOP_SPECIES)
    )
    return [
        {
            "species": row["species"],
            "count": int(row["count"]),
            "totalQuantity": _number(row["totalQuantity"]),
        }
        for row in grouped.to_dict(orient="records")
    ]


def _counts(df: pd.DataFrame, keys: List[str]) -> List[Dict[str, Any]]:
    if df.empty:
        return []
    grouped = (
        df.groupby(keys, sort=False)
        .size()
        .reset_index(name="count")
        .sort_values(["count", *keys], ascending=[False] + [True] * len(keys), kind="mergesort")
    )
    rows = []
    for row in grouped.to_dict(orient="records"):
        out = {key: row[key] for key in keys}
        out["count"] = int(row["count"])
        rows.append(out)
    return rows


def _monthly(
    df: pd.DataFrame,
    date_column: str,
    *,
    quantity: Optional[str] = None,
    pass_rate: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Latest months first, at most ``TREND_MONTHS`` of them."""

    dated = df.dropna(subset=[date_column])
    if dated.empty:
        return []
    frame = dated.assign(year=dated[date_column].dt.year, month=dated[date_column].dt.month)
    aggregations: Dict[str, Any] = {"count": (date_column, "count")}
    if quantity is not None:
        aggregations["quantity"] = (quantity, "sum")
    if pass_rate is not None:
        aggregations["passRate"] = (pass_rate, "mean")
    grouped = (
        frame.groupby(["year", "month"])
        .agg(**aggregations)
        .reset_index()
        .sort_values(["year", "month"], ascending=False)
        .head(TREND_MONTHS)
    )

    rows = []
    for row in grouped.to_dict(orient="records"):
        out: Dict[str, Any] = {
            "year": int(row["year"]),
            "month": int(row["month"]),
            "count": int(row["count"]),
        }
        if quantity is not None:
            out["quantity"] = _number(row["quantity"])
        if pass_rate is not None:
            out["passRate"] = _number(row["passRate"] * 100)
        rows.append(out)
    return rows


def _numeric(df: pd.DataFrame, *columns: str) -> pd.DataFrame:
    for column in columns:
        df[column] = pd.to_numeric(df[column], errors="coerce")
    return df


def _number(value: Any, digits: int = 2) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return round(float(value), digits)
