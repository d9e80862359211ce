"""Filtered, paginated listings over stored harvests, batches and lab tests."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from ..records.models import (
    Batch,
    BatchStatus,
    ComplianceStatus,
    Destination,
    Harvest,
    HarvestMethod,
    HarvestStatus,
    LabTest,
    QualityGrade,
    TestStatus,
    TestType,
)
from ..records.serialization import batch_to_dict, harvest_to_dict, lab_test_to_dict


T = TypeVar("T")

EARTH_RADIUS_KM = 6371.0088
PENDING_QUEUE_STATUSES = (BatchStatus.PROCESSING, BatchStatus.TESTING)
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def list_harvests(
    harvests: Iterable[Harvest],
    *,
    species: Optional[str] = None,
    harvest_method: Optional[str] = None,
    status: Optional[str] = None,
    geofence_status: Optional[str] = None,
    seasonal_status: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    near: Optional[Tuple[float, float, float]] = None,
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    """Newest harvests first.

    *near* is ``(latitude, longitude, radius_km)``; only samples within the
    great-circle radius are kept.
    """

    _check_paging(page, limit)
    method = _enum_filter(HarvestMethod, harvest_method, "harvest method")
    wanted_status = _enum_filter(HarvestStatus, status, "harvest status")
    geofence = _enum_filter(ComplianceStatus, geofence_status, "geofence status")
    seasonal = _enum_filter(ComplianceStatus, seasonal_status, "seasonal status")
    if near is not None and near[2] <= 0:
        raise ValueError("radius must be positive")

    def keep(harvest: Harvest) -> bool:
        if species and species.lower() not in harvest.species.lower():
            return False
        if method is not None and harvest.harvest_method != method:
            return False
        if wanted_status is not None and harvest.status != wanted_status:
            return False
        if geofence is not None and harvest.compliance.geofence_status != geofence:
            return False
        if seasonal is not None and harvest.compliance.seasonal_status != seasonal:
            return False
        if not _in_range(harvest.harvest_date, start, end):
            return False
        if near is not None:
            lat, lng, radius_km = near
            distance = distance_km(lat, lng, harvest.location.latitude, harvest.location.longitude)
            if distance > radius_km:
                return False
        return True

    matched = _newest_first([h for h in harvests if keep(h)], lambda h: h.created_at)
    items, pagination = paginate(matched, page, limit)
    return {"harvests": [harvest_to_dict(h) for h in items], "pagination": pagination}


def list_batches(
    batches: Iterable[Batch],
    *,
    species: Optional[str] = None,
    status: Optional[str] = None,
    destination: Optional[str] = None,
    quality_grade: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    """Newest batches first; the date range applies to creation time."""

    _check_paging(page, limit)
    wanted_status = _enum_filter(BatchStatus, status, "batch status")
    wanted_destination = _enum_filter(Destination, destination, "destination")
    grade = _enum_filter(QualityGrade, quality_grade, "quality grade")

    def keep(batch: Batch) -> bool:
        if species and species.lower() not in batch.species.lower():
            return False
        if wanted_status is not None and batch.status != wanted_status:
            return False
        if wanted_destination is not None and batch.destination != wanted_destination:
            return False
        if grade is not None and batch.quality_grade != grade:
            return False
        return _in_range(batch.created_at, start, end)

    matched = _newest_first([b for b in batches if keep(b)], lambda b: b.created_at)
    items, pagination = paginate(matched, page, limit)
    return {"batches": [batch_to_dict(b) for b in items], "pagination": pagination}


def list_lab_tests(
    batches: Iterable[Batch],
    *,
    test_type: Optional[str] = None,
    status: Optional[str] = None,
    batch_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    """Lab tests across batches, most recent test date first."""

    _check_paging(page, limit)
    wanted_type = _enum_filter(TestType, test_type, "test type")
    wanted_status = _enum_filter(TestStatus, status, "test status")

    rows: List[Tuple[Batch, LabTest]] = []
    for batch in batches:
        if batch_id is not None and batch.batch_id != batch_id:
            continue
        for test in batch.lab_tests:
            if wanted_type is not None and test.test_type != wanted_type:
                continue
            if wanted_status is not None and test.results.status != wanted_status:
                continue
            if not _in_range(test.test_date, start, end):
                continue
            rows.append((batch, test))

    rows = _newest_first(rows, lambda row: row[1].test_date)
    items, pagination = paginate(rows, page, limit)
    return {
        "tests": [_flatten_test(batch, test) for batch, test in items],
        "pagination": pagination,
    }


def pending_lab_tests(batches: Iterable[Batch]) -> Dict[str, Any]:
    """Batches in processing or testing that still wait on a PENDING result."""

    queue: List[Batch] = []
    for batch in batches:
        if batch.status not in PENDING_QUEUE_STATUSES:
            continue
        if any(test.results.status == TestStatus.PENDING for test in batch.lab_tests):
            queue.append(batch)

    queue = _newest_first(queue, lambda b: b.created_at)
    entries = [
        {
            "batchId": batch.batch_id,
            "species": batch.species,
            "totalQuantityKg": batch.total_quantity_kg,
            "status": batch.status.value,
            "processor": batch.processor.name,
            "pendingTests": [
                lab_test_to_dict(test)
                for test in batch.lab_tests
                if test.results.status == TestStatus.PENDING
            ],
        }
        for batch in queue
    ]
    return {"batches": entries, "count": len(entries)}


def paginate(items: Sequence[T], page: int, limit: int) -> Tuple[List[T], Dict[str, int]]:
    total = len(items)
    offset = (page - 1) * limit
    return list(items[offset : offset + limit]), {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": -(-total // limit),
    }


def distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance between two points in kilometres."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def _flatten_test(batch: Batch, test: LabTest) -> Dict[str, Any]:
    data = lab_test_to_dict(test)
    data["batchId"] = batch.batch_id
    data["species"] = batch.species
    data["processor"] = batch.processor.name
    return data


def _enum_filter(enum_cls, value: Optional[str], label: str):
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError as exc:
        choices = ", ".join(member.value for member in enum_cls)
        raise ValueError(f"{label} must be one of {choices}") from exc


def _check_paging(page: int, limit: int) -> None:
    if page < 1 or limit < 1:
        raise ValueError("page and limit must be positive")


def _in_range(value: Optional[datetime], start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is None and end is None:
        return True
    if value is None:
        return False
    value = _as_utc(value)
    if start is not None and value < _as_utc(start):
        return False
    if end is not None and value > _as_utc(end):
        return False
    return True


def _newest_first(items: List[T], key: Callable[[T], Optional[datetime]]) -> List[T]:
    return sorted(items, key=lambda item: _as_utc(key(item) or EPOCH), reverse=True)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
