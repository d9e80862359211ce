"""Tests for record listings, the pending lab queue and aggregate stats."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

import pytest

from provtrace.queries import (
    batch_stats,
    harvest_stats,
    lab_stats,
    list_batches,
    list_harvests,
    list_lab_tests,
    pending_lab_tests,
)
from provtrace.queries.listing import distance_km
from provtrace.records.models import (
    Batch,
    BatchStatus,
    ComplianceBlock,
    ComplianceStatus,
    Destination,
    DestinationDetails,
    GeoPoint,
    Harvest,
    HarvestMethod,
    HarvestSampleRef,
    HarvestStatus,
    LabResults,
    LabTest,
    QualityGrade,
    TestStatus,
    TestType,
)


PASS = ComplianceStatus.PASS
FAIL = ComplianceStatus.FAIL


def test_list_harvests_newest_first_with_filters() -> None:
    harvests = _sample_harvests()

    everything = list_harvests(harvests)
    assert _ids(everything["harvests"], "sampleId") == ["SAMPLE-C", "SAMPLE-A", "SAMPLE-B"]
    assert everything["pagination"] == {"page": 1, "limit": 10, "total": 3, "pages": 1}
    assert everything["harvests"][0]["quantityKg"] == 5.0

    assert _ids(list_harvests(harvests, species="ASHWA")["harvests"], "sampleId") == [
        "SAMPLE-C",
        "SAMPLE-A",
    ]
    assert _ids(list_harvests(harvests, harvest_method="cultivated")["harvests"], "sampleId") == [
        "SAMPLE-C",
        "SAMPLE-B",
    ]
    assert _ids(list_harvests(harvests, status="RECEIVED")["harvests"], "sampleId") == ["SAMPLE-B"]
    assert _ids(list_harvests(harvests, geofence_status="FAIL")["harvests"], "sampleId") == ["SAMPLE-C"]
    assert _ids(list_harvests(harvests, seasonal_status="FAIL")["harvests"], "sampleId") == ["SAMPLE-B"]


def test_list_harvests_date_range_and_radius() -> None:
    harvests = _sample_harvests()

    since_april = list_harvests(harvests, start=datetime(2024, 4, 1, tzinfo=timezone.utc))
    assert _ids(since_april["harvests"], "sampleId") == ["SAMPLE-C", "SAMPLE-A"]
    until_april = list_harvests(harvests, end=datetime(2024, 4, 30))
    assert _ids(until_april["harvests"], "sampleId") == ["SAMPLE-A", "SAMPLE-B"]

    close = list_harvests(harvests, near=(29.6, 79.7, 50.0))
    assert _ids(close["harvests"], "sampleId") == ["SAMPLE-A"]
    wider = list_harvests(harvests, near=(29.6, 79.7, 300.0))
    assert _ids(wider["harvests"], "sampleId") == ["SAMPLE-A", "SAMPLE-B"]


def test_list_harvests_paging() -> None:
    paged = list_harvests(_sample_harvests(), page=2, limit=2)
    assert _ids(paged["harvests"], "sampleId") == ["SAMPLE-B"]
    assert paged["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}

    beyond = list_harvests(_sample_harvests(), page=5, limit=2)
    assert beyond["harvests"] == []


@pytest.mark.parametrize(
    "kwargs",
    [
        {"harvest_method": "foraged"},
        {"status": "LOST"},
        {"geofence_status": "MAYBE"},
        {"page": 0},
        {"limit": 0},
        {"near": (29.6, 79.7, 0.0)},
    ],
)
def test_list_harvests_rejects_bad_arguments(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        list_harvests(_sample_harvests(), **kwargs)


def test_distance_km() -> None:
    assert distance_km(29.6, 79.7, 29.6, 79.7) == 0
    assert distance_km(0.0, 0.0, 0.0, 1.0) == pytest.approx(111.195, rel=1e-3)


def test_list_batches_with_filters() -> None:
    batches = _sample_batches()

    everything = list_batches(batches)
    assert _ids(everything["batches"], "batchId") == ["BATCH-3", "BATCH-2", "BATCH-1"]
    assert everything["pagination"]["total"] == 3

    assert _ids(list_batches(batches, species="tulsi")["batches"], "batchId") == ["BATCH-2"]
    assert _ids(list_batches(batches, status="TESTING")["batches"], "batchId") == ["BATCH-3", "BATCH-2"]
    assert _ids(list_batches(batches, destination="EXPORT")["batches"], "batchId") == ["BATCH-2"]
    assert _ids(list_batches(batches, quality_grade="REJECT")["batches"], "batchId") == ["BATCH-3"]
    recent = list_batches(batches, start=datetime(2024, 5, 5, tzinfo=timezone.utc))
    assert _ids(recent["batches"], "batchId") == ["BATCH-3", "BATCH-2"]

    with pytest.raises(ValueError):
        list_batches(batches, status="LOST")


def test_list_lab_tests_flattens_batches() -> None:
    batches = _sample_batches()

    everything = list_lab_tests(batches)
    assert _ids(everything["tests"], "testId") == ["TEST-3", "TEST-4", "TEST-1", "TEST-2", "TEST-5"]
    first = everything["tests"][0]
    assert first["batchId"] == "BATCH-3"
    assert first["species"] == "Ashwagandha"

    heavy = list_lab_tests(batches, test_type="heavy_metals")
    assert _ids(heavy["tests"], "testId") == ["TEST-3", "TEST-4", "TEST-1"]
    pending = list_lab_tests(batches, status="PENDING")
    assert _ids(pending["tests"], "testId") == ["TEST-1", "TEST-5"]
    one_batch = list_lab_tests(batches, batch_id="BATCH-2")
    assert _ids(one_batch["tests"], "testId") == ["TEST-1", "TEST-2"]
    june = list_lab_tests(batches, start=datetime(2024, 6, 1, tzinfo=timezone.utc))
    assert _ids(june["tests"], "testId") == ["TEST-3", "TEST-4"]

    last_page = list_lab_tests(batches, page=3, limit=2)
    assert _ids(last_page["tests"], "testId") == ["TEST-5"]
    assert last_page["pagination"] == {"page": 3, "limit": 2, "total": 5, "pages": 3}

    with pytest.raises(ValueError):
        list_lab_tests(batches, test_type="dna")


def test_pending_queue_only_covers_active_batches() -> None:
    queue = pending_lab_tests(_sample_batches())

    assert queue["count"] == 1
    [entry] = queue["batches"]
    assert entry["batchId"] == "BATCH-2"
    assert entry["status"] == "TESTING"
    assert [test["testId"] for test in entry["pendingTests"]] == ["TEST-1"]


def test_harvest_stats() -> None:
    stats = harvest_stats(_sample_harvests())

    assert stats["overview"] == {
        "totalHarvests": 3,
        "totalQuantity": 35.0,
        "avgQuantity": 11.67,
        "avgSustainabilityScore": 55.0,
    }
    assert stats["speciesBreakdown"] == [
        {"species": "Ashwagandha", "count": 2, "totalQuantity": 15.0},
        {"species": "Tulsi", "count": 1, "totalQuantity": 20.0},
    ]
    assert stats["complianceBreakdown"] == [
        {"geofence": "FAIL", "seasonal": "PASS", "count": 1},
        {"geofence": "PASS", "seasonal": "FAIL", "count": 1},
        {"geofence": "PASS", "seasonal": "PASS", "count": 1},
    ]
    assert stats["monthlyTrends"] == [
        {"year": 2024, "month": 5, "count": 1, "quantity": 5.0},
        {"year": 2024, "month": 4, "count": 1, "quantity": 10.0},
        {"year": 2024, "month": 1, "count": 1, "quantity": 20.0},
    ]


def test_batch_stats() -> None:
    stats = batch_stats(_sample_batches())

    assert stats["overview"] == {
        "totalBatches": 3,
        "totalQuantity": 60.0,
        "avgQuantity": 20.0,
        "avgSustainabilityScore": 72.5,
        "avgQualityScore": 71.67,
    }
    assert stats["statusBreakdown"] == [
        {"status": "TESTING", "count": 2},
        {"status": "CREATED", "count": 1},
    ]
    assert [row["qualityGrade"] for row in stats["qualityBreakdown"]] == ["PREMIUM", "REJECT", "STANDARD"]
    assert stats["speciesBreakdown"][0] == {"species": "Ashwagandha", "count": 2, "totalQuantity": 40.0}


def test_lab_stats() -> None:
    stats = lab_stats(_sample_batches())

    assert stats["overview"] == {
        "totalTests": 5,
        "passedTests": 1,
        "failedTests": 1,
        "pendingTests": 2,
        "retestTests": 1,
        "avgScore": 62.5,
    }
    assert stats["testTypeBreakdown"] == [
        {"testType": "heavy_metals", "count": 3, "passRate": 0.0},
        {"testType": "microbial", "count": 1, "passRate": 100.0},
        {"testType": "potency", "count": 1, "passRate": 0.0},
    ]
    assert stats["monthlyTrends"] == [
        {"year": 2024, "month": 6, "count": 2, "passRate": 0.0},
        {"year": 2024, "month": 5, "count": 3, "passRate": 33.33},
    ]


def test_stats_over_no_records() -> None:
    harvests = harvest_stats([])
    assert harvests["overview"]["totalHarvests"] == 0
    assert harvests["overview"]["avgQuantity"] is None
    assert harvests["speciesBreakdown"] == []
    assert harvests["monthlyTrends"] == []

    assert batch_stats([])["statusBreakdown"] == []
    labs = lab_stats([])
    assert labs["overview"]["totalTests"] == 0
    assert labs["testTypeBreakdown"] == []


def _ids(rows: List[dict], key: str) -> List[str]:
    return [row[key] for row in rows]


def _sample_harvests() -> List[Harvest]:
    return [
        _harvest(
            "SAMPLE-A",
            "Ashwagandha",
            datetime(2024, 4, 15, tzinfo=timezone.utc),
            quantity=10.0,
            method=HarvestMethod.WILD_COLLECTION,
            compliance=ComplianceBlock(geofence_status=PASS, seasonal_status=PASS, sustainability_score=90),
        ),
        _harvest(
            "SAMPLE-B",
            "Tulsi",
            datetime(2024, 1, 10, tzinfo=timezone.utc),
            quantity=20.0,
            status=HarvestStatus.RECEIVED,
            location=GeoPoint(longitude=77.2, latitude=28.6),
            compliance=ComplianceBlock(geofence_status=PASS, seasonal_status=FAIL, sustainability_score=55),
        ),
        _harvest(
            "SAMPLE-C",
            "Ashwagandha",
            datetime(2024, 5, 2, tzinfo=timezone.utc),
            quantity=5.0,
            location=GeoPoint(longitude=95.0, latitude=29.6),
            compliance=ComplianceBlock(geofence_status=FAIL, seasonal_status=PASS, sustainability_score=20),
        ),
    ]


def _harvest(
    sample_id: str,
    species: str,
    when: datetime,
    quantity: float,
    method: HarvestMethod = HarvestMethod.CULTIVATED,
    status: HarvestStatus = HarvestStatus.COLLECTED,
    location: Optional[GeoPoint] = None,
    compliance: Optional[ComplianceBlock] = None,
) -> Harvest:
    return Harvest(
        sample_id=sample_id,
        species=species,
        quantity_kg=quantity,
        harvest_date=when,
        location=location or GeoPoint(longitude=79.7, latitude=29.6),
        harvest_method=method,
        status=status,
        compliance=compliance or ComplianceBlock(),
        created_at=when,
    )


def _sample_batches() -> List[Batch]:
    return [
        _batch(
            "BATCH-1",
            "Ashwagandha",
            datetime(2024, 5, 1, tzinfo=timezone.utc),
            quantity=30.0,
            status=BatchStatus.CREATED,
            sustainability=90,
            tests=[_test("TEST-5", TestType.POTENCY, TestStatus.PENDING, datetime(2024, 5, 2))],
        ),
        _batch(
            "BATCH-2",
            "Tulsi",
            datetime(2024, 5, 10, tzinfo=timezone.utc),
            quantity=20.0,
            status=BatchStatus.TESTING,
            destination=Destination.EXPORT,
            grade=QualityGrade.STANDARD,
            quality_score=80,
            sustainability=55,
            tests=[
                _test("TEST-1", TestType.HEAVY_METALS, TestStatus.PENDING, datetime(2024, 5, 12)),
                _test("TEST-2", TestType.MICROBIAL, TestStatus.PASS, datetime(2024, 5, 11), score=85),
            ],
        ),
        _batch(
            "BATCH-3",
            "Ashwagandha",
            datetime(2024, 6, 1, tzinfo=timezone.utc),
            quantity=10.0,
            status=BatchStatus.TESTING,
            grade=QualityGrade.REJECT,
            quality_score=35,
            tests=[
                _test("TEST-3", TestType.HEAVY_METALS, TestStatus.FAIL, datetime(2024, 6, 3), score=40),
                _test("TEST-4", TestType.HEAVY_METALS, TestStatus.RETEST, datetime(2024, 6, 2)),
            ],
        ),
    ]


def _batch(
    batch_id: str,
    species: str,
    created_at: datetime,
    quantity: float,
    status: BatchStatus,
    destination: Destination = Destination.MANUFACTURER,
    grade: QualityGrade = QualityGrade.PREMIUM,
    quality_score: int = 100,
    sustainability: Optional[int] = None,
    tests: Optional[List[LabTest]] = None,
) -> Batch:
    return Batch(
        batch_id=batch_id,
        species=species,
        total_quantity_kg=quantity,
        harvest_samples=[HarvestSampleRef(sample_id=f"SAMPLE-{batch_id}", quantity_kg=quantity)],
        destination=destination,
        destination_details=DestinationDetails(name="Herbal Works"),
        lab_tests=tests or [],
        quality_grade=grade,
        quality_score=quality_score,
        sustainability_score=sustainability,
        status=status,
        created_at=created_at,
    )


def _test(
    test_id: str,
    test_type: TestType,
    status: TestStatus,
    when: datetime,
    score: Optional[float] = None,
) -> LabTest:
    return LabTest(
        test_id=test_id,
        test_type=test_type,
        test_date=when.replace(tzinfo=timezone.utc),
        results=LabResults(status=status, overall_score=score),
    )
