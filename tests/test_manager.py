"""End-to-end tests for the record lifecycle manager."""

from __future__ import annotations

import random
from datetime import datetime, timezone
from pathlib import Path

import pytest

from provtrace.exceptions import ConflictError, NotFoundError
from provtrace.lifecycle.ids import IdGenerator
from provtrace.lifecycle.manager import RecordLifecycleManager
from provtrace.lifecycle.states import BatchEvent, HarvestEvent, TransitionError
from provtrace.provenance.timeline import get_processing_timeline
from provtrace.records import RecordValidationError
from provtrace.records.models import (
    BatchStatus,
    ComplianceStatus,
    HarvestStatus,
    HarvesterDetails,
    ProcessorDetails,
    QualityGrade,
    StepStatus,
    TestStatus,
)
from provtrace.storage import RecordStore


NOW = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def manager(tmp_path: Path) -> RecordLifecycleManager:
    return RecordLifecycleManager(
        RecordStore(tmp_path / "records"),
        ids=IdGenerator(rng=random.Random(11)),
        clock=lambda: NOW,
    )


def test_submit_harvest_computes_compliance(manager: RecordLifecycleManager) -> None:
    harvest = manager.submit_harvest(
        _harvest_payload(qualityMetrics={"contamination": "NONE"}),
        harvester=HarvesterDetails(name="Ravi", organization="Hill Co-op"),
    )

    assert harvest.sample_id.startswith("SAMPLE-")
    assert harvest.status == HarvestStatus.COLLECTED
    assert harvest.compliance.geofence_status == ComplianceStatus.PASS
    assert harvest.compliance.seasonal_status == ComplianceStatus.PASS
    assert harvest.compliance.sustainability_score == 100
    assert harvest.created_at == NOW

    stored = manager.get_harvest(harvest.sample_id)
    assert stored.compliance.sustainability_score == 100
    assert stored.harvester.organization == "Hill Co-op"


def test_submit_harvest_out_of_bounds_and_season(manager: RecordLifecycleManager) -> None:
    harvest = manager.submit_harvest(
        _harvest_payload(
            species="Tulsi",
            harvestDate="2024-01-10T08:00:00Z",
            location={"coordinates": [79.7, 10.0]},
        )
    )
    assert harvest.compliance.geofence_status == ComplianceStatus.FAIL
    assert harvest.compliance.seasonal_status == ComplianceStatus.FAIL
    assert harvest.compliance.sustainability_score == 15


def test_invalid_harvest_is_not_stored(manager: RecordLifecycleManager) -> None:
    with pytest.raises(RecordValidationError):
        manager.submit_harvest(_harvest_payload(quantityKg=-1))
    assert manager.store.list_harvests() == []


def test_update_harvest_recomputes_compliance(manager: RecordLifecycleManager) -> None:
    harvest = manager.submit_harvest(_harvest_payload())
    assert harvest.compliance.sustainability_score == 90

    moved = manager.update_harvest(
        harvest.sample_id,
        {"location": {"coordinates": [60.0, 29.6]}, "qualityMetrics": {"contamination": "HIGH"}},
    )
    assert moved.compliance.geofence_status == ComplianceStatus.FAIL
    assert moved.compliance.sustainability_score == 35

    notes_only = manager.update_harvest(harvest.sample_id, {"harvestConditions": {"weather": "dry"}})
    assert notes_only.conditions.weather == "dry"
    assert notes_only.compliance.sustainability_score == 35


def test_update_harvest_only_while_collected(manager: RecordLifecycleManager) -> None:
    harvest = manager.submit_harvest(_harvest_payload())
    manager.transition_harvest(harvest.sample_id, HarvestEvent.DISPATCH)
    with pytest.raises(ConflictError):
        manager.update_harvest(harvest.sample_id, {"address": {"village": "Almora"}})


def test_harvest_transitions(manager: RecordLifecycleManager) -> None:
    harvest = manager.submit_harvest(_harvest_payload())
    assert manager.transition_harvest(harvest.sample_id, HarvestEvent.DISPATCH).status == HarvestStatus.IN_TRANSIT
    assert manager.transition_harvest(harvest.sample_id, HarvestEvent.RECEIVE).status == HarvestStatus.RECEIVED
    with pytest.raises(TransitionError):
        manager.transition_harvest(harvest.sample_id, HarvestEvent.DISPATCH)
    with pytest.raises(NotFoundError):
        manager.transition_harvest("SAMPLE-404", HarvestEvent.RECEIVE)


def test_create_batch_claims_samples(manager: RecordLifecycleManager) -> None:
    first = manager.submit_harvest(_harvest_payload(qualityMetrics={"contamination": "NONE"}))
    second = manager.submit_harvest(_harvest_payload(quantityKg=30))

    batch = manager.create_batch(
        _batch_payload([(first.sample_id, 10), (second.sample_id, 30)]),
        processor=ProcessorDetails(name="Processor Co", license_number="LIC-9"),
    )

    assert batch.status == BatchStatus.CREATED
    assert batch.total_quantity_kg == 40
    assert [s.contribution for s in batch.harvest_samples] == [25.0, 75.0]
    assert batch.quality_grade == QualityGrade.PREMIUM
    assert batch.quality_score == 100
    # (100 * 10 + 90 * 30) / 40 = 92.5
    assert batch.sustainability_score == 93
    assert batch.processor.license_number == "LIC-9"

    for sample_id in (first.sample_id, second.sample_id):
        harvest = manager.get_harvest(sample_id)
        assert harvest.status == HarvestStatus.RECEIVED
        assert harvest.active_batch_id == batch.batch_id
        assert harvest.batch_ids == [batch.batch_id]


def test_create_batch_rejects_species_mismatch(manager: RecordLifecycleManager) -> None:
    harvest = manager.submit_harvest(_harvest_payload(species="Tulsi"))
    with pytest.raises(RecordValidationError) as exc:
        manager.create_batch(_batch_payload([(harvest.sample_id, 5)]))
    assert "Tulsi" in str(exc.value)
    assert manager.get_harvest(harvest.sample_id).active_batch_id is None


def test_create_batch_rejects_excess_quantity(manager: RecordLifecycleManager) -> None:
    harvest = manager.submit_harvest(_harvest_payload(quantityKg=5))
    with pytest.raises(RecordValidationError):
        manager.create_batch(_batch_payload([(harvest.sample_id, 6)]))


def test_create_batch_missing_sample(manager: RecordLifecycleManager) -> None:
    harvest = manager.submit_harvest(_harvest_payload())
    with pytest.raises(NotFoundError):
        manager.create_batch(_batch_payload([(harvest.sample_id, 5), ("SAMPLE-404", 5)]))
    assert manager.store.list_batches() == []
    assert manager.get_harvest(harvest.sample_id).status == HarvestStatus.COLLECTED


def test_sample_belongs_to_one_active_batch(manager: RecordLifecycleManager) -> None:
    harvest = manager.submit_harvest(_harvest_payload())
    batch = manager.create_batch(_batch_payload([(harvest.sample_id, 5)]))

    with pytest.raises(ConflictError):
        manager.create_batch(_batch_payload([(harvest.sample_id, 5)]))

    rejected = manager.transition_batch(batch.batch_id, BatchEvent.REJECT)
    assert rejected.status == BatchStatus.REJECTED
    released = manager.get_harvest(harvest.sample_id)
    assert released.active_batch_id is None
    assert released.status == HarvestStatus.RECEIVED
    assert released.batch_ids == [batch.batch_id]

    again = manager.create_batch(_batch_payload([(harvest.sample_id, 5)]))
    assert manager.get_harvest(harvest.sample_id).batch_ids == [batch.batch_id, again.batch_id]


def test_processing_steps_drive_batch_status(manager: RecordLifecycleManager) -> None:
    batch = _make_batch(manager)

    step = manager.add_processing_step(
        batch.batch_id, {"step": "drying", "conditions": {"temperature": 45}}, operator="Meera"
    )
    stored = manager.get_batch(batch.batch_id)
    assert stored.status == BatchStatus.PROCESSING
    assert step.status == StepStatus.IN_PROGRESS
    assert step.operator_name == "Meera"

    updated = manager.update_processing_step(
        batch.batch_id, step.step_id, {"conditions": {"humidity": 12}, "qualityMetrics": {"yield": 88}}
    )
    assert updated.conditions.temperature == 45
    assert updated.conditions.humidity == 12
    assert updated.quality.yield_pct == 88

    closed = manager.complete_processing_step(
        batch.batch_id, step.step_id, {"status": "FAILED", "notes": "mould found"}
    )
    assert closed.status == StepStatus.FAILED
    assert closed.end_time == NOW
    assert closed.conditions.notes == "mould found"

    graded = manager.get_batch(batch.batch_id)
    assert graded.quality_score == 90
    assert graded.quality_grade == QualityGrade.PREMIUM

    with pytest.raises(ConflictError):
        manager.complete_processing_step(batch.batch_id, step.step_id)
    with pytest.raises(NotFoundError):
        manager.complete_processing_step(batch.batch_id, "STEP-404")


def test_steps_closed_after_testing_starts(manager: RecordLifecycleManager) -> None:
    batch = _make_batch(manager)
    manager.add_processing_step(batch.batch_id, {"step": "cleaning"})
    manager.transition_batch(batch.batch_id, BatchEvent.START_TESTING)
    with pytest.raises(ConflictError):
        manager.add_processing_step(batch.batch_id, {"step": "grinding"})


def test_lab_tests_regrade_batch(manager: RecordLifecycleManager) -> None:
    batch = _make_batch(manager)
    manager.add_processing_step(batch.batch_id, {"step": "grinding"})

    test = manager.add_lab_test(_lab_payload(batch.batch_id, "PENDING"), lab="Central Lab")
    stored = manager.get_batch(batch.batch_id)
    assert stored.status == BatchStatus.TESTING
    assert stored.quality_score == 100
    assert test.lab_name == "Central Lab"

    with pytest.raises(ConflictError):
        manager.add_lab_test(_lab_payload(batch.batch_id, "PASS"))

    updated, owner = manager.update_lab_test(
        test.test_id, {"results": {"status": "FAIL", "notes": "lead above limit"}}
    )
    assert updated.results.status == TestStatus.FAIL
    assert owner.quality_score == 35
    assert owner.quality_grade == QualityGrade.REJECT

    with pytest.raises(ConflictError):
        manager.update_lab_test(test.test_id, {"results": {"status": "PASS"}})
    with pytest.raises(NotFoundError):
        manager.update_lab_test("TEST-404", {"results": {"status": "PASS"}})


def test_retest_frees_test_type(manager: RecordLifecycleManager) -> None:
    batch = _make_batch(manager)
    first = manager.add_lab_test(_lab_payload(batch.batch_id, "RETEST"))
    second = manager.add_lab_test(_lab_payload(batch.batch_id, "PASS", overallScore=90))

    stored = manager.get_batch(batch.batch_id)
    assert [t.test_id for t in stored.lab_tests] == [first.test_id, second.test_id]
    assert stored.status == BatchStatus.CREATED
    assert stored.quality_score == 95


def test_lab_test_for_missing_batch(manager: RecordLifecycleManager) -> None:
    with pytest.raises(NotFoundError):
        manager.add_lab_test(_lab_payload("BATCH-404", "PASS"))


def test_provenance_views(manager: RecordLifecycleManager) -> None:
    batch = _make_batch(manager)
    manager.add_processing_step(batch.batch_id, {"step": "cleaning"})
    sample_id = batch.harvest_samples[0].sample_id

    harvest_trail = manager.harvest_provenance(sample_id)
    assert [e["event"] for e in harvest_trail["timeline"]] == ["Harvested", "Processing: cleaning"]

    batch_trail = manager.batch_provenance(batch.batch_id)
    assert [e["event"] for e in batch_trail["timeline"]] == [
        "Harvested",
        "Batch Created",
        "Processing: cleaning",
    ]
    assert batch_trail["batch"]["status"] == "PROCESSING"


def test_reactivating_retest_conflicts_with_active_test(manager: RecordLifecycleManager) -> None:
    batch = _make_batch(manager)
    retest = manager.add_lab_test(_lab_payload(batch.batch_id, "RETEST"))
    current = manager.add_lab_test(_lab_payload(batch.batch_id, "PENDING"))

    with pytest.raises(ConflictError) as exc:
        manager.update_lab_test(retest.test_id, {"results": {"status": "PENDING"}})
    assert current.test_id in str(exc.value)
    stored = manager.get_batch(batch.batch_id)
    assert [t.results.status for t in stored.lab_tests] == [TestStatus.RETEST, TestStatus.PENDING]

    manager.update_lab_test(current.test_id, {"results": {"status": "RETEST"}})
    revived, owner = manager.update_lab_test(
        retest.test_id, {"results": {"status": "PASS", "overallScore": 90}}
    )
    assert revived.results.status == TestStatus.PASS
    assert [t.test_id for t in owner.lab_tests if t.is_active()] == [retest.test_id]
    assert owner.quality_score == 95


def test_get_lab_test(manager: RecordLifecycleManager) -> None:
    batch = _make_batch(manager)
    added = manager.add_lab_test(_lab_payload(batch.batch_id, "PENDING"))

    test, owner = manager.get_lab_test(added.test_id)
    assert test.test_id == added.test_id
    assert owner.batch_id == batch.batch_id
    with pytest.raises(NotFoundError):
        manager.get_lab_test("TEST-404")


def test_closed_step_cannot_be_reopened(manager: RecordLifecycleManager) -> None:
    batch = _make_batch(manager)
    step = manager.add_processing_step(batch.batch_id, {"step": "drying"})
    manager.complete_processing_step(batch.batch_id, step.step_id, {"status": "FAILED"})

    with pytest.raises(ConflictError):
        manager.update_processing_step(batch.batch_id, step.step_id, {"status": "IN_PROGRESS"})

    stored = manager.get_batch(batch.batch_id)
    assert stored.find_step(step.step_id).status == StepStatus.FAILED
    [entry] = get_processing_timeline(stored)
    assert entry["status"] == "FAILED"
    assert entry["duration"] == 0

    noted = manager.update_processing_step(batch.batch_id, step.step_id, {"description": "second pass"})
    assert noted.description == "second pass"
    assert noted.end_time == NOW


def test_contributions_sum_to_hundred_for_uneven_split(manager: RecordLifecycleManager) -> None:
    samples = [manager.submit_harvest(_harvest_payload()).sample_id for _ in range(3)]
    batch = manager.create_batch(_batch_payload([(sid, 10) for sid in samples]))

    contributions = [s.contribution for s in batch.harvest_samples]
    assert contributions == [pytest.approx(100 / 3)] * 3
    assert sum(contributions) == pytest.approx(100)
    stored = manager.get_batch(batch.batch_id)
    assert sum(s.contribution for s in stored.harvest_samples) == pytest.approx(100)


def _make_batch(manager: RecordLifecycleManager):
    harvest = manager.submit_harvest(_harvest_payload())
    return manager.create_batch(_batch_payload([(harvest.sample_id, 10)]))


def _harvest_payload(**overrides) -> dict:
    payload = {
        "species": "Ashwagandha",
        "quantityKg": 10,
        "harvestDate": "2024-04-15T06:00:00Z",
        "location": {"type": "Point", "coordinates": [79.7, 29.6]},
        "harvestMethod": "wild_collection",
    }
    payload.update(overrides)
    return payload


def _batch_payload(samples) -> dict:
    return {
        "species": "Ashwagandha",
        "harvestSamples": [{"sampleId": sid, "quantityKg": qty} for sid, qty in samples],
        "destination": "MANUFACTURER",
        "destinationDetails": {"name": "Herbal Works"},
    }


def _lab_payload(batch_id: str, status: str, **results) -> dict:
    return {
        "batchId": batch_id,
        "testType": "heavy_metals",
        "testDate": "2024-05-20T10:00:00Z",
        "results": {"status": status, **results},
    }
