"""Tests for submission schemas."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from provtrace.records import RecordValidationError, parse_submission
from provtrace.records.models import StepStatus
from provtrace.records.schemas import (
    BatchSubmission,
    HarvestSubmission,
    LabTestSubmission,
    StepCompletion,
    StepQualityIn,
)


def test_harvest_submission_accepts_camel_case() -> None:
    submission = parse_submission(HarvestSubmission, _harvest_payload())
    assert submission.species == "Ashwagandha"
    assert submission.quantity_kg == 12.5
    assert submission.location.longitude == 79.7
    assert submission.location.latitude == 29.6
    assert submission.harvest_date.tzinfo is not None
    assert submission.harvester_details.name == "Ravi"


def test_harvest_submission_naive_date_is_utc() -> None:
    payload = _harvest_payload(harvestDate="2024-04-15T06:00:00")
    submission = parse_submission(HarvestSubmission, payload)
    assert submission.harvest_date == datetime(2024, 4, 15, 6, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "overrides,needle",
    [
        ({"quantityKg": 0}, "quantityKg"),
        ({"quantityKg": 10001}, "quantityKg"),
        ({"species": "A"}, "species"),
        ({"harvestMethod": "foraged"}, "harvestMethod"),
        ({"location": {"coordinates": [79.7]}}, "location.coordinates"),
        ({"location": {"coordinates": [200.0, 29.6]}}, "longitude"),
        ({"location": {"coordinates": [79.7, -91.0]}}, "latitude"),
        ({"qualityMetrics": {"visualGrade": "E"}}, "visualGrade"),
        ({"qualityMetrics": {"moistureContent": 120}}, "moistureContent"),
    ],
)
def test_harvest_submission_rejects_bad_fields(overrides: dict, needle: str) -> None:
    with pytest.raises(RecordValidationError) as exc:
        parse_submission(HarvestSubmission, _harvest_payload(**overrides))
    assert exc.value.schema == "HarvestSubmission"
    assert needle in str(exc.value)


def test_harvest_date_cannot_be_in_future() -> None:
    tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
    with pytest.raises(RecordValidationError) as exc:
        parse_submission(HarvestSubmission, _harvest_payload(harvestDate=tomorrow.isoformat()))
    assert "future" in str(exc.value)


def test_payload_must_be_object() -> None:
    with pytest.raises(RecordValidationError) as exc:
        parse_submission(HarvestSubmission, ["not", "an", "object"])
    assert "JSON object" in str(exc.value)


def test_batch_submission_rejects_repeated_samples() -> None:
    payload = {
        "species": "Ashwagandha",
        "harvestSamples": [
            {"sampleId": "SAMPLE-1", "quantityKg": 5},
            {"sampleId": "sample-1", "quantityKg": 3},
        ],
        "destination": "MANUFACTURER",
        "destinationDetails": {"name": "Herbal Works"},
    }
    with pytest.raises(RecordValidationError) as exc:
        parse_submission(BatchSubmission, payload)
    assert "more than once" in str(exc.value)


def test_batch_submission_requires_samples() -> None:
    payload = {
        "species": "Ashwagandha",
        "harvestSamples": [],
        "destination": "EXPORT",
        "destinationDetails": {"name": "Port Trust"},
    }
    with pytest.raises(RecordValidationError):
        parse_submission(BatchSubmission, payload)


def test_step_quality_reads_yield_alias() -> None:
    quality = parse_submission(StepQualityIn, {"yield": 87.5, "particleSize": "fine"})
    assert quality.yield_pct == 87.5
    assert quality.particle_size == "fine"


def test_step_completion_cannot_stay_in_progress() -> None:
    assert parse_submission(StepCompletion, {}).status == StepStatus.COMPLETED
    with pytest.raises(RecordValidationError):
        parse_submission(StepCompletion, {"status": "IN_PROGRESS"})


def test_lab_test_submission_bounds_score() -> None:
    payload = {
        "batchId": "BATCH-1",
        "testType": "microbial",
        "testDate": "2024-05-01T10:00:00Z",
        "results": {"status": "PASS", "overallScore": 101},
    }
    with pytest.raises(RecordValidationError) as exc:
        parse_submission(LabTestSubmission, payload)
    assert "overallScore" in str(exc.value)


def _harvest_payload(**overrides) -> dict:
    payload = {
        "species": "Ashwagandha",
        "quantityKg": 12.5,
        "harvestDate": "2024-04-15T06:00:00Z",
        "location": {"type": "Point", "coordinates": [79.7, 29.6]},
        "harvestMethod": "wild_collection",
        "harvesterDetails": {"name": "Ravi", "phone": "555-0100"},
    }
    payload.update(overrides)
    return payload
