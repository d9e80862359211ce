"""Tests for the filesystem record store."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from provtrace.exceptions import ConflictError, DuplicateKeyError, NotFoundError
from provtrace.records.models import (
    Batch,
    BatchStatus,
    Destination,
    DestinationDetails,
    GeoPoint,
    Harvest,
    HarvestMethod,
    HarvestSampleRef,
    HarvestStatus,
)
from provtrace.storage import RecordStore


T0 = datetime(2024, 4, 15, 6, 0, tzinfo=timezone.utc)


def test_insert_and_read_back(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    store.insert_harvest(_harvest("SAMPLE-1"))

    loaded = store.get_harvest("SAMPLE-1")
    assert loaded.species == "Ashwagandha"
    assert loaded.location == GeoPoint(longitude=79.7, latitude=29.6)
    assert loaded.harvest_date == T0

    document = json.loads((tmp_path / "harvests" / "SAMPLE-1.json").read_text(encoding="utf-8"))
    assert document["location"] == {"type": "Point", "coordinates": [79.7, 29.6]}
    assert document["sync"]["syncStatus"] == "PENDING"


def test_duplicate_insert_is_rejected(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    store.insert_harvest(_harvest("SAMPLE-1"))
    with pytest.raises(DuplicateKeyError):
        store.insert_harvest(_harvest("SAMPLE-1"))


def test_missing_and_malformed_ids(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    assert store.find_harvest("SAMPLE-404") is None
    assert store.find_batch("../escape") is None
    with pytest.raises(NotFoundError) as exc:
        store.get_batch("BATCH-404")
    assert str(exc.value) == "batch BATCH-404 not found"


def test_update_persists_mutation(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    store.insert_harvest(_harvest("SAMPLE-1"))

    def receive(harvest: Harvest) -> None:
        harvest.status = HarvestStatus.RECEIVED

    store.update_harvest("SAMPLE-1", receive)
    assert store.get_harvest("SAMPLE-1").status == HarvestStatus.RECEIVED
    assert not list((tmp_path / "harvests").glob("*.tmp"))


def test_claim_is_exclusive_until_released(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    store.insert_harvest(_harvest("SAMPLE-1"))

    claimed = store.claim_harvest("SAMPLE-1", "BATCH-A")
    assert claimed.active_batch_id == "BATCH-A"
    assert claimed.batch_ids == ["BATCH-A"]

    with pytest.raises(ConflictError):
        store.claim_harvest("SAMPLE-1", "BATCH-B")

    assert store.release_harvest("SAMPLE-1", "BATCH-B") is None
    released = store.release_harvest("SAMPLE-1", "BATCH-A")
    assert released is not None
    assert released.active_batch_id is None

    store.claim_harvest("SAMPLE-1", "BATCH-B")
    assert store.get_harvest("SAMPLE-1").batch_ids == ["BATCH-A", "BATCH-B"]


def test_batch_lookups(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    first = _batch("BATCH-A", ["SAMPLE-1", "SAMPLE-2"], T0)
    second = _batch("BATCH-B", ["SAMPLE-2"], T0 + timedelta(hours=1))
    second.status = BatchStatus.REJECTED
    store.insert_batch(second)
    store.insert_batch(first)

    assert [b.batch_id for b in store.list_batches()] == ["BATCH-A", "BATCH-B"]
    assert [b.batch_id for b in store.find_batches_for_sample("SAMPLE-2")] == ["BATCH-A", "BATCH-B"]
    assert [b.batch_id for b in store.find_active_batches_for_sample("SAMPLE-2")] == ["BATCH-A"]
    assert store.find_batch_by_test_id("TEST-404") is None


def test_update_batch_recomputes_contributions(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    store.insert_batch(_batch("BATCH-A", ["SAMPLE-1", "SAMPLE-2"], T0))

    def grow(batch: Batch) -> None:
        batch.harvest_samples[0].quantity_kg = 30.0
        batch.total_quantity_kg = 40.0

    updated = store.update_batch("BATCH-A", grow)
    assert [s.contribution for s in updated.harvest_samples] == [75.0, 25.0]
    assert store.get_batch("BATCH-A").harvest_samples[0].contribution == 75.0


def test_contributions_for_uneven_split(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    store.insert_batch(_batch("BATCH-A", ["SAMPLE-1", "SAMPLE-2", "SAMPLE-3"], T0))

    def retotal(batch: Batch) -> None:
        batch.harvest_samples[2].quantity_kg = 5.0
        batch.total_quantity_kg = 25.0

    updated = store.update_batch("BATCH-A", lambda batch: None)
    contributions = [s.contribution for s in updated.harvest_samples]
    assert contributions == [pytest.approx(100 / 3)] * 3
    assert sum(contributions) == pytest.approx(100)

    reweighted = store.update_batch("BATCH-A", retotal)
    assert [s.contribution for s in reweighted.harvest_samples] == pytest.approx([40.0, 40.0, 20.0])
    stored = store.get_batch("BATCH-A")
    assert sum(s.contribution for s in stored.harvest_samples) == pytest.approx(100)


def _harvest(sample_id: str) -> Harvest:
    return Harvest(
        sample_id=sample_id,
        species="Ashwagandha",
        quantity_kg=10.0,
        harvest_date=T0,
        location=GeoPoint(longitude=79.7, latitude=29.6),
        harvest_method=HarvestMethod.CULTIVATED,
        created_at=T0,
    )


def _batch(batch_id: str, sample_ids, created_at: datetime) -> Batch:
    return Batch(
        batch_id=batch_id,
        species="Ashwagandha",
        total_quantity_kg=10.0 * len(sample_ids),
        harvest_samples=[HarvestSampleRef(sample_id=sid, quantity_kg=10.0) for sid in sample_ids],
        destination=Destination.DISTRIBUTOR,
        destination_details=DestinationDetails(name="Spice Route"),
        created_at=created_at,
    )
