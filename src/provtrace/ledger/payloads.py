"""Ledger payloads for each recorded event."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from ..records.models import Batch, Harvest, LabTest, ProcessingStep
from ..records.serialization import format_datetime, harvest_to_dict, lab_test_to_dict


def harvest_payload(harvest: Harvest, now: datetime) -> Dict[str, Any]:
    document = harvest_to_dict(harvest)
    return {
        "sampleId": harvest.sample_id,
        "species": harvest.species,
        "quantityKg": harvest.quantity_kg,
        "harvestDate": document["harvestDate"],
        "location": document["location"],
        "harvester": document["harvesterDetails"],
        "compliance": document["compliance"],
        "timestamp": format_datetime(now),
    }


def batch_payload(batch: Batch, now: datetime) -> Dict[str, Any]:
    return {
        "batchId": batch.batch_id,
        "species": batch.species,
        "totalQuantityKg": batch.total_quantity_kg,
        "harvestSamples": [
            {"sampleId": sample.sample_id, "quantityKg": sample.quantity_kg}
            for sample in batch.harvest_samples
        ],
        "processor": {
            "name": batch.processor.name,
            "organization": batch.processor.organization,
            "licenseNumber": batch.processor.license_number,
        },
        "timestamp": format_datetime(now),
    }


def step_payload(batch_id: str, step: ProcessingStep) -> Dict[str, Any]:
    return {
        "batchId": batch_id,
        "stepId": step.step_id,
        "step": step.step.value,
        "operator": step.operator_name,
        "timestamp": format_datetime(step.start_time),
    }


def lab_test_payload(batch_id: str, test: LabTest, now: datetime) -> Dict[str, Any]:
    return {
        "batchId": batch_id,
        "testId": test.test_id,
        "testType": test.test_type.value,
        "results": lab_test_to_dict(test, public=True)["results"],
        "labId": test.lab_name,
        "timestamp": format_datetime(now),
    }
