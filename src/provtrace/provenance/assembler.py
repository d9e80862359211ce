"""Assemble public provenance trails for harvests and batches."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from ..records.models import Batch, Harvest
from ..records.serialization import format_datetime, harvest_to_dict
from .timeline import (
    TimelineEntry,
    format_quantity,
    get_processing_timeline,
    sort_timeline,
)


def assemble_harvest_provenance(
    harvest: Harvest, related_batches: Iterable[Batch]
) -> Dict[str, Any]:
    """Build the provenance trail of one sample.

    Only batches whose samples reference *harvest* contribute processing
    events; anything else passed in is ignored.
    """

    batches = [
        batch for batch in related_batches if harvest.sample_id in batch.sample_ids()
    ]

    entries: List[TimelineEntry] = [
        TimelineEntry(
            event="Harvested",
            date=harvest.harvest_date,
            actor=harvest.harvester.name,
            details=(
                f"{format_quantity(harvest.quantity_kg)}kg of {harvest.species} "
                f"harvested using {harvest.harvest_method.value} method"
            ),
        )
    ]
    for batch in batches:
        for step in batch.processing_steps:
            entries.append(
                TimelineEntry(
                    event=f"Processing: {step.step.value}",
                    date=step.start_time,
                    actor=step.operator_name or batch.processor.name,
                    details=step.description,
                )
            )

    return {
        "harvest": harvest_to_dict(harvest, public=True),
        "batches": [_batch_summary(batch) for batch in batches],
        "timeline": [entry.as_dict() for entry in sort_timeline(entries)],
    }


def assemble_batch_provenance(
    batch: Batch, constituent_harvests: Iterable[Harvest]
) -> Dict[str, Any]:
    harvests = list(constituent_harvests)

    entries: List[TimelineEntry] = []
    for harvest in harvests:
        entries.append(
            TimelineEntry(
                event="Harvested",
                date=harvest.harvest_date,
                actor=harvest.harvester.name,
                details=f"{format_quantity(harvest.quantity_kg)}kg of {harvest.species} harvested",
            )
        )
    entries.append(
        TimelineEntry(
            event="Batch Created",
            date=batch.created_at,
            actor=batch.processor.name,
            details=f"Batch created with {format_quantity(batch.total_quantity_kg)}kg total quantity",
        )
    )
    for step in batch.processing_steps:
        entries.append(
            TimelineEntry(
                event=f"Processing: {step.step.value}",
                date=step.start_time,
                actor=step.operator_name,
                details=step.description or f"{step.step.value} processing step",
            )
        )
    for test in batch.lab_tests:
        entries.append(
            TimelineEntry(
                event=f"Lab Test: {test.test_type.value}",
                date=test.test_date,
                actor=test.lab_name,
                details=f"Test result: {test.results.status.value}",
            )
        )

    return {
        "batch": {
            "batchId": batch.batch_id,
            "species": batch.species,
            "totalQuantityKg": batch.total_quantity_kg,
            "status": batch.status.value,
            "qualityGrade": batch.quality_grade.value,
            "qualityScore": batch.quality_score,
            "sustainabilityScore": batch.sustainability_score,
            "processor": {
                "name": batch.processor.name,
                "organization": batch.processor.organization,
            },
            "destination": batch.destination.value,
            "destinationDetails": {
                "name": batch.destination_details.name,
                "address": batch.destination_details.address,
                "licenseNumber": batch.destination_details.license_number,
                "contactInfo": batch.destination_details.contact_info,
            },
            "createdAt": format_datetime(batch.created_at),
        },
        "harvestSamples": [_harvest_summary(harvest) for harvest in harvests],
        "processingTimeline": get_processing_timeline(batch),
        "labTests": [
            {
                "testType": test.test_type.value,
                "testDate": format_datetime(test.test_date),
                "status": test.results.status.value,
                "labName": test.lab_name,
                "overallScore": test.results.overall_score,
            }
            for test in batch.lab_tests
        ],
        "timeline": [entry.as_dict() for entry in sort_timeline(entries)],
    }


def _batch_summary(batch: Batch) -> Dict[str, Any]:
    return {
        "batchId": batch.batch_id,
        "species": batch.species,
        "status": batch.status.value,
        "qualityGrade": batch.quality_grade.value,
        "processor": {
            "name": batch.processor.name,
            "organization": batch.processor.organization,
        },
        "processingSteps": len(batch.processing_steps),
        "labTests": [
            {
                "testType": test.test_type.value,
                "status": test.results.status.value,
                "testDate": format_datetime(test.test_date),
            }
            for test in batch.lab_tests
        ],
    }


def _harvest_summary(harvest: Harvest) -> Dict[str, Any]:
    public = harvest_to_dict(harvest, public=True)
    return {
        "sampleId": harvest.sample_id,
        "species": harvest.species,
        "quantityKg": harvest.quantity_kg,
        "harvestDate": public["harvestDate"],
        "location": public["location"],
        "address": public["address"],
        "harvester": {
            "name": harvest.harvester.name,
            "organization": harvest.harvester.organization,
        },
        "compliance": public["compliance"],
        "qualityMetrics": public["qualityMetrics"],
    }
