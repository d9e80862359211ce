"""Serialization helpers for harvest and batch documents."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .models import (
    Address,
    Batch,
    BatchStatus,
    Certificate,
    ComplianceBlock,
    ComplianceStatus,
    Contamination,
    Destination,
    DestinationDetails,
    GeoPoint,
    Harvest,
    HarvestConditions,
    HarvestMethod,
    HarvestQuality,
    HarvestSampleRef,
    HarvestStatus,
    HarvesterDetails,
    LabParameter,
    LabResults,
    LabTest,
    ParameterStatus,
    ProcessingConditions,
    ProcessingStep,
    ProcessorDetails,
    QualityGrade,
    StepQualityMetrics,
    StepStatus,
    StepType,
    SyncMetadata,
    SyncStatus,
    TestStatus,
    TestType,
)


def harvest_to_dict(harvest: Harvest, *, public: bool = False) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "sampleId": harvest.sample_id,
        "species": harvest.species,
        "commonName": harvest.common_name,
        "scientificName": harvest.scientific_name,
        "quantityKg": harvest.quantity_kg,
        "harvestDate": format_datetime(harvest.harvest_date),
        "location": _serialize_point(harvest.location),
        "address": {
            "village": harvest.address.village,
            "district": harvest.address.district,
            "state": harvest.address.state,
            "country": harvest.address.country,
        },
        "harvestMethod": harvest.harvest_method.value,
        "harvestConditions": {
            "weather": harvest.conditions.weather,
            "soilType": harvest.conditions.soil_type,
            "altitude": harvest.conditions.altitude,
            "notes": harvest.conditions.notes,
        },
        "harvesterDetails": {
            "name": harvest.harvester.name,
            "phone": harvest.harvester.phone,
            "organization": harvest.harvester.organization,
        },
        "compliance": {
            "geofenceStatus": harvest.compliance.geofence_status.value,
            "seasonalStatus": harvest.compliance.seasonal_status.value,
            "sustainabilityScore": harvest.compliance.sustainability_score,
            "certifications": list(harvest.compliance.certifications),
        },
        "qualityMetrics": {
            "moistureContent": harvest.quality.moisture_content,
            "visualGrade": harvest.quality.visual_grade,
            "contamination": _enum_value(harvest.quality.contamination),
        },
        "status": harvest.status.value,
        "batchIds": list(harvest.batch_ids),
        "createdAt": format_datetime(harvest.created_at),
        "updatedAt": format_datetime(harvest.updated_at),
    }
    if public:
        # contact details stay private on the public trail
        data["harvesterDetails"].pop("phone")
    else:
        data["activeBatchId"] = harvest.active_batch_id
        data["sync"] = _serialize_sync(harvest.sync)
    return data


def harvest_from_dict(data: Dict[str, Any]) -> Harvest:
    address = data.get("address") or {}
    conditions = data.get("harvestConditions") or {}
    harvester = data.get("harvesterDetails") or {}
    compliance = data.get("compliance") or {}
    quality = data.get("qualityMetrics") or {}
    return Harvest(
        sample_id=data["sampleId"],
        species=data["species"],
        common_name=data.get("commonName"),
        scientific_name=data.get("scientificName"),
        quantity_kg=float(data["quantityKg"]),
        harvest_date=parse_datetime(data["harvestDate"]),
        location=_deserialize_point(data["location"]),
        address=Address(
            village=address.get("village"),
            district=address.get("district"),
            state=address.get("state"),
            country=address.get("country") or "India",
        ),
        harvest_method=HarvestMethod(data["harvestMethod"]),
        conditions=HarvestConditions(
            weather=conditions.get("weather"),
            soil_type=conditions.get("soilType"),
            altitude=conditions.get("altitude"),
            notes=conditions.get("notes"),
        ),
        harvester=HarvesterDetails(
            name=harvester.get("name"),
            phone=harvester.get("phone"),
            organization=harvester.get("organization"),
        ),
        compliance=ComplianceBlock(
            geofence_status=ComplianceStatus(compliance.get("geofenceStatus", "PENDING")),
            seasonal_status=ComplianceStatus(compliance.get("seasonalStatus", "PENDING")),
            sustainability_score=compliance.get("sustainabilityScore"),
            certifications=list(compliance.get("certifications") or []),
        ),
        quality=HarvestQuality(
            moisture_content=quality.get("moistureContent"),
            visual_grade=quality.get("visualGrade"),
            contamination=_maybe_enum(Contamination, quality.get("contamination")),
        ),
        status=HarvestStatus(data.get("status", "COLLECTED")),
        batch_ids=list(data.get("batchIds") or []),
        active_batch_id=data.get("activeBatchId"),
        sync=_deserialize_sync(data.get("sync")),
        created_at=parse_datetime(data.get("createdAt")),
        updated_at=parse_datetime(data.get("updatedAt")),
    )


def batch_to_dict(batch: Batch, *, public: bool = False) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "batchId": batch.batch_id,
        "species": batch.species,
        "totalQuantityKg": batch.total_quantity_kg,
        "harvestSamples": [
            {
                "sampleId": sample.sample_id,
                "quantityKg": sample.quantity_kg,
                "contribution": sample.contribution,
            }
            for sample in batch.harvest_samples
        ],
        "processingSteps": [step_to_dict(step, public=public) for step in batch.processing_steps],
        "labTests": [lab_test_to_dict(test, public=public) for test in batch.lab_tests],
        "qualityGrade": batch.quality_grade.value,
        "qualityScore": batch.quality_score,
        "sustainabilityScore": batch.sustainability_score,
        "processorDetails": {
            "name": batch.processor.name,
            "organization": batch.processor.organization,
            "licenseNumber": batch.processor.license_number,
        },
        "status": batch.status.value,
        "destination": batch.destination.value,
        "destinationDetails": {
            "name": batch.destination_details.name,
            "address": batch.destination_details.address,
            "licenseNumber": batch.destination_details.license_number,
            "contactInfo": batch.destination_details.contact_info,
        },
        "createdAt": format_datetime(batch.created_at),
        "updatedAt": format_datetime(batch.updated_at),
    }
    if not public:
        data["sync"] = _serialize_sync(batch.sync)
    return data


def batch_from_dict(data: Dict[str, Any]) -> Batch:
    processor = data.get("processorDetails") or {}
    destination = data["destinationDetails"]
    return Batch(
        batch_id=data["batchId"],
        species=data["species"],
        total_quantity_kg=float(data["totalQuantityKg"]),
        harvest_samples=[
            HarvestSampleRef(
                sample_id=sample["sampleId"],
                quantity_kg=float(sample["quantityKg"]),
                contribution=sample.get("contribution"),
            )
            for sample in data.get("harvestSamples") or []
        ],
        processing_steps=[step_from_dict(step) for step in data.get("processingSteps") or []],
        lab_tests=[lab_test_from_dict(test) for test in data.get("labTests") or []],
        quality_grade=QualityGrade(data.get("qualityGrade", "PREMIUM")),
        quality_score=int(data.get("qualityScore", 100)),
        sustainability_score=data.get("sustainabilityScore"),
        processor=ProcessorDetails(
            name=processor.get("name"),
            organization=processor.get("organization"),
            license_number=processor.get("licenseNumber"),
        ),
        status=BatchStatus(data.get("status", "CREATED")),
        destination=Destination(data["destination"]),
        destination_details=DestinationDetails(
            name=destination["name"],
            address=destination.get("address"),
            license_number=destination.get("licenseNumber"),
            contact_info=destination.get("contactInfo"),
        ),
        sync=_deserialize_sync(data.get("sync")),
        created_at=parse_datetime(data.get("createdAt")),
        updated_at=parse_datetime(data.get("updatedAt")),
    )


def step_to_dict(step: ProcessingStep, *, public: bool = False) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "stepId": step.step_id,
        "step": step.step.value,
        "description": step.description,
        "conditions": {
            "temperature": step.conditions.temperature,
            "humidity": step.conditions.humidity,
            "duration": step.conditions.duration,
            "equipment": step.conditions.equipment,
            "notes": step.conditions.notes,
        },
        "operatorName": step.operator_name,
        "startTime": format_datetime(step.start_time),
        "endTime": format_datetime(step.end_time),
        "status": step.status.value,
        "qualityMetrics": {
            "moistureContent": step.quality.moisture_content,
            "particleSize": step.quality.particle_size,
            "color": step.quality.color,
            "aroma": step.quality.aroma,
            "yield": step.quality.yield_pct,
        },
        "recordedAt": format_datetime(step.recorded_at),
    }
    if not public:
        data["ledgerTxId"] = step.ledger_tx_id
    return data


def step_from_dict(data: Dict[str, Any]) -> ProcessingStep:
    conditions = data.get("conditions") or {}
    quality = data.get("qualityMetrics") or {}
    return ProcessingStep(
        step_id=data["stepId"],
        step=StepType(data["step"]),
        description=data.get("description"),
        conditions=ProcessingConditions(
            temperature=conditions.get("temperature"),
            humidity=conditions.get("humidity"),
            duration=conditions.get("duration"),
            equipment=conditions.get("equipment"),
            notes=conditions.get("notes"),
        ),
        operator_name=data.get("operatorName"),
        start_time=parse_datetime(data["startTime"]),
        end_time=parse_datetime(data.get("endTime")),
        status=StepStatus(data.get("status", "IN_PROGRESS")),
        quality=StepQualityMetrics(
            moisture_content=quality.get("moistureContent"),
            particle_size=quality.get("particleSize"),
            color=quality.get("color"),
            aroma=quality.get("aroma"),
            yield_pct=quality.get("yield"),
        ),
        ledger_tx_id=data.get("ledgerTxId"),
        recorded_at=parse_datetime(data.get("recordedAt")),
    )


def lab_test_to_dict(test: LabTest, *, public: bool = False) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "testId": test.test_id,
        "testType": test.test_type.value,
        "testDate": format_datetime(test.test_date),
        "labName": test.lab_name,
        "results": {
            "status": test.results.status.value,
            "parameters": [
                {
                    "parameter": param.parameter,
                    "value": param.value,
                    "unit": param.unit,
                    "limit": param.limit,
                    "status": param.status.value,
                }
                for param in test.results.parameters
            ],
            "overallScore": test.results.overall_score,
            "notes": test.results.notes,
        },
        "certificate": _serialize_certificate(test.certificate),
    }
    if not public:
        data["ledgerTxId"] = test.ledger_tx_id
    return data


def lab_test_from_dict(data: Dict[str, Any]) -> LabTest:
    results = data.get("results") or {}
    certificate = data.get("certificate")
    return LabTest(
        test_id=data["testId"],
        test_type=TestType(data["testType"]),
        test_date=parse_datetime(data["testDate"]),
        lab_name=data.get("labName"),
        results=LabResults(
            status=TestStatus(results.get("status", "PENDING")),
            parameters=[
                LabParameter(
                    parameter=param["parameter"],
                    value=param["value"],
                    unit=param.get("unit"),
                    limit=param.get("limit"),
                    status=ParameterStatus(param["status"]),
                )
                for param in results.get("parameters") or []
            ],
            overall_score=results.get("overallScore"),
            notes=results.get("notes"),
        ),
        certificate=(
            Certificate(
                filename=certificate["filename"],
                url=certificate["url"],
                uploaded_at=parse_datetime(certificate.get("uploadedAt")),
            )
            if certificate
            else None
        ),
        ledger_tx_id=data.get("ledgerTxId"),
    )


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 string; naive values are taken as UTC."""

    if value is None:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _serialize_point(point: GeoPoint) -> Dict[str, Any]:
    return {"type": "Point", "coordinates": [point.longitude, point.latitude]}


def _deserialize_point(data: Dict[str, Any]) -> GeoPoint:
    coordinates: List[float] = data["coordinates"]
    return GeoPoint(longitude=float(coordinates[0]), latitude=float(coordinates[1]))


def _serialize_sync(sync: SyncMetadata) -> Dict[str, Any]:
    return {
        "syncStatus": sync.sync_status.value,
        "ledgerTxId": sync.ledger_tx_id,
        "ledgerHash": sync.ledger_hash,
        "version": sync.version,
    }


def _deserialize_sync(data: Optional[Dict[str, Any]]) -> SyncMetadata:
    if not data:
        return SyncMetadata()
    return SyncMetadata(
        sync_status=SyncStatus(data.get("syncStatus", "PENDING")),
        ledger_tx_id=data.get("ledgerTxId"),
        ledger_hash=data.get("ledgerHash"),
        version=data.get("version", "1.0"),
    )


def _serialize_certificate(certificate: Optional[Certificate]) -> Optional[Dict[str, Any]]:
    if certificate is None:
        return None
    return {
        "filename": certificate.filename,
        "url": certificate.url,
        "uploadedAt": format_datetime(certificate.uploaded_at),
    }


def _enum_value(value: Optional[Enum]) -> Optional[str]:
    return value.value if value is not None else None


def _maybe_enum(enum_cls, value: Optional[str]):
    if value is None:
        return None
    return enum_cls(value)
