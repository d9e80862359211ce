"""Construct domain records from validated submissions."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from .models import (
    Address,
    Batch,
    Certificate,
    ComplianceBlock,
    DestinationDetails,
    GeoPoint,
    Harvest,
    HarvestConditions,
    HarvestQuality,
    HarvestSampleRef,
    HarvesterDetails,
    LabParameter,
    LabResults,
    LabTest,
    ProcessingConditions,
    ProcessingStep,
    ProcessorDetails,
    StepQualityMetrics,
)
from .schemas import (
    AddressIn,
    BatchSubmission,
    CertificateIn,
    HarvestConditionsIn,
    HarvestQualityIn,
    HarvestSubmission,
    LabParameterIn,
    LabTestSubmission,
    LocationIn,
    ProcessingStepSubmission,
    StepQualityIn,
)


def build_harvest(
    submission: HarvestSubmission,
    *,
    sample_id: str,
    now: datetime,
    harvester: Optional[HarvesterDetails] = None,
) -> Harvest:
    details = submission.harvester_details
    if harvester is None:
        harvester = HarvesterDetails(
            name=details.name if details else None,
            phone=details.phone if details else None,
            organization=details.organization if details else None,
        )
    return Harvest(
        sample_id=sample_id,
        species=submission.species,
        common_name=submission.common_name,
        scientific_name=submission.scientific_name,
        quantity_kg=submission.quantity_kg,
        harvest_date=submission.harvest_date or now,
        location=build_point(submission.location),
        address=build_address(submission.address),
        harvest_method=submission.harvest_method,
        conditions=build_conditions(submission.harvest_conditions),
        harvester=harvester,
        quality=build_harvest_quality(submission.quality_metrics),
        compliance=ComplianceBlock(certifications=list(submission.certifications)),
        created_at=now,
        updated_at=now,
    )


def build_batch(
    submission: BatchSubmission,
    *,
    batch_id: str,
    now: datetime,
    processor: Optional[ProcessorDetails] = None,
) -> Batch:
    samples = [
        HarvestSampleRef(sample_id=ref.sample_id, quantity_kg=ref.quantity_kg)
        for ref in submission.harvest_samples
    ]
    details = submission.destination_details
    batch = Batch(
        batch_id=batch_id,
        species=submission.species,
        total_quantity_kg=sum(sample.quantity_kg for sample in samples),
        harvest_samples=samples,
        destination=submission.destination,
        destination_details=DestinationDetails(
            name=details.name,
            address=details.address,
            license_number=details.license_number,
            contact_info=details.contact_info,
        ),
        processor=processor or ProcessorDetails(),
        created_at=now,
        updated_at=now,
    )
    batch.recompute_contributions()
    return batch


def build_step(
    submission: ProcessingStepSubmission,
    *,
    step_id: str,
    now: datetime,
    operator_name: Optional[str] = None,
) -> ProcessingStep:
    conditions = submission.conditions
    return ProcessingStep(
        step_id=step_id,
        step=submission.step,
        description=submission.description,
        conditions=ProcessingConditions(
            temperature=conditions.temperature if conditions else None,
            humidity=conditions.humidity if conditions else None,
            duration=conditions.duration if conditions else None,
            equipment=conditions.equipment if conditions else None,
            notes=conditions.notes if conditions else None,
        ),
        operator_name=operator_name,
        start_time=now,
        quality=build_step_quality(submission.quality_metrics),
        recorded_at=now,
    )


def build_lab_test(
    submission: LabTestSubmission,
    *,
    test_id: str,
    now: datetime,
    lab_name: Optional[str] = None,
) -> LabTest:
    results = submission.results
    return LabTest(
        test_id=test_id,
        test_type=submission.test_type,
        test_date=submission.test_date,
        lab_name=lab_name,
        results=LabResults(
            status=results.status,
            parameters=build_parameters(results.parameters),
            overall_score=results.overall_score,
            notes=results.notes,
        ),
        certificate=build_certificate(submission.certificate, now),
    )


def build_point(location: LocationIn) -> GeoPoint:
    return GeoPoint(longitude=location.longitude, latitude=location.latitude)


def build_address(address: Optional[AddressIn]) -> Address:
    if address is None:
        return Address()
    return Address(
        village=address.village,
        district=address.district,
        state=address.state,
        country=address.country,
    )


def build_conditions(conditions: Optional[HarvestConditionsIn]) -> HarvestConditions:
    if conditions is None:
        return HarvestConditions()
    return HarvestConditions(
        weather=conditions.weather,
        soil_type=conditions.soil_type,
        altitude=conditions.altitude,
        notes=conditions.notes,
    )


def build_harvest_quality(quality: Optional[HarvestQualityIn]) -> HarvestQuality:
    if quality is None:
        return HarvestQuality()
    return HarvestQuality(
        moisture_content=quality.moisture_content,
        visual_grade=quality.visual_grade,
        contamination=quality.contamination,
    )


def build_step_quality(quality: Optional[StepQualityIn]) -> StepQualityMetrics:
    if quality is None:
        return StepQualityMetrics()
    return StepQualityMetrics(
        moisture_content=quality.moisture_content,
        particle_size=quality.particle_size,
        color=quality.color,
        aroma=quality.aroma,
        yield_pct=quality.yield_pct,
    )


def build_parameters(parameters: List[LabParameterIn]) -> List[LabParameter]:
    return [
        LabParameter(
            parameter=param.parameter,
            value=param.value,
            unit=param.unit,
            limit=param.limit,
            status=param.status,
        )
        for param in parameters
    ]


def build_certificate(certificate: Optional[CertificateIn], now: datetime) -> Optional[Certificate]:
    if certificate is None:
        return None
    return Certificate(filename=certificate.filename, url=certificate.url, uploaded_at=now)
