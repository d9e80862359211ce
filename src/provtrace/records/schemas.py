"""Pydantic schemas validating inbound submissions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from ..config.loader import format_validation_errors
from .exceptions import RecordValidationError
from .models import (
    Contamination,
    Destination,
    HarvestMethod,
    ParameterStatus,
    StepStatus,
    StepType,
    TestStatus,
    TestType,
)


SchemaT = TypeVar("SchemaT", bound=BaseModel)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Submission(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


class LocationIn(Submission):
    coordinates: List[float]

    @field_validator("coordinates")
    @classmethod
    def check_coordinates(cls, value: List[float]) -> List[float]:
        if len(value) != 2:
            raise ValueError("coordinates must be [longitude, latitude]")
        longitude, latitude = value
        if not -180 <= longitude <= 180:
            raise ValueError("longitude must be within -180..180")
        if not -90 <= latitude <= 90:
            raise ValueError("latitude must be within -90..90")
        return value

    @property
    def longitude(self) -> float:
        return self.coordinates[0]

    @property
    def latitude(self) -> float:
        return self.coordinates[1]


class AddressIn(Submission):
    village: Optional[str] = None
    district: Optional[str] = None
    state: Optional[str] = None
    country: str = "India"


class HarvestConditionsIn(Submission):
    weather: Optional[str] = None
    soil_type: Optional[str] = None
    altitude: Optional[float] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class HarvesterDetailsIn(Submission):
    name: Optional[str] = None
    phone: Optional[str] = None
    organization: Optional[str] = None


class HarvestQualityIn(Submission):
    moisture_content: Optional[float] = Field(default=None, ge=0, le=100)
    visual_grade: Optional[str] = Field(default=None, pattern="^[ABCD]$")
    contamination: Optional[Contamination] = None


class HarvestSubmission(Submission):
    species: str = Field(min_length=2, max_length=100)
    common_name: Optional[str] = Field(default=None, max_length=100)
    scientific_name: Optional[str] = Field(default=None, max_length=200)
    quantity_kg: float = Field(ge=0.01, le=10000)
    harvest_date: Optional[datetime] = None
    location: LocationIn
    address: Optional[AddressIn] = None
    harvest_method: HarvestMethod
    harvest_conditions: Optional[HarvestConditionsIn] = None
    harvester_details: Optional[HarvesterDetailsIn] = None
    quality_metrics: Optional[HarvestQualityIn] = None
    certifications: List[str] = Field(default_factory=list)

    @field_validator("harvest_date")
    @classmethod
    def check_not_future(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _not_in_future(value)


class HarvestUpdate(Submission):
    """Fields a harvester may still edit while the sample is COLLECTED."""

    address: Optional[AddressIn] = None
    harvest_conditions: Optional[HarvestConditionsIn] = None
    quality_metrics: Optional[HarvestQualityIn] = None
    location: Optional[LocationIn] = None


class ComplianceCheckRequest(Submission):
    sample_id: Optional[str] = None
    species: str = Field(min_length=1)
    location: LocationIn
    harvest_date: datetime
    harvest_method: Optional[HarvestMethod] = None
    contamination: Optional[Contamination] = None


class SampleRefIn(Submission):
    sample_id: str = Field(min_length=1)
    quantity_kg: float = Field(ge=0.01)


class DestinationDetailsIn(Submission):
    name: str = Field(min_length=1)
    address: Optional[str] = None
    license_number: Optional[str] = None
    contact_info: Optional[str] = None


class BatchSubmission(Submission):
    species: str = Field(min_length=2, max_length=100)
    harvest_samples: List[SampleRefIn] = Field(min_length=1)
    destination: Destination
    destination_details: DestinationDetailsIn

    @model_validator(mode="after")
    def check_unique_samples(self) -> "BatchSubmission":
        seen = set()
        for sample in self.harvest_samples:
            key = sample.sample_id.upper()
            if key in seen:
                raise ValueError(f"sample {sample.sample_id} listed more than once")
            seen.add(key)
        return self


class ProcessingConditionsIn(Submission):
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    duration: Optional[float] = None
    equipment: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class StepQualityIn(Submission):
    moisture_content: Optional[float] = Field(default=None, ge=0, le=100)
    particle_size: Optional[str] = None
    color: Optional[str] = None
    aroma: Optional[str] = None
    yield_pct: Optional[float] = Field(default=None, ge=0, alias="yield")


class ProcessingStepSubmission(Submission):
    step: StepType
    description: Optional[str] = Field(default=None, max_length=500)
    conditions: Optional[ProcessingConditionsIn] = None
    quality_metrics: Optional[StepQualityIn] = None


class ProcessingStepUpdate(Submission):
    description: Optional[str] = Field(default=None, max_length=500)
    conditions: Optional[ProcessingConditionsIn] = None
    quality_metrics: Optional[StepQualityIn] = None
    status: Optional[StepStatus] = None


class StepCompletion(Submission):
    status: StepStatus = StepStatus.COMPLETED
    quality_metrics: Optional[StepQualityIn] = None
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("status")
    @classmethod
    def check_closing_status(cls, value: StepStatus) -> StepStatus:
        if value == StepStatus.IN_PROGRESS:
            raise ValueError("a completed step cannot be IN_PROGRESS")
        return value


class LabParameterIn(Submission):
    parameter: str = Field(min_length=1)
    value: str = Field(min_length=1)
    unit: Optional[str] = None
    limit: Optional[str] = None
    status: ParameterStatus


class LabResultsIn(Submission):
    status: TestStatus
    parameters: List[LabParameterIn] = Field(default_factory=list)
    overall_score: Optional[float] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = Field(default=None, max_length=1000)


class CertificateIn(Submission):
    filename: str = Field(min_length=1)
    url: str = Field(min_length=1)


class LabTestSubmission(Submission):
    batch_id: str = Field(min_length=1)
    test_type: TestType
    test_date: datetime
    results: LabResultsIn
    certificate: Optional[CertificateIn] = None

    @field_validator("test_date")
    @classmethod
    def check_not_future(cls, value: datetime) -> datetime:
        return _not_in_future(value)


class LabResultsUpdate(Submission):
    status: Optional[TestStatus] = None
    parameters: Optional[List[LabParameterIn]] = None
    overall_score: Optional[float] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = Field(default=None, max_length=1000)


class LabTestUpdate(Submission):
    results: LabResultsUpdate
    certificate: Optional[CertificateIn] = None


def parse_submission(schema: Type[SchemaT], payload: Optional[Dict[str, Any]]) -> SchemaT:
    """Validate *payload* against *schema*, raising RecordValidationError."""

    if not isinstance(payload, dict):
        raise RecordValidationError(schema.__name__, "payload must be a JSON object")
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise RecordValidationError(schema.__name__, format_validation_errors(exc)) from exc


def _not_in_future(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    value = ensure_utc(value)
    if value > datetime.now(timezone.utc):
        raise ValueError("date must not be in the future")
    return value
