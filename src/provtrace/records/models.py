"""Domain records for harvests, batches and their sub-entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class ComplianceStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    WARNING = "WARNING"
    PENDING = "PENDING"


class HarvestMethod(str, Enum):
    WILD_COLLECTION = "wild_collection"
    CULTIVATED = "cultivated"
    SEMI_WILD = "semi_wild"


class Contamination(str, Enum):
    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class HarvestStatus(str, Enum):
    COLLECTED = "COLLECTED"
    IN_TRANSIT = "IN_TRANSIT"
    RECEIVED = "RECEIVED"
    PROCESSED = "PROCESSED"
    REJECTED = "REJECTED"


class BatchStatus(str, Enum):
    CREATED = "CREATED"
    PROCESSING = "PROCESSING"
    TESTING = "TESTING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"


class StepType(str, Enum):
    RECEIVING = "receiving"
    CLEANING = "cleaning"
    DRYING = "drying"
    GRINDING = "grinding"
    SIEVING = "sieving"
    MIXING = "mixing"
    PACKAGING = "packaging"
    STORAGE = "storage"
    QUALITY_CHECK = "quality_check"


class StepStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class TestType(str, Enum):
    __test__ = False  # keep pytest from collecting this enum

    MICROBIAL = "microbial"
    HEAVY_METALS = "heavy_metals"
    PESTICIDES = "pesticides"
    AFLATOXINS = "aflatoxins"
    IDENTITY = "identity"
    POTENCY = "potency"
    PURITY = "purity"


class TestStatus(str, Enum):
    __test__ = False

    PASS = "PASS"
    FAIL = "FAIL"
    PENDING = "PENDING"
    RETEST = "RETEST"


class ParameterStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    WARNING = "WARNING"


class QualityGrade(str, Enum):
    PREMIUM = "PREMIUM"
    STANDARD = "STANDARD"
    BASIC = "BASIC"
    REJECT = "REJECT"


class Destination(str, Enum):
    MANUFACTURER = "MANUFACTURER"
    DISTRIBUTOR = "DISTRIBUTOR"
    RETAILER = "RETAILER"
    EXPORT = "EXPORT"


class SyncStatus(str, Enum):
    SYNCED = "SYNCED"
    PENDING = "PENDING"
    FAILED = "FAILED"


@dataclass(frozen=True)
class GeoPoint:
    longitude: float
    latitude: float


@dataclass
class Address:
    village: Optional[str] = None
    district: Optional[str] = None
    state: Optional[str] = None
    country: str = "India"


@dataclass
class HarvestConditions:
    weather: Optional[str] = None
    soil_type: Optional[str] = None
    altitude: Optional[float] = None
    notes: Optional[str] = None


@dataclass
class HarvesterDetails:
    name: Optional[str] = None
    phone: Optional[str] = None
    organization: Optional[str] = None


@dataclass
class HarvestQuality:
    moisture_content: Optional[float] = None
    visual_grade: Optional[str] = None
    contamination: Optional[Contamination] = None


@dataclass
class ComplianceBlock:
    geofence_status: ComplianceStatus = ComplianceStatus.PENDING
    seasonal_status: ComplianceStatus = ComplianceStatus.PENDING
    sustainability_score: Optional[int] = None
    certifications: List[str] = field(default_factory=list)


@dataclass
class SyncMetadata:
    sync_status: SyncStatus = SyncStatus.PENDING
    ledger_tx_id: Optional[str] = None
    ledger_hash: Optional[str] = None
    version: str = "1.0"


@dataclass
class Harvest:
    sample_id: str
    species: str
    quantity_kg: float
    harvest_date: datetime
    location: GeoPoint
    harvest_method: HarvestMethod
    harvester: HarvesterDetails = field(default_factory=HarvesterDetails)
    common_name: Optional[str] = None
    scientific_name: Optional[str] = None
    address: Address = field(default_factory=Address)
    conditions: HarvestConditions = field(default_factory=HarvestConditions)
    quality: HarvestQuality = field(default_factory=HarvestQuality)
    compliance: ComplianceBlock = field(default_factory=ComplianceBlock)
    status: HarvestStatus = HarvestStatus.COLLECTED
    batch_ids: List[str] = field(default_factory=list)
    active_batch_id: Optional[str] = None
    sync: SyncMetadata = field(default_factory=SyncMetadata)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class HarvestSampleRef:
    sample_id: str
    quantity_kg: float
    contribution: Optional[float] = None


@dataclass
class ProcessingConditions:
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    duration: Optional[float] = None
    equipment: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class StepQualityMetrics:
    moisture_content: Optional[float] = None
    particle_size: Optional[str] = None
    color: Optional[str] = None
    aroma: Optional[str] = None
    yield_pct: Optional[float] = None


@dataclass
class ProcessingStep:
    step_id: str
    step: StepType
    start_time: datetime
    description: Optional[str] = None
    conditions: ProcessingConditions = field(default_factory=ProcessingConditions)
    operator_name: Optional[str] = None
    end_time: Optional[datetime] = None
    status: StepStatus = StepStatus.IN_PROGRESS
    quality: StepQualityMetrics = field(default_factory=StepQualityMetrics)
    ledger_tx_id: Optional[str] = None
    recorded_at: Optional[datetime] = None


@dataclass
class LabParameter:
    parameter: str
    value: str
    status: ParameterStatus
    unit: Optional[str] = None
    limit: Optional[str] = None


@dataclass
class LabResults:
    status: TestStatus
    parameters: List[LabParameter] = field(default_factory=list)
    overall_score: Optional[float] = None
    notes: Optional[str] = None


@dataclass
class Certificate:
    filename: str
    url: str
    uploaded_at: Optional[datetime] = None


@dataclass
class LabTest:
    test_id: str
    test_type: TestType
    test_date: datetime
    results: LabResults
    lab_name: Optional[str] = None
    certificate: Optional[Certificate] = None
    ledger_tx_id: Optional[str] = None

    def is_active(self) -> bool:
        return self.results.status != TestStatus.RETEST

    def is_finalized(self) -> bool:
        return self.results.status in (TestStatus.PASS, TestStatus.FAIL)


@dataclass
class ProcessorDetails:
    name: Optional[str] = None
    organization: Optional[str] = None
    license_number: Optional[str] = None


@dataclass
class DestinationDetails:
    name: str
    address: Optional[str] = None
    license_number: Optional[str] = None
    contact_info: Optional[str] = None


@dataclass
class Batch:
    batch_id: str
    species: str
    total_quantity_kg: float
    harvest_samples: List[HarvestSampleRef]
    destination: Destination
    destination_details: DestinationDetails
    processor: ProcessorDetails = field(default_factory=ProcessorDetails)
    processing_steps: List[ProcessingStep] = field(default_factory=list)
    lab_tests: List[LabTest] = field(default_factory=list)
    quality_grade: QualityGrade = QualityGrade.PREMIUM
    quality_score: int = 100
    sustainability_score: Optional[int] = None
    status: BatchStatus = BatchStatus.CREATED
    sync: SyncMetadata = field(default_factory=SyncMetadata)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def find_step(self, step_id: str) -> Optional[ProcessingStep]:
        for step in self.processing_steps:
            if step.step_id == step_id:
                return step
        return None

    def find_test(self, test_id: str) -> Optional[LabTest]:
        for test in self.lab_tests:
            if test.test_id == test_id:
                return test
        return None

    def sample_ids(self) -> List[str]:
        return [sample.sample_id for sample in self.harvest_samples]

    def recompute_contributions(self) -> None:
        """Refresh each sample's share of ``total_quantity_kg`` in percent."""

        for sample in self.harvest_samples:
            if self.total_quantity_kg > 0:
                sample.contribution = sample.quantity_kg / self.total_quantity_kg * 100
            else:
                sample.contribution = None
