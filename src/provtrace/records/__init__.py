"""Harvest and batch records: domain models, submission schemas, serialization."""

from .exceptions import RecordValidationError
from .models import (
    Batch,
    BatchStatus,
    ComplianceStatus,
    Harvest,
    HarvestStatus,
    LabTest,
    ProcessingStep,
    QualityGrade,
    SyncStatus,
)
from .schemas import parse_submission
from .serialization import (
    batch_from_dict,
    batch_to_dict,
    harvest_from_dict,
    harvest_to_dict,
)

__all__ = [
    "Batch",
    "BatchStatus",
    "ComplianceStatus",
    "Harvest",
    "HarvestStatus",
    "LabTest",
    "ProcessingStep",
    "QualityGrade",
    "RecordValidationError",
    "SyncStatus",
    "batch_from_dict",
    "batch_to_dict",
    "harvest_from_dict",
    "harvest_to_dict",
    "parse_submission",
]
