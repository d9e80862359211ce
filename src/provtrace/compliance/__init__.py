"""Harvest compliance evaluation and reporting."""

from .evaluator import (
    ComplianceResult,
    OverallStatus,
    check_geofence,
    check_seasonal,
    check_submission,
    evaluate_harvest,
    overall_status,
    sustainability_score,
)
from .report import build_compliance_report, find_violations, recheck_compliance

__all__ = [
    "ComplianceResult",
    "OverallStatus",
    "build_compliance_report",
    "check_geofence",
    "check_seasonal",
    "check_submission",
    "evaluate_harvest",
    "find_violations",
    "overall_status",
    "recheck_compliance",
    "sustainability_score",
]
