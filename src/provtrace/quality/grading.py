"""Batch quality score and grade aggregation."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List

from ..records.models import (
    LabTest,
    ProcessingStep,
    QualityGrade,
    StepStatus,
    TestStatus,
)


START_SCORE = 100.0
DEFAULT_PASS_SCORE = 80.0
FAIL_PENALTY = 30.0
FAILED_STEP_PENALTY = 10.0

GRADE_THRESHOLDS = (
    (90.0, QualityGrade.PREMIUM),
    (75.0, QualityGrade.STANDARD),
    (60.0, QualityGrade.BASIC),
)


@dataclass(frozen=True)
class QualityAssessment:
    score: float
    grade: QualityGrade
    reported_score: int
    tests_counted: int
    failed_steps: int


def grade_for_score(score: float) -> QualityGrade:
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return QualityGrade.REJECT


def assess_quality(
    lab_tests: Iterable[LabTest], steps: Iterable[ProcessingStep]
) -> QualityAssessment:
    """Combine lab outcomes and failed processing steps into a grade.

    Each PASS test contributes its overall score (80 when unset) and each FAIL
    test subtracts 30; PENDING and RETEST tests are ignored. When any test was
    counted the running total is averaged over ``counted + 1`` so the starting
    100 acts as one extra sample. Every FAILED step then costs 10 points.
    """

    score = START_SCORE
    counted = 0
    for test in lab_tests:
        status = test.results.status
        if status == TestStatus.PASS:
            overall = test.results.overall_score
            score += DEFAULT_PASS_SCORE if overall is None else float(overall)
            counted += 1
        elif status == TestStatus.FAIL:
            score -= FAIL_PENALTY
            counted += 1

    if counted:
        score = score / (counted + 1)

    failed: List[ProcessingStep] = [step for step in steps if step.status == StepStatus.FAILED]
    score -= FAILED_STEP_PENALTY * len(failed)

    return QualityAssessment(
        score=score,
        grade=grade_for_score(score),
        reported_score=_report(score),
        tests_counted=counted,
        failed_steps=len(failed),
    )


def _report(score: float) -> int:
    rounded = int(Decimal(str(score)).to_integral_value(rounding=ROUND_HALF_UP))
    return max(0, min(100, rounded))
