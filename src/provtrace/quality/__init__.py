"""Quality grading for batches."""

from .grading import QualityAssessment, assess_quality, grade_for_score

__all__ = ["QualityAssessment", "assess_quality", "grade_for_score"]
