"""Timeline entries and processing-step timelines."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

from ..records.models import Batch, ProcessingStep
from ..records.serialization import format_datetime


_UNDATED = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class TimelineEntry:
    event: str
    date: Optional[datetime]
    actor: Optional[str]
    details: Optional[str]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event,
            "date": format_datetime(self.date),
            "actor": self.actor,
            "details": self.details,
        }


def sort_timeline(entries: Iterable[TimelineEntry]) -> List[TimelineEntry]:
    """Order entries by ascending date; equal dates keep their input order."""

    return sorted(entries, key=lambda entry: entry.date or _UNDATED)


def step_duration_minutes(step: ProcessingStep) -> Optional[int]:
    if step.end_time is None:
        return None
    seconds = (step.end_time - step.start_time).total_seconds()
    minutes = Decimal(str(seconds)) / Decimal(60)
    return int(minutes.to_integral_value(rounding=ROUND_HALF_UP))


def get_processing_timeline(batch: Batch) -> List[Dict[str, Any]]:
    steps = sorted(batch.processing_steps, key=lambda step: step.start_time)
    return [
        {
            "stepId": step.step_id,
            "step": step.step.value,
            "description": step.description,
            "startTime": format_datetime(step.start_time),
            "endTime": format_datetime(step.end_time),
            "status": step.status.value,
            "operator": step.operator_name,
            "duration": step_duration_minutes(step),
        }
        for step in steps
    ]


def format_quantity(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)
