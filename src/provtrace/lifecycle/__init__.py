"""Record identifiers and status state machines.

The request-level orchestration lives in :mod:`provtrace.lifecycle.manager`.
"""

from .ids import IdGenerator
from .states import (
    BatchEvent,
    HarvestEvent,
    TransitionError,
    next_batch_status,
    next_harvest_status,
)

__all__ = [
    "BatchEvent",
    "HarvestEvent",
    "IdGenerator",
    "TransitionError",
    "next_batch_status",
    "next_harvest_status",
]
