"""Finite-state machines for harvest and batch status."""

from __future__ import annotations

from typing import Dict, Tuple, TypeVar

from ..exceptions import ConflictError
from ..records.models import BatchStatus, HarvestStatus


StateT = TypeVar("StateT", HarvestStatus, BatchStatus)


class TransitionError(ConflictError):
    """Raised when an event is not legal from the record's current status."""

    def __init__(self, kind: str, state: str, event: str):
        self.kind = kind
        self.state = state
        self.event = event
        super().__init__(f"{kind} cannot '{event}' from status {state}")


class HarvestEvent:
    DISPATCH = "dispatch"
    RECEIVE = "receive"
    REJECT = "reject"


class BatchEvent:
    START_PROCESSING = "start_processing"
    START_TESTING = "start_testing"
    APPROVE = "approve"
    REJECT = "reject"
    SHIP = "ship"
    DELIVER = "deliver"


# PROCESSED is reachable from nowhere; no event marks a sample as processed.
HARVEST_TRANSITIONS: Dict[Tuple[HarvestStatus, str], HarvestStatus] = {
    (HarvestStatus.COLLECTED, HarvestEvent.DISPATCH): HarvestStatus.IN_TRANSIT,
    (HarvestStatus.COLLECTED, HarvestEvent.RECEIVE): HarvestStatus.RECEIVED,
    (HarvestStatus.IN_TRANSIT, HarvestEvent.RECEIVE): HarvestStatus.RECEIVED,
    (HarvestStatus.RECEIVED, HarvestEvent.RECEIVE): HarvestStatus.RECEIVED,
    (HarvestStatus.COLLECTED, HarvestEvent.REJECT): HarvestStatus.REJECTED,
    (HarvestStatus.IN_TRANSIT, HarvestEvent.REJECT): HarvestStatus.REJECTED,
    (HarvestStatus.RECEIVED, HarvestEvent.REJECT): HarvestStatus.REJECTED,
}

BATCH_TRANSITIONS: Dict[Tuple[BatchStatus, str], BatchStatus] = {
    (BatchStatus.CREATED, BatchEvent.START_PROCESSING): BatchStatus.PROCESSING,
    (BatchStatus.PROCESSING, BatchEvent.START_TESTING): BatchStatus.TESTING,
    (BatchStatus.PROCESSING, BatchEvent.APPROVE): BatchStatus.APPROVED,
    (BatchStatus.TESTING, BatchEvent.APPROVE): BatchStatus.APPROVED,
    (BatchStatus.CREATED, BatchEvent.REJECT): BatchStatus.REJECTED,
    (BatchStatus.PROCESSING, BatchEvent.REJECT): BatchStatus.REJECTED,
    (BatchStatus.TESTING, BatchEvent.REJECT): BatchStatus.REJECTED,
    (BatchStatus.APPROVED, BatchEvent.REJECT): BatchStatus.REJECTED,
    (BatchStatus.APPROVED, BatchEvent.SHIP): BatchStatus.SHIPPED,
    (BatchStatus.SHIPPED, BatchEvent.DELIVER): BatchStatus.DELIVERED,
}


def next_harvest_status(state: HarvestStatus, event: str) -> HarvestStatus:
    return _transition("harvest", HARVEST_TRANSITIONS, state, event)


def next_batch_status(state: BatchStatus, event: str) -> BatchStatus:
    return _transition("batch", BATCH_TRANSITIONS, state, event)


def can_transition(table: Dict[Tuple[StateT, str], StateT], state: StateT, event: str) -> bool:
    return (state, event) in table


def _transition(
    kind: str, table: Dict[Tuple[StateT, str], StateT], state: StateT, event: str
) -> StateT:
    try:
        return table[(state, event)]
    except KeyError as exc:
        raise TransitionError(kind, state.value, event) from exc
