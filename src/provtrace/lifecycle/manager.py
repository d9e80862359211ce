"""Record lifecycle orchestration: one method per inbound request."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..compliance.evaluator import ComplianceResult, evaluate_harvest
from ..config.models import ComplianceConfig
from ..exceptions import ConflictError, NotFoundError
from ..ledger.mirror import LedgerMirror
from ..provenance.assembler import assemble_batch_provenance, assemble_harvest_provenance
from ..quality.grading import assess_quality
from ..records.builders import (
    build_address,
    build_batch,
    build_certificate,
    build_conditions,
    build_harvest,
    build_lab_test,
    build_parameters,
    build_point,
    build_step,
)
from ..records.exceptions import RecordValidationError
from ..records.models import (
    Batch,
    BatchStatus,
    Harvest,
    HarvestStatus,
    HarvesterDetails,
    LabTest,
    ProcessingStep,
    ProcessorDetails,
    StepQualityMetrics,
    StepStatus,
    TestStatus,
)
from ..records.schemas import (
    BatchSubmission,
    HarvestSubmission,
    HarvestUpdate,
    LabTestSubmission,
    LabTestUpdate,
    ProcessingStepSubmission,
    ProcessingStepUpdate,
    StepCompletion,
    StepQualityIn,
    parse_submission,
)
from ..storage.store import RecordStore
from .ids import IdGenerator
from .states import (
    BatchEvent,
    HarvestEvent,
    next_batch_status,
    next_harvest_status,
)


logger = logging.getLogger(__name__)

STEP_OPEN_STATUSES = (BatchStatus.CREATED, BatchStatus.PROCESSING)


class RecordLifecycleManager:
    """Validates submissions, derives computed fields and persists records.

    Compliance is computed before a harvest is first stored and whenever its
    location or contamination changes. The batch grade is recomputed on every
    processing-step and lab-test write. Successful writes are handed to the
    optional ledger mirror, whose outcome lands later on the record.
    """

    def __init__(
        self,
        store: RecordStore,
        config: Optional[ComplianceConfig] = None,
        *,
        ids: Optional[IdGenerator] = None,
        mirror: Optional[LedgerMirror] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.config = config or ComplianceConfig()
        self.ids = ids or IdGenerator()
        self.mirror = mirror
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # harvests
    def submit_harvest(
        self, payload: Dict[str, Any], harvester: Optional[HarvesterDetails] = None
    ) -> Harvest:
        submission = parse_submission(HarvestSubmission, payload)
        now = self._clock()
        harvest = build_harvest(
            submission, sample_id=self.ids.sample_id(), now=now, harvester=harvester
        )
        _apply_compliance(harvest, evaluate_harvest(harvest, self.config))
        self.store.insert_harvest(harvest)
        logger.info(
            "Harvest recorded: %s (%s, %skg, sustainability %s)",
            harvest.sample_id,
            harvest.species,
            harvest.quantity_kg,
            harvest.compliance.sustainability_score,
        )
        if self.mirror is not None:
            self.mirror.mirror_harvest(harvest)
        return harvest

    def get_harvest(self, sample_id: str) -> Harvest:
        return self.store.get_harvest(sample_id)

    def update_harvest(self, sample_id: str, payload: Dict[str, Any]) -> Harvest:
        update = parse_submission(HarvestUpdate, payload)
        now = self._clock()

        def mutate(harvest: Harvest) -> None:
            if harvest.status != HarvestStatus.COLLECTED:
                raise ConflictError(
                    f"harvest {sample_id} can no longer be edited (status {harvest.status.value})"
                )
            recompute = False
            if update.address is not None:
                harvest.address = build_address(update.address)
            if update.harvest_conditions is not None:
                harvest.conditions = build_conditions(update.harvest_conditions)
            if update.quality_metrics is not None:
                changes = update.quality_metrics.model_dump(exclude_unset=True)
                if "contamination" in changes and changes["contamination"] != harvest.quality.contamination:
                    recompute = True
                harvest.quality = replace(harvest.quality, **changes)
            if update.location is not None:
                location = build_point(update.location)
                if location != harvest.location:
                    recompute = True
                harvest.location = location
            if recompute:
                _apply_compliance(harvest, evaluate_harvest(harvest, self.config))
            harvest.updated_at = now

        harvest = self.store.update_harvest(sample_id, mutate)
        logger.info("Harvest updated: %s", sample_id)
        return harvest

    def transition_harvest(self, sample_id: str, event: str) -> Harvest:
        now = self._clock()

        def mutate(harvest: Harvest) -> None:
            harvest.status = next_harvest_status(harvest.status, event)
            harvest.updated_at = now

        harvest = self.store.update_harvest(sample_id, mutate)
        logger.info("Harvest %s -> %s (%s)", sample_id, harvest.status.value, event)
        return harvest

    def harvest_provenance(self, sample_id: str) -> Dict[str, Any]:
        harvest = self.store.get_harvest(sample_id)
        return assemble_harvest_provenance(harvest, self.store.find_batches_for_sample(sample_id))

    # ------------------------------------------------------------------
    # batches
    def create_batch(
        self, payload: Dict[str, Any], processor: Optional[ProcessorDetails] = None
    ) -> Batch:
        submission = parse_submission(BatchSubmission, payload)
        harvests = [self.store.get_harvest(ref.sample_id) for ref in submission.harvest_samples]

        for ref, harvest in zip(submission.harvest_samples, harvests):
            if harvest.species != submission.species:
                raise RecordValidationError(
                    "BatchSubmission",
                    f"harvest {harvest.sample_id} is {harvest.species}, not {submission.species}",
                )
            if ref.quantity_kg > harvest.quantity_kg:
                raise RecordValidationError(
                    "BatchSubmission",
                    f"harvest {harvest.sample_id} holds only {harvest.quantity_kg}kg",
                )
            if harvest.active_batch_id is not None:
                raise ConflictError(
                    f"harvest {harvest.sample_id} is already used in batch {harvest.active_batch_id}"
                )

        now = self._clock()
        batch = build_batch(
            submission, batch_id=self.ids.batch_id(), now=now, processor=processor
        )
        batch.sustainability_score = _weighted_sustainability(batch, harvests)
        _regrade(batch)

        claimed = self._claim_samples(batch, now)
        try:
            self.store.insert_batch(batch)
        except Exception:
            self._release_samples(batch.batch_id, claimed)
            raise

        logger.info(
            "Batch created: %s with %d samples (%skg)",
            batch.batch_id,
            len(batch.harvest_samples),
            batch.total_quantity_kg,
        )
        if self.mirror is not None:
            self.mirror.mirror_batch(batch)
        return batch

    def get_batch(self, batch_id: str) -> Batch:
        return self.store.get_batch(batch_id)

    def transition_batch(self, batch_id: str, event: str) -> Batch:
        now = self._clock()

        def mutate(batch: Batch) -> None:
            batch.status = next_batch_status(batch.status, event)
            batch.updated_at = now

        batch = self.store.update_batch(batch_id, mutate)
        if batch.status == BatchStatus.REJECTED:
            released = self._release_samples(
                batch_id, [(sample_id, None) for sample_id in batch.sample_ids()]
            )
            logger.info("Batch %s rejected; released %d samples", batch_id, len(released))
        else:
            logger.info("Batch %s -> %s (%s)", batch_id, batch.status.value, event)
        return batch

    def batch_provenance(self, batch_id: str) -> Dict[str, Any]:
        batch = self.store.get_batch(batch_id)
        harvests = []
        for sample_id in batch.sample_ids():
            harvest = self.store.find_harvest(sample_id)
            if harvest is not None:
                harvests.append(harvest)
        return assemble_batch_provenance(batch, harvests)

    # ------------------------------------------------------------------
    # processing steps
    def add_processing_step(
        self, batch_id: str, payload: Dict[str, Any], operator: Optional[str] = None
    ) -> ProcessingStep:
        submission = parse_submission(ProcessingStepSubmission, payload)
        now = self._clock()
        step = build_step(submission, step_id=self.ids.step_id(), now=now, operator_name=operator)

        def mutate(batch: Batch) -> None:
            if batch.status not in STEP_OPEN_STATUSES:
                raise ConflictError(
                    f"cannot add processing steps to batch {batch_id} in status {batch.status.value}"
                )
            if batch.status == BatchStatus.CREATED:
                batch.status = next_batch_status(batch.status, BatchEvent.START_PROCESSING)
            batch.processing_steps.append(step)
            _regrade(batch)
            batch.updated_at = now

        self.store.update_batch(batch_id, mutate)
        logger.info("Processing step %s (%s) added to batch %s", step.step_id, step.step.value, batch_id)
        if self.mirror is not None:
            self.mirror.mirror_step(batch_id, step)
        return step

    def update_processing_step(
        self, batch_id: str, step_id: str, payload: Dict[str, Any]
    ) -> ProcessingStep:
        changes = parse_submission(ProcessingStepUpdate, payload)
        now = self._clock()

        def apply(step: ProcessingStep) -> None:
            if changes.status == StepStatus.IN_PROGRESS and step.status != StepStatus.IN_PROGRESS:
                raise ConflictError(f"processing step {step_id} is already {step.status.value}")
            if changes.description is not None:
                step.description = changes.description
            if changes.conditions is not None:
                step.conditions = replace(
                    step.conditions, **changes.conditions.model_dump(exclude_unset=True)
                )
            if changes.quality_metrics is not None:
                step.quality = _merge_step_quality(step.quality, changes.quality_metrics)
            if changes.status is not None:
                step.status = changes.status
                if step.status != StepStatus.IN_PROGRESS and step.end_time is None:
                    step.end_time = now

        step = self._mutate_step(batch_id, step_id, apply, now)
        logger.info("Processing step %s updated in batch %s", step_id, batch_id)
        return step

    def complete_processing_step(
        self, batch_id: str, step_id: str, payload: Optional[Dict[str, Any]] = None
    ) -> ProcessingStep:
        completion = parse_submission(StepCompletion, payload or {})
        now = self._clock()

        def apply(step: ProcessingStep) -> None:
            if step.status != StepStatus.IN_PROGRESS:
                raise ConflictError(f"processing step {step_id} is already {step.status.value}")
            step.status = completion.status
            step.end_time = now
            if completion.quality_metrics is not None:
                step.quality = _merge_step_quality(step.quality, completion.quality_metrics)
            if completion.notes is not None:
                step.conditions.notes = completion.notes

        step = self._mutate_step(batch_id, step_id, apply, now)
        logger.info("Processing step %s in batch %s closed as %s", step_id, batch_id, step.status.value)
        return step

    # ------------------------------------------------------------------
    # lab tests
    def add_lab_test(self, payload: Dict[str, Any], lab: Optional[str] = None) -> LabTest:
        submission = parse_submission(LabTestSubmission, payload)
        now = self._clock()
        test = build_lab_test(submission, test_id=self.ids.test_id(), now=now, lab_name=lab)

        def mutate(batch: Batch) -> None:
            for existing in batch.lab_tests:
                if existing.test_type == test.test_type and existing.is_active():
                    raise ConflictError(
                        f"{test.test_type.value} test already exists for batch {batch.batch_id}"
                    )
            batch.lab_tests.append(test)
            if batch.status == BatchStatus.PROCESSING:
                batch.status = next_batch_status(batch.status, BatchEvent.START_TESTING)
            _regrade(batch)
            batch.updated_at = now

        batch = self.store.update_batch(submission.batch_id, mutate)
        logger.info(
            "Lab test %s (%s) added to batch %s; grade %s",
            test.test_id,
            test.test_type.value,
            batch.batch_id,
            batch.quality_grade.value,
        )
        if self.mirror is not None:
            self.mirror.mirror_lab_test(batch.batch_id, test)
        return test

    def get_lab_test(self, test_id: str) -> Tuple[LabTest, Batch]:
        batch = self.store.find_batch_by_test_id(test_id)
        test = batch.find_test(test_id) if batch is not None else None
        if test is None:
            raise NotFoundError("lab test", test_id)
        return test, batch

    def update_lab_test(self, test_id: str, payload: Dict[str, Any]) -> Tuple[LabTest, Batch]:
        update = parse_submission(LabTestUpdate, payload)
        owner = self.store.find_batch_by_test_id(test_id)
        if owner is None:
            raise NotFoundError("lab test", test_id)
        now = self._clock()
        updated: List[LabTest] = []

        def mutate(batch: Batch) -> None:
            test = batch.find_test(test_id)
            if test is None:
                raise NotFoundError("lab test", test_id)
            if test.is_finalized():
                raise ConflictError(f"lab test {test_id} is finalized ({test.results.status.value})")
            results = update.results
            if results.status is not None:
                if not test.is_active() and results.status != TestStatus.RETEST:
                    for other in batch.lab_tests:
                        if other is not test and other.test_type == test.test_type and other.is_active():
                            raise ConflictError(
                                f"{test.test_type.value} test {other.test_id} is already active "
                                f"for batch {batch.batch_id}"
                            )
                test.results.status = results.status
            if results.parameters is not None:
                test.results.parameters = build_parameters(results.parameters)
            if results.overall_score is not None:
                test.results.overall_score = results.overall_score
            if results.notes is not None:
                test.results.notes = results.notes
            if update.certificate is not None:
                test.certificate = build_certificate(update.certificate, now)
            _regrade(batch)
            batch.updated_at = now
            updated.append(test)

        batch = self.store.update_batch(owner.batch_id, mutate)
        logger.info("Lab test %s updated; batch %s grade %s", test_id, batch.batch_id, batch.quality_grade.value)
        return updated[0], batch

    # ------------------------------------------------------------------
    def _mutate_step(
        self,
        batch_id: str,
        step_id: str,
        apply: Callable[[ProcessingStep], None],
        now: datetime,
    ) -> ProcessingStep:
        touched: List[ProcessingStep] = []

        def mutate(batch: Batch) -> None:
            step = batch.find_step(step_id)
            if step is None:
                raise NotFoundError("processing step", step_id)
            apply(step)
            _regrade(batch)
            batch.updated_at = now
            touched.append(step)

        self.store.update_batch(batch_id, mutate)
        return touched[0]

    def _claim_samples(self, batch: Batch, now: datetime) -> List[Tuple[str, HarvestStatus]]:
        claimed: List[Tuple[str, HarvestStatus]] = []
        for sample_id in batch.sample_ids():
            previous: List[HarvestStatus] = []

            def mutate(harvest: Harvest) -> None:
                previous.append(harvest.status)
                harvest.status = next_harvest_status(harvest.status, HarvestEvent.RECEIVE)
                harvest.updated_at = now

            try:
                self.store.claim_harvest(sample_id, batch.batch_id, mutate)
            except Exception:
                self._release_samples(batch.batch_id, claimed)
                raise
            claimed.append((sample_id, previous[0]))
        return claimed

    def _release_samples(
        self, batch_id: str, claims: List[Tuple[str, Optional[HarvestStatus]]]
    ) -> List[str]:
        """Undo claims held by *batch_id*; a known prior status is restored."""

        released: List[str] = []
        for sample_id, prior_status in claims:

            def mutate(harvest: Harvest, prior_status=prior_status) -> None:
                if prior_status is not None:
                    harvest.status = prior_status
                    harvest.batch_ids = [b for b in harvest.batch_ids if b != batch_id]
                harvest.updated_at = self._clock()

            if self.store.release_harvest(sample_id, batch_id, mutate) is not None:
                released.append(sample_id)
        return released


def _apply_compliance(harvest: Harvest, result: ComplianceResult) -> None:
    harvest.compliance.geofence_status = result.geofence_status
    harvest.compliance.seasonal_status = result.seasonal_status
    harvest.compliance.sustainability_score = result.sustainability_score


def _regrade(batch: Batch) -> None:
    assessment = assess_quality(batch.lab_tests, batch.processing_steps)
    batch.quality_grade = assessment.grade
    batch.quality_score = assessment.reported_score


def _weighted_sustainability(batch: Batch, harvests: List[Harvest]) -> Optional[int]:
    scores = {h.sample_id: h.compliance.sustainability_score for h in harvests}
    total = Decimal(0)
    weight = Decimal(0)
    for sample in batch.harvest_samples:
        score = scores.get(sample.sample_id)
        if score is None:
            continue
        quantity = Decimal(str(sample.quantity_kg))
        total += Decimal(score) * quantity
        weight += quantity
    if weight == 0:
        return None
    return int((total / weight).to_integral_value(rounding=ROUND_HALF_UP))


def _merge_step_quality(current: StepQualityMetrics, incoming: StepQualityIn) -> StepQualityMetrics:
    return replace(current, **incoming.model_dump(exclude_unset=True))
