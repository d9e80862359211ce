"""Background mirroring of primary writes onto the ledger."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set

from ..records.models import Batch, Harvest, LabTest, ProcessingStep, SyncStatus
from ..storage.store import RecordStore
from .client import LedgerClient, LedgerKind, LedgerReceipt
from .payloads import batch_payload, harvest_payload, lab_test_payload, step_payload


logger = logging.getLogger(__name__)


class LedgerMirror:
    """Fire-and-forget ledger submissions.

    ``mirror_*`` methods return immediately with a future. When the
    submission finishes the outcome is written onto the owning record: the
    receipt's tx id and hash with ``SYNCED``, or ``FAILED`` after logging the
    error. Failures never propagate to the caller or through the future.
    """

    def __init__(
        self,
        store: RecordStore,
        ledger: LedgerClient,
        *,
        workers: int = 2,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ledger")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def __enter__(self) -> "LedgerMirror":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    @property
    def pending(self) -> int:
        """Number of dispatched submissions that have not finished."""

        with self._lock:
            return len(self._pending)

    def wait(self) -> None:
        """Block until every submission dispatched so far has finished."""

        with self._lock:
            pending = list(self._pending)
        for future in pending:
            future.result()

    # ------------------------------------------------------------------
    def mirror_harvest(self, harvest: Harvest) -> Future:
        sample_id = harvest.sample_id
        payload = harvest_payload(harvest, self._clock())

        def on_success(receipt: LedgerReceipt) -> None:
            self.store.update_harvest(sample_id, lambda record: _mark_synced(record.sync, receipt))

        def on_failure() -> None:
            self.store.update_harvest(sample_id, lambda record: _mark_failed(record.sync))

        return self._dispatch(LedgerKind.HARVEST, sample_id, payload, on_success, on_failure)

    def mirror_batch(self, batch: Batch) -> Future:
        batch_id = batch.batch_id
        payload = batch_payload(batch, self._clock())

        def on_success(receipt: LedgerReceipt) -> None:
            self.store.update_batch(batch_id, lambda record: _mark_synced(record.sync, receipt))

        def on_failure() -> None:
            self.store.update_batch(batch_id, lambda record: _mark_failed(record.sync))

        return self._dispatch(LedgerKind.BATCH_CREATED, batch_id, payload, on_success, on_failure)

    def mirror_step(self, batch_id: str, step: ProcessingStep) -> Future:
        step_id = step.step_id
        payload = step_payload(batch_id, step)

        def on_success(receipt: LedgerReceipt) -> None:
            def apply(batch: Batch) -> None:
                target = batch.find_step(step_id)
                if target is not None:
                    target.ledger_tx_id = receipt.tx_id

            self.store.update_batch(batch_id, apply)

        return self._dispatch(LedgerKind.PROCESSING_STEP, step_id, payload, on_success, None)

    def mirror_lab_test(self, batch_id: str, test: LabTest) -> Future:
        test_id = test.test_id
        payload = lab_test_payload(batch_id, test, self._clock())

        def on_success(receipt: LedgerReceipt) -> None:
            def apply(batch: Batch) -> None:
                target = batch.find_test(test_id)
                if target is not None:
                    target.ledger_tx_id = receipt.tx_id

            self.store.update_batch(batch_id, apply)

        return self._dispatch(LedgerKind.LAB_TEST, test_id, payload, on_success, None)

    # ------------------------------------------------------------------
    def _dispatch(
        self,
        kind: str,
        record_id: str,
        payload: Dict[str, Any],
        on_success: Callable[[LedgerReceipt], None],
        on_failure: Optional[Callable[[], None]],
    ) -> Future:
        future = self._executor.submit(
            self._run, kind, record_id, payload, on_success, on_failure
        )
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _run(
        self,
        kind: str,
        record_id: str,
        payload: Dict[str, Any],
        on_success: Callable[[LedgerReceipt], None],
        on_failure: Optional[Callable[[], None]],
    ) -> Optional[LedgerReceipt]:
        try:
            receipt = self.ledger.submit(kind, payload)
            on_success(receipt)
        except Exception:
            logger.exception("Ledger submission failed for %s %s", kind, record_id)
            if on_failure is not None:
                try:
                    on_failure()
                except Exception:
                    logger.exception("Could not record FAILED sync status for %s %s", kind, record_id)
            return None
        logger.info("Ledger sync succeeded for %s %s: %s", kind, record_id, receipt.tx_id)
        return receipt


def _mark_synced(sync, receipt: LedgerReceipt) -> None:
    sync.sync_status = SyncStatus.SYNCED
    sync.ledger_tx_id = receipt.tx_id
    sync.ledger_hash = receipt.hash


def _mark_failed(sync) -> None:
    sync.sync_status = SyncStatus.FAILED
