"""Bulk ledger re-sync, record verification and sync coverage."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..exceptions import ProvtraceError
from ..records.models import SyncStatus
from ..records.serialization import format_datetime
from ..storage.store import RecordStore
from .client import JournalLedger, LedgerClient, LedgerKind, LedgerReceipt
from .payloads import batch_payload, harvest_payload


logger = logging.getLogger(__name__)

SYNC_KINDS = ("all", "harvest", "batch")
RESYNC_STATUSES = (SyncStatus.PENDING, SyncStatus.FAILED)

HARVEST_FIELDS = ("sampleId", "species", "quantityKg", "harvestDate")
BATCH_FIELDS = ("batchId", "species", "totalQuantityKg")


class VerificationStatus:
    VERIFIED = "VERIFIED"
    MISMATCH = "MISMATCH"
    UNVERIFIABLE = "UNVERIFIABLE"


def resync_pending(
    store: RecordStore,
    ledger: LedgerClient,
    kind: str = "all",
    limit: int = 50,
    now: Optional[datetime] = None,
) -> Dict[str, Dict[str, Any]]:
    """Re-submit PENDING and FAILED records, at most *limit* per kind."""

    if kind not in SYNC_KINDS:
        raise ValueError(f"kind must be one of {', '.join(SYNC_KINDS)}")
    if limit <= 0:
        raise ValueError("limit must be positive")
    now = now or datetime.now(timezone.utc)

    report: Dict[str, Dict[str, Any]] = {}
    if kind in ("all", "harvest"):
        report["harvests"] = _resync_harvests(store, ledger, limit, now)
    if kind in ("all", "batch"):
        report["batches"] = _resync_batches(store, ledger, limit, now)
    return report


def _resync_harvests(
    store: RecordStore, ledger: LedgerClient, limit: int, now: datetime
) -> Dict[str, Any]:
    summary = _empty_summary()
    pending = [h for h in store.list_harvests() if h.sync.sync_status in RESYNC_STATUSES]
    for harvest in pending[:limit]:
        _resync_one(
            summary,
            harvest.sample_id,
            lambda harvest=harvest: ledger.submit(LedgerKind.HARVEST, harvest_payload(harvest, now)),
            lambda mutate, sample_id=harvest.sample_id: store.update_harvest(sample_id, mutate),
        )
    logger.info(
        "Harvest re-sync: %d processed, %d successful, %d failed",
        summary["processed"],
        summary["successful"],
        summary["failed"],
    )
    return summary


def _resync_batches(
    store: RecordStore, ledger: LedgerClient, limit: int, now: datetime
) -> Dict[str, Any]:
    summary = _empty_summary()
    pending = [b for b in store.list_batches() if b.sync.sync_status in RESYNC_STATUSES]
    for batch in pending[:limit]:
        _resync_one(
            summary,
            batch.batch_id,
            lambda batch=batch: ledger.submit(LedgerKind.BATCH_CREATED, batch_payload(batch, now)),
            lambda mutate, batch_id=batch.batch_id: store.update_batch(batch_id, mutate),
        )
    logger.info(
        "Batch re-sync: %d processed, %d successful, %d failed",
        summary["processed"],
        summary["successful"],
        summary["failed"],
    )
    return summary


def _resync_one(
    summary: Dict[str, Any],
    record_id: str,
    submit: Callable[[], LedgerReceipt],
    update: Callable[[Callable[[Any], None]], Any],
) -> None:
    """Submit one record and write the outcome back; failures land in *summary*."""

    summary["processed"] += 1
    try:
        receipt = submit()
    except Exception as exc:
        logger.error("Re-sync failed for %s: %s", record_id, exc)
        summary["failed"] += 1
        summary["errors"].append({"id": record_id, "error": str(exc)})
        try:
            update(lambda record: _set_failed(record.sync))
        except (ProvtraceError, OSError) as write_exc:
            logger.error("Could not record FAILED sync status for %s: %s", record_id, write_exc)
        return

    try:
        update(lambda record: _set_synced(record.sync, receipt))
    except (ProvtraceError, OSError) as exc:
        logger.error("Could not record ledger receipt %s for %s: %s", receipt.tx_id, record_id, exc)
        summary["failed"] += 1
        summary["errors"].append({"id": record_id, "error": str(exc)})
        return
    summary["successful"] += 1


def verify_record(
    store: RecordStore, ledger: LedgerClient, kind: str, record_id: str
) -> Dict[str, Any]:
    """Compare the stored record's key fields with the ledger's copy."""

    if kind == "harvest":
        harvest = store.get_harvest(record_id)
        stored = {
            "sampleId": harvest.sample_id,
            "species": harvest.species,
            "quantityKg": harvest.quantity_kg,
            "harvestDate": format_datetime(harvest.harvest_date),
        }
        fields = HARVEST_FIELDS
        sync = harvest.sync
    elif kind == "batch":
        batch = store.get_batch(record_id)
        stored = {
            "batchId": batch.batch_id,
            "species": batch.species,
            "totalQuantityKg": batch.total_quantity_kg,
        }
        fields = BATCH_FIELDS
        sync = batch.sync
    else:
        raise ValueError("kind must be 'harvest' or 'batch'")

    result: Dict[str, Any] = {
        "kind": kind,
        "recordId": record_id,
        "syncStatus": sync.sync_status.value,
        "ledgerTxId": sync.ledger_tx_id,
        "ledgerHash": sync.ledger_hash,
        "mismatches": [],
    }

    answer = ledger.query(kind, record_id)
    if answer.simulated or answer.result is None:
        reason = "ledger is simulated" if answer.simulated else "record not found on ledger"
        logger.warning("Cannot verify %s %s: %s", kind, record_id, reason)
        result.update(status=VerificationStatus.UNVERIFIABLE, reason=reason)
        return result

    mismatches: List[Dict[str, Any]] = []
    for name in fields:
        ledger_value = answer.result.get(name)
        if ledger_value != stored[name]:
            mismatches.append({"field": name, "stored": stored[name], "ledger": ledger_value})
    result["mismatches"] = mismatches
    result["status"] = VerificationStatus.MISMATCH if mismatches else VerificationStatus.VERIFIED
    return result


def _empty_summary() -> Dict[str, Any]:
    return {"processed": 0, "successful": 0, "failed": 0, "errors": []}


def _set_failed(sync) -> None:
    sync.sync_status = SyncStatus.FAILED


def _set_synced(sync, receipt: LedgerReceipt) -> None:
    sync.sync_status = SyncStatus.SYNCED
    sync.ledger_tx_id = receipt.tx_id
    sync.ledger_hash = receipt.hash


def ledger_status(store: RecordStore, ledger: LedgerClient) -> Dict[str, Any]:
    """Ledger mode, journal chain health and per-kind sync coverage."""

    status: Dict[str, Any] = {
        "mode": ledger.mode,
        "recording": ledger.mode != "simulation",
    }
    if isinstance(ledger, JournalLedger):
        broken = ledger.verify_chain()
        status["journal"] = {
            "path": str(ledger.path),
            "entries": sum(1 for _ in ledger.entries()),
            "chainIntact": not broken,
            "brokenLines": broken,
        }
        if broken:
            logger.warning("Journal %s has %d broken entries", ledger.path.name, len(broken))
    elif ledger.mode == "simulation":
        status["message"] = "Running in simulation mode; submissions are not recorded"

    harvests = _sync_coverage(h.sync.sync_status for h in store.list_harvests())
    batches = _sync_coverage(b.sync.sync_status for b in store.list_batches())
    total = harvests["total"] + batches["total"]
    synced = harvests["synced"] + batches["synced"]
    status["records"] = {"harvests": harvests, "batches": batches}
    status["overall"] = {
        "totalRecords": total,
        "totalSynced": synced,
        "overallSyncRate": _rate(synced, total),
    }
    status["generatedAt"] = datetime.now(timezone.utc).isoformat()
    return status


def _sync_coverage(statuses: Iterable[SyncStatus]) -> Dict[str, Any]:
    breakdown = {status.value: 0 for status in SyncStatus}
    for status in statuses:
        breakdown[status.value] += 1
    total = sum(breakdown.values())
    synced = breakdown[SyncStatus.SYNCED.value]
    return {
        "total": total,
        "synced": synced,
        "syncRate": _rate(synced, total),
        "breakdown": breakdown,
    }


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0
