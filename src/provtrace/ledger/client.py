"""Ledger clients: a simulated ledger and an append-only hash-chained journal."""

from __future__ import annotations

import hashlib
import json
import logging
import random
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from ..config.models import LedgerConfig
from ..exceptions import ProvtraceError
from ..lifecycle.ids import random_base36


logger = logging.getLogger(__name__)


class LedgerError(ProvtraceError):
    """Raised when a ledger submission or query fails."""


class LedgerKind:
    HARVEST = "harvest"
    BATCH_CREATED = "batch_created"
    PROCESSING_STEP = "processing_step"
    LAB_TEST = "lab_test"

    ALL = (HARVEST, BATCH_CREATED, PROCESSING_STEP, LAB_TEST)


# query kind -> (submission kind, payload key holding the record id)
QUERY_KINDS = {
    "harvest": (LedgerKind.HARVEST, "sampleId"),
    "batch": (LedgerKind.BATCH_CREATED, "batchId"),
    "processing_step": (LedgerKind.PROCESSING_STEP, "stepId"),
    "lab_test": (LedgerKind.LAB_TEST, "testId"),
}

RECORD_ID_KEYS = {submit_kind: key for submit_kind, key in QUERY_KINDS.values()}

GENESIS_HASH = "0" * 64


@dataclass(frozen=True)
class LedgerReceipt:
    tx_id: str
    hash: str
    result: str
    simulated: bool

    def as_dict(self) -> Dict[str, Any]:
        return {
            "txId": self.tx_id,
            "hash": self.hash,
            "result": self.result,
            "simulated": self.simulated,
        }


@dataclass(frozen=True)
class LedgerQuery:
    result: Optional[Dict[str, Any]]
    simulated: bool


def canonical_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def payload_hash(payload: Dict[str, Any]) -> str:
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


class LedgerClient(ABC):
    """Append-only ledger collaborator."""

    mode = "external"

    @abstractmethod
    def submit(self, kind: str, payload: Dict[str, Any]) -> LedgerReceipt:
        """Record *payload* and return the transaction receipt."""

    @abstractmethod
    def query(self, kind: str, record_id: str) -> LedgerQuery:
        """Return the latest recorded payload for *record_id*."""

    def close(self) -> None:
        return None


class SimulatedLedger(LedgerClient):
    """Issues receipts without recording anything."""

    mode = "simulation"

    def __init__(
        self,
        clock: Optional[Callable[[], int]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._clock = clock or (lambda: time.time_ns() // 1_000_000)
        self._rng = rng or random.SystemRandom()

    def submit(self, kind: str, payload: Dict[str, Any]) -> LedgerReceipt:
        _check_kind(kind)
        tx_id = f"SIM-{self._clock()}-{random_base36(9, self._rng)}"
        logger.info("Simulated ledger transaction %s: %s", kind, tx_id)
        return LedgerReceipt(
            tx_id=tx_id,
            hash=payload_hash(payload),
            result="Transaction simulated successfully",
            simulated=True,
        )

    def query(self, kind: str, record_id: str) -> LedgerQuery:
        if kind not in QUERY_KINDS:
            raise LedgerError(f"unknown ledger query kind '{kind}'")
        logger.info("Simulated ledger query %s: %s", kind, record_id)
        return LedgerQuery(
            result={"id": record_id, "message": "Query simulated successfully"},
            simulated=True,
        )


class JournalLedger(LedgerClient):
    """Hash-chained JSON-lines journal.

    Every entry carries ``prevHash``, the ``entryHash`` of the line before it,
    so rewriting any earlier line breaks the chain from that point on.
    """

    mode = "journal"

    def __init__(self, path: Path, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()

    def submit(self, kind: str, payload: Dict[str, Any]) -> LedgerReceipt:
        _check_kind(kind)
        digest = payload_hash(payload)
        with self._lock:
            prev_hash = self._last_hash()
            entry: Dict[str, Any] = {
                "kind": kind,
                "recordId": payload.get(RECORD_ID_KEYS[kind]),
                "payload": payload,
                "hash": digest,
                "prevHash": prev_hash,
                "recordedAt": self._clock().isoformat(),
            }
            entry_hash = hashlib.sha256(canonical_json(entry).encode("utf-8")).hexdigest()
            entry["entryHash"] = entry_hash
            entry["txId"] = f"TX-{entry_hash[:16].upper()}"
            try:
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(json.dumps(entry, sort_keys=True) + "\n")
            except OSError as exc:
                raise LedgerError(f"failed to append to {self.path.name}: {exc}") from exc
        logger.info("Journal ledger transaction %s: %s", kind, entry["txId"])
        return LedgerReceipt(
            tx_id=entry["txId"],
            hash=digest,
            result="Transaction recorded",
            simulated=False,
        )

    def query(self, kind: str, record_id: str) -> LedgerQuery:
        try:
            submit_kind, _ = QUERY_KINDS[kind]
        except KeyError as exc:
            raise LedgerError(f"unknown ledger query kind '{kind}'") from exc
        latest: Optional[Dict[str, Any]] = None
        for entry in self.entries():
            if entry.get("kind") == submit_kind and entry.get("recordId") == record_id:
                latest = entry
        return LedgerQuery(result=latest["payload"] if latest else None, simulated=False)

    def entries(self) -> Iterator[Dict[str, Any]]:
        if not self.path.exists():
            return
        with self.path.open("r", encoding="utf-8") as fh:
            for line in fh:
                if not line.strip():
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError as exc:
                    raise LedgerError(f"{self.path.name}: corrupt journal line") from exc

    def verify_chain(self) -> List[int]:
        """Return the 1-based line numbers whose chain link or hash is broken."""

        broken: List[int] = []
        prev_hash = GENESIS_HASH
        for line_no, entry in enumerate(self.entries(), start=1):
            body = {key: value for key, value in entry.items() if key not in ("entryHash", "txId")}
            expected = hashlib.sha256(canonical_json(body).encode("utf-8")).hexdigest()
            if (
                entry.get("prevHash") != prev_hash
                or entry.get("entryHash") != expected
                or entry.get("hash") != payload_hash(entry.get("payload") or {})
            ):
                broken.append(line_no)
            prev_hash = entry.get("entryHash", "")
        return broken

    def _last_hash(self) -> str:
        last = GENESIS_HASH
        for entry in self.entries():
            last = entry.get("entryHash", last)
        return last


def build_ledger(config: LedgerConfig, workspace: Path) -> LedgerClient:
    if config.mode == "journal":
        return JournalLedger(Path(workspace) / config.journal)
    return SimulatedLedger()


def _check_kind(kind: str) -> None:
    if kind not in LedgerKind.ALL:
        raise LedgerError(f"unknown ledger submission kind '{kind}'")
