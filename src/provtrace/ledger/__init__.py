"""Ledger mirror: clients, background dispatch, re-sync and verification."""

from .client import (
    JournalLedger,
    LedgerClient,
    LedgerError,
    LedgerKind,
    LedgerQuery,
    LedgerReceipt,
    SimulatedLedger,
    build_ledger,
)
from .mirror import LedgerMirror
from .sync import ledger_status, resync_pending, verify_record

__all__ = [
    "JournalLedger",
    "LedgerClient",
    "LedgerError",
    "LedgerKind",
    "LedgerMirror",
    "LedgerQuery",
    "LedgerReceipt",
    "SimulatedLedger",
    "build_ledger",
    "ledger_status",
    "resync_pending",
    "verify_record",
]
