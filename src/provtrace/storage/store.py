"""Filesystem document store for harvest and batch records."""

from __future__ import annotations

import json
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from ..exceptions import ConflictError, DuplicateKeyError, NotFoundError
from ..records.models import Batch, BatchStatus, Harvest
from ..records.serialization import (
    batch_from_dict,
    batch_to_dict,
    harvest_from_dict,
    harvest_to_dict,
)


_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class RecordStore:
    """One JSON document per record under ``harvests/`` and ``batches/``.

    Inserts fail when the id is already taken. Updates read, mutate and
    atomically replace a document while holding the store lock, so writers in
    one process never interleave. The lock does not span processes.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.harvests_dir = self.root / "harvests"
        self.batches_dir = self.root / "batches"
        self.harvests_dir.mkdir(parents=True, exist_ok=True)
        self.batches_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # harvests
    def insert_harvest(self, harvest: Harvest) -> Harvest:
        self._insert("harvest", self.harvests_dir, harvest.sample_id, harvest_to_dict(harvest))
        return harvest

    def find_harvest(self, sample_id: str) -> Optional[Harvest]:
        data = self._read(self.harvests_dir, sample_id)
        return harvest_from_dict(data) if data is not None else None

    def get_harvest(self, sample_id: str) -> Harvest:
        harvest = self.find_harvest(sample_id)
        if harvest is None:
            raise NotFoundError("harvest", sample_id)
        return harvest

    def list_harvests(self) -> List[Harvest]:
        harvests = [harvest_from_dict(data) for data in self._iter_documents(self.harvests_dir)]
        harvests.sort(key=lambda harvest: (harvest.created_at is None, harvest.created_at, harvest.sample_id))
        return harvests

    def update_harvest(self, sample_id: str, mutate: Callable[[Harvest], None]) -> Harvest:
        with self._lock:
            harvest = self.get_harvest(sample_id)
            mutate(harvest)
            self._write(self.harvests_dir, sample_id, harvest_to_dict(harvest))
            return harvest

    def claim_harvest(
        self,
        sample_id: str,
        batch_id: str,
        mutate: Optional[Callable[[Harvest], None]] = None,
    ) -> Harvest:
        """Set ``active_batch_id`` only when no batch currently holds the sample."""

        with self._lock:
            harvest = self.get_harvest(sample_id)
            if harvest.active_batch_id is not None:
                raise ConflictError(
                    f"harvest {sample_id} is already used in batch {harvest.active_batch_id}"
                )
            harvest.active_batch_id = batch_id
            if batch_id not in harvest.batch_ids:
                harvest.batch_ids.append(batch_id)
            if mutate is not None:
                mutate(harvest)
            self._write(self.harvests_dir, sample_id, harvest_to_dict(harvest))
            return harvest

    def release_harvest(
        self,
        sample_id: str,
        batch_id: str,
        mutate: Optional[Callable[[Harvest], None]] = None,
    ) -> Optional[Harvest]:
        """Clear the claim held by *batch_id*; claims held by other batches stay."""

        with self._lock:
            harvest = self.find_harvest(sample_id)
            if harvest is None or harvest.active_batch_id != batch_id:
                return None
            harvest.active_batch_id = None
            if mutate is not None:
                mutate(harvest)
            self._write(self.harvests_dir, sample_id, harvest_to_dict(harvest))
            return harvest

    # ------------------------------------------------------------------
    # batches
    def insert_batch(self, batch: Batch) -> Batch:
        self._insert("batch", self.batches_dir, batch.batch_id, batch_to_dict(batch))
        return batch

    def find_batch(self, batch_id: str) -> Optional[Batch]:
        data = self._read(self.batches_dir, batch_id)
        return batch_from_dict(data) if data is not None else None

    def get_batch(self, batch_id: str) -> Batch:
        batch = self.find_batch(batch_id)
        if batch is None:
            raise NotFoundError("batch", batch_id)
        return batch

    def list_batches(self) -> List[Batch]:
        batches = [batch_from_dict(data) for data in self._iter_documents(self.batches_dir)]
        batches.sort(key=lambda batch: (batch.created_at is None, batch.created_at, batch.batch_id))
        return batches

    def update_batch(self, batch_id: str, mutate: Callable[[Batch], None]) -> Batch:
        with self._lock:
            batch = self.get_batch(batch_id)
            mutate(batch)
            batch.recompute_contributions()
            self._write(self.batches_dir, batch_id, batch_to_dict(batch))
            return batch

    def find_batches_for_sample(self, sample_id: str) -> List[Batch]:
        return [batch for batch in self.list_batches() if sample_id in batch.sample_ids()]

    def find_active_batches_for_sample(self, sample_id: str) -> List[Batch]:
        return [
            batch
            for batch in self.find_batches_for_sample(sample_id)
            if batch.status != BatchStatus.REJECTED
        ]

    def find_batch_by_test_id(self, test_id: str) -> Optional[Batch]:
        for batch in self.list_batches():
            if batch.find_test(test_id) is not None:
                return batch
        return None

    # ------------------------------------------------------------------
    def _path(self, directory: Path, record_id: str) -> Optional[Path]:
        if not _ID_PATTERN.match(record_id or ""):
            return None
        return directory / f"{record_id}.json"

    def _insert(self, kind: str, directory: Path, record_id: str, data: Dict[str, Any]) -> None:
        path = self._path(directory, record_id)
        if path is None:
            raise ValueError(f"invalid {kind} id {record_id!r}")
        text = _dump(data)
        with self._lock:
            try:
                with path.open("x", encoding="utf-8") as fh:
                    fh.write(text)
            except FileExistsError as exc:
                raise DuplicateKeyError(kind, record_id) from exc

    def _read(self, directory: Path, record_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(directory, record_id)
        if path is None or not path.exists():
            return None
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)

    def _write(self, directory: Path, record_id: str, data: Dict[str, Any]) -> None:
        path = self._path(directory, record_id)
        if path is None:
            raise ValueError(f"invalid record id {record_id!r}")
        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{record_id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(_dump(data))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _iter_documents(self, directory: Path) -> Iterator[Dict[str, Any]]:
        for path in sorted(directory.glob("*.json")):
            with path.open("r", encoding="utf-8") as fh:
                yield json.load(fh)


def _dump(data: Dict[str, Any]) -> str:
    return json.dumps(data, indent=2, sort_keys=True) + "\n"
