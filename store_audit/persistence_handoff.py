# store_audit/persistence_handoff.py
"""
Finalized audits are handed off here and saved in the background.

The session is done the moment both signatures are in; saving happens
afterwards and may fail or find the database offline. Every finalized
record stays in memory with its save status so the report can still be
shown and exported, and so the save can be retried.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from store_audit.errors import (
    OrphanReferenceError,
    PersistenceUnavailableError,
    SessionNotFoundError,
    SessionStateError,
)
from store_audit.session import FinalizedAuditRecord
from store_audit.storage_service import StorageService

logger = logging.getLogger("store_audit")


class SaveStatus(str, Enum):
    PENDING = "PENDING"
    SAVED = "SAVED"
    FAILED = "FAILED"
    OFFLINE = "OFFLINE"


SAVE_STATUS_MESSAGES = {
    SaveStatus.PENDING: "Guardando auditoría...",
    SaveStatus.SAVED: "Auditoría guardada en el historial.",
    SaveStatus.FAILED: "No se pudo guardar la auditoría. Puede reintentar.",
    SaveStatus.OFFLINE: (
        "Aviso: La base de datos no está conectada. La auditoría se generará en pantalla "
        "pero no se guardará en el historial permanente."
    ),
}


@dataclass
class PendingSave:
    record: FinalizedAuditRecord
    status: SaveStatus = SaveStatus.PENDING
    attempts: int = 0
    last_error: str = ""
    record_id: Optional[str] = None
    updated_at: float = field(default_factory=time.time)

    @property
    def folio(self) -> str:
        return self.record.folio

    def as_dict(self) -> Dict[str, Any]:
        return {
            "folio": self.folio,
            "status": self.status.value,
            "message": SAVE_STATUS_MESSAGES[self.status],
            "attempts": self.attempts,
            "last_error": self.last_error,
            "record_id": self.record_id,
        }


class PersistenceHandoff:
    def __init__(
        self,
        storage: StorageService,
        poll_interval: float = 1.0,
        sweep: Optional[Callable[[], Any]] = None,
    ):
        self.storage = storage
        self.poll_interval = poll_interval
        self._sweep = sweep
        self._lock = threading.Lock()
        self._entries: Dict[str, PendingSave] = {}
        self._queue: Deque[str] = deque()

    # -----------------------
    # Intake
    # -----------------------

    def submit(self, record: FinalizedAuditRecord) -> PendingSave:
        """
        Queue a record for saving and return immediately. Submitting a folio
        again replaces the queued record; the save is an upsert by folio.
        """
        with self._lock:
            previous = self._entries.get(record.folio)
            entry = PendingSave(
                record=record.with_record_id(previous.record_id) if previous and previous.record_id else record,
                attempts=previous.attempts if previous else 0,
                record_id=previous.record_id if previous else None,
            )
            if not self.storage.is_online:
                entry.status = SaveStatus.OFFLINE
                logger.warning(f"Database offline; {record.folio} kept in memory only")
            elif record.folio not in self._queue:
                self._queue.append(record.folio)
            self._entries[record.folio] = entry
            return entry

    def retry(self, folio: str) -> PendingSave:
        with self._lock:
            entry = self._entries.get(folio)
            if entry is None:
                raise SessionNotFoundError(f"No hay una auditoría finalizada con folio {folio}.")
            if entry.status not in (SaveStatus.FAILED, SaveStatus.OFFLINE):
                raise SessionStateError(f"La auditoría {folio} no requiere reintento ({entry.status.value}).")
            if not self.storage.is_online:
                entry.status = SaveStatus.OFFLINE
                return entry
            entry.status = SaveStatus.PENDING
            entry.last_error = ""
            entry.updated_at = time.time()
            if folio not in self._queue:
                self._queue.append(folio)
            return entry

    # -----------------------
    # Processing
    # -----------------------

    @property
    def queued(self) -> int:
        with self._lock:
            return len(self._queue)

    def drain(self) -> int:
        """Save everything queued right now. Returns how many saves succeeded."""
        saved = 0
        while True:
            with self._lock:
                if not self._queue:
                    return saved
                folio = self._queue.popleft()
                entry = self._entries.get(folio)
            if entry is None:
                continue
            if self._save_one(entry):
                saved += 1

    def _save_one(self, entry: PendingSave) -> bool:
        record = entry.record
        status, error, record_id = SaveStatus.SAVED, "", None
        try:
            record_id = self.storage.save_audit(record)
        except OrphanReferenceError as e:
            status, error = SaveStatus.FAILED, str(e)
            logger.info(f"Save of {record.folio} blocked: {e}")
        except PersistenceUnavailableError as e:
            status, error = SaveStatus.OFFLINE, str(e)
        except Exception as e:
            status, error = SaveStatus.FAILED, str(e) or e.__class__.__name__
            logger.exception(f"Save of {record.folio} failed")

        with self._lock:
            entry.attempts += 1
            entry.updated_at = time.time()
            if self._entries.get(record.folio) is not entry:
                # superseded by a newer submit; that one is already queued
                return status == SaveStatus.SAVED
            entry.status = status
            entry.last_error = error
            if record_id:
                entry.record_id = record_id
                entry.record = record.with_record_id(record_id)
        if status == SaveStatus.SAVED:
            logger.info(f"Audit {record.folio} saved ({record_id})")
        return status == SaveStatus.SAVED

    async def run(self) -> None:
        logger.info("Persistence handoff running (poll_interval=%.1fs)", self.poll_interval)
        while True:
            if self._sweep is not None:
                self._sweep()
            if self.queued:
                await asyncio.to_thread(self.drain)
            await asyncio.sleep(self.poll_interval)

    # -----------------------
    # Lookups
    # -----------------------

    def status(self, folio: str) -> Optional[PendingSave]:
        with self._lock:
            return self._entries.get(folio)

    def record(self, folio: str) -> Optional[FinalizedAuditRecord]:
        with self._lock:
            entry = self._entries.get(folio)
            return entry.record if entry else None

    def records(self) -> List[FinalizedAuditRecord]:
        with self._lock:
            return [e.record for e in self._entries.values()]
