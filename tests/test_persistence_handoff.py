# ruff: noqa: S101
"""Tests for the background save handoff of finalized audits."""

from __future__ import annotations

import asyncio

import pytest

from store_audit.errors import OrphanReferenceError, SessionNotFoundError, SessionStateError
from store_audit.persistence_handoff import PersistenceHandoff, SaveStatus
from store_audit.session_cache import SessionCache


class DummyStorage:
    """Online storage stub that fails a configurable number of times."""

    is_online = True

    def __init__(self, failures: int = 0, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or RuntimeError("connection reset")
        self.saved: list[str] = []

    def save_audit(self, record) -> str:
        if self.failures > 0:
            self.failures -= 1
            raise self.error
        self.saved.append(record.folio)
        return f"rec-{record.folio}"


def test_offline_storage_keeps_record_in_memory(offline_storage, make_record) -> None:
    handoff = PersistenceHandoff(offline_storage)
    entry = handoff.submit(make_record())
    assert entry.status == SaveStatus.OFFLINE
    assert handoff.queued == 0
    assert handoff.record("AB-20240517-1234") is not None
    assert "no está conectada" in entry.as_dict()["message"]

    again = handoff.retry("AB-20240517-1234")
    assert again.status == SaveStatus.OFFLINE


def test_queued_record_is_saved_on_drain(make_record) -> None:
    storage = DummyStorage()
    handoff = PersistenceHandoff(storage)
    entry = handoff.submit(make_record())
    assert entry.status == SaveStatus.PENDING
    assert handoff.queued == 1

    assert handoff.drain() == 1
    status = handoff.status("AB-20240517-1234")
    assert status.status == SaveStatus.SAVED
    assert status.record_id == "rec-AB-20240517-1234"
    assert handoff.record("AB-20240517-1234").record_id == "rec-AB-20240517-1234"
    assert handoff.queued == 0


def test_failed_save_can_be_retried(make_record) -> None:
    storage = DummyStorage(failures=1)
    handoff = PersistenceHandoff(storage)
    handoff.submit(make_record())
    assert handoff.drain() == 0

    entry = handoff.status("AB-20240517-1234")
    assert entry.status == SaveStatus.FAILED
    assert entry.last_error == "connection reset"
    assert entry.attempts == 1

    handoff.retry("AB-20240517-1234")
    assert handoff.drain() == 1
    entry = handoff.status("AB-20240517-1234")
    assert entry.status == SaveStatus.SAVED
    assert entry.attempts == 2
    assert entry.last_error == ""


def test_orphan_reference_fails_without_retry_loop(make_record) -> None:
    storage = DummyStorage(failures=5, error=OrphanReferenceError("store", "1", "Registre la tienda."))
    handoff = PersistenceHandoff(storage)
    handoff.submit(make_record())
    handoff.drain()
    entry = handoff.status("AB-20240517-1234")
    assert entry.status == SaveStatus.FAILED
    assert "Registre la tienda." in entry.last_error
    assert handoff.queued == 0


def test_retry_rules(make_record) -> None:
    handoff = PersistenceHandoff(DummyStorage())
    with pytest.raises(SessionNotFoundError):
        handoff.retry("AB-00000000-0000")
    handoff.submit(make_record())
    handoff.drain()
    with pytest.raises(SessionStateError):
        handoff.retry("AB-20240517-1234")


def test_resubmit_keeps_record_id_and_upserts(make_record) -> None:
    storage = DummyStorage()
    handoff = PersistenceHandoff(storage)
    handoff.submit(make_record())
    handoff.drain()

    entry = handoff.submit(make_record(action_plan="Plan de acción"))
    assert entry.record_id == "rec-AB-20240517-1234"
    assert entry.record.action_plan == "Plan de acción"
    handoff.drain()
    assert storage.saved == ["AB-20240517-1234", "AB-20240517-1234"]
    assert len(handoff.records()) == 1


def test_real_storage_save(storage, make_record) -> None:
    store = storage.add_store("Berel Centro")
    manager = storage.add_person("Maria López", "Gerente")
    auditor = storage.add_person("Juan Pérez", "Auditor")
    handoff = PersistenceHandoff(storage)
    handoff.submit(
        make_record(store=(store.id, store.name), manager=(manager.id, manager.name), auditor=(auditor.id, auditor.name))
    )
    handoff.drain()
    assert handoff.status("AB-20240517-1234").status == SaveStatus.SAVED
    assert storage.get_audit("AB-20240517-1234").record_id == handoff.status("AB-20240517-1234").record_id


def test_run_loop_sweeps_and_drains(make_record) -> None:
    sweeps: list[int] = []
    storage = DummyStorage()
    handoff = PersistenceHandoff(storage, poll_interval=0.01, sweep=lambda: sweeps.append(1))
    handoff.submit(make_record())

    async def _run_briefly() -> None:
        task = asyncio.create_task(handoff.run())
        for _ in range(100):
            await asyncio.sleep(0.01)
            if storage.saved:
                break
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_run_briefly())
    assert storage.saved == ["AB-20240517-1234"]
    assert sweeps


def test_session_cache_expiry(new_session) -> None:
    cache = SessionCache(ttl_seconds=60)
    session = cache.put(new_session())
    assert cache.get(session.session_id) is session
    assert len(cache) == 1
    assert cache.discard(session.session_id)
    with pytest.raises(SessionNotFoundError):
        cache.get(session.session_id)

    stale = SessionCache(ttl_seconds=0)
    stale.put(new_session())
    assert stale.sweep_expired() == 1
    assert len(stale) == 0
