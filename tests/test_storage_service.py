# ruff: noqa: S101
"""Tests for the relational storage layer against in-memory SQLite."""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import func, select

from store_audit.entities import AuditHeader, AuditScore
from store_audit.errors import AuditError, OrphanReferenceError, PersistenceUnavailableError
from store_audit.scoring import AuditStatus
from store_audit.storage_service import INITIAL_PEOPLE, INITIAL_STORES


def _seed(storage):
    store = storage.add_store("Berel Centro", "S-001", "ALM-CENTRO")
    manager = storage.add_person("Maria López", "Gerente", "20033", "Ventas Retail")
    auditor = storage.add_person("Juan Pérez", "Auditor", "10054", "Auditoría Interna")
    return store, manager, auditor


def test_offline_reads_fall_back_to_seed_lists(offline_storage) -> None:
    assert not offline_storage.is_online
    assert offline_storage.get_stores() == INITIAL_STORES
    assert all(not s.persisted for s in offline_storage.get_stores())
    assert [p.name for p in offline_storage.get_people("Gerente")] == ["Maria López", "Carlos Ruiz"]
    assert offline_storage.list_audits() == []
    with pytest.raises(PersistenceUnavailableError):
        offline_storage.add_store("Nueva", "S-9", "ALM-9")


def test_empty_people_table_returns_seed(storage) -> None:
    assert storage.get_people() == INITIAL_PEOPLE
    assert storage.get_stores() == []


def test_master_data_round_trip(storage) -> None:
    store, manager, auditor = _seed(storage)
    assert store.persisted
    assert [s.name for s in storage.get_stores()] == ["Berel Centro"]
    assert [p.id for p in storage.get_people("Auditor")] == [auditor.id]
    with pytest.raises(AuditError):
        storage.add_person("Pedro", "Cajero")
    with pytest.raises(AuditError):
        storage.add_store("   ")


def test_save_audit_upserts_by_folio(storage, make_record, session_factory) -> None:
    store, manager, auditor = _seed(storage)
    ids = dict(store=(store.id, store.name), manager=(manager.id, manager.name), auditor=(auditor.id, auditor.name))

    first = storage.save_audit(make_record(scores={"1.1": 1}, **ids))
    second = storage.save_audit(
        make_record(scores={"1.1": 3}, observations={"1.1": "ok"}, action_plan="Plan", **ids)
    )
    assert first == second

    with session_factory() as s:
        assert s.scalar(select(func.count()).select_from(AuditHeader)) == 1
        assert s.scalar(select(func.count()).select_from(AuditScore)) == 21
        row = s.scalars(select(AuditScore).where(AuditScore.question_id == "1.1")).one()
        assert row.score == 3
        assert row.column_key == "arqueo_de_caja"

    loaded = storage.get_audit("AB-20240517-1234")
    assert loaded.record_id == first
    assert loaded.total_score == 97
    assert loaded.status == AuditStatus.MODEL_STORE
    assert loaded.action_plan == "Plan"
    assert loaded.items["1.1"].observation == "ok"


def test_missing_ids_resolve_by_name_and_role(storage, make_record) -> None:
    store, manager, auditor = _seed(storage)
    record = make_record(store=("1", "Berel Centro"), manager=("2", "Maria López"), auditor=(None, "Juan Pérez"))
    storage.save_audit(record)
    loaded = storage.get_audit(record.folio)
    assert (loaded.store_id, loaded.manager_id, loaded.auditor_id) == (store.id, manager.id, auditor.id)


def test_unresolvable_reference_is_rejected(storage, make_record) -> None:
    _seed(storage)
    with pytest.raises(OrphanReferenceError) as exc:
        storage.save_audit(make_record(manager=("x", "Juan Pérez")))
    assert exc.value.field == "manager"
    assert storage.get_audit("AB-20240517-1234") is None


def test_list_filters_and_recomputes(storage, make_record, session_factory) -> None:
    store, manager, auditor = _seed(storage)
    plaza = storage.add_store("Berel Plaza Real", "S-004", "ALM-PLAZA")
    people = dict(manager=(manager.id, manager.name), auditor=(auditor.id, auditor.name))
    storage.save_audit(make_record(folio="AB-20240501-1111", on=date(2024, 5, 1), store=(store.id, store.name), **people))
    storage.save_audit(
        make_record(folio="AB-20240610-2222", on=date(2024, 6, 10), store=(plaza.id, plaza.name),
                    scores={"1.1": 1, "1.2": 1, "1.3": 1, "1.4": 1}, **people)
    )

    with session_factory() as s:
        header = s.scalars(select(AuditHeader).where(AuditHeader.folio == "AB-20240501-1111")).one()
        header.total_score = 12
        header.status = "CRITICO"
        s.commit()

    all_records = storage.list_audits()
    assert {r.folio for r in all_records} == {"AB-20240501-1111", "AB-20240610-2222"}
    tampered = next(r for r in all_records if r.folio == "AB-20240501-1111")
    assert tampered.total_score == 100
    assert tampered.status == AuditStatus.MODEL_STORE

    assert [r.folio for r in storage.list_audits(start_date=date(2024, 6, 1))] == ["AB-20240610-2222"]
    assert [r.folio for r in storage.list_audits(end_date=date(2024, 5, 31))] == ["AB-20240501-1111"]
    assert [r.folio for r in storage.list_audits(store_query="plaza")] == ["AB-20240610-2222"]
    assert [r.folio for r in storage.list_audits(status="CRITICO")] == ["AB-20240610-2222"]
    assert len(storage.list_audits(status="ALL")) == 2


def test_delete_cascades_scores(storage, make_record, session_factory) -> None:
    store, manager, auditor = _seed(storage)
    record_id = storage.save_audit(
        make_record(store=(store.id, store.name), manager=(manager.id, manager.name), auditor=(auditor.id, auditor.name))
    )
    assert storage.delete_audit(record_id)
    assert not storage.delete_audit(record_id)
    with session_factory() as s:
        assert s.scalar(select(func.count()).select_from(AuditScore)) == 0
