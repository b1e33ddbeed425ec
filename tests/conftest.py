# ruff: noqa: S101
"""Shared fixtures: rubric, SQLite-backed storage and record factories."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Callable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from store_audit.entities import Base
from store_audit.rubric import Rubric, get_rubric
from store_audit.scoring import classify_status, total_score
from store_audit.session import AnswerRecord, AuditSession, FinalizedAuditRecord, Selection
from store_audit.storage_service import StorageService

STROKES = [[[10, 10], [20, 25], [35, 12]]]
SIGNATURE = '{"strokes":[[[10.0,10.0],[20.0,25.0]]]}'
STARTED_AT = datetime(2024, 5, 17, 9, 30, 45)


@pytest.fixture
def rubric() -> Rubric:
    return get_rubric()


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, future=True)
    engine.dispose()


@pytest.fixture
def storage(session_factory, rubric) -> StorageService:
    return StorageService(session_factory, rubric)


@pytest.fixture
def offline_storage(rubric) -> StorageService:
    return StorageService(None, rubric)


@pytest.fixture
def make_record(rubric) -> Callable[..., FinalizedAuditRecord]:
    """Finalized record with every question at max unless overridden."""

    def _make(
        scores: dict | None = None,
        observations: dict | None = None,
        folio: str = "AB-20240517-1234",
        store: tuple = ("s-1", "Berel Centro"),
        manager: tuple = ("m-1", "Maria López"),
        auditor: tuple = ("a-1", "Juan Pérez"),
        on: date = date(2024, 5, 17),
        action_plan: str = "",
    ) -> FinalizedAuditRecord:
        scores = scores or {}
        observations = observations or {}
        items = {
            q.id: AnswerRecord(q.id, scores.get(q.id, q.max_points), observations.get(q.id, ""))
            for _, q in rubric.iter_questions()
        }
        score = total_score(items)
        return FinalizedAuditRecord(
            folio=folio,
            store_id=store[0],
            store_name=store[1],
            manager_id=manager[0],
            manager_name=manager[1],
            auditor_id=auditor[0],
            auditor_name=auditor[1],
            audit_date=on,
            audit_time=time(9, 30),
            items=items,
            total_score=score,
            status=classify_status(score),
            manager_signature=SIGNATURE,
            auditor_signature=SIGNATURE,
            action_plan=action_plan,
        )

    return _make


@pytest.fixture
def new_session(rubric) -> Callable[..., AuditSession]:
    def _new(with_header: bool = True, persisted: bool = True) -> AuditSession:
        session = AuditSession(rubric, started_at=STARTED_AT)
        if with_header:
            session.select_store(Selection("s-1", "Berel Centro", persisted))
            session.select_manager(Selection("m-1", "Maria López", persisted))
            session.select_auditor(Selection("a-1", "Juan Pérez", persisted))
        return session

    return _new


@pytest.fixture
def answer_all() -> Callable[..., None]:
    """Score every question at max, except skipped ids and explicit overrides."""

    def _answer(session: AuditSession, skip: tuple = (), overrides: dict | None = None) -> None:
        overrides = overrides or {}
        for _, q in session.rubric.iter_questions():
            if q.id in skip:
                continue
            session.set_score(q.id, overrides.get(q.id, q.max_points))

    return _answer
