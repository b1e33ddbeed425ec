# store_audit/storage_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from store_audit.entities import ROLE_AUDITOR, ROLE_MANAGER, AuditHeader, AuditScore, Person, Store
from store_audit.errors import AuditError, OrphanReferenceError, PersistenceUnavailableError
from store_audit.rubric import Rubric
from store_audit.scoring import AuditStatus, classify_status, total_score
from store_audit.session import ORPHAN_REMEDIATION, AnswerRecord, FinalizedAuditRecord

logger = logging.getLogger("store_audit")

UNKNOWN_NAME = "Desconocido"
VALID_ROLES = (ROLE_MANAGER, ROLE_AUDITOR)


@dataclass(frozen=True)
class StoreInfo:
    id: str
    name: str
    branch: str = ""
    warehouse: str = ""
    persisted: bool = True

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "branch": self.branch,
            "warehouse": self.warehouse,
            "persisted": self.persisted,
        }


@dataclass(frozen=True)
class PersonInfo:
    id: str
    name: str
    role: str
    payroll_id: str = ""
    department: str = ""
    persisted: bool = True

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "payroll_id": self.payroll_id,
            "department": self.department,
            "persisted": self.persisted,
        }


# Built-in master data for running without a database. Never persisted, so an
# audit picked from these cannot be finalized while the database is online.
INITIAL_STORES: List[StoreInfo] = [
    StoreInfo("1", "Berel Centro", "S-001", "ALM-CENTRO", persisted=False),
    StoreInfo("2", "Berel Norte", "S-002", "ALM-NORTE", persisted=False),
    StoreInfo("3", "Berel Sur", "S-003", "ALM-SUR", persisted=False),
    StoreInfo("4", "Berel Plaza Real", "S-004", "ALM-PLAZA", persisted=False),
]

INITIAL_PEOPLE: List[PersonInfo] = [
    PersonInfo("1", "Juan Pérez", ROLE_AUDITOR, "10054", "Auditoría Interna", persisted=False),
    PersonInfo("2", "Maria López", ROLE_MANAGER, "20033", "Ventas Retail", persisted=False),
    PersonInfo("3", "Carlos Ruiz", ROLE_MANAGER, "20045", "Ventas Retail", persisted=False),
]


class StorageService:
    """
    Relational persistence for master data and finalized audits.

    `session_factory` is None when no database is configured; reads then
    fall back to the built-in lists and writes raise
    PersistenceUnavailableError.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]], rubric: Rubric):
        self._session_factory = session_factory
        self.rubric = rubric

    @property
    def is_online(self) -> bool:
        return self._session_factory is not None

    def _require_session(self) -> Session:
        if self._session_factory is None:
            raise PersistenceUnavailableError()
        return self._session_factory()

    # -----------------------
    # Master data
    # -----------------------

    def get_stores(self) -> List[StoreInfo]:
        if not self.is_online:
            return list(INITIAL_STORES)
        try:
            with self._session_factory() as session:
                rows = session.scalars(select(Store).order_by(Store.name)).all()
                return [
                    StoreInfo(r.id, r.name, r.branch or "", r.warehouse or "") for r in rows
                ]
        except SQLAlchemyError:
            logger.exception("Error fetching stores (DB)")
            return list(INITIAL_STORES)

    def get_people(self, role: Optional[str] = None) -> List[PersonInfo]:
        people: List[PersonInfo]
        if not self.is_online:
            people = list(INITIAL_PEOPLE)
        else:
            try:
                with self._session_factory() as session:
                    rows = session.scalars(select(Person).order_by(Person.name)).all()
                    people = [
                        PersonInfo(r.id, r.name, r.role, r.payroll_id or "", r.department or "")
                        for r in rows
                    ]
            except SQLAlchemyError:
                logger.exception("Error fetching people (DB)")
                people = []
            if not people:
                people = list(INITIAL_PEOPLE)
        if role:
            people = [p for p in people if p.role == role]
        return people

    def add_store(self, name: str, branch: str = "", warehouse: str = "") -> StoreInfo:
        name = (name or "").strip()
        if not name:
            raise AuditError("El nombre de la tienda es obligatorio.")
        with self._require_session() as session:
            row = Store(name=name, branch=branch or None, warehouse=warehouse or None)
            session.add(row)
            session.commit()
            logger.info(f"Store added: {row.id} {name}")
            return StoreInfo(row.id, row.name, row.branch or "", row.warehouse or "")

    def add_person(self, name: str, role: str, payroll_id: str = "", department: str = "") -> PersonInfo:
        name = (name or "").strip()
        if not name:
            raise AuditError("El nombre es obligatorio.")
        if role not in VALID_ROLES:
            raise AuditError(f"Rol inválido: {role}. Use {' o '.join(VALID_ROLES)}.")
        with self._require_session() as session:
            row = Person(name=name, role=role, payroll_id=payroll_id or None, department=department or None)
            session.add(row)
            session.commit()
            logger.info(f"Person added: {row.id} {name} ({role})")
            return PersonInfo(row.id, row.name, row.role, row.payroll_id or "", row.department or "")

    # -----------------------
    # Audits
    # -----------------------

    def _resolve_store_id(self, session: Session, store_id: Optional[str], name: str) -> str:
        if store_id and session.get(Store, store_id) is not None:
            return store_id
        found = session.scalars(select(Store.id).where(Store.name == name).limit(1)).first()
        if found is None:
            raise OrphanReferenceError("store", store_id or name, ORPHAN_REMEDIATION)
        return found

    def _resolve_person_id(
        self, session: Session, field: str, person_id: Optional[str], name: str, role: str
    ) -> str:
        if person_id:
            row = session.get(Person, person_id)
            if row is not None and row.role == role:
                return person_id
        found = session.scalars(
            select(Person.id).where(Person.name == name, Person.role == role).limit(1)
        ).first()
        if found is None:
            raise OrphanReferenceError(field, person_id or name, ORPHAN_REMEDIATION)
        return found

    def save_audit(self, record: FinalizedAuditRecord) -> str:
        """
        Insert or update the audit keyed by folio and replace its score rows.
        Returns the permanent record id.
        """
        with self._require_session() as session:
            store_id = self._resolve_store_id(session, record.store_id, record.store_name)
            manager_id = self._resolve_person_id(
                session, "manager", record.manager_id, record.manager_name, ROLE_MANAGER
            )
            auditor_id = self._resolve_person_id(
                session, "auditor", record.auditor_id, record.auditor_name, ROLE_AUDITOR
            )

            header = session.scalars(
                select(AuditHeader).where(AuditHeader.folio == record.folio)
            ).first()
            if header is None:
                header = AuditHeader(folio=record.folio)
                session.add(header)

            header.store_id = store_id
            header.manager_id = manager_id
            header.auditor_id = auditor_id
            header.audit_date = record.audit_date
            header.audit_time = record.audit_time
            header.total_score = record.total_score
            header.status = record.status.value
            header.manager_signature = record.manager_signature
            header.auditor_signature = record.auditor_signature
            header.action_plan = record.action_plan or None

            # old rows must be gone before the new ones hit the unique constraint
            header.scores.clear()
            session.flush()

            for item in record.items.values():
                question = self.rubric.question(item.question_id)
                if question is None:
                    logger.warning(f"Skipping unknown question {item.question_id} on {record.folio}")
                    continue
                header.scores.append(
                    AuditScore(
                        question_id=item.question_id,
                        column_key=question.column,
                        score=item.score,
                        observation=item.observation or None,
                    )
                )

            session.commit()
            logger.info(f"Audit saved: {record.folio} -> {header.id}")
            return header.id

    def list_audits(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        store_query: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[FinalizedAuditRecord]:
        """
        Newest first. Date bounds are inclusive; `store_query` is a
        case-insensitive substring of the store name; `status` is an
        AuditStatus value (anything else, e.g. "ALL", means no filter).
        """
        if not self.is_online:
            return []

        stmt = (
            select(AuditHeader)
            .options(
                selectinload(AuditHeader.scores),
                selectinload(AuditHeader.store),
                selectinload(AuditHeader.manager),
                selectinload(AuditHeader.auditor),
            )
            .order_by(AuditHeader.created_at.desc(), AuditHeader.audit_date.desc(), AuditHeader.audit_time.desc())
        )
        if start_date:
            stmt = stmt.where(AuditHeader.audit_date >= start_date)
        if end_date:
            stmt = stmt.where(AuditHeader.audit_date <= end_date)

        with self._session_factory() as session:
            records = [self._to_record(row) for row in session.scalars(stmt).all()]

        return filter_records(records, store_query=store_query, status=status)

    def get_audit(self, folio: str) -> Optional[FinalizedAuditRecord]:
        if not self.is_online:
            return None
        with self._session_factory() as session:
            row = session.scalars(
                select(AuditHeader)
                .options(selectinload(AuditHeader.scores))
                .where(AuditHeader.folio == folio)
            ).first()
            return self._to_record(row) if row is not None else None

    def delete_audit(self, record_id: str) -> bool:
        with self._require_session() as session:
            row = session.get(AuditHeader, record_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            logger.info(f"Audit deleted: {record_id} ({row.folio})")
            return True

    def _to_record(self, row: AuditHeader) -> FinalizedAuditRecord:
        items = {
            s.question_id: AnswerRecord(s.question_id, int(s.score or 0), s.observation or "")
            for s in row.scores
        }
        # stored totals are not trusted; recompute from the answers
        score = total_score(items)
        return FinalizedAuditRecord(
            record_id=row.id,
            folio=row.folio,
            store_id=row.store_id,
            store_name=row.store.name if row.store else UNKNOWN_NAME,
            manager_id=row.manager_id,
            manager_name=row.manager.name if row.manager else UNKNOWN_NAME,
            auditor_id=row.auditor_id,
            auditor_name=row.auditor.name if row.auditor else UNKNOWN_NAME,
            audit_date=row.audit_date,
            audit_time=row.audit_time,
            items=items,
            total_score=score,
            status=classify_status(score),
            manager_signature=row.manager_signature,
            auditor_signature=row.auditor_signature,
            action_plan=row.action_plan or "",
        )


def _parse_status(value: Optional[str]) -> Optional[AuditStatus]:
    if not value:
        return None
    try:
        return AuditStatus(value)
    except ValueError:
        return None


def filter_records(
    records: List[FinalizedAuditRecord],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    store_query: Optional[str] = None,
    status: Optional[str] = None,
) -> List[FinalizedAuditRecord]:
    if start_date:
        records = [r for r in records if r.audit_date >= start_date]
    if end_date:
        records = [r for r in records if r.audit_date <= end_date]
    if store_query and store_query.strip():
        needle = store_query.strip().lower()
        records = [r for r in records if needle in r.store_name.lower()]
    wanted = _parse_status(status)
    if wanted is not None:
        records = [r for r in records if r.status == wanted]
    return records
