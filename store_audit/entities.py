# store_audit/entities.py
from datetime import date, time
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

from typing import TypeAlias
UUID: TypeAlias = str
Base = declarative_base()

ROLE_MANAGER = "Gerente"
ROLE_AUDITOR = "Auditor"


def _new_id() -> str:
    return str(uuid4())


class TimestampMixin:
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class Store(Base, TimestampMixin):
    __tablename__ = "tienda"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    branch: Mapped[str | None] = mapped_column(String)
    warehouse: Mapped[str | None] = mapped_column(String)


class Person(Base, TimestampMixin):
    """Managers and auditors share one table; `role` tells them apart."""
    __tablename__ = "personal"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)
    payroll_id: Mapped[str | None] = mapped_column(String)
    department: Mapped[str | None] = mapped_column(String)


class AuditHeader(Base, TimestampMixin):
    __tablename__ = "datos_auditoria"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=_new_id)
    folio: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)

    store_id: Mapped[UUID] = mapped_column(String(36), ForeignKey("tienda.id"), nullable=False)
    manager_id: Mapped[UUID] = mapped_column(String(36), ForeignKey("personal.id"), nullable=False)
    auditor_id: Mapped[UUID] = mapped_column(String(36), ForeignKey("personal.id"), nullable=False)

    audit_date: Mapped[date] = mapped_column(Date, nullable=False)
    audit_time: Mapped[time] = mapped_column(Time, nullable=False)
    total_score: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    status: Mapped[str] = mapped_column(String, nullable=False)

    manager_signature: Mapped[str] = mapped_column(Text, nullable=False)
    auditor_signature: Mapped[str] = mapped_column(Text, nullable=False)
    action_plan: Mapped[str | None] = mapped_column(Text)

    store: Mapped[Store] = relationship(Store, foreign_keys=[store_id])
    manager: Mapped[Person] = relationship(Person, foreign_keys=[manager_id])
    auditor: Mapped[Person] = relationship(Person, foreign_keys=[auditor_id])
    scores: Mapped[List["AuditScore"]] = relationship(
        "AuditScore",
        back_populates="audit",
        cascade="all, delete-orphan",
    )


class AuditScore(Base):
    __tablename__ = "calificaciones_auditoria"
    __table_args__ = (UniqueConstraint("audit_id", "question_id", name="uq_calificacion_pregunta"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    audit_id: Mapped[UUID] = mapped_column(
        String(36),
        ForeignKey("datos_auditoria.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question_id: Mapped[str] = mapped_column(String, nullable=False)
    # storage column key the question maps to (e.g. "limpieza_exterior")
    column_key: Mapped[str] = mapped_column(String, nullable=False, server_default=text("''"))
    score: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    observation: Mapped[Optional[str]] = mapped_column(Text)

    audit: Mapped[AuditHeader] = relationship(AuditHeader, back_populates="scores")
