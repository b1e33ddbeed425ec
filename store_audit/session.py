# store_audit/session.py
from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, replace
from datetime import date, datetime, time
from enum import Enum
from functools import wraps
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence
from uuid import uuid4

from store_audit import validation
from store_audit.errors import (
    HeaderIncompleteError,
    InvalidScoreError,
    OrphanReferenceError,
    QuestionsIncompleteError,
    SessionStateError,
    UnknownQuestionError,
)
from store_audit.rubric import Rubric
from store_audit.scoring import AuditStatus, classify_status, total_score
from store_audit.signature import SequencerState, SignatureSequencer, SignerRole

logger = logging.getLogger("store_audit")

FOLIO_PREFIX = "AB"

ORPHAN_REMEDIATION = (
    "Registre el catálogo en la Consola Administrativa y vuelva a seleccionarlo "
    "antes de firmar."
)


def generate_folio(on: date, rng: Optional[random.Random] = None) -> str:
    """AB-YYYYMMDD-NNNN with NNNN uniform in [1000, 9999]."""
    suffix = (rng or random).randint(1000, 9999)
    return f"{FOLIO_PREFIX}-{on.strftime('%Y%m%d')}-{suffix}"


@dataclass(frozen=True)
class AnswerRecord:
    question_id: str
    score: int = 0
    observation: str = ""

    @property
    def has_observation(self) -> bool:
        return bool(self.observation and self.observation.strip())

    def as_dict(self) -> Dict[str, Any]:
        return {"question_id": self.question_id, "score": self.score, "observation": self.observation}


@dataclass(frozen=True)
class Selection:
    """A header pick from the master lists. `persisted` is False for seed entries."""
    id: str
    name: str
    persisted: bool = True


class SessionPhase(str, Enum):
    EDITING = "EDITING"
    SIGNING = "SIGNING"
    FINALIZED = "FINALIZED"


@dataclass(frozen=True)
class FinalizedAuditRecord:
    folio: str
    store_name: str
    manager_name: str
    auditor_name: str
    audit_date: date
    audit_time: time
    items: Mapping[str, AnswerRecord]
    total_score: int
    status: AuditStatus
    manager_signature: str
    auditor_signature: str
    store_id: Optional[str] = None
    manager_id: Optional[str] = None
    auditor_id: Optional[str] = None
    action_plan: str = ""
    record_id: Optional[str] = None

    def __post_init__(self):
        if not self.manager_signature or not self.auditor_signature:
            raise ValueError("A finalized audit needs both signatures")
        object.__setattr__(self, "items", MappingProxyType(dict(self.items)))

    def with_action_plan(self, plan: str) -> "FinalizedAuditRecord":
        return replace(self, action_plan=plan or "")

    def with_record_id(self, record_id: Optional[str]) -> "FinalizedAuditRecord":
        return replace(self, record_id=record_id)

    def as_dict(self, include_signatures: bool = True) -> Dict[str, Any]:
        data = {
            "record_id": self.record_id,
            "folio": self.folio,
            "store_id": self.store_id,
            "store_name": self.store_name,
            "manager_id": self.manager_id,
            "manager_name": self.manager_name,
            "auditor_id": self.auditor_id,
            "auditor_name": self.auditor_name,
            "date": self.audit_date.isoformat(),
            "time": self.audit_time.strftime("%H:%M"),
            "items": {k: v.as_dict() for k, v in self.items.items()},
            "total_score": self.total_score,
            "status": self.status.value,
            "status_label": self.status.label,
            "action_plan": self.action_plan,
        }
        if include_signatures:
            data["manager_signature"] = self.manager_signature
            data["auditor_signature"] = self.auditor_signature
        return data


def _serialized(method):
    """Hold the session lock for the whole call."""
    @wraps(method)
    def _locked(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return _locked


class AuditSession:
    """
    One store visit being filled in.

    EDITING: header and answers change freely.
    SIGNING: a SignatureSequencer is active, answers are locked.
    FINALIZED: `finalized` holds the immutable record; the session is done.
    """

    def __init__(
        self,
        rubric: Rubric,
        *,
        started_at: Optional[datetime] = None,
        rng: Optional[random.Random] = None,
        session_id: Optional[str] = None,
    ) -> None:
        started = started_at or datetime.now()
        # reentrant so serialized methods may call one another
        self._lock = threading.RLock()
        self.rubric = rubric
        self.session_id = session_id or uuid4().hex
        self._folio = generate_folio(started.date(), rng)
        self.audit_date: date = started.date()
        self.audit_time: time = started.time().replace(second=0, microsecond=0)

        self.store: Optional[Selection] = None
        self.manager: Optional[Selection] = None
        self.auditor: Optional[Selection] = None

        self.answers: Dict[str, AnswerRecord] = {}
        self.active_section_id: int = rubric.sections[0].id if rubric.sections else 0
        self.show_validation_errors = False

        self.phase = SessionPhase.EDITING
        self.sequencer: Optional[SignatureSequencer] = None
        self.finalized: Optional[FinalizedAuditRecord] = None

    @property
    def folio(self) -> str:
        return self._folio

    # -----------------------
    # Header
    # -----------------------

    @_serialized
    def select_store(self, selection: Optional[Selection]) -> None:
        self._ensure_editing()
        self.store = selection

    @_serialized
    def select_manager(self, selection: Optional[Selection]) -> None:
        self._ensure_editing()
        self.manager = selection

    @_serialized
    def select_auditor(self, selection: Optional[Selection]) -> None:
        self._ensure_editing()
        self.auditor = selection

    @_serialized
    def set_date(self, value: date) -> None:
        self._ensure_editing()
        self.audit_date = value

    @_serialized
    def set_time(self, value: time) -> None:
        self._ensure_editing()
        self.audit_time = value.replace(second=0, microsecond=0)

    # -----------------------
    # Answers
    # -----------------------

    @_serialized
    def set_score(self, question_id: str, score: int) -> AnswerRecord:
        self._ensure_editing()
        question = self.rubric.question(question_id)
        if question is None:
            raise UnknownQuestionError(f"Pregunta desconocida: {question_id}")
        score = int(score)
        if score != 0 and score not in question.option_values:
            raise InvalidScoreError(
                f"Puntaje {score} inválido para {question_id}; opciones: {list(question.option_values)}"
            )
        current = self.answers.get(question_id) or AnswerRecord(question_id=question_id)
        record = replace(current, score=score)
        self.answers[question_id] = record
        return record

    @_serialized
    def set_observation(self, question_id: str, text: str) -> AnswerRecord:
        self._ensure_editing()
        if self.rubric.question(question_id) is None:
            raise UnknownQuestionError(f"Pregunta desconocida: {question_id}")
        current = self.answers.get(question_id) or AnswerRecord(question_id=question_id)
        record = replace(current, observation=text or "")
        self.answers[question_id] = record
        return record

    @_serialized
    def select_section(self, section_id: int) -> None:
        if self.rubric.section(section_id) is None:
            raise SessionStateError(f"Sección desconocida: {section_id}")
        self.active_section_id = section_id

    @_serialized
    def reset(self) -> None:
        """Clear every answer and selection. The folio is kept."""
        self._ensure_editing()
        self.store = self.manager = self.auditor = None
        self.answers = {}
        self.show_validation_errors = False
        self.active_section_id = self.rubric.sections[0].id if self.rubric.sections else 0

    # -----------------------
    # Derived state
    # -----------------------

    @property
    def total_score(self) -> int:
        return total_score(self.answers)

    def progress(self) -> validation.Progress:
        return validation.compute_progress(self.rubric, self.answers, self.show_validation_errors)

    # -----------------------
    # Submit / sign
    # -----------------------

    @_serialized
    def attempt_submit(self, require_persisted_refs: bool = False) -> SignatureSequencer:
        """
        Run the submit gate and, when it passes, start the signature sequence.

        Header gaps raise without touching anything else. Unanswered questions
        turn on the validation flag and jump to the first incomplete section
        before raising. With `require_persisted_refs` every selection must come
        from the database, not from the built-in seed lists.
        """
        self._ensure_editing()
        check = validation.check_submit(
            self.rubric,
            self.answers,
            self.store.id if self.store else None,
            self.manager.id if self.manager else None,
            self.auditor.id if self.auditor else None,
        )
        if not check.header_complete:
            raise HeaderIncompleteError(check.missing_header)

        if require_persisted_refs:
            for field_name, selection in (("store", self.store), ("manager", self.manager), ("auditor", self.auditor)):
                if not selection.persisted:
                    raise OrphanReferenceError(field_name, selection.id, ORPHAN_REMEDIATION)

        if check.missing_questions:
            self.show_validation_errors = True
            if check.first_incomplete_section is not None:
                self.active_section_id = check.first_incomplete_section
            raise QuestionsIncompleteError(check.first_incomplete_section, check.missing_questions)

        self.sequencer = SignatureSequencer(on_done=self._finalize)
        self.phase = SessionPhase.SIGNING
        logger.info("Session %s (%s) entered signature capture", self.session_id, self.folio)
        return self.sequencer

    @_serialized
    def sign(self, strokes: Iterable[Sequence[Sequence[float]]]) -> SequencerState:
        if self.phase != SessionPhase.SIGNING or self.sequencer is None:
            raise SessionStateError("No hay captura de firmas en curso.")
        return self.sequencer.submit_strokes(strokes)

    @_serialized
    def cancel_signatures(self) -> None:
        if self.phase != SessionPhase.SIGNING or self.sequencer is None:
            raise SessionStateError("No hay captura de firmas en curso.")
        self.sequencer.cancel()
        self.sequencer = None
        self.phase = SessionPhase.EDITING
        logger.info("Session %s signature capture cancelled", self.session_id)

    def _finalize(self, manager_signature: str, auditor_signature: str) -> None:
        score = self.total_score
        self.finalized = FinalizedAuditRecord(
            folio=self.folio,
            store_id=self.store.id,
            store_name=self.store.name,
            manager_id=self.manager.id,
            manager_name=self.manager.name,
            auditor_id=self.auditor.id,
            auditor_name=self.auditor.name,
            audit_date=self.audit_date,
            audit_time=self.audit_time,
            items=dict(self.answers),
            total_score=score,
            status=classify_status(score),
            manager_signature=manager_signature,
            auditor_signature=auditor_signature,
        )
        self.phase = SessionPhase.FINALIZED
        logger.info("Session %s finalized: %s %d/100 %s", self.session_id, self.folio, score, self.finalized.status.value)

    def _ensure_editing(self) -> None:
        if self.phase != SessionPhase.EDITING:
            raise SessionStateError(f"La auditoría no es editable (estado {self.phase.value}).")

    @_serialized
    def snapshot(self) -> Dict[str, Any]:
        progress = self.progress()
        signer = self.sequencer.current_signer if self.sequencer else None
        return {
            "session_id": self.session_id,
            "folio": self.folio,
            "phase": self.phase.value,
            "date": self.audit_date.isoformat(),
            "time": self.audit_time.strftime("%H:%M"),
            "store": _selection_dict(self.store),
            "manager": _selection_dict(self.manager),
            "auditor": _selection_dict(self.auditor),
            "answers": {k: v.as_dict() for k, v in self.answers.items()},
            "active_section_id": self.active_section_id,
            "show_validation_errors": self.show_validation_errors,
            "total_score": self.total_score,
            "max_points": self.rubric.max_points,
            "progress": progress.as_dict(),
            "signature": {
                "state": self.sequencer.state.value if self.sequencer else None,
                "signer": signer.value if signer else None,
                "signer_name": self._signer_name(signer),
            },
        }

    def _signer_name(self, signer) -> str:
        if signer is None:
            return ""
        if signer == SignerRole.MANAGER:
            return self.manager.name if self.manager else "Gerente"
        return self.auditor.name if self.auditor else "Auditor"


def _selection_dict(sel: Optional[Selection]) -> Optional[Dict[str, Any]]:
    if sel is None:
        return None
    return {"id": sel.id, "name": sel.name, "persisted": sel.persisted}
