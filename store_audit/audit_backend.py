# store_audit/audit_backend.py
import hmac
import json
import logging
import secrets
import threading
from datetime import date, datetime, time
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

from store_audit import config
from store_audit.action_plan import ActionPlanDrafter
from store_audit.base_utils import BaseUtils
from store_audit.cloud_connection import CloudConnection
from store_audit.entities import ROLE_AUDITOR, ROLE_MANAGER
from store_audit.errors import (
    AdminAuthError,
    AuditError,
    HeaderIncompleteError,
    OrphanReferenceError,
    QuestionsIncompleteError,
    SessionNotFoundError,
)
from store_audit.export import FILTERED_EXPORT_PREFIX, GLOBAL_EXPORT_PREFIX, export_filename, records_to_csv
from store_audit.persistence_handoff import PersistenceHandoff
from store_audit.report import build_report, pdf_filename, share_text
from store_audit.report_pdf import render_report_pdf
from store_audit.rubric import Rubric, get_rubric
from store_audit.session import AuditSession, FinalizedAuditRecord, SessionPhase, Selection
from store_audit.session_cache import SessionCache
from store_audit.storage_service import StorageService, filter_records

logger = logging.getLogger("store_audit")

ADMIN_REQUEST_TYPES = {
    "list_audits",
    "delete_audit",
    "add_store",
    "add_person",
    "list_master_data",
    "export_csv",
}

INTERNAL_ERROR_MESSAGE = "Ocurrió un error inesperado. Intente nuevamente."


class AuditBackend(BaseUtils):
    """
    Request dispatcher for the audit app. One instance per process; it owns
    the active sessions, the persistence handoff and the admin tokens.
    """

    def __init__(
        self,
        rubric: Optional[Rubric] = None,
        storage: Optional[StorageService] = None,
        drafter: Optional[ActionPlanDrafter] = None,
        connection: Optional[CloudConnection] = None,
        sessions: Optional[SessionCache] = None,
        admin_passphrase: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.rubric = rubric or get_rubric()
        if storage is None:
            connection = connection or CloudConnection()
            storage = StorageService(connection.build_db_session_factory(), self.rubric)
        self.storage = storage
        self.connection = connection
        self.drafter = drafter or ActionPlanDrafter.from_config(self.rubric)
        self.sessions = sessions or SessionCache(config.SESSION_TTL_SECONDS)
        self.handoff = PersistenceHandoff(self.storage, sweep=self.sweep)
        self.admin_passphrase = config.ADMIN_PASSPHRASE if admin_passphrase is None else admin_passphrase
        self._clock = clock or datetime.now
        self._admin_tokens: set = set()
        self._admin_lock = threading.Lock()

    def sweep(self) -> None:
        removed = self.sessions.sweep_expired()
        if removed:
            logger.info(f"Swept {removed} expired audit sessions")

    # -----------------------
    # Dispatch
    # -----------------------

    def _process_request_data(self, request_data: dict) -> dict:
        """
        Core request handling logic.
        Takes a parsed JSON dict and returns the response_data dict.
        """
        request_type = request_data.get("type")
        payload = request_data.get("payload") or {}
        session_id = request_data.get("session_id") or payload.get("session_id")

        logger.debug(f"process_request {request_type} session={session_id}")

        response_data: Dict[str, Any] = {
            "status": "success",
            "message": "",
            "session_id": session_id,
        }

        try:
            if request_type in ADMIN_REQUEST_TYPES:
                self._require_admin(request_data.get("admin_token") or payload.get("admin_token"))

            if request_type == "get_rubric":
                response_data["data"] = self.rubric.as_dict()

            elif request_type == "start_audit":
                session = self.start_audit()
                response_data["session_id"] = session.session_id
                response_data["data"] = {
                    "session": session.snapshot(),
                    **self.master_data(),
                }

            elif request_type == "get_session":
                response_data["data"] = self.sessions.get(session_id).snapshot()

            elif request_type == "set_header":
                response_data["data"] = self.handle_set_header(session_id, payload)

            elif request_type == "score":
                session = self.sessions.get(session_id)
                session.set_score(str(payload.get("question_id")), int(payload.get("score") or 0))
                response_data["data"] = session.snapshot()

            elif request_type == "observe":
                session = self.sessions.get(session_id)
                session.set_observation(str(payload.get("question_id")), payload.get("observation") or "")
                response_data["data"] = session.snapshot()

            elif request_type == "select_section":
                session = self.sessions.get(session_id)
                session.select_section(int(payload.get("section_id")))
                response_data["data"] = session.snapshot()

            elif request_type == "submit":
                session = self.sessions.get(session_id)
                session.attempt_submit(require_persisted_refs=self.storage.is_online)
                response_data["message"] = "Firma del Gerente requerida."
                response_data["data"] = session.snapshot()

            elif request_type == "sign":
                response_data.update(self.handle_sign(session_id, payload))

            elif request_type == "cancel_signature":
                session = self.sessions.get(session_id)
                session.cancel_signatures()
                response_data["data"] = session.snapshot()

            elif request_type == "cancel_audit":
                self.sessions.get(session_id)
                self.sessions.discard(session_id)
                response_data["message"] = "Auditoría cancelada."

            elif request_type == "save_status":
                response_data["data"] = self._save_entry(payload.get("folio")).as_dict()

            elif request_type == "retry_save":
                response_data["data"] = self.handoff.retry(str(payload.get("folio"))).as_dict()

            elif request_type == "get_report":
                record = self.find_record(payload.get("folio"))
                response_data["data"] = {
                    **build_report(record, self.rubric).as_dict(),
                    "share_text": share_text(record),
                    "pdf_filename": pdf_filename(record),
                }

            elif request_type == "draft_action_plan":
                response_data["data"] = self.handle_draft_action_plan(payload)

            elif request_type == "save_action_plan":
                record = self.attach_action_plan(payload.get("folio"), payload.get("text") or "")
                response_data["message"] = "Plan de acción guardado."
                response_data["data"] = {"folio": record.folio, "action_plan": record.action_plan}

            elif request_type == "share_report":
                response_data["data"] = self.handle_share_report(payload)

            elif request_type == "admin_login":
                response_data["data"] = {"admin_token": self.admin_login(payload.get("passphrase") or "")}

            elif request_type == "list_audits":
                records = self.list_audits(payload)
                response_data["data"] = {
                    "audits": [r.as_dict(include_signatures=False) for r in records],
                    "count": len(records),
                }

            elif request_type == "delete_audit":
                if not self.storage.delete_audit(str(payload.get("record_id"))):
                    raise AuditError("Registro no encontrado.")
                response_data["message"] = "Auditoría eliminada."

            elif request_type == "add_store":
                store = self.storage.add_store(
                    payload.get("name"), payload.get("branch") or "", payload.get("warehouse") or ""
                )
                response_data["message"] = "Tienda agregada exitosamente"
                response_data["data"] = store.as_dict()

            elif request_type == "add_person":
                person = self.storage.add_person(
                    payload.get("name"),
                    payload.get("role"),
                    payload.get("payroll_id") or "",
                    payload.get("department") or "",
                )
                response_data["message"] = "Personal agregado exitosamente"
                response_data["data"] = person.as_dict()

            elif request_type == "list_master_data":
                response_data["data"] = self.master_data()

            elif request_type == "export_csv":
                response_data["data"] = self.export_csv(payload)

            else:
                response_data["status"] = "error"
                response_data["message"] = f"Unknown request type: {request_type}"
                response_data["error_type"] = "unknown_request"

        except AuditError as e:
            logger.info(f"{request_type} rejected: {e}")
            response_data.update(self._error_response(e, session_id))
        except (TypeError, ValueError) as e:
            logger.info(f"{request_type} malformed payload: {e}")
            response_data["status"] = "error"
            response_data["message"] = f"Solicitud inválida: {e}"
            response_data["error_type"] = "invalid_request"
        except Exception:
            logger.exception(f"Error while processing {request_type}")
            response_data["status"] = "error"
            response_data["message"] = INTERNAL_ERROR_MESSAGE
            response_data["error_type"] = "internal_error"

        try:
            preview = json.dumps(response_data, ensure_ascii=False, default=str)
        except Exception:
            preview = str(response_data)
        logger.debug(f"response {preview[:2000]}")

        return response_data

    def _error_response(self, e: AuditError, session_id: Optional[str]) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "status": "error",
            "message": str(e),
            "error_type": e.error_type,
        }
        details: Dict[str, Any] = {}
        if isinstance(e, HeaderIncompleteError):
            details["missing_fields"] = e.missing_fields
        elif isinstance(e, QuestionsIncompleteError):
            details["first_section_id"] = e.first_section_id
            details["missing_question_ids"] = e.missing_question_ids
        elif isinstance(e, OrphanReferenceError):
            details["field"] = e.field
            details["value"] = e.value
            details["remediation"] = e.remediation
        if session_id:
            session = self.sessions.find(session_id)
            if session is not None:
                details["session"] = session.snapshot()
        if details:
            out["data"] = details
        return out

    # -----------------------
    # Audit form
    # -----------------------

    def start_audit(self) -> AuditSession:
        session = AuditSession(self.rubric, started_at=self._clock())
        self.sessions.put(session)
        logger.info(f"Audit session started: {session.session_id} ({session.folio})")
        return session

    def master_data(self) -> Dict[str, Any]:
        people = self.storage.get_people()
        return {
            "stores": [s.as_dict() for s in self.storage.get_stores()],
            "managers": [p.as_dict() for p in people if p.role == ROLE_MANAGER],
            "auditors": [p.as_dict() for p in people if p.role == ROLE_AUDITOR],
            "online": self.storage.is_online,
        }

    def handle_set_header(self, session_id: str, payload: dict) -> dict:
        session = self.sessions.get(session_id)

        if "store_id" in payload:
            session.select_store(self._store_selection(payload.get("store_id")))
        if "manager_id" in payload:
            session.select_manager(self._person_selection(payload.get("manager_id"), ROLE_MANAGER))
        if "auditor_id" in payload:
            session.select_auditor(self._person_selection(payload.get("auditor_id"), ROLE_AUDITOR))
        if payload.get("date"):
            session.set_date(_parse_date(payload["date"]))
        if payload.get("time"):
            session.set_time(_parse_time(payload["time"]))
        return session.snapshot()

    def _store_selection(self, store_id: Optional[str]) -> Optional[Selection]:
        if not store_id:
            return None
        for store in self.storage.get_stores():
            if store.id == str(store_id):
                return Selection(store.id, store.name, store.persisted)
        raise AuditError(f"Tienda desconocida: {store_id}")

    def _person_selection(self, person_id: Optional[str], role: str) -> Optional[Selection]:
        if not person_id:
            return None
        for person in self.storage.get_people(role):
            if person.id == str(person_id):
                return Selection(person.id, person.name, person.persisted)
        raise AuditError(f"{role} desconocido: {person_id}")

    def handle_sign(self, session_id: str, payload: dict) -> dict:
        session = self.sessions.get(session_id)
        state = session.sign(payload.get("strokes") or [])
        out: Dict[str, Any] = {"message": "", "data": {"signature_state": state.value}}

        if session.phase != SessionPhase.FINALIZED:
            out["message"] = "Firma del Auditor requerida."
            out["data"]["session"] = session.snapshot()
            return out

        record = session.finalized
        entry = self.handoff.submit(record)
        self.sessions.discard(session_id)
        out["message"] = "Auditoría finalizada."
        out["data"].update({
            "folio": record.folio,
            "record": record.as_dict(include_signatures=False),
            "save": entry.as_dict(),
        })
        return out

    # -----------------------
    # Finalized records
    # -----------------------

    def _save_entry(self, folio: Optional[str]):
        entry = self.handoff.status(str(folio or ""))
        if entry is None:
            raise SessionNotFoundError(f"No hay una auditoría finalizada con folio {folio}.")
        return entry

    def find_record(self, folio: Optional[str]) -> FinalizedAuditRecord:
        """In-memory handoff first, then the database."""
        folio = str(folio or "")
        record = self.handoff.record(folio)
        if record is None and self.storage.is_online:
            record = self.storage.get_audit(folio)
        if record is None:
            raise SessionNotFoundError(f"No se encontró la auditoría {folio}.")
        return record

    def attach_action_plan(self, folio: Optional[str], text: str) -> FinalizedAuditRecord:
        record = self.find_record(folio).with_action_plan(self.as_text(text))
        self.handoff.submit(record)
        return record

    def handle_draft_action_plan(self, payload: dict) -> dict:
        record = self.find_record(payload.get("folio"))
        result = self.drafter.draft(record)
        out = result.as_dict()
        # static fallbacks other than "no findings" are left for the auditor to replace
        if result.generated or result.reason == "no_findings":
            self.attach_action_plan(record.folio, result.text)
            out["saved"] = True
        else:
            out["saved"] = False
        return out

    def render_pdf(self, folio: str) -> Tuple[str, bytes]:
        """(download file name, PDF bytes) for a finalized audit."""
        record = self.find_record(folio)
        return pdf_filename(record), render_report_pdf(build_report(record, self.rubric))

    def handle_share_report(self, payload: dict) -> dict:
        record = self.find_record(payload.get("folio"))
        link = None
        if self.connection is not None and self.connection.BUCKET_NAME:
            try:
                link = self.connection.share_pdf(record.folio, render_report_pdf(build_report(record, self.rubric)))
            except Exception:
                logger.exception(f"Could not publish report for {record.folio}")
        text = share_text(record, link)
        return {
            "text": text,
            "link": link,
            "whatsapp_url": f"https://wa.me/?text={quote(text)}",
            "pdf_filename": pdf_filename(record),
        }

    # -----------------------
    # Admin console
    # -----------------------

    def admin_login(self, passphrase: str) -> str:
        if not self.admin_passphrase:
            raise AdminAuthError("La consola administrativa no está habilitada.")
        if not hmac.compare_digest(passphrase.encode("utf-8"), self.admin_passphrase.encode("utf-8")):
            raise AdminAuthError()
        token = secrets.token_urlsafe(32)
        with self._admin_lock:
            self._admin_tokens.add(token)
        logger.info("Admin console login")
        return token

    def is_admin(self, token: Optional[str]) -> bool:
        if not token:
            return False
        candidate = str(token).encode("utf-8")
        with self._admin_lock:
            return any(hmac.compare_digest(candidate, t.encode("utf-8")) for t in self._admin_tokens)

    def _require_admin(self, token: Optional[str]) -> None:
        if not self.is_admin(token):
            raise AdminAuthError("Acceso restringido a administradores.")

    def list_audits(self, filters: dict) -> List[FinalizedAuditRecord]:
        start = _parse_date(filters["start_date"]) if filters.get("start_date") else None
        end = _parse_date(filters["end_date"]) if filters.get("end_date") else None
        store_query = filters.get("store_query") or ""
        status = filters.get("status") or ""
        if self.storage.is_online:
            return self.storage.list_audits(start, end, store_query, status)
        # offline: whatever was finalized in this process
        records = sorted(
            self.handoff.records(),
            key=lambda r: (r.audit_date, r.audit_time),
            reverse=True,
        )
        return filter_records(records, start, end, store_query, status)

    def export_csv(self, filters: dict) -> dict:
        scope = filters.get("scope") or "filtered"
        if scope == "all":
            records = self.list_audits({})
            prefix = GLOBAL_EXPORT_PREFIX
        else:
            records = self.list_audits(filters)
            prefix = FILTERED_EXPORT_PREFIX
        content = records_to_csv(records, self.rubric)
        return {
            "filename": export_filename(prefix, self._clock().date()),
            "content": content,
            "count": len(records),
        }


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise AuditError(f"Fecha inválida: {value}")


def _parse_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value))
    except ValueError:
        raise AuditError(f"Hora inválida: {value}")
