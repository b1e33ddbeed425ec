# ruff: noqa: S101
"""End-to-end tests for the request dispatcher, offline and against SQLite."""

from __future__ import annotations

from typing import Any

import pytest

from conftest import STARTED_AT, STROKES
from store_audit.action_plan import ActionPlanDrafter
from store_audit.audit_backend import AuditBackend
from store_audit.session_cache import SessionCache

PASSPHRASE = "berel-admin"


class DummyLlm:
    def __init__(self, reply: str = "1. Corregir arqueo diario.") -> None:
        self.reply = reply

    def invoke(self, messages: list[Any]) -> str:
        return self.reply


def _backend(storage, rubric, llm=None) -> AuditBackend:
    return AuditBackend(
        rubric=rubric,
        storage=storage,
        drafter=ActionPlanDrafter(rubric, llm=llm),
        sessions=SessionCache(ttl_seconds=3600),
        admin_passphrase=PASSPHRASE,
        clock=lambda: STARTED_AT,
    )


def _call(backend: AuditBackend, request_type: str, session_id: str | None = None, admin_token: str | None = None, **payload) -> dict:
    return backend._process_request_data(
        {"type": request_type, "session_id": session_id, "admin_token": admin_token, "payload": payload}
    )


def _answer_everything(backend: AuditBackend, session_id: str, overrides: dict | None = None) -> None:
    overrides = overrides or {}
    for _, q in backend.rubric.iter_questions():
        res = _call(backend, "score", session_id, question_id=q.id, score=overrides.get(q.id, q.max_points))
        assert res["status"] == "success", res


def _finalize(backend: AuditBackend, session_id: str) -> dict:
    assert _call(backend, "submit", session_id)["status"] == "success"
    assert _call(backend, "sign", session_id, strokes=STROKES)["data"]["signature_state"] == "AWAITING_AUDITOR"
    return _call(backend, "sign", session_id, strokes=STROKES)


@pytest.fixture
def offline_backend(offline_storage, rubric) -> AuditBackend:
    return _backend(offline_storage, rubric, llm=DummyLlm())


def test_offline_audit_flow(offline_backend) -> None:
    started = _call(offline_backend, "start_audit")
    sid = started["session_id"]
    assert started["data"]["online"] is False
    assert started["data"]["session"]["folio"].startswith("AB-20240517-")
    assert [m["name"] for m in started["data"]["managers"]] == ["Maria López", "Carlos Ruiz"]

    res = _call(offline_backend, "submit", sid)
    assert res["error_type"] == "header_incomplete"
    assert res["data"]["missing_fields"] == ["store", "manager", "auditor"]

    res = _call(offline_backend, "set_header", sid, store_id="1", manager_id="2", auditor_id="1", time="14:05")
    assert res["data"]["store"]["name"] == "Berel Centro"
    assert res["data"]["time"] == "14:05"

    _call(offline_backend, "score", sid, question_id="1.1", score=1)
    res = _call(offline_backend, "submit", sid)
    assert res["error_type"] == "questions_incomplete"
    assert res["data"]["first_section_id"] == 1
    assert res["data"]["session"]["show_validation_errors"] is True

    _answer_everything(offline_backend, sid, overrides={"1.1": 1})
    _call(offline_backend, "observe", sid, question_id="1.1", observation="Faltan $40 en caja")

    assert _call(offline_backend, "submit", sid)["data"]["phase"] == "SIGNING"
    res = _call(offline_backend, "sign", sid, strokes=[])
    assert res["error_type"] == "empty_signature"
    assert res["data"]["session"]["signature"]["signer"] == "manager"

    _call(offline_backend, "sign", sid, strokes=STROKES)
    done = _call(offline_backend, "sign", sid, strokes=STROKES)
    assert done["message"] == "Auditoría finalizada."
    folio = done["data"]["folio"]
    assert done["data"]["record"]["total_score"] == 95
    assert done["data"]["record"]["status"] == "TIENDA_MODELO"
    assert done["data"]["save"]["status"] == "OFFLINE"
    assert _call(offline_backend, "get_session", sid)["error_type"] == "session_not_found"

    report = _call(offline_backend, "get_report", folio=folio)["data"]
    assert [f["question_id"] for f in report["findings"]] == ["1.1"]
    assert report["pdf_filename"] == f"Auditoria_Berel_Centro_{folio}.pdf"

    plan = _call(offline_backend, "draft_action_plan", folio=folio)["data"]
    assert plan["generated"] is True
    assert plan["saved"] is True
    assert offline_backend.find_record(folio).action_plan == "1. Corregir arqueo diario."

    shared = _call(offline_backend, "share_report", folio=folio)["data"]
    assert shared["link"] is None
    assert folio in shared["text"]
    assert shared["whatsapp_url"].startswith("https://wa.me/?text=")

    filename, pdf = offline_backend.render_pdf(folio)
    assert filename == f"Auditoria_Berel_Centro_{folio}.pdf"
    assert pdf.startswith(b"%PDF")


def test_signature_cancel_returns_to_editing(offline_backend) -> None:
    sid = _call(offline_backend, "start_audit")["session_id"]
    _call(offline_backend, "set_header", sid, store_id="2", manager_id="3", auditor_id="1")
    _answer_everything(offline_backend, sid)
    _call(offline_backend, "submit", sid)
    _call(offline_backend, "sign", sid, strokes=STROKES)

    res = _call(offline_backend, "score", sid, question_id="1.1", score=1)
    assert res["error_type"] == "invalid_state"

    res = _call(offline_backend, "cancel_signature", sid)
    assert res["data"]["phase"] == "EDITING"
    assert _call(offline_backend, "score", sid, question_id="1.1", score=1)["status"] == "success"


def test_draft_without_model_is_not_attached(offline_storage, rubric) -> None:
    backend = _backend(offline_storage, rubric)
    sid = _call(backend, "start_audit")["session_id"]
    _call(backend, "set_header", sid, store_id="1", manager_id="2", auditor_id="1")
    _answer_everything(backend, sid, overrides={"2.1": 1})
    folio = _finalize(backend, sid)["data"]["folio"]

    plan = _call(backend, "draft_action_plan", folio=folio)["data"]
    assert plan["reason"] == "not_configured"
    assert plan["saved"] is False
    assert backend.find_record(folio).action_plan == ""

    res = _call(backend, "save_action_plan", folio=folio, text="Plan manual")
    assert res["data"]["action_plan"] == "Plan manual"
    assert backend.find_record(folio).action_plan == "Plan manual"


def test_admin_gate_and_offline_history(offline_backend) -> None:
    sid = _call(offline_backend, "start_audit")["session_id"]
    _call(offline_backend, "set_header", sid, store_id="4", manager_id="2", auditor_id="1")
    _answer_everything(offline_backend, sid)
    _finalize(offline_backend, sid)

    assert _call(offline_backend, "list_audits")["error_type"] == "admin_auth"
    assert _call(offline_backend, "admin_login", passphrase="nope")["error_type"] == "admin_auth"

    token = _call(offline_backend, "admin_login", passphrase=PASSPHRASE)["data"]["admin_token"]
    listed = _call(offline_backend, "list_audits", admin_token=token, store_query="plaza")["data"]
    assert listed["count"] == 1
    assert "manager_signature" not in listed["audits"][0]
    assert _call(offline_backend, "list_audits", admin_token=token, status="CRITICO")["data"]["count"] == 0

    exported = _call(offline_backend, "export_csv", admin_token=token, scope="all")["data"]
    assert exported["filename"] == "Reporte_GLOBAL_Berel_2024-05-17.csv"
    assert exported["count"] == 1

    res = _call(offline_backend, "export_csv", admin_token=token, status="CRITICO")
    assert res["message"] == "No hay datos para exportar."

    res = _call(offline_backend, "add_store", admin_token=token, name="Nueva")
    assert res["error_type"] == "persistence_unavailable"


def test_admin_disabled_without_passphrase(offline_storage, rubric) -> None:
    backend = AuditBackend(rubric=rubric, storage=offline_storage, drafter=ActionPlanDrafter(rubric), admin_passphrase="")
    res = _call(backend, "admin_login", passphrase="")
    assert res["error_type"] == "admin_auth"


def test_malformed_and_unknown_requests(offline_backend) -> None:
    sid = _call(offline_backend, "start_audit")["session_id"]
    assert _call(offline_backend, "score", sid, question_id="1.1", score="alto")["error_type"] == "invalid_request"
    assert _call(offline_backend, "score", sid, question_id="1.1", score=2)["error_type"] == "invalid_score"
    assert _call(offline_backend, "score", sid, question_id="9.9", score=1)["error_type"] == "unknown_question"
    assert _call(offline_backend, "set_header", sid, date="17/05/2024")["status"] == "error"
    assert _call(offline_backend, "frobnicate")["error_type"] == "unknown_request"
    assert _call(offline_backend, "get_session", "missing")["error_type"] == "session_not_found"


def test_online_submit_rejects_seed_selections(storage, rubric) -> None:
    store = storage.add_store("Berel Centro")
    backend = _backend(storage, rubric)
    sid = _call(backend, "start_audit")["session_id"]
    # people table is empty, so the manager list is the built-in one
    _call(backend, "set_header", sid, store_id=store.id, manager_id="2", auditor_id="1")
    _answer_everything(backend, sid)

    res = _call(backend, "submit", sid)
    assert res["error_type"] == "orphan_reference"
    assert res["data"]["field"] == "manager"
    assert "Consola Administrativa" in res["data"]["remediation"]


def test_online_save_list_and_delete(storage, rubric) -> None:
    store = storage.add_store("Berel Norte")
    manager = storage.add_person("Carlos Ruiz", "Gerente")
    auditor = storage.add_person("Juan Pérez", "Auditor")
    backend = _backend(storage, rubric)

    sid = _call(backend, "start_audit")["session_id"]
    _call(backend, "set_header", sid, store_id=store.id, manager_id=manager.id, auditor_id=auditor.id)
    _answer_everything(backend, sid, overrides={"3.1": 1, "3.2": 1})
    done = _finalize(backend, sid)
    folio = done["data"]["folio"]
    assert done["data"]["save"]["status"] == "PENDING"

    assert backend.handoff.drain() == 1
    status = _call(backend, "save_status", folio=folio)["data"]
    assert status["status"] == "SAVED"
    assert _call(backend, "retry_save", folio=folio)["error_type"] == "invalid_state"

    token = backend.admin_login(PASSPHRASE)
    listed = _call(backend, "list_audits", admin_token=token)["data"]
    assert listed["count"] == 1
    assert listed["audits"][0]["total_score"] == 94
    assert listed["audits"][0]["status"] == "ACEPTABLE"

    record_id = listed["audits"][0]["record_id"]
    assert _call(backend, "delete_audit", admin_token=token, record_id=record_id)["message"] == "Auditoría eliminada."
    assert _call(backend, "delete_audit", admin_token=token, record_id=record_id)["status"] == "error"


def test_non_ascii_admin_token_is_rejected_cleanly(offline_backend) -> None:
    offline_backend.admin_login(PASSPHRASE)
    assert not offline_backend.is_admin("contraseña")
    res = _call(offline_backend, "list_audits", admin_token="contraseña")
    assert res["error_type"] == "admin_auth"
