# store_audit/errors.py
from typing import Iterable, Optional


class AuditError(Exception):
    """
    Base class for every recoverable, session-level failure.
    `error_type` is what the dispatcher puts on the wire.
    """
    error_type = "audit_error"


HEADER_FIELD_LABELS = {"store": "Tienda", "manager": "Gerente", "auditor": "Auditor"}


class HeaderIncompleteError(AuditError):
    error_type = "header_incomplete"

    def __init__(self, missing_fields: Iterable[str]):
        self.missing_fields = list(missing_fields)
        labels = ", ".join(HEADER_FIELD_LABELS.get(f, f) for f in self.missing_fields)
        super().__init__(
            f"Por favor complete los datos del encabezado ({labels})."
        )


class QuestionsIncompleteError(AuditError):
    error_type = "questions_incomplete"

    def __init__(self, first_section_id: int, missing_question_ids: Iterable[str]):
        self.first_section_id = first_section_id
        self.missing_question_ids = list(missing_question_ids)
        super().__init__(
            f"Faltan {len(self.missing_question_ids)} respuestas "
            f"(primera sección pendiente: {first_section_id})."
        )


class UnknownQuestionError(AuditError):
    error_type = "unknown_question"


class InvalidScoreError(AuditError):
    error_type = "invalid_score"


class SessionStateError(AuditError):
    error_type = "invalid_state"


class SessionNotFoundError(AuditError):
    error_type = "session_not_found"


class EmptySignatureError(AuditError):
    error_type = "empty_signature"

    def __init__(self, message: str = "Por favor firme antes de continuar."):
        super().__init__(message)


class OrphanReferenceError(AuditError):
    error_type = "orphan_reference"

    def __init__(self, field: str, value: Optional[str], remediation: str):
        self.field = field
        self.value = value
        self.remediation = remediation
        super().__init__(f"{field}='{value or ''}' no existe en la base de datos. {remediation}")


class PersistenceUnavailableError(AuditError):
    error_type = "persistence_unavailable"

    def __init__(self, message: str = "La base de datos no está conectada."):
        super().__init__(message)


class AdminAuthError(AuditError):
    error_type = "admin_auth"

    def __init__(self, message: str = "Contraseña incorrecta"):
        super().__init__(message)
