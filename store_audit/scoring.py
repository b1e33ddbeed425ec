# store_audit/scoring.py
from enum import Enum
from typing import Iterable, Mapping, Union

MODEL_STORE_THRESHOLD = 95
ACCEPTABLE_THRESHOLD = 85


class AuditStatus(str, Enum):
    MODEL_STORE = "TIENDA_MODELO"
    ACCEPTABLE = "ACEPTABLE"
    CRITICAL = "CRITICO"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    AuditStatus.MODEL_STORE: "TIENDA MODELO",
    AuditStatus.ACCEPTABLE: "ACEPTABLE",
    AuditStatus.CRITICAL: "CRÍTICO",
}


def total_score(answers: Union[Mapping[str, object], Iterable[object]]) -> int:
    """
    Sum of every answer score. Accepts either the question_id -> AnswerRecord
    mapping or any iterable of answer records; missing scores count as 0.
    """
    records = answers.values() if isinstance(answers, Mapping) else answers
    return sum(int(getattr(r, "score", 0) or 0) for r in records)


def classify_status(score: int) -> AuditStatus:
    if score >= MODEL_STORE_THRESHOLD:
        return AuditStatus.MODEL_STORE
    if score >= ACCEPTABLE_THRESHOLD:
        return AuditStatus.ACCEPTABLE
    return AuditStatus.CRITICAL
