# store_audit/report.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from store_audit.rubric import Rubric
from store_audit.session import FinalizedAuditRecord

# Uniform threshold: any score below 3 is flagged whatever the question scale.
LOW_SCORE_THRESHOLD = 3
MAX_REPORT_FINDINGS = 10

NO_FINDINGS_MESSAGE = "Sin hallazgos negativos relevantes. Excelente ejecución."
NO_OBSERVATION_TEXT = "Sin observación detallada."


@dataclass(frozen=True)
class Finding:
    question_id: str
    section_id: int
    category: str
    criterion: str
    score: int
    max_points: int
    observation: str
    option_label: str = ""

    @property
    def has_observation(self) -> bool:
        return bool(self.observation and self.observation.strip())

    @property
    def ratio(self) -> float:
        return self.score / self.max_points if self.max_points else 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "section_id": self.section_id,
            "category": self.category,
            "criterion": self.criterion,
            "score": self.score,
            "max_points": self.max_points,
            "observation": self.observation if self.has_observation else NO_OBSERVATION_TEXT,
            "has_observation": self.has_observation,
            "option_label": self.option_label,
        }


def derive_findings(record: FinalizedAuditRecord, rubric: Rubric) -> List[Finding]:
    """
    Every answer with an observation or a score under LOW_SCORE_THRESHOLD,
    joined to its rubric question and returned in rubric order.
    Answers whose id is no longer in the rubric are dropped.
    """
    order = {q.id: i for i, (_, q) in enumerate(rubric.iter_questions())}
    findings = []
    for item in record.items.values():
        if not (item.has_observation or item.score < LOW_SCORE_THRESHOLD):
            continue
        question = rubric.question(item.question_id)
        if question is None:
            continue
        section = rubric.section_of(item.question_id)
        option = question.option_for(item.score)
        findings.append(
            Finding(
                question_id=item.question_id,
                section_id=section.id,
                category=question.category,
                criterion=question.criterion,
                score=item.score,
                max_points=question.max_points,
                observation=item.observation.strip() if item.observation else "",
                option_label=option.label if option else "",
            )
        )
    findings.sort(key=lambda f: order[f.question_id])
    return findings


@dataclass(frozen=True)
class AuditReport:
    """Everything a renderer needs; no business logic left to do downstream."""
    record: FinalizedAuditRecord
    findings: List[Finding]
    total_findings: int
    overflow_count: int = 0
    overflow_note: Optional[str] = None
    no_findings_message: Optional[str] = None
    max_points: int = 100

    @property
    def has_findings(self) -> bool:
        return self.total_findings > 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "record": self.record.as_dict(),
            "findings": [f.as_dict() for f in self.findings],
            "total_findings": self.total_findings,
            "overflow_count": self.overflow_count,
            "overflow_note": self.overflow_note,
            "no_findings_message": self.no_findings_message,
            "max_points": self.max_points,
        }


def build_report(
    record: FinalizedAuditRecord, rubric: Rubric, max_findings: int = MAX_REPORT_FINDINGS
) -> AuditReport:
    findings = derive_findings(record, rubric)
    if not findings:
        return AuditReport(
            record=record,
            findings=[],
            total_findings=0,
            no_findings_message=NO_FINDINGS_MESSAGE,
            max_points=rubric.max_points,
        )

    shown = findings[:max_findings]
    overflow = len(findings) - len(shown)
    return AuditReport(
        record=record,
        findings=shown,
        total_findings=len(findings),
        overflow_count=overflow,
        overflow_note=f"... {overflow} hallazgos más registrados en sistema." if overflow else None,
        max_points=rubric.max_points,
    )


def share_text(record: FinalizedAuditRecord, link: Optional[str] = None) -> str:
    lines = [
        "*REPORTE AUDITORÍA BEREL*",
        "",
        f"📄 *Folio:* {record.folio}",
        f"🏪 *Tienda:* {record.store_name}",
        f"📅 *Fecha:* {record.audit_date.isoformat()}",
        f"🏆 *Calif:* {record.total_score}/100",
        f"📊 *Estado:* {record.status.label}",
        "",
    ]
    if link:
        lines.append(f"📎 Reporte en PDF: {link}")
    else:
        lines.append("📎 _Se adjunta el reporte detallado en PDF._")
    return "\n".join(lines)


def pdf_filename(record: FinalizedAuditRecord) -> str:
    return f"Auditoria_{'_'.join(record.store_name.split())}_{record.folio}.pdf"
