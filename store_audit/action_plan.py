# store_audit/action_plan.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from store_audit import config
from store_audit.action_plan_prompts import ACTION_PLAN_PROMPT, ACTION_PLAN_SYSTEM_INSTRUCTION
from store_audit.base_utils import BaseUtils
from store_audit.llm_client import HumanMessage, SystemMessage, build_chat_llm
from store_audit.report import Finding, derive_findings
from store_audit.rubric import Rubric
from store_audit.session import FinalizedAuditRecord

logger = logging.getLogger("store_audit")

ACTION_PLAN_TEMPERATURE = 0.5

SEVERITY_CRITICAL = "[CRÍTICO]"
SEVERITY_ALERT = "[ALERTA]"
SEVERITY_IMPROVABLE = "[MEJORABLE]"

MISSING_OBSERVATION_FLAG = "⚠️ EL AUDITOR NO REGISTRÓ OBSERVACIÓN (Investigar causa raíz)"

NOT_CONFIGURED_MESSAGE = (
    "El servicio de Inteligencia Artificial no está configurado (Falta API Key). "
    "Por favor redacte el plan manualmente."
)
NO_FINDINGS_MESSAGE = (
    "¡Excelente ejecución! La tienda cumple con todos los estándares operativos evaluados. "
    "Se recomienda reconocer al personal y mantener la supervisión actual para asegurar la consistencia."
)
EMPTY_RESPONSE_MESSAGE = "No se pudo generar el plan de acción automáticamente."
PROVIDER_ERROR_MESSAGE = (
    "Ocurrió un error de conexión con el servicio de IA. Intente generar el plan nuevamente."
)


def severity_tag(ratio: float) -> str:
    if ratio <= 0.5:
        return SEVERITY_CRITICAL
    if ratio <= 0.75:
        return SEVERITY_ALERT
    return SEVERITY_IMPROVABLE


@dataclass(frozen=True)
class PlanFinding:
    finding: Finding

    @property
    def ratio(self) -> float:
        return self.finding.ratio

    @property
    def has_observation(self) -> bool:
        return self.finding.has_observation

    @property
    def severity(self) -> str:
        return severity_tag(self.ratio)

    @property
    def text(self) -> str:
        f = self.finding
        detail = f.observation if f.has_observation else MISSING_OBSERVATION_FLAG
        return (
            f"{self.severity} {f.category}: {f.criterion} "
            f"(Obtenido: {f.score}/{f.max_points}). Detalle: {detail}"
        )


def build_plan_findings(findings: List[Finding]) -> List[PlanFinding]:
    """
    Lowest ratio first; on equal ratios the findings without an observation
    go first. The sort is stable so rubric order breaks the remaining ties.
    """
    items = [PlanFinding(f) for f in findings]
    items.sort(key=lambda p: (p.ratio, p.has_observation))
    return items


@dataclass(frozen=True)
class DraftResult:
    text: str
    generated: bool
    reason: str = "generated"

    def as_dict(self) -> dict:
        return {"text": self.text, "generated": self.generated, "reason": self.reason}


class ActionPlanDrafter(BaseUtils):
    """
    Wraps the text-generation call. `draft` never raises: every failure
    path returns a static message the auditor can replace by hand.

    `llm` is anything with `invoke(messages) -> str`; None means drafting
    is not configured.
    """

    def __init__(self, rubric: Rubric, llm=None):
        self.rubric = rubric
        self.llm = llm

    @classmethod
    def from_config(cls, rubric: Rubric) -> "ActionPlanDrafter":
        llm = build_chat_llm(
            config.ACTION_PLAN_MODEL,
            vertex_project=config.PROJECT_ID,
            vertex_region=config.REGION,
            timeout=config.ACTION_PLAN_TIMEOUT,
            temperature=ACTION_PLAN_TEMPERATURE,
        )
        if llm is None:
            logger.warning("Action plan drafting is not configured (ACTION_PLAN_MODEL unset).")
        return cls(rubric, llm)

    @property
    def is_configured(self) -> bool:
        return self.llm is not None

    def build_prompt(self, record: FinalizedAuditRecord, plan_findings: List[PlanFinding]) -> str:
        return self.fill_placeholders(
            ACTION_PLAN_PROMPT,
            store_name=record.store_name,
            total_score=record.total_score,
            status=record.status.value,
            findings="\n".join(p.text for p in plan_findings),
            missing_observation_flag=MISSING_OBSERVATION_FLAG,
        )

    def draft(self, record: FinalizedAuditRecord) -> DraftResult:
        if not self.is_configured:
            return DraftResult(NOT_CONFIGURED_MESSAGE, generated=False, reason="not_configured")

        plan_findings = build_plan_findings(derive_findings(record, self.rubric))
        if not plan_findings:
            return DraftResult(NO_FINDINGS_MESSAGE, generated=False, reason="no_findings")

        messages = [
            SystemMessage(content=ACTION_PLAN_SYSTEM_INSTRUCTION),
            HumanMessage(content=self.build_prompt(record, plan_findings)),
        ]
        try:
            text = self.llm.invoke(messages)
        except Exception:
            logger.exception("Action plan drafting failed for %s", record.folio)
            return DraftResult(PROVIDER_ERROR_MESSAGE, generated=False, reason="provider_error")

        text = self.strip_code_fences(self.as_text(text)).strip()
        if not text:
            return DraftResult(EMPTY_RESPONSE_MESSAGE, generated=False, reason="empty_response")
        self.log_highlight(f"Action plan drafted for {record.folio} ({len(plan_findings)} findings)", "green")
        return DraftResult(text, generated=True)
