# store_audit/validation.py
"""
Progress and submit gating. Everything here is a pure function of the
rubric plus the current answers/header; nothing mutates the session.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional

from store_audit.rubric import Rubric, RubricSection


class SectionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"


def is_answered(answers: Mapping[str, object], question_id: str) -> bool:
    # an explicit 0 is "unscored", not "scored at the minimum"
    item = answers.get(question_id)
    return item is not None and int(getattr(item, "score", 0) or 0) > 0


def answered_count(rubric: Rubric, answers: Mapping[str, object]) -> int:
    return sum(1 for _, q in rubric.iter_questions() if is_answered(answers, q.id))


def progress_percentage(answered: int, total: int) -> int:
    if total <= 0:
        return 0
    # half rounds up
    return int(math.floor(answered * 100 / total + 0.5))


def section_status(
    section: RubricSection, answers: Mapping[str, object], show_validation_errors: bool
) -> SectionStatus:
    if all(is_answered(answers, q.id) for q in section.questions):
        return SectionStatus.COMPLETED
    if show_validation_errors:
        return SectionStatus.ERROR
    return SectionStatus.PENDING


def unanswered_questions(rubric: Rubric, answers: Mapping[str, object]) -> List[str]:
    return [q.id for _, q in rubric.iter_questions() if not is_answered(answers, q.id)]


def first_incomplete_section(rubric: Rubric, answers: Mapping[str, object]) -> Optional[int]:
    for section in rubric.sections:
        if any(not is_answered(answers, q.id) for q in section.questions):
            return section.id
    return None


@dataclass(frozen=True)
class Progress:
    total_questions: int
    answered_count: int
    percentage: int
    section_statuses: Dict[int, SectionStatus] = field(default_factory=dict)

    @property
    def missing_count(self) -> int:
        return self.total_questions - self.answered_count

    @property
    def is_complete(self) -> bool:
        return self.answered_count == self.total_questions

    def as_dict(self) -> dict:
        return {
            "total_questions": self.total_questions,
            "answered_count": self.answered_count,
            "missing_count": self.missing_count,
            "percentage": self.percentage,
            "sections": {str(k): v.value for k, v in self.section_statuses.items()},
        }


def compute_progress(
    rubric: Rubric, answers: Mapping[str, object], show_validation_errors: bool = False
) -> Progress:
    total = rubric.total_questions
    answered = answered_count(rubric, answers)
    return Progress(
        total_questions=total,
        answered_count=answered,
        percentage=progress_percentage(answered, total),
        section_statuses={
            s.id: section_status(s, answers, show_validation_errors) for s in rubric.sections
        },
    )


def missing_header_fields(
    store_id: Optional[str], manager_id: Optional[str], auditor_id: Optional[str]
) -> List[str]:
    missing = []
    if not store_id:
        missing.append("store")
    if not manager_id:
        missing.append("manager")
    if not auditor_id:
        missing.append("auditor")
    return missing


@dataclass(frozen=True)
class SubmitCheck:
    missing_header: List[str]
    missing_questions: List[str]
    first_incomplete_section: Optional[int]

    @property
    def header_complete(self) -> bool:
        return not self.missing_header

    @property
    def eligible(self) -> bool:
        return not self.missing_header and not self.missing_questions


def check_submit(
    rubric: Rubric,
    answers: Mapping[str, object],
    store_id: Optional[str],
    manager_id: Optional[str],
    auditor_id: Optional[str],
) -> SubmitCheck:
    return SubmitCheck(
        missing_header=missing_header_fields(store_id, manager_id, auditor_id),
        missing_questions=unanswered_questions(rubric, answers),
        first_incomplete_section=first_incomplete_section(rubric, answers),
    )
