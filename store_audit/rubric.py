# store_audit/rubric.py
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

import commentjson

from store_audit import config


@dataclass(frozen=True)
class ScoringOption:
    label: str
    value: int
    tier: str


@dataclass(frozen=True)
class RubricQuestion:
    id: str
    category: str
    criterion: str
    max_points: int
    options: Tuple[ScoringOption, ...]
    column: str = ""

    @property
    def option_values(self) -> Tuple[int, ...]:
        return tuple(o.value for o in self.options)

    def option_for(self, value: int) -> Optional[ScoringOption]:
        for o in self.options:
            if o.value == value:
                return o
        return None


@dataclass(frozen=True)
class RubricSection:
    id: int
    title: str
    questions: Tuple[RubricQuestion, ...]

    @property
    def max_points(self) -> int:
        return sum(q.max_points for q in self.questions)


@dataclass(frozen=True)
class Rubric:
    """
    The full evaluation checklist. Sections and questions keep the order
    they were declared in, which is also the order used everywhere else
    (navigation, first-missing-section lookup, findings, CSV columns).
    """
    sections: Tuple[RubricSection, ...]

    @property
    def max_points(self) -> int:
        return sum(s.max_points for s in self.sections)

    @property
    def total_questions(self) -> int:
        return sum(len(s.questions) for s in self.sections)

    def iter_questions(self) -> Iterator[Tuple[RubricSection, RubricQuestion]]:
        for section in self.sections:
            for q in section.questions:
                yield section, q

    def question(self, question_id: str) -> Optional[RubricQuestion]:
        return self._question_index().get(question_id)

    def section(self, section_id: int) -> Optional[RubricSection]:
        for s in self.sections:
            if s.id == section_id:
                return s
        return None

    def section_of(self, question_id: str) -> Optional[RubricSection]:
        for section, q in self.iter_questions():
            if q.id == question_id:
                return section
        return None

    def _question_index(self) -> Dict[str, RubricQuestion]:
        # frozen dataclass: cache lives on the instance dict
        idx = self.__dict__.get("_idx")
        if idx is None:
            idx = {q.id: q for _, q in self.iter_questions()}
            object.__setattr__(self, "_idx", idx)
        return idx

    def as_dict(self) -> Dict[str, Any]:
        return {
            "max_points": self.max_points,
            "sections": [
                {
                    "id": s.id,
                    "title": s.title,
                    "max_points": s.max_points,
                    "questions": [
                        {
                            "id": q.id,
                            "category": q.category,
                            "criterion": q.criterion,
                            "max_points": q.max_points,
                            "options": [
                                {"label": o.label, "value": o.value, "tier": o.tier}
                                for o in q.options
                            ],
                        }
                        for q in s.questions
                    ],
                }
                for s in self.sections
            ],
        }


def parse_rubric(data: Dict[str, Any]) -> Rubric:
    """
    Build a Rubric from the decoded JSON document.
    Fails fast on missing keys, unknown scales, duplicate ids or
    option sets whose best value differs from the question max.
    """
    for key in ("sections", "scales"):
        if key not in data:
            raise ValueError(f"Rubric config missing key: {key}")

    scales: Dict[str, Tuple[ScoringOption, ...]] = {}
    for name, opts in data["scales"].items():
        scales[str(name)] = tuple(
            ScoringOption(label=o["label"], value=int(o["value"]), tier=o.get("tier", ""))
            for o in opts
        )

    seen = set()
    sections = []
    for s in data["sections"]:
        questions = []
        for q in s["questions"]:
            qid = str(q["id"])
            if qid in seen:
                raise ValueError(f"Rubric config: duplicate question id {qid}")
            seen.add(qid)

            if "options" in q:
                options = tuple(
                    ScoringOption(label=o["label"], value=int(o["value"]), tier=o.get("tier", ""))
                    for o in q["options"]
                )
            else:
                scale = str(q.get("scale", ""))
                if scale not in scales:
                    raise ValueError(f"Rubric config: question {qid} references unknown scale '{scale}'")
                options = scales[scale]

            max_points = int(q["max_points"])
            if not options or max(o.value for o in options) != max_points:
                raise ValueError(f"Rubric config: options of {qid} do not top out at {max_points}")
            if any(o.value <= 0 for o in options):
                raise ValueError(f"Rubric config: option values of {qid} must be positive")

            questions.append(
                RubricQuestion(
                    id=qid,
                    category=q["category"],
                    criterion=q["criterion"],
                    max_points=max_points,
                    options=options,
                    column=q.get("column", ""),
                )
            )
        sections.append(RubricSection(id=int(s["id"]), title=s["title"], questions=tuple(questions)))

    return Rubric(sections=tuple(sections))


def load_rubric(path: Path) -> Rubric:
    if not path.exists():
        raise FileNotFoundError(f"Rubric file not found at '{path}'.")
    with path.open("r", encoding="utf-8") as f:
        data = commentjson.load(f)
    return parse_rubric(data)


@lru_cache(maxsize=1)
def get_rubric() -> Rubric:
    return load_rubric(config.RUBRIC_PATH)
