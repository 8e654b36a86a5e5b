# src/taskpilot/tasks/scoring.py

"""
Candidate scoring.

Pure functions: (required skills, employee pool) -> ranked match scores in [0, 100].
Nothing here touches storage, and inputs are never mutated.

The workload figure comes from whatever the caller read; it may be stale by the
time an invitation is accepted. That is acceptable because accept is itself a
guarded transition.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from .task_models import Employee, normalize_skill

MAX_WORKLOAD = 10
DEFAULT_TOP_K = 3


@dataclass(frozen=True, slots=True)
class ScoreWeights:
    skill: float = 0.40
    workload: float = 0.30
    performance: float = 0.20
    availability: float = 0.10


DEFAULT_WEIGHTS = ScoreWeights()


@dataclass(frozen=True, slots=True)
class CandidateScore:
    employee_id: str
    name: str
    skill_match: float
    workload_capacity: float
    performance: float
    availability: float
    composite: float
    current_workload: int
    matched_skills: tuple[str, ...]
    missing_skills: tuple[str, ...]

    @property
    def recommendation(self) -> str:
        if self.skill_match >= 80:
            return "Excellent match"
        if self.skill_match >= 50:
            return "Good match"
        if self.composite >= 60:
            return "Suitable candidate"
        if self.composite >= 40:
            return "Potential candidate"
        return "Available employee"

    def to_dict(self) -> dict[str, Any]:
        return {
            "employeeId": self.employee_id,
            "name": self.name,
            "score": round(self.composite, 2),
            "skillMatch": round(self.skill_match, 2),
            "workloadCapacity": round(self.workload_capacity, 2),
            "performance": round(self.performance, 2),
            "availability": round(self.availability, 2),
            "currentWorkload": self.current_workload,
            "matchedSkills": list(self.matched_skills),
            "missingSkills": list(self.missing_skills),
            "recommendation": self.recommendation,
        }


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _availability_score(employee: Employee) -> float:
    if not employee.availability:
        return 0.0
    if employee.current_workload < 3:
        return 100.0
    if employee.current_workload < 5:
        return 70.0
    return 40.0


def score_candidate(
    required_skills: Iterable[str],
    employee: Employee,
    *,
    max_workload: int = MAX_WORKLOAD,
    weights: ScoreWeights = DEFAULT_WEIGHTS,
) -> CandidateScore:
    """Score one employee against a task's required skills."""
    if max_workload <= 0:
        raise ValueError("max_workload must be positive")

    # Keep the caller's spelling for display, compare on the normalized key.
    required: dict[str, str] = {}
    for skill in required_skills:
        key = normalize_skill(skill)
        if key:
            required.setdefault(key, str(skill).strip())
    owned = {normalize_skill(s) for s in employee.skills}

    matched = tuple(sorted(label for key, label in required.items() if key in owned))
    missing = tuple(sorted(label for key, label in required.items() if key not in owned))

    if required:
        skill_match = 100.0 * len(matched) / max(len(required), 1)
    else:
        skill_match = 100.0

    workload_capacity = 100.0 * max(
        0.0, (max_workload - employee.current_workload) / max_workload
    )
    performance = 100.0 * _clamp(float(employee.performance_score), 0.0, 1.0)
    availability = _availability_score(employee)

    composite = (
        weights.skill * skill_match
        + weights.workload * workload_capacity
        + weights.performance * performance
        + weights.availability * availability
    )

    return CandidateScore(
        employee_id=employee.id,
        name=employee.name,
        skill_match=skill_match,
        workload_capacity=workload_capacity,
        performance=performance,
        availability=availability,
        composite=_clamp(composite, 0.0, 100.0),
        current_workload=employee.current_workload,
        matched_skills=matched,
        missing_skills=missing,
    )


def rank_candidates(
    required_skills: Iterable[str],
    pool: Sequence[Employee],
    *,
    top_k: int = DEFAULT_TOP_K,
    max_workload: int = MAX_WORKLOAD,
    weights: ScoreWeights = DEFAULT_WEIGHTS,
) -> list[CandidateScore]:
    """
    Rank employees by composite score, best first.

    Ties: lower current workload first, then employee id. An empty pool (or
    top_k <= 0) gives an empty list.
    """
    if top_k <= 0 or not pool:
        return []

    required = tuple(required_skills)
    scores = [
        score_candidate(required, emp, max_workload=max_workload, weights=weights)
        for emp in pool
    ]
    scores.sort(key=lambda s: (-s.composite, s.current_workload, s.employee_id))
    return scores[:top_k]
