# src/taskpilot/tasks/costing.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .task_models import Employee, Task


@dataclass(frozen=True, slots=True)
class PaymentSuggestion:
    amount: float
    hourly_rate: float
    hours: float
    complexity_multiplier: float

    @property
    def calculation(self) -> str:
        return (
            f"Hourly Rate: ${self.hourly_rate:g}, Hours: {self.hours:g}, "
            f"Complexity: {self.complexity_multiplier:g}x = ${self.amount:.2f}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount": self.amount,
            "hourlyRate": self.hourly_rate,
            "hours": self.hours,
            "complexityMultiplier": self.complexity_multiplier,
            "calculation": self.calculation,
        }


def suggest_payment(task: Task, employee: Employee, hours_logged: float | None = None) -> PaymentSuggestion:
    """
    Suggested payout for a finished task: rate x hours x complexity.

    Logged hours win over the estimate; with neither the amount is zero. Approval
    of the amount happens elsewhere.
    """
    hours = float(hours_logged or task.estimated_hours or 0.0)
    rate = float(employee.hourly_rate or 0.0)
    multiplier = float(task.complexity_multiplier or 1.0)
    return PaymentSuggestion(
        amount=round(rate * hours * multiplier, 2),
        hourly_rate=rate,
        hours=hours,
        complexity_multiplier=multiplier,
    )
