"""Derived project figures: weighted progress, budget summary, risk and task statistics.

Everything here is read-only arithmetic over already-loaded rows, except
``task_completion_trends`` which aggregates in the database.
"""
import logging
import math
from collections import Counter
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("pm-core.metrics")


class BudgetValidationError(ValueError):
    """Raised when actual expenditure exceeds the allocated budget."""

    def __init__(self, message: str, allocated: float, spent: float):
        super().__init__(message)
        self.allocated = allocated
        self.spent = spent


# Contribution of each task status to project progress
STATUS_WEIGHTS: dict[models.TaskStatus, float] = {
    models.TaskStatus.COMPLETED: 1.0,
    models.TaskStatus.REVIEW: 0.75,
    models.TaskStatus.IN_PROGRESS: 0.5,
    models.TaskStatus.TODO: 0.0,
}


def project_progress(statuses: Iterable[models.TaskStatus]) -> float:
    """
    Compute weighted completion percentage for a set of task statuses.

    completed counts fully, review 75%, in_progress 50%, todo nothing.

    Args:
        statuses: Status of every task in the project

    Returns:
        Percentage in [0, 100] rounded to 2 decimals (0 for no tasks)
    """
    statuses = [models.TaskStatus(s) for s in statuses]
    if not statuses:
        return 0.0
    weighted = sum(STATUS_WEIGHTS[s] for s in statuses)
    return round(weighted / len(statuses) * 100, 2)


def task_status_counts(statuses: Iterable[models.TaskStatus]) -> dict[str, int]:
    """Count tasks per status bucket plus the total."""
    counts = Counter(models.TaskStatus(s) for s in statuses)
    return {
        "total": sum(counts.values()),
        "completed": counts[models.TaskStatus.COMPLETED],
        "in_progress": counts[models.TaskStatus.IN_PROGRESS],
        "review": counts[models.TaskStatus.REVIEW],
        "todo": counts[models.TaskStatus.TODO],
    }


def _coerce_amount(value: Any) -> float:
    """Numeric coercion of a budget amount; anything non-numeric or non-finite counts as 0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    return amount if math.isfinite(amount) else 0.0


def _budget_total(budget: Optional[list]) -> float:
    """Unrounded sum of budget line amounts."""
    if not isinstance(budget, list):
        return 0.0
    return sum(_coerce_amount(line.get("amount")) for line in budget if isinstance(line, dict))


def allocated_budget(budget: Optional[list]) -> float:
    """Sum of budget line amounts, rounded to 2 decimals."""
    return round(_budget_total(budget), 2)


def budget_summary(budget: Optional[list], actual_expenditure: Optional[float]) -> dict[str, float]:
    """
    Summarize allocated, spent and remaining budget.

    Args:
        budget: List of ``{"item", "amount"}`` lines (may be None)
        actual_expenditure: Spent amount (None counts as 0)

    Returns:
        Dict with allocated, spent and remaining, each rounded to 2 decimals
    """
    allocated = allocated_budget(budget)
    spent = round(_coerce_amount(actual_expenditure), 2)
    return {
        "allocated": allocated,
        "spent": spent,
        "remaining": round(allocated - spent, 2),
    }


def validate_expenditure(budget: Optional[list], actual_expenditure: Optional[float]) -> None:
    """
    Check that actual expenditure does not exceed the allocated budget.

    Only enforced when both a budget and an expenditure are present.

    Raises:
        BudgetValidationError: If expenditure is greater than the budget total
    """
    if budget is None or actual_expenditure is None:
        return

    # Compare exact totals; rounding is for display only
    allocated = _budget_total(budget)
    spent = _coerce_amount(actual_expenditure)
    if spent > allocated:
        logger.warning(f"Rejected expenditure {spent} above allocated budget {allocated}")
        raise BudgetValidationError(
            message="Actual expenditure cannot exceed the total budget.",
            allocated=allocated,
            spent=spent,
        )


def risk_metrics(risks: Iterable[models.Risk]) -> dict[str, int]:
    """Count risks by severity and by mitigation state.

    ``active`` is every risk that is not mitigated yet.
    """
    risks = list(risks)
    severities = Counter(models.RiskSeverity(r.severity) for r in risks)
    mitigated = sum(1 for r in risks if r.status == models.RiskStatus.MITIGATED)
    return {
        "total": len(risks),
        "critical": severities[models.RiskSeverity.CRITICAL],
        "high": severities[models.RiskSeverity.HIGH],
        "medium": severities[models.RiskSeverity.MEDIUM],
        "low": severities[models.RiskSeverity.LOW],
        "mitigated": mitigated,
        "active": len(risks) - mitigated,
    }


def task_completion_trends(db: Session, project_id: UUID) -> list[dict]:
    """
    Completed tasks of a project grouped by completion day.

    Args:
        db: Database session
        project_id: Project UUID

    Returns:
        List of ``{"date": "YYYY-MM-DD", "count": n}`` in ascending date order
    """
    day = func.date(models.Task.completed_at)
    rows = (
        db.query(day.label("day"), func.count(models.Task.id))
        .filter(
            models.Task.project_id == project_id,
            models.Task.status == models.TaskStatus.COMPLETED,
            models.Task.completed_at.isnot(None),
        )
        .group_by(day)
        .order_by(day)
        .all()
    )
    return [{"date": str(completion_day), "count": count} for completion_day, count in rows]
