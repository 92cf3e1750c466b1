from __future__ import annotations

import math
from typing import Optional

from ciel_pos.domain.errors import NotFoundError, ValidationError
from ciel_pos.domain.models import Expense


class ExpenseService:
    def __init__(self, repo):
        self.repo = repo

    def add_expense(
        self,
        title: str,
        amount: float,
        spent_at: str,
        period: Optional[str] = None,
        category: Optional[str] = None,
        note: Optional[str] = None,
    ) -> int:
        title = (title or "").strip()
        spent_at = (spent_at or "").strip()
        if not title:
            raise ValidationError("Title is required.")
        if not spent_at:
            raise ValidationError("Spent date is required.")
        try:
            amount = float(amount)
        except (TypeError, ValueError) as e:
            raise ValidationError("Amount must be a number.") from e
        if not math.isfinite(amount) or amount <= 0:
            raise ValidationError("Amount must be > 0.")
        return self.repo.add_expense(
            title,
            amount,
            spent_at,
            (period or "").strip() or spent_at[:7],
            (category or "").strip() or None,
            (note or "").strip() or None,
        )

    def list_expenses(self) -> list[Expense]:
        return self.repo.list_expenses()

    def delete_expense(self, expense_id: int) -> int:
        changed = self.repo.delete_expense(int(expense_id))
        if not changed:
            raise NotFoundError("Expense not found.")
        return changed
