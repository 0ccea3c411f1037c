"""Ready-to-Assign calculation.

Everything is derived from stored data on each call:

    carried_forward = starting balances + income before the month
                      - everything budgeted before the month
    to_budget       = carried_forward + this month's income
                      - this month's budgeted total

Spending is not subtracted; it comes out of the envelopes the money was
already assigned to.
"""

from decimal import Decimal
from typing import Optional

from envelope.models.entities import ReadyToAssign
from envelope.models.values import YearMonth, from_cents
from envelope.services import database


def _sum_cents(sql: str, params: tuple) -> Decimal:
    row = database.fetch_one(sql, params)
    return from_cents(row['total'])


def get_total_starting_balances(budget_id: int) -> Decimal:
    """Starting balances of every account, closed ones included."""
    return _sum_cents(
        "SELECT COALESCE(SUM(starting_balance_cents), 0) as total FROM accounts WHERE budget_id = ?",
        (budget_id,)
    )


def get_income_between(budget_id: int, start: Optional[str], end: Optional[str]) -> Decimal:
    """Income dated in [start, end]; a missing bound is open."""
    sql = "SELECT COALESCE(SUM(amount_cents), 0) as total FROM transactions WHERE budget_id = ? AND type = 'income'"
    params = [budget_id]
    if start:
        sql += " AND date >= ?"
        params.append(start)
    if end:
        sql += " AND date <= ?"
        params.append(end)
    return _sum_cents(sql, tuple(params))


def get_budgeted_total(budget_id: int, month: YearMonth, before: bool = False) -> Decimal:
    """Sum of allocations for the month, or for every earlier month."""
    operator = '<' if before else '='
    sql = f"""
        SELECT COALESCE(SUM(mb.budgeted_cents), 0) as total
        FROM monthly_budgets mb
        JOIN categories c ON mb.category_id = c.id
        JOIN category_groups g ON c.group_id = g.id
        WHERE g.budget_id = ? AND mb.month {operator} ?
    """
    return _sum_cents(sql, (budget_id, month.key))


def get_earliest_month(budget_id: int, month: YearMonth) -> YearMonth:
    """First month the budget can be navigated to.

    The configured start month, else the month the first account was
    created, else the month being viewed.
    """
    budget = database.get_budget(budget_id)
    if budget and budget.get('start_month'):
        return YearMonth.parse(budget['start_month'])

    row = database.fetch_one(
        "SELECT created_at FROM accounts WHERE budget_id = ? ORDER BY created_at, id LIMIT 1",
        (budget_id,)
    )
    if row and row['created_at']:
        return YearMonth.parse(row['created_at'][:7])

    return month


def compute_ready_to_assign(budget_id: int, month: YearMonth) -> ReadyToAssign:
    """Compute the Ready-to-Assign breakdown for a month.

    Args:
        budget_id: Budget ID
        month: Target month

    Returns:
        ReadyToAssign with every component of the formula
    """
    month_start = month.first_day
    prior_end = month.previous().last_day.isoformat()

    return ReadyToAssign(
        month=month.key,
        total_starting_balances=get_total_starting_balances(budget_id),
        prior_income=get_income_between(budget_id, None, prior_end),
        prior_budgeted=get_budgeted_total(budget_id, month, before=True),
        this_month_income=get_income_between(
            budget_id, month_start.isoformat(), month.last_day.isoformat()
        ),
        total_budgeted=get_budgeted_total(budget_id, month),
        earliest_month=get_earliest_month(budget_id, month).key
    )
