"""Budget calculation service.

Per-category budgeted / spent / available for a month, and the budget
snapshot that combines them with Ready-to-Assign and average spend.
"""

from decimal import Decimal
from typing import Dict, List, Optional

from envelope.models.entities import Category, CategoryMonth, Transaction
from envelope.models.values import ZERO, YearMonth, from_cents, money_json
from envelope.services import average_spend, carry_forward, database
from envelope.services.consistency import require_budget, require_category
from envelope.services.database import EXPENSE_LINES


def get_budgeted(category_id: int, month: YearMonth) -> Decimal:
    """Amount allocated to a category for a month, 0 when no row exists."""
    row = database.get_monthly_budget(category_id, month.key)
    return from_cents(row['budgeted_cents']) if row else ZERO


def get_spent(budget_id: int, category_id: int, month: YearMonth) -> Decimal:
    """Absolute value of the category's expense contributions in the month.

    Income and transfers never count. Split transactions contribute only
    the share assigned to this category.
    """
    sql = f"""
        WITH {EXPENSE_LINES}
        SELECT COALESCE(SUM(amount_cents), 0) as total
        FROM expense_lines
        WHERE category_id = ? AND date BETWEEN ? AND ?
    """
    row = database.fetch_one(sql, (
        budget_id, budget_id, category_id,
        month.first_day.isoformat(), month.last_day.isoformat()
    ))
    return abs(from_cents(row['total']))


def get_category_month(budget_id: int, category_id: int, month: YearMonth) -> CategoryMonth:
    """Budgeted, spent and available for one category."""
    return CategoryMonth(
        category_id=category_id,
        budgeted=get_budgeted(category_id, month),
        spent=get_spent(budget_id, category_id, month)
    )


def get_budgeted_by_category(budget_id: int, month: YearMonth) -> Dict[int, Decimal]:
    """Allocations of every category in the budget for a month."""
    sql = """
        SELECT mb.category_id, mb.budgeted_cents
        FROM monthly_budgets mb
        JOIN categories c ON mb.category_id = c.id
        JOIN category_groups g ON c.group_id = g.id
        WHERE g.budget_id = ? AND mb.month = ?
    """
    rows = database.fetch_all(sql, (budget_id, month.key))
    return {row['category_id']: from_cents(row['budgeted_cents']) for row in rows}


def get_spent_by_category(budget_id: int, month: YearMonth) -> Dict[int, Decimal]:
    """Spent of every category with activity in the month."""
    sql = f"""
        WITH {EXPENSE_LINES}
        SELECT category_id, SUM(amount_cents) as total
        FROM expense_lines
        WHERE date BETWEEN ? AND ?
        GROUP BY category_id
    """
    rows = database.fetch_all(sql, (
        budget_id, budget_id,
        month.first_day.isoformat(), month.last_day.isoformat()
    ))
    return {row['category_id']: abs(from_cents(row['total'])) for row in rows}


def get_category_months(budget_id: int, month: YearMonth,
                        category_ids: Optional[List[int]] = None) -> Dict[int, CategoryMonth]:
    """Bulk category month calculation.

    Args:
        budget_id: Budget ID
        month: Month to calculate
        category_ids: Restrict to these categories (all of the budget by default)

    Returns:
        Dict mapping category_id to CategoryMonth
    """
    if category_ids is None:
        category_ids = database.get_category_ids(budget_id)

    budgeted = get_budgeted_by_category(budget_id, month)
    spent = get_spent_by_category(budget_id, month)

    return {
        cid: CategoryMonth(category_id=cid, budgeted=budgeted.get(cid, ZERO), spent=spent.get(cid, ZERO))
        for cid in category_ids
    }


def get_category_detail(budget_id: int, category_id: int, month: YearMonth) -> dict:
    """Amounts for one category plus the month's contributing transactions.

    Transactions are newest first. For a split transaction the reported
    amount is this category's share.

    Args:
        budget_id: Budget ID
        category_id: Category ID (must belong to the budget)
        month: Month to report

    Returns:
        Dict with category, budgeted, spent, available and transactions
    """
    category = require_category(budget_id, category_id)
    amounts = get_category_month(budget_id, category.id, month)

    sql = """
        SELECT t.*, p.name as payee_name, a.name as account_name,
               t.amount_cents as share_cents, 0 as is_split
        FROM transactions t
        LEFT JOIN payees p ON t.payee_id = p.id
        JOIN accounts a ON t.account_id = a.id
        WHERE t.budget_id = ? AND t.category_id = ? AND t.date BETWEEN ? AND ?
        UNION ALL
        SELECT t.*, p.name as payee_name, a.name as account_name,
               s.amount_cents as share_cents, 1 as is_split
        FROM split_transactions s
        JOIN transactions t ON s.transaction_id = t.id
        LEFT JOIN payees p ON t.payee_id = p.id
        JOIN accounts a ON t.account_id = a.id
        WHERE t.budget_id = ? AND s.category_id = ? AND t.date BETWEEN ? AND ?
        ORDER BY date DESC, id DESC
    """
    start, end = month.first_day.isoformat(), month.last_day.isoformat()
    rows = database.rows_to_dicts(database.fetch_all(
        sql, (budget_id, category.id, start, end, budget_id, category.id, start, end)
    ))

    transactions = []
    for row in rows:
        data = Transaction.from_dict(row).to_dict()
        data['amount'] = money_json(from_cents(row['share_cents']))
        data['is_split'] = bool(row['is_split'])
        data['payee_name'] = row['payee_name']
        data['account_name'] = row['account_name']
        transactions.append(data)

    return {
        'month': month.key,
        'category': {'id': category.id, 'name': category.name, 'icon': category.icon},
        'budgeted': money_json(amounts.budgeted),
        'spent': money_json(amounts.spent),
        'available': money_json(amounts.available),
        'transactions': transactions
    }


def get_budget_snapshot(budget_id: int, month: YearMonth) -> dict:
    """Get the complete budget view for a month.

    Groups and categories in display order, each category with its
    budgeted, spent, available, default amount, projections and average
    spend, plus totals and the Ready-to-Assign breakdown.

    Args:
        budget_id: Budget ID
        month: Month to view

    Returns:
        Snapshot dict ready for JSON encoding
    """
    require_budget(budget_id)
    groups = database.get_category_groups(budget_id)
    category_rows = database.get_categories(budget_id)
    categories = [Category.from_dict(row) for row in category_rows]

    months = get_category_months(budget_id, month, [c.id for c in categories])
    averages = average_spend.average_spent([c.id for c in categories], month, budget_id)
    ready = carry_forward.compute_ready_to_assign(budget_id, month)

    by_group: Dict[int, List[dict]] = {g['id']: [] for g in groups}
    group_totals: Dict[int, CategoryMonth] = {g['id']: CategoryMonth(g['id'], ZERO, ZERO) for g in groups}
    total_budgeted = total_spent = ZERO

    for category in categories:
        calc = months[category.id]
        total_budgeted += calc.budgeted
        total_spent += calc.spent
        group_totals[category.group_id].budgeted += calc.budgeted
        group_totals[category.group_id].spent += calc.spent

        data = category.to_dict()
        data.update({
            'budgeted': money_json(calc.budgeted),
            'spent': money_json(calc.spent),
            'available': money_json(calc.available),
            'avg_spent': money_json(averages.get(category.id, ZERO))
        })
        by_group[category.group_id].append(data)

    group_list = []
    for group in groups:
        cats = by_group[group['id']]
        totals = group_totals[group['id']]
        group_list.append({
            'id': group['id'],
            'name': group['name'],
            'sort_order': group['sort_order'],
            'budgeted': money_json(totals.budgeted),
            'spent': money_json(totals.spent),
            'available': money_json(totals.available),
            'categories': cats
        })

    return {
        'month': month.key,
        'previous_month': month.previous().key,
        'next_month': month.next().key,
        'groups': group_list,
        'totals': {
            'budgeted': money_json(total_budgeted),
            'spent': money_json(total_spent),
            'available': money_json(total_budgeted - total_spent)
        },
        'ready_to_assign': ready.to_dict()
    }
