"""Allocation commands: assigning money to categories for a month."""

import json
from decimal import Decimal
from typing import Any, Dict, List

from aws_lambda_powertools import Logger

from envelope.models.entities import Category
from envelope.models.errors import ValidationFailure
from envelope.models.values import ZERO, YearMonth, money_json, to_cents, to_money
from envelope.services import average_spend, budget_calc, database
from envelope.services.consistency import parse_amount, require_budget, require_category

logger = Logger(service="envelope-allocations")

PROJECTION_SLOTS = (1, 2, 3)


def _non_negative(value: Any, field: str = 'amount') -> Decimal:
    amount = to_money(value, field)
    if amount < ZERO:
        raise ValidationFailure(f'{field} cannot be negative')
    return amount


def set_budgeted_amount(budget_id: int, category_id: Any, month: YearMonth, amount: Any) -> dict:
    """Set a category's allocation for a month.

    Args:
        budget_id: Budget ID
        category_id: Category to allocate to
        month: Month of the allocation
        amount: New budgeted amount, zero or more

    Returns:
        The category's budgeted, spent and available after the change
    """
    value = _non_negative(amount)
    category = require_category(budget_id, category_id)

    with database.transaction():
        database.upsert_monthly_budget(category.id, month.key, to_cents(value))

    calc = budget_calc.get_category_month(budget_id, category.id, month)
    return {
        'category_id': category.id,
        'month': month.key,
        'budgeted': money_json(calc.budgeted),
        'spent': money_json(calc.spent),
        'available': money_json(calc.available)
    }


def set_budgeted_amounts(budget_id: int, month: YearMonth, items: Any) -> int:
    """Set several allocations for a month at once.

    Every entry is validated before anything is written.

    Args:
        budget_id: Budget ID
        month: Month of the allocations
        items: List of ``{'category_id': ..., 'amount': ...}``

    Returns:
        Number of allocations written
    """
    if not isinstance(items, list):
        raise ValidationFailure('budgets must be a list')

    updates = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationFailure(f'budgets[{index}] must be an object')
        value = _non_negative(item.get('amount'), f'budgets[{index}].amount')
        category = require_category(budget_id, item.get('category_id'))
        updates.append((category.id, to_cents(value)))

    with database.transaction():
        for category_id, cents in updates:
            database.upsert_monthly_budget(category_id, month.key, cents)

    return len(updates)


def copy_previous_month(budget_id: int, month: YearMonth) -> int:
    """Copy last month's allocations into this month.

    Every category of the budget is written; categories without a row last
    month get 0.

    Returns:
        Number of categories updated
    """
    require_budget(budget_id)
    previous = budget_calc.get_budgeted_by_category(budget_id, month.previous())
    category_ids = database.get_category_ids(budget_id)

    with database.transaction():
        for category_id in category_ids:
            database.upsert_monthly_budget(
                category_id, month.key, to_cents(previous.get(category_id, ZERO))
            )

    logger.info("Copied previous month", extra={
        "budget_id": budget_id, "month": month.key, "categories": len(category_ids)
    })
    return len(category_ids)


def move_money(budget_id: int, from_category_id: Any, to_category_id: Any,
               month: YearMonth, amount: Any) -> Dict[str, Any]:
    """Move an amount from one category's allocation to another's.

    Missing allocation rows are created at 0 first, so the source can go
    negative. Each side is a single ``+=`` statement under the write lock.

    Args:
        budget_id: Budget ID
        from_category_id: Category giving the money
        to_category_id: Category receiving it
        month: Month of the allocations
        amount: Positive amount to move

    Returns:
        Both categories' budgeted amounts after the move

    Raises:
        ValidationFailure: Non-positive amount or same category
        NotFound: Either category outside the budget
    """
    value = parse_amount(amount)
    source = require_category(budget_id, from_category_id)
    target = require_category(budget_id, to_category_id)
    if source.id == target.id:
        raise ValidationFailure('Cannot move money to the same category')

    cents = to_cents(value)
    with database.transaction():
        database.adjust_monthly_budget(source.id, month.key, -cents)
        database.adjust_monthly_budget(target.id, month.key, cents)
        from_budgeted = budget_calc.get_budgeted(source.id, month)
        to_budgeted = budget_calc.get_budgeted(target.id, month)

    logger.info("Moved money", extra={
        "budget_id": budget_id, "month": month.key, "amount": str(value),
        "from_category_id": source.id, "to_category_id": target.id
    })
    return {
        'month': month.key,
        'amount': money_json(value),
        'from': {'category_id': source.id, 'budgeted': money_json(from_budgeted)},
        'to': {'category_id': target.id, 'budgeted': money_json(to_budgeted)}
    }


def _categories(budget_id: int) -> List[Category]:
    require_budget(budget_id)
    return [Category.from_dict(row) for row in database.get_categories(budget_id)]


def apply_defaults(budget_id: int, month: YearMonth) -> int:
    """Budget each category's default amount for the month.

    Only categories with a default above zero are touched.

    Returns:
        Number of categories updated
    """
    categories = [c for c in _categories(budget_id) if c.default_amount > ZERO]

    with database.transaction():
        for category in categories:
            database.upsert_monthly_budget(category.id, month.key, to_cents(category.default_amount))

    return len(categories)


def apply_projection(budget_id: int, month: YearMonth, index: Any) -> int:
    """Budget a projection slot for the month.

    Args:
        budget_id: Budget ID
        month: Month to fill in
        index: Projection slot, 1 to 3. A category without a value in the
            slot falls back to its default amount.

    Returns:
        Number of categories updated (only amounts above zero are written)
    """
    try:
        slot = int(index)
    except (TypeError, ValueError):
        slot = None
    if isinstance(index, bool) or slot not in PROJECTION_SLOTS:
        raise ValidationFailure('projection index must be 1, 2 or 3')

    amounts = [(c.id, c.projection(slot)) for c in _categories(budget_id)]
    amounts = [(cid, value) for cid, value in amounts if value > ZERO]

    with database.transaction():
        for category_id, value in amounts:
            database.upsert_monthly_budget(category_id, month.key, to_cents(value))

    return len(amounts)


def clear_budget(budget_id: int, month: YearMonth) -> int:
    """Set every existing allocation of the month to 0.

    Returns:
        Number of allocation rows cleared
    """
    require_budget(budget_id)
    with database.transaction():
        cursor = database.execute("""
            UPDATE monthly_budgets
            SET budgeted_cents = 0, updated_at = ?
            WHERE month = ? AND category_id IN (
                SELECT c.id FROM categories c
                JOIN category_groups g ON c.group_id = g.id
                WHERE g.budget_id = ?
            )
        """, (database.now_timestamp(), month.key, budget_id))
        count = cursor.rowcount

    logger.info("Cleared month", extra={"budget_id": budget_id, "month": month.key, "rows": count})
    return count


def save_projections(budget_id: int, projections: Any) -> int:
    """Store projection slot values for categories.

    Args:
        budget_id: Budget ID
        projections: ``{category_id: {slot: amount}}``. A null amount clears
            the slot.

    Returns:
        Number of categories updated
    """
    if not isinstance(projections, dict):
        raise ValidationFailure('projections must be an object')

    updates = []
    for category_id, slots in projections.items():
        category = require_category(budget_id, category_id)
        if not isinstance(slots, dict):
            raise ValidationFailure(f'projections for category {category.id} must be an object')

        stored = {slot: to_cents(value) for slot, value in category.projections.items()}
        for raw_slot, value in slots.items():
            try:
                slot = int(raw_slot)
            except (TypeError, ValueError):
                slot = None
            if slot not in PROJECTION_SLOTS:
                raise ValidationFailure('projection slots must be 1, 2 or 3')
            if value is None:
                stored.pop(slot, None)
            else:
                stored[slot] = to_cents(_non_negative(value, f'projection {slot}'))

        encoded = json.dumps({str(k): v for k, v in sorted(stored.items())}) if stored else None
        updates.append((category.id, encoded))

    with database.transaction():
        for category_id, encoded in updates:
            database.update('categories', category_id, {'projections': encoded})

    return len(updates)


def clear_projections(budget_id: int) -> int:
    """Remove every projection of the budget's categories.

    Returns:
        Number of categories that had projections
    """
    require_budget(budget_id)
    with database.transaction():
        cursor = database.execute("""
            UPDATE categories SET projections = NULL
            WHERE projections IS NOT NULL AND group_id IN (
                SELECT id FROM category_groups WHERE budget_id = ?
            )
        """, (budget_id,))
        return cursor.rowcount


def get_average_spent(budget_id: int, month: YearMonth) -> Dict[str, float]:
    """Average spend of every category, keyed by category id string."""
    require_budget(budget_id)
    averages = average_spend.average_spent_for_budget(budget_id, month)
    return {str(cid): money_json(value) for cid, value in averages.items()}
