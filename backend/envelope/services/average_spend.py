"""Average monthly spend per category, used for projections."""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Tuple

from envelope.models.values import CENT, ZERO, YearMonth, from_cents
from envelope.services import database
from envelope.services.database import EXPENSE_LINES


def get_average_range(month: YearMonth) -> Tuple[str, str]:
    """Date range the average looks at.

    January 1 of the month's year through the end of the previous month.
    Viewing January uses the whole prior calendar year instead.
    """
    previous = month.previous()
    start = YearMonth(previous.year, 1).first_day
    return start.isoformat(), previous.last_day.isoformat()


def average_spent(category_ids: List[int], month: YearMonth, budget_id: int) -> Dict[int, Decimal]:
    """Average monthly spend for each category.

    The total is divided by the number of distinct months that had any
    spending in the category, not by the length of the range.

    Args:
        category_ids: Categories to report
        month: Month being viewed
        budget_id: Budget the categories belong to

    Returns:
        Dict mapping category_id to average, 0 for categories without data
    """
    result = {cid: ZERO for cid in category_ids}
    if not category_ids:
        return result

    start, end = get_average_range(month)
    sql = f"""
        WITH {EXPENSE_LINES}
        SELECT category_id,
               SUM(ABS(amount_cents)) as total,
               COUNT(DISTINCT substr(date, 1, 7)) as months
        FROM expense_lines
        WHERE date BETWEEN ? AND ?
        AND category_id IN ({database.placeholders(category_ids)})
        GROUP BY category_id
    """
    rows = database.fetch_all(sql, (budget_id, budget_id, start, end) + tuple(category_ids))

    for row in rows:
        if row['months']:
            average = from_cents(row['total']) / row['months']
            result[row['category_id']] = average.quantize(CENT, rounding=ROUND_HALF_UP)

    return result


def average_spent_for_budget(budget_id: int, month: YearMonth) -> Dict[int, Decimal]:
    """Average monthly spend for every category of a budget."""
    return average_spent(database.get_category_ids(budget_id), month, budget_id)
