"""Budget and monthly allocation routes."""

from envelope.models.values import YearMonth
from envelope.services import allocations, budget_calc, catalog
from envelope.utils.http import make_response, require_fields


def handle_list() -> dict:
    return make_response(200, {'budgets': catalog.list_budgets()})


def handle_create(body: dict) -> dict:
    return make_response(201, catalog.create_budget(body))


def handle_get(budget_id: int) -> dict:
    return make_response(200, catalog.get_budget(budget_id))


def handle_update(budget_id: int, body: dict) -> dict:
    return make_response(200, catalog.update_budget(budget_id, body))


def handle_delete(budget_id: int) -> dict:
    catalog.delete_budget(budget_id)
    return make_response(200, {'deleted': True})


def handle_snapshot(budget_id: int, month: str) -> dict:
    """Budget view for a month.

    Args:
        budget_id: Budget ID
        month: Month key (YYYY-MM)

    Returns:
        Response with groups, per-category amounts, totals and Ready to Assign
    """
    return make_response(200, budget_calc.get_budget_snapshot(budget_id, YearMonth.parse(month)))


def handle_set_amounts(budget_id: int, month: str, body: dict) -> dict:
    """Set one allocation, or several with a ``budgets`` list.

    Args:
        budget_id: Budget ID
        month: Month key
        body: Either category_id and amount, or budgets: [{category_id, amount}]

    Returns:
        Response with the updated category or the number of updates
    """
    ym = YearMonth.parse(month)
    if 'budgets' in body:
        count = allocations.set_budgeted_amounts(budget_id, ym, body['budgets'])
        return make_response(200, {'month': ym.key, 'updated': count})

    require_fields(body, 'category_id', 'amount')
    return make_response(200, allocations.set_budgeted_amount(
        budget_id, body['category_id'], ym, body['amount']
    ))


def handle_copy_previous(budget_id: int, month: str) -> dict:
    ym = YearMonth.parse(month)
    count = allocations.copy_previous_month(budget_id, ym)
    return make_response(200, {'month': ym.key, 'from_month': ym.previous().key, 'updated': count})


def handle_move(budget_id: int, month: str, body: dict) -> dict:
    """Move money between two categories' allocations."""
    require_fields(body, 'from_category_id', 'to_category_id', 'amount')
    return make_response(200, allocations.move_money(
        budget_id, body['from_category_id'], body['to_category_id'],
        YearMonth.parse(month), body['amount']
    ))


def handle_apply_defaults(budget_id: int, month: str) -> dict:
    ym = YearMonth.parse(month)
    return make_response(200, {'month': ym.key, 'updated': allocations.apply_defaults(budget_id, ym)})


def handle_apply_projection(budget_id: int, month: str, body: dict) -> dict:
    require_fields(body, 'index')
    ym = YearMonth.parse(month)
    count = allocations.apply_projection(budget_id, ym, body['index'])
    return make_response(200, {'month': ym.key, 'updated': count})


def handle_clear(budget_id: int, month: str) -> dict:
    ym = YearMonth.parse(month)
    return make_response(200, {'month': ym.key, 'cleared': allocations.clear_budget(budget_id, ym)})


def handle_average_spent(budget_id: int, month: str) -> dict:
    ym = YearMonth.parse(month)
    return make_response(200, {
        'month': ym.key,
        'averages': allocations.get_average_spent(budget_id, ym)
    })


def handle_category_detail(budget_id: int, month: str, category_id: int) -> dict:
    return make_response(200, budget_calc.get_category_detail(
        budget_id, category_id, YearMonth.parse(month)
    ))


def handle_save_projections(budget_id: int, body: dict) -> dict:
    require_fields(body, 'projections')
    count = allocations.save_projections(budget_id, body['projections'])
    return make_response(200, {'updated': count})


def handle_clear_projections(budget_id: int) -> dict:
    return make_response(200, {'cleared': allocations.clear_projections(budget_id)})
