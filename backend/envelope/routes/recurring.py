"""Recurring transaction routes."""

from datetime import date

from envelope.models.values import parse_date
from envelope.services import recurring
from envelope.services.consistency import require_budget
from envelope.utils.http import make_response


def handle_list(budget_id: int) -> dict:
    require_budget(budget_id)
    return make_response(200, {'recurring': recurring.list_recurring(budget_id)})


def handle_create(budget_id: int, body: dict) -> dict:
    require_budget(budget_id)
    return make_response(201, recurring.create_recurring(budget_id, body))


def handle_update(budget_id: int, recurring_id: int, body: dict) -> dict:
    return make_response(200, recurring.update_recurring(budget_id, recurring_id, body))


def handle_delete(budget_id: int, recurring_id: int) -> dict:
    recurring.delete_recurring(budget_id, recurring_id)
    return make_response(200, {'deleted': True})


def handle_toggle(budget_id: int, recurring_id: int) -> dict:
    return make_response(200, recurring.toggle_recurring(budget_id, recurring_id))


def handle_process(body: dict) -> dict:
    """Materialize every due recurring transaction.

    Args:
        body: Optional as_of date (YYYY-MM-DD), defaults to today

    Returns:
        Response with the number of transactions created
    """
    as_of = parse_date(body['as_of'], 'as_of') if body.get('as_of') else date.today()
    created = recurring.materialize_due_recurring(as_of)
    return make_response(200, {'as_of': as_of.isoformat(), 'created': created})
