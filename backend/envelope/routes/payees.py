"""Payee routes."""

from envelope.services import catalog
from envelope.utils.http import make_response


def handle_list(budget_id: int) -> dict:
    return make_response(200, {'payees': catalog.list_payees(budget_id)})


def handle_update(budget_id: int, payee_id: int, body: dict) -> dict:
    return make_response(200, catalog.update_payee(budget_id, payee_id, body))


def handle_delete(budget_id: int, payee_id: int) -> dict:
    catalog.delete_payee(budget_id, payee_id)
    return make_response(200, {'deleted': True})
