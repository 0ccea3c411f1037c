"""Account routes."""

from envelope.services import balances, catalog
from envelope.services.consistency import require_budget
from envelope.utils.http import make_response, query_flag, require_fields


def handle_list(budget_id: int, query: dict) -> dict:
    """List accounts with current and cleared balances.

    Args:
        budget_id: Budget ID
        query: include_closed (default true)

    Returns:
        Response with account list
    """
    require_budget(budget_id)
    include_closed = query_flag(query, 'include_closed')
    accounts = balances.get_account_balances(
        budget_id, include_closed=True if include_closed is None else include_closed
    )
    return make_response(200, {'accounts': accounts})


def handle_create(budget_id: int, body: dict) -> dict:
    require_fields(body, 'name', 'type')
    return make_response(201, catalog.create_account(budget_id, body))


def handle_update(budget_id: int, account_id: int, body: dict) -> dict:
    return make_response(200, catalog.update_account(budget_id, account_id, body))


def handle_delete(budget_id: int, account_id: int) -> dict:
    catalog.delete_account(budget_id, account_id)
    return make_response(200, {'deleted': True})


def handle_reorder(budget_id: int, body: dict) -> dict:
    require_fields(body, 'ids')
    return make_response(200, {'ids': catalog.reorder_accounts(budget_id, body['ids'])})
