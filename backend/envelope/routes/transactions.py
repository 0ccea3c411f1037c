"""Transaction routes."""

from envelope.services import transactions
from envelope.services.consistency import require_budget
from envelope.utils.http import make_response, require_fields


def handle_list(budget_id: int, query: dict) -> dict:
    """List transactions.

    Args:
        budget_id: Budget ID
        query: Filters (account_id, start_date, end_date, cleared, recurring,
            search, limit)

    Returns:
        Response with transaction list
    """
    require_budget(budget_id)
    rows = transactions.list_transactions(budget_id, query)
    return make_response(200, {'transactions': rows, 'count': len(rows)})


def handle_create(budget_id: int, body: dict) -> dict:
    """Record a transaction.

    ``type: transfer`` records a transfer pair; a ``splits`` list records a
    split transaction; anything else is a plain expense or income.
    """
    require_budget(budget_id)
    require_fields(body, 'account_id')
    if body.get('type') == 'transfer':
        require_fields(body, 'to_account_id', 'amount')
        return make_response(201, transactions.record_transfer(budget_id, body))
    if body.get('splits'):
        return make_response(201, transactions.record_split_transaction(budget_id, body))
    require_fields(body, 'amount')
    return make_response(201, transactions.record_transaction(budget_id, body))


def handle_get(budget_id: int, transaction_id: int) -> dict:
    return make_response(200, transactions.get_transaction(budget_id, transaction_id))


def handle_update(budget_id: int, transaction_id: int, body: dict) -> dict:
    return make_response(200, transactions.update_transaction(budget_id, transaction_id, body))


def handle_delete(budget_id: int, transaction_id: int) -> dict:
    count = transactions.delete_transaction(budget_id, transaction_id)
    return make_response(200, {'deleted': count})


def handle_toggle_cleared(budget_id: int, transaction_id: int) -> dict:
    return make_response(200, transactions.toggle_cleared(budget_id, transaction_id))


def handle_create_batch(budget_id: int, body: dict) -> dict:
    """Create the transactions parsed from a voice transcript.

    Args:
        budget_id: Budget ID
        body: transactions, the collaborator's structured output

    Returns:
        Response with batch_id (for undo) and the created transactions
    """
    require_fields(body, 'transactions')
    return make_response(201, transactions.create_batch(budget_id, body['transactions']))


def handle_undo_batch(budget_id: int, batch_id: str) -> dict:
    count = transactions.undo_batch(budget_id, batch_id)
    return make_response(200, {'batch_id': batch_id, 'deleted': count})
