"""Category and category group routes."""

from envelope.services import catalog
from envelope.utils.http import make_response, require_fields


def handle_create_group(budget_id: int, body: dict) -> dict:
    require_fields(body, 'name')
    return make_response(201, catalog.create_group(budget_id, body))


def handle_rename_group(budget_id: int, group_id: int, body: dict) -> dict:
    require_fields(body, 'name')
    return make_response(200, catalog.rename_group(budget_id, group_id, body))


def handle_delete_group(budget_id: int, group_id: int) -> dict:
    catalog.delete_group(budget_id, group_id)
    return make_response(200, {'deleted': True})


def handle_reorder_groups(budget_id: int, body: dict) -> dict:
    require_fields(body, 'ids')
    return make_response(200, {'ids': catalog.reorder_groups(budget_id, body['ids'])})


def handle_create(budget_id: int, body: dict) -> dict:
    """Create a category.

    Args:
        budget_id: Budget ID
        body: group_id, name, optional icon and default_amount

    Returns:
        Response with created category
    """
    require_fields(body, 'group_id', 'name')
    return make_response(201, catalog.create_category(budget_id, body))


def handle_update(budget_id: int, category_id: int, body: dict) -> dict:
    return make_response(200, catalog.update_category(budget_id, category_id, body))


def handle_delete(budget_id: int, category_id: int) -> dict:
    catalog.delete_category(budget_id, category_id)
    return make_response(200, {'deleted': True})


def handle_reorder(budget_id: int, body: dict) -> dict:
    """Reorder the categories of one group."""
    require_fields(body, 'group_id', 'ids')
    ids = catalog.reorder_categories(budget_id, body['group_id'], body['ids'])
    return make_response(200, {'group_id': body['group_id'], 'ids': ids})
