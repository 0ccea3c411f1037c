"""Main Lambda handler for the envelope budget API."""

import json
import re
from datetime import date
from typing import Any, Callable, List, Tuple

from aws_lambda_powertools import Logger

from envelope.models.errors import LedgerError
from envelope.routes import accounts, budgets, categories, payees, recurring, transactions
from envelope.services.recurring import materialize_due_recurring
from envelope.utils.http import error_response, make_response

logger = Logger(service="envelope-api")

# (method, path pattern, handler(match, body, query))
Route = Tuple[str, re.Pattern, Callable[[re.Match, dict, dict], dict]]

B = r'/api/budgets/(?P<b>\d+)'
M = B + r'/months/(?P<m>[^/]+)'


def _route(method: str, pattern: str, handler: Callable[[re.Match, dict, dict], dict]) -> Route:
    return method, re.compile(pattern + '$'), handler


def _id(match: re.Match, name: str) -> int:
    return int(match.group(name))


ROUTES: List[Route] = [
    # Budgets
    _route('GET', r'/api/budgets', lambda m, body, q: budgets.handle_list()),
    _route('POST', r'/api/budgets', lambda m, body, q: budgets.handle_create(body)),
    _route('GET', B, lambda m, body, q: budgets.handle_get(_id(m, 'b'))),
    _route('PATCH', B, lambda m, body, q: budgets.handle_update(_id(m, 'b'), body)),
    _route('DELETE', B, lambda m, body, q: budgets.handle_delete(_id(m, 'b'))),

    # Months
    _route('GET', M, lambda m, body, q: budgets.handle_snapshot(_id(m, 'b'), m.group('m'))),
    _route('PUT', M, lambda m, body, q: budgets.handle_set_amounts(_id(m, 'b'), m.group('m'), body)),
    _route('POST', M + r'/copy-previous',
           lambda m, body, q: budgets.handle_copy_previous(_id(m, 'b'), m.group('m'))),
    _route('POST', M + r'/move', lambda m, body, q: budgets.handle_move(_id(m, 'b'), m.group('m'), body)),
    _route('POST', M + r'/apply-defaults',
           lambda m, body, q: budgets.handle_apply_defaults(_id(m, 'b'), m.group('m'))),
    _route('POST', M + r'/apply-projection',
           lambda m, body, q: budgets.handle_apply_projection(_id(m, 'b'), m.group('m'), body)),
    _route('POST', M + r'/clear', lambda m, body, q: budgets.handle_clear(_id(m, 'b'), m.group('m'))),
    _route('GET', M + r'/average-spent',
           lambda m, body, q: budgets.handle_average_spent(_id(m, 'b'), m.group('m'))),
    _route('GET', M + r'/categories/(?P<c>\d+)',
           lambda m, body, q: budgets.handle_category_detail(_id(m, 'b'), m.group('m'), _id(m, 'c'))),
    _route('PUT', B + r'/projections', lambda m, body, q: budgets.handle_save_projections(_id(m, 'b'), body)),
    _route('DELETE', B + r'/projections', lambda m, body, q: budgets.handle_clear_projections(_id(m, 'b'))),

    # Accounts
    _route('GET', B + r'/accounts', lambda m, body, q: accounts.handle_list(_id(m, 'b'), q)),
    _route('POST', B + r'/accounts', lambda m, body, q: accounts.handle_create(_id(m, 'b'), body)),
    _route('POST', B + r'/accounts/reorder', lambda m, body, q: accounts.handle_reorder(_id(m, 'b'), body)),
    _route('PATCH', B + r'/accounts/(?P<a>\d+)',
           lambda m, body, q: accounts.handle_update(_id(m, 'b'), _id(m, 'a'), body)),
    _route('DELETE', B + r'/accounts/(?P<a>\d+)',
           lambda m, body, q: accounts.handle_delete(_id(m, 'b'), _id(m, 'a'))),

    # Category groups and categories
    _route('POST', B + r'/category-groups',
           lambda m, body, q: categories.handle_create_group(_id(m, 'b'), body)),
    _route('POST', B + r'/category-groups/reorder',
           lambda m, body, q: categories.handle_reorder_groups(_id(m, 'b'), body)),
    _route('PATCH', B + r'/category-groups/(?P<g>\d+)',
           lambda m, body, q: categories.handle_rename_group(_id(m, 'b'), _id(m, 'g'), body)),
    _route('DELETE', B + r'/category-groups/(?P<g>\d+)',
           lambda m, body, q: categories.handle_delete_group(_id(m, 'b'), _id(m, 'g'))),
    _route('POST', B + r'/categories', lambda m, body, q: categories.handle_create(_id(m, 'b'), body)),
    _route('POST', B + r'/categories/reorder', lambda m, body, q: categories.handle_reorder(_id(m, 'b'), body)),
    _route('PATCH', B + r'/categories/(?P<c>\d+)',
           lambda m, body, q: categories.handle_update(_id(m, 'b'), _id(m, 'c'), body)),
    _route('DELETE', B + r'/categories/(?P<c>\d+)',
           lambda m, body, q: categories.handle_delete(_id(m, 'b'), _id(m, 'c'))),

    # Transactions
    _route('GET', B + r'/transactions', lambda m, body, q: transactions.handle_list(_id(m, 'b'), q)),
    _route('POST', B + r'/transactions', lambda m, body, q: transactions.handle_create(_id(m, 'b'), body)),
    _route('POST', B + r'/transactions/batch',
           lambda m, body, q: transactions.handle_create_batch(_id(m, 'b'), body)),
    _route('DELETE', B + r'/transactions/batch/(?P<batch>[0-9a-fA-F-]+)',
           lambda m, body, q: transactions.handle_undo_batch(_id(m, 'b'), m.group('batch'))),
    _route('GET', B + r'/transactions/(?P<t>\d+)',
           lambda m, body, q: transactions.handle_get(_id(m, 'b'), _id(m, 't'))),
    _route('PATCH', B + r'/transactions/(?P<t>\d+)',
           lambda m, body, q: transactions.handle_update(_id(m, 'b'), _id(m, 't'), body)),
    _route('DELETE', B + r'/transactions/(?P<t>\d+)',
           lambda m, body, q: transactions.handle_delete(_id(m, 'b'), _id(m, 't'))),
    _route('POST', B + r'/transactions/(?P<t>\d+)/toggle-cleared',
           lambda m, body, q: transactions.handle_toggle_cleared(_id(m, 'b'), _id(m, 't'))),

    # Recurring
    _route('GET', B + r'/recurring', lambda m, body, q: recurring.handle_list(_id(m, 'b'))),
    _route('POST', B + r'/recurring', lambda m, body, q: recurring.handle_create(_id(m, 'b'), body)),
    _route('PATCH', B + r'/recurring/(?P<r>\d+)',
           lambda m, body, q: recurring.handle_update(_id(m, 'b'), _id(m, 'r'), body)),
    _route('DELETE', B + r'/recurring/(?P<r>\d+)',
           lambda m, body, q: recurring.handle_delete(_id(m, 'b'), _id(m, 'r'))),
    _route('POST', B + r'/recurring/(?P<r>\d+)/toggle',
           lambda m, body, q: recurring.handle_toggle(_id(m, 'b'), _id(m, 'r'))),
    _route('POST', r'/api/recurring/process', lambda m, body, q: recurring.handle_process(body)),

    # Payees
    _route('GET', B + r'/payees', lambda m, body, q: payees.handle_list(_id(m, 'b'))),
    _route('PATCH', B + r'/payees/(?P<p>\d+)',
           lambda m, body, q: payees.handle_update(_id(m, 'b'), _id(m, 'p'), body)),
    _route('DELETE', B + r'/payees/(?P<p>\d+)',
           lambda m, body, q: payees.handle_delete(_id(m, 'b'), _id(m, 'p'))),
]


def is_scheduled_event(event: dict) -> bool:
    """EventBridge schedule rules invoke the function with this shape."""
    return event.get('source') == 'aws.events' or event.get('detail-type') == 'Scheduled Event'


def handler(event: dict, context: Any) -> dict:
    """Lambda handler for API Gateway and scheduled events.

    Args:
        event: API Gateway event, or an EventBridge scheduled event
        context: Lambda context

    Returns:
        API Gateway response
    """
    try:
        if is_scheduled_event(event):
            created = materialize_due_recurring(date.today())
            return make_response(200, {'created': created})

        # Parse request
        http_method = event.get('requestContext', {}).get('http', {}).get('method', 'GET')
        path = event.get('rawPath', event.get('path', '/'))
        body_str = event.get('body', '{}')

        # Handle CORS preflight
        if http_method == 'OPTIONS':
            return make_response(200, '')

        try:
            body = json.loads(body_str) if body_str else {}
        except json.JSONDecodeError:
            return error_response(400, 'bad_request', 'Request body must be valid JSON')
        if not isinstance(body, dict):
            return error_response(400, 'bad_request', 'Request body must be a JSON object')

        # Query parameters
        query_params = event.get('queryStringParameters', {}) or {}

        return route_request(http_method, path, body, query_params)

    except LedgerError as e:
        logger.warning("Request rejected", extra={"error": e.error, "reason": e.message})
        return error_response(e.status_code, e.error, e.message)
    except Exception:
        logger.exception("Unhandled error")
        return error_response(500, 'internal_error', 'Internal server error')


def route_request(method: str, path: str, body: dict, query: dict) -> dict:
    """Route request to appropriate handler.

    Args:
        method: HTTP method
        path: Request path
        body: Request body
        query: Query parameters

    Returns:
        API Gateway response
    """
    # Remove /prod prefix if present (API Gateway stage)
    if path.startswith('/prod'):
        path = path[5:]
    path = path.rstrip('/') or '/'

    for route_method, pattern, route_handler in ROUTES:
        if route_method != method:
            continue
        match = pattern.match(path)
        if match:
            return route_handler(match, body, query)

    # Not found
    return error_response(404, 'not_found', f'Route not found: {method} {path}')
