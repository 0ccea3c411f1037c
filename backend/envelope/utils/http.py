"""API Gateway response helpers."""

import json
from typing import Any, Optional

from envelope.models.errors import ValidationFailure


def make_response(status_code: int, body: Any, content_type: str = 'application/json') -> dict:
    """Create API Gateway response.

    Args:
        status_code: HTTP status code
        body: Response body (will be JSON-encoded if dict/list)
        content_type: Content-Type header

    Returns:
        API Gateway response dict
    """
    headers = {
        'Content-Type': content_type,
        'Access-Control-Allow-Origin': '*',
        'Access-Control-Allow-Headers': 'Content-Type,Authorization',
        'Access-Control-Allow-Methods': 'GET,POST,PUT,PATCH,DELETE,OPTIONS'
    }

    if isinstance(body, (dict, list)):
        body = json.dumps(body)

    return {
        'statusCode': status_code,
        'headers': headers,
        'body': body
    }


def error_response(status_code: int, error: str, message: str) -> dict:
    """Create error response.

    Args:
        status_code: HTTP status code
        error: Error code
        message: Error message

    Returns:
        API Gateway response dict
    """
    return make_response(status_code, {'error': error, 'message': message})


def require_fields(body: dict, *fields: str) -> None:
    """Reject a request body missing any of ``fields``."""
    for field in fields:
        if body.get(field) is None:
            raise ValidationFailure(f'{field} is required')


def query_flag(query: dict, name: str) -> Optional[bool]:
    """Read a true/false query parameter; None when absent."""
    value = query.get(name)
    if value is None or value == '':
        return None
    return value.lower() in ('1', 'true', 'yes')
