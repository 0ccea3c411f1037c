"""Recurring transaction definitions and the materializer that turns them
into ledger transactions."""

from datetime import date
from typing import Any, Dict, List, Optional

from aws_lambda_powertools import Logger
from dateutil.relativedelta import relativedelta

from envelope.models.entities import Account, Frequency, RecurringTransaction
from envelope.models.errors import ValidationFailure
from envelope.models.values import parse_date, to_cents
from envelope.services import database
from envelope.services.consistency import (
    parse_amount, parse_type, require_account, require_category, require_recurring, signed_amount
)
from envelope.services.transactions import insert_transaction, resolve_payee

logger = Logger(service="envelope-recurring")

# Step per frequency. Month and year steps clamp to the target month's length.
INTERVALS: Dict[Frequency, relativedelta] = {
    Frequency.DAILY: relativedelta(days=1),
    Frequency.WEEKLY: relativedelta(weeks=1),
    Frequency.BIWEEKLY: relativedelta(weeks=2),
    Frequency.MONTHLY: relativedelta(months=1),
    Frequency.YEARLY: relativedelta(years=1),
}

RECURRING_TYPES = ('expense', 'income')


def next_occurrence(current: date, frequency: Frequency) -> date:
    """Date of the occurrence after ``current``."""
    return current + INTERVALS[frequency]


def _due_ids(as_of: date) -> List[int]:
    rows = database.fetch_all("""
        SELECT id FROM recurring_transactions
        WHERE is_active = 1
        AND next_date <= ?
        AND (end_date IS NULL OR end_date >= ?)
        ORDER BY next_date, id
    """, (as_of.isoformat(), as_of.isoformat()))
    return [row['id'] for row in rows]


def _materialize_one(recurring_id: int, as_of: date) -> int:
    """Emit every missed occurrence of one definition and advance it.

    Runs in its own store transaction.
    """
    with database.transaction():
        row = database.get_recurring(recurring_id)
        if row is None:
            return 0
        definition = RecurringTransaction.from_dict(row)
        # Another run may have advanced it since the due query
        if not definition.is_due(as_of):
            return 0

        account = Account.from_dict(database.get_account(definition.account_id))
        amount_cents = to_cents(signed_amount(definition.amount, definition.type))

        created = 0
        occurrence = definition.next_date
        while occurrence <= as_of and (definition.end_date is None or occurrence <= definition.end_date):
            insert_transaction(
                definition.budget_id, account, amount_cents, definition.type, occurrence,
                category_id=definition.category_id,
                payee_id=definition.payee_id,
                recurring_id=definition.id
            )
            created += 1
            occurrence = next_occurrence(occurrence, definition.frequency)

        still_active = definition.end_date is None or occurrence <= definition.end_date
        database.update('recurring_transactions', definition.id, {
            'next_date': occurrence.isoformat(),
            'is_active': 1 if still_active else 0
        })

    if not still_active:
        logger.info("Recurring transaction ended", extra={"recurring_id": recurring_id})
    return created


def materialize_due_recurring(as_of: Optional[date] = None) -> int:
    """Create the transactions of every due recurring definition.

    A definition is due when active, its next date has been reached and
    its end date (if any) has not passed. Occurrences missed while the
    scheduler was down are created in the same run, so running again
    straight away creates nothing. Each definition commits on its own.

    Args:
        as_of: Date treated as today

    Returns:
        Number of transactions created
    """
    as_of = as_of or date.today()
    due = _due_ids(as_of)

    total = 0
    for recurring_id in due:
        total += _materialize_one(recurring_id, as_of)

    logger.info("Processed recurring transactions", extra={
        "as_of": as_of.isoformat(), "definitions": len(due), "created": total
    })
    return total


def _present(row: dict) -> dict:
    data = RecurringTransaction.from_dict(row).to_dict()
    for field in ('account_name', 'category_name', 'payee_name'):
        data[field] = row.get(field)
    return data


_LIST_SQL = """
    SELECT r.*, a.name as account_name, c.name as category_name, p.name as payee_name
    FROM recurring_transactions r
    JOIN accounts a ON r.account_id = a.id
    LEFT JOIN categories c ON r.category_id = c.id
    LEFT JOIN payees p ON r.payee_id = p.id
"""


def list_recurring(budget_id: int) -> List[dict]:
    """Recurring definitions of a budget, soonest first."""
    rows = database.fetch_all(_LIST_SQL + " WHERE r.budget_id = ? ORDER BY r.next_date, r.id", (budget_id,))
    return [_present(dict(row)) for row in rows]


def get_recurring(budget_id: int, recurring_id: Any) -> dict:
    definition = require_recurring(budget_id, recurring_id)
    row = database.fetch_one(_LIST_SQL + " WHERE r.id = ?", (definition.id,))
    return _present(dict(row))


def _check_dates(next_date: date, end_date: Optional[date]) -> None:
    if end_date is not None and end_date <= next_date:
        raise ValidationFailure('end_date must be after next_date')


def _parse_frequency(value: Any) -> Frequency:
    try:
        return Frequency(value)
    except ValueError:
        raise ValidationFailure(f"frequency must be one of: {', '.join(f.value for f in Frequency)}")


def create_recurring(budget_id: int, data: dict) -> dict:
    """Create a recurring definition.

    Args:
        budget_id: Budget ID
        data: account_id, type (expense or income), amount (positive),
            frequency, next_date, and optionally end_date, category_id,
            payee_name

    Returns:
        The created definition
    """
    txn_type = parse_type(data.get('type'), RECURRING_TYPES)
    amount = parse_amount(data.get('amount'))
    frequency = _parse_frequency(data.get('frequency'))
    next_date = parse_date(data.get('next_date'), 'next_date')
    end_date = parse_date(data['end_date'], 'end_date') if data.get('end_date') else None
    _check_dates(next_date, end_date)
    account = require_account(budget_id, data.get('account_id'))
    category_id = require_category(budget_id, data['category_id']).id if data.get('category_id') else None

    with database.transaction():
        payee = resolve_payee(budget_id, data.get('payee_name'), category_id)
        recurring_id = database.insert('recurring_transactions', {
            'budget_id': budget_id,
            'account_id': account.id,
            'category_id': category_id,
            'payee_id': payee.id if payee else None,
            'amount_cents': to_cents(amount),
            'type': txn_type.value,
            'frequency': frequency.value,
            'next_date': next_date.isoformat(),
            'end_date': end_date.isoformat() if end_date else None,
            'is_active': 1
        })

    return get_recurring(budget_id, recurring_id)


def update_recurring(budget_id: int, recurring_id: Any, data: dict) -> dict:
    """Update the fields of a recurring definition present in ``data``."""
    existing = require_recurring(budget_id, recurring_id)

    txn_type = parse_type(data['type'], RECURRING_TYPES) if 'type' in data else existing.type
    amount = parse_amount(data['amount']) if 'amount' in data else existing.amount
    frequency = _parse_frequency(data['frequency']) if 'frequency' in data else existing.frequency
    next_date = parse_date(data['next_date'], 'next_date') if 'next_date' in data else existing.next_date
    if 'end_date' in data:
        end_date = parse_date(data['end_date'], 'end_date') if data['end_date'] else None
    else:
        end_date = existing.end_date
    _check_dates(next_date, end_date)
    account = require_account(budget_id, data.get('account_id', existing.account_id))

    category_id = existing.category_id
    if 'category_id' in data:
        category_id = require_category(budget_id, data['category_id']).id if data['category_id'] else None

    with database.transaction():
        payee_id = existing.payee_id
        if 'payee_name' in data:
            payee = resolve_payee(budget_id, data['payee_name'], category_id)
            payee_id = payee.id if payee else None

        database.update('recurring_transactions', existing.id, {
            'account_id': account.id,
            'category_id': category_id,
            'payee_id': payee_id,
            'amount_cents': to_cents(amount),
            'type': txn_type.value,
            'frequency': frequency.value,
            'next_date': next_date.isoformat(),
            'end_date': end_date.isoformat() if end_date else None
        })

    return get_recurring(budget_id, existing.id)


def delete_recurring(budget_id: int, recurring_id: Any) -> None:
    """Delete a definition. Transactions it created are kept."""
    existing = require_recurring(budget_id, recurring_id)
    with database.transaction():
        database.delete('recurring_transactions', existing.id)


def toggle_recurring(budget_id: int, recurring_id: Any) -> dict:
    """Pause or resume a recurring definition."""
    existing = require_recurring(budget_id, recurring_id)
    with database.transaction():
        database.update('recurring_transactions', existing.id, {
            'is_active': 0 if existing.is_active else 1
        })
    return get_recurring(budget_id, existing.id)
