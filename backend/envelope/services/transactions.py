"""Transaction commands and queries.

Plain, split and transfer transactions, payee resolution, listing, and
the collaborator batches created from parsed voice input.
"""

import uuid
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from aws_lambda_powertools import Logger

from envelope.models.entities import Account, Payee, Transaction, TransactionType
from envelope.models.errors import NotFound, ValidationFailure
from envelope.models.values import parse_date, to_cents
from envelope.services import consistency, database
from envelope.services.consistency import (
    SplitLine, normalize_splits, parse_amount, parse_type, require_account,
    require_category, require_transaction, resolve_cleared, signed_amount
)

logger = Logger(service="envelope-transactions")

PLAIN_TYPES = ('expense', 'income')


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes')
    return bool(value)


def insert_transaction(
    budget_id: int,
    account: Account,
    amount_cents: int,
    txn_type: TransactionType,
    txn_date: date,
    category_id: Optional[int] = None,
    payee_id: Optional[int] = None,
    memo: Optional[str] = None,
    cleared: bool = False,
    recurring_id: Optional[int] = None,
    batch_id: Optional[str] = None,
    transfer_pair_id: Optional[int] = None
) -> int:
    """Insert one transaction row, applying the cash auto-clear rule.

    Returns:
        New transaction ID
    """
    return database.insert('transactions', {
        'budget_id': budget_id,
        'account_id': account.id,
        'category_id': category_id,
        'payee_id': payee_id,
        'amount_cents': amount_cents,
        'type': txn_type.value,
        'date': txn_date.isoformat(),
        'cleared': 1 if resolve_cleared(account, cleared) else 0,
        'memo': memo,
        'recurring_id': recurring_id,
        'batch_id': batch_id,
        'transfer_pair_id': transfer_pair_id
    })


def _store_splits(transaction_id: int, lines: List[SplitLine]) -> None:
    database.insert_splits(transaction_id, [
        {'category_id': line.category_id, 'amount_cents': to_cents(line.amount)}
        for line in lines
    ])


def resolve_payee(budget_id: int, name: Any, category_id: Optional[int] = None,
                  update_default: bool = False) -> Optional[Payee]:
    """Find a payee by name, creating it on first use.

    A new payee takes ``category_id`` as its default category. An existing
    one only has its default replaced when ``update_default`` is set.

    Args:
        budget_id: Budget ID
        name: Payee name; blank means no payee
        category_id: Category of the transaction being recorded
        update_default: Make ``category_id`` the payee's default

    Returns:
        The payee, or None when no name was given
    """
    if name is None or not str(name).strip():
        return None
    name = str(name).strip()

    row = database.get_payee_by_name(budget_id, name)
    if row is None:
        payee_id = database.insert('payees', {
            'budget_id': budget_id, 'name': name, 'default_category_id': category_id
        })
        row = database.get_payee(payee_id)
    elif update_default and category_id is not None and row['default_category_id'] != category_id:
        database.update('payees', row['id'], {'default_category_id': category_id})
        row = database.get_payee(row['id'])

    return Payee.from_dict(row)


def _resolve_category(budget_id: int, category_id: Any) -> Optional[int]:
    if category_id is None or category_id == '':
        return None
    return require_category(budget_id, category_id).id


def _payee_and_category(budget_id: int, data: dict, category_id: Optional[int]) -> Tuple[Optional[int], Optional[int]]:
    """Resolve the payee of a plain transaction and apply its default category."""
    payee = resolve_payee(
        budget_id, data.get('payee_name'), category_id,
        update_default=_flag(data.get('update_payee_default', False))
    )
    if payee is None:
        return None, category_id
    if category_id is None and payee.default_category_id is not None:
        category_id = payee.default_category_id
    return payee.id, category_id


def record_transaction(budget_id: int, data: dict, batch_id: Optional[str] = None) -> dict:
    """Record an expense or income transaction.

    Args:
        budget_id: Budget ID
        data: account_id, type, amount (positive), date, and optionally
            category_id, payee_name, update_payee_default, memo, cleared
        batch_id: Collaborator batch the transaction belongs to

    Returns:
        The created transaction

    Raises:
        ValidationFailure: Bad type, amount or date
        NotFound: Account or category outside the budget
    """
    txn_type = parse_type(data.get('type', 'expense'), PLAIN_TYPES)
    amount = parse_amount(data.get('amount'))
    txn_date = parse_date(data.get('date') or date.today())
    account = require_account(budget_id, data.get('account_id'))
    category_id = _resolve_category(budget_id, data.get('category_id'))

    with database.transaction():
        payee_id, category_id = _payee_and_category(budget_id, data, category_id)
        transaction_id = insert_transaction(
            budget_id, account, to_cents(signed_amount(amount, txn_type)), txn_type, txn_date,
            category_id=category_id,
            payee_id=payee_id,
            memo=data.get('memo'),
            cleared=_flag(data.get('cleared', False)),
            batch_id=batch_id
        )

    return get_transaction(budget_id, transaction_id)


def record_split_transaction(budget_id: int, data: dict, batch_id: Optional[str] = None) -> dict:
    """Record a transaction divided across categories.

    Args:
        budget_id: Budget ID
        data: As for ``record_transaction`` plus ``splits``, a list of
            ``{'category_id', 'amount'}`` with positive amounts. ``amount``
            is optional; when given it must equal the split total.
        batch_id: Collaborator batch the transaction belongs to

    Returns:
        The created transaction. A request naming a single category is
        stored as a plain transaction.
    """
    txn_type = parse_type(data.get('type', 'expense'), PLAIN_TYPES)
    total = parse_amount(data['amount']) if data.get('amount') is not None else None
    txn_date = parse_date(data.get('date') or date.today())
    account = require_account(budget_id, data.get('account_id'))

    category_id, lines, parent_amount = normalize_splits(
        data.get('splits'), txn_type, total=total,
        valid_category_ids=set(database.get_category_ids(budget_id))
    )

    with database.transaction():
        payee = resolve_payee(budget_id, data.get('payee_name'), category_id)
        transaction_id = insert_transaction(
            budget_id, account, to_cents(parent_amount), txn_type, txn_date,
            category_id=category_id,
            payee_id=payee.id if payee else None,
            memo=data.get('memo'),
            cleared=_flag(data.get('cleared', False)),
            batch_id=batch_id
        )
        if lines:
            _store_splits(transaction_id, lines)

    return get_transaction(budget_id, transaction_id)


def record_transfer(budget_id: int, data: dict, batch_id: Optional[str] = None) -> dict:
    """Record a transfer between two accounts of the budget.

    Creates the outflow and inflow legs together, each pointing at the
    other. Transfers never carry a payee or category.

    Args:
        budget_id: Budget ID
        data: account_id (source), to_account_id, amount, date, memo, cleared
        batch_id: Collaborator batch the transfer belongs to

    Returns:
        ``{'from': outflow leg, 'to': inflow leg}``
    """
    amount = parse_amount(data.get('amount'))
    txn_date = parse_date(data.get('date') or date.today())
    source = require_account(budget_id, data.get('account_id'))
    target = require_account(budget_id, data.get('to_account_id'))
    consistency.validate_transfer_accounts(source, target)

    cents = to_cents(amount)
    cleared = _flag(data.get('cleared', False))
    memo = data.get('memo')

    with database.transaction():
        out_id = insert_transaction(
            budget_id, source, -cents, TransactionType.TRANSFER, txn_date,
            memo=memo, cleared=cleared, batch_id=batch_id
        )
        in_id = insert_transaction(
            budget_id, target, cents, TransactionType.TRANSFER, txn_date,
            memo=memo, cleared=cleared, batch_id=batch_id, transfer_pair_id=out_id
        )
        database.update('transactions', out_id, {'transfer_pair_id': in_id})

    return {'from': get_transaction(budget_id, out_id), 'to': get_transaction(budget_id, in_id)}


def update_transaction(budget_id: int, transaction_id: Any, data: dict) -> dict:
    """Update a plain or split transaction; transfers go to ``update_transfer``.

    Only fields present in ``data`` change. A ``splits`` list replaces the
    existing splits wholesale. Giving ``category_id`` to a split
    transaction without ``splits`` turns it back into a plain one.

    Returns:
        The updated transaction
    """
    existing = require_transaction(budget_id, transaction_id)
    if existing.is_transfer:
        return update_transfer(budget_id, existing.id, data)

    txn_type = parse_type(data['type'], PLAIN_TYPES) if 'type' in data else existing.type
    account = require_account(budget_id, data.get('account_id', existing.account_id))
    txn_date = parse_date(data['date']) if 'date' in data else existing.date
    magnitude = parse_amount(data['amount']) if data.get('amount') is not None else None

    replace_splits = True
    if isinstance(data.get('splits'), list) and data['splits']:
        category_id, lines, parent_amount = normalize_splits(
            data['splits'], txn_type, total=magnitude,
            valid_category_ids=set(database.get_category_ids(budget_id))
        )
    elif existing.is_split and 'category_id' not in data:
        if (magnitude is not None and magnitude != abs(existing.amount)) or txn_type is not existing.type:
            raise ValidationFailure('Resubmit the splits to change the amount or type of a split transaction')
        category_id, lines, parent_amount = None, [], existing.amount
        replace_splits = False
    else:
        category_id = _resolve_category(budget_id, data.get('category_id', existing.category_id))
        lines = []
        parent_amount = signed_amount(magnitude if magnitude is not None else abs(existing.amount), txn_type)

    with database.transaction():
        payee_id = existing.payee_id
        if 'payee_name' in data:
            if lines or not replace_splits:
                payee = resolve_payee(budget_id, data.get('payee_name'))
                payee_id = payee.id if payee else None
            else:
                payee_id, category_id = _payee_and_category(budget_id, data, category_id)

        database.update('transactions', existing.id, {
            'account_id': account.id,
            'category_id': category_id,
            'payee_id': payee_id,
            'amount_cents': to_cents(parent_amount),
            'type': txn_type.value,
            'date': txn_date.isoformat(),
            'memo': data.get('memo', existing.memo),
            'cleared': 1 if resolve_cleared(account, _flag(data.get('cleared', existing.cleared))) else 0,
            'updated_at': database.now_timestamp()
        })
        if replace_splits:
            database.delete_splits(existing.id)
            if lines:
                _store_splits(existing.id, lines)

    return get_transaction(budget_id, existing.id)


def update_transfer(budget_id: int, transaction_id: Any, data: dict) -> dict:
    """Update amount, date, memo or cleared on both legs of a transfer.

    Returns:
        ``{'from': outflow leg, 'to': inflow leg}``
    """
    leg = require_transaction(budget_id, transaction_id)
    if not leg.is_transfer:
        raise ValidationFailure('Transaction is not a transfer')
    if leg.transfer_pair_id is None:
        raise NotFound(f'Transfer pair of transaction {leg.id} not found')
    pair = require_transaction(budget_id, leg.transfer_pair_id)

    out_leg, in_leg = (leg, pair) if leg.amount < 0 else (pair, leg)
    magnitude = parse_amount(data['amount']) if data.get('amount') is not None else abs(out_leg.amount)
    txn_date = parse_date(data['date']) if 'date' in data else out_leg.date
    cents = to_cents(magnitude)

    with database.transaction():
        for current, amount_cents in ((out_leg, -cents), (in_leg, cents)):
            account = require_account(budget_id, current.account_id)
            database.update('transactions', current.id, {
                'amount_cents': amount_cents,
                'date': txn_date.isoformat(),
                'memo': data.get('memo', current.memo),
                'cleared': 1 if resolve_cleared(account, _flag(data.get('cleared', current.cleared))) else 0,
                'updated_at': database.now_timestamp()
            })

    return {'from': get_transaction(budget_id, out_leg.id), 'to': get_transaction(budget_id, in_leg.id)}


def delete_transaction(budget_id: int, transaction_id: Any) -> int:
    """Delete a transaction with its transfer pair and splits.

    Returns:
        Number of transaction rows removed
    """
    existing = require_transaction(budget_id, transaction_id)
    ids = [existing.id]
    if existing.transfer_pair_id is not None:
        ids.append(existing.transfer_pair_id)

    with database.transaction():
        return database.delete_transactions(ids)


def toggle_cleared(budget_id: int, transaction_id: Any) -> dict:
    """Flip the cleared flag. Cash account transactions stay cleared."""
    existing = require_transaction(budget_id, transaction_id)
    account = require_account(budget_id, existing.account_id)

    with database.transaction():
        database.update('transactions', existing.id, {
            'cleared': 1 if resolve_cleared(account, not existing.cleared) else 0
        })

    return get_transaction(budget_id, existing.id)


_PRESENT_SQL = """
    SELECT t.*,
           a.name as account_name,
           p.name as payee_name,
           c.name as category_name,
           pa.id as transfer_account_id,
           pa.name as transfer_account_name
    FROM transactions t
    JOIN accounts a ON t.account_id = a.id
    LEFT JOIN payees p ON t.payee_id = p.id
    LEFT JOIN categories c ON t.category_id = c.id
    LEFT JOIN transactions pt ON t.transfer_pair_id = pt.id
    LEFT JOIN accounts pa ON pt.account_id = pa.id
"""

_PRESENT_FIELDS = ('account_name', 'payee_name', 'category_name',
                   'transfer_account_id', 'transfer_account_name')


def _present(rows: List[dict]) -> List[dict]:
    splits = database.get_splits([row['id'] for row in rows])
    result = []
    for row in rows:
        data = Transaction.from_dict(row, splits[row['id']]).to_dict()
        for field in _PRESENT_FIELDS:
            data[field] = row[field]
        result.append(data)
    return result


def get_transaction(budget_id: int, transaction_id: Any) -> dict:
    """Get one transaction with names and splits."""
    existing = require_transaction(budget_id, transaction_id)
    rows = database.rows_to_dicts(database.fetch_all(
        _PRESENT_SQL + " WHERE t.id = ?", (existing.id,)
    ))
    return _present(rows)[0]


def list_transactions(budget_id: int, filters: Optional[Dict[str, Any]] = None) -> List[dict]:
    """List transactions newest first.

    Args:
        budget_id: Budget ID
        filters: Optional account_id, start_date, end_date, cleared,
            recurring (only materialized ones), search (payee, memo or
            category name), limit

    Returns:
        Transactions. Without an account filter each transfer appears once,
        as its outflow leg.
    """
    filters = filters or {}
    where = ["t.budget_id = ?"]
    params: List[Any] = [budget_id]

    if filters.get('account_id') not in (None, ''):
        account = require_account(budget_id, filters['account_id'])
        where.append("t.account_id = ?")
        params.append(account.id)
    else:
        where.append("NOT (t.type = 'transfer' AND t.amount_cents > 0)")

    if filters.get('start_date'):
        where.append("t.date >= ?")
        params.append(parse_date(filters['start_date'], 'start_date').isoformat())
    if filters.get('end_date'):
        where.append("t.date <= ?")
        params.append(parse_date(filters['end_date'], 'end_date').isoformat())
    if filters.get('cleared') not in (None, ''):
        where.append("t.cleared = ?")
        params.append(1 if _flag(filters['cleared']) else 0)
    if _flag(filters.get('recurring', False)):
        where.append("t.recurring_id IS NOT NULL")
    if filters.get('search'):
        pattern = f"%{filters['search']}%"
        where.append("""(
            p.name LIKE ? OR t.memo LIKE ? OR c.name LIKE ?
            OR EXISTS (
                SELECT 1 FROM split_transactions s
                JOIN categories sc ON s.category_id = sc.id
                WHERE s.transaction_id = t.id AND sc.name LIKE ?
            )
        )""")
        params.extend([pattern] * 4)

    sql = _PRESENT_SQL + " WHERE " + " AND ".join(where) + " ORDER BY t.date DESC, t.id DESC"
    if filters.get('limit') not in (None, ''):
        try:
            limit = int(filters['limit'])
        except (TypeError, ValueError):
            raise ValidationFailure('limit must be an integer')
        sql += " LIMIT ?"
        params.append(limit)

    return _present(database.rows_to_dicts(database.fetch_all(sql, tuple(params))))


def create_batch(budget_id: int, payloads: Any, today: Optional[date] = None) -> dict:
    """Create the transactions parsed from a voice transcript.

    Every entry is re-validated first; then all of them are created in one
    store transaction tagged with a new batch ID.

    Args:
        budget_id: Budget ID
        payloads: Structured transactions from the voice collaborator
        today: Date for entries that do not name one

    Returns:
        ``{'batch_id': ..., 'transactions': [...]}``
    """
    consistency.require_budget(budget_id)
    entries = consistency.validate_collaborator_transactions(payloads, budget_id, today)
    batch_id = str(uuid.uuid4())

    created = []
    with database.transaction():
        for entry in entries:
            base = {
                'account_id': entry['account_id'],
                'type': entry['type'].value,
                'amount': entry['amount'],
                'date': entry['date'],
                'memo': entry['memo'],
                'payee_name': entry['payee_name']
            }
            if entry['type'] is TransactionType.TRANSFER:
                base['to_account_id'] = entry['to_account_id']
                legs = record_transfer(budget_id, base, batch_id=batch_id)
                created.append(legs['from'])
            elif entry['splits']:
                base['splits'] = [
                    {'category_id': line.category_id, 'amount': abs(line.amount)}
                    for line in entry['splits']
                ]
                created.append(record_split_transaction(budget_id, base, batch_id=batch_id))
            else:
                base['category_id'] = entry['category_id']
                created.append(record_transaction(budget_id, base, batch_id=batch_id))

    logger.info("Created collaborator batch", extra={
        "budget_id": budget_id, "batch_id": batch_id, "count": len(created)
    })
    return {'batch_id': batch_id, 'transactions': created}


def undo_batch(budget_id: int, batch_id: str) -> int:
    """Delete every transaction of a collaborator batch.

    Transfer pairs and splits go with them.

    Returns:
        Number of transaction rows removed

    Raises:
        NotFound: No transaction of the budget carries the batch ID
    """
    rows = database.fetch_all(
        "SELECT id, transfer_pair_id FROM transactions WHERE budget_id = ? AND batch_id = ?",
        (budget_id, batch_id)
    )
    if not rows:
        raise NotFound(f'Batch {batch_id} not found')

    ids = set()
    for row in rows:
        ids.add(row['id'])
        if row['transfer_pair_id'] is not None:
            ids.add(row['transfer_pair_id'])

    with database.transaction():
        count = database.delete_transactions(sorted(ids))

    logger.info("Undid collaborator batch", extra={
        "budget_id": budget_id, "batch_id": batch_id, "count": count
    })
    return count
