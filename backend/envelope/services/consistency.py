"""Consistency rules applied on every ledger write path.

Sign convention, split sums, single-split collapse, transfer legs, cash
auto-clear, reorder ownership and budget scoping all live here, together
with the re-validation of transaction payloads produced by the voice
collaborator, which is never trusted as-is.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from envelope.models.entities import (
    Account, Category, Payee, RecurringTransaction, Transaction, TransactionType
)
from envelope.models.errors import Forbidden, NotFound, ValidationFailure
from envelope.models.values import ZERO, parse_date, to_money
from envelope.services import database

# Transaction types the voice collaborator may propose
COLLABORATOR_TYPES = ('expense', 'income', 'transfer')


@dataclass
class SplitLine:
    """A validated split share. ``amount`` is signed."""
    category_id: Optional[int]
    amount: Decimal


def parse_amount(value: Any, field: str = 'amount') -> Decimal:
    """Parse a user-entered magnitude, which must be positive.

    Raises:
        ValidationFailure: If malformed or not greater than zero
    """
    amount = to_money(value, field)
    if amount <= ZERO:
        raise ValidationFailure(f'{field} must be greater than zero')
    return amount


def parse_type(value: Any, allowed: Sequence[str] = COLLABORATOR_TYPES) -> TransactionType:
    """Parse a transaction type restricted to ``allowed`` values."""
    if value not in allowed:
        raise ValidationFailure(f"type must be one of: {', '.join(allowed)}")
    return TransactionType(value)


def signed_amount(magnitude: Decimal, txn_type: TransactionType) -> Decimal:
    """Apply the sign convention: expenses negative, income positive.

    Transfers are signed per leg by the caller.
    """
    if txn_type is TransactionType.EXPENSE:
        return -abs(magnitude)
    return abs(magnitude)


def resolve_cleared(account: Account, requested: bool) -> bool:
    """Cash has no reconciliation step, so it is always cleared."""
    if account.is_cash:
        return True
    return bool(requested)


def normalize_splits(
    raw_splits: Iterable[dict],
    txn_type: TransactionType,
    total: Optional[Decimal] = None,
    valid_category_ids: Optional[Set[int]] = None,
    lenient: bool = False
) -> Tuple[Optional[int], List[SplitLine], Decimal]:
    """Validate split lines and decide how the parent is stored.

    Lines sharing a category are merged. When one distinct category remains,
    the transaction collapses to a plain one with that category.

    Args:
        raw_splits: Dicts with ``category_id`` and positive ``amount``
        txn_type: Parent type; gives every split its sign
        total: Caller-supplied parent magnitude, checked against the sum
        valid_category_ids: Categories the budget allows; None skips the check
        lenient: Collaborator mode. Unknown categories become unassigned and
            non-positive lines are dropped instead of rejected.

    Returns:
        (parent category_id, split lines, signed parent amount). The split
        list is empty when the request collapsed.

    Raises:
        ValidationFailure: Bad amounts or line shapes, no lines, or a sum
            mismatch
        NotFound: Unknown category when not lenient
    """
    if txn_type is TransactionType.TRANSFER:
        raise ValidationFailure('Transfers cannot be split')
    if raw_splits is not None and not isinstance(raw_splits, list):
        raise ValidationFailure('splits must be a list')

    merged: Dict[Optional[int], Decimal] = {}
    for index, raw in enumerate(raw_splits or []):
        if not isinstance(raw, dict):
            raise ValidationFailure(f'splits[{index}] must be an object')
        category_id = raw.get('category_id')
        if lenient:
            try:
                magnitude = to_money(raw.get('amount', 0), f'splits[{index}].amount')
            except ValidationFailure:
                continue
            if magnitude <= ZERO:
                continue
        else:
            magnitude = parse_amount(raw.get('amount'), f'splits[{index}].amount')

        if category_id is not None:
            try:
                category_id = _as_id(category_id, f'splits[{index}].category_id')
            except ValidationFailure:
                if not lenient:
                    raise
                category_id = None
        if category_id is not None:
            if valid_category_ids is not None and category_id not in valid_category_ids:
                if not lenient:
                    raise NotFound(f'Category {category_id} not found')
                category_id = None

        merged[category_id] = merged.get(category_id, ZERO) + magnitude

    if not merged:
        raise ValidationFailure('A split transaction needs at least one split with a positive amount')

    split_total = sum(merged.values(), ZERO)
    if total is not None and split_total != total:
        raise ValidationFailure(
            f'Split amounts total {split_total} but the transaction amount is {total}'
        )

    parent_amount = signed_amount(split_total, txn_type)

    if len(merged) == 1:
        only_category = next(iter(merged))
        return only_category, [], parent_amount

    lines = [SplitLine(category_id=cid, amount=signed_amount(m, txn_type)) for cid, m in merged.items()]
    return None, lines, parent_amount


def validate_reorder(requested_ids: Any, owned_ids: Iterable[int], what: str) -> List[int]:
    """Check a reorder request only names records the parent owns.

    Raises:
        ValidationFailure: Malformed or duplicated ids
        Forbidden: Any id the parent does not own (nothing is reordered)
    """
    if not isinstance(requested_ids, list) or not requested_ids:
        raise ValidationFailure('ids must be a non-empty list')
    try:
        ids = [int(i) for i in requested_ids]
    except (TypeError, ValueError):
        raise ValidationFailure('ids must be integers')
    if len(set(ids)) != len(ids):
        raise ValidationFailure('ids must not contain duplicates')

    owned = set(owned_ids)
    foreign = [i for i in ids if i not in owned]
    if foreign:
        raise Forbidden(f'Cannot reorder {what} not owned by this budget: {foreign}')
    return ids


def validate_transfer_accounts(from_account: Account, to_account: Account) -> None:
    """Source and destination of a transfer must differ."""
    if from_account.id == to_account.id:
        raise ValidationFailure('Source and destination accounts must be different')


# Budget scope: every referenced id must belong to the budget of the call

def require_budget(budget_id: int) -> dict:
    budget = database.get_budget(budget_id)
    if not budget:
        raise NotFound(f'Budget {budget_id} not found')
    return budget


def require_account(budget_id: int, account_id: Any) -> Account:
    row = database.get_account(_as_id(account_id, 'account_id'))
    if not row or row['budget_id'] != budget_id:
        raise NotFound(f'Account {account_id} not found')
    return Account.from_dict(row)


def require_category(budget_id: int, category_id: Any) -> Category:
    row = database.get_category(_as_id(category_id, 'category_id'))
    if not row or row['budget_id'] != budget_id:
        raise NotFound(f'Category {category_id} not found')
    return Category.from_dict(row)


def require_group(budget_id: int, group_id: Any) -> dict:
    row = database.get_category_group(_as_id(group_id, 'group_id'))
    if not row or row['budget_id'] != budget_id:
        raise NotFound(f'Category group {group_id} not found')
    return row


def require_payee(budget_id: int, payee_id: Any) -> Payee:
    row = database.get_payee(_as_id(payee_id, 'payee_id'))
    if not row or row['budget_id'] != budget_id:
        raise NotFound(f'Payee {payee_id} not found')
    return Payee.from_dict(row)


def require_transaction(budget_id: int, transaction_id: Any) -> Transaction:
    row = database.get_transaction_row(_as_id(transaction_id, 'transaction_id'))
    if not row or row['budget_id'] != budget_id:
        raise NotFound(f'Transaction {transaction_id} not found')
    splits = database.get_splits([row['id']])[row['id']]
    return Transaction.from_dict(row, splits)


def require_recurring(budget_id: int, recurring_id: Any) -> RecurringTransaction:
    row = database.get_recurring(_as_id(recurring_id, 'recurring_id'))
    if not row or row['budget_id'] != budget_id:
        raise NotFound(f'Recurring transaction {recurring_id} not found')
    return RecurringTransaction.from_dict(row)


def _as_id(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationFailure(f'{field} must be an integer')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailure(f'{field} must be an integer')


def _known_id(value: Any, known: Set[int]) -> Optional[int]:
    """The id when it names one of ``known``, else None."""
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        return None
    try:
        value = int(value)
    except ValueError:
        return None
    return value if value in known else None


def validate_collaborator_transactions(
    payloads: Any,
    budget_id: int,
    today: Optional[date] = None
) -> List[dict]:
    """Re-validate structured transactions proposed by the voice collaborator.

    Every field is checked against the budget's real data. Any failure
    rejects the whole batch.

    Args:
        payloads: List of dicts as produced by the collaborator
        budget_id: Budget the transactions are for
        today: Default date for entries without one

    Returns:
        Normalized entries ready for the transaction service

    Raises:
        ValidationFailure: With the reason for the first bad entry
    """
    if not isinstance(payloads, list) or not payloads:
        raise ValidationFailure('No transactions could be parsed.')

    today = today or date.today()
    open_accounts = {a['id'] for a in database.get_accounts(budget_id, include_closed=False)}
    visible_categories = {c['id'] for c in database.get_categories(budget_id, include_hidden=False)}

    entries = []
    for tx in payloads:
        if not isinstance(tx, dict):
            raise ValidationFailure('Invalid transaction detected.')

        txn_type = tx.get('type')
        if txn_type not in COLLABORATOR_TYPES:
            raise ValidationFailure('Invalid transaction type detected.')
        txn_type = TransactionType(txn_type)

        try:
            amount = parse_amount(tx.get('amount'))
        except ValidationFailure:
            raise ValidationFailure('Invalid amount detected.')

        account_id = _known_id(tx.get('account_id'), open_accounts)
        if account_id is None:
            raise ValidationFailure('Could not determine the account.')

        entry = {
            'type': txn_type,
            'amount': amount,
            'payee_name': tx.get('payee_name') or None,
            'account_id': account_id,
            'date': parse_date(tx['date']) if tx.get('date') else today,
            'memo': tx.get('memo'),
            'to_account_id': None,
            'category_id': None,
            'splits': []
        }

        if txn_type is TransactionType.TRANSFER:
            to_account_id = _known_id(tx.get('to_account_id'), open_accounts)
            if to_account_id is None:
                raise ValidationFailure('Could not determine the destination account.')
            if to_account_id == account_id:
                raise ValidationFailure('Source and destination accounts must be different.')
            entry['to_account_id'] = to_account_id
            entry['payee_name'] = None
        elif isinstance(tx.get('splits'), list) and len(tx['splits']) > 1:
            category_id, lines, _ = normalize_splits(
                tx['splits'], txn_type,
                total=amount,
                valid_category_ids=visible_categories,
                lenient=True
            )
            entry['category_id'] = category_id
            entry['splits'] = lines
        else:
            entry['category_id'] = _known_id(tx.get('category_id'), visible_categories)

        entries.append(entry)

    return entries
