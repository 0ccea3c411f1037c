"""Account balance calculation service."""

from decimal import Decimal
from typing import List

from envelope.models.entities import Account
from envelope.models.values import from_cents, money_json
from envelope.services import database


def _transaction_total(account_id: int, cleared_only: bool = False) -> Decimal:
    sql = "SELECT COALESCE(SUM(amount_cents), 0) as total FROM transactions WHERE account_id = ?"
    if cleared_only:
        sql += " AND cleared = 1"
    row = database.fetch_one(sql, (account_id,))
    return from_cents(row['total'])


def get_balance(account: Account) -> Decimal:
    """Current balance: starting balance plus every transaction, all time.

    Args:
        account: The account

    Returns:
        Balance including uncleared transactions
    """
    return account.starting_balance + _transaction_total(account.id)


def get_cleared_balance(account: Account) -> Decimal:
    """Balance counting only cleared transactions."""
    return account.starting_balance + _transaction_total(account.id, cleared_only=True)


def get_account_balances(budget_id: int, include_closed: bool = True) -> List[dict]:
    """Get every account of a budget with both balances, in display order.

    Args:
        budget_id: Budget ID
        include_closed: Whether closed accounts are listed

    Returns:
        List of account dicts with balance and cleared_balance
    """
    sql = """
        SELECT
            a.id,
            COALESCE(SUM(t.amount_cents), 0) as total,
            COALESCE(SUM(CASE WHEN t.cleared = 1 THEN t.amount_cents ELSE 0 END), 0) as cleared_total
        FROM accounts a
        LEFT JOIN transactions t ON t.account_id = a.id
        WHERE a.budget_id = ?
        GROUP BY a.id
    """
    totals = {row['id']: row for row in database.fetch_all(sql, (budget_id,))}

    result = []
    for row in database.get_accounts(budget_id, include_closed=include_closed):
        account = Account.from_dict(row)
        sums = totals.get(account.id)
        balance = account.starting_balance + from_cents(sums['total'] if sums else 0)
        cleared = account.starting_balance + from_cents(sums['cleared_total'] if sums else 0)

        data = account.to_dict()
        data['balance'] = money_json(balance)
        data['cleared_balance'] = money_json(cleared)
        result.append(data)

    return result
