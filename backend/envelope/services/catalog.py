"""Catalog commands: budgets, accounts, category groups, categories, payees."""

from typing import Any, List, Optional

from aws_lambda_powertools import Logger

from envelope.models.entities import Account, AccountType, Budget, Category, CategoryGroup
from envelope.models.errors import ValidationFailure
from envelope.models.values import ZERO, YearMonth, money_json, to_cents, to_money
from envelope.services import balances, database
from envelope.services.consistency import (
    require_account, require_budget, require_category, require_group, require_payee, validate_reorder
)

logger = Logger(service="envelope-catalog")


def _name(value: Any, field: str = 'name') -> str:
    if value is None or not str(value).strip():
        raise ValidationFailure(f'{field} is required')
    return str(value).strip()


def _next_sort_order(sql: str, params: tuple) -> int:
    row = database.fetch_one(sql, params)
    return (row['max_order'] if row and row['max_order'] is not None else -1) + 1


def _apply_order(table: str, ids: List[int]) -> None:
    with database.transaction():
        for index, row_id in enumerate(ids):
            database.update(table, row_id, {'sort_order': index})


# Budgets

def _start_month(value: Any) -> Optional[str]:
    return YearMonth.parse(value).key if value else None


def _income(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    amount = to_money(value, 'default_monthly_income')
    if amount < ZERO:
        raise ValidationFailure('default_monthly_income cannot be negative')
    return to_cents(amount)


def list_budgets() -> List[dict]:
    rows = database.fetch_all("SELECT * FROM budgets ORDER BY name, id")
    return [Budget.from_dict(dict(row)).to_dict() for row in rows]


def get_budget(budget_id: int) -> dict:
    return Budget.from_dict(require_budget(budget_id)).to_dict()


def create_budget(data: dict) -> dict:
    """Create a budget.

    Args:
        data: name, and optionally start_month (YYYY-MM) and
            default_monthly_income

    Returns:
        The created budget
    """
    values = {
        'name': _name(data.get('name')),
        'start_month': _start_month(data.get('start_month')),
        'default_monthly_income_cents': _income(data.get('default_monthly_income'))
    }
    with database.transaction():
        budget_id = database.insert('budgets', values)

    logger.info("Created budget", extra={"budget_id": budget_id})
    return get_budget(budget_id)


def update_budget(budget_id: int, data: dict) -> dict:
    require_budget(budget_id)
    values = {}
    if 'name' in data:
        values['name'] = _name(data['name'])
    if 'start_month' in data:
        values['start_month'] = _start_month(data['start_month'])
    if 'default_monthly_income' in data:
        values['default_monthly_income_cents'] = _income(data['default_monthly_income'])

    with database.transaction():
        database.update('budgets', budget_id, values)
    return get_budget(budget_id)


def delete_budget(budget_id: int) -> None:
    """Delete a budget and everything it owns."""
    require_budget(budget_id)
    with database.transaction():
        database.delete('budgets', budget_id)
    logger.info("Deleted budget", extra={"budget_id": budget_id})


# Accounts

def _account_type(value: Any) -> AccountType:
    try:
        return AccountType(value)
    except ValueError:
        raise ValidationFailure(f"type must be one of: {', '.join(t.value for t in AccountType)}")


def create_account(budget_id: int, data: dict) -> dict:
    """Create an account at the end of the budget's account list.

    Args:
        budget_id: Budget ID
        data: name, type, and optionally starting_balance (signed)

    Returns:
        The created account with its balances
    """
    require_budget(budget_id)
    name = _name(data.get('name'))
    account_type = _account_type(data.get('type'))
    starting = to_money(data.get('starting_balance', 0), 'starting_balance')

    with database.transaction():
        account_id = database.insert('accounts', {
            'budget_id': budget_id,
            'name': name,
            'type': account_type.value,
            'starting_balance_cents': to_cents(starting),
            'sort_order': _next_sort_order(
                "SELECT MAX(sort_order) as max_order FROM accounts WHERE budget_id = ?", (budget_id,)
            )
        })

    return _account_with_balances(require_account(budget_id, account_id))


def _account_with_balances(account: Account) -> dict:
    data = account.to_dict()
    data['balance'] = money_json(balances.get_balance(account))
    data['cleared_balance'] = money_json(balances.get_cleared_balance(account))
    return data


def update_account(budget_id: int, account_id: Any, data: dict) -> dict:
    """Rename, retype, close or reopen an account, or fix its starting balance."""
    account = require_account(budget_id, account_id)
    values = {}
    if 'name' in data:
        values['name'] = _name(data['name'])
    if 'type' in data:
        values['type'] = _account_type(data['type']).value
    if 'starting_balance' in data:
        values['starting_balance_cents'] = to_cents(data['starting_balance'], 'starting_balance')
    if 'is_closed' in data:
        values['is_closed'] = 1 if data['is_closed'] else 0

    with database.transaction():
        database.update('accounts', account.id, values)
    return _account_with_balances(require_account(budget_id, account.id))


def delete_account(budget_id: int, account_id: Any) -> None:
    """Delete an account and its transactions.

    The other leg of every transfer touching the account goes too.
    """
    account = require_account(budget_id, account_id)
    with database.transaction():
        database.execute("""
            DELETE FROM transactions WHERE id IN (
                SELECT transfer_pair_id FROM transactions
                WHERE account_id = ? AND transfer_pair_id IS NOT NULL
            )
        """, (account.id,))
        database.delete('accounts', account.id)
    logger.info("Deleted account", extra={"budget_id": budget_id, "account_id": account.id})


def reorder_accounts(budget_id: int, ids: Any) -> List[int]:
    require_budget(budget_id)
    owned = [a['id'] for a in database.get_accounts(budget_id)]
    ordered = validate_reorder(ids, owned, 'accounts')
    _apply_order('accounts', ordered)
    return ordered


# Category groups

def create_group(budget_id: int, data: dict) -> dict:
    require_budget(budget_id)
    name = _name(data.get('name'))
    with database.transaction():
        group_id = database.insert('category_groups', {
            'budget_id': budget_id,
            'name': name,
            'sort_order': _next_sort_order(
                "SELECT MAX(sort_order) as max_order FROM category_groups WHERE budget_id = ?", (budget_id,)
            )
        })
    return CategoryGroup.from_dict(require_group(budget_id, group_id)).to_dict()


def rename_group(budget_id: int, group_id: Any, data: dict) -> dict:
    group = require_group(budget_id, group_id)
    with database.transaction():
        database.update('category_groups', group['id'], {'name': _name(data.get('name'))})
    return CategoryGroup.from_dict(require_group(budget_id, group['id'])).to_dict()


def delete_group(budget_id: int, group_id: Any) -> None:
    """Delete a group with its categories.

    Their transactions stay, uncategorized.
    """
    group = require_group(budget_id, group_id)
    with database.transaction():
        database.delete('category_groups', group['id'])


def reorder_groups(budget_id: int, ids: Any) -> List[int]:
    require_budget(budget_id)
    owned = [g['id'] for g in database.get_category_groups(budget_id)]
    ordered = validate_reorder(ids, owned, 'category groups')
    _apply_order('category_groups', ordered)
    return ordered


# Categories

def _default_amount(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    amount = to_money(value, 'default_amount')
    if amount < ZERO:
        raise ValidationFailure('default_amount cannot be negative')
    return to_cents(amount)


def create_category(budget_id: int, data: dict) -> dict:
    """Create a category at the end of its group.

    Args:
        budget_id: Budget ID
        data: group_id, name, and optionally icon and default_amount

    Returns:
        The created category
    """
    group = require_group(budget_id, data.get('group_id'))
    name = _name(data.get('name'))
    default_amount = _default_amount(data.get('default_amount'))

    with database.transaction():
        category_id = database.insert('categories', {
            'group_id': group['id'],
            'name': name,
            'icon': data.get('icon'),
            'default_amount_cents': default_amount,
            'sort_order': _next_sort_order(
                "SELECT MAX(sort_order) as max_order FROM categories WHERE group_id = ?", (group['id'],)
            )
        })

    return require_category(budget_id, category_id).to_dict()


def update_category(budget_id: int, category_id: Any, data: dict) -> dict:
    """Update a category. ``group_id`` moves it to another group of the budget."""
    category = require_category(budget_id, category_id)
    values = {}
    if 'name' in data:
        values['name'] = _name(data['name'])
    if 'icon' in data:
        values['icon'] = data['icon']
    if 'default_amount' in data:
        values['default_amount_cents'] = _default_amount(data['default_amount'])
    if 'is_hidden' in data:
        values['is_hidden'] = 1 if data['is_hidden'] else 0
    if 'group_id' in data:
        group = require_group(budget_id, data['group_id'])
        if group['id'] != category.group_id:
            values['group_id'] = group['id']
            values['sort_order'] = _next_sort_order(
                "SELECT MAX(sort_order) as max_order FROM categories WHERE group_id = ?", (group['id'],)
            )

    with database.transaction():
        database.update('categories', category.id, values)
    return require_category(budget_id, category.id).to_dict()


def delete_category(budget_id: int, category_id: Any) -> None:
    """Delete a category and its allocations.

    Transactions and split shares that used it become uncategorized.
    """
    category = require_category(budget_id, category_id)
    with database.transaction():
        database.delete('categories', category.id)


def reorder_categories(budget_id: int, group_id: Any, ids: Any) -> List[int]:
    """Reorder categories within one group of the budget."""
    group = require_group(budget_id, group_id)
    owned = [row['id'] for row in database.fetch_all(
        "SELECT id FROM categories WHERE group_id = ?", (group['id'],)
    )]
    ordered = validate_reorder(ids, owned, 'categories')
    _apply_order('categories', ordered)
    return ordered


# Payees

def list_payees(budget_id: int) -> List[dict]:
    """Payees with their default category and transaction count."""
    require_budget(budget_id)
    return database.get_payees(budget_id)


def update_payee(budget_id: int, payee_id: Any, data: dict) -> dict:
    payee = require_payee(budget_id, payee_id)
    values = {}
    if 'name' in data:
        name = _name(data['name'])
        existing = database.get_payee_by_name(budget_id, name)
        if existing and existing['id'] != payee.id:
            raise ValidationFailure(f'A payee named {name} already exists')
        values['name'] = name
    if 'default_category_id' in data:
        category_id = data['default_category_id']
        values['default_category_id'] = require_category(budget_id, category_id).id if category_id else None

    with database.transaction():
        database.update('payees', payee.id, values)
    return require_payee(budget_id, payee.id).to_dict()


def delete_payee(budget_id: int, payee_id: Any) -> None:
    """Delete a payee no transaction refers to."""
    payee = require_payee(budget_id, payee_id)
    row = database.fetch_one(
        "SELECT COUNT(*) as count FROM transactions WHERE payee_id = ?", (payee.id,)
    )
    if row['count'] > 0:
        raise ValidationFailure('Cannot delete a payee that has transactions')

    with database.transaction():
        database.delete('payees', payee.id)
