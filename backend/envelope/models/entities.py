"""Data model entities."""

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from envelope.models.values import ZERO, from_cents, money_json, parse_date


class AccountType(Enum):
    """Account types."""
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "credit_card"
    CASH = "cash"


class TransactionType(Enum):
    """Transaction types."""
    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"


class Frequency(Enum):
    """Recurring transaction frequencies."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


def _as_date(value) -> Optional[date]:
    if value is None or value == '':
        return None
    return parse_date(value)


@dataclass
class Budget:
    """A budget owning accounts, categories and transactions."""
    id: int
    name: str
    start_month: Optional[str] = None
    default_monthly_income: Decimal = ZERO
    created_at: Optional[str] = None

    @classmethod
    def from_dict(cls, d: dict) -> 'Budget':
        """Create from database row dict."""
        return cls(
            id=d['id'],
            name=d['name'],
            start_month=d.get('start_month'),
            default_monthly_income=from_cents(d.get('default_monthly_income_cents')),
            created_at=d.get('created_at')
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'start_month': self.start_month,
            'default_monthly_income': money_json(self.default_monthly_income),
            'created_at': self.created_at
        }


@dataclass
class Account:
    """Bank, card or cash account."""
    id: int
    budget_id: int
    name: str
    type: AccountType
    starting_balance: Decimal
    sort_order: int = 0
    is_closed: bool = False
    created_at: Optional[str] = None

    @property
    def is_cash(self) -> bool:
        return self.type is AccountType.CASH

    @classmethod
    def from_dict(cls, d: dict) -> 'Account':
        """Create from database row dict."""
        return cls(
            id=d['id'],
            budget_id=d['budget_id'],
            name=d['name'],
            type=AccountType(d['type']),
            starting_balance=from_cents(d.get('starting_balance_cents')),
            sort_order=d.get('sort_order', 0),
            is_closed=bool(d.get('is_closed', 0)),
            created_at=d.get('created_at')
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type.value,
            'starting_balance': money_json(self.starting_balance),
            'sort_order': self.sort_order,
            'is_closed': self.is_closed
        }


@dataclass
class CategoryGroup:
    """Ordered group of categories."""
    id: int
    budget_id: int
    name: str
    sort_order: int = 0

    @classmethod
    def from_dict(cls, d: dict) -> 'CategoryGroup':
        return cls(id=d['id'], budget_id=d['budget_id'], name=d['name'],
                   sort_order=d.get('sort_order', 0))

    def to_dict(self) -> dict:
        return {'id': self.id, 'name': self.name, 'sort_order': self.sort_order}


@dataclass
class Category:
    """Spending category (an envelope)."""
    id: int
    group_id: int
    name: str
    icon: Optional[str] = None
    default_amount: Decimal = ZERO
    projections: Dict[int, Decimal] = field(default_factory=dict)
    sort_order: int = 0
    is_hidden: bool = False

    @classmethod
    def from_dict(cls, d: dict) -> 'Category':
        """Create from database row dict.

        Projections are stored as JSON ``{"1": cents, "2": cents, "3": cents}``.
        """
        raw = d.get('projections')
        projections: Dict[int, Decimal] = {}
        if raw:
            for slot, cents in json.loads(raw).items():
                if cents is not None:
                    projections[int(slot)] = from_cents(cents)
        return cls(
            id=d['id'],
            group_id=d['group_id'],
            name=d['name'],
            icon=d.get('icon'),
            default_amount=from_cents(d.get('default_amount_cents')),
            projections=projections,
            sort_order=d.get('sort_order', 0),
            is_hidden=bool(d.get('is_hidden', 0))
        )

    def projection(self, index: int) -> Decimal:
        """Projection slot value, falling back to the default amount."""
        return self.projections.get(index, self.default_amount)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'group_id': self.group_id,
            'name': self.name,
            'icon': self.icon,
            'default_amount': money_json(self.default_amount),
            'projections': {str(k): money_json(v) for k, v in sorted(self.projections.items())},
            'sort_order': self.sort_order,
            'is_hidden': self.is_hidden
        }


@dataclass
class Payee:
    """Who a transaction was paid to or received from."""
    id: int
    budget_id: int
    name: str
    default_category_id: Optional[int] = None

    @classmethod
    def from_dict(cls, d: dict) -> 'Payee':
        return cls(id=d['id'], budget_id=d['budget_id'], name=d['name'],
                   default_category_id=d.get('default_category_id'))

    def to_dict(self) -> dict:
        return {'id': self.id, 'name': self.name, 'default_category_id': self.default_category_id}


@dataclass
class SplitTransaction:
    """One category's share of a split transaction."""
    id: Optional[int]
    transaction_id: Optional[int]
    category_id: Optional[int]
    amount: Decimal

    @classmethod
    def from_dict(cls, d: dict) -> 'SplitTransaction':
        return cls(
            id=d.get('id'),
            transaction_id=d.get('transaction_id'),
            category_id=d.get('category_id'),
            amount=from_cents(d['amount_cents'])
        )

    def to_dict(self) -> dict:
        return {'category_id': self.category_id, 'amount': money_json(self.amount)}


@dataclass
class Transaction:
    """Ledger transaction. Negative amounts are outflows."""
    id: Optional[int]
    budget_id: int
    account_id: int
    amount: Decimal
    type: TransactionType
    date: date
    cleared: bool = False
    category_id: Optional[int] = None
    payee_id: Optional[int] = None
    memo: Optional[str] = None
    transfer_pair_id: Optional[int] = None
    recurring_id: Optional[int] = None
    batch_id: Optional[str] = None
    splits: List[SplitTransaction] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_split(self) -> bool:
        return len(self.splits) > 0

    @property
    def is_transfer(self) -> bool:
        return self.type is TransactionType.TRANSFER

    @classmethod
    def from_dict(cls, d: dict, splits: Optional[List[dict]] = None) -> 'Transaction':
        """Create from database row dict."""
        return cls(
            id=d.get('id'),
            budget_id=d['budget_id'],
            account_id=d['account_id'],
            amount=from_cents(d['amount_cents']),
            type=TransactionType(d['type']),
            date=parse_date(d['date']),
            cleared=bool(d.get('cleared', 0)),
            category_id=d.get('category_id'),
            payee_id=d.get('payee_id'),
            memo=d.get('memo'),
            transfer_pair_id=d.get('transfer_pair_id'),
            recurring_id=d.get('recurring_id'),
            batch_id=d.get('batch_id'),
            splits=[SplitTransaction.from_dict(s) for s in (splits or [])],
            created_at=d.get('created_at'),
            updated_at=d.get('updated_at')
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'account_id': self.account_id,
            'category_id': self.category_id,
            'payee_id': self.payee_id,
            'amount': money_json(self.amount),
            'type': self.type.value,
            'date': self.date.isoformat(),
            'cleared': self.cleared,
            'memo': self.memo,
            'transfer_pair_id': self.transfer_pair_id,
            'recurring_id': self.recurring_id,
            'batch_id': self.batch_id,
            'is_split': self.is_split,
            'splits': [s.to_dict() for s in self.splits]
        }


@dataclass
class RecurringTransaction:
    """Template that materializes a transaction on a schedule."""
    id: int
    budget_id: int
    account_id: int
    amount: Decimal  # positive magnitude; sign comes from type
    type: TransactionType
    frequency: Frequency
    next_date: date
    end_date: Optional[date] = None
    is_active: bool = True
    category_id: Optional[int] = None
    payee_id: Optional[int] = None

    def is_due(self, today: date) -> bool:
        """Active, reached, and not past its end date."""
        return (
            self.is_active
            and self.next_date <= today
            and (self.end_date is None or self.end_date >= today)
        )

    @classmethod
    def from_dict(cls, d: dict) -> 'RecurringTransaction':
        """Create from database row dict."""
        return cls(
            id=d['id'],
            budget_id=d['budget_id'],
            account_id=d['account_id'],
            amount=from_cents(d['amount_cents']),
            type=TransactionType(d['type']),
            frequency=Frequency(d['frequency']),
            next_date=parse_date(d['next_date']),
            end_date=_as_date(d.get('end_date')),
            is_active=bool(d.get('is_active', 1)),
            category_id=d.get('category_id'),
            payee_id=d.get('payee_id')
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'account_id': self.account_id,
            'category_id': self.category_id,
            'payee_id': self.payee_id,
            'amount': money_json(self.amount),
            'type': self.type.value,
            'frequency': self.frequency.value,
            'next_date': self.next_date.isoformat(),
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'is_active': self.is_active
        }


@dataclass
class CategoryMonth:
    """Budgeted, spent and available for one category in one month."""
    category_id: int
    budgeted: Decimal
    spent: Decimal

    @property
    def available(self) -> Decimal:
        return self.budgeted - self.spent


@dataclass
class ReadyToAssign:
    """Carry-forward breakdown for a month."""
    month: str
    total_starting_balances: Decimal
    prior_income: Decimal
    prior_budgeted: Decimal
    this_month_income: Decimal
    total_budgeted: Decimal
    earliest_month: str

    @property
    def carried_forward(self) -> Decimal:
        # Expenses come out of envelopes, so only unassigned money carries forward
        return self.total_starting_balances + self.prior_income - self.prior_budgeted

    @property
    def to_budget(self) -> Decimal:
        return self.carried_forward + self.this_month_income - self.total_budgeted

    @property
    def is_first_month(self) -> bool:
        return self.prior_income == 0 and self.prior_budgeted == 0

    def to_dict(self) -> dict:
        return {
            'month': self.month,
            'to_budget': money_json(self.to_budget),
            'carried_forward': money_json(self.carried_forward),
            'this_month_income': money_json(self.this_month_income),
            'budgeted': money_json(self.total_budgeted),
            'is_first_month': self.is_first_month,
            'earliest_month': self.earliest_month
        }
