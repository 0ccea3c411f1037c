"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

# Add backend directory to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Mock AWS dependencies before any imports
sys.modules['boto3'] = MagicMock()
sys.modules['botocore'] = MagicMock()
sys.modules['botocore.exceptions'] = MagicMock()

# Mock AWS Lambda Powertools Logger
mock_logger = MagicMock()
mock_powertools = MagicMock()
mock_powertools.Logger.return_value = mock_logger
sys.modules['aws_lambda_powertools'] = mock_powertools

# Create a mock S3 module; persistence stays local during tests
mock_s3 = MagicMock()
mock_s3.is_enabled.return_value = False
mock_s3.get_bucket_name.return_value = 'test-bucket'
mock_s3.get_temp_path.return_value = '/tmp/test.db'
sys.modules['envelope.utils.s3'] = mock_s3


@pytest.fixture(autouse=True)
def ledger_db(monkeypatch):
    """Fresh in-memory ledger database for every test."""
    from envelope.services import database

    monkeypatch.setenv('LEDGER_DB_PATH', ':memory:')
    database.close_db()
    conn = database.get_connection()
    yield conn
    database.close_db()


@pytest.fixture
def ledger():
    """A budget with accounts, two category groups and three categories.

    Accounts: checking (starting 1000.00), cash (starting 100.00).
    Groups: Bills (Rent), Everyday (Groceries, Dining).
    """
    from envelope.services import catalog

    budget = catalog.create_budget({'name': 'Household', 'start_month': '2024-01'})
    budget_id = budget['id']

    checking = catalog.create_account(budget_id, {'name': 'Checking', 'type': 'checking', 'starting_balance': 1000})
    cash = catalog.create_account(budget_id, {'name': 'Wallet', 'type': 'cash', 'starting_balance': 100})

    bills = catalog.create_group(budget_id, {'name': 'Bills'})
    everyday = catalog.create_group(budget_id, {'name': 'Everyday'})

    rent = catalog.create_category(budget_id, {'group_id': bills['id'], 'name': 'Rent'})
    groceries = catalog.create_category(budget_id, {'group_id': everyday['id'], 'name': 'Groceries'})
    dining = catalog.create_category(budget_id, {'group_id': everyday['id'], 'name': 'Dining'})

    return SimpleNamespace(
        budget_id=budget_id,
        checking=checking['id'],
        cash=cash['id'],
        bills=bills['id'],
        everyday=everyday['id'],
        rent=rent['id'],
        groceries=groceries['id'],
        dining=dining['id'],
    )


@pytest.fixture
def other_ledger():
    """A second budget, for cross-budget checks."""
    from envelope.services import catalog

    budget = catalog.create_budget({'name': 'Side business'})
    budget_id = budget['id']
    account = catalog.create_account(budget_id, {'name': 'Business', 'type': 'checking'})
    group = catalog.create_group(budget_id, {'name': 'Costs'})
    category = catalog.create_category(budget_id, {'group_id': group['id'], 'name': 'Supplies'})

    return SimpleNamespace(
        budget_id=budget_id,
        account=account['id'],
        group=group['id'],
        category=category['id'],
    )
