"""Tests for recurring definitions and the materializer."""

import pytest
from datetime import date

from envelope.models.entities import Frequency
from envelope.models.errors import NotFound, ValidationFailure
from envelope.services import recurring, transactions


def _create(ledger, **overrides):
    data = {
        'account_id': ledger.checking, 'type': 'expense', 'amount': 15,
        'frequency': 'monthly', 'next_date': '2024-03-01', 'category_id': ledger.dining
    }
    data.update(overrides)
    return recurring.create_recurring(ledger.budget_id, data)


def _materialized(ledger):
    return transactions.list_transactions(ledger.budget_id, {'recurring': 'true'})


class TestNextOccurrence:
    """Tests for date stepping."""

    @pytest.mark.parametrize('current,frequency,expected', [
        (date(2024, 3, 1), Frequency.DAILY, date(2024, 3, 2)),
        (date(2024, 3, 1), Frequency.WEEKLY, date(2024, 3, 8)),
        (date(2024, 3, 1), Frequency.BIWEEKLY, date(2024, 3, 15)),
        (date(2024, 1, 31), Frequency.MONTHLY, date(2024, 2, 29)),
        (date(2023, 1, 31), Frequency.MONTHLY, date(2023, 2, 28)),
        (date(2024, 12, 15), Frequency.MONTHLY, date(2025, 1, 15)),
        (date(2024, 2, 29), Frequency.YEARLY, date(2025, 2, 28)),
    ])
    def test_steps(self, current, frequency, expected):
        assert recurring.next_occurrence(current, frequency) == expected


class TestDefinitions:
    """Tests for recurring definition commands."""

    def test_create(self, ledger):
        definition = _create(ledger, payee_name='Streaming Co')

        assert definition['amount'] == 15.0
        assert definition['frequency'] == 'monthly'
        assert definition['is_active'] is True
        assert definition['payee_name'] == 'Streaming Co'
        assert definition['category_name'] == 'Dining'

    def test_end_date_must_follow_next_date(self, ledger):
        with pytest.raises(ValidationFailure):
            _create(ledger, end_date='2024-03-01')
        with pytest.raises(ValidationFailure):
            _create(ledger, end_date='2024-02-01')

    @pytest.mark.parametrize('field,value', [
        ('type', 'transfer'), ('amount', 0), ('frequency', 'hourly'), ('next_date', '03/01/2024'),
    ])
    def test_invalid_fields(self, ledger, field, value):
        with pytest.raises(ValidationFailure):
            _create(ledger, **{field: value})

    def test_foreign_account(self, ledger, other_ledger):
        with pytest.raises(NotFound):
            _create(ledger, account_id=other_ledger.account, category_id=None)

    def test_list_soonest_first(self, ledger):
        later = _create(ledger, next_date='2024-04-01')
        sooner = _create(ledger, next_date='2024-03-15')

        assert [r['id'] for r in recurring.list_recurring(ledger.budget_id)] == [sooner['id'], later['id']]

    def test_update_and_toggle(self, ledger):
        definition = _create(ledger)

        updated = recurring.update_recurring(ledger.budget_id, definition['id'], {
            'amount': 20, 'frequency': 'weekly'
        })
        assert updated['amount'] == 20.0
        assert updated['frequency'] == 'weekly'
        assert updated['next_date'] == '2024-03-01'

        assert recurring.toggle_recurring(ledger.budget_id, definition['id'])['is_active'] is False
        assert recurring.toggle_recurring(ledger.budget_id, definition['id'])['is_active'] is True

    def test_delete_keeps_created_transactions(self, ledger):
        definition = _create(ledger)
        recurring.materialize_due_recurring(date(2024, 3, 1))

        recurring.delete_recurring(ledger.budget_id, definition['id'])

        assert recurring.list_recurring(ledger.budget_id) == []
        assert len(transactions.list_transactions(ledger.budget_id)) == 1


class TestMaterializer:
    """Tests for turning due definitions into transactions."""

    def test_creates_once(self, ledger):
        definition = _create(ledger)

        assert recurring.materialize_due_recurring(date(2024, 3, 1)) == 1
        assert recurring.materialize_due_recurring(date(2024, 3, 1)) == 0

        created = _materialized(ledger)
        assert len(created) == 1
        assert created[0]['amount'] == -15.0
        assert created[0]['date'] == '2024-03-01'
        assert created[0]['category_id'] == ledger.dining
        assert created[0]['recurring_id'] == definition['id']
        assert recurring.get_recurring(ledger.budget_id, definition['id'])['next_date'] == '2024-04-01'

    def test_not_due_yet(self, ledger):
        _create(ledger)
        assert recurring.materialize_due_recurring(date(2024, 2, 29)) == 0

    def test_catches_up_missed_occurrences(self, ledger):
        definition = _create(ledger, frequency='weekly')

        assert recurring.materialize_due_recurring(date(2024, 3, 25)) == 4

        dates = sorted(t['date'] for t in _materialized(ledger))
        assert dates == ['2024-03-01', '2024-03-08', '2024-03-15', '2024-03-22']
        assert recurring.get_recurring(ledger.budget_id, definition['id'])['next_date'] == '2024-03-29'

    def test_stops_at_end_date(self, ledger):
        definition = _create(ledger, frequency='daily', end_date='2024-03-03')

        assert recurring.materialize_due_recurring(date(2024, 3, 3)) == 3

        stored = recurring.get_recurring(ledger.budget_id, definition['id'])
        assert stored['is_active'] is False
        assert recurring.materialize_due_recurring(date(2024, 3, 4)) == 0

    def test_past_end_date_is_not_due(self, ledger):
        _create(ledger, frequency='daily', end_date='2024-03-03')
        assert recurring.materialize_due_recurring(date(2024, 3, 10)) == 0

    def test_paused_definition_skipped(self, ledger):
        definition = _create(ledger)
        recurring.toggle_recurring(ledger.budget_id, definition['id'])

        assert recurring.materialize_due_recurring(date(2024, 3, 1)) == 0

    def test_income_and_cash_rules(self, ledger):
        _create(ledger, type='income', amount=2500, account_id=ledger.cash, category_id=None)

        recurring.materialize_due_recurring(date(2024, 3, 1))

        created = _materialized(ledger)[0]
        assert created['amount'] == 2500.0
        assert created['type'] == 'income'
        assert created['cleared'] is True

    def test_processes_every_budget(self, ledger, other_ledger):
        _create(ledger)
        recurring.create_recurring(other_ledger.budget_id, {
            'account_id': other_ledger.account, 'type': 'expense', 'amount': 9,
            'frequency': 'monthly', 'next_date': '2024-03-01'
        })

        assert recurring.materialize_due_recurring(date(2024, 3, 1)) == 2
