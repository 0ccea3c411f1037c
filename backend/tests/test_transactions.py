"""Tests for transaction commands."""

import pytest
from datetime import date

from envelope.models.errors import NotFound, ValidationFailure
from envelope.services import database, transactions


def _count(table):
    return database.fetch_one(f"SELECT COUNT(*) as n FROM {table}")['n']


def _expense(ledger, **overrides):
    data = {
        'account_id': ledger.checking, 'type': 'expense', 'amount': '45.50',
        'date': '2024-03-10', 'category_id': ledger.groceries
    }
    data.update(overrides)
    return transactions.record_transaction(ledger.budget_id, data)


class TestRecordTransaction:
    """Tests for plain transactions."""

    def test_expense_stored_negative(self, ledger):
        txn = _expense(ledger)
        assert txn['amount'] == -45.5
        assert txn['type'] == 'expense'
        assert txn['category_id'] == ledger.groceries
        assert database.get_transaction_row(txn['id'])['amount_cents'] == -4550

    def test_income_stored_positive(self, ledger):
        txn = _expense(ledger, type='income', amount=100, category_id=None)
        assert txn['amount'] == 100.0

    @pytest.mark.parametrize('amount', [0, '-5', 'abc', '1e30', '1e20'])
    def test_invalid_amount_rejected(self, ledger, amount):
        with pytest.raises(ValidationFailure):
            _expense(ledger, amount=amount)
        assert _count('transactions') == 0

    def test_transfer_type_not_accepted_here(self, ledger):
        with pytest.raises(ValidationFailure):
            _expense(ledger, type='transfer')

    def test_foreign_account_not_found(self, ledger, other_ledger):
        with pytest.raises(NotFound):
            _expense(ledger, account_id=other_ledger.account)

    def test_foreign_category_not_found(self, ledger, other_ledger):
        with pytest.raises(NotFound):
            _expense(ledger, category_id=other_ledger.category)

    def test_cash_is_always_cleared(self, ledger):
        """Cash transactions are cleared whatever the caller asks for."""
        txn = _expense(ledger, account_id=ledger.cash, cleared=False)
        assert txn['cleared'] is True

        updated = transactions.update_transaction(ledger.budget_id, txn['id'], {'cleared': False})
        assert updated['cleared'] is True

        toggled = transactions.toggle_cleared(ledger.budget_id, txn['id'])
        assert toggled['cleared'] is True

    def test_toggle_cleared_on_bank_account(self, ledger):
        txn = _expense(ledger)
        assert txn['cleared'] is False
        assert transactions.toggle_cleared(ledger.budget_id, txn['id'])['cleared'] is True
        assert transactions.toggle_cleared(ledger.budget_id, txn['id'])['cleared'] is False


class TestPayees:
    """Tests for payee resolution."""

    def test_payee_created_with_default_category(self, ledger):
        txn = _expense(ledger, payee_name='Corner Market')
        payee = database.get_payee_by_name(ledger.budget_id, 'Corner Market')

        assert txn['payee_id'] == payee['id']
        assert txn['payee_name'] == 'Corner Market'
        assert payee['default_category_id'] == ledger.groceries

    def test_payee_default_used_when_no_category(self, ledger):
        _expense(ledger, payee_name='Corner Market')
        txn = _expense(ledger, payee_name='Corner Market', category_id=None)
        assert txn['category_id'] == ledger.groceries

    def test_payee_default_only_changes_on_request(self, ledger):
        _expense(ledger, payee_name='Corner Market')
        _expense(ledger, payee_name='Corner Market', category_id=ledger.dining)
        assert database.get_payee_by_name(ledger.budget_id, 'Corner Market')['default_category_id'] == ledger.groceries

        _expense(ledger, payee_name='Corner Market', category_id=ledger.dining, update_payee_default=True)
        assert database.get_payee_by_name(ledger.budget_id, 'Corner Market')['default_category_id'] == ledger.dining


class TestSplitTransactions:
    """Tests for split transactions."""

    def _split(self, ledger, splits, **overrides):
        data = {'account_id': ledger.checking, 'type': 'expense', 'date': '2024-03-12', 'splits': splits}
        data.update(overrides)
        return transactions.record_split_transaction(ledger.budget_id, data)

    def test_split_amounts_sum_to_parent(self, ledger):
        txn = self._split(ledger, [
            {'category_id': ledger.groceries, 'amount': 30},
            {'category_id': ledger.dining, 'amount': 20},
        ], amount=50)

        assert txn['is_split'] is True
        assert txn['category_id'] is None
        assert txn['amount'] == -50.0
        assert sorted(s['amount'] for s in txn['splits']) == [-30.0, -20.0]
        assert sum(s['amount'] for s in txn['splits']) == txn['amount']

    def test_single_category_collapses_to_plain(self, ledger):
        txn = self._split(ledger, [
            {'category_id': ledger.groceries, 'amount': 30},
            {'category_id': ledger.groceries, 'amount': 20},
        ])

        assert txn['is_split'] is False
        assert txn['category_id'] == ledger.groceries
        assert txn['amount'] == -50.0
        assert _count('split_transactions') == 0

    @pytest.mark.parametrize('splits', [
        [5, 6],
        [{'category_id': 'abc', 'amount': 5}, {'category_id': 1, 'amount': 6}],
        [{'category_id': 1, 'amount': '1e30'}, {'category_id': 2, 'amount': 6}],
    ])
    def test_malformed_split_lines_rejected(self, ledger, splits):
        with pytest.raises(ValidationFailure):
            self._split(ledger, splits)
        assert _count('transactions') == 0

    def test_mismatched_total_writes_nothing(self, ledger):
        with pytest.raises(ValidationFailure):
            self._split(ledger, [
                {'category_id': ledger.groceries, 'amount': 30},
                {'category_id': ledger.dining, 'amount': 20},
            ], amount=60)

        assert _count('transactions') == 0
        assert _count('split_transactions') == 0

    def test_update_replaces_splits(self, ledger):
        txn = self._split(ledger, [
            {'category_id': ledger.groceries, 'amount': 30},
            {'category_id': ledger.dining, 'amount': 20},
        ])

        updated = transactions.update_transaction(ledger.budget_id, txn['id'], {'splits': [
            {'category_id': ledger.rent, 'amount': 70},
            {'category_id': ledger.dining, 'amount': 10},
        ]})

        assert updated['amount'] == -80.0
        assert {s['category_id'] for s in updated['splits']} == {ledger.rent, ledger.dining}
        assert _count('split_transactions') == 2

    def test_update_split_to_plain(self, ledger):
        txn = self._split(ledger, [
            {'category_id': ledger.groceries, 'amount': 30},
            {'category_id': ledger.dining, 'amount': 20},
        ])

        updated = transactions.update_transaction(ledger.budget_id, txn['id'], {'category_id': ledger.rent})

        assert updated['is_split'] is False
        assert updated['category_id'] == ledger.rent
        assert updated['amount'] == -50.0
        assert _count('split_transactions') == 0

    def test_changing_split_amount_needs_splits(self, ledger):
        txn = self._split(ledger, [
            {'category_id': ledger.groceries, 'amount': 30},
            {'category_id': ledger.dining, 'amount': 20},
        ])

        with pytest.raises(ValidationFailure):
            transactions.update_transaction(ledger.budget_id, txn['id'], {'amount': 60})

    def test_delete_removes_splits(self, ledger):
        txn = self._split(ledger, [
            {'category_id': ledger.groceries, 'amount': 30},
            {'category_id': ledger.dining, 'amount': 20},
        ])

        assert transactions.delete_transaction(ledger.budget_id, txn['id']) == 1
        assert _count('split_transactions') == 0


class TestTransfers:
    """Tests for transfer pairs."""

    def _transfer(self, ledger, **overrides):
        data = {'account_id': ledger.checking, 'to_account_id': ledger.cash, 'amount': 100, 'date': '2024-03-05'}
        data.update(overrides)
        return transactions.record_transfer(ledger.budget_id, data)

    def test_legs_mirror_each_other(self, ledger):
        legs = self._transfer(ledger)
        out_leg, in_leg = legs['from'], legs['to']

        assert out_leg['amount'] == -in_leg['amount'] == -100.0
        assert out_leg['date'] == in_leg['date'] == '2024-03-05'
        assert out_leg['transfer_pair_id'] == in_leg['id']
        assert in_leg['transfer_pair_id'] == out_leg['id']
        assert out_leg['category_id'] is None and out_leg['payee_id'] is None
        assert out_leg['transfer_account_name'] == 'Wallet'

    def test_cleared_applies_per_leg(self, ledger):
        legs = self._transfer(ledger, cleared=False)
        assert legs['from']['cleared'] is False
        assert legs['to']['cleared'] is True

    @pytest.mark.parametrize('amount', ['1e30', '1e20'])
    def test_oversized_amount_rejected(self, ledger, amount):
        with pytest.raises(ValidationFailure):
            self._transfer(ledger, amount=amount)
        assert _count('transactions') == 0

    def test_same_account_rejected(self, ledger):
        with pytest.raises(ValidationFailure):
            self._transfer(ledger, to_account_id=ledger.checking)
        assert _count('transactions') == 0

    def test_deleting_either_leg_removes_both(self, ledger):
        legs = self._transfer(ledger)
        assert transactions.delete_transaction(ledger.budget_id, legs['to']['id']) == 2
        assert _count('transactions') == 0

    def test_update_changes_both_legs(self, ledger):
        legs = self._transfer(ledger)

        updated = transactions.update_transaction(ledger.budget_id, legs['to']['id'], {
            'amount': 150, 'date': '2024-03-07', 'memo': 'ATM'
        })

        assert updated['from']['amount'] == -150.0
        assert updated['to']['amount'] == 150.0
        assert updated['from']['date'] == updated['to']['date'] == '2024-03-07'
        assert updated['from']['memo'] == updated['to']['memo'] == 'ATM'


class TestListTransactions:
    """Tests for listing and filters."""

    def test_transfer_listed_once_without_account_filter(self, ledger):
        _expense(ledger)
        transactions.record_transfer(ledger.budget_id, {
            'account_id': ledger.checking, 'to_account_id': ledger.cash, 'amount': 20, 'date': '2024-03-11'
        })

        rows = transactions.list_transactions(ledger.budget_id)
        assert [r['amount'] for r in rows] == [-20.0, -45.5]

        cash_rows = transactions.list_transactions(ledger.budget_id, {'account_id': ledger.cash})
        assert [r['amount'] for r in cash_rows] == [20.0]

    def test_filters(self, ledger):
        _expense(ledger, payee_name='Corner Market', date='2024-03-01')
        _expense(ledger, memo='birthday dinner', category_id=ledger.dining, date='2024-03-15', cleared=True)
        _expense(ledger, date='2024-04-02')

        assert len(transactions.list_transactions(ledger.budget_id, {'search': 'corner'})) == 1
        assert len(transactions.list_transactions(ledger.budget_id, {'search': 'Dining'})) == 1
        assert len(transactions.list_transactions(ledger.budget_id, {'cleared': 'true'})) == 1
        assert len(transactions.list_transactions(ledger.budget_id, {
            'start_date': '2024-03-01', 'end_date': '2024-03-31'
        })) == 2
        assert len(transactions.list_transactions(ledger.budget_id, {'limit': '1'})) == 1

    def test_other_budget_transaction_not_found(self, ledger, other_ledger):
        txn = transactions.record_transaction(other_ledger.budget_id, {
            'account_id': other_ledger.account, 'type': 'expense', 'amount': 5, 'date': '2024-03-01'
        })
        with pytest.raises(NotFound):
            transactions.get_transaction(ledger.budget_id, txn['id'])
        with pytest.raises(NotFound):
            transactions.delete_transaction(ledger.budget_id, txn['id'])


class TestCollaboratorBatch:
    """Tests for batch create and undo."""

    def _payloads(self, ledger):
        return [
            {'type': 'expense', 'amount': 12, 'account_id': ledger.checking,
             'category_id': ledger.dining, 'payee_name': 'Cafe', 'date': '2024-03-09'},
            {'type': 'transfer', 'amount': 40, 'account_id': ledger.checking, 'to_account_id': ledger.cash},
            {'type': 'expense', 'amount': 50, 'account_id': ledger.checking,
             'splits': [{'category_id': ledger.groceries, 'amount': 30},
                        {'category_id': ledger.dining, 'amount': 20}]},
        ]

    def test_create_and_undo(self, ledger):
        result = transactions.create_batch(ledger.budget_id, self._payloads(ledger), today=date(2024, 3, 10))

        assert len(result['transactions']) == 3
        assert _count('transactions') == 4
        assert _count('split_transactions') == 2
        assert {t['batch_id'] for t in result['transactions']} == {result['batch_id']}
        assert result['transactions'][1]['date'] == '2024-03-10'

        assert transactions.undo_batch(ledger.budget_id, result['batch_id']) == 4
        assert _count('transactions') == 0
        assert _count('split_transactions') == 0

    def test_invalid_entry_creates_nothing(self, ledger):
        payloads = self._payloads(ledger) + [{'type': 'expense', 'amount': 0, 'account_id': ledger.checking}]
        with pytest.raises(ValidationFailure):
            transactions.create_batch(ledger.budget_id, payloads)
        assert _count('transactions') == 0

    def test_failure_during_writes_rolls_back(self, ledger, monkeypatch):
        calls = []

        def failing(*args, **kwargs):
            calls.append(1)
            raise RuntimeError('disk full')

        monkeypatch.setattr(transactions, 'record_split_transaction', failing)
        with pytest.raises(RuntimeError):
            transactions.create_batch(ledger.budget_id, self._payloads(ledger))

        assert calls == [1]
        assert _count('transactions') == 0

    def test_undo_unknown_batch(self, ledger):
        with pytest.raises(NotFound):
            transactions.undo_batch(ledger.budget_id, 'missing')

    def test_undo_is_scoped_to_budget(self, ledger, other_ledger):
        result = transactions.create_batch(ledger.budget_id, self._payloads(ledger)[:1])
        with pytest.raises(NotFound):
            transactions.undo_batch(other_ledger.budget_id, result['batch_id'])
