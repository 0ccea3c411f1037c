"""Tests for allocation commands."""

import pytest
from decimal import Decimal

from envelope.models.errors import NotFound, ValidationFailure
from envelope.models.values import YearMonth
from envelope.services import allocations, catalog, database
from envelope.services.budget_calc import get_budgeted


MARCH = YearMonth.parse('2024-03')
FEBRUARY = YearMonth.parse('2024-02')


class TestSetBudgetedAmount:
    """Tests for single and bulk allocation writes."""

    def test_set_and_overwrite(self, ledger):
        allocations.set_budgeted_amount(ledger.budget_id, ledger.rent, MARCH, 900)
        result = allocations.set_budgeted_amount(ledger.budget_id, ledger.rent, MARCH, '950.25')

        assert result['budgeted'] == 950.25
        assert result['available'] == 950.25
        assert get_budgeted(ledger.rent, MARCH) == Decimal('950.25')

    def test_zero_allowed_negative_rejected(self, ledger):
        assert allocations.set_budgeted_amount(ledger.budget_id, ledger.rent, MARCH, 0)['budgeted'] == 0.0
        with pytest.raises(ValidationFailure):
            allocations.set_budgeted_amount(ledger.budget_id, ledger.rent, MARCH, -1)

    @pytest.mark.parametrize('amount', ['1e30', '1e20'])
    def test_oversized_amount_rejected(self, ledger, amount):
        with pytest.raises(ValidationFailure):
            allocations.set_budgeted_amount(ledger.budget_id, ledger.rent, MARCH, amount)
        assert get_budgeted(ledger.rent, MARCH) == Decimal('0')

    def test_foreign_category(self, ledger, other_ledger):
        with pytest.raises(NotFound):
            allocations.set_budgeted_amount(ledger.budget_id, other_ledger.category, MARCH, 10)

    def test_bulk_with_bad_entry_writes_nothing(self, ledger):
        items = [
            {'category_id': ledger.rent, 'amount': 900},
            {'category_id': ledger.groceries, 'amount': 'lots'},
        ]
        with pytest.raises(ValidationFailure):
            allocations.set_budgeted_amounts(ledger.budget_id, MARCH, items)
        assert get_budgeted(ledger.rent, MARCH) == Decimal('0')

    def test_bulk(self, ledger):
        count = allocations.set_budgeted_amounts(ledger.budget_id, MARCH, [
            {'category_id': ledger.rent, 'amount': 900},
            {'category_id': ledger.groceries, 'amount': 300},
        ])
        assert count == 2
        assert get_budgeted(ledger.groceries, MARCH) == Decimal('300')


class TestMoveMoney:
    """Tests for moving money between categories."""

    def test_move_creates_missing_rows(self, ledger):
        """Moving from an empty category takes it negative."""
        result = allocations.move_money(ledger.budget_id, ledger.dining, ledger.groceries, MARCH, 50)

        assert result['from'] == {'category_id': ledger.dining, 'budgeted': -50.0}
        assert result['to'] == {'category_id': ledger.groceries, 'budgeted': 50.0}
        assert get_budgeted(ledger.dining, MARCH) == Decimal('-50')

    def test_move_adds_to_existing(self, ledger):
        allocations.set_budgeted_amount(ledger.budget_id, ledger.dining, MARCH, 200)
        allocations.set_budgeted_amount(ledger.budget_id, ledger.groceries, MARCH, 300)

        allocations.move_money(ledger.budget_id, ledger.dining, ledger.groceries, MARCH, '75.50')

        assert get_budgeted(ledger.dining, MARCH) == Decimal('124.5')
        assert get_budgeted(ledger.groceries, MARCH) == Decimal('375.5')

    @pytest.mark.parametrize('amount', [0, -10, None, '1e30'])
    def test_non_positive_amount(self, ledger, amount):
        with pytest.raises(ValidationFailure):
            allocations.move_money(ledger.budget_id, ledger.dining, ledger.groceries, MARCH, amount)

    def test_same_category(self, ledger):
        with pytest.raises(ValidationFailure):
            allocations.move_money(ledger.budget_id, ledger.dining, ledger.dining, MARCH, 10)

    def test_foreign_category_changes_nothing(self, ledger, other_ledger):
        with pytest.raises(NotFound):
            allocations.move_money(ledger.budget_id, ledger.dining, other_ledger.category, MARCH, 10)
        assert database.get_monthly_budget(ledger.dining, MARCH.key) is None


class TestMonthCommands:
    """Tests for copy, defaults, projections and clear."""

    def test_copy_previous_covers_every_category(self, ledger):
        allocations.set_budgeted_amount(ledger.budget_id, ledger.rent, FEBRUARY, 900)
        allocations.set_budgeted_amount(ledger.budget_id, ledger.dining, MARCH, 80)

        assert allocations.copy_previous_month(ledger.budget_id, MARCH) == 3

        assert get_budgeted(ledger.rent, MARCH) == Decimal('900')
        assert get_budgeted(ledger.dining, MARCH) == Decimal('0')
        assert database.get_monthly_budget(ledger.groceries, MARCH.key)['budgeted_cents'] == 0

    def test_apply_defaults(self, ledger):
        catalog.update_category(ledger.budget_id, ledger.rent, {'default_amount': 900})
        allocations.set_budgeted_amount(ledger.budget_id, ledger.dining, MARCH, 80)

        assert allocations.apply_defaults(ledger.budget_id, MARCH) == 1

        assert get_budgeted(ledger.rent, MARCH) == Decimal('900')
        assert get_budgeted(ledger.dining, MARCH) == Decimal('80')

    def test_apply_projection_falls_back_to_default(self, ledger):
        catalog.update_category(ledger.budget_id, ledger.rent, {'default_amount': 900})
        catalog.update_category(ledger.budget_id, ledger.groceries, {'default_amount': 250})
        allocations.save_projections(ledger.budget_id, {str(ledger.rent): {'2': 950}})

        assert allocations.apply_projection(ledger.budget_id, MARCH, 2) == 2

        assert get_budgeted(ledger.rent, MARCH) == Decimal('950')
        assert get_budgeted(ledger.groceries, MARCH) == Decimal('250')
        assert database.get_monthly_budget(ledger.dining, MARCH.key) is None

    @pytest.mark.parametrize('index', [0, 4, 'two', True, None])
    def test_apply_projection_bad_index(self, ledger, index):
        with pytest.raises(ValidationFailure):
            allocations.apply_projection(ledger.budget_id, MARCH, index)

    def test_clear_budget_only_touches_the_month(self, ledger):
        allocations.set_budgeted_amount(ledger.budget_id, ledger.rent, FEBRUARY, 900)
        allocations.set_budgeted_amount(ledger.budget_id, ledger.rent, MARCH, 900)
        allocations.set_budgeted_amount(ledger.budget_id, ledger.dining, MARCH, 80)

        assert allocations.clear_budget(ledger.budget_id, MARCH) == 2

        assert get_budgeted(ledger.rent, MARCH) == Decimal('0')
        assert get_budgeted(ledger.rent, FEBRUARY) == Decimal('900')

    def test_clear_budget_leaves_other_budgets(self, ledger, other_ledger):
        allocations.set_budgeted_amount(other_ledger.budget_id, other_ledger.category, MARCH, 40)
        allocations.clear_budget(ledger.budget_id, MARCH)
        assert get_budgeted(other_ledger.category, MARCH) == Decimal('40')


class TestProjections:
    """Tests for saving and clearing projection slots."""

    def test_save_merges_and_clears_slots(self, ledger):
        allocations.save_projections(ledger.budget_id, {ledger.rent: {1: 900, 2: 950}})
        allocations.save_projections(ledger.budget_id, {ledger.rent: {'2': None, '3': '1000.5'}})

        category = catalog.update_category(ledger.budget_id, ledger.rent, {})
        assert category['projections'] == {'1': 900.0, '3': 1000.5}

    def test_bad_slot_and_negative_value(self, ledger):
        with pytest.raises(ValidationFailure):
            allocations.save_projections(ledger.budget_id, {ledger.rent: {'4': 10}})
        with pytest.raises(ValidationFailure):
            allocations.save_projections(ledger.budget_id, {ledger.rent: {'1': -10}})
        with pytest.raises(ValidationFailure):
            allocations.save_projections(ledger.budget_id, [])

    def test_clear_projections(self, ledger):
        allocations.save_projections(ledger.budget_id, {
            ledger.rent: {'1': 900}, ledger.dining: {'1': 60}
        })
        assert allocations.clear_projections(ledger.budget_id) == 2
        assert allocations.clear_projections(ledger.budget_id) == 0
