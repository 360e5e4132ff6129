"""
Tests for the category grouper.
"""

from datetime import date
from decimal import Decimal

from allocator.engine.grouper import group_by_category
from allocator.schemas.rules import CategoryMapping


class TestGroupByCategory:

    def test_groups_by_mapped_category(self, january_expenses, mappings, tracked):
        result = group_by_category(january_expenses, mappings, tracked)
        assert sorted(result.groups) == ["Insurance", "Janitorial", "Utilities"]

        utilities = result.groups["Utilities"]
        assert utilities.total == Decimal("1000.00")
        assert utilities.transaction_count == 2
        assert utilities.per_location_subtotal == {"SC": Decimal("600.00"), "RWC": Decimal("400.00")}

    def test_unmapped_never_grouped(self, january_expenses, mappings, tracked):
        result = group_by_category(january_expenses, mappings, tracked)
        assert result.unmapped.transaction_count == 1
        assert result.unmapped.total_amount == Decimal("999.00")
        assert result.unmapped.qb_category_names == ["Mystery Charge"]
        for group in result.groups.values():
            assert "Mystery Charge" not in group.qb_category_names

    def test_untracked_class_counted_as_unclassified(self, january_expenses, mappings, tracked):
        result = group_by_category(january_expenses, mappings, tracked)
        assert result.unclassified.transaction_count == 1
        assert result.unclassified.total_amount == Decimal("500.00")
        assert result.groups["Utilities"].total == Decimal("1000.00")

    def test_inactive_mapping_is_unmapped(self, make_expense, tracked):
        mappings = [CategoryMapping(
            organization_id="org-1", qb_category_name="Electric",
            expense_category="Utilities", is_active=False,
        )]
        result = group_by_category([make_expense("10.00")], mappings, tracked)
        assert result.groups == {}
        assert result.unmapped.transaction_count == 1

    def test_many_ledger_categories_to_one(self, make_expense, tracked):
        mappings = [
            CategoryMapping(organization_id="org-1", qb_category_name="Gas", expense_category="Utilities"),
            CategoryMapping(organization_id="org-1", qb_category_name="Water", expense_category="Utilities"),
        ]
        txs = [
            make_expense("10.00", "Gas", day=date(2025, 1, 10)),
            make_expense("5.00", "Water", "Bingo - RWC", day=date(2025, 1, 20)),
        ]
        group = group_by_category(txs, mappings, tracked).groups["Utilities"]
        assert group.total == Decimal("15.00")
        assert group.qb_category_names == ["Gas", "Water"]

    def test_credits_reduce_total(self, make_expense, mappings, tracked):
        txs = [make_expense("100.00"), make_expense("-30.00")]
        group = group_by_category(txs, mappings, tracked).groups["Utilities"]
        assert group.total == Decimal("70.00")

    def test_source_data_snapshot(self, make_expense, mappings, tracked):
        tx = make_expense("42.00", vendor="PG&E", description="Jan bill")
        source = group_by_category([tx], mappings, tracked).groups["Utilities"].source_data()
        assert len(source) == 1
        assert source[0].qb_expense_id == tx.expense_id
        assert source[0].qb_class == "Bingo - SC"
        assert source[0].vendor == "PG&E"
        assert source[0].amount == Decimal("42.00")
