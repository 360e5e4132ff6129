"""
Tests for rule application: the four allocation methods.
"""

from decimal import Decimal

import pytest

from allocator.engine.bingo_percentage import calculate_bingo_percentage
from allocator.config import settings
from allocator.engine.errors import ConfigurationError, ValidationError
from allocator.engine.grouper import CategoryGroup, group_by_category
from allocator.engine.rules import allocate_category, validate_rule
from allocator.models.enums import AllocationMethod
from allocator.schemas.rules import AllocationRule, TrackedLocations


@pytest.fixture
def bingo(january_sessions, locations, tracked):
    return calculate_bingo_percentage(
        january_sessions, [locations.sc, locations.rwc, locations.other], tracked
    )


@pytest.fixture
def groups(january_expenses, mappings, tracked):
    return group_by_category(january_expenses, mappings, tracked).groups


def _rule(category="Utilities", **kw):
    return AllocationRule(organization_id="org-1", expense_category=category, **kw)


def _amounts(allocation):
    return {s.location_code: s.allocated_amount for s in allocation.shares}


class TestRevenueSplit:

    def test_utilities_worked_example(self, groups, bingo, tracked):
        rule = _rule(allocation_method=AllocationMethod.REVENUE_SPLIT, qb_percentage=Decimal("85"))
        result = allocate_category(groups["Utilities"], rule, bingo, tracked)

        assert result.allocation_method == AllocationMethod.REVENUE_SPLIT
        assert _amounts(result) == {"SC": Decimal("283.33"), "RWC": Decimal("141.67")}
        splits = {s.location_code: s.location_split_percent for s in result.shares}
        assert splits == {"SC": Decimal("66.6667"), "RWC": Decimal("33.3333")}
        assert all(s.bingo_amount == s.allocated_amount for s in result.shares)
        assert result.bingo_percentage == Decimal("50.0000")

    def test_conserves_bingo_total(self, groups, bingo, tracked):
        rule = _rule(qb_percentage=Decimal("85"))
        result = allocate_category(groups["Utilities"], rule, bingo, tracked)
        assert result.allocated_total == Decimal("425.00")

    def test_zero_tracked_revenue_allocates_zero(self, groups, locations, tracked, make_session):
        sessions = [make_session(locations.other, "1000")]
        bingo = calculate_bingo_percentage(sessions, [locations.sc, locations.rwc, locations.other], tracked)
        result = allocate_category(groups["Utilities"], _rule(), bingo, tracked)
        assert _amounts(result) == {"SC": Decimal("0"), "RWC": Decimal("0")}
        assert all(s.location_split_percent == 0 for s in result.shares)

    def test_bingo_percentage_override(self, groups, bingo, tracked):
        rule = _rule(bingo_percentage_override=Decimal("100"))
        result = allocate_category(groups["Utilities"], rule, bingo, tracked)
        assert result.allocated_total == Decimal("1000.00")
        assert result.bingo_percentage == Decimal("100.0000")


class TestFixedPercentages:

    def test_insurance_worked_example(self, groups, bingo, tracked):
        rule = _rule(
            "Insurance",
            allocation_method=AllocationMethod.FIXED_PERCENTAGES,
            fixed_location_a_percent=Decimal("60"),
            fixed_location_b_percent=Decimal("40"),
        )
        result = allocate_category(groups["Insurance"], rule, bingo, tracked)
        assert _amounts(result) == {"SC": Decimal("1200.00"), "RWC": Decimal("800.00")}
        assert all(s.bingo_amount == s.allocated_amount for s in result.shares)

    def test_ignores_qb_percentage(self, groups, bingo, tracked):
        rule = _rule(
            "Insurance",
            fixed_location_a_percent=Decimal("60"),
            fixed_location_b_percent=Decimal("40"),
            qb_percentage=Decimal("10"),
        )
        result = allocate_category(groups["Insurance"], rule, bingo, tracked)
        assert result.allocated_total == Decimal("2000.00")

    def test_sum_over_hundred_rejected(self, groups, bingo, tracked):
        rule = _rule(
            "Insurance",
            fixed_location_a_percent=Decimal("70"),
            fixed_location_b_percent=Decimal("40"),
        )
        with pytest.raises(ValidationError) as exc:
            allocate_category(groups["Insurance"], rule, bingo, tracked)
        assert exc.value.error_code == "ERR_INVALID_PERCENTAGE"

    def test_explicit_method_needs_both_percentages(self, tracked):
        rule = _rule(
            allocation_method=AllocationMethod.FIXED_PERCENTAGES,
            fixed_location_a_percent=Decimal("60"),
        )
        with pytest.raises(ValidationError):
            validate_rule(rule, tracked)

    def test_negative_percentage_rejected(self, tracked):
        rule = _rule(
            fixed_location_a_percent=Decimal("-10"),
            fixed_location_b_percent=Decimal("40"),
        )
        with pytest.raises(ValidationError):
            validate_rule(rule, tracked)


class TestDesignatedLocation:

    def test_janitorial_worked_example(self, groups, bingo, tracked):
        rule = _rule(
            "Janitorial",
            allocation_method=AllocationMethod.SC_ONLY,
            designated_location_code="SC",
        )
        result = allocate_category(groups["Janitorial"], rule, bingo, tracked)
        assert _amounts(result) == {"SC": Decimal("1500.00")}
        assert result.shares[0].location_split_percent == Decimal("100.0000")

    def test_defaults_to_first_tracked_location(self, groups, bingo, tracked):
        rule = _rule("Janitorial", allocation_method=AllocationMethod.SC_ONLY)
        result = allocate_category(groups["Janitorial"], rule, bingo, tracked)
        assert [s.location_code for s in result.shares] == ["SC"]

    def test_other_designated_location(self, groups, bingo, tracked):
        rule = _rule("Janitorial", designated_location_code="RWC", qb_percentage=Decimal("50"))
        result = allocate_category(groups["Janitorial"], rule, bingo, tracked)
        assert _amounts(result) == {"RWC": Decimal("750.00")}

    def test_untracked_designation_rejected(self, tracked):
        rule = _rule("Janitorial", designated_location_code="CAFE")
        with pytest.raises(ValidationError) as exc:
            validate_rule(rule, tracked)
        assert exc.value.error_code == "ERR_RULE_INVALID"


class TestQbClassSplit:

    def test_uses_ledger_class_subtotals(self, groups, bingo, tracked):
        rule = _rule(allocation_method=AllocationMethod.QB_CLASS_SPLIT)
        result = allocate_category(groups["Utilities"], rule, bingo, tracked)
        assert _amounts(result) == {"SC": Decimal("600.00"), "RWC": Decimal("400.00")}
        splits = {s.location_code: s.location_split_percent for s in result.shares}
        assert splits == {"SC": Decimal("60.0000"), "RWC": Decimal("40.0000")}

    def test_qb_percentage_is_prefilter(self, groups, bingo, tracked):
        rule = _rule(uses_qb_class_split=True, qb_percentage=Decimal("50"))
        result = allocate_category(groups["Utilities"], rule, bingo, tracked)
        assert _amounts(result) == {"SC": Decimal("300.00"), "RWC": Decimal("200.00")}

    def test_adjustment_layered_on_split(self, groups, bingo, tracked):
        rule = _rule(uses_qb_class_split=True, class_split_adjustment_percent=Decimal("50"))
        result = allocate_category(groups["Utilities"], rule, bingo, tracked)
        assert _amounts(result) == {"SC": Decimal("300.00"), "RWC": Decimal("200.00")}
        assert all(s.bingo_amount == s.allocated_amount for s in result.shares)

    def test_zero_total_split_percent_is_zero(self, bingo, tracked):
        group = CategoryGroup(
            expense_category="Utilities",
            per_location_subtotal={"SC": Decimal("50"), "RWC": Decimal("-50")},
        )
        result = allocate_category(group, _rule(uses_qb_class_split=True), bingo, tracked)
        assert all(s.location_split_percent == 0 for s in result.shares)


class TestMethodSelection:

    def test_explicit_method_wins_over_indicators(self, tracked):
        rule = _rule(
            allocation_method=AllocationMethod.REVENUE_SPLIT,
            uses_qb_class_split=True,
            designated_location_code="SC",
        )
        assert validate_rule(rule, tracked) == AllocationMethod.REVENUE_SPLIT

    @pytest.mark.parametrize("fields,expected", [
        ({"uses_qb_class_split": True, "fixed_location_a_percent": Decimal("1"),
          "fixed_location_b_percent": Decimal("1")}, AllocationMethod.QB_CLASS_SPLIT),
        ({"fixed_location_a_percent": Decimal("1"), "fixed_location_b_percent": Decimal("1"),
          "designated_location_code": "SC"}, AllocationMethod.FIXED_PERCENTAGES),
        ({"designated_location_code": "SC"}, AllocationMethod.SC_ONLY),
        ({}, AllocationMethod.REVENUE_SPLIT),
    ])
    def test_inference_priority(self, fields, expected):
        assert _rule(**fields).resolved_method == expected

    def test_each_method_distributes_differently(self, groups, bingo, tracked):
        group = groups["Utilities"]
        rules = [
            _rule(allocation_method=AllocationMethod.QB_CLASS_SPLIT),
            _rule(
                allocation_method=AllocationMethod.FIXED_PERCENTAGES,
                fixed_location_a_percent=Decimal("90"),
                fixed_location_b_percent=Decimal("10"),
            ),
            _rule(allocation_method=AllocationMethod.SC_ONLY),
            _rule(allocation_method=AllocationMethod.REVENUE_SPLIT),
        ]
        outputs = [tuple(sorted(_amounts(allocate_category(group, r, bingo, tracked)).items())) for r in rules]
        assert len(set(outputs)) == 4


class TestCategoryValidation:

    def test_negative_total_rejected(self, bingo, tracked):
        group = CategoryGroup(
            expense_category="Utilities",
            total=Decimal("-10"),
            per_location_subtotal={"SC": Decimal("-10"), "RWC": Decimal("0")},
        )
        with pytest.raises(ValidationError) as exc:
            allocate_category(group, _rule(), bingo, tracked)
        assert exc.value.error_code == "ERR_INVALID_AMOUNT"

    def test_qb_percentage_over_hundred_rejected(self, tracked):
        with pytest.raises(ValidationError):
            validate_rule(_rule(qb_percentage=Decimal("150")), tracked)


class TestTrackedLocations:

    def test_parse(self, tracked):
        assert tracked.codes == ["SC", "RWC"]
        assert tracked.code_for_class("Bingo - RWC") == "RWC"

    @pytest.mark.parametrize("raw", [
        "SC:Bingo - SC",
        "SC:Bingo - SC,RWC:Bingo - RWC,CAFE:Cafe",
        "SC:Bingo - SC,RWC",
        "SC:Bingo - SC,SC:Other",
    ])
    def test_malformed_setting_is_configuration_error(self, raw, monkeypatch):
        monkeypatch.setattr(settings, "TRACKED_LOCATIONS", raw)
        with pytest.raises(ConfigurationError) as exc:
            TrackedLocations.from_settings()
        assert exc.value.error_code == "ERR_TRACKED_LOCATIONS"
