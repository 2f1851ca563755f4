import math

import pytest

from calculations import (
    parse_qty, round_half_up, compute_yield, compute_gram_ratio,
    compute_cross_check, cross_check_row_total, is_bag_weight_out_of_range,
    is_water_content_out_of_range, group_bags_by_date, bag_group_totals,
    run_summary, total_bags_weight, UNASSIGNED_DATE
)
from models import CrossCheckEntry, IndividualBagEntry, RunInputs
from reference_data import RUN_TAN_1, RUN_HALIMAH_1


def _checks(*pairs):
    return [
        CrossCheckEntry(id=f"c{i}", powder_weight=w, quantity=q)
        for i, (w, q) in enumerate(pairs)
    ]


# ---------------------------------------------------------------------------
# parse_qty
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("text", ['', '   ', 'abc', None, 'g12', 'nan', 'inf', '-inf', '.', '-', '1e400'])
def test_parse_qty_unparseable_is_zero(text):
    assert parse_qty(text) == 0.0


@pytest.mark.parametrize("text,expected", [
    ('12.5', 12.5),
    ('  7 ', 7.0),
    ('-3', -3.0),
    ('1e3', 1000.0),
    (42, 42.0),
    ('500g', 500.0),
    ('12.5 g', 12.5),
    ('1,000', 1.0),
    ('1_000', 1.0),
    ('.5', 0.5),
    ('5.', 5.0),
    ('2e', 2.0),
])
def test_parse_qty_numbers(text, expected):
    assert parse_qty(text) == expected


def test_round_half_up_rounds_printed_value():
    assert round_half_up(2.25, 1) == 2.3
    assert round_half_up(0.125, 2) == 0.13
    assert round_half_up(-2.25, 1) == -2.3
    assert round_half_up(1e300, 1) == 1e300


# ---------------------------------------------------------------------------
# compute_yield
# ---------------------------------------------------------------------------

def test_compute_yield_example_run(example_inputs):
    result = compute_yield(example_inputs)

    assert result.total_bags_weight == 800.0
    assert result.total_wet_weight == 750.0
    assert result.water_removed == 690.0
    assert result.power_to_pack_per_ml == 0.0870
    assert result.packed_powder_weight == 17.4
    assert result.packing_total == 217.4
    assert result.water_content_percentage == 92.0
    assert result.powder_per_unit == 0.08
    assert result.water_to_add_per_unit == 0.92


def test_compute_yield_empty_inputs_are_all_defined():
    result = compute_yield(RunInputs())

    values = result.to_dict()
    assert all(math.isfinite(v) for v in values.values())
    assert result.total_bags_weight == 0
    assert result.total_wet_weight == 0
    assert result.water_removed == 0
    assert result.power_to_pack_per_ml == 0
    assert result.packed_powder_weight == 0
    assert result.packing_total == 0
    assert result.water_content_percentage == 0
    assert result.powder_per_unit == 0
    # 1 - 0: everything is water until powder is weighed
    assert result.water_to_add_per_unit == 1.0


def test_compute_yield_is_repeatable(example_inputs):
    assert compute_yield(example_inputs) == compute_yield(example_inputs)


def test_zero_wet_weight_does_not_divide():
    inputs = RunInputs(
        bags=(IndividualBagEntry(id='b', weight='50'),),
        bags_weight='50',
        powder_weight='50',
    )
    result = compute_yield(inputs)

    assert result.total_wet_weight == 0
    # powder heavier than the milk is impossible, but not clamped
    assert result.water_removed == -50.0
    assert result.water_content_percentage == 0
    assert result.powder_per_unit == 0
    assert result.power_to_pack_per_ml == -1.0


def test_zero_water_removed_does_not_divide():
    inputs = RunInputs(
        bags=(IndividualBagEntry(id='b', weight='300'),),
        bags_weight='100',
        powder_weight='200',
        water_to_add='500',
    )
    result = compute_yield(inputs)

    assert result.water_removed == 0
    assert result.power_to_pack_per_ml == 0
    assert result.packed_powder_weight == 0
    assert result.packing_total == 500.0


def test_packed_powder_uses_displayed_ratio(example_inputs):
    # 60/690 = 0.086956... shown as 0.0870; 10000 × 0.0870 = 870.0, not 869.6
    result = compute_yield(example_inputs.replace(water_to_add='10000'))
    assert result.packed_powder_weight == 870.0


def test_garbage_fields_count_as_zero(example_inputs):
    inputs = example_inputs.replace(
        bags=example_inputs.bags + (IndividualBagEntry(id='bad', weight='heavy'),),
        bags_weight='fifty',
    )
    result = compute_yield(inputs)
    assert result.total_bags_weight == 800.0
    assert result.total_wet_weight == 800.0


def test_total_bags_weight_rounds_to_one_place():
    bags = [IndividualBagEntry(id='a', weight='100.07'), IndividualBagEntry(id='b', weight='0.01')]
    assert total_bags_weight(bags) == 100.1


# ---------------------------------------------------------------------------
# compute_gram_ratio
# ---------------------------------------------------------------------------

def test_gram_ratio_projects_per_unit_ratios(example_inputs):
    inputs = example_inputs.replace(gram_ratio_staff_input='100')
    result = compute_gram_ratio(inputs, compute_yield(inputs))

    assert result.gram_ratio_packed_powder_weight == 8.0
    assert result.gram_ratio_water_to_add == 92.0
    assert result.gram_ratio_packing_total == 100.0


def test_gram_ratio_computes_yield_when_not_given(example_inputs):
    inputs = example_inputs.replace(gram_ratio_staff_input='250')
    assert compute_gram_ratio(inputs) == compute_gram_ratio(inputs, compute_yield(inputs))


def test_gram_ratio_without_target_is_zero(example_inputs):
    result = compute_gram_ratio(example_inputs)
    assert result.to_dict() == {
        'gramRatioPackedPowderWeight': 0.0,
        'gramRatioWaterToAdd': 0.0,
        'gramRatioPackingTotal': 0.0,
    }


# ---------------------------------------------------------------------------
# compute_cross_check
# ---------------------------------------------------------------------------

def test_cross_check_example(example_cross_checks):
    result = compute_cross_check(example_cross_checks, 90)

    assert result.row_totals == (50.0, 24.0)
    assert result.combined_total == 74.0
    assert result.expected_weight == 90.0
    assert result.difference == -16.0
    assert result.variance_pct == pytest.approx(-17.78)
    assert result.is_within_tolerance is False


def test_cross_check_expected_weight_may_be_text(example_cross_checks):
    assert compute_cross_check(example_cross_checks, '90') == compute_cross_check(example_cross_checks, 90)


@pytest.mark.parametrize("weight,within", [
    ('105', True),
    ('95', True),
    ('105.01', False),
    ('94.99', False),
])
def test_cross_check_tolerance_boundary(weight, within):
    result = compute_cross_check(_checks((weight, '1')), 100)
    assert result.is_within_tolerance is within


def test_cross_check_five_percent_is_exactly_five():
    result = compute_cross_check(_checks(('105', '1')), 100)
    assert result.variance_pct == 5.0
    assert result.difference == 5.0


def test_cross_check_nothing_declared_is_valid():
    result = compute_cross_check(_checks(('10', '3')), '')
    assert result.expected_weight == 0
    assert result.variance_pct == 0
    assert result.is_within_tolerance is True
    assert result.combined_total == 30.0


def test_cross_check_no_entries_against_declared_weight():
    result = compute_cross_check([], 90)
    assert result.combined_total == 0
    assert result.variance_pct == -100.0
    assert result.is_within_tolerance is False


def test_cross_check_custom_tolerance(example_cross_checks):
    assert compute_cross_check(example_cross_checks, 90, tolerance_pct=20).is_within_tolerance is True


def test_cross_check_row_total_rounds_to_two_places():
    entry = CrossCheckEntry(id='x', powder_weight='12.345', quantity='1')
    assert cross_check_row_total(entry) == 12.35
    assert cross_check_row_total(CrossCheckEntry(id='y', powder_weight='12', quantity='')) == 0


# ---------------------------------------------------------------------------
# plausibility flags
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("weight,flagged", [
    ('25', True),
    ('29.9', True),
    ('30', False),
    ('350', False),
    ('400', False),
    ('400.1', True),
    ('0', False),
    ('', False),
    ('abc', False),
    ('-20', False),
])
def test_bag_weight_range(weight, flagged):
    assert is_bag_weight_out_of_range(weight) is flagged


@pytest.mark.parametrize("pct,flagged", [
    (None, False),
    ('', False),
    (0, False),
    (84.9, True),
    (85, False),
    ('87.5', False),
    (89.5, False),
    (89.6, True),
    ('92.0', True),
])
def test_water_content_range(pct, flagged):
    assert is_water_content_out_of_range(pct) is flagged


# ---------------------------------------------------------------------------
# bag grouping and summaries
# ---------------------------------------------------------------------------

def test_group_bags_by_date_keeps_entry_order():
    bags = [
        IndividualBagEntry(id='a', date='2025-01-02', weight='100'),
        IndividualBagEntry(id='b', date='2025-01-01', weight='200'),
        IndividualBagEntry(id='c', date='', weight='50'),
        IndividualBagEntry(id='d', date='2025-01-02', weight='150'),
    ]
    groups = group_bags_by_date(bags)

    assert list(groups) == ['2025-01-02', '2025-01-01', UNASSIGNED_DATE]
    assert [b.id for b in groups['2025-01-02']] == ['a', 'd']
    assert bag_group_totals(bags) == {'2025-01-02': 250.0, '2025-01-01': 200.0, UNASSIGNED_DATE: 50.0}


def test_run_summary_clean_reference_run():
    summary = run_summary(RUN_TAN_1)

    assert summary['totalBagsWeight'] == 1850.0
    assert summary['totalWetWeight'] == 1790.0
    assert summary['waterContentPercentage'] == 87.5
    assert summary['waterContentOutOfRange'] is False
    assert summary['crossCheckTotal'] == 224.0
    assert summary['crossCheckWithinTolerance'] is True
    assert summary['bagsOutOfRange'] == 0


def test_run_summary_flags_discrepancies():
    summary = run_summary(RUN_HALIMAH_1)

    assert summary['crossCheckVariancePct'] == -8.4
    assert summary['crossCheckWithinTolerance'] is False
    assert summary['bagsOutOfRange'] == 1
    assert summary['waterContentOutOfRange'] is False
    assert 'gramRatioPackingTotal' in summary


def test_bag_weights_with_units_still_count(example_inputs):
    inputs = example_inputs.replace(bags=(
        IndividualBagEntry(id='a', date='2025-01-02', weight='500g'),
        IndividualBagEntry(id='b', date='2025-01-02', weight='300'),
    ))
    assert compute_yield(inputs) == compute_yield(example_inputs)


def test_run_summary_without_cross_checks_has_no_verdict():
    summary = run_summary(RUN_TAN_1.replace(cross_checks=()))

    assert summary['crossCheckWithinTolerance'] is None
    assert summary['crossCheckVariancePct'] is None
    assert summary['crossCheckTotal'] == 0.0
    assert summary['totalWetWeight'] == 1790.0
