"""
Machine Run Calculations for the Wonderbewbz Operations Dashboard

Pure functions over RunInputs. Nothing here touches Streamlit or Supabase,
and nothing here raises: blank or garbage input parses as 0 and every
division by zero returns 0, so the outputs can be recomputed on every
keystroke of a half-filled form.

YIELD CALCULATION FLOW (from weighed bags to packed product):
  1. Weigh every thawed bag → total bags weight
  2. Subtract bag packaging weight → WET weight (milk only)
  3. Dry the milk, weigh the powder → water removed = wet - powder
  4. Powder per ml of water removed → how much powder to pack per ml
  5. Label water to add × powder per ml → packed powder weight
  6. Packed powder + water to add → packing total

Example: bags 500g + 300g, packaging 50g, powder 60g, water to add 200ml
  → 800 - 50 = 750g wet
  → 750 - 60 = 690g water removed
  → 60 / 690 = 0.0870 g powder per ml
  → 200 × 0.0870 = 17.4g packed powder → 217.4 packing total
  → water content = 100 - 60/750 × 100 = 92.0%
"""

import math
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Tuple

from config import THRESHOLDS, ROUNDING
from models import CrossCheckEntry, IndividualBagEntry, RunInputs


# =============================================================================
# UNIT PARSER
# =============================================================================

# leading decimal number, the way a browser's parseFloat reads "500g" as 500
_NUMBER_PREFIX = re.compile(r'\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)')


def parse_number(text: Any) -> Optional[float]:
    """
    Read the leading number of free text ("500g" -> 500.0, "1,000" -> 1.0).

    Returns:
        The number, or None if the text does not start with a finite number
    """
    if text is None:
        return None
    match = _NUMBER_PREFIX.match(str(text))
    if not match:
        return None
    value = float(match.group(1))
    if not math.isfinite(value):
        return None
    return value


def parse_qty(text: Any) -> float:
    """
    Parse free-text numeric input, defaulting to 0.

    Args:
        text: Field text (may be empty, mid-edit, or None)

    Returns:
        The leading number, or 0.0 if there is no finite number to read
    """
    value = parse_number(text)
    return value if value is not None else 0.0


def round_half_up(value: float, places: int) -> float:
    """Round the way the printed number reads (2.25 -> 2.3, not 2.2)."""
    quantum = Decimal(1).scaleb(-places)
    try:
        return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))
    except InvalidOperation:
        # too many digits to quantize at this precision
        return round(value, places)


def _weight(value: float) -> float:
    return round_half_up(value, ROUNDING['weight'])


def _ratio(value: float) -> float:
    return round_half_up(value, ROUNDING['ratio'])


def _percentage(value: float) -> float:
    return round_half_up(value, ROUNDING['percentage'])


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class YieldResult:
    total_bags_weight: float
    total_wet_weight: float
    water_removed: float
    power_to_pack_per_ml: float
    packed_powder_weight: float
    packing_total: float
    water_content_percentage: float
    powder_per_unit: float
    water_to_add_per_unit: float

    def to_dict(self) -> Dict[str, float]:
        return {
            'totalBagsWeight': self.total_bags_weight,
            'totalWetWeight': self.total_wet_weight,
            'waterRemoved': self.water_removed,
            'powerToPackPerMl': self.power_to_pack_per_ml,
            'packedPowderWeight': self.packed_powder_weight,
            'packingTotal': self.packing_total,
            'waterContentPercentage': self.water_content_percentage,
            'powderPerUnit': self.powder_per_unit,
            'waterToAddPerUnit': self.water_to_add_per_unit,
        }


@dataclass(frozen=True)
class GramRatioResult:
    gram_ratio_packed_powder_weight: float
    gram_ratio_water_to_add: float
    gram_ratio_packing_total: float

    def to_dict(self) -> Dict[str, float]:
        return {
            'gramRatioPackedPowderWeight': self.gram_ratio_packed_powder_weight,
            'gramRatioWaterToAdd': self.gram_ratio_water_to_add,
            'gramRatioPackingTotal': self.gram_ratio_packing_total,
        }


@dataclass(frozen=True)
class CrossCheckResult:
    row_totals: Tuple[float, ...]
    combined_total: float
    expected_weight: float
    difference: float
    variance_pct: float
    is_within_tolerance: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rowTotals': list(self.row_totals),
            'combinedTotal': self.combined_total,
            'expectedWeight': self.expected_weight,
            'difference': self.difference,
            'variancePct': self.variance_pct,
            'isWithinTolerance': self.is_within_tolerance,
        }


# =============================================================================
# YIELD CALCULATOR
# Each step uses the ROUNDED value of the step before it, exactly as the
# numbers are shown to staff.
# =============================================================================

def total_bags_weight(bags: Iterable[IndividualBagEntry]) -> float:
    return _weight(sum(parse_qty(bag.weight) for bag in bags))


def compute_yield(inputs: RunInputs) -> YieldResult:
    """
    Compute every derived quantity of a machine run.

    Args:
        inputs: Current wizard inputs

    Returns:
        YieldResult (weights 1dp, ratios 4dp, percentage 1dp)
    """
    bags_weight = parse_qty(inputs.bags_weight)
    powder_weight = parse_qty(inputs.powder_weight)
    water_to_add = parse_qty(inputs.water_to_add)

    bags_total = total_bags_weight(inputs.bags)
    wet_weight = _weight(bags_total - bags_weight)
    water_removed = _weight(wet_weight - powder_weight)

    if water_removed == 0:
        power_to_pack = 0.0
    else:
        power_to_pack = _ratio(powder_weight / water_removed)

    packed_powder = _weight(water_to_add * power_to_pack)
    packing_total = _weight(packed_powder + water_to_add)

    if wet_weight == 0:
        water_content = 0.0
        powder_per_unit = 0.0
    else:
        water_content = _percentage(100 - (powder_weight / wet_weight) * 100)
        powder_per_unit = _ratio(powder_weight / wet_weight)

    water_per_unit = _ratio(1 - powder_per_unit)

    return YieldResult(
        total_bags_weight=bags_total,
        total_wet_weight=wet_weight,
        water_removed=water_removed,
        power_to_pack_per_ml=power_to_pack,
        packed_powder_weight=packed_powder,
        packing_total=packing_total,
        water_content_percentage=water_content,
        powder_per_unit=powder_per_unit,
        water_to_add_per_unit=water_per_unit,
    )


# =============================================================================
# GRAM-RATIO PROJECTOR
# "If I want exactly N ml of finished product, how much powder and water?"
# =============================================================================

def compute_gram_ratio(inputs: RunInputs, yield_result: YieldResult = None) -> GramRatioResult:
    """Scale the per-unit ratios to the staff-chosen target amount."""
    if yield_result is None:
        yield_result = compute_yield(inputs)

    target = parse_qty(inputs.gram_ratio_staff_input)
    powder = _weight(yield_result.powder_per_unit * target)
    water = _weight(yield_result.water_to_add_per_unit * target)

    return GramRatioResult(
        gram_ratio_packed_powder_weight=powder,
        gram_ratio_water_to_add=water,
        gram_ratio_packing_total=_weight(powder + water),
    )


# =============================================================================
# CROSS-CHECK RECONCILER
# =============================================================================

def _raw_row_total(entry: CrossCheckEntry) -> float:
    return parse_qty(entry.powder_weight) * parse_qty(entry.quantity)


def cross_check_row_total(entry: CrossCheckEntry) -> float:
    """Powder weight per unit × quantity (2dp)."""
    return round_half_up(_raw_row_total(entry), ROUNDING['cross_check'])


def compute_cross_check(
    entries: Iterable[CrossCheckEntry],
    expected_weight: Any,
    tolerance_pct: float = None
) -> CrossCheckResult:
    """
    Reconcile re-weighed packages against the declared powder weight.

    Args:
        entries: Cross-check rows (powder weight per unit, quantity)
        expected_weight: Declared powder weight for the run (text or number)
        tolerance_pct: Allowed ± variance; defaults to the configured 5%

    Returns:
        CrossCheckResult. Nothing declared (expected 0) is always within
        tolerance with 0 variance.
    """
    if tolerance_pct is None:
        tolerance_pct = THRESHOLDS['cross_check_tolerance_pct']
    places = ROUNDING['cross_check']

    entries = list(entries)
    expected = parse_qty(expected_weight)
    combined = sum(_raw_row_total(entry) for entry in entries)

    if expected == 0:
        variance = 0.0
    else:
        variance = ((combined - expected) / expected) * 100

    # round away float noise (5.000000000000001) before comparing
    is_within = abs(round(variance, 9)) <= tolerance_pct

    return CrossCheckResult(
        row_totals=tuple(cross_check_row_total(entry) for entry in entries),
        combined_total=round_half_up(combined, places),
        expected_weight=expected,
        difference=round_half_up(combined - expected, places),
        variance_pct=round_half_up(variance, places),
        is_within_tolerance=is_within,
    )


# =============================================================================
# PLAUSIBILITY FLAGS - advisory only, never block a save
# =============================================================================

def is_bag_weight_out_of_range(weight: Any) -> bool:
    """
    Flag a single bag weight outside the expected 30-400g.

    Zero or blank means "not entered yet" and is never flagged.
    """
    value = parse_qty(weight)
    if value <= 0:
        return False
    return value < THRESHOLDS['bag_weight_min_g'] or value > THRESHOLDS['bag_weight_max_g']


def is_water_content_out_of_range(pct: Any) -> bool:
    """
    Flag a water content percentage outside the expected 85-89.5%.

    None, blank, or 0 (no wet weight yet) is never flagged.
    """
    value = parse_qty(pct)
    if value == 0:
        return False
    return value < THRESHOLDS['water_content_min_pct'] or value > THRESHOLDS['water_content_max_pct']


# =============================================================================
# BAG GROUPING - bags are entered per processing day
# =============================================================================

UNASSIGNED_DATE = 'unassigned'


def group_bags_by_date(bags: Iterable[IndividualBagEntry]) -> Dict[str, List[IndividualBagEntry]]:
    """Group bags by date, keeping first-seen order of dates and bags."""
    groups: Dict[str, List[IndividualBagEntry]] = {}
    for bag in bags:
        groups.setdefault(bag.date or UNASSIGNED_DATE, []).append(bag)
    return groups


def bag_group_totals(bags: Iterable[IndividualBagEntry]) -> Dict[str, float]:
    """Total weight per date group (1dp)."""
    return {
        date: total_bags_weight(group)
        for date, group in group_bags_by_date(bags).items()
    }


def run_summary(inputs: RunInputs) -> Dict[str, Any]:
    """All derived outputs of a run in one flat dict, for tables and exports."""
    yield_result = compute_yield(inputs)
    summary = yield_result.to_dict()
    summary.update(compute_gram_ratio(inputs, yield_result).to_dict())

    # no entries means no verdict yet, not a failed check
    cross_check = None
    if inputs.cross_checks:
        cross_check = compute_cross_check(inputs.cross_checks, inputs.powder_weight)

    summary.update({
        'crossCheckTotal': cross_check.combined_total if cross_check else 0.0,
        'crossCheckVariancePct': cross_check.variance_pct if cross_check else None,
        'crossCheckWithinTolerance': cross_check.is_within_tolerance if cross_check else None,
        'waterContentOutOfRange': is_water_content_out_of_range(
            yield_result.water_content_percentage
        ),
        'bagsOutOfRange': sum(
            1 for bag in inputs.bags if is_bag_weight_out_of_range(bag.weight)
        ),
    })
    return summary
