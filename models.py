"""
Value types for machine-run data held by the dashboard.

RunInputs is what the machine-run wizard edits. It is immutable: every edit
returns a new RunInputs, and derived outputs are recomputed from scratch by
calculations.py each time.
"""

import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple


def _to_text(value: Any) -> str:
    """Render a persisted value back into form text (None -> '')."""
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class IndividualBagEntry:
    """One physically weighed bag of thawed milk."""
    id: str
    date: str = ''
    weight: str = ''


@dataclass(frozen=True)
class CrossCheckEntry:
    """One repackaging batch: powder weight per unit × quantity of units."""
    id: str
    powder_weight: str = ''
    quantity: str = ''


@dataclass(frozen=True)
class RunInputs:
    """Everything staff type into the machine-run wizard, as entered text."""
    # Step 1: Info
    mama_name: str = ''
    mama_nric: str = ''
    date_expressed: str = ''
    handled_by: str = ''
    verified_by: str = ''
    remarks: str = ''

    # Step 2: Individual Bags
    bags: Tuple[IndividualBagEntry, ...] = field(default_factory=tuple)

    # Step 3: Calculation Inputs
    bags_weight: str = ''
    powder_weight: str = ''
    packing_requirements: str = ''
    water_to_add: str = ''
    water_activity_level: str = ''
    gram_ratio_staff_input: str = ''
    date_processed: str = ''
    date_packed: str = ''
    cross_checks: Tuple[CrossCheckEntry, ...] = field(default_factory=tuple)

    def replace(self, **changes) -> 'RunInputs':
        return replace(self, **changes)

    @classmethod
    def from_record(
        cls,
        machine_run: Dict,
        bag_rows: Optional[List[Dict]] = None,
        cross_check_rows: Optional[List[Dict]] = None
    ) -> 'RunInputs':
        """
        Load a persisted machine run back into wizard form.

        Args:
            machine_run: Row from the machine_runs table
            bag_rows: Rows from individual_bags (ordered by bag_number)
            cross_check_rows: Rows from cross_checks

        Returns:
            RunInputs with numbers rendered back to text
        """
        bags = tuple(
            IndividualBagEntry(
                id=str(row.get('bag_id') or _new_id('bag')),
                date=_to_text(row.get('date_expressed')),
                weight=_to_text(row.get('weight_g')),
            )
            for row in sorted(bag_rows or [], key=lambda r: r.get('bag_number') or 0)
        )
        checks = tuple(
            CrossCheckEntry(
                id=str(row.get('cross_check_id') or _new_id('check')),
                powder_weight=_to_text(row.get('powder_weight_g')),
                quantity=_to_text(row.get('quantity')),
            )
            for row in cross_check_rows or []
        )

        return cls(
            mama_name=_to_text(machine_run.get('mama_name')),
            mama_nric=_to_text(machine_run.get('mama_nric')),
            date_expressed=_to_text(machine_run.get('date_received')),
            handled_by=_to_text(machine_run.get('handled_by')),
            verified_by=_to_text(machine_run.get('verified_by')),
            remarks=_to_text(machine_run.get('remarks')),
            bags=bags,
            bags_weight=_to_text(machine_run.get('bags_weight_g')),
            powder_weight=_to_text(machine_run.get('powder_weight_g')),
            packing_requirements=_to_text(machine_run.get('packing_requirements_ml')),
            water_to_add=_to_text(machine_run.get('label_water_to_add_ml')),
            water_activity_level=_to_text(machine_run.get('water_activity_level')),
            gram_ratio_staff_input=_to_text(machine_run.get('gram_ratio_staff_input_ml')),
            date_processed=_to_text(machine_run.get('date_processed')),
            date_packed=_to_text(machine_run.get('date_packed')),
            cross_checks=checks,
        )


# =============================================================================
# IMMUTABLE EDITS - each returns a new RunInputs
# =============================================================================

def add_bag(inputs: RunInputs, date: str = '') -> RunInputs:
    bag = IndividualBagEntry(id=_new_id('bag'), date=date)
    return inputs.replace(bags=inputs.bags + (bag,))


def update_bag(inputs: RunInputs, bag_id: str, **changes) -> RunInputs:
    bags = tuple(
        replace(bag, **changes) if bag.id == bag_id else bag
        for bag in inputs.bags
    )
    return inputs.replace(bags=bags)


def remove_bag(inputs: RunInputs, bag_id: str) -> RunInputs:
    return inputs.replace(bags=tuple(b for b in inputs.bags if b.id != bag_id))


def rename_bag_date(inputs: RunInputs, old_date: str, new_date: str) -> RunInputs:
    """Move every bag of one date group to another date."""
    bags = tuple(
        replace(bag, date=new_date) if bag.date == old_date else bag
        for bag in inputs.bags
    )
    return inputs.replace(bags=bags)


def add_cross_check(inputs: RunInputs) -> RunInputs:
    check = CrossCheckEntry(id=_new_id('check'))
    return inputs.replace(cross_checks=inputs.cross_checks + (check,))


def update_cross_check(inputs: RunInputs, check_id: str, **changes) -> RunInputs:
    checks = tuple(
        replace(check, **changes) if check.id == check_id else check
        for check in inputs.cross_checks
    )
    return inputs.replace(cross_checks=checks)


def remove_cross_check(inputs: RunInputs, check_id: str) -> RunInputs:
    return inputs.replace(
        cross_checks=tuple(c for c in inputs.cross_checks if c.id != check_id)
    )


def missing_step_fields(inputs: RunInputs, step: int) -> List[str]:
    """
    Fields that still need a value before the wizard can move past a step.

    Step 3 has no required fields: calculation inputs may be filled later.
    """
    missing = []
    if step == 1:
        if not inputs.mama_name.strip():
            missing.append('Mama name')
        if not inputs.mama_nric.strip():
            missing.append('Mama NRIC')
        if not inputs.date_expressed:
            missing.append('Date expressed')
    elif step == 2:
        if not inputs.bags:
            missing.append('At least one bag')
        elif not all(bag.date and bag.weight for bag in inputs.bags):
            missing.append('Date and weight for every bag')
    return missing
