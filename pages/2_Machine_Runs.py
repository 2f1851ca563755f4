"""
Machine Runs
Document machine runs for an order: bags in, powder out, and the cross check
"""

import streamlit as st
import pandas as pd
from datetime import date
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import APP_CONFIG, THRESHOLDS, MACHINE_RUN_STATUSES, WIZARD_STEPS
from models import (
    RunInputs, add_bag, update_bag, remove_bag, rename_bag_date,
    add_cross_check, update_cross_check, remove_cross_check, missing_step_fields
)
from calculations import (
    compute_yield, compute_gram_ratio, compute_cross_check, cross_check_row_total,
    is_bag_weight_out_of_range, is_water_content_out_of_range,
    group_bags_by_date, bag_group_totals, run_summary, UNASSIGNED_DATE
)
from utils import (
    format_grams, format_percent, format_status,
    backup_form_draft, restore_form_draft, clear_form_draft, wizard_draft_id
)
from database import (
    init_supabase, get_organization_id, load_orders, load_machine_runs,
    save_machine_run, update_machine_run_status, delete_machine_run
)

st.set_page_config(page_title=f"Machine Runs | {APP_CONFIG['name']}", page_icon="⚙️", layout="wide")

FORM_TYPE = 'machine-run'

# within tolerance / outside / no entries yet
CROSS_CHECK_MARKERS = {True: '✅', False: '⚠️', None: '-'}


# =============================================================================
# SESSION STATE
# =============================================================================

def init_wizard_state():
    if 'run_inputs' not in st.session_state:
        st.session_state.run_inputs = RunInputs()
    if 'wizard_step' not in st.session_state:
        st.session_state.wizard_step = 1
    if 'wizard_run_id' not in st.session_state:
        st.session_state.wizard_run_id = None
    if 'wizard_order_id' not in st.session_state:
        st.session_state.wizard_order_id = None
    # bumped whenever inputs are replaced wholesale, so widgets re-read them
    if 'wizard_nonce' not in st.session_state:
        st.session_state.wizard_nonce = 0
    if 'run_message' not in st.session_state:
        st.session_state.run_message = ""


def load_into_wizard(inputs: RunInputs, run_id=None, step: int = 1, order_id=None):
    st.session_state.run_inputs = inputs
    if order_id is not None:
        st.session_state.wizard_order_id = order_id
    st.session_state.wizard_run_id = run_id
    st.session_state.wizard_step = step
    st.session_state.wizard_nonce += 1


def draft_id() -> str:
    return wizard_draft_id(st.session_state.wizard_order_id, st.session_state.wizard_run_id)


def set_inputs(inputs: RunInputs, rerun: bool = False):
    st.session_state.run_inputs = inputs
    backup_form_draft(FORM_TYPE, draft_id(), inputs)
    if rerun:
        st.rerun()


def wkey(name: str) -> str:
    return f"wiz_{st.session_state.wizard_nonce}_{name}"


def _parse_date(text: str):
    try:
        return date.fromisoformat(text) if text else None
    except ValueError:
        return None


def _date_text(value) -> str:
    return value.isoformat() if value else ''


# =============================================================================
# OUTPUTS - live, recomputed on every rerun
# =============================================================================

def display_outputs(inputs: RunInputs):
    """Run calculations and gram ratio cards"""
    result = compute_yield(inputs)
    gram_ratio = compute_gram_ratio(inputs, result)

    st.markdown("#### 🧮 Run Calculations")
    col1, col2, col3 = st.columns(3)
    col1.metric("Total bags weight", format_grams(result.total_bags_weight))
    col2.metric("Total wet weight", format_grams(result.total_wet_weight))
    col3.metric("Water removed", format_grams(result.water_removed))

    col1, col2, col3 = st.columns(3)
    col1.metric("Powder to pack per ml", f"{result.power_to_pack_per_ml:.4f}")
    col2.metric("Packed powder weight", format_grams(result.packed_powder_weight))
    col3.metric("Packing total", format_grams(result.packing_total))

    col1, col2, col3 = st.columns(3)
    col1.metric("Breastmilk water content", format_percent(result.water_content_percentage))
    col2.metric("Powder per unit", f"{result.powder_per_unit:.4f}")
    col3.metric("Water to add per unit", f"{result.water_to_add_per_unit:.4f}")

    if is_water_content_out_of_range(result.water_content_percentage):
        st.warning(
            f"⚠️ Water content {format_percent(result.water_content_percentage)} is outside the expected "
            f"{THRESHOLDS['water_content_min_pct']:g}-{THRESHOLDS['water_content_max_pct']:g}%. "
            "Please double-check bag weights and powder weight."
        )

    st.markdown("#### ⚖️ Gram Ratio")
    col1, col2, col3 = st.columns(3)
    col1.metric("Packed powder weight", format_grams(gram_ratio.gram_ratio_packed_powder_weight))
    col2.metric("Water to add", format_grams(gram_ratio.gram_ratio_water_to_add, unit='ml'))
    col3.metric("Packing total", format_grams(gram_ratio.gram_ratio_packing_total))


def display_cross_check_result(inputs: RunInputs, allow_navigation: bool = True):
    """Combined total vs declared powder weight, with the tolerance verdict"""
    if not inputs.cross_checks:
        st.caption("No cross-check entries yet.")
        return

    result = compute_cross_check(inputs.cross_checks, inputs.powder_weight)

    rows = pd.DataFrame({
        'Row': [f"Row {i}" for i in range(1, len(inputs.cross_checks) + 1)],
        'Powder (g)': [c.powder_weight or '0' for c in inputs.cross_checks],
        'Quantity': [c.quantity or '0' for c in inputs.cross_checks],
        'Total (g)': list(result.row_totals),
    })
    st.dataframe(rows, use_container_width=True, hide_index=True)

    col1, col2, col3 = st.columns(3)
    col1.metric("Combined total", format_grams(result.combined_total, decimals=2))
    col2.metric("Expected (powder weight)", format_grams(result.expected_weight, decimals=2))
    col3.metric(
        "Difference",
        format_grams(result.difference, decimals=2),
        delta=format_percent(result.variance_pct, decimals=2, signed=True),
        delta_color="off"
    )

    if result.expected_weight <= 0:
        return

    tolerance = THRESHOLDS['cross_check_tolerance_pct']
    if result.is_within_tolerance:
        st.success(f"✅ Within ±{tolerance:g}% tolerance")
    else:
        st.warning(
            f"⚠️ Outside ±{tolerance:g}% tolerance "
            f"({format_percent(result.variance_pct, decimals=2, signed=True)}). "
            "Consider adding remarks to document this discrepancy."
        )
        if allow_navigation and st.button("📝 Go to remarks", key=wkey('goto_remarks')):
            st.session_state.wizard_step = 1
            st.rerun()


# =============================================================================
# WIZARD STEPS
# =============================================================================

def step_info(inputs: RunInputs) -> RunInputs:
    st.subheader("Step 1: Info")
    col1, col2 = st.columns(2)
    with col1:
        mama_name = st.text_input("Mama name *", value=inputs.mama_name, key=wkey('mama_name'))
        mama_nric = st.text_input("Mama NRIC *", value=inputs.mama_nric, key=wkey('mama_nric'))
        date_expressed = st.date_input("Date expressed *", value=_parse_date(inputs.date_expressed),
                                       key=wkey('date_expressed'))
    with col2:
        handled_by = st.text_input("Handled by", value=inputs.handled_by, key=wkey('handled_by'))
        verified_by = st.text_input("Verified by", value=inputs.verified_by, key=wkey('verified_by'))

    remarks = st.text_area("Remarks", value=inputs.remarks, key=wkey('remarks'),
                           help="Document anything unusual, e.g. a failed cross check")

    return inputs.replace(
        mama_name=mama_name,
        mama_nric=mama_nric,
        date_expressed=_date_text(date_expressed),
        handled_by=handled_by,
        verified_by=verified_by,
        remarks=remarks,
    )


def step_bags(inputs: RunInputs) -> RunInputs:
    st.subheader("Step 2: Individual Bags")
    st.caption("Group bags by date and add weights for each bag")

    groups = group_bags_by_date(inputs.bags)
    totals = bag_group_totals(inputs.bags)

    for group_date, bags in groups.items():
        with st.container(border=True):
            head_col, total_col = st.columns([3, 1])
            with head_col:
                new_date = st.date_input(
                    "Date",
                    value=_parse_date('' if group_date == UNASSIGNED_DATE else group_date),
                    key=wkey(f"group_{bags[0].id}")
                )
            total_col.metric("Group total", format_grams(totals[group_date]))

            new_date_text = _date_text(new_date)
            current_date = '' if group_date == UNASSIGNED_DATE else group_date
            if new_date_text != current_date:
                set_inputs(rename_bag_date(inputs, current_date, new_date_text), rerun=True)

            for number, bag in enumerate(bags, start=1):
                weight_col, remove_col = st.columns([5, 1])
                with weight_col:
                    weight = st.text_input(f"Bag {number} weight (g)", value=bag.weight,
                                           key=wkey(f"weight_{bag.id}"))
                    if is_bag_weight_out_of_range(weight):
                        st.warning(
                            f"Are you sure? (Expected: {THRESHOLDS['bag_weight_min_g']}-"
                            f"{THRESHOLDS['bag_weight_max_g']}g)"
                        )
                with remove_col:
                    if st.button("✖", key=wkey(f"remove_{bag.id}")):
                        set_inputs(remove_bag(inputs, bag.id), rerun=True)
                if weight != bag.weight:
                    inputs = update_bag(inputs, bag.id, weight=weight)

            if st.button("➕ Add bag", key=wkey(f"add_{bags[0].id}")):
                set_inputs(add_bag(inputs, current_date), rerun=True)

    col1, col2 = st.columns([2, 1])
    with col1:
        group_date = st.date_input("New date group", value=date.today(), key=wkey('new_group_date'))
    with col2:
        st.write("")
        if st.button("➕ Add date group", key=wkey('add_group')):
            set_inputs(add_bag(inputs, _date_text(group_date)), rerun=True)

    st.metric("Total bags weight", format_grams(compute_yield(inputs).total_bags_weight))
    return inputs


def step_calculations(inputs: RunInputs) -> RunInputs:
    st.subheader("Step 3: Calculation Inputs")
    input_col, output_col = st.columns(2)

    with input_col:
        bags_weight = st.text_input("Bags weight (g)", value=inputs.bags_weight, key=wkey('bags_weight'),
                                    help="Weight of the empty bags / packaging")
        powder_weight = st.text_input("Powder weight (g)", value=inputs.powder_weight, key=wkey('powder_weight'))
        packing_requirements = st.text_input("Packing requirements (ml)", value=inputs.packing_requirements,
                                             key=wkey('packing_requirements'))
        water_to_add = st.text_input("Label water to add (ml)", value=inputs.water_to_add,
                                     key=wkey('water_to_add'))
        water_activity_level = st.text_input("Water activity level", value=inputs.water_activity_level,
                                             key=wkey('water_activity_level'))
        gram_ratio_staff_input = st.text_input("Gram ratio target (ml)", value=inputs.gram_ratio_staff_input,
                                               key=wkey('gram_ratio_staff_input'))
        date_processed = st.date_input("Date processed", value=_parse_date(inputs.date_processed),
                                       key=wkey('date_processed'))
        date_packed = st.date_input("Date packed", value=_parse_date(inputs.date_packed),
                                    key=wkey('date_packed'))

    inputs = inputs.replace(
        bags_weight=bags_weight,
        powder_weight=powder_weight,
        packing_requirements=packing_requirements,
        water_to_add=water_to_add,
        water_activity_level=water_activity_level,
        gram_ratio_staff_input=gram_ratio_staff_input,
        date_processed=_date_text(date_processed),
        date_packed=_date_text(date_packed),
    )

    with output_col:
        display_outputs(inputs)

    st.divider()
    st.markdown("#### ✅ Final Cross Check")
    check_col, result_col = st.columns(2)

    with check_col:
        for number, check in enumerate(inputs.cross_checks, start=1):
            powder_col, qty_col, total_col, remove_col = st.columns([3, 2, 2, 1])
            with powder_col:
                powder = st.text_input(f"Row {number}: Powder weight (g)", value=check.powder_weight,
                                       key=wkey(f"check_powder_{check.id}"))
            with qty_col:
                quantity = st.text_input("Quantity", value=check.quantity, key=wkey(f"check_qty_{check.id}"))
            if powder != check.powder_weight or quantity != check.quantity:
                inputs = update_cross_check(inputs, check.id, powder_weight=powder, quantity=quantity)
                check = next(c for c in inputs.cross_checks if c.id == check.id)
            total_col.metric("Total", format_grams(cross_check_row_total(check), decimals=2))
            with remove_col:
                if st.button("✖", key=wkey(f"remove_check_{check.id}")):
                    set_inputs(remove_cross_check(inputs, check.id), rerun=True)

        if st.button("➕ Add row", key=wkey('add_check')):
            set_inputs(add_cross_check(inputs), rerun=True)

    with result_col:
        display_cross_check_result(inputs)

    return inputs


def display_wizard(supabase, org_id):
    inputs = st.session_state.run_inputs
    step = st.session_state.wizard_step
    run_id = st.session_state.wizard_run_id
    order_id = st.session_state.wizard_order_id

    st.header("✏️ Edit Machine Run" if run_id else "➕ New Machine Run")

    draft = restore_form_draft(FORM_TYPE, draft_id())
    if draft and draft['data'] != inputs:
        st.info(f"💾 Unsaved draft from {draft['timestamp']:%Y-%m-%d %H:%M}")
        col1, col2 = st.columns(2)
        if col1.button("Restore draft"):
            load_into_wizard(draft['data'], run_id, step)
            st.rerun()
        if col2.button("Discard draft"):
            clear_form_draft(FORM_TYPE, draft_id())
            st.rerun()

    st.progress(step / len(WIZARD_STEPS),
                text=" → ".join(
                    f"**{s['title']}**" if s['number'] == step else s['title'] for s in WIZARD_STEPS
                ))

    if step == 1:
        inputs = step_info(inputs)
    elif step == 2:
        inputs = step_bags(inputs)
    else:
        inputs = step_calculations(inputs)

    if inputs != st.session_state.run_inputs:
        set_inputs(inputs)

    missing = missing_step_fields(inputs, step)
    if missing:
        st.caption(f"Still needed: {', '.join(missing)}")

    prev_col, next_col, cancel_col = st.columns(3)
    with prev_col:
        if st.button("⬅️ Previous", disabled=step == 1):
            st.session_state.wizard_step = step - 1
            st.rerun()
    with next_col:
        if step < len(WIZARD_STEPS):
            if st.button("Next ➡️", disabled=bool(missing), type="primary"):
                st.session_state.wizard_step = step + 1
                st.rerun()
        else:
            if st.button("💾 Save", type="primary"):
                with st.spinner("Saving machine run..."):
                    result = save_machine_run(supabase, order_id, inputs, run_id, org_id=org_id)
                if result.success:
                    clear_form_draft(FORM_TYPE, draft_id())
                    load_into_wizard(RunInputs())
                    st.session_state.run_message = f"✅ {result.message}"
                    st.rerun()
                else:
                    st.error(f"❌ {result.message}")
                    st.caption("Your inputs are kept as a draft; try saving again.")
    with cancel_col:
        if st.button("Cancel"):
            load_into_wizard(RunInputs())
            st.rerun()


# =============================================================================
# EXISTING RUNS
# =============================================================================

def display_runs(supabase, org_id, runs):
    st.header("📋 Machine Runs")

    if not runs:
        st.info("No machine runs for this order yet.")
        return

    summaries = []
    for run in runs:
        inputs = RunInputs.from_record(run, run.get('individual_bags') or [], run.get('cross_checks') or [])
        summary = run_summary(inputs)
        summaries.append({
            'Run': run.get('run_number'),
            'Status': format_status(run.get('status')),
            'Mama': run.get('mama_name') or '',
            'Bags': len(inputs.bags),
            'Wet weight (g)': summary['totalWetWeight'],
            'Powder (g)': run.get('powder_weight_g'),
            'Packing total (g)': summary['packingTotal'],
            'Water content (%)': summary['waterContentPercentage'],
            'Cross check': CROSS_CHECK_MARKERS[summary['crossCheckWithinTolerance']],
        })
    st.dataframe(pd.DataFrame(summaries), use_container_width=True, hide_index=True)

    labels = {run['machine_run_id']: f"Run {run.get('run_number')}" for run in runs}
    selected_id = st.selectbox("Run details", options=list(labels.keys()),
                               format_func=lambda rid: labels[rid])
    run = next(r for r in runs if r['machine_run_id'] == selected_id)
    display_run_detail(supabase, org_id, run)


def display_run_detail(supabase, org_id, run):
    inputs = RunInputs.from_record(run, run.get('individual_bags') or [], run.get('cross_checks') or [])

    with st.container(border=True):
        st.markdown(f"### Run {run.get('run_number')} · {format_status(run.get('status'))}")
        col1, col2, col3, col4 = st.columns(4)
        col1.markdown(f"**Mama:** {inputs.mama_name or '-'}")
        col2.markdown(f"**Expressed:** {inputs.date_expressed or '-'}")
        col3.markdown(f"**Processed:** {inputs.date_processed or '-'}")
        col4.markdown(f"**Packed:** {inputs.date_packed or '-'}")
        st.markdown(f"**Handled by:** {inputs.handled_by or '-'} · **Verified by:** {inputs.verified_by or '-'}")
        if inputs.remarks:
            st.info(f"📝 {inputs.remarks}")

        tab1, tab2, tab3 = st.tabs(["🧮 Outputs", "🍼 Individual Bags", "✅ Cross Checks"])
        with tab1:
            display_outputs(inputs)
        with tab2:
            totals = bag_group_totals(inputs.bags)
            for group_date, bags in group_bags_by_date(inputs.bags).items():
                st.markdown(f"**{group_date}** · {len(bags)} {'bag' if len(bags) == 1 else 'bags'} · "
                            f"{format_grams(totals[group_date])}")
                st.dataframe(pd.DataFrame({
                    'Bag': [f"Bag {i}" for i in range(1, len(bags) + 1)],
                    'Weight (g)': [b.weight for b in bags],
                    'Check': ['⚠️' if is_bag_weight_out_of_range(b.weight) else '' for b in bags],
                }), use_container_width=True, hide_index=True)
            st.metric("All bags", format_grams(compute_yield(inputs).total_bags_weight))
        with tab3:
            display_cross_check_result(inputs, allow_navigation=False)

        col1, col2, col3 = st.columns(3)
        with col1:
            status = st.selectbox(
                "Status", MACHINE_RUN_STATUSES,
                index=MACHINE_RUN_STATUSES.index(run['status']) if run.get('status') in MACHINE_RUN_STATUSES else 0,
                format_func=format_status,
                key=f"status_{run['machine_run_id']}"
            )
            if st.button("Update status", key=f"update_status_{run['machine_run_id']}",
                         disabled=status == run.get('status')):
                result = update_machine_run_status(supabase, run['machine_run_id'], status, org_id)
                if result.success:
                    st.session_state.run_message = f"✅ {result.message}"
                    st.rerun()
                st.error(f"❌ {result.message}")
        with col2:
            st.write("")
            if st.button("✏️ Edit in wizard", key=f"edit_{run['machine_run_id']}"):
                load_into_wizard(inputs, run['machine_run_id'], order_id=run.get('order_id'))
                st.rerun()
        with col3:
            st.write("")
            if st.button("🗑️ Delete run", key=f"delete_{run['machine_run_id']}"):
                result = delete_machine_run(supabase, run['machine_run_id'], org_id)
                if result.success:
                    st.session_state.run_message = f"✅ {result.message}"
                    st.rerun()
                st.error(f"❌ {result.message}")


# =============================================================================
# PAGE
# =============================================================================

st.title("⚙️ Machine Runs")
st.markdown("Bags in, powder out: document each run and verify the yield")

init_wizard_state()

supabase = init_supabase()
org_id = get_organization_id()

if not supabase:
    st.error("Database not connected")
    st.stop()

if st.session_state.run_message:
    st.success(st.session_state.run_message)
    st.session_state.run_message = ""

orders_df = load_orders(supabase, org_id)
if orders_df.empty:
    st.info("No orders yet. Create one on the Dashboard page.")
    st.stop()

order_labels = {
    row['order_id']: f"{row['shopify_order_id']} - {row.get('customer_name', '')} ({format_status(row['status'])})"
    for _, row in orders_df.iterrows()
}
order_id = st.selectbox("Order", options=list(order_labels.keys()), format_func=lambda oid: order_labels[oid])

# the wizard saves against the order it was opened for; switching orders starts
# a fresh form, and any unsaved draft stays with its own order
if st.session_state.wizard_order_id != order_id:
    load_into_wizard(RunInputs(), order_id=order_id)

runs = load_machine_runs(supabase, order_id, org_id)

runs_tab, wizard_tab = st.tabs(["📋 Runs", "➕ New / Edit Run"])
with runs_tab:
    display_runs(supabase, org_id, runs)
with wizard_tab:
    display_wizard(supabase, org_id)
