"""
Database module for Supabase operations
Handles all data persistence for the Wonderbewbz Operations Dashboard

Every table carries organization_id. Row-level security on the Supabase side
does the real tenant isolation; the filters here keep queries explicit.
"""

import streamlit as st
from supabase import create_client, Client
import pandas as pd
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Tuple, Callable
import logging

from config import ORDER_STATUSES, MACHINE_RUN_STATUSES
from models import RunInputs
from utils import (
    retry_operation, format_database_error, log_error,
    to_float_or_none, empty_string_to_null
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ORDER_SELECT = '*, customer:customers(*)'
MACHINE_RUN_SELECT = '*, individual_bags(*), cross_checks(*)'
COMPLETE_ORDER_SELECT = '*, customer:customers(*), machine_runs(*, individual_bags(*), cross_checks(*))'


# =============================================================================
# CONNECTION
# =============================================================================

def init_supabase() -> Optional[Client]:
    """Initialize Supabase client from Streamlit secrets"""
    try:
        url = st.secrets["supabase"]["url"]
        key = st.secrets["supabase"]["key"]
        return create_client(url, key)
    except Exception as e:
        st.warning(f"⚠️ Supabase not configured. Error: {e}")
        return None


def get_organization_id() -> Optional[str]:
    """Organization (tenant) this dashboard session works in"""
    try:
        return st.secrets["app"]["organization_id"]
    except Exception:
        logger.info("No organization_id in secrets; relying on row-level security alone")
        return None


# =============================================================================
# HELPER FUNCTIONS (DRY - Don't Repeat Yourself)
# =============================================================================

def _scoped(query, org_id: Optional[str]):
    """Add the organization filter when one is configured"""
    if org_id:
        return query.eq('organization_id', org_id)
    return query


def _with_org(record: Dict, org_id: Optional[str]) -> Dict:
    if org_id:
        return {**record, 'organization_id': org_id}
    return dict(record)


def _write(operation: Callable[[], Any], context: str) -> Tuple[Any, Optional[str]]:
    """
    Run a write with retry/backoff.

    Returns:
        (response, None) on success, (None, user-facing message) on failure
    """
    result = retry_operation(operation)
    if result.success:
        return result.data, None

    log_error(context, result.error, attempts=result.attempts)
    return None, format_database_error(result.error)['message']


def _first_row(response) -> Optional[Dict]:
    data = getattr(response, 'data', None)
    if isinstance(data, list):
        return data[0] if data else None
    return data


def _select_all(supabase: Client, table: str, select: str, org_id: Optional[str],
                filters: Dict[str, Any] = None, order_by: str = None,
                desc: bool = False) -> List[Dict]:
    """Paged select, same pattern as every list view needs"""
    all_data = []
    page_size = 1000
    offset = 0

    while True:
        query = _scoped(supabase.table(table).select(select), org_id)
        for column, value in (filters or {}).items():
            query = query.eq(column, value)
        if order_by:
            query = query.order(order_by, desc=desc)

        result = query.range(offset, offset + page_size - 1).execute()

        if result.data:
            all_data.extend(result.data)
            if len(result.data) < page_size:
                break
            offset += page_size
        else:
            break

    return all_data


@dataclass
class SaveResult:
    success: bool
    record_id: Optional[str] = None
    message: str = ''


# =============================================================================
# CUSTOMERS
# =============================================================================

def load_customers(supabase: Client, org_id: Optional[str] = None) -> pd.DataFrame:
    """Load customers, newest first"""
    if not supabase:
        return pd.DataFrame()

    try:
        data = _select_all(supabase, 'customers', '*', org_id,
                           order_by='created_at', desc=True)
        return pd.DataFrame(data)
    except Exception as e:
        logger.error(f"Error loading customers: {e}")
        return pd.DataFrame()


def get_customer(supabase: Client, customer_id: str, org_id: Optional[str] = None) -> Optional[Dict]:
    if not supabase:
        return None

    try:
        result = _scoped(
            supabase.table('customers').select('*').eq('customer_id', customer_id), org_id
        ).limit(1).execute()
        return _first_row(result)
    except Exception as e:
        logger.error(f"Error loading customer {customer_id}: {e}")
        return None


def save_customer(
    supabase: Client,
    values: Dict,
    customer_id: Optional[str] = None,
    org_id: Optional[str] = None
) -> SaveResult:
    """
    Insert a new customer or update an existing one.

    Args:
        supabase: Supabase client
        values: Cleaned customer values (utils.cleanup_customer_values)
        customer_id: Existing customer to update, or None to insert
        org_id: Organization scope

    Returns:
        SaveResult with the customer_id
    """
    if not supabase:
        return SaveResult(False, message='Database not connected')

    if not values.get('name'):
        return SaveResult(False, message='Customer name is required')

    if customer_id:
        response, error = _write(
            lambda: _scoped(
                supabase.table('customers').update(values).eq('customer_id', customer_id), org_id
            ).execute(),
            'update customer'
        )
    else:
        response, error = _write(
            lambda: supabase.table('customers').insert(_with_org(values, org_id)).execute(),
            'create customer'
        )

    if error:
        return SaveResult(False, message=error)

    row = _first_row(response) or {}
    saved_id = row.get('customer_id', customer_id)
    logger.info(f"Saved customer {saved_id}")
    return SaveResult(True, saved_id, 'Customer saved')


def delete_customer(supabase: Client, customer_id: str, org_id: Optional[str] = None) -> SaveResult:
    if not supabase:
        return SaveResult(False, message='Database not connected')

    _, error = _write(
        lambda: _scoped(
            supabase.table('customers').delete().eq('customer_id', customer_id), org_id
        ).execute(),
        'delete customer'
    )
    if error:
        return SaveResult(False, customer_id, error)

    logger.info(f"Deleted customer {customer_id}")
    return SaveResult(True, customer_id, 'Customer deleted')


# =============================================================================
# ORDERS
# =============================================================================

def load_orders(
    supabase: Client,
    org_id: Optional[str] = None,
    status: Optional[str] = None
) -> pd.DataFrame:
    """
    Load orders joined with their customer.

    Returns:
        DataFrame with order columns plus 'customer_name'
    """
    if not supabase:
        return pd.DataFrame()

    try:
        filters = {'status': status} if status else None
        data = _select_all(supabase, 'orders', ORDER_SELECT, org_id,
                           filters=filters, order_by='created_at', desc=True)
    except Exception as e:
        logger.error(f"Error loading orders: {e}")
        return pd.DataFrame()

    if not data:
        return pd.DataFrame()

    df = pd.DataFrame(data)
    df['customer_name'] = [
        (row.get('customer') or {}).get('name', '') for row in data
    ]
    return df.drop(columns=['customer'], errors='ignore')


def get_order(supabase: Client, order_id: str, org_id: Optional[str] = None) -> Optional[Dict]:
    """Complete order view: customer, machine runs, their bags and cross checks"""
    if not supabase:
        return None

    try:
        result = _scoped(
            supabase.table('orders').select(COMPLETE_ORDER_SELECT).eq('order_id', order_id), org_id
        ).limit(1).execute()
        return _first_row(result)
    except Exception as e:
        logger.error(f"Error loading order {order_id}: {e}")
        return None


def save_order(
    supabase: Client,
    values: Dict,
    order_id: Optional[str] = None,
    org_id: Optional[str] = None
) -> SaveResult:
    """Insert or update an order (values from utils.cleanup_order_values)"""
    if not supabase:
        return SaveResult(False, message='Database not connected')

    if not values.get('shopify_order_id') or not values.get('customer_id'):
        return SaveResult(False, message='Order ID and customer are required')

    if values.get('status') not in ORDER_STATUSES:
        return SaveResult(False, message=f"Unknown order status: {values.get('status')}")

    if order_id:
        response, error = _write(
            lambda: _scoped(
                supabase.table('orders').update(values).eq('order_id', order_id), org_id
            ).execute(),
            'update order'
        )
    else:
        response, error = _write(
            lambda: supabase.table('orders').insert(_with_org(values, org_id)).execute(),
            'create order'
        )

    if error:
        return SaveResult(False, message=error)

    row = _first_row(response) or {}
    saved_id = row.get('order_id', order_id)
    logger.info(f"Saved order {saved_id}")
    return SaveResult(True, saved_id, 'Order saved')


def update_order_status(
    supabase: Client,
    order_id: str,
    status: str,
    org_id: Optional[str] = None
) -> SaveResult:
    if status not in ORDER_STATUSES:
        return SaveResult(False, order_id, f"Unknown order status: {status}")
    if not supabase:
        return SaveResult(False, order_id, 'Database not connected')

    _, error = _write(
        lambda: _scoped(
            supabase.table('orders').update({'status': status}).eq('order_id', order_id), org_id
        ).execute(),
        'update order status'
    )
    if error:
        return SaveResult(False, order_id, error)
    return SaveResult(True, order_id, f"Order marked {status}")


def bulk_update_order_status(
    supabase: Client,
    order_ids: List[str],
    status: str,
    org_id: Optional[str] = None
) -> int:
    """Set the same status on several orders. Returns how many succeeded."""
    updated = 0
    for order_id in order_ids:
        if update_order_status(supabase, order_id, status, org_id).success:
            updated += 1
    return updated


def delete_order(supabase: Client, order_id: str, org_id: Optional[str] = None) -> SaveResult:
    if not supabase:
        return SaveResult(False, message='Database not connected')

    _, error = _write(
        lambda: _scoped(
            supabase.table('orders').delete().eq('order_id', order_id), org_id
        ).execute(),
        'delete order'
    )
    if error:
        return SaveResult(False, order_id, error)

    logger.info(f"Deleted order {order_id}")
    return SaveResult(True, order_id, 'Order deleted')


# =============================================================================
# MACHINE RUNS
# =============================================================================

def load_machine_runs(
    supabase: Client,
    order_id: Optional[str] = None,
    org_id: Optional[str] = None
) -> List[Dict]:
    """Machine runs (with bags and cross checks), ordered by run number"""
    if not supabase:
        return []

    try:
        filters = {'order_id': order_id} if order_id else None
        return _select_all(supabase, 'machine_runs', MACHINE_RUN_SELECT, org_id,
                           filters=filters, order_by='run_number')
    except Exception as e:
        logger.error(f"Error loading machine runs: {e}")
        return []


def get_machine_run(supabase: Client, machine_run_id: str, org_id: Optional[str] = None) -> Optional[Dict]:
    if not supabase:
        return None

    try:
        result = _scoped(
            supabase.table('machine_runs').select(MACHINE_RUN_SELECT)
            .eq('machine_run_id', machine_run_id), org_id
        ).limit(1).execute()
        return _first_row(result)
    except Exception as e:
        logger.error(f"Error loading machine run {machine_run_id}: {e}")
        return None


def load_run_inputs(supabase: Client, machine_run_id: str, org_id: Optional[str] = None) -> Optional[RunInputs]:
    """Load a persisted run back into the wizard's input shape"""
    record = get_machine_run(supabase, machine_run_id, org_id)
    if not record:
        return None
    return RunInputs.from_record(
        record,
        record.get('individual_bags') or [],
        record.get('cross_checks') or []
    )


def get_next_run_number(supabase: Client, order_id: str, org_id: Optional[str] = None) -> int:
    """Run numbers count up per order, starting at 1"""
    result = _scoped(
        supabase.table('machine_runs').select('run_number').eq('order_id', order_id), org_id
    ).order('run_number', desc=True).limit(1).execute()

    if result.data:
        return int(result.data[0].get('run_number') or 0) + 1
    return 1


def machine_run_payload(inputs: RunInputs) -> Dict[str, Any]:
    """
    Transform wizard inputs to the machine_runs schema.

    Blank numeric text is stored as NULL, not 0.
    """
    return {
        **empty_string_to_null({
            'mama_name': inputs.mama_name.strip(),
            'mama_nric': inputs.mama_nric.strip(),
            'date_received': inputs.date_expressed,
            'date_processed': inputs.date_processed,
            'date_packed': inputs.date_packed,
            'remarks': inputs.remarks.strip(),
            'handled_by': inputs.handled_by.strip(),
            'verified_by': inputs.verified_by.strip(),
        }),
        'bags_weight_g': to_float_or_none(inputs.bags_weight),
        'powder_weight_g': to_float_or_none(inputs.powder_weight),
        'packing_requirements_ml': to_float_or_none(inputs.packing_requirements),
        'label_water_to_add_ml': to_float_or_none(inputs.water_to_add),
        'water_activity_level': to_float_or_none(inputs.water_activity_level),
        'gram_ratio_staff_input_ml': to_float_or_none(inputs.gram_ratio_staff_input),
    }


def bag_payloads(inputs: RunInputs, machine_run_id: str, org_id: Optional[str] = None) -> List[Dict]:
    """Bags numbered 1..n in entry order"""
    return [
        _with_org({
            'machine_run_id': machine_run_id,
            'bag_number': number,
            'date_expressed': bag.date or None,
            'weight_g': to_float_or_none(bag.weight),
        }, org_id)
        for number, bag in enumerate(inputs.bags, start=1)
    ]


def cross_check_payloads(inputs: RunInputs, machine_run_id: str, org_id: Optional[str] = None) -> List[Dict]:
    """Cross checks with at least one value entered"""
    payloads = []
    for check in inputs.cross_checks:
        powder = to_float_or_none(check.powder_weight)
        quantity = to_float_or_none(check.quantity)
        if powder is None and quantity is None:
            continue
        payloads.append(_with_org({
            'machine_run_id': machine_run_id,
            'powder_weight_g': powder,
            'quantity': quantity,
        }, org_id))
    return payloads


def _replace_children(supabase: Client, table: str, machine_run_id: str,
                      rows: List[Dict], org_id: Optional[str]) -> Optional[str]:
    """Delete then re-insert a run's child rows. Returns an error message or None."""
    _, error = _write(
        lambda: _scoped(
            supabase.table(table).delete().eq('machine_run_id', machine_run_id), org_id
        ).execute(),
        f"clear {table}"
    )
    if error or not rows:
        return error

    _, error = _write(
        lambda: supabase.table(table).insert(rows).execute(),
        f"insert {table}"
    )
    return error


def save_machine_run(
    supabase: Client,
    order_id: str,
    inputs: RunInputs,
    machine_run_id: Optional[str] = None,
    status: Optional[str] = None,
    org_id: Optional[str] = None,
    verify: bool = True
) -> SaveResult:
    """
    Save a machine run with its individual bags and cross checks.

    New runs get the next run number for the order and status 'pending'.
    On edit, the run's bags and cross checks are replaced wholesale.

    Args:
        supabase: Supabase client
        order_id: Order the run belongs to
        inputs: Wizard inputs
        machine_run_id: Existing run to update, or None to create
        status: Optional status override
        org_id: Organization scope
        verify: Re-query after saving to confirm all rows landed

    Returns:
        SaveResult with the machine_run_id
    """
    if not supabase:
        return SaveResult(False, message='Database not connected')

    if status is not None and status not in MACHINE_RUN_STATUSES:
        return SaveResult(False, machine_run_id, f"Unknown machine run status: {status}")

    payload = machine_run_payload(inputs)

    if machine_run_id:
        if status:
            payload['status'] = status
        response, error = _write(
            lambda: _scoped(
                supabase.table('machine_runs').update(payload)
                .eq('machine_run_id', machine_run_id), org_id
            ).execute(),
            'update machine run'
        )
    else:
        try:
            run_number = get_next_run_number(supabase, order_id, org_id)
        except Exception as e:
            log_error('next run number', e, order_id=order_id)
            return SaveResult(False, message=format_database_error(e)['message'])

        payload.update({
            'order_id': order_id,
            'run_number': run_number,
            'status': status or 'pending',
        })
        response, error = _write(
            lambda: supabase.table('machine_runs').insert(_with_org(payload, org_id)).execute(),
            'create machine run'
        )

    if error:
        return SaveResult(False, machine_run_id, error)

    row = _first_row(response) or {}
    run_id = row.get('machine_run_id', machine_run_id)
    if not run_id:
        return SaveResult(False, message='Machine run was not returned after save')

    bags = bag_payloads(inputs, run_id, org_id)
    checks = cross_check_payloads(inputs, run_id, org_id)

    for table, rows in (('individual_bags', bags), ('cross_checks', checks)):
        error = _replace_children(supabase, table, run_id, rows, org_id)
        if error:
            return SaveResult(False, run_id, f"Machine run saved but {table.replace('_', ' ')} failed: {error}")

    logger.info(f"Saved machine run {run_id} with {len(bags)} bags, {len(checks)} cross checks")

    if verify:
        verification = verify_multi_table_save(supabase, [
            {'table': 'machine_runs', 'id_field': 'machine_run_id', 'id_value': run_id, 'expected_count': 1},
            {'table': 'individual_bags', 'id_field': 'machine_run_id', 'id_value': run_id, 'expected_count': len(bags)},
            {'table': 'cross_checks', 'id_field': 'machine_run_id', 'id_value': run_id, 'expected_count': len(checks)},
        ])
        if not verification.success:
            return SaveResult(False, run_id, verification.message)

    return SaveResult(True, run_id, 'Machine run saved')


def update_machine_run_status(
    supabase: Client,
    machine_run_id: str,
    status: str,
    org_id: Optional[str] = None
) -> SaveResult:
    if status not in MACHINE_RUN_STATUSES:
        return SaveResult(False, machine_run_id, f"Unknown machine run status: {status}")
    if not supabase:
        return SaveResult(False, machine_run_id, 'Database not connected')

    _, error = _write(
        lambda: _scoped(
            supabase.table('machine_runs').update({'status': status})
            .eq('machine_run_id', machine_run_id), org_id
        ).execute(),
        'update machine run status'
    )
    if error:
        return SaveResult(False, machine_run_id, error)
    return SaveResult(True, machine_run_id, f"Machine run marked {status}")


def delete_machine_run(supabase: Client, machine_run_id: str, org_id: Optional[str] = None) -> SaveResult:
    """Delete a run together with its bags and cross checks"""
    if not supabase:
        return SaveResult(False, message='Database not connected')

    for table in ('individual_bags', 'cross_checks', 'machine_runs'):
        _, error = _write(
            lambda: _scoped(
                supabase.table(table).delete().eq('machine_run_id', machine_run_id), org_id
            ).execute(),
            f"delete {table}"
        )
        if error:
            return SaveResult(False, machine_run_id, error)

    logger.info(f"Deleted machine run {machine_run_id}")
    return SaveResult(True, machine_run_id, 'Machine run deleted')


# =============================================================================
# SAVE VERIFICATION - re-query to confirm data was persisted
# =============================================================================

def verify_save(
    supabase: Client,
    table: str,
    id_field: str,
    id_value: str,
    select: str = '*'
) -> SaveResult:
    """Confirm a record exists after a mutation"""
    try:
        result = supabase.table(table).select(select).eq(id_field, id_value).limit(1).execute()
    except Exception as e:
        logger.warning(f"Verification error for {table}: {e}")
        return SaveResult(False, id_value, f"Verification error: {e}")

    if not result.data:
        logger.warning(f"Record {id_value} missing from {table} after save")
        return SaveResult(False, id_value,
                          'Record not found after save. The operation may have failed silently.')

    return SaveResult(True, id_value, 'Verified')


def verify_multi_table_save(supabase: Client, checks: List[Dict[str, Any]]) -> SaveResult:
    """
    Confirm related records exist (a machine run with its bags and cross checks).

    Args:
        supabase: Supabase client
        checks: Dicts with table, id_field, id_value and optional expected_count.
            A check expecting 0 rows is skipped.

    Returns:
        SaveResult; message names the first table that did not match
    """
    for check in checks:
        expected = check.get('expected_count')
        if expected == 0:
            continue

        try:
            result = supabase.table(check['table']).select('*', count='exact').eq(
                check['id_field'], check['id_value']
            ).execute()
        except Exception as e:
            logger.warning(f"Verification failed for {check['table']}: {e}")
            return SaveResult(False, check['id_value'], f"Verification failed for {check['table']}: {e}")

        rows = result.data or []
        count = result.count if result.count is not None else len(rows)

        if expected is not None and count != expected:
            logger.warning(f"Expected {expected} rows in {check['table']}, found {count}")
            return SaveResult(False, check['id_value'],
                              f"Expected {expected} records in {check['table']}, found {count}")

        if not rows:
            return SaveResult(False, check['id_value'], f"No records found in {check['table']} after save")

    return SaveResult(True, message='Verified')


# =============================================================================
# QUERY FUNCTIONS
# =============================================================================

def get_dashboard_stats(supabase: Client, org_id: Optional[str] = None) -> Dict:
    """Totals and counts by status for orders, machine runs and bags"""
    if not supabase:
        return {}

    stats = {}

    try:
        for key, table in (('orders', 'orders'), ('machine_runs', 'machine_runs')):
            result = _scoped(supabase.table(table).select('status', count='exact'), org_id).execute()
            statuses = pd.Series([row.get('status') for row in result.data or []], dtype='object')
            stats[f'total_{key}'] = result.count if result.count is not None else len(statuses)
            stats[f'{key}_by_status'] = statuses.value_counts().to_dict()

        result = _scoped(supabase.table('individual_bags').select('bag_id', count='exact'), org_id).execute()
        stats['total_bags'] = result.count if result.count is not None else len(result.data or [])

    except Exception as e:
        logger.error(f"Error getting dashboard stats: {e}")

    return stats


# =============================================================================
# REFERENCE DATA SEEDING
# =============================================================================

def seed_reference_data(supabase: Client, org_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the demo data set from reference_data.py.

    Returns:
        Counts of customers, orders and machine runs created, or {'error': ...}
    """
    from reference_data import REFERENCE_CUSTOMERS

    if not supabase:
        return {'error': 'Database not connected'}

    counts = {'customers': 0, 'orders': 0, 'machine_runs': 0}

    for customer in REFERENCE_CUSTOMERS:
        saved = save_customer(supabase, customer['values'], org_id=org_id)
        if not saved.success:
            return {**counts, 'error': saved.message}
        counts['customers'] += 1

        for order in customer['orders']:
            saved_order = save_order(
                supabase, {**order['values'], 'customer_id': saved.record_id}, org_id=org_id
            )
            if not saved_order.success:
                return {**counts, 'error': saved_order.message}
            counts['orders'] += 1

            for run in order['machine_runs']:
                saved_run = save_machine_run(
                    supabase, saved_order.record_id, run['inputs'],
                    status=run.get('status'), org_id=org_id
                )
                if not saved_run.success:
                    return {**counts, 'error': saved_run.message}
                counts['machine_runs'] += 1

    logger.info(f"Seeded reference data: {counts}")
    return counts
