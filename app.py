"""
Operations Dashboard for Wonderbewbz
Tracks customer orders, machine runs and powder yield for breastmilk processing
"""

import streamlit as st
import pandas as pd
import plotly.express as px

# Import our modules
from config import APP_CONFIG, ORDER_STATUSES, MACHINE_RUN_STATUSES, VISUAL_CHECK_OPTIONS
from utils import cleanup_order_values, format_status
from database import (
    init_supabase, get_organization_id, get_dashboard_stats,
    load_orders, load_customers, save_order, delete_order,
    bulk_update_order_status, seed_reference_data
)

st.set_page_config(
    page_title=f"Dashboard | {APP_CONFIG['name']}",
    page_icon="🍼",
    layout="wide"
)

# Custom CSS
st.markdown("""
<style>
    .db-status-connected {
        padding: 10px;
        background: #d4edda;
        border-radius: 5px;
        color: #155724;
        text-align: center;
    }
    .db-status-disconnected {
        padding: 10px;
        background: #f8d7da;
        border-radius: 5px;
        color: #721c24;
        text-align: center;
    }
</style>
""", unsafe_allow_html=True)


ORDER_COLUMNS = [
    'shopify_order_id', 'customer_name', 'status', 'arrival_temp',
    'arrival_weight', 'visual_check', 'postal_code', 'created_at'
]


def main():
    st.title(f"🍼 {APP_CONFIG['name']} - Operations")
    st.markdown(f"*{APP_CONFIG['description']}*")

    # Initialize session state
    if 'order_message' not in st.session_state:
        st.session_state.order_message = ""

    # Initialize Supabase
    supabase = init_supabase()
    org_id = get_organization_id()

    # Sidebar - Database Status & Data Management
    with st.sidebar:
        st.header(f"🏪 {APP_CONFIG['name']}")

        st.subheader("💾 Database")
        if supabase:
            st.markdown('<div class="db-status-connected">✅ Connected</div>', unsafe_allow_html=True)
            if org_id:
                st.caption(f"🏢 Organization: {org_id}")
        else:
            st.markdown('<div class="db-status-disconnected">❌ Not connected</div>', unsafe_allow_html=True)

        st.divider()

        with st.expander("🗑️ Data Management"):
            st.markdown("**🌱 Seed Reference Data:**")
            st.caption("Two demo customers with orders and machine runs")
            if st.button("Load Reference Data", type="secondary"):
                if supabase:
                    with st.spinner("Loading reference data..."):
                        results = seed_reference_data(supabase, org_id)
                    if 'error' in results:
                        st.error(f"Error: {results['error']}")
                    else:
                        st.success(
                            f"✅ Loaded {results['customers']} customers, "
                            f"{results['orders']} orders, {results['machine_runs']} machine runs"
                        )
                        st.rerun()
                else:
                    st.error("Database not connected")

    if not supabase:
        st.info("🔌 Add Supabase credentials to `.streamlit/secrets.toml` to begin.")
        return

    if st.session_state.order_message:
        st.success(st.session_state.order_message)
        if st.button("Dismiss", key="dismiss_order_message"):
            st.session_state.order_message = ""
            st.rerun()

    stats = get_dashboard_stats(supabase, org_id)
    orders_df = load_orders(supabase, org_id)

    tab1, tab2 = st.tabs(["📊 Overview", "📦 Orders"])

    with tab1:
        display_overview(stats)

    with tab2:
        display_orders(supabase, org_id, orders_df)


def display_overview(stats):
    """Display overview dashboard"""
    st.header("📊 Overview")

    col1, col2, col3 = st.columns(3)
    col1.metric("Orders", stats.get('total_orders', 0))
    col2.metric("Machine Runs", stats.get('total_machine_runs', 0))
    col3.metric("Bags Weighed", stats.get('total_bags', 0))

    chart_col1, chart_col2 = st.columns(2)

    with chart_col1:
        by_status = stats.get('orders_by_status', {})
        if by_status:
            df = pd.DataFrame({
                'Status': [format_status(s) for s in ORDER_STATUSES],
                'Orders': [by_status.get(s, 0) for s in ORDER_STATUSES],
            })
            fig = px.bar(df, x='Status', y='Orders', title='Orders by Status')
            st.plotly_chart(fig, use_container_width=True)
        else:
            st.info("No orders yet")

    with chart_col2:
        by_status = stats.get('machine_runs_by_status', {})
        if by_status:
            df = pd.DataFrame({
                'Status': [format_status(s) for s in MACHINE_RUN_STATUSES],
                'Runs': [by_status.get(s, 0) for s in MACHINE_RUN_STATUSES],
            })
            df = df[df['Runs'] > 0]
            fig = px.pie(df, names='Status', values='Runs', title='Machine Runs by Status')
            st.plotly_chart(fig, use_container_width=True)
        else:
            st.info("No machine runs yet")


def display_orders(supabase, org_id, orders_df):
    """Orders table, bulk status update and create/edit form"""
    st.header("📦 Orders")

    status_filter = st.multiselect(
        "Filter by status",
        options=ORDER_STATUSES,
        default=[],
        format_func=format_status
    )

    if orders_df.empty:
        st.info("No orders yet. Create one below.")
    else:
        view = orders_df
        if status_filter:
            view = view[view['status'].isin(status_filter)]

        display_cols = [c for c in ORDER_COLUMNS if c in view.columns]
        table = view[display_cols].copy()
        table['status'] = table['status'].map(format_status)
        st.dataframe(
            table.rename(columns={
                'shopify_order_id': 'Order',
                'customer_name': 'Customer',
                'status': 'Status',
                'arrival_temp': 'Arrival Temp (°C)',
                'arrival_weight': 'Arrival Weight (g)',
                'visual_check': 'Visual Check',
                'postal_code': 'Postal Code',
                'created_at': 'Created',
            }),
            use_container_width=True,
            hide_index=True
        )

        with st.expander("✏️ Bulk status update"):
            labels = dict(zip(view['order_id'], view['shopify_order_id']))
            selected = st.multiselect(
                "Orders",
                options=list(labels.keys()),
                format_func=lambda oid: labels.get(oid, oid)
            )
            new_status = st.selectbox("New status", ORDER_STATUSES, format_func=format_status,
                                      key="bulk_status")
            if st.button("Apply", disabled=not selected):
                updated = bulk_update_order_status(supabase, selected, new_status, org_id)
                st.session_state.order_message = f"✅ Updated {updated} of {len(selected)} orders"
                st.rerun()

    st.divider()
    display_order_form(supabase, org_id, orders_df)


def display_order_form(supabase, org_id, orders_df):
    """Create a new order or edit an existing one"""
    customers_df = load_customers(supabase, org_id)
    if customers_df.empty:
        st.warning("Add a customer first (Customers page).")
        return

    order_options = [None]
    order_labels = {None: "➕ New order"}
    if not orders_df.empty:
        for _, row in orders_df.iterrows():
            order_options.append(row['order_id'])
            order_labels[row['order_id']] = f"{row['shopify_order_id']} - {row.get('customer_name', '')}"

    editing_id = st.selectbox(
        "Order",
        options=order_options,
        format_func=lambda oid: order_labels.get(oid, oid)
    )

    current = {}
    if editing_id is not None:
        current = orders_df[orders_df['order_id'] == editing_id].iloc[0].to_dict()

    customer_names = dict(zip(customers_df['customer_id'], customers_df['name']))
    customer_ids = list(customer_names.keys())

    with st.form("order_form"):
        col1, col2, col3 = st.columns(3)
        with col1:
            shopify_order_id = st.text_input("Order ID *", value=current.get('shopify_order_id') or '')
        with col2:
            customer_id = st.selectbox(
                "Customer *",
                options=customer_ids,
                index=customer_ids.index(current['customer_id']) if current.get('customer_id') in customer_ids else 0,
                format_func=lambda cid: customer_names.get(cid, cid)
            )
        with col3:
            status = st.selectbox(
                "Status",
                ORDER_STATUSES,
                index=ORDER_STATUSES.index(current['status']) if current.get('status') in ORDER_STATUSES else 0,
                format_func=format_status
            )

        col1, col2 = st.columns(2)
        with col1:
            shipping_addr_1 = st.text_input("Shipping address 1", value=_text(current.get('shipping_addr_1')))
            shipping_addr_2 = st.text_input("Shipping address 2", value=_text(current.get('shipping_addr_2')))
            postal_code = st.text_input("Postal code", value=_text(current.get('postal_code')))
            phone = st.text_input("Phone", value=_text(current.get('phone')))
        with col2:
            arrival_temp = st.text_input("Arrival temp (°C)", value=_text(current.get('arrival_temp')))
            arrival_weight = st.text_input("Arrival weight (g)", value=_text(current.get('arrival_weight')))
            visual_check = st.selectbox(
                "Visual check",
                VISUAL_CHECK_OPTIONS,
                index=VISUAL_CHECK_OPTIONS.index(current.get('visual_check') or 'none')
            )
            visual_check_remarks = st.text_area("Visual check remarks",
                                                value=_text(current.get('visual_check_remarks')))

        save_clicked = st.form_submit_button("💾 Save Order", type="primary")

    if save_clicked:
        values = cleanup_order_values({
            'shopify_order_id': shopify_order_id,
            'customer_id': customer_id,
            'status': status,
            'shipping_addr_1': shipping_addr_1,
            'shipping_addr_2': shipping_addr_2,
            'postal_code': postal_code,
            'phone': phone,
            'arrival_temp': arrival_temp,
            'arrival_weight': arrival_weight,
            'visual_check': visual_check,
            'visual_check_remarks': visual_check_remarks,
        })
        result = save_order(supabase, values, editing_id, org_id)
        if result.success:
            st.session_state.order_message = f"✅ {result.message}"
            st.rerun()
        else:
            st.error(f"❌ {result.message}")

    if editing_id is not None:
        if st.button("🗑️ Delete order", type="secondary"):
            result = delete_order(supabase, editing_id, org_id)
            if result.success:
                st.session_state.order_message = f"✅ {result.message}"
                st.rerun()
            else:
                st.error(f"❌ {result.message}")


def _text(value) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ''
    return str(value)


if __name__ == "__main__":
    main()
