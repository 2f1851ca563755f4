"""
Customers
List, create and edit customers (mamas) for the current organization
"""

import streamlit as st
import pandas as pd
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import APP_CONFIG
from utils import cleanup_customer_values
from database import (
    init_supabase, get_organization_id, load_customers, save_customer, delete_customer
)

st.set_page_config(page_title=f"Customers | {APP_CONFIG['name']}", page_icon="👩", layout="wide")

st.title("👩 Customers")
st.markdown("Mamas whose milk we process")

supabase = init_supabase()
org_id = get_organization_id()

if not supabase:
    st.error("Database not connected")
    st.stop()

if 'customer_message' not in st.session_state:
    st.session_state.customer_message = ""

if st.session_state.customer_message:
    st.success(st.session_state.customer_message)
    st.session_state.customer_message = ""

customers_df = load_customers(supabase, org_id)

# Search
search = st.text_input("🔍 Search by name or phone")

if customers_df.empty:
    st.info("No customers yet. Add one below.")
else:
    view = customers_df
    if search:
        needle = search.lower()
        view = view[
            view['name'].fillna('').str.lower().str.contains(needle, regex=False)
            | view['phone'].fillna('').str.lower().str.contains(needle, regex=False)
        ]

    display_cols = [c for c in ['name', 'phone', 'shipping_addr_1', 'postal_code', 'shopify_customer_id']
                    if c in view.columns]
    st.dataframe(
        view[display_cols].rename(columns={
            'name': 'Name',
            'phone': 'Phone',
            'shipping_addr_1': 'Address',
            'postal_code': 'Postal Code',
            'shopify_customer_id': 'Shopify ID',
        }),
        use_container_width=True,
        hide_index=True
    )
    st.caption(f"{len(view)} of {len(customers_df)} customers")

st.divider()

# Create / edit
st.subheader("📝 Add or Edit Customer")

options = [None]
labels = {None: "➕ New customer"}
if not customers_df.empty:
    for _, row in customers_df.iterrows():
        options.append(row['customer_id'])
        labels[row['customer_id']] = row['name']

editing_id = st.selectbox("Customer", options=options, format_func=lambda cid: labels.get(cid, cid))

current = {}
if editing_id is not None:
    current = customers_df[customers_df['customer_id'] == editing_id].iloc[0].to_dict()


def _text(value) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ''
    return str(value)


with st.form("customer_form"):
    name = st.text_input("Name *", value=_text(current.get('name')))
    col1, col2 = st.columns(2)
    with col1:
        phone = st.text_input("Phone", value=_text(current.get('phone')))
        shopify_customer_id = st.text_input("Shopify customer ID", value=_text(current.get('shopify_customer_id')))
    with col2:
        shipping_addr_1 = st.text_input("Shipping address 1", value=_text(current.get('shipping_addr_1')))
        shipping_addr_2 = st.text_input("Shipping address 2", value=_text(current.get('shipping_addr_2')))
        postal_code = st.text_input("Postal code", value=_text(current.get('postal_code')))

    save_clicked = st.form_submit_button("💾 Save Customer", type="primary")

if save_clicked:
    values = cleanup_customer_values({
        'name': name,
        'phone': phone,
        'shipping_addr_1': shipping_addr_1,
        'shipping_addr_2': shipping_addr_2,
        'postal_code': postal_code,
        'shopify_customer_id': shopify_customer_id,
    })
    result = save_customer(supabase, values, editing_id, org_id)
    if result.success:
        st.session_state.customer_message = f"✅ {result.message}"
        st.rerun()
    else:
        st.error(f"❌ {result.message}")

if editing_id is not None:
    with st.expander("🗑️ Delete customer"):
        st.warning("⚠️ Customers with orders cannot be deleted")
        if st.button("Delete", type="primary"):
            result = delete_customer(supabase, editing_id, org_id)
            if result.success:
                st.session_state.customer_message = f"✅ {result.message}"
                st.rerun()
            else:
                st.error(f"❌ {result.message}")
