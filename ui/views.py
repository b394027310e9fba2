import streamlit as st
import pandas as pd
from features.dashboard.data import STATUS_ORDER, summarize_by_branch, summarize_bookings


# --- ROW STYLING FUNCTION ---
def style_status_rows(row):
    status = row.get('status', '')
    if status in ('APPROVED', 'COMPLETED'):
        return ['background-color: #d4edda; color: #155724'] * len(row)
    elif status in ('REJECTED', 'CANCELLED'):
        return ['background-color: #f8d7da; color: #721c24'] * len(row)
    elif status == 'PENDING_APPROVAL':
        return ['background-color: #fff3cd; color: #856404'] * len(row)
    return [''] * len(row)


def render_metrics(data: pd.DataFrame):
    """Renders high-level booking KPIs."""
    stats = summarize_bookings(data)
    with st.container(border=True):
        st.header("Key Metrics")
        cols = st.columns(5)
        cols[0].metric("Bookings", f"{stats['total_bookings']}")
        cols[1].metric("Pending Approval", f"{stats['by_status'].get('PENDING_APPROVAL', 0)}")
        cols[2].metric("Approved", f"{stats['by_status'].get('APPROVED', 0)}")
        cols[3].metric("Booking Value", f"₹{stats['total_amount']:,.0f}")
        cols[4].metric("Discounts", f"₹{stats['total_discount']:,.0f}")

        c6, c7, c8 = st.columns(3)
        c6.metric("Finance Bookings", f"{stats['by_payment_type'].get('FINANCE', 0)}")
        c7.metric("Subdealer Bookings", f"{stats['by_booking_type'].get('SUBDEALER', 0)}")
        c8.metric("Chassis Allocated", f"{stats['chassis_allocated']}")


def render_status_breakdown(data: pd.DataFrame):
    c_left, c_right = st.columns([3, 2])
    with c_left:
        st.subheader("Summary by Branch")
        bsum = summarize_by_branch(data)
        bdisp = bsum.copy()
        bdisp['Revenue'] = bdisp['Revenue'].apply(lambda x: f"₹{x:,.0f}")
        bdisp['Discounts'] = bdisp['Discounts'].apply(lambda x: f"₹{x:,.0f}")
        st.dataframe(bdisp, use_container_width=True, hide_index=True)
    with c_right:
        st.subheader("Bookings by Status")
        counts = data['status'].value_counts().reindex(STATUS_ORDER, fill_value=0)
        st.bar_chart(counts)


def render_booking_table(data: pd.DataFrame):
    st.markdown("---")
    st.header("Bookings")
    status_options = [s for s in STATUS_ORDER if s in set(data['status'])]
    selected = st.pills("Filter by Status:", options=status_options, selection_mode="multi",
                        key="status_pills", default=None)
    df_display = data[data['status'].isin(selected)] if selected else data

    view_cols = ['booking_number', 'Branch_Name', 'created_at', 'booking_type', 'status', 'payment_type',
                 'total_amount', 'total_discount', 'discounted_amount', 'has_chassis']
    format_dict = {col: '₹{:,.2f}' for col in ['total_amount', 'total_discount', 'discounted_amount']}
    styled_df = df_display[view_cols].style.apply(style_status_rows, axis=1).format(format_dict)
    st.dataframe(styled_df, use_container_width=True, height=400)
