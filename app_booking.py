import streamlit as st
from core.auth import check_login, current_actor
from core.logging_config import configure_logging
from features.booking.ui import render_approval_queue, render_chassis_allocation, render_new_booking_form
from features.dashboard.data import load_booking_stats, resolve_dashboard_scope
from ui.views import render_booking_table, render_metrics, render_status_breakdown

configure_logging()

st.set_page_config(page_title="Vehicle Bookings", layout="wide")

if check_login():
    actor = current_actor()
    accessible_branches = st.session_state.get("accessible_branches", [])
    st.title("🚗 Vehicle Bookings")

    tab_new, tab_queue, tab_chassis, tab_dash = st.tabs(
        ["New Booking", "Approval Queue", "Chassis Allocation", "Dashboard"]
    )

    with tab_new:
        render_new_booking_form(actor, accessible_branches)

    with tab_queue:
        render_approval_queue(actor, accessible_branches)

    with tab_chassis:
        render_chassis_allocation(actor, accessible_branches)

    with tab_dash:
        scope = resolve_dashboard_scope(accessible_branches, actor.subdealer_id)
        if scope is None:
            st.error("No branch access configured for this user.")
        else:
            data, stats = load_booking_stats(*scope)
            if data.empty:
                st.warning("No bookings yet.")
            else:
                render_metrics(data)
                render_status_breakdown(data)
                render_booking_table(data)
