import streamlit as st
from typing import List
from core.database import db_session
from core import data_manager
from core.exceptions import BookingError
from core.models import BookingStatus, CustomerType, DiscountType, PaymentType, RtoType, UserRole
from features.booking import logic as booking_logic
from features.booking.config import VALID_SALUTATIONS
from features.booking.pricing import selectable_optional_headers
from features.booking.values import UserRef
from utils import format_currency


def _show_error(e: BookingError):
    st.error(f"{e.message} ({e.code})")


def render_booking_summary(snapshot: dict):
    with st.container(border=True):
        st.markdown(f"**{snapshot['booking_number']}** | {snapshot.get('model_name')} "
                    f"({snapshot.get('color_name')}) | Status: **{snapshot['status']}**")
        rows = [
            {'Component': c['header_key'], 'Original': float(c['original_value']),
             'Final': float(c['discounted_value'])}
            for c in snapshot['price_components']
        ]
        if rows:
            st.dataframe(rows, use_container_width=True, hide_index=True)
        c1, c2, c3, c4 = st.columns(4)
        c1.metric("Accessories", format_currency(snapshot['accessories_total']))
        c2.metric("RTO", format_currency(snapshot['rto_amount']))
        c3.metric("Total", format_currency(snapshot['total_amount']))
        c4.metric("Net Payable", format_currency(snapshot['discounted_amount']))


# --- NEW BOOKING ---

def render_new_booking_form(actor: UserRef, accessible_branches: List[str]):
    st.subheader("New Booking")

    with db_session() as db:
        models_list = data_manager.get_active_models(db)
        if not models_list:
            st.warning("No active vehicle models configured.")
            return

        c1, c2 = st.columns(2)
        with c1:
            if actor.subdealer_id:
                channel = "Subdealer"
                st.info("Channel: Subdealer")
            else:
                channel = st.radio("Channel", ["Branch", "Subdealer"], horizontal=True)
        branch_id, subdealer_id = None, None
        with c2:
            if channel == "Branch":
                branches = data_manager.get_user_accessible_branches(db, accessible_branches)
                branch_map = {b.Branch_Name: b.Branch_ID for b in branches}
                if not branch_map:
                    st.error("No branch access configured for this user.")
                    return
                branch_id = branch_map[st.selectbox("Branch", list(branch_map.keys()))]
            elif actor.subdealer_id:
                subdealer_id = actor.subdealer_id
            else:
                subdealers = {s.name: s.id for s in data_manager.get_active_subdealers(db)}
                if not subdealers:
                    st.error("No active subdealers.")
                    return
                subdealer_id = subdealers[st.selectbox("Subdealer", list(subdealers.keys()))]

        model_map = {m.model_name: m for m in models_list}
        model = model_map[st.selectbox("Model", list(model_map.keys()))]
        color_map = {c.name: c.id for c in model.colors}
        accessories = data_manager.get_accessories_for_model(db, model.id)
        headers = data_manager.get_headers_for_model_type(db, model.type)
        optional_headers = {h.header_key: h.id for h in selectable_optional_headers(headers)}
        executives = {u.full_name or u.username: u.id for u in data_manager.get_sales_executives(db, branch_id)} \
            if branch_id else {}
        financers = {f.name: f.id for f in data_manager.get_finance_providers(db)}
        brokers = {b.name: b.id for b in data_manager.get_all_brokers(db)}

    with st.form("new_booking_form"):
        c1, c2, c3 = st.columns(3)
        with c1:
            color_name = st.selectbox("Color", list(color_map.keys()))
            customer_type = st.selectbox("Customer Type", [t.value for t in CustomerType])
            rto_type = st.selectbox("RTO", [r.value for r in RtoType])
        with c2:
            salutation = st.selectbox("Salutation", VALID_SALUTATIONS)
            name = st.text_input("Customer Name")
            mobile = st.text_input("Mobile")
        with c3:
            gstin = st.text_input("GSTIN (B2B only)")
            executive = st.selectbox("Sales Executive", ["(Me)"] + list(executives.keys())) if executives else "(Me)"
            hpa = st.checkbox("Hypothecation (HPA)")

        optional = st.multiselect("Optional Components", list(optional_headers.keys()))
        acc_options = {f"{a.name} ({format_currency(a.price)})": a.id for a in accessories}
        selected_acc = st.multiselect("Accessories", list(acc_options.keys()))

        st.markdown("**Payment**")
        p1, p2, p3 = st.columns(3)
        payment_type = p1.radio("Payment Type", [p.value for p in PaymentType], horizontal=True)
        financer = p2.selectbox("Financer", ["--"] + list(financers.keys()))
        gc_applicable = p3.checkbox("GC Applicable")
        scheme = p2.text_input("Scheme")
        emi_plan = p3.text_input("EMI Plan")

        st.markdown("**Discount**")
        d1, d2 = st.columns(2)
        discount_type = d1.radio("Discount Type", [d.value for d in DiscountType], horizontal=True)
        discount_value = d2.number_input("Discount Value", min_value=0.0, step=100.0)

        exchange = {}
        if channel == "Branch":
            with st.expander("Exchange"):
                is_exchange = st.checkbox("Exchange Vehicle")
                broker = st.selectbox("Broker", ["--"] + list(brokers.keys()))
                e1, e2, e3 = st.columns(3)
                exchange_price = e1.number_input("Exchange Price", min_value=0.0, step=500.0)
                vehicle_number = e2.text_input("Vehicle Number")
                old_chassis = e3.text_input("Old Chassis Number")
                otp = st.text_input("Broker OTP")
                if is_exchange:
                    exchange = {
                        'is_exchange': True,
                        'broker_id': brokers.get(broker),
                        'exchange_price': exchange_price,
                        'vehicle_number': vehicle_number,
                        'chassis_number': old_chassis,
                        'otp': otp,
                    }

        if st.form_submit_button("Create Booking", type="primary", use_container_width=True):
            payload = {
                'model_id': model.id,
                'model_color': color_map.get(color_name),
                'customer_type': customer_type,
                'rto_type': rto_type,
                'gstin': gstin,
                'customer_details': {'salutation': salutation, 'name': name, 'mobile1': mobile},
                'payment': {
                    'type': payment_type,
                    'financer_id': financers.get(financer),
                    'scheme': scheme,
                    'emi_plan': emi_plan,
                    'gc_applicable': gc_applicable,
                },
                'branch': branch_id,
                'subdealer': subdealer_id,
                'sales_executive': executives.get(executive),
                'hpa': hpa,
                'optional_components': [optional_headers[k] for k in optional],
                'accessories': {'selected': [{'id': acc_options[k]} for k in selected_acc]},
                'discount': {'type': discount_type, 'value': discount_value},
                'exchange': exchange,
            }
            with db_session() as db:
                try:
                    snapshot = booking_logic.create_booking(db, payload, actor)
                    st.success(f"Booking {snapshot['booking_number']} created.")
                    render_booking_summary(snapshot)
                    st.cache_data.clear()
                except BookingError as e:
                    _show_error(e)


# --- APPROVAL QUEUE ---

def render_approval_queue(actor: UserRef, accessible_branches: List[str]):
    st.subheader("🔔 Approval Queue")
    can_decide = UserRole.MANAGER.value in actor.roles or UserRole.ADMIN.value in actor.roles

    with db_session() as db:
        pending = data_manager.get_bookings(db, BookingStatus.PENDING_APPROVAL.value, accessible_branches,
                                            actor.subdealer_id)
        if not pending:
            st.info("✅ No bookings awaiting approval.")
            return

        for booking in pending:
            with st.container(border=True):
                c1, c2, c3 = st.columns([3, 1, 1])
                customer = booking.customer_details or {}
                discount = (booking.total_amount or 0) - (booking.discounted_amount or 0)
                with c1:
                    st.markdown(f"**{booking.booking_number}** | {customer.get('name', '')} "
                                f"({booking.model.model_name if booking.model else ''}) | "
                                f"{booking.branch_id or 'Subdealer'}")
                    st.markdown(f"Discount: :red[**{format_currency(discount)}**] | "
                                f"Net: **{format_currency(booking.discounted_amount)}**")
                    note = st.text_input("Note", key=f"note_{booking.id}", label_visibility="collapsed",
                                         placeholder="Approval / rejection note")
                with c2:
                    if st.button("✅ Approve", key=f"app_{booking.id}", type="primary",
                                 use_container_width=True, disabled=not can_decide):
                        try:
                            booking_logic.approve_booking(db, booking.id, actor, note or None)
                            st.success("Approved!")
                            st.cache_data.clear()
                            st.rerun()
                        except BookingError as e:
                            _show_error(e)
                with c3:
                    if st.button("❌ Reject", key=f"rej_{booking.id}", use_container_width=True,
                                 disabled=not can_decide):
                        try:
                            booking_logic.reject_booking(db, booking.id, actor, note or None)
                            st.error("Rejected.")
                            st.cache_data.clear()
                            st.rerun()
                        except BookingError as e:
                            _show_error(e)


# --- CHASSIS ALLOCATION ---

def render_chassis_allocation(actor: UserRef, accessible_branches: List[str]):
    st.subheader("Chassis Allocation")

    with db_session() as db:
        approved = data_manager.get_bookings(db, BookingStatus.APPROVED.value, accessible_branches,
                                             actor.subdealer_id)
        if not approved:
            st.info("No approved bookings.")
            return

        options = {
            f"{b.booking_number} | {(b.customer_details or {}).get('name', '')} | {b.chassis_number or 'Unallocated'}": b.id
            for b in approved
        }
        selected = st.selectbox("Booking", list(options.keys()), index=None, placeholder="Search booking...")
        if not selected:
            return
        booking_id = options[selected]

        readiness = booking_logic.check_ready_for_delivery(db, booking_id)
        if readiness['ready']:
            st.success("Ready for delivery.")
        else:
            st.warning("Pending: " + "; ".join(readiness['missing']))

        with st.expander("History"):
            history = [
                {'When': e.created_at, 'Action': e.action, 'User': e.user_id, 'Result': e.status,
                 'Error': e.error or ''}
                for e in data_manager.get_audit_entries(db, booking_id)
            ]
            st.dataframe(history, use_container_width=True, hide_index=True)

        with st.form("chassis_form"):
            chassis_number = st.text_input("Chassis Number (17 characters)", max_chars=17)
            reason = st.text_input("Reason (required when changing an allocated number)")
            has_claim = st.checkbox("Raise price claim")
            c1, c2 = st.columns(2)
            price_claim = c1.number_input("Claim Amount", min_value=0.0, step=100.0)
            description = c2.text_input("Claim Description")

            if st.form_submit_button("Allocate", type="primary"):
                try:
                    snapshot = booking_logic.allocate_chassis_number(db, booking_id, {
                        'chassis_number': chassis_number,
                        'reason': reason,
                        'has_claim': has_claim,
                        'price_claim': price_claim,
                        'description': description,
                    }, actor)
                    st.success(f"Chassis {snapshot['chassis_number']} allocated to {snapshot['booking_number']}.")
                    st.cache_data.clear()
                except BookingError as e:
                    _show_error(e)

        c_done, c_cancel = st.columns(2)
        if c_done.button("Mark Delivered", use_container_width=True):
            try:
                booking_logic.complete_booking(db, booking_id, actor)
                st.success("Booking completed.")
                st.cache_data.clear()
                st.rerun()
            except BookingError as e:
                _show_error(e)
        if c_cancel.button("Cancel Booking", use_container_width=True):
            try:
                booking_logic.cancel_booking(db, booking_id, actor, "Cancelled from chassis desk")
                st.warning("Booking cancelled.")
                st.cache_data.clear()
                st.rerun()
            except BookingError as e:
                _show_error(e)
