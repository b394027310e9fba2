import logging
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
import streamlit as st

from core.database import get_db
from core.data_manager import get_all_bookings_for_dashboard

log = logging.getLogger(__name__)

STATUS_ORDER = ['PENDING_APPROVAL', 'APPROVED', 'REJECTED', 'COMPLETED', 'CANCELLED']


def prepare_booking_frame(data: pd.DataFrame) -> pd.DataFrame:
    """Type cleaning and derived columns shared by every dashboard view."""
    data = data.copy()
    for col in ['total_amount', 'discounted_amount']:
        data[col] = pd.to_numeric(data[col], errors='coerce').fillna(0)
    data['total_discount'] = data['total_amount'] - data['discounted_amount']
    data['payment_type'] = data['payment_type'].fillna('CASH')
    data['Branch_Name'] = data['Branch_Name'].fillna(data['branch_id']).fillna('Subdealer')
    return data


def summarize_bookings(data: pd.DataFrame) -> Dict[str, Any]:
    """Counts by status, booking type and payment type plus discount totals."""
    if data.empty:
        return {
            'total_bookings': 0,
            'by_status': {s: 0 for s in STATUS_ORDER},
            'by_booking_type': {},
            'by_payment_type': {},
            'total_amount': 0.0,
            'total_discount': 0.0,
            'discounted_bookings': 0,
            'chassis_allocated': 0,
        }

    by_status = data['status'].value_counts().reindex(STATUS_ORDER, fill_value=0)
    return {
        'total_bookings': int(len(data)),
        'by_status': {k: int(v) for k, v in by_status.items()},
        'by_booking_type': {k: int(v) for k, v in data['booking_type'].value_counts().items()},
        'by_payment_type': {k: int(v) for k, v in data['payment_type'].value_counts().items()},
        'total_amount': float(data['total_amount'].sum()),
        'total_discount': float(data['total_discount'].sum()),
        'discounted_bookings': int((data['total_discount'] > 0).sum()),
        'chassis_allocated': int(data['has_chassis'].sum()),
    }


def summarize_by_branch(data: pd.DataFrame) -> pd.DataFrame:
    if data.empty:
        return pd.DataFrame(columns=['Branch_Name', 'Bookings', 'Revenue', 'Discounts'])
    return data.groupby('Branch_Name').agg(
        Bookings=('id', 'count'),
        Revenue=('discounted_amount', 'sum'),
        Discounts=('total_discount', 'sum'),
    ).reset_index().sort_values('Bookings', ascending=False)


def resolve_dashboard_scope(accessible_branches: List[str], subdealer_id: Optional[int] = None
                            ) -> Optional[Tuple[Optional[str], Optional[int]]]:
    """(branch filter, subdealer filter) for the dashboard, or None when the user can see nothing."""
    if subdealer_id:
        return None, subdealer_id
    if not accessible_branches:
        return None
    if "ALL" in accessible_branches:
        return None, None
    return accessible_branches[0], None


@st.cache_data(ttl=600)
def load_booking_stats(branch_id_filter: str = None, subdealer_id: int = None):
    """
    Loads and preprocesses booking data for the dashboard.
    Cached for 10 minutes.
    """
    log.debug("Dashboard cache miss for %s", subdealer_id or branch_id_filter or "all branches")
    db = next(get_db())
    try:
        data = prepare_booking_frame(get_all_bookings_for_dashboard(db, branch_id_filter, subdealer_id))
        return data, summarize_bookings(data)
    finally:
        db.close()
