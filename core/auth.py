import logging
import streamlit as st
from datetime import datetime, timedelta
from typing import List, Optional
from core.database import get_db
from core.data_manager import get_user_by_username
from core.models import User, UserRole
from features.booking.values import UserRef

log = logging.getLogger(__name__)

SESSION_TIMEOUT = timedelta(hours=1)


def resolve_accessible_branches(user: User) -> List[str]:
    """Admins and branchless managers see every branch; everyone else sees their own."""
    roles = user.roles
    if user.Branch_ID:
        return [user.Branch_ID]
    if UserRole.ADMIN.value in roles or UserRole.MANAGER.value in roles:
        return ["ALL"]
    return []


def current_actor() -> Optional[UserRef]:
    if not st.session_state.get("logged_in", False):
        return None
    branches = st.session_state.get("accessible_branches", [])
    return UserRef(
        id=st.session_state["user_id"],
        roles=tuple(st.session_state.get("roles", [])),
        is_active=True,
        branch_id=branches[0] if branches and branches[0] != "ALL" else None,
        subdealer_id=st.session_state.get("subdealer_id"),
    )


def check_login():
    """
    Manages user login, session timeout (1 hour), and logout.
    """
    if st.session_state.get("logged_in", False):
        # --- Session Timeout Check ---
        if "login_time" in st.session_state:
            elapsed = datetime.now() - st.session_state.login_time
            if elapsed > SESSION_TIMEOUT:
                st.session_state.clear()
                st.warning("Session expired due to inactivity. Please log in again.")
                st.rerun()
                return False

        # Refresh timer
        st.session_state.login_time = datetime.now()

        # --- Sidebar User Info ---
        with st.sidebar:
            roles_disp = ", ".join(st.session_state.get("roles", []))
            st.success(f"{st.session_state.get('full_name') or st.session_state.get('username')}: **{roles_disp}**")

            access_branches = st.session_state.get("accessible_branches", [])
            if "ALL" in access_branches:
                st.info("Access: **All Branches**")
            elif st.session_state.get("subdealer_id"):
                st.info("Access: **Subdealer**")
            else:
                st.info(f"Access: **{len(access_branches)} Branch(es)**")

            if st.button("Logout", type="primary", use_container_width=True):
                log.info("User %s logged out", st.session_state.get("username"))
                st.session_state.clear()
                st.rerun()
        return True

    # --- Login Form ---
    with st.form("login_form"):
        st.header("🔐 Login")
        username = st.text_input("Username")
        password = st.text_input("Password", type="password")

        if st.form_submit_button("Login", type="primary", use_container_width=True):
            db = next(get_db())
            try:
                user = get_user_by_username(db, username)
                if user and user.is_active and user.verify_password(password):
                    st.session_state["logged_in"] = True
                    st.session_state["user_id"] = user.id
                    st.session_state["username"] = user.username
                    st.session_state["full_name"] = user.full_name
                    st.session_state["roles"] = user.roles
                    st.session_state["accessible_branches"] = resolve_accessible_branches(user)
                    st.session_state["subdealer_id"] = user.subdealer_id
                    st.session_state["login_time"] = datetime.now()
                    log.info("User %s logged in", user.username)
                    st.rerun()
                else:
                    log.warning("Failed login for %s", username)
                    st.error("Invalid username or password.")
            finally:
                db.close()
    return False
