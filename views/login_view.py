import streamlit as st

from utils import session_manager


def render_loading_screen():
    with st.spinner("Checking authentication..."):
        st.markdown("### Loading application...")
        state = session_manager.wait_until_ready(timeout=None)
    return state


def render_auth_screen(reason="auth_required"):
    st.title("🚗 Fleet Admin Console")

    if reason == "admin_required":
        st.warning("Admin access required. Sign in with an administrator account.")
        if st.button("Sign out"):
            session_manager.logout()
        return

    if st.session_state.get("auth_error"):
        st.error(st.session_state.auth_error)

    with st.form("login_form", clear_on_submit=False):
        email = st.text_input("Email")
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button("Sign in")
        if submitted:
            session_manager.login(email, password)
            st.rerun()
