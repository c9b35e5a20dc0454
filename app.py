import os
from datetime import datetime

import sentry_sdk
import streamlit as st

from infrastructure.observability import setup_observability
setup_observability()

from use_cases import auth_flow
from utils import session_manager
from views import admin_view, login_view

# --- PAGE SETUP ---
st.set_page_config(page_title="Fleet Admin Console", layout="wide", initial_sidebar_state="expanded")

# Health Check (Basic load-balancer heartbeat)
if st.query_params.get("health") == "1":
    st.write({"status": "ok", "version": "1.0", "uptime": datetime.utcnow().isoformat()})
    st.stop()

FORCE_HTTPS = os.getenv("FORCE_HTTPS", "False").lower() == "true"
if FORCE_HTTPS:
    proto = st.context.headers.get("x-forwarded-proto", "http").lower()
    if proto != "https":
        st.error("🚨 Insecure connection. Please use HTTPS.")
        st.stop()

session_manager.init_session_state()

runtime = session_manager.get_runtime()
session_manager.remember_visitor()
if runtime.startup_error:
    st.error(f"Authentication is not configured: {runtime.startup_error}")
    st.stop()

# --- AUTH GATE ---
state = session_manager.current_state()
auth_result = auth_flow.resolve_auth_gate(state)

if auth_result.status == "LOADING":
    state = login_view.render_loading_screen()
    auth_result = auth_flow.resolve_auth_gate(state)

if auth_result.status == "STOP":
    login_view.render_auth_screen(auth_result.reason)
    st.stop()

if sentry_sdk.get_client().is_active():
    sentry_sdk.set_user({"id": auth_result.user_id, "role": state.role})

# === MAIN CONSOLE ===
admin_view.render_console(state)
