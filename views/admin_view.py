import streamlit as st

from utils import session_manager

CONSOLE_SECTIONS = [
    ("Dashboard", "📊"),
    ("Bookings", "📅"),
    ("Drivers", "🧑‍✈️"),
    ("Vehicles", "🚗"),
    ("Live Tracking", "📍"),
    ("Pricing", "💲"),
    ("Analytics", "📈"),
    ("Communication", "💬"),
    ("Documents", "📄"),
    ("Users", "👥"),
    ("Profile", "🙍"),
    ("Settings", "⚙️"),
]


def _render_sidebar(state):
    with st.sidebar:
        sidebar_open = session_manager.get_sidebar_open()
        toggle_label = "« Collapse" if sidebar_open else "» Expand"
        if st.button(toggle_label, key="sidebar_toggle", type="secondary"):
            session_manager.toggle_sidebar()
            st.rerun()

        for name, icon in CONSOLE_SECTIONS:
            label = f"{icon} {name}" if sidebar_open else icon
            button_type = "primary" if st.session_state.nav_page == name else "secondary"
            if st.button(label, key=f"nav_{name}", type=button_type, use_container_width=True):
                st.session_state.nav_page = name
                st.rerun()

        st.divider()
        if sidebar_open and state.principal is not None:
            st.caption(f"Signed in as {state.principal.email or state.principal.id}")
            st.caption(f"Role: {state.role}")
        if st.button("Sign out", key="logout_btn", type="secondary"):
            session_manager.logout()


def render_console(state):
    _render_sidebar(state)
    page = st.session_state.nav_page
    icon = dict(CONSOLE_SECTIONS).get(page, "")
    st.title(f"{icon} {page}")
    st.info("This section is served by the hosted backend.")
