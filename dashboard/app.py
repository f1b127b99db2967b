"""Streamlit operator dashboard for the temple visit capacity service."""

from __future__ import annotations

import datetime
import os
from typing import Any, Dict, List, Optional

import pandas as pd
import requests
import streamlit as st

# ==========================================
# Configuration & Constants
# ==========================================
API_BASE_URL = os.getenv("TEMPLE_API_URL", "http://127.0.0.1:8000")

st.set_page_config(
    page_title="Temple Visit Dashboard",
    page_icon="🛕",
    layout="wide",
)


# ==========================================
# API Helper Functions
# ==========================================
def _auth_headers() -> Dict[str, str]:
    token = st.session_state.get("access_token")
    return {"Authorization": f"Bearer {token}"} if token else {}


def _unwrap(response: requests.Response) -> Optional[Any]:
    body = response.json()
    if not response.ok or not body.get("success", False):
        st.error(body.get("message", f"Request failed with HTTP {response.status_code}"))
        return None
    return body.get("data")


def api_get(path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
    try:
        response = requests.get(
            f"{API_BASE_URL}{path}",
            params=params,
            headers=_auth_headers(),
            timeout=5,
        )
        return _unwrap(response)
    except requests.exceptions.RequestException as e:
        st.error(f"Backend connection failed: {e}")
        return None


def api_post(path: str, payload: Dict[str, Any]) -> Optional[Any]:
    try:
        response = requests.post(
            f"{API_BASE_URL}{path}",
            json=payload,
            headers=_auth_headers(),
            timeout=10,
        )
        return _unwrap(response)
    except requests.exceptions.RequestException as e:
        st.error(f"Backend connection failed: {e}")
        return None


def api_put(path: str) -> Optional[Any]:
    try:
        response = requests.put(f"{API_BASE_URL}{path}", headers=_auth_headers(), timeout=10)
        return _unwrap(response)
    except requests.exceptions.RequestException as e:
        st.error(f"Backend connection failed: {e}")
        return None


def fetch_temples() -> List[Dict[str, Any]]:
    data = api_get("/temples")
    return data.get("temples", []) if data else []


def _temple_picker(temples: List[Dict[str, Any]], key: str) -> Optional[Dict[str, Any]]:
    if not temples:
        st.info("No temples available. Is the API running?")
        return None
    names = {f"{temple['name']} ({temple['city']})": temple for temple in temples}
    return names[st.selectbox("Temple", list(names), key=key)]


# ==========================================
# UI Page Functions
# ==========================================
def render_live_crowd_page() -> None:
    st.header("👥 Live Crowd")
    temple = _temple_picker(fetch_temples(), "crowd_temple")
    if temple is None:
        return

    simulation = api_get(f"/simulation/{temple['id']}")
    if not simulation:
        return

    current = simulation["current_status"]
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Crowd Level", current["crowd_density"].title())
    col2.metric("Actual Visitors", current["actual_visitors"])
    col3.metric("Expected Visitors", current["expected_visitors"])
    col4.metric("Wait (min)", current["wait_time"])

    hourly = pd.DataFrame(simulation["hourly_data"])
    if not hourly.empty:
        st.write("### Hourly Profile")
        st.line_chart(hourly.set_index("hour")[["expected_visitors", "actual_visitors"]])

    areas = pd.DataFrame(simulation["areas"])
    if not areas.empty:
        st.write("### Area Heatmap")
        st.map(areas.dropna(subset=["latitude", "longitude"]))
        st.dataframe(areas, use_container_width=True)

    st.write("### Active Alerts")
    alerts = simulation["alerts"]
    if not alerts:
        st.success("No active alerts.")
    for alert in alerts:
        col_a, col_b = st.columns([5, 1])
        col_a.warning(f"[{alert['severity'].upper()}] {alert['message']}")
        if col_b.button("Resolve", key=f"resolve_{alert['id']}"):
            if api_put(f"/simulation/{temple['id']}/alert/{alert['id']}/resolve"):
                st.rerun()

    if st.button("Ingest Synthetic Reading", type="primary"):
        with st.spinner("Generating occupancy reading..."):
            result = api_post(f"/simulation/{temple['id']}/synthetic", {})
            if result:
                st.success(f"{len(result['alerts_created'])} alert(s) raised")
                st.rerun()


def render_slots_page() -> None:
    st.header("🕒 Visit Slots")
    temple = _temple_picker(fetch_temples(), "slot_temple")
    if temple is None:
        return
    slot_date = st.date_input("Date", datetime.date.today())

    data = api_get("/slots", params={"temple_id": temple["id"], "date": str(slot_date)})
    if not data:
        return
    slots = [slot for day in data["slots"].values() for slot in day]
    if not slots:
        st.info("No active slots for this date.")
        return

    frame = pd.DataFrame(slots)[
        ["id", "start_time", "end_time", "capacity", "booked_count", "available_spots", "price", "status"]
    ]
    col1, col2 = st.columns(2)
    col1.metric("Seats Booked", int(frame["booked_count"].sum()))
    col2.metric("Seats Available", int(frame["available_spots"].sum()))
    st.bar_chart(frame.set_index("start_time")[["booked_count", "available_spots"]])
    st.dataframe(frame, use_container_width=True)


def render_wait_estimator_page() -> None:
    st.header("⏳ Queue Wait Estimator")
    col1, col2 = st.columns(2)
    with col1:
        current_visitors = st.number_input("Visitors in queue", min_value=0, value=120)
        capacity = st.number_input("Capacity per slot", min_value=0, value=100)
    with col2:
        duration = st.number_input("Slot duration (minutes)", min_value=0, value=30)
        lanes = st.number_input("Entry lanes", min_value=0, value=2)

    if st.button("Estimate", type="primary"):
        result = api_post(
            "/waiting-times/estimate",
            {
                "current_visitors": current_visitors,
                "capacity_per_slot": capacity,
                "slot_duration_minutes": duration,
                "lanes": lanes,
            },
        )
        if result:
            minutes = result.get("minutes")
            st.metric("Estimated Wait", "unknown" if minutes is None else f"{minutes} min")
            st.caption(f"Level: {result['level']}")


def render_analytics_page() -> None:
    st.header("📊 Booking Analytics")
    period = st.selectbox("Period", ["week", "month", "quarter", "year"], index=1)
    overview = api_get("/analytics/overview", params={"period": period})
    if not overview:
        return

    summary = overview["summary"]
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Bookings", summary.get("total_bookings", 0))
    col2.metric("Visitors", summary.get("total_visitors", 0))
    col3.metric("Revenue", f"₹{summary.get('total_revenue', 0):,.0f}")
    col4.metric("Avg Bookings / Day", summary.get("avg_bookings_per_day", 0))

    trends = pd.DataFrame(overview["booking_trends"])
    if not trends.empty:
        st.write("### Daily Bookings")
        st.line_chart(trends.set_index("date")[["bookings"]])

    performance = pd.DataFrame(overview["temple_performance"])
    if not performance.empty:
        st.write("### Temple Performance")
        st.dataframe(performance, use_container_width=True)


def render_login_sidebar() -> None:
    st.sidebar.markdown("---")
    if st.session_state.get("access_token"):
        st.sidebar.caption("Signed in as admin")
        if st.sidebar.button("Sign out"):
            st.session_state.pop("access_token", None)
        return
    admin_token = st.sidebar.text_input("Admin token", type="password")
    if st.sidebar.button("Sign in") and admin_token:
        data = api_post("/login", {"admin_token": admin_token})
        if data:
            st.session_state["access_token"] = data["access_token"]
            st.sidebar.success("Signed in")


# ==========================================
# Main App Router
# ==========================================
def main() -> None:
    st.sidebar.title("Temple Visit Control")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigation Module",
        ["Live Crowd", "Visit Slots", "Wait Estimator", "Analytics"],
    )
    render_login_sidebar()
    st.sidebar.caption(f"API: {API_BASE_URL}")

    if page == "Live Crowd":
        render_live_crowd_page()
    elif page == "Visit Slots":
        render_slots_page()
    elif page == "Wait Estimator":
        render_wait_estimator_page()
    elif page == "Analytics":
        render_analytics_page()


if __name__ == "__main__":
    main()
