from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional

import pandas as pd
import streamlit as st

from plotchat.errors import APIRequestError, AuthError
from plotchat.protocol import DEFAULT_MAX_ROWS, NegotiationState, Selected, Unselected
from plotchat.web.conversation import state_after_sync, submit_message
from plotchat.web.history import PlotHistory
from plotchat.web.ingest import SUPPORTED_EXTENSIONS, Dataset, sync_uploads
from plotchat.web.plotting import render_chart
from plotchat.web.services import call_healthcheck, fetch_saved_plots, save_plot, verify_password

DEFAULT_API_URL = os.getenv("PLOTCHAT_API_URL", "http://localhost:8000")
PREVIEW_ROWS = 50


def _init_session_state() -> None:
    defaults = {
        "api_base_url": DEFAULT_API_URL,
        "authenticated": False,
        "password": "",
        "max_rows": DEFAULT_MAX_ROWS,
        "send_all_rows": False,
        "negotiation_state": Unselected(),
        "history": [],
        "transcript": [],
        "turn_warnings": [],
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value
    # Mutable objects get their own instance per session
    if "dataset" not in st.session_state:
        st.session_state.dataset = Dataset()
    if "plot_history" not in st.session_state:
        st.session_state.plot_history = PlotHistory()


def _effective_max_rows() -> Optional[int]:
    if st.session_state.get("send_all_rows"):
        return None
    return int(st.session_state.get("max_rows") or DEFAULT_MAX_ROWS)


def _set_negotiation_state(state: NegotiationState) -> None:
    st.session_state.negotiation_state = state


def page_password_gate() -> None:
    st.header("Access Required")
    st.caption("Please enter the password to continue")

    with st.form("password_gate"):
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button("Continue")

    if not submitted:
        return
    if not password.strip():
        st.warning("Enter the password first.")
        return
    try:
        valid = verify_password(st.session_state.api_base_url, password)
    except APIRequestError as exc:
        st.error(f"An error occurred. Please try again. ({exc})")
        return
    if not valid:
        st.error("Incorrect password. Please try again.")
        return
    st.session_state.authenticated = True
    st.session_state.password = password
    st.rerun()


def _sync_dataset() -> Dataset:
    # Lives in the sidebar so the widget, and with it the dataset, survives page switches
    dataset: Dataset = st.session_state.dataset
    uploads = st.sidebar.file_uploader(
        "Upload CSV, TSV or Excel files (optional)",
        type=[ext.lstrip(".") for ext in SUPPORTED_EXTENSIONS],
        accept_multiple_files=True,
    )
    result = sync_uploads(dataset, uploads or [])
    _set_negotiation_state(state_after_sync(st.session_state.negotiation_state, result))
    for name in result.duplicates:
        st.sidebar.warning(f"{name} is already loaded; the duplicate was ignored.")
    for message in result.errors.values():
        st.sidebar.error(message)
    return dataset


def _render_dataset_summary(dataset: Dataset) -> None:
    if dataset:
        counts = dataset.row_counts()
        for name, count in counts.items():
            st.caption(f"Loaded: {name} ({count} rows)")
        if len(counts) > 1:
            st.caption(f"Combined: {len(dataset)} rows, {len(dataset.columns)} columns")
        with st.expander("Data preview", expanded=False):
            st.dataframe(pd.DataFrame(dataset.rows[:PREVIEW_ROWS]), use_container_width=True)

        state = st.session_state.negotiation_state
        if isinstance(state, Selected):
            st.caption(f"Columns in use: {', '.join(state.columns)}")
        else:
            st.caption("The model will pick the relevant columns on your next question.")


def _handle_submit(message: str, dataset: Dataset) -> None:
    with st.spinner("Waiting for the model..."):
        try:
            outcome = submit_message(
                st.session_state.api_base_url,
                message,
                secret=st.session_state.password,
                rows=dataset.rows,
                state=st.session_state.negotiation_state,
                history=st.session_state.history,
                max_rows=_effective_max_rows(),
                columns=dataset.columns,
                on_state_change=_set_negotiation_state,
            )
        except AuthError:
            st.session_state.authenticated = False
            st.error("The password was rejected. Please sign in again.")
            return
        except APIRequestError as exc:
            st.error(f"Error: {exc}")
            return

    st.session_state.negotiation_state = outcome.state
    st.session_state.history = outcome.history
    st.session_state.transcript.append({"role": "user", "content": message})
    st.session_state.transcript.append(
        {"role": "assistant", "content": outcome.text, "has_chart": outcome.spec is not None}
    )
    st.session_state.turn_warnings = outcome.warnings
    if outcome.spec is not None:
        st.session_state.plot_history.append(outcome.spec)
    st.rerun()


def _render_chart_panel() -> None:
    history: PlotHistory = st.session_state.plot_history
    st.subheader("Visualization")
    if not len(history):
        st.info("Charts from the conversation will appear here.")
        return

    col_back, col_position, col_forward = st.columns([1, 2, 1])
    with col_back:
        st.button("◀ Back", on_click=history.back, disabled=not history.can_go_back, use_container_width=True)
    with col_position:
        st.caption(f"Chart {history.cursor + 1} of {len(history)}")
    with col_forward:
        st.button("Forward ▶", on_click=history.forward, disabled=not history.can_go_forward, use_container_width=True)

    render_chart(st.empty(), history.current)

    with st.form("save_plot", clear_on_submit=True):
        plot_name = st.text_input("Plot name", placeholder="e.g. Revenue by region")
        submitted = st.form_submit_button("Save plot")
    if submitted:
        try:
            saved = save_plot(st.session_state.api_base_url, plot_name, history.current)
        except ValueError as exc:
            st.warning(str(exc))
        except APIRequestError as exc:
            st.error(f"Failed to save plot: {exc}")
        else:
            st.success(f"Saved '{saved['name']}'")

    with st.expander("Chart specification", expanded=False):
        st.code(json.dumps(history.current, indent=2), language="json")


def page_chat() -> None:
    st.header("Chat with your data")
    dataset: Dataset = st.session_state.dataset
    _render_dataset_summary(dataset)

    col_chat, col_chart = st.columns([3, 2])
    with col_chat:
        for entry in st.session_state.transcript:
            with st.chat_message(entry["role"]):
                st.markdown(entry["content"] or "_(empty reply)_")
                if entry.get("has_chart"):
                    st.caption("Chart added to the visualization panel.")
        for warning in st.session_state.turn_warnings:
            st.warning(warning)
    with col_chart:
        _render_chart_panel()

    prompt = st.chat_input("Ask about your data, e.g. 'Create a bar chart of sales by region'")
    if prompt and prompt.strip():
        _handle_submit(prompt.strip(), dataset)


def _render_saved_plot(plot: Dict[str, Any]) -> None:
    created = plot.get("created_at") or ""
    with st.expander(f"#{plot.get('id')} · {plot.get('name')} · {created}", expanded=False):
        render_chart(st.empty(), plot.get("spec"))
        st.code(json.dumps(plot.get("spec"), indent=2), language="json")


def page_saved_plots() -> None:
    st.header("Saved Plots")
    if st.button("Refresh"):
        st.rerun()
    try:
        plots = fetch_saved_plots(st.session_state.api_base_url)
    except APIRequestError as exc:
        st.error(f"Error fetching plots: {exc}")
        return
    if not plots:
        st.info("No plots saved yet.")
        return
    for plot in plots:
        _render_saved_plot(plot)


def page_settings() -> None:
    st.header("Settings")

    with st.form("settings"):
        api_base_url = st.text_input("API base URL", value=st.session_state.get("api_base_url", ""))
        max_rows = st.number_input(
            "Maximum rows sent to the model",
            min_value=1,
            value=int(st.session_state.get("max_rows") or DEFAULT_MAX_ROWS),
            step=100,
        )
        send_all_rows = st.checkbox("Send the entire dataset", value=bool(st.session_state.get("send_all_rows")))
        submitted = st.form_submit_button("Save settings")

    if submitted:
        st.session_state.api_base_url = api_base_url.strip()
        st.session_state.max_rows = int(max_rows)
        st.session_state.send_all_rows = send_all_rows
        st.success("Settings updated.")

    col1, col2 = st.columns(2)
    with col1:
        if st.button("Ping API"):
            try:
                health = call_healthcheck(st.session_state.api_base_url)
            except APIRequestError as exc:
                st.error(f"API healthcheck failed: {exc}")
            else:
                st.success("API reachable")
                st.json(health)
    with col2:
        if st.button("Sign out"):
            st.session_state.clear()
            st.rerun()


PAGES = {
    "Chat": page_chat,
    "Saved Plots": page_saved_plots,
    "Settings": page_settings,
}


def main() -> None:
    st.set_page_config(page_title="PlotChat", layout="wide")
    _init_session_state()
    if not st.session_state.authenticated:
        page_password_gate()
        return
    choice = st.sidebar.radio("Navigate", list(PAGES.keys()))
    _sync_dataset()
    PAGES[choice]()


if __name__ == "__main__":
    main()
