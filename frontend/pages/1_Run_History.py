"""Page 1: Browse past provisioning runs."""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import streamlit as st

from db.connection import get_connection, init_db
from db.repository import RunRepository, StepResultRepository
from frontend.components.outcome_badge import duration, render_step_results, status_badge

init_db()

st.header("Run History")

conn = get_connection()
run_repo = RunRepository()
result_repo = StepResultRepository()

runs = run_repo.list_runs(conn)

if not runs:
    st.info("No provisioning runs yet.")
    conn.close()
    st.stop()

st.markdown(f"**{len(runs)} run(s) found**")

for run in runs:
    run_id = run["id"]
    started = run["started_at"]
    finished = run["finished_at"] or ""
    applied = run["applied_steps"] or 0
    skipped = run["skipped_steps"] or 0
    failed = run["failed_steps"] or 0

    with st.expander(
        f"{status_badge(run['status'])} | {run['manifest_name']} | {started[:19]} | "
        f"{applied} applied, {skipped} skipped, {failed} failed | "
        f"{duration(started, finished)}"
    ):
        col1, col2, col3 = st.columns(3)
        with col1:
            st.markdown(f"**Run ID:** `{run_id[:12]}...`")
            st.markdown(f"**Steps:** {run['total_steps']}")
        with col2:
            st.markdown(f"**Codename:** `{run['os_codename'] or '?'}`")
            st.markdown(f"**Architecture:** `{run['architecture'] or '?'}`")
        with col3:
            st.markdown(f"**Started:** {started[:19]}")
            st.markdown(f"**Finished:** {finished[:19] if finished else 'N/A'}")

        if run["error_message"]:
            st.error(f"Error: {run['error_message']}")

        render_step_results(result_repo.get_for_run(conn, run_id))

conn.close()
