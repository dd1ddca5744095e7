"""Main Streamlit app entry point -- Dashboard.

Landing page showing:
- Quick stats (total runs, failures, applied steps)
- Last provisioning run with its per-step outcomes

Launch with: streamlit run frontend/app.py
"""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import streamlit as st

from db.connection import init_db, get_connection, DB_PATH
from db.repository import (
    ExecutionRecordRepository,
    RunRepository,
    StepResultRepository,
)
from frontend.components.outcome_badge import duration, render_step_results, status_badge

init_db()

st.set_page_config(
    page_title="hostplan",
    layout="wide",
    initial_sidebar_state="expanded",
)

# --- Sidebar ---
with st.sidebar:
    st.header("Quick Info")
    st.markdown(f"**DB:** `{DB_PATH}`")
    st.markdown("---")
    st.caption("hostplan v0.1.0")


# ==========================================================================
# DASHBOARD
# ==========================================================================

st.title("hostplan")

st.markdown("""
Declarative, idempotent host provisioning. A manifest lists steps and their
dependencies; every run applies only the steps whose parameters changed since
they were last applied, and records the outcome of each step here.
""")

conn = get_connection()
run_repo = RunRepository()
result_repo = StepResultRepository()
record_repo = ExecutionRecordRepository()

all_runs = run_repo.list_runs(conn, limit=200)
records = record_repo.list_all(conn)

col_s1, col_s2, col_s3, col_s4 = st.columns(4)
with col_s1:
    st.metric("Total Runs", len(all_runs))
with col_s2:
    st.metric("Completed", sum(1 for r in all_runs if r["status"] == "completed"))
with col_s3:
    st.metric("Failed", sum(1 for r in all_runs if r["status"] == "failed"))
with col_s4:
    st.metric("Applied Steps", len(records))

st.markdown("---")

if not all_runs:
    st.info("No provisioning runs yet. Run `hostplan apply MANIFEST` on this host.")
    conn.close()
    st.stop()


# ==========================================================================
# LAST RUN
# ==========================================================================

last_run = all_runs[0]
run_id = last_run["id"]

st.subheader("Last Provisioning Run")

col_r1, col_r2, col_r3, col_r4 = st.columns(4)
with col_r1:
    st.markdown(f"**Status:** {status_badge(last_run['status'])}")
with col_r2:
    st.markdown(f"**Manifest:** `{last_run['manifest_name']}`")
with col_r3:
    st.markdown(f"**Host:** `{last_run['os_codename'] or '?'}/{last_run['architecture'] or '?'}`")
with col_r4:
    st.markdown(f"**Duration:** {duration(last_run['started_at'], last_run['finished_at'])}")

st.caption(
    f"Run ID: `{run_id[:12]}...` | "
    f"Started: {last_run['started_at'][:19]}"
)

if last_run["error_message"]:
    if last_run["aborted_by"]:
        st.error(f"Aborted by `{last_run['aborted_by']}`: {last_run['error_message']}")
    else:
        st.error(last_run["error_message"])

results = result_repo.get_for_run(conn, run_id)
if results:
    st.markdown("#### Steps")
    render_step_results(results)
else:
    st.caption("No steps were executed in this run.")


# ==========================================================================
# QUICK LINKS
# ==========================================================================

st.markdown("---")
lc1, lc2 = st.columns(2)
with lc1:
    st.page_link("pages/1_Run_History.py", label="Run History")
with lc2:
    st.page_link("pages/2_Applied_Steps.py", label="Applied Steps")

conn.close()
