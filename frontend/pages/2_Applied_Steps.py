"""Page 2: Steps currently recorded as applied on this host."""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import streamlit as st

from db.connection import get_connection, init_db
from db.repository import ExecutionRecordRepository

init_db()

st.header("Applied Steps")
st.caption(
    "A step is skipped on the next run only while its parameters still hash to "
    "the value recorded here. Use `hostplan forget STEP` to force a re-run."
)

conn = get_connection()
records = ExecutionRecordRepository().list_all(conn)
conn.close()

if not records:
    st.info("No steps have been applied yet.")
    st.stop()

st.dataframe(
    [
        {
            "Step": r.step_name,
            "Parameter hash": r.param_hash,
            "Applied at": r.completed_at[:19],
            "Detail": r.detail,
        }
        for r in records
    ],
    use_container_width=True,
    hide_index=True,
)
