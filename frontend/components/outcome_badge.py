"""Outcome badge components for step results and run statuses."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

import streamlit as st

OUTCOME_BADGES = {
    "success": ":green[APPLIED]",
    "skipped": ":blue[SKIPPED]",
    "failed": ":red[FAILED]",
    "failed_non_critical": ":orange[FAILED (non-critical)]",
}

STATUS_BADGES = {
    "completed": ":green[COMPLETED]",
    "failed": ":red[FAILED]",
    "cancelled": ":orange[CANCELLED]",
    "running": ":orange[RUNNING]",
}


def status_badge(status: str) -> str:
    return STATUS_BADGES.get(status, status.upper())


def outcome_badge(outcome: str) -> str:
    return OUTCOME_BADGES.get(outcome, outcome.upper())


def duration(started: Optional[str], finished: Optional[str]) -> str:
    """Human-readable duration between two ISO timestamps, or ''."""
    if not started or not finished:
        return ""
    try:
        t0 = datetime.fromisoformat(started)
        t1 = datetime.fromisoformat(finished)
    except ValueError:
        return ""
    return f"{(t1 - t0).total_seconds():.1f}s"


def render_step_results(results: List[Dict]) -> None:
    """Render the per-step outcomes of one run, in plan order."""
    for result in results:
        badge = outcome_badge(result["outcome"])
        name = result["step_name"]
        extras = []
        if result.get("attempts", 0) > 1:
            extras.append(f"{result['attempts']} attempts")
        if result.get("fallback_used"):
            extras.append("via fallback")
        d_str = duration(result.get("started_at"), result.get("finished_at"))
        if d_str:
            extras.append(d_str)
        suffix = f" ({', '.join(extras)})" if extras else ""

        st.markdown(f"&ensp; {badge} **{name}**{suffix}")
        detail = result.get("detail") or ""
        if detail:
            if result["outcome"] in ("failed", "failed_non_critical"):
                st.markdown(f"&ensp;&ensp; :red[{detail}]")
            else:
                st.caption(f"&ensp;&ensp; {detail}")
