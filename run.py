"""
hostplan CLI - apply declarative provisioning manifests to this host.

Commands:
    hostplan apply MANIFEST    Run every step that is not already applied
    hostplan plan MANIFEST     Show the execution order and what would run
    hostplan status            List applied steps and recent runs
    hostplan verify MANIFEST   Ask each provider to describe the host state
    hostplan forget [STEP]     Drop the record of one step (or all) so it re-runs

Exit codes: 0 success, 1 a critical step failed, 2 invalid manifest or plan,
130 cancelled.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Callable, List, Optional

import click

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core.engine import Provisioner
from core.errors import CycleError, ManifestError, UnknownStepError
from core.manifest import Manifest
from core.models import HostFacts, OutcomeKind, ProvisionContext, RunStatus
from core.probe import probe
from core.reporter import Report, StepReport
from core.state import JsonFileStateStore, SqliteStateStore, StateStore
from db.connection import DB_PATH, apply_schema, get_connection
from db.repository import RunRepository
from providers.commands import DEFAULT_TIMEOUT, CommandRunner

__version__ = "0.1.0"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PLAN_ERROR = 2
EXIT_CANCELLED = 130

logger = logging.getLogger("hostplan")


class StepLabelFilter(logging.Filter):
    """Prefix messages logged with ``extra={"step": ...}`` by the step name."""

    def filter(self, record: logging.LogRecord) -> bool:
        step = getattr(record, "step", None)
        record.step_label = f"{step}: " if step else ""
        return True


def _configure_logging(verbose: bool) -> None:
    handler = logging.StreamHandler()
    handler.addFilter(StepLabelFilter())
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[hostplan] %(levelname)s: %(step_label)s%(message)s",
        handlers=[handler],
    )


def _open_db(db_path: Optional[str]):
    path = Path(db_path) if db_path else DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(path)
    apply_schema(conn)
    return conn


def _open_store(obj: dict, conn) -> StateStore:
    if obj.get("state_file"):
        return JsonFileStateStore(Path(obj["state_file"]))
    return SqliteStateStore(conn)


def _load_manifest(path: str) -> Manifest:
    try:
        return Manifest.from_file(path)
    except ManifestError as e:
        click.echo(f"Invalid manifest: {e}", err=True)
        sys.exit(EXIT_PLAN_ERROR)


def _host_facts(codename: Optional[str], arch: Optional[str]) -> HostFacts:
    facts = probe()
    if codename:
        facts = dataclasses.replace(facts, os_codename=codename)
    if arch:
        facts = dataclasses.replace(facts, architecture=arch)
    if not facts.os_codename:
        click.echo("Could not detect the OS codename; pass --codename", err=True)
        sys.exit(EXIT_PLAN_ERROR)
    return facts


def _build_provisioner(obj: dict, manifest: Manifest, conn, codename, arch,
                       record_history: bool = False) -> Provisioner:
    timeout = float(manifest.defaults.get("command_timeout", DEFAULT_TIMEOUT))
    context = ProvisionContext(
        runner=CommandRunner(timeout=timeout),
        facts=_host_facts(codename, arch),
        config=manifest.defaults,
    )
    return Provisioner(
        manifest,
        _open_store(obj, conn),
        context,
        conn=conn if record_history else None,
    )


def _echo_step(entry: StepReport) -> None:
    outcome = entry.outcome
    if outcome.kind == OutcomeKind.SUCCESS:
        mark = click.style("ok", fg="green")
    elif outcome.kind == OutcomeKind.SKIPPED:
        mark = click.style("skip", fg="cyan")
    elif outcome.kind == OutcomeKind.FAILED_NON_CRITICAL:
        mark = click.style("warn", fg="yellow")
    else:
        mark = click.style("FAIL", fg="red", bold=True)
    click.echo(f"  [{mark}] {entry.step_name}")


def _signal_handler(provisioner: Provisioner, task: asyncio.Task) -> Callable[[str], None]:
    """First signal asks for a cooperative stop; a second one cancels the run outright."""
    received: List[str] = []

    def handle(signame: str) -> None:
        received.append(signame)
        if len(received) == 1:
            logger.warning("Received %s, stopping after the current step "
                           "(send again to abort it)", signame)
            provisioner.cancel()
        else:
            logger.warning("Received %s again, aborting the current step", signame)
            task.cancel()

    return handle


async def _run_with_signals(provisioner: Provisioner) -> Report:
    """Run the provisioner with SIGINT/SIGTERM wired to cancellation."""
    loop = asyncio.get_running_loop()
    handler = _signal_handler(provisioner, asyncio.current_task())

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, handler, sig.name)
            installed.append(sig)
        except NotImplementedError:
            logger.debug("Signal handlers not supported on this platform")
    try:
        return await provisioner.run(on_step_update=_echo_step)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


@click.group()
@click.version_option(version=__version__, prog_name="hostplan")
@click.option("--db", "db_path", envvar="HOSTPLAN_DB", type=click.Path(dir_okay=False),
              help=f"SQLite database for state and run history (default {DB_PATH})")
@click.option("--state-file", envvar="HOSTPLAN_STATE_FILE", type=click.Path(dir_okay=False),
              help="Keep step records in this JSON file instead of the database")
@click.option("-v", "--verbose", is_flag=True, help="Log every command that runs")
@click.pass_context
def main(ctx, db_path: Optional[str], state_file: Optional[str], verbose: bool):
    """hostplan - idempotent, declarative host provisioning."""
    _configure_logging(verbose)
    ctx.obj = {"db_path": db_path, "state_file": state_file}


@main.command()
@click.argument("manifest_path", metavar="MANIFEST", type=click.Path(exists=True, dir_okay=False))
@click.option("--codename", help="Override the detected OS codename")
@click.option("--arch", help="Override the detected architecture")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_obj
def apply(obj: dict, manifest_path: str, codename: Optional[str], arch: Optional[str],
          as_json: bool):
    """Apply MANIFEST to this host."""
    manifest = _load_manifest(manifest_path)
    conn = _open_db(obj["db_path"])
    try:
        provisioner = _build_provisioner(obj, manifest, conn, codename, arch,
                                         record_history=True)
        click.echo(f"Applying {manifest.name} ({len(manifest.steps)} steps)")
        try:
            report = asyncio.run(_run_with_signals(provisioner))
        except (CycleError, UnknownStepError, ManifestError) as e:
            click.echo(f"Cannot plan: {e}", err=True)
            sys.exit(EXIT_PLAN_ERROR)
        except asyncio.CancelledError:
            click.echo("Run aborted", err=True)
            sys.exit(EXIT_CANCELLED)
    finally:
        conn.close()

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        click.echo("")
        for line in report.render():
            click.echo(line)

    if report.status == RunStatus.FAILED:
        sys.exit(EXIT_FAILED)
    if report.status == RunStatus.CANCELLED:
        sys.exit(EXIT_CANCELLED)


@main.command()
@click.argument("manifest_path", metavar="MANIFEST", type=click.Path(exists=True, dir_okay=False))
@click.option("--codename", help="Override the detected OS codename")
@click.option("--arch", help="Override the detected architecture")
@click.pass_obj
def plan(obj: dict, manifest_path: str, codename: Optional[str], arch: Optional[str]):
    """Show the order MANIFEST would run in, without touching the host."""
    manifest = _load_manifest(manifest_path)
    conn = _open_db(obj["db_path"])
    try:
        provisioner = _build_provisioner(obj, manifest, conn, codename, arch)
        try:
            rows = provisioner.preview()
        except (CycleError, UnknownStepError, ManifestError) as e:
            click.echo(f"Cannot plan: {e}", err=True)
            sys.exit(EXIT_PLAN_ERROR)
    finally:
        conn.close()

    facts = provisioner.context.facts
    click.echo(f"{manifest.name} on {facts.os_codename}/{facts.architecture}:")
    for position, (step, applied) in enumerate(rows, 1):
        state = "applied" if applied else "pending"
        flags = "" if step.critical else " (best-effort)"
        click.echo(f"{position:3d}. {step.name} [{step.provider}] {state}{flags}")


@main.command()
@click.option("--runs", default=5, show_default=True, help="Number of recent runs to list")
@click.pass_obj
def status(obj: dict, runs: int):
    """List applied steps and recent runs."""
    conn = _open_db(obj["db_path"])
    try:
        records = _open_store(obj, conn).all()
        recent = RunRepository().list_runs(conn, limit=runs)
    finally:
        conn.close()

    if not records:
        click.echo("No steps applied yet.")
    else:
        click.echo(f"{len(records)} applied step(s):")
        for record in records:
            click.echo(f"  {record.step_name:<24} {record.param_hash}  {record.completed_at[:19]}")

    if recent:
        click.echo("")
        click.echo("Recent runs:")
        for run in recent:
            click.echo(
                f"  {run['started_at'][:19]}  {run['manifest_name']:<20} {run['status']:<10} "
                f"{run['applied_steps'] or 0} applied, {run['skipped_steps'] or 0} skipped, "
                f"{run['failed_steps'] or 0} failed"
            )


@main.command()
@click.argument("manifest_path", metavar="MANIFEST", type=click.Path(exists=True, dir_okay=False))
@click.option("--codename", help="Override the detected OS codename")
@click.option("--arch", help="Override the detected architecture")
@click.pass_obj
def verify(obj: dict, manifest_path: str, codename: Optional[str], arch: Optional[str]):
    """Describe the current host state for each step of MANIFEST."""
    manifest = _load_manifest(manifest_path)
    conn = _open_db(obj["db_path"])
    try:
        provisioner = _build_provisioner(obj, manifest, conn, codename, arch)
        try:
            results = asyncio.run(provisioner.verify())
        except (CycleError, UnknownStepError, ManifestError) as e:
            click.echo(f"Cannot plan: {e}", err=True)
            sys.exit(EXIT_PLAN_ERROR)
    finally:
        conn.close()

    for step_name, detail in results:
        click.echo(f"  {step_name:<24} {detail}")


@main.command()
@click.argument("step", required=False)
@click.option("--yes", is_flag=True, help="Do not ask before forgetting every step")
@click.pass_obj
def forget(obj: dict, step: Optional[str], yes: bool):
    """Forget STEP (or every step) so the next apply runs it again."""
    if step is None and not yes:
        click.confirm("Forget every applied step?", abort=True)
    conn = _open_db(obj["db_path"])
    try:
        removed = _open_store(obj, conn).clear(step)
    finally:
        conn.close()

    if step and not removed:
        click.echo(f"No record for step '{step}'", err=True)
        sys.exit(EXIT_FAILED)
    click.echo(f"Forgot {removed} step record(s)")


if __name__ == "__main__":
    main()
