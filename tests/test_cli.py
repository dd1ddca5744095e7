"""Tests for the click CLI, driven through CliRunner with a temporary database."""

import asyncio
import json

import pytest
from click.testing import CliRunner

from core.models import Outcome
from core.providers import Provider, register_provider
from run import EXIT_CANCELLED, EXIT_FAILED, EXIT_PLAN_ERROR, _signal_handler, main

HOST = ["--codename", "noble", "--arch", "amd64"]

NOOP_YAML = """\
name: cli_host
steps:
  - name: base
    provider: test_noop
    params: {tag: base}
  - name: web
    provider: test_noop
    depends_on: base
    params: {tag: web}
"""

FAILING_YAML = """\
name: failing_host
steps:
  - name: base
    provider: test_noop
  - name: broken
    provider: test_always_fails
    depends_on: base
  - name: after
    provider: test_noop
    depends_on: broken
"""

CYCLE_YAML = """\
name: cyclic
steps:
  - name: a
    provider: test_noop
    depends_on: b
  - name: b
    provider: test_noop
    depends_on: a
"""


@register_provider("test_always_fails")
class AlwaysFailsProvider(Provider):
    async def apply(self, ctx, params):
        return Outcome.failed(RuntimeError("package repository unreachable"))


@pytest.fixture
def cli():
    return CliRunner()


@pytest.fixture
def db_args(tmp_path):
    return ["--db", str(tmp_path / "state.db")]


def write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text)
    return str(path)


class TestApply:
    def test_apply_then_status(self, cli, db_args, tmp_path):
        manifest = write(tmp_path, "host.yaml", NOOP_YAML)

        result = cli.invoke(main, db_args + ["apply", manifest] + HOST)
        assert result.exit_code == 0, result.output
        assert "completed: 2 applied" in result.output

        result = cli.invoke(main, db_args + ["status"])
        assert result.exit_code == 0
        assert "2 applied step(s)" in result.output
        assert "cli_host" in result.output

    def test_second_apply_skips(self, cli, db_args, tmp_path):
        manifest = write(tmp_path, "host.yaml", NOOP_YAML)
        cli.invoke(main, db_args + ["apply", manifest] + HOST)
        result = cli.invoke(main, db_args + ["apply", manifest] + HOST)
        assert result.exit_code == 0
        assert "0 applied, 2 skipped" in result.output

    def test_json_report(self, cli, db_args, tmp_path):
        manifest = write(tmp_path, "host.yaml", NOOP_YAML)
        result = cli.invoke(main, db_args + ["apply", manifest, "--json"] + HOST)
        report = json.loads(result.output[result.output.index("{"):])
        assert report["status"] == "completed"
        assert [s["step_name"] for s in report["steps"]] == ["base", "web"]

    def test_critical_failure_exit_code(self, cli, db_args, tmp_path):
        manifest = write(tmp_path, "failing.yaml", FAILING_YAML)
        result = cli.invoke(main, db_args + ["apply", manifest] + HOST)
        assert result.exit_code == EXIT_FAILED
        assert "[FAIL] broken" in result.output
        assert "aborted: critical step 'broken' failed" in result.output

    def test_cycle_exit_code(self, cli, db_args, tmp_path):
        manifest = write(tmp_path, "cycle.yaml", CYCLE_YAML)
        result = cli.invoke(main, db_args + ["apply", manifest] + HOST)
        assert result.exit_code == EXIT_PLAN_ERROR

    def test_invalid_manifest_exit_code(self, cli, db_args, tmp_path):
        manifest = write(tmp_path, "bad.yaml", "name: only_a_name\n")
        result = cli.invoke(main, db_args + ["apply", manifest] + HOST)
        assert result.exit_code == EXIT_PLAN_ERROR

    def test_json_state_file(self, cli, db_args, tmp_path):
        manifest = write(tmp_path, "host.yaml", NOOP_YAML)
        state_file = tmp_path / "state.json"
        result = cli.invoke(
            main, db_args + ["--state-file", str(state_file), "apply", manifest] + HOST
        )
        assert result.exit_code == 0
        assert set(json.loads(state_file.read_text())["records"]) == {"base", "web"}

    def test_exit_code_constants(self):
        assert (EXIT_FAILED, EXIT_PLAN_ERROR, EXIT_CANCELLED) == (1, 2, 130)


class TestPlan:
    def test_plan_lists_order_and_state(self, cli, db_args, tmp_path):
        manifest = write(tmp_path, "host.yaml", NOOP_YAML)
        result = cli.invoke(main, db_args + ["plan", manifest] + HOST)
        assert result.exit_code == 0
        assert "cli_host on noble/amd64" in result.output
        assert "1. base [test_noop] pending" in result.output
        assert "2. web [test_noop] pending" in result.output

        cli.invoke(main, db_args + ["apply", manifest] + HOST)
        result = cli.invoke(main, db_args + ["plan", manifest] + HOST)
        assert "1. base [test_noop] applied" in result.output

    def test_plan_cycle(self, cli, db_args, tmp_path):
        manifest = write(tmp_path, "cycle.yaml", CYCLE_YAML)
        result = cli.invoke(main, db_args + ["plan", manifest] + HOST)
        assert result.exit_code == EXIT_PLAN_ERROR
        assert "a, b" in result.output


class TestVerifyAndForget:
    def test_verify(self, cli, db_args, tmp_path):
        manifest = write(tmp_path, "host.yaml", NOOP_YAML)
        result = cli.invoke(main, db_args + ["verify", manifest] + HOST)
        assert result.exit_code == 0
        assert "noop base" in result.output

    def test_forget_one_step(self, cli, db_args, tmp_path):
        manifest = write(tmp_path, "host.yaml", NOOP_YAML)
        cli.invoke(main, db_args + ["apply", manifest] + HOST)

        result = cli.invoke(main, db_args + ["forget", "web"])
        assert result.exit_code == 0
        assert "Forgot 1" in result.output

        result = cli.invoke(main, db_args + ["apply", manifest] + HOST)
        assert "1 applied, 1 skipped" in result.output

    def test_forget_unknown_step(self, cli, db_args):
        result = cli.invoke(main, db_args + ["forget", "ghost"])
        assert result.exit_code == EXIT_FAILED

    def test_forget_all_needs_confirmation(self, cli, db_args, tmp_path):
        manifest = write(tmp_path, "host.yaml", NOOP_YAML)
        cli.invoke(main, db_args + ["apply", manifest] + HOST)

        result = cli.invoke(main, db_args + ["forget"], input="n\n")
        assert result.exit_code != 0

        result = cli.invoke(main, db_args + ["forget", "--yes"])
        assert "Forgot 2" in result.output


class TestSignals:
    class RecordingProvisioner:
        def __init__(self):
            self.cancels = 0

        def cancel(self):
            self.cancels += 1

    def test_first_signal_stops_after_current_step(self):
        provisioner = self.RecordingProvisioner()

        async def scenario():
            task = asyncio.ensure_future(asyncio.sleep(60))
            _signal_handler(provisioner, task)("SIGINT")
            await asyncio.sleep(0)
            assert not task.done()
            task.cancel()

        asyncio.run(scenario())
        assert provisioner.cancels == 1

    def test_second_signal_cancels_the_run(self):
        provisioner = self.RecordingProvisioner()

        async def scenario():
            task = asyncio.ensure_future(asyncio.sleep(60))
            handle = _signal_handler(provisioner, task)
            handle("SIGINT")
            handle("SIGTERM")
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())
        assert provisioner.cancels == 1
