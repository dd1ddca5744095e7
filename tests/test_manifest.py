"""Tests for manifest loading and step definitions."""

import json
from pathlib import Path

import pytest

from core.errors import ManifestError
from core.manifest import Manifest
from core.planner import Planner
from core.steps import RetryPolicy, Step

MANIFESTS = Path(__file__).parent.parent / "manifests"

MINIMAL = {
    "name": "minimal",
    "steps": [
        {"name": "essentials", "provider": "apt_packages", "params": {"packages": ["curl"]}},
        {"name": "caddy", "provider": "apt_packages", "depends_on": "essentials"},
    ],
}


class TestManifestLoading:
    def test_from_dict(self):
        m = Manifest.from_dict(MINIMAL)
        assert m.name == "minimal"
        assert [s.name for s in m.steps] == ["essentials", "caddy"]
        assert m.steps[0].params == {"packages": ["curl"]}

    def test_string_dependency_becomes_list(self):
        m = Manifest.from_dict(MINIMAL)
        assert m.steps[1].depends_on == ["essentials"]

    def test_step_defaults(self):
        step = Manifest.from_dict(MINIMAL).steps[0]
        assert step.retryable is True
        assert step.critical is True
        assert step.retry == RetryPolicy()

    def test_json_file(self, tmp_path):
        path = tmp_path / "m.json"
        path.write_text(json.dumps(MINIMAL))
        assert Manifest.from_file(path).name == "minimal"

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "m.yaml"
        path.write_text(
            "name: yaml_manifest\n"
            "steps:\n"
            "  - name: swap\n"
            "    provider: swap_file\n"
            "    critical: false\n"
            "    params: {size_gb: 2}\n"
        )
        m = Manifest.from_file(path)
        assert m.steps[0].critical is False
        assert m.steps[0].params == {"size_gb": 2}

    def test_retry_defaults_and_overrides(self):
        m = Manifest.from_dict({
            "name": "retry",
            "defaults": {"retry": {"max_attempts": 5, "base_delay": 2}},
            "steps": [
                {"name": "a", "provider": "x"},
                {"name": "b", "provider": "x", "retry": {"max_attempts": 1}},
            ],
        })
        assert m.steps[0].retry.max_attempts == 5
        assert m.steps[0].retry.base_delay == 2.0
        assert m.steps[1].retry.max_attempts == 1
        assert m.steps[1].retry.base_delay == 2.0


class TestManifestValidation:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ManifestError, match="not found"):
            Manifest.from_file(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("steps: [unclosed")
        with pytest.raises(ManifestError, match="Invalid YAML"):
            Manifest.from_file(path)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{")
        with pytest.raises(ManifestError, match="Invalid JSON"):
            Manifest.from_file(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ManifestError, match="mapping"):
            Manifest.from_file(path)

    def test_missing_name(self):
        with pytest.raises(ManifestError, match="'name'"):
            Manifest.from_dict({"steps": MINIMAL["steps"]})

    def test_no_steps(self):
        with pytest.raises(ManifestError, match="at least one step"):
            Manifest.from_dict({"name": "empty", "steps": []})

    def test_step_without_provider(self):
        with pytest.raises(ManifestError, match="provider"):
            Manifest.from_dict({"name": "m", "steps": [{"name": "a"}]})

    def test_duplicate_step(self):
        with pytest.raises(ManifestError, match="Duplicate"):
            Manifest.from_dict({"name": "m", "steps": [
                {"name": "a", "provider": "x"},
                {"name": "a", "provider": "x"},
            ]})

    def test_params_must_be_mapping(self):
        with pytest.raises(ManifestError, match="params"):
            Manifest.from_dict({"name": "m", "steps": [
                {"name": "a", "provider": "x", "params": ["oops"]},
            ]})


class TestBundledManifest:
    def test_loads_and_plans(self):
        m = Manifest.from_file(MANIFESTS / "ubuntu_bootstrap.yaml")
        plan = Planner().plan(m.steps)
        names = plan.step_names
        assert names[0] == "essentials"
        assert names[-1] == "cleanup"
        assert names.index("caddy_repo") < names.index("caddy") < names.index("caddy_service")
        assert names.index("fail2ban_jail") < names.index("fail2ban_service")

    def test_mongodb_is_best_effort(self):
        m = Manifest.from_file(MANIFESTS / "ubuntu_bootstrap.yaml")
        steps = {s.name: s for s in m.steps}
        assert steps["mongodb"].critical is False
        assert steps["mongodb_service"].depends_on == ["mongodb"]

    def test_jail_config(self):
        m = Manifest.from_file(MANIFESTS / "ubuntu_bootstrap.yaml")
        jail = next(s for s in m.steps if s.name == "fail2ban_jail")
        assert "[sshd]" in jail.params["content"]
        assert "logpath = %(sshd_log)s" in jail.params["content"]


class TestStep:
    def test_param_hash_is_stable(self):
        a = Step("a", "apt_packages", params={"packages": ["x", "y"], "update": True})
        b = Step("a", "apt_packages", params={"update": True, "packages": ["x", "y"]})
        assert a.param_hash() == b.param_hash()

    def test_param_hash_covers_provider_and_settings(self):
        step = Step("a", "apt_packages", params={"packages": ["x"]})
        other = Step("a", "deb_package", params={"packages": ["x"]})
        assert step.param_hash() != other.param_hash()
        assert step.param_hash({"codename": "noble"}) != step.param_hash({"codename": "jammy"})

    def test_max_attempts(self):
        assert Step("a", "x", retry=RetryPolicy(max_attempts=4)).max_attempts == 4
        assert Step("a", "x", retryable=False, retry=RetryPolicy(max_attempts=4)).max_attempts == 1

    def test_delay_for(self):
        policy = RetryPolicy(base_delay=1.0, factor=2.0, max_delay=5.0)
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]
