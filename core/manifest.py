"""Manifest loader: reads JSON or YAML provisioning definitions into Steps.

The manifest is the source of truth:
- Declares steps, their providers, params and dependencies
- Step order in the file is the declaration order used for tie-breaks
- Swapping manifests = provisioning a different host role without code changes
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from core.errors import ManifestError
from core.steps import RetryPolicy, Step


@dataclass
class Manifest:
    """Parsed provisioning manifest."""
    name: str
    description: str
    version: str
    steps: List[Step]
    defaults: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str | Path) -> Manifest:
        """Load a manifest from a JSON or YAML file (chosen by extension)."""
        path = Path(path)
        if not path.exists():
            raise ManifestError(f"Manifest file not found: {path}")

        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() in (".yaml", ".yml"):
            try:
                raw = yaml.safe_load(text)
            except yaml.YAMLError as e:
                raise ManifestError(f"Invalid YAML in {path}: {e}")
        else:
            try:
                raw = json.loads(text)
            except json.JSONDecodeError as e:
                raise ManifestError(f"Invalid JSON in {path}: {e}")

        if not isinstance(raw, dict):
            raise ManifestError(f"Manifest must be a mapping, got {type(raw).__name__}")

        return cls._parse(raw)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> Manifest:
        """Load a manifest from a dictionary (useful for testing)."""
        return cls._parse(raw)

    @classmethod
    def _parse(cls, raw: Dict[str, Any]) -> Manifest:
        """Parse a raw dictionary into a Manifest object."""
        name = raw.get("name")
        if not name:
            raise ManifestError("Manifest must have a 'name' field")

        raw_steps = raw.get("steps") or []
        if not isinstance(raw_steps, list) or not raw_steps:
            raise ManifestError("Manifest must define at least one step as a list")

        defaults = raw.get("defaults") or {}
        default_retry = RetryPolicy.from_dict(defaults.get("retry"))

        steps = []
        seen = set()
        for position, step_data in enumerate(raw_steps):
            if not isinstance(step_data, dict):
                raise ManifestError(f"Step #{position} must be a mapping")

            step_name = step_data.get("name")
            if not step_name:
                raise ManifestError(f"Step #{position} must have a 'name' field")
            if step_name in seen:
                raise ManifestError(f"Duplicate step name: '{step_name}'")
            seen.add(step_name)

            provider = step_data.get("provider")
            if not provider:
                raise ManifestError(f"Step '{step_name}' must have a 'provider' field")

            depends_on = step_data.get("depends_on") or []
            if isinstance(depends_on, str):
                depends_on = [depends_on]

            params = step_data.get("params") or {}
            if not isinstance(params, dict):
                raise ManifestError(f"Step '{step_name}' params must be a mapping")

            steps.append(Step(
                name=step_name,
                provider=provider,
                params=params,
                depends_on=list(depends_on),
                retryable=bool(step_data.get("retryable", True)),
                critical=bool(step_data.get("critical", True)),
                retry=RetryPolicy.from_dict(step_data.get("retry"), base=default_retry),
            ))

        return cls(
            name=name,
            description=raw.get("description", ""),
            version=str(raw.get("version", "1.0")),
            steps=steps,
            defaults=defaults,
        )
