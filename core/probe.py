"""Platform probe: learns the OS codename and architecture of the host.

Provider selection happens from these facts once, before planning. The
MongoDB version table lives here because it is the one lookup that depends
purely on the codename.
"""

from __future__ import annotations

import logging
import platform as _platform
from pathlib import Path
from typing import Dict, Optional

from core.models import HostFacts

logger = logging.getLogger(__name__)

OS_RELEASE_PATH = Path("/etc/os-release")

MONGODB_VERSIONS: Dict[str, str] = {
    "focal": "7.0",
    "jammy": "7.0",
    "noble": "8.0",
}
DEFAULT_MONGODB_VERSION = "8.0"
# Closest supported codename when a repo has no suite for the host.
FALLBACK_CODENAME = "jammy"

_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armhf",
    "ppc64le": "ppc64el",
    "s390x": "s390x",
}


def parse_os_release(text: str) -> Dict[str, str]:
    """Parse the KEY=value lines of an os-release file."""
    values = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def debian_architecture(machine: Optional[str] = None) -> str:
    """Map a machine name (``uname -m``) to the Debian architecture name."""
    machine = (machine or _platform.machine()).lower()
    return _ARCH_NAMES.get(machine, machine)


def probe(os_release_path: Path = OS_RELEASE_PATH,
          machine: Optional[str] = None) -> HostFacts:
    """Detect host facts from os-release and the machine architecture."""
    values: Dict[str, str] = {}
    if os_release_path.exists():
        values = parse_os_release(os_release_path.read_text(encoding="utf-8"))
    else:
        logger.warning("No os-release file at %s", os_release_path)

    codename = values.get("UBUNTU_CODENAME") or values.get("VERSION_CODENAME") or ""
    facts = HostFacts(
        os_codename=codename,
        architecture=debian_architecture(machine),
        os_version=values.get("VERSION_ID", ""),
    )
    logger.info("Detected codename %r, arch %r", facts.os_codename, facts.architecture)
    return facts


def mongodb_version_for(codename: str) -> str:
    """MongoDB release series to install on ``codename``."""
    version = MONGODB_VERSIONS.get(codename)
    if version is None:
        logger.warning(
            "Unknown codename %r, defaulting MongoDB to %s", codename, DEFAULT_MONGODB_VERSION
        )
        return DEFAULT_MONGODB_VERSION
    return version
