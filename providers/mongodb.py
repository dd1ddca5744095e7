"""MongoDB provider.

The release series comes from the host codename (see core.probe). The
official repository does not always publish a suite for the newest Ubuntu
release, so installation is tried against the host codename first and then
against FALLBACK_CODENAME. The executor sees a single Outcome either way.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from core.models import HostFacts, Outcome, ProvisionContext
from core.probe import FALLBACK_CODENAME, mongodb_version_for
from core.providers import FallbackProvider, Provider, register_provider
from providers.apt import apt_install, apt_update
from providers.commands import fetch_url, write_root_file

logger = logging.getLogger(__name__)

REPO_URL = "https://repo.mongodb.org/apt/ubuntu"
STALE_LISTS = "/etc/apt/sources.list.d/mongodb-org-*.list"


def key_url(version: str) -> str:
    if int(version.split(".")[0]) >= 8:
        return f"https://www.mongodb.org/static/pgp/server-{version}.asc"
    return f"https://pgp.mongodb.com/server-{version}.asc"


class MongoRepoInstall(Provider):
    """Configure the repo for one codename and install the packages from it."""

    name = "mongodb_repo"

    def __init__(self, version: str, codename: str, arch: str, list_suffix: str = ""):
        self.version = version
        self.codename = codename
        self.arch = arch
        self.list_suffix = list_suffix

    @property
    def keyring(self) -> str:
        return f"/usr/share/keyrings/mongodb-server-{self.version}.gpg"

    @property
    def list_file(self) -> str:
        return f"/etc/apt/sources.list.d/mongodb-org-{self.version}{self.list_suffix}.list"

    def source_line(self) -> str:
        return (
            f"deb [ arch={self.arch} signed-by={self.keyring} ] "
            f"{REPO_URL} {self.codename}/mongodb-org/{self.version} multiverse"
        )

    def settings(self) -> Dict[str, Any]:
        return {"version": self.version, "codename": self.codename, "arch": self.arch}

    async def apply(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Outcome:
        runner = ctx.runner
        logger.info("Configuring MongoDB %s repo for %s", self.version, self.codename)
        # A list for an unsupported suite breaks every later apt-get update.
        await runner.run(["sh", "-c", f"rm -f {STALE_LISTS}"])
        key = await fetch_url(runner, key_url(self.version))
        await runner.run(["gpg", "--dearmor", "--yes", "-o", self.keyring], input=key)
        await write_root_file(runner, self.list_file, (self.source_line() + "\n").encode(),
                              mode="0644")
        await apt_update(runner)
        await apt_install(runner, list(params.get("packages") or ["mongodb-org"]))
        return Outcome.success(f"MongoDB {self.version} installed from {self.codename} repo")


@register_provider("mongodb")
class MongoDBProvider(FallbackProvider):
    """Install MongoDB for the host codename, falling back to a known-good suite."""

    def __init__(self, version: str, codename: str, arch: str,
                 fallback_codename: str = FALLBACK_CODENAME):
        self.version = version
        super().__init__(
            primary=MongoRepoInstall(version, codename, arch),
            fallback=MongoRepoInstall(version, fallback_codename, arch, list_suffix="-fallback"),
        )

    @classmethod
    def for_host(cls, facts: HostFacts) -> Provider:
        return cls(
            version=mongodb_version_for(facts.os_codename),
            codename=facts.os_codename,
            arch=facts.architecture,
        )

    async def verify(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Optional[str]:
        result = await ctx.runner.run(["mongod", "--version"], check=False, privileged=False)
        if not result.ok:
            return "mongod not installed"
        return result.text.splitlines()[0] if result.text else "mongod installed"
