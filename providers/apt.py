"""APT providers: packages, third-party repositories, standalone .deb files, cleanup."""

from __future__ import annotations

import glob
import logging
import os
import tempfile
from typing import Any, Dict, List, Optional

from core.errors import CommandError, TransientActionError
from core.models import HostFacts, Outcome, ProvisionContext
from core.providers import Provider, register_provider
from providers.commands import CommandRunner, fetch_url, write_root_file

logger = logging.getLogger(__name__)


async def apt_update(runner: CommandRunner) -> None:
    """Refresh package lists; index download failures are retryable."""
    try:
        await runner.run(["apt-get", "update", "-y"])
    except CommandError as exc:
        raise TransientActionError(f"apt-get update failed: {exc}") from exc


async def apt_install(runner: CommandRunner, packages: List[str]) -> None:
    await runner.run(["apt-get", "install", "-y", *packages])


async def package_version(runner: CommandRunner, package: str) -> Optional[str]:
    result = await runner.run(
        ["dpkg-query", "-W", "-f=${Version}", package], check=False, privileged=False
    )
    return result.text.strip() if result.ok and result.text.strip() else None


@register_provider("apt_packages")
class AptPackagesProvider(Provider):
    """Install a list of packages, optionally falling back to a smaller set.

    params:
        packages: packages to install
        update: run apt-get update first (default true)
        upgrade: run apt-get upgrade first (default false)
        fallback_packages: installed instead if the full set fails
    """

    async def apply(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Outcome:
        runner = ctx.runner
        packages = list(params.get("packages") or [])
        upgrade = bool(params.get("upgrade", False))
        if not packages and not upgrade:
            return Outcome.skipped("no packages listed")

        if params.get("update", True):
            await apt_update(runner)
        if upgrade:
            await runner.run(["apt-get", "upgrade", "-y"])
        if not packages:
            return Outcome.success("packages upgraded")

        try:
            await apt_install(runner, packages)
        except CommandError as exc:
            fallback = list(params.get("fallback_packages") or [])
            if not fallback:
                raise
            logger.warning("Install of %s failed (%s); trying %s",
                           ", ".join(packages), exc, ", ".join(fallback))
            await apt_install(runner, fallback)
            return Outcome.success(f"installed {', '.join(fallback)}", fallback_used=True)

        return Outcome.success(f"installed {', '.join(packages)}")

    async def verify(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Optional[str]:
        packages = list(params.get("packages") or [])
        if not packages:
            return None
        parts = []
        for package in packages:
            version = await package_version(ctx.runner, package)
            parts.append(f"{package} {version}" if version else f"{package} missing")
        return "; ".join(parts)


@register_provider("apt_repository")
class AptRepositoryProvider(Provider):
    """Register a signed third-party APT repository.

    params:
        key_url: ASCII-armored signing key
        keyring: where the dearmored key is written
        source: sources.list line; may use {codename}, {arch}, {os_version}, {keyring}
        source_url: alternatively, download the list file contents from here
        list_file: target file under /etc/apt/sources.list.d
        remove_patterns: globs of stale list files to delete first
    """

    def __init__(self, facts: Optional[HostFacts] = None):
        self.facts = facts

    @classmethod
    def for_host(cls, facts: HostFacts) -> Provider:
        return cls(facts)

    def settings(self) -> Dict[str, Any]:
        return self.facts.as_template_vars() if self.facts else {}

    def render_source(self, params: Dict[str, Any]) -> str:
        template_vars = dict(self.settings())
        template_vars["keyring"] = params.get("keyring", "")
        return params["source"].format(**template_vars)

    async def apply(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Outcome:
        runner = ctx.runner
        list_file = params["list_file"]

        stale = []
        for pattern in params.get("remove_patterns") or []:
            stale.extend(p for p in glob.glob(pattern) if p != list_file)
        if stale:
            await runner.run(["rm", "-f", *stale])

        keyring = params.get("keyring")
        if params.get("key_url") and keyring:
            key = await fetch_url(runner, params["key_url"])
            await runner.run(["gpg", "--dearmor", "--yes", "-o", keyring], input=key)

        if params.get("source_url"):
            contents = await fetch_url(runner, params["source_url"])
        else:
            contents = (self.render_source(params) + "\n").encode()
        await write_root_file(runner, list_file, contents, mode="0644")
        return Outcome.success(f"configured {list_file}")

    async def verify(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Optional[str]:
        list_file = params.get("list_file", "")
        return f"{list_file} present" if os.path.exists(list_file) else f"{list_file} missing"


@register_provider("deb_package")
class DebPackageProvider(Provider):
    """Download a .deb (URL may use {os_version}, {codename}, {arch}) and install it."""

    def __init__(self, facts: Optional[HostFacts] = None):
        self.facts = facts

    @classmethod
    def for_host(cls, facts: HostFacts) -> Provider:
        return cls(facts)

    def settings(self) -> Dict[str, Any]:
        return self.facts.as_template_vars() if self.facts else {}

    async def apply(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Outcome:
        url = params["url"].format(**self.settings())
        data = await fetch_url(ctx.runner, url)
        fd, path = tempfile.mkstemp(prefix="hostplan-", suffix=".deb")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            await ctx.runner.run(["dpkg", "-i", path])
        finally:
            os.unlink(path)
        return Outcome.success(f"installed {os.path.basename(url)}")


@register_provider("apt_cleanup")
class AptCleanupProvider(Provider):
    """Remove unused packages and clear the package cache."""

    async def apply(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Outcome:
        await ctx.runner.run(["apt-get", "autoremove", "-y"])
        await ctx.runner.run(["apt-get", "clean"])
        return Outcome.success("apt caches cleaned")
