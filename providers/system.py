"""System providers: services, files, swap, firewall."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

from core.models import Outcome, ProvisionContext
from core.providers import Provider, register_provider
from providers.commands import write_root_file


@register_provider("systemd_service")
class SystemdServiceProvider(Provider):
    """Enable a unit and start (or restart) it."""

    async def apply(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Outcome:
        unit = params["name"]
        if params.get("enable", True):
            await ctx.runner.run(["systemctl", "enable", unit])
        action = params.get("action", "start")
        if action:
            await ctx.runner.run(["systemctl", action, unit])
        return Outcome.success(f"{unit} enabled, {action}" if action else f"{unit} enabled")

    async def verify(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Optional[str]:
        unit = params["name"]
        result = await ctx.runner.run(["systemctl", "is-active", unit],
                                      check=False, privileged=False)
        return f"{unit} {result.text.strip() or 'unknown'}"


@register_provider("write_file")
class WriteFileProvider(Provider):
    """Write a file with fixed content; unchanged files are left alone."""

    @staticmethod
    def _current(path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except (FileNotFoundError, PermissionError, UnicodeDecodeError):
            return None

    async def apply(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Outcome:
        path = Path(params["path"])
        content = params.get("content", "")
        if self._current(path) == content:
            return Outcome.skipped(f"{path} unchanged")
        await ctx.runner.run(["mkdir", "-p", str(path.parent)])
        await write_root_file(ctx.runner, str(path), content.encode("utf-8"),
                              mode=params.get("mode", "0644"))
        return Outcome.success(f"wrote {path}")

    async def verify(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Optional[str]:
        path = Path(params["path"])
        current = self._current(path)
        if current is None:
            return f"{path} missing"
        return f"{path} up to date" if current == params.get("content", "") else f"{path} differs"


@register_provider("swap_file")
class SwapFileProvider(Provider):
    """Create, enable and persist a swap file.

    Each part is checked on its own, so a run that stopped after the file
    was allocated picks up at ``mkswap`` next time.
    """

    async def apply(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Outcome:
        path = params.get("path", "/swapfile")
        size_gb = int(params.get("size_gb", 4))
        runner = ctx.runner
        entry = f"{path} swap swap defaults 0 0"

        exists = os.path.exists(path)
        active = await self._is_active(runner, path)
        persisted = await runner.succeeds(["grep", "-qF", entry, "/etc/fstab"])
        if exists and active and persisted:
            return Outcome.skipped(f"swap at {path} already active")

        if not exists:
            await runner.run(["fallocate", "-l", f"{size_gb}G", path])
        if not active:
            await runner.run(["chmod", "600", path])
            await runner.run(["mkswap", path])
            await runner.run(["swapon", path])
        if not persisted:
            await write_root_file(runner, "/etc/fstab", (entry + "\n").encode(), append=True)
        return Outcome.success(f"swap enabled at {path}")

    @staticmethod
    async def _is_active(runner, path: str) -> bool:
        result = await runner.run(["swapon", "--show=NAME", "--noheadings"],
                                  check=False, privileged=False)
        return path in result.text.split()

    async def verify(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Optional[str]:
        result = await ctx.runner.run(["swapon", "--show=NAME,SIZE", "--noheadings"],
                                      check=False, privileged=False)
        return result.text.strip() or "no swap active"


@register_provider("ufw")
class UfwProvider(Provider):
    """Allow the given ports and enable the firewall non-interactively."""

    async def apply(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Outcome:
        runner = ctx.runner
        allowed = [str(rule) for rule in params.get("allow") or []]
        for rule in allowed:
            await runner.run(["ufw", "allow", rule])
        status = await runner.run(["ufw", "status"])
        if "Status: active" not in status.text:
            await runner.run(["ufw", "--force", "enable"])
        return Outcome.success(f"ufw active, allowed {', '.join(allowed) or 'nothing'}")

    async def verify(self, ctx: ProvisionContext, params: Dict[str, Any]) -> Optional[str]:
        result = await ctx.runner.run(["ufw", "status"], check=False)
        lines = result.text.strip().splitlines()
        return lines[0] if lines else "ufw status unavailable"
