"""Async command runner: the privilege handle every provider goes through."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from core.errors import CommandError, TransientActionError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 900.0


@dataclass
class CommandResult:
    args: list
    returncode: int
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Runs external commands, escalating with sudo when not already root."""

    def __init__(
        self,
        use_sudo: Optional[bool] = None,
        timeout: float = DEFAULT_TIMEOUT,
        env: Optional[Dict[str, str]] = None,
    ):
        if use_sudo is None:
            use_sudo = os.geteuid() != 0 and shutil.which("sudo") is not None
        self.use_sudo = use_sudo
        self.timeout = timeout
        self.env = {**os.environ, "DEBIAN_FRONTEND": "noninteractive", **(env or {})}

    def _argv(self, cmd: Sequence[str], privileged: bool) -> list:
        argv = list(cmd)
        if privileged and self.use_sudo:
            argv = ["sudo", "-E"] + argv
        return argv

    async def run(
        self,
        cmd: Sequence[str],
        check: bool = True,
        input: Optional[bytes] = None,
        privileged: bool = True,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run ``cmd`` and capture its output.

        Raises CommandError on a non-zero exit when ``check`` is set, and on
        timeout regardless of ``check``.
        """
        argv = self._argv(cmd, privileged)
        logger.debug("Running command: %s", " ".join(argv))

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
            )
        except FileNotFoundError as exc:
            if check:
                raise CommandError(argv, 127, str(exc)) from exc
            return CommandResult(argv, 127, b"", str(exc).encode())
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(input), timeout=timeout or self.timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise CommandError(argv, None)
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            raise

        result = CommandResult(argv, proc.returncode, stdout or b"", stderr or b"")
        if check and proc.returncode != 0:
            raise CommandError(argv, proc.returncode,
                               result.stderr.decode("utf-8", errors="replace"))
        return result

    async def succeeds(self, cmd: Sequence[str], privileged: bool = True) -> bool:
        """True if ``cmd`` exits zero."""
        result = await self.run(cmd, check=False, privileged=privileged)
        return result.ok


async def fetch_url(runner: CommandRunner, url: str) -> bytes:
    """Download ``url`` with curl; network failures are worth retrying."""
    try:
        result = await runner.run(["curl", "-fsSL", url], privileged=False)
    except CommandError as exc:
        raise TransientActionError(f"Download failed for {url}: {exc}") from exc
    return result.stdout


async def write_root_file(runner: CommandRunner, path: str, data: bytes,
                          mode: Optional[str] = None, append: bool = False) -> None:
    """Write ``data`` to ``path`` through ``tee`` so sudo applies."""
    cmd = ["tee", "-a", path] if append else ["tee", path]
    await runner.run(cmd, input=data)
    if mode:
        await runner.run(["chmod", mode, path])
