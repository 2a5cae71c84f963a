"""Library for running the external programs a deployment drives.

Every helm, kubectl and skopeo invocation is a `Command`. Commands run without
a shell, are bounded by a per command timeout, and share a semaphore that
limits how many subprocesses run at once. Credentials passed on a command line
are listed in `redact` so they never reach a log line or an exception.
"""

import asyncio
import logging
import os
import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .exceptions import CommandException

_LOGGER = logging.getLogger(__name__)

_MAX_SUBPROCESSES = 20
_SEM = asyncio.Semaphore(_MAX_SUBPROCESSES)
DEFAULT_TIMEOUT = 60.0
_REDACTED = "****"


__all__ = [
    "Command",
    "run",
    "run_piped",
]


@dataclass
class Command:
    """A subprocess to run and the way its failures are reported."""

    cmd: list[str]
    """Program followed by its arguments."""

    cwd: Path | None = None
    """Working directory of the subprocess."""

    exc: type[CommandException] = CommandException
    """Exception raised when the program fails or times out."""

    retcodes: list[int] | None = None
    """Non-zero exit codes that still count as success."""

    env: dict[str, str] | None = None
    """Extra environment variables, added to the current environment."""

    timeout: float = DEFAULT_TIMEOUT
    """Seconds to wait for the program before killing it."""

    redact: list[str] | None = None
    """Values that are masked whenever the command or its output is shown."""

    @property
    def string(self) -> str:
        """Shell quoted command line, secrets included."""
        return shlex.join(self.cmd)

    def mask(self, text: str) -> str:
        """Replace every redacted value in the text."""
        for secret in self.redact or ():
            if secret:
                text = text.replace(secret, _REDACTED)
        return text

    def __str__(self) -> str:
        prefix = f"(in {self.cwd}) " if self.cwd else ""
        return prefix + self.mask(self.string)

    def _failure(self, returncode: int | None, out: bytes, err: bytes) -> str:
        lines = [f"Command '{self}' failed with return code {returncode}"]
        lines.extend(
            self.mask(stream.decode("utf-8", errors="replace"))
            for stream in (out, err)
            if stream
        )
        return "\n".join(lines)

    async def run(self, stdin: bytes | None = None) -> bytes:
        """Run the program to completion and return its stdout."""
        _LOGGER.debug("Running command: %s", self)
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.cwd,
                env={**os.environ, **(self.env or {})},
            )
        except OSError as error:
            raise self.exc(f"Command '{self}' could not be started: {error}") from error
        try:
            out, err = await asyncio.wait_for(proc.communicate(stdin), self.timeout)
        except asyncio.TimeoutError as error:
            proc.kill()
            await proc.wait()
            raise self.exc(
                f"Command '{self}' timed out after {self.timeout}s"
            ) from error
        if proc.returncode and proc.returncode not in (self.retcodes or ()):
            message = self._failure(proc.returncode, out, err)
            _LOGGER.debug(message)
            raise self.exc(message)
        return out


async def run_piped(cmds: Sequence[Command], stdin: bytes | None = None) -> str:
    """Feed the output of each command to the next, returning the last stdout."""
    out = stdin
    async with _SEM:
        for cmd in cmds:
            out = await cmd.run(out)
    return out.decode("utf-8") if out else ""


async def run(cmd: Command, stdin: bytes | None = None) -> str:
    """Run a single command and return its stdout."""
    return await run_piped([cmd], stdin=stdin)
