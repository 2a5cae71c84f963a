"""Port forward tunnels from the deploying host to services in the cluster.

```python
async with Tunnel.for_service(GIT) as tunnel:
    print(f"Git server reachable at http://{tunnel.endpoint}")
```
"""

import asyncio
import contextlib
from dataclasses import dataclass
import logging
import socket
import subprocess
from types import TracebackType

from .cluster import KUBECTL_BIN, ZARF_NAMESPACE
from .exceptions import KubectlException

__all__ = [
    "Tunnel",
    "TunnelTarget",
    "GIT",
    "REGISTRY",
    "LOGGING",
]

_LOGGER = logging.getLogger(__name__)

_CONNECT_TIMEOUT = 30.0
_CLOSE_TIMEOUT = 5.0
_READY_MARKER = b"Forwarding from"


@dataclass(frozen=True)
class TunnelTarget:
    """An in-cluster service reachable through a tunnel."""

    namespace: str
    service: str
    port: int


GIT = "git"
REGISTRY = "registry"
LOGGING = "logging"

TARGETS = {
    GIT: TunnelTarget(ZARF_NAMESPACE, "zarf-gitea-http", 3000),
    REGISTRY: TunnelTarget(ZARF_NAMESPACE, "zarf-docker-registry", 5000),
    LOGGING: TunnelTarget(ZARF_NAMESPACE, "zarf-loki-stack-grafana", 3000),
}


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


class Tunnel:
    """A `kubectl port-forward` process, closed when the context exits."""

    def __init__(self, target: TunnelTarget, kubectl_flags: list[str] | None = None):
        """Initialize Tunnel."""
        self._target = target
        self._flags = kubectl_flags or []
        self._local_port = 0
        self._proc: asyncio.subprocess.Process | None = None
        self._drains: list[asyncio.Task[None]] = []

    @classmethod
    def for_service(cls, name: str, kubectl_flags: list[str] | None = None) -> "Tunnel":
        """Return a tunnel for a service by its logical name."""
        if not (target := TARGETS.get(name)):
            raise KubectlException(f"Unknown tunnel target {name}")
        return cls(target, kubectl_flags)

    @property
    def endpoint(self) -> str:
        """Return the local host:port forwarded to the service."""
        if self._proc is None:
            raise KubectlException("Tunnel is not connected")
        return f"127.0.0.1:{self._local_port}"

    async def connect(self) -> None:
        """Start the port forward and wait until it accepts connections."""
        self._local_port = _free_port()
        args = [
            *self._flags,
            "port-forward",
            "-n",
            self._target.namespace,
            f"svc/{self._target.service}",
            f"{self._local_port}:{self._target.port}",
        ]
        _LOGGER.debug("Opening tunnel: %s %s", KUBECTL_BIN, " ".join(args))
        try:
            self._proc = await asyncio.create_subprocess_exec(
                KUBECTL_BIN,
                *args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as err:
            raise KubectlException(
                f"Unable to start {KUBECTL_BIN} for a tunnel to "
                f"{self._target.service}: {err}"
            ) from err
        assert self._proc.stdout
        try:
            line = await asyncio.wait_for(
                self._proc.stdout.readline(), _CONNECT_TIMEOUT
            )
        except asyncio.TimeoutError as err:
            await self.close()
            raise KubectlException(
                f"Timed out opening a tunnel to {self._target.service}"
            ) from err
        if not line.startswith(_READY_MARKER):
            stderr = line
            # Process exited without forwarding
            if not line and self._proc.stderr:
                stderr = await self._proc.stderr.read()
            await self.close()
            raise KubectlException(
                f"Unable to open a tunnel to {self._target.service}: "
                f"{stderr.decode('utf-8', errors='replace')}"
            )
        # kubectl logs every forwarded connection and blocks once a pipe fills
        self._drains = self._start_drains(self._proc)

    def _start_drains(
        self, proc: asyncio.subprocess.Process
    ) -> list[asyncio.Task[None]]:
        return [
            asyncio.create_task(self._drain(stream))
            for stream in (proc.stdout, proc.stderr)
            if stream is not None
        ]

    async def _drain(self, stream: asyncio.StreamReader) -> None:
        while line := await stream.readline():
            _LOGGER.debug(
                "%s tunnel: %s",
                self._target.service,
                line.decode("utf-8", errors="replace").rstrip(),
            )

    async def close(self) -> None:
        """Terminate the port forward process."""
        if self._proc is None:
            return
        proc, self._proc = self._proc, None
        drains, self._drains = self._drains or self._start_drains(proc), []
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), _CLOSE_TIMEOUT)
            except asyncio.TimeoutError:
                _LOGGER.debug("Killing tunnel to %s", self._target.service)
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
        for drain in drains:
            drain.cancel()
        await asyncio.gather(*drains, return_exceptions=True)
        _LOGGER.debug("Closed tunnel to %s", self._target.service)

    async def __aenter__(self) -> "Tunnel":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
