"""Library for reading and writing cluster objects with `kubectl`.

The cluster holds two kinds of secrets owned by this tool in the `zarf`
namespace: `zarf-state` with the cluster wide state written when the cluster
was initialized, and one `zarf-package-<name>` secret per deployed package.

```python
from zarf_deploy.cluster import Cluster

cluster = Cluster()
state = await cluster.load_state()
print(f"Registry at {state.registry_info.address}")
```
"""

import base64
from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
from typing import Any

from mashumaro import field_options
from mashumaro.exceptions import MissingField, InvalidFieldValue

from . import command
from .exceptions import ClusterStateException, KubectlException
from .manifest import BaseManifest

__all__ = [
    "Cluster",
    "ZarfState",
    "RegistryState",
    "GitServerState",
    "generate_secret",
]

_LOGGER = logging.getLogger(__name__)

KUBECTL_BIN = "kubectl"
ZARF_NAMESPACE = "zarf"
ZARF_STATE_SECRET = "zarf-state"
ZARF_STATE_KEY = "state"
ZARF_MANAGED_BY = "zarf"
DEFAULT_NAMESPACE = "default"
_COPY_TIMEOUT = 600.0


@dataclass
class RegistryState(BaseManifest):
    """Connection information for the image registry."""

    address: str = ""
    push_username: str = field(metadata=field_options(alias="pushUsername"), default="")
    push_password: str = field(metadata=field_options(alias="pushPassword"), default="")
    pull_username: str = field(metadata=field_options(alias="pullUsername"), default="")
    pull_password: str = field(metadata=field_options(alias="pullPassword"), default="")
    internal_registry: bool = field(
        metadata=field_options(alias="internalRegistry"), default=True
    )
    node_port: int = field(metadata=field_options(alias="nodePort"), default=31999)


@dataclass
class GitServerState(BaseManifest):
    """Connection information for the git server."""

    address: str = ""
    push_username: str = field(metadata=field_options(alias="pushUsername"), default="")
    push_password: str = field(metadata=field_options(alias="pushPassword"), default="")
    pull_username: str = field(metadata=field_options(alias="pullUsername"), default="")
    pull_password: str = field(metadata=field_options(alias="pullPassword"), default="")
    internal_server: bool = field(
        metadata=field_options(alias="internalServer"), default=True
    )


@dataclass
class ZarfState(BaseManifest):
    """Cluster wide state written when the cluster was initialized."""

    distro: str = ""
    architecture: str = ""
    storage_class: str = field(metadata=field_options(alias="storageClass"), default="")
    logging_secret: str = field(
        metadata=field_options(alias="loggingSecret"), default=""
    )
    registry_info: RegistryState = field(
        metadata=field_options(alias="registryInfo"), default_factory=RegistryState
    )
    git_server: GitServerState = field(
        metadata=field_options(alias="gitServer"), default_factory=GitServerState
    )


def generate_secret(
    namespace: str,
    name: str,
    data: dict[str, bytes],
    labels: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Return an Opaque secret object managed by this tool."""
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "Opaque",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": {
                "app.kubernetes.io/managed-by": ZARF_MANAGED_BY,
                **(labels or {}),
            },
        },
        "data": {
            key: base64.b64encode(value).decode("utf-8") for key, value in data.items()
        },
    }


def secret_data(secret: dict[str, Any], key: str) -> bytes | None:
    """Return the decoded value of a key in a secret object."""
    if not (value := (secret.get("data") or {}).get(key)):
        return None
    return base64.b64decode(value)


class Cluster:
    """Runs kubectl commands against the target cluster."""

    def __init__(self, kubeconfig: str | None = None, context: str | None = None):
        """Initialize Cluster."""
        self._flags: list[str] = []
        if kubeconfig:
            self._flags.extend(["--kubeconfig", kubeconfig])
        if context:
            self._flags.extend(["--context", context])

    @property
    def flags(self) -> list[str]:
        """Flags passed to every kubectl invocation."""
        return list(self._flags)

    async def _run(
        self,
        args: list[str],
        stdin: bytes | None = None,
        timeout: float | None = None,
    ) -> str:
        cmd = command.Command([KUBECTL_BIN, *self._flags, *args], exc=KubectlException)
        if timeout is not None:
            cmd.timeout = timeout
        return await command.run(cmd, stdin=stdin)

    async def _get_json(self, args: list[str]) -> dict[str, Any] | None:
        out = await self._run(["get", *args, "--ignore-not-found", "-o", "json"])
        if not out.strip():
            return None
        try:
            return json.loads(out)
        except json.JSONDecodeError as err:
            raise KubectlException(f"Unable to parse kubectl output: {err}") from err

    async def get_secret(self, namespace: str, name: str) -> dict[str, Any] | None:
        """Return the secret object or None if it does not exist."""
        return await self._get_json(["secret", name, "-n", namespace])

    async def replace_secret(self, secret: dict[str, Any]) -> None:
        """Replace the secret, discarding any existing content."""
        metadata = secret["metadata"]
        _LOGGER.debug("Replacing secret %s/%s", metadata["namespace"], metadata["name"])
        await self.create_namespace(metadata["namespace"])
        await self._run(
            [
                "delete",
                "secret",
                metadata["name"],
                "-n",
                metadata["namespace"],
                "--ignore-not-found",
            ]
        )
        await self._run(["create", "-f", "-"], stdin=json.dumps(secret).encode())

    async def load_state(self) -> ZarfState:
        """Load the cluster state written when the cluster was initialized."""
        secret = await self.get_secret(ZARF_NAMESPACE, ZARF_STATE_SECRET)
        raw = secret_data(secret, ZARF_STATE_KEY) if secret else None
        if raw is None:
            raise ClusterStateException(
                f"Unable to load the {ZARF_NAMESPACE}/{ZARF_STATE_SECRET} secret, "
                "did you remember to run init first?"
            )
        try:
            state = ZarfState.from_dict(json.loads(raw))
        except (json.JSONDecodeError, MissingField, InvalidFieldValue) as err:
            raise ClusterStateException(f"Invalid cluster state: {err}") from err
        if not state.distro:
            raise ClusterStateException(
                f"Unable to load the {ZARF_NAMESPACE}/{ZARF_STATE_SECRET} secret, "
                "did you remember to run init first?"
            )
        return state

    async def save_state(self, state: ZarfState) -> None:
        """Write the cluster state secret."""
        await self.replace_secret(
            generate_secret(
                ZARF_NAMESPACE,
                ZARF_STATE_SECRET,
                {ZARF_STATE_KEY: json.dumps(state.to_dict()).encode()},
            )
        )

    async def create_namespace(self, name: str) -> None:
        """Create the namespace if it does not already exist."""
        if await self._get_json(["namespace", name]) is not None:
            return
        await self._run(["create", "namespace", name])

    async def get_nodes(self) -> list[dict[str, Any]]:
        """Return the cluster nodes."""
        nodes = await self._get_json(["nodes"])
        return list((nodes or {}).get("items", []))

    async def get_architecture(self) -> str:
        """Return the architecture of the first cluster node."""
        for node in await self.get_nodes():
            if arch := node.get("status", {}).get("nodeInfo", {}).get("architecture"):
                return str(arch)
        raise ClusterStateException("Unable to determine the cluster architecture")

    async def find_pods(self, namespace: str, selector: str) -> list[dict[str, Any]]:
        """Return the pods matching the label selector."""
        pods = await self._get_json(["pods", "-n", namespace, "-l", selector])
        return list((pods or {}).get("items", []))

    async def copy_to_pod(
        self, source: Path, namespace: str, pod: str, container: str, path: str
    ) -> None:
        """Copy a local file or directory into a pod container."""
        await self._run(
            ["cp", str(source), f"{namespace}/{pod}:{path}", "-c", container],
            timeout=_COPY_TIMEOUT,
        )

    async def create_config_map(
        self,
        namespace: str,
        name: str,
        binary_data: dict[str, bytes],
        labels: dict[str, str] | None = None,
    ) -> None:
        """Create a config map holding binary data."""
        config_map = {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "labels": {
                    "app.kubernetes.io/managed-by": ZARF_MANAGED_BY,
                    **(labels or {}),
                },
            },
            "binaryData": {
                key: base64.b64encode(value).decode("utf-8")
                for key, value in binary_data.items()
            },
        }
        await self._run(["create", "-f", "-"], stdin=json.dumps(config_map).encode())

    async def delete_config_maps(self, namespace: str, selector: str) -> None:
        """Delete the config maps matching the label selector."""
        await self._run(
            [
                "delete",
                "configmap",
                "-n",
                namespace,
                "-l",
                selector,
                "--ignore-not-found",
            ]
        )

    async def delete_pods(self, namespace: str, selector: str) -> None:
        """Delete the pods matching the label selector."""
        await self._run(
            ["delete", "pod", "-n", namespace, "-l", selector, "--ignore-not-found"]
        )
