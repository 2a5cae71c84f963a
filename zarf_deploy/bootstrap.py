"""Bootstrap of the cluster side services by an init package.

An init package seeds the cluster state with generated credentials before the
registry exists, then loads the seed registry image into the cluster as a
set of config maps that the injector component reassembles in a pod.
"""

from dataclasses import dataclass
import logging
from pathlib import Path
import secrets
import shutil

import aiofiles

from .cluster import Cluster, GitServerState, RegistryState, ZarfState, ZARF_NAMESPACE
from .config import DeployOptions
from .exceptions import ClusterStateException, PreflightException

__all__ = [
    "seed_state",
    "detect_distro",
    "run_preflight_checks",
    "RegistryInjector",
]

_LOGGER = logging.getLogger(__name__)

REQUIRED_BINARIES = ["helm", "kubectl"]
IMAGE_BINARIES = ["skopeo"]

REGISTRY_PUSH_USER = "zarf-push"
REGISTRY_PULL_USER = "zarf-pull"
GIT_PUSH_USER = "zarf-git-user"
GIT_PULL_USER = "zarf-git-read-user"
INTERNAL_GIT_ADDRESS = "http://zarf-gitea-http.zarf.svc.cluster.local:3000"
LOCALHOST = "127.0.0.1"
_PASSWORD_BYTES = 18

DISTRO_GENERIC = "generic"
# Node name prefixes and the distro they indicate.
_DISTRO_NODE_PREFIXES = {
    "k3d-": "k3d",
    "kind-": "kind",
}
_K3S_INSTANCE_TYPE = "k3s"
_INSTANCE_TYPE_LABEL = "node.kubernetes.io/instance-type"
_EKS_LABEL = "eks.amazonaws.com/nodegroup"

PAYLOAD_CHUNK_SIZE = 512 * 1024
PAYLOAD_LABEL = "zarf-injector"
PAYLOAD_LABEL_VALUE = "payload"
PAYLOAD_KEY = "data"
INJECTOR_POD_SELECTOR = "app=zarf-injector"


def _password() -> str:
    return secrets.token_urlsafe(_PASSWORD_BYTES)


def run_preflight_checks(uses_images: bool = True) -> None:
    """Verify the tools needed to initialize a cluster are installed."""
    binaries = list(REQUIRED_BINARIES)
    if uses_images:
        binaries.extend(IMAGE_BINARIES)
    if missing := [binary for binary in binaries if shutil.which(binary) is None]:
        raise PreflightException(
            f"Required tools are not installed or not on the PATH: {', '.join(missing)}"
        )


def detect_distro(nodes: list[dict]) -> str:
    """Return a best guess at the kubernetes distribution running the nodes."""
    for node in nodes:
        metadata = node.get("metadata", {})
        name = metadata.get("name", "")
        for prefix, distro in _DISTRO_NODE_PREFIXES.items():
            if name.startswith(prefix):
                return distro
        labels = metadata.get("labels") or {}
        if labels.get(_INSTANCE_TYPE_LABEL) == _K3S_INSTANCE_TYPE:
            return "k3s"
        if _EKS_LABEL in labels:
            return "eks"
    return DISTRO_GENERIC


async def seed_state(cluster: Cluster, options: DeployOptions) -> ZarfState:
    """Write the initial cluster state, reusing one that already exists."""
    try:
        state = await cluster.load_state()
        _LOGGER.info("Cluster state already exists, reusing it")
        return state
    except ClusterStateException:
        _LOGGER.debug("No existing cluster state, generating one")

    nodes = await cluster.get_nodes()
    registry_info = options.registry_info
    if registry_info.address:
        registry = RegistryState(
            address=registry_info.address,
            push_username=registry_info.push_username,
            push_password=registry_info.push_password,
            pull_username=registry_info.pull_username or registry_info.push_username,
            pull_password=registry_info.pull_password or registry_info.push_password,
            internal_registry=False,
        )
    else:
        registry = RegistryState(
            push_username=REGISTRY_PUSH_USER,
            push_password=_password(),
            pull_username=REGISTRY_PULL_USER,
            pull_password=_password(),
        )
        registry.address = f"{LOCALHOST}:{registry.node_port}"
    git_server = GitServerState(
        address=options.git_server_address or INTERNAL_GIT_ADDRESS,
        push_username=GIT_PUSH_USER,
        push_password=_password(),
        pull_username=GIT_PULL_USER,
        pull_password=_password(),
        internal_server=not options.git_server_address,
    )
    state = ZarfState(
        distro=detect_distro(nodes),
        architecture=await cluster.get_architecture(),
        storage_class=options.storage_class,
        logging_secret=_password(),
        registry_info=registry,
        git_server=git_server,
    )
    _LOGGER.info("Saving the cluster state for a %s cluster", state.distro)
    await cluster.save_state(state)
    return state


@dataclass
class RegistryInjector:
    """Loads the seed registry image into the cluster as config maps."""

    cluster: Cluster
    namespace: str = ZARF_NAMESPACE

    @property
    def selector(self) -> str:
        return f"{PAYLOAD_LABEL}={PAYLOAD_LABEL_VALUE}"

    async def inject(self, seed_image: Path) -> int:
        """Split the seed image into config maps, returning how many were made."""
        await self.cluster.create_namespace(self.namespace)
        await self.cluster.delete_config_maps(self.namespace, self.selector)
        count = 0
        async with aiofiles.open(seed_image, mode="rb") as image:
            while chunk := await image.read(PAYLOAD_CHUNK_SIZE):
                await self.cluster.create_config_map(
                    self.namespace,
                    f"zarf-payload-{count:03d}",
                    {PAYLOAD_KEY: chunk},
                    labels={PAYLOAD_LABEL: PAYLOAD_LABEL_VALUE},
                )
                count += 1
        _LOGGER.info("Loaded the seed image into %d config maps", count)
        return count

    async def post_seed(self) -> None:
        """Remove the payload and the injector once the registry is running."""
        _LOGGER.info("Cleaning up the registry injector")
        await self.cluster.delete_config_maps(self.namespace, self.selector)
        await self.cluster.delete_pods(self.namespace, INJECTOR_POD_SELECTOR)
