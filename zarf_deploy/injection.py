"""Copy packaged data into a running pod container.

A data injection targets the first running pod matching a label selector.
Once the data is copied, an empty `.zarf-injection-<epoch>` marker file is
written next to it so workloads in the pod can wait for the data to land.
"""

import logging
from pathlib import Path
import time

import aiofiles

from .cluster import Cluster
from .config import InjectionConfig
from .context import trace_context
from .exceptions import KubectlException
from .manifest import ZarfDataInjection

__all__ = [
    "DataInjector",
]

_LOGGER = logging.getLogger(__name__)

MARKER_PREFIX = ".zarf-injection-"


class DataInjector:
    """Performs data injections against the cluster."""

    def __init__(
        self,
        cluster: Cluster,
        tmp_dir: Path,
        config: InjectionConfig | None = None,
    ) -> None:
        """Initialize DataInjector."""
        self._cluster = cluster
        self._tmp_dir = tmp_dir
        self._config = config or InjectionConfig()

    async def wait_for_pod(self, namespace: str, selector: str) -> str:
        """Return the name of the first running pod matching the selector."""
        for attempt in range(self._config.pod_wait_attempts):
            pods = await self._cluster.find_pods(namespace, selector)
            for pod in pods:
                if pod.get("status", {}).get("phase") == "Running":
                    return str(pod["metadata"]["name"])
            _LOGGER.debug(
                "No running pod in %s matches %s (attempt %d)",
                namespace,
                selector,
                attempt + 1,
            )
            await self._config.sleep(self._config.pod_wait_delay)
        raise KubectlException(
            f"No running pod in {namespace} matched {selector} in time"
        )

    async def inject(self, injection: ZarfDataInjection, data_dir: Path) -> None:
        """Copy the staged data into the target container."""
        target = injection.target
        source = data_dir / Path(target.path).name
        with trace_context(f"Inject '{injection.source}'"):
            if not source.exists():
                raise KubectlException(f"Unable to find the injection data {source}")
            pod = await self.wait_for_pod(target.namespace, target.selector)
            _LOGGER.info(
                "Injecting %s into %s/%s:%s",
                injection.source,
                target.namespace,
                pod,
                target.path,
            )
            await self._cluster.copy_to_pod(
                source, target.namespace, pod, target.container, target.path
            )
            marker_name = f"{MARKER_PREFIX}{int(time.time())}"
            marker = self._tmp_dir / marker_name
            async with aiofiles.open(marker, mode="w") as marker_file:
                await marker_file.write("")
            await self._cluster.copy_to_pod(
                marker,
                target.namespace,
                pod,
                target.container,
                f"{target.path.rstrip('/')}/{marker_name}",
            )
