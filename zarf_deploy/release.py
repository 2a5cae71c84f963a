"""Install or upgrade a single helm release, converging any broken prior state.

Each attempt probes the release history, then installs when there is no
release or upgrades when there is one. A failed attempt waits a fixed delay
before probing again. When every attempt fails the release is rolled back if
it has an earlier revision to return to, otherwise it is uninstalled, and the
failure is raised to the caller either way.
"""

from dataclasses import dataclass, field
from enum import StrEnum
import hashlib
import logging
from pathlib import Path
from typing import Any

import yaml

from .config import ReleaseConfig
from .context import trace_context
from .exceptions import (
    HelmException,
    InputException,
    ReleaseFailedError,
    ReleaseNotFoundError,
)
from .helm import ChartEngine, ChartSource, GeneratedChart, ReleaseOptions
from .manifest import ConnectStrings, ZarfChart, ZarfComponent, ZarfManifest

__all__ = [
    "ReleaseState",
    "ReleaseRequest",
    "ReleaseResult",
    "ReleaseStateMachine",
    "generate_manifest_chart",
    "connect_strings_from_manifest",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"
CONNECT_NAME_LABEL = "zarf.dev/connect-name"
CONNECT_DESCRIPTION_ANNOTATION = "zarf.dev/connect-description"


class ReleaseState(StrEnum):
    """States visited while converging a release."""

    PROBING = "Probing"
    INSTALLING = "Installing"
    UPGRADING = "Upgrading"
    CONVERGED = "Converged"
    ROLLING_BACK = "Rolling-Back"
    FAILED = "Failed"


@dataclass
class ReleaseRequest:
    """A chart to converge in the cluster."""

    chart: ZarfChart
    """The chart definition, used for the release name and namespace."""

    source: ChartSource
    """Where to load the chart and values from."""

    component: ZarfComponent
    """The component the chart belongs to."""

    post_renderer: list[str] | None = None
    """Command helm runs over the rendered manifests."""


@dataclass
class ReleaseResult:
    """The outcome of a converged release."""

    release_name: str
    namespace: str
    description: str = ""
    connect_strings: ConnectStrings = field(default_factory=dict)
    states: list[ReleaseState] = field(default_factory=list)


def connect_strings_from_manifest(manifest: str) -> ConnectStrings:
    """Return connect strings declared on Services in a rendered manifest."""
    connect_strings: ConnectStrings = {}
    for doc in yaml.safe_load_all(manifest):
        if not isinstance(doc, dict) or doc.get("kind") != "Service":
            continue
        metadata: dict[str, Any] = doc.get("metadata") or {}
        if not (name := (metadata.get("labels") or {}).get(CONNECT_NAME_LABEL)):
            continue
        annotations = metadata.get("annotations") or {}
        connect_strings[name] = annotations.get(CONNECT_DESCRIPTION_ANNOTATION, "")
    return connect_strings


def generate_manifest_chart(
    package_name: str,
    component: ZarfComponent,
    manifest: ZarfManifest,
    manifests_dir: Path,
    start_time: int,
) -> tuple[ZarfChart, ChartSource]:
    """Build a chart holding the raw manifest files so they install as a release."""
    raw_name = f"raw-{package_name}-{component.name}-{manifest.name}"
    version = f"0.1.{start_time}"
    files = list(manifest.files)
    files.extend(
        f"kustomization-{manifest.name}-{idx}.yaml"
        for idx in range(len(manifest.kustomizations))
    )
    templates: dict[str, bytes] = {}
    for idx, file in enumerate(files):
        path = manifests_dir / file
        _LOGGER.debug("Processing %s", path)
        try:
            templates[f"{idx}-{Path(file).name}"] = path.read_bytes()
        except OSError as err:
            raise InputException(
                f"Unable to read the manifest file contents {path}: {err}"
            ) from err
    chart = ZarfChart(
        name=raw_name,
        namespace=manifest.namespace or DEFAULT_NAMESPACE,
        version=version,
        release_name=hashlib.sha1(raw_name.encode("utf-8")).hexdigest(),
        no_wait=manifest.no_wait,
    )
    source = ChartSource(
        generated=GeneratedChart(name=raw_name, version=version, templates=templates)
    )
    return chart, source


class ReleaseStateMachine:
    """Converges one release at a time against the cluster."""

    def __init__(
        self,
        engine: ChartEngine,
        tmp_dir: Path,
        config: ReleaseConfig | None = None,
    ) -> None:
        """Initialize ReleaseStateMachine."""
        self._engine = engine
        self._tmp_dir = tmp_dir
        self._config = config or ReleaseConfig()

    async def _probe(self, release: str, namespace: str) -> int | None:
        """Return the latest revision, or None when there is no release."""
        try:
            history = await self._engine.history(release, namespace, max_revisions=1)
        except ReleaseNotFoundError:
            return None
        except HelmException as err:
            raise ReleaseFailedError(
                release, f"Unable to verify the chart installation status: {err}"
            ) from err
        return history[0].revision if history else None

    async def _cleanup(
        self, release: str, namespace: str, revision: int | None
    ) -> None:
        """Best effort return to a working state after every attempt failed."""
        try:
            if revision is not None and revision > 1:
                _LOGGER.info("Performing chart rollback of %s", release)
                await self._engine.rollback(release, namespace)
            else:
                _LOGGER.info("Performing chart uninstall of %s", release)
                await self._engine.uninstall(release, namespace)
        except HelmException as err:
            _LOGGER.warning("Unable to clean up release %s: %s", release, err)

    async def install_or_upgrade(self, request: ReleaseRequest) -> ReleaseResult:
        """Install or upgrade the release, raising ReleaseFailedError on failure."""
        chart = request.chart
        release = chart.installed_release_name
        namespace = chart.namespace
        result = ReleaseResult(release_name=release, namespace=namespace)

        no_wait = chart.no_wait
        if request.component.data_injections:
            _LOGGER.info("Data injections detected, not waiting for chart to be ready")
            no_wait = True
        chart_path, values = await request.source.resolve(self._tmp_dir)

        max_attempts = self._config.max_attempts
        last_error: Exception | None = None
        with trace_context(f"Release '{release}'"):
            for attempt in range(1, max_attempts + 1):
                _LOGGER.info(
                    "Attempt %d of %d to install chart %s",
                    attempt,
                    max_attempts,
                    release,
                )
                result.states.append(ReleaseState.PROBING)
                try:
                    revision = await self._probe(release, namespace)
                except ReleaseFailedError:
                    result.states.append(ReleaseState.FAILED)
                    raise
                options = ReleaseOptions(
                    namespace=namespace,
                    wait=not no_wait,
                    timeout_seconds=self._config.timeout_seconds,
                    skip_crds=revision is not None,
                    post_renderer=request.post_renderer,
                )
                try:
                    if revision is None:
                        result.states.append(ReleaseState.INSTALLING)
                        result.description = await self._engine.install(
                            release, chart_path, values, options
                        )
                    else:
                        result.states.append(ReleaseState.UPGRADING)
                        result.description = await self._engine.upgrade(
                            release, chart_path, values, options
                        )
                except HelmException as err:
                    last_error = err
                    _LOGGER.debug("Attempt %d failed for %s: %s", attempt, release, err)
                    await self._config.sleep(self._config.retry_delay)
                    continue
                result.states.append(ReleaseState.CONVERGED)
                _LOGGER.debug("%s: %s", release, result.description)
                result.connect_strings = await self._connect_strings(release, namespace)
                return result

            result.states.append(ReleaseState.PROBING)
            try:
                revision = await self._probe(release, namespace)
            except ReleaseFailedError as err:
                result.states.append(ReleaseState.FAILED)
                raise ReleaseFailedError(
                    release, f"{last_error} (cleanup skipped: {err.message})"
                ) from last_error
            result.states.append(ReleaseState.ROLLING_BACK)
            await self._cleanup(release, namespace, revision)
            result.states.append(ReleaseState.FAILED)
        raise ReleaseFailedError(release, str(last_error))

    async def _connect_strings(self, release: str, namespace: str) -> ConnectStrings:
        try:
            manifest = await self._engine.get_manifest(release, namespace)
        except HelmException as err:
            _LOGGER.warning("Unable to read the manifest of %s: %s", release, err)
            return {}
        try:
            return connect_strings_from_manifest(manifest)
        except yaml.YAMLError as err:
            _LOGGER.warning("Unable to parse the manifest of %s: %s", release, err)
            return {}
