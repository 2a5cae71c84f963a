"""State scoped to a single package deployment and utilities for tracing."""

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
from pathlib import Path
from time import perf_counter, time
from typing import Generator

from .cluster import ZarfState
from .config import DeployOptions
from .manifest import (
    ConnectStrings,
    DeployedComponent,
    ZarfChart,
    ZarfComponent,
    ZarfPackage,
)

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "DeployContext",
    "PackagePaths",
    "ComponentPaths",
    "trace_context",
]


trace: contextvars.ContextVar[list[str]] = contextvars.ContextVar("trace")


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    stack = trace.get([])
    token = trace.set(stack + [name])
    label = " > ".join(stack + [name])
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    finally:
        t2 = perf_counter()
        trace.reset(token)
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, (t2 - t1))


@dataclass(frozen=True)
class ComponentPaths:
    """Layout of a component inside the extracted package."""

    base: Path

    @property
    def files(self) -> Path:
        return self.base / "files"

    @property
    def charts(self) -> Path:
        return self.base / "charts"

    @property
    def values(self) -> Path:
        return self.base / "values"

    @property
    def repos(self) -> Path:
        return self.base / "repos"

    @property
    def manifests(self) -> Path:
        return self.base / "manifests"

    @property
    def data_injections(self) -> Path:
        return self.base / "data"

    def chart_archive(self, chart: ZarfChart) -> Path:
        """Return the packaged archive for a chart."""
        return self.charts / f"{chart.standard_name}.tgz"

    def chart_values(self, chart: ZarfChart) -> list[Path]:
        """Return the packaged value files for a chart, in order."""
        return [
            self.values / f"{chart.standard_name}-{idx}"
            for idx in range(len(chart.values_files))
        ]


@dataclass(frozen=True)
class PackagePaths:
    """Layout of the extracted package."""

    base: Path

    @property
    def config(self) -> Path:
        return self.base / "zarf.yaml"

    @property
    def components(self) -> Path:
        return self.base / "components"

    @property
    def images(self) -> Path:
        return self.base / "images.tar"

    @property
    def seed_image(self) -> Path:
        return self.base / "seed-image.tar"

    @property
    def sboms(self) -> Path:
        return self.base / "sboms"

    @property
    def scratch(self) -> Path:
        """Directory for files generated while deploying."""
        return self.base / "scratch"

    def component(self, component: ZarfComponent) -> ComponentPaths:
        """Return the layout of the named component."""
        return ComponentPaths(self.components / component.name)


@dataclass
class DeployContext:
    """Everything one package deployment reads and accumulates.

    The context is only mutated by the coroutine driving the components,
    never from the data injection tasks.
    """

    package: ZarfPackage
    paths: PackagePaths
    options: DeployOptions
    start_time: int = field(default_factory=lambda: int(time()))
    state: ZarfState | None = None
    """Cluster state, loaded the first time a component touches the cluster."""

    connect_strings: ConnectStrings = field(default_factory=dict)
    deployed_components: list[DeployedComponent] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    """Non fatal errors reported once the deployment finishes."""

    @property
    def external_registry(self) -> bool:
        """Return true if an init package was given an external registry."""
        return bool(self.options.registry_info.address)
