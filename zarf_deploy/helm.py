"""Library for running `helm` to manage releases in the cluster.

The `ChartEngine` interface is what the release state machine drives. `Helm`
implements it with the helm command line tool:

```python
from zarf_deploy.helm import Helm, ReleaseOptions, ChartSource

helm = Helm()
source = ChartSource(archive=Path("charts/podinfo-6.0.0.tgz"))
chart, values = await source.resolve(tmp_dir)
await helm.install("zarf-podinfo", chart, values, ReleaseOptions(namespace="podinfo"))
```

A chart either comes from a packaged archive plus value files on disk, or is a
`GeneratedChart` built in memory (used to deploy raw manifests as a release).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
from typing import Any

import aiofiles
import yaml

from . import command
from .exceptions import HelmException, InputException, ReleaseNotFoundError

__all__ = [
    "ChartEngine",
    "Helm",
    "ReleaseOptions",
    "ReleaseRevision",
    "GeneratedChart",
    "ChartSource",
]

_LOGGER = logging.getLogger(__name__)


HELM_BIN = "helm"
RELEASE_NOT_FOUND = "release: not found"
ROLLBACK_TIMEOUT = 60
UNINSTALL_TIMEOUT = 180
# Extra time given to the helm process beyond its own --timeout
_COMMAND_SLACK = 60.0


@dataclass
class ReleaseOptions:
    """Options to use when installing or upgrading a release.

    Internally, these translate into helm command line flags.
    """

    namespace: str
    """Namespace of the release."""

    wait: bool = True
    """Wait for the release workloads to become ready."""

    timeout_seconds: int = 900
    """Value of the helm --timeout flag."""

    skip_crds: bool = False
    """Don't apply the chart custom resource definitions."""

    post_renderer: list[str] | None = None
    """Executable and arguments used as the helm post-renderer."""

    @property
    def args(self) -> list[str]:
        """Helm install and upgrade CLI arguments built from the options."""
        args = [
            "--namespace",
            self.namespace,
            "--timeout",
            f"{self.timeout_seconds}s",
        ]
        if self.wait:
            args.append("--wait")
        if self.skip_crds:
            args.append("--skip-crds")
        if self.post_renderer:
            executable, *renderer_args = self.post_renderer
            args.extend(["--post-renderer", executable])
            args.extend(f"--post-renderer-args={arg}" for arg in renderer_args)
        return args


@dataclass
class ReleaseRevision:
    """An entry in the history of a release."""

    revision: int
    status: str = ""
    description: str = ""


@dataclass
class GeneratedChart:
    """A chart fabricated in memory rather than loaded from an archive."""

    name: str
    version: str
    templates: dict[str, bytes] = field(default_factory=dict)
    """Template file name to contents."""

    values: dict[str, Any] = field(default_factory=dict)

    async def write(self, directory: Path) -> Path:
        """Write the chart to the directory and return the chart path."""
        chart_dir = directory / self.name
        templates_dir = chart_dir / "templates"
        templates_dir.mkdir(parents=True, exist_ok=True)
        chart_yaml = {
            "apiVersion": "v1",
            "name": self.name,
            "version": self.version,
        }
        async with aiofiles.open(chart_dir / "Chart.yaml", mode="w") as chart_file:
            await chart_file.write(yaml.dump(chart_yaml, sort_keys=False))
        async with aiofiles.open(chart_dir / "values.yaml", mode="w") as values_file:
            await values_file.write(yaml.dump(self.values, sort_keys=False))
        for name, content in self.templates.items():
            async with aiofiles.open(templates_dir / name, mode="wb") as template:
                await template.write(content)
        return chart_dir


@dataclass
class ChartSource:
    """Where a release chart and its values come from.

    Exactly one of `archive` or `generated` must be set. Value files only
    apply to archives; a generated chart carries its own values.
    """

    archive: Path | None = None
    values_files: list[Path] = field(default_factory=list)
    generated: GeneratedChart | None = None

    def __post_init__(self) -> None:
        if (self.archive is None) == (self.generated is None):
            raise InputException(
                "A chart must be loaded from an archive or generated, not both"
            )
        if self.generated is not None and self.values_files:
            raise InputException("A generated chart does not accept value files")

    async def resolve(self, tmp_dir: Path) -> tuple[Path, list[Path]]:
        """Return the chart path and value files to pass to helm."""
        if self.generated is not None:
            return await self.generated.write(tmp_dir), []
        assert self.archive is not None
        if not self.archive.exists():
            raise InputException(f"Unable to load chart archive {self.archive}")
        for values_file in self.values_files:
            if not values_file.exists():
                raise InputException(f"Unable to load chart values {values_file}")
        return self.archive, list(self.values_files)


class ChartEngine(ABC):
    """Operations against named releases in the cluster."""

    @abstractmethod
    async def history(
        self, release: str, namespace: str, max_revisions: int = 1
    ) -> list[ReleaseRevision]:
        """Return the latest revisions, raising ReleaseNotFoundError if none."""

    @abstractmethod
    async def install(
        self, release: str, chart: Path, values: list[Path], options: ReleaseOptions
    ) -> str:
        """Install a new release, returning a description of the result."""

    @abstractmethod
    async def upgrade(
        self, release: str, chart: Path, values: list[Path], options: ReleaseOptions
    ) -> str:
        """Upgrade an existing release, returning a description of the result."""

    @abstractmethod
    async def rollback(self, release: str, namespace: str) -> None:
        """Roll back the release to its previous revision."""

    @abstractmethod
    async def uninstall(self, release: str, namespace: str) -> None:
        """Uninstall the release and its history."""

    @abstractmethod
    async def get_manifest(self, release: str, namespace: str) -> str:
        """Return the rendered manifest of the current release revision."""


def _description(out: str) -> str:
    try:
        doc = json.loads(out)
    except json.JSONDecodeError:
        return out.strip()
    return str(doc.get("info", {}).get("description", ""))


class Helm(ChartEngine):
    """Manages releases with the helm command line tool."""

    def __init__(
        self, kubeconfig: str | None = None, kube_context: str | None = None
    ) -> None:
        """Initialize Helm."""
        self._flags: list[str] = []
        if kubeconfig:
            self._flags.extend(["--kubeconfig", kubeconfig])
        if kube_context:
            self._flags.extend(["--kube-context", kube_context])

    async def _run(self, args: list[str], timeout: float | None = None) -> str:
        cmd = command.Command([HELM_BIN, *args, *self._flags], exc=HelmException)
        if timeout is not None:
            cmd.timeout = timeout
        return await command.run(cmd)

    async def history(
        self, release: str, namespace: str, max_revisions: int = 1
    ) -> list[ReleaseRevision]:
        """Return the latest revisions of the release."""
        try:
            out = await self._run(
                [
                    "history",
                    release,
                    "--namespace",
                    namespace,
                    "--max",
                    str(max_revisions),
                    "-o",
                    "json",
                ]
            )
        except HelmException as err:
            if RELEASE_NOT_FOUND in str(err):
                raise ReleaseNotFoundError(f"Release {release} not found") from err
            raise
        try:
            entries = json.loads(out) or []
        except json.JSONDecodeError as err:
            raise HelmException(f"Unable to parse helm history output: {err}") from err
        return [
            ReleaseRevision(
                revision=int(entry.get("revision", 0)),
                status=entry.get("status", ""),
                description=entry.get("description", ""),
            )
            for entry in entries
        ]

    async def install(
        self, release: str, chart: Path, values: list[Path], options: ReleaseOptions
    ) -> str:
        """Run helm install for a new release."""
        args = ["install", release, str(chart), "--create-namespace", "-o", "json"]
        args.extend(options.args)
        for values_file in values:
            args.extend(["--values", str(values_file)])
        out = await self._run(args, timeout=options.timeout_seconds + _COMMAND_SLACK)
        return _description(out)

    async def upgrade(
        self, release: str, chart: Path, values: list[Path], options: ReleaseOptions
    ) -> str:
        """Run helm upgrade for an existing release."""
        args = ["upgrade", release, str(chart), "-o", "json"]
        args.extend(options.args)
        for values_file in values:
            args.extend(["--values", str(values_file)])
        out = await self._run(args, timeout=options.timeout_seconds + _COMMAND_SLACK)
        return _description(out)

    async def rollback(self, release: str, namespace: str) -> None:
        """Run helm rollback to the previous revision."""
        await self._run(
            [
                "rollback",
                release,
                "--namespace",
                namespace,
                "--cleanup-on-fail",
                "--force",
                "--wait",
                "--timeout",
                f"{ROLLBACK_TIMEOUT}s",
            ],
            timeout=ROLLBACK_TIMEOUT + _COMMAND_SLACK,
        )

    async def uninstall(self, release: str, namespace: str) -> None:
        """Run helm uninstall without keeping history."""
        await self._run(
            [
                "uninstall",
                release,
                "--namespace",
                namespace,
                "--wait",
                "--timeout",
                f"{UNINSTALL_TIMEOUT}s",
            ],
            timeout=UNINSTALL_TIMEOUT + _COMMAND_SLACK,
        )

    async def get_manifest(self, release: str, namespace: str) -> str:
        """Run helm get manifest for the current revision."""
        return await self._run(["get", "manifest", release, "--namespace", namespace])
