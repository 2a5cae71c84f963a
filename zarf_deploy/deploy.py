"""Deploy a package archive into the cluster.

```python
from zarf_deploy.config import DeployOptions
from zarf_deploy.deploy import PackageDeployer

deployer = PackageDeployer()
record = await deployer.deploy(
    DeployOptions(package_path=Path("zarf-package-demo.tar"), confirm=True)
)
```

The archive is extracted to a scratch directory, the selected components are
deployed one after another, a summary table is printed and the record of the
deployment is stored in the cluster as the `zarf-package-<name>` secret.
"""

import asyncio
from collections.abc import Callable
import json
import logging
from pathlib import Path
import shutil
import sys
import tarfile
import tempfile
from typing import Any, TextIO

from . import __version__
from .bootstrap import run_preflight_checks
from .cluster import ZARF_NAMESPACE, Cluster, generate_secret
from .component import ComponentDeployer, GitPusherFactory, ImagePusherFactory
from .config import DeployOptions
from .context import DeployContext, PackagePaths, trace_context
from .exceptions import ComponentException, DeploymentException, InputException
from .format import PrintFormatter
from .helm import ChartEngine, Helm
from .manifest import (
    ComponentRole,
    DeployedPackage,
    ZarfComponent,
    ZarfPackage,
    read_package,
)
from .task import task_service_context

__all__ = [
    "PackageDeployer",
    "select_components",
    "summary_rows",
    "ConfirmFunc",
]

_LOGGER = logging.getLogger(__name__)

PACKAGE_SECRET_PREFIX = "zarf-package-"
PACKAGE_LABEL = "package-deploy-info"
PACKAGE_SECRET_KEY = "data"
SBOM_VIEWER_GLOB = "sbom-viewer-*"

ConfirmFunc = Callable[[ZarfPackage, list[Path]], bool]


def select_components(package: ZarfPackage, requested: str) -> list[ZarfComponent]:
    """Return the required components plus the requested ones, in package order."""
    names = [name.strip() for name in requested.split(",") if name.strip()]
    known = {component.name for component in package.components}
    if unknown := [name for name in names if name not in known]:
        raise InputException(
            f"Package {package.name} has no component named {', '.join(unknown)}"
        )
    return [
        component
        for component in package.components
        if component.required or component.name in names
    ]


def summary_rows(
    ctx: DeployContext, components: list[ZarfComponent]
) -> list[dict[str, Any]]:
    """Return the rows of the table printed once the deployment is done."""
    if not ctx.package.is_init_package:
        return [
            {
                "name": name,
                "description": description,
                "connect": f"zarf connect {name}",
            }
            for name, description in sorted(ctx.connect_strings.items())
        ]
    if (state := ctx.state) is None:
        return []
    rows = []
    if state.registry_info.internal_registry:
        rows.append(
            {
                "application": "Registry",
                "username": state.registry_info.push_username,
                "password": state.registry_info.push_password,
                "connect": "zarf connect registry",
            }
        )
    for component in components:
        if component.role == ComponentRole.LOGGING:
            rows.append(
                {
                    "application": "Logging",
                    "username": "zarf-admin",
                    "password": state.logging_secret,
                    "connect": "zarf connect logging",
                }
            )
        elif component.role == ComponentRole.GIT_SERVER:
            git = state.git_server
            rows.extend(
                [
                    {
                        "application": "Git",
                        "username": git.push_username,
                        "password": git.push_password,
                        "connect": "zarf connect git",
                    },
                    {
                        "application": "Git (read-only)",
                        "username": git.pull_username,
                        "password": git.pull_password,
                        "connect": "zarf connect git",
                    },
                ]
            )
    return rows


def _extract(archive: Path, destination: Path) -> None:
    with tarfile.open(archive) as tar:
        tar.extractall(destination, filter="data")


def _stage_sbom_files(files: list[Path], sbom_dir: Path) -> None:
    shutil.rmtree(sbom_dir, ignore_errors=True)
    sbom_dir.mkdir(parents=True, exist_ok=True)
    for file in files:
        shutil.copyfile(file, sbom_dir / file.name)


class PackageDeployer:
    """Deploys package archives into the cluster."""

    def __init__(
        self,
        cluster: Cluster | None = None,
        engine: ChartEngine | None = None,
        confirm: ConfirmFunc | None = None,
        image_pusher: ImagePusherFactory | None = None,
        git_pusher: GitPusherFactory | None = None,
        out: TextIO | None = None,
    ) -> None:
        """Initialize PackageDeployer."""
        self._cluster = cluster or Cluster()
        self._engine = engine or Helm()
        self._confirm = confirm
        self._image_pusher = image_pusher
        self._git_pusher = git_pusher
        self._out = out

    async def deploy(self, options: DeployOptions) -> DeployedPackage | None:
        """Deploy the package, returning the stored record.

        Returns None when the operator declines the deployment. Raises a
        `DeploymentException` after the record is stored when some component
        could not be fully deployed.
        """
        if not options.package_path.is_file():
            raise InputException(
                "Unable to find the package on the local system, expected package "
                f"at {options.package_path}"
            )
        with tempfile.TemporaryDirectory(prefix="zarf-") as tmp_dir:
            paths = PackagePaths(Path(tmp_dir))
            with trace_context(f"Deploy '{options.package_path.name}'"):
                return await self._deploy(options, paths)

    async def _deploy(
        self, options: DeployOptions, paths: PackagePaths
    ) -> DeployedPackage | None:
        _LOGGER.info("Extracting the package, this may take a few moments")
        try:
            await asyncio.to_thread(_extract, options.package_path, paths.base)
        except (tarfile.TarError, OSError) as err:
            raise InputException(
                f"Unable to extract the package contents: {err}"
            ) from err

        package = await read_package(paths.base)
        if package.is_init_package:
            run_preflight_checks(
                uses_images=any(component.images for component in package.components)
            )

        sbom_files = sorted(paths.sboms.glob(SBOM_VIEWER_GLOB))
        if sbom_files:
            try:
                _stage_sbom_files(sbom_files, options.config.sbom_dir)
            except OSError as err:
                _LOGGER.error(
                    "Unable to process the SBOM files for this package: %s", err
                )

        if not options.confirm:
            if self._confirm is None or not self._confirm(package, sbom_files):
                _LOGGER.info("Deployment of %s was cancelled", package.name)
                return None

        components = select_components(package, options.components)
        ctx = DeployContext(package=package, paths=paths, options=options)
        deployer = ComponentDeployer(
            ctx,
            self._cluster,
            self._engine,
            image_pusher=self._image_pusher,
            git_pusher=self._git_pusher,
        )
        with task_service_context():
            for component in components:
                if deployer.skipped(component):
                    _LOGGER.info(
                        "Not deploying the component (%s) since external registry "
                        "information was provided",
                        component.name,
                    )
                    continue
                _LOGGER.info("Deploying component %s", component.name)
                try:
                    deployed = await deployer.deploy(component)
                except ComponentException as err:
                    _LOGGER.warning("%s", err)
                    ctx.failures.append(str(err))
                    break
                ctx.deployed_components.append(deployed)

        _LOGGER.info("Deployment of %s complete", package.name)
        PrintFormatter().print(
            summary_rows(ctx, components), file=self._out or sys.stdout
        )

        record = DeployedPackage(
            name=package.name,
            cli_version=__version__,
            data=package,
            deployed_components=list(ctx.deployed_components),
        )
        if package.uses_cluster:
            await self._cluster.replace_secret(
                generate_secret(
                    ZARF_NAMESPACE,
                    f"{PACKAGE_SECRET_PREFIX}{package.name}",
                    {PACKAGE_SECRET_KEY: json.dumps(record.to_dict()).encode()},
                    labels={PACKAGE_LABEL: package.name},
                )
            )
        if ctx.failures:
            raise DeploymentException(ctx.failures)
        return record
