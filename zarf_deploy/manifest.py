"""Representation of a package and the record of its deployment.

A package is described by a `zarf.yaml` file at the root of the extracted
package archive. The file is parsed into a `ZarfPackage` that holds the list
of `ZarfComponent` objects to deploy. After a deployment the result is stored
in the cluster as a `DeployedPackage`.
"""

from dataclasses import dataclass, field
from enum import StrEnum
import logging
from pathlib import Path
from typing import Any, cast

import aiofiles
import yaml
from mashumaro import DataClassDictMixin, field_options
from mashumaro.codecs.yaml import yaml_encode
from mashumaro.config import BaseConfig
from mashumaro.exceptions import MissingField, InvalidFieldValue

from .exceptions import InputException

__all__ = [
    "read_package",
    "ZarfPackage",
    "ZarfComponent",
    "ZarfChart",
    "ZarfManifest",
    "ZarfFile",
    "ZarfDataInjection",
    "ZarfComponentScripts",
    "ComponentRole",
    "InstalledChart",
    "DeployedComponent",
    "DeployedPackage",
    "ConnectStrings",
]

_LOGGER = logging.getLogger(__name__)

PACKAGE_CONFIG = "zarf.yaml"
INIT_KIND = "ZarfInitConfig"
PACKAGE_KIND = "ZarfPackageConfig"
RELEASE_PREFIX = "zarf-"

ConnectStrings = dict[str, str]


class ComponentRole(StrEnum):
    """Special handling a component receives inside an init package."""

    NONE = "none"
    SEED_REGISTRY = "seed-registry"
    INJECTOR = "injector"
    REGISTRY = "registry"
    AGENT = "agent"
    GIT_SERVER = "git-server"
    LOGGING = "logging"


# Component names in an init package that carry a role.
INIT_ROLES = {
    "zarf-seed-registry": ComponentRole.SEED_REGISTRY,
    "zarf-injector": ComponentRole.INJECTOR,
    "zarf-registry": ComponentRole.REGISTRY,
    "zarf-agent": ComponentRole.AGENT,
    "git-server": ComponentRole.GIT_SERVER,
    "logging": ComponentRole.LOGGING,
}

# Roles that are skipped when an external registry is used.
INTERNAL_REGISTRY_ROLES = {
    ComponentRole.SEED_REGISTRY,
    ComponentRole.INJECTOR,
    ComponentRole.REGISTRY,
}


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all package objects."""

    def yaml(self) -> str:
        """Return a YAML string representation of the object."""
        return yaml_encode(self, self.__class__)  # type: ignore[return-value]

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class ZarfChart(BaseManifest):
    """A helm chart that is installed as part of a component."""

    name: str
    """The name of the chart."""

    namespace: str
    """The namespace the release is installed into."""

    url: str | None = None
    """The upstream location of the chart, for display only."""

    version: str | None = None
    """The version of the chart."""

    values_files: list[str] = field(
        metadata=field_options(alias="valuesFiles"), default_factory=list
    )
    """Value files packaged alongside the chart archive."""

    release_name: str | None = field(
        metadata=field_options(alias="releaseName"), default=None
    )
    """Explicit release name, defaults to the chart name."""

    no_wait: bool = field(metadata=field_options(alias="noWait"), default=False)
    """Don't wait for the chart workloads to become ready."""

    @property
    def installed_release_name(self) -> str:
        """Return the name of the helm release created for this chart."""
        return f"{RELEASE_PREFIX}{self.release_name or self.name}"

    @property
    def standard_name(self) -> str:
        """Return the base file name used for the chart archive and values."""
        if self.version:
            return f"{self.name}-{self.version}"
        return self.name


@dataclass
class ZarfManifest(BaseManifest):
    """A set of raw kubernetes manifests deployed through a generated chart."""

    name: str
    """The name of the manifest set."""

    namespace: str | None = None
    """The namespace for the objects, the cluster default when empty."""

    files: list[str] = field(default_factory=list)
    """Manifest files relative to the component manifests directory."""

    kustomizations: list[str] = field(default_factory=list)
    """Kustomizations that were built into files when packaging."""

    no_wait: bool = field(metadata=field_options(alias="noWait"), default=False)
    """Don't wait for the workloads to become ready."""


@dataclass
class ZarfFile(BaseManifest):
    """A file placed on the deploying host."""

    target: str
    """Destination path on the host."""

    source: str | None = None
    """Where the file came from when packaging."""

    shasum: str | None = None
    """Optional SHA-256 checksum validated before placement."""

    executable: bool = False
    """Mark the target as executable."""

    symlinks: list[str] = field(default_factory=list)
    """Symbolic links pointing at the target."""


@dataclass
class ZarfContainerTarget(BaseManifest):
    """The pod container a data injection copies data into."""

    namespace: str
    selector: str
    container: str
    path: str


@dataclass
class ZarfDataInjection(BaseManifest):
    """Data copied into a running pod."""

    source: str
    target: ZarfContainerTarget
    compress: bool = False


@dataclass
class ZarfComponentScripts(BaseManifest):
    """Commands run on the deploying host before and after a component."""

    show_output: bool = field(
        metadata=field_options(alias="showOutput"), default=False
    )
    timeout_seconds: int | None = field(
        metadata=field_options(alias="timeoutSeconds"), default=None
    )
    retry: bool = False
    before: list[str] = field(default_factory=list)
    after: list[str] = field(default_factory=list)


@dataclass
class ZarfComponent(BaseManifest):
    """A named, independently deployable unit within a package."""

    name: str
    description: str | None = None
    required: bool = False
    images: list[str] = field(default_factory=list)
    repos: list[str] = field(default_factory=list)
    charts: list[ZarfChart] = field(default_factory=list)
    manifests: list[ZarfManifest] = field(default_factory=list)
    files: list[ZarfFile] = field(default_factory=list)
    data_injections: list[ZarfDataInjection] = field(
        metadata=field_options(alias="dataInjections"), default_factory=list
    )
    scripts: ZarfComponentScripts = field(default_factory=ZarfComponentScripts)
    role: ComponentRole = field(
        metadata=field_options(serialize="omit"), default=ComponentRole.NONE
    )
    """Assigned when the package is loaded, never read from the file."""

    @property
    def uses_cluster(self) -> bool:
        """Return true if deploying the component talks to the cluster."""
        return bool(self.charts or self.images or self.manifests or self.repos)


@dataclass
class ZarfMetadata(BaseManifest):
    """Package metadata."""

    name: str
    description: str | None = None
    version: str | None = None
    architecture: str | None = None


@dataclass
class ZarfBuildData(BaseManifest):
    """Information recorded when the package was created."""

    architecture: str | None = None
    version: str | None = None
    timestamp: str | None = None


@dataclass
class ZarfPackage(BaseManifest):
    """A named, versioned bundle of components."""

    kind: str
    metadata: ZarfMetadata
    build: ZarfBuildData = field(default_factory=ZarfBuildData)
    components: list[ZarfComponent] = field(default_factory=list)

    @property
    def name(self) -> str:
        """Return the package name."""
        return self.metadata.name

    @property
    def is_init_package(self) -> bool:
        """Return true if the package bootstraps the cluster side services."""
        return self.kind == INIT_KIND

    @property
    def architecture(self) -> str | None:
        """Return the architecture the package images were built for."""
        return self.build.architecture or self.metadata.architecture

    @property
    def uses_cluster(self) -> bool:
        """Return true if any component touches the cluster."""
        return any(component.uses_cluster for component in self.components)

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ZarfPackage":
        """Parse and validate a package from its raw document."""
        if not isinstance(doc, dict):
            raise InputException(f"Invalid package, expected a mapping: {doc}")
        if (kind := doc.get("kind")) not in (INIT_KIND, PACKAGE_KIND):
            raise InputException(f"Invalid package kind '{kind}'")
        if not (metadata := doc.get("metadata")) or not metadata.get("name"):
            raise InputException("Invalid package missing metadata.name")
        try:
            package = cls.from_dict(doc)
        except (MissingField, InvalidFieldValue) as err:
            raise InputException(f"Invalid package {metadata['name']}: {err}") from err
        seen: set[str] = set()
        for component in package.components:
            if component.name in seen:
                raise InputException(
                    f"Package {package.name} has duplicate component {component.name}"
                )
            seen.add(component.name)
            component.role = ComponentRole.NONE
            if package.is_init_package:
                component.role = INIT_ROLES.get(component.name, ComponentRole.NONE)
        return package


@dataclass
class InstalledChart(BaseManifest):
    """A helm release created while deploying a component."""

    namespace: str
    release_name: str = field(metadata=field_options(alias="releaseName"))


@dataclass
class DeployedComponent(BaseManifest):
    """A component that was deployed and the releases it produced."""

    name: str
    installed_charts: list[InstalledChart] = field(
        metadata=field_options(alias="installedCharts"), default_factory=list
    )


@dataclass
class DeployedPackage(BaseManifest):
    """Record of a package deployment stored in the cluster."""

    name: str
    cli_version: str = field(metadata=field_options(alias="cliVersion"))
    data: ZarfPackage
    deployed_components: list[DeployedComponent] = field(
        metadata=field_options(alias="deployedComponents"), default_factory=list
    )


async def read_package(package_dir: Path) -> ZarfPackage:
    """Return the package described by the zarf.yaml in the directory."""
    config_path = package_dir / PACKAGE_CONFIG
    try:
        async with aiofiles.open(str(config_path)) as config_file:
            content = await config_file.read()
    except OSError as err:
        raise InputException(
            f"Invalid or unreadable {PACKAGE_CONFIG} file in {package_dir}: {err}"
        ) from err
    try:
        doc = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse {config_path}: {err}") from err
    package = ZarfPackage.parse_doc(cast(dict[str, Any], doc))
    _LOGGER.debug(
        "Loaded package %s with %d components", package.name, len(package.components)
    )
    return package
