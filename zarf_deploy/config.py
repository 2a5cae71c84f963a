"""Configuration objects for zarf-deploy."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class RetryConfig:
    """Bounded retry with a fixed delay between attempts."""

    attempts: int = 3
    delay: float = 5.0
    sleep: SleepFunc = asyncio.sleep


@dataclass
class ReleaseConfig:
    """Configuration for the release state machine."""

    max_attempts: int = 3
    """Install or upgrade attempts before rolling back."""

    retry_delay: float = 10.0
    """Fixed delay between attempts, in seconds."""

    timeout_seconds: int = 900
    """Helm timeout for each install or upgrade attempt."""

    sleep: SleepFunc = asyncio.sleep


@dataclass
class GitServerConfig:
    """Configuration for talking to the internal git server."""

    timeout: float = 20.0
    """Timeout for each git server API request, in seconds."""

    credentials_file: Path | None = None
    """Override for the ~/.git-credentials file."""


@dataclass
class InjectionConfig:
    """Configuration for data injections."""

    pod_wait_attempts: int = 60
    pod_wait_delay: float = 5.0
    sleep: SleepFunc = asyncio.sleep


@dataclass
class DeployConfig:
    """Configuration knobs shared by the deployment engines."""

    image_retry: RetryConfig = field(default_factory=RetryConfig)
    repo_retry: RetryConfig = field(default_factory=RetryConfig)
    release: ReleaseConfig = field(default_factory=ReleaseConfig)
    git_server: GitServerConfig = field(default_factory=GitServerConfig)
    injection: InjectionConfig = field(default_factory=InjectionConfig)
    sbom_dir: Path = Path("zarf-sbom")
    """Directory where SBOM viewer files are staged for the operator."""


@dataclass
class RegistryInfo:
    """External registry connection details supplied for an init package."""

    address: str = ""
    push_username: str = ""
    push_password: str = ""
    pull_username: str = ""
    pull_password: str = ""


@dataclass
class DeployOptions:
    """Options for a single package deployment."""

    package_path: Path
    """Path to the package archive on the local system."""

    components: str = ""
    """Comma separated list of optional components to deploy."""

    confirm: bool = False
    """Skip the interactive confirmation prompt."""

    registry_info: RegistryInfo = field(default_factory=RegistryInfo)
    """External registry for init packages, empty to use the internal one."""

    git_server_address: str = ""
    """External git server for init packages, empty to use the internal one."""

    storage_class: str = ""
    """Storage class recorded in the cluster state for init packages."""

    config: DeployConfig = field(default_factory=DeployConfig)
