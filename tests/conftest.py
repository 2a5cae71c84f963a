"""Test fixtures and fakes for the cluster and chart engine."""

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from zarf_deploy.cluster import Cluster, RegistryState, GitServerState, ZarfState
from zarf_deploy.config import DeployConfig, InjectionConfig, ReleaseConfig, RetryConfig
from zarf_deploy.exceptions import (
    ClusterStateException,
    HelmException,
    ReleaseNotFoundError,
)
from zarf_deploy.helm import ChartEngine, ReleaseOptions, ReleaseRevision
from zarf_deploy.task import task_service_context


class FakeSleep:
    """Records sleeps instead of waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


class FakeEngine(ChartEngine):
    """A chart engine keeping releases in memory."""

    def __init__(
        self,
        revisions: dict[str, int] | None = None,
        failures: int = 0,
        history_error: str | None = None,
        manifest: str = "",
    ) -> None:
        self.revisions = dict(revisions or {})
        self.failures = failures
        self.history_error = history_error
        self.manifest = manifest
        self.calls: list[tuple[str, str]] = []
        self.options: list[ReleaseOptions] = []

    async def history(
        self, release: str, namespace: str, max_revisions: int = 1
    ) -> list[ReleaseRevision]:
        self.calls.append(("history", release))
        if self.history_error:
            raise HelmException(self.history_error)
        if not (revision := self.revisions.get(release)):
            raise ReleaseNotFoundError(f"Release {release} not found")
        return [ReleaseRevision(revision=revision, status="deployed")]

    async def _attempt(self, name: str, release: str, options: ReleaseOptions) -> None:
        self.calls.append((name, release))
        self.options.append(options)
        if self.failures > 0:
            self.failures -= 1
            raise HelmException(f"{name} failed: cluster unreachable")

    async def install(
        self, release: str, chart: Path, values: list[Path], options: ReleaseOptions
    ) -> str:
        await self._attempt("install", release, options)
        self.revisions[release] = 1
        return "Install complete"

    async def upgrade(
        self, release: str, chart: Path, values: list[Path], options: ReleaseOptions
    ) -> str:
        await self._attempt("upgrade", release, options)
        self.revisions[release] += 1
        return "Upgrade complete"

    async def rollback(self, release: str, namespace: str) -> None:
        self.calls.append(("rollback", release))

    async def uninstall(self, release: str, namespace: str) -> None:
        self.calls.append(("uninstall", release))
        self.revisions.pop(release, None)

    async def get_manifest(self, release: str, namespace: str) -> str:
        self.calls.append(("get_manifest", release))
        return self.manifest


class FakeCluster(Cluster):
    """A cluster keeping secrets and pods in memory."""

    def __init__(self, state: ZarfState | None = None) -> None:
        super().__init__()
        self.state = state
        self.secrets: dict[tuple[str, str], dict[str, Any]] = {}
        self.pods: list[dict[str, Any]] = []
        self.nodes: list[dict[str, Any]] = [
            {
                "metadata": {"name": "k3d-test-server-0", "labels": {}},
                "status": {"nodeInfo": {"architecture": "amd64"}},
            }
        ]
        self.copies: list[tuple[str, str, str, str]] = []
        self.config_maps: dict[str, dict[str, bytes]] = {}
        self.deleted: list[tuple[str, str]] = []

    async def get_secret(self, namespace: str, name: str) -> dict[str, Any] | None:
        return self.secrets.get((namespace, name))

    async def replace_secret(self, secret: dict[str, Any]) -> None:
        metadata = secret["metadata"]
        self.secrets[(metadata["namespace"], metadata["name"])] = secret

    async def load_state(self) -> ZarfState:
        if self.state is None:
            raise ClusterStateException("did you remember to run init first?")
        return self.state

    async def save_state(self, state: ZarfState) -> None:
        self.state = state

    async def create_namespace(self, name: str) -> None:
        pass

    async def get_nodes(self) -> list[dict[str, Any]]:
        return self.nodes

    async def find_pods(self, namespace: str, selector: str) -> list[dict[str, Any]]:
        return self.pods

    async def copy_to_pod(
        self, source: Path, namespace: str, pod: str, container: str, path: str
    ) -> None:
        self.copies.append((source.name, pod, container, path))

    async def create_config_map(
        self,
        namespace: str,
        name: str,
        binary_data: dict[str, bytes],
        labels: dict[str, str] | None = None,
    ) -> None:
        self.config_maps[name] = binary_data

    async def delete_config_maps(self, namespace: str, selector: str) -> None:
        self.deleted.append(("configmap", selector))
        self.config_maps.clear()

    async def delete_pods(self, namespace: str, selector: str) -> None:
        self.deleted.append(("pod", selector))


@pytest.fixture(name="zarf_state")
def zarf_state_fixture() -> ZarfState:
    """Fixture for the state of an initialized cluster."""
    return ZarfState(
        distro="k3d",
        architecture="amd64",
        storage_class="local-path",
        logging_secret="logging-secret",
        registry_info=RegistryState(
            address="127.0.0.1:31999",
            push_username="zarf-push",
            push_password="push-secret",
            pull_username="zarf-pull",
            pull_password="pull-secret",
        ),
        git_server=GitServerState(
            address="http://zarf-gitea-http.zarf.svc.cluster.local:3000",
            push_username="zarf-git-user",
            push_password="git-push-secret",
            pull_username="zarf-git-read-user",
            pull_password="git-pull-secret",
        ),
    )


@pytest.fixture(name="cluster")
def cluster_fixture(zarf_state: ZarfState) -> FakeCluster:
    """Fixture for an initialized cluster."""
    return FakeCluster(zarf_state)


@pytest.fixture(name="sleep")
def sleep_fixture() -> FakeSleep:
    """Fixture for a sleep function that does not wait."""
    return FakeSleep()


@pytest.fixture(name="deploy_config")
def deploy_config_fixture(sleep: FakeSleep, tmp_path: Path) -> DeployConfig:
    """Fixture for deployment configuration that never sleeps."""
    return DeployConfig(
        image_retry=RetryConfig(sleep=sleep),
        repo_retry=RetryConfig(sleep=sleep),
        release=ReleaseConfig(sleep=sleep),
        injection=InjectionConfig(pod_wait_attempts=3, sleep=sleep),
        sbom_dir=tmp_path / "zarf-sbom",
    )


@pytest.fixture(autouse=True)
def task_service() -> Generator[None, None, None]:
    """Scope a task service to each test."""
    with task_service_context():
        yield
