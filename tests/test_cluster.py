"""Tests for the kubectl backed cluster access."""

import base64
import json
from typing import Any

import pytest

from zarf_deploy import command
from zarf_deploy.cluster import (
    Cluster,
    RegistryState,
    ZarfState,
    generate_secret,
    secret_data,
)
from zarf_deploy.exceptions import ClusterStateException, KubectlException


class FakeKubectl:
    """Answers kubectl commands from secrets and namespaces kept in memory."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.namespaces: set[str] = {"default"}
        self.secrets: dict[tuple[str, str], dict[str, Any]] = {}
        self.raw_output: str | None = None

    async def run(self, cmd: command.Command, stdin: bytes | None = None) -> str:
        assert cmd.cmd[0] == "kubectl"
        self.calls.append(cmd.cmd[1:])
        args = cmd.cmd[1:]
        while args and args[0] in ("--kubeconfig", "--context"):
            args = args[2:]
        if self.raw_output is not None:
            return self.raw_output
        match args:
            case ["get", "namespace", name, *_]:
                return "{}" if name in self.namespaces else ""
            case ["create", "namespace", name]:
                self.namespaces.add(name)
                return ""
            case ["get", "secret", name, "-n", namespace, *_]:
                secret = self.secrets.get((namespace, name))
                return json.dumps(secret) if secret else ""
            case ["delete", "secret", name, "-n", namespace, *_]:
                self.secrets.pop((namespace, name), None)
                return ""
            case ["create", "-f", "-"]:
                assert stdin
                obj = json.loads(stdin)
                metadata = obj["metadata"]
                key = (metadata["namespace"], metadata["name"])
                if key in self.secrets:
                    raise KubectlException(f"secrets {metadata['name']} already exists")
                self.secrets[key] = obj
                return ""
        raise AssertionError(f"Unexpected kubectl command: {args}")


@pytest.fixture(name="kubectl")
def kubectl_fixture(monkeypatch: pytest.MonkeyPatch) -> FakeKubectl:
    """Fixture for kubectl commands answered in memory."""
    kubectl = FakeKubectl()
    monkeypatch.setattr(command, "run", kubectl.run)
    return kubectl


def store_state(kubectl: FakeKubectl, state: dict[str, Any]) -> None:
    kubectl.secrets[("zarf", "zarf-state")] = generate_secret(
        "zarf", "zarf-state", {"state": json.dumps(state).encode()}
    )


def test_secret_data() -> None:
    """Test secret values are base64 encoded and decoded."""
    secret = generate_secret(
        "zarf", "zarf-package-demo", {"data": b'{"name": "demo"}'}, {"a": "b"}
    )
    assert secret["data"]["data"] == base64.b64encode(b'{"name": "demo"}').decode()
    assert secret["metadata"]["labels"] == {
        "app.kubernetes.io/managed-by": "zarf",
        "a": "b",
    }
    assert secret_data(secret, "data") == b'{"name": "demo"}'
    assert secret_data(secret, "missing") is None
    assert secret_data({"data": None}, "data") is None


async def test_save_and_load_state(kubectl: FakeKubectl) -> None:
    """Test the state written to the cluster is read back."""
    cluster = Cluster()
    state = ZarfState(
        distro="k3s",
        architecture="arm64",
        registry_info=RegistryState(address="127.0.0.1:31999", push_username="push"),
    )
    await cluster.save_state(state)

    assert "zarf" in kubectl.namespaces
    loaded = await cluster.load_state()
    assert loaded.distro == "k3s"
    assert loaded.architecture == "arm64"
    assert loaded.registry_info.address == "127.0.0.1:31999"
    assert loaded.registry_info.push_username == "push"


async def test_replace_secret_deletes_then_creates(kubectl: FakeKubectl) -> None:
    """Test an existing secret is replaced instead of merged."""
    cluster = Cluster(kubeconfig="/tmp/kubeconfig", context="k3d-test")
    await cluster.replace_secret(
        generate_secret("zarf", "zarf-package-demo", {"old": b"1", "data": b"a"})
    )
    kubectl.calls.clear()
    await cluster.replace_secret(
        generate_secret("zarf", "zarf-package-demo", {"data": b"b"})
    )

    secret = kubectl.secrets[("zarf", "zarf-package-demo")]
    assert secret_data(secret, "data") == b"b"
    assert secret_data(secret, "old") is None
    flags = ["--kubeconfig", "/tmp/kubeconfig", "--context", "k3d-test"]
    assert [call[:4] for call in kubectl.calls] == [flags] * 3
    assert [call[4:6] for call in kubectl.calls] == [
        ["get", "namespace"],
        ["delete", "secret"],
        ["create", "-f"],
    ]


async def test_missing_state_secret(kubectl: FakeKubectl) -> None:
    """Test a cluster that was never initialized."""
    with pytest.raises(ClusterStateException, match="run init first"):
        await Cluster().load_state()


async def test_state_without_distro(kubectl: FakeKubectl) -> None:
    """Test a state secret without a distro is treated as uninitialized."""
    store_state(kubectl, {"architecture": "amd64"})
    with pytest.raises(ClusterStateException, match="run init first"):
        await Cluster().load_state()


async def test_invalid_state(kubectl: FakeKubectl) -> None:
    """Test a state secret that is not valid json."""
    kubectl.secrets[("zarf", "zarf-state")] = generate_secret(
        "zarf", "zarf-state", {"state": b"{not json"}
    )
    with pytest.raises(ClusterStateException, match="Invalid cluster state"):
        await Cluster().load_state()


async def test_unparseable_kubectl_output(kubectl: FakeKubectl) -> None:
    """Test output that is not json is a kubectl error."""
    kubectl.raw_output = "error: the server doesn't have a resource type"
    with pytest.raises(KubectlException, match="Unable to parse kubectl output"):
        await Cluster().get_secret("zarf", "zarf-state")


async def test_get_architecture(kubectl: FakeKubectl) -> None:
    """Test the architecture is read from the first node reporting one."""
    kubectl.raw_output = json.dumps(
        {
            "items": [
                {"metadata": {"name": "a"}, "status": {}},
                {"status": {"nodeInfo": {"architecture": "arm64"}}},
            ]
        }
    )
    assert await Cluster().get_architecture() == "arm64"

    kubectl.raw_output = ""
    with pytest.raises(ClusterStateException, match="architecture"):
        await Cluster().get_architecture()
