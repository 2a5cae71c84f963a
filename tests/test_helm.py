"""Tests for helm library."""

import json
from pathlib import Path
from typing import Any

import pytest
import yaml

from zarf_deploy import command
from zarf_deploy.exceptions import HelmException, InputException, ReleaseNotFoundError
from zarf_deploy.helm import ChartSource, GeneratedChart, Helm, ReleaseOptions


def test_release_options_args() -> None:
    """Test the helm flags for a first install."""
    options = ReleaseOptions(namespace="podinfo", timeout_seconds=300)
    assert options.args == [
        "--namespace",
        "podinfo",
        "--timeout",
        "300s",
        "--wait",
    ]


def test_release_options_post_renderer() -> None:
    """Test post-renderer arguments are passed so helm won't parse them as flags."""
    options = ReleaseOptions(
        namespace="podinfo",
        wait=False,
        skip_crds=True,
        post_renderer=["python3", "-m", "zarf_deploy.post_render", "--no-checksum"],
    )
    assert options.args == [
        "--namespace",
        "podinfo",
        "--timeout",
        "900s",
        "--skip-crds",
        "--post-renderer",
        "python3",
        "--post-renderer-args=-m",
        "--post-renderer-args=zarf_deploy.post_render",
        "--post-renderer-args=--no-checksum",
    ]


def test_chart_source_requires_one_origin(tmp_path: Path) -> None:
    """Test a chart is either an archive or generated."""
    with pytest.raises(InputException):
        ChartSource()
    with pytest.raises(InputException):
        ChartSource(
            archive=tmp_path / "chart.tgz",
            generated=GeneratedChart(name="raw", version="0.1.0"),
        )
    with pytest.raises(InputException, match="value files"):
        ChartSource(
            generated=GeneratedChart(name="raw", version="0.1.0"),
            values_files=[tmp_path / "values.yaml"],
        )


async def test_chart_source_archive(tmp_path: Path) -> None:
    """Test resolving a packaged archive and its values."""
    archive = tmp_path / "podinfo-6.0.0.tgz"
    archive.write_bytes(b"chart")
    values = tmp_path / "podinfo-6.0.0-0"
    values.write_text("replicaCount: 1\n")
    source = ChartSource(archive=archive, values_files=[values])
    assert await source.resolve(tmp_path) == (archive, [values])


async def test_chart_source_missing_values(tmp_path: Path) -> None:
    """Test a values file that isn't in the package."""
    archive = tmp_path / "podinfo-6.0.0.tgz"
    archive.write_bytes(b"chart")
    source = ChartSource(archive=archive, values_files=[tmp_path / "missing"])
    with pytest.raises(InputException, match="Unable to load chart values"):
        await source.resolve(tmp_path)


async def test_generated_chart_write(tmp_path: Path) -> None:
    """Test a generated chart is written out in the helm chart layout."""
    chart = GeneratedChart(
        name="raw-demo-web-app",
        version="0.1.1700000000",
        templates={"0-service.yaml": b"kind: Service\n"},
    )
    source = ChartSource(generated=chart)

    chart_dir, values = await source.resolve(tmp_path)

    assert chart_dir == tmp_path / "raw-demo-web-app"
    assert values == []
    assert yaml.safe_load((chart_dir / "Chart.yaml").read_text()) == {
        "apiVersion": "v1",
        "name": "raw-demo-web-app",
        "version": "0.1.1700000000",
    }
    assert yaml.safe_load((chart_dir / "values.yaml").read_text()) == {}
    assert (chart_dir / "templates" / "0-service.yaml").read_bytes() == (
        b"kind: Service\n"
    )


@pytest.fixture(name="helm_commands")
def helm_commands_fixture(monkeypatch: pytest.MonkeyPatch) -> list[command.Command]:
    """Fixture that records helm commands and returns canned output."""
    commands: list[command.Command] = []
    outputs: dict[str, Any] = {
        "history": json.dumps([{"revision": 2, "status": "deployed"}]),
        "install": json.dumps({"info": {"description": "Install complete"}}),
    }

    async def fake_run(cmd: command.Command, stdin: Any = None) -> str:
        commands.append(cmd)
        return str(outputs.get(cmd.cmd[1], ""))

    monkeypatch.setattr(command, "run", fake_run)
    return commands


async def test_helm_history(helm_commands: list[command.Command]) -> None:
    """Test reading the release history."""
    helm = Helm(kubeconfig="/tmp/kubeconfig")
    history = await helm.history("zarf-podinfo", "podinfo")
    assert [entry.revision for entry in history] == [2]
    assert helm_commands[0].cmd[-2:] == ["--kubeconfig", "/tmp/kubeconfig"]


async def test_helm_install(
    helm_commands: list[command.Command], tmp_path: Path
) -> None:
    """Test the install command and the description of the result."""
    helm = Helm()
    description = await helm.install(
        "zarf-podinfo",
        tmp_path / "podinfo.tgz",
        [tmp_path / "values-0"],
        ReleaseOptions(namespace="podinfo"),
    )
    assert description == "Install complete"
    cmd = helm_commands[0]
    assert cmd.cmd[:4] == [
        "helm",
        "install",
        "zarf-podinfo",
        str(tmp_path / "podinfo.tgz"),
    ]
    assert "--create-namespace" in cmd.cmd
    assert cmd.cmd[-2:] == ["--values", str(tmp_path / "values-0")]
    assert cmd.timeout > 900


async def test_helm_history_not_found(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test a release with no history."""

    async def fake_run(cmd: command.Command, stdin: Any = None) -> str:
        raise HelmException("Error: release: not found")

    monkeypatch.setattr(command, "run", fake_run)
    with pytest.raises(ReleaseNotFoundError):
        await Helm().history("zarf-podinfo", "podinfo")
