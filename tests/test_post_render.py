"""Tests for the helm post-renderer."""

import io
import sys
from typing import Any
import zlib

import pytest
import yaml

from zarf_deploy.mirror.url import transform_url
from zarf_deploy.post_render import main, post_render_command, render

REGISTRY = "127.0.0.1:31999"
GIT_URL = "http://zarf-gitea-http.zarf.svc.cluster.local:3000"
GIT_USER = "zarf-git-user"

MANIFESTS = """
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: podinfo
spec:
  template:
    spec:
      initContainers:
        - name: init
          image: busybox:1.36
      containers:
        - name: podinfo
          image: ghcr.io/stefanprodan/podinfo:6.4.0
---
apiVersion: batch/v1
kind: CronJob
metadata:
  name: cleanup
spec:
  jobTemplate:
    spec:
      template:
        spec:
          containers:
            - name: cleanup
              image: alpine:3.18
---
apiVersion: v1
kind: Pod
metadata:
  name: ignored
  labels:
    zarf.dev/agent: ignore
spec:
  containers:
    - name: app
      image: nginx:1.25
---
apiVersion: v1
kind: ConfigMap
metadata:
  name: settings
data:
  repo: https://github.com/stefanprodan/podinfo.git
"""


def _docs(text: str) -> dict[str, Any]:
    return {doc["metadata"]["name"]: doc for doc in yaml.safe_load_all(text)}


def test_render_images() -> None:
    """Test images in pod-bearing objects point at the registry."""
    docs = _docs(render(MANIFESTS, REGISTRY))

    pod_spec = docs["podinfo"]["spec"]["template"]["spec"]
    checksum = zlib.crc32(b"busybox:1.36")
    assert pod_spec["initContainers"][0]["image"] == (
        f"{REGISTRY}/library/busybox:1.36-zarf-{checksum}"
    )
    assert pod_spec["containers"][0]["image"].startswith(
        f"{REGISTRY}/stefanprodan/podinfo:6.4.0-zarf-"
    )
    cron_spec = docs["cleanup"]["spec"]["jobTemplate"]["spec"]["template"]["spec"]
    assert cron_spec["containers"][0]["image"].startswith(
        f"{REGISTRY}/library/alpine:3.18-zarf-"
    )


def test_render_skips_ignored_objects() -> None:
    """Test objects labelled to be ignored are left alone."""
    docs = _docs(render(MANIFESTS, REGISTRY))
    assert docs["ignored"]["spec"]["containers"][0]["image"] == "nginx:1.25"


def test_render_no_checksum() -> None:
    """Test the agent images keep their original tag."""
    docs = _docs(render(MANIFESTS, REGISTRY, add_checksum=False))
    pod_spec = docs["podinfo"]["spec"]["template"]["spec"]
    assert pod_spec["containers"][0]["image"] == (
        f"{REGISTRY}/stefanprodan/podinfo:6.4.0"
    )


def test_render_git_urls() -> None:
    """Test git urls are rewritten only when a git server is given."""
    upstream = "https://github.com/stefanprodan/podinfo.git"
    docs = _docs(render(MANIFESTS, REGISTRY))
    assert docs["settings"]["data"]["repo"] == upstream

    docs = _docs(render(MANIFESTS, REGISTRY, git_url=GIT_URL, git_user=GIT_USER))
    assert docs["settings"]["data"]["repo"] == transform_url(
        GIT_URL, upstream, GIT_USER
    )


def test_render_empty() -> None:
    """Test a release with no objects."""
    assert render("---\n", REGISTRY) == ""


def test_render_keeps_timestamps() -> None:
    """Test dates and times in untouched values are written as they were read."""
    text = "\n".join(
        [
            "apiVersion: v1",
            "kind: ConfigMap",
            "metadata:",
            "  name: release-info",
            "  annotations:",
            "    created: 2023-01-01T00:00:00Z",
            "data:",
            "  date: 2023-01-01",
            "  quoted: '2024-02-29 12:30:00'",
            "",
        ]
    )
    output = render(text, REGISTRY)
    assert "    created: 2023-01-01T00:00:00Z\n" in output
    assert "  date: 2023-01-01\n" in output
    assert "  quoted: 2024-02-29 12:30:00\n" in output


def test_post_render_command() -> None:
    """Test the command line helm runs as the post-renderer."""
    assert post_render_command(REGISTRY) == [
        sys.executable,
        "-m",
        "zarf_deploy.post_render",
        "--registry",
        REGISTRY,
    ]
    assert post_render_command(REGISTRY, False, GIT_URL, GIT_USER)[4:] == [
        REGISTRY,
        "--no-checksum",
        "--git-url",
        GIT_URL,
        "--git-user",
        GIT_USER,
    ]
    assert post_render_command(REGISTRY, git_url=GIT_URL)[-1] == REGISTRY


def test_main(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test the post-renderer entry point reads stdin and writes stdout."""
    stdout = io.StringIO()
    monkeypatch.setattr(sys, "stdin", io.StringIO(MANIFESTS))
    monkeypatch.setattr(sys, "stdout", stdout)

    main(["--registry", REGISTRY, "--no-checksum"])

    docs = _docs(stdout.getvalue())
    assert docs["cleanup"]["spec"]["jobTemplate"]["spec"]["template"]["spec"][
        "containers"
    ][0]["image"] == f"{REGISTRY}/library/alpine:3.18"


def test_main_invalid_yaml(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test the post-renderer fails on manifests that aren't yaml."""
    monkeypatch.setattr(sys, "stdin", io.StringIO("kind: ["))
    with pytest.raises(SystemExit):
        main(["--registry", REGISTRY])
