"""Tests for the image library."""

from pathlib import Path
from typing import Any
import zlib

import pytest

from zarf_deploy import command, images
from zarf_deploy.cluster import RegistryState
from zarf_deploy.exceptions import CommandException, InputException
from zarf_deploy.images import ImagePusher, ImageReference, parse_image, transform_image

REGISTRY = "127.0.0.1:31999"


@pytest.mark.parametrize(
    ("image", "expected"),
    [
        ("nginx", ImageReference("docker.io", "library/nginx", "latest")),
        ("nginx:1.25", ImageReference("docker.io", "library/nginx", "1.25")),
        (
            "stefanprodan/podinfo:6.4.0",
            ImageReference("docker.io", "stefanprodan/podinfo", "6.4.0"),
        ),
        (
            "ghcr.io/stefanprodan/podinfo:6.4.0",
            ImageReference("ghcr.io", "stefanprodan/podinfo", "6.4.0"),
        ),
        (
            "localhost:5000/app",
            ImageReference("localhost:5000", "app", "latest"),
        ),
        (
            "nginx@sha256:abc123",
            ImageReference("docker.io", "library/nginx", None, "sha256:abc123"),
        ),
    ],
)
def test_parse_image(image: str, expected: ImageReference) -> None:
    """Test parsing image references with the docker hub defaults."""
    assert parse_image(image) == expected


@pytest.mark.parametrize("image", ["", "nginx latest"])
def test_parse_invalid_image(image: str) -> None:
    """Test references that can't be parsed."""
    with pytest.raises(InputException, match="Invalid image reference"):
        parse_image(image)


def test_transform_image_checksum() -> None:
    """Test the tag carries a checksum of the original reference."""
    checksum = zlib.crc32(b"nginx:1.25")
    assert (
        transform_image(REGISTRY, "nginx:1.25")
        == f"{REGISTRY}/library/nginx:1.25-zarf-{checksum}"
    )


def test_transform_image_checksum_differs_by_registry() -> None:
    """Test the same path from two registries does not collide."""
    first = transform_image(REGISTRY, "ghcr.io/example/app:1.0")
    second = transform_image(REGISTRY, "quay.io/example/app:1.0")
    assert first != second
    assert first.startswith(f"{REGISTRY}/example/app:1.0-zarf-")


def test_transform_image_no_checksum() -> None:
    """Test the tag is kept as is without a checksum."""
    assert (
        transform_image(REGISTRY, "ghcr.io/stefanprodan/podinfo:6.4.0", False)
        == f"{REGISTRY}/stefanprodan/podinfo:6.4.0"
    )


def test_transform_image_digest() -> None:
    """Test digests are kept since they are content addressed."""
    assert (
        transform_image(REGISTRY, "nginx@sha256:abc123")
        == f"{REGISTRY}/library/nginx@sha256:abc123"
    )


async def test_push_missing_archive(tmp_path: Path) -> None:
    """Test pushing from an archive that is not in the package."""
    pusher = ImagePusher(RegistryState(address=REGISTRY))
    with pytest.raises(InputException, match="not found"):
        await pusher.push(tmp_path / "images.tar", ["nginx:1.25"])


async def test_push_external_registry(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test images are copied to an external registry without a tunnel."""
    images_tar = tmp_path / "images.tar"
    images_tar.write_bytes(b"")
    commands: list[command.Command] = []

    async def fake_run(cmd: command.Command, stdin: Any = None) -> str:
        commands.append(cmd)
        return ""

    monkeypatch.setattr(command, "run", fake_run)
    pusher = ImagePusher(
        RegistryState(
            address="registry.example.com",
            push_username="push",
            push_password="secret",
            internal_registry=False,
        )
    )
    await pusher.push(images_tar, ["nginx:1.25", "busybox:1.36"], add_checksum=False)

    assert [cmd.cmd[-1] for cmd in commands] == [
        "docker://registry.example.com/library/nginx:1.25",
        "docker://registry.example.com/library/busybox:1.36",
    ]
    assert commands[0].cmd[-2] == f"docker-archive:{images_tar}:nginx:1.25"
    assert "secret" not in str(commands[0])


async def test_push_without_skopeo(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test a missing skopeo binary fails the push like any other copy error."""
    images_tar = tmp_path / "images.tar"
    images_tar.write_bytes(b"")
    monkeypatch.setattr(images, "SKOPEO_BIN", "skopeo-not-installed")
    pusher = ImagePusher(
        RegistryState(address="registry.example.com", internal_registry=False)
    )
    with pytest.raises(CommandException, match="could not be started"):
        await pusher.push(images_tar, ["nginx:1.25"])
