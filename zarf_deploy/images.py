"""Helper functions for mirroring container images into the internal registry."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging
from pathlib import Path
import zlib

from . import command
from .cluster import RegistryState
from .exceptions import CommandException, InputException
from .tunnel import REGISTRY, Tunnel

__all__ = [
    "ImageReference",
    "parse_image",
    "transform_image",
    "ImagePusher",
]

_LOGGER = logging.getLogger(__name__)

SKOPEO_BIN = "skopeo"
DEFAULT_DOMAIN = "docker.io"
OFFICIAL_REPO_PREFIX = "library/"
DEFAULT_TAG = "latest"
_PUSH_TIMEOUT = 900.0


@dataclass(frozen=True)
class ImageReference:
    """A parsed container image reference."""

    domain: str
    path: str
    tag: str | None = None
    digest: str | None = None

    @property
    def name(self) -> str:
        """Return the fully qualified repository name."""
        return f"{self.domain}/{self.path}"


def parse_image(image: str) -> ImageReference:
    """Parse an image reference, filling in the docker hub defaults."""
    if not image or any(c.isspace() for c in image):
        raise InputException(f"Invalid image reference '{image}'")
    remainder, _, digest = image.partition("@")
    name, tag = remainder, None
    last = remainder.rsplit("/", 1)[-1]
    if ":" in last:
        name, tag = remainder.rsplit(":", 1)
    domain, _, path = name.partition("/")
    if not path or not ("." in domain or ":" in domain or domain == "localhost"):
        domain, path = DEFAULT_DOMAIN, name
    if domain == DEFAULT_DOMAIN and "/" not in path:
        path = f"{OFFICIAL_REPO_PREFIX}{path}"
    if not path:
        raise InputException(f"Invalid image reference '{image}'")
    if not tag and not digest:
        tag = DEFAULT_TAG
    return ImageReference(domain=domain, path=path, tag=tag, digest=digest or None)


def transform_image(registry: str, image: str, add_checksum: bool = True) -> str:
    """Return the location of an image on the internal registry.

    The tag gets a crc32 checksum of the original reference so that images
    with the same path from different registries do not collide.
    """
    ref = parse_image(image)
    if ref.digest:
        return f"{registry}/{ref.path}@{ref.digest}"
    tag = ref.tag or DEFAULT_TAG
    if add_checksum:
        tag = f"{tag}-zarf-{zlib.crc32(image.encode('utf-8'))}"
    return f"{registry}/{ref.path}:{tag}"


class ImagePusher:
    """Push images from the package image archive to the registry."""

    def __init__(
        self, registry: RegistryState, kubectl_flags: list[str] | None = None
    ) -> None:
        """Initialize ImagePusher."""
        self._registry = registry
        self._kubectl_flags = kubectl_flags

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[str]:
        """Yield the registry host, tunneling to it when internal."""
        if not self._registry.internal_registry:
            yield self._registry.address
            return
        async with Tunnel.for_service(REGISTRY, self._kubectl_flags) as tunnel:
            yield tunnel.endpoint

    async def push(
        self, images_tar: Path, images: list[str], add_checksum: bool = True
    ) -> None:
        """Push the images from the archive, failing on the first error."""
        if not images_tar.exists():
            raise InputException(f"Package image archive {images_tar} not found")
        creds = f"{self._registry.push_username}:{self._registry.push_password}"
        async with self.connect() as host:
            for image in images:
                dest = transform_image(host, image, add_checksum)
                _LOGGER.info("Pushing image %s", image)
                await command.run(
                    command.Command(
                        [
                            SKOPEO_BIN,
                            "copy",
                            "--dest-tls-verify=false",
                            "--dest-creds",
                            creds,
                            f"docker-archive:{images_tar}:{image}",
                            f"docker://{dest}",
                        ],
                        exc=CommandException,
                        timeout=_PUSH_TIMEOUT,
                        redact=[creds],
                    )
                )
