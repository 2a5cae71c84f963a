"""Helm post-renderer that points rendered manifests at the mirrors.

Helm runs this module with the fully rendered manifests of a release on stdin
and applies whatever is written to stdout:

```
helm install ... --post-renderer python3 --post-renderer-args=-m \
    --post-renderer-args=zarf_deploy.post_render \
    --post-renderer-args=--registry --post-renderer-args=127.0.0.1:31999
```

Container images in pod-bearing objects are rewritten to the mirror
registry and git urls anywhere in the text are rewritten to the git mirror.
"""

import argparse
import logging
import sys
from typing import Any

import yaml

from .exceptions import InputException
from .images import transform_image
from .mirror.url import mutate_git_urls_in_text

__all__ = [
    "post_render_command",
    "render",
    "main",
]

_LOGGER = logging.getLogger(__name__)

MODULE = "zarf_deploy.post_render"
CONTAINER_KEYS = ("initContainers", "containers", "ephemeralContainers")
IGNORE_LABEL = "zarf.dev/agent"
IGNORE_VALUE = "ignore"
_TIMESTAMP_TAG = "tag:yaml.org,2002:timestamp"


def _without_timestamps(
    resolvers: dict[Any, list[tuple[str, Any]]]
) -> dict[Any, list[tuple[str, Any]]]:
    return {
        first: [(tag, regexp) for tag, regexp in entries if tag != _TIMESTAMP_TAG]
        for first, entries in resolvers.items()
    }


class _ManifestLoader(yaml.SafeLoader):
    """Loads dates and times as the strings they were written as."""

    yaml_implicit_resolvers = _without_timestamps(
        yaml.SafeLoader.yaml_implicit_resolvers
    )


class _ManifestDumper(yaml.SafeDumper):
    """Writes date and time strings without quotes."""

    yaml_implicit_resolvers = _without_timestamps(
        yaml.SafeDumper.yaml_implicit_resolvers
    )


def post_render_command(
    registry: str,
    add_checksum: bool = True,
    git_url: str | None = None,
    git_user: str | None = None,
) -> list[str]:
    """Return the post-renderer command line passed to helm."""
    args = [sys.executable, "-m", MODULE, "--registry", registry]
    if not add_checksum:
        args.append("--no-checksum")
    if git_url and git_user:
        args.extend(["--git-url", git_url, "--git-user", git_user])
    return args


def _pod_spec(doc: dict[str, Any]) -> dict[str, Any] | None:
    """Return the pod spec embedded in a workload object, if any."""
    spec = doc.get("spec")
    if not isinstance(spec, dict):
        return None
    kind = doc.get("kind")
    if kind == "Pod":
        return spec
    if kind == "CronJob":
        spec = (spec.get("jobTemplate") or {}).get("spec") or {}
    template = spec.get("template")
    if isinstance(template, dict) and isinstance(template.get("spec"), dict):
        return template["spec"]
    return None


def _rewrite_images(doc: dict[str, Any], registry: str, add_checksum: bool) -> None:
    labels = (doc.get("metadata") or {}).get("labels") or {}
    if labels.get(IGNORE_LABEL) == IGNORE_VALUE:
        return
    if (pod_spec := _pod_spec(doc)) is None:
        return
    for key in CONTAINER_KEYS:
        for container in pod_spec.get(key) or []:
            if not (image := container.get("image")):
                continue
            try:
                container["image"] = transform_image(registry, image, add_checksum)
            except InputException as err:
                _LOGGER.warning("Unable to rewrite image %s: %s", image, err)


def render(
    text: str,
    registry: str,
    add_checksum: bool = True,
    git_url: str | None = None,
    git_user: str | None = None,
) -> str:
    """Return the manifests with images and git urls pointing at the mirrors."""
    docs = [
        doc for doc in yaml.load_all(text, Loader=_ManifestLoader) if doc is not None
    ]
    for doc in docs:
        if isinstance(doc, dict):
            _rewrite_images(doc, registry, add_checksum)
    output = yaml.dump_all(
        docs, Dumper=_ManifestDumper, sort_keys=False, explicit_start=True
    )
    if git_url and git_user:
        result = mutate_git_urls_in_text(git_url, output, git_user)
        for failure in result.failures:
            _LOGGER.warning("Unable to transform the git url %s", failure)
        output = result.text
    return output


def add_arguments(parser: argparse.ArgumentParser) -> None:
    """Add the post-renderer flags to the parser."""
    parser.add_argument(
        "--registry", required=True, help="Address of the mirror registry."
    )
    parser.add_argument(
        "--no-checksum",
        dest="add_checksum",
        action="store_false",
        help="Don't add the checksum of the original reference to image tags.",
    )
    parser.add_argument("--git-url", help="Base url of the git mirror.")
    parser.add_argument("--git-user", help="Owner of the repos on the git mirror.")


def main(argv: list[str] | None = None) -> None:
    """Run the post-renderer over stdin."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    add_arguments(parser)
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.WARNING, stream=sys.stderr)
    try:
        output = render(
            sys.stdin.read(),
            args.registry,
            args.add_checksum,
            args.git_url,
            args.git_user,
        )
    except yaml.YAMLError as err:
        print(f"zarf-deploy post-render error: {err}", file=sys.stderr)
        sys.exit(1)
    sys.stdout.write(output)


if __name__ == "__main__":
    main()
