"""Map upstream git repository urls to their name on the internal mirror.

The mirror name is the upstream repository name followed by a crc32 checksum of
the host, path and optional ref. The protocol and `.git` suffix are removed
before hashing so that `https://example.com/repo.git` and
`http://example.com/repo` resolve to the same mirror repository, while two
repositories with the same name on different hosts do not collide.

```python
from zarf_deploy.mirror import url

name = url.transform_url_to_repo_name("https://github.com/stefanprodan/podinfo.git")
assert name == url.transform_url_to_repo_name("http://github.com/stefanprodan/podinfo")
```
"""

from dataclasses import dataclass, field
import logging
import re
import zlib

from zarf_deploy.exceptions import InvalidGitUrlError

__all__ = [
    "transform_url_to_repo_name",
    "transform_url",
    "mutate_git_urls_in_text",
    "MutatedText",
]

_LOGGER = logging.getLogger(__name__)

GIT_URL_RE = re.compile(
    r"^(?P<proto>[a-z]+://)(?P<hostPath>.+?)/(?P<repo>[\w\-.]+?)"
    r"(?P<git>\.git)?(?P<atRef>@(?P<ref>[\w\-.]+))?$",
    re.ASCII,
)
EMBEDDED_GIT_URL_RE = re.compile(r"https?://[^/\s]+/[^\s\"']*?\.git(?![\w.\-])")


def transform_url_to_repo_name(url: str) -> str:
    """Return the name of the mirror repository for an upstream url."""
    if not (match := GIT_URL_RE.match(url)):
        raise InvalidGitUrlError(f"Unable to extract the repo name from the url {url}")
    repo_name = match.group("repo")
    sanitized_url = f"{match.group('hostPath')}/{repo_name}{match.group('atRef') or ''}"
    checksum = zlib.crc32(sanitized_url.encode("utf-8"))
    return f"{repo_name}-{checksum}"


def transform_url(base_url: str, url: str, username: str) -> str:
    """Return the full mirror url for an upstream url."""
    repo_name = transform_url_to_repo_name(url)
    output = f"{base_url}/{username}/{repo_name}"
    _LOGGER.debug("Rewrite git URL: %s -> %s", url, output)
    return output


@dataclass
class MutatedText:
    """Result of rewriting git urls embedded in a body of text."""

    text: str
    """The text with every transformable url replaced."""

    failures: list[str] = field(default_factory=list)
    """Urls that could not be transformed and were left unchanged."""


def mutate_git_urls_in_text(host: str, text: str, username: str) -> MutatedText:
    """Replace the git urls in the text with their mirror location.

    This is best effort: urls that can't be transformed are left as they are
    and returned in `failures` for the caller to report.
    """
    failures: list[str] = []

    def replace(match: re.Match[str]) -> str:
        original = match.group(0)
        try:
            return transform_url(host, original, username)
        except InvalidGitUrlError:
            failures.append(original)
            return original

    return MutatedText(text=EMBEDDED_GIT_URL_RE.sub(replace, text), failures=failures)
