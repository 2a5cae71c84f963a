"""Mirroring of git repositories into the internal git server."""

from .push import GitMirrorPusher
from .url import mutate_git_urls_in_text, transform_url, transform_url_to_repo_name

__all__ = [
    "GitMirrorPusher",
    "mutate_git_urls_in_text",
    "transform_url",
    "transform_url_to_repo_name",
]
