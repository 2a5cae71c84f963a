"""Manipulate the references of a local clone before it is pushed to a mirror.

A mirror push sends every branch and tag in the clone, so the clone must not
carry transient local branches or duplicate pointers to the HEAD commit. Each
removal returns the references it deleted so the caller can restore them with
`add_refs` once the push is done.

None of these functions ever remove `HEAD` or the reference HEAD points to.
"""

from collections.abc import Callable
from dataclasses import dataclass
import logging
from pathlib import Path

import git

from zarf_deploy.exceptions import GitException

__all__ = [
    "GitReference",
    "remove_local_branch_refs",
    "remove_online_remote_refs",
    "remove_head_copies",
    "remove_references",
    "add_refs",
    "delete_branch_if_exists",
]

_LOGGER = logging.getLogger(__name__)

HEAD = "HEAD"
BRANCH_PREFIX = "refs/heads/"
TAG_PREFIX = "refs/tags/"
ONLINE_REMOTE_NAME = "online-upstream"
OFFLINE_REMOTE_NAME = "offline-downstream"
ONLINE_REMOTE_REF_PREFIX = f"refs/remotes/{ONLINE_REMOTE_NAME}/"


@dataclass(frozen=True)
class GitReference:
    """A named pointer to a commit in a repository."""

    name: str
    """Full reference name e.g. `refs/heads/main`."""

    commit: str
    """The object the reference resolves to."""

    symbolic_target: str | None = None
    """The reference this one points to, for symbolic references."""

    @property
    def is_branch(self) -> bool:
        """Return true if this is a local branch."""
        return self.name.startswith(BRANCH_PREFIX)

    @property
    def is_tag(self) -> bool:
        """Return true if this is a tag."""
        return self.name.startswith(TAG_PREFIX)


def open_repo(repo_path: Path) -> git.Repo:
    """Open the repository at the path."""
    try:
        return git.Repo(str(repo_path))
    except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as err:
        raise GitException(
            f"Not a valid git repo or unable to open {repo_path}: {err}"
        ) from err


def list_references(repo: git.Repo) -> list[GitReference]:
    """Return every reference in the repository except HEAD."""
    out = repo.git.for_each_ref("--format=%(refname) %(objectname) %(symref)")
    refs = []
    for line in out.splitlines():
        if not line.strip():
            continue
        name, commit, symref = (line.split(" ") + ["", ""])[:3]
        refs.append(
            GitReference(name=name, commit=commit, symbolic_target=symref or None)
        )
    return refs


def _head(repo: git.Repo) -> tuple[str | None, str]:
    """Return the reference HEAD targets (None when detached) and its commit."""
    try:
        commit = repo.head.commit.hexsha
    except ValueError as err:
        raise GitException(
            f"Failed to identify head of {repo.working_dir}: {err}"
        ) from err
    if repo.head.is_detached:
        return None, commit
    return repo.head.ref.path, commit


def remove_references(
    repo_path: Path, should_remove: Callable[[GitReference], bool]
) -> list[GitReference]:
    """Remove the references selected by the predicate.

    HEAD and its target are skipped before the predicate is consulted.
    """
    _LOGGER.debug("Remove git references %s", repo_path)
    repo = open_repo(repo_path)
    head_target, _ = _head(repo)
    removed: list[GitReference] = []
    try:
        for ref in list_references(repo):
            if ref.name in (HEAD, head_target):
                continue
            if not should_remove(ref):
                continue
            repo.git.update_ref("--no-deref", "-d", ref.name)
            removed.append(ref)
    except git.exc.GitCommandError as err:
        raise GitException(f"Failed to remove references: {err}") from err
    return removed


def remove_local_branch_refs(repo_path: Path) -> list[GitReference]:
    """Remove all local branches."""
    return remove_references(repo_path, lambda ref: ref.is_branch)


def remove_online_remote_refs(repo_path: Path) -> list[GitReference]:
    """Remove all refs tracking the online upstream remote."""
    return remove_references(
        repo_path, lambda ref: ref.name.startswith(ONLINE_REMOTE_REF_PREFIX)
    )


def remove_head_copies(repo_path: Path) -> list[GitReference]:
    """Remove any non-tag refs that point at the same commit as HEAD."""
    _LOGGER.debug("Remove head copies for %s", repo_path)
    _, head_commit = _head(open_repo(repo_path))

    def is_head_copy(ref: GitReference) -> bool:
        # Tags are never removed
        return (
            not ref.is_tag
            and ref.symbolic_target is None
            and ref.commit == head_commit
        )

    return remove_references(repo_path, is_head_copy)


def add_refs(repo_path: Path, refs: list[GitReference]) -> None:
    """Add references that were returned by one of the remove functions."""
    _LOGGER.debug("Add git refs %s", repo_path)
    repo = open_repo(repo_path)
    try:
        for ref in refs:
            if ref.symbolic_target:
                repo.git.symbolic_ref(ref.name, ref.symbolic_target)
            else:
                repo.git.update_ref(ref.name, ref.commit)
    except git.exc.GitCommandError as err:
        raise GitException(f"Failed to add references: {err}") from err


def delete_branch_if_exists(repo_path: Path, branch: str) -> None:
    """Ensure the named local branch and its reference do not exist."""
    _LOGGER.debug("Delete branch %s for %s if it exists", branch, repo_path)
    repo = open_repo(repo_path)
    section = f'branch "{branch}"'
    if repo.config_reader("repository").has_section(section):
        with repo.config_writer() as writer:
            writer.remove_section(section)
    ref_name = f"{BRANCH_PREFIX}{branch}"
    if not any(ref.name == ref_name for ref in list_references(repo)):
        return
    try:
        repo.git.update_ref("--no-deref", "-d", ref_name)
    except git.exc.GitCommandError as err:
        raise GitException(f"Failed to delete branch reference: {err}") from err
