"""Push repositories from a package to the internal git server.

Each repository in the package is a clone whose `online-upstream` remote
points at the original location. The clone is pushed to the mirror under the
name computed by `url.transform_url_to_repo_name` after its references are
cleaned up so that only the upstream branches and tags reach the mirror.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging
from pathlib import Path
from urllib.parse import quote, urlsplit, urlunsplit

import git

from zarf_deploy.cluster import GitServerState
from zarf_deploy.config import GitServerConfig
from zarf_deploy.exceptions import GitException, GitServerException
from zarf_deploy.tunnel import GIT, Tunnel

from . import credentials, refs, url
from .gitea import GitServerClient

__all__ = [
    "GitMirrorPusher",
]

_LOGGER = logging.getLogger(__name__)

PUSH_REFSPECS = [
    "refs/heads/*:refs/heads/*",
    f"{refs.ONLINE_REMOTE_REF_PREFIX}*:refs/heads/*",
    "refs/tags/*:refs/tags/*",
]
# A stale local branch with this name would shadow the upstream branch
STALE_BRANCH = "master"


def _with_auth(target_url: str, username: str, password: str) -> str:
    """Return the url with basic auth credentials embedded."""
    parts = urlsplit(target_url)
    netloc = f"{quote(username, safe='')}:{quote(password, safe='')}@{parts.netloc}"
    return urlunsplit(parts._replace(netloc=netloc))


def _online_url(repo: git.Repo, repo_path: Path) -> str:
    """Return the url of the remote the clone was made from."""
    try:
        return str(next(iter(repo.remote(refs.ONLINE_REMOTE_NAME).urls)))
    except ValueError as err:
        raise GitException(
            f"Repo {repo_path} is missing the {refs.ONLINE_REMOTE_NAME} remote"
        ) from err
    except (git.exc.GitCommandError, StopIteration) as err:
        raise GitException(
            f"Unable to read the {refs.ONLINE_REMOTE_NAME} remote url of repo "
            f"{repo_path.name}"
        ) from err


def _remove_offline_remote(
    repo: git.Repo, repo_path: Path, quiet: bool = False
) -> None:
    """Remove the push remote, only logging failures when quiet."""
    if refs.OFFLINE_REMOTE_NAME not in [remote.name for remote in repo.remotes]:
        return
    try:
        repo.delete_remote(repo.remote(refs.OFFLINE_REMOTE_NAME))
    except git.exc.GitCommandError as err:
        if not quiet:
            raise GitException(
                f"Unable to remove the {refs.OFFLINE_REMOTE_NAME} remote from repo "
                f"{repo_path.name}: {err.stderr}"
            ) from err
        _LOGGER.warning(
            "Unable to remove the %s remote from repo %s: %s",
            refs.OFFLINE_REMOTE_NAME,
            repo_path.name,
            err.stderr,
        )


class GitMirrorPusher:
    """Pushes prepared repositories to the git server and grants read access."""

    def __init__(
        self,
        git_server: GitServerState,
        config: GitServerConfig | None = None,
        kubectl_flags: list[str] | None = None,
    ) -> None:
        """Initialize GitMirrorPusher."""
        self._git_server = git_server
        self._config = config or GitServerConfig()
        self._kubectl_flags = kubectl_flags

    def _push_auth(self) -> tuple[str, str]:
        """Return the push account, falling back to the local credential store."""
        username = self._git_server.push_username
        password = self._git_server.push_password
        if password or self._git_server.internal_server:
            return username, password
        if cred := credentials.find_auth_for_host(
            self._git_server.address, self._config.credentials_file
        ):
            return cred.username, cred.password
        return username, password

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[str]:
        """Yield the base url of the git server, tunneling to it when internal."""
        if not self._git_server.internal_server:
            yield self._git_server.address.rstrip("/")
            return
        async with Tunnel.for_service(GIT, self._kubectl_flags) as tunnel:
            yield f"http://{tunnel.endpoint}"

    def client(self, base_url: str) -> GitServerClient:
        """Return an API client authenticated as the push account."""
        username, password = self._push_auth()
        return GitServerClient(
            base_url, username, password, timeout=self._config.timeout
        )

    async def create_read_only_user(self) -> None:
        """Create the read-only account used by the cluster to pull repos."""
        async with self.connect() as base_url, self.client(base_url) as client:
            await client.create_read_only_user(
                self._git_server.pull_username, self._git_server.pull_password
            )

    async def push_all(self, repos_path: Path) -> list[str]:
        """Push every repository in the directory, returning the mirror names."""
        paths = sorted(path for path in repos_path.iterdir() if path.is_dir())
        if not paths:
            return []
        pushed = []
        async with self.connect() as base_url, self.client(base_url) as client:
            for path in paths:
                _LOGGER.info("Pushing git repo %s", path.name)
                repo_name = self.push_repo(path, base_url)
                pushed.append(repo_name)
                try:
                    await client.add_read_only_user_to_repo(
                        repo_name, self._git_server.pull_username
                    )
                except GitServerException as err:
                    _LOGGER.warning(
                        "Unable to add the read-only user to the repo %s: %s",
                        repo_name,
                        err,
                    )
        return pushed

    def push_repo(self, repo_path: Path, base_url: str) -> str:
        """Push a single prepared clone to the mirror, returning its mirror name."""
        repo = refs.open_repo(repo_path)
        remote_url = _online_url(repo, repo_path)
        username, password = self._push_auth()
        repo_name = url.transform_url_to_repo_name(remote_url)
        target_url = url.transform_url(base_url, remote_url, username)

        if repo.head.is_detached or repo.head.ref.name != STALE_BRANCH:
            refs.delete_branch_if_exists(repo_path, STALE_BRANCH)
        _remove_offline_remote(repo, repo_path)
        try:
            repo.create_remote(
                refs.OFFLINE_REMOTE_NAME, _with_auth(target_url, username, password)
            )
        except git.exc.GitCommandError as err:
            raise GitException(
                f"Unable to add the {refs.OFFLINE_REMOTE_NAME} remote to repo "
                f"{repo_path.name}: {err.stderr}"
            ) from err

        # The remote url carries credentials and is removed on every path
        try:
            removed = refs.remove_head_copies(repo_path)
            try:
                repo.git.push(refs.OFFLINE_REMOTE_NAME, *PUSH_REFSPECS)
            except git.exc.GitCommandError as err:
                raise GitException(
                    f"Unable to push repo {repo_path.name} to {target_url}: "
                    f"{err.stderr}"
                ) from err
            finally:
                refs.add_refs(repo_path, removed)
        except GitException:
            _remove_offline_remote(repo, repo_path, quiet=True)
            raise
        _remove_offline_remote(repo, repo_path)
        _LOGGER.debug("Pushed %s to %s", repo_path.name, target_url)
        return repo_name
