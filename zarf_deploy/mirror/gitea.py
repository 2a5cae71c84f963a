"""Client for the administrative API of the internal git server.

Every request authenticates as the privileged push account and uses a bounded
timeout. A response outside the 2xx range raises `GitServerException` with the
response body so the cause is visible to the operator.
"""

import logging
from types import TracebackType
from typing import Any

import httpx

from zarf_deploy.exceptions import GitServerException

__all__ = [
    "GitServerClient",
]

_LOGGER = logging.getLogger(__name__)

READ_ONLY_USER_EMAIL = "zarf-reader@localhost.local"


class GitServerClient:
    """Issues git server API requests as the push account."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize GitServerClient."""
        self._base_url = base_url.rstrip("/")
        self._username = username
        self._client = httpx.AsyncClient(
            auth=httpx.BasicAuth(username, password),
            headers={
                "accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying http client."""
        await self._client.aclose()

    async def __aenter__(self) -> "GitServerClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def request(self, method: str, path: str, body: dict[str, Any]) -> bytes:
        """Perform a request, raising on any non-2xx response."""
        url = f"{self._base_url}{path}"
        _LOGGER.debug("Performing %s http request to %s", method, url)
        try:
            response = await self._client.request(method, url, json=body)
        except httpx.HTTPError as err:
            raise GitServerException(f"{method} {url} failed: {err}") from err
        _LOGGER.debug("%s %s:\n%s", method, url, response.text)
        if not 200 <= response.status_code < 300:
            raise GitServerException(
                f"Got status code of {response.status_code} during {method} {url} "
                f"with body of: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        return response.content

    async def create_read_only_user(self, username: str, password: str) -> None:
        """Create the read-only account and stop it from creating repos or orgs."""
        await self.request(
            "POST",
            "/api/v1/admin/users",
            {
                "username": username,
                "password": password,
                "email": READ_ONLY_USER_EMAIL,
                "must_change_password": False,
            },
        )
        await self.request(
            "PATCH",
            f"/api/v1/admin/users/{username}",
            {
                "login_name": username,
                "max_repo_creation": 0,
                "allow_create_organization": False,
            },
        )

    async def add_read_only_user_to_repo(self, repo: str, username: str) -> None:
        """Grant the read-only account access to a repo of the push account."""
        await self.request(
            "PUT",
            f"/api/v1/repos/{self._username}/{repo}/collaborators/{username}",
            {"permission": "read"},
        )
