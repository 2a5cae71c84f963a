"""Substitution of cluster state values into chart value files.

Chart value files in a package refer to cluster specific values with
`###ZARF_<NAME>###` tokens, for example the address of the mirror registry
or the git pull credentials. The tokens are replaced in place once the
cluster state is known and before the chart is installed.
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path

import aiofiles

from .cluster import ZarfState
from .exceptions import InputException

__all__ = [
    "ValueTemplate",
]

_LOGGER = logging.getLogger(__name__)

TOKEN_FORMAT = "###ZARF_{}###"


@dataclass
class ValueTemplate:
    """Token values derived from the cluster state."""

    values: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_state(cls, state: ZarfState) -> "ValueTemplate":
        """Build the template values from the cluster state."""
        registry = state.registry_info
        git = state.git_server
        return cls(
            values={
                "REGISTRY": registry.address,
                "NODEPORT": str(registry.node_port),
                "STORAGE_CLASS": state.storage_class,
                "GIT_PUSH": git.push_username,
                "GIT_AUTH_PUSH": git.push_password,
                "GIT_PULL": git.pull_username,
                "GIT_AUTH_PULL": git.pull_password,
                "REGISTRY_AUTH_PUSH": registry.push_password,
                "REGISTRY_AUTH_PULL": registry.pull_password,
                "LOGGING_AUTH": state.logging_secret,
            }
        )

    def render(self, text: str) -> str:
        """Return the text with every known token replaced."""
        for name, value in self.values.items():
            text = text.replace(TOKEN_FORMAT.format(name), value)
        return text

    async def apply(self, path: Path) -> None:
        """Replace the tokens in the file in place."""
        _LOGGER.debug("Applying value template to %s", path)
        try:
            async with aiofiles.open(path) as values_file:
                content = await values_file.read()
            rendered = self.render(content)
            if rendered == content:
                return
            async with aiofiles.open(path, mode="w") as values_file:
                await values_file.write(rendered)
        except OSError as err:
            raise InputException(
                f"Unable to template values file {path}: {err}"
            ) from err
