"""Exceptions related to zarf-deploy."""

__all__ = [
    "ZarfException",
    "InputException",
    "CommandException",
    "HelmException",
    "KubectlException",
    "ScriptException",
    "ReleaseNotFoundError",
    "ReleaseFailedError",
    "GitException",
    "InvalidGitUrlError",
    "GitServerException",
    "ClusterStateException",
    "PreflightException",
    "ComponentException",
    "DeploymentException",
]


class ZarfException(Exception):
    """Generic base exception used for this library."""


class InputException(ZarfException):
    """Raised when the input package or values are not formatted as expected."""


class CommandException(ZarfException):
    """Raised when there is a failure running a subcommand."""


class HelmException(CommandException):
    """Raised when there is a failure running a helm command."""


class KubectlException(CommandException):
    """Raised when there is a failure running a kubectl command."""


class ScriptException(CommandException):
    """Raised when a component script fails."""


class ReleaseNotFoundError(HelmException):
    """Raised when a helm release has no history in the cluster."""


class ReleaseFailedError(ZarfException):
    """Raised when a release could not be installed or upgraded."""

    def __init__(self, release_name: str, message: str | None = None) -> None:
        super().__init__(
            f"Unable to complete helm chart install/upgrade for {release_name}: "
            f"{message or 'Unknown error'}"
        )
        self.release_name = release_name
        self.message = message


class GitException(ZarfException):
    """Raised when a git operation on a local repository fails."""


class InvalidGitUrlError(GitException):
    """Raised when a url does not look like a git repository url."""


class GitServerException(ZarfException):
    """Raised when the git server API returns an error."""

    def __init__(
        self, message: str, status_code: int | None = None, body: str | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ClusterStateException(ZarfException):
    """Raised when the cluster state is missing or does not match the package."""


class PreflightException(ZarfException):
    """Raised when the deploying host is not ready for an init package."""


class ComponentException(ZarfException):
    """Raised when a component could not finish and no later component should run."""


class DeploymentException(ZarfException):
    """Raised when one or more components failed to deploy."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(
            "Unable to deploy all the components of this package: "
            + "; ".join(errors)
        )
        self.errors = errors
