"""Tests for running external programs."""

import pytest

from zarf_deploy.command import Command, run, run_piped
from zarf_deploy.exceptions import CommandException, HelmException, KubectlException


async def test_stdout() -> None:
    """Test the output of the program is returned as text."""
    assert await run(Command(["printf", "zarf-state"])) == "zarf-state"


async def test_stdin() -> None:
    """Test input is written to the program."""
    assert await run(Command(["cat"]), stdin=b"kind: Pod\n") == "kind: Pod\n"


async def test_output_fed_to_next_command() -> None:
    """Test each program reads the output of the one before it."""
    result = await run_piped(
        [
            Command(["printf", "image: nginx"]),
            Command(["sed", "s/nginx/127.0.0.1:31999\\/library\\/nginx/"]),
        ]
    )
    assert result == "image: 127.0.0.1:31999/library/nginx"


async def test_arguments_are_not_shell_expanded() -> None:
    """Test arguments reach the program as is."""
    assert await run(Command(["echo", "$HOME;*"])) == "$HOME;*\n"


async def test_failure_raises_configured_exception() -> None:
    """Test a failing program raises the exception of the command."""
    with pytest.raises(KubectlException, match="return code 3") as exc_info:
        await run(
            Command(
                ["sh", "-c", "echo no such secret >&2; exit 3"],
                exc=KubectlException,
            )
        )
    assert "no such secret" in str(exc_info.value)


async def test_allowed_return_code() -> None:
    """Test a non-zero return code that indicates success."""
    assert await run(Command(["sh", "-c", "exit 1"], retcodes=[1])) == ""


async def test_command_timeout() -> None:
    """Test a command that runs past its timeout raises its exception type."""
    with pytest.raises(HelmException, match="timed out"):
        await run(Command(["sleep", "5"], exc=HelmException, timeout=0.1))


def test_redacted_command() -> None:
    """Test secrets are removed from the rendered command."""
    cmd = Command(
        ["skopeo", "copy", "--dest-creds", "zarf-push:secret"],
        redact=["zarf-push:secret"],
    )
    assert str(cmd) == "skopeo copy --dest-creds ****"
    assert "secret" in cmd.string


async def test_redacted_failure() -> None:
    """Test secrets are removed from the error of a failed command."""
    with pytest.raises(CommandException) as exc_info:
        await run(
            Command(
                ["sh", "-c", 'echo "bad password $0" >&2; exit 2', "hunter2"],
                redact=["hunter2"],
            )
        )
    assert "hunter2" not in str(exc_info.value)
    assert "bad password ****" in str(exc_info.value)
    assert "return code 2" in str(exc_info.value)


async def test_program_not_installed() -> None:
    """Test a program missing from the path raises the command exception."""
    with pytest.raises(HelmException, match="could not be started"):
        await run(Command(["helm-not-installed", "version"], exc=HelmException))
