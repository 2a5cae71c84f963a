"""Test helpers for zarf-deploy tools."""

import sys

from zarf_deploy.command import Command, run

ZARF_DEPLOY_CMD = [sys.executable, "-m", "zarf_deploy"]


async def run_command(args: list[str], stdin: bytes | None = None) -> str:
    return await run(Command(ZARF_DEPLOY_CMD + args), stdin=stdin)
