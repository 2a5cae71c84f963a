"""Actions a component runs on the deploying host.

Scripts run before and after the rest of the component is deployed. Files
are moved from the package into place on the host, optionally validated
against a checksum and linked to from other locations.
"""

import asyncio
import hashlib
import logging
import os
from pathlib import Path
import shutil
import time

import aiofiles

from . import command
from .config import SleepFunc
from .exceptions import InputException, ScriptException
from .manifest import ZarfComponentScripts, ZarfFile

__all__ = [
    "run_component_scripts",
    "process_component_files",
    "sha256sum",
]

_LOGGER = logging.getLogger(__name__)

SHELL = "sh"
TEMP_TOKEN = "###ZARF_TEMP###"
DEFAULT_SCRIPT_TIMEOUT = 300
SCRIPT_RETRY_DELAY = 1.0
_CHUNK_SIZE = 1024 * 1024


async def _run_script(script: str, timeout: float, show_output: bool) -> None:
    out = await command.run(
        command.Command([SHELL, "-c", script], exc=ScriptException, timeout=timeout)
    )
    if show_output and out:
        _LOGGER.info("%s", out.rstrip())


async def run_component_scripts(
    scripts: list[str],
    options: ZarfComponentScripts,
    sleep: SleepFunc = asyncio.sleep,
) -> None:
    """Run each script in order, failing on the first script that fails.

    When `retry` is set a failing script is run again until it succeeds or
    the timeout runs out.
    """
    timeout = float(options.timeout_seconds or DEFAULT_SCRIPT_TIMEOUT)
    for script in scripts:
        _LOGGER.info("Running script: %s", script)
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            try:
                await _run_script(script, max(remaining, 0.1), options.show_output)
            except ScriptException as err:
                if not options.retry:
                    raise
                if time.monotonic() + SCRIPT_RETRY_DELAY >= deadline:
                    raise ScriptException(
                        f"Script '{script}' did not succeed within "
                        f"{timeout:.0f}s: {err}"
                    ) from err
                _LOGGER.debug("Script '%s' failed, retrying: %s", script, err)
                await sleep(SCRIPT_RETRY_DELAY)
                continue
            break


async def sha256sum(path: Path) -> str:
    """Return the hex encoded SHA-256 checksum of a file."""
    digest = hashlib.sha256()
    async with aiofiles.open(path, mode="rb") as source:
        while chunk := await source.read(_CHUNK_SIZE):
            digest.update(chunk)
    return digest.hexdigest()


def _remove(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def _copy(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    if source.is_dir():
        shutil.copytree(source, target, dirs_exist_ok=True)
    else:
        shutil.copy2(source, target)


async def process_component_files(
    files: list[ZarfFile], source_dir: Path, temp_base: Path
) -> None:
    """Move the component files into place on the host.

    The staged copy of each file is named after its index in the component
    and is deleted once the file is in place.
    """
    if files:
        _LOGGER.info("Copying %d files", len(files))
    for index, file in enumerate(files):
        source = source_dir / str(index)
        if not source.exists():
            raise InputException(f"Unable to find the staged file for {file.target}")
        if file.shasum:
            _LOGGER.debug("Validating SHASUM for %s", file.target)
            if (actual := await sha256sum(source)) != file.shasum:
                raise InputException(
                    f"Shasum mismatch for {file.target}: expected {file.shasum}, "
                    f"got {actual}"
                )
        target = Path(file.target.replace(TEMP_TOKEN, str(temp_base), 1))
        _LOGGER.debug("Saving %s", target)
        try:
            _copy(source, target)
            if file.executable:
                target.chmod(0o700)
            for link in file.symlinks:
                _LOGGER.debug("Adding symlink %s->%s", link, target)
                link_path = Path(link)
                _remove(link_path)
                link_path.parent.mkdir(parents=True, exist_ok=True)
                os.symlink(target, link_path)
        except OSError as err:
            raise InputException(
                f"Unable to place the contents of {file.target}: {err}"
            ) from err
        _remove(source)
