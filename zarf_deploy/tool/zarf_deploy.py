"""Command line tool for deploying packages into a disconnected cluster."""

import argparse
import asyncio
import logging
import sys
import traceback

from zarf_deploy.exceptions import ZarfException
from . import deploy, post_render

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for deploying packages into a cluster.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    deploy.DeployAction.register(subparsers)
    post_render.PostRenderAction.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """zarf-deploy command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except ZarfException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("zarf-deploy error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
