"""zarf-deploy post-render action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import sys
from typing import cast

import yaml

from zarf_deploy import post_render
from zarf_deploy.exceptions import InputException


class PostRenderAction:
    """zarf-deploy post-render action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "post-render",
                help="Rewrite rendered manifests on stdin to use the mirrors",
                description="""Helm post-renderer that rewrites container images
                    and git urls in the manifests read from stdin to point at the
                    registry and git server in the cluster.""",
            ),
        )
        post_render.add_arguments(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        registry: str,
        add_checksum: bool,
        git_url: str | None,
        git_user: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        try:
            output = post_render.render(
                sys.stdin.read(), registry, add_checksum, git_url, git_user
            )
        except yaml.YAMLError as err:
            raise InputException(
                f"Unable to parse the rendered manifests: {err}"
            ) from err
        sys.stdout.write(output)
