"""zarf-deploy deploy action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
import sys
from typing import cast

from zarf_deploy.cluster import Cluster
from zarf_deploy.config import DeployConfig, DeployOptions, RegistryInfo
from zarf_deploy.deploy import PackageDeployer
from zarf_deploy.helm import Helm
from zarf_deploy.manifest import ZarfPackage

_LOGGER = logging.getLogger(__name__)


def prompt_confirm(package: ZarfPackage, sbom_files: list[pathlib.Path]) -> bool:
    """Show the package and ask the operator to confirm the deployment."""
    print(package.yaml())
    if sbom_files:
        print(
            f"This package has {len(sbom_files)} images with software "
            "bill-of-materials (SBOM) included."
        )
    if not sys.stdin.isatty():
        _LOGGER.warning("No terminal to confirm the deployment, pass --confirm")
        return False
    answer = input("Deploy this Zarf package? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


class DeployAction:
    """zarf-deploy deploy action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "deploy",
                help="Deploy a package archive into the cluster",
                description="""Extracts the package archive and deploys the
                    required and requested components into the current cluster.""",
            ),
        )
        args.add_argument(
            "package", type=pathlib.Path, help="Path to the package archive"
        )
        args.add_argument(
            "--components",
            type=str,
            default="",
            help="Comma separated list of optional components to deploy",
        )
        args.add_argument(
            "--confirm",
            action="store_true",
            help="Deploy without asking for confirmation",
        )
        args.add_argument(
            "--registry-url",
            type=str,
            default="",
            help="External registry to use instead of the internal one (init only)",
        )
        args.add_argument("--registry-push-username", type=str, default="")
        args.add_argument("--registry-push-password", type=str, default="")
        args.add_argument("--registry-pull-username", type=str, default="")
        args.add_argument("--registry-pull-password", type=str, default="")
        args.add_argument(
            "--git-url",
            type=str,
            default="",
            help="External git server to use instead of the internal one (init only)",
        )
        args.add_argument(
            "--storage-class",
            type=str,
            default="",
            help="Storage class recorded in the cluster state (init only)",
        )
        args.add_argument(
            "--sbom-dir",
            type=pathlib.Path,
            default=pathlib.Path("zarf-sbom"),
            help="Directory where SBOM viewer files are staged",
        )
        args.add_argument("--kubeconfig", type=str, default=None)
        args.add_argument("--context", type=str, default=None)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        package: pathlib.Path,
        components: str,
        confirm: bool,
        registry_url: str,
        registry_push_username: str,
        registry_push_password: str,
        registry_pull_username: str,
        registry_pull_password: str,
        git_url: str,
        storage_class: str,
        sbom_dir: pathlib.Path,
        kubeconfig: str | None,
        context: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        options = DeployOptions(
            package_path=package,
            components=components,
            confirm=confirm,
            registry_info=RegistryInfo(
                address=registry_url,
                push_username=registry_push_username,
                push_password=registry_push_password,
                pull_username=registry_pull_username,
                pull_password=registry_pull_password,
            ),
            git_server_address=git_url,
            storage_class=storage_class,
            config=DeployConfig(sbom_dir=sbom_dir),
        )
        deployer = PackageDeployer(
            cluster=Cluster(kubeconfig, context),
            engine=Helm(kubeconfig, context),
            confirm=prompt_confirm,
        )
        await deployer.deploy(options)
