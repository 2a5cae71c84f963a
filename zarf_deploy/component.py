"""Deploy a single component of a package.

Each component is deployed in a fixed order:

- run the `before` scripts
- move files into place on the host
- push images to the registry
- push git repositories to the git server
- start the data injections
- install charts and manifests
- run the `after` scripts

The data injections run concurrently with the rest of the component and are
waited on before the component is finished. Image and repository pushes are
retried, and a push that never succeeds is reported without stopping the
component.

Components of an init package may carry a `ComponentRole` that adds steps
around the normal deployment, such as seeding the cluster state before the
registry exists.
"""

from collections.abc import Awaitable, Callable
import logging
from typing import Any

from . import actions
from .bootstrap import RegistryInjector, seed_state
from .cluster import Cluster, GitServerState, RegistryState, ZarfState
from .config import RetryConfig
from .context import ComponentPaths, DeployContext, trace_context
from .exceptions import ClusterStateException, ComponentException, ZarfException
from .helm import ChartEngine, ChartSource
from .images import ImagePusher
from .injection import DataInjector
from .manifest import (
    INTERNAL_REGISTRY_ROLES,
    ComponentRole,
    DeployedComponent,
    InstalledChart,
    ZarfComponent,
)
from .mirror import GitMirrorPusher
from .post_render import post_render_command
from .release import ReleaseRequest, ReleaseStateMachine, generate_manifest_chart
from .task import get_task_service
from .template import ValueTemplate

__all__ = [
    "ComponentDeployer",
]

_LOGGER = logging.getLogger(__name__)


ImagePusherFactory = Callable[[RegistryState], ImagePusher]
GitPusherFactory = Callable[[GitServerState], GitMirrorPusher]


class ComponentDeployer:
    """Deploys the components of one package into the cluster."""

    def __init__(
        self,
        ctx: DeployContext,
        cluster: Cluster,
        engine: ChartEngine,
        image_pusher: ImagePusherFactory | None = None,
        git_pusher: GitPusherFactory | None = None,
    ) -> None:
        """Initialize ComponentDeployer."""
        self._ctx = ctx
        self._cluster = cluster
        self._config = ctx.options.config
        self._ctx.paths.scratch.mkdir(parents=True, exist_ok=True)
        self._releases = ReleaseStateMachine(
            engine, ctx.paths.scratch, self._config.release
        )
        self._injector = DataInjector(
            cluster, ctx.paths.scratch, self._config.injection
        )
        self._image_pusher = image_pusher or (
            lambda registry: ImagePusher(registry, cluster.flags)
        )
        self._git_pusher = git_pusher or (
            lambda git_server: GitMirrorPusher(
                git_server, self._config.git_server, cluster.flags
            )
        )
        self._template: ValueTemplate | None = None

    def _set_state(self, state: ZarfState) -> None:
        self._ctx.state = state
        self._template = ValueTemplate.from_state(state)

    async def _load_state(self, component: ZarfComponent) -> ZarfState:
        """Load the cluster state once per deployment."""
        if self._ctx.state is not None:
            return self._ctx.state
        _LOGGER.info("Loading the cluster state")
        state = await self._cluster.load_state()
        arch = self._ctx.package.architecture
        if component.images and arch and state.architecture != arch:
            raise ClusterStateException(
                f"This package architecture is {arch}, but this cluster seems "
                f"to be initialized with the {state.architecture} architecture"
            )
        self._set_state(state)
        return state

    async def _retry(
        self,
        description: str,
        func: Callable[[], Awaitable[Any]],
        retry: RetryConfig,
    ) -> bool:
        """Run the push until it succeeds, returning false when it never does."""
        for attempt in range(1, retry.attempts + 1):
            try:
                await func()
            except ZarfException as err:
                if attempt < retry.attempts:
                    _LOGGER.info(
                        "Unable to push %s, retrying in %s seconds: %s",
                        description,
                        retry.delay,
                        err,
                    )
                    await retry.sleep(retry.delay)
                    continue
                _LOGGER.error(
                    "Unable to push %s after %d attempts: %s",
                    description,
                    retry.attempts,
                    err,
                )
                self._ctx.failures.append(f"Unable to push {description}: {err}")
                return False
            return True
        return False

    def skipped(self, component: ZarfComponent) -> bool:
        """Return true if the component should not be deployed at all."""
        return (
            self._ctx.package.is_init_package
            and self._ctx.external_registry
            and component.role in INTERNAL_REGISTRY_ROLES
        )

    async def deploy(self, component: ZarfComponent) -> DeployedComponent:
        """Deploy the component, returning the record of what was installed."""
        add_checksum = True
        injector: RegistryInjector | None = None
        if component.role == ComponentRole.SEED_REGISTRY:
            self._set_state(await seed_state(self._cluster, self._ctx.options))
            injector = RegistryInjector(self._cluster)
            await injector.inject(self._ctx.paths.seed_image)
        elif component.role == ComponentRole.AGENT:
            # The agent can't rewrite the image it runs from
            add_checksum = False
            if self._ctx.external_registry:
                self._set_state(await seed_state(self._cluster, self._ctx.options))

        with trace_context(f"Component '{component.name}'"):
            deployed = await self._deploy(component, add_checksum)

        if injector is not None:
            try:
                await injector.post_seed()
            except ZarfException as err:
                raise ComponentException(
                    f"Unable to seed the Zarf Registry: {err}"
                ) from err
        return deployed

    async def _deploy(
        self, component: ZarfComponent, add_checksum: bool
    ) -> DeployedComponent:
        paths = self._ctx.paths.component(component)
        scripts = component.scripts
        sleep = self._config.image_retry.sleep

        await actions.run_component_scripts(scripts.before, scripts, sleep)
        await actions.process_component_files(
            component.files, paths.files, self._ctx.paths.base
        )

        state: ZarfState | None = None
        if component.uses_cluster:
            state = await self._load_state(component)

        if component.images and state is not None:
            pusher = self._image_pusher(state.registry_info)
            await self._retry(
                f"images for {component.name}",
                lambda: pusher.push(
                    self._ctx.paths.images, component.images, add_checksum
                ),
                self._config.image_retry,
            )

        if component.repos and state is not None:
            git_pusher = self._git_pusher(state.git_server)
            await self._retry(
                f"repos for {component.name}",
                lambda: git_pusher.push_all(paths.repos),
                self._config.repo_retry,
            )

        task_service = get_task_service()
        if component.data_injections:
            _LOGGER.info("Loading data injections")
        for injection in component.data_injections:
            task_service.create_task(
                self._injector.inject(injection, paths.data_injections),
                name=f"inject-{injection.source}",
            )

        deployed = DeployedComponent(name=component.name)
        try:
            if state is not None:
                deployed.installed_charts = await self._install(
                    component, paths, state, add_checksum
                )
                if component.role == ComponentRole.GIT_SERVER:
                    await self._git_pusher(state.git_server).create_read_only_user()
            await actions.run_component_scripts(scripts.after, scripts, sleep)
        finally:
            for err in await task_service.block_till_done():
                self._ctx.failures.append(f"Unable to inject data: {err}")
        return deployed

    async def _install(
        self,
        component: ZarfComponent,
        paths: ComponentPaths,
        state: ZarfState,
        add_checksum: bool,
    ) -> list[InstalledChart]:
        """Install the charts and manifests of the component."""
        post_renderer = post_render_command(
            state.registry_info.address,
            add_checksum,
            state.git_server.address,
            state.git_server.push_username,
        )
        requests: list[ReleaseRequest] = []
        for chart in component.charts:
            values_files = paths.chart_values(chart)
            if self._template is not None:
                for values_file in values_files:
                    await self._template.apply(values_file)
            source = ChartSource(
                archive=paths.chart_archive(chart), values_files=values_files
            )
            requests.append(ReleaseRequest(chart, source, component, post_renderer))
        for manifest in component.manifests:
            chart, source = generate_manifest_chart(
                self._ctx.package.name,
                component,
                manifest,
                paths.manifests,
                self._ctx.start_time,
            )
            requests.append(ReleaseRequest(chart, source, component, post_renderer))

        installed: list[InstalledChart] = []
        for request in requests:
            result = await self._releases.install_or_upgrade(request)
            installed.append(
                InstalledChart(
                    namespace=result.namespace, release_name=result.release_name
                )
            )
            self._ctx.connect_strings.update(result.connect_strings)
        return installed
