"""The task service of the deployment running in the current context."""

import contextlib
import contextvars
import logging
from collections.abc import Generator

from .service import TaskService, TaskServiceImpl

__all__: list[str] = []

_LOGGER = logging.getLogger(__name__)

_CURRENT: contextvars.ContextVar[TaskService | None] = contextvars.ContextVar(
    "zarf_task_service", default=None
)


def get_task_service() -> TaskService:
    """Return the service of the enclosing deployment.

    Code running outside of `task_service_context`, such as a component
    deployed directly through the library, gets a service bound to the
    current context on first use.
    """
    if (current := _CURRENT.get()) is not None:
        return current
    _LOGGER.debug("No deployment scope, binding a task service to this context")
    current = TaskServiceImpl()
    _CURRENT.set(current)
    return current


@contextlib.contextmanager
def task_service_context(
    service: TaskService | None = None,
) -> Generator[TaskService, None, None]:
    """Scope a task service to one deployment, restoring the previous one after."""
    service = service or TaskServiceImpl()
    token = _CURRENT.set(service)
    try:
        yield service
    finally:
        _CURRENT.reset(token)
