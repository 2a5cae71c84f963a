"""Service tracking the concurrent units of work within a component."""

import asyncio
from abc import ABC, abstractmethod
import logging
from typing import Any, Coroutine

_LOGGER = logging.getLogger(__name__)

__all__: list[str] = []


class TaskService(ABC):
    """Tracks tasks and provides a join barrier over them."""

    @abstractmethod
    def create_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new task.

        Args:
            coro: The coroutine to run as a task
            name: Optional name used when reporting failures

        Returns:
            The created task
        """

    @abstractmethod
    async def block_till_done(self) -> list[BaseException]:
        """Wait for every tracked task to complete.

        Returns the errors raised by tasks that failed. Tasks created while
        waiting are also waited on.
        """

    @abstractmethod
    def get_num_active_tasks(self) -> int:
        """Get the number of tasks that have not completed."""


class TaskServiceImpl(TaskService):
    """Default TaskService backed by asyncio tasks."""

    def __init__(self) -> None:
        """Initialize the task service."""
        self._active_tasks: set[asyncio.Task[Any]] = set()

    def create_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new task."""
        task = asyncio.create_task(coro, name=name)
        self._active_tasks.add(task)
        return task

    async def block_till_done(self) -> list[BaseException]:
        """Wait for every tracked task to complete."""
        errors: list[BaseException] = []
        while self._active_tasks:
            active_tasks = list(self._active_tasks)
            _LOGGER.debug("Waiting for %d tasks to complete", len(active_tasks))
            results = await asyncio.gather(*active_tasks, return_exceptions=True)
            self._active_tasks.difference_update(active_tasks)
            for task, result in zip(active_tasks, results):
                if isinstance(result, asyncio.CancelledError):
                    continue
                if isinstance(result, BaseException):
                    _LOGGER.error("Task %s failed: %s", task.get_name(), result)
                    errors.append(result)
        return errors

    def get_num_active_tasks(self) -> int:
        """Get the number of tasks that have not completed."""
        return sum(1 for task in self._active_tasks if not task.done())
