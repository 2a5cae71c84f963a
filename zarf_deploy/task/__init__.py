"""Task fan-out for zarf-deploy.

Data injections run concurrently as tasks tracked by a `TaskService` and the
component engine waits on `block_till_done` before the component finishes.
"""

from .context import task_service_context, get_task_service
from .service import TaskService

__all__ = ["get_task_service", "task_service_context", "TaskService"]
