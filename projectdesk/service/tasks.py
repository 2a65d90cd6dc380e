from __future__ import annotations

from typing import List, Optional, Tuple

from projectdesk.logging import get_logger
from projectdesk.service.auth import AuthContext
from projectdesk.service.authorization import (
    SUBTASK_WRITERS,
    TASK_MANAGERS,
    TASK_READERS,
    ProjectAccess,
)
from projectdesk.service.errors import NotFoundError, ValidationError
from projectdesk.storage.models import TASK_STATUSES, Subtask, Task

logger = get_logger(__name__)


def _check_status(status: Optional[str]) -> None:
    if status is not None and status not in TASK_STATUSES:
        raise ValidationError("invalid status", detail={"allowed": list(TASK_STATUSES)})


class TaskService:
    """Tasks and their subtasks, always reached through the owning project.

    Managing tasks takes ``admin`` or ``project_admin``; any member can read
    tasks and add or edit subtasks, but only managers delete subtasks.
    """

    def __init__(self, store, access: Optional[ProjectAccess] = None) -> None:
        self.store = store
        self.access = access or ProjectAccess(store)

    def _task_in_project(self, project_id: str, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        if not task or task.project_id != project_id:
            raise NotFoundError("task not found", detail={"task_id": task_id})
        return task

    def _subtask_in_task(self, task_id: str, subtask_id: str) -> Subtask:
        subtask = self.store.get_subtask(subtask_id)
        if not subtask or subtask.task_id != task_id:
            raise NotFoundError("subtask not found", detail={"subtask_id": subtask_id})
        return subtask

    def _check_assignee(self, project_id: str, user_id: Optional[str]) -> None:
        if user_id is not None and not self.store.get_membership(project_id, user_id):
            raise ValidationError(
                "assignee must be a member of the project", detail={"assigned_to": user_id}
            )

    def list_tasks(self, ctx: AuthContext, project_id: str) -> List[Task]:
        self.access.require(ctx, project_id, TASK_READERS)
        return self.store.list_tasks(project_id)

    def create_task(
        self,
        ctx: AuthContext,
        project_id: str,
        title: str,
        *,
        description: str = "",
        status: str = "todo",
        assigned_to: Optional[str] = None,
    ) -> Task:
        _check_status(status)
        self.access.require(ctx, project_id, TASK_MANAGERS)
        self._check_assignee(project_id, assigned_to)
        task = self.store.create_task(
            project_id,
            title,
            description=description,
            status=status,
            assigned_to=assigned_to,
            assigned_by=ctx.user_id,
        )
        logger.info("task_created", project_id=project_id, task_id=task.id, user_id=ctx.user_id)
        return task

    def get_task(
        self, ctx: AuthContext, project_id: str, task_id: str
    ) -> Tuple[Task, List[Subtask]]:
        self.access.require(ctx, project_id, TASK_READERS)
        task = self._task_in_project(project_id, task_id)
        return task, self.store.list_subtasks(task.id)

    def update_task(
        self,
        ctx: AuthContext,
        project_id: str,
        task_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[str] = None,
        assigned_to: Optional[str] = None,
        unassign: bool = False,
    ) -> Task:
        _check_status(status)
        self.access.require(ctx, project_id, TASK_MANAGERS)
        self._task_in_project(project_id, task_id)
        if not unassign:
            self._check_assignee(project_id, assigned_to)
        task = self.store.update_task(
            task_id,
            title=title,
            description=description,
            status=status,
            assigned_to=assigned_to,
            unassign=unassign,
        )
        if not task:
            raise NotFoundError("task not found", detail={"task_id": task_id})
        return task

    def delete_task(self, ctx: AuthContext, project_id: str, task_id: str) -> None:
        self.access.require(ctx, project_id, TASK_MANAGERS)
        self._task_in_project(project_id, task_id)
        if not self.store.delete_task(task_id):
            raise NotFoundError("task not found", detail={"task_id": task_id})
        logger.info("task_deleted", project_id=project_id, task_id=task_id, user_id=ctx.user_id)

    def create_subtask(
        self, ctx: AuthContext, project_id: str, task_id: str, title: str
    ) -> Subtask:
        self.access.require(ctx, project_id, SUBTASK_WRITERS)
        self._task_in_project(project_id, task_id)
        return self.store.create_subtask(task_id, title, ctx.user_id)

    def update_subtask(
        self,
        ctx: AuthContext,
        project_id: str,
        task_id: str,
        subtask_id: str,
        *,
        title: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Subtask:
        _check_status(status)
        self.access.require(ctx, project_id, SUBTASK_WRITERS)
        self._task_in_project(project_id, task_id)
        self._subtask_in_task(task_id, subtask_id)
        subtask = self.store.update_subtask(subtask_id, title=title, status=status)
        if not subtask:
            raise NotFoundError("subtask not found", detail={"subtask_id": subtask_id})
        return subtask

    def delete_subtask(
        self, ctx: AuthContext, project_id: str, task_id: str, subtask_id: str
    ) -> None:
        self.access.require(ctx, project_id, TASK_MANAGERS)
        self._task_in_project(project_id, task_id)
        self._subtask_in_task(task_id, subtask_id)
        if not self.store.delete_subtask(subtask_id):
            raise NotFoundError("subtask not found", detail={"subtask_id": subtask_id})
