from __future__ import annotations

from typing import Iterable, Optional

from projectdesk.logging import get_logger
from projectdesk.service.auth import AuthContext
from projectdesk.service.errors import ForbiddenError, NotFoundError
from projectdesk.storage.models import Project

logger = get_logger(__name__)

# Allow-lists; there is no implied ordering between roles
ADMIN_ONLY = frozenset({"admin"})
PROJECT_READERS = frozenset({"admin", "project_admin", "member"})
PROJECT_EDITORS = frozenset({"admin", "project_admin"})
PROJECT_OWNERS = ADMIN_ONLY

# Nested resources
TASK_READERS = PROJECT_READERS
TASK_MANAGERS = PROJECT_EDITORS
SUBTASK_WRITERS = PROJECT_READERS
NOTE_READERS = PROJECT_READERS
NOTE_MANAGERS = ADMIN_ONLY
COMMENT_WRITERS = PROJECT_READERS


def require_roles(role: Optional[str], allowed: Iterable[str]) -> None:
    if role not in frozenset(allowed):
        raise ForbiddenError("insufficient role for this operation", detail={"role": role})


class ProjectAccess:
    """Resolves a caller's role inside a project and checks it against an allow-list.

    A global ``admin`` passes every project check without needing a membership.
    """

    def __init__(self, store) -> None:
        self.store = store

    def resolve_role(self, ctx: AuthContext, project: Project) -> Optional[str]:
        if ctx.role == "admin":
            return "admin"
        membership = self.store.get_membership(project.id, ctx.user_id)
        return membership.role if membership else None

    def require(self, ctx: AuthContext, project_id: str, allowed: Iterable[str]) -> Project:
        project = self.store.get_project(project_id)
        if not project:
            raise NotFoundError("project not found", detail={"project_id": project_id})
        role = self.resolve_role(ctx, project)
        if role is None:
            logger.info("project_access_denied", user_id=ctx.user_id, project_id=project_id)
            raise ForbiddenError("not a member of this project")
        if role not in frozenset(allowed):
            logger.info(
                "project_role_insufficient",
                user_id=ctx.user_id,
                project_id=project_id,
                role=role,
            )
            raise ForbiddenError(
                "insufficient project role for this operation", detail={"role": role}
            )
        return project
