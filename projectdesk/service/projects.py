from __future__ import annotations

from typing import List, Optional

from projectdesk.logging import get_logger
from projectdesk.service.auth import AuthContext
from projectdesk.service.authorization import (
    PROJECT_EDITORS,
    PROJECT_OWNERS,
    PROJECT_READERS,
    ProjectAccess,
)
from projectdesk.service.errors import NotFoundError, ValidationError
from projectdesk.storage.models import (
    PROJECT_ROLES,
    MemberView,
    Project,
    ProjectMembership,
    ProjectSummary,
)

logger = get_logger(__name__)


def _check_role(role: str) -> None:
    if role not in PROJECT_ROLES:
        raise ValidationError("invalid role", detail={"allowed": list(PROJECT_ROLES)})


class ProjectService:
    def __init__(self, store, access: Optional[ProjectAccess] = None) -> None:
        self.store = store
        self.access = access or ProjectAccess(store)

    def create_project(self, ctx: AuthContext, name: str, description: str = "") -> Project:
        project = self.store.create_project(name, ctx.user_id, description=description)
        logger.info("project_created", project_id=project.id, user_id=ctx.user_id)
        return project

    def list_projects(self, ctx: AuthContext) -> List[ProjectSummary]:
        return self.store.list_projects_for_user(ctx.user_id)

    def get_project(self, ctx: AuthContext, project_id: str) -> Project:
        return self.access.require(ctx, project_id, PROJECT_READERS)

    def update_project(
        self,
        ctx: AuthContext,
        project_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Project:
        self.access.require(ctx, project_id, PROJECT_EDITORS)
        project = self.store.update_project(project_id, name=name, description=description)
        if not project:
            raise NotFoundError("project not found", detail={"project_id": project_id})
        return project

    def delete_project(self, ctx: AuthContext, project_id: str) -> Project:
        project = self.access.require(ctx, project_id, PROJECT_OWNERS)
        if not self.store.delete_project(project_id):
            raise NotFoundError("project not found", detail={"project_id": project_id})
        logger.info("project_deleted", project_id=project_id, user_id=ctx.user_id)
        return project

    def add_member(
        self, ctx: AuthContext, project_id: str, email: str, role: str = "member"
    ) -> ProjectMembership:
        """Add the account registered under ``email``, or change its role if already a member."""
        _check_role(role)
        self.access.require(ctx, project_id, PROJECT_OWNERS)
        user = self.store.get_user_by_email(email)
        if not user:
            raise NotFoundError("user not found")
        membership = self.store.upsert_member(project_id, user.id, role)
        logger.info(
            "project_member_added", project_id=project_id, member_id=user.id, role=role
        )
        return membership

    def list_members(self, ctx: AuthContext, project_id: str) -> List[MemberView]:
        self.access.require(ctx, project_id, PROJECT_READERS)
        return self.store.list_members(project_id)

    def update_member_role(
        self, ctx: AuthContext, project_id: str, user_id: str, role: str
    ) -> ProjectMembership:
        _check_role(role)
        self.access.require(ctx, project_id, PROJECT_OWNERS)
        membership = self.store.update_member_role(project_id, user_id, role)
        if not membership:
            raise NotFoundError("project member not found")
        logger.info(
            "project_member_role_changed", project_id=project_id, member_id=user_id, role=role
        )
        return membership

    def remove_member(self, ctx: AuthContext, project_id: str, user_id: str) -> None:
        self.access.require(ctx, project_id, PROJECT_OWNERS)
        if not self.store.remove_member(project_id, user_id):
            raise NotFoundError("project member not found")
        logger.info("project_member_removed", project_id=project_id, member_id=user_id)
