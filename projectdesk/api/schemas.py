from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SerializerFunctionWrapHandler,
    field_validator,
    model_serializer,
    model_validator,
)

from projectdesk.logging import get_correlation_id
from projectdesk.storage.models import (
    GLOBAL_ROLES,
    PROJECT_ROLES,
    TASK_STATUSES,
    MemberView,
    Note,
    NoteComment,
    Project,
    ProjectMembership,
    ProjectSummary,
    Subtask,
    Task,
    User,
)


def _normalize_unicode(value: str) -> str:
    """Normalize Unicode string using NFKC.

    Zero-width and bidi override characters are stripped first so they cannot be
    used to spoof an otherwise identical email or username.
    """
    zero_width = '\u200b\u200c\u200d\ufeff'
    cleaned = "".join(c for c in value if c not in zero_width)
    bidi_overrides = set(chr(c) for c in range(0x202A, 0x202F))
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(c for c in cleaned if c not in bidi_overrides)
    return unicodedata.normalize("NFKC", cleaned)


_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "token_invalid",
    "token_expired",
    "forbidden",
    "not_found",
    "rate_limited",
    "validation_error",
    "conflict",
    "too_many_sessions",
    "dependency_failure",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error body with a stable, machine-readable code."""

    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


def _request_id() -> str:
    return get_correlation_id() or str(uuid4())


class Envelope(BaseModel):
    """Response envelope shared by every route.

    ``error`` only appears on failures; ``data`` is always present.
    """

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    status_code: int = Field(200, alias="statusCode")
    message: str = "ok"
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)

    @model_serializer(mode="wrap")
    def _drop_error_on_success(self, handler: SerializerFunctionWrapHandler) -> Dict[str, Any]:
        payload = handler(self)
        if self.success:
            payload.pop("error", None)
        return payload


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    if len(normalized) < 3:
        raise ValueError("email address too short")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64:
        raise ValueError("email local part too long")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


_USERNAME_PATTERN = re.compile(r"^[a-z0-9_]+$")


def _validate_username(value: str) -> str:
    """Usernames are stored lowercase: letters, digits and underscores, 3 to 64 chars."""
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) < 3:
        raise ValueError("username must be at least 3 characters")
    if len(normalized) > 64:
        raise ValueError("username must be at most 64 characters")
    if not _USERNAME_PATTERN.match(normalized):
        raise ValueError(
            "username must contain only lowercase letters, numbers, and underscores"
        )
    return normalized


_FULL_NAME_PATTERN = re.compile(r"^[a-zA-Z\s]+$")


def _validate_full_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    if len(stripped) < 2:
        raise ValueError("full name must be at least 2 characters")
    if len(stripped) > 128:
        raise ValueError("full name must be at most 128 characters")
    if not _FULL_NAME_PATTERN.match(stripped):
        raise ValueError("full name can only contain letters and spaces")
    return stripped


def validate_password_strength(value: str) -> str:
    """A strong password mixes lower and upper case, a digit and a symbol."""
    if len(value) < 6:
        raise ValueError("password must be at least 6 characters")
    if len(value) > 128:
        raise ValueError("password must be at most 128 characters")
    if (
        not re.search(r"[a-z]", value)
        or not re.search(r"[A-Z]", value)
        or not re.search(r"\d", value)
        or not re.search(r"[^a-zA-Z0-9]", value)
    ):
        raise ValueError(
            "password must contain an uppercase letter, a lowercase letter, a number and a symbol"
        )
    return value


class RegisterRequest(BaseModel):
    email: str
    username: str
    password: str
    full_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("full_name", "fullName")
    )

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("username")
    @classmethod
    def _validate_register_username(cls, value: str) -> str:
        return _validate_username(value)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return validate_password_strength(value)

    @field_validator("full_name")
    @classmethod
    def _validate_full_name(cls, value: Optional[str]) -> Optional[str]:
        return _validate_full_name(value)


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)


class RefreshTokenRequest(BaseModel):
    """Body for refresh and logout; the cookie takes over when the field is absent."""

    refresh_token: Optional[str] = Field(
        default=None,
        max_length=4096,
        validation_alias=AliasChoices("refreshToken", "refresh_token"),
    )


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=256)


class EmailRequest(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def _validate_request_email(cls, value: str) -> str:
        return _validate_email(value)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=256)
    new_password: str = Field(..., validation_alias=AliasChoices("new_password", "newPassword"))

    @field_validator("new_password")
    @classmethod
    def _validate_new_password(cls, value: str) -> str:
        return validate_password_strength(value)


class ChangePasswordRequest(BaseModel):
    old_password: str = Field(
        ..., min_length=1, max_length=128, validation_alias=AliasChoices("old_password", "oldPassword")
    )
    new_password: str = Field(..., validation_alias=AliasChoices("new_password", "newPassword"))

    @field_validator("new_password")
    @classmethod
    def _validate_new_password(cls, value: str) -> str:
        return validate_password_strength(value)


class UpdateProfileRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("full_name", "fullName")
    )

    @field_validator("username")
    @classmethod
    def _validate_profile_username(cls, value: Optional[str]) -> Optional[str]:
        return _validate_username(value) if value is not None else None

    @field_validator("email")
    @classmethod
    def _validate_profile_email(cls, value: Optional[str]) -> Optional[str]:
        return _validate_email(value) if value is not None else None

    @field_validator("full_name")
    @classmethod
    def _validate_full_name(cls, value: Optional[str]) -> Optional[str]:
        return _validate_full_name(value)

    @model_validator(mode="after")
    def _require_one_field(self):
        if self.username is None and self.email is None and self.full_name is None:
            raise ValueError("provide a new username, email or full name")
        return self


class UpdateUserRoleRequest(BaseModel):
    role: str

    @field_validator("role")
    @classmethod
    def _validate_role(cls, value: str) -> str:
        if value not in GLOBAL_ROLES:
            raise ValueError(f"role must be one of: {', '.join(GLOBAL_ROLES)}")
        return value


class ProjectCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("name cannot be blank")
        return stripped


class ProjectUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        if not stripped:
            raise ValueError("name cannot be blank")
        return stripped

    @model_validator(mode="after")
    def _require_one_field(self):
        if self.name is None and self.description is None:
            raise ValueError("provide a new name or description")
        return self


def _validate_project_role(value: str) -> str:
    if value not in PROJECT_ROLES:
        raise ValueError(f"role must be one of: {', '.join(PROJECT_ROLES)}")
    return value


class AddMemberRequest(BaseModel):
    email: str
    role: str = "member"

    @field_validator("email")
    @classmethod
    def _validate_member_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("role")
    @classmethod
    def _validate_role(cls, value: str) -> str:
        return _validate_project_role(value)


class MemberRoleRequest(BaseModel):
    role: str = Field(..., validation_alias=AliasChoices("role", "newRole"))

    @field_validator("role")
    @classmethod
    def _validate_role(cls, value: str) -> str:
        return _validate_project_role(value)


def _strip_required(value: str, label: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{label} cannot be blank")
    return stripped


def _validate_task_status(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in TASK_STATUSES:
        raise ValueError(f"status must be one of: {', '.join(TASK_STATUSES)}")
    return value


class TaskCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    status: str = "todo"
    assigned_to: Optional[str] = Field(
        default=None, max_length=64, validation_alias=AliasChoices("assigned_to", "assignedTo")
    )

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        return _strip_required(value, "title")

    @field_validator("status")
    @classmethod
    def _validate_status(cls, value: str) -> str:
        return _validate_task_status(value)


class TaskUpdateRequest(BaseModel):
    """Partial task update; an explicit ``assignedTo: null`` unassigns the task."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    status: Optional[str] = None
    assigned_to: Optional[str] = Field(
        default=None, max_length=64, validation_alias=AliasChoices("assigned_to", "assignedTo")
    )

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _strip_required(value, "title")

    @field_validator("status")
    @classmethod
    def _validate_status(cls, value: Optional[str]) -> Optional[str]:
        return _validate_task_status(value)

    @property
    def unassign(self) -> bool:
        return "assigned_to" in self.model_fields_set and self.assigned_to is None

    @model_validator(mode="after")
    def _require_one_field(self):
        if not self.model_fields_set:
            raise ValueError("provide at least one field to update")
        return self


class SubtaskCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        return _strip_required(value, "title")


class SubtaskUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    status: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _strip_required(value, "title")

    @field_validator("status")
    @classmethod
    def _validate_status(cls, value: Optional[str]) -> Optional[str]:
        return _validate_task_status(value)

    @model_validator(mode="after")
    def _require_one_field(self):
        if self.title is None and self.status is None:
            raise ValueError("provide a new title or status")
        return self


class NoteCreateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)

    @field_validator("content")
    @classmethod
    def _strip_content(cls, value: str) -> str:
        return _strip_required(value, "content")


class NoteUpdateRequest(BaseModel):
    content: Optional[str] = Field(default=None, min_length=1, max_length=10000)
    is_pinned: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("is_pinned", "isPinned")
    )

    @field_validator("content")
    @classmethod
    def _strip_content(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _strip_required(value, "content")

    @model_validator(mode="after")
    def _require_one_field(self):
        if self.content is None and self.is_pinned is None:
            raise ValueError("provide new content or a pin state")
        return self


class CommentCreateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)
    parent_id: Optional[str] = Field(
        default=None,
        max_length=64,
        validation_alias=AliasChoices("parent_id", "parentComment"),
    )

    @field_validator("content")
    @classmethod
    def _strip_content(cls, value: str) -> str:
        return _strip_required(value, "content")


class CommentUpdateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)

    @field_validator("content")
    @classmethod
    def _strip_content(cls, value: str) -> str:
        return _strip_required(value, "content")


class UserResponse(BaseModel):
    id: str
    email: str
    username: str
    full_name: Optional[str] = None
    role: str
    is_email_verified: bool
    is_active: bool
    avatar: Optional[dict] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            full_name=user.full_name,
            role=user.role,
            is_email_verified=user.is_email_verified,
            is_active=user.is_active,
            avatar=user.avatar,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class UserListResponse(BaseModel):
    items: List[UserResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class AuthResponse(BaseModel):
    user: UserResponse
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime
    token_type: str = "Bearer"


class ProjectResponse(BaseModel):
    id: str
    name: str
    description: str
    created_by: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_project(cls, project: Project) -> "ProjectResponse":
        return cls(
            id=project.id,
            name=project.name,
            description=project.description,
            created_by=project.created_by,
            created_at=project.created_at,
            updated_at=project.updated_at,
        )


class ProjectSummaryResponse(ProjectResponse):
    role: str
    member_count: int

    @classmethod
    def from_summary(cls, summary: ProjectSummary) -> "ProjectSummaryResponse":
        base = ProjectResponse.from_project(summary.project).model_dump()
        return cls(**base, role=summary.role, member_count=summary.member_count)


class MembershipResponse(BaseModel):
    project_id: str
    user_id: str
    role: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_membership(cls, membership: ProjectMembership) -> "MembershipResponse":
        return cls(
            project_id=membership.project_id,
            user_id=membership.user_id,
            role=membership.role,
            created_at=membership.created_at,
            updated_at=membership.updated_at,
        )


class MemberResponse(BaseModel):
    user_id: str
    email: str
    username: str
    full_name: Optional[str] = None
    role: str
    joined_at: datetime

    @classmethod
    def from_view(cls, view: MemberView) -> "MemberResponse":
        return cls(
            user_id=view.user_id,
            email=view.email,
            username=view.username,
            full_name=view.full_name,
            role=view.role,
            joined_at=view.joined_at,
        )


class TaskResponse(BaseModel):
    id: str
    project_id: str
    title: str
    description: str
    status: str
    assigned_to: Optional[str] = None
    assigned_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            project_id=task.project_id,
            title=task.title,
            description=task.description,
            status=task.status,
            assigned_to=task.assigned_to,
            assigned_by=task.assigned_by,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )


class SubtaskResponse(BaseModel):
    id: str
    task_id: str
    title: str
    status: str
    created_by: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_subtask(cls, subtask: Subtask) -> "SubtaskResponse":
        return cls(
            id=subtask.id,
            task_id=subtask.task_id,
            title=subtask.title,
            status=subtask.status,
            created_by=subtask.created_by,
            created_at=subtask.created_at,
            updated_at=subtask.updated_at,
        )


class TaskDetailResponse(TaskResponse):
    subtasks: List[SubtaskResponse]

    @classmethod
    def from_detail(cls, task: Task, subtasks: List[Subtask]) -> "TaskDetailResponse":
        base = TaskResponse.from_task(task).model_dump()
        return cls(**base, subtasks=[SubtaskResponse.from_subtask(s) for s in subtasks])


class NoteResponse(BaseModel):
    id: str
    project_id: str
    created_by: str
    content: str
    is_pinned: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_note(cls, note: Note) -> "NoteResponse":
        return cls(
            id=note.id,
            project_id=note.project_id,
            created_by=note.created_by,
            content=note.content,
            is_pinned=note.is_pinned,
            created_at=note.created_at,
            updated_at=note.updated_at,
        )


class CommentResponse(BaseModel):
    id: str
    note_id: str
    created_by: str
    content: str
    parent_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_comment(cls, comment: NoteComment) -> "CommentResponse":
        return cls(
            id=comment.id,
            note_id=comment.note_id,
            created_by=comment.created_by,
            content=comment.content,
            parent_id=comment.parent_id,
            created_at=comment.created_at,
            updated_at=comment.updated_at,
        )
