from __future__ import annotations

import math
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, Request, Response

from projectdesk.api.schemas import (
    AddMemberRequest,
    AuthResponse,
    ChangePasswordRequest,
    CommentCreateRequest,
    CommentResponse,
    CommentUpdateRequest,
    EmailRequest,
    Envelope,
    LoginRequest,
    MemberResponse,
    MemberRoleRequest,
    MembershipResponse,
    NoteCreateRequest,
    NoteResponse,
    NoteUpdateRequest,
    ProjectCreateRequest,
    ProjectResponse,
    ProjectSummaryResponse,
    ProjectUpdateRequest,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SubtaskCreateRequest,
    SubtaskResponse,
    SubtaskUpdateRequest,
    TaskCreateRequest,
    TaskDetailResponse,
    TaskResponse,
    TaskUpdateRequest,
    UpdateProfileRequest,
    UpdateUserRoleRequest,
    UserListResponse,
    UserResponse,
    VerifyEmailRequest,
)
from projectdesk.config import Settings, get_settings
from projectdesk.logging import email_hash, get_logger
from projectdesk.service.auth import AuthContext, LoginResult
from projectdesk.service.authorization import ADMIN_ONLY, require_roles
from projectdesk.service.errors import RateLimitedError
from projectdesk.service.runtime import check_rate_limit, get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "success": False,
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


class RateLimitInfo:
    """Rate limit state for adding response headers."""

    __slots__ = ("limit", "remaining", "reset_seconds")

    def __init__(self, limit: int, remaining: int, reset_seconds: int):
        self.limit = limit
        self.remaining = remaining
        self.reset_seconds = reset_seconds

    def apply_headers(self, response: Response) -> None:
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.remaining))
        response.headers["X-RateLimit-Reset"] = str(self.reset_seconds)


async def _enforce_rate_limit(
    runtime, key: str, limit: int, window_seconds: int, *, response: Optional[Response] = None
) -> RateLimitInfo:
    """Enforce rate limit and optionally apply headers to response.

    Args:
        runtime: Application runtime context
        key: Rate limit key (e.g., "login:{email_hash}")
        limit: Maximum requests allowed in window
        window_seconds: Rate limit window in seconds
        response: Optional response to add rate limit headers to

    Raises:
        RateLimitedError: when the window is used up; carries ``retry_after``.
    """
    allowed, remaining, reset_seconds = await check_rate_limit(
        runtime, key, limit, window_seconds
    )
    info = RateLimitInfo(limit, remaining, reset_seconds)

    if response is not None:
        info.apply_headers(response)

    if not allowed:
        logger.warning("rate_limit_exceeded", key_prefix=key.split(":", 1)[0], limit=limit)
        raise RateLimitedError(
            "too many requests, please try again later",
            detail={"retry_after": max(1, reset_seconds)},
        )

    return info


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> AuthContext:
    """Resolve the caller from the access-token cookie or a bearer header."""
    token = request.cookies.get(ACCESS_COOKIE) or _bearer_token(authorization)
    return get_runtime().auth.authenticate(token)


async def get_admin_user(ctx: AuthContext = Depends(get_current_user)) -> AuthContext:
    require_roles(ctx.role, ADMIN_ONLY)
    return ctx


def _cookie_kwargs(settings: Settings) -> dict:
    return {
        "httponly": True,
        "secure": settings.cookie_secure,
        "samesite": "strict",
        "path": "/",
    }


def _apply_session_cookies(response: Response, result: LoginResult, settings: Settings) -> None:
    max_age = settings.refresh_token_ttl_minutes * 60
    response.set_cookie(
        ACCESS_COOKIE, result.tokens.access_token, max_age=max_age, **_cookie_kwargs(settings)
    )
    response.set_cookie(
        REFRESH_COOKIE, result.tokens.refresh_token, max_age=max_age, **_cookie_kwargs(settings)
    )


def _clear_session_cookies(response: Response, settings: Settings) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            name,
            path="/",
            secure=settings.cookie_secure,
            httponly=True,
            samesite="strict",
        )


def _presented_refresh_token(request: Request, body: Optional[RefreshTokenRequest]) -> Optional[str]:
    if body is not None and body.refresh_token:
        return body.refresh_token
    return request.cookies.get(REFRESH_COOKIE)


def _auth_payload(result: LoginResult) -> AuthResponse:
    return AuthResponse(
        user=UserResponse.from_user(result.user),
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        refresh_expires_at=result.tokens.refresh_expires_at,
    )


@router.get("/healthcheck", response_model=Envelope, tags=["health"])
async def healthcheck():
    return Envelope(message="Server is running", data={"status": "ok"})


# ---------------------------------------------------------------------------
# auth
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest, response: Response):
    """Create a new account and send the email verification link.

    The account is removed again when the verification email cannot be sent,
    so a failed registration can simply be retried.

    Raises:
        403: If registration is disabled in settings
        409: If the email or username is taken
        429: If rate limit exceeded for this email
    """
    settings = get_settings()
    if not settings.allow_registration:
        raise _http_error("forbidden", "registration disabled", status_code=403)
    runtime = get_runtime()
    await _enforce_rate_limit(
        runtime,
        f"register:{email_hash(body.email)}",
        runtime.settings.register_rate_limit_per_minute,
        60,
        response=response,
    )
    user = await runtime.auth.register(
        body.email, body.username, body.password, full_name=body.full_name
    )
    return Envelope(
        status_code=201,
        message="User registered successfully and verification email has been sent",
        data={"user": UserResponse.from_user(user)},
    )


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, response: Response):
    """Authenticate with email and password.

    Raises:
        401: If credentials are invalid or the account is deactivated
        409: If the account already holds the maximum number of sessions
        429: If rate limit exceeded for this email
    """
    runtime = get_runtime()
    await _enforce_rate_limit(
        runtime,
        f"login:{email_hash(body.email)}",
        runtime.settings.login_rate_limit_per_minute,
        60,
        response=response,
    )
    result = runtime.auth.login(body.email, body.password)
    _apply_session_cookies(response, result, runtime.settings)
    return Envelope(message="User logged in successfully", data=_auth_payload(result))


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenRequest] = None,
    ctx: AuthContext = Depends(get_current_user),
):
    runtime = get_runtime()
    runtime.auth.logout(ctx, _presented_refresh_token(request, body))
    _clear_session_cookies(response, runtime.settings)
    return Envelope(message="User logged out", data={})


@router.post("/auth/logout-all", response_model=Envelope, tags=["auth"])
async def logout_all(response: Response, ctx: AuthContext = Depends(get_current_user)):
    runtime = get_runtime()
    revoked = runtime.auth.logout_all(ctx)
    _clear_session_cookies(response, runtime.settings)
    return Envelope(message="Logged out from all sessions", data={"sessions_revoked": revoked})


@router.post("/auth/refresh-token", response_model=Envelope, tags=["auth"])
async def refresh_token(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenRequest] = None,
):
    """Rotate the presented refresh token; a token can be rotated only once."""
    runtime = get_runtime()
    result = runtime.auth.refresh(_presented_refresh_token(request, body))
    _apply_session_cookies(response, result, runtime.settings)
    return Envelope(message="Access token refreshed", data=_auth_payload(result))


@router.post("/auth/verify-email", response_model=Envelope, tags=["auth"])
async def verify_email(body: VerifyEmailRequest):
    user = get_runtime().auth.verify_email(body.token)
    return Envelope(message="Email is verified", data={"is_email_verified": user.is_email_verified})


@router.get("/auth/verify-email", response_model=Envelope, tags=["auth"])
async def verify_email_link(token: str = Query(..., min_length=1, max_length=256)):
    """Target of the link in the verification email."""
    user = get_runtime().auth.verify_email(token)
    return Envelope(message="Email is verified", data={"is_email_verified": user.is_email_verified})


@router.post("/auth/resend-verification", response_model=Envelope, tags=["auth"])
async def resend_verification(body: EmailRequest):
    await get_runtime().auth.resend_verification(body.email)
    return Envelope(message="Verification email has been sent", data={})


@router.post("/auth/forgot-password", response_model=Envelope, tags=["auth"])
async def forgot_password(body: EmailRequest, response: Response):
    runtime = get_runtime()
    await _enforce_rate_limit(
        runtime,
        f"forgot:{email_hash(body.email)}",
        runtime.settings.forgot_password_rate_limit,
        runtime.settings.forgot_password_rate_window_seconds,
        response=response,
    )
    await runtime.auth.forgot_password(body.email)
    # Same answer whether or not the account exists
    return Envelope(
        message="If an account exists for that email, a password reset link has been sent",
        data={},
    )


@router.post("/auth/reset-password", response_model=Envelope, tags=["auth"])
async def reset_password(body: ResetPasswordRequest):
    get_runtime().auth.reset_password(body.token, body.new_password)
    return Envelope(message="Password reset successfully", data={})


@router.post("/auth/change-password", response_model=Envelope, tags=["auth"])
async def change_password(
    body: ChangePasswordRequest,
    response: Response,
    ctx: AuthContext = Depends(get_current_user),
):
    """Replace the password; every session of the account is revoked."""
    runtime = get_runtime()
    runtime.auth.change_password(ctx, body.old_password, body.new_password)
    _clear_session_cookies(response, runtime.settings)
    return Envelope(message="Password changed successfully", data={})


@router.get("/auth/me", response_model=Envelope, tags=["auth"])
async def get_me(ctx: AuthContext = Depends(get_current_user)):
    user = get_runtime().auth.get_user(ctx.user_id)
    return Envelope(message="Current user fetched successfully", data=UserResponse.from_user(user))


@router.put("/auth/me", response_model=Envelope, tags=["auth"])
async def update_me(body: UpdateProfileRequest, ctx: AuthContext = Depends(get_current_user)):
    user = await get_runtime().auth.update_profile(
        ctx, username=body.username, email=body.email, full_name=body.full_name
    )
    return Envelope(message="Profile updated successfully", data=UserResponse.from_user(user))


@router.delete("/auth/me", response_model=Envelope, tags=["auth"])
async def delete_me(response: Response, ctx: AuthContext = Depends(get_current_user)):
    runtime = get_runtime()
    runtime.auth.delete_account(ctx.user_id)
    _clear_session_cookies(response, runtime.settings)
    return Envelope(message="Account deleted", data={})


@router.put("/auth/me/deactivate", response_model=Envelope, tags=["auth"])
async def deactivate_me(response: Response, ctx: AuthContext = Depends(get_current_user)):
    runtime = get_runtime()
    runtime.auth.deactivate(ctx)
    _clear_session_cookies(response, runtime.settings)
    return Envelope(message="Account deactivated", data={})


# ---------------------------------------------------------------------------
# admin
# ---------------------------------------------------------------------------


@router.get("/admin/users", response_model=Envelope, tags=["admin"])
async def admin_list_users(
    response: Response,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=128),
    admin: AuthContext = Depends(get_admin_user),
):
    runtime = get_runtime()
    await _enforce_rate_limit(
        runtime,
        f"admin:{admin.user_id}",
        runtime.settings.admin_rate_limit_per_minute,
        60,
        response=response,
    )
    users, total = runtime.auth.list_users(page=page, limit=limit, search=search)
    return Envelope(
        message="Users fetched successfully",
        data=UserListResponse(
            items=[UserResponse.from_user(u) for u in users],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if total else 0,
        ),
    )


@router.get("/admin/users/{user_id}", response_model=Envelope, tags=["admin"])
async def admin_get_user(
    user_id: str = Path(..., max_length=64),
    admin: AuthContext = Depends(get_admin_user),
):
    user = get_runtime().auth.get_user(user_id)
    return Envelope(message="User fetched successfully", data=UserResponse.from_user(user))


@router.put("/admin/users/{user_id}/role", response_model=Envelope, tags=["admin"])
async def admin_update_user_role(
    body: UpdateUserRoleRequest,
    user_id: str = Path(..., max_length=64),
    admin: AuthContext = Depends(get_admin_user),
):
    """Change a global role; the target's sessions are revoked so new tokens carry it."""
    user = get_runtime().auth.set_user_role(user_id, body.role)
    logger.info("admin_role_change", admin_id=admin.user_id, target_id=user_id, role=body.role)
    return Envelope(message="User role updated", data=UserResponse.from_user(user))


@router.delete("/admin/users/{user_id}", response_model=Envelope, tags=["admin"])
async def admin_delete_user(
    user_id: str = Path(..., max_length=64),
    admin: AuthContext = Depends(get_admin_user),
):
    get_runtime().auth.delete_account(user_id)
    logger.info("admin_user_deleted", admin_id=admin.user_id, target_id=user_id)
    return Envelope(message="User deleted", data={})


# ---------------------------------------------------------------------------
# projects
# ---------------------------------------------------------------------------


@router.post("/projects", response_model=Envelope, status_code=201, tags=["projects"])
async def create_project(body: ProjectCreateRequest, ctx: AuthContext = Depends(get_current_user)):
    project = get_runtime().projects.create_project(ctx, body.name, body.description)
    return Envelope(
        status_code=201,
        message="Project created successfully",
        data=ProjectResponse.from_project(project),
    )


@router.get("/projects", response_model=Envelope, tags=["projects"])
async def list_projects(ctx: AuthContext = Depends(get_current_user)):
    summaries = get_runtime().projects.list_projects(ctx)
    return Envelope(
        message="Projects fetched successfully",
        data=[ProjectSummaryResponse.from_summary(s) for s in summaries],
    )


@router.get("/projects/{project_id}", response_model=Envelope, tags=["projects"])
async def get_project(
    project_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    project = get_runtime().projects.get_project(ctx, project_id)
    return Envelope(message="Project fetched successfully", data=ProjectResponse.from_project(project))


@router.put("/projects/{project_id}", response_model=Envelope, tags=["projects"])
async def update_project(
    body: ProjectUpdateRequest,
    project_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    project = get_runtime().projects.update_project(
        ctx, project_id, name=body.name, description=body.description
    )
    return Envelope(message="Project updated successfully", data=ProjectResponse.from_project(project))


@router.delete("/projects/{project_id}", response_model=Envelope, tags=["projects"])
async def delete_project(
    project_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    project = get_runtime().projects.delete_project(ctx, project_id)
    return Envelope(message="Project deleted successfully", data=ProjectResponse.from_project(project))


@router.post("/projects/{project_id}/members", response_model=Envelope, tags=["projects"])
async def add_project_member(
    body: AddMemberRequest,
    project_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    """Add a registered user by email; an existing member just gets the new role."""
    membership = get_runtime().projects.add_member(ctx, project_id, body.email, body.role)
    return Envelope(
        message="Member added successfully",
        data=MembershipResponse.from_membership(membership),
    )


@router.get("/projects/{project_id}/members", response_model=Envelope, tags=["projects"])
async def list_project_members(
    project_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    members = get_runtime().projects.list_members(ctx, project_id)
    return Envelope(
        message="Project members fetched",
        data=[MemberResponse.from_view(m) for m in members],
    )


@router.put("/projects/{project_id}/members/{user_id}", response_model=Envelope, tags=["projects"])
async def update_project_member_role(
    body: MemberRoleRequest,
    project_id: str = Path(..., max_length=64),
    user_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    membership = get_runtime().projects.update_member_role(ctx, project_id, user_id, body.role)
    return Envelope(
        message="Project member role updated",
        data=MembershipResponse.from_membership(membership),
    )


@router.delete("/projects/{project_id}/members/{user_id}", response_model=Envelope, tags=["projects"])
async def remove_project_member(
    project_id: str = Path(..., max_length=64),
    user_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    get_runtime().projects.remove_member(ctx, project_id, user_id)
    return Envelope(message="Project member removed", data={})


# ---------------------------------------------------------------------------
# tasks and subtasks
# ---------------------------------------------------------------------------


@router.get("/projects/{project_id}/tasks", response_model=Envelope, tags=["tasks"])
async def list_tasks(
    project_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    tasks = get_runtime().tasks.list_tasks(ctx, project_id)
    return Envelope(
        message="Tasks fetched successfully",
        data=[TaskResponse.from_task(t) for t in tasks],
    )


@router.post(
    "/projects/{project_id}/tasks", response_model=Envelope, status_code=201, tags=["tasks"]
)
async def create_task(
    body: TaskCreateRequest,
    project_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    """Create a task; needs project ``admin`` or ``project_admin``.

    Raises:
        400: If the assignee is not a member of the project
        403: If the caller is not a member or lacks the role
        404: If the project does not exist
    """
    task = get_runtime().tasks.create_task(
        ctx,
        project_id,
        body.title,
        description=body.description,
        status=body.status,
        assigned_to=body.assigned_to,
    )
    return Envelope(
        status_code=201,
        message="Task created successfully",
        data=TaskResponse.from_task(task),
    )


@router.get("/projects/{project_id}/tasks/{task_id}", response_model=Envelope, tags=["tasks"])
async def get_task(
    project_id: str = Path(..., max_length=64),
    task_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    task, subtasks = get_runtime().tasks.get_task(ctx, project_id, task_id)
    return Envelope(
        message="Task fetched successfully",
        data=TaskDetailResponse.from_detail(task, subtasks),
    )


@router.put("/projects/{project_id}/tasks/{task_id}", response_model=Envelope, tags=["tasks"])
async def update_task(
    body: TaskUpdateRequest,
    project_id: str = Path(..., max_length=64),
    task_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    task = get_runtime().tasks.update_task(
        ctx,
        project_id,
        task_id,
        title=body.title,
        description=body.description,
        status=body.status,
        assigned_to=body.assigned_to,
        unassign=body.unassign,
    )
    return Envelope(message="Task updated successfully", data=TaskResponse.from_task(task))


@router.delete("/projects/{project_id}/tasks/{task_id}", response_model=Envelope, tags=["tasks"])
async def delete_task(
    project_id: str = Path(..., max_length=64),
    task_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    get_runtime().tasks.delete_task(ctx, project_id, task_id)
    return Envelope(message="Task deleted successfully", data={})


@router.post(
    "/projects/{project_id}/tasks/{task_id}/subtasks",
    response_model=Envelope,
    status_code=201,
    tags=["tasks"],
)
async def create_subtask(
    body: SubtaskCreateRequest,
    project_id: str = Path(..., max_length=64),
    task_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    subtask = get_runtime().tasks.create_subtask(ctx, project_id, task_id, body.title)
    return Envelope(
        status_code=201,
        message="Subtask created successfully",
        data=SubtaskResponse.from_subtask(subtask),
    )


@router.put(
    "/projects/{project_id}/tasks/{task_id}/subtasks/{subtask_id}",
    response_model=Envelope,
    tags=["tasks"],
)
async def update_subtask(
    body: SubtaskUpdateRequest,
    project_id: str = Path(..., max_length=64),
    task_id: str = Path(..., max_length=64),
    subtask_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    subtask = get_runtime().tasks.update_subtask(
        ctx, project_id, task_id, subtask_id, title=body.title, status=body.status
    )
    return Envelope(
        message="Subtask updated successfully", data=SubtaskResponse.from_subtask(subtask)
    )


@router.delete(
    "/projects/{project_id}/tasks/{task_id}/subtasks/{subtask_id}",
    response_model=Envelope,
    tags=["tasks"],
)
async def delete_subtask(
    project_id: str = Path(..., max_length=64),
    task_id: str = Path(..., max_length=64),
    subtask_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    get_runtime().tasks.delete_subtask(ctx, project_id, task_id, subtask_id)
    return Envelope(message="Subtask deleted successfully", data={})


# ---------------------------------------------------------------------------
# notes and comments
# ---------------------------------------------------------------------------


@router.get("/projects/{project_id}/notes", response_model=Envelope, tags=["notes"])
async def list_notes(
    project_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    notes = get_runtime().notes.list_notes(ctx, project_id)
    return Envelope(
        message="Project notes fetched successfully",
        data=[NoteResponse.from_note(n) for n in notes],
    )


@router.post(
    "/projects/{project_id}/notes", response_model=Envelope, status_code=201, tags=["notes"]
)
async def create_note(
    body: NoteCreateRequest,
    project_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    note = get_runtime().notes.create_note(ctx, project_id, body.content)
    return Envelope(
        status_code=201,
        message="Project note created successfully",
        data=NoteResponse.from_note(note),
    )


@router.put("/projects/{project_id}/notes/{note_id}", response_model=Envelope, tags=["notes"])
async def update_note(
    body: NoteUpdateRequest,
    project_id: str = Path(..., max_length=64),
    note_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    note = get_runtime().notes.update_note(
        ctx, project_id, note_id, content=body.content, is_pinned=body.is_pinned
    )
    return Envelope(message="Project note updated successfully", data=NoteResponse.from_note(note))


@router.patch(
    "/projects/{project_id}/notes/{note_id}/pin", response_model=Envelope, tags=["notes"]
)
async def toggle_note_pin(
    project_id: str = Path(..., max_length=64),
    note_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    note = get_runtime().notes.toggle_pin(ctx, project_id, note_id)
    message = "Note pinned successfully" if note.is_pinned else "Note unpinned successfully"
    return Envelope(message=message, data=NoteResponse.from_note(note))


@router.delete("/projects/{project_id}/notes/{note_id}", response_model=Envelope, tags=["notes"])
async def delete_note(
    project_id: str = Path(..., max_length=64),
    note_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    get_runtime().notes.delete_note(ctx, project_id, note_id)
    return Envelope(message="Project note deleted successfully", data={})


@router.get(
    "/projects/{project_id}/notes/{note_id}/comments", response_model=Envelope, tags=["notes"]
)
async def list_comments(
    project_id: str = Path(..., max_length=64),
    note_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    comments = get_runtime().notes.list_comments(ctx, project_id, note_id)
    return Envelope(
        message="Comments fetched successfully",
        data=[CommentResponse.from_comment(c) for c in comments],
    )


@router.post(
    "/projects/{project_id}/notes/{note_id}/comments",
    response_model=Envelope,
    status_code=201,
    tags=["notes"],
)
async def create_comment(
    body: CommentCreateRequest,
    project_id: str = Path(..., max_length=64),
    note_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    """Comment on a note; ``parentComment`` makes it a reply to a comment on the same note."""
    comment = get_runtime().notes.create_comment(
        ctx, project_id, note_id, body.content, parent_id=body.parent_id
    )
    return Envelope(
        status_code=201,
        message="Comment added successfully",
        data=CommentResponse.from_comment(comment),
    )


@router.put(
    "/projects/{project_id}/notes/{note_id}/comments/{comment_id}",
    response_model=Envelope,
    tags=["notes"],
)
async def update_comment(
    body: CommentUpdateRequest,
    project_id: str = Path(..., max_length=64),
    note_id: str = Path(..., max_length=64),
    comment_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    comment = get_runtime().notes.update_comment(
        ctx, project_id, note_id, comment_id, body.content
    )
    return Envelope(
        message="Comment updated successfully", data=CommentResponse.from_comment(comment)
    )


@router.delete(
    "/projects/{project_id}/notes/{note_id}/comments/{comment_id}",
    response_model=Envelope,
    tags=["notes"],
)
async def delete_comment(
    project_id: str = Path(..., max_length=64),
    note_id: str = Path(..., max_length=64),
    comment_id: str = Path(..., max_length=64),
    ctx: AuthContext = Depends(get_current_user),
):
    get_runtime().notes.delete_comment(ctx, project_id, note_id, comment_id)
    return Envelope(message="Comment deleted successfully", data={})
