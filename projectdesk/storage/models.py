from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

GLOBAL_ROLES = ("user", "admin")
PROJECT_ROLES = ("admin", "project_admin", "member")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: str
    email: str
    username: str
    password_hash: str
    full_name: Optional[str] = None
    role: str = "user"
    is_email_verified: bool = False
    is_active: bool = True
    avatar: Dict | None = None
    password_reset_token_hash: Optional[str] = None
    password_reset_expires_at: Optional[datetime] = None
    email_verification_token_hash: Optional[str] = None
    email_verification_expires_at: Optional[datetime] = None
    verification_sent_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class SessionEntry:
    """One live refresh token, kept only as its sha256 digest."""

    token_hash: str
    expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class Project:
    id: str
    name: str
    created_by: str
    description: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class ProjectMembership:
    project_id: str
    user_id: str
    role: str = "member"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class ProjectSummary:
    """A project as seen by one member, with their role and the head count."""

    project: Project
    role: str
    member_count: int


@dataclass
class MemberView:
    """Membership joined with the member's public profile."""

    user_id: str
    email: str
    username: str
    full_name: Optional[str]
    role: str
    joined_at: datetime


TASK_STATUSES = ("todo", "in_progress", "done")


@dataclass
class Task:
    id: str
    project_id: str
    title: str
    description: str = ""
    status: str = "todo"
    assigned_to: Optional[str] = None
    assigned_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Subtask:
    id: str
    task_id: str
    title: str
    created_by: str
    status: str = "todo"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Note:
    """Project-wide note; pinned notes list first."""

    id: str
    project_id: str
    created_by: str
    content: str
    is_pinned: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class NoteComment:
    """Comment on a note; ``parent_id`` threads a reply under another comment."""

    id: str
    note_id: str
    created_by: str
    content: str
    parent_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
