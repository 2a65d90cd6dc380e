from __future__ import annotations

import json
import threading
import uuid
from dataclasses import asdict, fields
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from projectdesk.logging import get_logger
from projectdesk.storage.errors import ConstraintViolation
from projectdesk.storage.models import (
    MemberView,
    Note,
    NoteComment,
    Project,
    ProjectMembership,
    ProjectSummary,
    SessionEntry,
    Subtask,
    Task,
    User,
    utcnow,
)


class MemoryStore:
    """In-process credential and project store.

    Every public method takes ``_data_lock`` for its whole body, so each call is
    one atomic operation with respect to concurrent request threads. When
    ``fs_root`` is given the state is mirrored to a JSON file after each write
    and reloaded on start.
    """

    def __init__(self, fs_root: str | None = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        # user_id -> live refresh entries
        self.sessions: Dict[str, List[SessionEntry]] = {}
        self.projects: Dict[str, Project] = {}
        # (project_id, user_id) -> membership
        self.memberships: Dict[Tuple[str, str], ProjectMembership] = {}
        self.tasks: Dict[str, Task] = {}
        self.subtasks: Dict[str, Subtask] = {}
        self.notes: Dict[str, Note] = {}
        self.comments: Dict[str, NoteComment] = {}
        # RLock so helpers can be called from inside locked sections
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root is not None:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        assert self.fs_root is not None
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    @staticmethod
    def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt else None

    @staticmethod
    def _deserialize_datetime(raw: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(raw) if raw else None

    def verify_connection(self) -> None:
        return None

    def close(self) -> None:
        return None

    # users
    def _email_taken(self, email: str, exclude_id: Optional[str] = None) -> bool:
        return any(
            u.email == email and u.id != exclude_id for u in self.users.values()
        )

    def _username_taken(self, username: str, exclude_id: Optional[str] = None) -> bool:
        return any(
            u.username == username and u.id != exclude_id for u in self.users.values()
        )

    def create_user(
        self,
        email: str,
        username: str,
        password_hash: str,
        *,
        full_name: Optional[str] = None,
        role: str = "user",
        is_email_verified: bool = False,
    ) -> User:
        email = email.strip().lower()
        with self._data_lock:
            if self._email_taken(email):
                raise ConstraintViolation("email already exists", {"field": "email"})
            if self._username_taken(username):
                raise ConstraintViolation(
                    "username already exists", {"field": "username"}
                )
            user = User(
                id=str(uuid.uuid4()),
                email=email,
                username=username,
                password_hash=password_hash,
                full_name=full_name,
                role=role,
                is_email_verified=is_email_verified,
            )
            self.users[user.id] = user
            self.sessions[user.id] = []
            self._persist_state()
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        email = email.strip().lower()
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == email), None)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._data_lock:
            return next(
                (u for u in self.users.values() if u.username == username), None
            )

    def list_users(
        self, *, search: Optional[str] = None, offset: int = 0, limit: int = 10
    ) -> Tuple[List[User], int]:
        needle = (search or "").strip().lower()
        with self._data_lock:
            matches = [
                u
                for u in self.users.values()
                if not needle or needle in u.username or needle in u.email
            ]
            matches.sort(key=lambda u: u.created_at)
            return matches[offset : offset + limit], len(matches)

    def update_user_profile(
        self,
        user_id: str,
        *,
        username: Optional[str] = None,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            if email is not None:
                email = email.strip().lower()
            # check every conflict before touching the record
            if username is not None and username != user.username:
                if self._username_taken(username, exclude_id=user_id):
                    raise ConstraintViolation(
                        "username already exists", {"field": "username"}
                    )
            if email is not None and email != user.email:
                if self._email_taken(email, exclude_id=user_id):
                    raise ConstraintViolation(
                        "email already exists", {"field": "email"}
                    )
            if username is not None:
                user.username = username
            if email is not None and email != user.email:
                user.email = email
                user.is_email_verified = False
            if full_name is not None:
                user.full_name = full_name
            user.updated_at = utcnow()
            self._persist_state()
            return user

    def update_user_role(self, user_id: str, role: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.role = role
            user.updated_at = utcnow()
            self.sessions[user_id] = []
            self._persist_state()
            return user

    def set_user_active(self, user_id: str, is_active: bool) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.is_active = is_active
            user.updated_at = utcnow()
            if not is_active:
                self.sessions[user_id] = []
            self._persist_state()
            return user

    def delete_user(self, user_id: str) -> bool:
        with self._data_lock:
            if user_id not in self.users:
                return False
            self.users.pop(user_id, None)
            self.sessions.pop(user_id, None)
            for key in [k for k in self.memberships if k[1] == user_id]:
                self.memberships.pop(key, None)
            for task in self.tasks.values():
                if task.assigned_to == user_id:
                    task.assigned_to = None
            self._persist_state()
            return True

    def replace_password(self, user_id: str, password_hash: str) -> Optional[User]:
        """Swap the hash and drop every session and pending reset in one step."""
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.password_hash = password_hash
            user.password_reset_token_hash = None
            user.password_reset_expires_at = None
            user.updated_at = utcnow()
            self.sessions[user_id] = []
            self._persist_state()
            return user

    # one-time tokens
    def set_email_verification_token(
        self,
        user_id: str,
        token_hash: str,
        expires_at: datetime,
        sent_at: datetime,
    ) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.email_verification_token_hash = token_hash
            user.email_verification_expires_at = expires_at
            user.verification_sent_at = sent_at
            self._persist_state()
            return user

    def complete_email_verification(
        self, token_hash: str, now: datetime
    ) -> Optional[User]:
        with self._data_lock:
            user = next(
                (
                    u
                    for u in self.users.values()
                    if u.email_verification_token_hash == token_hash
                ),
                None,
            )
            if not user:
                return None
            expires_at = user.email_verification_expires_at
            if expires_at is None or now >= expires_at:
                return None
            user.is_email_verified = True
            user.email_verification_token_hash = None
            user.email_verification_expires_at = None
            user.updated_at = now
            self._persist_state()
            return user

    def set_password_reset_token(
        self, user_id: str, token_hash: str, expires_at: datetime
    ) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.password_reset_token_hash = token_hash
            user.password_reset_expires_at = expires_at
            self._persist_state()
            return user

    def complete_password_reset(
        self, token_hash: str, password_hash: str, now: datetime
    ) -> Optional[User]:
        with self._data_lock:
            user = next(
                (
                    u
                    for u in self.users.values()
                    if u.password_reset_token_hash == token_hash
                ),
                None,
            )
            if not user:
                return None
            expires_at = user.password_reset_expires_at
            if expires_at is None or now >= expires_at:
                return None
            return self.replace_password(user.id, password_hash)

    # refresh sessions
    def _live_sessions(self, user_id: str, now: datetime) -> List[SessionEntry]:
        entries = self.sessions.get(user_id, [])
        live = [entry for entry in entries if not entry.is_expired(now)]
        if len(live) != len(entries):
            self.sessions[user_id] = live
        return live

    def add_refresh_token(
        self,
        user_id: str,
        token_hash: str,
        expires_at: datetime,
        *,
        max_sessions: int,
        now: datetime,
    ) -> bool:
        """Append a session unless the user already holds ``max_sessions`` live ones."""
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": user_id})
            live = self._live_sessions(user_id, now)
            if len(live) >= max_sessions:
                return False
            live.append(SessionEntry(token_hash=token_hash, expires_at=expires_at, created_at=now))
            self._persist_state()
            return True

    def rotate_refresh_token(
        self,
        user_id: str,
        old_hash: str,
        new_hash: str,
        new_expires_at: datetime,
        *,
        now: datetime,
    ) -> bool:
        with self._data_lock:
            live = self._live_sessions(user_id, now)
            for idx, entry in enumerate(live):
                if entry.token_hash == old_hash:
                    live[idx] = SessionEntry(
                        token_hash=new_hash, expires_at=new_expires_at, created_at=now
                    )
                    self._persist_state()
                    return True
            return False

    def remove_refresh_token(self, user_id: str, token_hash: str) -> bool:
        with self._data_lock:
            entries = self.sessions.get(user_id, [])
            kept = [entry for entry in entries if entry.token_hash != token_hash]
            if len(kept) == len(entries):
                return False
            self.sessions[user_id] = kept
            self._persist_state()
            return True

    def clear_refresh_tokens(self, user_id: str) -> int:
        with self._data_lock:
            removed = len(self.sessions.get(user_id, []))
            if user_id in self.sessions:
                self.sessions[user_id] = []
            if removed:
                self._persist_state()
            return removed

    def has_refresh_token(self, user_id: str, token_hash: str, now: datetime) -> bool:
        with self._data_lock:
            return any(
                entry.token_hash == token_hash
                for entry in self._live_sessions(user_id, now)
            )

    def count_refresh_tokens(self, user_id: str, now: datetime) -> int:
        with self._data_lock:
            return len(self._live_sessions(user_id, now))

    # projects
    def create_project(
        self, name: str, created_by: str, *, description: str = ""
    ) -> Project:
        """Create a project and make its creator an ``admin`` member."""
        with self._data_lock:
            if created_by not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": created_by})
            project = Project(
                id=str(uuid.uuid4()),
                name=name,
                description=description,
                created_by=created_by,
            )
            self.projects[project.id] = project
            self.memberships[(project.id, created_by)] = ProjectMembership(
                project_id=project.id, user_id=created_by, role="admin"
            )
            self._persist_state()
            return project

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._data_lock:
            return self.projects.get(project_id)

    def update_project(
        self,
        project_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Optional[Project]:
        with self._data_lock:
            project = self.projects.get(project_id)
            if not project:
                return None
            if name is not None:
                project.name = name
            if description is not None:
                project.description = description
            project.updated_at = utcnow()
            self._persist_state()
            return project

    def delete_project(self, project_id: str) -> bool:
        with self._data_lock:
            if self.projects.pop(project_id, None) is None:
                return False
            for key in [k for k in self.memberships if k[0] == project_id]:
                self.memberships.pop(key, None)
            self._drop_tasks([t.id for t in self.tasks.values() if t.project_id == project_id])
            self._drop_notes([n.id for n in self.notes.values() if n.project_id == project_id])
            self._persist_state()
            return True

    def list_projects_for_user(self, user_id: str) -> List[ProjectSummary]:
        with self._data_lock:
            counts: Dict[str, int] = {}
            for project_id, _ in self.memberships:
                counts[project_id] = counts.get(project_id, 0) + 1
            summaries = [
                ProjectSummary(
                    project=self.projects[project_id],
                    role=membership.role,
                    member_count=counts.get(project_id, 0),
                )
                for (project_id, member_id), membership in self.memberships.items()
                if member_id == user_id and project_id in self.projects
            ]
            summaries.sort(key=lambda s: s.project.created_at)
            return summaries

    def get_membership(
        self, project_id: str, user_id: str
    ) -> Optional[ProjectMembership]:
        with self._data_lock:
            return self.memberships.get((project_id, user_id))

    def upsert_member(self, project_id: str, user_id: str, role: str) -> ProjectMembership:
        with self._data_lock:
            if project_id not in self.projects:
                raise ConstraintViolation(
                    "project does not exist", {"project_id": project_id}
                )
            if user_id not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": user_id})
            existing = self.memberships.get((project_id, user_id))
            if existing:
                existing.role = role
                existing.updated_at = utcnow()
                membership = existing
            else:
                membership = ProjectMembership(
                    project_id=project_id, user_id=user_id, role=role
                )
                self.memberships[(project_id, user_id)] = membership
            self._persist_state()
            return membership

    def update_member_role(
        self, project_id: str, user_id: str, role: str
    ) -> Optional[ProjectMembership]:
        with self._data_lock:
            membership = self.memberships.get((project_id, user_id))
            if not membership:
                return None
            membership.role = role
            membership.updated_at = utcnow()
            self._persist_state()
            return membership

    def remove_member(self, project_id: str, user_id: str) -> bool:
        with self._data_lock:
            if self.memberships.pop((project_id, user_id), None) is None:
                return False
            self._persist_state()
            return True

    def list_members(self, project_id: str) -> List[MemberView]:
        with self._data_lock:
            views = []
            for (pid, user_id), membership in self.memberships.items():
                if pid != project_id:
                    continue
                user = self.users.get(user_id)
                if not user:
                    continue
                views.append(
                    MemberView(
                        user_id=user.id,
                        email=user.email,
                        username=user.username,
                        full_name=user.full_name,
                        role=membership.role,
                        joined_at=membership.created_at,
                    )
                )
            views.sort(key=lambda v: v.joined_at)
            return views

    # tasks
    def create_task(
        self,
        project_id: str,
        title: str,
        *,
        description: str = "",
        status: str = "todo",
        assigned_to: Optional[str] = None,
        assigned_by: Optional[str] = None,
    ) -> Task:
        with self._data_lock:
            if project_id not in self.projects:
                raise ConstraintViolation(
                    "project does not exist", {"project_id": project_id}
                )
            task = Task(
                id=str(uuid.uuid4()),
                project_id=project_id,
                title=title,
                description=description,
                status=status,
                assigned_to=assigned_to,
                assigned_by=assigned_by,
            )
            self.tasks[task.id] = task
            self._persist_state()
            return task

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._data_lock:
            return self.tasks.get(task_id)

    def list_tasks(self, project_id: str) -> List[Task]:
        with self._data_lock:
            tasks = [t for t in self.tasks.values() if t.project_id == project_id]
            tasks.sort(key=lambda t: t.created_at)
            return tasks

    def update_task(
        self,
        task_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[str] = None,
        assigned_to: Optional[str] = None,
        unassign: bool = False,
    ) -> Optional[Task]:
        with self._data_lock:
            task = self.tasks.get(task_id)
            if not task:
                return None
            if title is not None:
                task.title = title
            if description is not None:
                task.description = description
            if status is not None:
                task.status = status
            if unassign:
                task.assigned_to = None
            elif assigned_to is not None:
                task.assigned_to = assigned_to
            task.updated_at = utcnow()
            self._persist_state()
            return task

    def _drop_tasks(self, task_ids: List[str]) -> None:
        for task_id in task_ids:
            self.tasks.pop(task_id, None)
        doomed = set(task_ids)
        for subtask_id in [s.id for s in self.subtasks.values() if s.task_id in doomed]:
            self.subtasks.pop(subtask_id, None)

    def delete_task(self, task_id: str) -> bool:
        """Delete a task together with its subtasks."""
        with self._data_lock:
            if task_id not in self.tasks:
                return False
            self._drop_tasks([task_id])
            self._persist_state()
            return True

    def create_subtask(self, task_id: str, title: str, created_by: str) -> Subtask:
        with self._data_lock:
            if task_id not in self.tasks:
                raise ConstraintViolation("task does not exist", {"task_id": task_id})
            subtask = Subtask(
                id=str(uuid.uuid4()), task_id=task_id, title=title, created_by=created_by
            )
            self.subtasks[subtask.id] = subtask
            self._persist_state()
            return subtask

    def get_subtask(self, subtask_id: str) -> Optional[Subtask]:
        with self._data_lock:
            return self.subtasks.get(subtask_id)

    def list_subtasks(self, task_id: str) -> List[Subtask]:
        with self._data_lock:
            subtasks = [s for s in self.subtasks.values() if s.task_id == task_id]
            subtasks.sort(key=lambda s: s.created_at)
            return subtasks

    def update_subtask(
        self,
        subtask_id: str,
        *,
        title: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Optional[Subtask]:
        with self._data_lock:
            subtask = self.subtasks.get(subtask_id)
            if not subtask:
                return None
            if title is not None:
                subtask.title = title
            if status is not None:
                subtask.status = status
            subtask.updated_at = utcnow()
            self._persist_state()
            return subtask

    def delete_subtask(self, subtask_id: str) -> bool:
        with self._data_lock:
            if self.subtasks.pop(subtask_id, None) is None:
                return False
            self._persist_state()
            return True

    # notes
    def create_note(self, project_id: str, created_by: str, content: str) -> Note:
        with self._data_lock:
            if project_id not in self.projects:
                raise ConstraintViolation(
                    "project does not exist", {"project_id": project_id}
                )
            note = Note(
                id=str(uuid.uuid4()),
                project_id=project_id,
                created_by=created_by,
                content=content,
            )
            self.notes[note.id] = note
            self._persist_state()
            return note

    def get_note(self, note_id: str) -> Optional[Note]:
        with self._data_lock:
            return self.notes.get(note_id)

    def list_notes(self, project_id: str) -> List[Note]:
        """Pinned notes first, newest first within each group."""
        with self._data_lock:
            notes = [n for n in self.notes.values() if n.project_id == project_id]
            notes.sort(key=lambda n: n.created_at, reverse=True)
            notes.sort(key=lambda n: not n.is_pinned)
            return notes

    def update_note(
        self,
        note_id: str,
        *,
        content: Optional[str] = None,
        is_pinned: Optional[bool] = None,
    ) -> Optional[Note]:
        with self._data_lock:
            note = self.notes.get(note_id)
            if not note:
                return None
            if content is not None:
                note.content = content
            if is_pinned is not None:
                note.is_pinned = is_pinned
            note.updated_at = utcnow()
            self._persist_state()
            return note

    def toggle_note_pin(self, note_id: str) -> Optional[Note]:
        with self._data_lock:
            note = self.notes.get(note_id)
            if not note:
                return None
            note.is_pinned = not note.is_pinned
            note.updated_at = utcnow()
            self._persist_state()
            return note

    def _drop_notes(self, note_ids: List[str]) -> None:
        for note_id in note_ids:
            self.notes.pop(note_id, None)
        doomed = set(note_ids)
        for comment_id in [c.id for c in self.comments.values() if c.note_id in doomed]:
            self.comments.pop(comment_id, None)

    def delete_note(self, note_id: str) -> bool:
        """Delete a note together with its comments."""
        with self._data_lock:
            if note_id not in self.notes:
                return False
            self._drop_notes([note_id])
            self._persist_state()
            return True

    # comments
    def create_comment(
        self,
        note_id: str,
        created_by: str,
        content: str,
        *,
        parent_id: Optional[str] = None,
    ) -> NoteComment:
        with self._data_lock:
            if note_id not in self.notes:
                raise ConstraintViolation("note does not exist", {"note_id": note_id})
            if parent_id is not None:
                parent = self.comments.get(parent_id)
                if not parent or parent.note_id != note_id:
                    raise ConstraintViolation(
                        "parent comment does not exist", {"parent_id": parent_id}
                    )
            comment = NoteComment(
                id=str(uuid.uuid4()),
                note_id=note_id,
                created_by=created_by,
                content=content,
                parent_id=parent_id,
            )
            self.comments[comment.id] = comment
            self._persist_state()
            return comment

    def get_comment(self, comment_id: str) -> Optional[NoteComment]:
        with self._data_lock:
            return self.comments.get(comment_id)

    def list_comments(self, note_id: str) -> List[NoteComment]:
        with self._data_lock:
            comments = [c for c in self.comments.values() if c.note_id == note_id]
            comments.sort(key=lambda c: c.created_at)
            return comments

    def update_comment(self, comment_id: str, content: str) -> Optional[NoteComment]:
        with self._data_lock:
            comment = self.comments.get(comment_id)
            if not comment:
                return None
            comment.content = content
            comment.updated_at = utcnow()
            self._persist_state()
            return comment

    def delete_comment(self, comment_id: str) -> bool:
        """Delete a comment; replies to it are kept and lose their parent."""
        with self._data_lock:
            if self.comments.pop(comment_id, None) is None:
                return False
            for reply in self.comments.values():
                if reply.parent_id == comment_id:
                    reply.parent_id = None
            self._persist_state()
            return True

    # persistence
    def _persist_state(self) -> None:
        if self.fs_root is None:
            return
        state = {
            "users": [self._serialize_user(u) for u in self.users.values()],
            "sessions": [
                {"user_id": user_id, **self._serialize_session(entry)}
                for user_id, entries in self.sessions.items()
                for entry in entries
            ],
            "projects": [self._serialize_project(p) for p in self.projects.values()],
            "memberships": [
                self._serialize_membership(m) for m in self.memberships.values()
            ],
            "tasks": [self._serialize_record(t) for t in self.tasks.values()],
            "subtasks": [self._serialize_record(s) for s in self.subtasks.values()],
            "notes": [self._serialize_record(n) for n in self.notes.values()],
            "comments": [self._serialize_record(c) for c in self.comments.values()],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self.sessions = {user_id: [] for user_id in self.users}
        for entry in data.get("sessions", []):
            if entry["user_id"] in self.sessions:
                self.sessions[entry["user_id"]].append(self._deserialize_session(entry))
        self.projects = {
            p["id"]: self._deserialize_project(p) for p in data.get("projects", [])
        }
        self.memberships = {}
        for raw in data.get("memberships", []):
            membership = self._deserialize_membership(raw)
            self.memberships[(membership.project_id, membership.user_id)] = membership
        self.tasks = self._load_records(Task, data.get("tasks", []))
        self.subtasks = self._load_records(Subtask, data.get("subtasks", []))
        self.notes = self._load_records(Note, data.get("notes", []))
        self.comments = self._load_records(NoteComment, data.get("comments", []))
        self.logger.info(
            "memory_store_loaded", users=len(self.users), projects=len(self.projects)
        )
        return True

    def _serialize_user(self, user: User) -> dict:
        return {
            "id": user.id,
            "email": user.email,
            "username": user.username,
            "password_hash": user.password_hash,
            "full_name": user.full_name,
            "role": user.role,
            "is_email_verified": user.is_email_verified,
            "is_active": user.is_active,
            "avatar": user.avatar,
            "password_reset_token_hash": user.password_reset_token_hash,
            "password_reset_expires_at": self._serialize_datetime(
                user.password_reset_expires_at
            ),
            "email_verification_token_hash": user.email_verification_token_hash,
            "email_verification_expires_at": self._serialize_datetime(
                user.email_verification_expires_at
            ),
            "verification_sent_at": self._serialize_datetime(user.verification_sent_at),
            "created_at": self._serialize_datetime(user.created_at),
            "updated_at": self._serialize_datetime(user.updated_at),
        }

    def _deserialize_user(self, data: dict) -> User:
        return User(
            id=str(data["id"]),
            email=data["email"],
            username=data["username"],
            password_hash=data["password_hash"],
            full_name=data.get("full_name"),
            role=data.get("role", "user"),
            is_email_verified=data.get("is_email_verified", False),
            is_active=data.get("is_active", True),
            avatar=data.get("avatar"),
            password_reset_token_hash=data.get("password_reset_token_hash"),
            password_reset_expires_at=self._deserialize_datetime(
                data.get("password_reset_expires_at")
            ),
            email_verification_token_hash=data.get("email_verification_token_hash"),
            email_verification_expires_at=self._deserialize_datetime(
                data.get("email_verification_expires_at")
            ),
            verification_sent_at=self._deserialize_datetime(
                data.get("verification_sent_at")
            ),
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data["updated_at"]),
        )

    def _serialize_session(self, entry: SessionEntry) -> dict:
        return {
            "token_hash": entry.token_hash,
            "expires_at": self._serialize_datetime(entry.expires_at),
            "created_at": self._serialize_datetime(entry.created_at),
        }

    def _deserialize_session(self, data: dict) -> SessionEntry:
        return SessionEntry(
            token_hash=data["token_hash"],
            expires_at=self._deserialize_datetime(data["expires_at"]),
            created_at=self._deserialize_datetime(data["created_at"]),
        )

    def _serialize_project(self, project: Project) -> dict:
        return {
            "id": project.id,
            "name": project.name,
            "description": project.description,
            "created_by": project.created_by,
            "created_at": self._serialize_datetime(project.created_at),
            "updated_at": self._serialize_datetime(project.updated_at),
        }

    def _deserialize_project(self, data: dict) -> Project:
        return Project(
            id=data["id"],
            name=data["name"],
            description=data.get("description", ""),
            created_by=data["created_by"],
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data["updated_at"]),
        )

    def _serialize_membership(self, membership: ProjectMembership) -> dict:
        return {
            "project_id": membership.project_id,
            "user_id": membership.user_id,
            "role": membership.role,
            "created_at": self._serialize_datetime(membership.created_at),
            "updated_at": self._serialize_datetime(membership.updated_at),
        }

    def _deserialize_membership(self, data: dict) -> ProjectMembership:
        return ProjectMembership(
            project_id=data["project_id"],
            user_id=data["user_id"],
            role=data.get("role", "member"),
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data["updated_at"]),
        )

    def _serialize_record(self, record) -> dict:
        """Flatten a task, subtask, note or comment; ``*_at`` fields become ISO strings."""
        data = asdict(record)
        for name, value in data.items():
            if name.endswith("_at"):
                data[name] = self._serialize_datetime(value)
        return data

    def _load_records(self, cls, rows: List[dict]) -> dict:
        known = {f.name for f in fields(cls)}
        records = {}
        for row in rows:
            values = {
                name: self._deserialize_datetime(value) if name.endswith("_at") else value
                for name, value in row.items()
                if name in known
            }
            records[values["id"]] = cls(**values)
        return records
