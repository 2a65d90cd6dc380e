from __future__ import annotations

import json
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Tuple

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from projectdesk.logging import get_logger
from projectdesk.storage.errors import ConstraintViolation, StoreUnavailable
from projectdesk.storage.models import (
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

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        username TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        full_name TEXT,
        role TEXT NOT NULL DEFAULT 'user',
        is_email_verified BOOLEAN NOT NULL DEFAULT FALSE,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        avatar JSONB,
        password_reset_token_hash TEXT,
        password_reset_expires_at TIMESTAMPTZ,
        email_verification_token_hash TEXT,
        email_verification_expires_at TIMESTAMPTZ,
        verification_sent_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS refresh_session (
        user_id TEXT NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        token_hash TEXT NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (user_id, token_hash)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS project (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        created_by TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS project_member (
        project_id TEXT NOT NULL REFERENCES project(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        role TEXT NOT NULL DEFAULT 'member',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (project_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS task (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL REFERENCES project(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT 'todo',
        assigned_to TEXT REFERENCES app_user(id) ON DELETE SET NULL,
        assigned_by TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS subtask (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL REFERENCES task(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        created_by TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'todo',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS project_note (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL REFERENCES project(id) ON DELETE CASCADE,
        created_by TEXT NOT NULL,
        content TEXT NOT NULL,
        is_pinned BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS note_comment (
        id TEXT PRIMARY KEY,
        note_id TEXT NOT NULL REFERENCES project_note(id) ON DELETE CASCADE,
        created_by TEXT NOT NULL,
        content TEXT NOT NULL,
        parent_id TEXT REFERENCES note_comment(id) ON DELETE SET NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS task_project_idx ON task (project_id)",
    "CREATE INDEX IF NOT EXISTS subtask_task_idx ON subtask (task_id)",
    "CREATE INDEX IF NOT EXISTS project_note_project_idx ON project_note (project_id)",
    "CREATE INDEX IF NOT EXISTS note_comment_note_idx ON note_comment (note_id)",
    "CREATE INDEX IF NOT EXISTS app_user_reset_token_idx ON app_user (password_reset_token_hash)",
    "CREATE INDEX IF NOT EXISTS app_user_verify_token_idx ON app_user (email_verification_token_hash)",
)


def _unique_field(exc: errors.UniqueViolation) -> str:
    constraint = getattr(exc.diag, "constraint_name", None) or ""
    return "username" if "username" in constraint else "email"


class PostgresStore:
    """Postgres-backed credential and project store.

    Session mutations run in a single transaction that first row-locks the
    owning ``app_user`` row, so concurrent add/rotate calls for one user are
    serialized by the database.
    """

    def __init__(self, dsn: str, *, timeout_seconds: float = 5.0) -> None:
        self.dsn = dsn
        self.timeout_seconds = timeout_seconds
        self.logger = get_logger(__name__)
        statement_timeout_ms = int(timeout_seconds * 1000)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=1,
            max_size=10,
            timeout=timeout_seconds,
            open=True,
            kwargs={
                "row_factory": dict_row,
                "autocommit": False,
                "connect_timeout": max(1, int(timeout_seconds)),
                "options": f"-c statement_timeout={statement_timeout_ms}",
            },
        )
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator:
        try:
            with self.pool.connection(timeout=self.timeout_seconds) as conn:
                yield conn
        except (PoolTimeout, errors.OperationalError) as exc:
            self.logger.error("postgres_unavailable", error=str(exc))
            raise StoreUnavailable("database unavailable") from exc

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _user_from_row(row: dict) -> User:
        avatar = row.get("avatar")
        if isinstance(avatar, str):
            avatar = json.loads(avatar)
        return User(
            id=str(row["id"]),
            email=row["email"],
            username=row["username"],
            password_hash=row["password_hash"],
            full_name=row.get("full_name"),
            role=row.get("role", "user"),
            is_email_verified=row.get("is_email_verified", False),
            is_active=row.get("is_active", True),
            avatar=avatar,
            password_reset_token_hash=row.get("password_reset_token_hash"),
            password_reset_expires_at=row.get("password_reset_expires_at"),
            email_verification_token_hash=row.get("email_verification_token_hash"),
            email_verification_expires_at=row.get("email_verification_expires_at"),
            verification_sent_at=row.get("verification_sent_at"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _project_from_row(row: dict) -> Project:
        return Project(
            id=str(row["id"]),
            name=row["name"],
            description=row.get("description") or "",
            created_by=str(row["created_by"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _membership_from_row(row: dict) -> ProjectMembership:
        return ProjectMembership(
            project_id=str(row["project_id"]),
            user_id=str(row["user_id"]),
            role=row["role"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # users
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
        user_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO app_user (id, email, username, password_hash, full_name, role, is_email_verified)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        user_id,
                        email.strip().lower(),
                        username,
                        password_hash,
                        full_name,
                        role,
                        is_email_verified,
                    ),
                ).fetchone()
        except errors.UniqueViolation as exc:
            field = _unique_field(exc)
            raise ConstraintViolation(f"{field} already exists", {"field": field})
        return self._user_from_row(row)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE id = %s", (user_id,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE email = %s", (email.strip().lower(),)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE username = %s", (username,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def list_users(
        self, *, search: Optional[str] = None, offset: int = 0, limit: int = 10
    ) -> Tuple[List[User], int]:
        needle = (search or "").strip().lower()
        where = ""
        params: tuple = ()
        if needle:
            escaped = (
                needle.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            )
            pattern = f"%{escaped}%"
            where = "WHERE username ILIKE %s OR email ILIKE %s"
            params = (pattern, pattern)
        with self._connect() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) AS total FROM app_user {where}", params
            ).fetchone()["total"]
            rows = conn.execute(
                f"SELECT * FROM app_user {where} ORDER BY created_at LIMIT %s OFFSET %s",
                params + (limit, offset),
            ).fetchall()
        return [self._user_from_row(row) for row in rows], int(total)

    def update_user_profile(
        self,
        user_id: str,
        *,
        username: Optional[str] = None,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> Optional[User]:
        assignments = ["updated_at = now()"]
        params: list = []
        if username is not None:
            assignments.append("username = %s")
            params.append(username)
        if email is not None:
            # a changed address has to be verified again
            assignments.append(
                "is_email_verified = CASE WHEN email = %s THEN is_email_verified ELSE FALSE END"
            )
            assignments.append("email = %s")
            params.extend([email.strip().lower(), email.strip().lower()])
        if full_name is not None:
            assignments.append("full_name = %s")
            params.append(full_name)
        params.append(user_id)
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"UPDATE app_user SET {', '.join(assignments)} WHERE id = %s RETURNING *",
                    tuple(params),
                ).fetchone()
        except errors.UniqueViolation as exc:
            field = _unique_field(exc)
            raise ConstraintViolation(f"{field} already exists", {"field": field})
        return self._user_from_row(row) if row else None

    def update_user_role(self, user_id: str, role: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET role = %s, updated_at = now() WHERE id = %s RETURNING *",
                (role, user_id),
            ).fetchone()
            if row:
                conn.execute("DELETE FROM refresh_session WHERE user_id = %s", (user_id,))
        return self._user_from_row(row) if row else None

    def set_user_active(self, user_id: str, is_active: bool) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET is_active = %s, updated_at = now() WHERE id = %s RETURNING *",
                (is_active, user_id),
            ).fetchone()
            if row and not is_active:
                conn.execute("DELETE FROM refresh_session WHERE user_id = %s", (user_id,))
        return self._user_from_row(row) if row else None

    def delete_user(self, user_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM app_user WHERE id = %s", (user_id,))
            return result.rowcount > 0

    def replace_password(self, user_id: str, password_hash: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE app_user
                SET password_hash = %s,
                    password_reset_token_hash = NULL,
                    password_reset_expires_at = NULL,
                    updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (password_hash, user_id),
            ).fetchone()
            if row:
                conn.execute("DELETE FROM refresh_session WHERE user_id = %s", (user_id,))
        return self._user_from_row(row) if row else None

    # one-time tokens
    def set_email_verification_token(
        self,
        user_id: str,
        token_hash: str,
        expires_at: datetime,
        sent_at: datetime,
    ) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE app_user
                SET email_verification_token_hash = %s,
                    email_verification_expires_at = %s,
                    verification_sent_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (token_hash, expires_at, sent_at, user_id),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def complete_email_verification(
        self, token_hash: str, now: datetime
    ) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE app_user
                SET is_email_verified = TRUE,
                    email_verification_token_hash = NULL,
                    email_verification_expires_at = NULL,
                    updated_at = %s
                WHERE email_verification_token_hash = %s
                  AND email_verification_expires_at > %s
                RETURNING *
                """,
                (now, token_hash, now),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def set_password_reset_token(
        self, user_id: str, token_hash: str, expires_at: datetime
    ) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE app_user
                SET password_reset_token_hash = %s, password_reset_expires_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (token_hash, expires_at, user_id),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def complete_password_reset(
        self, token_hash: str, password_hash: str, now: datetime
    ) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE app_user
                SET password_hash = %s,
                    password_reset_token_hash = NULL,
                    password_reset_expires_at = NULL,
                    updated_at = %s
                WHERE password_reset_token_hash = %s
                  AND password_reset_expires_at > %s
                RETURNING *
                """,
                (password_hash, now, token_hash, now),
            ).fetchone()
            if row:
                conn.execute(
                    "DELETE FROM refresh_session WHERE user_id = %s", (row["id"],)
                )
        return self._user_from_row(row) if row else None

    # refresh sessions
    def _lock_user(self, conn, user_id: str) -> bool:
        row = conn.execute(
            "SELECT id FROM app_user WHERE id = %s FOR UPDATE", (user_id,)
        ).fetchone()
        return row is not None

    def add_refresh_token(
        self,
        user_id: str,
        token_hash: str,
        expires_at: datetime,
        *,
        max_sessions: int,
        now: datetime,
    ) -> bool:
        with self._connect() as conn:
            if not self._lock_user(conn, user_id):
                raise ConstraintViolation("user does not exist", {"user_id": user_id})
            conn.execute(
                "DELETE FROM refresh_session WHERE user_id = %s AND expires_at <= %s",
                (user_id, now),
            )
            live = conn.execute(
                "SELECT COUNT(*) AS live FROM refresh_session WHERE user_id = %s",
                (user_id,),
            ).fetchone()["live"]
            if live >= max_sessions:
                return False
            conn.execute(
                """
                INSERT INTO refresh_session (user_id, token_hash, expires_at, created_at)
                VALUES (%s, %s, %s, %s)
                """,
                (user_id, token_hash, expires_at, now),
            )
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
        with self._connect() as conn:
            if not self._lock_user(conn, user_id):
                return False
            removed = conn.execute(
                """
                DELETE FROM refresh_session
                WHERE user_id = %s AND token_hash = %s AND expires_at > %s
                RETURNING token_hash
                """,
                (user_id, old_hash, now),
            ).fetchone()
            if not removed:
                return False
            conn.execute(
                """
                INSERT INTO refresh_session (user_id, token_hash, expires_at, created_at)
                VALUES (%s, %s, %s, %s)
                """,
                (user_id, new_hash, new_expires_at, now),
            )
            return True

    def remove_refresh_token(self, user_id: str, token_hash: str) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                "DELETE FROM refresh_session WHERE user_id = %s AND token_hash = %s",
                (user_id, token_hash),
            )
            return result.rowcount > 0

    def clear_refresh_tokens(self, user_id: str) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "DELETE FROM refresh_session WHERE user_id = %s", (user_id,)
            )
            return result.rowcount

    def has_refresh_token(self, user_id: str, token_hash: str, now: datetime) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT 1 AS present FROM refresh_session
                WHERE user_id = %s AND token_hash = %s AND expires_at > %s
                """,
                (user_id, token_hash, now),
            ).fetchone()
        return row is not None

    def count_refresh_tokens(self, user_id: str, now: datetime) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS live FROM refresh_session WHERE user_id = %s AND expires_at > %s",
                (user_id, now),
            ).fetchone()
        return int(row["live"])

    # projects
    def create_project(
        self, name: str, created_by: str, *, description: str = ""
    ) -> Project:
        project_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO project (id, name, description, created_by)
                    VALUES (%s, %s, %s, %s)
                    RETURNING *
                    """,
                    (project_id, name, description, created_by),
                ).fetchone()
                conn.execute(
                    """
                    INSERT INTO project_member (project_id, user_id, role)
                    VALUES (%s, %s, 'admin')
                    """,
                    (project_id, created_by),
                )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("user does not exist", {"user_id": created_by})
        return self._project_from_row(row)

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM project WHERE id = %s", (project_id,)
            ).fetchone()
        return self._project_from_row(row) if row else None

    def update_project(
        self,
        project_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Optional[Project]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE project
                SET name = COALESCE(%s, name),
                    description = COALESCE(%s, description),
                    updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (name, description, project_id),
            ).fetchone()
        return self._project_from_row(row) if row else None

    def delete_project(self, project_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM project WHERE id = %s", (project_id,))
            return result.rowcount > 0

    def list_projects_for_user(self, user_id: str) -> List[ProjectSummary]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT p.*, m.role AS member_role,
                       (SELECT COUNT(*) FROM project_member c WHERE c.project_id = p.id) AS member_count
                FROM project_member m
                JOIN project p ON p.id = m.project_id
                WHERE m.user_id = %s
                ORDER BY p.created_at
                """,
                (user_id,),
            ).fetchall()
        return [
            ProjectSummary(
                project=self._project_from_row(row),
                role=row["member_role"],
                member_count=int(row["member_count"]),
            )
            for row in rows
        ]

    def get_membership(
        self, project_id: str, user_id: str
    ) -> Optional[ProjectMembership]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM project_member WHERE project_id = %s AND user_id = %s",
                (project_id, user_id),
            ).fetchone()
        return self._membership_from_row(row) if row else None

    def upsert_member(self, project_id: str, user_id: str, role: str) -> ProjectMembership:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO project_member (project_id, user_id, role)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (project_id, user_id)
                    DO UPDATE SET role = EXCLUDED.role, updated_at = now()
                    RETURNING *
                    """,
                    (project_id, user_id, role),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation(
                "project or user does not exist",
                {"project_id": project_id, "user_id": user_id},
            )
        return self._membership_from_row(row)

    def update_member_role(
        self, project_id: str, user_id: str, role: str
    ) -> Optional[ProjectMembership]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE project_member SET role = %s, updated_at = now()
                WHERE project_id = %s AND user_id = %s
                RETURNING *
                """,
                (role, project_id, user_id),
            ).fetchone()
        return self._membership_from_row(row) if row else None

    def remove_member(self, project_id: str, user_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                "DELETE FROM project_member WHERE project_id = %s AND user_id = %s",
                (project_id, user_id),
            )
            return result.rowcount > 0

    def list_members(self, project_id: str) -> List[MemberView]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT u.id, u.email, u.username, u.full_name, m.role, m.created_at AS joined_at
                FROM project_member m
                JOIN app_user u ON u.id = m.user_id
                WHERE m.project_id = %s
                ORDER BY m.created_at
                """,
                (project_id,),
            ).fetchall()
        return [
            MemberView(
                user_id=str(row["id"]),
                email=row["email"],
                username=row["username"],
                full_name=row.get("full_name"),
                role=row["role"],
                joined_at=row["joined_at"],
            )
            for row in rows
        ]

    # tasks
    @staticmethod
    def _task_from_row(row: dict) -> Task:
        return Task(
            id=str(row["id"]),
            project_id=str(row["project_id"]),
            title=row["title"],
            description=row.get("description") or "",
            status=row["status"],
            assigned_to=row.get("assigned_to"),
            assigned_by=row.get("assigned_by"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _subtask_from_row(row: dict) -> Subtask:
        return Subtask(
            id=str(row["id"]),
            task_id=str(row["task_id"]),
            title=row["title"],
            created_by=str(row["created_by"]),
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

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
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO task (id, project_id, title, description, status, assigned_to, assigned_by)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        str(uuid.uuid4()),
                        project_id,
                        title,
                        description,
                        status,
                        assigned_to,
                        assigned_by,
                    ),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation(
                "project or assignee does not exist",
                {"project_id": project_id, "assigned_to": assigned_to},
            )
        return self._task_from_row(row)

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM task WHERE id = %s", (task_id,)).fetchone()
        return self._task_from_row(row) if row else None

    def list_tasks(self, project_id: str) -> List[Task]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM task WHERE project_id = %s ORDER BY created_at",
                (project_id,),
            ).fetchall()
        return [self._task_from_row(row) for row in rows]

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
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    UPDATE task
                    SET title = COALESCE(%s, title),
                        description = COALESCE(%s, description),
                        status = COALESCE(%s, status),
                        assigned_to = CASE WHEN %s THEN NULL ELSE COALESCE(%s, assigned_to) END,
                        updated_at = now()
                    WHERE id = %s
                    RETURNING *
                    """,
                    (title, description, status, unassign, assigned_to, task_id),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("assignee does not exist", {"assigned_to": assigned_to})
        return self._task_from_row(row) if row else None

    def delete_task(self, task_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM task WHERE id = %s", (task_id,))
            return result.rowcount > 0

    def create_subtask(self, task_id: str, title: str, created_by: str) -> Subtask:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO subtask (id, task_id, title, created_by)
                    VALUES (%s, %s, %s, %s)
                    RETURNING *
                    """,
                    (str(uuid.uuid4()), task_id, title, created_by),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("task does not exist", {"task_id": task_id})
        return self._subtask_from_row(row)

    def get_subtask(self, subtask_id: str) -> Optional[Subtask]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM subtask WHERE id = %s", (subtask_id,)
            ).fetchone()
        return self._subtask_from_row(row) if row else None

    def list_subtasks(self, task_id: str) -> List[Subtask]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM subtask WHERE task_id = %s ORDER BY created_at",
                (task_id,),
            ).fetchall()
        return [self._subtask_from_row(row) for row in rows]

    def update_subtask(
        self,
        subtask_id: str,
        *,
        title: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Optional[Subtask]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE subtask
                SET title = COALESCE(%s, title),
                    status = COALESCE(%s, status),
                    updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (title, status, subtask_id),
            ).fetchone()
        return self._subtask_from_row(row) if row else None

    def delete_subtask(self, subtask_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM subtask WHERE id = %s", (subtask_id,))
            return result.rowcount > 0

    # notes
    @staticmethod
    def _note_from_row(row: dict) -> Note:
        return Note(
            id=str(row["id"]),
            project_id=str(row["project_id"]),
            created_by=str(row["created_by"]),
            content=row["content"],
            is_pinned=bool(row["is_pinned"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _comment_from_row(row: dict) -> NoteComment:
        return NoteComment(
            id=str(row["id"]),
            note_id=str(row["note_id"]),
            created_by=str(row["created_by"]),
            content=row["content"],
            parent_id=row.get("parent_id"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create_note(self, project_id: str, created_by: str, content: str) -> Note:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO project_note (id, project_id, created_by, content)
                    VALUES (%s, %s, %s, %s)
                    RETURNING *
                    """,
                    (str(uuid.uuid4()), project_id, created_by, content),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("project does not exist", {"project_id": project_id})
        return self._note_from_row(row)

    def get_note(self, note_id: str) -> Optional[Note]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM project_note WHERE id = %s", (note_id,)
            ).fetchone()
        return self._note_from_row(row) if row else None

    def list_notes(self, project_id: str) -> List[Note]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM project_note WHERE project_id = %s
                ORDER BY is_pinned DESC, created_at DESC
                """,
                (project_id,),
            ).fetchall()
        return [self._note_from_row(row) for row in rows]

    def update_note(
        self,
        note_id: str,
        *,
        content: Optional[str] = None,
        is_pinned: Optional[bool] = None,
    ) -> Optional[Note]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE project_note
                SET content = COALESCE(%s, content),
                    is_pinned = COALESCE(%s, is_pinned),
                    updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (content, is_pinned, note_id),
            ).fetchone()
        return self._note_from_row(row) if row else None

    def toggle_note_pin(self, note_id: str) -> Optional[Note]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE project_note SET is_pinned = NOT is_pinned, updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (note_id,),
            ).fetchone()
        return self._note_from_row(row) if row else None

    def delete_note(self, note_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM project_note WHERE id = %s", (note_id,))
            return result.rowcount > 0

    # comments
    def create_comment(
        self,
        note_id: str,
        created_by: str,
        content: str,
        *,
        parent_id: Optional[str] = None,
    ) -> NoteComment:
        with self._connect() as conn:
            if parent_id is not None:
                parent = conn.execute(
                    "SELECT note_id FROM note_comment WHERE id = %s", (parent_id,)
                ).fetchone()
                if not parent or str(parent["note_id"]) != note_id:
                    raise ConstraintViolation(
                        "parent comment does not exist", {"parent_id": parent_id}
                    )
            try:
                row = conn.execute(
                    """
                    INSERT INTO note_comment (id, note_id, created_by, content, parent_id)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (str(uuid.uuid4()), note_id, created_by, content, parent_id),
                ).fetchone()
            except errors.ForeignKeyViolation:
                raise ConstraintViolation("note does not exist", {"note_id": note_id})
        return self._comment_from_row(row)

    def get_comment(self, comment_id: str) -> Optional[NoteComment]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM note_comment WHERE id = %s", (comment_id,)
            ).fetchone()
        return self._comment_from_row(row) if row else None

    def list_comments(self, note_id: str) -> List[NoteComment]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM note_comment WHERE note_id = %s ORDER BY created_at",
                (note_id,),
            ).fetchall()
        return [self._comment_from_row(row) for row in rows]

    def update_comment(self, comment_id: str, content: str) -> Optional[NoteComment]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE note_comment SET content = %s, updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (content, comment_id),
            ).fetchone()
        return self._comment_from_row(row) if row else None

    def delete_comment(self, comment_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM note_comment WHERE id = %s", (comment_id,))
            return result.rowcount > 0
