from __future__ import annotations

from typing import List, Optional

from projectdesk.logging import get_logger
from projectdesk.service.auth import AuthContext
from projectdesk.service.authorization import (
    COMMENT_WRITERS,
    NOTE_MANAGERS,
    NOTE_READERS,
    ProjectAccess,
)
from projectdesk.service.errors import ForbiddenError, NotFoundError
from projectdesk.storage.models import Note, NoteComment

logger = get_logger(__name__)


class NoteService:
    """Project notes and the comment threads under them.

    Only project ``admin`` members write notes. Every member reads them and
    comments; a comment can be edited or deleted by its author alone.
    """

    def __init__(self, store, access: Optional[ProjectAccess] = None) -> None:
        self.store = store
        self.access = access or ProjectAccess(store)

    def _note_in_project(self, project_id: str, note_id: str) -> Note:
        note = self.store.get_note(note_id)
        if not note or note.project_id != project_id:
            raise NotFoundError("note not found", detail={"note_id": note_id})
        return note

    def _comment_on_note(self, note_id: str, comment_id: str) -> NoteComment:
        comment = self.store.get_comment(comment_id)
        if not comment or comment.note_id != note_id:
            raise NotFoundError("comment not found", detail={"comment_id": comment_id})
        return comment

    def list_notes(self, ctx: AuthContext, project_id: str) -> List[Note]:
        self.access.require(ctx, project_id, NOTE_READERS)
        return self.store.list_notes(project_id)

    def create_note(self, ctx: AuthContext, project_id: str, content: str) -> Note:
        self.access.require(ctx, project_id, NOTE_MANAGERS)
        note = self.store.create_note(project_id, ctx.user_id, content)
        logger.info("note_created", project_id=project_id, note_id=note.id, user_id=ctx.user_id)
        return note

    def update_note(
        self,
        ctx: AuthContext,
        project_id: str,
        note_id: str,
        *,
        content: Optional[str] = None,
        is_pinned: Optional[bool] = None,
    ) -> Note:
        self.access.require(ctx, project_id, NOTE_MANAGERS)
        self._note_in_project(project_id, note_id)
        note = self.store.update_note(note_id, content=content, is_pinned=is_pinned)
        if not note:
            raise NotFoundError("note not found", detail={"note_id": note_id})
        return note

    def toggle_pin(self, ctx: AuthContext, project_id: str, note_id: str) -> Note:
        self.access.require(ctx, project_id, NOTE_MANAGERS)
        self._note_in_project(project_id, note_id)
        note = self.store.toggle_note_pin(note_id)
        if not note:
            raise NotFoundError("note not found", detail={"note_id": note_id})
        return note

    def delete_note(self, ctx: AuthContext, project_id: str, note_id: str) -> None:
        self.access.require(ctx, project_id, NOTE_MANAGERS)
        self._note_in_project(project_id, note_id)
        if not self.store.delete_note(note_id):
            raise NotFoundError("note not found", detail={"note_id": note_id})
        logger.info("note_deleted", project_id=project_id, note_id=note_id, user_id=ctx.user_id)

    # comments
    def list_comments(
        self, ctx: AuthContext, project_id: str, note_id: str
    ) -> List[NoteComment]:
        self.access.require(ctx, project_id, NOTE_READERS)
        self._note_in_project(project_id, note_id)
        return self.store.list_comments(note_id)

    def create_comment(
        self,
        ctx: AuthContext,
        project_id: str,
        note_id: str,
        content: str,
        *,
        parent_id: Optional[str] = None,
    ) -> NoteComment:
        self.access.require(ctx, project_id, COMMENT_WRITERS)
        self._note_in_project(project_id, note_id)
        if parent_id is not None:
            self._comment_on_note(note_id, parent_id)
        return self.store.create_comment(note_id, ctx.user_id, content, parent_id=parent_id)

    def _own_comment(
        self, ctx: AuthContext, project_id: str, note_id: str, comment_id: str
    ) -> NoteComment:
        self.access.require(ctx, project_id, COMMENT_WRITERS)
        self._note_in_project(project_id, note_id)
        comment = self._comment_on_note(note_id, comment_id)
        if comment.created_by != ctx.user_id:
            raise ForbiddenError("only the author can change this comment")
        return comment

    def update_comment(
        self, ctx: AuthContext, project_id: str, note_id: str, comment_id: str, content: str
    ) -> NoteComment:
        self._own_comment(ctx, project_id, note_id, comment_id)
        comment = self.store.update_comment(comment_id, content)
        if not comment:
            raise NotFoundError("comment not found", detail={"comment_id": comment_id})
        return comment

    def delete_comment(
        self, ctx: AuthContext, project_id: str, note_id: str, comment_id: str
    ) -> None:
        self._own_comment(ctx, project_id, note_id, comment_id)
        if not self.store.delete_comment(comment_id):
            raise NotFoundError("comment not found", detail={"comment_id": comment_id})
