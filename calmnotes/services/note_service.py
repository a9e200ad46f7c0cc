"""
Note Service
============

CRUD for clinical notes. Callers are responsible for ownership checks;
``get_owned_note`` is the helper routers use for that.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlmodel import Session, col, select

from calmnotes.models.note import Note

logger = logging.getLogger(__name__)


class NoteNotFoundError(LookupError):
    pass


class NoteAccessError(PermissionError):
    pass


def list_notes(session: Session, user_id: str) -> List[Note]:
    """All notes for *user_id*, newest first."""
    stmt = (
        select(Note)
        .where(Note.user_id == user_id)
        .order_by(col(Note.created_at).desc(), col(Note.id).desc())
    )
    return list(session.exec(stmt).all())


def get_note(session: Session, note_id: int) -> Optional[Note]:
    return session.get(Note, note_id)


def get_owned_note(session: Session, note_id: int, user_id: str) -> Note:
    """
    Fetch a note and check it belongs to *user_id*.

    Raises:
        NoteNotFoundError: no such note.
        NoteAccessError: the note belongs to another user.
    """
    note = get_note(session, note_id)
    if note is None:
        raise NoteNotFoundError(note_id)
    if note.user_id != user_id:
        logger.warning("Note access denied: note=%s user=%s", note_id, user_id)
        raise NoteAccessError(note_id)
    return note


def create_note(session: Session, user_id: str, data: Dict[str, Any]) -> Note:
    note = Note(**data, user_id=user_id)
    session.add(note)
    session.commit()
    session.refresh(note)
    logger.info("Note created: note=%s user=%s", note.id, user_id)
    return note


def update_note(session: Session, note: Note, changes: Dict[str, Any]) -> Note:
    for field, value in changes.items():
        setattr(note, field, value)
    note.updated_at = datetime.now(timezone.utc)
    session.add(note)
    session.commit()
    session.refresh(note)
    return note


def delete_note(session: Session, note: Note) -> None:
    session.delete(note)
    session.commit()
    logger.info("Note deleted: note=%s", note.id)
