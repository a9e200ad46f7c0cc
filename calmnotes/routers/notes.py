"""
Notes Router
============

    GET    /api/notes           — List the user's notes, newest first
    POST   /api/notes           — Create a note (201)
    POST   /api/notes/generate  — AI-generate a structured note (usage-gated)
    GET    /api/notes/{id}      — Fetch one note
    PUT    /api/notes/{id}      — Partial update
    DELETE /api/notes/{id}      — Delete (204)
    GET    /api/notes/{id}/export/pdf — Download the note as a PDF

A note owned by another user answers 401.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlmodel import Session

from calmnotes.auth.session_auth import CurrentUser, get_current_user
from calmnotes.core.database import get_session
from calmnotes.models.note import NOTE_FORMATS, Note
from calmnotes.models.schemas import (
    GenerateRequest,
    GenerateResponse,
    NoteCreate,
    NoteResponse,
    NoteUpdate,
)
from calmnotes.services import note_export, note_service
from calmnotes.services.generation_gate import generation_gate
from calmnotes.services.note_generator import GenerationRequest, note_generator

logger = logging.getLogger(__name__)

router = APIRouter()


def _owned_note(db: Session, note_id: int, user: CurrentUser) -> Note:
    try:
        return note_service.get_owned_note(db, note_id, user.id)
    except note_service.NoteNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note not found")
    except note_service.NoteAccessError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized access to note")


@router.get("", response_model=List[NoteResponse])
async def list_notes(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_session)):
    return note_service.list_notes(db, user.id)


@router.post("", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
async def create_note(
    body: NoteCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    return note_service.create_note(db, user.id, body.model_dump(exclude_unset=True))


@router.post("/generate", response_model=GenerateResponse)
async def generate_note(body: GenerateRequest, user: CurrentUser = Depends(get_current_user)):
    """Validate, run the generation gate, call the LLM, then record one generation."""
    if body.format not in NOTE_FORMATS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"format must be one of {', '.join(NOTE_FORMATS)}",
        )
    if not body.raw_notes and not body.transcript:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either raw notes or transcript is required.",
        )

    generation_gate.require(user.id)

    content = await note_generator.generate(
        GenerationRequest(
            format=body.format,
            raw_notes=body.raw_notes,
            transcript=body.transcript,
            client_name=body.client_name,
            session_type=body.session_type,
            risk_flags=body.risk_flags,
        )
    )

    generation_gate.record_success(user.id)
    return GenerateResponse(content=content, format=body.format)


@router.get("/{note_id}", response_model=NoteResponse)
async def get_note(
    note_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    return _owned_note(db, note_id, user)


@router.put("/{note_id}", response_model=NoteResponse)
async def update_note(
    note_id: int,
    body: NoteUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    note = _owned_note(db, note_id, user)
    return note_service.update_note(db, note, body.model_dump(exclude_unset=True))


@router.delete("/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_note(
    note_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    note = _owned_note(db, note_id, user)
    note_service.delete_note(db, note)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{note_id}/export/pdf")
async def export_note_pdf(
    note_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    note = _owned_note(db, note_id, user)
    return Response(
        content=note_export.render_note_pdf(note),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{note_export.export_filename(note)}"'},
    )
