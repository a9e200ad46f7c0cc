"""
Note Model
==========

Clinical session notes. ``structured_output`` holds the generated note as a
JSON object (``{"content": "...", "format": "SOAP"}``).
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

NOTE_FORMATS = ("SOAP", "DAP", "BIRP")


class Note(SQLModel, table=True):
    __tablename__ = "notes"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=36, foreign_key="users.id")
    client_name: Optional[str] = None
    session_date: Optional[datetime] = Field(default_factory=lambda: datetime.now(timezone.utc))
    session_type: Optional[str] = None  # "Individual", "Couples", "Family", ...
    risk_flags: Optional[str] = None
    raw_notes: Optional[str] = None
    transcript: Optional[str] = None
    structured_output: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    selected_format: Optional[str] = Field(default="SOAP", max_length=8)
    is_favorite: bool = Field(default=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
