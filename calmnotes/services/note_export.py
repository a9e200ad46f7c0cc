"""
Note PDF Export
===============

Renders one note as a LETTER-size PDF: CalmNotes header, client and session
details, risk flags, the generated note (falling back to the raw notes) and
a footer carrying the note id and export date.
"""

import io
import logging
import re
from datetime import datetime, timezone
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.styles import ParagraphStyle
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer

from calmnotes.models.note import Note

logger = logging.getLogger(__name__)

MARGIN = 50
DEFAULT_FORMAT = "SOAP"

_STYLES = {
    "title": ParagraphStyle("title", fontName="Helvetica-Bold", fontSize=20, leading=24, alignment=TA_CENTER),
    "subtitle": ParagraphStyle(
        "subtitle", fontName="Helvetica", fontSize=10, leading=12, alignment=TA_CENTER,
        textColor=colors.HexColor("#666666"),
    ),
    "meta": ParagraphStyle(
        "meta", fontName="Helvetica", fontSize=11, leading=15, textColor=colors.HexColor("#333333"),
    ),
    "meta_bold": ParagraphStyle(
        "meta_bold", fontName="Helvetica-Bold", fontSize=11, leading=15, textColor=colors.HexColor("#333333"),
    ),
    "risk": ParagraphStyle(
        "risk", fontName="Helvetica-Bold", fontSize=11, leading=15, spaceBefore=4,
        textColor=colors.HexColor("#cc0000"),
    ),
    "body": ParagraphStyle(
        "body", fontName="Helvetica", fontSize=10, leading=14, spaceAfter=8, textColor=colors.HexColor("#222222"),
    ),
    "footer": ParagraphStyle(
        "footer", fontName="Helvetica", fontSize=8, leading=10, alignment=TA_CENTER,
        textColor=colors.HexColor("#999999"),
    ),
}


def export_filename(note: Note) -> str:
    """``<client>_<format>.pdf`` with every non-alphanumeric character replaced by ``_``."""
    base = re.sub(r"[^a-zA-Z0-9]", "_", note.client_name or "note")
    return f"{base}_{note.selected_format or DEFAULT_FORMAT}.pdf"


def note_content(note: Note) -> str:
    output = note.structured_output if isinstance(note.structured_output, dict) else {}
    return output.get("content") or note.raw_notes or "No content."


def _text(value: str) -> str:
    return escape(value).replace("\n", "<br/>")


def _rule() -> HRFlowable:
    return HRFlowable(width="100%", thickness=1, color=colors.HexColor("#dddddd"), spaceBefore=6, spaceAfter=8)


def _session_date(value: datetime) -> str:
    return f"{value:%B} {value.day}, {value:%Y}"


def render_note_pdf(note: Note) -> bytes:
    story = [
        Paragraph("CalmNotes", _STYLES["title"]),
        Spacer(1, 4),
        Paragraph("Clinical Documentation", _STYLES["subtitle"]),
        Spacer(1, 12),
        _rule(),
    ]

    if note.client_name:
        story.append(Paragraph(_text(f"Client: {note.client_name}"), _STYLES["meta_bold"]))
    if note.session_date:
        story.append(Paragraph(f"Date: {_session_date(note.session_date)}", _STYLES["meta"]))
    if note.session_type:
        story.append(Paragraph(_text(f"Type: {note.session_type}"), _STYLES["meta"]))
    if note.selected_format:
        story.append(Paragraph(_text(f"Format: {note.selected_format}"), _STYLES["meta_bold"]))
    if note.risk_flags:
        story.append(Paragraph(_text(f"Risk Flags: {note.risk_flags}"), _STYLES["risk"]))

    story.append(_rule())

    for block in note_content(note).split("\n\n"):
        if block.strip():
            story.append(Paragraph(_text(block), _STYLES["body"]))

    exported_on = datetime.now(timezone.utc).date().isoformat()
    story.append(Spacer(1, 24))
    story.append(
        Paragraph(f"Generated by CalmNotes &bull; Note ID: {note.id} &bull; {exported_on}", _STYLES["footer"])
    )

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=LETTER,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=MARGIN,
        bottomMargin=MARGIN,
        title=export_filename(note),
        author="CalmNotes",
    )
    doc.build(story)
    pdf = buffer.getvalue()
    logger.info("Note exported to PDF: note=%s bytes=%d", note.id, len(pdf))
    return pdf
