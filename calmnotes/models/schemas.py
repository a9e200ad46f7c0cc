from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """API models use camelCase on the wire and snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class RegisterRequest(CamelModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)


class LoginRequest(CamelModel):
    email: str
    password: str


class UserResponse(CamelModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------

NoteFormat = Literal["SOAP", "DAP", "BIRP"]


class NoteCreate(CamelModel):
    client_name: Optional[str] = None
    session_date: Optional[datetime] = None
    session_type: Optional[str] = None
    risk_flags: Optional[str] = None
    raw_notes: Optional[str] = None
    transcript: Optional[str] = None
    structured_output: Optional[Dict[str, Any]] = None
    selected_format: Optional[NoteFormat] = "SOAP"
    is_favorite: bool = False


class NoteUpdate(CamelModel):
    client_name: Optional[str] = None
    session_date: Optional[datetime] = None
    session_type: Optional[str] = None
    risk_flags: Optional[str] = None
    raw_notes: Optional[str] = None
    transcript: Optional[str] = None
    structured_output: Optional[Dict[str, Any]] = None
    selected_format: Optional[NoteFormat] = None
    is_favorite: Optional[bool] = None


class NoteResponse(CamelModel):
    id: int
    user_id: str
    client_name: Optional[str] = None
    session_date: Optional[datetime] = None
    session_type: Optional[str] = None
    risk_flags: Optional[str] = None
    raw_notes: Optional[str] = None
    transcript: Optional[str] = None
    structured_output: Optional[Dict[str, Any]] = None
    selected_format: Optional[str] = None
    is_favorite: bool = False
    created_at: datetime
    updated_at: datetime


class GenerateRequest(CamelModel):
    raw_notes: Optional[str] = None
    transcript: Optional[str] = None
    format: str = "SOAP"
    client_name: Optional[str] = None
    session_type: Optional[str] = None
    risk_flags: Optional[str] = None


class GenerateResponse(CamelModel):
    content: str
    format: str


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------

class UsageResponse(CamelModel):
    generations: int
    limit: Optional[int] = None  # None = unlimited
    period_start: Optional[datetime] = None


class SubscriptionResponse(CamelModel):
    plan: str
    status: str
    current_period_end: Optional[datetime] = None
    usage: UsageResponse


class CheckoutRequest(CamelModel):
    plan: str


class RedirectResponse(CamelModel):
    url: str


class PlanResponse(CamelModel):
    key: str
    name: str
    monthly_generation_limit: Optional[int] = None
    purchasable: bool


class PlansResponse(CamelModel):
    plans: List[PlanResponse]
