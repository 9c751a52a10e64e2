"""Pydantic v2 schemas for memos and the CRM records derived from them.

Memos are the critical output of a pipeline run; companies, contacts,
contact-memo links, tasks, and reminders are best-effort enrichment that
may be missing for a completed job.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class RelationshipType(str, Enum):
    """How a contact relates to the memo owner."""

    FOUNDER = "founder"
    INVESTOR = "investor"
    ADVISOR = "advisor"
    EXECUTIVE = "executive"
    OPERATOR = "operator"
    OTHER = "other"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ReminderType(str, Enum):
    """Kinds of reminders. The first four come from meeting extraction."""

    COMMITMENT = "commitment"
    FOLLOW_UP = "follow_up"
    INTRO_REQUEST = "intro_request"
    DEADLINE = "deadline"
    STALE_RELATIONSHIP = "stale_relationship"


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SNOOZED = "snoozed"
    COMPLETED = "completed"
    DISMISSED = "dismissed"


class ReminderPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ── Memo ─────────────────────────────────────────────────────────────────────


class MemoCreate(BaseModel):
    """Fields written when a pipeline run saves its memo."""

    source: str
    source_id: str | None = None
    title: str
    content: str
    summary: str = ""
    company_id: str | None = None
    meeting_date: datetime | None = None
    participants: list[str] = Field(default_factory=list)
    template_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Memo(MemoCreate):
    """A persisted memo."""

    id: str
    owner_id: str
    drive_file_id: str | None = None
    drive_url: str | None = None
    created_at: datetime
    updated_at: datetime


# ── Company ──────────────────────────────────────────────────────────────────


class CompanyCreate(BaseModel):
    name: str
    domain: str | None = None
    website: str | None = None
    industry: str | None = None
    stage: str | None = None
    founders: list[str] = Field(default_factory=list)


class Company(CompanyCreate):
    id: str
    owner_id: str
    created_at: datetime


# ── Contacts ─────────────────────────────────────────────────────────────────


class MeetingContext(BaseModel):
    """What a contact brought to one specific meeting."""

    their_interests: list[str] = Field(default_factory=list, description="Topics they showed interest in")
    their_concerns: list[str] = Field(default_factory=list, description="Concerns or objections they raised")
    their_asks: list[str] = Field(default_factory=list, description="Requests they made")
    key_quotes: list[str] = Field(default_factory=list, description="Notable verbatim quotes")
    follow_up_items: list[str] = Field(default_factory=list, description="Follow-ups involving them")
    discussion_topics: list[str] = Field(default_factory=list, description="Topics they discussed")
    sentiment: str | None = Field(None, description="positive, neutral, or negative")
    engagement_level: str | None = Field(None, description="high, medium, or low")


class ContactCreate(BaseModel):
    name: str
    email: str | None = None
    phone: str | None = None
    linkedin_url: str | None = None
    title: str | None = None
    company_name: str | None = None
    relationship_type: RelationshipType | None = None
    notes: str = ""
    last_met_at: datetime | None = None


class Contact(ContactCreate):
    id: str
    owner_id: str
    created_at: datetime
    updated_at: datetime


class ContactMemoLink(BaseModel):
    """Per-meeting context joining a contact to a memo."""

    contact_id: str
    memo_id: str
    owner_id: str
    context: dict[str, Any] = Field(default_factory=dict)


# ── Tasks & Reminders ────────────────────────────────────────────────────────


class TaskCreate(BaseModel):
    title: str
    memo_id: str | None = None
    company_id: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    due_date: datetime | None = None


class Task(TaskCreate):
    id: str
    owner_id: str
    created_at: datetime


class ReminderCreate(BaseModel):
    type: ReminderType
    title: str
    context: str | None = None
    source_text: str | None = None
    due_date: datetime
    priority: ReminderPriority = ReminderPriority.MEDIUM
    status: ReminderStatus = ReminderStatus.PENDING
    contact_id: str | None = None
    company_id: str | None = None
    memo_id: str | None = None
    snoozed_until: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Reminder(ReminderCreate):
    id: str
    owner_id: str
    completed_at: datetime | None = None
    created_at: datetime
