"""Contact and commitment extraction from meeting transcripts.

Two independent instructor + LiteLLM extractions run over the same
transcript:

- contacts: the humans in the meeting (never organisations, products, or
  places, and never the memo owner) with per-meeting context;
- commitments: promises, follow-ups, intro requests, and deadlines that
  become reminders.

Both degrade to an empty list on any failure. ``ContactRecorder`` then
match-or-creates each contact, links it to the memo, and returns the
name -> contact id map used to attach reminders to people.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, Field, field_validator

from src.dealflow.crm.schemas import (
    ContactCreate,
    MeetingContext,
    RelationshipType,
    ReminderPriority,
    ReminderType,
)

if TYPE_CHECKING:
    from src.dealflow.crm.contacts import ContactMatcher
    from src.dealflow.crm.schemas import Memo
    from src.dealflow.pipeline.llm import GenerativeClient

logger = structlog.get_logger(__name__)

_COMMITMENT_TYPES = {
    ReminderType.COMMITMENT,
    ReminderType.FOLLOW_UP,
    ReminderType.INTRO_REQUEST,
    ReminderType.DEADLINE,
}


# ── Extraction Models ────────────────────────────────────────────────────────


class ExtractedContact(BaseModel):
    """A person mentioned in the meeting."""

    name: str = Field(..., description="The person's name (first name OK if that's all mentioned)")
    email: str | None = None
    phone: str | None = None
    linkedin_url: str | None = None
    title: str | None = Field(None, description="Job title if mentioned")
    company: str | None = Field(None, description="Company they work at if mentioned")
    relationship_type: RelationshipType | None = Field(
        None, description="founder, investor, advisor, executive, operator, or other"
    )
    notes: str = Field("", description="Brief context about who they are")
    meeting_context: MeetingContext = Field(default_factory=MeetingContext)

    @field_validator("relationship_type", mode="before")
    @classmethod
    def _coerce_relationship(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        try:
            return RelationshipType(str(value).strip().lower())
        except ValueError:
            return RelationshipType.OTHER

    def to_contact_create(self) -> ContactCreate:
        return ContactCreate(
            name=self.name.strip(),
            email=(self.email or "").strip().lower() or None,
            phone=self.phone or None,
            linkedin_url=(self.linkedin_url or "").strip() or None,
            title=self.title or None,
            company_name=self.company or None,
            relationship_type=self.relationship_type,
            notes=self.notes or "",
        )


class ContactExtraction(BaseModel):
    contacts: list[ExtractedContact] = Field(default_factory=list)


class ExtractedCommitment(BaseModel):
    """Something someone promised or asked for in the meeting."""

    type: ReminderType = Field(
        ReminderType.FOLLOW_UP,
        description="commitment, follow_up, intro_request, or deadline",
    )
    title: str = Field(..., description="Short actionable title")
    context: str | None = Field(None, description="Why this matters")
    source_quote: str | None = Field(None, description="Verbatim quote from the transcript")
    related_person: str | None = Field(None, description="Name of the person involved")
    due_date: str | None = Field(None, description="ISO date if a date was stated")
    priority: ReminderPriority = ReminderPriority.MEDIUM

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        try:
            parsed = ReminderType(str(value).strip().lower())
        except ValueError:
            return ReminderType.FOLLOW_UP
        return parsed if parsed in _COMMITMENT_TYPES else ReminderType.FOLLOW_UP

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: Any) -> Any:
        try:
            return ReminderPriority(str(value).strip().lower())
        except ValueError:
            return ReminderPriority.MEDIUM


class CommitmentExtraction(BaseModel):
    commitments: list[ExtractedCommitment] = Field(default_factory=list)


# ── Prompts ──────────────────────────────────────────────────────────────────

CONTACT_SYSTEM_PROMPT = """You extract ONLY HUMAN PEOPLE mentioned in a meeting for a CRM.

CRITICAL RULES:
1. Extract ONLY individual human beings (people with first/last names)
2. DO NOT extract company names, VC fund names, location names, product
   names or services, generic titles without names ("the CEO"), or
   industry terms.

For each person capture their name, title, company, relationship type
(founder, investor, advisor, executive, operator, other), brief notes on
who they are, and what they brought to this meeting: interests, concerns,
asks, key quotes, follow-up items, discussion topics, sentiment
(positive/neutral/negative), and engagement level (high/medium/low).
Only include email, phone, or LinkedIn URL when stated explicitly."""

COMMITMENT_SYSTEM_PROMPT = """You extract commitments from a meeting transcript.

Return every concrete item someone needs to remember:
- commitment: someone promised to do something
- follow_up: a follow-up conversation or check-in was agreed
- intro_request: someone asked to be introduced to a person or company
- deadline: something is due by a stated date

For each give a short title, context, the verbatim source quote, the
related person's name if any, a due date (YYYY-MM-DD) only if one was
stated, and a priority (low, medium, high). Return an empty list when
there are none."""


def _is_owner(name: str, owner_name: str | None) -> bool:
    if not owner_name:
        return False
    lowered = name.strip().lower()
    owner = owner_name.strip().lower()
    return bool(owner) and (owner in lowered or lowered in owner)


def resolve_related_person(name: str | None, contact_map: dict[str, str]) -> str | None:
    """Resolve a person name to a contact id.

    Exact case-insensitive match first, then substring containment in
    either direction (``"Sarah"`` matches ``"Sarah Chen"``).
    """
    if not name or not name.strip():
        return None
    lowered = name.strip().lower()
    for contact_name, contact_id in contact_map.items():
        if contact_name.lower() == lowered:
            return contact_id
    for contact_name, contact_id in contact_map.items():
        candidate = contact_name.lower()
        if lowered in candidate or candidate in lowered:
            return contact_id
    return None


# ── Extractor ────────────────────────────────────────────────────────────────


class MeetingExtractor:
    """Runs the contact and commitment extractions.

    Args:
        llm: GenerativeClient for structured extraction.
    """

    EXCERPT_CHARS = 12000

    def __init__(self, llm: GenerativeClient) -> None:
        self._llm = llm

    async def extract_contacts(
        self, text: str, owner_name: str | None = None
    ) -> list[ExtractedContact]:
        exclude = (
            f'\n\nEXCLUDE: "{owner_name}" (the user who recorded this meeting)'
            if owner_name
            else ""
        )
        messages = [
            {"role": "system", "content": CONTACT_SYSTEM_PROMPT + exclude},
            {"role": "user", "content": f"TRANSCRIPT:\n{text[: self.EXCERPT_CHARS]}"},
        ]
        try:
            result = await self._llm.structured(
                ContactExtraction, messages, purpose="contact_extraction", max_tokens=4096
            )
        except Exception as exc:
            logger.warning(
                "contact_extraction_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return []

        contacts = [
            c for c in result.contacts
            if c.name.strip() and not _is_owner(c.name, owner_name)
        ]
        logger.info("contacts_extracted", count=len(contacts))
        return contacts

    async def extract_commitments(self, text: str) -> list[ExtractedCommitment]:
        messages = [
            {"role": "system", "content": COMMITMENT_SYSTEM_PROMPT},
            {"role": "user", "content": f"TRANSCRIPT:\n{text[: self.EXCERPT_CHARS]}"},
        ]
        try:
            result = await self._llm.structured(
                CommitmentExtraction, messages, purpose="commitment_extraction", max_tokens=4096
            )
        except Exception as exc:
            logger.warning(
                "commitment_extraction_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return []

        commitments = [c for c in result.commitments if c.title.strip()]
        logger.info("commitments_extracted", count=len(commitments))
        return commitments


class ContactRecorder:
    """Upserts extracted contacts and links them to a memo.

    Args:
        matcher: ContactMatcher performing match-or-create.
    """

    def __init__(self, matcher: ContactMatcher) -> None:
        self._matcher = matcher

    async def record(
        self,
        owner_id: str,
        contacts: list[ExtractedContact],
        memo: Memo,
        meeting_date: datetime | None = None,
    ) -> tuple[dict[str, str], int]:
        """Upsert every contact; per-contact failures are logged and skipped.

        Returns:
            Tuple of (name -> contact id map, number of contacts created).
        """
        contact_map: dict[str, str] = {}
        created_count = 0

        for extracted in contacts:
            try:
                contact, created = await self._matcher.upsert(
                    owner_id, extracted.to_contact_create(), meeting_date
                )
                await self._matcher.link(
                    owner_id,
                    contact.id,
                    memo.id,
                    extracted.meeting_context,
                    meeting_date=meeting_date,
                    memo_title=memo.title,
                )
            except Exception as exc:
                logger.warning(
                    "contact_upsert_failed",
                    name=extracted.name,
                    memo_id=memo.id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                continue

            contact_map[extracted.name.strip()] = contact.id
            if created:
                created_count += 1

        return contact_map, created_count
