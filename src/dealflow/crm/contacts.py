"""ContactMatcher -- match-or-create for extracted meeting participants.

Matching precedence is fixed: exact email, then exact external profile
URL, then case-insensitive exact name. A matched contact only gains data:
null columns are filled from the new extraction, populated columns are
never overwritten, and notes grow by one date-stamped paragraph per
meeting.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog

from src.dealflow.crm.repository import CONTACT_FILLABLE_FIELDS
from src.dealflow.crm.schemas import Contact, ContactCreate, MeetingContext

if TYPE_CHECKING:
    from src.dealflow.crm.repository import CRMRepository

logger = structlog.get_logger(__name__)


def stamp_notes(existing: str, addition: str, when: datetime) -> str:
    """Append ``addition`` to ``existing`` as a ``[YYYY-MM-DD]`` paragraph."""
    addition = addition.strip()
    if not addition:
        return existing
    paragraph = f"[{when.date().isoformat()}] {addition}"
    if not existing.strip():
        return paragraph
    return f"{existing.rstrip()}\n\n{paragraph}"


class ContactMatcher:
    """Matches extracted contacts to stored ones and records meeting links.

    Args:
        repository: CRMRepository for contact lookups and writes.
    """

    def __init__(self, repository: CRMRepository) -> None:
        self._repository = repository

    async def match(self, owner_id: str, candidate: ContactCreate) -> Contact | None:
        """Find an existing contact using the fixed precedence order."""
        if candidate.email:
            found = await self._repository.find_contact_by_email(owner_id, candidate.email)
            if found is not None:
                return found
        if candidate.linkedin_url:
            found = await self._repository.find_contact_by_linkedin(
                owner_id, candidate.linkedin_url
            )
            if found is not None:
                return found
        if candidate.name.strip():
            return await self._repository.find_contact_by_name(owner_id, candidate.name)
        return None

    async def upsert(
        self,
        owner_id: str,
        candidate: ContactCreate,
        met_at: datetime | None = None,
    ) -> tuple[Contact, bool]:
        """Match-or-create a contact.

        Args:
            owner_id: Owning user UUID string.
            candidate: Extracted contact data; ``notes`` holds this
                meeting's note text (unstamped).
            met_at: Meeting date used for the notes stamp and last_met_at.

        Returns:
            Tuple of (contact, created).
        """
        met_at = met_at or datetime.now(timezone.utc)
        if met_at.tzinfo is None:
            met_at = met_at.replace(tzinfo=timezone.utc)
        existing = await self.match(owner_id, candidate)

        if existing is None:
            created = await self._repository.create_contact(
                owner_id,
                candidate.model_copy(
                    update={
                        "name": candidate.name.strip(),
                        "notes": stamp_notes("", candidate.notes, met_at),
                        "last_met_at": met_at,
                    }
                ),
            )
            logger.info("contact_created", contact_id=created.id, name=created.name)
            return created, True

        values: dict[str, Any] = {}
        for field in CONTACT_FILLABLE_FIELDS:
            new_value = getattr(candidate, field)
            if getattr(existing, field) is None and new_value is not None:
                values[field] = new_value

        notes = stamp_notes(existing.notes, candidate.notes, met_at)
        if notes != existing.notes:
            values["notes"] = notes
        if existing.last_met_at is None or existing.last_met_at < met_at:
            values["last_met_at"] = met_at

        if not values:
            return existing, False

        updated = await self._repository.update_contact(owner_id, existing.id, values)
        logger.info(
            "contact_matched",
            contact_id=existing.id,
            filled=sorted(k for k in values if k not in ("notes", "last_met_at")),
        )
        return updated, False

    async def link(
        self,
        owner_id: str,
        contact_id: str,
        memo_id: str,
        context: MeetingContext,
        meeting_date: datetime | None = None,
        memo_title: str | None = None,
    ) -> None:
        """Upsert the (contact, memo) link with this meeting's context."""
        payload = context.model_dump(mode="json")
        payload["meeting_date"] = meeting_date.isoformat() if meeting_date else None
        payload["memo_title"] = memo_title
        await self._repository.upsert_contact_memo(owner_id, contact_id, memo_id, payload)
