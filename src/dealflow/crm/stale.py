"""StaleRelationshipScanner -- reminders to reconnect with contacts gone quiet.

A contact who appears in at least one memo but has not been met for
longer than the threshold gets a ``stale_relationship`` reminder, unless a
pending one already exists. Priority escalates with silence: over 60 days
high, over 45 days medium, otherwise low.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog

from src.dealflow.crm.schemas import (
    Contact,
    ReminderCreate,
    ReminderPriority,
    ReminderType,
)

if TYPE_CHECKING:
    from src.dealflow.crm.repository import CRMRepository

logger = structlog.get_logger(__name__)

DEFAULT_THRESHOLD_DAYS = 30


def stale_priority(days_since: int) -> ReminderPriority:
    """Map days of silence to reminder priority."""
    if days_since > 60:
        return ReminderPriority.HIGH
    if days_since > 45:
        return ReminderPriority.MEDIUM
    return ReminderPriority.LOW


def _reconnect_title(contact: Contact) -> str:
    if contact.company_name:
        return f"Reconnect with {contact.name} ({contact.company_name})"
    return f"Reconnect with {contact.name}"


class StaleRelationshipScanner:
    """Creates reconnect reminders for contacts past the silence threshold.

    Args:
        repository: CRMRepository for contact and reminder access.
        threshold_days: Days without a meeting before a contact is stale.
    """

    def __init__(
        self,
        repository: CRMRepository,
        threshold_days: int = DEFAULT_THRESHOLD_DAYS,
    ) -> None:
        self._repository = repository
        self._threshold_days = threshold_days

    async def scan(self, owner_id: str, now: datetime | None = None) -> int:
        """Create reminders for one owner's stale contacts.

        Returns:
            Number of reminders created.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self._threshold_days)
        created = 0

        for contact in await self._repository.list_linked_contacts(owner_id):
            last_met = contact.last_met_at or contact.created_at
            if last_met.tzinfo is None:
                last_met = last_met.replace(tzinfo=timezone.utc)
            if last_met >= cutoff:
                continue

            if await self._repository.has_pending_reminder(
                owner_id, contact.id, ReminderType.STALE_RELATIONSHIP
            ):
                continue

            days_since = (now - last_met).days
            try:
                await self._repository.create_reminder(
                    owner_id,
                    ReminderCreate(
                        type=ReminderType.STALE_RELATIONSHIP,
                        title=_reconnect_title(contact),
                        context=f"Last met {days_since} days ago",
                        due_date=now,
                        priority=stale_priority(days_since),
                        contact_id=contact.id,
                        metadata={"days_since_contact": days_since},
                    ),
                )
                created += 1
            except Exception:
                logger.warning(
                    "stale_reminder_create_failed",
                    contact_id=contact.id,
                    exc_info=True,
                )

        if created:
            logger.info("stale_reminders_created", owner_id=owner_id, count=created)
        return created

    async def scan_all(self, now: datetime | None = None) -> int:
        """Scan every owner that has contacts."""
        total = 0
        for owner_id in await self._repository.list_owner_ids_with_contacts():
            total += await self.scan(owner_id, now=now)
        return total
