"""Materializer -- turns generated memos and commitments into tasks and reminders.

Tasks come from the memo's action items and are de-duplicated by
normalised title within the memo, so re-running a job never doubles them.
Reminders come from extracted commitments; an explicit parseable due date
wins, otherwise the per-type default offset applies. Every write is
independent: a failed row is logged and the rest continue.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, Field, field_validator

from src.dealflow.crm.schemas import (
    ReminderCreate,
    ReminderType,
    Task,
    TaskCreate,
    TaskPriority,
)
from src.dealflow.pipeline.extraction import ExtractedCommitment, resolve_related_person

if TYPE_CHECKING:
    from src.dealflow.crm.repository import CRMRepository
    from src.dealflow.crm.schemas import Reminder
    from src.dealflow.pipeline.llm import GenerativeClient

logger = structlog.get_logger(__name__)

DEFAULT_DUE_DAYS: dict[ReminderType, int] = {
    ReminderType.COMMITMENT: 7,
    ReminderType.FOLLOW_UP: 14,
    ReminderType.INTRO_REQUEST: 7,
    ReminderType.DEADLINE: 3,
}


class ActionItem(BaseModel):
    title: str = Field(..., description="Brief task description (max 100 chars)")
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: str | None = Field(None, description="YYYY-MM-DD if stated")

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: Any) -> Any:
        try:
            return TaskPriority(str(value).strip().lower())
        except ValueError:
            return TaskPriority.MEDIUM


class ActionItemList(BaseModel):
    items: list[ActionItem] = Field(default_factory=list)


def parse_due_date(value: str | None) -> datetime | None:
    """Parse an ISO date or datetime; anything else is None."""
    if not value or not value.strip():
        return None
    raw = value.strip()
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = datetime.combine(date.fromisoformat(raw[:10]), time(9, 0))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def default_due_date(reminder_type: ReminderType, now: datetime) -> datetime:
    return now + timedelta(days=DEFAULT_DUE_DAYS.get(reminder_type, 7))


class Materializer:
    """Creates tasks and reminders for a saved memo.

    Args:
        llm: GenerativeClient for action item extraction.
        repository: CRMRepository for writes.
    """

    MAX_TITLE_CHARS = 200

    def __init__(self, llm: GenerativeClient, repository: CRMRepository) -> None:
        self._llm = llm
        self._repository = repository

    async def extract_action_items(self, memo_content: str) -> list[ActionItem]:
        messages = [
            {
                "role": "user",
                "content": (
                    "Extract action items from this meeting memo. Each item needs a "
                    "brief title (max 100 chars) and a priority (low, medium, or high). "
                    "Return an empty list if there are no tasks.\n\n"
                    f"Memo:\n{memo_content}"
                ),
            }
        ]
        try:
            result = await self._llm.structured(
                ActionItemList, messages, purpose="action_items", max_tokens=2048
            )
        except Exception as exc:
            logger.warning(
                "action_item_extraction_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return []
        return result.items

    async def create_tasks(
        self,
        owner_id: str,
        memo_id: str,
        company_id: str | None,
        items: list[ActionItem],
    ) -> list[Task]:
        """Insert tasks not already present on the memo (by normalised title)."""
        try:
            seen = {t.strip().lower() for t in await self._repository.list_task_titles(owner_id, memo_id)}
        except Exception as exc:
            logger.warning(
                "task_titles_lookup_failed",
                memo_id=memo_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            seen = set()

        created: list[Task] = []
        for item in items:
            title = item.title.strip()[: self.MAX_TITLE_CHARS]
            key = title.lower()
            if not key or key in seen:
                continue
            seen.add(key)
            try:
                task = await self._repository.create_task(
                    owner_id,
                    TaskCreate(
                        title=title,
                        memo_id=memo_id,
                        company_id=company_id,
                        priority=item.priority,
                        due_date=parse_due_date(item.due_date),
                    ),
                )
            except Exception as exc:
                logger.warning(
                    "task_create_failed",
                    memo_id=memo_id,
                    title=title,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                continue
            created.append(task)

        logger.info("tasks_created", memo_id=memo_id, count=len(created))
        return created

    async def create_reminders(
        self,
        owner_id: str,
        memo_id: str,
        company_id: str | None,
        commitments: list[ExtractedCommitment],
        contact_map: dict[str, str],
        now: datetime | None = None,
    ) -> list[Reminder]:
        """Insert one pending reminder per commitment."""
        now = now or datetime.now(timezone.utc)
        created: list[Reminder] = []

        for commitment in commitments:
            due = parse_due_date(commitment.due_date) or default_due_date(commitment.type, now)
            try:
                reminder = await self._repository.create_reminder(
                    owner_id,
                    ReminderCreate(
                        type=commitment.type,
                        title=commitment.title.strip()[: self.MAX_TITLE_CHARS],
                        context=commitment.context,
                        source_text=commitment.source_quote,
                        due_date=due,
                        priority=commitment.priority,
                        contact_id=resolve_related_person(commitment.related_person, contact_map),
                        company_id=company_id,
                        memo_id=memo_id,
                        metadata={"related_person": commitment.related_person}
                        if commitment.related_person
                        else {},
                    ),
                )
            except Exception as exc:
                logger.warning(
                    "reminder_create_failed",
                    memo_id=memo_id,
                    title=commitment.title,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                continue
            created.append(reminder)

        logger.info("reminders_created", memo_id=memo_id, count=len(created))
        return created
