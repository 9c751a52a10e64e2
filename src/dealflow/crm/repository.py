"""CRM repository -- async persistence for memos, companies, contacts, tasks, reminders.

Follows the session_factory callable pattern. All methods take owner_id as
first argument and scope every query to that owner. Writes are single-row
inserts, updates, or upserts on natural keys; there are no multi-entity
transactions, so a memo may briefly exist without its contacts.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import distinct, exists, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.dealflow.crm.models import (
    CompanyModel,
    ContactMemoModel,
    ContactModel,
    MemoModel,
    ReminderModel,
    TaskModel,
)
from src.dealflow.crm.schemas import (
    Company,
    CompanyCreate,
    Contact,
    ContactCreate,
    Memo,
    MemoCreate,
    RelationshipType,
    Reminder,
    ReminderCreate,
    ReminderPriority,
    ReminderStatus,
    ReminderType,
    Task,
    TaskCreate,
    TaskPriority,
    TaskStatus,
)

logger = structlog.get_logger(__name__)

# Columns a matched contact may have filled in from newer extractions
CONTACT_FILLABLE_FIELDS = (
    "email",
    "phone",
    "linkedin_url",
    "title",
    "company_name",
    "relationship_type",
)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _uuid_or_none(value: str | None) -> uuid.UUID | None:
    return uuid.UUID(value) if value else None


def _str_or_none(value: uuid.UUID | None) -> str | None:
    return str(value) if value is not None else None


def _model_to_memo(model: MemoModel) -> Memo:
    """Convert MemoModel to Memo schema."""
    return Memo(
        id=str(model.id),
        owner_id=str(model.owner_id),
        company_id=_str_or_none(model.company_id),
        source=model.source,
        source_id=model.source_id,
        title=model.title,
        content=model.content or "",
        summary=model.summary or "",
        meeting_date=model.meeting_date,
        participants=model.participants_data or [],
        template_id=model.template_id,
        metadata=model.metadata_data or {},
        drive_file_id=model.drive_file_id,
        drive_url=model.drive_url,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


def _model_to_company(model: CompanyModel) -> Company:
    """Convert CompanyModel to Company schema."""
    return Company(
        id=str(model.id),
        owner_id=str(model.owner_id),
        name=model.name,
        domain=model.domain,
        website=model.website,
        industry=model.industry,
        stage=model.stage,
        founders=model.founders_data or [],
        created_at=model.created_at,
    )


def _model_to_contact(model: ContactModel) -> Contact:
    """Convert ContactModel to Contact schema."""
    return Contact(
        id=str(model.id),
        owner_id=str(model.owner_id),
        name=model.name,
        email=model.email,
        phone=model.phone,
        linkedin_url=model.linkedin_url,
        title=model.title,
        company_name=model.company_name,
        relationship_type=(
            RelationshipType(model.relationship_type) if model.relationship_type else None
        ),
        notes=model.notes or "",
        last_met_at=model.last_met_at,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


def _model_to_task(model: TaskModel) -> Task:
    """Convert TaskModel to Task schema."""
    return Task(
        id=str(model.id),
        owner_id=str(model.owner_id),
        memo_id=_str_or_none(model.memo_id),
        company_id=_str_or_none(model.company_id),
        title=model.title,
        priority=TaskPriority(model.priority),
        status=TaskStatus(model.status),
        due_date=model.due_date,
        created_at=model.created_at,
    )


def _model_to_reminder(model: ReminderModel) -> Reminder:
    """Convert ReminderModel to Reminder schema."""
    return Reminder(
        id=str(model.id),
        owner_id=str(model.owner_id),
        contact_id=_str_or_none(model.contact_id),
        company_id=_str_or_none(model.company_id),
        memo_id=_str_or_none(model.memo_id),
        type=ReminderType(model.type),
        title=model.title,
        context=model.context,
        source_text=model.source_text,
        due_date=model.due_date,
        priority=ReminderPriority(model.priority),
        status=ReminderStatus(model.status),
        snoozed_until=model.snoozed_until,
        completed_at=model.completed_at,
        metadata=model.metadata_data or {},
        created_at=model.created_at,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class CRMRepository:
    """Async CRUD for memos and derived CRM records.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Memos ────────────────────────────────────────────────────────────

    async def create_memo(self, owner_id: str, data: MemoCreate) -> Memo:
        """Insert a memo.

        Args:
            owner_id: Owning user UUID string.
            data: MemoCreate with generated content.

        Returns:
            The persisted Memo.
        """
        async for session in self._session_factory():
            model = MemoModel(
                id=uuid.uuid4(),
                owner_id=uuid.UUID(owner_id),
                company_id=_uuid_or_none(data.company_id),
                source=data.source,
                source_id=data.source_id,
                title=data.title,
                content=data.content,
                summary=data.summary,
                meeting_date=data.meeting_date,
                participants_data=list(data.participants),
                template_id=data.template_id,
                metadata_data=data.metadata,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_memo(model)

    async def update_memo(self, owner_id: str, memo_id: str, data: MemoCreate) -> Memo:
        """Overwrite the generated fields of an existing memo.

        Raises:
            ValueError: If the memo does not exist for this owner.
        """
        async for session in self._session_factory():
            stmt = select(MemoModel).where(
                MemoModel.owner_id == uuid.UUID(owner_id),
                MemoModel.id == uuid.UUID(memo_id),
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                raise ValueError(f"Memo not found: {memo_id}")

            model.company_id = _uuid_or_none(data.company_id)
            model.title = data.title
            model.content = data.content
            model.summary = data.summary
            model.meeting_date = data.meeting_date
            model.participants_data = list(data.participants)
            model.template_id = data.template_id
            model.metadata_data = data.metadata
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_memo(model)

    async def get_memo(self, owner_id: str, memo_id: str) -> Memo | None:
        async for session in self._session_factory():
            stmt = select(MemoModel).where(
                MemoModel.owner_id == uuid.UUID(owner_id),
                MemoModel.id == uuid.UUID(memo_id),
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_memo(model) if model else None

    async def find_memo_by_source(
        self, owner_id: str, source: str, source_id: str
    ) -> Memo | None:
        """Find the memo already produced for a provider transcript."""
        async for session in self._session_factory():
            stmt = (
                select(MemoModel)
                .where(
                    MemoModel.owner_id == uuid.UUID(owner_id),
                    MemoModel.source == source,
                    MemoModel.source_id == source_id,
                )
                .order_by(MemoModel.created_at)
                .limit(1)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_memo(model) if model else None

    async def set_memo_document(
        self, owner_id: str, memo_id: str, file_id: str, url: str | None
    ) -> None:
        """Record the external document backing a memo."""
        async for session in self._session_factory():
            stmt = (
                update(MemoModel)
                .where(
                    MemoModel.owner_id == uuid.UUID(owner_id),
                    MemoModel.id == uuid.UUID(memo_id),
                )
                .values(
                    drive_file_id=file_id,
                    drive_url=url,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            await session.execute(stmt)
            await session.commit()

    # ── Companies ────────────────────────────────────────────────────────

    async def list_companies(self, owner_id: str) -> list[Company]:
        async for session in self._session_factory():
            stmt = (
                select(CompanyModel)
                .where(CompanyModel.owner_id == uuid.UUID(owner_id))
                .order_by(CompanyModel.name)
            )
            result = await session.execute(stmt)
            return [_model_to_company(m) for m in result.scalars().all()]

    async def create_company(self, owner_id: str, data: CompanyCreate) -> Company:
        async for session in self._session_factory():
            model = CompanyModel(
                id=uuid.uuid4(),
                owner_id=uuid.UUID(owner_id),
                name=data.name,
                domain=data.domain,
                website=data.website,
                industry=data.industry,
                stage=data.stage,
                founders_data=list(data.founders),
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_company(model)

    # ── Contacts ─────────────────────────────────────────────────────────

    async def find_contact_by_email(self, owner_id: str, email: str) -> Contact | None:
        """Exact (case-insensitive) email match."""
        return await self._find_contact(
            owner_id, func.lower(ContactModel.email) == email.strip().lower()
        )

    async def find_contact_by_linkedin(self, owner_id: str, url: str) -> Contact | None:
        """Exact profile URL match."""
        return await self._find_contact(owner_id, ContactModel.linkedin_url == url.strip())

    async def find_contact_by_name(self, owner_id: str, name: str) -> Contact | None:
        """Case-insensitive exact name match."""
        return await self._find_contact(
            owner_id, func.lower(ContactModel.name) == name.strip().lower()
        )

    async def _find_contact(self, owner_id: str, condition: Any) -> Contact | None:
        async for session in self._session_factory():
            stmt = (
                select(ContactModel)
                .where(ContactModel.owner_id == uuid.UUID(owner_id), condition)
                .order_by(ContactModel.created_at)
                .limit(1)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_contact(model) if model else None

    async def create_contact(self, owner_id: str, data: ContactCreate) -> Contact:
        async for session in self._session_factory():
            model = ContactModel(
                id=uuid.uuid4(),
                owner_id=uuid.UUID(owner_id),
                name=data.name,
                email=data.email,
                phone=data.phone,
                linkedin_url=data.linkedin_url,
                title=data.title,
                company_name=data.company_name,
                relationship_type=(
                    data.relationship_type.value if data.relationship_type else None
                ),
                notes=data.notes,
                last_met_at=data.last_met_at,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_contact(model)

    async def update_contact(
        self, owner_id: str, contact_id: str, values: dict[str, Any]
    ) -> Contact:
        """Apply a partial update to a contact.

        Raises:
            ValueError: If the contact does not exist for this owner.
        """
        async for session in self._session_factory():
            stmt = select(ContactModel).where(
                ContactModel.owner_id == uuid.UUID(owner_id),
                ContactModel.id == uuid.UUID(contact_id),
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                raise ValueError(f"Contact not found: {contact_id}")

            for key, value in values.items():
                if isinstance(value, RelationshipType):
                    value = value.value
                setattr(model, key, value)
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_contact(model)

    async def upsert_contact_memo(
        self,
        owner_id: str,
        contact_id: str,
        memo_id: str,
        context: dict[str, Any],
    ) -> None:
        """Insert or refresh the (contact, memo) link."""
        async for session in self._session_factory():
            stmt = pg_insert(ContactMemoModel).values(
                id=uuid.uuid4(),
                owner_id=uuid.UUID(owner_id),
                contact_id=uuid.UUID(contact_id),
                memo_id=uuid.UUID(memo_id),
                context_data=context,
            )
            stmt = stmt.on_conflict_do_update(
                constraint="uq_contact_memo",
                set_={"context": stmt.excluded.context},
            )
            await session.execute(stmt)
            await session.commit()

    async def list_linked_contacts(self, owner_id: str) -> list[Contact]:
        """Contacts that appear in at least one memo."""
        async for session in self._session_factory():
            linked = exists().where(ContactMemoModel.contact_id == ContactModel.id)
            stmt = select(ContactModel).where(
                ContactModel.owner_id == uuid.UUID(owner_id),
                linked,
            )
            result = await session.execute(stmt)
            return [_model_to_contact(m) for m in result.scalars().all()]

    async def list_owner_ids_with_contacts(self) -> list[str]:
        """Distinct owners that have contacts (stale relationship scan scope)."""
        async for session in self._session_factory():
            stmt = select(distinct(ContactModel.owner_id))
            result = await session.execute(stmt)
            return [str(owner) for owner in result.scalars().all()]

    # ── Tasks ────────────────────────────────────────────────────────────

    async def list_task_titles(self, owner_id: str, memo_id: str) -> list[str]:
        async for session in self._session_factory():
            stmt = select(TaskModel.title).where(
                TaskModel.owner_id == uuid.UUID(owner_id),
                TaskModel.memo_id == uuid.UUID(memo_id),
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def create_task(self, owner_id: str, data: TaskCreate) -> Task:
        async for session in self._session_factory():
            model = TaskModel(
                id=uuid.uuid4(),
                owner_id=uuid.UUID(owner_id),
                memo_id=_uuid_or_none(data.memo_id),
                company_id=_uuid_or_none(data.company_id),
                title=data.title,
                priority=data.priority.value,
                status=data.status.value,
                due_date=data.due_date,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_task(model)

    # ── Reminders ────────────────────────────────────────────────────────

    async def create_reminder(self, owner_id: str, data: ReminderCreate) -> Reminder:
        async for session in self._session_factory():
            model = ReminderModel(
                id=uuid.uuid4(),
                owner_id=uuid.UUID(owner_id),
                contact_id=_uuid_or_none(data.contact_id),
                company_id=_uuid_or_none(data.company_id),
                memo_id=_uuid_or_none(data.memo_id),
                type=data.type.value,
                title=data.title,
                context=data.context,
                source_text=data.source_text,
                due_date=data.due_date,
                priority=data.priority.value,
                status=data.status.value,
                snoozed_until=data.snoozed_until,
                metadata_data=data.metadata,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_reminder(model)

    async def has_pending_reminder(
        self, owner_id: str, contact_id: str, reminder_type: ReminderType
    ) -> bool:
        async for session in self._session_factory():
            stmt = select(
                exists().where(
                    ReminderModel.owner_id == uuid.UUID(owner_id),
                    ReminderModel.contact_id == uuid.UUID(contact_id),
                    ReminderModel.type == reminder_type.value,
                    ReminderModel.status == ReminderStatus.PENDING.value,
                )
            )
            result = await session.execute(stmt)
            return bool(result.scalar())
