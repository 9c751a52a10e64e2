"""Tests for contact extraction, match-or-create, and memo linking.

Covers:
- Owner exclusion and empty-name filtering in extraction
- Matching precedence: email, then profile URL, then name
- Fill-only-null merges and date-stamped notes
- ContactRecorder name map used for reminder attribution
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.dealflow.crm.contacts import ContactMatcher, stamp_notes
from src.dealflow.crm.schemas import ContactCreate, MeetingContext, MemoCreate, RelationshipType
from src.dealflow.pipeline.extraction import (
    ContactExtraction,
    ContactRecorder,
    ExtractedCommitment,
    ExtractedContact,
    MeetingExtractor,
    resolve_related_person,
)
from tests.fakes import OWNER_ID, FakeGenerativeClient, InMemoryCRMRepository

MET_AT = datetime(2024, 3, 5, 15, 0, tzinfo=timezone.utc)


# ── Extraction ───────────────────────────────────────────────────────────────


class TestMeetingExtractor:
    @pytest.mark.asyncio
    async def test_owner_and_blank_names_excluded(self):
        llm = FakeGenerativeClient(
            structured_responses={
                "contact_extraction": ContactExtraction(
                    contacts=[
                        ExtractedContact(name="Dana Investor"),
                        ExtractedContact(name="Alice Chen", relationship_type="FOUNDER"),
                        ExtractedContact(name="   "),
                    ]
                )
            }
        )

        contacts = await MeetingExtractor(llm).extract_contacts("text", owner_name="Dana Investor")

        assert [c.name for c in contacts] == ["Alice Chen"]
        assert contacts[0].relationship_type is RelationshipType.FOUNDER
        assert 'EXCLUDE: "Dana Investor"' in llm.calls[0][1][0]["content"]

    @pytest.mark.asyncio
    async def test_extraction_failure_returns_empty(self):
        llm = FakeGenerativeClient(
            structured_responses={
                "contact_extraction": ValueError("validation failed"),
                "commitment_extraction": ValueError("validation failed"),
            }
        )
        extractor = MeetingExtractor(llm)

        assert await extractor.extract_contacts("text") == []
        assert await extractor.extract_commitments("text") == []

    def test_unknown_relationship_coerced_to_other(self):
        assert ExtractedContact(name="Bob", relationship_type="friend").relationship_type is (
            RelationshipType.OTHER
        )

    def test_commitment_type_coercion(self):
        assert ExtractedCommitment(title="x", type="INTRO_REQUEST").type.value == "intro_request"
        assert ExtractedCommitment(title="x", type="stale_relationship").type.value == "follow_up"
        assert ExtractedCommitment(title="x", type="whatever").type.value == "follow_up"

    def test_contact_create_normalises_email(self):
        created = ExtractedContact(name=" Alice ", email=" Alice@Example.COM ").to_contact_create()
        assert created.name == "Alice"
        assert created.email == "alice@example.com"


class TestResolveRelatedPerson:
    def test_exact_then_substring(self):
        contact_map = {"Sarah Chen": "c-1", "Sar": "c-2"}
        assert resolve_related_person("sar", contact_map) == "c-2"
        assert resolve_related_person("Sarah", contact_map) == "c-1"
        assert resolve_related_person("Nobody", contact_map) is None
        assert resolve_related_person(None, contact_map) is None


# ── Matching ─────────────────────────────────────────────────────────────────


class TestContactMatcher:
    def test_stamp_notes_appends_paragraph(self):
        assert stamp_notes("", "Met at demo day", MET_AT) == "[2024-03-05] Met at demo day"
        assert stamp_notes("old", "new", MET_AT) == "old\n\n[2024-03-05] new"
        assert stamp_notes("old", "  ", MET_AT) == "old"

    @pytest.mark.asyncio
    async def test_creates_when_no_match(self):
        repo = InMemoryCRMRepository()
        contact, created = await ContactMatcher(repo).upsert(
            OWNER_ID, ContactCreate(name="Alice", notes="CEO of Acme"), MET_AT
        )

        assert created is True
        assert contact.notes == "[2024-03-05] CEO of Acme"
        assert contact.last_met_at == MET_AT

    @pytest.mark.asyncio
    async def test_email_match_beats_name_match(self):
        repo = InMemoryCRMRepository()
        by_name = await repo.create_contact(OWNER_ID, ContactCreate(name="Alice"))
        by_email = await repo.create_contact(
            OWNER_ID, ContactCreate(name="A. Chen", email="alice@acme.com")
        )

        contact, created = await ContactMatcher(repo).upsert(
            OWNER_ID, ContactCreate(name="Alice", email="alice@acme.com"), MET_AT
        )

        assert created is False
        assert contact.id == by_email.id
        assert contact.id != by_name.id

    @pytest.mark.asyncio
    async def test_linkedin_match_before_name(self):
        repo = InMemoryCRMRepository()
        await repo.create_contact(OWNER_ID, ContactCreate(name="Bob"))
        linked = await repo.create_contact(
            OWNER_ID, ContactCreate(name="Robert", linkedin_url="https://linkedin.com/in/bob")
        )

        contact, _ = await ContactMatcher(repo).upsert(
            OWNER_ID, ContactCreate(name="Bob", linkedin_url="https://linkedin.com/in/bob"), MET_AT
        )
        assert contact.id == linked.id

    @pytest.mark.asyncio
    async def test_name_match_is_case_insensitive(self):
        repo = InMemoryCRMRepository()
        existing = await repo.create_contact(OWNER_ID, ContactCreate(name="Alice Chen"))

        contact, created = await ContactMatcher(repo).upsert(
            OWNER_ID, ContactCreate(name="alice chen"), MET_AT
        )
        assert created is False
        assert contact.id == existing.id

    @pytest.mark.asyncio
    async def test_merge_fills_nulls_only(self):
        repo = InMemoryCRMRepository()
        existing = await repo.create_contact(
            OWNER_ID,
            ContactCreate(name="Alice", title="CEO", notes="[2024-01-01] First met"),
        )

        contact, _ = await ContactMatcher(repo).upsert(
            OWNER_ID,
            ContactCreate(
                name="Alice",
                title="CTO",
                email="alice@acme.com",
                company_name="Acme",
                notes="Raising a seed round",
            ),
            MET_AT,
        )

        assert contact.id == existing.id
        assert contact.title == "CEO"
        assert contact.email == "alice@acme.com"
        assert contact.company_name == "Acme"
        assert contact.notes == "[2024-01-01] First met\n\n[2024-03-05] Raising a seed round"

    @pytest.mark.asyncio
    async def test_last_met_only_moves_forward(self):
        repo = InMemoryCRMRepository()
        later = datetime(2024, 6, 1, tzinfo=timezone.utc)
        await repo.create_contact(OWNER_ID, ContactCreate(name="Alice", last_met_at=later))

        contact, _ = await ContactMatcher(repo).upsert(OWNER_ID, ContactCreate(name="Alice"), MET_AT)
        assert contact.last_met_at == later

    @pytest.mark.asyncio
    async def test_contacts_are_owner_scoped(self):
        repo = InMemoryCRMRepository()
        await repo.create_contact("someone-else", ContactCreate(name="Alice"))

        _, created = await ContactMatcher(repo).upsert(OWNER_ID, ContactCreate(name="Alice"), MET_AT)
        assert created is True


# ── Recording ────────────────────────────────────────────────────────────────


class TestContactRecorder:
    @pytest.mark.asyncio
    async def test_records_and_links_each_contact(self):
        repo = InMemoryCRMRepository()
        memo = await repo.create_memo(
            OWNER_ID, MemoCreate(source="manual", title="Sync", content="body")
        )
        extracted = [
            ExtractedContact(
                name="Alice",
                meeting_context=MeetingContext(their_asks=["intro to Bob"], sentiment="positive"),
            ),
            ExtractedContact(name="Bob"),
        ]

        contact_map, created = await ContactRecorder(ContactMatcher(repo)).record(
            OWNER_ID, extracted, memo, MET_AT
        )

        assert created == 2
        assert set(contact_map) == {"Alice", "Bob"}
        link = repo.contact_memos[(contact_map["Alice"], memo.id)]
        assert link["their_asks"] == ["intro to Bob"]
        assert link["memo_title"] == "Sync"
        assert link["meeting_date"] == MET_AT.isoformat()

    @pytest.mark.asyncio
    async def test_one_failing_contact_does_not_stop_the_rest(self):
        repo = InMemoryCRMRepository()
        memo = await repo.create_memo(
            OWNER_ID, MemoCreate(source="manual", title="Sync", content="body")
        )
        original_create = repo.create_contact

        async def flaky_create(owner_id, data):
            if data.name == "Alice":
                raise ConnectionError("insert failed")
            return await original_create(owner_id, data)

        repo.create_contact = flaky_create

        contact_map, created = await ContactRecorder(ContactMatcher(repo)).record(
            OWNER_ID, [ExtractedContact(name="Alice"), ExtractedContact(name="Bob")], memo, MET_AT
        )

        assert list(contact_map) == ["Bob"]
        assert created == 1

    @pytest.mark.asyncio
    async def test_rerun_links_instead_of_duplicating(self):
        repo = InMemoryCRMRepository()
        memo = await repo.create_memo(
            OWNER_ID, MemoCreate(source="manual", title="Sync", content="body")
        )
        recorder = ContactRecorder(ContactMatcher(repo))

        await recorder.record(OWNER_ID, [ExtractedContact(name="Alice")], memo, MET_AT)
        _, created = await recorder.record(OWNER_ID, [ExtractedContact(name="Alice")], memo, MET_AT)

        assert created == 0
        assert len(repo.contacts) == 1
        assert len(repo.contact_memos) == 1
