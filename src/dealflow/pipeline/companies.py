"""CompanyResolver -- identifies the company a meeting is about.

Uses instructor + LiteLLM to extract a CompanyCandidate with a
confidence score, then applies a conservative policy: low-confidence or
nameless candidates are dropped, a candidate flagged as existing is
matched case-insensitively against the owner's known companies (also
with legal suffixes stripped) and reused unmodified, and anything else
creates a new company. Resolution is enrichment: every failure yields no
company rather than failing the job.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field

from src.dealflow.crm.schemas import Company, CompanyCreate

if TYPE_CHECKING:
    from src.dealflow.crm.repository import CRMRepository
    from src.dealflow.pipeline.llm import GenerativeClient

logger = structlog.get_logger(__name__)

_LEGAL_SUFFIX = re.compile(
    r"[\s,]+(inc|incorporated|llc|l\.l\.c|ltd|limited|corp|corporation|co|gmbh|plc)\.?$",
    re.IGNORECASE,
)


class CompanyCandidate(BaseModel):
    """Company information extracted from a transcript."""

    name: str | None = Field(None, description="Company being discussed, or null if not identifiable")
    is_existing: bool = Field(False, description="True if it matches one of the known companies")
    confidence: float = Field(0.0, ge=0.0, le=1.0, description="0-1 confidence score")
    domain: str | None = None
    website: str | None = None
    industry: str | None = None
    stage: str | None = Field(None, description="Funding stage if mentioned (seed, series-a, ...)")
    founders: list[str] = Field(default_factory=list)


class CompanyResolution(BaseModel):
    company_id: str | None = None
    company_name: str | None = None
    is_new: bool = False


def normalize_company_name(name: str) -> str:
    """Lower-case, trim, and strip a trailing legal suffix."""
    normalized = " ".join(name.strip().lower().split())
    return _LEGAL_SUFFIX.sub("", normalized).strip()


def find_known_company(name: str, known: list[Company]) -> Company | None:
    """Case-insensitive exact match, then match with legal suffixes stripped."""
    lowered = name.strip().lower()
    for company in known:
        if company.name.strip().lower() == lowered:
            return company
    normalized = normalize_company_name(name)
    for company in known:
        if normalize_company_name(company.name) == normalized:
            return company
    return None


class CompanyResolver:
    """Resolves or creates the meeting's company.

    Args:
        llm: GenerativeClient for structured extraction.
        repository: CRMRepository for company creation.
    """

    CONFIDENCE_THRESHOLD = 0.6
    EXCERPT_CHARS = 3000

    def __init__(self, llm: GenerativeClient, repository: CRMRepository) -> None:
        self._llm = llm
        self._repository = repository

    async def extract(self, text: str, known: list[Company]) -> CompanyCandidate | None:
        known_line = (
            f"Known companies in the system: {', '.join(c.name for c in known)}\n\n"
            if known
            else ""
        )
        messages = [
            {
                "role": "system",
                "content": (
                    "You identify the company discussed in a meeting transcript for a "
                    "venture investor's CRM. Only name a company that is clearly the "
                    "subject of the meeting."
                ),
            },
            {
                "role": "user",
                "content": (
                    "Extract company information from this meeting transcript.\n\n"
                    f"{known_line}"
                    f"Transcript:\n{text[: self.EXCERPT_CHARS]}"
                ),
            },
        ]
        try:
            return await self._llm.structured(
                CompanyCandidate, messages, purpose="company_detection", max_tokens=1024
            )
        except Exception as exc:
            logger.warning(
                "company_detection_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

    async def resolve(
        self, owner_id: str, text: str, known: list[Company]
    ) -> CompanyResolution:
        """Return the resolved company, or an empty resolution."""
        candidate = await self.extract(text, known)
        if candidate is None:
            return CompanyResolution()

        name = (candidate.name or "").strip()
        if not name or name.lower() == "null" or candidate.confidence < self.CONFIDENCE_THRESHOLD:
            logger.info(
                "company_candidate_rejected",
                name=name or None,
                confidence=candidate.confidence,
            )
            return CompanyResolution()

        existing = find_known_company(name, known) if candidate.is_existing else None
        if existing is None and not candidate.is_existing:
            # A "new" candidate that exactly matches a known name is still that company
            lowered = name.lower()
            existing = next((c for c in known if c.name.strip().lower() == lowered), None)

        if existing is not None:
            logger.info("company_matched", company_id=existing.id, name=existing.name)
            return CompanyResolution(company_id=existing.id, company_name=existing.name)

        try:
            created = await self._repository.create_company(
                owner_id,
                CompanyCreate(
                    name=name,
                    domain=candidate.domain,
                    website=candidate.website,
                    industry=candidate.industry,
                    stage=candidate.stage,
                    founders=candidate.founders,
                ),
            )
        except Exception as exc:
            logger.warning(
                "company_create_failed",
                name=name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return CompanyResolution()

        logger.info("company_created", company_id=created.id, name=created.name)
        return CompanyResolution(company_id=created.id, company_name=created.name, is_new=True)
