"""ContentGenerator -- memo body and summary generation.

Two modes are supported:

- ``sectioned``: one call per template section. Optional sections the
  model reports as not discussed are dropped; a failed required section
  is rendered with a placeholder so the memo keeps its shape.
- ``composite``: one call with the category's composite prompt. On
  failure the memo falls back to the section headings marked as not
  discussed.

Neither mode raises: partial or empty generation still yields a memo.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field

from src.dealflow.config import ContentMode
from src.dealflow.pipeline.templates import MemoTemplate

if TYPE_CHECKING:
    from src.dealflow.pipeline.llm import GenerativeClient

logger = structlog.get_logger(__name__)

SECTION_SEPARATOR = "\n\n---\n\n"
NOT_DISCUSSED = "Not discussed in meeting."
UNABLE_TO_EXTRACT = "*Unable to extract from transcript*"

COMPOSITE_SYSTEM_PROMPT = (
    "You are an AI assistant for venture capital investors. Generate professional, "
    "structured meeting memos from transcripts. Be concise and focus on actionable insights."
)


class GeneratedContent(BaseModel):
    content: str
    summary: str = ""
    sections: list[str] = Field(default_factory=list, description="Section ids rendered")


def render_section(title: str, body: str) -> str:
    return f"## {title}\n\n{body}"


class ContentGenerator:
    """Generates memo content for a template.

    Args:
        llm: GenerativeClient for text calls.
    """

    SECTION_EXCERPT_CHARS = 5000
    COMPOSITE_EXCERPT_CHARS = 6000
    SUMMARY_EXCERPT_CHARS = 3000

    def __init__(self, llm: GenerativeClient) -> None:
        self._llm = llm

    async def generate(
        self,
        text: str,
        template: MemoTemplate,
        mode: ContentMode = ContentMode.sectioned,
    ) -> GeneratedContent:
        """Generate the memo body and its summary."""
        if mode is ContentMode.composite:
            content, sections = await self._generate_composite(text, template)
        else:
            content, sections = await self._generate_sectioned(text, template)

        summary = await self.summarize(text)
        return GeneratedContent(content=content, summary=summary, sections=sections)

    async def _generate_sectioned(
        self, text: str, template: MemoTemplate
    ) -> tuple[str, list[str]]:
        rendered: list[str] = []
        section_ids: list[str] = []
        excerpt = text[: self.SECTION_EXCERPT_CHARS]

        for section in template.sections:
            prompt = (
                f"From the following meeting transcript, {section.prompt}\n\n"
                'If the information is not available or not discussed, indicate '
                f'"{NOT_DISCUSSED}"\n\n'
                f"Transcript:\n{excerpt}"
            )
            try:
                body = await self._llm.text(
                    [
                        {"role": "system", "content": template.system_prompt},
                        {"role": "user", "content": prompt},
                    ],
                    purpose="memo_section",
                    quality=True,
                )
            except Exception as exc:
                logger.warning(
                    "memo_section_failed",
                    section=section.id,
                    required=section.required,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                if section.required:
                    rendered.append(render_section(section.title, UNABLE_TO_EXTRACT))
                    section_ids.append(section.id)
                continue

            not_discussed = "not discussed in meeting" in body.lower()
            if (body and not not_discussed) or section.required:
                rendered.append(render_section(section.title, body or NOT_DISCUSSED))
                section_ids.append(section.id)

        return SECTION_SEPARATOR.join(rendered), section_ids

    async def _generate_composite(
        self, text: str, template: MemoTemplate
    ) -> tuple[str, list[str]]:
        prompt = (
            f"{template.composite_prompt}\n\n"
            "Be concise but thorough. Extract specific numbers, quotes, and facts when available.\n"
            f'If information isn\'t available for a section, write "{NOT_DISCUSSED}"\n\n'
            f"Transcript:\n{text[: self.COMPOSITE_EXCERPT_CHARS]}"
        )
        try:
            content = await self._llm.text(
                [
                    {"role": "system", "content": COMPOSITE_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                purpose="memo_composite",
                quality=True,
                max_tokens=4096,
            )
        except Exception as exc:
            logger.warning(
                "memo_composite_failed",
                template=template.id.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            content = ""

        if not content:
            fallback = [render_section(s.title, NOT_DISCUSSED) for s in template.sections]
            return SECTION_SEPARATOR.join(fallback), []

        return content, [s.id for s in template.sections]

    async def summarize(self, text: str) -> str:
        """Short 2-3 sentence summary; empty string on failure."""
        prompt = (
            "Summarize this meeting in 2-3 sentences. Be specific about what was "
            "discussed and any key outcomes:\n\n"
            f"{text[: self.SUMMARY_EXCERPT_CHARS]}"
        )
        try:
            return await self._llm.text(
                [{"role": "user", "content": prompt}],
                purpose="summary",
                max_tokens=300,
            )
        except Exception as exc:
            logger.warning(
                "memo_summary_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return ""
