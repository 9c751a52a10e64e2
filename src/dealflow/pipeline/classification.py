"""MeetingClassifier -- picks the memo template for a transcript.

Keyword scoring is tried first: each template scores the number of
whole-word, case-insensitive occurrences of its detection keywords. A
unique top score of at least MIN_KEYWORD_SCORE decides the category with
no generative call. Anything else (ties, weak signal) goes to a short
generative classification whose output is matched against the category
ids; failure or an unrecognised answer yields ``internal``.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field

from src.dealflow.pipeline.templates import MEMO_TEMPLATES, MeetingCategory

if TYPE_CHECKING:
    from src.dealflow.pipeline.llm import GenerativeClient

logger = structlog.get_logger(__name__)


class ClassificationMethod(str, Enum):
    KEYWORDS = "keywords"
    GENERATIVE = "generative"
    DEFAULT = "default"


class ClassificationResult(BaseModel):
    category: MeetingCategory
    method: ClassificationMethod
    scores: dict[str, int] = Field(default_factory=dict)


_KEYWORD_PATTERNS: dict[MeetingCategory, list[re.Pattern]] = {
    template.id: [
        re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)
        for keyword in template.detection_keywords
    ]
    for template in MEMO_TEMPLATES
}


def score_keywords(text: str) -> dict[str, int]:
    """Count keyword occurrences per template id."""
    return {
        category.value: sum(len(pattern.findall(text)) for pattern in patterns)
        for category, patterns in _KEYWORD_PATTERNS.items()
    }


def parse_category(output: str) -> MeetingCategory | None:
    """Map generative output to a category: exact id, else first id contained."""
    answer = output.strip().lower().strip("\"'`. ")
    for category in MeetingCategory:
        if answer == category.value:
            return category
    for template in MEMO_TEMPLATES:
        if template.id.value in answer:
            return template.id
    return None


class MeetingClassifier:
    """Classifies a transcript into a MeetingCategory.

    Args:
        llm: GenerativeClient used when keyword scoring is inconclusive.
    """

    MIN_KEYWORD_SCORE = 5
    EXCERPT_CHARS = 2000

    def __init__(self, llm: GenerativeClient) -> None:
        self._llm = llm

    async def classify(self, text: str) -> ClassificationResult:
        scores = score_keywords(text)
        top = max(scores.values(), default=0)
        leaders = [cid for cid, score in scores.items() if score == top and score > 0]

        if len(leaders) == 1 and top >= self.MIN_KEYWORD_SCORE:
            category = MeetingCategory(leaders[0])
            logger.info("meeting_classified", category=category.value, method="keywords", score=top)
            return ClassificationResult(
                category=category, method=ClassificationMethod.KEYWORDS, scores=scores
            )

        descriptions = "\n".join(f"- {t.id.value}: {t.description}" for t in MEMO_TEMPLATES)
        prompt = (
            "Classify this meeting transcript into one of the following categories:\n\n"
            f"{descriptions}\n\n"
            'Return ONLY the category ID (e.g., "founder-pitch", "customer-call", etc.).\n'
            'If unsure, return "internal".\n\n'
            f"Transcript excerpt:\n{text[: self.EXCERPT_CHARS]}"
        )

        try:
            output = await self._llm.text(
                [{"role": "user", "content": prompt}],
                purpose="classification",
                max_tokens=20,
                temperature=0.0,
            )
        except Exception as exc:
            logger.warning(
                "meeting_classification_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return ClassificationResult(
                category=MeetingCategory.INTERNAL,
                method=ClassificationMethod.DEFAULT,
                scores=scores,
            )

        category = parse_category(output)
        if category is None:
            logger.info("meeting_classification_unrecognised", output=output[:50])
            return ClassificationResult(
                category=MeetingCategory.INTERNAL,
                method=ClassificationMethod.DEFAULT,
                scores=scores,
            )

        logger.info("meeting_classified", category=category.value, method="generative")
        return ClassificationResult(
            category=category, method=ClassificationMethod.GENERATIVE, scores=scores
        )
