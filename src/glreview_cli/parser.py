"""Turns a model's markdown review back into named sections.

Models drift between formats (`##` headings, `**bold:**` labels, bare
titles), so each section is tried against an ordered list of extraction
strategies and the first non-empty match wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from .logging import get_logger
from .prompts import MERGE_REQUEST_SECTIONS, REPOSITORY_SECTIONS, Section

logger = get_logger("parser")

NO_CONTENT = "No content available for this section."
LOOKS_GOOD = "✅ Code looks good overall with minor suggestions"

MERGE_REQUEST = "merge_request"
REPOSITORY = "repository"

Extractor = Callable[[str, Section], Optional[str]]


@dataclass
class ReviewResult:
    """A parsed review."""

    kind: str
    sections: dict[str, str]
    full_review: str
    summary: str = ""
    missing_sections: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "sections": self.sections,
            "summary": self.summary,
            "full_review": self.full_review,
            "missing_sections": self.missing_sections,
            "metadata": self.metadata,
        }


def _emoji_pattern(emoji: str) -> str:
    # Models often drop the U+FE0F variation selector after an emoji
    base = emoji.replace("\ufe0f", "")
    return f"(?:{re.escape(base)}\ufe0f?\\s*)?" if base else ""


def _title_pattern(title: str) -> str:
    return r"\s*".join(re.escape(word) for word in title.split())


def heading_section(text: str, section: Section) -> str | None:
    """A top-level `## <emoji> Title` heading up to the next one."""
    pattern = rf"^##(?!#)[ \t]*{_emoji_pattern(section.emoji)}{_title_pattern(section.title)}\s*(.*?)(?=^##(?!#)|\Z)"
    match = re.search(pattern, text, re.DOTALL | re.MULTILINE)
    return match.group(1) if match else None


def bold_label_section(text: str, section: Section) -> str | None:
    """`**Title**:` up to the next bold marker."""
    pattern = rf"\*\*{_emoji_pattern(section.emoji)}{_title_pattern(section.title)}\*\*:?\s*(.*?)(?=\*\*|\Z)"
    match = re.search(pattern, text, re.DOTALL)
    return match.group(1) if match else None


def bare_title_section(text: str, section: Section) -> str | None:
    """The bare title up to the next heading or bold marker."""
    pattern = rf"{_emoji_pattern(section.emoji)}{_title_pattern(section.title)}\s*(.*?)(?=##|\*\*|\Z)"
    match = re.search(pattern, text, re.DOTALL)
    return match.group(1) if match else None


DEFAULT_EXTRACTORS: tuple[Extractor, ...] = (heading_section, bold_label_section, bare_title_section)


def strip_code_fence(text: str) -> str:
    """Remove a ```markdown (or bare ```) wrapper around the whole reply."""
    cleaned = text.strip()
    if cleaned.startswith("```markdown"):
        cleaned = re.sub(r"^```markdown\s*", "", cleaned)
        cleaned = re.sub(r"```\s*$", "", cleaned)
    elif cleaned.startswith("```"):
        cleaned = re.sub(r"^```\s*", "", cleaned)
        cleaned = re.sub(r"```\s*$", "", cleaned)
    return cleaned.strip()


class ReviewParser:
    """Parses merge request and repository reviews."""

    def __init__(self, extractors: Sequence[Extractor] | None = None):
        self.extractors = list(extractors or DEFAULT_EXTRACTORS)

    def extract_section(self, text: str, section: Section) -> str | None:
        for extractor in self.extractors:
            content = extractor(text, section)
            if content and content.strip():
                return content.strip()
        return None

    def _parse(
        self, text: str, sections: Sequence[Section], missing_value: str
    ) -> tuple[str, dict[str, str], list[str]]:
        cleaned = strip_code_fence(text)
        parsed: dict[str, str] = {}
        missing: list[str] = []
        for section in sections:
            content = self.extract_section(cleaned, section)
            if content is None:
                logger.debug("No match for section %r", section.title)
                missing.append(section.key)
                content = missing_value
            parsed[section.key] = content
        return cleaned, parsed, missing

    def parse_merge_request_review(self, text: str) -> ReviewResult:
        # Missing merge request sections are empty strings, not NO_CONTENT
        cleaned, sections, missing = self._parse(text, MERGE_REQUEST_SECTIONS, "")
        return ReviewResult(
            kind=MERGE_REQUEST,
            sections=sections,
            full_review=cleaned,
            summary=merge_request_summary(sections),
            missing_sections=missing,
        )

    def parse_repository_review(self, text: str) -> ReviewResult:
        cleaned, sections, missing = self._parse(text, REPOSITORY_SECTIONS, NO_CONTENT)
        return ReviewResult(
            kind=REPOSITORY,
            sections=sections,
            full_review=cleaned,
            missing_sections=missing,
        )


def merge_request_summary(sections: dict[str, str]) -> str:
    """One-line verdict from keyword hits in the quality/security/performance sections."""
    issues = []
    if "issue" in sections.get("code_quality", "").lower():
        issues.append("code quality concerns")
    if "concern" in sections.get("security", "").lower():
        issues.append("security considerations")
    if "performance" in sections.get("performance", "").lower():
        issues.append("performance implications")

    if not issues:
        return LOOKS_GOOD
    return f"⚠️ Found {', '.join(issues)}"
