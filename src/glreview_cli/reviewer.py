"""Code review service - combines GitLab data, prompts and the model.

Fetches what a review needs, builds the prompt, calls the model and parses
the reply into sections. Optionally posts the result back as an MR note.
"""

from __future__ import annotations

import asyncio
import datetime
import time

from .analyzer import AnalysisResult
from .gitlab import GitLabClient
from .logging import get_logger
from .model import GeminiClient, ModelError
from .parser import ReviewParser, ReviewResult
from .prompts import MERGE_REQUEST_SECTIONS, REPOSITORY_SECTIONS, PromptBuilder

logger = get_logger("reviewer")


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class CodeReviewer:
    """Reviews merge requests and analyzed repositories."""

    def __init__(
        self,
        client: GitLabClient,
        model: GeminiClient,
        prompt_builder: PromptBuilder | None = None,
        parser: ReviewParser | None = None,
    ):
        self.client = client
        self.model = model
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.parser = parser or ReviewParser()

    async def _generate(self, prompt: str) -> str:
        try:
            return await self.model.generate_content(prompt)
        except ModelError as e:
            raise ModelError(f"AI review failed: {e}") from e

    async def review_merge_request(
        self, project_id: int | str, mr_iid: int, post_note: bool = False
    ) -> ReviewResult:
        """Review one merge request; optionally post the review as a note."""
        mr, diff = await asyncio.gather(
            self.client.get_merge_request(project_id, mr_iid),
            self.client.get_merge_request_diff(project_id, mr_iid),
        )

        start = time.time()
        prompt = self.prompt_builder.build_merge_request_prompt(mr, diff)
        text = await self._generate(prompt)
        result = self.parser.parse_merge_request_review(text)
        result.metadata = {
            "project_id": project_id,
            "mr_iid": mr_iid,
            "title": mr.get("title", ""),
            "web_url": mr.get("web_url"),
            "model": self.model.model,
            "diff_length": len(diff or ""),
            "generation_time_seconds": round(time.time() - start, 1),
            "timestamp": _now(),
        }

        if post_note:
            note = await self.client.create_merge_request_note(project_id, mr_iid, format_review_note(result))
            result.metadata["note_id"] = note.get("id")
            logger.info("Posted review note on !%s", mr_iid)
        return result

    async def review_repository(
        self, analysis: AnalysisResult, focus: str = "comprehensive", depth: str = "standard"
    ) -> ReviewResult:
        """Review a repository from a completed analysis."""
        prompt = self.prompt_builder.build_repository_prompt_from_analysis(analysis, focus=focus, depth=depth)
        text = await self._generate(prompt)
        result = self.parser.parse_repository_review(text)
        result.metadata = {
            "project": analysis.name,
            "branch": analysis.branch,
            "files_analyzed": len(analysis.files),
            "focus": focus,
            "depth": depth,
            "model": self.model.model,
            "timestamp": _now(),
        }
        return result


def format_review_note(result: ReviewResult) -> str:
    """Markdown body for posting a review as a GitLab note."""
    sections = MERGE_REQUEST_SECTIONS if result.kind == "merge_request" else REPOSITORY_SECTIONS
    lines = ["# 🤖 AI Code Review", ""]
    if result.summary:
        lines += [f"**{result.summary}**", ""]
    for section in sections:
        content = result.sections.get(section.key, "")
        if not content:
            continue
        lines += [f"## {section.heading}", "", content, ""]
    lines += ["---", f"*Generated by glreview ({result.metadata.get('model', 'unknown model')})*"]
    return "\n".join(lines)
