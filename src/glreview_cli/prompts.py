"""Prompt construction for merge request and repository reviews.

Both prompts ask for a fixed, ordered set of `##` sections and forbid
wrapping the answer in a code fence; the section tables below are shared
with the review parser.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from .config import CONTENT_LIMITS, DEFAULT_DIFF_LENGTH, EXT_FENCE_LANG


@dataclass(frozen=True)
class Section:
    """One named section the model is asked to produce."""

    key: str
    emoji: str
    title: str
    guidance: str

    @property
    def heading(self) -> str:
        return f"{self.emoji} {self.title}"


MERGE_REQUEST_SECTIONS = (
    Section("overall", "🔍", "Overall Assessment",
            "Brief summary of the changes and general code quality."),
    Section("code_quality", "🐛", "Code Quality Issues",
            'Any bugs, logic errors, or potential issues found. If none, write "No significant issues identified."'),
    Section("style", "🎨", "Style & Best Practices",
            'Code style, naming conventions, and best practices. If good, write "Code follows good practices."'),
    Section("performance", "⚡", "Performance Considerations",
            'Performance implications or optimization opportunities. If none, write "No performance concerns."'),
    Section("security", "🔒", "Security Concerns",
            'Security vulnerabilities or concerns. If none, write "No security issues identified."'),
    Section("suggestions", "💡", "Suggestions",
            "Specific improvements or recommendations."),
)

REPOSITORY_SECTIONS = (
    Section("overview", "🏗️", "Repository Overview",
            "Brief assessment of the overall repository structure, architecture, and purpose."),
    Section("code_quality", "📊", "Code Quality Assessment",
            "Overall code quality, consistency, and maintainability across the codebase."),
    Section("security", "🔒", "Security Analysis",
            "Security vulnerabilities, best practices, and potential risks identified."),
    Section("performance", "⚡", "Performance Insights",
            "Performance considerations, optimization opportunities, and efficiency improvements."),
    Section("architecture", "🎯", "Architecture & Design",
            "Code organization, design patterns, and architectural decisions."),
    Section("file_insights", "📁", "File-Level Insights",
            "Specific insights for individual files, focusing on the most critical issues."),
    Section("recommendations", "🚀", "Recommendations",
            "Prioritized list of improvements and next steps."),
    Section("summary", "📋", "Summary",
            "Executive summary with key findings and overall assessment."),
)

FOCUS_INSTRUCTIONS = {
    "comprehensive": "Analyze all aspects: security, performance, code quality, architecture, and best practices.",
    "security": "Focus primarily on security vulnerabilities, authentication, authorization, input validation, and secure coding practices.",
    "performance": "Focus on performance bottlenecks, optimization opportunities, resource usage, and scalability concerns.",
    "quality": "Focus on code quality, maintainability, readability, testing, and adherence to best practices.",
    "architecture": "Focus on code organization, design patterns, separation of concerns, and overall system design.",
}

DEPTH_INSTRUCTIONS = {
    "quick": "Provide a high-level overview with key issues and recommendations. Focus on the most critical findings.",
    "standard": "Provide a thorough analysis with detailed insights and specific recommendations for improvement.",
    "deep": "Provide comprehensive analysis including detailed code examples, alternative approaches, and extensive recommendations.",
}


def render_sections(sections: Sequence[Section]) -> str:
    return "\n\n".join(f"## {s.heading}\n{s.guidance}" for s in sections)


class PromptBuilder:
    """Builds bounded review prompts.

    The lookup tables can be replaced per instance to add depths, focus
    areas or languages without touching the prompt templates.
    """

    def __init__(
        self,
        content_limits: Mapping[str, int] | None = None,
        focus_instructions: Mapping[str, str] | None = None,
        depth_instructions: Mapping[str, str] | None = None,
        fence_languages: Mapping[str, str] | None = None,
        file_formatter: Callable[[Any, str], str] | None = None,
    ):
        self.content_limits = dict(content_limits or CONTENT_LIMITS)
        self.focus_map = dict(focus_instructions or FOCUS_INSTRUCTIONS)
        self.depth_map = dict(depth_instructions or DEPTH_INSTRUCTIONS)
        self.fence_languages = dict(fence_languages or EXT_FENCE_LANG)
        self.file_formatter = file_formatter or self.format_file

    # --- Truncation ---

    def truncate_diff(self, diff: str, max_length: int = DEFAULT_DIFF_LENGTH) -> str:
        """Cap a diff at `max_length` characters, preferring a line boundary."""
        if not diff or len(diff) <= max_length:
            return diff

        truncated = diff[:max_length]
        last_newline = truncated.rfind("\n")
        # Only cut at a newline if it keeps most of the budget
        if last_newline > max_length * 0.8:
            shown = round(last_newline / len(diff) * 100)
            return (
                truncated[:last_newline]
                + f"\n\n... (diff truncated for analysis - showing first {shown}% of changes)"
            )
        return truncated + "\n\n... (diff truncated for analysis)"

    def truncate_content(self, content: str | None, depth: str) -> str:
        """Keep the first N lines for the depth, noting how many were dropped."""
        if not content:
            return ""
        lines = content.split("\n")
        limit = self.content_limits.get(depth, self.content_limits["standard"])
        if len(lines) <= limit:
            return content
        return "\n".join(lines[:limit]) + f"\n... ({len(lines) - limit} more lines)"

    # --- Instruction snippets ---

    def focus_instructions(self, focus: str) -> str:
        text = self.focus_map.get(focus, self.focus_map["comprehensive"])
        return f"**Focus Area**: {text}"

    def depth_instructions(self, depth: str) -> str:
        text = self.depth_map.get(depth, self.depth_map["standard"])
        return f"**Analysis Depth**: {text}"

    def fence_language(self, extension: str | None) -> str:
        return self.fence_languages.get(extension or "", "text")

    def format_file(self, file: Any, depth: str) -> str:
        content = getattr(file, "content", "") or ""
        lines = len(content.split("\n")) if content else 0
        extension = getattr(file, "extension", "") or "unknown"
        return (
            f"### {file.path}\n"
            f"- **Type**: {extension}\n"
            f"- **Size**: {getattr(file, 'size', None) or 0} bytes ({lines} lines)\n"
            f"- **Content**: \n"
            f"```{self.fence_language(getattr(file, 'extension', ''))}\n"
            f"{self.truncate_content(content, depth)}\n"
            f"```"
        )

    # --- Prompts ---

    def build_merge_request_prompt(
        self, mr: Mapping[str, Any], diff: str, max_diff_length: int = DEFAULT_DIFF_LENGTH
    ) -> str:
        """Prompt for a single merge request review (six sections)."""
        author = (mr.get("author") or {}).get("name") or "Unknown"
        labels = ", ".join(mr.get("labels") or []) or "None"
        return f"""You are an expert code reviewer. Analyze this GitLab merge request and provide constructive feedback.

**Merge Request Details:**
- Title: {mr.get("title", "")}
- Description: {mr.get("description") or "No description provided"}
- Author: {author}
- Source Branch: {mr.get("source_branch", "")}
- Target Branch: {mr.get("target_branch", "")}
- Labels: {labels}

**Code Changes:**
```diff
{self.truncate_diff(diff, max_diff_length)}
```

Provide a structured review with these sections. Do NOT wrap your response in code blocks. Write plain markdown:

{render_sections(MERGE_REQUEST_SECTIONS)}

**Requirements:**
- Use ## for main sections
- Use - for bullet points
- Use `backticks` for inline code
- Use ```language for code blocks
- Be specific and actionable
- Do NOT start with ```markdown or wrap in code blocks
- Write direct markdown content only"""

    def build_repository_prompt(
        self,
        project: Mapping[str, Any],
        languages: Mapping[str, float],
        total_files: int,
        files: Sequence[Any],
        *,
        focus: str = "comprehensive",
        depth: str = "standard",
        branch: str | None = None,
    ) -> str:
        """Prompt for a whole-repository review (eight sections)."""
        file_summaries = "\n\n".join(self.file_formatter(f, depth) for f in files)
        name = project.get("name_with_namespace") or project.get("name") or "Unknown"
        branch = branch or project.get("default_branch") or "main"

        return f"""# Repository Code Review Request

## Repository Information
- **Name**: {name}
- **Description**: {project.get("description") or "No description"}
- **Branch**: {branch}
- **Languages**: {", ".join(languages)}
- **Files Analyzed**: {len(files)} of {total_files} total files

## Analysis Scope
{self.focus_instructions(focus)}
{self.depth_instructions(depth)}

## Files to Review
{file_summaries}

## Review Requirements

Provide a comprehensive code review with these sections. Write in clean markdown format:

{render_sections(REPOSITORY_SECTIONS)}

**Guidelines:**
- Use ## for main sections
- Use ### for subsections
- Use - for bullet points
- Use `backticks` for inline code and file names
- Use ```language for code blocks
- Be specific and actionable
- Prioritize issues by impact
- Consider the repository's context and purpose
- Do NOT wrap your response in code blocks
- Write direct markdown content only (no code block wrappers)"""

    def build_repository_prompt_from_analysis(
        self, analysis: Any, *, focus: str = "comprehensive", depth: str = "standard"
    ) -> str:
        return self.build_repository_prompt(
            analysis.project,
            analysis.languages,
            analysis.total_files,
            analysis.files,
            focus=focus,
            depth=depth,
            branch=analysis.branch,
        )
