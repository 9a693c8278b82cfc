"""File discovery and prioritization.

Reduces a repository tree to a small, high-signal set of files: filter out
noise, score what's left, keep the top of the list. Pure functions over
lists; no network access.
"""

from __future__ import annotations

import os
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from .config import (
    CODE_EXTENSIONS,
    CONFIG_EXTENSIONS,
    DOC_EXTENSIONS,
    EXCLUDED_DIRS,
    EXCLUDED_EXTENSIONS,
    LANGUAGE_EXTENSIONS,
    NAME_RULES,
    PATH_RULES,
    AnalysisOptions,
    PriorityRule,
)

FILE_TYPES = {"blob", "file"}


@dataclass
class FileCandidate:
    """One entry of a repository tree listing."""

    path: str
    type: str = "blob"
    size: Optional[int] = None
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, entry: Mapping[str, Any]) -> "FileCandidate":
        return cls(
            path=entry["path"],
            type=entry.get("type", "blob"),
            size=entry.get("size"),
            id=entry.get("id"),
        )

    @property
    def is_file(self) -> bool:
        return self.type in FILE_TYPES

    @property
    def file_name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def extension(self) -> str:
        return os.path.splitext(self.file_name)[1].lower()

    @property
    def directory(self) -> str:
        return self.path.rsplit("/", 1)[0] if "/" in self.path else "."


@dataclass
class ScoredFile(FileCandidate):
    """A candidate with its additive priority score."""

    priority: float = 0


@dataclass
class SelectedFile(ScoredFile):
    """A scored file after its content has been fetched (or failed to)."""

    content: str = ""
    encoding: str = ""
    fetched: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "extension": self.extension,
            "size": self.size,
            "priority": self.priority,
            "lines": line_count(self.content),
            "error": self.error,
        }


@dataclass
class StructureAnalysis:
    """Derived statistics over a set of fetched files."""

    files_by_extension: dict[str, dict[str, int]] = field(default_factory=dict)
    files_by_directory: dict[str, dict[str, Any]] = field(default_factory=dict)
    largest_files: list[dict[str, Any]] = field(default_factory=list)
    total_lines: int = 0
    average_lines: float = 0.0
    total_size: int = 0
    average_file_size: float = 0.0
    deepest_nesting: int = 0

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


Scorer = Callable[[FileCandidate, Mapping[str, float]], float]


def line_count(content: str | None) -> int:
    return len(content.split("\n")) if content else 0


def language_extension_weights(languages: Mapping[str, float]) -> dict[str, float]:
    """Map each extension to the percentage share of the language owning it."""
    weights: dict[str, float] = {}
    for language, percentage in languages.items():
        for ext in LANGUAGE_EXTENSIONS.get(language, []):
            weights[ext] = percentage
    return weights


def language_scorer(file: FileCandidate, languages: Mapping[str, float]) -> float:
    return language_extension_weights(languages).get(file.extension, 0)


def name_rule_scorer(rules: Sequence[PriorityRule] = NAME_RULES) -> Scorer:
    def score(file: FileCandidate, languages: Mapping[str, float]) -> float:
        return sum(rule.score for rule in rules if rule.pattern.search(file.file_name))

    return score


def path_rule_scorer(rules: Sequence[PriorityRule] = PATH_RULES) -> Scorer:
    def score(file: FileCandidate, languages: Mapping[str, float]) -> float:
        return sum(rule.score for rule in rules if rule.pattern.search(file.path))

    return score


def default_scorers() -> list[Scorer]:
    return [language_scorer, name_rule_scorer(), path_rule_scorer()]


class FileSelector:
    """Filters, scores and selects repository files for review."""

    def __init__(self, options: AnalysisOptions | None = None, scorers: Sequence[Scorer] | None = None):
        self.options = options or AnalysisOptions()
        self.scorers = list(scorers) if scorers is not None else default_scorers()

    def is_path_excluded(self, path: str) -> bool:
        if any(part in EXCLUDED_DIRS for part in path.split("/")):
            return True
        return any(exclusion in path for exclusion in self.options.custom_exclusions)

    def is_wanted_extension(self, ext: str) -> bool:
        if ext in CODE_EXTENSIONS or ext in self.options.custom_extensions:
            return True
        if self.options.include_config and ext in CONFIG_EXTENSIONS:
            return True
        return self.options.include_docs and ext in DOC_EXTENSIONS

    def filter_files(self, tree: Iterable[Mapping[str, Any] | FileCandidate]) -> list[FileCandidate]:
        """Keep code-like files outside excluded paths and under the size ceiling."""
        kept = []
        for entry in tree:
            file = entry if isinstance(entry, FileCandidate) else FileCandidate.from_dict(entry)
            if not file.is_file:
                continue
            if self.is_path_excluded(file.path):
                continue
            if file.extension in EXCLUDED_EXTENSIONS:
                continue
            if file.size is not None and file.size > self.options.max_file_size:
                continue
            if self.is_wanted_extension(file.extension):
                kept.append(file)
        return kept

    def score(self, file: FileCandidate, languages: Mapping[str, float]) -> float:
        return sum(max(0, scorer(file, languages)) for scorer in self.scorers)

    def prioritize_files(
        self, files: Iterable[FileCandidate], languages: Mapping[str, float] | None = None
    ) -> list[ScoredFile]:
        """Score each file and sort by descending priority, ties in input order."""
        languages = languages or {}
        scored = [
            ScoredFile(
                path=f.path,
                type=f.type,
                size=f.size,
                id=f.id,
                priority=self.score(f, languages),
            )
            for f in files
        ]
        # sorted() is stable, so equal priorities keep their encounter order
        return sorted(scored, key=lambda f: -f.priority)

    def select_files(self, prioritized: Sequence[ScoredFile], max_files: int | None = None) -> list[ScoredFile]:
        limit = self.options.max_files if max_files is None else max_files
        return list(prioritized[:max(0, min(limit, len(prioritized)))])

    def analyze_structure(self, files: Sequence[FileCandidate]) -> StructureAnalysis:
        """Group and measure files by extension, directory, size and depth."""
        analysis = StructureAnalysis()
        by_ext: dict[str, dict[str, int]] = defaultdict(lambda: {"count": 0, "total_size": 0})
        by_dir: dict[str, dict[str, Any]] = defaultdict(lambda: {"count": 0, "files": []})

        for file in files:
            size = file.size or 0
            by_ext[file.extension]["count"] += 1
            by_ext[file.extension]["total_size"] += size
            by_dir[file.directory]["count"] += 1
            by_dir[file.directory]["files"].append(file.file_name)

            analysis.total_size += size
            analysis.total_lines += line_count(getattr(file, "content", None))
            analysis.deepest_nesting = max(analysis.deepest_nesting, len(file.path.split("/")))

        if files:
            analysis.average_file_size = analysis.total_size / len(files)
            analysis.average_lines = analysis.total_lines / len(files)

        analysis.files_by_extension = dict(by_ext)
        analysis.files_by_directory = dict(by_dir)
        analysis.largest_files = [
            {"path": f.path, "size": f.size or 0}
            for f in sorted(files, key=lambda f: -(f.size or 0))[:5]
        ]
        return analysis
