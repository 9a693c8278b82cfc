"""Repository analyzer - drives discovery, filtering and content fetching.

Pulls project metadata, language stats and the file tree from GitLab,
narrows the tree with FileSelector, then fetches the chosen files in
throttled batches. Files that fail to fetch are dropped from the result
rather than failing the whole analysis.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .config import AnalysisOptions
from .files import FileSelector, ScoredFile, SelectedFile, StructureAnalysis
from .gitlab import AuthError, BatchOutcome, GitLabClient, RateLimitError
from .logging import get_logger

logger = get_logger("analyzer")

DISCOVERY = "discovery"
FILTERING = "filtering"
FETCHING = "fetching"
DONE = "done"
ERROR = "error"


@dataclass
class ProgressEvent:
    """Progress notification passed to the caller's callback."""

    phase: str
    message: str
    files_count: Optional[int] = None
    progress: Optional[float] = None


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class AnalysisResult:
    """Complete analysis of one repository at one ref."""

    project: dict[str, Any]
    branch: str
    languages: dict[str, float] = field(default_factory=dict)
    total_files: int = 0
    filtered_files: int = 0
    selected_files: int = 0
    files: list[SelectedFile] = field(default_factory=list)
    failed_files: list[SelectedFile] = field(default_factory=list)
    analysis: StructureAnalysis = field(default_factory=StructureAnalysis)

    @property
    def name(self) -> str:
        return self.project.get("name_with_namespace") or self.project.get("name") or str(self.project.get("id", ""))

    def to_dict(self) -> dict[str, Any]:
        return {
            "project": {
                k: self.project.get(k)
                for k in ("id", "name", "name_with_namespace", "description", "default_branch", "web_url")
                if self.project.get(k) is not None
            },
            "branch": self.branch,
            "languages": self.languages,
            "total_files": self.total_files,
            "filtered_files": self.filtered_files,
            "selected_files": self.selected_files,
            "files": [f.to_dict() for f in self.files],
            "failed_files": [f.to_dict() for f in self.failed_files],
            "analysis": self.analysis.to_dict(),
        }


class RepositoryAnalyzer:
    """Runs the discovery -> filtering -> fetching pipeline for a project."""

    def __init__(
        self,
        client: GitLabClient,
        options: AnalysisOptions | None = None,
        selector: FileSelector | None = None,
    ):
        self.client = client
        self.options = options or AnalysisOptions()
        self.selector = selector or FileSelector(self.options)
        self.phase: str | None = None

    def _emit(self, callback: ProgressCallback | None, event: ProgressEvent) -> None:
        self.phase = event.phase
        logger.debug("[%s] %s", event.phase, event.message)
        if callback:
            callback(event)

    async def analyze(
        self,
        project_id: int | str,
        ref: str = "main",
        progress_callback: ProgressCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AnalysisResult:
        """Analyze a project at `ref` and return the selected files with content."""
        try:
            return await self._analyze(project_id, ref, progress_callback, cancel)
        except Exception as e:
            self._emit(progress_callback, ProgressEvent(ERROR, f"Analysis failed: {e}"))
            raise

    async def _analyze(
        self,
        project_id: int | str,
        ref: str,
        progress_callback: ProgressCallback | None,
        cancel: asyncio.Event | None,
    ) -> AnalysisResult:
        self._emit(progress_callback, ProgressEvent(DISCOVERY, "Discovering files..."))
        project, languages = await asyncio.gather(
            self.client.get_project(project_id, cancel=cancel),
            self.client.get_repository_languages(project_id, cancel=cancel),
        )
        tree = await self.client.get_repository_tree(project_id, ref, True, cancel=cancel)

        self._emit(progress_callback, ProgressEvent(FILTERING, "Filtering files..."))
        filtered = self.selector.filter_files(tree)
        prioritized = self.selector.prioritize_files(filtered, languages)
        selected = self.selector.select_files(prioritized, self.options.max_files)

        self._emit(
            progress_callback,
            ProgressEvent(
                FETCHING,
                f"Fetching content for {len(selected)} files...",
                files_count=len(selected),
            ),
        )
        fetched, failed = await self.fetch_file_contents(project_id, selected, ref, progress_callback, cancel)

        result = AnalysisResult(
            project=project,
            branch=ref,
            languages=languages,
            total_files=len(tree),
            filtered_files=len(filtered),
            selected_files=len(selected),
            files=fetched,
            failed_files=failed,
            analysis=self.selector.analyze_structure(fetched),
        )
        self._emit(
            progress_callback,
            ProgressEvent(DONE, f"Analyzed {len(fetched)} files", files_count=len(fetched), progress=100.0),
        )
        return result

    async def fetch_file_contents(
        self,
        project_id: int | str,
        files: list[ScoredFile],
        ref: str,
        progress_callback: ProgressCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> tuple[list[SelectedFile], list[SelectedFile]]:
        """Fetch content for `files` batch by batch. Returns (fetched, failed)."""
        by_path = {f.path: f for f in files}
        fetched: list[SelectedFile] = []
        failed: list[SelectedFile] = []
        batch_size = max(1, self.options.batch_size)
        total = len(files)

        for start in range(0, total, batch_size):
            batch = [f.path for f in files[start:start + batch_size]]
            self._emit(
                progress_callback,
                ProgressEvent(
                    FETCHING,
                    f"Fetching files {start + 1}-{start + len(batch)} of {total}...",
                    progress=start / total * 100,
                ),
            )

            outcomes = await self.client.get_file_content_batch(project_id, batch, ref, cancel=cancel)
            for outcome in outcomes:
                entry = _to_selected(by_path[outcome.item], outcome)
                (fetched if entry.fetched else failed).append(entry)

            # Siblings have finished; now surface what the caller must handle
            for outcome in outcomes:
                if isinstance(outcome.error, (AuthError, RateLimitError)):
                    raise outcome.error

        if failed:
            logger.info("Skipped %d of %d files that could not be fetched", len(failed), total)
        return fetched, failed


def _to_selected(file: ScoredFile, outcome: BatchOutcome) -> SelectedFile:
    selected = SelectedFile(
        path=file.path,
        type=file.type,
        size=file.size,
        id=file.id,
        priority=file.priority,
    )
    if outcome.success:
        data = outcome.value or {}
        selected.content = data.get("content", "")
        selected.encoding = data.get("encoding", "")
        selected.size = data.get("size", file.size)
        selected.fetched = True
    else:
        selected.error = outcome.error_message
    return selected
