"""Bulk branch lookups and merge request creation across projects."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from .gitlab import BatchOutcome, GitLabClient
from .logging import get_logger

logger = get_logger("branches")

DEFAULT_BRANCH_NAMES = ("main", "master", "develop", "development")


@dataclass
class BranchIndex:
    """Branch names per project, plus the projects that failed to load."""

    branches: dict[Any, list[str]] = field(default_factory=dict)
    errors: dict[Any, str] = field(default_factory=dict)

    @property
    def loaded(self) -> list[Any]:
        return [pid for pid in self.branches if pid not in self.errors]


async def fetch_branches(
    client: GitLabClient,
    project_ids: Iterable[int | str],
    batch_size: int = 5,
    delay: float = 0.1,
    cancel: asyncio.Event | None = None,
) -> BranchIndex:
    """Load branch names for every project in throttled batches."""
    async def branch_names(project_id: int | str) -> list[str]:
        return [b["name"] for b in await client.get_branches(project_id)]

    outcomes = await client.fetch_batch(
        list(project_ids), branch_names, batch_size=batch_size, delay=delay, cancel=cancel
    )

    index = BranchIndex()
    for outcome in outcomes:
        if outcome.success:
            index.branches[outcome.item] = outcome.value
        else:
            logger.info("Failed to load branches for project %s: %s", outcome.item, outcome.error_message)
            index.branches[outcome.item] = []
            index.errors[outcome.item] = outcome.error_message
    return index


def common_branches(
    index: BranchIndex,
    project_ids: Sequence[int | str] | None = None,
    defaults: Sequence[str] = DEFAULT_BRANCH_NAMES,
) -> list[str]:
    """Branches present in every loaded project, then missing defaults."""
    ids = index.loaded if project_ids is None else [p for p in project_ids if p in index.loaded]
    lists = [index.branches[p] for p in ids if index.branches.get(p)]
    if not lists:
        return list(defaults)

    shortest = min(lists, key=len)
    others = [set(names) for names in lists]
    common = [name for name in shortest if all(name in names for names in others)]
    return common + [name for name in defaults if name not in common]


def is_branch_valid(index: BranchIndex, project_id: int | str, branch: str) -> bool:
    """Unknown branch lists count as valid; only a known list can reject."""
    if not branch or not branch.strip():
        return False
    if project_id in index.errors or not index.branches.get(project_id):
        return True
    return branch in index.branches[project_id]


async def create_merge_requests(
    client: GitLabClient,
    project_ids: Iterable[int | str],
    source_branch: str,
    target_branch: str,
    title: str,
    description: str | None = None,
    *,
    batch_size: int = 5,
    delay: float = 0.2,
    cancel: asyncio.Event | None = None,
    **extra: Any,
) -> list[BatchOutcome]:
    """Open the same merge request in each project. One outcome per project."""
    async def create(project_id: int | str) -> dict[str, Any]:
        return await client.create_merge_request(
            project_id, source_branch, target_branch, title, description=description, **extra
        )

    return await client.fetch_batch(
        list(project_ids), create, batch_size=batch_size, delay=delay, cancel=cancel
    )
