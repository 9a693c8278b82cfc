"""Tests for bulk branch lookups and merge request creation."""

import asyncio
import json

import pytest

from conftest import API, json_response
from glreview_cli.branches import (
    DEFAULT_BRANCH_NAMES,
    BranchIndex,
    common_branches,
    create_merge_requests,
    fetch_branches,
    is_branch_valid,
)
from glreview_cli.gitlab import BranchNotFoundError

BRANCHES = {
    "1": ["main", "develop", "feature/x"],
    "2": ["feature/x", "main"],
    "3": ["main", "feature/x", "release"],
}


def branches_handler(created=None):
    def handler(request):
        parts = request.url.path[len(API):].split("/")
        project = parts[2]
        if request.method == "POST":
            created.append((project, json.loads(request.content)))
            return json_response({"iid": 1, "web_url": f"https://gitlab.example.com/p{project}/-/merge_requests/1"})
        if project not in BRANCHES:
            return json_response({"message": "404 Project Not Found"}, status=404)
        return json_response([{"name": name} for name in BRANCHES[project]])

    return handler


class TestFetchBranches:
    """fetch_branches"""

    def test_loads_and_records_errors(self, make_client, clock):
        client = make_client(branches_handler())
        index = asyncio.run(fetch_branches(client, ["1", "2", "404"], batch_size=2))

        assert index.branches["1"] == BRANCHES["1"]
        assert index.branches["404"] == []
        assert "404 Project Not Found" in index.errors["404"]
        assert index.loaded == ["1", "2"]
        assert clock.sleeps == [0.1]


class TestCommonBranches:
    """common_branches"""

    def test_intersection_in_shortest_order_then_defaults(self):
        index = BranchIndex(branches={p: list(b) for p, b in BRANCHES.items()})
        assert common_branches(index) == ["feature/x", "main", "master", "develop", "development"]

    def test_restricted_to_projects(self):
        index = BranchIndex(branches={p: list(b) for p, b in BRANCHES.items()})
        assert common_branches(index, ["1"])[:3] == ["main", "develop", "feature/x"]

    def test_failed_projects_ignored(self):
        index = BranchIndex(branches={"1": ["main", "dev"], "2": []}, errors={"2": "boom"})
        assert common_branches(index) == ["main", "dev", "master", "develop", "development"]

    def test_nothing_loaded(self):
        assert common_branches(BranchIndex()) == list(DEFAULT_BRANCH_NAMES)


class TestIsBranchValid:
    """is_branch_valid"""

    @pytest.fixture
    def index(self):
        return BranchIndex(branches={"1": ["main"], "2": [], "3": []}, errors={"3": "boom"})

    def test_blank(self, index):
        assert is_branch_valid(index, "1", "") is False
        assert is_branch_valid(index, "1", "   ") is False

    def test_membership(self, index):
        assert is_branch_valid(index, "1", "main") is True
        assert is_branch_valid(index, "1", "nope") is False

    def test_unknown_lists_are_permissive(self, index):
        assert is_branch_valid(index, "2", "anything") is True
        assert is_branch_valid(index, "3", "anything") is True
        assert is_branch_valid(index, "99", "anything") is True


class TestCreateMergeRequests:
    """create_merge_requests"""

    def test_partial_success(self, make_client):
        created = []
        client = make_client(branches_handler(created))
        outcomes = asyncio.run(
            create_merge_requests(client, ["1", "2", "3"], "develop", "main", "Sync develop", "Monthly sync")
        )

        assert [o.success for o in outcomes] == [True, False, False]
        assert isinstance(outcomes[1].error, BranchNotFoundError)
        assert outcomes[1].error_message == "Source branch 'develop' does not exist"
        assert [project for project, _ in created] == ["1"]
        assert created[0][1]["title"] == "Sync develop"
        assert created[0][1]["description"] == "Monthly sync"
