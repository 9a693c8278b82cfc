"""Tests for the glreview command line interface."""

import json
from unittest.mock import patch

import httpx
import pytest
from click.testing import CliRunner

from conftest import API, file_payload, json_response
from glreview_cli import __version__
from glreview_cli.gitlab import GitLabClient
from glreview_cli.main import cli
from glreview_cli.model import GeminiClient

NO_ENV = {"GITLAB_TOKEN": None, "GITLAB_URL": None, "GEMINI_API_KEY": None}

REVIEW = """## 🔍 Overall Assessment
Small, focused change.

## 💡 Suggestions
- Add a test.
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def gitlab_handler(clock):
    """Patch the CLI's client factory so requests go to `handler`."""

    def install(handler):
        def factory(session):
            return GitLabClient(session, transport=httpx.MockTransport(handler), clock=clock, sleep=clock.sleep)

        return patch("glreview_cli.main._client", side_effect=factory)

    return install


@pytest.fixture
def gemini():
    """Patch GeminiClient so it answers every prompt with REVIEW."""
    transport = httpx.MockTransport(
        lambda request: json_response({"candidates": [{"content": {"parts": [{"text": REVIEW}]}}]})
    )

    def factory(api_key=None, model="gemini-test"):
        return GeminiClient(api_key=api_key, model=model, transport=transport)

    with patch("glreview_cli.main.GeminiClient", side_effect=factory):
        yield


def repo_handler(request):
    path = request.url.path[len(API):]
    if path == "/projects/1":
        return json_response({"id": 1, "name": "shop", "name_with_namespace": "acme / shop"})
    if path == "/projects/1/languages":
        return json_response({"Python": 100.0})
    if path == "/projects/1/repository/tree":
        return json_response([{"path": "app.py", "type": "blob"}, {"path": "dist/app.py", "type": "blob"}])
    if path == "/projects/1/repository/files/app.py":
        return json_response(file_payload("app.py", "print('hello')\n"))
    if path == "/projects/1/merge_requests/3":
        return json_response({"iid": 3, "title": "Tidy app", "source_branch": "tidy", "target_branch": "main"})
    if path == "/projects/1/merge_requests/3/raw_diffs":
        return httpx.Response(200, text="diff --git a/app.py b/app.py\n+print('hi')\n")
    if path == "/user":
        return json_response(
            {"username": "alice"},
            headers={"ratelimit-limit": "2000", "ratelimit-remaining": "1999", "ratelimit-reset": "1700000060"},
        )
    return json_response({"message": "404 Not Found"}, status=404)


class TestBasics:
    """Version and global options."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("analyze", "review-repo", "review-mr", "branches", "bulk-mr", "rate-limit"):
            assert command in result.output

    def test_missing_token(self, runner):
        result = runner.invoke(cli, ["analyze", "1"], env=NO_ENV)
        assert result.exit_code == 1
        assert "Authentication failed" in result.output


class TestAnalyze:
    """glreview analyze"""

    def test_json_output(self, runner, gitlab_handler):
        with gitlab_handler(repo_handler):
            result = runner.invoke(cli, ["--token", "t", "analyze", "1", "--json-only"], env=NO_ENV)
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["total_files"] == 2
        assert data["filtered_files"] == 1
        assert [f["path"] for f in data["files"]] == ["app.py"]

    def test_table_output(self, runner, gitlab_handler):
        with gitlab_handler(repo_handler):
            result = runner.invoke(cli, ["--token", "t", "analyze", "1"], env=NO_ENV)
        assert result.exit_code == 0, result.output
        assert "acme / shop" in result.output
        assert "app.py" in result.output

    def test_not_found(self, runner, gitlab_handler):
        with gitlab_handler(repo_handler):
            result = runner.invoke(cli, ["--token", "t", "analyze", "2", "--json-only"], env=NO_ENV)
        assert result.exit_code == 1
        assert "404 Not Found" in result.output


class TestReview:
    """glreview review-mr / review-repo"""

    def test_review_mr_requires_key(self, runner):
        result = runner.invoke(cli, ["--token", "t", "review-mr", "1", "3"], env=NO_ENV)
        assert result.exit_code == 1
        assert "Gemini API key not configured" in result.output

    def test_review_mr_json(self, runner, gitlab_handler, gemini):
        with gitlab_handler(repo_handler):
            result = runner.invoke(
                cli, ["--token", "t", "review-mr", "1", "3", "--gemini-key", "k", "--json-only"], env=NO_ENV
            )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["kind"] == "merge_request"
        assert data["sections"]["overall"] == "Small, focused change."
        assert data["metadata"]["title"] == "Tidy app"

    def test_review_repo_writes_output(self, runner, gitlab_handler, gemini, tmp_path):
        out = tmp_path / "review.md"
        with gitlab_handler(repo_handler):
            result = runner.invoke(
                cli,
                ["--token", "t", "review-repo", "1", "--gemini-key", "k", "--json-only", "--output", str(out)],
                env=NO_ENV,
            )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["analysis"]["selected_files"] == 1
        assert data["review"]["kind"] == "repository"
        assert out.read_text().startswith("## 🔍 Overall Assessment")


def branch_handler(request):
    parts = request.url.path[len(API):].split("/")
    project = parts[2]
    if request.method == "POST":
        return json_response({"iid": 5, "web_url": f"https://gitlab.example.com/p{project}/-/merge_requests/5"})
    if project == "1":
        return json_response([{"name": "main"}, {"name": "feature"}])
    if project == "2":
        return json_response([{"name": "main"}])
    return json_response({"message": "404 Project Not Found"}, status=404)


class TestBranches:
    """glreview branches / bulk-mr"""

    def test_branches_json(self, runner, gitlab_handler):
        with gitlab_handler(branch_handler):
            result = runner.invoke(
                cli, ["--token", "t", "branches", "1", "2", "9", "--check", "feature", "--json-only"], env=NO_ENV
            )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["common"][0] == "main"
        assert data["valid"] == {"1": True, "2": False, "9": True}
        assert "9" in data["errors"]

    def test_bulk_mr_partial_failure(self, runner, gitlab_handler):
        with gitlab_handler(branch_handler):
            result = runner.invoke(
                cli,
                ["--token", "t", "bulk-mr", "1", "2", "--source", "feature", "--target", "main",
                 "--title", "Ship feature", "--json-only"],
                env=NO_ENV,
            )
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data[0]["success"] is True
        assert data[0]["web_url"].endswith("/merge_requests/5")
        assert data[1]["error"] == "Source branch 'feature' does not exist"

    def test_bulk_mr_all_succeed(self, runner, gitlab_handler):
        with gitlab_handler(branch_handler):
            result = runner.invoke(
                cli,
                ["--token", "t", "bulk-mr", "1", "--source", "feature", "--target", "main", "--title", "Ship"],
                env=NO_ENV,
            )
        assert result.exit_code == 0, result.output
        assert "Created 1 of 1" in result.output


class TestRateLimit:
    """glreview rate-limit"""

    def test_shows_quota(self, runner, gitlab_handler):
        with gitlab_handler(repo_handler):
            result = runner.invoke(cli, ["--token", "t", "rate-limit"], env=NO_ENV)
        assert result.exit_code == 0, result.output
        assert "alice" in result.output
        assert "1999" in result.output
