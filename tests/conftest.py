"""Shared fixtures: GitLab clients backed by httpx.MockTransport and a fake clock."""

import base64

import httpx
import pytest

from glreview_cli.gitlab import GitLabClient, GitLabSession

GITLAB_URL = "https://gitlab.example.com"
API = "/api/v4"


class FakeClock:
    """Stands in for time.time and asyncio.sleep; sleeping advances the clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def json_response(data, status=200, headers=None):
    return httpx.Response(status, json=data, headers=headers)


def file_payload(path: str, text: str) -> dict:
    return {
        "file_path": path,
        "size": len(text),
        "encoding": "base64",
        "content": base64.b64encode(text.encode()).decode(),
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_client(clock):
    """Build a GitLabClient whose requests go to `handler`."""

    def factory(handler, token="glpat-test", **kwargs):
        session = GitLabSession(url=GITLAB_URL, token=token)
        return GitLabClient(
            session,
            transport=httpx.MockTransport(handler),
            clock=clock,
            sleep=clock.sleep,
            **kwargs,
        )

    return factory
