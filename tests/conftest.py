"""Shared fixtures: a fake GitHub upstream, a controllable clock, a test app."""

from unittest.mock import MagicMock

import pytest
from requests.structures import CaseInsensitiveDict
from urllib.parse import unquote

from server.app import create_app
from server.config import ProxyConfig
from server.github import GitHubClient
from server.store import MemoryStore

API_BASE = "https://api.github.com"
RAW_BASE = "https://raw.githubusercontent.com"

SHA_1 = "1" * 40
SHA_2 = "2" * 40


def make_response(status=200, content=b"", headers=None, json_body=None):
    """Build a stand-in for requests.Response."""
    resp = MagicMock()
    resp.status_code = status
    resp.ok = status < 400
    resp.content = content
    resp.text = content.decode("utf-8", errors="replace")
    resp.headers = CaseInsensitiveDict(headers or {})
    if json_body is not None:
        resp.json.return_value = json_body
    else:
        resp.json.side_effect = ValueError("No JSON object could be decoded")
    return resp


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeGitHub:
    """Answers session.get() calls the way the commits API and raw host do.

    ``branches`` maps (owner, repo, branch) to the tip SHA; ``files`` maps
    (owner, repo, path) to (body, content type) regardless of the ref used.
    """

    def __init__(self):
        self.branches = {}
        self.files = {}
        self.other = {}
        self.api_status = 200
        self.urls = []

    def get(self, url, headers=None, timeout=None):
        self.urls.append(url)
        if url.startswith(f"{API_BASE}/repos/"):
            owner, repo, _, branch = url[len(f"{API_BASE}/repos/"):].split("/", 3)
            branch = branch.replace("%2F", "/")
            if self.api_status != 200:
                return make_response(self.api_status, b'{"message": "Server Error"}')
            sha = self.branches.get((owner, repo, branch))
            if sha is None:
                return make_response(422, b'{"message": "No commit found"}')
            return make_response(200, b"{}", json_body={"sha": sha})
        if url.startswith(f"{RAW_BASE}/"):
            owner, repo, _, path = url[len(f"{RAW_BASE}/"):].split("/", 3)
            path = unquote(path)
            if (owner, repo, path) not in self.files:
                return make_response(404, b"404: Not Found", {"Content-Type": "text/plain"})
            body, content_type = self.files[(owner, repo, path)]
            return make_response(
                200,
                body,
                {
                    "Content-Type": content_type,
                    "Cache-Control": "max-age=300",
                    "ETag": '"abc123"',
                    "X-Cache": "HIT",
                    "Age": "12",
                },
            )
        if url in self.other:
            return self.other[url]
        return make_response(404, b"not found")

    @property
    def api_calls(self):
        return [u for u in self.urls if u.startswith(API_BASE)]

    @property
    def raw_calls(self):
        return [u for u in self.urls if not u.startswith(API_BASE)]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def config():
    return ProxyConfig(github_token="test-token")


@pytest.fixture
def github():
    fake = FakeGitHub()
    fake.branches[("octocat", "Hello-World", "main")] = SHA_1
    fake.files[("octocat", "Hello-World", "README.md")] = (
        b"Hello World!\n",
        "text/plain; charset=utf-8",
    )
    return fake


@pytest.fixture
def session(github):
    session = MagicMock()
    session.get.side_effect = github.get
    return session


@pytest.fixture
def gh_client(config, session):
    return GitHubClient(config, session=session)


@pytest.fixture
def app(config, store, gh_client):
    app = create_app(config, store, gh_client)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
