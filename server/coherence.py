"""SHA-based cache busting.

Two short-lived entries drive every decision:

* ``branch-sha://owner/repo/ref`` holds the branch tip SHA for a few
  seconds so bursts of requests share one API call.
* ``sha://owner/repo/ref/path`` holds the SHA last observed for a single
  file. When a freshly resolved SHA differs from it, the file is fetched
  from ``raw/<owner>/<repo>/<sha>/<path>``, a URL no edge cache has seen yet.
  Otherwise the ordinary branch URL is used.

The record is only a hint for picking the URL form. Losing it costs at most
one extra SHA-addressed fetch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from server.config import ProxyConfig
from server.github import GitHubClient, is_commit_sha
from server.paths import FileCoordinate
from server.store import KeyValueStore

logger = logging.getLogger(__name__)

STRATEGY_SHA = "sha-in-path"
STRATEGY_BRANCH = "branch"
STRATEGY_PASSTHROUGH = "passthrough"


def branch_key(owner: str, repo: str, branch: str) -> str:
    return f"branch-sha://{owner}/{repo}/{branch}"


def record_key(coordinate: FileCoordinate) -> str:
    return f"sha://{coordinate.owner}/{coordinate.name}/{coordinate.ref}/{coordinate.path}"


@dataclass(frozen=True)
class FetchTarget:
    url: str
    strategy: str
    sha: str | None = None


class ReferenceResolver:
    def __init__(self, store: KeyValueStore, client: GitHubClient, config: ProxyConfig):
        self.store = store
        self.client = client
        self.config = config

    def resolve(self, owner: str, repo: str, branch: str) -> str | None:
        """Current commit SHA for ``branch``, or None when it can't be found."""
        if is_commit_sha(branch):
            return branch

        key = branch_key(owner, repo, branch)
        cached = self.store.get(key)
        if isinstance(cached, dict) and cached.get("sha"):
            return cached["sha"]

        try:
            sha = self.client.latest_commit_sha(owner, repo, branch)
        except Exception:
            logger.exception(f"SHA lookup crashed for {owner}/{repo}@{branch}")
            return None
        if not sha:
            return None
        self.store.put(key, {"sha": sha}, self.config.sha_ttl)
        return sha


class FetchTargetSelector:
    def __init__(self, store: KeyValueStore, client: GitHubClient, config: ProxyConfig):
        self.store = store
        self.client = client
        self.config = config

    def last_seen(self, coordinate: FileCoordinate) -> str | None:
        record = self.store.get(record_key(coordinate))
        if isinstance(record, dict):
            return record.get("sha")
        return None

    def select(self, coordinate: FileCoordinate, sha: str | None) -> FetchTarget:
        last_sha = self.last_seen(coordinate)
        if sha and sha != last_sha:
            target = FetchTarget(
                self.client.raw_url(coordinate, ref=sha), STRATEGY_SHA, sha
            )
            logger.info(f"SHA changed ({last_sha} -> {sha}), using {target.url}")
        else:
            # No SHA means nothing observably changed; serve the branch URL
            target = FetchTarget(self.client.raw_url(coordinate), STRATEGY_BRANCH, sha)

        self.store.put(record_key(coordinate), {"sha": sha}, self.config.record_ttl)
        return target
