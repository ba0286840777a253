from __future__ import annotations

import logging
import re
from urllib.parse import quote, urlsplit

import requests

from server.config import ProxyConfig
from server.paths import FileCoordinate

logger = logging.getLogger(__name__)

FULL_SHA_REGEX = re.compile(r"^[0-9a-f]{40}$", re.IGNORECASE)


def is_commit_sha(ref: str) -> bool:
    return bool(FULL_SHA_REGEX.match(ref or ""))


class GitHubClient:
    """Thin wrapper over the two GitHub endpoints the proxy talks to."""

    def __init__(self, config: ProxyConfig, session: requests.Session | None = None):
        self.config = config
        self.session = session or requests.Session()

    def headers_for(self, url: str, accept: str | None = None) -> dict:
        headers = {"User-Agent": self.config.user_agent}
        if accept:
            headers["Accept"] = accept
        # Never hand the token to a host that isn't GitHub's
        host = (urlsplit(url).hostname or "").lower()
        if self.config.github_token and host in (
            self.config.api_host,
            self.config.raw_host,
        ):
            headers["Authorization"] = f"token {self.config.github_token}"
        return headers

    def commit_url(self, owner: str, repo: str, branch: str) -> str:
        return (
            f"{self.config.api_base}/repos/{owner}/{repo}/commits/"
            f"{quote(branch, safe='')}"
        )

    def raw_url(self, coordinate: FileCoordinate, ref: str | None = None) -> str:
        # Paths arrive decoded; "#", "?" and spaces must be escaped again
        ref = ref or coordinate.ref
        return (
            f"{self.config.raw_base}/{quote(coordinate.owner, safe='')}/"
            f"{quote(coordinate.name, safe='')}/{quote(ref, safe='/')}/"
            f"{quote(coordinate.path, safe='/')}"
        )

    def latest_commit_sha(self, owner: str, repo: str, branch: str) -> str | None:
        """Ask the commits API for the tip of ``branch``. None on any failure."""
        url = self.commit_url(owner, repo, branch)
        try:
            resp = self.session.get(
                url,
                headers=self.headers_for(url, accept="application/vnd.github+json"),
                timeout=self.config.upstream_timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Commit lookup failed for {owner}/{repo}@{branch}: {e}")
            return None

        if not resp.ok:
            logger.warning(
                f"Commit lookup for {owner}/{repo}@{branch} returned "
                f"{resp.status_code}: {resp.text[:200]}"
            )
            return None

        try:
            body = resp.json()
        except ValueError as e:
            logger.error(f"Commit lookup for {owner}/{repo}@{branch} returned bad JSON: {e}")
            return None
        sha = body.get("sha") if isinstance(body, dict) else None
        return sha or None

    def fetch(self, url: str) -> requests.Response:
        return self.session.get(
            url,
            headers=self.headers_for(url),
            timeout=self.config.upstream_timeout,
        )
