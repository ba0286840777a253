"""Turn an inbound request path into the file it names.

Accepted forms::

    /<owner>/<repo>/<ref>/<path/to/file>
    /<owner>/<repo>/blob/<ref>/<path/to/file>
    /https://raw.githubusercontent.com/<owner>/<repo>/<ref>/<path/to/file>
    /https://github.com/<owner>/<repo>/blob/<ref>/<path/to/file>

Parsing is an ordered chain of strategies. Each one either recognizes the
path or returns ``UNRECOGNIZED`` and lets the next one try.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Union
from urllib.parse import urlsplit

from server.config import ProxyConfig

USAGE_HINT = (
    "Path format: /owner/repo/branch/path/to/file "
    "or /https://raw.githubusercontent.com/owner/repo/branch/path/to/file"
)
MISSING_FILE_HINT = (
    "Specify a file path inside the repository, e.g. /owner/repo/branch/path/to/file"
)

# Segment GitHub's web UI puts between the repo name and the ref
MARKER_SEGMENTS = ("blob",)
WEB_MARKER_SEGMENTS = ("blob", "raw")
WEB_HOSTS = ("github.com", "www.github.com")

NAME_REGEX = re.compile(r"^[A-Za-z0-9._-]+$")
FULL_URL_REGEX = re.compile(r"^(https?):/+(.*)$", re.IGNORECASE | re.DOTALL)


def is_safe_name(name: str) -> bool:
    return bool(NAME_REGEX.match(name)) and name not in (".", "..")


class ProxyError(Exception):
    status = 500


class InvalidPath(ProxyError):
    status = 400


class HostNotAllowed(ProxyError):
    status = 403


@dataclass(frozen=True)
class RepoCoordinate:
    owner: str
    repo: str
    ref: str


@dataclass(frozen=True)
class FileCoordinate:
    repo: RepoCoordinate
    path: str

    @property
    def owner(self) -> str:
        return self.repo.owner

    @property
    def name(self) -> str:
        return self.repo.repo

    @property
    def ref(self) -> str:
        return self.repo.ref


@dataclass(frozen=True)
class Resolved:
    coordinate: FileCoordinate


@dataclass(frozen=True)
class Passthrough:
    """A full URL fetched verbatim, without SHA resolution."""

    url: str


class _Unrecognized:
    def __repr__(self) -> str:
        return "UNRECOGNIZED"


UNRECOGNIZED = _Unrecognized()

ParseResult = Union[Resolved, Passthrough, _Unrecognized]


def as_full_url(path: str) -> str | None:
    """Return ``path`` as an absolute http(s) URL, or None if it isn't one.

    Front proxies often collapse ``//`` so ``https:/host/...`` is accepted too.
    """
    m = FULL_URL_REGEX.match(path.lstrip("/"))
    if not m:
        return None
    return f"{m.group(1).lower()}://{m.group(2)}"


def strip_marker(parts: list[str], markers=MARKER_SEGMENTS) -> list[str]:
    if len(parts) >= 3 and parts[2].lower() in markers:
        return parts[:2] + parts[3:]
    return parts


def _coordinate(parts: list[str], config: ProxyConfig) -> FileCoordinate:
    if len(parts) < 3:
        raise InvalidPath(USAGE_HINT)
    owner, repo = parts[0], parts[1]
    if not is_safe_name(owner) or not is_safe_name(repo):
        raise InvalidPath(USAGE_HINT)
    file_path = "/".join(parts[3:])
    if not file_path:
        raise InvalidPath(MISSING_FILE_HINT)
    return FileCoordinate(
        RepoCoordinate(owner, repo, parts[2] or config.default_branch), file_path
    )


def parse_full_url(path: str, config: ProxyConfig) -> ParseResult:
    if not config.full_url_input:
        return UNRECOGNIZED
    url = as_full_url(path)
    if url is None:
        return UNRECOGNIZED
    parsed = urlsplit(url)
    host = (parsed.hostname or "").lower()
    parts = [p for p in parsed.path.split("/") if p]
    if host == config.raw_host:
        parts = strip_marker(parts)
    elif host in WEB_HOSTS:
        # Web URLs always carry a marker; without one there is no ref to find
        if len(parts) < 3 or parts[2].lower() not in WEB_MARKER_SEGMENTS:
            return UNRECOGNIZED
        parts = strip_marker(parts, WEB_MARKER_SEGMENTS)
    else:
        return UNRECOGNIZED
    if len(parts) < 3 or not is_safe_name(parts[0]) or not is_safe_name(parts[1]):
        return UNRECOGNIZED
    return Resolved(_coordinate(parts, config))


def parse_passthrough(path: str, config: ProxyConfig) -> ParseResult:
    if not config.full_url_input:
        return UNRECOGNIZED
    url = as_full_url(path)
    if url is None:
        return UNRECOGNIZED
    host = (urlsplit(url).hostname or "").lower()
    if not host:
        return UNRECOGNIZED
    if config.passthrough_hosts and host not in config.passthrough_hosts:
        raise HostNotAllowed("Host not allowed.")
    return Passthrough(url)


def parse_segments(path: str, config: ProxyConfig) -> ParseResult:
    parts = strip_marker([p for p in path.split("/") if p])
    return Resolved(_coordinate(parts, config))


STRATEGIES: tuple[Callable[[str, ProxyConfig], ParseResult], ...] = (
    parse_full_url,
    parse_passthrough,
    parse_segments,
)


def resolve_path(path: str, config: ProxyConfig) -> Resolved | Passthrough:
    """Resolve a request path (leading slash optional).

    Raises InvalidPath when no strategy can make sense of it, or
    HostNotAllowed for a passthrough URL outside the configured hosts.
    """
    for strategy in STRATEGIES:
        result = strategy(path, config)
        if result is not UNRECOGNIZED:
            return result
    raise InvalidPath(USAGE_HINT)
