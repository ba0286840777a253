from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    val = os.environ.get(name)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ProxyConfig:
    """Runtime settings for the proxy.

    Only ``github_token`` is a secret. Without it the proxy runs unauthenticated:
    public repositories only, with GitHub's anonymous API rate limit.
    """

    github_token: str | None = None
    default_branch: str = "main"
    # Seconds a resolved branch SHA is reused before asking the API again
    sha_ttl: int = 5
    # Seconds the last-seen SHA for a single file is remembered
    record_ttl: int = 10
    upstream_timeout: int = 15
    api_base: str = "https://api.github.com"
    raw_base: str = "https://raw.githubusercontent.com"
    user_agent: str = "fresh-raw-proxy/0.1"
    full_url_input: bool = True
    # Empty means any http(s) host may be fetched verbatim
    passthrough_hosts: tuple[str, ...] = field(default_factory=tuple)
    supabase_url: str | None = None
    supabase_key: str | None = None
    coherence_table: str = "edge_kv"

    @classmethod
    def from_env(cls) -> "ProxyConfig":
        hosts = os.environ.get("PASSTHROUGH_HOSTS", "")
        return cls(
            github_token=os.environ.get("GH_TOKEN") or None,
            default_branch=os.environ.get("DEFAULT_BRANCH", "main"),
            sha_ttl=_env_int("SHA_CACHE_TTL_SECONDS", 5),
            record_ttl=_env_int("SHA_RECORD_TTL_SECONDS", 10),
            upstream_timeout=_env_int("UPSTREAM_TIMEOUT", 15),
            api_base=os.environ.get("GITHUB_API_BASE", "https://api.github.com").rstrip("/"),
            raw_base=os.environ.get(
                "GITHUB_RAW_BASE", "https://raw.githubusercontent.com"
            ).rstrip("/"),
            user_agent=os.environ.get("PROXY_USER_AGENT", "fresh-raw-proxy/0.1"),
            full_url_input=_env_bool("ALLOW_FULL_URL", True),
            passthrough_hosts=tuple(
                h.strip().lower() for h in hosts.split(",") if h.strip()
            ),
            supabase_url=os.environ.get("SUPABASE_URL") or None,
            supabase_key=os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or None,
            coherence_table=os.environ.get("COHERENCE_TABLE", "edge_kv"),
        )

    @property
    def raw_host(self) -> str:
        return self.raw_base.split("://", 1)[-1].split("/", 1)[0].lower()

    @property
    def api_host(self) -> str:
        return self.api_base.split("://", 1)[-1].split("/", 1)[0].lower()
