from __future__ import annotations

import base64
import json
import logging

import requests
from flask import Response
from werkzeug.datastructures import Headers

from server.coherence import FetchTarget
from server.store import to_iso8601_z, utcnow

logger = logging.getLogger(__name__)

NO_STORE = "no-store, no-cache, must-revalidate, max-age=0"

TEXT_MARKERS = ("json", "javascript", "xml", "html", "svg", "yaml", "css")

# Caching directives from upstream would add a second layer of staleness
DROPPED_HEADERS = {
    "cache-control",
    "expires",
    "pragma",
    "age",
    "etag",
    "last-modified",
    "surrogate-control",
    "vary",
    # requests has already decoded and buffered the body
    "content-encoding",
    "content-length",
    "transfer-encoding",
    "connection",
    "keep-alive",
    "set-cookie",
}


def is_text_content_type(content_type: str | None) -> bool:
    if not content_type:
        return False
    ct = content_type.lower()
    if ct.startswith("text/"):
        return True
    return any(marker in ct for marker in TEXT_MARKERS)


def encode_content(body: bytes, content_type: str | None) -> tuple[str, bool]:
    """Return ``(content, is_base64)`` for the meta envelope.

    Textual types are decoded as UTF-8; anything else, or text that fails to
    decode, is base64-encoded.
    """
    if is_text_content_type(content_type):
        try:
            return body.decode("utf-8"), False
        except UnicodeDecodeError as e:
            logger.warning(f"Text decode failed for {content_type}, returning base64: {e}")
    return base64.b64encode(body).decode("ascii"), True


def upstream_error(resp: requests.Response) -> Response:
    try:
        text = resp.text
    except Exception:
        text = ""
    return Response(
        text or "Unable to fetch file",
        status=resp.status_code,
        headers={"Cache-Control": NO_STORE},
    )


def raw_response(resp: requests.Response, target: FetchTarget) -> Response:
    headers = Headers(
        [(k, v) for k, v in resp.headers.items() if k.lower() not in DROPPED_HEADERS]
    )
    if "Content-Type" not in headers:
        headers["Content-Type"] = "application/octet-stream"
    headers["Cache-Control"] = NO_STORE
    headers["Pragma"] = "no-cache"
    headers["Expires"] = "0"
    headers["X-Fetched-By"] = target.strategy
    headers["X-Used-URL"] = target.url
    headers["X-Origin-Cache"] = (
        resp.headers.get("cf-cache-status") or resp.headers.get("x-cache") or "none"
    )
    # Name used by earlier deployments of this proxy
    headers["X-Origin-CF-Cache"] = resp.headers.get("cf-cache-status") or "none"
    headers["X-Origin-Age"] = resp.headers.get("age") or "0"
    return Response(resp.content, status=resp.status_code, headers=headers)


def meta_envelope(resp: requests.Response, sha: str | None) -> dict:
    content_type = resp.headers.get("Content-Type") or "application/octet-stream"
    content, is_base64 = encode_content(resp.content, content_type)
    return {
        "sha": sha or None,
        "fetched_at": to_iso8601_z(utcnow()),
        "content": content,
        "content_is_base64": is_base64,
        "content_type": content_type,
        "status": resp.status_code,
    }


def meta_response(resp: requests.Response, sha: str | None) -> Response:
    body = json.dumps(meta_envelope(resp, sha), ensure_ascii=False)
    return Response(
        body.encode("utf-8"),
        status=200,
        headers={
            "Content-Type": "application/json; charset=utf-8",
            "Cache-Control": NO_STORE,
        },
    )
