from __future__ import annotations

from flask import Flask, request, Response
import requests
from werkzeug.exceptions import HTTPException
import logging
import os

from server.coherence import (
    STRATEGY_PASSTHROUGH,
    FetchTarget,
    FetchTargetSelector,
    ReferenceResolver,
)
from server.config import ProxyConfig
from server.github import GitHubClient
from server.paths import Passthrough, ProxyError, resolve_path
from server.responder import NO_STORE, meta_response, raw_response, upstream_error
from server.store import KeyValueStore, create_store

logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

PROXY_HOST = os.environ.get("PROXY_HOST", "127.0.0.1")
PROXY_PORT = int(os.environ.get("PROXY_PORT", "8080"))


def create_app(
    config: ProxyConfig | None = None,
    store: KeyValueStore | None = None,
    client: GitHubClient | None = None,
) -> Flask:
    config = config or ProxyConfig.from_env()
    store = store if store is not None else create_store(config)
    client = client or GitHubClient(config)
    resolver = ReferenceResolver(store, client, config)
    selector = FetchTargetSelector(store, client, config)

    if not config.github_token:
        logger.info("GH_TOKEN not set; serving public repositories unauthenticated")

    app = Flask(__name__, static_folder=None)
    # Full-URL paths such as /https://raw... must reach the handler intact
    app.url_map.merge_slashes = False
    app.extensions["fresh_raw"] = {
        "config": config,
        "store": store,
        "client": client,
    }

    @app.route("/")
    def root():
        return Response("Proxy running", status=200, headers={"Cache-Control": NO_STORE})

    @app.route("/<path:path>")
    def fetch_file(path: str):
        want_meta = request.args.get("meta") == "1"

        try:
            result = resolve_path(path, config)
        except ProxyError as e:
            return Response(str(e), status=e.status)

        if isinstance(result, Passthrough):
            # Unknown hosts are fetched verbatim, no SHA and no coherence record
            sha = None
            target = FetchTarget(result.url, STRATEGY_PASSTHROUGH)
        else:
            coord = result.coordinate
            sha = resolver.resolve(coord.owner, coord.name, coord.ref)
            if not sha:
                logger.warning(
                    f"No SHA for {coord.owner}/{coord.name}@{coord.ref}, using branch URL"
                )
            target = selector.select(coord, sha)

        try:
            resp = client.fetch(target.url)
        except requests.RequestException as e:
            logger.error(f"Upstream fetch error for {target.url}: {e}")
            return Response(f"Upstream fetch error: {e}", status=502)

        if not resp.ok:
            logger.info(f"Upstream {resp.status_code} for {target.url}")
            return upstream_error(resp)

        if want_meta:
            return meta_response(resp, sha)
        return raw_response(resp, target)

    @app.errorhandler(Exception)
    def internal_error(error):
        # Let Flask render its own HTTP errors (404, 405, ...)
        if isinstance(error, HTTPException):
            return error
        logger.exception(f"Internal proxy error: {error}")
        return Response(f"Internal proxy error: {error}", status=500)

    return app


def main():
    app = create_app()
    logger.info(f"Starting fresh-raw proxy on {PROXY_HOST}:{PROXY_PORT}")
    app.run(host=PROXY_HOST, port=PROXY_PORT, debug=False)


if __name__ == "__main__":
    main()
