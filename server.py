"""JSON HTTP server for drive-time discovery.

Exposes search, isochrone, nearby and place-details endpoints over the
DiscoveryService. Each request runs on its own thread.
"""
from __future__ import annotations

import json
import logging
import sys
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional, Type
from urllib.parse import parse_qs, urlparse

from drivespots import config
from drivespots.http import MissingApiKeyError, UpstreamError
from drivespots.models import InvalidInputError
from drivespots.quota import RateLimitedError
from drivespots.service import DiscoveryService, build_service

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 64 * 1024


class DiscoveryHandler(BaseHTTPRequestHandler):
    service: DiscoveryService

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        params = _flat_query(parsed.query)
        if parsed.path == "/healthz":
            metrics = self.service.clients.metrics
            self._send_json({"ok": True, "requests": metrics.snapshot() if metrics else {}})
        elif parsed.path == "/api/search":
            self._dispatch(lambda: self.service.search(params, self._identity()))
        elif parsed.path == "/api/isochrone":
            self._dispatch(lambda: self.service.isochrone(params, self._identity()))
        elif parsed.path == "/api/places/details":
            self._dispatch(lambda: self.service.details(params.get("id"), self._identity()))
        else:
            self._send_json({"error": "not_found"}, 404)

    def do_POST(self) -> None:
        parsed = urlparse(self.path)
        if parsed.path != "/api/nearby":
            self._send_json({"error": "not_found"}, 404)
            return
        try:
            payload = self._read_json_body()
        except ValueError:
            self._send_json({"error": "invalid_json"}, 400)
            return
        self._dispatch(lambda: self.service.nearby(payload, self._identity()))

    def _dispatch(self, call) -> None:
        try:
            self._send_json(call())
        except InvalidInputError as exc:
            self._send_json({"error": str(exc)}, 400)
        except RateLimitedError as exc:
            self._send_json({"error": "rate_limited", "quota": exc.quota_class}, 429)
        except UpstreamError as exc:
            logger.error("Upstream failure on %s: %s", self.path, exc)
            self._send_json({"error": "upstream_error", "status": exc.status}, 502)
        except MissingApiKeyError as exc:
            logger.error("Server misconfigured: %s", exc)
            self._send_json({"error": "missing_api_key"}, 500)
        except Exception:
            logger.exception("Unhandled error on %s", self.path)
            self._send_json({"error": "upstream_failed"}, 502)

    def _identity(self) -> str:
        forwarded = (self.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
        return forwarded or "local"

    def _read_json_body(self) -> Dict[str, Any]:
        length = int(self.headers.get("Content-Length", 0) or 0)
        if length > MAX_BODY_BYTES:
            raise ValueError("body too large")
        raw = self.rfile.read(length)
        data = json.loads(raw) if raw else {}
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        return data

    def _send_json(self, data: Dict[str, Any], status: int = 200) -> None:
        body = json.dumps(data, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, fmt: str, *args: Any) -> None:
        if "/api/" in (args[0] if args else ""):
            logger.info("%s - %s", self.address_string(), fmt % args)


def _flat_query(query: str) -> Dict[str, str]:
    return {k: v[0] for k, v in parse_qs(query).items() if v}


def make_handler(service: DiscoveryService) -> Type[DiscoveryHandler]:
    return type("BoundDiscoveryHandler", (DiscoveryHandler,), {"service": service})


def make_server(
    port: int = config.DEFAULT_PORT,
    service: Optional[DiscoveryService] = None,
    host: str = "",
) -> ThreadingHTTPServer:
    return ThreadingHTTPServer((host, port), make_handler(service or build_service()))


def serve(port: int = config.DEFAULT_PORT, service: Optional[DiscoveryService] = None) -> int:
    server = make_server(port, service)
    logger.info("Discovery server running at http://localhost:%s", port)

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down.")
    server.server_close()
    return 0


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    port = int(sys.argv[1]) if len(sys.argv) > 1 else config.DEFAULT_PORT
    return serve(port)


if __name__ == "__main__":
    raise SystemExit(main())
