"""HTTP front door for GitHub webhook deliveries and forwarded sheet edits.

Requests are served one at a time by a plain :class:`http.server.HTTPServer`,
so sync operations never overlap within one process.

Routes::

    GET  /healthz          liveness probe
    POST /github/webhook   GitHub ``issues`` / ``issue_comment`` deliveries
    POST /sheet-edit       {"sheet": ..., "column": ..., "row": ...} from the sheet
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, Optional, Tuple, Type

from issuesheet.dispatcher import EventDispatcher, MalformedInput, decode_payload

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/github/webhook"
SHEET_EDIT_PATH = "/sheet-edit"
HEALTH_PATH = "/healthz"
SIGNATURE_HEADER = "X-Hub-Signature-256"
MAX_BODY_BYTES = 5 * 1024 * 1024
REQUEST_TIMEOUT = 30.0


def sign_body(secret: str, body: bytes) -> str:
    """Return the ``sha256=`` signature GitHub sends for ``body``."""

    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str, body: bytes, signature_header: str) -> bool:
    if not secret or not signature_header.startswith("sha256="):
        return False
    return hmac.compare_digest(sign_body(secret, body), signature_header)


def _parse_sheet_edit(payload: Dict[str, Any]) -> Tuple[str, int, int]:
    sheet = payload.get("sheet")
    column = payload.get("column")
    row = payload.get("row")
    if not isinstance(sheet, str):
        raise MalformedInput("Sheet edit has no sheet name.")
    for name, value in (("column", column), ("row", row)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise MalformedInput(f"Sheet edit has an invalid {name}: {value!r}")
    return sheet, column, row


def make_handler(
    dispatcher: EventDispatcher,
    secret: str,
    *,
    timeout: float = REQUEST_TIMEOUT,
) -> Type[BaseHTTPRequestHandler]:
    """Return a request handler class bound to ``dispatcher``.

    Requests are served one at a time, so every socket read is bounded by
    ``timeout`` seconds; a client that stalls is dropped.
    """

    read_timeout = timeout

    class Handler(BaseHTTPRequestHandler):
        server_version = "issuesheet"
        timeout = read_timeout

        def log_message(self, fmt: str, *args: Any) -> None:
            logger.info("http %s - %s", self.address_string(), fmt % args)

        def _respond(self, code: HTTPStatus, payload: Dict[str, Any]) -> None:
            data = json.dumps(payload).encode("utf-8")
            self.send_response(code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def _read_body(self) -> Optional[bytes]:
            try:
                length = int(self.headers.get("Content-Length", "0"))
            except ValueError:
                length = -1
            if length < 0 or length > MAX_BODY_BYTES:
                self._respond(HTTPStatus.BAD_REQUEST, {"ok": False, "error": "bad content length"})
                return None
            try:
                body = self.rfile.read(length)
            except OSError as exc:
                logger.warning("Dropped %s from %s: %s", self.path, self.address_string(), exc)
                self.close_connection = True
                return None
            if len(body) < length:
                self._respond(HTTPStatus.BAD_REQUEST, {"ok": False, "error": "truncated body"})
                return None
            if secret and not verify_signature(secret, body, self.headers.get(SIGNATURE_HEADER, "")):
                logger.warning("Rejected %s with a missing or bad signature", self.path)
                self._respond(HTTPStatus.UNAUTHORIZED, {"ok": False, "error": "bad signature"})
                return None
            return body

        def do_GET(self) -> None:  # noqa: N802
            if self.path == HEALTH_PATH:
                self._respond(HTTPStatus.OK, {"ok": True})
                return
            self._respond(HTTPStatus.NOT_FOUND, {"ok": False, "error": "not found"})

        def do_POST(self) -> None:  # noqa: N802
            if self.path not in (WEBHOOK_PATH, SHEET_EDIT_PATH):
                self._respond(HTTPStatus.NOT_FOUND, {"ok": False, "error": "not found"})
                return

            body = self._read_body()
            if body is None:
                return

            try:
                if self.path == WEBHOOK_PATH:
                    if self.headers.get("X-GitHub-Event", "") == "ping":
                        self._respond(HTTPStatus.OK, {"ok": True, "pong": True})
                        return
                    handled = dispatcher.handle_webhook(body)
                else:
                    sheet, column, row = _parse_sheet_edit(dict(decode_payload(body)))
                    handled = dispatcher.handle_sheet_edit(sheet, column, row)
            except MalformedInput as exc:
                self._respond(HTTPStatus.BAD_REQUEST, {"ok": False, "error": str(exc)})
                return
            except Exception as exc:
                logger.exception("Handling %s failed", self.path)
                self._respond(HTTPStatus.INTERNAL_SERVER_ERROR, {"ok": False, "error": str(exc)})
                return

            if handled is None:
                self._respond(HTTPStatus.OK, {"ok": True, "ignored": True})
            else:
                self._respond(HTTPStatus.OK, {"ok": True, "handled": handled})

    return Handler


def create_server(
    dispatcher: EventDispatcher,
    host: str,
    port: int,
    *,
    secret: str = "",
    timeout: float = REQUEST_TIMEOUT,
) -> HTTPServer:
    if not secret:
        logger.warning("No webhook secret configured; requests are accepted unsigned")
    return HTTPServer((host, port), make_handler(dispatcher, secret, timeout=timeout))


def serve(dispatcher: EventDispatcher, host: str, port: int, *, secret: str = "") -> None:
    server = create_server(dispatcher, host, port, secret=secret)
    logger.info("Listening on http://%s:%d", host, server.server_address[1])
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        server.server_close()


__all__ = [
    "HEALTH_PATH",
    "REQUEST_TIMEOUT",
    "SHEET_EDIT_PATH",
    "WEBHOOK_PATH",
    "create_server",
    "make_handler",
    "serve",
    "sign_body",
    "verify_signature",
]
