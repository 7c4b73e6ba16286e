"""
Log Context - Korrelations-IDs fuer Zyklen und HTTP-Requests.

Jeder Scheduler-Zyklus bekommt eine Cycle-ID, jeder HTTP-Request eine
Request-ID. Beide landen ueber eine ContextVar in allen Log-Eintraegen,
auch in denen der parallel laufenden Sub-Tasks eines Zyklus.
"""

import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

# ContextVar fuer die Korrelations-ID (asyncio-kompatibel)
_correlation_var: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    return _correlation_var.get()


@contextmanager
def cycle_scope(cycle_id: Optional[str] = None) -> Iterator[str]:
    """Setzt eine Cycle-ID fuer alle Logs innerhalb des Blocks."""
    cid = f"cycle-{cycle_id or uuid.uuid4().hex[:8]}"
    token = _correlation_var.set(cid)
    try:
        yield cid
    finally:
        _correlation_var.reset(token)


class RequestContextMiddleware:
    """ASGI Middleware: Request-ID aus x-request-id oder neu, auch als Response-Header."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        request_id = ""
        for key, value in scope.get("headers", []):
            if key == b"x-request-id":
                request_id = value.decode("utf-8", errors="replace")[:64]
                break
        if not request_id:
            request_id = uuid.uuid4().hex[:12]

        token = _correlation_var.set(f"req-{request_id}")

        async def send_with_request_id(message):
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode()))
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            _correlation_var.reset(token)


class StructuredFormatter(logging.Formatter):
    """Formatter mit Korrelations-ID.

    Output:
        12:34:56 [homeagent.scheduler] INFO: [cycle-1a2b3c4d] Zyklus beendet
    """

    def format(self, record: logging.LogRecord) -> str:
        cid = _correlation_var.get()
        record.correlation_id = f"[{cid}] " if cid else ""
        return super().format(record)


def setup_structured_logging(level: str = "INFO") -> None:
    """Konfiguriert Structured Logging fuer die gesamte Anwendung."""
    fmt = "%(asctime)s [%(name)s] %(levelname)s: %(correlation_id)s%(message)s"
    formatter = StructuredFormatter(fmt=fmt, datefmt="%H:%M:%S")

    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    for handler in root.handlers:
        handler.setFormatter(formatter)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        root.addHandler(handler)
