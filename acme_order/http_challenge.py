"""
HTTP-01 challenge publishers.

Two modes:
  1. Standalone — spins up a minimal HTTP server on a configurable port
     (default 80) that serves every pending token at once.  Requires the
     process to be able to bind that port (authbind, root, or
     CAP_NET_BIND_SERVICE).
  2. Webroot — writes the token files into an existing web-server root so
     an already-running nginx/apache can serve them.

Both take the HttpChallengeData descriptors produced by
Order.get_pending_authorizations(ChallengeType.HTTP_01).
"""
from __future__ import annotations

import logging
import os
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from acme_order.order import HttpChallengeData

logger = logging.getLogger(__name__)

CHALLENGE_PREFIX = "/.well-known/acme-challenge/"


# ─── Standalone mode ──────────────────────────────────────────────────────────


class _ChallengeHandler(BaseHTTPRequestHandler):
    """Serves only ACME HTTP-01 challenge paths; 404 for everything else."""

    def do_GET(self) -> None:
        tokens: Dict[str, str] = self.server.tokens  # type: ignore[attr-defined]
        token = self.path[len(CHALLENGE_PREFIX):] if self.path.startswith(CHALLENGE_PREFIX) else None
        content = tokens.get(token) if token else None
        if content is None:
            self.send_response(404)
            self.end_headers()
            return
        body = content.encode()
        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, fmt: str, *args: object) -> None:
        logger.debug("challenge server: " + fmt, *args)


class StandalonePublisher:
    """
    Background HTTP server serving a token -> key-authorization map.

    Usage:
        with StandalonePublisher(port=80) as pub:
            pub.publish(order.get_pending_authorizations("http-01"))
            # ... verify ...
    """

    def __init__(self, port: int = 80, host: str = "0.0.0.0") -> None:
        self.port = port
        self.host = host
        self._tokens: Dict[str, str] = {}
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def tokens(self) -> Dict[str, str]:
        return dict(self._tokens)

    def publish(self, challenges: Iterable[HttpChallengeData]) -> None:
        for challenge in challenges:
            self._tokens[challenge.filename] = challenge.content
            logger.info("Serving HTTP-01 token for %s", challenge.identifier)
        if self._server is None:
            self.start()

    def start(self) -> None:
        """Start the HTTP server in a background thread."""
        if self._server is not None:
            raise RuntimeError("Challenge server is already running")
        server = ThreadingHTTPServer((self.host, self.port), _ChallengeHandler)
        server.tokens = self._tokens  # type: ignore[attr-defined]
        self._server = server
        self._thread = threading.Thread(target=server.serve_forever, daemon=True)
        self._thread.start()
        logger.info("HTTP-01 challenge server listening on %s:%d", self.host, server.server_port)

    @property
    def server_port(self) -> Optional[int]:
        return self._server.server_port if self._server else None

    def cleanup(self) -> None:
        """Forget every token and shut the server down."""
        self._tokens.clear()
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    def __enter__(self) -> "StandalonePublisher":
        return self

    def __exit__(self, *_: object) -> None:
        self.cleanup()


# ─── Webroot mode ─────────────────────────────────────────────────────────────


class WebrootPublisher:
    """
    Writes each key-authorization to
      <webroot_path>/.well-known/acme-challenge/<token>
    and removes the files again on cleanup().
    """

    def __init__(self, webroot_path: str | Path) -> None:
        self.challenge_dir = Path(webroot_path) / ".well-known" / "acme-challenge"
        self._written: List[Path] = []

    def publish(self, challenges: Iterable[HttpChallengeData]) -> List[Path]:
        self.challenge_dir.mkdir(parents=True, exist_ok=True)
        paths = []
        for challenge in challenges:
            token_path = self.challenge_dir / challenge.filename
            token_path.write_text(challenge.content, encoding="utf-8")
            self._written.append(token_path)
            paths.append(token_path)
            logger.info("Wrote HTTP-01 token for %s to %s", challenge.identifier, token_path)
        return paths

    def cleanup(self) -> None:
        for token_path in self._written:
            try:
                os.remove(token_path)
            except FileNotFoundError:
                pass
        self._written.clear()
