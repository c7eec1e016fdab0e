"""Development server for Kiln.

Serves the build output with live reload and sane defaults for local authoring:
- Injects a reload script into HTML responses.
- Rejects directory listings and missing paths with a 404 (serving 404.html when present).
- Pushes ``reload`` or ``css`` messages to connected websocket clients when
  build output changes.

Key classes:
- DevServer: HTTP server plus live-reload websocket server.
- _ReloadHandler: HTTP request handler that injects reload script and enforces 404s.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import socket
import threading
from collections.abc import Sequence
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import websockets

from .config import BuildConfig
from .html_utils import inject_script, make_reload_script
from .utils import relative_posix

logger = logging.getLogger(__name__)

_STYLESHEET_SUFFIXES = (".css", ".css.map")


class _ReloadHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that injects live reload script into HTML pages.

    Attributes:
        reload_script: JavaScript code for WebSocket connection to trigger reloads.
    """

    reload_script = make_reload_script(35729)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def log_message(self, format, *args):
        logger.debug("HTTP %s", format % args)

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        # Never expose directory listings; treat as missing content.
        return self._serve_404()

    def _serve_404(self):
        """Serve 404.html (when present) with injected reload script and a 404 status."""
        error_page = Path(self.directory) / "404.html"
        if error_page.exists():
            self._send_html(error_page, 404)
            return None
        self.send_error(404, "File not found")
        return None

    def _send_html(self, page: Path, status: int) -> None:
        content = inject_script(page.read_text(encoding="utf-8"), self.reload_script)
        encoded = content.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)

    def send_head(self):
        path_obj = Path(self.translate_path(self.path))
        if path_obj.is_dir():
            index_path = path_obj / "index.html"
            if not index_path.exists():
                return self._serve_404()
            path_obj = index_path
        elif not path_obj.exists():
            return self._serve_404()

        if path_obj.suffix == ".html":
            self._send_html(path_obj, 200)
            return None
        return super().send_head()


class DevServer:
    """Development server with live reload functionality.

    Attributes:
        config: Build configuration.
        output_dir: Directory where the built site is served from.
        http_port: Port for the HTTP server.
        ws_port: Port for live-reload WebSocket connections.
    """

    def __init__(
        self,
        config: BuildConfig,
        http_port: int | None = None,
        ws_port: int | None = None,
    ):
        """Initialize the development server.

        Args:
            config: Build configuration.
            http_port: Optional override for the HTTP port.
            ws_port: Optional override for the WebSocket port.
        """
        self.config = config
        self.output_dir = config.build_dir
        self.http_port = int(http_port or config.port)
        self.ws_port = int(ws_port or config.ws_port)
        self._reload_script = make_reload_script(self.ws_port)
        self._ws_clients: set = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._ws_server = None
        self._httpd: ThreadingHTTPServer | None = None

    async def start(self) -> None:  # pragma: no cover - integration path
        """Start the HTTP and WebSocket servers and return."""
        self._loop = asyncio.get_running_loop()
        self._httpd = self._make_httpd()
        threading.Thread(target=self._httpd.serve_forever, daemon=True).start()
        self._ws_server = await websockets.serve(
            self._ws_handler, self.config.host or "0.0.0.0", self.ws_port
        )
        logger.info(
            "Local webserver listening on: %s (http://%s:%s)",
            self.http_port,
            socket.gethostname().lower(),
            self.http_port,
        )

    async def stop(self) -> None:
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None
        if self._ws_server is not None:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None

    def _make_httpd(self) -> ThreadingHTTPServer:
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script},
        )
        handler = functools.partial(handler_cls, directory=str(self.output_dir))
        return ThreadingHTTPServer((self.config.host, self.http_port), handler)

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def messages_for(self, paths: Sequence[Path]) -> list[str]:
        """Live-reload messages announcing ``paths``.

        Stylesheet-only changes produce one ``css`` message per stylesheet;
        anything else produces a single ``reload`` message.
        """
        urls = []
        for path in paths:
            rel = relative_posix(path, self.output_dir)
            urls.append("/" + rel if rel is not None else str(path))
        if urls and all(url.endswith(_STYLESHEET_SUFFIXES) for url in urls):
            stylesheets = [url for url in urls if url.endswith(".css")]
            return [json.dumps({"type": "css", "path": url}) for url in stylesheets]
        return [json.dumps({"type": "reload", "path": urls[0] if urls else "/"})]

    def notify(self, paths: Sequence[Path]) -> None:
        """Push reload messages for changed build output. Does not block."""
        for message in self.messages_for(paths):
            self._broadcast(message)

    def _broadcast(self, message: str) -> None:
        if self._loop is None or not self._ws_clients:
            return
        asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str):
        stale = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send(message)
            except Exception:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)
        logger.debug("Live reload: sent %s to %d clients", message, len(self._ws_clients))
