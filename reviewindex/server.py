"""HTTP server for reviewindex.

Runs the async ``Site`` behind the standard library's threaded HTTP server:
one background thread owns the asyncio event loop (and with it the shared
HTTP client and cache connection), and each request thread submits
``Site.handle`` to that loop and waits for the result.

Key classes:
- SiteServer: Owns the loop thread, the Site and the HTTP server.
- _SiteHandler: Request handler bridging to the event loop.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
from collections.abc import Awaitable, Callable, Mapping
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

import structlog

from . import __version__
from .app import Request, Response, Site, create_site

log = structlog.get_logger()

SiteFactory = Callable[[Mapping[str, Any]], Awaitable[Site]]


class _SiteHandler(BaseHTTPRequestHandler):
    """Translate HTTP requests into ``Site.handle`` calls on the event loop.

    Attributes:
        site: The application.
        loop: Event loop running in the server's background thread.
        request_timeout: Seconds to wait for a response before answering 504.
    """

    site: Site
    loop: asyncio.AbstractEventLoop
    request_timeout = 30.0
    server_version = f"reviewindex/{__version__}"

    def do_GET(self):
        self._dispatch(send_body=True)

    def do_HEAD(self):
        self._dispatch(send_body=False)

    def do_POST(self):
        self._dispatch(send_body=True)

    do_PUT = do_POST
    do_DELETE = do_POST
    do_PATCH = do_POST

    def _dispatch(self, send_body: bool) -> None:
        request = Request.from_target(self.path, self.command, dict(self.headers.items()))
        future = asyncio.run_coroutine_threadsafe(self.site.handle(request), self.loop)
        try:
            response = future.result(timeout=self.request_timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            log.error("request_timeout", path=request.path, timeout=self.request_timeout)
            response = Response(504, b"Gateway Timeout", {"Content-Type": "text/plain"})
        self._write(response, send_body)

    def _write(self, response: Response, send_body: bool) -> None:
        self.send_response(response.status)
        for name, value in response.headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        if send_body and response.body:
            self.wfile.write(response.body)

    def log_message(self, format, *args):
        log.info("http_request", client=self.client_address[0], line=format % args)


class SiteServer:
    """Serve a Site over HTTP.

    Attributes:
        config: Loaded configuration.
        host: Interface to bind.
        port: Port to bind (0 picks a free port; see ``address`` after open).
    """

    def __init__(
        self,
        config: Mapping[str, Any],
        host: str | None = None,
        port: int | None = None,
        site_factory: SiteFactory = create_site,
    ):
        self.config = config
        self.host = host or str(config.get("host", "127.0.0.1"))
        self.port = int(port if port is not None else config.get("port", 8000))
        self._site_factory = site_factory
        self._loop = asyncio.new_event_loop()
        self._loop_thread: threading.Thread | None = None
        self.site: Site | None = None
        self.httpd: ThreadingHTTPServer | None = None
        self._serving = False

    @property
    def address(self) -> tuple[str, int]:
        if self.httpd is None:
            return self.host, self.port
        host, port = self.httpd.server_address[:2]
        return str(host), int(port)

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def open(self) -> None:
        """Start the loop thread, build the Site and bind the socket."""
        self._loop_thread = threading.Thread(target=self._run_loop, daemon=True)
        self._loop_thread.start()
        self.site = asyncio.run_coroutine_threadsafe(
            self._site_factory(self.config), self._loop
        ).result()
        handler = type(
            "_BoundSiteHandler",
            (_SiteHandler,),
            {"site": self.site, "loop": self._loop},
        )
        self.httpd = ThreadingHTTPServer((self.host, self.port), handler)
        self.httpd.daemon_threads = True
        host, port = self.address
        log.info("server_started", url=f"http://{host}:{port}")

    def serve_forever(self) -> None:
        assert self.httpd is not None, "call open() first"
        self._serving = True
        try:
            self.httpd.serve_forever()
        finally:
            self._serving = False

    def close(self) -> None:
        """Stop serving and release the Site's resources."""
        if self.httpd is not None:
            if self._serving:
                self.httpd.shutdown()
            self.httpd.server_close()
            self.httpd = None
        if self.site is not None and self._loop.is_running():
            asyncio.run_coroutine_threadsafe(self.site.aclose(), self._loop).result()
            self.site = None
        if self._loop.is_running():
            self._loop.call_soon_threadsafe(self._loop.stop)
        if self._loop_thread is not None:
            self._loop_thread.join(timeout=5)
            self._loop_thread = None
        log.info("server_stopped")

    def start(self) -> None:  # pragma: no cover - integration path
        """Serve until interrupted."""
        self.open()
        server_thread = threading.Thread(target=self.serve_forever, daemon=True)
        server_thread.start()
        try:
            server_thread.join()
        except KeyboardInterrupt:
            pass
        finally:
            self.close()
