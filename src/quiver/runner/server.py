"""
quiver.runner.server - Callback server for inline programs.

When the program is an in-process callable, the engine cannot run it
directly. Before the engine starts, a ProgramServer listens on a local
port; the engine receives the address via `--client host:port` and
calls back:

    POST /run      {"project", "stack", "config", "dryRun"}
      200          {"outputs": {...}, "warnings": [...]}
      500          {"error": "<traceback>"}
    GET  /health   {"ok": true}

The server lives exactly as long as the `with` block that owns it.
"""

from __future__ import annotations

import json
import threading
import traceback
import uuid
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from loguru import logger

from quiver.config import parse_config_json
from quiver.program import (
    ContextRegistry,
    Program,
    ProgramConfig,
    RunContext,
    run_program,
)


class _ProgramHandler(BaseHTTPRequestHandler):
    server: _ProgramHTTPServer

    def log_message(self, format: str, *args: Any) -> None:
        logger.trace("program server: {}", format % args)

    def _reply(self, status: int, body: dict[str, Any]) -> None:
        data = json.dumps(body).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def do_GET(self) -> None:
        if self.path == "/health":
            self._reply(200, {"ok": True})
        else:
            self._reply(404, {"error": f"unknown path {self.path}"})

    def do_POST(self) -> None:
        if self.path != "/run":
            self._reply(404, {"error": f"unknown path {self.path}"})
            return
        length = int(self.headers.get("Content-Length", 0))
        try:
            request = json.loads(self.rfile.read(length) or b"{}")
        except ValueError as e:
            self._reply(400, {"error": f"invalid request body: {e}"})
            return
        self._reply(*self.server.owner.handle_run(request))


class _ProgramHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    owner: ProgramServer


class ProgramServer:
    """Local listener that runs an inline program on the engine's behalf."""

    def __init__(
        self,
        program: Program,
        project: str,
        stack: str,
        registry: ContextRegistry | None = None,
        host: str = "127.0.0.1",
    ):
        self.program = program
        self.project = project
        self.stack = stack
        self.registry = registry
        self.host = host
        self.session_id = uuid.uuid4().hex
        self.error: BaseException | None = None
        self.error_text: str = ""
        self._httpd: _ProgramHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def address(self) -> str:
        if self._httpd is None:
            raise RuntimeError("program server is not running")
        host, port = self._httpd.server_address[:2]
        return f"{host}:{port}"

    def start(self) -> ProgramServer:
        self._httpd = _ProgramHTTPServer((self.host, 0), _ProgramHandler)
        self._httpd.owner = self
        self._thread = threading.Thread(
            target=self._httpd.serve_forever,
            name=f"quiver-program-{self.stack}",
            daemon=True,
        )
        self._thread.start()
        logger.debug("program server for {} listening on {}", self.stack, self.address)
        return self

    def stop(self) -> None:
        if self._httpd is None:
            return
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join()
        logger.debug("program server for {} stopped", self.stack)
        self._httpd = None
        self._thread = None

    def __enter__(self) -> ProgramServer:
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def handle_run(self, request: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        """Run the program for one engine request."""
        project = request.get("project") or self.project
        ctx = RunContext(
            project=project,
            stack=request.get("stack") or self.stack,
            config=ProgramConfig(project, parse_config_json(request.get("config", {}))),
            dry_run=bool(request.get("dryRun", False)),
            session_id=self.session_id,
        )
        try:
            return 200, run_program(self.program, ctx, self.registry)
        except Exception as e:
            text = "".join(traceback.format_exception(type(e), e, e.__traceback__))
            with self._lock:
                if self.error is None:
                    self.error = e
                    self.error_text = text
            logger.debug("inline program for {} failed: {}", self.stack, e)
            return 500, {"error": text}
