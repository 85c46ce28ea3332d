"""Transient local HTTP listener that captures the OAuth2 redirect.

Provides:

- ``create_callback_app(on_callback)`` -- a FastAPI app with a single
  ``GET /oauth/callback`` route that hands the ``code`` / ``error`` /
  ``state`` query parameters to ``on_callback`` and answers the browser with
  a minimal success or failure page.
- ``LocalCallbackServer`` -- serves that app with uvicorn on
  ``localhost:3000`` for the lifetime of one authorization attempt.
"""

from __future__ import annotations

import asyncio
import errno
import html
import socket
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, ConfigDict

from mailbridge.config import OAUTH_CALLBACK_HOST, OAUTH_CALLBACK_PATH, OAUTH_CALLBACK_PORT
from mailbridge.errors import AuthorizationError

logger = structlog.get_logger()

_PAGE_STYLE = "font-family: Arial, sans-serif; text-align: center; margin-top: 50px;"

SUCCESS_PAGE = f"""<html>
  <body style="{_PAGE_STYLE}">
    <h1>Authentication Successful!</h1>
    <p>You can now close this browser tab and return to the terminal.</p>
  </body>
</html>
"""


def failure_page(message: str) -> str:
    """Render the failure page for ``message`` (HTML-escaped)."""
    return f"""<html>
  <body style="{_PAGE_STYLE}">
    <h1 style="color: #f44336;">Authentication Failed</h1>
    <p>Error: {html.escape(message)}</p>
    <p>Please close this tab and try again.</p>
  </body>
</html>
"""


class CallbackParams(BaseModel):
    """Query parameters delivered to the redirect URI."""

    model_config = ConfigDict(frozen=True)

    code: str | None = None
    error: str | None = None
    state: str | None = None


CallbackHandler = Callable[[CallbackParams], Awaitable[None]]


def create_callback_app(on_callback: CallbackHandler) -> FastAPI:
    """Build the callback app.

    ``on_callback`` completes the authorization attempt.  It returns normally
    on success and raises ``AuthorizationError`` on failure; either way the
    browser receives a human-readable page.

    Args:
        on_callback: Coroutine function receiving the parsed query parameters.

    Returns:
        A FastAPI application exposing ``GET /oauth/callback``.
    """
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get(OAUTH_CALLBACK_PATH, response_class=HTMLResponse)
    async def oauth_callback(
        code: str | None = None,
        error: str | None = None,
        state: str | None = None,
    ) -> HTMLResponse:
        params = CallbackParams(code=code, error=error, state=state)
        try:
            await on_callback(params)
        except AuthorizationError as exc:
            logger.warning("oauth_callback_failed", error=str(exc))
            return HTMLResponse(failure_page(str(exc)), status_code=400)
        logger.info("oauth_callback_succeeded")
        return HTMLResponse(SUCCESS_PAGE, status_code=200)

    return app


class CallbackListener(Protocol):
    """Something that can serve the callback app for one attempt."""

    async def start(self, on_callback: CallbackHandler) -> None: ...

    async def stop(self) -> None: ...


def bind_listening_sockets(host: str, port: int) -> list[socket.socket]:
    """Bind a TCP socket on every address ``host`` resolves to.

    Addresses the machine cannot bind (an IPv6 ``localhost`` on an IPv4-only
    host) are skipped.

    Raises:
        OSError: If an address is already in use, or nothing could be bound.
    """
    sockets: list[socket.socket] = []
    seen: set[tuple[int, Any]] = set()
    unavailable: OSError | None = None
    try:
        for family, kind, proto, _, address in socket.getaddrinfo(
            host, port, type=socket.SOCK_STREAM
        ):
            if (family, address) in seen:
                continue
            seen.add((family, address))
            sock = socket.socket(family, kind, proto)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if family == socket.AF_INET6:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
            try:
                sock.bind(address)
            except OSError as exc:
                sock.close()
                if exc.errno in (errno.EADDRNOTAVAIL, errno.EAFNOSUPPORT):
                    unavailable = exc
                    continue
                raise
            sockets.append(sock)
    except OSError:
        for sock in sockets:
            sock.close()
        raise
    if not sockets:
        raise unavailable or OSError(f"{host} did not resolve to any address")
    return sockets


class LocalCallbackServer:
    """uvicorn-backed listener bound to the redirect URI's host and port.

    Every address the host resolves to is bound, so ``localhost`` works
    whether the browser tries ``::1`` or ``127.0.0.1`` first.  Sockets are
    bound eagerly in ``start`` so a port conflict surfaces as an
    ``AuthorizationError`` in the caller instead of inside the server task.
    """

    def __init__(self, host: str = OAUTH_CALLBACK_HOST, port: int = OAUTH_CALLBACK_PORT) -> None:
        self._host = host
        self._port = port
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, on_callback: CallbackHandler) -> None:
        if self.running:
            raise AuthorizationError("Callback listener is already running")

        try:
            sockets = bind_listening_sockets(self._host, self._port)
        except OSError as exc:
            raise AuthorizationError(
                f"Cannot listen for the OAuth callback on {self._host}:{self._port}: {exc}"
            ) from exc

        config = uvicorn.Config(
            create_callback_app(on_callback),
            log_level="warning",
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve(sockets=sockets))
        logger.info(
            "oauth_callback_listener_started",
            url=f"http://localhost:{self._port}{OAUTH_CALLBACK_PATH}",
        )

    async def stop(self) -> None:
        if self._server is None or self._task is None:
            return
        self._server.should_exit = True
        try:
            await self._task
        except Exception:
            logger.warning("oauth_callback_listener_stop_failed", exc_info=True)
        finally:
            self._server = None
            self._task = None
            logger.info("oauth_callback_listener_stopped")
