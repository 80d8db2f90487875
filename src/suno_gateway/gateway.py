#!/usr/bin/env python3
"""
Authenticated access to the Suno studio API

A GatewaySession ties one Clerk session (SessionManager) to its captcha resolver and makes
product API calls with everything the API validates: bearer token, session cookies, the
device-id and a fresh browser-token anti-replay header on every request.

SessionRegistry hands out GatewaySessions keyed by (cookie, proxy) so that callers using
the same account through the same proxy share one session and one token refresh cycle.
"""

from __future__ import annotations

import base64
import json
import threading
import time
from concurrent.futures import Future
from typing import Any, Dict, Optional, Tuple

from .challenge import SUNO_API_BASE, CapturedToken, ChallengeResolver
from .configuration import GatewayConfig, ProxyConfig
from .logging_utils import get_logger
from .session import SessionManager
from .solver import TwoCaptchaSolver
from .transport import HttpResponse, Transport

# Public API - functions and classes that external scripts should use
__all__ = [
    'browser_token',
    'GatewaySession',
    'SessionRegistry'
]

logger = get_logger(__name__)


def browser_token(now_ms: Optional[int] = None) -> str:
    """ Timestamp token the web client sends with each API request, {"token": base64url({"timestamp": ms})} """
    timestamp_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    timestamp_payload = json.dumps({"timestamp": timestamp_ms})
    browser_token_jwt = base64.urlsafe_b64encode(timestamp_payload.encode()).decode().rstrip('=')
    return json.dumps({"token": browser_token_jwt})


class GatewaySession:
    """ One authenticated Suno session and its captcha resolver """

    def __init__(self, session: SessionManager, resolver: ChallengeResolver):
        self.session = session
        self.resolver = resolver

    @property
    def transport(self) -> Transport:
        return self.session.transport

    def call(self, path: str, method: str = "GET", body: Any = None, **kwargs: Any) -> HttpResponse:
        """ Call a studio API path with a fresh token, retrying through anti-bot challenges """
        self.session.keep_alive()
        headers = {"browser-token": browser_token()}
        headers.update(kwargs.pop("headers", None) or {})

        response = self.transport.request_with_retry(
            f"{SUNO_API_BASE}{path}",
            method=method,
            body=body,
            headers=headers,
            cookies=self.session.cookies,
            token=self.session.token,
            device_id=self.session.device_id,
            proxy=self.session.proxy,
            **kwargs
        )
        self.session.update_cookies(response.cookies)
        return response

    def solve_captcha(self) -> Optional[CapturedToken]:
        """ Solve the generation captcha when the API asks for one """
        return self.resolver.solve()


class SessionRegistry:
    """
    Explicit registry of live sessions keyed by cookie and proxy

    Each key maps to a Future. The first caller for a key bootstraps the session outside the
    registry lock while later callers for that key wait on the same Future, so hits for other
    keys never wait behind a Clerk round-trip.
    """

    def __init__(self, config: GatewayConfig, transport: Transport, solver: Optional[TwoCaptchaSolver] = None):
        self.config = config
        self.transport = transport
        self.solver = solver or TwoCaptchaSolver.from_config(config.solver)
        self._sessions: Dict[Tuple[str, str], Future] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(cookie: str, proxy: Optional[ProxyConfig]) -> Tuple[str, str]:
        return cookie, proxy.url if proxy else ""

    def get(self, cookie: str, proxy: Optional[ProxyConfig] = None) -> GatewaySession:
        """ Return the session for this cookie and proxy, bootstrapping it on first use """
        key = self._key(cookie, proxy)
        with self._lock:
            pending = self._sessions.get(key)
            owner = pending is None
            if owner:
                pending = Future()
                self._sessions[key] = pending

        if owner:
            try:
                gateway_session = self._create(cookie, proxy)
            except BaseException as error:
                with self._lock:
                    if self._sessions.get(key) is pending:
                        del self._sessions[key]
                pending.set_exception(error)
                raise
            pending.set_result(gateway_session)
            logger.info("Registered session %s (%s active)", gateway_session.session.session_id, len(self))

        return pending.result()

    def _create(self, cookie: str, proxy: Optional[ProxyConfig]) -> GatewaySession:
        session = SessionManager(self.transport, proxy=proxy or self.config.proxy)
        session.bootstrap(cookie)
        session.refresh()
        resolver = ChallengeResolver(self.transport, session, self.solver, config=self.config.browser)
        return GatewaySession(session, resolver)

    def evict(self, cookie: str, proxy: Optional[ProxyConfig] = None) -> bool:
        """ Forget a session; True if one was registered or being bootstrapped """
        with self._lock:
            removed = self._sessions.pop(self._key(cookie, proxy), None)
        if removed is not None and removed.done() and removed.exception() is None:
            logger.info("Evicted session %s", removed.result().session.session_id)
        return removed is not None

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
