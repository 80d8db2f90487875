#!/usr/bin/env python3
"""
Clerk session lifecycle for Suno

Suno authenticates through Clerk. The long-lived credential is the __client cookie copied
from a logged-in browser; from it we ask Clerk for the active session id once, then mint
short-lived bearer JWTs for that session whenever the current one is about to expire.

The bearer token is replaced on every refresh, never modified in place. Its expiry is read
from the unverified 'exp' claim; if that claim cannot be decoded the token is still used but
treated as expired, so the next keep_alive() mints a new one.
"""

from __future__ import annotations

import base64
import json
import re
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, Final, Mapping, Optional

from .configuration import ProxyConfig
from .errors import AuthBootstrapError, GatewayError, TokenRefreshError
from .logging_utils import get_logger, mask_secret
from .transport import Transport

# Public API - functions and classes that external scripts should use
__all__ = [
    'CLERK_BASE_URL',
    'DEFAULT_CLERK_VERSION',
    'TokenInfo',
    'SessionState',
    'SessionManager',
    'parse_cookie_header',
    'decode_jwt_claims'
]

logger = get_logger(__name__)

CLERK_BASE_URL: Final[str] = "https://clerk.suno.com"
DEFAULT_CLERK_VERSION: Final[str] = "5.15.0"
SITE_URL: Final[str] = "https://suno.com/"

# Attribute names that show up when a Set-Cookie line is pasted instead of a Cookie header
_COOKIE_ATTRIBUTES: Final[frozenset] = frozenset({
    "expires", "max-age", "domain", "path", "secure", "httponly", "samesite", "partitioned",
})
_CLERK_VERSION_PATTERN: Final[re.Pattern] = re.compile(r"clerk-js@(\d+\.\d+\.\d+)")


@dataclass(frozen=True)
class TokenInfo:
    """ Bearer token with its decoded expiry in epoch milliseconds """
    jwt: str
    expires_at: int


@dataclass
class SessionState:
    """ Mutable per-session state owned by SessionManager """
    cookies: Dict[str, str] = field(default_factory=dict)
    device_id: str = ""
    session_id: Optional[str] = None
    current_token: Optional[str] = None
    token_info: Optional[TokenInfo] = None


def parse_cookie_header(cookie_string: str) -> Dict[str, str]:
    """ Parse 'a=1; b=2' into a mapping, ignoring bare flags and cookie attributes """
    cookies: Dict[str, str] = {}
    for part in cookie_string.split(";"):
        part = part.strip()
        if "=" not in part:
            continue
        name, value = part.split("=", 1)
        name = name.strip()
        if name and name.lower() not in _COOKIE_ATTRIBUTES:
            cookies[name] = value.strip()
    return cookies


def decode_jwt_claims(token: str) -> Dict[str, Any]:
    """ Decode the payload segment of a JWT without verifying the signature """
    parts = token.split(".")
    if len(parts) < 2:
        raise ValueError(f"JWT does not have enough parts (need at least 2, got {len(parts)})")
    payload_b64 = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValueError(f"JWT payload is not valid JSON: {exc}") from exc
    if not isinstance(claims, dict):
        raise ValueError("JWT payload is not an object")
    return claims


def _token_info(token: str) -> Optional[TokenInfo]:
    try:
        exp = decode_jwt_claims(token).get("exp")
    except ValueError as exc:
        logger.warning("Could not decode JWT expiration: %s", exc)
        return None
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        logger.warning("JWT has no numeric 'exp' claim, expiry will not be tracked")
        return None
    return TokenInfo(jwt=token, expires_at=int(exp * 1000))


class SessionManager:
    """ Bootstraps a Clerk session from browser cookies and keeps its bearer token fresh """

    def __init__(
        self,
        transport: Transport,
        proxy: Optional[ProxyConfig] = None,
        on_token_refresh: Optional[Callable[[str], None]] = None,
        clerk_version: str = DEFAULT_CLERK_VERSION,
        clock: Callable[[], float] = time.time
    ):
        self.transport = transport
        self.proxy = proxy
        self.clerk_version = clerk_version
        self._on_token_refresh = on_token_refresh
        self._clock = clock
        self._state = SessionState()
        self._lock = threading.RLock()
        self._refresh_lock = threading.Lock()
        # Held by ChallengeResolver so only one browser solve runs per session
        self.solve_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def token(self) -> Optional[str]:
        with self._lock:
            return self._state.current_token

    @property
    def device_id(self) -> str:
        with self._lock:
            return self._state.device_id

    @property
    def session_id(self) -> Optional[str]:
        with self._lock:
            return self._state.session_id

    @property
    def cookies(self) -> Dict[str, str]:
        """ Copy of the current cookie jar """
        with self._lock:
            return dict(self._state.cookies)

    def snapshot(self) -> SessionState:
        """ Detached copy of the whole session state """
        with self._lock:
            return replace(self._state, cookies=dict(self._state.cookies))

    def token_expiration(self) -> Optional[datetime]:
        with self._lock:
            info = self._state.token_info
        return datetime.fromtimestamp(info.expires_at / 1000) if info else None

    def is_valid(self, buffer_ms: int = 60000) -> bool:
        """ True while the token's expiry is more than buffer_ms away """
        with self._lock:
            info = self._state.token_info
        if info is None:
            return False
        return self._clock() * 1000 < info.expires_at - buffer_ms

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def bootstrap(self, cookie_string: str) -> str:
        """ Load the browser cookies and resolve the active Clerk session id """
        cookies = parse_cookie_header(cookie_string)
        with self._lock:
            self._state.cookies = cookies
            if not self._state.device_id:
                self._state.device_id = cookies.get("ajs_anonymous_id") or str(uuid.uuid4())
            device_id = self._state.device_id

        logger.info("Getting session ID from Clerk...")
        url = f"{CLERK_BASE_URL}/v1/client?_is_native=true&_clerk_js_version={self.clerk_version}"
        response = self.transport.request(
            url,
            method="GET",
            headers={"Authorization": cookies.get("__client", "")},
            cookies=cookies,
            device_id=device_id,
            proxy=self.proxy,
        )
        self.update_cookies(response.cookies)

        client = response.body.get("response") if isinstance(response.body, dict) else None
        session_id = client.get("last_active_session_id") if isinstance(client, dict) else None
        if not session_id:
            raise AuthBootstrapError(
                f"Failed to get session ID from Clerk (status {response.status}). "
                "The Suno cookie is invalid or expired: log into suno.com and copy a fresh cookie"
            )

        with self._lock:
            self._state.session_id = session_id
        logger.info("Session ID obtained successfully")
        return session_id

    def refresh(self, force: bool = False) -> str:
        """ Return a valid bearer token, minting a new one when needed or forced """
        with self._refresh_lock:
            if not force and self.is_valid():
                return self.token

            with self._lock:
                session_id = self._state.session_id
                cookies = dict(self._state.cookies)
                device_id = self._state.device_id
            if not session_id:
                raise TokenRefreshError("Session ID is not set. Call bootstrap() before refreshing the token")

            logger.info("Refreshing auth token...")
            url = (f"{CLERK_BASE_URL}/v1/client/sessions/{session_id}/tokens"
                   f"?_is_native=true&_clerk_js_version={self.clerk_version}")
            response = self.transport.request(
                url,
                method="POST",
                headers={
                    "Authorization": cookies.get("__client", ""),
                    "Content-Type": "application/json",
                },
                cookies=cookies,
                device_id=device_id,
                proxy=self.proxy,
            )
            self.update_cookies(response.cookies)

            token = response.body.get("jwt") if isinstance(response.body, dict) else None
            if not token:
                raise TokenRefreshError(f"Failed to refresh token (status {response.status})")

            info = self._install_token(token)
            if info:
                logger.info("Token refreshed, expires at: %s",
                            datetime.fromtimestamp(info.expires_at / 1000).isoformat())
            else:
                logger.info("Token refreshed without a readable expiry")

        if self._on_token_refresh:
            self._on_token_refresh(token)
        return token

    def keep_alive(self, force: bool = False) -> None:
        """ Make sure a valid token is installed before an authenticated call """
        self.refresh(force)

    def set_token(self, token: str) -> None:
        """ Install a token obtained elsewhere, e.g. recovered from a browser request """
        self._install_token(token)
        logger.info("Installed externally obtained token %s", mask_secret(token))

    def update_cookies(self, cookies: Mapping[str, str]) -> None:
        """ Merge response cookies into the session, later values win """
        if not cookies:
            return
        with self._lock:
            self._state.cookies.update(cookies)
        logger.debug("Updated session cookies: %s", ", ".join(sorted(cookies)))

    def update_clerk_version(self) -> str:
        """ Adopt the clerk-js version the Suno site currently ships, keeping the old one on failure """
        try:
            response = self.transport.request(SITE_URL, method="GET", device_id=self.device_id, proxy=self.proxy)
        except GatewayError as exc:
            logger.debug("Could not update Clerk version, using %s: %s", self.clerk_version, exc)
            return self.clerk_version

        match = _CLERK_VERSION_PATTERN.search(response.text())
        if match:
            self.clerk_version = match.group(1)
            logger.info("Updated Clerk version to: %s", self.clerk_version)
        else:
            logger.debug("Clerk version not found on %s, using %s", SITE_URL, self.clerk_version)
        return self.clerk_version

    def _install_token(self, token: str) -> Optional[TokenInfo]:
        info = _token_info(token)
        with self._lock:
            self._state.current_token = token
            self._state.token_info = info
        return info
