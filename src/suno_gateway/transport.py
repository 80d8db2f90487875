#!/usr/bin/env python3
"""
HTTP transport with TLS fingerprinting, proxy support and identity rotation

Requests go out through curl_cffi configured with the active profile's JA3 and HTTP/2
fingerprints, so the TLS handshake matches the user agent the headers claim. The engine is
started lazily and at most once per Transport, even when many threads make their first
request at the same time.

request_with_retry() recognises Cloudflare challenge pages, blocks the identity that drew the
challenge and rotates to another one with exponential backoff between attempts. When the
challenge survives every attempt it raises ChallengeEscalationError so the caller can fall
back to a real browser.
"""

from __future__ import annotations

import json
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Final, List, Mapping, Optional, Protocol, Tuple
from urllib.parse import quote, urlsplit

from curl_cffi import CurlError
from curl_cffi import requests as curl_requests

from .configuration import GatewayConfig, ProxyConfig, TransportConfig
from .errors import ChallengeEscalationError, TransportError
from .fingerprints import FingerprintProfile, IdentityPool, build_identity_headers
from .logging_utils import get_logger
from .network import backoff_delay, wait_or_cancel

# Public API - functions and classes that external scripts should use
__all__ = [
    'EngineRequest',
    'EngineResponse',
    'TlsEngine',
    'CurlCffiEngine',
    'HttpResponse',
    'Transport',
    'format_proxy_url',
    'parse_set_cookie',
    'serialize_cookies',
    'detect_challenge'
]

logger = get_logger(__name__)

SITE_ORIGIN: Final[str] = "https://suno.com"

BROWSER_HEADERS: Final[Dict[str, str]] = {
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
    "Connection": "keep-alive",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "same-site",
    "Origin": SITE_ORIGIN,
    "Referer": f"{SITE_ORIGIN}/",
}

CHALLENGE_STATUSES: Final[Tuple[int, ...]] = (403, 503)
CHALLENGE_BODY_MARKERS: Final[Tuple[str, ...]] = (
    "challenge-platform",
    "cf-browser-verification",
    "Just a moment",
)


@dataclass(frozen=True)
class EngineRequest:
    """ Everything the TLS engine needs to send one request """
    url: str
    method: str
    headers: Dict[str, str]
    body: Optional[str]
    timeout: float
    ja3: str
    http2: str
    proxy_url: Optional[str] = None


@dataclass(frozen=True)
class EngineResponse:
    """ Raw engine output; headers keep duplicates such as multiple Set-Cookie lines """
    status: int
    headers: List[Tuple[str, str]]
    body: str


class TlsEngine(Protocol):
    """ Transport engine able to reproduce a TLS / HTTP2 fingerprint """

    def send(self, request: EngineRequest) -> EngineResponse:
        ...

    def close(self) -> None:
        ...


class CurlCffiEngine:
    """ TlsEngine backed by a curl_cffi session """

    def __init__(self):
        self._session = curl_requests.Session()

    def send(self, request: EngineRequest) -> EngineResponse:
        try:
            response = self._session.request(
                request.method,
                request.url,
                headers=request.headers,
                data=request.body,
                timeout=request.timeout,
                ja3=request.ja3,
                akamai=request.http2,
                proxy=request.proxy_url,
                allow_redirects=True,
            )
        except CurlError as exc:
            raise TransportError(f"{request.method} {request.url} failed: {exc}", request.url) from exc

        return EngineResponse(
            status=response.status_code,
            headers=list(response.headers.multi_items()),
            body=response.text,
        )

    def close(self) -> None:
        self._session.close()


@dataclass
class HttpResponse:
    """ Decoded response: JSON body when it parses, raw text otherwise """
    status: int
    body: Any
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        """ Body as a string regardless of how it was decoded """
        return self.body if isinstance(self.body, str) else json.dumps(self.body)


def format_proxy_url(proxy: ProxyConfig) -> str:
    """ Proxy URL with explicit credentials taking precedence over ones embedded in the URL """
    if not proxy.username and not proxy.password:
        return proxy.url

    parts = urlsplit(proxy.url)
    port = parts.port or (443 if parts.scheme == "https" else 80)
    username = proxy.username if proxy.username is not None else (parts.username or "")
    password = proxy.password if proxy.password is not None else (parts.password or "")
    credentials = quote(username, safe="")
    if password:
        credentials = f"{credentials}:{quote(password, safe='')}"
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    return f"{parts.scheme}://{credentials}@{host}:{port}"


def parse_set_cookie(values: List[str]) -> Dict[str, str]:
    """ Map cookie name -> value from Set-Cookie header lines, attributes dropped """
    cookies: Dict[str, str] = {}
    for cookie_header in values:
        if not cookie_header:
            continue
        name_value = cookie_header.split(";", 1)[0]
        if "=" not in name_value:
            continue
        name, value = name_value.split("=", 1)
        name = name.strip()
        if name:
            cookies[name] = value.strip()
    return cookies


def serialize_cookies(cookies: Optional[Mapping[str, Optional[str]]]) -> str:
    """ Cookie header value, skipping unset entries """
    if not cookies:
        return ""
    return "; ".join(f"{name}={value}" for name, value in cookies.items() if value is not None)


def detect_challenge(response: HttpResponse) -> Optional[str]:
    """ Name of the anti-bot signature the response matches, or None """
    if response.status not in CHALLENGE_STATUSES:
        return None

    if response.headers.get("cf-ray"):
        return "cf-ray header"
    if "cloudflare" in response.headers.get("server", "").lower():
        return "cloudflare server header"

    body = response.text()
    for marker in CHALLENGE_BODY_MARKERS:
        if marker in body:
            return f"body marker '{marker}'"
    return None


def _merge_headers(base: Dict[str, str], overrides: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """ Apply overrides case-insensitively so a caller's 'authorization' replaces 'Authorization' """
    if not overrides:
        return base
    merged = dict(base)
    for name, value in overrides.items():
        for existing in [key for key in merged if key.lower() == name.lower()]:
            del merged[existing]
        merged[name] = value
    return merged


def _decode_body(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


class Transport:
    """ Shared HTTP client applying fingerprint identities from an IdentityPool """

    def __init__(
        self,
        pool: Optional[IdentityPool] = None,
        config: Optional[TransportConfig] = None,
        proxy: Optional[ProxyConfig] = None,
        rotate_every_request: bool = False,
        engine_factory: Callable[[], TlsEngine] = CurlCffiEngine
    ):
        self.pool = pool or IdentityPool()
        self.config = config or TransportConfig()
        self._engine_factory = engine_factory
        self._proxy = proxy
        self._rotate_every_request = rotate_every_request

        self._state_lock = threading.Lock()
        self._profile = self.pool.current()

        self._init_lock = threading.Lock()
        self._init_future: Optional[Future] = None
        self._engine: Optional[TlsEngine] = None

    @classmethod
    def from_config(
        cls,
        config: GatewayConfig,
        engine_factory: Callable[[], TlsEngine] = CurlCffiEngine
    ) -> "Transport":
        """ Build a transport and its identity pool from the gateway configuration """
        pool = IdentityPool(
            strategy=config.rotation.strategy,
            preferred_platform=config.rotation.preferred_platform,
        )
        return cls(
            pool=pool,
            config=config.transport,
            proxy=config.proxy,
            rotate_every_request=config.rotation.enabled,
            engine_factory=engine_factory,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self._engine is not None

    def start(self) -> TlsEngine:
        """ Start the TLS engine once; concurrent callers wait on the same initialization """
        with self._init_lock:
            if self._engine is not None:
                return self._engine
            future = self._init_future
            owner = future is None
            if owner:
                future = Future()
                self._init_future = future

        if owner:
            try:
                logger.info("Initializing TLS fingerprinting engine")
                engine = self._engine_factory()
            except BaseException as exc:
                with self._init_lock:
                    self._init_future = None
                future.set_exception(exc)
                raise
            with self._init_lock:
                self._engine = engine
                self._init_future = None
            future.set_result(engine)
            logger.info("Transport ready with profile: %s", self.current_profile.name or self.current_profile.id)

        return future.result()

    def close(self) -> None:
        """ Shut the engine down; a later request starts a fresh one """
        with self._init_lock:
            engine, self._engine = self._engine, None
        if engine is not None:
            logger.info("Closing TLS fingerprinting engine")
            engine.close()

    def __enter__(self) -> "Transport":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Configuration and identity control
    # ------------------------------------------------------------------

    def set_proxy(self, proxy: Optional[ProxyConfig]) -> None:
        with self._state_lock:
            self._proxy = proxy

    def get_proxy(self) -> Optional[ProxyConfig]:
        with self._state_lock:
            return self._proxy

    def set_rotation_enabled(self, enabled: bool) -> None:
        """ Rotate the identity before every request when enabled """
        with self._state_lock:
            self._rotate_every_request = enabled

    @property
    def current_profile(self) -> FingerprintProfile:
        with self._state_lock:
            return self._profile

    def rotate(self) -> FingerprintProfile:
        """ Move to the next identity according to the pool's strategy """
        profile = self.pool.next()
        with self._state_lock:
            self._profile = profile
        logger.info("Rotated to fingerprint: %s", profile.id)
        return profile

    def block_current(self) -> FingerprintProfile:
        """ Block the active identity and rotate away from it """
        self.pool.block(self.current_profile.id)
        return self.rotate()

    def _select_profile(self) -> FingerprintProfile:
        with self._state_lock:
            rotate_every_request = self._rotate_every_request
            profile = self._profile
        if rotate_every_request:
            profile = self.pool.next()
        elif self.pool.is_blocked(profile.id):
            profile = self.pool.current()
        with self._state_lock:
            self._profile = profile
        return profile

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
        timeout: Optional[float] = None,
        cookies: Optional[Mapping[str, Optional[str]]] = None,
        token: Optional[str] = None,
        proxy: Optional[ProxyConfig] = None,
        device_id: str = ""
    ) -> HttpResponse:
        """ Send one request with the active identity """
        engine = self.start()
        profile = self._select_profile()

        request_headers = build_identity_headers(profile)
        request_headers.update(BROWSER_HEADERS)
        if device_id:
            request_headers["Device-Id"] = f'"{device_id}"'
        cookie_header = serialize_cookies(cookies)
        if cookie_header:
            request_headers["Cookie"] = cookie_header
        if token:
            request_headers["Authorization"] = f"Bearer {token}"

        payload: Optional[str] = None
        if body is not None:
            if isinstance(body, (str, bytes)):
                payload = body.decode("utf-8") if isinstance(body, bytes) else body
            else:
                payload = json.dumps(body)
                request_headers["Content-Type"] = "application/json"
        request_headers = _merge_headers(request_headers, headers)

        proxy = proxy or self.get_proxy()
        method = method.upper()
        logger.debug("HTTP Request: %s %s [%s]", method, url, profile.id)

        engine_response = engine.send(EngineRequest(
            url=url,
            method=method,
            headers=request_headers,
            body=payload,
            timeout=timeout if timeout is not None else self.config.timeout,
            ja3=profile.ja3_fingerprint,
            http2=profile.http2_fingerprint,
            proxy_url=format_proxy_url(proxy) if proxy else None,
        ))

        response_headers: Dict[str, str] = {}
        set_cookie_values: List[str] = []
        for name, value in engine_response.headers:
            key = name.lower()
            if key == "set-cookie":
                set_cookie_values.append(value)
            response_headers[key] = value

        logger.debug("HTTP Response: %s %s -> %s", method, url, engine_response.status)
        return HttpResponse(
            status=engine_response.status,
            body=_decode_body(engine_response.body),
            headers=response_headers,
            cookies=parse_set_cookie(set_cookie_values),
        )

    def get(self, url: str, **kwargs: Any) -> HttpResponse:
        return self.request(url, method="GET", **kwargs)

    def post(self, url: str, body: Any = None, **kwargs: Any) -> HttpResponse:
        return self.request(url, method="POST", body=body, **kwargs)

    def request_with_retry(
        self,
        url: str,
        max_retries: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
        **kwargs: Any
    ) -> HttpResponse:
        """ Send a request, rotating identities and backing off on challenges and network errors """
        retries = max_retries if max_retries is not None else self.config.max_retries
        if retries < 1:
            raise ValueError("max_retries must be at least 1")

        for attempt in range(1, retries + 1):
            try:
                response = self.request(url, **kwargs)
            except TransportError as exc:
                logger.error("Request attempt %s/%s failed: %s", attempt, retries, exc)
                if attempt >= retries:
                    raise
                self.rotate()
                wait_or_cancel(backoff_delay(attempt, self.config.backoff_base), cancel_event)
                continue

            signature = detect_challenge(response)
            if signature is None:
                return response

            logger.warning("Anti-bot challenge detected (%s, status %s) on attempt %s/%s",
                           signature, response.status, attempt, retries)
            self.block_current()
            if attempt >= retries:
                raise ChallengeEscalationError(url, response.status, signature, attempt)
            wait_or_cancel(backoff_delay(attempt, self.config.backoff_base), cancel_event)

        raise RuntimeError("Retry logic failed unexpectedly")
