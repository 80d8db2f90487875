#!/usr/bin/env python3
"""
hCaptcha resolution through a real browser

OVERVIEW
========
When Suno's /api/c/check reports that a captcha is required, API calls keep failing until a
browser session solves one. The resolver reproduces what a person would do:

1. Launch an isolated browser context carrying the session cookies and the default device
   user agent, and open the Create page.
2. Type a prompt and press Create. Suno answers with an hCaptcha challenge.
3. Screenshot each challenge, send it to 2Captcha, click or drag the returned coordinates
   and submit. New challenge rounds repeat the loop.
4. Once solved, the page fires the generate request carrying the hCaptcha token. That request
   is intercepted and aborted so no song is created; its token is the result, and its bearer
   header (renewed by the page) is installed into the SessionManager.

With browser.ghost_cursor enabled, clicks and drags travel along curved, eased mouse paths
instead of jumping straight to their target.

CONCURRENCY
===========
Playwright's sync API dispatches route handlers while the solving loop is inside any page
call, so the interception and the loop share one thread. They communicate through a
single-resolution Future and a cancellation Event: the handler resolves the future and sets
the event, and the loop stops at its next check. The browser is closed in a finally block on
every exit path. Solves on the same session are serialized through SessionManager.solve_lock.
"""

from __future__ import annotations

import base64
import random
import re
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Final, List, Optional, Tuple

from playwright.sync_api import Browser, FrameLocator, Locator, Page, Route, sync_playwright
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .browser import BrowserBackend, select_backend
from .configuration import BrowserConfig, GatewayConfig
from .errors import ResourceError, SolverError
from .fingerprints import DEFAULT_PROFILE
from .logging_utils import get_logger, mask_secret
from .session import SessionManager
from .solver import CaptchaChallenge, CaptchaSolution, ChallengeKind, TwoCaptchaSolver
from .transport import Transport

# Public API - functions and classes that external scripts should use
__all__ = [
    'SUNO_API_BASE',
    'ChallengeState',
    'CapturedToken',
    'ChallengeResolver'
]

logger = get_logger(__name__)

SUNO_API_BASE: Final[str] = "https://studio-api.prod.suno.com"
CHECK_URL: Final[str] = f"{SUNO_API_BASE}/api/c/check"
CREATE_PAGE_URL: Final[str] = "https://suno.com/create"
GENERATE_ROUTE: Final[str] = "**/api/generate/v2/**"
PROJECT_RESPONSE: Final[re.Pattern] = re.compile(r"/api/project/.*\?")

CHALLENGE_FRAME: Final[str] = 'iframe[title*="hCaptcha"]'
CREATE_BUTTON: Final[str] = 'button[aria-label="Create"]'
COOKIE_DOMAIN: Final[str] = ".suno.com"
TRIGGER_TEXT: Final[str] = "Lorem ipsum"
DRAG_TEXT_INSTRUCTIONS: Final[str] = (
    "CLICK on the shapes at their edge or center as shown above - please be precise!"
)

SOLVE_ATTEMPTS: Final[int] = 3
POLL_INTERVAL_MS: Final[int] = 500
SETTLE_MS: Final[int] = 1000
DRAG_HOLD_MS: Final[int] = 1100

CURSOR_BEND_PX: Final[float] = 80.0
CURSOR_STEPS: Final[Tuple[int, int]] = (18, 32)


class ChallengeState(str, Enum):
    """ Progress of a solve() call """
    IDLE = "idle"
    CHECKING_REQUIREMENT = "checking-requirement"
    NOT_REQUIRED = "not-required"
    LAUNCHING_BROWSER = "launching-browser"
    AWAITING_TRIGGER = "awaiting-trigger"
    CAPTURING_CHALLENGE = "capturing-challenge"
    REQUESTING_SOLUTION = "requesting-solution"
    APPLYING_SOLUTION = "applying-solution"
    SUBMITTING = "submitting"
    TOKEN_CAPTURED = "token-captured"
    CLOSED = "closed"


@dataclass(frozen=True)
class CapturedToken:
    """ hCaptcha token recovered from the intercepted generate request """
    token: str
    timestamp: int


def _is_closed_error(exc: Exception) -> bool:
    return "closed" in str(exc).lower()


class ChallengeResolver:
    """ Detects and solves Suno's hCaptcha challenge with a browser and 2Captcha """

    def __init__(
        self,
        transport: Transport,
        session: SessionManager,
        solver: TwoCaptchaSolver,
        config: Optional[BrowserConfig] = None,
        backend: Optional[BrowserBackend] = None,
        playwright_factory: Callable[[], Any] = sync_playwright,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None
    ):
        self.transport = transport
        self.session = session
        self.solver = solver
        self.config = config or BrowserConfig()
        self.backend = backend or select_backend(self.config.engine, disable_gpu=self.config.disable_gpu)
        self._playwright_factory = playwright_factory
        self._clock = clock
        self._rng = rng or random.Random()
        self._cursor: Tuple[float, float] = (0.0, 0.0)
        self._drag_image: Optional[str] = None
        self.state = ChallengeState.IDLE

    @classmethod
    def from_config(cls, transport: Transport, session: SessionManager,
                    config: GatewayConfig) -> "ChallengeResolver":
        return cls(transport, session, TwoCaptchaSolver.from_config(config.solver), config=config.browser)

    def _set_state(self, state: ChallengeState) -> None:
        logger.debug("Challenge resolver: %s -> %s", self.state.value, state.value)
        self.state = state

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def is_required(self) -> bool:
        """ Ask the product API whether generation currently needs a captcha """
        self._set_state(ChallengeState.CHECKING_REQUIREMENT)
        response = self.transport.request(
            CHECK_URL,
            method="POST",
            body={"ctype": "generation"},
            cookies=self.session.cookies,
            token=self.session.token,
            device_id=self.session.device_id,
            proxy=self.session.proxy,
        )
        logger.info("CAPTCHA check response: %s", response.body)
        return isinstance(response.body, dict) and response.body.get("required") is True

    def solve(self) -> Optional[CapturedToken]:
        """ Solve the captcha if one is required; None when the API does not ask for one """
        with self.session.solve_lock:
            try:
                if not self.is_required():
                    self._set_state(ChallengeState.NOT_REQUIRED)
                    return None

                logger.header("captcha solve")
                logger.info("CAPTCHA required. Launching %s browser...", self.backend.name)
                self._set_state(ChallengeState.LAUNCHING_BROWSER)
                deadline = self._clock() + self.config.solve_timeout
                with self._playwright_factory() as playwright:
                    browser = self.backend.launch(playwright, self.backend.default_args(), self.config.headless)
                    try:
                        return self._solve_in_browser(browser, deadline)
                    finally:
                        self._close_browser(browser)
            finally:
                self._set_state(ChallengeState.IDLE)

    def get_token(self) -> Optional[str]:
        """ Just the hCaptcha token from solve() """
        captured = self.solve()
        return captured.token if captured else None

    # ------------------------------------------------------------------
    # Browser flow
    # ------------------------------------------------------------------

    def _solve_in_browser(self, browser: Browser, deadline: float) -> CapturedToken:
        context = self.backend.new_context(browser, DEFAULT_PROFILE.user_agent, self.config.locale)
        context.add_cookies(self._browser_cookies())
        page = context.new_page()
        self._cursor = (0.0, 0.0)

        captured: Future = Future()
        cancel = threading.Event()
        page.route(GENERATE_ROUTE, lambda route: self._capture_token(route, captured, cancel))

        self._trigger_challenge(page)
        try:
            self._solving_loop(page, cancel, deadline)
        except PlaywrightError as exc:
            if not captured.done():
                if _is_closed_error(exc):
                    raise ResourceError("Browser closed before the captcha token was captured") from exc
                raise
            logger.debug("Automation surface closed after token capture: %s", exc)

        if not captured.done():
            raise ResourceError("Solving loop stopped without capturing a captcha token")
        return captured.result()

    def _browser_cookies(self) -> List[Dict[str, Any]]:
        """ Session cookies in Playwright's format, with __session set to the current bearer """
        cookies: List[Dict[str, Any]] = []
        token = self.session.token
        if token:
            cookies.append({"name": "__session", "value": token, "domain": COOKIE_DOMAIN,
                            "path": "/", "sameSite": "Lax"})
        for name, value in self.session.cookies.items():
            if not value or (token and name == "__session"):
                continue
            cookies.append({"name": name, "value": str(value), "domain": COOKIE_DOMAIN,
                            "path": "/", "sameSite": "Lax"})
        return cookies

    def _capture_token(self, route: Route, captured: Future, cancel: threading.Event) -> None:
        """ Route handler: stop the generate request and keep its captcha token """
        request = route.request
        route.abort()
        if captured.done():
            return

        try:
            authorization = request.headers.get("authorization", "")
            renewed = authorization.rsplit("Bearer ", 1)[-1].strip() if authorization else ""
            if renewed:
                self.session.set_token(renewed)

            payload = request.post_data_json
            token = payload.get("token") if isinstance(payload, dict) else None
            if not token:
                raise ResourceError("Intercepted generate request carried no captcha token")

            logger.info("hCaptcha token received %s. Closing browser...", mask_secret(token))
            self._set_state(ChallengeState.TOKEN_CAPTURED)
            captured.set_result(CapturedToken(token=token, timestamp=int(time.time() * 1000)))
        except (ResourceError, PlaywrightError, ValueError) as exc:
            captured.set_exception(exc)
        finally:
            cancel.set()

    def _trigger_challenge(self, page: Page) -> None:
        """ Open the Create page and submit a prompt so Suno raises the challenge """
        self._set_state(ChallengeState.AWAITING_TRIGGER)
        logger.info("Waiting for Suno interface to load...")
        with page.expect_response(PROJECT_RESPONSE, timeout=60000):
            page.goto(CREATE_PAGE_URL, referer="https://www.google.com/", wait_until="domcontentloaded", timeout=0)

        logger.info("Triggering the CAPTCHA...")
        try:
            page.get_by_label("Close").click(timeout=2000)
        except PlaywrightTimeoutError:
            logger.debug("No modal to dismiss")

        textarea = page.locator(".custom-textarea")
        self._click(page, textarea)
        textarea.press_sequentially(TRIGGER_TEXT, delay=80)
        self._click(page, self._create_button(page))

    def _solving_loop(self, page: Page, cancel: threading.Event, deadline: float) -> None:
        frame = page.frame_locator(CHALLENGE_FRAME)
        challenge = frame.locator(".challenge-container")

        while not cancel.is_set():
            if not self._await_challenge(page, challenge, cancel, deadline):
                return

            self._set_state(ChallengeState.CAPTURING_CHALLENGE)
            prompt = challenge.locator(".prompt-text").first.inner_text()
            kind = ChallengeKind.DRAG if "drag" in prompt.lower() else ChallengeKind.CLICK
            logger.info("Challenge prompt (%s): %s", kind.value, prompt)

            solution = self._request_solution(challenge, kind, prompt)
            if cancel.is_set():
                return

            self._set_state(ChallengeState.APPLYING_SOLUTION)
            if kind == ChallengeKind.DRAG:
                if not self._apply_drag_solution(page, challenge, solution):
                    continue
            else:
                self._apply_click_solution(page, challenge, solution)

            self._set_state(ChallengeState.SUBMITTING)
            self._submit(page, frame)
            page.wait_for_timeout(SETTLE_MS)

    def _await_challenge(self, page: Page, challenge: Locator, cancel: threading.Event,
                         deadline: float) -> bool:
        """ Poll until a challenge is shown; False if the token arrived first """
        while not cancel.is_set():
            if self._clock() >= deadline:
                raise SolverError(f"Captcha was not solved within {self.config.solve_timeout} seconds")
            if challenge.is_visible():
                page.wait_for_timeout(SETTLE_MS)
                return not cancel.is_set()
            page.wait_for_timeout(POLL_INTERVAL_MS)
        return False

    def _request_solution(self, challenge: Locator, kind: ChallengeKind, prompt: str) -> CaptchaSolution:
        """ Screenshot the challenge and ask the solver, up to SOLVE_ATTEMPTS times """
        last_error: Optional[Exception] = None
        for attempt in range(1, SOLVE_ATTEMPTS + 1):
            self._set_state(ChallengeState.REQUESTING_SOLUTION)
            try:
                logger.info("Sending CAPTCHA to 2Captcha (attempt %s/%s)...", attempt, SOLVE_ATTEMPTS)
                captured = CaptchaChallenge(
                    kind=kind,
                    image_b64=base64.b64encode(challenge.screenshot(timeout=5000)).decode("ascii"),
                    prompt=prompt,
                )
                if captured.kind == ChallengeKind.DRAG:
                    return self.solver.coordinates(
                        captured.image_b64,
                        self.config.locale,
                        instructions_text=DRAG_TEXT_INSTRUCTIONS,
                        instructions_image_b64=self._drag_instructions_image(),
                    )
                return self.solver.coordinates(captured.image_b64, self.config.locale)
            except (SolverError, PlaywrightTimeoutError) as exc:
                last_error = exc
                logger.warning("Solving attempt %s/%s failed: %s", attempt, SOLVE_ATTEMPTS, exc)

        raise SolverError(
            f"Solving service failed {SOLVE_ATTEMPTS} times on one challenge: {last_error}",
            attempts=SOLVE_ATTEMPTS,
        ) from last_error

    def _apply_drag_solution(self, page: Page, challenge: Locator, solution: CaptchaSolution) -> bool:
        """ Perform one press-move-release gesture per point pair; False if the round was abandoned """
        points = solution.points
        if len(points) % 2:
            logger.info("Solution has odd number of points. Reporting bad solution...")
            try:
                self.solver.report_bad(solution.id)
            except SolverError as exc:
                logger.warning("Could not report bad solution %s: %s", solution.id, exc)
            return False

        box = challenge.bounding_box()
        if box is None:
            raise ResourceError(".challenge-container has no bounding box")

        for start, end in zip(points[0::2], points[1::2]):
            logger.debug("Drag (%s, %s) -> (%s, %s)", start.x, start.y, end.x, end.y)
            start_x, start_y = box["x"] + start.x, box["y"] + start.y
            end_x, end_y = box["x"] + end.x, box["y"] + end.y
            if self.config.ghost_cursor:
                self._move_cursor(page, start_x, start_y)
                page.mouse.down()
                page.wait_for_timeout(DRAG_HOLD_MS)
                self._move_cursor(page, end_x, end_y)
            else:
                page.mouse.move(start_x, start_y)
                page.mouse.down()
                page.wait_for_timeout(DRAG_HOLD_MS)
                page.mouse.move(end_x, end_y, steps=30)
            page.mouse.up()
        return True

    def _apply_click_solution(self, page: Page, challenge: Locator, solution: CaptchaSolution) -> None:
        for point in solution.points:
            logger.debug("Click (%s, %s)", point.x, point.y)
            self._click(page, challenge, {"x": point.x, "y": point.y})

    def _click(self, page: Page, target: Locator, position: Optional[Dict[str, float]] = None) -> None:
        """ Click a locator, relative to its top-left corner when a position is given """
        if not self.config.ghost_cursor:
            if position is None:
                target.click(force=True)
            else:
                target.click(force=True, position=position)
            return

        box = target.bounding_box()
        if box is None:
            raise ResourceError("Click target has no bounding box")
        if position is None:
            x, y = box["x"] + box["width"] / 2, box["y"] + box["height"] / 2
        else:
            x, y = box["x"] + position["x"], box["y"] + position["y"]
        self._move_cursor(page, x, y)
        page.mouse.click(x, y)

    def _move_cursor(self, page: Page, x: float, y: float) -> None:
        """ Move along a quadratic Bezier curve with a random bend and ease-in-out spacing """
        start_x, start_y = self._cursor
        bend_x = (start_x + x) / 2 + self._rng.uniform(-CURSOR_BEND_PX, CURSOR_BEND_PX)
        bend_y = (start_y + y) / 2 + self._rng.uniform(-CURSOR_BEND_PX, CURSOR_BEND_PX)
        steps = self._rng.randint(*CURSOR_STEPS)

        for step in range(1, steps + 1):
            t = step / steps
            eased = t * t * (3 - 2 * t)
            rest = 1 - eased
            page.mouse.move(
                rest * rest * start_x + 2 * rest * eased * bend_x + eased * eased * x,
                rest * rest * start_y + 2 * rest * eased * bend_y + eased * eased * y,
            )
        self._cursor = (x, y)

    def _submit(self, page: Page, frame: FrameLocator) -> None:
        try:
            frame.locator(".button-submit").click(timeout=5000)
        except PlaywrightError as exc:
            if "viewport" not in str(exc):
                raise
            # Submit button scrolled out of the frame; pressing Create again submits the challenge
            self._create_button(page).click(force=True)

    @staticmethod
    def _create_button(page: Page) -> Locator:
        return page.locator(CREATE_BUTTON).locator("div.flex")

    def _drag_instructions_image(self) -> Optional[str]:
        """ Base64 of the configured instruction image, read once """
        if self._drag_image is None and self.config.drag_instructions:
            path = Path(self.config.drag_instructions)
            try:
                self._drag_image = base64.b64encode(path.read_bytes()).decode("ascii")
            except OSError as exc:
                logger.warning("Drag instruction image %s unavailable, sending text only: %s", path, exc)
                return None
        return self._drag_image

    def _close_browser(self, browser: Browser) -> None:
        self._set_state(ChallengeState.CLOSED)
        try:
            browser.close()
        except PlaywrightError as exc:
            logger.warning("Browser did not close cleanly: %s", exc)
