#!/usr/bin/env python3
""" Client for the 2Captcha coordinates API """

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Final, List, Optional

import requests

from .configuration import SolverConfig
from .errors import SolverError
from .logging_utils import get_logger
from .network import NetworkRetry

# Public API - functions and classes that external scripts should use
__all__ = [
    'ChallengeKind',
    'CaptchaChallenge',
    'CaptchaPoint',
    'CaptchaSolution',
    'TwoCaptchaSolver'
]

logger = get_logger(__name__)


class ChallengeKind(str, Enum):
    """ How a challenge expects to be answered """
    CLICK = "click"
    DRAG = "drag"


@dataclass(frozen=True)
class CaptchaChallenge:
    """ A captured challenge instance """
    kind: ChallengeKind
    image_b64: str
    prompt: str = ""


@dataclass(frozen=True)
class CaptchaPoint:
    x: float
    y: float


@dataclass(frozen=True)
class CaptchaSolution:
    """ Ordered points returned by the solver; drag answers come as consecutive start/end pairs """
    id: str
    points: List[CaptchaPoint]


class TwoCaptchaSolver:
    """ Submits screenshots to 2Captcha workers and polls for click coordinates """

    IN_URL: Final[str] = "https://2captcha.com/in.php"
    RES_URL: Final[str] = "https://2captcha.com/res.php"
    NOT_READY: Final[str] = "CAPCHA_NOT_READY"

    def __init__(
        self,
        api_key: str,
        poll_interval: float = 5.0,
        timeout: float = 180.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.api_key = api_key
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._session = session or requests.Session()
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: SolverConfig) -> "TwoCaptchaSolver":
        return cls(config.api_key, poll_interval=config.poll_interval, timeout=config.timeout)

    def coordinates(
        self,
        image_b64: str,
        lang: str,
        instructions_text: Optional[str] = None,
        instructions_image_b64: Optional[str] = None
    ) -> CaptchaSolution:
        """ Solve a coordinates captcha and return the points to click """
        if not self.api_key:
            raise SolverError("2Captcha API key is not configured")

        form: Dict[str, Any] = {
            "key": self.api_key,
            "method": "base64",
            "coordinatescaptcha": 1,
            "body": image_b64,
            "lang": lang,
            "json": 1,
        }
        if instructions_text:
            form["textinstructions"] = instructions_text
        if instructions_image_b64:
            form["imginstructions"] = instructions_image_b64

        submitted = self._call(lambda: self._session.post(self.IN_URL, data=form, timeout=30))
        if submitted.get("status") != 1:
            raise SolverError(f"2Captcha rejected the task: {submitted.get('request')}")
        captcha_id = str(submitted["request"])
        logger.info("Captcha submitted to 2Captcha, id %s", captcha_id)

        deadline = self._clock() + self.timeout
        params = {"key": self.api_key, "action": "get", "id": captcha_id, "json": 1}
        while True:
            self._sleep(self.poll_interval)
            result = self._call(lambda: self._session.get(self.RES_URL, params=params, timeout=30))
            if result.get("status") == 1:
                points = self._parse_points(result.get("request"))
                logger.info("2Captcha solution %s received with %s points", captcha_id, len(points))
                return CaptchaSolution(id=captcha_id, points=points)
            if result.get("request") != self.NOT_READY:
                raise SolverError(f"2Captcha failed to solve {captcha_id}: {result.get('request')}")
            if self._clock() >= deadline:
                raise SolverError(f"2Captcha did not solve {captcha_id} within {self.timeout} seconds")

    def report_bad(self, captcha_id: str) -> None:
        """ Tell 2Captcha the solution was wrong so the worker is not paid for it """
        logger.info("Reporting bad solution %s", captcha_id)
        params = {"key": self.api_key, "action": "reportbad", "id": captcha_id, "json": 1}
        self._call(lambda: self._session.get(self.RES_URL, params=params, timeout=30))

    def _call(self, request_func: Callable[[], requests.Response]) -> Dict[str, Any]:
        try:
            response = NetworkRetry.execute(request_func, max_retries=2)
            payload = response.json()
        except requests.exceptions.RequestException as exc:
            raise SolverError(f"2Captcha request failed: {exc}") from exc
        except ValueError as exc:
            raise SolverError(f"2Captcha returned invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise SolverError(f"2Captcha returned an unexpected payload: {payload!r}")
        return payload

    @staticmethod
    def _parse_points(raw: Any) -> List[CaptchaPoint]:
        """ Accepts the JSON list form or the 'coordinates:x=1,y=2;x=3,y=4' text form """
        try:
            if isinstance(raw, list):
                return [CaptchaPoint(x=float(p["x"]), y=float(p["y"])) for p in raw]
            if isinstance(raw, str):
                text = raw.split(":", 1)[1] if raw.startswith("coordinates:") else raw
                points = []
                for pair in filter(None, text.split(";")):
                    values = dict(item.split("=", 1) for item in pair.split(","))
                    points.append(CaptchaPoint(x=float(values["x"]), y=float(values["y"])))
                return points
        except (KeyError, ValueError, TypeError) as exc:
            raise SolverError(f"Could not parse 2Captcha coordinates {raw!r}: {exc}") from exc
        raise SolverError(f"Unexpected 2Captcha coordinates payload: {raw!r}")
