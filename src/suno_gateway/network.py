#!/usr/bin/env python3
""" Backoff schedule and retry helpers for plain HTTP APIs """

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Callable, Final, Optional

import requests

from .errors import OperationCancelledError

# Public API - functions and classes that external scripts should use
__all__ = [
    'backoff_delay',
    'wait_or_cancel',
    'NetworkRetry'
]


def backoff_delay(attempt: int, base: float = 1.0) -> float:
    """ Seconds to wait after a failed attempt: base * 2^attempt """
    if attempt < 0:
        raise ValueError("attempt must be non-negative")
    return base * (2 ** attempt)


def wait_or_cancel(seconds: float, cancel_event: Optional[threading.Event] = None) -> None:
    """ Sleep for the given time, returning early with an error if the event is set """
    if cancel_event is None:
        if seconds > 0:
            time.sleep(seconds)
        return
    if cancel_event.wait(seconds):
        raise OperationCancelledError("Operation cancelled while waiting to retry")


class NetworkRetry:
    """ Retry wrapper for requests-based calls with exponential backoff """

    MAX_RETRIES: Final[int] = 3
    INITIAL_BACKOFF_SECONDS: Final[float] = 1.0

    @staticmethod
    def execute(
        request_func: Callable[[], requests.Response],
        max_retries: int = 3,
        initial_backoff: float = 1.0,
        cancel_event: Optional[threading.Event] = None
    ) -> requests.Response:
        """ Execute a request function, retrying HTTP, connection and timeout errors """
        logger = logging.getLogger(__name__)

        for attempt in range(max_retries + 1):
            try:
                logger.debug("NetworkRetry.execute: Attempt %s/%s", attempt + 1, max_retries + 1)
                response = request_func()

                if not response.ok:
                    logger.error("NetworkRetry.execute: HTTP %s from %s on attempt %s/%s",
                                 response.status_code, response.url, attempt + 1, max_retries + 1)
                    try:
                        logger.debug("  Error Response Body: %s", json.dumps(response.json(), indent=2))
                    except ValueError:
                        logger.debug("  Error Response Body (raw, first 1000 chars): %s", response.text[:1000])

                response.raise_for_status()
                return response
            except (requests.exceptions.HTTPError,
                    requests.exceptions.ConnectionError,
                    requests.exceptions.Timeout) as exc:
                logger.error("NetworkRetry.execute: %s on attempt %s/%s: %s",
                             type(exc).__name__, attempt + 1, max_retries + 1, exc)
                if attempt < max_retries:
                    wait_time = backoff_delay(attempt, initial_backoff)
                    logger.debug("NetworkRetry.execute: Retrying in %.2f seconds...", wait_time)
                    wait_or_cancel(wait_time, cancel_event)
                    continue
                logger.error("NetworkRetry.execute: All %s attempts exhausted", max_retries + 1)
                raise

        raise RuntimeError("Retry logic failed unexpectedly")
