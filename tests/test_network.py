""" Backoff schedule, cancellable waits and the requests retry wrapper """

import logging
import threading
from unittest.mock import MagicMock

import pytest
import requests

from suno_gateway.errors import OperationCancelledError
from suno_gateway.logging_utils import mask_secret, setup_logging
from suno_gateway.network import NetworkRetry, backoff_delay, wait_or_cancel


def test_backoff_doubles_per_attempt():
    assert [backoff_delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]
    assert backoff_delay(2, base=0.5) == 2.0
    with pytest.raises(ValueError):
        backoff_delay(-1)


def test_wait_returns_when_not_cancelled():
    wait_or_cancel(0.01, threading.Event())
    wait_or_cancel(0)


def test_wait_raises_when_cancelled():
    event = threading.Event()
    threading.Timer(0.01, event.set).start()
    with pytest.raises(OperationCancelledError):
        wait_or_cancel(5, event)


def test_network_retry_recovers_from_connection_errors():
    ok = MagicMock(ok=True)
    request = MagicMock(side_effect=[requests.exceptions.ConnectionError("reset"), ok])

    assert NetworkRetry.execute(request, max_retries=2, initial_backoff=0) is ok
    assert request.call_count == 2


def test_network_retry_raises_after_last_attempt():
    request = MagicMock(side_effect=requests.exceptions.Timeout("slow"))
    with pytest.raises(requests.exceptions.Timeout):
        NetworkRetry.execute(request, max_retries=1, initial_backoff=0)
    assert request.call_count == 2


def test_mask_secret():
    assert mask_secret(None) == "<none>"
    assert mask_secret("short") == "*****"
    assert mask_secret("a" * 40).startswith("aaaaaaaaaaaa... (length: 40)")


def test_setup_logging_writes_file(tmp_path):
    log_file = tmp_path / "logs" / "gateway.log"
    root = logging.getLogger()
    try:
        logger = setup_logging(str(log_file), debug=True, name="suno_gateway.test")
        logger.header("session bootstrap")
        logger.debug("detail")
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()

    text = log_file.read_text(encoding="utf-8")
    assert "---- SESSION BOOTSTRAP ----" in text
    assert "detail" in text
