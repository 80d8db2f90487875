""" 2Captcha coordinates protocol against a mocked requests session """

from unittest.mock import MagicMock

import pytest

from suno_gateway.errors import SolverError
from suno_gateway.solver import CaptchaPoint, TwoCaptchaSolver


def api_response(payload) -> MagicMock:
    response = MagicMock()
    response.ok = True
    response.json.return_value = payload
    return response


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def solver(http):
    return TwoCaptchaSolver("key-123", poll_interval=0, session=http, sleep=lambda _: None)


def test_coordinates_submits_then_polls(solver, http):
    http.post.return_value = api_response({"status": 1, "request": "777"})
    http.get.side_effect = [
        api_response({"status": 0, "request": "CAPCHA_NOT_READY"}),
        api_response({"status": 1, "request": [{"x": "10", "y": "20"}, {"x": 30, "y": 40}]}),
    ]

    solution = solver.coordinates("aW1hZ2U=", "en-US", instructions_text="Drag the piece")

    assert solution.id == "777"
    assert solution.points == [CaptchaPoint(10, 20), CaptchaPoint(30, 40)]
    form = http.post.call_args.kwargs["data"]
    assert form["coordinatescaptcha"] == 1
    assert form["method"] == "base64"
    assert form["textinstructions"] == "Drag the piece"
    assert "imginstructions" not in form
    assert http.get.call_args.kwargs["params"]["action"] == "get"


def test_text_coordinates_are_parsed(solver, http):
    http.post.return_value = api_response({"status": 1, "request": "9"})
    http.get.return_value = api_response({"status": 1, "request": "coordinates:x=1,y=2;x=3.5,y=4"})

    assert solver.coordinates("img", "en").points == [CaptchaPoint(1, 2), CaptchaPoint(3.5, 4)]


def test_missing_key_fails_without_network(http):
    solver = TwoCaptchaSolver("", session=http)
    with pytest.raises(SolverError, match="API key"):
        solver.coordinates("img", "en")
    http.post.assert_not_called()


def test_rejected_submission(solver, http):
    http.post.return_value = api_response({"status": 0, "request": "ERROR_ZERO_BALANCE"})
    with pytest.raises(SolverError, match="ERROR_ZERO_BALANCE"):
        solver.coordinates("img", "en")


def test_unsolvable_captcha(solver, http):
    http.post.return_value = api_response({"status": 1, "request": "1"})
    http.get.return_value = api_response({"status": 0, "request": "ERROR_CAPTCHA_UNSOLVABLE"})
    with pytest.raises(SolverError, match="UNSOLVABLE"):
        solver.coordinates("img", "en")


def test_polling_times_out(http):
    times = iter([0.0, 500.0])
    solver = TwoCaptchaSolver("key", poll_interval=0, timeout=180, session=http,
                              clock=lambda: next(times), sleep=lambda _: None)
    http.post.return_value = api_response({"status": 1, "request": "1"})
    http.get.return_value = api_response({"status": 0, "request": "CAPCHA_NOT_READY"})

    with pytest.raises(SolverError, match="within 180"):
        solver.coordinates("img", "en")


def test_invalid_json_is_a_solver_error(solver, http):
    response = api_response(None)
    response.json.side_effect = ValueError("Expecting value")
    http.post.return_value = response
    with pytest.raises(SolverError, match="invalid JSON"):
        solver.coordinates("img", "en")


def test_malformed_points_are_a_solver_error(solver, http):
    http.post.return_value = api_response({"status": 1, "request": "1"})
    http.get.return_value = api_response({"status": 1, "request": "coordinates:x=oops"})
    with pytest.raises(SolverError, match="parse"):
        solver.coordinates("img", "en")


def test_report_bad(solver, http):
    http.get.return_value = api_response({"status": 1, "request": "OK_REPORT_RECORDED"})
    solver.report_bad("777")
    params = http.get.call_args.kwargs["params"]
    assert params["action"] == "reportbad"
    assert params["id"] == "777"
