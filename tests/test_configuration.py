""" Configuration and authentication file loading """

import json

import pytest

from suno_gateway.authentication import load_authentication
from suno_gateway.configuration import BrowserConfig, GatewayConfig, load_configuration
from suno_gateway.fingerprints import Platform, RotationStrategy


def write_json(path, data) -> str:
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def test_defaults(monkeypatch):
    monkeypatch.setenv("TWOCAPTCHA_KEY", "from-env")
    config = GatewayConfig()

    assert config.proxy is None
    assert config.rotation.strategy == RotationStrategy.ROUND_ROBIN
    assert config.transport.max_retries == 3
    assert config.browser.engine == "chromium"
    assert config.browser.headless
    assert config.solver.api_key == "from-env"


def test_load_full_configuration(tmp_path):
    path = write_json(tmp_path / "configuration.json", {
        "debug": True,
        "proxy": {"url": "http://proxy.local:8080", "username": "u", "password": "p"},
        "rotation": {"enabled": True, "strategy": "least-used", "preferred_platform": "ios"},
        "transport": {"timeout": 10, "max_retries": 5, "backoff_base": 0.5},
        "browser": {"engine": "firefox", "headless": False, "disable_gpu": True},
        "solver": {"api_key": "abc", "poll_interval": 2},
    })

    config = load_configuration(path).data

    assert config.debug
    assert config.rotation.strategy == RotationStrategy.LEAST_USED
    assert config.rotation.preferred_platform == Platform.IOS
    assert config.transport.backoff_base == 0.5
    assert config.browser.engine == "firefox"
    assert config.solver.api_key == "abc"


def test_unknown_field_is_reported(tmp_path):
    path = write_json(tmp_path / "configuration.json", {"transport": {"retries": 2}})
    with pytest.raises(ValueError, match="Unknown field 'transport -> retries'"):
        load_configuration(path)


def test_out_of_range_value_is_reported(tmp_path):
    path = write_json(tmp_path / "configuration.json", {"transport": {"max_retries": 0}})
    with pytest.raises(ValueError, match="out of allowed range"):
        load_configuration(path)


def test_unsupported_engine(tmp_path):
    path = write_json(tmp_path / "configuration.json", {"browser": {"engine": "webkit"}})
    with pytest.raises(ValueError, match="browser -> engine"):
        load_configuration(path)


def test_invalid_json(tmp_path):
    path = tmp_path / "configuration.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid JSON"):
        load_configuration(str(path))


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_configuration(str(tmp_path / "missing.json"))


def test_authentication_requires_client_cookie(tmp_path):
    good = write_json(tmp_path / "authentication.json", {"suno": {"cookie": " __client=abc; a=b "}})
    assert load_authentication(good).data.suno.cookie == "__client=abc; a=b"

    bad = write_json(tmp_path / "bad.json", {"suno": {"cookie": "a=b"}})
    with pytest.raises(ValueError, match="__client"):
        load_authentication(bad)


def test_validator_errors_read_as_invalid_values(tmp_path):
    bad_cookie = write_json(tmp_path / "authentication.json", {"suno": {"cookie": "a=b"}})
    with pytest.raises(ValueError, match="Invalid value for 'suno -> cookie': cookie must contain"):
        load_authentication(bad_cookie)

    bad_proxy = write_json(tmp_path / "configuration.json", {"proxy": {"url": "proxy.local"}})
    with pytest.raises(ValueError, match="Invalid value for 'proxy -> url'"):
        load_configuration(bad_proxy)


def test_ghost_cursor_follows_environment(monkeypatch):
    monkeypatch.delenv("BROWSER_GHOST_CURSOR", raising=False)
    assert not GatewayConfig().browser.ghost_cursor

    monkeypatch.setenv("BROWSER_GHOST_CURSOR", "true")
    assert GatewayConfig().browser.ghost_cursor
    assert not BrowserConfig(ghost_cursor=False).ghost_cursor
