""" Shared fixtures: a scripted TLS engine and small builders for profiles and tokens """

import base64
import json
from typing import Callable, List

import pytest

from suno_gateway.configuration import TransportConfig
from suno_gateway.fingerprints import FingerprintProfile, IdentityPool, Platform
from suno_gateway.transport import EngineRequest, EngineResponse, Transport


class FakeEngine:
    """ TlsEngine double replaying queued responses; exceptions in the queue are raised """

    def __init__(self):
        self.requests: List[EngineRequest] = []
        self.responses: list = []
        self.closed = False

    def send(self, request: EngineRequest) -> EngineResponse:
        self.requests.append(request)
        item = self.responses.pop(0) if self.responses else EngineResponse(200, [], "{}")
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def transport(engine: FakeEngine) -> Transport:
    return Transport(config=TransportConfig(backoff_base=0), engine_factory=lambda: engine)


@pytest.fixture
def make_profile() -> Callable[..., FingerprintProfile]:
    def factory(profile_id: str, platform: Platform = Platform.ANDROID) -> FingerprintProfile:
        return FingerprintProfile(
            id=profile_id,
            name=profile_id.upper(),
            platform=platform,
            user_agent=f"agent/{profile_id}",
            ja3_fingerprint=f"ja3-{profile_id}",
            http2_fingerprint=f"h2-{profile_id}",
        )
    return factory


@pytest.fixture
def two_profile_pool(make_profile) -> IdentityPool:
    return IdentityPool([make_profile("a"), make_profile("b")])


@pytest.fixture
def make_jwt() -> Callable[[int], str]:
    """ Unsigned JWT whose payload carries the given exp (epoch seconds) """
    def factory(exp: int) -> str:
        def segment(data: dict) -> str:
            return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")
        return f"{segment({'alg': 'none'})}.{segment({'exp': exp, 'sid': 'sess_1'})}.signature"
    return factory
