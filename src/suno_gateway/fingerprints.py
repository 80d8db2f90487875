#!/usr/bin/env python3
"""
Device fingerprint catalog and rotation policy

Each profile bundles everything a server can use to recognise a client: the user agent,
client hint headers, the JA3 string describing the TLS ClientHello, the Akamai-style HTTP/2
settings fingerprint and the Suno app headers. All parts of a profile must describe the same
device, otherwise the mismatch itself is a detection signal.

IdentityPool keeps the only mutable state (cursor, usage counts, blocked ids) and serializes
access with a lock so a shared Transport can be used from many threads.
"""

import random
import threading
import time
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Final, Iterable, List, Optional, Set

from pydantic import Field

from .logging_utils import get_logger
from .pydantics import FrozenModel

# Public API - functions and classes that external scripts should use
__all__ = [
    'Platform',
    'RotationStrategy',
    'FingerprintProfile',
    'PoolStats',
    'IdentityPool',
    'FINGERPRINT_PROFILES',
    'DEFAULT_PROFILE',
    'build_identity_headers'
]

logger = get_logger(__name__)


class Platform(str, Enum):
    """ Device platform a profile imitates """
    ANDROID = "android"
    IOS = "ios"
    DESKTOP = "desktop"


class RotationStrategy(str, Enum):
    """ Policy used by IdentityPool.next() """
    ROUND_ROBIN = "round-robin"
    RANDOM = "random"
    LEAST_USED = "least-used"
    PLATFORM_STICKY = "platform-sticky"


class FingerprintProfile(FrozenModel):
    """ Immutable device identity """
    id: str = Field(min_length=1)
    name: str = ""
    platform: Platform
    user_agent: str
    client_hints: Dict[str, str] = Field(default_factory=dict)
    ja3_fingerprint: str
    http2_fingerprint: str
    product_headers: Dict[str, str] = Field(default_factory=dict)


class PoolStats(FrozenModel):
    """ Read-only snapshot of the rotation state """
    total_profiles: int
    blocked_count: int
    usage_stats: Dict[str, int]
    last_rotation: datetime


_CHROME_130_JA3: Final[str] = (
    "771,4865-4866-4867-49195-49199-49196-49200-52393-52392-49171-49172-156-157-47-53,"
    "0-23-65281-10-11-35-16-5-13-18-51-45-43-27-17513,29-23-24,0"
)
_CHROME_130_H2: Final[str] = "1:65536;2:0;4:6291456;6:262144|15663105|0|m,a,s,p"
_SAFARI_17_JA3: Final[str] = (
    "771,4865-4866-4867-49196-49195-52393-49200-49199-52392-49162-49161-49172-49171-157-156-53-47-49160-49170-10,"
    "65281-0-23-13-5-18-16-11-51-45-43-10-21,29-23-24-25,0"
)
_SAFARI_17_H2: Final[str] = "1:65536;3:100;4:2097152|10420225|0|m,s,a,p"

_ANDROID_HEADERS: Final[Dict[str, str]] = {
    "x-suno-client": "Android prerelease-4nt180t 1.0.42",
    "X-Requested-With": "com.suno.android",
    "Affiliate-Id": "undefined",
}
_IOS_HEADERS: Final[Dict[str, str]] = {
    "x-suno-client": "iOS 1.0.42",
    "X-Requested-With": "com.suno.ios",
    "Affiliate-Id": "undefined",
}


def _android_chrome(profile_id: str, name: str, model: str, build: str, brand: str,
                    webview: bool = False) -> FingerprintProfile:
    """ Chrome 130 on Android 14, only the model and build differ between devices """
    version_suffix = "Version/4.0 " if webview else ""
    return FingerprintProfile(
        id=profile_id,
        name=name,
        platform=Platform.ANDROID,
        user_agent=(
            f"Mozilla/5.0 (Linux; Android 14; {model} Build/{build}) AppleWebKit/537.36 "
            f"(KHTML, like Gecko) {version_suffix}Chrome/130.0.6723.86 Mobile Safari/537.36"
        ),
        client_hints={
            "sec-ch-ua": f'"Chromium";v="130", "{brand}";v="130", "Not?A_Brand";v="99"',
            "sec-ch-ua-mobile": "?1",
            "sec-ch-ua-platform": '"Android"',
            "sec-ch-ua-platform-version": '"14.0.0"',
            "sec-ch-ua-full-version": '"130.0.6723.86"',
            "sec-ch-ua-full-version-list": (
                f'"Chromium";v="130.0.6723.86", "{brand}";v="130.0.6723.86", "Not?A_Brand";v="99.0.0.0"'
            ),
            "sec-ch-ua-model": f'"{model}"',
            "sec-ch-ua-arch": '""',
            "sec-ch-ua-bitness": '""',
        },
        ja3_fingerprint=_CHROME_130_JA3,
        http2_fingerprint=_CHROME_130_H2,
        product_headers=dict(_ANDROID_HEADERS),
    )


def _iphone_safari(profile_id: str, name: str, ios_version: str, model: str) -> FingerprintProfile:
    """ Mobile Safari 17 on an iPhone """
    full_version = ios_version.replace("_", ".")
    platform_version = full_version if full_version.count(".") == 2 else f"{full_version}.0"
    return FingerprintProfile(
        id=profile_id,
        name=name,
        platform=Platform.IOS,
        user_agent=(
            f"Mozilla/5.0 (iPhone; CPU iPhone OS {ios_version} like Mac OS X) AppleWebKit/605.1.15 "
            f"(KHTML, like Gecko) Version/{full_version} Mobile/15E148 Safari/604.1"
        ),
        client_hints={
            "sec-ch-ua": '"Not A(Brand";v="99", "Safari";v="17"',
            "sec-ch-ua-mobile": "?1",
            "sec-ch-ua-platform": '"iOS"',
            "sec-ch-ua-platform-version": f'"{platform_version}"',
            "sec-ch-ua-full-version": f'"{full_version}"',
            "sec-ch-ua-model": f'"{model}"',
            "sec-ch-ua-arch": '""',
            "sec-ch-ua-bitness": '""',
        },
        ja3_fingerprint=_SAFARI_17_JA3,
        http2_fingerprint=_SAFARI_17_H2,
        product_headers=dict(_IOS_HEADERS),
    )


FINGERPRINT_PROFILES: Final[List[FingerprintProfile]] = [
    _android_chrome("pixel8-chrome130", "Google Pixel 8 - Chrome 130",
                    "Pixel 8", "UQ1A.240105.004", "Android WebView", webview=True),
    _android_chrome("galaxy-s24-chrome130", "Samsung Galaxy S24 Ultra - Chrome 130",
                    "SM-S928B", "UP1A.231005.007", "Google Chrome"),
    _android_chrome("oneplus12-chrome130", "OnePlus 12 - Chrome 130",
                    "CPH2573", "UKQ1.230924.001", "Google Chrome"),
    _android_chrome("xiaomi14-chrome130", "Xiaomi 14 Pro - Chrome 130",
                    "23116PN5BC", "UKQ1.231003.002", "Google Chrome"),
    _iphone_safari("iphone15-safari17", "iPhone 15 Pro - Safari 17", "17_2", "iPhone15,3"),
    _iphone_safari("iphone14-safari17", "iPhone 14 Pro Max - Safari 17", "17_1_2", "iPhone14,8"),
]

# Most compatible profile, also used for the browser context during captcha solving
DEFAULT_PROFILE: Final[FingerprintProfile] = FINGERPRINT_PROFILES[0]


def build_identity_headers(profile: FingerprintProfile) -> Dict[str, str]:
    """ Headers that come from the identity itself: user agent, client hints, app headers """
    return {
        "User-Agent": profile.user_agent,
        **profile.client_hints,
        **profile.product_headers,
    }


class IdentityPool:
    """ Catalog of fingerprint profiles with rotation and blocking """

    def __init__(
        self,
        profiles: Optional[Iterable[FingerprintProfile]] = None,
        strategy: RotationStrategy = RotationStrategy.ROUND_ROBIN,
        preferred_platform: Optional[Platform] = None,
        default_profile: Optional[FingerprintProfile] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time
    ):
        self._profiles: List[FingerprintProfile] = list(profiles) if profiles is not None \
            else list(FINGERPRINT_PROFILES)
        if not self._profiles:
            raise ValueError("Fingerprint catalog is empty; at least one profile is required")

        seen: Set[str] = set()
        for profile in self._profiles:
            if profile.id in seen:
                raise ValueError(f"Duplicate fingerprint profile id '{profile.id}'")
            seen.add(profile.id)

        if default_profile is None:
            default_profile = DEFAULT_PROFILE if DEFAULT_PROFILE.id in seen else self._profiles[0]
        self._default = default_profile

        self._strategy = RotationStrategy(strategy)
        self._preferred_platform = Platform(preferred_platform) if preferred_platform else None
        self._rng = rng or random.Random()
        self._clock = clock
        self._lock = threading.RLock()

        self._current_index = 0
        self._usage_count: Dict[str, int] = {p.id: 0 for p in self._profiles}
        self._blocked: Set[str] = set()
        self._last_rotation = clock()

    @property
    def profiles(self) -> List[FingerprintProfile]:
        """ Copy of the catalog in its configured order """
        return list(self._profiles)

    @property
    def strategy(self) -> RotationStrategy:
        return self._strategy

    @property
    def default_profile(self) -> FingerprintProfile:
        return self._default

    def set_strategy(self, strategy: RotationStrategy) -> None:
        """ Change the rotation strategy used by next() """
        with self._lock:
            self._strategy = RotationStrategy(strategy)

    def get(self, profile_id: str) -> Optional[FingerprintProfile]:
        """ Look up a profile by id """
        for profile in self._profiles:
            if profile.id == profile_id:
                return profile
        return None

    def current(self) -> FingerprintProfile:
        """ Active profile; never fails, resets the blocked set if everything is blocked """
        with self._lock:
            available = self._available()
            if not available:
                logger.warning("All fingerprint profiles blocked, resetting and using %s", self._default.id)
                self._blocked.clear()
                return self._default
            return available[self._current_index % len(available)]

    def next(self, strategy: Optional[RotationStrategy] = None) -> FingerprintProfile:
        """ Advance according to the strategy and record usage of the chosen profile """
        with self._lock:
            available = self._available()
            if not available:
                logger.warning("All fingerprint profiles blocked, resetting blocked set")
                self._blocked.clear()
                available = self._available()

            strategy = RotationStrategy(strategy) if strategy else self._strategy
            if strategy == RotationStrategy.RANDOM:
                profile = self._rng.choice(available)
            elif strategy == RotationStrategy.LEAST_USED:
                profile = self._least_used(available)
            elif strategy == RotationStrategy.PLATFORM_STICKY:
                profile = self._platform_sticky(available)
            else:
                self._current_index += 1
                profile = available[self._current_index % len(available)]

            self._usage_count[profile.id] = self._usage_count.get(profile.id, 0) + 1
            self._last_rotation = self._clock()
            return profile

    def block(self, profile_id: str) -> None:
        """ Exclude a profile from selection, typically after an anti-bot challenge """
        with self._lock:
            if profile_id in self._usage_count:
                self._blocked.add(profile_id)
                logger.info("Blocked fingerprint profile %s", profile_id)

    def unblock(self, profile_id: str) -> None:
        with self._lock:
            self._blocked.discard(profile_id)

    def reset_blocked(self) -> None:
        with self._lock:
            self._blocked.clear()

    def is_blocked(self, profile_id: str) -> bool:
        with self._lock:
            return profile_id in self._blocked

    def stats(self) -> PoolStats:
        """ Snapshot of rotation statistics """
        with self._lock:
            return PoolStats(
                total_profiles=len(self._profiles),
                blocked_count=len(self._blocked),
                usage_stats=dict(self._usage_count),
                last_rotation=datetime.fromtimestamp(self._last_rotation),
            )

    def _available(self) -> List[FingerprintProfile]:
        """ Catalog minus blocked, narrowed to the preferred platform when that leaves candidates """
        available = [p for p in self._profiles if p.id not in self._blocked]
        if self._preferred_platform:
            platform_filtered = [p for p in available if p.platform == self._preferred_platform]
            if platform_filtered:
                available = platform_filtered
        return available

    def _least_used(self, profiles: List[FingerprintProfile]) -> FingerprintProfile:
        # min() keeps the first of equal keys, so ties resolve in catalog order
        return min(profiles, key=lambda p: self._usage_count.get(p.id, 0))

    def _platform_sticky(self, profiles: List[FingerprintProfile]) -> FingerprintProfile:
        current = profiles[self._current_index % len(profiles)]
        same_platform = [p for p in profiles if p.platform == current.platform]
        self._current_index += 1
        if same_platform:
            return same_platform[self._current_index % len(same_platform)]
        return profiles[self._current_index % len(profiles)]
