""" Rotation and blocking behaviour of IdentityPool """

import random

import pytest

from suno_gateway.fingerprints import (
    DEFAULT_PROFILE,
    FINGERPRINT_PROFILES,
    IdentityPool,
    Platform,
    RotationStrategy,
    build_identity_headers,
)


def test_catalog_ids_are_unique():
    ids = [p.id for p in FINGERPRINT_PROFILES]
    assert len(ids) == len(set(ids))
    assert DEFAULT_PROFILE.platform == Platform.ANDROID


def test_empty_catalog_is_rejected():
    with pytest.raises(ValueError, match="empty"):
        IdentityPool([])


def test_duplicate_ids_are_rejected(make_profile):
    with pytest.raises(ValueError, match="Duplicate"):
        IdentityPool([make_profile("a"), make_profile("a")])


def test_round_robin_visits_every_profile_before_repeating():
    pool = IdentityPool()
    seen = [pool.next().id for _ in range(len(FINGERPRINT_PROFILES))]
    assert sorted(seen) == sorted(p.id for p in FINGERPRINT_PROFILES)


def test_blocked_profile_is_never_returned(two_profile_pool):
    two_profile_pool.block("a")
    assert [two_profile_pool.next().id for _ in range(5)] == ["b"] * 5


def test_current_resets_when_every_profile_is_blocked(two_profile_pool):
    two_profile_pool.block("a")
    two_profile_pool.block("b")

    assert two_profile_pool.current().id == "a"
    assert two_profile_pool.stats().blocked_count == 0


def test_next_resets_when_every_profile_is_blocked(two_profile_pool):
    two_profile_pool.block("a")
    two_profile_pool.block("b")
    assert two_profile_pool.next().id in {"a", "b"}


def test_least_used_never_exceeds_minimum_usage(make_profile):
    pool = IdentityPool([make_profile(name) for name in "abcd"], strategy=RotationStrategy.LEAST_USED)
    pool.block("d")
    for _ in range(10):
        usage = pool.stats().usage_stats
        minimum = min(usage[name] for name in "abc")
        chosen = pool.next()
        assert usage[chosen.id] == minimum
    assert pool.stats().usage_stats["d"] == 0


def test_random_strategy_stays_within_available(make_profile):
    pool = IdentityPool([make_profile(name) for name in "abc"], strategy=RotationStrategy.RANDOM,
                        rng=random.Random(7))
    pool.block("b")
    assert {pool.next().id for _ in range(20)} <= {"a", "c"}


def test_platform_sticky_keeps_the_current_platform():
    pool = IdentityPool(strategy=RotationStrategy.PLATFORM_STICKY)
    platforms = {pool.next().platform for _ in range(4)}
    assert platforms == {Platform.ANDROID}


def test_preferred_platform_narrows_rotation():
    pool = IdentityPool(preferred_platform=Platform.IOS)
    assert {pool.next().platform for _ in range(6)} == {Platform.IOS}


def test_strategy_override_per_call(make_profile):
    pool = IdentityPool([make_profile(name) for name in "abc"])
    pool.next()
    assert pool.next(RotationStrategy.LEAST_USED).id == "a"


def test_stats_track_usage_and_blocks(two_profile_pool):
    two_profile_pool.next()
    two_profile_pool.next()
    two_profile_pool.block("a")

    stats = two_profile_pool.stats()
    assert stats.total_profiles == 2
    assert stats.blocked_count == 1
    assert sum(stats.usage_stats.values()) == 2


def test_unblock_and_reset(two_profile_pool):
    two_profile_pool.block("a")
    two_profile_pool.unblock("a")
    assert not two_profile_pool.is_blocked("a")

    two_profile_pool.block("b")
    two_profile_pool.reset_blocked()
    assert two_profile_pool.stats().blocked_count == 0


def test_blocking_unknown_profile_is_ignored(two_profile_pool):
    two_profile_pool.block("zz")
    assert two_profile_pool.stats().blocked_count == 0


def test_identity_headers_describe_one_device():
    profile = FINGERPRINT_PROFILES[4]
    headers = build_identity_headers(profile)

    assert headers["User-Agent"] == profile.user_agent
    assert headers["sec-ch-ua-platform"] == '"iOS"'
    assert headers["x-suno-client"].startswith("iOS")
