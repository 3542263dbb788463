"""Unit tests for RetentionPolicyCache."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from retention.policy_cache import RetentionPolicyCache
from retention.schemas import RetentionPolicy


class MonotonicClock:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


def _policy(policy_id, active=True):
    return RetentionPolicy(
        id=policy_id,
        entity_name=f"entity_{policy_id}",
        action="hard-delete",
        retention_period_days=30,
        active=active,
    )


class CountingLoader:
    def __init__(self, policies):
        self.policies = policies
        self.calls = 0
        self.error = None

    def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.policies)


class TestCacheFreshness:
    """Test time-boxed caching."""

    def test_fresh_cache_does_not_reload(self):
        clock = MonotonicClock()
        loader = CountingLoader([_policy(1)])
        cache = RetentionPolicyCache(loader, refresh_interval_seconds=60, clock=clock)

        cache.list_active_policies()
        clock.value += 59
        cache.list_active_policies()

        assert loader.calls == 1

    def test_stale_cache_reloads(self):
        clock = MonotonicClock()
        loader = CountingLoader([_policy(1)])
        cache = RetentionPolicyCache(loader, refresh_interval_seconds=60, clock=clock)

        cache.list_active_policies()
        clock.value += 60
        cache.list_active_policies()

        assert loader.calls == 2

    def test_force_refresh_reloads(self):
        loader = CountingLoader([_policy(1)])
        cache = RetentionPolicyCache(loader, clock=MonotonicClock())

        cache.list_active_policies()
        cache.list_active_policies(force_refresh=True)

        assert loader.calls == 2

    def test_invalidate_marks_stale(self):
        loader = CountingLoader([_policy(1)])
        cache = RetentionPolicyCache(loader, clock=MonotonicClock())

        cache.list_active_policies()
        cache.invalidate()
        cache.list_active_policies()

        assert loader.calls == 2

    def test_inactive_policies_filtered(self):
        loader = CountingLoader([_policy(1), _policy(2, active=False)])
        cache = RetentionPolicyCache(loader, clock=MonotonicClock())

        assert [p.id for p in cache.list_active_policies()] == [1]

    def test_get_policy_by_id_matches_string_ids(self):
        loader = CountingLoader([_policy(1), _policy(2, active=False)])
        cache = RetentionPolicyCache(loader, clock=MonotonicClock())

        assert cache.get_policy_by_id("2").id == 2
        assert cache.get_policy_by_id(99) is None

    def test_loader_must_be_callable(self):
        with pytest.raises(ValueError):
            RetentionPolicyCache(loader=None)


class TestCacheFailures:
    """Test refresh failure handling."""

    def test_failed_refresh_keeps_previous_contents(self):
        clock = MonotonicClock()
        loader = CountingLoader([_policy(1)])
        cache = RetentionPolicyCache(loader, refresh_interval_seconds=60, clock=clock)
        cache.list_active_policies()

        loader.error = RuntimeError("config store down")
        clock.value += 120
        with pytest.raises(RuntimeError):
            cache.list_active_policies()

        loader.error = None
        loader.policies = [_policy(1), _policy(3)]
        assert [p.id for p in cache.list_active_policies()] == [1, 3]

    def test_failed_first_load_raises(self):
        loader = CountingLoader([])
        loader.error = RuntimeError("config store down")
        cache = RetentionPolicyCache(loader, clock=MonotonicClock())

        with pytest.raises(RuntimeError, match="config store down"):
            cache.list_active_policies()


class TestConcurrentRefresh:
    """Test that concurrent refreshes collapse to one load."""

    def test_single_inflight_load(self):
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow_loader():
            calls.append(1)
            started.set()
            release.wait(timeout=5)
            return [_policy(1)]

        cache = RetentionPolicyCache(slow_loader, clock=MonotonicClock())

        with ThreadPoolExecutor(max_workers=4) as pool:
            first = pool.submit(cache.list_active_policies)
            assert started.wait(timeout=5)
            others = [pool.submit(cache.list_active_policies) for _ in range(3)]
            # Give the waiters time to join the in-flight load
            time.sleep(0.1)
            release.set()
            results = [first.result(timeout=5)] + [f.result(timeout=5) for f in others]

        assert len(calls) == 1
        assert all([p.id for p in result] == [1] for result in results)
