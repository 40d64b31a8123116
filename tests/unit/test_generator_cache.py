"""Tests for the generator cache — single build per fingerprint, TTL, sweeping."""

from __future__ import annotations

import threading
import time

import pytest

from componentforge.core.errors import ArchiveError
from componentforge.core.generator_cache import GeneratorCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestGetOrBuild:
    def test_miss_then_hit(self, make_generator):
        cache = GeneratorCache()
        generator = make_generator()
        builds = []

        def build():
            builds.append(1)
            return generator

        assert cache.get_or_build("fp", build) is generator
        assert cache.get_or_build("fp", build) is generator
        assert len(builds) == 1
        assert "fp" in cache
        assert len(cache) == 1

    def test_distinct_fingerprints_build_separately(self, make_generator):
        cache = GeneratorCache()
        a = cache.get_or_build("a", make_generator)
        b = cache.get_or_build("b", make_generator)
        assert a is not b

    def test_concurrent_callers_share_one_build(self, make_generator):
        cache = GeneratorCache()
        release = threading.Event()
        builds = []
        results = []

        def build():
            builds.append(1)
            release.wait(5)
            return make_generator()

        def worker():
            results.append(cache.get_or_build("fp", build))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        time.sleep(0.1)
        release.set()
        for thread in threads:
            thread.join(5)

        assert len(builds) == 1
        assert len(results) == 8
        assert all(result is results[0] for result in results)

    def test_failed_build_is_not_cached(self, make_generator):
        cache = GeneratorCache()

        def failing():
            raise ArchiveError("boom")

        with pytest.raises(ArchiveError):
            cache.get_or_build("fp", failing)
        assert "fp" not in cache
        generator = make_generator()
        assert cache.get_or_build("fp", lambda: generator) is generator

    def test_waiter_retries_after_failed_build(self, make_generator):
        cache = GeneratorCache()
        started = threading.Event()
        release = threading.Event()
        generator = make_generator()
        errors = []
        results = []

        def failing():
            started.set()
            release.wait(5)
            raise ArchiveError("boom")

        def first():
            try:
                cache.get_or_build("fp", failing)
            except ArchiveError as exc:
                errors.append(exc)

        def second():
            results.append(cache.get_or_build("fp", lambda: generator))

        t1 = threading.Thread(target=first)
        t1.start()
        assert started.wait(5)
        t2 = threading.Thread(target=second)
        t2.start()
        time.sleep(0.05)
        release.set()
        t1.join(5)
        t2.join(5)

        assert len(errors) == 1
        assert results == [generator]

    def test_build_runs_without_holding_the_lock(self, make_generator):
        cache = GeneratorCache()
        inner = make_generator()

        def build():
            # Another fingerprint can be served while this build is running.
            return cache.get_or_build("other", lambda: inner)

        cache.get_or_build("fp", build)
        assert "other" in cache


class TestExpiry:
    def test_hit_slides_expiry(self, make_generator):
        clock = FakeClock()
        cache = GeneratorCache(validity=60.0, clock=clock)
        cache.get_or_build("fp", make_generator)
        assert cache.entry("fp").valid_until == 1060.0
        clock.now = 1050.0
        cache.get_or_build("fp", make_generator)
        assert cache.entry("fp").valid_until == 1110.0

    def test_expired_entry_rebuilt_without_sweep(self, make_generator):
        clock = FakeClock()
        cache = GeneratorCache(validity=60.0, clock=clock)
        builds = []

        def build():
            builds.append(1)
            return make_generator()

        first = cache.get_or_build("fp", build)
        clock.now = 1061.0
        second = cache.get_or_build("fp", build)
        assert len(builds) == 2
        assert second is not first
        assert cache.entry("fp").valid_until == 1121.0

    def test_sweep_removes_only_expired(self, make_generator):
        clock = FakeClock()
        cache = GeneratorCache(validity=60.0, clock=clock)
        cache.get_or_build("old", make_generator)
        clock.now = 1030.0
        cache.get_or_build("new", make_generator)
        clock.now = 1061.0
        assert cache.sweep() == 1
        assert "old" not in cache
        assert "new" in cache

    def test_entry_at_exact_expiry_survives(self, make_generator):
        clock = FakeClock()
        cache = GeneratorCache(validity=60.0, clock=clock)
        cache.get_or_build("fp", make_generator)
        clock.now = 1060.0
        assert cache.sweep() == 0

    def test_background_sweeper(self, make_generator):
        clock = FakeClock()
        cache = GeneratorCache(validity=1.0, sweep_interval=0.01, clock=clock)
        cache.get_or_build("fp", make_generator)
        clock.now = 2000.0
        with cache:
            deadline = time.monotonic() + 5
            while "fp" in cache and time.monotonic() < deadline:
                time.sleep(0.01)
        assert "fp" not in cache

    def test_start_stop_idempotent(self):
        cache = GeneratorCache(sweep_interval=0.01)
        cache.start()
        cache.start()
        cache.stop(timeout=5)
        cache.stop(timeout=5)
