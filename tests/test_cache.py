"""
Tests for cache.py: content addressing, TTL expiry, eviction and
statistics.
"""

from __future__ import annotations

import threading

import pytest

from owasp_scanner.cache import CacheStatistics, FileAnalysisCache, compute_hash, make_key
from owasp_scanner.models import AnalysisResult


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _result(name: str = "A.java") -> AnalysisResult:
    return AnalysisResult(file_path=name, language="java", ruleset_version="2021")


class TestKeys:
    def test_hash_is_sha256(self):
        assert compute_hash(b"abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"

    def test_key_includes_version(self):
        assert make_key("h", "2021") != make_key("h", "2025")


class TestFileAnalysisCache:
    def test_invalid_max_size(self):
        with pytest.raises(ValueError):
            FileAnalysisCache(max_size=0)

    def test_put_then_get_by_content(self):
        cache = FileAnalysisCache()
        result = _result()
        cache.put_by_content(b"class A {}", "2021", result)
        assert cache.get_by_content(b"class A {}", "2021") is result
        assert len(cache) == 1

    def test_version_is_part_of_key(self):
        cache = FileAnalysisCache()
        cache.put_by_content(b"class A {}", "2021", _result())
        assert cache.get_by_content(b"class A {}", "2017") is None

    def test_changed_content_misses(self):
        cache = FileAnalysisCache()
        cache.put_by_content(b"class A {}", "2021", _result())
        assert cache.get_by_content(b"class A { int x; }", "2021") is None

    def test_same_bytes_at_different_paths_hit(self, tmp_path):
        first = tmp_path / "A.java"
        copy = tmp_path / "nested" / "Copy.java"
        copy.parent.mkdir()
        first.write_text("class A {}")
        copy.write_text("class A {}")

        cache = FileAnalysisCache()
        result = _result()
        cache.put(first, "2021", result)
        assert cache.get(copy, "2021") is result

    def test_unreadable_file_is_a_miss(self, tmp_path):
        cache = FileAnalysisCache()
        assert cache.get(tmp_path / "missing.java", "2021") is None
        assert cache.statistics().misses == 1

    def test_put_unreadable_file_is_ignored(self, tmp_path):
        cache = FileAnalysisCache()
        cache.put(tmp_path / "missing.java", "2021", _result())
        assert len(cache) == 0

    def test_ttl_expiry(self):
        clock = FakeClock()
        cache = FileAnalysisCache(ttl_seconds=10, clock=clock)
        cache.put_by_content(b"x", "2021", _result())

        clock.now = 10.0
        assert cache.get_by_content(b"x", "2021") is not None

        clock.now = 10.5
        assert cache.get_by_content(b"x", "2021") is None
        assert len(cache) == 0
        stats = cache.statistics()
        assert stats.hits == 1
        assert stats.misses == 1

        assert cache.get_by_content(b"x", "2021") is None
        assert cache.statistics().misses == 2

    def test_clear_expired(self):
        clock = FakeClock()
        cache = FileAnalysisCache(ttl_seconds=5, clock=clock)
        cache.put_by_content(b"old", "2021", _result())
        clock.now = 4.0
        cache.put_by_content(b"new", "2021", _result())
        clock.now = 6.0
        assert cache.clear_expired() == 1
        assert cache.get_by_content(b"new", "2021") is not None

    def test_eviction_keeps_size_bounded(self):
        clock = FakeClock()
        cache = FileAnalysisCache(max_size=20, clock=clock)
        for i in range(50):
            clock.now = float(i)
            cache.put_by_content(f"file {i}".encode(), "2021", _result())
            assert len(cache) <= 20

        stats = cache.statistics()
        assert stats.evictions > 0
        assert cache.get_by_content(b"file 49", "2021") is not None
        assert cache.get_by_content(b"file 0", "2021") is None

    def test_eviction_removes_oldest_tenth(self):
        clock = FakeClock()
        cache = FileAnalysisCache(max_size=10, clock=clock)
        for i in range(10):
            clock.now = float(i)
            cache.put_by_content(bytes([i]), "2021", _result())

        clock.now = 100.0
        cache.put_by_content(b"newcomer", "2021", _result())

        assert len(cache) == 10
        assert cache.statistics().evictions == 1
        assert cache.get_by_content(bytes([0]), "2021") is None
        assert cache.get_by_content(bytes([1]), "2021") is not None

    def test_overwrite_existing_key_does_not_evict(self):
        cache = FileAnalysisCache(max_size=1)
        cache.put_by_content(b"a", "2021", _result("first"))
        replacement = _result("second")
        cache.put_by_content(b"a", "2021", replacement)
        assert cache.statistics().evictions == 0
        assert cache.get_by_content(b"a", "2021") is replacement

    def test_statistics_and_clear(self):
        cache = FileAnalysisCache()
        cache.put_by_content(b"a", "2021", _result())
        cache.get_by_content(b"a", "2021")
        cache.get_by_content(b"a", "2021")
        cache.get_by_content(b"b", "2021")

        stats = cache.statistics()
        assert stats == CacheStatistics(size=1, hits=2, misses=1, evictions=0)
        assert stats.total_requests == 3
        assert stats.hit_rate == pytest.approx(2 / 3)
        assert stats.to_dict()["hit_rate"] == pytest.approx(0.6667)

        cache.clear()
        assert cache.statistics() == CacheStatistics(size=0, hits=0, misses=0, evictions=0)

    def test_empty_hit_rate(self):
        assert FileAnalysisCache().statistics().hit_rate == 0.0

    def test_concurrent_access(self):
        cache = FileAnalysisCache(max_size=50)
        errors = []

        def worker(n: int):
            try:
                for i in range(200):
                    data = f"{n}-{i % 60}".encode()
                    if cache.get_by_content(data, "2021") is None:
                        cache.put_by_content(data, "2021", _result())
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(cache) <= 50
