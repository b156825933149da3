from concurrent.futures import ThreadPoolExecutor

from legend_dataman.util import deep_merge, unique
from legend_dataman.util.cache import Cache, clear_all


def test_unique():
    assert unique([3, 1, 3, 2, 1]) == [3, 1, 2]
    assert unique([]) == []


def test_deep_merge():
    base = {"a": {"x": 1, "y": 2}, "b": [1], "c": 0}
    update = {"a": {"y": 3, "z": 4}, "b": [2], "d": {"e": 5}}
    assert deep_merge(base, update) == {
        "a": {"x": 1, "y": 3, "z": 4},
        "b": [2],
        "c": 0,
        "d": {"e": 5},
    }
    # inputs are not modified
    assert base["a"] == {"x": 1, "y": 2}


def test_cache():
    calls = []
    c: Cache[int] = Cache("test")

    def compute():
        calls.append(1)
        return 42

    assert c.get_or_compute("k", compute) == 42
    assert c.get_or_compute("k", compute) == 42
    assert len(calls) == 1
    assert "k" in c and len(c) == 1

    c.invalidate("k")
    c.invalidate("missing")
    assert "k" not in c
    c.get_or_compute("k", compute)
    assert len(calls) == 2

    c.clear()
    assert len(c) == 0
    c.get_or_compute("k", compute)
    clear_all()
    assert len(c) == 0


def test_cache_threads():
    c: Cache[int] = Cache("threads")
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(
            pool.map(lambda i: c.get_or_compute(i % 4, lambda: i % 4), range(100))
        )
    assert results == [i % 4 for i in range(100)]
    assert len(c) == 4
