import json

from gh_portfolio.data.cache import FileCache, MemoryCache, cache_key


class _Clock:
    def __init__(self, t=1000.0):
        self.t = t

    def __call__(self):
        return self.t


def test_cache_key_depends_on_auth_mode():
    assert cache_key("alice", authenticated=True) == "portfolio-alice-auth"
    assert cache_key("alice", authenticated=False) == "portfolio-alice-public"


def test_memory_cache_hit_and_expiry():
    clock = _Clock()
    cache = MemoryCache(clock=clock)
    cache.set("k", [{"name": "a"}])
    assert cache.get("k", 60) == [{"name": "a"}]
    clock.t += 61
    assert cache.get("k", 60) is None
    clock.t -= 61
    # expired entries are evicted on read
    assert cache.get("k", 60) is None


def test_non_positive_age_always_misses():
    cache = MemoryCache()
    cache.set("k", [])
    assert cache.get("k", 0) is None
    assert cache.get("k", -1) is None


def test_file_cache_round_trip_and_expiry(tmp_path):
    clock = _Clock()
    cache = FileCache(tmp_path / "c", clock=clock)
    cache.set("portfolio-alice-public", [{"name": "site"}])
    path = tmp_path / "c" / "portfolio-alice-public.json"
    stored = json.loads(path.read_text(encoding="utf-8"))
    assert stored == {"data": [{"name": "site"}], "timestamp": 1_000_000}

    assert cache.get("portfolio-alice-public", 10) == [{"name": "site"}]
    clock.t += 11
    assert cache.get("portfolio-alice-public", 10) is None
    assert not path.exists()


def test_file_cache_treats_corrupt_file_as_miss(tmp_path):
    (tmp_path / "bad.json").write_text("{not json", encoding="utf-8")
    assert FileCache(tmp_path).get("bad", 60) is None
    assert FileCache(tmp_path).get("missing", 60) is None


def test_file_cache_write_error_is_logged_not_raised(tmp_path, caplog):
    blocker = tmp_path / "occupied"
    blocker.write_text("a file, not a directory", encoding="utf-8")
    FileCache(blocker / "sub").set("k", [])
    assert "failed to write cache" in caplog.text


def test_clear(tmp_path):
    cache = FileCache(tmp_path)
    cache.set("a", [])
    cache.set("b", [])
    assert cache.clear() == 2
    assert cache.get("a", 60) is None
    assert FileCache(tmp_path / "absent").clear() == 0
    mem = MemoryCache()
    mem.set("a", [])
    assert mem.clear() == 1
