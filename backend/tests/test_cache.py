from riskdesk.cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_cache_roundtrip_and_expiry() -> None:
    clock = FakeClock()
    cache: TTLCache[str] = TTLCache(60, clock=clock)

    cache.set("AAPL", "Technology")
    assert cache.get("AAPL") == "Technology"
    assert "AAPL" in cache

    clock.now = 60
    assert cache.get("AAPL") is None
    assert len(cache) == 0


def test_per_entry_ttl_override() -> None:
    clock = FakeClock()
    cache: TTLCache[str] = TTLCache(3600, clock=clock)

    cache.set("LONG", "Energy")
    cache.set("SHORT", "Other", ttl_seconds=300)
    clock.now = 301

    assert cache.get("SHORT") is None
    assert cache.get("LONG") == "Energy"


def test_pop_and_clear() -> None:
    cache: TTLCache[float] = TTLCache(60)
    cache.set("EURUSD", 1.08)
    cache.set("GBPUSD", 1.27)

    assert cache.pop("EURUSD") == 1.08
    assert cache.pop("EURUSD") is None
    cache.clear()
    assert len(cache) == 0
