"""Tests for the TTL response cache and request fingerprints.

Antagon Inc. | CAGE: 17E75
"""

from ideaverdict.cache import CacheEntry, ResponseCache, fingerprint, normalize_field


class TestFingerprint:
    """Tests for cache key derivation."""

    def test_stable_and_fixed_size(self):
        """Test that the same content always yields the same key."""
        a = fingerprint("eval", "A problem", "A solution")
        b = fingerprint("eval", "A problem", "A solution")

        assert a == b
        assert a.startswith("eval_")
        assert len(a) == len("eval_") + 64

    def test_normalizes_case_and_whitespace(self):
        """Test that cosmetic differences map to one key."""
        assert fingerprint("s", "  My   Idea\n") == fingerprint("s", "my idea")

    def test_namespaces_do_not_collide(self):
        assert fingerprint("eval", "x") != fingerprint("struct", "x")

    def test_extra_discriminates(self):
        """Test that the extra discriminator changes the key."""
        assert fingerprint("chat", "why?", extra=("build",)) != fingerprint(
            "chat", "why?", extra=("kill",)
        )

    def test_field_boundaries_matter(self):
        """Test that moving text between fields changes the key."""
        assert fingerprint("eval", "ab", "c") != fingerprint("eval", "a", "bc")

    def test_content_is_not_reversible(self):
        key = fingerprint("eval", "secret startup plan")
        assert "secret" not in key

    def test_normalize_field_caps_length(self):
        assert len(normalize_field("x" * 2000)) == 500
        assert normalize_field(None) == ""


class TestResponseCache:
    """Tests for ResponseCache."""

    def test_round_trip_then_expiry(self, clock):
        """A fresh put is readable; after the TTL it is absent."""
        cache = ResponseCache(ttl=300, clock=clock)

        cache.put("fp", '{"ok": true}')
        assert cache.get("fp") == '{"ok": true}'

        clock.advance(300.5)
        assert cache.get("fp") is None
        assert len(cache) == 0

    def test_fresh_just_before_ttl(self, clock):
        cache = ResponseCache(ttl=300, clock=clock)

        cache.put("fp", "payload")
        clock.advance(299.9)

        assert cache.get("fp") == "payload"

    def test_put_overwrites(self, clock):
        """Test that a put replaces the payload and refreshes its age."""
        cache = ResponseCache(ttl=10, clock=clock)

        cache.put("fp", "old")
        clock.advance(8)
        cache.put("fp", "new")
        clock.advance(8)

        assert cache.get("fp") == "new"

    def test_evicts_expired_first(self, clock):
        """Test that expired entries go before live ones when over capacity."""
        cache = ResponseCache(ttl=10, max_entries=3, clock=clock)

        cache.put("stale", "s")
        clock.advance(11)
        cache.put("a", "1")
        cache.put("b", "2")
        cache.put("c", "3")

        assert cache.get("stale") is None
        assert cache.get("a") == "1"
        assert cache.get("b") == "2"
        assert cache.get("c") == "3"

    def test_evicts_oldest_when_all_live(self, clock):
        """Test that the oldest live entry is dropped to respect the cap."""
        cache = ResponseCache(ttl=100, max_entries=2, clock=clock)

        cache.put("a", "1")
        clock.advance(1)
        cache.put("b", "2")
        clock.advance(1)
        cache.put("c", "3")

        assert len(cache) == 2
        assert cache.get("a") is None
        assert cache.get("c") == "3"

    def test_stats_count_hits_and_misses(self, clock):
        cache = ResponseCache(ttl=60, clock=clock)

        cache.get("missing")
        cache.put("k", "v")
        cache.get("k")
        cache.get("k")

        stats = cache.get_stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["entries"] == 1

    def test_injected_store(self, clock):
        store = {"k": CacheEntry(payload="v", stored_at=995.0)}
        cache = ResponseCache(ttl=10, clock=clock, store=store)

        assert cache.get("k") == "v"

    def test_clear(self, clock):
        cache = ResponseCache(clock=clock)
        cache.put("k", "v")
        cache.clear()
        assert cache.get("k") is None
