from datetime import datetime, timedelta, timezone

from price_cache.cache.freshness import age_seconds, is_fresh

NOW = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)


def test_fresh_within_ttl():
    assert is_fresh(NOW - timedelta(seconds=30), now=NOW) is True
    assert is_fresh(NOW - timedelta(seconds=59.999), now=NOW) is True


def test_boundary_is_stale():
    assert is_fresh(NOW - timedelta(seconds=60), now=NOW) is False
    assert is_fresh(NOW - timedelta(seconds=90), now=NOW) is False


def test_custom_ttl():
    assert is_fresh(NOW - timedelta(seconds=5), ttl_seconds=10, now=NOW) is True
    assert is_fresh(NOW - timedelta(seconds=10), ttl_seconds=10, now=NOW) is False


def test_naive_timestamp_treated_as_utc():
    naive = datetime(2024, 1, 1, 9, 59, 30)
    assert age_seconds(naive, now=NOW) == 30
    assert is_fresh(naive, now=NOW) is True
