"""Tests for ValkeyClient - scheduler run-locks and identity cache."""

from unittest.mock import MagicMock, patch

import pytest

from clients.valkey_client import ValkeyClient


@pytest.fixture
def redis_mock():
    """Patched redis.from_url; yields the fake connection."""
    with patch("clients.valkey_client.redis.from_url") as from_url:
        connection = MagicMock()
        from_url.return_value = connection
        yield connection


@pytest.fixture
def valkey(redis_mock):
    return ValkeyClient("redis://localhost:6379/0")


class TestValkeyClientInit:
    """Connection initialization."""

    def test_pings_on_connect(self, redis_mock):
        """Constructor fails fast when Valkey is unreachable."""
        redis_mock.ping.side_effect = ConnectionError("refused")

        with pytest.raises(ConnectionError):
            ValkeyClient("redis://localhost:6379/0")

    def test_ping(self, valkey):
        assert valkey.ping() is True


class TestBasicOperations:
    """Get/set operations."""

    def test_set_passes_ttl(self, valkey, redis_mock):
        valkey.set("identity:abc", "{}", ttl_seconds=60)
        redis_mock.set.assert_called_once_with("identity:abc", "{}", ex=60)

    def test_get_missing_returns_none(self, valkey, redis_mock):
        """Get on non-existent key returns None (not error)."""
        redis_mock.get.return_value = None
        assert valkey.get("identity:missing") is None


class TestLocks:
    """Exclusive run-lock used by the recurrence scheduler."""

    def test_acquire_uses_set_nx_with_expiry(self, valkey, redis_mock):
        redis_mock.set.return_value = True

        assert valkey.acquire_lock("lock:recurrence", "token-1", ttl_seconds=3600) is True
        redis_mock.set.assert_called_once_with("lock:recurrence", "token-1", nx=True, ex=3600)

    def test_acquire_fails_when_held(self, valkey, redis_mock):
        redis_mock.set.return_value = None

        assert valkey.acquire_lock("lock:recurrence", "token-2", ttl_seconds=3600) is False

    def test_release_only_with_matching_token(self, valkey, redis_mock):
        release_script = redis_mock.register_script.return_value
        release_script.return_value = 0

        assert valkey.release_lock("lock:recurrence", "stale-token") is False
        release_script.assert_called_once_with(keys=["lock:recurrence"], args=["stale-token"])

    def test_release_held_lock(self, valkey, redis_mock):
        redis_mock.register_script.return_value.return_value = 1

        assert valkey.release_lock("lock:recurrence", "token-1") is True
