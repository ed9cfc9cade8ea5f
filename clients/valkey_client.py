"""
Valkey (Redis-compatible) client for scheduler run-locks and short-lived caches.

Simple wrapper around redis-py. Connection URL from Vault.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import logging

import redis

logger = logging.getLogger(__name__)

# Delete the key only while it still holds our token, so a run that outlived
# its TTL can never release a lock taken over by the next run.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        if client.acquire_lock("lock:recurrence", token, ttl_seconds=3600):
            try:
                ...
            finally:
                client.release_lock("lock:recurrence", token)
    """

    def __init__(self, url: str):
        """
        Initialize Valkey connection.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)

        Raises:
            redis.ConnectionError: If connection fails
        """
        self._client = redis.from_url(url, decode_responses=True)
        # Verify connectivity immediately (fail-fast)
        self._client.ping()
        self._release = self._client.register_script(_RELEASE_SCRIPT)
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """
        Health check.

        Returns True if Valkey responds.
        Raises redis.ConnectionError if unreachable.
        """
        self._client.ping()
        return True

    def get(self, key: str) -> str | None:
        """Get value by key. None if the key doesn't exist."""
        return self._client.get(key)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Set a value that expires after ttl_seconds."""
        self._client.set(key, value, ex=ttl_seconds)

    def acquire_lock(self, key: str, token: str, ttl_seconds: int) -> bool:
        """
        Take an exclusive lock.

        Args:
            key: Lock key
            token: Unique value identifying the holder
            ttl_seconds: Lock expiry, so a crashed holder never blocks forever

        Returns:
            True if the lock was acquired, False if someone else holds it.
        """
        return bool(self._client.set(key, token, nx=True, ex=ttl_seconds))

    def release_lock(self, key: str, token: str) -> bool:
        """
        Release a lock held with token.

        Returns True if released, False if the lock expired or belongs to
        another holder.
        """
        return bool(self._release(keys=[key], args=[token]))

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyClient closed")
