"""
Redis-backed facet index store.

Redis is ONLY a derived index, never the source of truth; the relational
store is authoritative and the index can always be rebuilt from it.

Key layout (see facet_catalog.keys):
- facet:{facet}:{value}   set of product ids having that facet value
- products:all            every product id
- products:available      ids of products flagged available
- tmp:{uuid}              scratch unions/intersections (expire on their own)

Missing keys read as empty sets. Any redis failure is raised as
IndexStoreError; nothing here retries.
"""

import uuid
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Sequence, Set

import redis

from facet_catalog.config import CatalogConfig
from facet_catalog.errors import IndexStoreError
from facet_catalog.logger import get_logger

logger = get_logger("index_store")


def _chunks(items: Sequence[str], size: int) -> Iterator[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class FacetIndexStore:
    """
    Thin adapter over a redis client exposing the set operations the catalog needs.

    Safe to share between threads: it keeps no per-call state. Scratch keys
    live in a ScratchSpace owned by the caller (see ``scratch()``).
    """

    def __init__(
        self,
        client: redis.Redis,
        scratch_prefix: str = "tmp",
        scratch_ttl_seconds: int = 3600,
        batch_size: int = 1000,
    ):
        """
        Args:
            client: redis client created with decode_responses=True
            scratch_prefix: key prefix for temporary set results
            scratch_ttl_seconds: lifetime of scratch keys if never cleaned up
            batch_size: max members/keys sent in a single command
        """
        self.client = client
        self.scratch_prefix = scratch_prefix
        self.scratch_ttl_seconds = scratch_ttl_seconds
        self.batch_size = batch_size

    @classmethod
    def from_config(cls, config: CatalogConfig) -> "FacetIndexStore":
        """
        Build a store from configuration.

        Connection priority:
        1. redis_url (REDIS_URL, supports rediss:// TLS)
        2. redis_host + redis_port + redis_db
        """
        if config.redis_url:
            client = redis.from_url(
                config.redis_url,
                decode_responses=True,
                socket_connect_timeout=config.redis_socket_timeout,
                socket_timeout=config.redis_socket_timeout,
            )
        else:
            client = redis.Redis(
                host=config.redis_host,
                port=config.redis_port,
                db=config.redis_db,
                decode_responses=True,
                socket_connect_timeout=config.redis_socket_timeout,
                socket_timeout=config.redis_socket_timeout,
            )
        return cls(
            client,
            scratch_prefix=config.scratch_prefix,
            scratch_ttl_seconds=config.scratch_ttl_seconds,
        )

    @contextmanager
    def _guard(self, operation: str):
        try:
            yield
        except redis.RedisError as e:
            logger.error("Index store %s failed: %s", operation, e)
            raise IndexStoreError(f"Index store {operation} failed: {e}") from e

    def ping(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False

    # -----------------------------------------------------------------------
    # Key management
    # -----------------------------------------------------------------------

    def keys(self, pattern: str) -> List[str]:
        """All keys matching a glob pattern (SCAN based, does not block the server)."""
        with self._guard("keys"):
            return list(self.client.scan_iter(match=pattern, count=500))

    def delete(self, *keys: str) -> int:
        """Delete keys; returns how many existed."""
        if not keys:
            return 0
        deleted = 0
        with self._guard("delete"):
            for chunk in _chunks(list(keys), self.batch_size):
                deleted += self.client.delete(*chunk)
        return deleted

    def delete_matching(self, pattern: str) -> int:
        """Glob-delete every key under a pattern."""
        return self.delete(*self.keys(pattern))

    def exists(self, key: str) -> bool:
        with self._guard("exists"):
            return bool(self.client.exists(key))

    def expire(self, key: str, seconds: int) -> bool:
        with self._guard("expire"):
            return bool(self.client.expire(key, seconds))

    # -----------------------------------------------------------------------
    # Set writes
    # -----------------------------------------------------------------------

    def add(self, key: str, members: Iterable[str]) -> int:
        """SADD members to a set in batches; returns how many were new."""
        members = [str(m) for m in members]
        added = 0
        with self._guard("add"):
            for chunk in _chunks(members, self.batch_size):
                added += self.client.sadd(key, *chunk)
        return added

    def add_many(self, sets: Dict[str, Iterable[str]]) -> int:
        """Write several sets in one pipelined round trip; returns keys written."""
        written = 0
        with self._guard("add_many"):
            pipe = self.client.pipeline(transaction=False)
            for key, members in sets.items():
                members = [str(m) for m in members]
                for chunk in _chunks(members, self.batch_size):
                    pipe.sadd(key, *chunk)
                if members:
                    written += 1
            pipe.execute()
        return written

    # -----------------------------------------------------------------------
    # Set reads
    # -----------------------------------------------------------------------

    def members(self, key: str) -> Set[str]:
        with self._guard("members"):
            return set(self.client.smembers(key))

    def cardinality(self, key: str) -> int:
        with self._guard("cardinality"):
            return int(self.client.scard(key))

    def cardinalities(self, keys: Sequence[str]) -> List[int]:
        """SCARD of several keys in one round trip."""
        if not keys:
            return []
        with self._guard("cardinalities"):
            pipe = self.client.pipeline(transaction=False)
            for key in keys:
                pipe.scard(key)
            return [int(n) for n in pipe.execute()]

    def union(self, *keys: str) -> Set[str]:
        if not keys:
            return set()
        with self._guard("union"):
            return set(self.client.sunion(*keys))

    def intersect(self, *keys: str) -> Set[str]:
        """Intersection computed server-side and returned without persisting it."""
        if not keys:
            return set()
        with self._guard("intersect"):
            return set(self.client.sinter(*keys))

    def intersect_counts(self, base_key: str, keys: Sequence[str]) -> List[int]:
        """|base ∩ key| for each key, pipelined."""
        if not keys:
            return []
        with self._guard("intersect_counts"):
            pipe = self.client.pipeline(transaction=False)
            for key in keys:
                pipe.sinter(base_key, key)
            return [len(members) for members in pipe.execute()]

    # -----------------------------------------------------------------------
    # Scratch results
    # -----------------------------------------------------------------------

    @contextmanager
    def scratch(self) -> Iterator["ScratchSpace"]:
        """Yield a ScratchSpace whose temporary keys are deleted on exit."""
        space = ScratchSpace(self)
        try:
            yield space
        finally:
            space.release()


class ScratchSpace:
    """
    Temporary set results for one query.

    Each key gets an EXPIRE so it disappears even if the caller dies before
    ``release()`` runs.
    """

    def __init__(self, store: FacetIndexStore):
        self.store = store
        self.created: List[str] = []

    def _new_key(self) -> str:
        key = f"{self.store.scratch_prefix}:{uuid.uuid4().hex}"
        self.created.append(key)
        return key

    def _store(self, command: str, keys: Sequence[str]) -> str:
        if not keys:
            raise ValueError(f"{command} needs at least one key")
        if len(keys) == 1:
            return keys[0]
        dest = self._new_key()
        with self.store._guard(command):
            pipe = self.store.client.pipeline(transaction=True)
            getattr(pipe, command)(dest, *keys)
            pipe.expire(dest, self.store.scratch_ttl_seconds)
            pipe.execute()
        return dest

    def union(self, keys: Sequence[str]) -> str:
        """SUNIONSTORE keys into a scratch key (a single key is returned as is)."""
        return self._store("sunionstore", list(keys))

    def intersect(self, keys: Sequence[str]) -> str:
        """SINTERSTORE keys into a scratch key (a single key is returned as is)."""
        return self._store("sinterstore", list(keys))

    def release(self) -> None:
        if not self.created:
            return
        keys, self.created = self.created, []
        try:
            self.store.client.delete(*keys)
        except redis.RedisError as e:
            # Keys carry a TTL, so they still go away on their own.
            logger.warning("Could not delete %d scratch keys: %s", len(keys), e)
