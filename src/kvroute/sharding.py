"""Sharding helpers for routing keys to backends."""

import bisect
import logging
import random
import threading
import zlib
from collections.abc import Iterable, Iterator, Mapping

from . import config
from .backend import Backend, register_targets
from .errors import HashRingError, NoBackendAvailableError
from .messages import Compare, CompareResult, CompareTarget, KeyValue, RequestOp, TxnResponse

log = logging.getLogger("kvroute")


def stable_hash(key: str) -> int:
    """Ring position of *key*: CRC-32 of its UTF-8 bytes, same in every process."""
    return zlib.crc32(key.encode("utf-8"))


class HashRing:
    """
    Immutable consistent-hash ring.

    Every target owns ``replicas`` positions; a key belongs to the target at
    the first position strictly above the key's hash, wrapping around.
    """

    def __init__(self, targets: Iterable[str], replicas: int | None = None):
        self.replicas = config.RING_REPLICAS if replicas is None else replicas
        self.targets: tuple[str, ...] = tuple(dict.fromkeys(targets))
        ring = sorted(
            (stable_hash(f"{target}{i}"), target)
            for target in self.targets
            for i in range(self.replicas)
        )
        self._positions = tuple(pos for pos, _ in ring)
        self._owners = tuple(target for _, target in ring)

    def __len__(self) -> int:
        return len(self.targets)

    def _start(self, key: str) -> int:
        if not self._positions:
            raise HashRingError("no targets exist on the ring")
        idx = bisect.bisect_right(self._positions, stable_hash(key))
        return 0 if idx == len(self._positions) else idx

    def lookup(self, key: str) -> str:
        return self._owners[self._start(key)]

    def lookup_list(self, key: str, count: int) -> list[str]:
        """Up to *count* distinct targets for *key*, in ring order."""
        if count < 1:
            raise HashRingError("count must be >= 1")
        start = self._start(key)
        found: list[str] = []
        for i in range(len(self._owners)):
            target = self._owners[(start + i) % len(self._owners)]
            if target not in found:
                found.append(target)
                if len(found) >= count:
                    break
        return found


class ShardRouter(Backend):
    """
    Partition the keyspace across independent targets.

    Key-addressed calls go to the target chosen by the hash ring, cached per
    key for the life of the router. Cluster-wide calls (transactions, leases,
    response parsing) go to a random target. Health is the targets' concern:
    wrap each shard in a HealthRouter for failover.
    """

    def __init__(
        self,
        targets: Iterable[Backend] | Mapping[str, Backend],
        replicas: int | None = None,
    ):
        self.replicas = replicas
        self._targets: dict[str, Backend] = register_targets(targets)
        self._ring: HashRing | None = None
        self._ring_lock = threading.Lock()
        self._key_cache: dict[str, str] = {}

    def _get_ring(self) -> HashRing:
        ring = self._ring
        if ring is None:
            with self._ring_lock:
                if self._ring is None:
                    self._ring = HashRing(self._targets, self.replicas)
                    log.debug(
                        "hash ring built: targets=%s replicas=%d",
                        ",".join(self._ring.targets),
                        self._ring.replicas,
                    )
                ring = self._ring
        return ring

    def resolve(self, key: str) -> str:
        """Identifier of the target owning *key*; cached once resolved."""
        ident = self._key_cache.get(key)
        if ident is None:
            ident = self._get_ring().lookup(key)
            ident = self._key_cache.setdefault(key, ident)
            log.debug("key %r resolved to %s", key, ident)
        return ident

    def get_client_from_key(self, key: str) -> Backend:
        return self._targets[self.resolve(key)]

    def _random_client(self) -> Backend:
        if not self._targets:
            raise NoBackendAvailableError("no backend registered")
        return random.choice(list(self._targets.values()))

    def hostname(self, key: str | None = None) -> str:
        if key:
            return self.resolve(key)
        return "-".join(self._targets)

    def put(
        self,
        key: str,
        value: str,
        prev_kv: bool = False,
        lease_id: int = 0,
        ignore_lease: bool = False,
        ignore_value: bool = False,
    ) -> str | None:
        return self.get_client_from_key(key).put(
            key, value, prev_kv, lease_id, ignore_lease, ignore_value
        )

    def get(self, key: str) -> str | None:
        return self.get_client_from_key(key).get(key)

    def get_with_prefix(
        self, prefix: str, limit: int = config.PREFIX_PAGE_LIMIT
    ) -> Iterator[KeyValue]:
        return self.get_client_from_key(prefix).get_with_prefix(prefix, limit)

    def delete(self, key: str) -> bool:
        return self.get_client_from_key(key).delete(key)

    def put_if(
        self,
        key: str,
        value: str,
        compare_value: str | None,
        return_new_value_on_fail: bool = False,
    ) -> bool | str | None:
        return self.get_client_from_key(key).put_if(
            key, value, compare_value, return_new_value_on_fail
        )

    def delete_if(
        self,
        key: str,
        compare_value: str | None,
        return_new_value_on_fail: bool = False,
    ) -> bool | str | None:
        return self.get_client_from_key(key).delete_if(
            key, compare_value, return_new_value_on_fail
        )

    def txn_request(
        self,
        success_ops: list[RequestOp],
        failure_ops: list[RequestOp] | None,
        compare: list[Compare],
    ) -> TxnResponse:
        return self._random_client().txn_request(success_ops, failure_ops, compare)

    def get_compare(
        self, key: str, value: str, result: CompareResult, target: CompareTarget
    ) -> Compare:
        return self._random_client().get_compare(key, value, result, target)

    def get_get_operation(self, key: str) -> RequestOp:
        return self.get_client_from_key(key).get_get_operation(key)

    def get_put_operation(self, key: str, value: str, lease_id: int = 0) -> RequestOp:
        return self.get_client_from_key(key).get_put_operation(key, value, lease_id)

    def get_delete_operation(self, key: str) -> RequestOp:
        return self.get_client_from_key(key).get_delete_operation(key)

    def grant_lease(self, ttl: int) -> int:
        return self._random_client().grant_lease(ttl)

    def revoke_lease(self, lease_id: int) -> None:
        self._random_client().revoke_lease(lease_id)

    def refresh_lease(self, lease_id: int) -> int:
        return self._random_client().refresh_lease(lease_id)

    def get_responses(
        self,
        txn_response: TxnResponse,
        type: str | None = None,
        simple_array: bool = False,
    ) -> list:
        return self._random_client().get_responses(txn_response, type, simple_array)
