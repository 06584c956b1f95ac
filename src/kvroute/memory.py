"""
In-process backend.

Keeps everything in a dict with etcd-style revisions and leases, and can be
told to fail, which makes it a stand-in for a real endpoint in tests and
local development. Nothing is persisted.
"""

import itertools
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field, replace

from .backend import KVBackend
from .errors import InvalidLeaseError, NotFoundError
from .messages import (
    Compare,
    CompareResult,
    CompareTarget,
    DeleteRangeRequest,
    KeyValue,
    PutRequest,
    RangeRequest,
    RequestKind,
    RequestOp,
    ResponseKind,
    ResponseOp,
    TxnResponse,
)


def _now() -> float:
    return time.monotonic()


@dataclass
class Lease:
    ttl: int
    expires_at: float
    keys: set[str] = field(default_factory=set)


class MemoryBackend(KVBackend):
    def __init__(self, hostname: str = "memory"):
        self._hostname = hostname
        self._kvs: dict[str, KeyValue] = {}
        self._leases: dict[int, Lease] = {}
        self._lease_ids = itertools.count(1)
        self._revision = 0
        self._faults: deque[BaseException] = deque()
        self._lock = threading.RLock()
        self.calls: Counter[str] = Counter()

    def __repr__(self) -> str:
        return f"MemoryBackend({self._hostname!r})"

    # ---- fault injection ----

    def inject(self, error: BaseException | type[BaseException], times: int = 1) -> None:
        """Make the next *times* remote calls raise *error*."""
        with self._lock:
            for _ in range(times):
                self._faults.append(error() if isinstance(error, type) else error)

    def clear_faults(self) -> None:
        with self._lock:
            self._faults.clear()

    def _remote(self, name: str) -> None:
        with self._lock:
            self.calls[name] += 1
            if self._faults:
                raise self._faults.popleft()
            self._expire_leases()

    # ---- storage ----

    def _expire_leases(self) -> None:
        now = _now()
        for lease_id in [i for i, lease in self._leases.items() if lease.expires_at <= now]:
            self._drop_lease(lease_id)

    def _drop_lease(self, lease_id: int) -> None:
        lease = self._leases.pop(lease_id)
        for key in lease.keys:
            kv = self._kvs.get(key)
            if kv is not None and kv.lease == lease_id:
                del self._kvs[key]

    def _select(self, key: str, range_end: str) -> list[KeyValue]:
        if not range_end:
            kv = self._kvs.get(key)
            return [kv] if kv is not None else []
        return [self._kvs[k] for k in sorted(self._kvs) if key <= k < range_end]

    def _apply_range(self, req: RangeRequest) -> ResponseOp:
        kvs = self._select(req.key, req.range_end)
        if req.limit > 0:
            kvs = kvs[: req.limit]
        return ResponseOp(ResponseKind.range, kvs=[replace(kv) for kv in kvs])

    def _apply_put(self, req: PutRequest, revision: int) -> ResponseOp:
        prev = self._kvs.get(req.key)
        if (req.ignore_value or req.ignore_lease) and prev is None:
            raise NotFoundError("key not found")
        value = prev.value if req.ignore_value else req.value
        lease_id = prev.lease if req.ignore_lease else req.lease
        if lease_id and lease_id not in self._leases:
            raise NotFoundError("requested lease not found")
        if prev is not None and prev.lease and prev.lease != lease_id:
            self._leases[prev.lease].keys.discard(req.key)
        if lease_id:
            self._leases[lease_id].keys.add(req.key)
        self._kvs[req.key] = KeyValue(
            key=req.key,
            value=value,
            version=prev.version + 1 if prev else 1,
            create_revision=prev.create_revision if prev else revision,
            mod_revision=revision,
            lease=lease_id,
        )
        return ResponseOp(
            ResponseKind.put,
            prev_kv=replace(prev) if prev is not None and req.prev_kv else None,
        )

    def _apply_delete(self, req: DeleteRangeRequest) -> ResponseOp:
        doomed = self._select(req.key, req.range_end)
        for kv in doomed:
            del self._kvs[kv.key]
            if kv.lease in self._leases:
                self._leases[kv.lease].keys.discard(kv.key)
        return ResponseOp(ResponseKind.delete_range, deleted=len(doomed))

    def _apply(self, op: RequestOp, revision: int) -> ResponseOp:
        if op.kind == RequestKind.range:
            return self._apply_range(op.request)
        if op.kind == RequestKind.put:
            return self._apply_put(op.request, revision)
        if op.kind == RequestKind.delete_range:
            return self._apply_delete(op.request)
        raise ValueError(f"unsupported request op: {op.kind!r}")

    def _check(self, cmp: Compare) -> bool:
        kv = self._kvs.get(cmp.key)
        if cmp.target == CompareTarget.VALUE:
            if kv is None:
                return False
            actual, expected = kv.value, cmp.value
        else:
            actual = 0
            if kv is not None:
                actual = {
                    CompareTarget.VERSION: kv.version,
                    CompareTarget.CREATE: kv.create_revision,
                    CompareTarget.MOD: kv.mod_revision,
                    CompareTarget.LEASE: kv.lease,
                }[cmp.target]
            expected = int(cmp.value)
        if cmp.result == CompareResult.EQUAL:
            return actual == expected
        if cmp.result == CompareResult.NOT_EQUAL:
            return actual != expected
        if cmp.result == CompareResult.GREATER:
            return actual > expected
        return actual < expected

    # ---- capability ----

    def hostname(self, key: str | None = None) -> str:
        return self._hostname

    def range(self, key: str, range_end: str = "", limit: int = 0) -> list[KeyValue]:
        with self._lock:
            self._remote("range")
            return self._apply_range(RangeRequest(key, range_end, limit)).kvs

    def put(
        self,
        key: str,
        value: str,
        prev_kv: bool = False,
        lease_id: int = 0,
        ignore_lease: bool = False,
        ignore_value: bool = False,
    ) -> str | None:
        with self._lock:
            self._remote("put")
            resp = self._apply_put(
                PutRequest(key, value, lease_id, prev_kv, ignore_value, ignore_lease),
                self._revision + 1,
            )
            self._revision += 1
        if prev_kv and resp.prev_kv is not None:
            return resp.prev_kv.value
        return None

    def delete(self, key: str) -> bool:
        with self._lock:
            self._remote("delete")
            return self._apply_delete(DeleteRangeRequest(key)).deleted > 0

    def txn_request(
        self,
        success_ops: list[RequestOp],
        failure_ops: list[RequestOp] | None,
        compare: list[Compare],
    ) -> TxnResponse:
        with self._lock:
            self._remote("txn_request")
            succeeded = all(self._check(cmp) for cmp in compare)
            ops = success_ops if succeeded else (failure_ops or [])
            revision = self._revision
            if any(op.kind != RequestKind.range for op in ops):
                revision += 1
            # all or nothing: roll back to this copy if any op fails
            kvs = dict(self._kvs)
            leases = {i: replace(lease, keys=set(lease.keys)) for i, lease in self._leases.items()}
            try:
                responses = [self._apply(op, revision) for op in ops]
            except Exception:
                self._kvs, self._leases = kvs, leases
                raise
            self._revision = revision
            return TxnResponse(succeeded=succeeded, responses=responses, revision=revision)

    def grant_lease(self, ttl: int) -> int:
        with self._lock:
            self._remote("grant_lease")
            lease_id = next(self._lease_ids)
            self._leases[lease_id] = Lease(ttl=ttl, expires_at=_now() + ttl)
            return lease_id

    def revoke_lease(self, lease_id: int) -> None:
        with self._lock:
            self._remote("revoke_lease")
            if lease_id not in self._leases:
                raise NotFoundError("requested lease not found")
            self._drop_lease(lease_id)

    def refresh_lease(self, lease_id: int) -> int:
        with self._lock:
            self._remote("refresh_lease")
            lease = self._leases.get(lease_id)
            if lease is None:
                raise InvalidLeaseError("invalid lease ID or expired lease")
            lease.expires_at = _now() + lease.ttl
            return lease.ttl
