"""
Failover across equivalent replicas.

Calls go to a random live backend (or always the first one when balancing is
off). Each transient failure bumps the backend's failure counter; once it
reaches ``max_retry`` the backend is evicted and the call is retried on the
rest. Evicted backends come back, oldest first, after ``holdoff_s`` seconds.
If nothing usable is left, NoBackendAvailableError is raised.
"""

import logging
import random
import threading
import time
from collections import deque
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from . import config
from .backend import Backend, register_targets
from .errors import NoBackendAvailableError, TransientError
from .messages import Compare, CompareResult, CompareTarget, KeyValue, RequestOp, TxnResponse

log = logging.getLogger("kvroute")


def _now() -> float:
    return time.monotonic()


@dataclass
class Evicted:
    ident: str
    backend: Backend
    evicted_at: float


class HealthRouter(Backend):
    def __init__(
        self,
        backends: Iterable[Backend] | Mapping[str, Backend],
        holdoff_s: int | None = None,
        max_retry: int | None = None,
        balancing: bool | None = None,
    ):
        self.holdoff_s = config.HOLDOFF_S if holdoff_s is None else holdoff_s
        self.max_retry = config.MAX_RETRY if max_retry is None else max_retry
        self.balancing = config.BALANCING if balancing is None else balancing

        self._active: dict[str, Backend] = register_targets(backends)
        self._evicted: deque[Evicted] = deque()
        self._failures: dict[str, int] = {}
        self._lock = threading.Lock()

    # ---- health bookkeeping ----

    def active(self) -> list[str]:
        with self._lock:
            return list(self._active)

    def evicted(self) -> list[str]:
        with self._lock:
            return [e.ident for e in self._evicted]

    def failures(self, ident: str) -> int:
        with self._lock:
            return self._failures.get(ident, 0)

    def _reinstate_expired(self) -> None:
        # FIFO: stop at the first entry still inside its holdoff
        now = _now()
        while self._evicted and now - self._evicted[0].evicted_at > self.holdoff_s:
            e = self._evicted.popleft()
            self._active[e.ident] = e.backend
            log.info("backend reinstated: %s", e.ident)

    def _pick(self) -> tuple[str, Backend]:
        with self._lock:
            self._reinstate_expired()
            if not self._active:
                raise NoBackendAvailableError("could not get any working backend")
            if self.balancing:
                ident = random.choice(list(self._active))
            else:
                ident = next(iter(self._active))
            return ident, self._active[ident]

    def _succeed(self, ident: str) -> None:
        with self._lock:
            self._failures.pop(ident, None)

    def _fail(self, ident: str, exc: Exception) -> None:
        with self._lock:
            count = self._failures.get(ident, 0) + 1
            self._failures[ident] = count
            log.debug("backend %s failed (%d/%d): %s", ident, count, self.max_retry, exc)
            if count >= self.max_retry and ident in self._active:
                backend = self._active.pop(ident)
                self._evicted.append(Evicted(ident, backend, _now()))
                log.warning(
                    "backend evicted: %s after %d failures, holdoff=%ss",
                    ident,
                    count,
                    self.holdoff_s,
                )

    def dispatch(self, name: str, local: bool, *args: Any, **kwargs: Any) -> Any:
        """
        Run operation *name* on a live backend, failing over on transient errors.

        *local* marks operations that never leave the process (request
        builders, response parsing); their outcome does not touch the
        failure counters.
        """
        last_exc: TransientError | None = None
        while True:
            try:
                ident, backend = self._pick()
            except NoBackendAvailableError as err:
                log.error("no backend available for %s", name)
                raise err from last_exc
            try:
                result = getattr(backend, name)(*args, **kwargs)
            except TransientError as exc:
                last_exc = exc
                self._fail(ident, exc)
                continue
            if not local:
                self._succeed(ident)
            return result

    # ---- capability ----

    def hostname(self, key: str | None = None) -> str:
        return self.dispatch("hostname", True, key)

    def put(
        self,
        key: str,
        value: str,
        prev_kv: bool = False,
        lease_id: int = 0,
        ignore_lease: bool = False,
        ignore_value: bool = False,
    ) -> str | None:
        return self.dispatch(
            "put", False, key, value, prev_kv, lease_id, ignore_lease, ignore_value
        )

    def get(self, key: str) -> str | None:
        return self.dispatch("get", False, key)

    def get_with_prefix(
        self, prefix: str, limit: int = config.PREFIX_PAGE_LIMIT
    ) -> Iterator[KeyValue]:
        # only builds the lazy iterator; range errors surface while iterating,
        # outside failover, yet the dispatch still counts as a success
        return self.dispatch("get_with_prefix", False, prefix, limit)

    def delete(self, key: str) -> bool:
        return self.dispatch("delete", False, key)

    def put_if(
        self,
        key: str,
        value: str,
        compare_value: str | None,
        return_new_value_on_fail: bool = False,
    ) -> bool | str | None:
        return self.dispatch(
            "put_if", False, key, value, compare_value, return_new_value_on_fail
        )

    def delete_if(
        self,
        key: str,
        compare_value: str | None,
        return_new_value_on_fail: bool = False,
    ) -> bool | str | None:
        return self.dispatch("delete_if", False, key, compare_value, return_new_value_on_fail)

    def txn_request(
        self,
        success_ops: list[RequestOp],
        failure_ops: list[RequestOp] | None,
        compare: list[Compare],
    ) -> TxnResponse:
        return self.dispatch("txn_request", False, success_ops, failure_ops, compare)

    def get_compare(
        self, key: str, value: str, result: CompareResult, target: CompareTarget
    ) -> Compare:
        return self.dispatch("get_compare", True, key, value, result, target)

    def get_get_operation(self, key: str) -> RequestOp:
        return self.dispatch("get_get_operation", True, key)

    def get_put_operation(self, key: str, value: str, lease_id: int = 0) -> RequestOp:
        return self.dispatch("get_put_operation", True, key, value, lease_id)

    def get_delete_operation(self, key: str) -> RequestOp:
        return self.dispatch("get_delete_operation", True, key)

    def grant_lease(self, ttl: int) -> int:
        return self.dispatch("grant_lease", False, ttl)

    def revoke_lease(self, lease_id: int) -> None:
        self.dispatch("revoke_lease", False, lease_id)

    def refresh_lease(self, lease_id: int) -> int:
        return self.dispatch("refresh_lease", False, lease_id)

    def get_responses(
        self,
        txn_response: TxnResponse,
        type: str | None = None,
        simple_array: bool = False,
    ) -> list:
        return self.dispatch("get_responses", True, txn_response, type, simple_array)
