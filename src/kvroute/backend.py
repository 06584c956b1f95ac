"""The key-value capability shared by backends and routers."""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping

from . import config
from .errors import InvalidBackendError
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
    TxnResponse,
)


class Backend(ABC):
    """
    A unit that can serve every key-value operation.

    Concrete backends talk to one endpoint; routers implement the same
    interface by forwarding to other Backends, so they nest freely.
    """

    @abstractmethod
    def hostname(self, key: str | None = None) -> str: ...

    @abstractmethod
    def put(
        self,
        key: str,
        value: str,
        prev_kv: bool = False,
        lease_id: int = 0,
        ignore_lease: bool = False,
        ignore_value: bool = False,
    ) -> str | None: ...

    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def get_with_prefix(self, prefix: str, limit: int = 100) -> Iterator[KeyValue]: ...

    @abstractmethod
    def delete(self, key: str) -> bool: ...

    @abstractmethod
    def put_if(
        self,
        key: str,
        value: str,
        compare_value: str | None,
        return_new_value_on_fail: bool = False,
    ) -> bool | str | None: ...

    @abstractmethod
    def delete_if(
        self,
        key: str,
        compare_value: str | None,
        return_new_value_on_fail: bool = False,
    ) -> bool | str | None: ...

    @abstractmethod
    def txn_request(
        self,
        success_ops: list[RequestOp],
        failure_ops: list[RequestOp] | None,
        compare: list[Compare],
    ) -> TxnResponse: ...

    @abstractmethod
    def get_compare(
        self, key: str, value: str, result: CompareResult, target: CompareTarget
    ) -> Compare: ...

    @abstractmethod
    def get_get_operation(self, key: str) -> RequestOp: ...

    @abstractmethod
    def get_put_operation(self, key: str, value: str, lease_id: int = 0) -> RequestOp: ...

    @abstractmethod
    def get_delete_operation(self, key: str) -> RequestOp: ...

    @abstractmethod
    def grant_lease(self, ttl: int) -> int: ...

    @abstractmethod
    def revoke_lease(self, lease_id: int) -> None: ...

    @abstractmethod
    def refresh_lease(self, lease_id: int) -> int: ...

    @abstractmethod
    def get_responses(
        self,
        txn_response: TxnResponse,
        type: str | None = None,
        simple_array: bool = False,
    ) -> list: ...


def register_targets(targets: Iterable[Backend] | Mapping[str, Backend]) -> dict[str, Backend]:
    """
    Validate *targets* and index them by identifier, keeping input order.

    A mapping supplies its own identifiers; otherwise each target's
    ``hostname()`` is used.
    """
    items = targets.items() if isinstance(targets, Mapping) else ((None, t) for t in targets)
    registry: dict[str, Backend] = {}
    for ident, target in items:
        if not isinstance(target, Backend):
            raise InvalidBackendError(f"invalid backend in backend list: {target!r}")
        registry[ident if ident is not None else target.hostname()] = target
    return registry


class KVBackend(Backend):
    """
    Base for backends bound to a single endpoint.

    Subclasses provide the remote primitives (``range``, ``put``, ``delete``,
    ``txn_request`` and the lease calls); conditional writes, prefix scans and
    request building are done here.
    """

    @abstractmethod
    def range(self, key: str, range_end: str = "", limit: int = 0) -> list[KeyValue]: ...

    def get(self, key: str) -> str | None:
        kvs = self.range(key)
        if not kvs:
            return None
        return kvs[0].value

    def get_with_prefix(
        self, prefix: str, limit: int = config.PREFIX_PAGE_LIMIT
    ) -> Iterator[KeyValue]:
        range_end = prefix + "\xff"
        start = prefix
        while True:
            kvs = self.range(start, range_end, limit)
            if not kvs:
                return
            yield from kvs
            # resume right after the last key of this page
            start = kvs[-1].key + "\x00"

    def put_if(
        self,
        key: str,
        value: str,
        compare_value: str | None,
        return_new_value_on_fail: bool = False,
    ) -> bool | str | None:
        operation = self.get_put_operation(key, value)
        compare = self._compare_for_if(key, compare_value)
        failure_ops = self._fail_operation(key, return_new_value_on_fail)

        response = self.txn_request([operation], failure_ops, [compare])
        return self._if_response(return_new_value_on_fail, response)

    def delete_if(
        self,
        key: str,
        compare_value: str | None,
        return_new_value_on_fail: bool = False,
    ) -> bool | str | None:
        operation = self.get_delete_operation(key)
        compare = self._compare_for_if(key, compare_value)
        failure_ops = self._fail_operation(key, return_new_value_on_fail)

        response = self.txn_request([operation], failure_ops, [compare])
        return self._if_response(return_new_value_on_fail, response)

    def get_compare(
        self, key: str, value: str, result: CompareResult, target: CompareTarget
    ) -> Compare:
        return Compare(
            key=key,
            value=value,
            result=CompareResult(result),
            target=CompareTarget(target),
        )

    def get_get_operation(self, key: str) -> RequestOp:
        return RequestOp(RequestKind.range, RangeRequest(key=key))

    def get_put_operation(self, key: str, value: str, lease_id: int = 0) -> RequestOp:
        return RequestOp(RequestKind.put, PutRequest(key=key, value=value, lease=lease_id))

    def get_delete_operation(self, key: str) -> RequestOp:
        return RequestOp(RequestKind.delete_range, DeleteRangeRequest(key=key))

    def get_responses(
        self,
        txn_response: TxnResponse,
        type: str | None = None,
        simple_array: bool = False,
    ) -> list:
        """
        Flatten *txn_response* into plain data.

        Returns ``[{"type": "response_range", "values": [{"key", "value",
        "version"}, ...]}, ...]``, one entry per response op, or only the
        values (``["v1", "v2"]``) when *simple_array* is set. *type* keeps
        only ops of that kind (``response_range``, ``response_put``,
        ``response_delete_range``, ``response_txn``).
        """
        flat: list[str] = []
        out: list[dict] = []
        for resp in txn_response.responses:
            if type is not None and type != resp.kind:
                continue
            values = []
            for kv in resp.kvs:
                flat.append(kv.value)
                values.append({"key": kv.key, "value": kv.value, "version": kv.version})
            out.append({"type": str(resp.kind), "values": values})
        return flat if simple_array else out

    def _compare_for_if(self, key: str, compare_value: str | None) -> Compare:
        if compare_value is None:
            # the key must not exist yet
            return self.get_compare(key, "0", CompareResult.EQUAL, CompareTarget.VERSION)
        return self.get_compare(key, compare_value, CompareResult.EQUAL, CompareTarget.VALUE)

    def _fail_operation(self, key: str, return_new_value_on_fail: bool) -> list[RequestOp] | None:
        if return_new_value_on_fail:
            return [self.get_get_operation(key)]
        return None

    @staticmethod
    def _if_response(return_new_value_on_fail: bool, response: TxnResponse) -> bool | str | None:
        if return_new_value_on_fail and not response.succeeded:
            kvs = response.responses[0].kvs
            if not kvs:
                return None
            return kvs[0].value
        return response.succeeded
