"""Tests for kvroute.memory and the KVBackend helpers it inherits."""

import pytest

from kvroute.errors import InvalidLeaseError, NotFoundError, UnavailableError
from kvroute.memory import MemoryBackend
from kvroute.messages import CompareResult, CompareTarget, ResponseKind


@pytest.fixture()
def backend() -> MemoryBackend:
    return MemoryBackend("localhost:2379")


class TestBasicOps:
    def test_hostname(self, backend):
        assert backend.hostname() == "localhost:2379"
        assert backend.hostname("any-key") == "localhost:2379"

    def test_get_missing(self, backend):
        assert backend.get("missing") is None

    def test_put_get(self, backend):
        assert backend.put("k", "v") is None
        assert backend.get("k") == "v"

    def test_put_prev_kv(self, backend):
        backend.put("k", "v1")
        assert backend.put("k", "v2", prev_kv=True) == "v1"
        assert backend.put("new", "v", prev_kv=True) is None

    def test_put_ignore_value(self, backend):
        backend.put("k", "keep")
        backend.put("k", "", ignore_value=True)
        assert backend.get("k") == "keep"

    def test_put_ignore_value_missing_key(self, backend):
        with pytest.raises(NotFoundError):
            backend.put("k", "", ignore_value=True)

    def test_delete(self, backend):
        backend.put("k", "v")
        assert backend.delete("k") is True
        assert backend.delete("k") is False

    def test_versions(self, backend):
        backend.put("k", "v1")
        backend.put("k", "v2")
        (kv,) = backend.range("k")
        assert kv.version == 2
        assert kv.create_revision == 1
        assert kv.mod_revision == 2


class TestPrefix:
    def test_pages_until_empty(self, backend):
        for i in range(5):
            backend.put(f"p/{i}", str(i))
        backend.put("q/0", "other")
        backend.calls.clear()

        kvs = list(backend.get_with_prefix("p/", limit=2))
        assert [kv.key for kv in kvs] == [f"p/{i}" for i in range(5)]
        assert backend.calls["range"] == 4

    def test_lazy(self, backend):
        backend.put("p/1", "x")
        backend.calls.clear()
        it = backend.get_with_prefix("p/")
        assert backend.calls["range"] == 0
        assert next(it).value == "x"
        assert backend.calls["range"] == 1

    def test_restartable_by_reinvoking(self, backend):
        backend.put("p/1", "x")
        assert list(backend.get_with_prefix("p/")) == list(backend.get_with_prefix("p/"))

    def test_empty_prefix_result(self, backend):
        assert list(backend.get_with_prefix("nothing/")) == []


class TestConditional:
    def test_put_if_absent(self, backend):
        assert backend.put_if("k", "v1", None) is True
        assert backend.put_if("k", "v2", None) is False
        assert backend.get("k") == "v1"

    def test_put_if_value_matches(self, backend):
        backend.put("k", "old")
        assert backend.put_if("k", "new", "old") is True
        assert backend.get("k") == "new"

    def test_put_if_return_new_value(self, backend):
        backend.put("k", "current")
        assert backend.put_if("k", "new", "stale", return_new_value_on_fail=True) == "current"

    def test_put_if_return_new_value_on_success(self, backend):
        assert backend.put_if("k", "v", None, return_new_value_on_fail=True) is True

    def test_delete_if(self, backend):
        backend.put("k", "v")
        assert backend.delete_if("k", "other") is False
        assert backend.delete_if("k", "v") is True
        assert backend.get("k") is None

    def test_delete_if_missing_returns_none(self, backend):
        assert backend.delete_if("k", "v", return_new_value_on_fail=True) is None


class TestTransactions:
    def test_compare_builders(self, backend):
        cmp = backend.get_compare("k", "1", CompareResult.GREATER, CompareTarget.VERSION)
        assert (cmp.key, cmp.value) == ("k", "1")
        assert cmp.result is CompareResult.GREATER
        assert cmp.target is CompareTarget.VERSION

    def test_compare_accepts_ints(self, backend):
        cmp = backend.get_compare("k", "v", 3, 3)
        assert cmp.result is CompareResult.NOT_EQUAL
        assert cmp.target is CompareTarget.VALUE

    def test_success_and_failure_branches(self, backend):
        backend.put("a", "1")
        cmp = backend.get_compare("a", "1", CompareResult.EQUAL, CompareTarget.VALUE)
        resp = backend.txn_request(
            [backend.get_put_operation("b", "2"), backend.get_get_operation("a")],
            [backend.get_delete_operation("a")],
            [cmp],
        )
        assert resp.succeeded is True
        assert [r.kind for r in resp.responses] == [ResponseKind.put, ResponseKind.range]
        assert backend.get("b") == "2"

        resp = backend.txn_request([], [backend.get_delete_operation("a")], [cmp, cmp])
        assert resp.succeeded is True

        cmp = backend.get_compare("a", "0", CompareResult.EQUAL, CompareTarget.VERSION)
        resp = backend.txn_request([], [backend.get_delete_operation("a")], [cmp])
        assert resp.succeeded is False
        assert resp.responses[0].deleted == 1
        assert backend.get("a") is None

    def test_failed_op_rolls_back_whole_transaction(self, backend, clock):
        lease = backend.grant_lease(10)
        backend.put("c", "old", lease_id=lease)
        (before,) = backend.range("c")

        with pytest.raises(NotFoundError):
            backend.txn_request(
                [
                    backend.get_put_operation("a", "1"),
                    backend.get_delete_operation("c"),
                    backend.get_put_operation("b", "2", lease_id=99),
                ],
                None,
                [],
            )
        assert backend.get("a") is None
        assert backend.get("b") is None
        assert backend.get("c") == "old"

        backend.put("d", "x")
        (kv,) = backend.range("d")
        assert kv.mod_revision == before.mod_revision + 1

        backend.revoke_lease(lease)
        assert backend.get("c") is None

    def test_get_responses(self, backend):
        backend.put("a", "1")
        backend.put("b", "2")
        resp = backend.txn_request(
            [
                backend.get_get_operation("a"),
                backend.get_put_operation("c", "3"),
                backend.get_get_operation("b"),
            ],
            None,
            [],
        )
        assert backend.get_responses(resp) == [
            {"type": "response_range", "values": [{"key": "a", "value": "1", "version": 1}]},
            {"type": "response_put", "values": []},
            {"type": "response_range", "values": [{"key": "b", "value": "2", "version": 1}]},
        ]
        assert backend.get_responses(resp, simple_array=True) == ["1", "2"]
        assert backend.get_responses(resp, type="response_put") == [
            {"type": "response_put", "values": []}
        ]


class TestLeases:
    def test_grant_and_refresh(self, backend, clock):
        lease = backend.grant_lease(10)
        clock.advance(5)
        assert backend.refresh_lease(lease) == 10

    def test_expired_lease_drops_keys(self, backend, clock):
        lease = backend.grant_lease(10)
        backend.put("k", "v", lease_id=lease)
        clock.advance(11)
        assert backend.get("k") is None
        with pytest.raises(InvalidLeaseError):
            backend.refresh_lease(lease)

    def test_refresh_extends(self, backend, clock):
        lease = backend.grant_lease(10)
        backend.put("k", "v", lease_id=lease)
        clock.advance(8)
        backend.refresh_lease(lease)
        clock.advance(8)
        assert backend.get("k") == "v"

    def test_revoke_drops_keys(self, backend, clock):
        lease = backend.grant_lease(10)
        backend.put("k", "v", lease_id=lease)
        backend.put("plain", "v")
        backend.revoke_lease(lease)
        assert backend.get("k") is None
        assert backend.get("plain") == "v"

    def test_unknown_lease(self, backend, clock):
        with pytest.raises(NotFoundError):
            backend.put("k", "v", lease_id=999)
        with pytest.raises(NotFoundError):
            backend.revoke_lease(999)


class TestFaultInjection:
    def test_inject_class(self, backend):
        backend.inject(UnavailableError, times=2)
        for _ in range(2):
            with pytest.raises(UnavailableError):
                backend.get("k")
        assert backend.get("k") is None
        assert backend.calls["range"] == 3

    def test_inject_instance(self, backend):
        backend.inject(UnavailableError("node down"))
        with pytest.raises(UnavailableError, match="node down"):
            backend.put("k", "v")

    def test_local_calls_never_fail(self, backend):
        backend.inject(UnavailableError)
        backend.get_get_operation("k")
        backend.hostname()
        assert sum(backend.calls.values()) == 0
        backend.clear_faults()
        assert backend.get("k") is None
