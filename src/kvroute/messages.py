"""Request and response fragments exchanged with a backend.

These mirror the etcd KV messages closely enough for routing and for the
in-process backend; encoding them for the wire is the backend's business.
"""

from dataclasses import dataclass, field
from enum import IntEnum, StrEnum


class CompareResult(IntEnum):
    EQUAL = 0
    GREATER = 1
    LESS = 2
    NOT_EQUAL = 3


class CompareTarget(IntEnum):
    VERSION = 0
    CREATE = 1
    MOD = 2
    VALUE = 3
    LEASE = 4


class RequestKind(StrEnum):
    range = "request_range"
    put = "request_put"
    delete_range = "request_delete_range"


class ResponseKind(StrEnum):
    range = "response_range"
    put = "response_put"
    delete_range = "response_delete_range"
    txn = "response_txn"


@dataclass
class KeyValue:
    key: str
    value: str
    version: int = 1
    create_revision: int = 0
    mod_revision: int = 0
    lease: int = 0


@dataclass
class Compare:
    key: str
    value: str
    result: CompareResult
    target: CompareTarget


@dataclass
class RangeRequest:
    key: str
    range_end: str = ""
    limit: int = 0


@dataclass
class PutRequest:
    key: str
    value: str = ""
    lease: int = 0
    prev_kv: bool = False
    ignore_value: bool = False
    ignore_lease: bool = False


@dataclass
class DeleteRangeRequest:
    key: str
    range_end: str = ""


@dataclass
class RequestOp:
    kind: RequestKind
    request: RangeRequest | PutRequest | DeleteRangeRequest


@dataclass
class ResponseOp:
    kind: ResponseKind
    kvs: list[KeyValue] = field(default_factory=list)  # range results only
    deleted: int = 0
    prev_kv: KeyValue | None = None


@dataclass
class TxnResponse:
    succeeded: bool
    responses: list[ResponseOp] = field(default_factory=list)
    revision: int = 0
