"""Error hierarchy for kvroute backends and routers."""


class KVRouteError(Exception):
    pass


class InvalidBackendError(KVRouteError, TypeError):
    pass


class NoBackendAvailableError(KVRouteError):
    pass


class HashRingError(KVRouteError):
    pass


class InvalidLeaseError(KVRouteError):
    pass


class StatusError(KVRouteError):
    """A non-OK status returned by the RPC layer."""

    code: int = -1

    def __init__(self, details: str = "", code: int | None = None):
        super().__init__(details)
        self.details = details
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return f"status {self.code}: {self.details}" if self.details else f"status {self.code}"


class TransientError(StatusError):
    """Failure of the endpoint itself; the request may succeed elsewhere."""


class CancelledError(StatusError):
    code = 1


class UnknownError(StatusError):
    code = 2


class InvalidArgumentError(StatusError):
    code = 3


class DeadlineExceededError(TransientError):
    code = 4


class NotFoundError(StatusError):
    code = 5


class AlreadyExistsError(StatusError):
    code = 6


class PermissionDeniedError(StatusError):
    code = 7


class ResourceExhaustedError(StatusError):
    code = 8


class FailedPreconditionError(StatusError):
    code = 9


class AbortedError(StatusError):
    code = 10


class OutOfRangeError(StatusError):
    code = 11


class UnimplementedError(StatusError):
    code = 12


class InternalError(StatusError):
    code = 13


class UnavailableError(TransientError):
    code = 14


class DataLossError(StatusError):
    code = 15


class UnauthenticatedError(StatusError):
    code = 16


class InvalidResponseStatusCodeError(StatusError):
    pass


class NoResponseError(TransientError):
    pass


_BY_CODE: dict[int, type[StatusError]] = {
    cls.code: cls
    for cls in (
        CancelledError,
        UnknownError,
        InvalidArgumentError,
        DeadlineExceededError,
        NotFoundError,
        AlreadyExistsError,
        PermissionDeniedError,
        ResourceExhaustedError,
        FailedPreconditionError,
        AbortedError,
        OutOfRangeError,
        UnimplementedError,
        InternalError,
        UnavailableError,
        DataLossError,
        UnauthenticatedError,
    )
}


def error_for_code(code: int, details: str = "") -> StatusError:
    cls = _BY_CODE.get(code)
    if cls is None:
        return InvalidResponseStatusCodeError(details, code=code)
    return cls(details)


def raise_for_status(code: int, details: str = "") -> None:
    if code != 0:
        raise error_for_code(code, details)
