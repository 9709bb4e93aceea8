"""Messaging error taxonomy

Backend failures are translated into ``MessagingError`` subclasses tagged
with an ``ErrorKind``. Callers suppress failures by matching on the kind,
never by catching every exception.
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ErrorKind(str, Enum):
    """Classification of a failed backend call"""
    ALREADY_EXISTS = "already_exists"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    INVALID_HANDLE = "invalid_handle"
    INVALID_REQUEST = "invalid_request"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    UNKNOWN = "unknown"


_ERROR_CODES: Dict[str, ErrorKind] = {
    "ResourceAlreadyExistsException": ErrorKind.ALREADY_EXISTS,
    "QueueAlreadyExists": ErrorKind.ALREADY_EXISTS,
    "AWS.SimpleQueueService.PurgeQueueInProgress": ErrorKind.RATE_LIMITED,
    "PurgeQueueInProgress": ErrorKind.RATE_LIMITED,
    "ThrottlingException": ErrorKind.RATE_LIMITED,
    "Throttling": ErrorKind.RATE_LIMITED,
    "AWS.SimpleQueueService.NonExistentQueue": ErrorKind.NOT_FOUND,
    "QueueDoesNotExist": ErrorKind.NOT_FOUND,
    "NotFound": ErrorKind.NOT_FOUND,
    "ResourceNotFoundException": ErrorKind.NOT_FOUND,
    "ReceiptHandleIsInvalid": ErrorKind.INVALID_HANDLE,
    "AWS.SimpleQueueService.ReceiptHandleIsInvalid": ErrorKind.INVALID_HANDLE,
    "InvalidParameterValue": ErrorKind.INVALID_REQUEST,
    "InvalidParameter": ErrorKind.INVALID_REQUEST,
    "ValidationException": ErrorKind.INVALID_REQUEST,
    "MalformedDetail": ErrorKind.INVALID_REQUEST,
    "InvalidEventPatternException": ErrorKind.INVALID_REQUEST,
}


def classify(code: Optional[str]) -> ErrorKind:
    """Map a backend error code to its kind

    Args:
        code: Error code reported by the backend, may be None

    Returns:
        The matching ErrorKind, UNKNOWN for unrecognised codes
    """
    if not code:
        return ErrorKind.UNKNOWN
    return _ERROR_CODES.get(code, ErrorKind.UNKNOWN)


class MessagingError(Exception):
    """Base exception for failed messaging calls"""
    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        service: str = "",
        operation: str = "",
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.service = service
        self.operation = operation
        self.code = code

    def __str__(self) -> str:
        where = ".".join(part for part in (self.service, self.operation) if part)
        text = super().__str__()
        if self.code:
            text = f"{self.code}: {text}"
        return f"[{where}] {text}" if where else text


class ResourceExistsError(MessagingError):
    kind = ErrorKind.ALREADY_EXISTS


class RateLimitedError(MessagingError):
    kind = ErrorKind.RATE_LIMITED


class NotFoundError(MessagingError):
    kind = ErrorKind.NOT_FOUND


class InvalidHandleError(MessagingError):
    """Raised when a receipt handle was already consumed or has expired"""
    kind = ErrorKind.INVALID_HANDLE


class InvalidRequestError(MessagingError):
    kind = ErrorKind.INVALID_REQUEST


class TargetAttachError(InvalidRequestError):
    """Raised when the router rejects one or more targets of a rule"""


class CallTimeoutError(MessagingError):
    kind = ErrorKind.TIMEOUT


class TransportError(MessagingError):
    kind = ErrorKind.TRANSPORT


_ERROR_TYPES = {
    ErrorKind.ALREADY_EXISTS: ResourceExistsError,
    ErrorKind.RATE_LIMITED: RateLimitedError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.INVALID_HANDLE: InvalidHandleError,
    ErrorKind.INVALID_REQUEST: InvalidRequestError,
    ErrorKind.TIMEOUT: CallTimeoutError,
    ErrorKind.TRANSPORT: TransportError,
    ErrorKind.UNKNOWN: MessagingError,
}


def error_for_code(
    code: Optional[str], message: str, *, service: str = "", operation: str = ""
) -> MessagingError:
    """Build the MessagingError subclass matching a backend error code"""
    error_type = _ERROR_TYPES[classify(code)]
    return error_type(message, service=service, operation=operation, code=code)


def from_client_error(service: str, operation: str, exc: Any) -> MessagingError:
    """Translate a botocore ClientError into a MessagingError

    Args:
        service: Logical service name (queue, pubsub, router)
        operation: Backend operation that failed
        exc: The ClientError raised by the backend client

    Returns:
        MessagingError subclass matching the reported error code
    """
    error = getattr(exc, "response", {}).get("Error", {})
    return error_for_code(
        error.get("Code"),
        error.get("Message") or str(exc),
        service=service,
        operation=operation,
    )


class FanOutError(MessagingError):
    """Raised after a fan-out settled with one or more failed items

    Attributes:
        failures: The exceptions of the failed items, in dispatch order
        succeeded: Number of items that completed successfully
    """

    def __init__(self, label: str, failures: Sequence[BaseException], succeeded: int):
        self.failures: List[BaseException] = list(failures)
        self.succeeded = succeeded
        first = self.failures[0] if self.failures else None
        super().__init__(
            f"{len(self.failures)} of {len(self.failures) + succeeded} "
            f"'{label}' operations failed; first: {first}"
        )
        if isinstance(first, MessagingError):
            self.kind = first.kind


class WorkflowStateError(RuntimeError):
    """Raised when a task graph is modified or re-run outside its valid state"""
