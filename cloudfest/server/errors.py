"""Typed rejections raised by the registry.

Every failure is reported to the caller as one of these; none of them leaves
partial state behind. The service layer turns them into gRPC status codes.
"""
import grpc


class CloudfestError(Exception):
    """Base class for every rejected operation."""

    status_code = grpc.StatusCode.UNKNOWN


class ValidationError(CloudfestError):
    """Malformed input: length or emptiness checks failed."""

    status_code = grpc.StatusCode.INVALID_ARGUMENT


class AuthorizationError(CloudfestError):
    """Caller is not the owner, not registered, or not a member."""

    status_code = grpc.StatusCode.PERMISSION_DENIED


class ConflictError(CloudfestError):
    """Operation clashes with existing state."""

    status_code = grpc.StatusCode.ALREADY_EXISTS


class ReentrancyError(ConflictError):
    """A mutating call was made while a registration was still being applied."""

    status_code = grpc.StatusCode.ABORTED


class NotFoundError(CloudfestError):
    """Unknown username, user, group or ledger index."""

    status_code = grpc.StatusCode.NOT_FOUND


class PaymentError(CloudfestError):
    """Attached payment is below the registration fee."""

    status_code = grpc.StatusCode.FAILED_PRECONDITION
