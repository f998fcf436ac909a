"""Typed errors raised by the ledger core.

Each kind carries the HTTP status the API maps it to and a stable ``code``.
The message is part of the contract: it names the violated rule.
"""


class LedgerError(Exception):
    status_code = 400
    code = "LEDGER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    code = "VALIDATION_ERROR"


class InvalidAmount(ValidationError):
    code = "INVALID_AMOUNT"


class InvalidSplitRule(ValidationError):
    code = "INVALID_SPLIT_RULE"


class InvalidParticipant(ValidationError):
    code = "INVALID_PARTICIPANT"


class EmptyGroup(ValidationError):
    code = "EMPTY_GROUP"


class PercentageExceeds100(ValidationError):
    code = "PERCENTAGE_EXCEEDS_100"


class PercentageBelow100(ValidationError):
    code = "PERCENTAGE_BELOW_100"


class SplitExceedsAmount(ValidationError):
    code = "SPLIT_EXCEEDS_AMOUNT"


class SplitBelowAmount(ValidationError):
    code = "SPLIT_BELOW_AMOUNT"


class AuthorizationError(LedgerError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(LedgerError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(LedgerError):
    status_code = 409
    code = "CONFLICT"


class DuplicatePendingRequest(ConflictError):
    code = "DUPLICATE_PENDING_REQUEST"


class AlreadyResolved(ConflictError):
    code = "ALREADY_RESOLVED"


class IntegrityFailure(LedgerError):
    """The ledger could not be rebuilt; re-running the recompute is safe."""

    status_code = 500
    code = "LEDGER_INTEGRITY_FAILURE"
