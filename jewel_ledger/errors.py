# jewel_ledger/errors.py
"""
Error taxonomy for the settlement engine.

Every service runs inside a single ``engine.begin()`` block, so raising any of
these rolls the whole unit of work back. ``main.py`` turns them into JSON
responses using ``status_code``.
"""


class LedgerError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    """Malformed or missing fields, negative amounts, split mismatches."""

    status_code = 400


class NotFound(LedgerError):
    status_code = 404


class PreconditionFailed(LedgerError):
    """The request is well formed but the current state does not allow it."""

    status_code = 409


class Overpayment(PreconditionFailed):
    pass


class AlreadyAdjusted(PreconditionFailed):
    pass


class AmountExceedsCredit(PreconditionFailed):
    pass


class AmountExceedsDue(PreconditionFailed):
    pass


class InsufficientStock(PreconditionFailed):
    pass


class InvalidTransition(PreconditionFailed):
    pass


class AlreadyDelivered(PreconditionFailed):
    def __init__(self, message: str, invoice_id=None):
        super().__init__(message)
        self.invoice_id = invoice_id


class CreditLimitExceeded(PreconditionFailed):
    pass


class ConcurrencyConflict(LedgerError):
    """A balance changed between read and write; retry with a fresh read."""

    status_code = 409


class ConsistencyViolation(LedgerError):
    """A materialized aggregate disagrees with its recomputed value."""

    status_code = 409

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.details = details or {}
