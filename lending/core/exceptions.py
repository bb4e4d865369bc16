"""
    Errors raised by the lending engine.

    Every error carries a `context` dict (ids, counters, limits) so
    callers can render an actionable message. Business rule errors are
    never retried; `TransientStorageError` is safe to retry because no
    partial effect was committed.
"""


class LendingError(Exception):

    message = "Lending operation failed"
    retryable = False

    def __init__(self, message=None, **context):
        self.context = context
        super().__init__(message or self.message.format(**context))


class BusinessRuleError(LendingError): pass

class InvalidValue(BusinessRuleError, ValueError):
    message = "Invalid {field}: {reason}"

    @classmethod
    def from_validation(cls, error):
        """First problem reported by a pydantic ValidationError."""
        first = error.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "value"
        return cls(field=field, reason=first["msg"])

class PatronNotFound(BusinessRuleError):
    message = "Patron {patron_id} not found"

class ItemNotFound(BusinessRuleError):
    message = "Item {item_id} not found"

class LoanNotFound(BusinessRuleError):
    message = "Loan {loan_id} not found"

class DuplicatePatron(BusinessRuleError):
    message = "A patron with {field} {value!r} already exists"

class DuplicateItem(BusinessRuleError):
    message = "An item with code {code!r} already exists"

class MemberNotActive(BusinessRuleError):
    message = "Patron {membership_code} is not active"

class MembershipExpired(BusinessRuleError):
    message = "Membership of patron {membership_code} expired at {expired_at:%Y-%m-%d}"

class OutstandingFeesExceeded(BusinessRuleError):
    message = "Patron {membership_code} owes {outstanding_fees}; fees above {threshold} must be cleared before borrowing"

class ItemRetired(BusinessRuleError):
    message = "Item {item_id} ({code}) is retired from the catalog"

class ItemOnLoan(BusinessRuleError):
    message = "Item {item_id} has {copies_on_loan} copies on loan"

class NotAvailable(BusinessRuleError):
    message = "Item {item_id} has no available copies ({available_copies}/{total_copies})"

class InventoryOverflow(BusinessRuleError):
    message = "Item {item_id} already has all {total_copies} copies on the shelf"

class BorrowLimitReached(BusinessRuleError):
    message = "Patron {patron_id} has {active_loans} active loans, the limit is {max_items_allowed}"

class LoanNotActive(BusinessRuleError):
    message = "Loan {loan_id} is {status}, not active"

class LoanNotCancellable(BusinessRuleError):
    message = "Loan {loan_id} was renewed {renewal_count} times and can no longer be cancelled"

class RenewalLimitExceeded(BusinessRuleError):
    message = "Loan {loan_id} was already renewed {renewal_count} of {max_renewals_allowed} times"

class NoFeeDue(BusinessRuleError):
    message = "Loan {loan_id} has no unpaid late fee"


class ChangeHistoryUnavailable(LendingError):
    message = "{sink} does not keep a readable change history"


class StorageError(LendingError):
    message = "Storage failure during {operation}"

class TransientStorageError(StorageError):
    message = "{operation} could not complete after {attempts} attempts"
    retryable = True
