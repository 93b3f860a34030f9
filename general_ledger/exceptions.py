"""
Typed Exception Hierarchy

Every failure the ledger can report has its own class with a machine-readable
``code`` and the structured data a caller needs for line-level feedback.

    LedgerError
    +-- LedgerValidationError (also a ValueError)
    |   +-- InsufficientLinesError
    |   +-- ZeroAmountError
    |   +-- UnbalancedJournalError
    |   +-- InvalidCurrencyError
    |   +-- AccountError
    |       +-- UnknownAccountError
    |       +-- AccountNotPostableError
    |       +-- AccountInactiveError
    |       +-- DuplicateAccountCodeError
    +-- NotFoundError
    +-- JournalStateError
    |   +-- AlreadyPostedError
    |   +-- NotPostedError
    |   +-- AlreadyReversedError
    |   +-- ImmutableJournalError
    +-- PersistenceError

Line indexes are 1-based so they match ``LedgerEntry.line_no``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional


class LedgerError(Exception):
    """Base exception for all ledger errors"""

    code: str = "LEDGER_ERROR"

    def to_dict(self) -> dict:
        """Structured payload for API/UI error rendering"""
        details = {
            k: (str(v) if isinstance(v, (Decimal, datetime)) else v)
            for k, v in vars(self).items()
            if not k.startswith('_')
        }
        return {'code': self.code, 'message': str(self), 'details': details}


# Validation errors


class LedgerValidationError(LedgerError, ValueError):
    """Candidate journal lines violate a double-entry rule"""

    code: str = "VALIDATION_ERROR"


class InsufficientLinesError(LedgerValidationError):
    """A journal needs at least two lines to balance"""

    code: str = "INSUFFICIENT_LINES"

    def __init__(self, line_count: int, minimum: int = 2):
        self.line_count = line_count
        self.minimum = minimum
        super().__init__(
            f"Journal must have at least {minimum} ledger lines, got {line_count}"
        )


class ZeroAmountError(LedgerValidationError):
    """A ledger line carries a zero amount"""

    code: str = "ZERO_AMOUNT"

    def __init__(self, line_index: int):
        self.line_index = line_index
        super().__init__(f"Ledger line {line_index} has a zero amount")


class UnbalancedJournalError(LedgerValidationError):
    """Signed line amounts do not sum to zero within tolerance"""

    code: str = "UNBALANCED_JOURNAL"

    def __init__(self, total: Decimal, tolerance: Decimal):
        self.total = total
        self.tolerance = tolerance
        super().__init__(
            f"Journal lines do not balance: total={total:.2f} "
            f"(tolerance {tolerance})"
        )


class ExcessPrecisionError(LedgerValidationError):
    """A line amount is finer than the currency's minor unit"""

    code: str = "EXCESS_PRECISION"

    def __init__(self, line_index: int, amount: Decimal, currency: str, places: int):
        self.line_index = line_index
        self.amount = amount
        self.currency = currency
        self.places = places
        super().__init__(
            f"Ledger line {line_index} amount {amount} has more than "
            f"{places} decimal places allowed for {currency}"
        )


class InvalidCurrencyError(LedgerValidationError):
    """Currency code is not a supported ISO 4217 code"""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Unsupported currency code: {currency!r}")


class AccountError(LedgerValidationError):
    """A referenced account fails a precondition"""

    code: str = "ACCOUNT_ERROR"


class UnknownAccountError(AccountError):
    """Account does not exist in the journal's book"""

    code: str = "UNKNOWN_ACCOUNT"

    def __init__(self, account_id: str, line_index: Optional[int] = None):
        self.account_id = account_id
        self.line_index = line_index
        where = f" (line {line_index})" if line_index is not None else ""
        super().__init__(f"Unknown account {account_id}{where}")


class AccountNotPostableError(AccountError):
    """Account is a structural/summary account"""

    code: str = "ACCOUNT_NOT_POSTABLE"

    def __init__(self, account_id: str, line_index: Optional[int] = None):
        self.account_id = account_id
        self.line_index = line_index
        where = f" (line {line_index})" if line_index is not None else ""
        super().__init__(f"Account {account_id} is not postable{where}")


class AccountInactiveError(AccountError):
    """Account has been deactivated"""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_id: str, line_index: Optional[int] = None):
        self.account_id = account_id
        self.line_index = line_index
        where = f" (line {line_index})" if line_index is not None else ""
        super().__init__(f"Account {account_id} is inactive{where}")


class DuplicateAccountCodeError(AccountError):
    """Account code already used within the book"""

    code: str = "DUPLICATE_ACCOUNT_CODE"

    def __init__(self, book_id: str, account_code: str):
        self.book_id = book_id
        self.account_code = account_code
        super().__init__(f"Account code {account_code} already exists in book {book_id}")


# Lookup errors


class NotFoundError(LedgerError):
    """Referenced journal or account does not exist"""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.capitalize()} {entity_id} not found")


# State machine errors


class JournalStateError(LedgerError):
    """Operation not allowed in the journal's current state"""

    code: str = "JOURNAL_STATE_ERROR"


class AlreadyPostedError(JournalStateError):
    """Journal was already posted; posting is one-way"""

    code: str = "ALREADY_POSTED"

    def __init__(self, journal_id: str, posted_at: Optional[datetime] = None):
        self.journal_id = journal_id
        self.posted_at = posted_at
        super().__init__(f"Journal {journal_id} is already posted and immutable")


class NotPostedError(JournalStateError):
    """Only posted journals can be reversed"""

    code: str = "NOT_POSTED"

    def __init__(self, journal_id: str):
        self.journal_id = journal_id
        super().__init__(f"Journal {journal_id} is a draft; only posted journals can be reversed")


class AlreadyReversedError(JournalStateError):
    """Journal already has a reversal"""

    code: str = "ALREADY_REVERSED"

    def __init__(self, journal_id: str, reversal_id: str):
        self.journal_id = journal_id
        self.reversal_id = reversal_id
        super().__init__(f"Journal {journal_id} was already reversed by {reversal_id}")


class ImmutableJournalError(JournalStateError):
    """Attempt to alter a posted journal or one of its lines"""

    code: str = "IMMUTABLE_JOURNAL"

    def __init__(self, journal_id: str, field: Optional[str] = None):
        self.journal_id = journal_id
        self.field = field
        target = f" field {field!r}" if field else ""
        super().__init__(f"Journal {journal_id} is posted; cannot modify{target}")


# Storage errors


class PersistenceError(LedgerError):
    """The storage backend failed; the enclosing atomic block was rolled back"""

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, table: Optional[str] = None, reason: str = ""):
        self.operation = operation
        self.table = table
        self.reason = reason
        target = f" on {table}" if table else ""
        super().__init__(f"Storage {operation}{target} failed: {reason}")
