"""
Ledger Validator

Pure checks of a candidate list of ledger lines against the double-entry
rules. Nothing here touches storage; the journal engine runs the same
checks when a journal is created and again when it is posted.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from .currency import Currency, quantize_amount, to_amount
from .exceptions import (
    ExcessPrecisionError, InsufficientLinesError, UnbalancedJournalError, ZeroAmountError
)

MIN_LINES = 2
DEFAULT_TOLERANCE = Decimal('0.01')


@dataclass(frozen=True)
class LedgerLineInput:
    """
    One candidate ledger line

    ``amount_dc`` is signed in the book's base currency: positive is a
    debit, negative is a credit.
    """
    account_id: str
    amount_dc: Decimal
    contact_id: Optional[str] = None
    description: Optional[str] = None
    amount_txn: Optional[Decimal] = None
    fx_rate: Optional[Decimal] = None

    def __post_init__(self):
        object.__setattr__(self, 'amount_dc', to_amount(self.amount_dc))
        if self.amount_txn is not None:
            object.__setattr__(self, 'amount_txn', to_amount(self.amount_txn))
        if self.fx_rate is not None:
            object.__setattr__(self, 'fx_rate', to_amount(self.fx_rate))

    @property
    def is_debit(self) -> bool:
        return self.amount_dc > 0

    @property
    def is_credit(self) -> bool:
        return self.amount_dc < 0

    def reversed(self, prefix: str = "Reversal: ") -> 'LedgerLineInput':
        """Same line with every signed amount flipped"""
        return LedgerLineInput(
            account_id=self.account_id,
            amount_dc=-self.amount_dc,
            contact_id=self.contact_id,
            description=f"{prefix}{self.description or ''}",
            amount_txn=-self.amount_txn if self.amount_txn is not None else None,
            fx_rate=self.fx_rate
        )

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> 'LedgerLineInput':
        """Build from a plain dict, e.g. a decoded request body"""
        return cls(
            account_id=data['account_id'],
            amount_dc=data['amount_dc'],
            contact_id=data.get('contact_id'),
            description=data.get('description'),
            amount_txn=data.get('amount_txn'),
            fx_rate=data.get('fx_rate')
        )


def line_total(lines: Sequence[LedgerLineInput]) -> Decimal:
    """Exact signed sum of the lines"""
    return sum((line.amount_dc for line in lines), Decimal('0'))


def validate_lines(
    lines: Sequence[LedgerLineInput],
    tolerance: Decimal = DEFAULT_TOLERANCE,
    currency: Optional[Currency] = None
) -> Decimal:
    """
    Check candidate lines against the double-entry rules, in order:

    1. at least two lines
    2. no line with a zero amount
    3. no amount finer than the currency's minor unit (when ``currency`` is given)
    4. signed amounts sum to zero within ``tolerance``

    Returns:
        The signed total (within tolerance of zero)

    Raises:
        InsufficientLinesError: Fewer than two lines
        ZeroAmountError: A line has amount_dc == 0 (1-based index)
        ExcessPrecisionError: A line has more decimal places than the currency
        UnbalancedJournalError: The signed total exceeds the tolerance
    """
    if len(lines) < MIN_LINES:
        raise InsufficientLinesError(len(lines), MIN_LINES)

    for index, line in enumerate(lines, start=1):
        if line.amount_dc == 0:
            raise ZeroAmountError(index)

    if currency is not None:
        for index, line in enumerate(lines, start=1):
            if line.amount_dc != quantize_amount(line.amount_dc, currency):
                raise ExcessPrecisionError(index, line.amount_dc, currency.code, currency.precision)

    total = line_total(lines)
    if abs(total) > tolerance:
        raise UnbalancedJournalError(total, tolerance)

    return total


def coerce_lines(lines: Sequence[Any]) -> list:
    """Accept LedgerLineInput objects or plain mappings"""
    return [
        line if isinstance(line, LedgerLineInput) else LedgerLineInput.from_mapping(line)
        for line in lines
    ]


def sum_debits(lines: Sequence[LedgerLineInput]) -> Decimal:
    return sum((l.amount_dc for l in lines if l.amount_dc > 0), Decimal('0'))


def sum_credits(lines: Sequence[LedgerLineInput]) -> Decimal:
    """Credit total as a positive number"""
    return -sum((l.amount_dc for l in lines if l.amount_dc < 0), Decimal('0'))

