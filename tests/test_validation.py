"""
Test suite for the ledger validator

Tests the double-entry rules applied to candidate lines, and the order in
which they are checked.
"""

import pytest
from decimal import Decimal

from general_ledger.currency import Currency
from general_ledger.validation import (
    LedgerLineInput, validate_lines, coerce_lines, line_total,
    sum_debits, sum_credits, MIN_LINES
)
from general_ledger.exceptions import (
    InsufficientLinesError, ZeroAmountError, UnbalancedJournalError, ExcessPrecisionError,
    LedgerValidationError
)


def lines(*amounts):
    return [LedgerLineInput(account_id=f"ACC{i}", amount_dc=a) for i, a in enumerate(amounts, start=1)]


class TestLedgerLineInput:
    """Test candidate line construction"""

    def test_amount_is_decimal(self):
        """Test that amounts are converted to exact Decimals"""
        line = LedgerLineInput(account_id="A-cash", amount_dc="100.10")
        assert line.amount_dc == Decimal('100.10')
        assert isinstance(line.amount_dc, Decimal)

    def test_float_goes_through_str(self):
        """Test that 0.1 becomes Decimal('0.1'), not its binary expansion"""
        line = LedgerLineInput(account_id="A-cash", amount_dc=0.1)
        assert line.amount_dc == Decimal('0.1')

    def test_debit_and_credit_flags(self):
        debit = LedgerLineInput(account_id="A-cash", amount_dc=Decimal('5'))
        credit = LedgerLineInput(account_id="A-rev", amount_dc=Decimal('-5'))
        assert debit.is_debit and not debit.is_credit
        assert credit.is_credit and not credit.is_debit

    def test_invalid_amount_rejected(self):
        with pytest.raises(ValueError):
            LedgerLineInput(account_id="A-cash", amount_dc="abc")

    def test_boolean_amount_rejected(self):
        with pytest.raises(ValueError, match="boolean"):
            LedgerLineInput(account_id="A-cash", amount_dc=True)

    def test_reversed_flips_signs(self):
        """Test reversal flips amount_dc and amount_txn and prefixes the description"""
        line = LedgerLineInput(
            account_id="A-cash", amount_dc=Decimal('100'),
            description="Sale", amount_txn=Decimal('90'), fx_rate=Decimal('1.1111')
        )
        flipped = line.reversed()
        assert flipped.amount_dc == Decimal('-100')
        assert flipped.amount_txn == Decimal('-90')
        assert flipped.fx_rate == Decimal('1.1111')
        assert flipped.description == "Reversal: Sale"
        assert flipped.account_id == "A-cash"

    def test_from_mapping(self):
        line = LedgerLineInput.from_mapping({'account_id': 'A-cash', 'amount_dc': '12.50', 'contact_id': 'C1'})
        assert line.amount_dc == Decimal('12.50')
        assert line.contact_id == 'C1'
        assert line.description is None

    def test_coerce_lines_accepts_mixed_input(self):
        mixed = coerce_lines([
            LedgerLineInput(account_id="A", amount_dc=1),
            {'account_id': 'B', 'amount_dc': -1}
        ])
        assert all(isinstance(line, LedgerLineInput) for line in mixed)
        assert mixed[1].amount_dc == Decimal('-1')


class TestValidateLines:
    """Test the double-entry rules"""

    def test_balanced_lines_pass(self):
        assert validate_lines(lines(100, -100)) == Decimal('0')

    def test_many_lines_balanced(self):
        assert validate_lines(lines('33.33', '33.33', '33.34', -100)) == Decimal('0')

    def test_single_line_rejected(self):
        """Test a single-entry journal cannot balance"""
        with pytest.raises(InsufficientLinesError) as exc_info:
            validate_lines(lines(100))
        assert exc_info.value.line_count == 1
        assert exc_info.value.minimum == MIN_LINES

    def test_no_lines_rejected(self):
        with pytest.raises(InsufficientLinesError):
            validate_lines([])

    def test_zero_amount_names_line(self):
        """Test the offending line index is 1-based"""
        with pytest.raises(ZeroAmountError) as exc_info:
            validate_lines(lines(100, 0, -100))
        assert exc_info.value.line_index == 2

    def test_unbalanced_reports_sum(self):
        with pytest.raises(UnbalancedJournalError, match="1.00") as exc_info:
            validate_lines(lines(100, -99))
        assert exc_info.value.total == Decimal('1')

    def test_tolerance_boundary_passes(self):
        """Test a difference of exactly 0.01 is absorbed"""
        assert validate_lines(lines('100.01', '-100')) == Decimal('0.01')

    def test_beyond_tolerance_fails(self):
        with pytest.raises(UnbalancedJournalError):
            validate_lines(lines('100.02', '-100'))

    def test_custom_tolerance(self):
        with pytest.raises(UnbalancedJournalError):
            validate_lines(lines('100.01', '-100'), tolerance=Decimal('0'))

    def test_rule_order_count_before_zero(self):
        """Test a single zero line reports the line count, not the zero"""
        with pytest.raises(InsufficientLinesError):
            validate_lines(lines(0))

    def test_rule_order_zero_before_balance(self):
        """Test an unbalanced set with a zero line reports the zero"""
        with pytest.raises(ZeroAmountError):
            validate_lines(lines(100, 0))

    def test_errors_are_value_errors(self):
        """Test validation errors can be caught as ValueError"""
        with pytest.raises(ValueError):
            validate_lines(lines(1, 1))
        assert issubclass(UnbalancedJournalError, LedgerValidationError)


class TestTotals:
    """Test line aggregation helpers"""

    def test_line_total_exact(self):
        assert line_total(lines('0.1', '0.2', '-0.3')) == Decimal('0')

    def test_debit_and_credit_totals(self):
        candidate = lines(70, 30, -100)
        assert sum_debits(candidate) == Decimal('100')
        assert sum_credits(candidate) == Decimal('100')


class TestCurrencyPrecision:
    """Test amounts finer than the currency's minor unit are rejected"""

    def test_sub_cent_rejected(self):
        """Test a USD line of 0.004 does not slip through as a non-zero amount"""
        with pytest.raises(ExcessPrecisionError) as exc_info:
            validate_lines(lines('0.004', '-0.004'), currency=Currency.USD)
        assert exc_info.value.line_index == 1
        assert exc_info.value.places == 2
        assert exc_info.value.currency == "USD"

    def test_trailing_zeros_allowed(self):
        assert validate_lines(lines('100.000', '-100'), currency=Currency.USD) == Decimal('0')

    def test_zero_decimal_currency(self):
        with pytest.raises(ExcessPrecisionError) as exc_info:
            validate_lines(lines('1500', '-1499.5', '-0.5'), currency=Currency.JPY)
        assert exc_info.value.line_index == 2

    def test_three_decimal_currency(self):
        assert validate_lines(lines('1.125', '-1.125'), currency=Currency.KWD) == Decimal('0')

    def test_rule_order_zero_before_precision(self):
        with pytest.raises(ZeroAmountError):
            validate_lines(lines('0.004', 0, '-0.004'), currency=Currency.USD)

    def test_rule_order_precision_before_balance(self):
        with pytest.raises(ExcessPrecisionError):
            validate_lines(lines('100.005', '-99'), currency=Currency.USD)

    def test_no_currency_skips_check(self):
        assert validate_lines(lines('0.004', '-0.004')) == Decimal('0')
