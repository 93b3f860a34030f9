"""
Balance Aggregator Module

Read-only derivation of financial reports from posted history: trial
balance, balance sheet and income statement, plus export to dict, JSON and
CSV. Nothing here mutates state; every figure is recomputed from posted
ledger lines, so running a report twice for the same parameters gives
identical Decimal results.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import date, datetime, time, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union
from enum import Enum
import csv
import io
import json

from .storage import StorageInterface, _encode_value
from .accounts import Account, AccountRegistry, AccountType
from .config import LedgerConfig, get_config
from .journals import Journal, LedgerEntry
from .logging_config import get_logger, log_action


ZERO = Decimal('0')
HUNDRED = Decimal('100')
PERCENT_PLACES = Decimal('0.01')

DateBound = Union[date, datetime, str, None]


class ReportFormat(Enum):
    """Output formats for reports"""
    DICT = "dict"
    CSV = "csv"
    JSON = "json"


class DateBasis(Enum):
    """Which journal date a period filter applies to"""
    POSTED_AT = "posted_at"
    DOC_DATE = "doc_date"


CURRENT_ASSETS = {AccountType.CURRENT_ASSET}
NON_CURRENT_ASSETS = {AccountType.NON_CURRENT_ASSET, AccountType.ASSET, AccountType.CONTRA_ASSET}
CURRENT_LIABILITIES = {AccountType.CURRENT_LIABILITY}
NON_CURRENT_LIABILITIES = {
    AccountType.NON_CURRENT_LIABILITY, AccountType.LIABILITY, AccountType.CONTRA_LIABILITY
}
EQUITY = {AccountType.EQUITY, AccountType.RETAINED_EARNINGS}
REVENUE = {AccountType.REVENUE, AccountType.INCOME, AccountType.CONTRA_INCOME}
OPERATING_EXPENSES = {AccountType.OPERATING_EXPENSE, AccountType.EXPENSE, AccountType.CONTRA_EXPENSE}
NON_OPERATING_EXPENSES = {AccountType.NON_OPERATING_EXPENSE}


def _as_datetime(value: Union[date, datetime, str], end_of_day: bool) -> datetime:
    """
    Normalize a bound to an aware UTC datetime

    A plain date covers the whole day: as an upper bound it means the last
    instant of that day, as a lower bound the first.
    """
    if isinstance(value, str):
        if 'T' in value or ' ' in value:
            # fromisoformat only learned the "Z" suffix in Python 3.11
            if value.endswith(('Z', 'z')):
                value = value[:-1] + '+00:00'
            value = datetime.fromisoformat(value)
        else:
            value = date.fromisoformat(value)
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.max if end_of_day else time.min)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _as_date(value: Union[date, datetime, str]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    if whole == 0:
        return ZERO.quantize(PERCENT_PLACES)
    return (part / whole * HUNDRED).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)


def _to_plain(value: Any) -> Any:
    """Recursively convert report values to JSON-friendly primitives"""
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_plain(v) for v in value]
    return _encode_value(value)


@dataclass
class ReportLine:
    """
    One account on a report

    ``amount`` is in display sign: positive on the account's section side
    (debit for assets/expenses, credit for liabilities/equity/revenue); contra
    accounts therefore show negative and reduce their section.
    """
    account_id: Optional[str]
    code: str
    name: str
    account_type: Optional[AccountType]
    amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'account_id': self.account_id,
            'code': self.code,
            'name': self.name,
            'account_type': self.account_type.value if self.account_type else None,
            'amount': self.amount
        }


@dataclass
class TrialBalanceLine:
    """Account balance split into the debit or credit column by sign"""
    account_id: str
    code: str
    name: str
    account_type: AccountType
    debit_balance: Decimal
    credit_balance: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'account_id': self.account_id,
            'code': self.code,
            'name': self.name,
            'account_type': self.account_type.value,
            'debit_balance': self.debit_balance,
            'credit_balance': self.credit_balance
        }


@dataclass
class TrialBalance:
    """
    Debit and credit columns of every account with a balance

    ``rounding_residual`` is the sum of the leftovers each posted journal was
    allowed to keep; the columns balance when they differ by that amount,
    give or take the tolerance.
    """
    book_id: str
    as_of: datetime
    lines: List[TrialBalanceLine] = field(default_factory=list)
    total_debits: Decimal = ZERO
    total_credits: Decimal = ZERO
    rounding_residual: Decimal = ZERO
    tolerance: Decimal = Decimal('0.01')

    @property
    def difference(self) -> Decimal:
        return self.total_debits - self.total_credits

    @property
    def is_balanced(self) -> bool:
        return abs(self.difference - self.rounding_residual) <= self.tolerance

    def to_dict(self) -> Dict[str, Any]:
        return {
            'report_name': 'Trial Balance',
            'book_id': self.book_id,
            'as_of': self.as_of,
            'lines': [line.to_dict() for line in self.lines],
            'total_debits': self.total_debits,
            'total_credits': self.total_credits,
            'difference': self.difference,
            'rounding_residual': self.rounding_residual,
            'is_balanced': self.is_balanced
        }

    def rows(self) -> List[Dict[str, Any]]:
        return [line.to_dict() for line in self.lines]


@dataclass
class BalanceSheet:
    book_id: str
    as_of: datetime
    current_assets: List[ReportLine] = field(default_factory=list)
    non_current_assets: List[ReportLine] = field(default_factory=list)
    current_liabilities: List[ReportLine] = field(default_factory=list)
    non_current_liabilities: List[ReportLine] = field(default_factory=list)
    equity: List[ReportLine] = field(default_factory=list)
    current_earnings: Decimal = ZERO
    rounding_residual: Decimal = ZERO
    tolerance: Decimal = Decimal('0.01')

    @staticmethod
    def _sum(lines: List[ReportLine]) -> Decimal:
        return sum((line.amount for line in lines), ZERO)

    @property
    def total_current_assets(self) -> Decimal:
        return self._sum(self.current_assets)

    @property
    def total_non_current_assets(self) -> Decimal:
        return self._sum(self.non_current_assets)

    @property
    def total_assets(self) -> Decimal:
        return self.total_current_assets + self.total_non_current_assets

    @property
    def total_current_liabilities(self) -> Decimal:
        return self._sum(self.current_liabilities)

    @property
    def total_non_current_liabilities(self) -> Decimal:
        return self._sum(self.non_current_liabilities)

    @property
    def total_liabilities(self) -> Decimal:
        return self.total_current_liabilities + self.total_non_current_liabilities

    @property
    def total_equity(self) -> Decimal:
        """Equity accounts plus current earnings"""
        return self._sum(self.equity)

    @property
    def total_liabilities_and_equity(self) -> Decimal:
        return self.total_liabilities + self.total_equity

    @property
    def difference(self) -> Decimal:
        return self.total_assets - self.total_liabilities_and_equity

    @property
    def is_balanced(self) -> bool:
        return abs(self.difference - self.rounding_residual) <= self.tolerance

    def amount_for(self, code: str) -> Optional[Decimal]:
        """Display amount of an account by code, wherever it is categorized"""
        for line in self.rows_as_lines():
            if line.code == code:
                return line.amount
        return None

    def rows_as_lines(self) -> List[ReportLine]:
        return (self.current_assets + self.non_current_assets + self.current_liabilities
                + self.non_current_liabilities + self.equity)

    def to_dict(self) -> Dict[str, Any]:
        def section(lines: List[ReportLine], total: Decimal) -> Dict[str, Any]:
            return {'accounts': [line.to_dict() for line in lines], 'total': total}

        return {
            'report_name': 'Balance Sheet',
            'book_id': self.book_id,
            'as_of': self.as_of,
            'assets': {
                'current_assets': section(self.current_assets, self.total_current_assets),
                'non_current_assets': section(self.non_current_assets, self.total_non_current_assets),
                'total_assets': self.total_assets
            },
            'liabilities': {
                'current_liabilities': section(self.current_liabilities, self.total_current_liabilities),
                'non_current_liabilities': section(self.non_current_liabilities, self.total_non_current_liabilities),
                'total_liabilities': self.total_liabilities
            },
            'equity': {
                'accounts': [line.to_dict() for line in self.equity],
                'current_earnings': self.current_earnings,
                'total_equity': self.total_equity
            },
            'total_liabilities_and_equity': self.total_liabilities_and_equity,
            'difference': self.difference,
            'rounding_residual': self.rounding_residual,
            'is_balanced': self.is_balanced
        }

    def rows(self) -> List[Dict[str, Any]]:
        sections = [
            ('current_assets', self.current_assets),
            ('non_current_assets', self.non_current_assets),
            ('current_liabilities', self.current_liabilities),
            ('non_current_liabilities', self.non_current_liabilities),
            ('equity', self.equity)
        ]
        return [
            {'section': name, **line.to_dict()}
            for name, lines in sections
            for line in lines
        ]


@dataclass
class IncomeStatement:
    book_id: str
    start_date: date
    end_date: date
    revenue: List[ReportLine] = field(default_factory=list)
    operating_expenses: List[ReportLine] = field(default_factory=list)
    non_operating_expenses: List[ReportLine] = field(default_factory=list)

    @property
    def total_revenue(self) -> Decimal:
        return sum((line.amount for line in self.revenue), ZERO)

    @property
    def total_operating_expenses(self) -> Decimal:
        return sum((line.amount for line in self.operating_expenses), ZERO)

    @property
    def total_non_operating_expenses(self) -> Decimal:
        return sum((line.amount for line in self.non_operating_expenses), ZERO)

    @property
    def total_expenses(self) -> Decimal:
        return self.total_operating_expenses + self.total_non_operating_expenses

    @property
    def operating_income(self) -> Decimal:
        return self.total_revenue - self.total_operating_expenses

    @property
    def net_income(self) -> Decimal:
        return self.total_revenue - self.total_expenses

    @property
    def operating_margin(self) -> Decimal:
        """Operating income as a percentage of revenue"""
        return _percent(self.operating_income, self.total_revenue)

    @property
    def net_margin(self) -> Decimal:
        """Net income as a percentage of revenue"""
        return _percent(self.net_income, self.total_revenue)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'report_name': 'Income Statement',
            'book_id': self.book_id,
            'start_date': self.start_date,
            'end_date': self.end_date,
            'revenue': {
                'accounts': [line.to_dict() for line in self.revenue],
                'total': self.total_revenue
            },
            'operating_expenses': {
                'accounts': [line.to_dict() for line in self.operating_expenses],
                'total': self.total_operating_expenses
            },
            'non_operating_expenses': {
                'accounts': [line.to_dict() for line in self.non_operating_expenses],
                'total': self.total_non_operating_expenses
            },
            'total_expenses': self.total_expenses,
            'operating_income': self.operating_income,
            'net_income': self.net_income,
            'operating_margin': self.operating_margin,
            'net_margin': self.net_margin
        }

    def rows(self) -> List[Dict[str, Any]]:
        sections = [
            ('revenue', self.revenue),
            ('operating_expenses', self.operating_expenses),
            ('non_operating_expenses', self.non_operating_expenses)
        ]
        return [
            {'section': name, **line.to_dict()}
            for name, lines in sections
            for line in lines
        ]


Report = Union[TrialBalance, BalanceSheet, IncomeStatement]


class BalanceAggregator:
    """
    Computes per-account balances and financial reports from posted journals
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountRegistry,
        config: Optional[LedgerConfig] = None,
        clock=None
    ):
        self.storage = storage
        self.accounts = accounts
        self.config = config or get_config()
        self.tolerance = self.config.tolerance
        self.journals_table = "journals"
        self.entries_table = "ledger_entries"
        self.logger = get_logger("ledger.reporting")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def account_balances(
        self,
        book_id: str,
        as_of: DateBound = None,
        start_date: DateBound = None,
        end_date: DateBound = None,
        date_basis: Union[DateBasis, str] = DateBasis.POSTED_AT
    ) -> Dict[str, Decimal]:
        """
        Signed (debit-positive) balance per account over posted journals

        Args:
            book_id: Book to aggregate
            as_of: Upper bound on ``posted_at`` (or ``doc_date``); inclusive
            start_date: Optional inclusive lower bound
            end_date: Optional inclusive upper bound; combined with as_of, the earlier wins
            date_basis: Whether bounds apply to ``posted_at`` or ``doc_date``

        Returns:
            Map of account_id -> signed balance; accounts without lines are absent
        """
        balances, _ = self._aggregate(
            book_id, DateBasis(date_basis), start_date, [b for b in (as_of, end_date) if b is not None]
        )
        return balances

    def _aggregate(
        self,
        book_id: str,
        basis: DateBasis,
        lower: DateBound,
        uppers: List[Union[date, datetime, str]]
    ) -> Tuple[Dict[str, Decimal], Decimal]:
        """
        Balances per account plus the rounding residual the validator accepted

        Each posted journal may be off zero by up to the tolerance. The
        residual is the sum of those per-journal leftovers; a journal whose
        own total is beyond the tolerance does not count towards it, so its
        error still shows as a report imbalance.
        """
        journals = self._posted_journals(book_id, basis, lower, uppers)
        entries = self.storage.find(self.entries_table, {'book_id': book_id})

        balances: Dict[str, Decimal] = {}
        journal_totals: Dict[str, Decimal] = {}
        # Iterate in a fixed order so repeated runs sum identically
        for data in sorted(entries, key=lambda e: (e['journal_id'], e['line_no'])):
            if data['journal_id'] not in journals:
                continue
            entry = LedgerEntry.from_dict(data)
            balances[entry.account_id] = balances.get(entry.account_id, ZERO) + entry.amount_dc
            journal_totals[entry.journal_id] = journal_totals.get(entry.journal_id, ZERO) + entry.amount_dc

        residual = sum(
            (total for total in journal_totals.values() if abs(total) <= self.tolerance), ZERO
        )
        return balances, residual

    def trial_balance(self, book_id: str, as_of_date: DateBound = None) -> TrialBalance:
        """
        Trial balance of a book as of a point in time

        Every account with a non-zero posted balance is listed once, in the
        debit column when the balance is positive and the credit column when
        negative. An imbalance is reported through ``is_balanced`` and logged,
        never raised.
        """
        as_of = _as_datetime(as_of_date, end_of_day=True) if as_of_date is not None else self._clock()
        balances, residual = self._aggregate(book_id, DateBasis.POSTED_AT, None, [as_of])

        report = TrialBalance(book_id=book_id, as_of=as_of, rounding_residual=residual, tolerance=self.tolerance)
        for account in self.accounts.list_accounts(book_id):
            balance = balances.get(account.id, ZERO)
            if balance == 0:
                continue
            report.lines.append(TrialBalanceLine(
                account_id=account.id,
                code=account.code,
                name=account.name,
                account_type=account.account_type,
                debit_balance=balance if balance > 0 else ZERO,
                credit_balance=-balance if balance < 0 else ZERO
            ))

        report.total_debits = sum((line.debit_balance for line in report.lines), ZERO)
        report.total_credits = sum((line.credit_balance for line in report.lines), ZERO)

        if not report.is_balanced:
            log_action(
                self.logger, "warning", f"Trial balance out of balance for book {book_id}",
                action="trial_balance", resource=f"book:{book_id}", book_id=book_id,
                extra={
                    "total_debits": str(report.total_debits),
                    "total_credits": str(report.total_credits),
                    "rounding_residual": str(report.rounding_residual)
                }
            )
        return report

    def balance_sheet(self, book_id: str, as_of_date: DateBound = None) -> BalanceSheet:
        """
        Balance sheet of a book as of a point in time

        Liability and equity balances are sign-flipped to positive. Net income
        of income-statement accounts to date appears in equity as a current
        earnings line.
        """
        as_of = _as_datetime(as_of_date, end_of_day=True) if as_of_date is not None else self._clock()
        balances, residual = self._aggregate(book_id, DateBasis.POSTED_AT, None, [as_of])

        report = BalanceSheet(
            book_id=book_id, as_of=as_of, rounding_residual=residual, tolerance=self.tolerance
        )
        earnings = ZERO
        for account in self.accounts.list_accounts(book_id):
            balance = balances.get(account.id, ZERO)
            if balance == 0:
                continue
            kind = account.account_type
            if kind.is_income_statement:
                earnings -= balance
            elif kind in CURRENT_ASSETS:
                report.current_assets.append(self._line(account, balance))
            elif kind in NON_CURRENT_ASSETS:
                report.non_current_assets.append(self._line(account, balance))
            elif kind in CURRENT_LIABILITIES:
                report.current_liabilities.append(self._line(account, -balance))
            elif kind in NON_CURRENT_LIABILITIES:
                report.non_current_liabilities.append(self._line(account, -balance))
            elif kind in EQUITY:
                report.equity.append(self._line(account, -balance))

        report.current_earnings = earnings
        if earnings != 0:
            report.equity.append(ReportLine(
                account_id=None,
                code="",
                name="Current earnings",
                account_type=None,
                amount=earnings
            ))

        if not report.is_balanced:
            log_action(
                self.logger, "warning", f"Balance sheet does not balance for book {book_id}",
                action="balance_sheet", resource=f"book:{book_id}", book_id=book_id,
                extra={"difference": str(report.difference), "rounding_residual": str(report.rounding_residual)}
            )
        return report

    def income_statement(self, book_id: str, start_date: DateBound, end_date: DateBound) -> IncomeStatement:
        """
        Income statement over posted journals dated within [start_date, end_date]

        Revenue is shown credit-positive and expenses debit-positive; contra
        accounts land in the section they offset with the opposite sign.
        """
        start, end = _as_date(start_date), _as_date(end_date)
        if start > end:
            raise ValueError(f"start_date {start} is after end_date {end}")

        balances = self.account_balances(
            book_id, start_date=start, end_date=end, date_basis=DateBasis.DOC_DATE
        )

        report = IncomeStatement(book_id=book_id, start_date=start, end_date=end)
        for account in self.accounts.list_accounts(book_id):
            balance = balances.get(account.id, ZERO)
            if balance == 0:
                continue
            kind = account.account_type
            if kind in REVENUE:
                report.revenue.append(self._line(account, -balance))
            elif kind in OPERATING_EXPENSES:
                report.operating_expenses.append(self._line(account, balance))
            elif kind in NON_OPERATING_EXPENSES:
                report.non_operating_expenses.append(self._line(account, balance))

        return report

    def export_report(self, report: Report, format: ReportFormat = ReportFormat.DICT) -> Union[Dict, str]:
        """
        Export a report in the specified format

        DICT keeps Decimals and dates as objects; JSON renders them as
        strings; CSV lists one row per account line.
        """
        format = ReportFormat(format)
        if format == ReportFormat.DICT:
            return report.to_dict()

        elif format == ReportFormat.JSON:
            return json.dumps(_to_plain(report.to_dict()), indent=2)

        elif format == ReportFormat.CSV:
            output = io.StringIO()
            rows = [_to_plain(row) for row in report.rows()]
            if rows:
                writer = csv.DictWriter(output, fieldnames=list(rows[0].keys()))
                writer.writeheader()
                for row in rows:
                    writer.writerow(row)
            csv_content = output.getvalue()
            output.close()
            return csv_content

        else:
            raise ValueError(f"Unsupported export format: {format}")

    def _posted_journals(
        self,
        book_id: str,
        basis: DateBasis,
        lower: DateBound,
        uppers: List[Union[date, datetime, str]]
    ) -> set:
        """Ids of posted journals within the bounds on the chosen date"""
        selected = set()
        for data in self.storage.find(self.journals_table, {'book_id': book_id}):
            if not data.get('posted_at'):
                continue
            journal = Journal.from_dict(data)
            if basis == DateBasis.POSTED_AT:
                moment = journal.posted_at
                if moment.tzinfo is None:
                    moment = moment.replace(tzinfo=timezone.utc)
                if lower is not None and moment < _as_datetime(lower, end_of_day=False):
                    continue
                if any(moment > _as_datetime(upper, end_of_day=True) for upper in uppers):
                    continue
            else:
                if lower is not None and journal.doc_date < _as_date(lower):
                    continue
                if any(journal.doc_date > _as_date(upper) for upper in uppers):
                    continue
            selected.add(journal.id)
        return selected

    @staticmethod
    def _line(account: Account, amount: Decimal) -> ReportLine:
        return ReportLine(
            account_id=account.id,
            code=account.code,
            name=account.name,
            account_type=account.account_type,
            amount=amount
        )
