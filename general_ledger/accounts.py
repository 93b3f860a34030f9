"""
Account Registry Module

Per-book view of the chart of accounts: lookup, hierarchy, activation state
and the running balance of every account. Accounts are supplied by the
account-catalog collaborator through ``register_account``; afterwards only
the journal engine mutates ``balance``, and only inside its atomic posting
block.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .events import EventDispatcher, EventPayload, LedgerEvent
from .exceptions import (
    AccountInactiveError, AccountNotPostableError, DuplicateAccountCodeError,
    NotFoundError, UnknownAccountError
)
from .logging_config import get_logger, log_action


class NormalBalance(Enum):
    """Side on which an account's balance naturally sits"""
    DEBIT = "debit"
    CREDIT = "credit"


class AccountType(Enum):
    """Chart-of-accounts types"""
    # Assets
    CURRENT_ASSET = "current_asset"
    NON_CURRENT_ASSET = "non_current_asset"
    ASSET = "asset"
    # Liabilities
    CURRENT_LIABILITY = "current_liability"
    NON_CURRENT_LIABILITY = "non_current_liability"
    LIABILITY = "liability"
    # Equity
    EQUITY = "equity"
    RETAINED_EARNINGS = "retained_earnings"
    # Revenue
    REVENUE = "revenue"
    INCOME = "income"
    # Expenses
    OPERATING_EXPENSE = "operating_expense"
    NON_OPERATING_EXPENSE = "non_operating_expense"
    EXPENSE = "expense"
    # Contra accounts
    CONTRA_ASSET = "contra_asset"
    CONTRA_LIABILITY = "contra_liability"
    CONTRA_INCOME = "contra_income"
    CONTRA_EXPENSE = "contra_expense"

    @property
    def is_asset(self) -> bool:
        return self in ASSET_TYPES

    @property
    def is_liability(self) -> bool:
        return self in LIABILITY_TYPES

    @property
    def is_equity(self) -> bool:
        return self in EQUITY_TYPES

    @property
    def is_revenue(self) -> bool:
        return self in REVENUE_TYPES

    @property
    def is_expense(self) -> bool:
        return self in EXPENSE_TYPES

    @property
    def is_contra(self) -> bool:
        return self.value.startswith("contra_")

    @property
    def is_income_statement(self) -> bool:
        """Revenue, expense and their contras; everything else is balance sheet"""
        return self in INCOME_STATEMENT_TYPES


ASSET_TYPES = frozenset({
    AccountType.CURRENT_ASSET, AccountType.NON_CURRENT_ASSET, AccountType.ASSET
})
LIABILITY_TYPES = frozenset({
    AccountType.CURRENT_LIABILITY, AccountType.NON_CURRENT_LIABILITY, AccountType.LIABILITY
})
EQUITY_TYPES = frozenset({AccountType.EQUITY, AccountType.RETAINED_EARNINGS})
REVENUE_TYPES = frozenset({AccountType.REVENUE, AccountType.INCOME})
EXPENSE_TYPES = frozenset({
    AccountType.OPERATING_EXPENSE, AccountType.NON_OPERATING_EXPENSE, AccountType.EXPENSE
})
INCOME_STATEMENT_TYPES = REVENUE_TYPES | EXPENSE_TYPES | {
    AccountType.CONTRA_INCOME, AccountType.CONTRA_EXPENSE
}

_DEBIT_NORMAL = ASSET_TYPES | EXPENSE_TYPES | {
    AccountType.CONTRA_LIABILITY, AccountType.CONTRA_INCOME
}


def normal_balance_for(account_type: AccountType) -> NormalBalance:
    """
    Derive the normal balance side from the account type

    Assets and expenses are debit-normal; liabilities, equity and revenue are
    credit-normal; a contra account sits opposite the type it offsets.
    """
    if account_type in _DEBIT_NORMAL:
        return NormalBalance.DEBIT
    return NormalBalance.CREDIT


def compute_balance_deltas(entries: Iterable) -> Dict[str, Decimal]:
    """Signed sum of ``amount_dc`` per account, in first-seen order"""
    deltas: Dict[str, Decimal] = {}
    for entry in entries:
        deltas[entry.account_id] = deltas.get(entry.account_id, Decimal('0')) + entry.amount_dc
    return deltas


def apply_delta(old_balance: Decimal, delta: Decimal) -> Decimal:
    """New running balance after a posting delta"""
    return old_balance + delta


@dataclass
class Account(StorageRecord):
    """
    Ledger account within one book

    ``balance`` is debit-positive: the signed sum of ``amount_dc`` over every
    posted ledger line that references this account.
    """
    book_id: str
    code: str
    name: str
    account_type: AccountType
    normal_balance: NormalBalance
    is_postable: bool = True
    parent_id: Optional[str] = None
    is_active: bool = True
    balance: Decimal = Decimal('0')
    description: Optional[str] = None

    @property
    def natural_balance(self) -> Decimal:
        """Balance expressed on the account's normal side (credit-normal flipped positive)"""
        if self.normal_balance == NormalBalance.CREDIT:
            return -self.balance
        return self.balance

    @classmethod
    def from_dict(cls, data: Dict) -> 'Account':
        data = dict(data)
        data['account_type'] = AccountType(data['account_type'])
        data['normal_balance'] = NormalBalance(data['normal_balance'])
        data['balance'] = Decimal(data.get('balance', '0'))
        return super().from_dict(data)


class AccountRegistry:
    """
    Lookup and balance store for the accounts of every book
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: Optional[AuditTrail] = None,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "accounts"
        self.logger = get_logger("ledger.accounts")
        self._event_dispatcher = event_dispatcher

    def register_account(
        self,
        book_id: str,
        code: str,
        name: str,
        account_type: AccountType,
        normal_balance: Optional[NormalBalance] = None,
        is_postable: bool = True,
        parent_id: Optional[str] = None,
        description: Optional[str] = None,
        account_id: Optional[str] = None
    ) -> Account:
        """
        Add an account supplied by the chart-of-accounts catalog

        Args:
            book_id: Book the account belongs to
            code: Short identifier, unique within the book
            name: Display name
            account_type: Chart-of-accounts type
            normal_balance: Override; derived from the type when omitted
            is_postable: False for structural/summary accounts
            parent_id: Optional parent account in the same book
            description: Optional free text
            account_id: Caller-chosen id; generated when omitted

        Returns:
            Registered Account with a zero balance

        Raises:
            DuplicateAccountCodeError: If the code is taken in this book
            UnknownAccountError: If the parent is not an account of this book
        """
        account_type = AccountType(account_type)
        now = datetime.now(timezone.utc)

        with self.storage.atomic():
            if self.get_account_by_code(book_id, code) is not None:
                raise DuplicateAccountCodeError(book_id, code)

            if parent_id is not None:
                parent = self.get_account(parent_id)
                if parent is None or parent.book_id != book_id:
                    raise UnknownAccountError(parent_id)

            account = Account(
                id=account_id or str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                book_id=book_id,
                code=code,
                name=name,
                account_type=account_type,
                normal_balance=NormalBalance(normal_balance) if normal_balance else normal_balance_for(account_type),
                is_postable=is_postable,
                parent_id=parent_id,
                description=description
            )
            self.storage.create(self.table_name, account.id, account.to_dict())

            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.ACCOUNT_REGISTERED,
                    entity_type="account",
                    entity_id=account.id,
                    book_id=book_id,
                    metadata={
                        "code": code,
                        "account_type": account_type.value,
                        "normal_balance": account.normal_balance.value,
                        "is_postable": is_postable
                    }
                )

        log_action(
            self.logger, "info", f"Account registered: {code} {name}",
            action="register_account", resource=f"account:{account.id}",
            book_id=book_id, account_id=account.id,
            extra={"account_type": account_type.value}
        )
        self._publish(LedgerEvent.ACCOUNT_REGISTERED, account)
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get an account by ID"""
        data = self.storage.find_by_id(self.table_name, account_id)
        return Account.from_dict(data) if data else None

    def require_account(self, account_id: str) -> Account:
        """Get an account by ID or raise NotFoundError"""
        account = self.get_account(account_id)
        if account is None:
            raise NotFoundError("account", account_id)
        return account

    def get_account_by_code(self, book_id: str, code: str) -> Optional[Account]:
        """Look up an account by its code within a book"""
        matches = self.storage.find(self.table_name, {'book_id': book_id, 'code': code})
        return Account.from_dict(matches[0]) if matches else None

    def list_accounts(self, book_id: str, active_only: bool = False) -> List[Account]:
        """All accounts of a book, sorted by code"""
        filters = {'book_id': book_id}
        if active_only:
            filters['is_active'] = True
        accounts = [Account.from_dict(data) for data in self.storage.find(self.table_name, filters)]
        accounts.sort(key=lambda a: a.code)
        return accounts

    def get_children(self, account_id: str) -> List[Account]:
        """Direct children of an account in the hierarchy"""
        children = [
            Account.from_dict(data)
            for data in self.storage.find(self.table_name, {'parent_id': account_id})
        ]
        children.sort(key=lambda a: a.code)
        return children

    def deactivate_account(self, account_id: str, user_id: Optional[str] = None) -> Account:
        """
        Deactivate an account; history is kept and its balance still reports

        Draft journals referencing it will fail re-validation at posting.
        """
        account = self._set_active(account_id, False, AuditEventType.ACCOUNT_DEACTIVATED, user_id)
        self._publish(LedgerEvent.ACCOUNT_DEACTIVATED, account)
        return account

    def reactivate_account(self, account_id: str, user_id: Optional[str] = None) -> Account:
        """Allow postings to a previously deactivated account again"""
        return self._set_active(account_id, True, AuditEventType.ACCOUNT_REACTIVATED, user_id)

    def _set_active(
        self,
        account_id: str,
        active: bool,
        event_type: AuditEventType,
        user_id: Optional[str]
    ) -> Account:
        with self.storage.atomic():
            account = self.require_account(account_id)
            data = self.storage.update(self.table_name, account_id, {
                'is_active': active,
                'updated_at': datetime.now(timezone.utc)
            })
            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=event_type,
                    entity_type="account",
                    entity_id=account_id,
                    book_id=account.book_id,
                    user_id=user_id,
                    metadata={"code": account.code}
                )

        log_action(
            self.logger, "info", f"Account {account.code} {'reactivated' if active else 'deactivated'}",
            user_id=user_id, action=event_type.value, resource=f"account:{account_id}",
            book_id=account.book_id, account_id=account_id
        )
        return Account.from_dict(data)

    def check_postable(self, book_id: str, account_ids: Sequence[str]) -> Dict[str, Account]:
        """
        Resolve the accounts referenced by journal lines, in line order

        Args:
            book_id: Book the journal belongs to
            account_ids: Account id of each line

        Returns:
            Map of account_id -> Account

        Raises:
            UnknownAccountError: Account missing or in another book
            AccountInactiveError: Account deactivated
            AccountNotPostableError: Structural/summary account
        """
        resolved: Dict[str, Account] = {}
        for index, account_id in enumerate(account_ids, start=1):
            account = resolved.get(account_id) or self.get_account(account_id)
            if account is None or account.book_id != book_id:
                raise UnknownAccountError(account_id, index)
            if not account.is_active:
                raise AccountInactiveError(account_id, index)
            if not account.is_postable:
                raise AccountNotPostableError(account_id, index)
            resolved[account_id] = account
        return resolved

    def apply_balance_deltas(self, deltas: Dict[str, Decimal]) -> Dict[str, Account]:
        """
        Add posting deltas to running balances

        Must run inside the caller's ``storage.atomic()`` block together with
        the journal's ``posted_at`` write.
        """
        if not self.storage.in_transaction:
            raise RuntimeError("apply_balance_deltas must run inside storage.atomic()")

        now = datetime.now(timezone.utc)
        updated: Dict[str, Account] = {}
        for account_id, delta in deltas.items():
            account = self.require_account(account_id)
            new_balance = apply_delta(account.balance, delta)
            data = self.storage.update(self.table_name, account_id, {
                'balance': new_balance,
                'updated_at': now
            })
            updated[account_id] = Account.from_dict(data)
        return updated

    def _publish(self, event_type: LedgerEvent, account: Account) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(EventPayload(
                event_type=event_type,
                entity_type="account",
                entity_id=account.id,
                book_id=account.book_id,
                data={"code": account.code, "account_type": account.account_type.value}
            ))
