"""
Test suite for the account registry

Tests account registration, normal-balance derivation, lookups, activation
state, the posting preconditions and balance mutation.
"""

import pytest
from decimal import Decimal

from general_ledger.storage import InMemoryStorage
from general_ledger.audit import AuditTrail, AuditEventType
from general_ledger.events import EventDispatcher, LedgerEvent
from general_ledger.accounts import (
    AccountRegistry, AccountType, NormalBalance, normal_balance_for,
    compute_balance_deltas, apply_delta
)
from general_ledger.validation import LedgerLineInput
from general_ledger.exceptions import (
    DuplicateAccountCodeError, UnknownAccountError, AccountInactiveError,
    AccountNotPostableError, NotFoundError
)


class TestNormalBalance:
    """Test deriving normal balance from account type"""

    @pytest.mark.parametrize("account_type", [
        AccountType.CURRENT_ASSET, AccountType.NON_CURRENT_ASSET, AccountType.ASSET,
        AccountType.OPERATING_EXPENSE, AccountType.NON_OPERATING_EXPENSE, AccountType.EXPENSE,
        AccountType.CONTRA_LIABILITY, AccountType.CONTRA_INCOME
    ])
    def test_debit_normal_types(self, account_type):
        assert normal_balance_for(account_type) == NormalBalance.DEBIT

    @pytest.mark.parametrize("account_type", [
        AccountType.CURRENT_LIABILITY, AccountType.NON_CURRENT_LIABILITY, AccountType.LIABILITY,
        AccountType.EQUITY, AccountType.RETAINED_EARNINGS, AccountType.REVENUE, AccountType.INCOME,
        AccountType.CONTRA_ASSET, AccountType.CONTRA_EXPENSE
    ])
    def test_credit_normal_types(self, account_type):
        assert normal_balance_for(account_type) == NormalBalance.CREDIT

    def test_type_categories(self):
        assert AccountType.CURRENT_ASSET.is_asset
        assert AccountType.RETAINED_EARNINGS.is_equity
        assert AccountType.INCOME.is_revenue
        assert AccountType.CONTRA_EXPENSE.is_contra
        assert AccountType.CONTRA_INCOME.is_income_statement
        assert not AccountType.CONTRA_ASSET.is_income_statement


class TestBalanceDeltas:
    """Test the pure balance-delta functions"""

    def test_deltas_grouped_by_account(self):
        entries = [
            LedgerLineInput(account_id="A-cash", amount_dc=Decimal('60')),
            LedgerLineInput(account_id="A-cash", amount_dc=Decimal('40')),
            LedgerLineInput(account_id="A-rev", amount_dc=Decimal('-100')),
        ]
        assert compute_balance_deltas(entries) == {
            "A-cash": Decimal('100'),
            "A-rev": Decimal('-100')
        }

    def test_apply_delta(self):
        assert apply_delta(Decimal('100'), Decimal('-30.50')) == Decimal('69.50')


class TestAccountRegistry:
    """Test account registration and lookups"""

    def setup_method(self):
        """Set up test environment"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.dispatcher = EventDispatcher()
        self.registry = AccountRegistry(self.storage, self.audit_trail, self.dispatcher)

    def test_register_account(self):
        """Test registering an account derives its normal balance"""
        account = self.registry.register_account(
            book_id="BOOK1", code="1000", name="Cash",
            account_type=AccountType.CURRENT_ASSET, account_id="A-cash"
        )

        assert account.id == "A-cash"
        assert account.normal_balance == NormalBalance.DEBIT
        assert account.balance == Decimal('0')
        assert account.is_active
        assert account.is_postable

        loaded = self.registry.get_account("A-cash")
        assert loaded.code == "1000"
        assert loaded.account_type == AccountType.CURRENT_ASSET

    def test_register_accepts_type_string(self):
        account = self.registry.register_account("BOOK1", "4000", "Sales", "revenue")
        assert account.account_type == AccountType.REVENUE
        assert account.normal_balance == NormalBalance.CREDIT

    def test_explicit_normal_balance_override(self):
        account = self.registry.register_account(
            "BOOK1", "1900", "Suspense", AccountType.ASSET,
            normal_balance=NormalBalance.CREDIT
        )
        assert account.normal_balance == NormalBalance.CREDIT

    def test_duplicate_code_rejected(self):
        self.registry.register_account("BOOK1", "1000", "Cash", AccountType.CURRENT_ASSET)
        with pytest.raises(DuplicateAccountCodeError):
            self.registry.register_account("BOOK1", "1000", "Other Cash", AccountType.CURRENT_ASSET)

    def test_same_code_in_other_book(self):
        self.registry.register_account("BOOK1", "1000", "Cash", AccountType.CURRENT_ASSET)
        other = self.registry.register_account("BOOK2", "1000", "Cash", AccountType.CURRENT_ASSET)
        assert other.book_id == "BOOK2"

    def test_parent_must_be_in_same_book(self):
        parent = self.registry.register_account("BOOK1", "1", "Assets", AccountType.ASSET, is_postable=False)
        with pytest.raises(UnknownAccountError):
            self.registry.register_account("BOOK2", "1000", "Cash", AccountType.CURRENT_ASSET, parent_id=parent.id)

    def test_children(self):
        parent = self.registry.register_account("BOOK1", "1", "Assets", AccountType.ASSET, is_postable=False)
        self.registry.register_account("BOOK1", "1100", "Bank", AccountType.CURRENT_ASSET, parent_id=parent.id)
        self.registry.register_account("BOOK1", "1000", "Cash", AccountType.CURRENT_ASSET, parent_id=parent.id)

        children = self.registry.get_children(parent.id)
        assert [c.code for c in children] == ["1000", "1100"]

    def test_list_accounts_sorted_by_code(self):
        self.registry.register_account("BOOK1", "4000", "Sales", AccountType.REVENUE)
        self.registry.register_account("BOOK1", "1000", "Cash", AccountType.CURRENT_ASSET)
        self.registry.register_account("BOOK2", "2000", "Payables", AccountType.CURRENT_LIABILITY)

        accounts = self.registry.list_accounts("BOOK1")
        assert [a.code for a in accounts] == ["1000", "4000"]

    def test_get_account_by_code(self):
        self.registry.register_account("BOOK1", "1000", "Cash", AccountType.CURRENT_ASSET, account_id="A-cash")
        assert self.registry.get_account_by_code("BOOK1", "1000").id == "A-cash"
        assert self.registry.get_account_by_code("BOOK2", "1000") is None

    def test_require_missing_account(self):
        with pytest.raises(NotFoundError):
            self.registry.require_account("missing")

    def test_deactivate_and_reactivate(self):
        account = self.registry.register_account("BOOK1", "1000", "Cash", AccountType.CURRENT_ASSET)

        deactivated = self.registry.deactivate_account(account.id, user_id="admin")
        assert not deactivated.is_active
        assert [a.code for a in self.registry.list_accounts("BOOK1", active_only=True)] == []
        assert len(self.registry.list_accounts("BOOK1")) == 1

        reactivated = self.registry.reactivate_account(account.id)
        assert reactivated.is_active

    def test_registration_audited(self):
        account = self.registry.register_account("BOOK1", "1000", "Cash", AccountType.CURRENT_ASSET)
        self.registry.deactivate_account(account.id)

        events = self.audit_trail.get_events_for_entity("account", account.id)
        assert [e.event_type for e in events] == [
            AuditEventType.ACCOUNT_REGISTERED, AuditEventType.ACCOUNT_DEACTIVATED
        ]

    def test_events_published(self):
        received = []
        self.dispatcher.subscribe_all(received.append)

        account = self.registry.register_account("BOOK1", "1000", "Cash", AccountType.CURRENT_ASSET)
        self.registry.deactivate_account(account.id)

        assert [e.event_type for e in received] == [
            LedgerEvent.ACCOUNT_REGISTERED, LedgerEvent.ACCOUNT_DEACTIVATED
        ]
        assert received[0].data["code"] == "1000"


class TestPostingPreconditions:
    """Test check_postable and balance mutation"""

    def setup_method(self):
        """Set up test environment"""
        self.storage = InMemoryStorage()
        self.registry = AccountRegistry(self.storage)
        self.cash = self.registry.register_account("BOOK1", "1000", "Cash", AccountType.CURRENT_ASSET, account_id="A-cash")
        self.rev = self.registry.register_account("BOOK1", "4000", "Revenue", AccountType.REVENUE, account_id="A-rev")
        self.header = self.registry.register_account("BOOK1", "1", "Assets", AccountType.ASSET, is_postable=False, account_id="A-hdr")

    def test_postable_accounts_resolve(self):
        resolved = self.registry.check_postable("BOOK1", ["A-cash", "A-rev", "A-cash"])
        assert set(resolved) == {"A-cash", "A-rev"}

    def test_unknown_account_names_line(self):
        with pytest.raises(UnknownAccountError) as exc_info:
            self.registry.check_postable("BOOK1", ["A-cash", "ghost"])
        assert exc_info.value.line_index == 2
        assert exc_info.value.account_id == "ghost"

    def test_account_in_other_book_is_unknown(self):
        with pytest.raises(UnknownAccountError):
            self.registry.check_postable("BOOK2", ["A-cash"])

    def test_inactive_account(self):
        self.registry.deactivate_account("A-rev")
        with pytest.raises(AccountInactiveError) as exc_info:
            self.registry.check_postable("BOOK1", ["A-cash", "A-rev"])
        assert exc_info.value.line_index == 2

    def test_non_postable_account(self):
        with pytest.raises(AccountNotPostableError):
            self.registry.check_postable("BOOK1", ["A-hdr", "A-cash"])

    def test_apply_balance_deltas_requires_transaction(self):
        with pytest.raises(RuntimeError, match="atomic"):
            self.registry.apply_balance_deltas({"A-cash": Decimal('100')})

    def test_apply_balance_deltas(self):
        with self.storage.atomic():
            updated = self.registry.apply_balance_deltas({
                "A-cash": Decimal('100'),
                "A-rev": Decimal('-100')
            })

        assert updated["A-cash"].balance == Decimal('100')
        assert self.registry.get_account("A-rev").balance == Decimal('-100')
        assert self.registry.get_account("A-rev").natural_balance == Decimal('100')

    def test_balance_deltas_roll_back(self):
        with pytest.raises(NotFoundError):
            with self.storage.atomic():
                self.registry.apply_balance_deltas({
                    "A-cash": Decimal('100'),
                    "missing": Decimal('-100')
                })

        assert self.registry.get_account("A-cash").balance == Decimal('0')
