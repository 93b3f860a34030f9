"""
Journal Engine

Creates, validates, posts and reverses journals. This is the only component
that mutates account balances.

A journal starts as a draft (no ``posted_at``). Posting re-validates its
lines, stamps ``posted_at`` and applies the per-account balance deltas in one
atomic block; from then on the journal and its lines are immutable. The only
way to neutralize a posted journal is a reversal: a new journal with every
amount sign-flipped, created and posted in a single atomic block.

Posting and reversal hold a per-book lock around the whole
read-balance/compute/write sequence so concurrent postings to the same book
cannot lose an update.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
from contextlib import contextmanager
from enum import Enum
import threading
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .accounts import AccountRegistry, compute_balance_deltas
from .config import LedgerConfig, get_config
from .currency import Currency, to_amount
from .events import EventDispatcher, EventPayload, LedgerEvent
from .exceptions import (
    AlreadyPostedError, AlreadyReversedError, ImmutableJournalError,
    LedgerError, NotFoundError, NotPostedError
)
from .logging_config import get_logger, log_action
from .validation import (
    LedgerLineInput, coerce_lines, line_total, sum_credits, sum_debits, validate_lines
)


class DocType(Enum):
    """Source document a journal records"""
    MANUAL = "manual"
    INVOICE = "invoice"
    BILL = "bill"
    PAYMENT = "payment"
    BANK = "bank"
    ADJUSTMENT = "adjustment"


class JournalState(Enum):
    """States of a journal"""
    DRAFT = "draft"    # Created but not yet posted
    POSTED = "posted"  # Finalized and immutable


class SealedWhenPosted:
    """
    Mixin refusing attribute assignment once the record is sealed

    Sealed records come from posted journals; editing one means creating a
    new journal instead.
    """
    _sealed = False

    def seal(self) -> None:
        object.__setattr__(self, '_sealed', True)

    @property
    def sealed(self) -> bool:
        return self._sealed

    def _journal_ref(self) -> str:
        return getattr(self, 'journal_id', None) or getattr(self, 'id', '?')

    def __setattr__(self, name, value):
        if self._sealed:
            raise ImmutableJournalError(self._journal_ref(), name)
        super().__setattr__(name, value)

    def __delattr__(self, name):
        if self._sealed:
            raise ImmutableJournalError(self._journal_ref(), name)
        super().__delattr__(name)


@dataclass
class Journal(SealedWhenPosted, StorageRecord):
    """
    A dated group of ledger lines recording one financial event
    """
    book_id: str
    doc_type: DocType
    doc_date: date
    currency: str
    doc_no: Optional[str] = None
    narration: Optional[str] = None
    posted_at: Optional[datetime] = None
    created_by: Optional[str] = None
    reversal_of: Optional[str] = None

    def __post_init__(self):
        if self.posted_at is not None:
            self.seal()

    @property
    def state(self) -> JournalState:
        return JournalState.POSTED if self.posted_at is not None else JournalState.DRAFT

    @property
    def is_posted(self) -> bool:
        return self.posted_at is not None

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Journal':
        data = dict(data)
        data['doc_type'] = DocType(data['doc_type'])
        data['doc_date'] = date.fromisoformat(data['doc_date'])
        if data.get('posted_at'):
            data['posted_at'] = datetime.fromisoformat(data['posted_at'])
        return super().from_dict(data)


@dataclass
class LedgerEntry(SealedWhenPosted, StorageRecord):
    """
    One debit (positive) or credit (negative) line of a journal
    """
    journal_id: str
    book_id: str
    line_no: int
    account_id: str
    amount_dc: Decimal
    contact_id: Optional[str] = None
    description: Optional[str] = None
    amount_txn: Optional[Decimal] = None
    fx_rate: Optional[Decimal] = None

    @property
    def is_debit(self) -> bool:
        return self.amount_dc > 0

    @property
    def is_credit(self) -> bool:
        return self.amount_dc < 0

    def to_line_input(self) -> LedgerLineInput:
        return LedgerLineInput(
            account_id=self.account_id,
            amount_dc=self.amount_dc,
            contact_id=self.contact_id,
            description=self.description,
            amount_txn=self.amount_txn,
            fx_rate=self.fx_rate
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LedgerEntry':
        data = dict(data)
        data['amount_dc'] = Decimal(data['amount_dc'])
        for key in ('amount_txn', 'fx_rate'):
            if data.get(key) is not None:
                data[key] = Decimal(data[key])
        return super().from_dict(data)


JournalWithEntries = Tuple[Journal, List[LedgerEntry]]
DateLike = Union[date, datetime, str]


def _to_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BookLockRegistry:
    """One lock per book id"""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, book_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(book_id)
            if lock is None:
                lock = self._locks[book_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, book_id: str):
        with self.lock_for(book_id):
            yield


class JournalEngine:
    """
    Orchestrates journal creation, posting and reversal for every book
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountRegistry,
        audit_trail: Optional[AuditTrail] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        config: Optional[LedgerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.accounts = accounts
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.tolerance = self.config.tolerance
        self.journals_table = "journals"
        self.entries_table = "ledger_entries"
        self.sequences_table = "doc_sequences"
        self.logger = get_logger("ledger.journals")
        self._event_dispatcher = event_dispatcher
        self._clock = clock or _utc_now
        self._book_locks = BookLockRegistry()

    # Public operations

    def create_journal(
        self,
        book_id: str,
        doc_type: Union[DocType, str],
        doc_date: DateLike,
        currency: str,
        lines: Sequence[Union[LedgerLineInput, Dict[str, Any]]],
        narration: Optional[str] = None,
        doc_no: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> JournalWithEntries:
        """
        Create a draft journal and its ledger lines

        Args:
            book_id: Book the journal belongs to
            doc_type: Source document type
            doc_date: Accounting date of the event
            currency: ISO 4217 code of the journal
            lines: Candidate lines; line_no follows input order (1-based)
            narration: Optional free text
            doc_no: Human reference; next number of the book's sequence when omitted
            created_by: User creating the draft

        Returns:
            (Journal, [LedgerEntry]) in draft state; balances untouched

        Raises:
            UnknownAccountError, AccountInactiveError, AccountNotPostableError,
            InsufficientLinesError, ZeroAmountError, ExcessPrecisionError, UnbalancedJournalError,
            InvalidCurrencyError, PersistenceError
        """
        with self._logged("create_journal", f"book:{book_id}", created_by):
            with self.storage.atomic():
                journal, entries = self._create(
                    book_id=book_id,
                    doc_type=DocType(doc_type),
                    doc_date=_to_date(doc_date),
                    currency=currency,
                    lines=coerce_lines(lines),
                    narration=narration,
                    doc_no=doc_no,
                    created_by=created_by
                )

        log_action(
            self.logger, "info", f"Journal created: {journal.doc_no}",
            user_id=created_by, action="create_journal", resource=f"journal:{journal.id}",
            book_id=book_id, journal_id=journal.id,
            extra={"line_count": len(entries), "total_debit": str(sum_debits(entries))}
        )
        self._publish(LedgerEvent.JOURNAL_CREATED, journal)
        return journal, entries

    def post_journal(self, journal_id: str, posted_by: str) -> JournalWithEntries:
        """
        Post a draft journal (make it immutable) and apply its balance deltas

        The ``posted_at`` write and every balance update commit together or
        not at all.

        Raises:
            NotFoundError: Journal does not exist
            AlreadyPostedError: Journal was already posted
            validation errors: Lines or accounts no longer pass the rules
            PersistenceError: Storage failed; nothing was applied
        """
        with self._logged("post_journal", f"journal:{journal_id}", posted_by):
            book_id = self._require_journal(journal_id).book_id
            with self._book_locks.hold(book_id), self.storage.atomic():
                journal, entries = self._post(journal_id, posted_by)

        log_action(
            self.logger, "info", f"Journal posted: {journal.doc_no}",
            user_id=posted_by, action="post_journal", resource=f"journal:{journal.id}",
            book_id=journal.book_id, journal_id=journal.id,
            extra={"posted_at": journal.posted_at.isoformat()}
        )
        self._publish(LedgerEvent.JOURNAL_POSTED, journal)
        return journal, entries

    def reverse_journal(
        self,
        original_journal_id: str,
        reason: str,
        created_by: str
    ) -> JournalWithEntries:
        """
        Neutralize a posted journal with an auto-posted, sign-flipped copy

        The original journal is left untouched; the reversal carries
        ``reversal_of`` pointing at it.

        Raises:
            NotFoundError: Original journal does not exist
            NotPostedError: Original is still a draft
            AlreadyReversedError: Original already has a reversal
            validation errors: An original account can no longer be posted to
            PersistenceError: Storage failed; no reversal exists afterwards
        """
        with self._logged("reverse_journal", f"journal:{original_journal_id}", created_by):
            book_id = self._require_journal(original_journal_id).book_id
            with self._book_locks.hold(book_id), self.storage.atomic():
                original = self._require_journal(original_journal_id)
                if not original.is_posted:
                    raise NotPostedError(original_journal_id)

                existing = self.find_reversal(original_journal_id)
                if existing is not None:
                    raise AlreadyReversedError(original_journal_id, existing.id)

                reversing_lines = [
                    entry.to_line_input().reversed()
                    for entry in self.get_entries(original_journal_id)
                ]
                original_ref = original.doc_no or original.id[-6:]

                reversal, _ = self._create(
                    book_id=original.book_id,
                    doc_type=DocType.ADJUSTMENT,
                    doc_date=self._clock().date(),
                    currency=original.currency,
                    lines=reversing_lines,
                    narration=f"Reversal of journal {original_ref}: {reason}",
                    doc_no=f"{self.config.reversal_prefix}{original_ref}",
                    created_by=created_by,
                    reversal_of=original_journal_id
                )
                journal, entries = self._post(reversal.id, created_by)

                self._audit(
                    AuditEventType.JOURNAL_REVERSED, original, created_by,
                    reversal_journal_id=journal.id, reason=reason
                )

        log_action(
            self.logger, "info", f"Journal reversed: {original_ref} by {journal.doc_no}",
            user_id=created_by, action="reverse_journal", resource=f"journal:{original_journal_id}",
            book_id=journal.book_id, journal_id=original_journal_id,
            extra={"reversal_journal_id": journal.id, "reason": reason}
        )
        self._publish(LedgerEvent.JOURNAL_CREATED, journal)
        self._publish(LedgerEvent.JOURNAL_POSTED, journal)
        self._publish(LedgerEvent.JOURNAL_REVERSED, original, reversal_journal_id=journal.id)
        return journal, entries

    def update_draft(
        self,
        journal_id: str,
        lines: Optional[Sequence[Union[LedgerLineInput, Dict[str, Any]]]] = None,
        narration: Optional[str] = None,
        doc_date: Optional[DateLike] = None,
        updated_by: Optional[str] = None
    ) -> JournalWithEntries:
        """
        Edit a draft journal; replacement lines go through the full rule set

        Raises:
            NotFoundError: Journal does not exist
            ImmutableJournalError: Journal is posted
        """
        with self._logged("update_draft", f"journal:{journal_id}", updated_by):
            with self.storage.atomic():
                journal = self._require_journal(journal_id)
                if journal.is_posted:
                    raise ImmutableJournalError(journal_id)

                changes: Dict[str, Any] = {'updated_at': self._clock()}
                if narration is not None:
                    changes['narration'] = narration
                if doc_date is not None:
                    changes['doc_date'] = _to_date(doc_date)

                if lines is not None:
                    new_lines = coerce_lines(lines)
                    self._check(journal.book_id, new_lines, journal.currency)
                    for entry in self.get_entries(journal_id):
                        self.storage.delete(self.entries_table, entry.id)
                    self._write_entries(journal, new_lines)

                self.storage.update(self.journals_table, journal_id, changes)
                journal = self._require_journal(journal_id)
                self._audit(
                    AuditEventType.JOURNAL_UPDATED, journal, updated_by,
                    fields=sorted(k for k in changes if k != 'updated_at') + (['lines'] if lines is not None else [])
                )
                entries = self.get_entries(journal_id)

        log_action(
            self.logger, "info", f"Draft journal updated: {journal.doc_no}",
            user_id=updated_by, action="update_draft", resource=f"journal:{journal_id}",
            book_id=journal.book_id, journal_id=journal_id
        )
        return journal, entries

    def delete_draft(self, journal_id: str, deleted_by: Optional[str] = None) -> None:
        """
        Delete a draft journal with its lines

        Raises:
            NotFoundError: Journal does not exist
            ImmutableJournalError: Journal is posted
        """
        with self._logged("delete_draft", f"journal:{journal_id}", deleted_by):
            with self.storage.atomic():
                journal = self._require_journal(journal_id)
                if journal.is_posted:
                    raise ImmutableJournalError(journal_id)
                for entry in self.get_entries(journal_id):
                    self.storage.delete(self.entries_table, entry.id)
                self.storage.delete(self.journals_table, journal_id)
                self._audit(AuditEventType.JOURNAL_DELETED, journal, deleted_by, doc_no=journal.doc_no)

        log_action(
            self.logger, "info", f"Draft journal deleted: {journal.doc_no}",
            user_id=deleted_by, action="delete_draft", resource=f"journal:{journal_id}",
            book_id=journal.book_id, journal_id=journal_id
        )

    # Queries

    def get_journal(self, journal_id: str) -> Optional[Journal]:
        """Get a journal by ID"""
        data = self.storage.find_by_id(self.journals_table, journal_id)
        return Journal.from_dict(data) if data else None

    def get_entries(self, journal_id: str) -> List[LedgerEntry]:
        """Ledger lines of a journal ordered by line_no; sealed when the journal is posted"""
        journal = self.get_journal(journal_id)
        entries = [
            LedgerEntry.from_dict(data)
            for data in self.storage.find(self.entries_table, {'journal_id': journal_id})
        ]
        entries.sort(key=lambda e: e.line_no)
        if journal is not None and journal.is_posted:
            for entry in entries:
                entry.seal()
        return entries

    def list_journals(
        self,
        book_id: str,
        state: Optional[JournalState] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> List[Journal]:
        """Journals of a book ordered by doc_date, optionally filtered"""
        journals = [
            Journal.from_dict(data)
            for data in self.storage.find(self.journals_table, {'book_id': book_id})
        ]
        if state is not None:
            journals = [j for j in journals if j.state == state]
        if start_date is not None:
            journals = [j for j in journals if j.doc_date >= _to_date(start_date)]
        if end_date is not None:
            journals = [j for j in journals if j.doc_date <= _to_date(end_date)]
        journals.sort(key=lambda j: (j.doc_date, j.created_at))
        return journals

    def find_reversal(self, journal_id: str) -> Optional[Journal]:
        """The journal reversing ``journal_id``, if any"""
        matches = self.storage.find(self.journals_table, {'reversal_of': journal_id})
        return Journal.from_dict(matches[0]) if matches else None

    def verify_account_balances(self, book_id: str) -> Dict[str, Any]:
        """
        Recompute every account balance from posted history

        Returns:
            Dictionary with the check result and any mismatching accounts
        """
        posted_ids = {
            data['id'] for data in self.storage.find(self.journals_table, {'book_id': book_id})
            if data.get('posted_at')
        }
        expected = compute_balance_deltas(
            LedgerEntry.from_dict(data)
            for data in self.storage.find(self.entries_table, {'book_id': book_id})
            if data['journal_id'] in posted_ids
        )

        result = {'valid': True, 'accounts_checked': 0, 'mismatches': []}
        for account in self.accounts.list_accounts(book_id):
            result['accounts_checked'] += 1
            derived = expected.get(account.id, Decimal('0'))
            if derived != account.balance:
                result['valid'] = False
                result['mismatches'].append({
                    'account_id': account.id,
                    'code': account.code,
                    'stored_balance': account.balance,
                    'derived_balance': derived
                })

        if not result['valid']:
            log_action(
                self.logger, "error", f"Account balances diverge from posted history in book {book_id}",
                action="verify_account_balances", resource=f"book:{book_id}", book_id=book_id,
                extra={"mismatches": len(result['mismatches'])}
            )
        return result

    # Internals; callers hold storage.atomic() (and the book lock for postings)

    def _create(
        self,
        book_id: str,
        doc_type: DocType,
        doc_date: date,
        currency: str,
        lines: List[LedgerLineInput],
        narration: Optional[str],
        doc_no: Optional[str],
        created_by: Optional[str],
        reversal_of: Optional[str] = None
    ) -> JournalWithEntries:
        currency_code = Currency.from_code(currency).code
        self._check(book_id, lines, currency_code)

        now = self._clock()
        journal = Journal(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            book_id=book_id,
            doc_type=doc_type,
            doc_date=doc_date,
            currency=currency_code,
            doc_no=doc_no or self._next_doc_no(book_id),
            narration=narration,
            created_by=created_by,
            reversal_of=reversal_of
        )
        self.storage.create(self.journals_table, journal.id, journal.to_dict())
        entries = self._write_entries(journal, lines)

        self._audit(
            AuditEventType.JOURNAL_CREATED, journal, created_by,
            doc_no=journal.doc_no, line_count=len(entries),
            total_debit=sum_debits(entries), total_credit=sum_credits(entries)
        )
        return journal, entries

    def _post(self, journal_id: str, posted_by: str) -> JournalWithEntries:
        journal = self._require_journal(journal_id)
        if journal.is_posted:
            raise AlreadyPostedError(journal_id, journal.posted_at)

        entries = self.get_entries(journal_id)
        self._check(journal.book_id, entries, journal.currency)

        posted_at = self._clock()
        self.storage.update(self.journals_table, journal_id, {
            'posted_at': posted_at,
            'created_by': posted_by,
            'updated_at': posted_at
        })
        deltas = compute_balance_deltas(entries)
        self.accounts.apply_balance_deltas(deltas)

        self._audit(
            AuditEventType.JOURNAL_POSTED, journal, posted_by,
            posted_at=posted_at,
            balance_deltas={account_id: delta for account_id, delta in deltas.items()}
        )

        posted = self._require_journal(journal_id)
        return posted, self.get_entries(journal_id)

    def _check(self, book_id: str, lines: Sequence, currency: str) -> Decimal:
        """Account preconditions first, then the double-entry rules"""
        self.accounts.check_postable(book_id, [line.account_id for line in lines])
        return validate_lines(lines, self.tolerance, Currency.from_code(currency))

    def _write_entries(self, journal: Journal, lines: Sequence[LedgerLineInput]) -> List[LedgerEntry]:
        now = self._clock()
        entries = []
        for line_no, line in enumerate(lines, start=1):
            entry = LedgerEntry(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                journal_id=journal.id,
                book_id=journal.book_id,
                line_no=line_no,
                account_id=line.account_id,
                amount_dc=to_amount(line.amount_dc),
                contact_id=line.contact_id,
                description=line.description,
                amount_txn=line.amount_txn,
                fx_rate=line.fx_rate
            )
            self.storage.create(self.entries_table, entry.id, entry.to_dict())
            entries.append(entry)
        return entries

    def _next_doc_no(self, book_id: str) -> str:
        sequence = self.storage.find_by_id(self.sequences_table, book_id)
        number = (sequence['next'] if sequence else 1)
        self.storage.save(self.sequences_table, book_id, {'id': book_id, 'next': number + 1})
        return f"{self.config.doc_no_prefix}{number:0{self.config.doc_no_width}d}"

    def _require_journal(self, journal_id: str) -> Journal:
        journal = self.get_journal(journal_id)
        if journal is None:
            raise NotFoundError("journal", journal_id)
        return journal

    def _audit(self, event_type: AuditEventType, journal: Journal, user_id: Optional[str], **metadata) -> None:
        if self.audit_trail and self.config.enable_audit_logging:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="journal",
                entity_id=journal.id,
                book_id=journal.book_id,
                user_id=user_id,
                metadata=metadata
            )

    def _publish(self, event_type: LedgerEvent, journal: Journal, **data) -> None:
        if self._event_dispatcher and self.config.enable_domain_events:
            self._event_dispatcher.publish(EventPayload(
                event_type=event_type,
                entity_type="journal",
                entity_id=journal.id,
                book_id=journal.book_id,
                data={"doc_no": journal.doc_no, "doc_type": journal.doc_type.value, **data}
            ))

    @contextmanager
    def _logged(self, action: str, resource: str, user_id: Optional[str]):
        """Log rejected operations with their structured error detail"""
        try:
            yield
        except LedgerError as e:
            log_action(
                self.logger, "warning", f"{action} rejected: {e}",
                user_id=user_id, action=action, resource=resource, extra=e.to_dict()
            )
            raise


def journal_summary(journal: Journal, entries: Sequence[LedgerEntry]) -> Dict[str, Any]:
    """Journal with its lines and debit/credit totals, ready for serialization"""
    result = journal.to_dict()
    result['state'] = journal.state.value
    result['entries'] = [entry.to_dict() for entry in entries]
    result['total_debit'] = str(sum_debits(entries))
    result['total_credit'] = str(sum_credits(entries))
    result['net'] = str(line_total(entries))
    return result
