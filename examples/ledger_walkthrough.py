#!/usr/bin/env python3
"""
Example: Posting, reversing and reporting on a small book

Registers a chart of accounts, records a month of activity, reverses a
mistaken entry and prints the three financial reports. Uses the backend named
by LEDGER_DATABASE_URL (in-memory when unset).
"""

import os
from decimal import Decimal
from datetime import date

from general_ledger.config import LedgerConfig, create_storage
from general_ledger.logging_config import setup_logging
from general_ledger.audit import AuditTrail
from general_ledger.events import EventDispatcher
from general_ledger.accounts import AccountRegistry, AccountType
from general_ledger.journals import JournalEngine, DocType
from general_ledger.reporting import BalanceAggregator, ReportFormat
from general_ledger.exceptions import LedgerError


BOOK = "demo-book"


def main():
    print("General Ledger - Walkthrough")
    print("=" * 60)

    # 1. Configuration
    os.environ.setdefault("LEDGER_DATABASE_URL", "memory://")
    config = LedgerConfig()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    storage = create_storage(config)
    print(f"\n1. Storage backend: {type(storage).__name__} ({config.database_url})")

    # 2. Wiring
    audit_trail = AuditTrail(storage)
    dispatcher = EventDispatcher()
    dispatcher.subscribe_all(lambda event: print(f"   event: {event.event_type.value} {event.data.get('doc_no', '')}"))
    registry = AccountRegistry(storage, audit_trail, dispatcher)
    engine = JournalEngine(storage, registry, audit_trail, dispatcher, config=config)
    aggregator = BalanceAggregator(storage, registry, config=config)

    # 3. Chart of accounts
    print("\n2. Chart of accounts")
    chart = [
        ("1000", "Cash", AccountType.CURRENT_ASSET),
        ("1500", "Equipment", AccountType.NON_CURRENT_ASSET),
        ("2000", "Accounts Payable", AccountType.CURRENT_LIABILITY),
        ("3000", "Owner Capital", AccountType.EQUITY),
        ("4000", "Sales", AccountType.REVENUE),
        ("5000", "Rent", AccountType.OPERATING_EXPENSE),
    ]
    accounts = {}
    for code, name, account_type in chart:
        accounts[code] = registry.register_account(BOOK, code, name, account_type).id

    def record(doc_type, doc_date, debit, credit, amount, narration):
        journal, _ = engine.create_journal(
            BOOK, doc_type, doc_date, config.base_currency,
            [
                {"account_id": accounts[debit], "amount_dc": amount},
                {"account_id": accounts[credit], "amount_dc": -Decimal(amount)},
            ],
            narration=narration, created_by="clerk"
        )
        posted, _ = engine.post_journal(journal.id, posted_by="controller")
        return posted

    # 4. A month of activity
    print("\n3. Posting journals")
    record(DocType.MANUAL, date.today(), "1000", "3000", "25000", "Owner investment")
    record(DocType.BILL, date.today(), "1500", "2000", "8000", "Equipment on credit")
    record(DocType.INVOICE, date.today(), "1000", "4000", "4200", "Cash sales")
    mistake = record(DocType.PAYMENT, date.today(), "5000", "1000", "1500", "Rent (wrong amount)")
    record(DocType.PAYMENT, date.today(), "5000", "1000", "1200", "Rent")

    # 5. Reversal
    print("\n4. Reversing the mistaken rent payment")
    reversal, _ = engine.reverse_journal(mistake.id, "Rent amount was 1200", created_by="controller")
    print(f"   {reversal.doc_no}: {reversal.narration}")

    # 6. Validation failure
    print("\n5. Rejected journal")
    try:
        engine.create_journal(
            BOOK, DocType.MANUAL, date.today(), "USD",
            [{"account_id": accounts["1000"], "amount_dc": "100"}, {"account_id": accounts["4000"], "amount_dc": "-99"}]
        )
    except LedgerError as e:
        print(f"   {e.code}: {e}")

    # 7. Reports
    print("\n6. Trial balance")
    trial = aggregator.trial_balance(BOOK)
    for line in trial.lines:
        print(f"   {line.code} {line.name:<20} {line.debit_balance:>12} {line.credit_balance:>12}")
    print(f"   {'Totals':<25} {trial.total_debits:>12} {trial.total_credits:>12}  balanced={trial.is_balanced}")

    print("\n7. Balance sheet")
    sheet = aggregator.balance_sheet(BOOK)
    print(f"   Total assets:             {sheet.total_assets}")
    print(f"   Total liabilities:        {sheet.total_liabilities}")
    print(f"   Total equity:             {sheet.total_equity} (current earnings {sheet.current_earnings})")
    print(f"   Balanced:                 {sheet.is_balanced}")

    print("\n8. Income statement (CSV)")
    statement = aggregator.income_statement(BOOK, date.today().replace(day=1), date.today())
    print(aggregator.export_report(statement, ReportFormat.CSV))
    print(f"   Net income {statement.net_income}, net margin {statement.net_margin}%")

    # 8. Integrity checks
    print("\n9. Integrity")
    print(f"   Balances match history: {engine.verify_account_balances(BOOK)['valid']}")
    print(f"   Audit chain intact:     {audit_trail.verify_integrity()['valid']}")

    storage.close()


if __name__ == "__main__":
    main()
