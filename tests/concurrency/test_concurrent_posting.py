"""
Concurrent operations against a file-backed SQLite database.

Every thread drives its own LedgerCore call (own session, own
transaction).  A barrier releases the threads together so the writers
actually contend for the database lock.
"""

import dataclasses
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone
from decimal import Decimal
from threading import Barrier
from uuid import uuid4

import pytest

from ledger_config import ConcurrencyConfig, LedgerSettings
from ledger_engines.matching import MatchStatus
from ledger_kernel.db.engine import get_session_factory, init_engine_from_url, reset_engine
from ledger_kernel.domain.clock import DeterministicClock
from ledger_modules._orm_registry import create_all_tables
from ledger_services import LedgerCore

pytestmark = pytest.mark.concurrency

NUM_THREADS = 8


@pytest.fixture
def file_db(tmp_path):
    engine = init_engine_from_url(f"sqlite:///{tmp_path / 'ledger.db'}")
    create_all_tables()
    yield engine
    reset_engine()


@pytest.fixture
def make_core(file_db):
    company_id = uuid4()
    settings = dataclasses.replace(
        LedgerSettings.with_defaults(),
        concurrency=ConcurrencyConfig(max_retries=5, retry_backoff_ms=5),
    )
    clock = DeterministicClock(datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc))

    def _make():
        return LedgerCore(
            company_id,
            uuid4(),
            settings=settings,
            session_factory=get_session_factory(),
            clock=clock,
        )

    return _make


@pytest.fixture
def accounts(make_core):
    core = make_core()
    return {
        "cash": core.create_account("1000", "Cash", "asset").id,
        "ar": core.create_account("1200", "Accounts Receivable", "asset").id,
        "tax": core.create_account("2200", "Sales Tax Payable", "liability").id,
        "revenue": core.create_account("4000", "Sales Revenue", "revenue").id,
    }


def _race(fn, count=NUM_THREADS):
    """Run ``fn(i)`` on ``count`` threads released together; return results in order."""
    barrier = Barrier(count, timeout=30)

    def worker(i):
        barrier.wait()
        return fn(i)

    with ThreadPoolExecutor(max_workers=count) as pool:
        futures = [pool.submit(worker, i) for i in range(count)]
        return [f.result(timeout=60) for f in futures]


def _sale(accounts, amount="100.00"):
    return [
        {"account_id": accounts["cash"], "debit": Decimal(amount)},
        {"account_id": accounts["revenue"], "credit": Decimal(amount)},
    ]


class TestConcurrentPosting:
    def test_same_key_posts_exactly_once(self, make_core, accounts):
        lines = _sale(accounts)

        results = _race(
            lambda i: make_core().post_transaction(
                date(2024, 3, 1), "journal_entry", lines, "R-1", "shared-key"
            )
        )

        assert len({txn.id for txn in results}) == 1
        core = make_core()
        assert len(core.list_transactions(date(2024, 3, 1), date(2024, 3, 1))) == 1
        assert core.get_balance(accounts["cash"]) == Decimal("100.00")

    def test_distinct_keys_get_gapless_numbers(self, make_core, accounts):
        results = _race(
            lambda i: make_core().post_transaction(
                date(2024, 3, 1), "journal_entry", _sale(accounts, "1.00"), None, f"key-{i}"
            )
        )

        numbers = sorted(txn.transaction_number for txn in results)
        assert numbers == [f"T-{n:06d}" for n in range(1, NUM_THREADS + 1)]
        core = make_core()
        assert core.get_balance(accounts["cash"]) == Decimal("1.00") * NUM_THREADS
        assert core.verify_cached_balances() == ()

    def test_concurrent_finalize_posts_once(self, make_core, accounts):
        core = make_core()
        invoice = core.create_invoice(
            "INV-010",
            uuid4(),
            date(2024, 3, 1),
            date(2024, 3, 31),
            [{"description": "Widgets", "quantity": "5", "unit_price": "100.00"}],
        )

        results = _race(
            lambda i: make_core().finalize_invoice(invoice.id, "sent", "INV-010:finalize")
        )

        assert len({info.posted_transaction_id for info in results}) == 1
        postings = core.list_transactions(date(2024, 3, 1), date(2024, 3, 31))
        assert [t.total_amount for t in postings] == [Decimal("500.00")]


class TestConcurrentMatching:
    def test_two_bank_lines_one_transaction(self, make_core, accounts):
        core = make_core()
        txn = core.post_transaction(date(2024, 3, 3), "journal_entry", _sale(accounts, "75.00"), None, "dep")
        lines = core.import_bank_statement(
            accounts["cash"],
            [
                {"date": "2024-03-04", "description": "Deposit", "amount": "75.00"},
                {"date": "2024-03-04", "description": "Deposit (dup)", "amount": "75.00"},
            ],
        )

        results = _race(lambda i: make_core().match_bank_transaction(lines[i].id), count=2)

        assert sorted(r.status.value for r in results) == sorted(
            [MatchStatus.MATCHED.value, MatchStatus.UNMATCHED.value]
        )
        (winner,) = [r for r in results if r.status == MatchStatus.MATCHED]
        assert winner.transaction_id == txn.id
        assert len(core.list_bank_transactions(accounts["cash"], unreconciled_only=True)) == 1

    def test_same_line_matched_once(self, make_core, accounts):
        core = make_core()
        core.post_transaction(date(2024, 3, 3), "journal_entry", _sale(accounts, "75.00"), None, "dep")
        (line,) = core.import_bank_statement(
            accounts["cash"], [{"date": "2024-03-04", "description": "Deposit", "amount": "75.00"}]
        )

        results = _race(lambda i: make_core().match_bank_transaction(line.id), count=4)

        statuses = [r.status for r in results]
        assert statuses.count(MatchStatus.MATCHED) == 1
        assert statuses.count(MatchStatus.ALREADY_RECONCILED) == 3
