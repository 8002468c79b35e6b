"""
Pytest fixtures for the ledger core test suite.

Provides:
- A fresh in-memory SQLite database per test (``db_engine``)
- ``session`` plus kernel/module services bound to it
- ``deterministic_clock``, ``company_id``, ``actor_id``, ``settings``
- ``chart``: a small chart of accounts keyed by code
- ``core``: a LedgerCore over the same database (uses its own sessions;
  do not mix with ``session`` in one test)
- ``captured_logs``: parsed JSON log lines

Environment Variables:
- LEDGER_TEST_DATABASE_URL: override the database URL (e.g. a PostgreSQL
  scratch database).  Defaults to in-memory SQLite.
"""

import dataclasses
import json
import logging
import os
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from ledger_config import ConcurrencyConfig, LedgerSettings
from ledger_kernel.db.engine import get_session_factory, init_engine_from_url, reset_engine
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.dtos import LineSpec, TransactionDraft
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.models.account import AccountType
from ledger_kernel.models.ledger import TransactionType
from ledger_kernel.services.ledger_engine import LedgerEngine
from ledger_modules._orm_registry import create_all_tables
from ledger_modules.ar import InvoiceLifecycle
from ledger_modules.cash import ReconciliationMatcher
from ledger_services import LedgerCore

DEFAULT_TEST_URL = "sqlite://"

CHART = (
    ("1000", "Cash", AccountType.ASSET),
    ("1010", "Savings", AccountType.ASSET),
    ("1200", "Accounts Receivable", AccountType.ASSET),
    ("2000", "Accounts Payable", AccountType.LIABILITY),
    ("2200", "Sales Tax Payable", AccountType.LIABILITY),
    ("3000", "Owner Equity", AccountType.EQUITY),
    ("4000", "Sales Revenue", AccountType.REVENUE),
    ("4100", "Service Revenue", AccountType.REVENUE),
    ("5000", "Operating Expenses", AccountType.EXPENSE),
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ledger_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.post(...)
            assert any(r["message"] == "transaction_posted" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


def get_database_url() -> str:
    return os.environ.get("LEDGER_TEST_DATABASE_URL", DEFAULT_TEST_URL)


@pytest.fixture
def db_engine():
    """A fresh database with every table, disposed after the test."""
    engine = init_engine_from_url(get_database_url())
    create_all_tables()
    yield engine
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Identity, time and settings
# =============================================================================


@pytest.fixture
def company_id():
    return uuid4()


@pytest.fixture
def actor_id():
    return uuid4()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings():
    """Packaged defaults without retry sleeps."""
    return dataclasses.replace(
        LedgerSettings.with_defaults(),
        concurrency=ConcurrencyConfig(max_retries=3, retry_backoff_ms=0),
    )


# =============================================================================
# Services on the test session
# =============================================================================


@pytest.fixture
def ledger(session, company_id, deterministic_clock):
    return LedgerEngine(session, company_id, deterministic_clock)


@pytest.fixture
def registry(ledger):
    return ledger.accounts


@pytest.fixture
def periods(ledger):
    return ledger.periods


@pytest.fixture
def invoices(session, company_id, ledger, deterministic_clock):
    return InvoiceLifecycle(session, company_id, ledger, clock=deterministic_clock)


@pytest.fixture
def matcher(session, company_id, ledger, deterministic_clock):
    return ReconciliationMatcher(session, company_id, ledger, deterministic_clock)


@pytest.fixture
def chart(registry, actor_id):
    """Standard chart of accounts: ``{code: AccountInfo}``."""
    return {
        code: registry.create_account(code, name, account_type, actor_id=actor_id)
        for code, name, account_type in CHART
    }


@pytest.fixture
def post(ledger, actor_id):
    """
    Post a two-line transaction.

    Usage::

        txn = post(chart["1000"].id, chart["4000"].id, "100.00", on=date(2024, 3, 1))
    """

    def _post(
        debit_account_id,
        credit_account_id,
        amount,
        *,
        on: date = date(2024, 3, 1),
        key: str | None = None,
        transaction_type: TransactionType = TransactionType.JOURNAL_ENTRY,
        reference: str | None = None,
    ):
        amount = Decimal(amount)
        draft = TransactionDraft(
            transaction_date=on,
            transaction_type=transaction_type,
            lines=(
                LineSpec.debit_line(debit_account_id, amount),
                LineSpec.credit_line(credit_account_id, amount),
            ),
            reference=reference,
        )
        return ledger.post(draft, key or str(uuid4()), actor_id=actor_id).transaction

    return _post


# =============================================================================
# LedgerCore
# =============================================================================


@pytest.fixture
def core(db_engine, company_id, actor_id, settings, deterministic_clock):
    return LedgerCore(
        company_id,
        actor_id,
        settings=settings,
        session_factory=get_session_factory(),
        clock=deterministic_clock,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def core_chart(core):
    """Standard chart of accounts created through LedgerCore."""
    return {
        code: core.create_account(code, name, account_type)
        for code, name, account_type in CHART
    }
