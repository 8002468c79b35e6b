"""
ReconciliationMatcher: statement import, auto-match, manual match, unmatch.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_engines.matching import MatchMethod, MatchStatus
from ledger_kernel.exceptions import (
    AccountInactiveError,
    AccountMismatchError,
    AlreadyReconciledError,
    BankTransactionNotFoundError,
    InvalidAccountError,
    MalformedImportRowError,
    NotReconciledError,
    TransactionVoidError,
)
from ledger_modules.cash import ReconciliationMatcher


def _row(on, amount, description="line", reference=None):
    return {"date": on, "description": description, "amount": amount, "reference": reference}


class TestImport:
    def test_import_csv(self, matcher, chart, actor_id):
        cash = chart["1000"].id
        lines = matcher.import_statement(
            cash,
            "Date,Description,Amount\n2024-03-04,Rent,-1200.00\n2024-03-05,Deposit,500\n",
            actor_id=actor_id,
        )

        assert [l.amount for l in lines] == [Decimal("-1200.00"), Decimal("500")]
        assert len({l.import_batch_id for l in lines}) == 1
        assert not any(l.is_reconciled for l in lines)
        assert matcher.list_batch(lines[0].import_batch_id) == lines

    def test_malformed_row_writes_nothing(self, matcher, chart, actor_id):
        cash = chart["1000"].id
        with pytest.raises(MalformedImportRowError):
            matcher.import_statement(
                cash, [_row("2024-03-04", "10"), _row("not a date", "10")], actor_id=actor_id
            )
        assert matcher.list_bank_transactions(cash) == ()

    def test_non_asset_account_rejected(self, matcher, chart, actor_id):
        with pytest.raises(InvalidAccountError):
            matcher.import_statement(chart["4000"].id, [_row("2024-03-04", "10")], actor_id=actor_id)

    def test_inactive_account_rejected(self, matcher, registry, chart, actor_id):
        registry.deactivate(chart["1010"].id, actor_id=actor_id)
        with pytest.raises(AccountInactiveError):
            matcher.import_statement(chart["1010"].id, [_row("2024-03-04", "10")], actor_id=actor_id)

    def test_unknown_bank_line(self, matcher):
        with pytest.raises(BankTransactionNotFoundError):
            matcher.get_bank_transaction(uuid4())


class TestAutoMatch:
    def test_unique_candidate_matched(self, matcher, ledger, chart, post, actor_id):
        cash = chart["1000"].id
        rent = post(chart["5000"].id, cash, "1200.00", on=date(2024, 3, 3))
        (line,) = matcher.import_statement(cash, [_row("2024-03-04", "-1200.00")], actor_id=actor_id)

        (result,) = matcher.auto_match(cash, actor_id=actor_id)

        assert result.status == MatchStatus.MATCHED
        assert result.transaction_id == rent.id
        assert result.method == MatchMethod.AUTO
        stored = matcher.get_bank_transaction(line.id)
        assert stored.is_reconciled
        assert stored.matched_transaction_id == rent.id
        assert stored.match_method == "auto"
        assert ledger.get_transaction(rent.id).is_reconciled

    def test_sign_must_agree(self, matcher, chart, post, actor_id):
        cash = chart["1000"].id
        post(cash, chart["4000"].id, "1200.00", on=date(2024, 3, 3))
        matcher.import_statement(cash, [_row("2024-03-04", "-1200.00")], actor_id=actor_id)

        (result,) = matcher.auto_match(cash, actor_id=actor_id)
        assert result.status == MatchStatus.UNMATCHED

    def test_two_candidates_are_ambiguous(self, matcher, ledger, chart, post, actor_id):
        cash = chart["1000"].id
        first = post(cash, chart["4000"].id, "75.00", on=date(2024, 3, 3))
        second = post(cash, chart["4100"].id, "75.00", on=date(2024, 3, 5))
        (line,) = matcher.import_statement(cash, [_row("2024-03-04", "75.00")], actor_id=actor_id)

        (result,) = matcher.auto_match(cash, actor_id=actor_id)

        assert result.status == MatchStatus.AMBIGUOUS
        assert set(result.candidate_ids) == {first.id, second.id}
        assert not matcher.get_bank_transaction(line.id).is_reconciled
        assert not ledger.get_transaction(first.id).is_reconciled

    def test_outside_window_unmatched(self, matcher, chart, post, actor_id):
        cash = chart["1000"].id
        post(cash, chart["4000"].id, "75.00", on=date(2024, 3, 1))
        matcher.import_statement(cash, [_row("2024-03-10", "75.00")], actor_id=actor_id)

        (result,) = matcher.auto_match(cash, actor_id=actor_id)
        assert result.status == MatchStatus.UNMATCHED

        (widened,) = matcher.auto_match(cash, date_window=10, actor_id=actor_id)
        assert widened.status == MatchStatus.MATCHED

    def test_configured_window(self, session, company_id, ledger, chart, post, actor_id, deterministic_clock):
        wide = ReconciliationMatcher(session, company_id, ledger, deterministic_clock, match_window_days=10)
        cash = chart["1000"].id
        post(cash, chart["4000"].id, "75.00", on=date(2024, 3, 1))
        wide.import_statement(cash, [_row("2024-03-10", "75.00")], actor_id=actor_id)

        (result,) = wide.auto_match(cash, actor_id=actor_id)
        assert result.status == MatchStatus.MATCHED

    def test_void_transactions_never_matched(self, matcher, ledger, chart, post, actor_id):
        cash = chart["1000"].id
        txn = post(cash, chart["4000"].id, "75.00", on=date(2024, 3, 3))
        ledger.void(txn.id, "duplicate", actor_id=actor_id, reversal_date=date(2024, 3, 3))
        matcher.import_statement(cash, [_row("2024-03-04", "75.00")], actor_id=actor_id)

        (result,) = matcher.auto_match(cash, actor_id=actor_id)
        # the reversal carries -75.00 on cash, so nothing eligible remains
        assert result.status == MatchStatus.UNMATCHED

    def test_matched_transaction_leaves_pool_within_run(self, matcher, chart, post, actor_id):
        cash = chart["1000"].id
        txn = post(cash, chart["4000"].id, "75.00", on=date(2024, 3, 3))
        matcher.import_statement(
            cash, [_row("2024-03-03", "75.00"), _row("2024-03-04", "75.00")], actor_id=actor_id
        )

        results = matcher.auto_match(cash, actor_id=actor_id)

        assert [r.status for r in results] == [MatchStatus.MATCHED, MatchStatus.UNMATCHED]
        assert results[0].transaction_id == txn.id

    def test_match_single_line_and_rematch(self, matcher, chart, post, actor_id):
        cash = chart["1000"].id
        post(cash, chart["4000"].id, "75.00", on=date(2024, 3, 3))
        (line,) = matcher.import_statement(cash, [_row("2024-03-03", "75.00")], actor_id=actor_id)

        assert matcher.match(line.id, actor_id=actor_id).status == MatchStatus.MATCHED
        assert matcher.match(line.id, actor_id=actor_id).status == MatchStatus.ALREADY_RECONCILED

    def test_unreconciled_only_listing(self, matcher, chart, post, actor_id):
        cash = chart["1000"].id
        post(cash, chart["4000"].id, "75.00", on=date(2024, 3, 3))
        matcher.import_statement(
            cash, [_row("2024-03-03", "75.00"), _row("2024-03-04", "9.99")], actor_id=actor_id
        )
        matcher.auto_match(cash, actor_id=actor_id)

        remaining = matcher.list_bank_transactions(cash, unreconciled_only=True)
        assert [l.amount for l in remaining] == [Decimal("9.99")]


class TestManualMatch:
    @pytest.fixture
    def setup(self, matcher, chart, post, actor_id):
        cash = chart["1000"].id
        txn = post(cash, chart["4000"].id, "80.00", on=date(2024, 3, 3))
        (line,) = matcher.import_statement(cash, [_row("2024-03-20", "75.00")], actor_id=actor_id)
        return cash, txn, line

    def test_manual_match_ignores_amount_and_window(self, matcher, setup, actor_id):
        _, txn, line = setup
        result = matcher.manual_match(line.id, txn.id, actor_id=actor_id)

        assert result.status == MatchStatus.MATCHED
        assert result.method == MatchMethod.MANUAL
        assert matcher.get_bank_transaction(line.id).match_method == "manual"

    def test_bank_line_already_reconciled(self, matcher, chart, post, setup, actor_id):
        cash, txn, line = setup
        other = post(cash, chart["4100"].id, "75.00", on=date(2024, 3, 20))
        matcher.manual_match(line.id, txn.id, actor_id=actor_id)

        with pytest.raises(AlreadyReconciledError):
            matcher.manual_match(line.id, other.id, actor_id=actor_id)

    def test_transaction_already_reconciled(self, matcher, setup, actor_id):
        cash, txn, line = setup
        (second,) = matcher.import_statement(cash, [_row("2024-03-21", "80.00")], actor_id=actor_id)
        matcher.manual_match(line.id, txn.id, actor_id=actor_id)

        with pytest.raises(AlreadyReconciledError):
            matcher.manual_match(second.id, txn.id, actor_id=actor_id)

    def test_void_transaction_rejected(self, matcher, ledger, setup, actor_id):
        _, txn, line = setup
        ledger.void(txn.id, "wrong", actor_id=actor_id)

        with pytest.raises(TransactionVoidError):
            matcher.manual_match(line.id, txn.id, actor_id=actor_id)

    def test_account_mismatch_rejected(self, matcher, chart, post, setup, actor_id):
        _, _, line = setup
        elsewhere = post(chart["1010"].id, chart["4000"].id, "75.00", on=date(2024, 3, 20))

        with pytest.raises(AccountMismatchError):
            matcher.manual_match(line.id, elsewhere.id, actor_id=actor_id)


class TestUnmatch:
    def test_unmatch_clears_both_sides(self, matcher, ledger, chart, post, actor_id):
        cash = chart["1000"].id
        txn = post(cash, chart["4000"].id, "75.00", on=date(2024, 3, 3))
        (line,) = matcher.import_statement(cash, [_row("2024-03-03", "75.00")], actor_id=actor_id)
        matcher.auto_match(cash, actor_id=actor_id)

        cleared = matcher.unmatch(line.id, actor_id=actor_id)

        assert not cleared.is_reconciled
        assert cleared.matched_transaction_id is None
        assert cleared.match_method is None
        after = ledger.get_transaction(txn.id)
        assert not after.is_reconciled
        assert after.lines == txn.lines

        (rematched,) = matcher.auto_match(cash, actor_id=actor_id)
        assert rematched.transaction_id == txn.id

    def test_unmatch_unreconciled_line(self, matcher, chart, actor_id):
        (line,) = matcher.import_statement(chart["1000"].id, [_row("2024-03-03", "1")], actor_id=actor_id)
        with pytest.raises(NotReconciledError):
            matcher.unmatch(line.id, actor_id=actor_id)


class TestVoidAfterMatch:
    """A matched transaction stays matched until the bank line is unmatched."""

    def test_void_of_matched_transaction_rejected(self, matcher, ledger, chart, post, actor_id):
        cash = chart["1000"].id
        txn = post(cash, chart["4000"].id, "75.00", on=date(2024, 3, 3))
        (line,) = matcher.import_statement(cash, [_row("2024-03-03", "75.00")], actor_id=actor_id)
        matcher.auto_match(cash, actor_id=actor_id)

        with pytest.raises(AlreadyReconciledError) as exc_info:
            ledger.void(txn.id, "entered twice", actor_id=actor_id)

        assert exc_info.value.record_id == str(txn.id)
        assert not ledger.get_transaction(txn.id).is_void
        stored = matcher.get_bank_transaction(line.id)
        assert stored.is_reconciled
        assert stored.matched_transaction_id == txn.id

    def test_unmatch_then_void(self, matcher, ledger, chart, post, actor_id):
        cash = chart["1000"].id
        txn = post(cash, chart["4000"].id, "75.00", on=date(2024, 3, 3))
        (line,) = matcher.import_statement(cash, [_row("2024-03-03", "75.00")], actor_id=actor_id)
        matcher.auto_match(cash, actor_id=actor_id)

        matcher.unmatch(line.id, actor_id=actor_id)
        ledger.void(txn.id, "entered twice", actor_id=actor_id)

        assert ledger.get_transaction(txn.id).is_void
        (rematch,) = matcher.auto_match(cash, actor_id=actor_id)
        assert rematch.status == MatchStatus.UNMATCHED
