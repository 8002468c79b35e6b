"""
Pure bank-line matching: eligibility, ranking and classification.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ledger_engines.matching import (
    BankLine,
    MatchCandidate,
    MatchStatus,
    classify_candidates,
    is_eligible,
    rank_candidates,
)

ACCOUNT = uuid4()
BANK = BankLine(uuid4(), ACCOUNT, date(2024, 3, 10), Decimal("-45.00"))


def candidate(seq, on, amount="-45.00", **overrides):
    values = dict(
        transaction_id=uuid4(),
        seq=seq,
        transaction_date=on,
        signed_amount=Decimal(amount),
        touches_account=True,
    )
    values.update(overrides)
    return MatchCandidate(**values)


class TestEligibility:
    def test_exact_amount_inside_window(self):
        assert is_eligible(BANK, candidate(1, date(2024, 3, 8)), window_days=3)

    @pytest.mark.parametrize("amount", ["-45.01", "-44.99", "45.00"])
    def test_no_amount_tolerance(self, amount):
        assert not is_eligible(BANK, candidate(1, date(2024, 3, 10), amount), window_days=3)

    def test_window_is_inclusive(self):
        assert is_eligible(BANK, candidate(1, date(2024, 3, 13)), window_days=3)
        assert not is_eligible(BANK, candidate(1, date(2024, 3, 14)), window_days=3)
        assert not is_eligible(BANK, candidate(1, date(2024, 3, 6)), window_days=3)

    def test_zero_window_means_same_day(self):
        assert is_eligible(BANK, candidate(1, date(2024, 3, 10)), window_days=0)
        assert not is_eligible(BANK, candidate(1, date(2024, 3, 11)), window_days=0)

    @pytest.mark.parametrize(
        "override",
        [{"is_void": True}, {"is_reconciled": True}, {"touches_account": False}],
    )
    def test_excluded_candidates(self, override):
        assert not is_eligible(BANK, candidate(1, date(2024, 3, 10), **override), window_days=3)


class TestRanking:
    def test_closest_date_first_then_seq(self):
        far = candidate(1, date(2024, 3, 7))
        near_late_seq = candidate(5, date(2024, 3, 11))
        near_early_seq = candidate(3, date(2024, 3, 9))

        ranked = rank_candidates(BANK, [far, near_late_seq, near_early_seq], window_days=3)

        assert [c.seq for c in ranked] == [3, 5, 1]

    def test_negative_window_rejected(self):
        with pytest.raises(ValueError):
            rank_candidates(BANK, [], window_days=-1)

    @given(
        offsets=st.lists(
            st.tuples(st.integers(min_value=-5, max_value=5), st.integers(min_value=1, max_value=1000)),
            max_size=12,
            unique_by=lambda t: t[1],
        )
    )
    @settings(max_examples=100)
    def test_ranking_is_order_independent(self, offsets):
        pool = [candidate(seq, date(2024, 3, 10 + offset)) for offset, seq in offsets]

        forward = rank_candidates(BANK, pool, window_days=3)
        backward = rank_candidates(BANK, list(reversed(pool)), window_days=3)

        assert forward == backward
        assert all(abs(offset) <= 3 for offset in (c.days_from(BANK.transaction_date) for c in forward))


class TestClassification:
    def test_unmatched(self):
        decision = classify_candidates(BANK, [candidate(1, date(2024, 3, 10), "-10.00")], window_days=3)
        assert decision.status == MatchStatus.UNMATCHED
        assert decision.best is None

    def test_single_candidate_matches(self):
        only = candidate(1, date(2024, 3, 9))
        decision = classify_candidates(BANK, [only], window_days=3)
        assert decision.status == MatchStatus.MATCHED
        assert decision.best == only

    def test_several_candidates_are_ambiguous(self):
        pool = [candidate(1, date(2024, 3, 9)), candidate(2, date(2024, 3, 10))]
        decision = classify_candidates(BANK, pool, window_days=3)

        assert decision.status == MatchStatus.AMBIGUOUS
        assert [c.seq for c in decision.ranked] == [2, 1]

    def test_classification_is_logged(self, captured_logs):
        classify_candidates(BANK, [], window_days=3)
        record = next(r for r in captured_logs() if r["message"] == "match_candidates_classified")
        assert record["status"] == "unmatched"
        assert record["candidates_evaluated"] == 0
