"""
IdempotencyGuard lookup, claim, expiry and purge.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from ledger_kernel.exceptions import IdempotencyKeyConflictError
from ledger_kernel.services.idempotency_guard import DEFAULT_TTL
from ledger_kernel.utils.hashing import hash_payload
from ledger_kernel.utils.idempotency import derive_idempotency_key

KIND = "test.op"


@pytest.fixture
def guard(ledger):
    return ledger.guard


class TestClaimAndLookup:
    def test_unknown_key(self, guard):
        assert guard.lookup(KIND, "nope") is None

    def test_claim_then_lookup(self, guard, actor_id):
        result_id = uuid4()
        assert guard.claim(KIND, "k", "h1", "thing", result_id, actor_id=actor_id) is None

        found = guard.lookup(KIND, "k", "h1")
        assert found.result_id == result_id
        assert found.result_type == "thing"

    def test_keys_scoped_by_operation_kind(self, guard, actor_id):
        guard.claim(KIND, "k", "h1", "thing", uuid4(), actor_id=actor_id)
        assert guard.lookup("other.op", "k") is None

    def test_conflicting_hash(self, guard, actor_id):
        guard.claim(KIND, "k", "h1", "thing", uuid4(), actor_id=actor_id)

        with pytest.raises(IdempotencyKeyConflictError) as exc_info:
            guard.lookup(KIND, "k", "h2")
        assert exc_info.value.idempotency_key == "k"

    def test_lookup_without_hash_skips_conflict_check(self, guard, actor_id):
        guard.claim(KIND, "k", "h1", "thing", uuid4(), actor_id=actor_id)
        assert guard.lookup(KIND, "k") is not None

    def test_second_claim_returns_winner(self, guard, actor_id):
        first = uuid4()
        guard.claim(KIND, "k", "h1", "thing", first, actor_id=actor_id)

        winner = guard.claim(KIND, "k", "h1", "thing", uuid4(), actor_id=actor_id)

        assert winner is not None
        assert winner.result_id == first


class TestExpiry:
    def test_expired_key_is_forgotten(self, guard, actor_id, deterministic_clock, captured_logs):
        guard.claim(KIND, "k", "h1", "thing", uuid4(), actor_id=actor_id)
        deterministic_clock.advance(int((DEFAULT_TTL + timedelta(seconds=1)).total_seconds()))

        assert guard.lookup(KIND, "k", "h1") is None
        assert any(r["message"] == "idempotency_record_expired" for r in captured_logs())
        # a fresh claim succeeds once the old record is gone
        assert guard.claim(KIND, "k", "h2", "thing", uuid4(), actor_id=actor_id) is None

    def test_live_key_just_before_expiry(self, guard, actor_id, deterministic_clock):
        guard.claim(KIND, "k", "h1", "thing", uuid4(), actor_id=actor_id)
        deterministic_clock.advance(int(DEFAULT_TTL.total_seconds()) - 1)
        assert guard.lookup(KIND, "k", "h1") is not None

    def test_purge_removes_only_expired(self, guard, actor_id, deterministic_clock):
        guard.claim(KIND, "old-1", "h", "thing", uuid4(), actor_id=actor_id)
        guard.claim(KIND, "old-2", "h", "thing", uuid4(), actor_id=actor_id)
        deterministic_clock.advance(days=4)
        guard.claim(KIND, "fresh", "h", "thing", uuid4(), actor_id=actor_id)

        assert guard.purge_expired() == 2
        assert guard.lookup(KIND, "fresh") is not None


class TestKeyHelpers:
    def test_derived_key_format(self):
        record_id = uuid4()
        assert derive_idempotency_key(record_id, "finalize") == f"{record_id}:finalize"

    def test_hash_ignores_key_order_and_decimal_notation(self):
        from decimal import Decimal

        a = hash_payload({"amount": Decimal("100"), "memo": "x"})
        b = hash_payload({"memo": "x", "amount": Decimal("100.00")})
        assert a == b
        assert len(a) == 64
