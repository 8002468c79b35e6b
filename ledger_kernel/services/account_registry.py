"""
AccountRegistry -- chart of accounts and cached balances.

Responsibility:
    Creates, deactivates and reparents accounts, answers balance queries,
    and maintains the per-account cached balance that LedgerEngine updates
    inside every posting transaction.

Architecture position:
    Kernel > Services.  Called by LedgerEngine (``require_postable`` and
    ``apply_balance_deltas``) and by LedgerCore for chart maintenance.

Invariants enforced:
    - Account codes are unique per company; a concurrent duplicate insert
      surfaces as DuplicateCodeError, never as a raw IntegrityError.
    - The account tree never contains a cycle: reparenting walks the new
      parent's ancestors before writing.
    - Cached balances change only under a row lock, taken in sorted id
      order so that concurrent posts touching the same accounts cannot
      deadlock.
    - cached_balance == signed sum of the account's non-void posting lines.
      ``verify_cached_balances`` reports every account where it is not.

Failure modes:
    - DuplicateCodeError, InvalidAccountError, InvalidParentError.
    - AccountNotFoundError, AccountInactiveError from ``require_postable``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.dtos import AccountInfo, AccountNode, BalanceDiscrepancy
from ledger_kernel.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    DuplicateCodeError,
    InvalidAccountError,
    InvalidParentError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account_registry")


class AccountRegistry(BaseService[Account]):
    """
    Chart-of-accounts maintenance and balance queries for one company.

    Guarantees:
        - Public methods return AccountInfo / AccountNode DTOs.
        - Flush-only; the caller owns the transaction.

    Non-goals:
        Type consistency down a branch is not enforced.  A revenue account
        may sit under an asset parent; the tree is for grouping only.
    """

    # ------------------------------------------------------------------
    # Chart maintenance
    # ------------------------------------------------------------------

    def create_account(
        self,
        code: str,
        name: str,
        account_type: AccountType | str,
        parent_id: UUID | None = None,
        *,
        actor_id: UUID,
        description: str | None = None,
    ) -> AccountInfo:
        """
        Add an account to the chart.

        Raises:
            InvalidAccountError: Empty code or name, or unknown type.
            InvalidParentError: ``parent_id`` is not an account of the company.
            DuplicateCodeError: ``code`` is already used by the company.
        """
        code = (code or "").strip()
        name = (name or "").strip()
        if not code:
            raise InvalidAccountError(code, "code is required")
        if not name:
            raise InvalidAccountError(code, "name is required")
        try:
            account_type = AccountType(account_type)
        except ValueError:
            raise InvalidAccountError(code, f"unknown account type {account_type!r}") from None

        if parent_id is not None and self._find(parent_id) is None:
            raise InvalidParentError(None, str(parent_id), "parent account does not exist")

        if self._find_by_code(code) is not None:
            raise DuplicateCodeError(code)

        account = Account(
            company_id=self.company_id,
            code=code,
            name=name,
            account_type=account_type.value,
            normal_balance=account_type.normal_balance.value,
            is_active=True,
            description=description,
            parent_id=parent_id,
            cached_balance=ZERO,
            created_by_id=actor_id,
        )
        try:
            with self.session.begin_nested():
                self.session.add(account)
                self.session.flush()
        except IntegrityError:
            logger.warning(
                "concurrent_insert_conflict",
                extra={"entity": "account", "account_code": code},
            )
            raise DuplicateCodeError(code) from None

        logger.info(
            "account_created",
            extra={
                "account_id": str(account.id),
                "account_code": code,
                "account_type": account_type.value,
                "parent_id": str(parent_id) if parent_id else None,
            },
        )
        return AccountInfo.from_model(account)

    def deactivate(self, account_id: UUID, *, actor_id: UUID) -> AccountInfo:
        """Stop new postings to the account.  Deactivating twice is a no-op."""
        account = self._get(account_id)
        if account.is_active:
            account.is_active = False
            account.updated_by_id = actor_id
            self.session.flush()
            logger.info(
                "account_deactivated",
                extra={"account_id": str(account.id), "account_code": account.code},
            )
        return AccountInfo.from_model(account)

    def reparent(
        self,
        account_id: UUID,
        new_parent_id: UUID | None,
        *,
        actor_id: UUID,
    ) -> AccountInfo:
        """
        Move an account (with its subtree) under ``new_parent_id``.

        ``None`` makes the account a root.

        Raises:
            InvalidParentError: The new parent does not exist, is the account
                itself, or is one of its descendants.
        """
        account = self._get(account_id)

        if new_parent_id is not None:
            if new_parent_id == account_id:
                raise InvalidParentError(
                    str(account_id), str(new_parent_id), "an account cannot be its own parent"
                )
            if self._find(new_parent_id) is None:
                raise InvalidParentError(
                    str(account_id), str(new_parent_id), "parent account does not exist"
                )
            if account_id in self._ancestor_ids(new_parent_id):
                raise InvalidParentError(
                    str(account_id),
                    str(new_parent_id),
                    "new parent is a descendant of the account",
                )

        old_parent_id = account.parent_id
        account.parent_id = new_parent_id
        account.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "account_reparented",
            extra={
                "account_id": str(account.id),
                "old_parent_id": str(old_parent_id) if old_parent_id else None,
                "new_parent_id": str(new_parent_id) if new_parent_id else None,
            },
        )
        return AccountInfo.from_model(account)

    def _ancestor_ids(self, start_id: UUID) -> list[UUID]:
        """Ids from ``start_id`` up to its root, bounded by the chart size."""
        parents = dict(
            self.session.execute(
                select(Account.id, Account.parent_id).where(
                    Account.company_id == self.company_id
                )
            ).all()
        )
        chain: list[UUID] = []
        current: UUID | None = start_id
        while current is not None and len(chain) <= len(parents):
            chain.append(current)
            current = parents.get(current)
        return chain

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_account(self, account_id: UUID) -> AccountInfo:
        return AccountInfo.from_model(self._get(account_id))

    def get_account_by_code(self, code: str) -> AccountInfo:
        account = self._find_by_code(code)
        if account is None:
            raise AccountNotFoundError(code)
        return AccountInfo.from_model(account)

    def require_postable(
        self,
        account_ids: Iterable[UUID],
        *,
        allow_inactive: bool = False,
    ) -> dict[UUID, Account]:
        """
        Load the accounts a posting will touch.

        ``allow_inactive`` admits deactivated accounts; reversals use it so a
        posting can still be voided after its account is retired.

        Raises:
            AccountNotFoundError: An id is unknown to the company.
            AccountInactiveError: An account is deactivated.
        """
        wanted = list(dict.fromkeys(account_ids))
        found = {
            account.id: account
            for account in self.session.execute(
                select(Account).where(
                    Account.company_id == self.company_id,
                    Account.id.in_(wanted),
                )
            ).scalars()
        }
        for account_id in wanted:
            account = found.get(account_id)
            if account is None:
                raise AccountNotFoundError(str(account_id))
            if not account.is_active and not allow_inactive:
                raise AccountInactiveError(str(account_id), account.code)
        return found

    def list_hierarchy(
        self,
        root_id: UUID | None = None,
        *,
        include_inactive: bool = True,
    ) -> tuple[AccountNode, ...]:
        """
        Account tree built from parent-id lookups.

        Returns the whole forest, or a single node for ``root_id``.  Children
        are ordered by code.  With ``include_inactive=False`` an inactive
        account is left out together with its subtree.
        """
        accounts = list(
            self.session.execute(
                select(Account)
                .where(Account.company_id == self.company_id)
                .order_by(Account.code)
            ).scalars()
        )
        by_id = {account.id: account for account in accounts}
        children: dict[UUID | None, list[Account]] = {}
        for account in accounts:
            parent = account.parent_id if account.parent_id in by_id else None
            children.setdefault(parent, []).append(account)

        visited: set[UUID] = set()

        def build(account: Account) -> AccountNode:
            visited.add(account.id)
            return AccountNode(
                account=AccountInfo.from_model(account),
                children=tuple(
                    build(child)
                    for child in children.get(account.id, [])
                    if child.id not in visited
                    and (include_inactive or child.is_active)
                ),
            )

        if root_id is not None:
            root = by_id.get(root_id)
            if root is None:
                raise AccountNotFoundError(str(root_id))
            return (build(root),)

        return tuple(
            build(account)
            for account in children.get(None, [])
            if include_inactive or account.is_active
        )

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def get_balance(self, account_id: UUID, as_of: date | None = None) -> Decimal:
        """
        Signed balance of the account as of ``as_of`` (default: today).

        The cached balance already covers every posting, so it is the answer
        whenever nothing on the account is dated after ``as_of``.
        """
        account = self._get(account_id)
        as_of = as_of or self.clock.today()
        latest = LedgerSelector(self.session, self.company_id).latest_posting_date(account_id)
        if latest is None or latest <= as_of:
            return account.cached_balance
        return self.recompute_balance(account_id, as_of)

    def recompute_balance(self, account_id: UUID, as_of: date | None = None) -> Decimal:
        """Balance summed from posting lines, ignoring the cache."""
        self._get(account_id)
        return LedgerSelector(self.session, self.company_id).account_balance(
            account_id, as_of
        )

    def verify_cached_balances(self) -> tuple[BalanceDiscrepancy, ...]:
        """Compare every cached balance with full recomputation."""
        recomputed = LedgerSelector(self.session, self.company_id).all_balances()
        discrepancies = []
        accounts = self.session.execute(
            select(Account)
            .where(Account.company_id == self.company_id)
            .order_by(Account.code)
        ).scalars()
        for account in accounts:
            expected = recomputed.get(account.id, ZERO)
            if account.cached_balance != expected:
                logger.warning(
                    "cached_balance_discrepancy",
                    extra={
                        "account_id": str(account.id),
                        "account_code": account.code,
                        "cached_balance": str(account.cached_balance),
                        "recomputed_balance": str(expected),
                    },
                )
                discrepancies.append(
                    BalanceDiscrepancy(
                        account_id=account.id,
                        account_code=account.code,
                        cached_balance=account.cached_balance,
                        recomputed_balance=expected,
                    )
                )
        return tuple(discrepancies)

    def apply_balance_deltas(self, deltas: Mapping[UUID, Decimal]) -> None:
        """
        Add signed deltas to cached balances under row locks.

        Rows are locked in sorted id order.
        """
        if not deltas:
            return
        ordered = sorted(deltas, key=str)
        accounts = {
            account.id: account
            for account in self.session.execute(
                select(Account)
                .where(
                    Account.company_id == self.company_id,
                    Account.id.in_(ordered),
                )
                .order_by(Account.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        }
        for account_id in ordered:
            account = accounts.get(account_id)
            if account is None:
                raise AccountNotFoundError(str(account_id))
            account.cached_balance = account.cached_balance + deltas[account_id]
        self.session.flush()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find(self, account_id: UUID) -> Account | None:
        return self.session.execute(
            select(Account).where(
                Account.company_id == self.company_id,
                Account.id == account_id,
            )
        ).scalar_one_or_none()

    def _find_by_code(self, code: str) -> Account | None:
        return self.session.execute(
            select(Account).where(
                Account.company_id == self.company_id,
                Account.code == code,
            )
        ).scalar_one_or_none()

    def _get(self, account_id: UUID) -> Account:
        account = self._find(account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account
