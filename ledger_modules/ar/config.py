"""
Accounts Receivable Configuration Schema.

Account codes the invoice postings use.  Values come from the
``invoicing`` section of LedgerSettings at runtime.
"""

from dataclasses import dataclass

from ledger_kernel.logging_config import get_logger

logger = get_logger("modules.ar.config")


@dataclass(frozen=True)
class ARConfig:
    """
    Account codes for invoice finalization and cash receipt.

        config = ARConfig(
            receivable_account_code="1200",
            revenue_account_code="4000",
            tax_liability_account_code="2200",
            cash_account_code="1000",
        )

    A line's own ``revenue_account_code`` overrides ``revenue_account_code``.
    """

    receivable_account_code: str = "1200"
    revenue_account_code: str = "4000"
    tax_liability_account_code: str = "2200"
    cash_account_code: str = "1000"

    def __post_init__(self):
        for name in (
            "receivable_account_code",
            "revenue_account_code",
            "tax_liability_account_code",
            "cash_account_code",
        ):
            value = getattr(self, name)
            if not value or not str(value).strip():
                raise ValueError(f"{name} cannot be empty")
        logger.debug(
            "ar_config_initialized",
            extra={
                "receivable_account_code": self.receivable_account_code,
                "revenue_account_code": self.revenue_account_code,
                "tax_liability_account_code": self.tax_liability_account_code,
                "cash_account_code": self.cash_account_code,
            },
        )
