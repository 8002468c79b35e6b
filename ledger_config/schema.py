"""
LedgerSettings schema.

The runtime settings of the ledger core, one frozen dataclass per section.
YAML documents are parsed into these types by the loader; LedgerCore reads
them and passes plain values down to the kernel services.

Every section validates itself on construction and raises ``ValueError``
with a descriptive message.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any

from ledger_kernel.logging_config import get_logger

logger = get_logger("config.schema")


def _reject(section: str, message: str) -> None:
    logger.warning("config_invalid", extra={"section": section, "reason": message})
    raise ValueError(f"{section}: {message}")


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PostingConfig:
    """Transaction numbering."""

    transaction_number_prefix: str = "T"

    def __post_init__(self):
        prefix = self.transaction_number_prefix
        if not isinstance(prefix, str) or not prefix.strip() or "-" in prefix:
            _reject("posting", "transaction_number_prefix must be a non-empty string without '-'")


@dataclass(frozen=True)
class IdempotencyConfig:
    """How long a mutating request's key is remembered."""

    ttl_hours: int = 72

    def __post_init__(self):
        if not isinstance(self.ttl_hours, int) or self.ttl_hours <= 0:
            _reject("idempotency", f"ttl_hours must be a positive integer, got {self.ttl_hours!r}")


@dataclass(frozen=True)
class ConcurrencyConfig:
    """Bounded retry of operations that lost a race."""

    max_retries: int = 3
    retry_backoff_ms: int = 25

    def __post_init__(self):
        if not isinstance(self.max_retries, int) or self.max_retries < 1:
            _reject("concurrency", f"max_retries must be >= 1, got {self.max_retries!r}")
        if not isinstance(self.retry_backoff_ms, int) or self.retry_backoff_ms < 0:
            _reject(
                "concurrency",
                f"retry_backoff_ms must be >= 0, got {self.retry_backoff_ms!r}",
            )


@dataclass(frozen=True)
class ReconciliationConfig:
    """Auto-matching of bank lines."""

    match_window_days: int = 3
    auto_match_on_import: bool = False

    def __post_init__(self):
        if not isinstance(self.match_window_days, int) or self.match_window_days < 0:
            _reject(
                "reconciliation",
                f"match_window_days must be >= 0, got {self.match_window_days!r}",
            )
        if not isinstance(self.auto_match_on_import, bool):
            _reject("reconciliation", "auto_match_on_import must be true or false")


@dataclass(frozen=True)
class InvoicingConfig:
    """Account codes the invoice postings use."""

    receivable_account_code: str = "1200"
    revenue_account_code: str = "4000"
    tax_liability_account_code: str = "2200"
    cash_account_code: str = "1000"

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, str) or not value.strip():
                _reject("invoicing", f"{f.name} must be a non-empty account code")


# ---------------------------------------------------------------------------
# Top level
# ---------------------------------------------------------------------------

_SECTIONS: dict[str, type] = {
    "posting": PostingConfig,
    "idempotency": IdempotencyConfig,
    "concurrency": ConcurrencyConfig,
    "reconciliation": ReconciliationConfig,
    "invoicing": InvoicingConfig,
}


@dataclass(frozen=True)
class LedgerSettings:
    """Complete ledger settings.  ``checksum`` identifies the source document."""

    posting: PostingConfig = field(default_factory=PostingConfig)
    idempotency: IdempotencyConfig = field(default_factory=IdempotencyConfig)
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    invoicing: InvoicingConfig = field(default_factory=InvoicingConfig)
    checksum: str | None = None

    @classmethod
    def with_defaults(cls) -> LedgerSettings:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, checksum: str | None = None) -> LedgerSettings:
        """
        Build settings from a parsed document.  Missing sections and keys
        take their defaults.

        Raises:
            ValueError: Unknown section or key, a section that is not a
                mapping, or a value that fails section validation.
        """
        data = data or {}
        if not isinstance(data, dict):
            _reject("settings", "top level must be a mapping")

        unknown = sorted(set(data) - set(_SECTIONS))
        if unknown:
            _reject("settings", f"unknown section(s): {', '.join(unknown)}")

        sections: dict[str, Any] = {}
        for name, section_cls in _SECTIONS.items():
            raw = data.get(name) or {}
            if not isinstance(raw, dict):
                _reject(name, "section must be a mapping")
            allowed = {f.name for f in fields(section_cls)}
            extra = sorted(set(raw) - allowed)
            if extra:
                _reject(name, f"unknown key(s): {', '.join(extra)}")
            sections[name] = section_cls(**raw)

        return cls(checksum=checksum, **sections)
