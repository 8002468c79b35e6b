"""
ledger_config -- single public entrypoint for ledger settings.

Responsibility:
    ``get_active_config()`` is how runtime code obtains settings.  It reads
    the packaged ``defaults.yaml`` unless a path is given, validates it into
    a frozen ``LedgerSettings`` and logs the document checksum.

Architecture position:
    Configuration.  Sits above ``ledger_kernel`` and below
    ``ledger_services``.  The kernel never imports from ``ledger_config``;
    ``LedgerCore`` hands plain values down to kernel and module services.

Failure modes:
    - ``FileNotFoundError`` -- the settings file does not exist.
    - ``yaml.YAMLError`` -- the file is not valid YAML.
    - ``ValueError`` -- unknown sections/keys or invalid values.
"""

from __future__ import annotations

from pathlib import Path

from ledger_config.loader import compute_checksum, load_settings, load_yaml_file, parse_settings
from ledger_config.schema import (
    ConcurrencyConfig,
    IdempotencyConfig,
    InvoicingConfig,
    LedgerSettings,
    PostingConfig,
    ReconciliationConfig,
)
from ledger_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> LedgerSettings:
    """Load, validate and trace the active settings.

    Args:
        path: Settings file.  Defaults to the packaged ``defaults.yaml``.

    Raises:
        FileNotFoundError: If the file is missing.
        ValueError: If validation fails.
    """
    source = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    settings = load_settings(source)
    _logger.info(
        "config_loaded",
        extra={
            "source": str(source),
            "checksum": settings.checksum,
            "match_window_days": settings.reconciliation.match_window_days,
            "max_retries": settings.concurrency.max_retries,
        },
    )
    return settings


__all__ = [
    "ConcurrencyConfig",
    "DEFAULT_CONFIG_PATH",
    "IdempotencyConfig",
    "InvoicingConfig",
    "LedgerSettings",
    "PostingConfig",
    "ReconciliationConfig",
    "compute_checksum",
    "get_active_config",
    "load_settings",
    "load_yaml_file",
    "parse_settings",
]
