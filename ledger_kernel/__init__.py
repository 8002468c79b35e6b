"""
Ledger Kernel

A double-entry, append-only accounting ledger with:
- Idempotent posting and voiding
- Atomic transactions with per-company serialization
- Cached balances reconcilable against posting lines
- Period locking
"""

__version__ = "0.1.0"
