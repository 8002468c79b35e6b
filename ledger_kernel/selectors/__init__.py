"""Read-only selectors over the ledger."""
