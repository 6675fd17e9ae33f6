"""Credit ledger and Stripe payment reconciliation service."""

__version__ = "0.1.0"
