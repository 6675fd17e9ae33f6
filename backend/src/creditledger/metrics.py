"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter

# Ledger metrics
ledger_entries_total = Counter(
    "ledger_entries_total",
    "Total ledger entries appended",
    labelnames=["event_type"],
)

ledger_duplicates_total = Counter(
    "ledger_duplicates_total",
    "Total ledger writes resolved to an existing entry by reference",
    labelnames=["event_type"],
)

ledger_insufficient_credits_total = Counter(
    "ledger_insufficient_credits_total",
    "Total ledger writes rejected because the balance would go negative",
    labelnames=["event_type"],
)

ledger_write_conflicts_total = Counter(
    "ledger_write_conflicts_total",
    "Total ledger writes that lost a concurrent sequence race",
)

credits_moved_total = Counter(
    "credits_moved_total",
    "Total credits moved by direction",
    labelnames=["direction"],  # grant, spend
)

# Webhook metrics
stripe_webhook_events_total = Counter(
    "stripe_webhook_events_total",
    "Total Stripe webhook deliveries by outcome",
    labelnames=["event_type", "outcome"],  # applied, duplicate, ignored, rejected
)

# Refund metrics
refunds_total = Counter(
    "refunds_total",
    "Total refund attempts by kind and outcome",
    labelnames=["kind", "outcome"],  # kind: credit_pack, unlock
)

# Admin metrics
admin_adjustments_total = Counter(
    "admin_adjustments_total",
    "Total admin credit adjustments",
    labelnames=["direction"],
)
