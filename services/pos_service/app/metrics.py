from __future__ import annotations

from prometheus_client import Counter

payment_intent_created_total = Counter(
    "payment_intent_created_total",
    "Total number of payment intents created",
    ["payment_method"],
)

payment_intent_resolved_total = Counter(
    "payment_intent_resolved_total",
    "Total number of payment intents that reached a terminal status",
    ["status"],
)

payment_intent_duplicate_result_total = Counter(
    "payment_intent_duplicate_result_total",
    "Terminal results delivered for intents that had already left pending",
    ["status"],
)

payment_intent_finalize_failure_total = Counter(
    "payment_intent_finalize_failure_total",
    "Approval finalize transactions rolled back; the terminal must redeliver",
)

payment_intent_expired_total = Counter(
    "payment_intent_expired_total",
    "Total number of pending intents expired by the sweeper",
)

cash_sale_total = Counter(
    "cash_sale_total",
    "Total number of cash sales recorded",
)
