# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Metrics:
- Local chain height, transactions, reverted submissions
- Deploy tooling: submissions, retries, proposals, quorum transactions
- Ledger state: pending upgrades, adopted contracts
"""

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# CHAIN METRICS
# ═══════════════════════════════════════════════════════════════════

block_height = Gauge(
    'upgrade_manager_block_height',
    'Current block height of the local chain',
    registry=metrics_registry
)

transactions_total = Counter(
    'upgrade_manager_transactions_total',
    'Total number of transactions committed',
    ['tx_type'],
    registry=metrics_registry
)

transactions_reverted_total = Counter(
    'upgrade_manager_transactions_reverted_total',
    'Transactions rejected during simulation',
    ['kind'],
    registry=metrics_registry
)

pending_transactions = Gauge(
    'upgrade_manager_pending_transactions',
    'Transactions accepted but not yet mined',
    registry=metrics_registry
)

event_confirmations_total = Counter(
    'upgrade_manager_event_confirmations_total',
    'Total transaction confirmations via events',
    registry=metrics_registry
)

accounts_total = Gauge(
    'upgrade_manager_accounts_total',
    'Total number of accounts known to the local chain',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# DEPLOY METRICS
# ═══════════════════════════════════════════════════════════════════

submissions_total = Counter(
    'upgrade_manager_submissions_total',
    'Owner-authorized submissions',
    ['mode'],
    registry=metrics_registry
)

retries_total = Counter(
    'upgrade_manager_retries_total',
    'Retried attempts in the execution driver',
    registry=metrics_registry
)

retry_exhausted_total = Counter(
    'upgrade_manager_retry_exhausted_total',
    'Operations abandoned after the retry limit',
    registry=metrics_registry
)

proposals_total = Counter(
    'upgrade_manager_proposals_total',
    'Proposals staged on the ledger',
    ['proposal_type'],
    registry=metrics_registry
)

reconcile_duration_seconds = Histogram(
    'upgrade_manager_reconcile_duration_seconds',
    'Wall time of a reconcile pass',
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 300],
    registry=metrics_registry
)

ledger_pending_upgrades = Gauge(
    'upgrade_manager_ledger_pending_upgrades',
    'Number of proxies with a staged upgrade',
    registry=metrics_registry
)

ledger_adopted_contracts = Gauge(
    'upgrade_manager_ledger_adopted_contracts',
    'Number of contracts adopted by the ledger',
    registry=metrics_registry
)


# ═══════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ═══════════════════════════════════════════════════════════════════

def update_chain_metrics(chain):
    """
    Update gauge metrics from local chain state.

    Args:
        chain: LocalChain instance
    """
    block_height.set(chain.height)
    pending_transactions.set(len(chain.pending))
    accounts_total.set(len(chain.state.addresses()))


def update_transaction_metrics(tx):
    """
    Update transaction metrics.

    Args:
        tx: Transaction object
    """
    tx_type = "create" if tx.to_address is None else "call"
    transactions_total.labels(tx_type=tx_type).inc()


def update_ledger_metrics(pending_count: int, adopted_count: int):
    ledger_pending_upgrades.set(pending_count)
    ledger_adopted_contracts.set(adopted_count)
