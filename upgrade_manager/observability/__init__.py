# MIT License
# Copyright (c) 2025 Hashborn

"""
Observability Module

Provides Prometheus metrics for the local chain and the deploy tooling.
"""

from .metrics import metrics_registry, update_chain_metrics

__all__ = ['metrics_registry', 'update_chain_metrics']
