"""
Prometheus metrics for volume runs.

Organized into: funding, trading, run progress, gather.
"""

from __future__ import annotations

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server


class VolumeMetrics:
    """Counters and gauges for one bot process, on a private registry unless one is given."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()
        self.registry = reg

        # === Funding ===
        self.deposits = Counter(
            'deposits_total',
            'Child wallet deposits attempted',
            labelnames=['mode', 'result'],
            registry=reg
        )
        self.deposited_bnb = Counter(
            'deposited_bnb_total',
            'BNB requested for child wallet deposits',
            registry=reg
        )

        # === Trading ===
        self.buys = Counter(
            'buys_total',
            'Buy transactions',
            labelnames=['venue', 'result'],
            registry=reg
        )
        self.sells = Counter(
            'sells_total',
            'Sell transactions',
            labelnames=['venue', 'result'],
            registry=reg
        )
        self.low_gas_skips = Counter(
            'low_gas_skips_total',
            'Buy slots refilled because the picked wallet was below the gas buffer',
            registry=reg
        )
        self.wallet_failures = Counter(
            'wallet_failures_total',
            'Wallet-level failures recorded on the ledger',
            labelnames=['stage'],
            registry=reg
        )

        # === Run progress ===
        self.cycles_completed = Counter(
            'cycles_completed_total',
            'Trading cycles completed',
            registry=reg
        )
        self.current_cycle = Gauge(
            'current_cycle',
            'Next cycle to execute',
            registry=reg
        )

        # === Gather ===
        self.gathered_bnb = Counter(
            'gathered_bnb_total',
            'BNB swept back to the main wallet',
            registry=reg
        )


def start_metrics_server(metrics: VolumeMetrics, port: int) -> None:
    """Expose the registry on /metrics. No-op when port is 0."""
    if port > 0:
        start_http_server(port, registry=metrics.registry)
