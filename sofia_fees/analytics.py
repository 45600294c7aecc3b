"""
analytics.py — pure fee analytics over the scanned ledger (no RPC calls).

Sums of wei are exact Python ints; only the chart series goes through floats.
Events with timestamp == 0 (unresolved) never pass a cutoff > 0.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Sequence

import pandas as pd

from .event_scanner import Event
from .format import format_trust, wei_to_float

DAY = 24 * 3600
RECENT_LIMIT = 50


@dataclass(frozen=True)
class PeriodStats:
    tx_count: int
    total_fees: int
    total_fees_formatted: str
    unique_wallets: int


@dataclass(frozen=True)
class OperationStats:
    count: int
    total_fee: int


@dataclass(frozen=True)
class AllTimeStats:
    total_fees: int
    total_fees_formatted: str
    total_volume: int
    total_volume_formatted: str
    total_multi_vault_value: int
    total_multi_vault_value_formatted: str
    total_transactions: int
    operation_breakdown: Dict[str, OperationStats] = field(default_factory=dict)


@dataclass(frozen=True)
class ChartPoint:
    date: str               # YYYY-MM-DD (UTC)
    fees: float             # TRUST
    cumulative_fees: float


@dataclass(frozen=True)
class DashboardData:
    stats_7d: PeriodStats
    stats_30d: PeriodStats
    stats_total: PeriodStats
    all_time: AllTimeStats
    chart_7d: List[ChartPoint]
    chart_30d: List[ChartPoint]
    chart_total: List[ChartPoint]
    recent_transactions: List[Event]
    computed_at: int


def utc_day(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


class AnalyticsEngine:
    def compute_all(self, events: Sequence[Event], now: int | None = None) -> DashboardData:
        now = int(time.time()) if now is None else now
        seven_days_ago = now - 7 * DAY
        thirty_days_ago = now - 30 * DAY

        # Ledger is block-ordered, so the first resolved event is the earliest
        first_resolved = next((e for e in events if e.timestamp > 0), None)
        earliest_ts = first_resolved.timestamp if first_resolved else now

        return DashboardData(
            stats_7d=self.compute_period_stats(events, seven_days_ago),
            stats_30d=self.compute_period_stats(events, thirty_days_ago),
            stats_total=self.compute_period_stats(events, 0),
            all_time=self.compute_all_time(events),
            chart_7d=self.compute_chart_data(events, seven_days_ago, now),
            chart_30d=self.compute_chart_data(events, thirty_days_ago, now),
            chart_total=self.compute_chart_data(events, earliest_ts, now),
            recent_transactions=self.recent_activity(events),
            computed_at=now,
        )

    def compute_period_stats(self, events: Sequence[Event], after_timestamp: int) -> PeriodStats:
        total_fees = 0
        tx_count = 0
        wallets = set()
        for e in events:
            if e.timestamp < after_timestamp:
                continue
            total_fees += e.sofia_fee
            tx_count += 1
            wallets.add(e.user.lower())
        return PeriodStats(
            tx_count=tx_count,
            total_fees=total_fees,
            total_fees_formatted=format_trust(total_fees),
            unique_wallets=len(wallets),
        )

    def compute_all_time(self, events: Sequence[Event]) -> AllTimeStats:
        total_fees = total_volume = total_multi_vault = 0
        counts: Dict[str, int] = {}
        fees_by_op: Dict[str, int] = {}

        for e in events:
            total_fees += e.sofia_fee
            total_volume += e.total_received
            total_multi_vault += e.multi_vault_value
            counts[e.operation] = counts.get(e.operation, 0) + 1
            fees_by_op[e.operation] = fees_by_op.get(e.operation, 0) + e.sofia_fee

        return AllTimeStats(
            total_fees=total_fees,
            total_fees_formatted=format_trust(total_fees),
            total_volume=total_volume,
            total_volume_formatted=format_trust(total_volume),
            total_multi_vault_value=total_multi_vault,
            total_multi_vault_value_formatted=format_trust(total_multi_vault),
            total_transactions=len(events),
            operation_breakdown={
                op: OperationStats(count=counts[op], total_fee=fees_by_op[op]) for op in counts
            },
        )

    def compute_chart_data(self, events: Sequence[Event], after_timestamp: int, now: int) -> List[ChartPoint]:
        """One point per UTC day from after_timestamp's day through now's day, zero-filled."""
        days = pd.date_range(utc_day(after_timestamp), utc_day(now), freq="D").strftime("%Y-%m-%d")
        if len(days) == 0:
            return []

        filtered = [e for e in events if e.timestamp >= after_timestamp]
        if filtered:
            per_event = pd.Series(
                [wei_to_float(e.sofia_fee) for e in filtered],
                index=[utc_day(e.timestamp) for e in filtered],
                dtype="float64",
            )
            daily = per_event.groupby(level=0).sum().reindex(days, fill_value=0.0)
        else:
            daily = pd.Series(0.0, index=days)
        cumulative = daily.cumsum()

        return [
            ChartPoint(date=day, fees=float(fee), cumulative_fees=float(cum))
            for day, fee, cum in zip(days, daily.tolist(), cumulative.tolist())
        ]

    def recent_activity(self, events: Sequence[Event], limit: int = RECENT_LIMIT) -> List[Event]:
        return sorted(events, key=lambda e: (e.block_number, e.log_index), reverse=True)[:limit]
