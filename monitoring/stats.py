"""
============================================================================
UPTIME MONITOR - STATISTICS / SLA AGGREGATOR
============================================================================
Rolling availability, latency and incident statistics computed on demand
from stored checks and incidents.

Definitions
-----------
uptime            up checks / all checks × 100 (0 when there are none)
response times    mean / min / max over non-null samples (0 when none)
percentiles       nearest-rank p50 / p95 / p99 (None when no samples)
MTTR              mean duration of incidents resolved in the window
MTBF              mean gap between successive incident starts
downtime          incident minutes; open incidents count up to now
error budget      window minutes × (100 − target) / 100

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import math
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from config.constants import (
    CheckStatus,
    Defaults,
    HISTORY_BUCKET_HOURS,
    HISTORY_BUCKET_HOURS_FALLBACK,
    Percentiles,
)
from config.settings import MonitoringSettings
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("Stats")


# ============================================================================
# SNAPSHOTS
# ============================================================================

def _rounded(data: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in data.items():
        if isinstance(value, float):
            out[key] = round(value, 2)
        elif isinstance(value, datetime):
            out[key] = value.isoformat()
        else:
            out[key] = value
    return out


@dataclass
class StatsSnapshot:
    """Rolling statistics for one resource over a trailing window."""
    resource_id: int
    window_hours: float
    window_start: datetime
    window_end: datetime
    total_checks: int = 0
    up_checks: int = 0
    uptime: float = 0.0
    avg_response_time: float = 0.0
    min_response_time: float = 0.0
    max_response_time: float = 0.0
    p50_response_time: Optional[float] = None
    p95_response_time: Optional[float] = None
    p99_response_time: Optional[float] = None
    incident_count: int = 0
    downtime_minutes: float = 0.0
    mttr_minutes: Optional[float] = None
    mtbf_minutes: Optional[float] = None
    current_downtime_minutes: float = 0.0

    @property
    def down_checks(self) -> int:
        return self.total_checks - self.up_checks

    def to_dict(self) -> Dict[str, Any]:
        return _rounded(asdict(self))


@dataclass
class SlaSnapshot:
    """SLA compliance report for one resource."""
    resource_id: int
    window_days: float
    sla_target: float
    actual_uptime: float
    meets_target: bool
    total_checks: int
    successful_checks: int
    incident_count: int
    downtime_minutes: float
    allowed_downtime_minutes: float
    remaining_budget_minutes: float
    mttr_minutes: Optional[float] = None
    mtbf_minutes: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return _rounded(asdict(self))


@dataclass
class HistoryBucket:
    """One aggregated point of the charting history."""
    start: datetime
    end: datetime
    total_checks: int
    up_checks: int
    status: CheckStatus
    response_time: float

    def to_dict(self) -> Dict[str, Any]:
        data = _rounded(asdict(self))
        data["status"] = self.status.value
        return data


@dataclass
class TrendReport:
    """Current window versus the preceding window of equal length."""
    resource_id: int
    window_days: float
    current_uptime: float
    current_avg_response_time: float
    previous_uptime: Optional[float] = None
    previous_avg_response_time: Optional[float] = None
    uptime_delta: Optional[float] = None
    response_time_delta: Optional[float] = None
    current_checks: int = 0
    previous_checks: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return _rounded(asdict(self))


# ============================================================================
# PURE HELPERS
# ============================================================================

def uptime_percentage(up: int, total: int) -> float:
    """Up share in percent; 0 when there are no checks."""
    if total <= 0:
        return 0.0
    return up * 100.0 / total


def nearest_rank(values: Sequence[float], percentile: float) -> Optional[float]:
    """
    Nearest-rank percentile of *values*.

    The result is always one of the samples; None when there are none.
    """
    if not values:
        return None
    ordered = sorted(values)
    rank = math.ceil(percentile / 100.0 * len(ordered))
    return ordered[min(max(rank, 1), len(ordered)) - 1]


def bucket_hours_for(window_days: float) -> int:
    """Bucket width for the history view."""
    for max_days, hours in sorted(HISTORY_BUCKET_HOURS.items()):
        if window_days <= max_days:
            return hours
    return HISTORY_BUCKET_HOURS_FALLBACK


def _response_times(checks) -> List[float]:
    return [c.response_time for c in checks if c.response_time is not None]


def _mean(values: Sequence[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


# ============================================================================
# AGGREGATOR
# ============================================================================

class StatsAggregator:
    """
    Read-only aggregation over the check and incident history.
    """

    def __init__(
        self,
        store,
        settings: MonitoringSettings,
        clock: Callable[[], datetime] = TimeHelper.get_utc_now,
    ):
        """
        Args:
            store: MonitorStore (or any object with the same read methods)
            settings: Monitoring settings; supplies the default window
            clock: Returns the current naive UTC time
        """
        self.store = store
        self.settings = settings
        self.clock = clock

    # ------------------------------------------------------------------
    # Incident metrics
    # ------------------------------------------------------------------

    @staticmethod
    def _incident_metrics(incidents, resolved, now: datetime) -> Dict[str, Any]:
        """MTTR covers incidents resolved in the window, everything else those started in it."""
        downtime = sum(
            TimeHelper.minutes_between(i.started_at, i.resolved_at or now) for i in incidents
        )

        repair_times = [
            TimeHelper.minutes_between(i.started_at, i.resolved_at)
            for i in resolved
            if i.resolved_at is not None and i.resolved_at <= now
        ]

        starts = sorted(i.started_at for i in incidents)
        gaps = [
            TimeHelper.minutes_between(earlier, later)
            for earlier, later in zip(starts, starts[1:])
        ]

        return {
            "incident_count": len(incidents),
            "downtime_minutes": downtime,
            "mttr_minutes": _mean(repair_times),
            "mtbf_minutes": _mean(gaps),
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_resource_stats(
        self,
        resource_id: int,
        window_hours: Optional[float] = None,
    ) -> StatsSnapshot:
        """
        Rolling statistics over the last *window_hours*.

        Args:
            resource_id: Resource to aggregate
            window_hours: Window length, defaults to ``stats_window_hours``

        Returns:
            StatsSnapshot
        """
        window_hours = window_hours or self.settings.stats_window_hours
        now = self.clock()
        window_start = now - timedelta(hours=window_hours)

        checks = await self.store.get_checks_in_window(resource_id, window_start, now)
        incidents = await self.store.get_incidents_in_window(resource_id, window_start, now)
        resolved = await self.store.get_incidents_resolved_in_window(resource_id, window_start, now)
        open_incident = await self.store.get_open_incident(resource_id)

        total = len(checks)
        up = sum(1 for c in checks if c.status == CheckStatus.UP.value)
        samples = _response_times(checks)

        snapshot = StatsSnapshot(
            resource_id=resource_id,
            window_hours=window_hours,
            window_start=window_start,
            window_end=now,
            total_checks=total,
            up_checks=up,
            uptime=uptime_percentage(up, total),
            avg_response_time=_mean(samples) or 0.0,
            min_response_time=min(samples) if samples else 0.0,
            max_response_time=max(samples) if samples else 0.0,
            current_downtime_minutes=(
                TimeHelper.minutes_between(open_incident.started_at, now) if open_incident else 0.0
            ),
            **self._incident_metrics(incidents, resolved, now),
        )

        p50, p95, p99 = (nearest_rank(samples, p) for p in Percentiles.REPORTED)
        snapshot.p50_response_time = p50
        snapshot.p95_response_time = p95
        snapshot.p99_response_time = p99

        return snapshot

    async def get_sla_report(
        self,
        resource_id: int,
        window_days: Optional[float] = None,
        sla_target: Optional[float] = None,
    ) -> SlaSnapshot:
        """
        SLA compliance over the last *window_days*.

        The target defaults to the resource's ``sla_target``; equality
        with the target passes.
        """
        window_days = window_days or Defaults.SLA_WINDOW_DAYS
        if sla_target is None:
            resource = await self.store.get_resource(resource_id)
            sla_target = resource.sla_target if resource.sla_target is not None else Defaults.SLA_TARGET

        now = self.clock()
        window_start = now - timedelta(days=window_days)

        checks = await self.store.get_checks_in_window(resource_id, window_start, now)
        incidents = await self.store.get_incidents_in_window(resource_id, window_start, now)
        resolved = await self.store.get_incidents_resolved_in_window(resource_id, window_start, now)

        total = len(checks)
        up = sum(1 for c in checks if c.status == CheckStatus.UP.value)
        actual = uptime_percentage(up, total)
        metrics = self._incident_metrics(incidents, resolved, now)

        allowed = window_days * 24 * 60 * (100.0 - sla_target) / 100.0

        return SlaSnapshot(
            resource_id=resource_id,
            window_days=window_days,
            sla_target=sla_target,
            actual_uptime=actual,
            meets_target=actual >= sla_target,
            total_checks=total,
            successful_checks=up,
            incident_count=metrics["incident_count"],
            downtime_minutes=metrics["downtime_minutes"],
            allowed_downtime_minutes=allowed,
            remaining_budget_minutes=allowed - metrics["downtime_minutes"],
            mttr_minutes=metrics["mttr_minutes"],
            mtbf_minutes=metrics["mtbf_minutes"],
        )

    async def get_bucketed_history(
        self,
        resource_id: int,
        window_days: float = 7,
    ) -> List[HistoryBucket]:
        """
        Averaged history for charting.

        Buckets are 1 h wide up to 7 days, 3 h up to 14 days and 6 h
        beyond. Empty buckets are omitted.
        """
        hours = bucket_hours_for(window_days)
        width = timedelta(hours=hours)
        now = self.clock()
        window_start = now - timedelta(days=window_days)

        checks = await self.store.get_checks_in_window(resource_id, window_start, now)

        grouped: Dict[int, list] = {}
        for check in checks:
            index = int((check.checked_at - window_start) // width)
            grouped.setdefault(index, []).append(check)

        buckets = []
        for index in sorted(grouped):
            members = grouped[index]
            up_members = [c for c in members if c.status == CheckStatus.UP.value]
            up_count = len(up_members)
            status = CheckStatus.UP if up_count >= math.ceil(len(members) / 2) else CheckStatus.DOWN
            start = window_start + index * width
            buckets.append(HistoryBucket(
                start=start,
                end=start + width,
                total_checks=len(members),
                up_checks=up_count,
                status=status,
                response_time=_mean(_response_times(up_members)) or 0.0,
            ))

        return buckets

    async def get_trends(
        self,
        resource_id: int,
        window_days: float = 7,
    ) -> TrendReport:
        """
        Uptime and mean response time of the current window against the
        preceding window of equal length. Previous values and deltas are
        None when the preceding window has no checks.
        """
        now = self.clock()
        length = timedelta(days=window_days)
        current_start = now - length
        previous_start = current_start - length

        current = await self.store.get_checks_in_window(resource_id, current_start, now)
        previous = await self.store.get_checks_in_window(resource_id, previous_start, current_start)

        def summarize(checks):
            up = sum(1 for c in checks if c.status == CheckStatus.UP.value)
            return uptime_percentage(up, len(checks)), _mean(_response_times(checks)) or 0.0

        current_uptime, current_avg = summarize(current)
        report = TrendReport(
            resource_id=resource_id,
            window_days=window_days,
            current_uptime=current_uptime,
            current_avg_response_time=current_avg,
            current_checks=len(current),
            previous_checks=len(previous),
        )

        if previous:
            previous_uptime, previous_avg = summarize(previous)
            report.previous_uptime = previous_uptime
            report.previous_avg_response_time = previous_avg
            report.uptime_delta = current_uptime - previous_uptime
            report.response_time_delta = current_avg - previous_avg

        return report
