"""
============================================================================
UPTIME MONITOR - MONITORING PACKAGE
============================================================================
Runtime monitoring infrastructure:
    • CheckerRegistry        — one probe per resource type
    • CheckRecorder          — persists every check outcome
    • IncidentTracker        — incident lifecycle + transition stream
    • StatsAggregator        — uptime / latency / SLA / history / trends
    • NotificationDispatcher — email + webhook delivery with retry & breaker
    • Scheduler              — monitor tick + retention pruning
    • HealthServer           — aiohttp health / status endpoint

File layout
-----------
monitoring/
├── __init__.py          ← this file
├── checkers.py          ← HTTP/TCP/TLS/DNS/WebSocket/ICMP checkers
├── recorder.py          ← CheckRecorder
├── incidents.py         ← IncidentTracker + FailureStreakTracker
├── stats.py             ← StatsAggregator
├── resilience.py        ← RetryPolicy + CircuitBreaker
├── notifications.py     ← transports + NotificationDispatcher
├── scheduler.py         ← Scheduler
└── health.py            ← HealthServer

============================================================================
"""

from monitoring.checkers import (
    CheckResult,
    CheckerRegistry,
    HTTPChecker,
    TCPChecker,
    TLSChecker,
    DNSChecker,
    WebSocketChecker,
    ICMPChecker,
)
from monitoring.recorder import CheckRecorder
from monitoring.incidents import IncidentTracker, IncidentTransition, FailureStreakTracker
from monitoring.stats import StatsAggregator, StatsSnapshot, SlaSnapshot, HistoryBucket, TrendReport
from monitoring.resilience import RetryPolicy, CircuitBreaker
from monitoring.notifications import (
    AlertPayload,
    NotificationAttempt,
    NotificationDispatcher,
    WebhookTransport,
    EmailTransport,
    build_transports,
)
from monitoring.scheduler import Scheduler, ScheduledJob, TickSummary
from monitoring.health import HealthServer

__all__ = [
    # Checkers
    "CheckResult",
    "CheckerRegistry",
    "HTTPChecker",
    "TCPChecker",
    "TLSChecker",
    "DNSChecker",
    "WebSocketChecker",
    "ICMPChecker",

    # Recording & incidents
    "CheckRecorder",
    "IncidentTracker",
    "IncidentTransition",
    "FailureStreakTracker",

    # Statistics
    "StatsAggregator",
    "StatsSnapshot",
    "SlaSnapshot",
    "HistoryBucket",
    "TrendReport",

    # Resilience
    "RetryPolicy",
    "CircuitBreaker",

    # Notifications
    "AlertPayload",
    "NotificationAttempt",
    "NotificationDispatcher",
    "WebhookTransport",
    "EmailTransport",
    "build_transports",

    # Scheduler & health
    "Scheduler",
    "ScheduledJob",
    "TickSummary",
    "HealthServer",
]
