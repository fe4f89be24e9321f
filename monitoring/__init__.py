"""
============================================================================
APPWATCH - MONITORING PACKAGE
============================================================================
Runtime monitoring infrastructure:
    • Probe                    — single HTTP check with timeout
    • CircuitBreakerRegistry   — per-endpoint breaker + single-flight slot
    • MonitoringEngine         — health-check and self-healing passes
    • AlertDispatcher          — multi-channel delivery with retry
    • Scheduler                — periodic background job runner

File layout
-----------
monitoring/
├── __init__.py          ← this file
├── probe.py             ← Probe + ProbeResult
├── breaker.py           ← CircuitBreakerRegistry + CircuitState
├── monitor.py           ← MonitoringEngine + PassReport
├── alerts.py            ← AlertDispatcher + senders
├── templates.py         ← per-channel payload builders
└── scheduler.py         ← Scheduler + built-in periodic jobs

============================================================================
"""

from monitoring.probe import Probe, ProbeResult
from monitoring.breaker import CircuitBreakerRegistry, CircuitState
from monitoring.monitor import CheckOutcome, MonitoringEngine, PassReport
from monitoring.alerts import AlertDispatcher, DeliveryResult, EmailSender, WebhookSender
from monitoring.templates import AlertData, detect_channel, resolve_formatter
from monitoring.scheduler import Scheduler, ScheduledJob

__all__ = [
    # Probe
    "Probe",
    "ProbeResult",

    # Circuit breaker
    "CircuitBreakerRegistry",
    "CircuitState",

    # Monitoring Engine
    "MonitoringEngine",
    "PassReport",
    "CheckOutcome",

    # Alerts
    "AlertDispatcher",
    "DeliveryResult",
    "WebhookSender",
    "EmailSender",
    "AlertData",
    "detect_channel",
    "resolve_formatter",

    # Scheduler
    "Scheduler",
    "ScheduledJob",
]
