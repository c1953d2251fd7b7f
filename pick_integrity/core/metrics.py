"""
Prometheus metrics for pick-integrity-api.

Metrics exposed:
- Pick lifecycle counters (creates, edits, lock rejections)
- Ledger counters (appends, chain failures, append conflicts)
- Fraud flag counters
- Grading outcome counters and job duration
- Sports data provider success/failure counters
- Scheduler status gauge
"""
from prometheus_client import Counter, Gauge, Histogram

# Pick lifecycle
picks_created_total = Counter(
    "picks_created_total",
    "Total picks created",
    ["bet_type"]
)

pick_updates_total = Counter(
    "pick_updates_total",
    "Total applied pick edits",
    ["locked"]
)

pick_lock_rejections_total = Counter(
    "pick_lock_rejections_total",
    "Total non-admin edits rejected because the pick was locked"
)

# Ledger
ledger_entries_total = Counter(
    "ledger_entries_total",
    "Total ledger entries appended",
    ["action"]
)

ledger_chain_failures_total = Counter(
    "ledger_chain_failures_total",
    "Total ledger chain verifications that failed"
)

ledger_append_conflicts_total = Counter(
    "ledger_append_conflicts_total",
    "Total ledger appends that lost a sequence race and were retried"
)

# Fraud
fraud_flags_total = Counter(
    "fraud_flags_total",
    "Total fraud heuristic flags raised",
    ["flag"]
)

# Grading
grading_outcomes_total = Counter(
    "grading_outcomes_total",
    "Per-pick grading outcomes",
    ["outcome"]
)

grading_job_duration_seconds = Histogram(
    "grading_job_duration_seconds",
    "Duration of grading job runs in seconds"
)

transparency_recalculations_total = Counter(
    "transparency_recalculations_total",
    "Total transparency score recomputations"
)

# External API
sports_api_requests_success_total = Counter(
    "sports_api_requests_success_total",
    "Total successful sports data API requests"
)

sports_api_requests_failure_total = Counter(
    "sports_api_requests_failure_total",
    "Total failed sports data API requests",
    ["error_type"]
)

# Circuit Breaker
circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["service"]
)

# Scheduler
scheduler_running = Gauge(
    "scheduler_running",
    "Whether the automation scheduler is running (1=running, 0=stopped)"
)

scheduler_jobs_total = Gauge(
    "scheduler_jobs_total",
    "Total number of scheduled jobs"
)


def update_scheduler_metrics():
    """Update scheduler status gauges."""
    from pick_integrity.core.scheduler import get_scheduler

    scheduler = get_scheduler()
    if scheduler and scheduler.running:
        scheduler_running.set(1)
        scheduler_jobs_total.set(len(scheduler.scheduler.get_jobs()))
    else:
        scheduler_running.set(0)
        scheduler_jobs_total.set(0)


def record_sports_api_request_success():
    """Record a successful sports data API request."""
    sports_api_requests_success_total.inc()


def record_sports_api_request_failure(error_type: str = "unknown"):
    """Record a failed sports data API request."""
    sports_api_requests_failure_total.labels(error_type=error_type).inc()
