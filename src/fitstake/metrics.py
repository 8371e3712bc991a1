from prometheus_client import Counter, Histogram, start_http_server
from .config import settings
from .utils.logging import setup_logger

logger = setup_logger(__name__)

# Task metrics
task_total = Counter(
    'celery_task_total',
    'Total number of tasks processed',
    ['task_name', 'status']
)

task_duration = Histogram(
    'celery_task_duration_seconds',
    'Task processing duration in seconds',
    ['task_name']
)

# Telemetry metrics
telemetry_submissions_total = Counter(
    'telemetry_submissions_total',
    'Total number of telemetry submissions',
    ['platform', 'status']
)

telemetry_records_total = Counter(
    'telemetry_records_total',
    'Per-day telemetry records by verification outcome',
    ['platform', 'outcome']
)

# Sweep metrics
sweep_runs_total = Counter(
    'finalization_sweep_runs_total',
    'Finalization sweep cycles',
    ['status']
)

sweep_challenges_total = Counter(
    'finalization_sweep_challenges_total',
    'Challenges processed by the finalization sweep',
    ['status']
)

sweep_duration = Histogram(
    'finalization_sweep_duration_seconds',
    'Finalization sweep cycle duration in seconds'
)

# Settlement metrics
settlement_requests_total = Counter(
    'settlement_requests_total',
    'Settlement-layer calls',
    ['operation', 'status']
)

settlement_duration = Histogram(
    'settlement_duration_seconds',
    'Settlement-layer call duration in seconds, including confirmation',
    ['operation']
)

# Badge metrics
badges_awarded_total = Counter(
    'badges_awarded_total',
    'Badges awarded to users',
    ['badge_id']
)

def start_metrics_server():
    """Start the Prometheus metrics server."""
    try:
        start_http_server(settings.metrics_port)
        logger.info(f"Started Prometheus metrics server on port {settings.metrics_port}")
    except Exception as e:
        logger.error(f"Failed to start metrics server: {e}")
        raise
