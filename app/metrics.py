from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "Total HTTP 5xx responses",
    ["method", "path", "status"],
)

PLANS_CREATED = Counter(
    "installment_plans_created_total",
    "Installment plans created or rejected",
    ["outcome"],
)
PAYMENTS_RECORDED = Counter(
    "installment_payments_total",
    "Installment payments recorded or reverted",
    ["outcome"],
)
WEBHOOK_EVENTS = Counter(
    "billing_webhook_events_total",
    "Billing webhook deliveries by outcome",
    ["event", "outcome"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)
