"""
Celery configuration for the upload service.

Loaded by `celery_app.config_from_object("celeryconfig")` in docintake/tasks/__init__.py.
Broker/result-backend URLs and job intervals come from the application
settings (environment variables), defaulting to localhost for local dev.
"""

from docintake.core.config import settings

# ═══════════════════════════════════════════════════════════
#  Broker & Result Backend
# ═══════════════════════════════════════════════════════════

broker_url = settings.CELERY_BROKER_URL
result_backend = settings.CELERY_RESULT_BACKEND

# ═══════════════════════════════════════════════════════════
#  Serialization — JSON only (no pickle = no arbitrary code exec)
# ═══════════════════════════════════════════════════════════

task_serializer = "json"
result_serializer = "json"
accept_content = ["json"]

# ═══════════════════════════════════════════════════════════
#  Timezone
# ═══════════════════════════════════════════════════════════

timezone = "UTC"
enable_utc = True

# ═══════════════════════════════════════════════════════════
#  Task Execution
# ═══════════════════════════════════════════════════════════

# Acknowledge tasks AFTER they complete (crash-safe: prevents lost tasks)
task_acks_late = True
task_reject_on_worker_lost = True

worker_prefetch_multiplier = 1

# Periodic jobs are short; a stuck run must not overlap the next ones forever
task_soft_time_limit = 120
task_time_limit = 150

# ═══════════════════════════════════════════════════════════
#  Result Expiry — auto-clean after 24h
# ═══════════════════════════════════════════════════════════

result_expires = 86400

# Enable with: celery -A docintake.tasks worker -E
worker_send_task_events = False
task_send_sent_event = False

# ═══════════════════════════════════════════════════════════
#  Task Routes
# ═══════════════════════════════════════════════════════════
# Run dedicated workers per queue:
#   celery -A docintake.tasks worker -Q default         (outbox + upload monitors)
# The extraction queue is consumed by the external parsing worker.

task_routes = {
    "docintake.tasks.outbox_tasks.*": {"queue": "default"},
    "docintake.tasks.upload_tasks.*": {"queue": "default"},
    settings.EXTRACTION_TASK_NAME: {"queue": settings.EXTRACTION_QUEUE},
}

task_default_queue = "default"

# ═══════════════════════════════════════════════════════════
#  Beat Schedule (periodic tasks)
# ═══════════════════════════════════════════════════════════
#   celery -A docintake.tasks beat

beat_schedule = {
    "dispatch-pending-outbox": {
        "task": "docintake.tasks.outbox_tasks.dispatch_pending_outbox",
        "schedule": settings.OUTBOX_SCAN_INTERVAL_SECONDS,
    },
    "expire-stale-pending-uploads": {
        "task": "docintake.tasks.upload_tasks.expire_stale_pending_uploads",
        "schedule": settings.PENDING_UPLOAD_SCAN_INTERVAL_SECONDS,
    },
}
