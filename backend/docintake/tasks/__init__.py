"""
Celery application factory.
"""

from celery import Celery

celery_app = Celery("docintake")
celery_app.config_from_object("celeryconfig")

# Auto-discover tasks in these modules
celery_app.autodiscover_tasks([
    "docintake.tasks.outbox_tasks",
    "docintake.tasks.upload_tasks",
])
