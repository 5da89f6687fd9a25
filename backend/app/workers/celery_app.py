from celery import Celery
from app.core.config import settings

celery_app = Celery("failure_triage", broker=settings.CELERY_BROKER_URL, backend=settings.CELERY_RESULT_BACKEND)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_routes={
        "auto_classify_project": {"queue": "q_triage"},
        "deduplicate_project": {"queue": "q_triage"},
    }
)

# Load tasks
celery_app.autodiscover_tasks(["app.workers"])
