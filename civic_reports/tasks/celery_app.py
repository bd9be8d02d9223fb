from celery import Celery
from civic_reports.config import settings

celery_app = Celery(
    "civic_reports",
    broker=settings.CELERY_BROKER_URL,
    include=["civic_reports.tasks.analyze_image"]
)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_ignore_result=True,
)
