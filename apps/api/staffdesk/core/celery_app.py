from celery import Celery

from staffdesk.core.config import get_settings

settings = get_settings()

celery_app = Celery("staffdesk_api", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.imports = ("staffdesk.recurrence.tasks",)
celery_app.conf.beat_schedule = {
    "materialize-recurrences-hourly": {
        "task": "staffdesk.tasks.materialize_recurrences",
        "schedule": 3600.0,
    },
}
