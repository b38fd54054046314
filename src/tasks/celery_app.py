from celery import Celery

from src.app.config import settings

# Create Celery instance and include explicit task modules
celery_app = Celery(
    'gallery_insight',
    include=[
        'src.tasks.workers.analysis_worker',
    ]
)

celery_app.conf.update(
    broker_url=settings.CELERY_BROKER_URL,
    result_backend=settings.CELERY_RESULT_BACKEND,
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,  # hard limit per task
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)
