from celery import Celery
from celery.schedules import crontab
from hostelhub.core.config import settings

celery_app = Celery(
    "tasks",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "hostelhub.tasks.subscription_tasks",
    ]
)

celery_app.conf.update(
    task_track_started=True,
    beat_schedule={
        'expire-subscriptions-daily': {
            'task': 'tasks.expire_subscriptions',
            'schedule': crontab(hour=0, minute=5),  # Runs daily at 00:05
        },
    },
)
