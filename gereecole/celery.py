import os

from celery import Celery
from celery.schedules import crontab

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "gereecole.settings")

app = Celery("gereecole")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()

app.conf.beat_schedule = {
    'purge-processed-payment-events': {
        'task': 'finance.tasks.purge_processed_events_task',
        'schedule': crontab(hour=2, minute=0),
    },
}
