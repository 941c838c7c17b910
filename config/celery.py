"""
Celery application for background stock jobs.

Periodic tasks (reservation expiry sweep, alert generation, retention purges)
are scheduled through CELERY_BEAT_SCHEDULE in settings.
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('stockkeeper')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
