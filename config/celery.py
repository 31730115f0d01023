import os
from celery import Celery
from config.env import env


os.environ.setdefault(
    "DJANGO_SETTINGS_MODULE",
    env("DJANGO_SETTINGS_MODULE", default="config.core.local"),
)

app = Celery("config")

# Load configuration from Django's settings using the CELERY namespace
app.config_from_object("django.conf:settings", namespace="CELERY")

# Patient domain events are delivered by tasks in patients/tasks.py
app.autodiscover_tasks()
