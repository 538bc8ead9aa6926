import os
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "farm_trace.settings")


import django
django.setup()


from celery import Celery


app = Celery("farm_trace")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks(related_name="celery_tasks")
