import os

from celery import Celery
from celery.signals import worker_init

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'pediscribe.settings')

app = Celery('pediscribe')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()


@worker_init.connect
def validate_openai_configuration(**kwargs):
    """Refuse to start a worker that cannot reach the transcription/LLM provider."""
    from integrations.clients.gpt_client import build_gpt_client

    build_gpt_client()
