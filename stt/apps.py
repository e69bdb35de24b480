from django.apps import AppConfig
from django.conf import settings


class SttConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'stt'

    def ready(self):
        from pydub import AudioSegment

        AudioSegment.converter = getattr(settings, 'FFMPEG_BINARY', 'ffmpeg')
