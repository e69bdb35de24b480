from django.conf import settings
from django.core.checks import Error, register


@register()
def check_openai_configuration(app_configs, **kwargs):
    errors = []
    if not getattr(settings, 'OPENAI_API_KEY', None):
        errors.append(
            Error(
                'OPENAI_API_KEY is not configured.',
                hint='Set OPENAI_API_KEY in the environment or .env file.',
                id='integrations.E001',
            )
        )
    if not getattr(settings, 'OPENAI_TRANSCRIPTION_MODEL', None):
        errors.append(
            Error(
                'OPENAI_TRANSCRIPTION_MODEL is empty.',
                id='integrations.E002',
            )
        )
    return errors
