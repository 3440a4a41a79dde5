import logging

from django.apps import AppConfig
from django.conf import settings

LOGGER = logging.getLogger(__name__)


class CrmConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'crm'
    verbose_name = 'Audience CRM'
    message_generator = None

    def ready(self):
        from .ai_engine import MessageGenerator, MessageGeneratorError

        if not getattr(settings, 'OPENAI_API_KEY', ''):
            LOGGER.info('OPENAI_API_KEY not set; message generation disabled')
            return
        try:
            self.message_generator = MessageGenerator()
        except MessageGeneratorError as exc:
            LOGGER.warning('Message generation disabled: %s', exc)
