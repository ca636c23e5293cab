"""
Avisos de eventos do fluxo de justificativas (submetida, revisada).

Não participa da corretude: falhas de entrega são registradas e ignoradas.
"""

import logging
from collections import deque

import requests
from flask import current_app

logger = logging.getLogger(__name__)

JUSTIFICATION_SUBMITTED = 'justification.submitted'
JUSTIFICATION_REVIEWED = 'justification.reviewed'


class NotificationService:

    def __init__(self, webhook_url=None, timeout=5):
        self.webhook_url = webhook_url
        self.timeout = timeout
        # Últimos eventos, para inspeção
        self.sent = deque(maxlen=200)

    def notify(self, event, payload):
        logger.info(f"Evento {event}: {payload}")
        self.sent.append((event, payload))

        if not self.webhook_url:
            return False

        try:
            response = requests.post(
                self.webhook_url,
                json={'event': event, 'payload': payload},
                timeout=self.timeout,
            )
            response.raise_for_status()
            logger.debug(f"Webhook {event} entregue ({response.status_code})")
            return True
        except requests.RequestException as e:
            logger.warning(f"Falha ao entregar webhook {event}: {e}")
            return False


def notify(event, payload):
    service = current_app.extensions.get('notifications')
    if service is None:
        return False
    return service.notify(event, payload)
