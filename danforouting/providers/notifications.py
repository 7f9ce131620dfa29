import logging
from abc import ABC, abstractmethod

import requests

from ..config import config
from ..exceptions import APIError
from ..models.trips import Notification

logger = logging.getLogger(__name__)


class NotificationSender(ABC):
    """Fire-and-forget push delivery to a user"""

    @abstractmethod
    def send_to_user(self, user_id: str, notification: Notification) -> None: ...


class LoggingNotificationSender(NotificationSender):
    """Writes notifications to the log instead of delivering them"""

    def send_to_user(self, user_id, notification):
        logger.info(f"Notification for {user_id}: [{notification.kind}] {notification.title} - {notification.body}")


class WebhookNotificationSender(NotificationSender):
    """POSTs notifications as JSON to a push gateway"""

    def __init__(self, url: str, timeout: float = config.provider_timeout):
        self.url = url
        self.timeout = timeout

    def send_to_user(self, user_id, notification):
        payload = {
            'user_id': user_id,
            'title': notification.title,
            'body': notification.body,
            'data': {'type': notification.kind, 'trip_id': notification.trip_id, **notification.data},
        }
        try:
            resp = requests.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise APIError(f"Push delivery failed: {e}") from e
