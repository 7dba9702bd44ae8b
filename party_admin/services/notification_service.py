"""Best-effort notifications queued on Celery."""

import logging

from kombu.exceptions import KombuError

logger = logging.getLogger("party_admin.notifications")


class NotificationService:

    @staticmethod
    def enqueue_welcome(email: str, full_name: str, role_name: str) -> bool:
        """Queue the welcome email. Returns False instead of raising on failure."""
        from party_admin.tasks.celery_app import send_welcome_email

        try:
            send_welcome_email.delay(email, full_name, role_name)
        except (KombuError, OSError) as e:
            logger.error("Could not queue welcome email for %s: %s", email, e)
            return False
        return True


notification_service = NotificationService()
