"""Celery app and tasks for out-of-band notifications."""

import logging
import smtplib
from email.message import EmailMessage

from celery import Celery
from party_admin.core.config import settings

logger = logging.getLogger("party_admin.tasks")

celery_app = Celery(
    "party_admin",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_soft_time_limit=60,
    task_time_limit=120,
)


def build_welcome_message(email: str, full_name: str, role_name: str) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = f"Welcome to {settings.APP_NAME}"
    message["From"] = settings.SMTP_FROM_EMAIL
    message["To"] = email
    message.set_content(
        f"Hello {full_name},\n\n"
        f"An administrator created an account for you on {settings.APP_NAME} "
        f"with the role '{role_name}'.\n"
        f"Sign in with this email address and the password you were given.\n"
    )
    return message


@celery_app.task(bind=True, name="send_welcome_email", max_retries=3, default_retry_delay=30)
def send_welcome_email(self, email: str, full_name: str, role_name: str) -> dict:
    """Deliver the welcome mail for a newly created account.

    Without ``SMTP_HOST`` the mail is skipped, not failed.
    """
    if not settings.SMTP_HOST:
        logger.info("SMTP_HOST not configured, skipping welcome email to %s", email)
        return {"status": "skipped", "email": email}

    message = build_welcome_message(email, full_name, role_name)
    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as server:
            if settings.SMTP_USE_TLS:
                server.starttls()
            if settings.SMTP_USERNAME:
                server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD or "")
            server.send_message(message)
    except (smtplib.SMTPException, OSError) as e:
        logger.warning("Welcome email to %s failed: %s", email, e)
        raise self.retry(exc=e)

    logger.info("Welcome email sent to %s", email)
    return {"status": "sent", "email": email}
