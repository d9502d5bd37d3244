"""
Outbound customer email

Lead services send confirmation and status-change emails through a Mailer.
Delivery is best-effort: a failed send is logged and never undoes the change
that triggered it.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import resend

from config import Settings

logger = logging.getLogger(__name__)


class MailError(Exception):
    pass


class Mailer(ABC):
    @abstractmethod
    def send(self, to: str, subject: str, text: str, html: Optional[str] = None):
        """Deliver one message or raise MailError."""


class ResendMailer(Mailer):
    def __init__(self, api_key: str, sender: str):
        self.api_key = api_key
        self.sender = sender

    def send(self, to, subject, text, html=None):
        payload = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "text": text,
            "html": html or text.replace("\n", "<br>"),
        }
        previous_api_key = getattr(resend, "api_key", None)
        resend.api_key = self.api_key
        try:
            response = resend.Emails.send(payload)
        except Exception as exc:
            raise MailError(str(exc)) from exc
        finally:
            resend.api_key = previous_api_key

        if not isinstance(response, dict) or not response.get("id"):
            raise MailError(str(response))
        logger.info("Email sent to %s: %s", to, response["id"])


class LogMailer(Mailer):
    """Used when no mail API key is configured."""

    def send(self, to, subject, text, html=None):
        logger.info('Email delivery not configured; skipped "%s" to %s', subject, to)


def mailer_from_settings(settings: Settings) -> Mailer:
    if not settings.resend_api_key:
        logger.warning("RESEND_API_KEY is not configured; customer emails will only be logged")
        return LogMailer()
    return ResendMailer(settings.resend_api_key, settings.mail_from)


def send_best_effort(mailer: Mailer, to: Optional[str], subject: str, text: str, html: Optional[str] = None) -> bool:
    if not to:
        logger.warning('No recipient for "%s"; email not sent', subject)
        return False
    try:
        mailer.send(to, subject, text, html)
    except MailError as exc:
        logger.error("Error sending email to %s: %s", to, exc)
        return False
    return True
