import logging
import smtplib
from email.message import EmailMessage

from fastapi import Request

from config import Settings

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    pass


class Mailer:
    """Plain-text mail over SMTP (Mailtrap in development)."""

    def __init__(self, settings: Settings):
        self.host = settings.email_host
        self.port = settings.email_port
        self.username = settings.email_username
        self.password = settings.email_password
        self.sender = settings.email_from

    def send(self, to: str, subject: str, message: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(message)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
                smtp.ehlo()
                if smtp.has_extn("starttls"):
                    smtp.starttls()
                    smtp.ehlo()
                if self.username:
                    smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailDeliveryError(str(exc)) from exc
        logger.info("Sent '%s' to %s", subject, to)


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer
