import logging
import requests

from multimart.config import Settings

logger = logging.getLogger(__name__)


class Mailer:
    """Mailgun HTTP API sender, built once per app from Settings."""

    def __init__(self, settings: Settings):
        self.api_key = settings.mailgun_api_key
        self.domain = settings.mailgun_domain
        self.from_name = settings.email_from_name
        self.from_address = settings.email_from_address

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: str | None = None,
    ) -> bool:
        """
        Send email via Mailgun HTTP API.

        HARD GUARANTEES:
        - NEVER raises exceptions
        - Returns True on success, False on failure
        """

        if not self.api_key or not self.domain or not self.from_address:
            logger.error(
                "Mailgun not configured | domain=%s from=%s",
                self.domain,
                self.from_address,
            )
            return False

        data = {
            "from": f"{self.from_name} <{self.from_address}>",
            "to": to_email,
            "subject": subject,
            "html": html_content,
        }

        if text_content:
            data["text"] = text_content

        try:
            response = requests.post(
                f"https://api.mailgun.net/v3/{self.domain}/messages",
                auth=("api", self.api_key),
                data=data,
                timeout=10,
            )

            if response.status_code != 200:
                logger.error(
                    "Mailgun email failed | to=%s | status=%s | response=%s",
                    to_email,
                    response.status_code,
                    response.text,
                )
                return False

            return True

        except requests.RequestException as e:
            # email can never break business logic
            logger.exception(
                "Mailgun email exception | to=%s | error=%s",
                to_email,
                str(e),
            )
            return False

    def send_otp(self, to_email: str, otp: str, minutes: int) -> bool:
        subject = "Your MultiMart login code"
        html = (
            f"<p>Your one-time login code is <strong>{otp}</strong>.</p>"
            f"<p>It expires in {minutes} minutes. Do not share it with anyone.</p>"
        )
        text = f"Your one-time login code is {otp}. It expires in {minutes} minutes."
        return self.send_email(to_email, subject, html, text)
