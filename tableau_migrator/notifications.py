"""Mail notification of migration results."""

import logging
import re
import smtplib
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Iterable, List, Optional

from .config import ConfigurationError, SmtpConfig

__all__ = ['MailNotifier', 'split_addresses']

_ADDRESS_SEPARATORS = re.compile(r'[,;]')


def split_addresses(value: Optional[str]) -> List[str]:
    """Split a comma or semicolon separated recipient string."""
    return [a.strip() for a in _ADDRESS_SEPARATORS.split(value or '') if a.strip()]


class MailNotifier:
    """
    Sends mail through the configured SMTP server.

    When ``dev_test`` is configured every message goes to that address only,
    with the intended recipients listed at the top of the body.
    """

    def __init__(self, config: SmtpConfig):
        if not config or not (config.server or '').strip() or not (config.sender or '').strip():
            raise ConfigurationError("Server and from address must be specified in config")
        self.config = config
        self.logger = logging.getLogger(__name__)

    def send_admin_email(self, subject: str, body: str, html: bool = True,
                         attachments: Optional[Iterable[str]] = None):
        """Send a message to the configured administrator"""
        self.logger.debug(f"Sending admin mail to {self.config.admin}")
        self.send_email(self.config.admin, subject, body, html=html, attachments=attachments)

    def send_email(self, to: str, subject: str, body: str, cc: Optional[str] = None,
                   bcc: Optional[str] = None, html: bool = True,
                   attachments: Optional[Iterable[str]] = None):
        """Send a message, recipients given as comma or semicolon separated strings"""
        port = self.config.port or 25
        self.logger.debug(f"Sending mail to {to}, server {self.config.server}, port {port}")

        to_list, cc_list, bcc_list = split_addresses(to), split_addresses(cc), split_addresses(bcc)
        if self.config.dev_test:
            self.logger.debug(f"SMTP dev/test mode: all mail goes to {self.config.dev_test}")
            separator = "<br />\n" if html else "\n"
            body = separator.join([f"To: {to or ''}", f"Cc: {cc or ''}", f"Bcc: {bcc or ''}", "", body])
            to_list, cc_list, bcc_list = [self.config.dev_test], [], []

        if not (to_list or cc_list or bcc_list):
            self.logger.error("Error sending mail, no recipients (to/cc/bcc) specified")
            raise ValueError("Error sending mail, no recipients (to/cc/bcc) specified")

        msg = MIMEMultipart()
        msg["Subject"] = subject
        msg["From"] = self.config.sender
        if to_list:
            msg["To"] = ", ".join(to_list)
        if cc_list:
            msg["Cc"] = ", ".join(cc_list)
        msg.attach(MIMEText(body, "html" if html else "plain"))

        for attachment in attachments or []:
            path = Path(attachment)
            part = MIMEApplication(path.read_bytes(), Name=path.name)
            part["Content-Disposition"] = f'attachment; filename="{path.name}"'
            msg.attach(part)

        with smtplib.SMTP(self.config.server, port, timeout=30) as smtp:
            if self.config.use_tls:
                smtp.starttls()
            if self.config.username and self.config.password:
                smtp.login(self.config.username, self.config.password)
            smtp.send_message(msg, to_addrs=to_list + cc_list + bcc_list)
        self.logger.info(f"Mail sent: subject '{subject}'")
