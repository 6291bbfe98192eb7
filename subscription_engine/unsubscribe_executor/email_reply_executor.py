"""
Email Reply Unsubscribe Executor

Handles Mailto methods by sending the unsubscribe email through a MailSender.
SmtpMailSender is the SMTP implementation used by the CLI.
"""

import smtplib
import socket
from email.mime.text import MIMEText
from typing import Optional

from ..unsubscribe.methods import MailtoMethod, MethodKind
from .base_executor import DEFAULT_TIMEOUT, ActionRequest, ActionResult, BaseMethodExecutor

DEFAULT_BODY = 'Please unsubscribe me from this mailing list.'


class SmtpMailSender:
    """Send mail over SMTP with STARTTLS and login."""

    def __init__(
        self,
        email_address: Optional[str],
        email_password: Optional[str],
        smtp_host: str = 'smtp.gmail.com',
        smtp_port: int = 587
    ):
        self.email_address = email_address
        self.email_password = email_password
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port

    @property
    def has_credentials(self) -> bool:
        return bool(self.email_address and self.email_password)

    def compose(self, to_address: str, subject: str, body: str) -> MIMEText:
        msg = MIMEText(body)
        msg['From'] = self.email_address or ''
        msg['To'] = to_address
        msg['Subject'] = subject
        return msg

    def send(self, to_address: str, subject: str, body: str, timeout: float) -> None:
        if not self.has_credentials:
            raise smtplib.SMTPAuthenticationError(530, b'Email credentials not provided')
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=timeout) as server:
            server.starttls()
            server.login(self.email_address, self.email_password)
            server.send_message(self.compose(to_address, subject, body))


class EmailReplyExecutor(BaseMethodExecutor):
    """Execute unsubscribe requests via email."""

    def __init__(
        self,
        mail_sender=None,
        timeout: float = DEFAULT_TIMEOUT,
        rate_limit_delay: float = 0.0,
        dry_run: bool = False
    ):
        """
        Initialize Email Reply executor.

        Args:
            mail_sender: MailSender used to deliver the email
            timeout: SMTP timeout in seconds
            rate_limit_delay: Delay in seconds between email sends
            dry_run: If True, simulate without actual execution
        """
        super().__init__(timeout, rate_limit_delay, dry_run)
        self.mail_sender = mail_sender

    @property
    def method_kind(self) -> MethodKind:
        return MethodKind.MAILTO

    def describe(self, method: MailtoMethod, request: ActionRequest) -> str:
        return f'send email to {method.address} with subject "{method.subject}"'

    def _perform_execution(self, method: MailtoMethod, request: ActionRequest) -> ActionResult:
        if self.mail_sender is None:
            return ActionResult.failed('No mail sender configured')
        if not method.address or '@' not in method.address:
            return ActionResult.failed(f'Malformed target: {method.address!r}')

        try:
            self.mail_sender.send(
                to_address=method.address,
                subject=method.subject or 'Unsubscribe',
                body=method.body or DEFAULT_BODY,
                timeout=self.timeout
            )
        except smtplib.SMTPAuthenticationError as e:
            return ActionResult.failed(f'SMTP authentication error: {e}')
        except smtplib.SMTPConnectError as e:
            return ActionResult.failed(f'SMTP connection error: {e}')
        except smtplib.SMTPException as e:
            return ActionResult.failed(f'SMTP error: {e}')
        except (socket.timeout, TimeoutError) as e:
            return ActionResult.failed(f'Connection timeout: {e}')
        except OSError as e:
            return ActionResult.failed(f'Connection error: {e}')

        return ActionResult(success=True, message=f'Successfully sent unsubscribe email to {method.address}')
