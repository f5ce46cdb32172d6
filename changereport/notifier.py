from collections.abc import Callable, Sequence
from datetime import datetime
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
import logging
from pathlib import Path
import smtplib
import ssl
import time

from changereport.config import EmailSettings
from changereport.errors import EmailError, NoRecipientsError
from changereport.retry import RetryExhaustedError, run_with_retries
from changereport.run_log import persist_document
from changereport.secret_store import SecretStoreError


logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 30
MAX_RETRIES = 2
RETRY_DELAY_SECONDS = 5.0
FALLBACK_PREFIX = "undelivered"
IMPLICIT_TLS_PORT = 465

SmtpFactory = Callable[[EmailSettings], smtplib.SMTP]


def connect_smtp(settings: EmailSettings) -> smtplib.SMTP:
    if settings.enable_ssl and settings.port == IMPLICIT_TLS_PORT:
        return smtplib.SMTP_SSL(
            settings.smtp_server,
            settings.port,
            timeout=SMTP_TIMEOUT_SECONDS,
            context=ssl.create_default_context(),
        )
    return smtplib.SMTP(settings.smtp_server, settings.port, timeout=SMTP_TIMEOUT_SECONDS)


def is_transient(exc: Exception) -> bool:
    if isinstance(exc, (smtplib.SMTPAuthenticationError, smtplib.SMTPRecipientsRefused, smtplib.SMTPNotSupportedError)):
        return False
    if isinstance(exc, (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError)):
        return True
    if isinstance(exc, smtplib.SMTPResponseException):
        return 400 <= exc.smtp_code < 500
    if isinstance(exc, smtplib.SMTPException):
        return False
    if isinstance(exc, ssl.SSLCertVerificationError):
        return False
    # Timeouts, refused/reset connections and DNS hiccups.
    return isinstance(exc, OSError)


class NotificationSender:
    def __init__(
        self,
        settings: EmailSettings,
        log_dir: Path,
        *,
        smtp_factory: SmtpFactory = connect_smtp,
        sleep: Callable[[float], None] = time.sleep,
        retry_delay_seconds: float = RETRY_DELAY_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = settings
        self.log_dir = Path(log_dir)
        self.smtp_factory = smtp_factory
        self.retry_delay_seconds = retry_delay_seconds
        self.clock = clock
        self._sleep = sleep

    def recipients(self) -> list[str]:
        return [address.strip() for address in self.settings.recipients if address and address.strip()]

    def build_message(self, subject: str, document: str, recipients: Sequence[str]) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.settings.sender
        message["To"] = ", ".join(recipients)
        message["Subject"] = subject
        message["Date"] = formatdate(localtime=True)
        message["Message-ID"] = make_msgid()
        message["X-Priority"] = "3"
        message.set_content(document, subtype="html")
        return message

    def send(
        self,
        subject: str,
        document: str,
        *,
        max_retries: int = MAX_RETRIES,
        fallback_prefix: str = FALLBACK_PREFIX,
    ) -> bool:
        recipients = self.recipients()
        if not recipients:
            raise NoRecipientsError("no recipients configured for the report email")

        message = self.build_message(subject, document, recipients)
        try:
            run_with_retries(
                lambda attempt: self._deliver(message, recipients, attempt),
                max_retries=max_retries,
                delay_seconds=self.retry_delay_seconds,
                on_attempt_failure=self._log_attempt_failure,
                should_retry=is_transient,
                sleep=self._sleep,
            )
        except RetryExhaustedError as exc:
            self._write_fallback(document, fallback_prefix)
            raise EmailError(f"email delivery failed after {exc.attempts} attempts: {exc}") from exc
        except (smtplib.SMTPException, OSError, SecretStoreError) as exc:
            self._write_fallback(document, fallback_prefix)
            raise EmailError(f"email delivery failed: {exc}") from exc

        logger.info(
            "email sent to %d recipients",
            len(recipients),
            extra={"subject": subject, "smtp_server": self.settings.smtp_server},
        )
        return True

    def _deliver(self, message: EmailMessage, recipients: list[str], attempt: int) -> None:
        logger.debug("connecting to %s:%d (attempt %d)", self.settings.smtp_server, self.settings.port, attempt)
        with self.smtp_factory(self.settings) as smtp:
            if self.settings.enable_ssl and not isinstance(smtp, smtplib.SMTP_SSL):
                smtp.starttls(context=ssl.create_default_context())
            self._authenticate(smtp)
            smtp.send_message(message, from_addr=self.settings.sender, to_addrs=recipients)

    def _authenticate(self, smtp: smtplib.SMTP) -> None:
        credential = self.settings.credential
        if credential is None or not credential.username:
            return
        if credential.has_secret:
            smtp.login(credential.username, credential.reveal())
            return
        # Some relays accept a username without a password.
        smtp.login(credential.username, "")

    def _log_attempt_failure(self, attempt: int, exc: Exception) -> None:
        logger.warning(
            "email attempt %d failed (%s): %s",
            attempt,
            "transient" if is_transient(exc) else "permanent",
            exc,
            extra={"attempt": attempt, "smtp_server": self.settings.smtp_server},
        )

    def _write_fallback(self, document: str, prefix: str) -> None:
        try:
            path = persist_document(self.log_dir, prefix, document, self.clock())
        except OSError as exc:
            logger.warning("could not save undelivered document: %s", exc)
            return
        logger.warning("undelivered document saved to %s", path)
