"""Format simple email messages and send them over SMTP.

A :class:`Mailer` takes a from address, to address, subject, body and an
optional mapping of extra headers, renders a plain RFC 822 style message and
hands it to the configured SMTP server (``localhost`` by default).

In test mode nothing is sent; each message is appended to
:attr:`Mailer.emails_sent` instead.

The caller is responsible for ensuring that the from, to, subject and header
values contain no carriage returns or line feeds. Otherwise arbitrary headers
or body content can be injected. ``Mailer(strict=True)`` rejects such input
with :class:`HeaderInjectionError`.
"""

import asyncio
import logging
import threading
from typing import Dict, List, Mapping, NamedTuple, Optional, Tuple

import aiosmtplib

logger = logging.getLogger(__name__)

DEFAULT_SMTP_HOST = "localhost"
DEFAULT_SMTP_PORT = 25
DEFAULT_TIMEOUT = 60.0

SMTP_FROM_KEY = "smtp_from"
SMTP_TO_KEY = "smtp_to"


class MailerError(Exception):
    """Base class for mailer errors."""


class TransportError(MailerError):
    """The SMTP server could not be reached or refused the message."""


class HeaderInjectionError(MailerError, ValueError):
    """A header field or envelope address contains a line break (strict mode only)."""


class SentEmail(NamedTuple):
    message: str
    smtp_from: str
    smtp_to: str


def split_headers(headers: Optional[Mapping[str, object]]) -> Tuple[Optional[str], Optional[str], Dict[str, object]]:
    """Partition headers into (smtp_from, smtp_to, remaining headers).

    The reserved keys are dropped from the remaining headers whether or not
    they carry a value. The input mapping is left untouched.
    """
    remaining = dict(headers or {})
    smtp_from = remaining.pop(SMTP_FROM_KEY, None)
    smtp_to = remaining.pop(SMTP_TO_KEY, None)
    return smtp_from, smtp_to, remaining


def envelope_addresses(from_addr: str, to_addr: str,
                       headers: Optional[Mapping[str, object]] = None) -> Tuple[str, str]:
    """Return the SMTP (sender, recipient), honouring smtp_from / smtp_to overrides."""
    smtp_from, smtp_to, _ = split_headers(headers)
    return (
        from_addr if smtp_from is None else str(smtp_from),
        to_addr if smtp_to is None else str(smtp_to),
    )


def render_message(from_addr: str, to_addr: str, subject: str, body: str,
                   headers: Optional[Mapping[str, object]] = None) -> str:
    """Render the message text. Extra headers are emitted sorted by name."""
    header_block = "".join(f"{key}: {value}\n" for key, value in sorted((headers or {}).items()))
    return (
        f"From: {from_addr}\n"
        f"To: {to_addr}\n"
        f"Subject: {subject}\n"
        f"{header_block}"
        f"\n"
        f"{body}\n"
    )


def check_header_fields(from_addr: str, to_addr: str, subject: str,
                        headers: Optional[Mapping[str, object]] = None,
                        smtp_from: Optional[str] = None, smtp_to: Optional[str] = None) -> None:
    fields = [("From", from_addr), ("To", to_addr), ("Subject", subject)]
    if smtp_from is not None:
        fields.append((SMTP_FROM_KEY, smtp_from))
    if smtp_to is not None:
        fields.append((SMTP_TO_KEY, smtp_to))
    for key, value in (headers or {}).items():
        fields.append((f"Header name {key!r}", key))
        fields.append((key, value))
    for name, value in fields:
        text = str(value)
        if "\r" in text or "\n" in text:
            raise HeaderInjectionError(f"{name} contains a line break")


class Mailer:
    def __init__(self, host: Optional[str] = None, port: Optional[int] = None,
                 timeout: Optional[float] = None, strict: bool = False) -> None:
        self._lock = threading.Lock()
        self.host = host or DEFAULT_SMTP_HOST
        self.port = DEFAULT_SMTP_PORT if port is None else port
        self.timeout = DEFAULT_TIMEOUT if timeout is None else timeout
        self.strict = strict
        self._test_mode = False
        self._emails_sent: List[SentEmail] = []

    def configure(self, host: Optional[str] = None, port: Optional[int] = None,
                  timeout: Optional[float] = None) -> None:
        """Set the SMTP server used outside test mode. ``None`` keeps the current value."""
        with self._lock:
            if host is not None:
                self.host = host
            if port is not None:
                self.port = port
            if timeout is not None:
                self.timeout = timeout

    def enable_test_mode(self) -> None:
        """Turn on test mode and reset :attr:`emails_sent`.

        There is no way to turn test mode off again. While it is on, messages
        are recorded instead of sent.
        """
        with self._lock:
            self._emails_sent = []
            self._test_mode = True

    @property
    def test_mode(self) -> bool:
        with self._lock:
            return self._test_mode

    @property
    def emails_sent(self) -> List[SentEmail]:
        """Messages recorded in test mode, oldest first."""
        with self._lock:
            return list(self._emails_sent)

    def send_email(self, from_addr: str, to_addr: str, subject: str, body: str,
                   headers: Optional[Mapping[str, object]] = None) -> None:
        """Send a message, blocking until it is delivered or recorded.

        ``headers`` may carry ``smtp_from`` and ``smtp_to`` to override the
        SMTP envelope addresses, which otherwise default to ``from_addr`` and
        ``to_addr``. Those keys are never rendered as header lines.

        Raises :class:`TransportError` if the SMTP server cannot be reached or
        rejects the message. Must not be called from a running event loop; use
        :meth:`send_email_async` there.
        """
        asyncio.run(self.send_email_async(from_addr, to_addr, subject, body, headers))

    async def send_email_async(self, from_addr: str, to_addr: str, subject: str, body: str,
                               headers: Optional[Mapping[str, object]] = None) -> None:
        _, _, remaining = split_headers(headers)
        smtp_from, smtp_to = envelope_addresses(from_addr, to_addr, headers)
        if self.strict:
            check_header_fields(from_addr, to_addr, subject, remaining, smtp_from, smtp_to)
        message = render_message(from_addr, to_addr, subject, body, remaining)
        await self._dispatch(message, smtp_from, smtp_to)

    async def _dispatch(self, message: str, smtp_from: str, smtp_to: str) -> None:
        with self._lock:
            if self._test_mode:
                self._record(message, smtp_from, smtp_to)
                return
            host, port, timeout = self.host, self.port, self.timeout

        try:
            # Sent as UTF-8 bytes; aiosmtplib would encode a str as ASCII
            await aiosmtplib.send(
                message.encode("utf-8"),
                sender=smtp_from,
                recipients=[smtp_to],
                hostname=host,
                port=port,
                timeout=timeout,
                start_tls=False,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.warning("SMTP send to %s:%s failed: %s", host, port, e)
            raise TransportError(f"sending to {smtp_to} via {host}:{port} failed: {e}") from e
        logger.info("Sent email from %s to %s via %s:%s", smtp_from, smtp_to, host, port)

    def _record(self, message: str, smtp_from: str, smtp_to: str) -> None:
        # Caller holds self._lock.
        self._emails_sent.append(SentEmail(message, smtp_from, smtp_to))
        logger.debug("Recorded test-mode email from %s to %s", smtp_from, smtp_to)


# Process-wide default instance for the module-level helpers below.
_default_mailer: Optional[Mailer] = None
_default_lock = threading.Lock()


def get_mailer() -> Mailer:
    """Get or create the process-wide default Mailer."""
    global _default_mailer
    with _default_lock:
        if _default_mailer is None:
            _default_mailer = Mailer()
        return _default_mailer


def configure(host: Optional[str] = None, port: Optional[int] = None,
              timeout: Optional[float] = None) -> None:
    get_mailer().configure(host=host, port=port, timeout=timeout)


def enable_test_mode() -> None:
    get_mailer().enable_test_mode()


def emails_sent() -> List[SentEmail]:
    return get_mailer().emails_sent


def send_email(from_addr: str, to_addr: str, subject: str, body: str,
               headers: Optional[Mapping[str, object]] = None) -> None:
    get_mailer().send_email(from_addr, to_addr, subject, body, headers)
