"""Simple mailer package.

Formats plain email messages and sends them over SMTP, with a test mode that
records messages instead of sending them.
"""

from .mailer import (  # re-export for public API
    HeaderInjectionError,
    Mailer,
    MailerError,
    SentEmail,
    TransportError,
    configure,
    emails_sent,
    enable_test_mode,
    get_mailer,
    render_message,
    send_email,
    split_headers,
)

__all__ = [
    "HeaderInjectionError",
    "Mailer",
    "MailerError",
    "SentEmail",
    "TransportError",
    "configure",
    "emails_sent",
    "enable_test_mode",
    "get_mailer",
    "render_message",
    "send_email",
    "split_headers",
]

__version__ = "0.1.0"
