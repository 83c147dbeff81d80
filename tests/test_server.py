import asyncio
import json

import aiosmtplib
import pytest

from simple_mailer import mailer as mailer_module
from simple_mailer import server


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    for key in ("SMTP_HOST", "SMTP_PORT", "SMTP_TIMEOUT", "SIMPLE_MAILER_TEST_MODE", "SIMPLE_MAILER_STRICT"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(server, "_mailer", None)
    yield


def call(name, arguments):
    content = asyncio.run(server.handle_call_tool(name, arguments))
    assert len(content) == 1
    return json.loads(content[0].text)


def test_mailer_from_env_defaults():
    m = server.mailer_from_env()
    assert m.host == "localhost"
    assert m.port == 25
    assert not m.test_mode
    assert not m.strict


def test_mailer_from_env(monkeypatch):
    monkeypatch.setenv("SMTP_HOST", "mail.example.com")
    monkeypatch.setenv("SMTP_PORT", "not-a-port")
    monkeypatch.setenv("SMTP_TIMEOUT", "5")
    monkeypatch.setenv("SIMPLE_MAILER_TEST_MODE", "true")
    monkeypatch.setenv("SIMPLE_MAILER_STRICT", "TRUE")

    m = server.mailer_from_env()
    assert m.host == "mail.example.com"
    assert m.port == 25
    assert m.timeout == 5.0
    assert m.test_mode
    assert m.strict


def test_list_tools():
    tools = asyncio.run(server.handle_list_tools())
    assert [t.name for t in tools] == ["send_email", "sent_emails"]


def test_send_email_tool_in_test_mode(monkeypatch):
    monkeypatch.setenv("SIMPLE_MAILER_TEST_MODE", "true")

    result = call("send_email", {
        "from": "a@x.com",
        "to": "b@x.com",
        "subject": "Hi",
        "body": "Body",
        "headers": {"smtp_from": "bounce@x.com", "X-Tag": "1"},
    })
    assert result == {"sent": True, "smtpFrom": "bounce@x.com", "smtpTo": "b@x.com"}

    sent = call("sent_emails", {})
    assert len(sent) == 1
    assert sent[0]["smtpFrom"] == "bounce@x.com"
    assert sent[0]["message"] == "From: a@x.com\nTo: b@x.com\nSubject: Hi\nX-Tag: 1\n\nBody\n"


def test_send_email_tool_reports_transport_error(monkeypatch):
    async def refuse(message, **kwargs):
        raise aiosmtplib.SMTPConnectError("Error connecting to localhost on port 25")

    monkeypatch.setattr(mailer_module.aiosmtplib, "send", refuse)

    result = call("send_email", {"from": "a@x.com", "to": "b@x.com", "subject": "Hi", "body": "Body"})
    assert result["sent"] is False
    assert "localhost" in result["error"]


def test_send_email_tool_validates_arguments():
    with pytest.raises(ValueError):
        call("send_email", {"from": "a@x.com", "to": ["b@x.com"], "subject": "Hi", "body": "Body"})
    with pytest.raises(ValueError):
        call("send_email", {"from": "a@x.com", "to": "b@x.com", "subject": "Hi", "body": "Body", "headers": {"X": 1}})


def test_unknown_tool():
    with pytest.raises(ValueError):
        call("nope", {})
