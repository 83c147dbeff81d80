import json
import os
from typing import Any, Optional

# MCP Python SDK (low-level stdio server)
import mcp.server.stdio
import mcp.types as types
from mcp.server.lowlevel import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from dotenv import load_dotenv

from .mailer import Mailer, TransportError, envelope_addresses

load_dotenv()


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "false").lower() == "true"


def mailer_from_env() -> Mailer:
    """Build a Mailer from SMTP_* and SIMPLE_MAILER_* environment variables."""
    port: Optional[int]
    try:
        port = int(os.environ.get("SMTP_PORT", "25"))
    except ValueError:
        port = None

    timeout: Optional[float]
    try:
        timeout = float(os.environ.get("SMTP_TIMEOUT", "60"))
    except ValueError:
        timeout = None

    mailer = Mailer(
        host=os.environ.get("SMTP_HOST") or None,
        port=port,
        timeout=timeout,
        strict=_env_flag("SIMPLE_MAILER_STRICT"),
    )
    if _env_flag("SIMPLE_MAILER_TEST_MODE"):
        mailer.enable_test_mode()
    return mailer


_mailer: Optional[Mailer] = None


def get_server_mailer() -> Mailer:
    global _mailer
    if _mailer is None:
        _mailer = mailer_from_env()
    return _mailer


# MCP server over stdio compatible with StdioServerParameters.
server = Server("simple-mailer")


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """Advertise available tools to the client."""
    return [
        types.Tool(
            name="send_email",
            description="Send a plain text email through the configured SMTP server",
            inputSchema={
                "type": "object",
                "properties": {
                    "from": {"type": "string", "description": "From address"},
                    "to": {"type": "string", "description": "To address"},
                    "subject": {"type": "string", "description": "Email subject"},
                    "body": {"type": "string", "description": "Email body (text/plain)"},
                    "headers": {
                        "type": "object",
                        "additionalProperties": {"type": "string"},
                        "description": "Extra headers. smtp_from and smtp_to override the SMTP envelope.",
                    },
                },
                "required": ["from", "to", "subject", "body"],
            },
        ),
        types.Tool(
            name="sent_emails",
            description="List the emails recorded while the mailer is in test mode",
            inputSchema={"type": "object", "properties": {}},
        ),
    ]


@server.call_tool()
async def handle_call_tool(name: str, arguments: dict[str, Any]) -> list[types.TextContent]:
    """Handle tool invocations from the client."""
    mailer = get_server_mailer()

    if name == "sent_emails":
        result: Any = [
            {"message": e.message, "smtpFrom": e.smtp_from, "smtpTo": e.smtp_to}
            for e in mailer.emails_sent
        ]
        return [types.TextContent(type="text", text=json.dumps(result))]

    if name != "send_email":
        raise ValueError(f"Unknown tool: {name}")

    fields = {}
    for key in ("from", "to", "subject", "body"):
        value = arguments.get(key)
        if not isinstance(value, str):
            raise ValueError(f"'{key}' must be a string")
        fields[key] = value
    headers = arguments.get("headers") or {}
    if not isinstance(headers, dict) or not all(isinstance(v, str) for v in headers.values()):
        raise ValueError("'headers' must be an object of strings")

    smtp_from, smtp_to = envelope_addresses(fields["from"], fields["to"], headers)
    try:
        await mailer.send_email_async(fields["from"], fields["to"], fields["subject"], fields["body"], headers)
        result = {
            "sent": True,
            "smtpFrom": smtp_from,
            "smtpTo": smtp_to,
        }
    except TransportError as e:
        # Report delivery failures to the client instead of failing the call
        result = {"sent": False, "error": str(e)}
    return [types.TextContent(type="text", text=json.dumps(result))]


async def _run() -> None:
    """Run the MCP server over stdio."""
    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            InitializationOptions(
                server_name="Simple Mailer",
                server_version="0.1.0",
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            ),
        )
