"""
Send a test email through Resend to check the mail configuration.

Usage:
    python scripts/send_test_email.py recipient@example.com [--from "CRM <onboarding@resend.dev>"]

Credentials come from RESEND_API_KEY / RESEND_FROM, or from the resend
connector when those are unset.
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.settings import settings
from services.connector_credentials import ConnectorError, resolve_connector_credentials
from services.email_service import EmailDeliveryError, send_email_via_resend


TEST_SUBJECT = "Test Email from Simple & Fast CRM"
TEST_BODY = (
    "<h1>Hello!</h1>"
    "<p>This is a test email from your <strong>Simple & Fast CRM</strong> application.</p>"
    "<p>If you received this, email sending is working correctly!</p>"
)


async def send_test_email(to: str, from_address: str = None) -> dict:
    api_key = settings.resend_api_key
    sender = from_address or settings.resend_from

    if not api_key:
        print("RESEND_API_KEY not set, resolving the resend connector...")
        credentials = await resolve_connector_credentials("resend")
        api_key = credentials.access_token
        sender = sender or credentials.settings.get("from_email")
        print("From Email configured:", sender)

    result = await send_email_via_resend(
        to=to,
        subject=TEST_SUBJECT,
        body=TEST_BODY,
        is_html=True,
        from_address=sender,
        api_key=api_key,
    )
    print("Email result:", result)
    return result


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Send a test email through Resend")
    parser.add_argument("to", help="Recipient address")
    parser.add_argument("--from", dest="from_address", default=None, help="Sender address")
    args = parser.parse_args(argv)

    try:
        asyncio.run(send_test_email(args.to, args.from_address))
    except (ConnectorError, EmailDeliveryError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
