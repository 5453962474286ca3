"""
Email Service - outbound mail through Resend or the tenant's Outlook account
"""
import logging
from typing import List, Optional

import httpx

from config.settings import settings
from services.connector_credentials import ConnectorCredentials

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
GRAPH_SEND_MAIL_URL = "https://graph.microsoft.com/v1.0/me/sendMail"


class EmailDeliveryError(RuntimeError):
    """Raised when an email provider rejects or cannot receive a message."""


def text_to_html(body: str) -> str:
    return body.replace("\n", "<br>")


def split_recipients(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [address.strip() for address in value.split(",") if address.strip()]


async def send_email_via_resend(
    to: str,
    subject: str,
    body: str,
    cc: Optional[str] = None,
    is_html: bool = False,
    from_address: Optional[str] = None,
    api_key: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """
    Send an email through Resend.

    Args:
        to: Recipient address
        subject: Subject line
        body: Message body, HTML when is_html else plain text
        cc: Optional CC address
        is_html: Whether body is already HTML
        from_address: Sender (defaults to RESEND_FROM)
        api_key: Resend API key (defaults to RESEND_API_KEY)

    Returns:
        Resend's JSON response (contains the message id)

    Raises:
        EmailDeliveryError: If Resend is not configured or rejects the message
    """
    api_key = api_key or settings.resend_api_key
    if not api_key:
        raise EmailDeliveryError("RESEND_API_KEY not configured")
    sender = from_address or settings.resend_from
    if not sender:
        raise EmailDeliveryError("RESEND_FROM not configured")

    payload = {
        "from": sender,
        "to": [to],
        "subject": subject,
        "html": body if is_html else text_to_html(body),
    }
    if cc:
        payload["cc"] = [cc]

    headers = {"Authorization": f"Bearer {api_key}"}
    try:
        if client is not None:
            response = await client.post(RESEND_API_URL, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=30.0) as http:
                response = await http.post(RESEND_API_URL, json=payload, headers=headers)
    except httpx.RequestError as e:
        raise EmailDeliveryError(f"Resend request failed: {e}") from e

    if not response.is_success:
        logger.warning(f"Resend returned {response.status_code}: {response.text[:200]}")
        raise EmailDeliveryError(f"Resend error {response.status_code}")

    try:
        result = response.json()
    except ValueError as e:
        raise EmailDeliveryError("Resend returned a non-JSON response") from e
    if not isinstance(result, dict):
        raise EmailDeliveryError("Unexpected Resend response")
    logger.info(f"Email sent via Resend: {result.get('id')}")
    return result


async def send_email_via_outlook(
    credentials: ConnectorCredentials,
    to: str,
    subject: str,
    body: str,
    cc: Optional[str] = None,
    is_html: bool = False,
    client: Optional[httpx.AsyncClient] = None,
) -> None:
    """
    Send an email from the connected Outlook account through Microsoft Graph.

    Args:
        credentials: Resolved Outlook connector credentials; must not be expired
        to: Comma-separated recipient addresses
        subject: Subject line
        body: Message body
        cc: Optional comma-separated CC addresses
        is_html: Whether body is HTML

    Raises:
        EmailDeliveryError: If credentials are expired or Graph rejects the message
    """
    if credentials.is_expired():
        raise EmailDeliveryError("Outlook credentials expired, resolve them again")

    message = {
        "subject": subject,
        "body": {
            "contentType": "HTML" if is_html else "Text",
            "content": body,
        },
        "toRecipients": [{"emailAddress": {"address": address}} for address in split_recipients(to)],
    }
    cc_recipients = [{"emailAddress": {"address": address}} for address in split_recipients(cc)]
    if cc_recipients:
        message["ccRecipients"] = cc_recipients

    headers = {"Authorization": f"Bearer {credentials.access_token}"}
    payload = {"message": message, "saveToSentItems": True}
    try:
        if client is not None:
            response = await client.post(GRAPH_SEND_MAIL_URL, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=30.0) as http:
                response = await http.post(GRAPH_SEND_MAIL_URL, json=payload, headers=headers)
    except httpx.RequestError as e:
        raise EmailDeliveryError(f"Graph request failed: {e}") from e

    if not response.is_success:
        logger.warning(f"Graph sendMail returned {response.status_code}: {response.text[:200]}")
        raise EmailDeliveryError(f"Outlook error {response.status_code}")

    logger.info(f"Email sent via Outlook to {len(message['toRecipients'])} recipient(s)")
