"""
Connector credentials - resolves access tokens for third-party connectors
(Outlook, Resend) from the connector service.

Credentials are returned to the caller together with their expiry; nothing is
kept in module state. Callers re-resolve once is_expired() turns true.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, Field

from config.settings import settings

logger = logging.getLogger(__name__)

CONNECTOR_TOKEN_HEADER = "X_REPLIT_TOKEN"


class ConnectorError(RuntimeError):
    """Raised when a connector cannot be resolved or is not connected."""


class ConnectorCredentials(BaseModel):
    connector: str
    access_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    settings: Dict[str, Any] = Field(default_factory=dict)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Credentials without a known expiry are treated as expired."""
        if self.expires_at is None:
            return True
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return (now or datetime.now(timezone.utc)) >= expires_at


def _parse_expiry(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, (int, float)):
        # Epoch milliseconds or seconds
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable connector expiry: {value!r}")
        return None


async def resolve_connector_credentials(
    connector_name: str,
    client: Optional[httpx.AsyncClient] = None,
    hostname: Optional[str] = None,
    token: Optional[str] = None,
) -> ConnectorCredentials:
    """
    Fetch the current credentials for a connector.

    Args:
        connector_name: Connector to resolve, e.g. "outlook" or "resend"
        client: Optional httpx client (a short-lived one is created otherwise)
        hostname: Connector service host (defaults to CONNECTORS_HOSTNAME)
        token: Connector service identity token (defaults to CONNECTORS_TOKEN)

    Returns:
        ConnectorCredentials with access token, expiry and raw settings

    Raises:
        ConnectorError: If the service is unconfigured, unreachable, or the
            connector is not connected
    """
    hostname = hostname or settings.connectors_hostname
    token = token or settings.connectors_token
    if not hostname or not token:
        raise ConnectorError("Connector service is not configured (CONNECTORS_HOSTNAME / CONNECTORS_TOKEN)")

    url = f"https://{hostname}/api/v2/connection"
    params = {"include_secrets": "true", "connector_names": connector_name}
    headers = {"Accept": "application/json", CONNECTOR_TOKEN_HEADER: token}

    try:
        if client is not None:
            response = await client.get(url, params=params, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=10.0) as http:
                response = await http.get(url, params=params, headers=headers)
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPError as e:
        raise ConnectorError(f"Failed to resolve {connector_name} connector: {e}") from e
    except ValueError as e:
        raise ConnectorError(f"Connector service returned invalid JSON for {connector_name}") from e

    if not isinstance(payload, dict):
        raise ConnectorError(f"Unexpected connector service response for {connector_name}")
    items = payload.get("items") or []
    first = items[0] if isinstance(items, list) and items else None
    connection_settings = (first.get("settings") if isinstance(first, dict) else None) or {}
    if not isinstance(connection_settings, dict):
        raise ConnectorError(f"Unexpected connector settings for {connector_name}")
    access_token = (
        connection_settings.get("access_token")
        or ((connection_settings.get("oauth") or {}).get("credentials") or {}).get("access_token")
        or connection_settings.get("api_key")
    )
    if not access_token:
        raise ConnectorError(f"{connector_name} not connected")

    return ConnectorCredentials(
        connector=connector_name,
        access_token=access_token,
        expires_at=_parse_expiry(connection_settings.get("expires_at")),
        settings=connection_settings,
    )
