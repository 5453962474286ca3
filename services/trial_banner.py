"""
Trial banner - turns a fetched TrialStatus into what the app shell renders.

The banner fails open: a failed fetch or an invalid payload renders nothing.
Blocking expired tenants is the job of require_active_access, not the banner.
"""
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ValidationError

from config.settings import settings
from services.trial_service import GateState, TrialStatus, gate_state

logger = logging.getLogger(__name__)

TRIAL_STATUS_PATH = "/api/billing/trial"
SUBSCRIBE_LINK = "/billing"

# Display metadata per gate state; HIDDEN renders nothing
GATE_DISPLAY: Dict[GateState, Optional[Dict[str, str]]] = {
    GateState.HIDDEN: None,
    GateState.ACTIVE_TRIAL: {"variant": "info", "test_id": "banner-trial", "icon": "gift"},
    GateState.EXPIRED: {"variant": "destructive", "test_id": "banner-trial-expired", "icon": "clock"},
}


class TrialBanner(BaseModel):
    state: GateState
    message: str
    variant: str
    test_id: str
    icon: str
    link: Optional[str] = None
    link_label: Optional[str] = None


def parse_trial_status(payload: Any) -> Optional[TrialStatus]:
    """Validate a raw /api/billing/trial payload. Returns None if it is malformed."""
    if not isinstance(payload, dict):
        logger.warning(f"Trial status payload is not an object: {type(payload).__name__}")
        return None
    try:
        return TrialStatus.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Invalid trial status payload: {e.error_count()} error(s)")
        return None


def render_trial_banner(status: Optional[TrialStatus], price_label: Optional[str] = None) -> Optional[TrialBanner]:
    """
    Build the banner for a trial status.

    Args:
        status: Validated trial status, or None when it could not be fetched
        price_label: Plan price shown in the trial banner (defaults to settings)

    Returns:
        TrialBanner to render, or None when nothing should be shown
    """
    if status is None:
        return None

    state = gate_state(status)
    display = GATE_DISPLAY[state]
    if display is None:
        return None

    if state is GateState.ACTIVE_TRIAL:
        label = price_label or settings.plan_price_label
        unit = "day" if status.days_left == 1 else "days"
        return TrialBanner(
            state=state,
            message=(
                f"{status.days_left} {unit} left in your free trial. "
                f"Payment required after trial ends ({label})."
            ),
            **display,
        )

    return TrialBanner(
        state=state,
        message="Your free trial has ended",
        link=SUBSCRIBE_LINK,
        link_label="Subscribe to continue",
        **display,
    )


class TrialStatusPoller:
    """
    Fetches the tenant's trial status on demand and keeps the latest result.

    Refreshes may overlap. Each one takes a ticket when issued and only the
    most recently issued refresh is allowed to update the stored status.
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
        cookies: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
        price_label: Optional[str] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.headers = headers or {}
        self.cookies = cookies or {}
        self.timeout = timeout
        self.price_label = price_label
        self.status: Optional[TrialStatus] = None
        self._issued = 0

    async def _get(self, client: httpx.AsyncClient) -> httpx.Response:
        return await client.get(
            f"{self.base_url}{TRIAL_STATUS_PATH}",
            headers=self.headers,
            cookies=self.cookies or None,
        )

    async def fetch(self) -> Optional[TrialStatus]:
        """Fetch and validate the trial status. Any failure yields None."""
        try:
            if self.client is not None:
                response = await self._get(self.client)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await self._get(client)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Trial status request returned {e.response.status_code}")
            return None
        except (httpx.HTTPError, httpx.StreamError, httpx.InvalidURL) as e:
            logger.warning(f"Trial status request failed: {e}")
            return None
        except ValueError as e:
            logger.warning(f"Trial status response is not JSON: {e}")
            return None

        return parse_trial_status(payload)

    async def refresh(self) -> Optional[TrialStatus]:
        """
        Re-fetch the trial status.

        Returns:
            The stored status after this refresh. A refresh superseded by a
            newer one leaves the stored status untouched.
        """
        self._issued += 1
        ticket = self._issued

        status = await self.fetch()

        if ticket != self._issued:
            logger.debug(f"Discarding trial status from superseded refresh {ticket}")
            return self.status

        self.status = status
        return self.status

    def banner(self) -> Optional[TrialBanner]:
        return render_trial_banner(self.status, self.price_label)
