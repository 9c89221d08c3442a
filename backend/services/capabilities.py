"""
Downstream capabilities invoked by stage automation (fire-and-forget).

- crm-ai-qualify              : AI qualification scoring of a lead
- award-gamification-points   : per-seller gamification award
- get-procedure-recommendation: AI procedure recommendations for upsell

Every failure (HTTP status, transport, timeout) is raised as CapabilityError;
the caller decides to log and continue.
"""

import httpx
import logging
from typing import Any, Dict, Optional

from config import CAPABILITY_TIMEOUT, FUNCTIONS_API_KEY, FUNCTIONS_BASE_URL

logger = logging.getLogger("capabilities")


class CapabilityError(Exception):
    """A downstream capability call did not succeed"""
    pass


class CapabilityClient:
    """HTTP client for the downstream functions"""

    def __init__(
        self,
        base_url: str = FUNCTIONS_BASE_URL,
        api_key: str = FUNCTIONS_API_KEY,
        timeout: float = CAPABILITY_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def _invoke(self, function: str, body: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(f"{self.base_url}/{function}", json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise CapabilityError(f"{function}: timeout") from e
        except httpx.HTTPError as e:
            raise CapabilityError(f"{function}: {e}") from e

        if resp.status_code >= 400:
            raise CapabilityError(f"{function}: HTTP {resp.status_code} {resp.text[:200]}")

        try:
            data = resp.json()
        except ValueError:
            data = {}
        logger.info(f"{function} ok (HTTP {resp.status_code})")
        return data

    async def qualify(self, lead_id: str) -> Dict[str, Any]:
        return await self._invoke("crm-ai-qualify", {"leadId": lead_id})

    async def award_gamification_points(
        self, user_id: str, action: str, lead_id: str, value: float
    ) -> Dict[str, Any]:
        return await self._invoke(
            "award-gamification-points",
            {
                "userId": user_id,
                "actionType": action,
                "leadId": lead_id,
                "metadata": {"contractValue": value},
            },
        )

    async def recommend_procedures(self, lead_id: str) -> Dict[str, Any]:
        return await self._invoke("get-procedure-recommendation", {"leadId": lead_id})


def get_capabilities() -> CapabilityClient:
    return CapabilityClient()
