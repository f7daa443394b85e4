# app/services/identity.py
import logging
from typing import Optional

import httpx

from app.config import Settings
from app.models.account_models import AuthUser

log = logging.getLogger("tablextract")


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return token or None


class IdentityClient:
    """Resolves access tokens against the hosted auth provider (GET /auth/v1/user)."""

    def __init__(self, client: httpx.AsyncClient, *, base_url: str, api_key: str):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    @classmethod
    def from_settings(cls, settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> "IdentityClient":
        client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(10.0))
        return cls(client, base_url=settings.auth_url, api_key=settings.auth_api_key)

    async def get_user(self, token: str) -> Optional[AuthUser]:
        try:
            r = await self.client.get(
                f"{self.base_url}/auth/v1/user",
                headers={"apikey": self.api_key, "Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            log.warning(f"[auth] provider unreachable: {type(e).__name__}: {e}")
            return None
        if r.status_code != 200:
            log.info(f"[auth] token rejected -> {r.status_code}")
            return None
        try:
            data = r.json()
        except ValueError:
            log.warning("[auth] provider returned a non-JSON body")
            return None
        if not isinstance(data, dict) or not data.get("id"):
            return None
        return AuthUser(id=str(data["id"]), email=data.get("email") or "", raw=data)

    async def aclose(self) -> None:
        await self.client.aclose()
