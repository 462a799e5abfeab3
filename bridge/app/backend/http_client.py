"""HTTP client for the messaging gateway REST endpoints."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from ..config import Settings
from .base import RawRecord, serialized_id

logger = logging.getLogger(__name__)


class GatewayError(RuntimeError):
    """Raised when the gateway cannot complete a request."""


class GatewayHttpClient:
    """Thin wrapper around the gateway REST API."""

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        headers = {"x-api-key": settings.gateway_api_key} if settings.gateway_api_key else {}
        self._client = httpx.AsyncClient(
            base_url=self.settings.gateway_api_url,
            timeout=self.settings.gateway_timeout_seconds,
            headers=headers,
            transport=transport,
        )

    async def send_message(self, to: str, body: str) -> str:
        data = await self._request("POST", "/messages", json={"to": to, "body": body})
        message_id = serialized_id(data.get("id"))
        if not message_id:
            raise GatewayError("gateway response missing message id")
        return message_id

    async def fetch_contacts(self) -> List[RawRecord]:
        data = await self._request("GET", "/contacts")
        return list(data.get("contacts") or [])

    async def fetch_chats(self) -> List[RawRecord]:
        data = await self._request("GET", "/chats")
        return list(data.get("chats") or [])

    async def fetch_last_seen(self, contact_id: str) -> Optional[int]:
        data = await self._request("GET", f"/contacts/{quote(contact_id, safe='')}/presence")
        last_seen = data.get("lastSeen")
        return int(last_seen) if last_seen is not None else None

    async def logout(self) -> None:
        await self._request("POST", "/logout")

    async def current_profile(self) -> Optional[Dict[str, Any]]:
        data = await self._request("GET", "/me")
        return data.get("info")

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json() if response.content else {}
        except httpx.TimeoutException as e:
            logger.error("gateway %s %s: request timeout", method, path)
            raise GatewayError(f"gateway timeout on {path}") from e
        except httpx.NetworkError as e:
            logger.error("gateway %s %s: network error - %s", method, path, e)
            raise GatewayError(f"gateway unreachable: {e}") from e
        except httpx.HTTPStatusError as e:
            logger.error("gateway %s %s: HTTP %d - %s", method, path, e.response.status_code, e.response.text)
            raise GatewayError(_error_detail(e.response)) from e
        except ValueError as e:
            logger.error("gateway %s %s: invalid JSON - %s", method, path, e)
            raise GatewayError(f"invalid gateway response on {path}") from e

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing HTTP client: %s", e)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or f"HTTP {response.status_code}")
    return f"HTTP {response.status_code}"
