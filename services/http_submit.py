from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from core.settings import SUBMIT
from services.errors import SubmitError


logger = logging.getLogger("entrysync.submit")


def _server_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"Failed to save entry to server ({response.status_code})"


class HttpSubmitter:
    """POSTs a payload as JSON and returns the server's record.

    Instances are plain async callables, so one can be handed straight to
    :class:`~services.sync_coordinator.SyncCoordinator` as its submit function.
    """

    def __init__(
        self,
        url: str,
        *,
        token: Optional[str] = None,
        timeout: float = SUBMIT.timeout_sec,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not url:
            raise ValueError("A submit URL is required")
        self.url = url
        self.token = token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": SUBMIT.user_agent}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def __call__(self, payload: Any) -> Any:
        try:
            response = await self._client.post(self.url, json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise SubmitError("Request timed out") from exc
        except httpx.HTTPError as exc:
            raise SubmitError(f"Network error: {exc}") from exc

        if response.is_error:
            message = _server_message(response)
            logger.debug("Submit to %s rejected: %s", self.url, message)
            raise SubmitError(message, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise SubmitError("Invalid response from server") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpSubmitter":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


__all__ = ["HttpSubmitter"]
