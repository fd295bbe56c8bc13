"""HTTP client for the account-suspension collaborator (auth service)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from beatguard.moderation.exceptions import SuspensionError

logger = logging.getLogger(__name__)


class AccountSuspender(Protocol):
    async def suspend(self, author_id: str) -> None:
        ...


@dataclass
class HttpAccountSuspender(AccountSuspender):
    """Deletes a repeat offender's account through the auth service."""

    http: httpx.AsyncClient
    base_url: str | None
    api_key: str | None
    timeout: float = 30.0

    async def suspend(self, author_id: str) -> None:
        if not self.base_url:
            raise SuspensionError("auth_service_not_configured")
        url = f"{self.base_url}{author_id}"
        try:
            response = await self.http.delete(
                url,
                headers={"x-internal-api-key": self.api_key or ""},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SuspensionError(f"auth_service_status_{exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise SuspensionError("auth_service_unreachable") from exc
        logger.info("Account suspension accepted by auth service", extra={"author_id": author_id})
