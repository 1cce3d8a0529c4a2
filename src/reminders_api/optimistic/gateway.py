from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol

import httpx

from ..schemas import ReminderOut, ReminderStatusRequest
from ..settings import Settings, get_settings

logger = logging.getLogger(__name__)

REMINDERS_PATH = "/api/v1/reminders/"


class MutationFailed(Exception):
    """A status change did not succeed, whatever the underlying reason."""

    def __init__(self, reminder_id: str, reason: str) -> None:
        super().__init__(f"status change for reminder {reminder_id} failed: {reason}")
        self.reminder_id = reminder_id
        self.reason = reason


# PUBLIC_INTERFACE
class ReminderStatusGateway(Protocol):
    """Persistence endpoint for completion status changes."""

    async def update_status(self, request: ReminderStatusRequest) -> ReminderOut:
        """Persist the change and return the stored reminder, or raise."""
        ...


# PUBLIC_INTERFACE
class HttpReminderGateway:
    """
    Talks to the reminders backend over HTTP.

    ``update_status`` implements ReminderStatusGateway; ``list_reminders`` is
    suitable as a ReminderCache fetcher.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "HttpReminderGateway":
        settings = settings or get_settings()
        client = httpx.AsyncClient(base_url=settings.api_base_url, timeout=settings.api_timeout_s)
        return cls(client)

    async def update_status(self, request: ReminderStatusRequest) -> ReminderOut:
        """
        PATCH the reminder's status.

        Raises:
            MutationFailed: on transport errors, non-2xx responses, or a
                response body that is not a reminder.
        """
        url = f"{REMINDERS_PATH}{request.id}/status"
        body = request.model_dump(include={"created_by", "is_completed"})
        try:
            response = await self._client.patch(url, json=body)
            response.raise_for_status()
            return ReminderOut.model_validate(response.json())
        except httpx.HTTPStatusError as exc:
            detail = _error_detail(exc.response)
            raise MutationFailed(request.id, f"HTTP {exc.response.status_code}: {detail}") from exc
        except httpx.HTTPError as exc:
            raise MutationFailed(request.id, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            # undecodable JSON or a body that fails ReminderOut validation
            raise MutationFailed(request.id, "invalid response body") from exc

    async def list_reminders(
        self,
        *,
        collection_id: Optional[str] = None,
        created_by: Optional[str] = None,
        completed: Optional[bool] = None,
        limit: int = 1000,
    ) -> List[ReminderOut]:
        """Load reminders, oldest first. Transport and HTTP errors propagate as httpx exceptions."""
        params: dict[str, Any] = {"limit": limit, "sort": "created_at"}
        if collection_id is not None:
            params["collection_id"] = collection_id
        if created_by is not None:
            params["created_by"] = created_by
        if completed is not None:
            params["completed"] = "true" if completed else "false"
        response = await self._client.get(REMINDERS_PATH, params=params)
        response.raise_for_status()
        items = response.json()["items"]
        logger.debug("Fetched %d reminders", len(items))
        return [ReminderOut.model_validate(item) for item in items]

    async def aclose(self) -> None:
        await self._client.aclose()


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text
    if isinstance(payload, dict) and "detail" in payload:
        return str(payload["detail"])
    return str(payload)
