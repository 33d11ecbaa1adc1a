"""
External board adapters.

The board is a mirror of task state; nothing it reports is trusted as
canonical. ``GitHubProjectsBoard`` talks to the GitHub Projects (classic)
REST API.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from ..config import get_settings
from ..errors import ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)


class BoardAdapter(ABC):
    """Abstract board: columns and cards."""

    @abstractmethod
    async def get_columns(self, project_id: str) -> List[Dict[str, Any]]:
        """Columns of a project, each at least ``{"id", "name"}``."""

    @abstractmethod
    async def get_column(self, column_id: str) -> Dict[str, Any]:
        """A single column by id."""

    @abstractmethod
    async def move_card(self, card_id: str, column_id: str, position: str = "bottom") -> None:
        """Move a card to a column."""

    async def close(self) -> None:
        return None


class GitHubProjectsBoard(BoardAdapter):
    """Board adapter for GitHub Projects (classic)."""

    def __init__(
        self,
        base_url: str = "https://api.github.com",
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"Board request {method} {path} failed: {e}")
            raise ExternalServiceError(
                code="BOARD_UNAVAILABLE",
                message=f"Board request failed: {e}",
                method=method,
                path=path,
            ) from e

        if response.status_code >= 500:
            logger.error(f"Board returned {response.status_code} for {method} {path}")
            raise ExternalServiceError(
                code="BOARD_SERVER_ERROR",
                message=f"Board returned HTTP {response.status_code}",
                method=method,
                path=path,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise ValidationError(
                code="BOARD_REQUEST_REJECTED",
                message=f"Board rejected the request with HTTP {response.status_code}",
                method=method,
                path=path,
                status_code=response.status_code,
            )
        return response

    async def get_columns(self, project_id: str) -> List[Dict[str, Any]]:
        response = await self._request("GET", f"/projects/{project_id}/columns")
        return response.json()

    async def get_column(self, column_id: str) -> Dict[str, Any]:
        response = await self._request("GET", f"/projects/columns/{column_id}")
        return response.json()

    async def move_card(self, card_id: str, column_id: str, position: str = "bottom") -> None:
        await self._request(
            "POST",
            f"/projects/columns/cards/{card_id}/moves",
            json={
                "position": position,
                "column_id": int(column_id) if str(column_id).isdigit() else column_id,
            },
        )


def get_board() -> BoardAdapter:
    settings = get_settings()
    return GitHubProjectsBoard(
        base_url=settings.board_api_url,
        token=settings.github_api_token,
        timeout=settings.board_timeout_seconds,
    )
