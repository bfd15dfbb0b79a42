"""Transport interfaces."""

from __future__ import annotations

from typing import Any, Protocol


class Transport(Protocol):
    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
    ) -> Any:
        """Send one request to the gateway service and return the decoded body."""
