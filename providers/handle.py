"""
Provider Handle
---------------
A live connection plus the tool catalog discovered on it.

Provider connections are single-stream request/response: concurrent
turns targeting the same provider are serialized here, one request in
flight per connection.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
import asyncio
import logging

from .connection import Connection, ToolResponse, ToolSpec


@dataclass
class ProviderHandle:
    """Connected provider. Owned by the supervisor, shared read-only after connect."""
    provider_id: str
    connection: Connection
    catalog: Tuple[ToolSpec, ...] = ()
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)
    _calls: int = field(default=0, init=False, repr=False)

    @property
    def tool_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.catalog)

    @property
    def calls(self) -> int:
        """Number of requests dispatched on this connection."""
        return self._calls

    async def call_tool(
        self,
        name: str,
        arguments: Dict[str, Any],
        timeout: Optional[float] = None
    ) -> ToolResponse:
        """
        Send one request and wait for its response, holding the connection.

        `timeout` bounds the request once it is on the wire; time spent
        queued behind another caller does not count against it.
        """
        async with self._lock:
            self._calls += 1
            logging.getLogger("echo.providers.handle").debug(
                f"Dispatching {name} on {self.provider_id}",
                extra={"provider_id": self.provider_id, "tool_name": name},
            )
            request = self.connection.call_tool(name, arguments)
            if timeout is None:
                return await request
            return await asyncio.wait_for(request, timeout=timeout)

    def __repr__(self) -> str:
        return f"ProviderHandle({self.provider_id}, tools={list(self.tool_names)})"
