"""
Provider Connection
-------------------
Duplex request/response channel to one provider process.

The stdio implementation speaks the Model Context Protocol through the
`mcp` SDK. Each connection runs inside one dedicated task that owns the
client contexts, so the session is opened and closed by the same task.

Lifecycle: open() -> list_tools() / call_tool() ... -> close() -> terminate()
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import asyncio
import logging
import os

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from core.errors import TransportError


@dataclass(frozen=True)
class ToolSpec:
    """One entry of a provider's listTools() answer."""
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object"})


@dataclass(frozen=True)
class ContentPart:
    """A typed part of a tool response."""
    type: str
    text: Optional[str] = None
    data: Optional[str] = None
    mime_type: Optional[str] = None
    uri: Optional[str] = None

    def render(self) -> str:
        """Render the part as text for the conversation history."""
        if self.text is not None:
            return self.text
        if self.data is not None:
            return f"[{self.type}: {self.mime_type or 'unknown'}, {len(self.data)} bytes]"
        if self.uri is not None:
            return f"[resource: {self.uri}]"
        return f"[{self.type}]"


@dataclass(frozen=True)
class ToolResponse:
    """What a provider returned for callTool()."""
    content: Tuple[ContentPart, ...] = ()
    is_error: bool = False

    @property
    def text(self) -> str:
        return "\n".join(part.render() for part in self.content)

    @classmethod
    def from_text(cls, text: str, is_error: bool = False) -> "ToolResponse":
        return cls(content=(ContentPart(type="text", text=text),), is_error=is_error)


class Connection:
    """
    Base connection interface.

    Implementations are single-stream: callers must not issue concurrent
    requests on one connection (ProviderHandle serializes them).
    """

    provider_id: str = "-"

    async def open(self) -> None:
        raise NotImplementedError

    async def list_tools(self) -> List[ToolSpec]:
        raise NotImplementedError

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> ToolResponse:
        raise NotImplementedError

    async def close(self) -> None:
        """Close the channel gracefully."""
        raise NotImplementedError

    async def terminate(self) -> None:
        """Make sure the provider process is gone."""
        raise NotImplementedError


def _convert_part(part: Any) -> ContentPart:
    """Convert an MCP content block into a ContentPart."""
    part_type = getattr(part, "type", "unknown")
    if hasattr(part, "text"):
        return ContentPart(type=part_type, text=part.text)
    if hasattr(part, "data"):
        return ContentPart(type=part_type, data=part.data, mime_type=getattr(part, "mimeType", None))
    resource = getattr(part, "resource", None)
    if resource is not None:
        text = getattr(resource, "text", None)
        return ContentPart(type=part_type, text=text, uri=str(getattr(resource, "uri", "")))
    if hasattr(part, "uri"):
        return ContentPart(type=part_type, uri=str(part.uri))
    return ContentPart(type=part_type, text=str(part))


class StdioConnection(Connection):
    """
    MCP client connection to a provider launched as a child process.

    The child process is owned by the runner task: leaving the stdio
    client context closes the pipes and stops the process.
    """

    def __init__(
        self,
        provider_id: str,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        shutdown_timeout: float = 5.0,
    ):
        self.provider_id = provider_id
        self._params = StdioServerParameters(
            command=command,
            args=list(args or []),
            env={**os.environ, **env} if env else None,
            cwd=cwd,
        )
        self._shutdown_timeout = shutdown_timeout
        self._session: Optional[ClientSession] = None
        self._runner: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Future] = None
        self._closing = asyncio.Event()
        self._logger = logging.getLogger(f"echo.providers.{provider_id}")

    @property
    def is_open(self) -> bool:
        return self._session is not None and self._runner is not None and not self._runner.done()

    async def open(self) -> None:
        """Launch the process and complete the MCP handshake."""
        if self._runner is not None:
            raise TransportError(f"Connection '{self.provider_id}' already opened")

        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self._runner = asyncio.create_task(self._run(), name=f"provider:{self.provider_id}")

        try:
            await asyncio.shield(self._ready)
        except asyncio.CancelledError:
            # Startup timed out or was cancelled: do not leave the child behind
            await self.terminate()
            raise

    async def _run(self) -> None:
        self._logger.info(
            f"Starting provider: {self._params.command} {' '.join(self._params.args)}"
        )
        try:
            async with stdio_client(self._params) as (read_stream, write_stream):
                async with ClientSession(read_stream, write_stream) as session:
                    await session.initialize()
                    self._session = session
                    self._ready.set_result(None)
                    self._logger.info("Provider connected")
                    await self._closing.wait()
        except Exception as e:
            if not self._ready.done():
                self._ready.set_exception(e)
            else:
                self._logger.error(f"Provider connection lost: {e}")
        finally:
            self._session = None
            if not self._ready.done():
                self._ready.set_exception(TransportError("Provider exited during startup"))
            self._logger.info("Provider stopped")

    def _require_session(self) -> ClientSession:
        if not self.is_open:
            raise TransportError(f"Connection to '{self.provider_id}' is not open")
        return self._session

    async def list_tools(self) -> List[ToolSpec]:
        session = self._require_session()
        response = await session.list_tools()
        return [
            ToolSpec(
                name=tool.name,
                description=tool.description or "",
                input_schema=dict(tool.inputSchema or {"type": "object"}),
            )
            for tool in response.tools
        ]

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> ToolResponse:
        session = self._require_session()
        result = await session.call_tool(name, arguments)
        return ToolResponse(
            content=tuple(_convert_part(part) for part in result.content),
            is_error=bool(getattr(result, "isError", False)),
        )

    async def close(self) -> None:
        """Ask the runner to leave its contexts and wait for it."""
        self._closing.set()
        if self._runner is None or self._runner.done():
            return
        await asyncio.wait_for(asyncio.shield(self._runner), timeout=self._shutdown_timeout)

    async def terminate(self) -> None:
        """Cancel the runner if it is still alive; the SDK kills the child."""
        self._closing.set()
        if self._runner is None or self._runner.done():
            return
        self._runner.cancel()
        try:
            await self._runner
        except asyncio.CancelledError:
            pass
        self._logger.warning("Provider runner cancelled")
