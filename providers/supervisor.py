"""
Process Supervisor
------------------
Starts every provider and tears them all down.

Rules:
- Startup is concurrent and all-or-nothing: one failure stops everything already started
- Each start is bounded by a timeout
- teardown() is idempotent and safe from a signal handler or a failed startup
- Teardown is two-phase: close every connection, then terminate every process
- Teardown failures are logged, never raised
"""

from typing import Callable, Dict, Iterable, List, Optional
import asyncio
import logging

from core.errors import ProviderStartupError, TeardownError
from infra.config import ProviderSpec
from .connection import Connection, StdioConnection
from .handle import ProviderHandle

Connector = Callable[[ProviderSpec, str], Connection]


def connect_stdio(spec: ProviderSpec, workspace: str, shutdown_timeout: float = 5.0) -> Connection:
    """Default connector: launch the provider as a child process speaking MCP over stdio."""
    return StdioConnection(
        provider_id=spec.id,
        command=spec.command,
        args=spec.resolved_args(workspace),
        env=spec.env or None,
        cwd=spec.cwd,
        shutdown_timeout=shutdown_timeout,
    )


class ProcessSupervisor:
    """
    Owns provider connections for the lifetime of the process.

    Usage:
        supervisor = ProcessSupervisor()
        handles = await supervisor.start(config.providers, workspace)
        ...
        await supervisor.teardown()
    """

    def __init__(
        self,
        connector: Optional[Connector] = None,
        startup_timeout: float = 20.0,
        shutdown_timeout: float = 5.0
    ):
        self._connector = connector or (
            lambda spec, workspace: connect_stdio(spec, workspace, shutdown_timeout)
        )
        self.startup_timeout = startup_timeout
        self.shutdown_timeout = shutdown_timeout
        self._connections: List[Connection] = []
        self._handles: Dict[str, ProviderHandle] = {}
        self._torn_down = False
        self._teardown_lock = asyncio.Lock()
        self._logger = logging.getLogger("echo.providers.supervisor")

    @property
    def handles(self) -> Dict[str, ProviderHandle]:
        """provider id -> handle, in configuration order."""
        return dict(self._handles)

    async def start(self, specs: Iterable[ProviderSpec], workspace: str = ".") -> Dict[str, ProviderHandle]:
        """
        Launch and connect all providers concurrently.

        Raises:
            ProviderStartupError: first failing provider; everything started is torn down
        """
        specs = list(specs)
        self._torn_down = False
        self._logger.info(f"Starting {len(specs)} providers")

        outcomes = await asyncio.gather(
            *(self._start_one(spec, workspace) for spec in specs),
            return_exceptions=True,
        )

        failure: Optional[ProviderStartupError] = None
        for spec, outcome in zip(specs, outcomes):
            if isinstance(outcome, BaseException):
                self._logger.error(f"Provider '{spec.id}' failed to start: {outcome!r}")
                if failure is None:
                    failure = ProviderStartupError(spec.id, outcome)
            else:
                self._handles[spec.id] = outcome

        if failure is not None:
            await self.teardown()
            raise failure

        self._logger.info(
            "All providers ready: "
            + ", ".join(f"{h.provider_id} ({len(h.catalog)} tools)" for h in self._handles.values())
        )
        return self.handles

    async def _start_one(self, spec: ProviderSpec, workspace: str) -> ProviderHandle:
        connection = self._connector(spec, workspace)
        # Registered before open() so teardown reaches half-started providers too
        self._connections.append(connection)

        async def connect() -> ProviderHandle:
            await connection.open()
            catalog = await connection.list_tools()
            return ProviderHandle(
                provider_id=spec.id,
                connection=connection,
                catalog=tuple(catalog),
            )

        try:
            handle = await asyncio.wait_for(connect(), timeout=self.startup_timeout)
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"not ready after {self.startup_timeout}s") from e

        self._logger.info(f"Provider '{spec.id}' connected with {len(handle.catalog)} tools")
        return handle

    async def teardown(self) -> None:
        """Close all connections, then terminate all processes. Idempotent."""
        async with self._teardown_lock:
            if self._torn_down:
                return
            self._torn_down = True

            connections = list(self._connections)
            self._logger.info(f"Tearing down {len(connections)} providers")

            # Phase 1: graceful close
            for connection in connections:
                try:
                    await asyncio.wait_for(connection.close(), timeout=self.shutdown_timeout)
                except Exception as e:
                    self._log_teardown_error(TeardownError(connection.provider_id, e))

            # Phase 2: make sure nothing is left running
            for connection in connections:
                try:
                    await connection.terminate()
                except Exception as e:
                    self._log_teardown_error(TeardownError(connection.provider_id, e))

            self._connections.clear()
            self._handles.clear()
            self._logger.info("All providers stopped")

    def _log_teardown_error(self, error: TeardownError) -> None:
        self._logger.warning(str(error))
