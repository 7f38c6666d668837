"""MCP session lifecycle management.

This module provides the ConnectionSupervisor, which starts, watches,
reconnects and stops one Session per configured provider.

Example:
    Using the supervisor as an async context manager::

        from switchboard.config import SwitchboardSettings
        from switchboard.mcp import ConnectionSupervisor, ToolRouter

        settings = SwitchboardSettings.load("switchboard.yaml")

        async with ConnectionSupervisor(settings.policy) as supervisor:
            await supervisor.apply(settings.providers)
            router = ToolRouter(supervisor.registry, settings.policy)
            result = await router.invoke("search", {"query": "mcp"})
        # Sessions closed, processes stopped
"""

from __future__ import annotations

import asyncio
import contextlib
import random
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

import structlog

from switchboard.config.providers import ConnectionPolicy, ProviderConfig
from switchboard.enums import DisabledReason, SessionState
from switchboard.exceptions import ConfigurationError
from switchboard.mcp.exceptions import ConnectError, MCPProviderError, ProtocolError
from switchboard.mcp.models import StateChange
from switchboard.mcp.registry import SessionRegistry
from switchboard.mcp.session import Session, TransportFactory
from switchboard.mcp.transports import Transport, create_transport
from switchboard.utils.retry import backoff_delay

if TYPE_CHECKING:
    from switchboard.auth.bridge import AuthBridge

log = structlog.get_logger(__name__)

ACTIVE_STATES = frozenset({SessionState.CONNECTING, SessionState.READY, SessionState.RECONNECTING})
SETTLED_STATES = frozenset({SessionState.READY, SessionState.DISABLED, SessionState.CLOSED})


class ConnectionSupervisor:
    """Drives every provider session through its state machine.

    Supports async context manager for automatic cleanup:

        async with ConnectionSupervisor(policy) as supervisor:
            await supervisor.apply(configs)
            ...
        # All sessions CLOSED

    Attributes:
        policy: Retry, timeout and output limits.
        registry: Registry holding the sessions and flat catalog.
    """

    def __init__(
        self,
        policy: ConnectionPolicy | None = None,
        *,
        registry: SessionRegistry | None = None,
        auth: AuthBridge | None = None,
        transport_factory: TransportFactory | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the supervisor.

        Args:
            policy: Connection policy; defaults are used when omitted.
            registry: Registry to populate; a fresh one when omitted.
            auth: OAuth bridge for providers with an ``oauth`` block.
            transport_factory: Builds a transport for a config (tests inject
                fakes here).
            rng: Random source for backoff jitter.
        """
        self.policy = policy or ConnectionPolicy()
        self.registry = registry or SessionRegistry()
        self._auth = auth
        self._transport_factory = transport_factory or self._create_transport
        self._rng = rng or random.Random()
        self._configs: dict[str, ProviderConfig] = {}
        self._listeners: list[Callable[[StateChange], None]] = []
        self._apply_lock = asyncio.Lock()
        self._changed = asyncio.Event()
        self._background: set[asyncio.Task[Any]] = set()

    async def __aenter__(self) -> ConnectionSupervisor:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.shutdown()

    @property
    def configs(self) -> list[ProviderConfig]:
        return list(self._configs.values())

    # === Events ===

    def subscribe(self, listener: Callable[[StateChange], None]) -> Callable[[], None]:
        """Register a listener for session state changes.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _on_state_change(self, change: StateChange) -> None:
        self.registry.rebuild()
        self._changed.set()
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                log.exception("state_listener_failed", provider=change.provider)

    # === Configuration ===

    async def apply(self, configs: Sequence[ProviderConfig]) -> None:
        """Reconcile running sessions with a new provider list.

        Only providers whose definition changed are touched: new ones are
        started, removed ones closed, changed ones restarted, and a flipped
        ``enabled`` flag enables or disables. Re-applying an identical list
        only refreshes catalog ordering.

        Raises:
            ConfigurationError: If two providers share a name.
        """
        names = [c.name for c in configs]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate provider names: {', '.join(duplicates)}")

        async with self._apply_lock:
            incoming = {c.name: c for c in configs}
            positions = {c.name: i for i, c in enumerate(configs)}
            started: list[str] = []
            stopped: list[str] = []

            for name in list(self._configs):
                if name not in incoming:
                    await self._remove(name)
                    stopped.append(name)

            for name, config in incoming.items():
                old = self._configs.get(name)
                session = self.registry.get(name)
                if session is not None:
                    session.position = positions[name]
                if old == config:
                    continue

                self._configs[name] = config
                if old is None:
                    await self._start(config, positions[name])
                    if config.enabled:
                        started.append(name)
                elif old.model_copy(update={"enabled": config.enabled}) == config:
                    if config.enabled:
                        await self.enable(name)
                        started.append(name)
                    else:
                        await self.disable(name)
                        stopped.append(name)
                else:
                    await self._remove(name, keep_config=True)
                    await self._start(config, positions[name])
                    started.append(name)

            self.registry.rebuild()
            if started or stopped:
                log.info("configuration_applied", started=started, stopped=stopped)

    # === Lifecycle ===

    async def enable(self, name: str) -> None:
        """Enable a provider; a no-op if it is already connecting or ready.

        A DISABLED session goes back to IDLE with its retry counter reset
        and starts connecting again.

        Raises:
            ConfigurationError: If no provider with that name is configured.
        """
        config = self._configs.get(name)
        if config is None:
            raise ConfigurationError(f"Unknown provider: {name}")

        session = self.registry.get(name)
        if session is None:
            session = await self._start(config, list(self._configs).index(name))

        async with session.lock:
            if session.state in ACTIVE_STATES or session.state is SessionState.CLOSED:
                return
            if session.state is SessionState.DISABLED:
                session.retry_count = 0
                session.transition(SessionState.IDLE)
            self._launch(session)

    async def disable(self, name: str) -> None:
        """Disable a provider, cancelling any in-flight connect or backoff."""
        session = self.registry.get(name)
        if session is None:
            return
        async with session.lock:
            if session.state in (SessionState.DISABLED, SessionState.CLOSED):
                return
            await self._stop(session)
            if session.state is not SessionState.DISABLED:
                session.transition(SessionState.DISABLED, reason=DisabledReason.USER)

    async def restart(self, name: str) -> None:
        """Tear a provider's session down and start a fresh one."""
        config = self._configs.get(name)
        if config is None:
            raise ConfigurationError(f"Unknown provider: {name}")
        session = self.registry.get(name)
        position = session.position if session else list(self._configs).index(name)
        await self._remove(name, keep_config=True)
        await self._start(config, position)

    async def shutdown(self) -> None:
        """Close every session and release all transports."""
        async with self._apply_lock:
            for task in list(self._background):
                task.cancel()
            if self._background:
                await asyncio.gather(*self._background, return_exceptions=True)
            for name in list(self._configs):
                await self._remove(name)
            log.info("supervisor_shutdown")

    async def wait_ready(self, timeout: float | None = None) -> bool:
        """Wait until no session is still connecting.

        Returns:
            True if every session settled (READY, DISABLED or CLOSED) in time.
        """

        def settled() -> bool:
            return all(s.state in SETTLED_STATES for s in self.registry.sessions())

        async def wait() -> None:
            while not settled():
                self._changed.clear()
                await self._changed.wait()

        try:
            await asyncio.wait_for(wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    def status(self) -> list[dict[str, Any]]:
        """Per-session summary in configuration order."""
        return [s.snapshot() for s in self.registry.sessions()]

    # === Internals ===

    def _create_transport(self, config: ProviderConfig) -> Transport:
        token_provider = None
        if config.oauth is not None and self._auth is not None:
            auth = self._auth

            async def token_provider() -> str:
                return await auth.access_token(config)

        return create_transport(
            config,
            token_provider=token_provider,
            connect_timeout=self.policy.connect_timeout,
        )

    async def _start(self, config: ProviderConfig, position: int) -> Session:
        session = Session(config, position=position)
        session.listener = self._on_state_change
        session.on_tools_changed = self._schedule_tool_refresh
        self.registry.register(session)
        async with session.lock:
            if config.enabled:
                self._launch(session)
            else:
                session.transition(SessionState.DISABLED, reason=DisabledReason.USER)
        return session

    def _launch(self, session: Session) -> None:
        session.transition(SessionState.CONNECTING)
        session.task = asyncio.create_task(self._drive(session), name=f"mcp-session-{session.name}")

    async def _stop(self, session: Session) -> None:
        task, session.task = session.task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await session.release()

    async def _remove(self, name: str, *, keep_config: bool = False) -> None:
        if not keep_config:
            self._configs.pop(name, None)
        session = self.registry.get(name)
        if session is None:
            return
        async with session.lock:
            await self._stop(session)
            if session.state is not SessionState.CLOSED:
                session.transition(SessionState.CLOSED)
        self.registry.unregister(name)

    async def _drive(self, session: Session) -> None:
        """Connect, watch liveness and reconnect until stopped or disabled."""
        policy = self.policy
        try:
            while True:
                if session.state is not SessionState.CONNECTING:
                    session.transition(SessionState.CONNECTING)
                try:
                    await session.open(self._transport_factory, timeout=policy.connect_timeout)
                except (ConnectError, ProtocolError) as e:
                    await session.release()
                    session.retry_count += 1
                    session.last_error = str(e)
                    log.warning(
                        "session_connect_failed",
                        provider=session.name,
                        attempt=session.retry_count,
                        max_retries=policy.max_retries,
                        error=str(e),
                    )
                    if session.retry_count >= policy.max_retries:
                        session.transition(SessionState.DISABLED, error=str(e), reason=DisabledReason.FAILURE)
                        return
                    session.transition(SessionState.RECONNECTING, error=str(e))
                    await asyncio.sleep(self._delay(session.retry_count))
                    continue

                session.retry_count = 0
                session.last_error = None
                session.transition(SessionState.READY)

                error = await self._watch(session)
                await session.release()
                session.last_error = error
                session.transition(SessionState.RECONNECTING, error=error)
                await asyncio.sleep(self._delay(0))
        except asyncio.CancelledError:
            await session.release()
            raise

    async def _watch(self, session: Session) -> str:
        """Block while the session is healthy; return why liveness was lost."""
        transport = session.transport
        assert transport is not None
        interval = self.policy.heartbeat_interval

        while True:
            if interval is None:
                await transport.closed.wait()
            else:
                try:
                    await asyncio.wait_for(transport.closed.wait(), timeout=interval)
                except TimeoutError:
                    try:
                        await session.ping(timeout=min(interval, self.policy.connect_timeout))
                    except MCPProviderError as e:
                        return f"Heartbeat failed: {e}"
                    continue
            error = transport.close_error
            return str(error) if error else "Connection closed"

    def _delay(self, attempt: int) -> float:
        return backoff_delay(
            attempt,
            base=self.policy.backoff_base,
            maximum=self.policy.backoff_max,
            jitter=self.policy.jitter,
            rng=self._rng,
        )

    def _schedule_tool_refresh(self, session: Session) -> None:
        task = asyncio.create_task(self._refresh_tools(session), name=f"mcp-tools-{session.name}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh_tools(self, session: Session) -> None:
        async with session.lock:
            if not session.is_ready:
                return
            try:
                await session.refresh_tools(timeout=self.policy.connect_timeout)
            except MCPProviderError as e:
                log.warning("tool_refresh_failed", provider=session.name, error=str(e))
                return
            self.registry.rebuild()
            log.info("tool_catalog_refreshed", provider=session.name, tools=len(session.tools))
