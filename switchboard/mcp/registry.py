"""Session registry and the flat tool catalog.

The registry holds one Session per provider and derives the catalog the
completion loop sees. Rebuilds compute a new mapping off to the side and
publish it with a single assignment; readers always hold a complete,
read-only snapshot.

Collision policy:
    The catalog is built in configuration order (``Session.position``, then
    name). When two providers advertise the same tool name, the provider
    appearing later in the configuration wins and a ``tool_name_collision``
    warning is logged. Connection timing never affects the outcome.

Example:
    >>> registry = SessionRegistry()
    >>> registry.register(session)
    >>> descriptor, owner = registry.resolve("search")
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

import structlog

from switchboard.enums import SessionState
from switchboard.mcp.exceptions import ToolNotFoundError
from switchboard.mcp.models import ToolDescriptor
from switchboard.mcp.session import Session

log = structlog.get_logger(__name__)

# States whose last advertised tools stay in the catalog.
CATALOG_STATES = frozenset({SessionState.CONNECTING, SessionState.READY, SessionState.RECONNECTING})


class SessionRegistry:
    """Holds live sessions and the flat tool catalog derived from them."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._catalog: Mapping[str, ToolDescriptor] = MappingProxyType({})

    def __contains__(self, name: object) -> bool:
        return name in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def register(self, session: Session) -> None:
        """Add a session and rebuild the catalog.

        Raises:
            ValueError: If a different session with the same name exists.
        """
        existing = self._sessions.get(session.name)
        if existing is not None and existing is not session:
            raise ValueError(f"Session '{session.name}' is already registered")
        self._sessions[session.name] = session
        self.rebuild()

    def unregister(self, name: str) -> Session | None:
        """Remove a session and rebuild the catalog."""
        session = self._sessions.pop(name, None)
        if session is not None:
            self.rebuild()
        return session

    def get(self, name: str) -> Session | None:
        return self._sessions.get(name)

    def sessions(self) -> list[Session]:
        """Sessions in configuration order."""
        return sorted(self._sessions.values(), key=lambda s: (s.position, s.name))

    def catalog(self) -> Mapping[str, ToolDescriptor]:
        """Current catalog snapshot (read-only)."""
        return self._catalog

    def list_tools(self) -> list[ToolDescriptor]:
        return list(self._catalog.values())

    def resolve(self, tool_name: str) -> tuple[ToolDescriptor, Session]:
        """Find a tool's descriptor and owning session.

        Raises:
            ToolNotFoundError: If the tool is not in the catalog.
        """
        catalog = self._catalog
        descriptor = catalog.get(tool_name)
        if descriptor is None:
            raise ToolNotFoundError(tool_name)
        session = self._sessions.get(descriptor.provider)
        if session is None:
            raise ToolNotFoundError(tool_name)
        return descriptor, session

    def find_owner(self, tool_name: str) -> Session:
        return self.resolve(tool_name)[1]

    def rebuild(self) -> Mapping[str, ToolDescriptor]:
        """Recompute the catalog from every session and publish it."""
        catalog: dict[str, ToolDescriptor] = {}
        for session in self.sessions():
            if session.state not in CATALOG_STATES:
                continue
            for tool in session.tools.values():
                shadowed = catalog.get(tool.name)
                if shadowed is not None and shadowed.provider != session.name:
                    log.warning(
                        "tool_name_collision",
                        tool=tool.name,
                        kept=session.name,
                        shadowed=shadowed.provider,
                    )
                catalog[tool.name] = tool
        self._catalog = MappingProxyType(catalog)
        return self._catalog
