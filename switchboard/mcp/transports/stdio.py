"""Stdio transport: a child process speaking newline-delimited JSON-RPC.

The child runs in its own process group (``start_new_session=True``) so
shutdown reaches grandchildren spawned by launchers such as ``npx``.
"""

from __future__ import annotations

import asyncio
import os
import signal
from typing import Any

import structlog

from switchboard.config.providers import ProviderConfig
from switchboard.enums import TransportKind
from switchboard.mcp import messages
from switchboard.mcp.exceptions import ConnectError, ProtocolError
from switchboard.mcp.transports.base import Transport
from switchboard.mcp.transports.resolve import resolve_command

log = structlog.get_logger(__name__)

# Tool results can be large single lines.
STREAM_LIMIT = 16 * 1024 * 1024


class StdioTransport(Transport):
    """Transport over the stdin/stdout pipes of a spawned provider process."""

    kind = TransportKind.STDIO

    def __init__(
        self,
        config: ProviderConfig,
        *,
        terminate_timeout: float = 5.0,
        stream_limit: int = STREAM_LIMIT,
    ) -> None:
        super().__init__(config.name)
        self.config = config
        self.terminate_timeout = terminate_timeout
        self.stream_limit = stream_limit
        self._process: asyncio.subprocess.Process | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def _open(self) -> None:
        command = self.config.command or ""
        try:
            executable, env = resolve_command(command, self.config.env)
        except FileNotFoundError:
            raise ConnectError(self.name, f"Command not found: {command}") from None

        log.info("starting_mcp_provider", provider=self.name, cmd=[executable, *self.config.args])
        try:
            self._process = await asyncio.create_subprocess_exec(
                executable,
                *self.config.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=self.config.cwd,
                limit=self.stream_limit,
                start_new_session=os.name != "nt",
            )
        except OSError as e:
            raise ConnectError(self.name, f"Failed to start {command}: {e}") from e

        self._spawn(self._read_stdout(), "mcp-stdout")
        self._spawn(self._drain_stderr(), "mcp-stderr")

    async def _write(self, message: dict[str, Any]) -> None:
        process = self._process
        if process is None or process.stdin is None or process.stdin.is_closing():
            raise ConnectError(self.name, "No stdin available")
        try:
            process.stdin.write(messages.encode(message).encode() + b"\n")
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            error = ConnectError(self.name, f"Provider stdin closed: {e}")
            self._mark_closed(error)
            raise error from e

    async def _read_stdout(self) -> None:
        process = self._process
        assert process is not None and process.stdout is not None
        while True:
            try:
                line = await process.stdout.readline()
            except ValueError:
                self._mark_closed(ProtocolError(self.name, f"Message exceeds {self.stream_limit} bytes"))
                return
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            await self._handle_frame(line)
            if self.closed.is_set():
                return

        code = process.returncode
        if code is None:
            try:
                code = await asyncio.wait_for(process.wait(), timeout=1.0)
            except TimeoutError:
                code = None
        self._mark_closed(ConnectError(self.name, f"Provider exited with code {code}"))

    async def _drain_stderr(self) -> None:
        process = self._process
        assert process is not None and process.stderr is not None
        while True:
            try:
                line = await process.stderr.readline()
            except ValueError:
                continue
            if not line:
                return
            log.debug("mcp_provider_stderr", provider=self.name, line=line.decode(errors="replace").rstrip())

    async def _shutdown(self) -> None:
        process, self._process = self._process, None
        if process is not None:
            await self._terminate(process)
        await self._cancel_tasks()

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Stop the provider: close stdin, SIGTERM the group, SIGKILL on timeout."""
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        if process.returncode is not None:
            return

        log.info("stopping_mcp_provider", provider=self.name, pid=process.pid)
        try:
            self._signal(process, signal.SIGTERM)
            try:
                await asyncio.wait_for(process.wait(), timeout=self.terminate_timeout)
            except TimeoutError:
                log.warning("mcp_provider_kill", provider=self.name, reason="timeout")
                self._signal(process, getattr(signal, "SIGKILL", signal.SIGTERM))
                await process.wait()
        except ProcessLookupError:
            pass
        except OSError as e:
            log.error("mcp_provider_cleanup_error", provider=self.name, error=str(e))

    @staticmethod
    def _signal(process: asyncio.subprocess.Process, sig: int) -> None:
        if os.name == "nt":
            if sig == signal.SIGTERM:
                process.terminate()
            else:
                process.kill()
            return
        try:
            os.killpg(os.getpgid(process.pid), sig)
        except (ProcessLookupError, PermissionError):
            process.send_signal(sig)
