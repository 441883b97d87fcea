"""UDP control channel for remote split and rename requests.

Payloads are raw text. An empty payload or "split" (any case) asks for a
plain segment rotation; anything else is the new base name for the current
segment's files.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass

import structlog

log = structlog.get_logger()

SPLIT_TOKEN = "split"
MAX_PENDING = 64


@dataclass(frozen=True)
class ControlCommand:
    """A parsed control request; ``rename_to`` is None for a plain split."""

    rename_to: str | None = None

    @property
    def is_rename(self) -> bool:
        return self.rename_to is not None


def parse_control_message(payload: bytes | str) -> ControlCommand:
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    text = payload.strip()
    if not text or text.lower() == SPLIT_TOKEN:
        return ControlCommand()
    return ControlCommand(rename_to=text)


class _ControlProtocol(asyncio.DatagramProtocol):
    def __init__(self, inbox: deque[ControlCommand]):
        self._inbox = inbox

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        command = parse_control_message(data)
        log.info("control_message", sender=f"{addr[0]}:{addr[1]}", rename_to=command.rename_to)
        self._inbox.append(command)

    def error_received(self, exc: Exception) -> None:
        log.warning("control_receive_error", error=str(exc))


class ControlChannel:
    """Listens on a local UDP port and queues commands for the monitor loop.

    Datagrams are parsed as they arrive and held until poll() drains them, so
    checking for commands never blocks a tick.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0):
        self.host = host
        self.port = port
        self._inbox: deque[ControlCommand] = deque(maxlen=MAX_PENDING)
        self._transport: asyncio.DatagramTransport | None = None
        self.bind_error: str | None = None

    @property
    def listening(self) -> bool:
        return self._transport is not None

    async def start(self) -> bool:
        """Bind the socket.

        Returns:
            False if the port could not be bound; the channel stays disabled.
        """
        loop = asyncio.get_running_loop()
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _ControlProtocol(self._inbox),
                local_addr=(self.host, self.port),
            )
        except OSError as e:
            self.bind_error = e.strerror or str(e)
            log.warning("control_bind_failed", host=self.host, port=self.port, error=str(e))
            return False
        self._transport = transport
        # Port 0 binds an ephemeral port
        self.port = transport.get_extra_info("sockname")[1]
        log.info("control_listening", host=self.host, port=self.port)
        return True

    def poll(self) -> list[ControlCommand]:
        """Drain queued commands in arrival order."""
        commands = list(self._inbox)
        self._inbox.clear()
        return commands

    def stop(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None
