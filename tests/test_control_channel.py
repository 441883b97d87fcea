"""Tests for the UDP control channel and its client."""

import asyncio
import socket

import pytest

from perf_monitor.control_channel import (
    MAX_PENDING,
    ControlChannel,
    ControlCommand,
    parse_control_message,
)
from perf_monitor.control_client import send_control_message


async def wait_for_commands(channel: ControlChannel, count: int, timeout: float = 2.0) -> list:
    """Poll until ``count`` commands have arrived or the timeout passes."""
    collected: list[ControlCommand] = []
    deadline = asyncio.get_running_loop().time() + timeout
    while len(collected) < count and asyncio.get_running_loop().time() < deadline:
        await asyncio.sleep(0.01)
        collected.extend(channel.poll())
    return collected


class TestParseControlMessage:
    @pytest.mark.parametrize("payload", [b"", b"   \n", b"split", b"SPLIT\n", "Split"])
    def test_plain_split(self, payload) -> None:
        command = parse_control_message(payload)
        assert command == ControlCommand()
        assert not command.is_rename

    def test_rename(self) -> None:
        command = parse_control_message(b"  baseline-run\n")
        assert command.is_rename
        assert command.rename_to == "baseline-run"

    def test_split_prefix_is_a_name(self) -> None:
        assert parse_control_message(b"splitting").rename_to == "splitting"

    def test_invalid_utf8_is_replaced(self) -> None:
        command = parse_control_message(b"run\xff1")
        assert command.rename_to == "run�1"


class TestControlChannel:
    @pytest.mark.asyncio
    async def test_receives_commands_in_order(self) -> None:
        channel = ControlChannel(port=0)
        assert await channel.start() is True
        try:
            assert channel.listening
            assert channel.port != 0

            send_control_message("split", channel.port)
            send_control_message("after-warmup", channel.port)
            commands = await wait_for_commands(channel, 2)
        finally:
            channel.stop()

        assert commands == [ControlCommand(), ControlCommand(rename_to="after-warmup")]
        assert not channel.listening

    @pytest.mark.asyncio
    async def test_poll_drains(self) -> None:
        channel = ControlChannel(port=0)
        await channel.start()
        try:
            send_control_message("one", channel.port)
            await wait_for_commands(channel, 1)
            assert channel.poll() == []
        finally:
            channel.stop()

    @pytest.mark.asyncio
    async def test_backlog_is_bounded(self) -> None:
        channel = ControlChannel(port=0)
        await channel.start()
        try:
            for i in range(MAX_PENDING + 10):
                send_control_message(f"name{i}", channel.port)
            # let the loop deliver everything before draining
            for _ in range(50):
                await asyncio.sleep(0.01)
            commands = channel.poll()
        finally:
            channel.stop()

        assert 0 < len(commands) <= MAX_PENDING
        assert commands[-1].rename_to == f"name{MAX_PENDING + 9}"

    @pytest.mark.asyncio
    async def test_bind_failure(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as taken:
            taken.bind(("127.0.0.1", 0))
            port = taken.getsockname()[1]

            channel = ControlChannel(port=port)
            assert await channel.start() is False
            assert not channel.listening
            assert channel.bind_error
            assert channel.poll() == []
            channel.stop()


class TestSendControlMessage:
    def test_returns_bytes_sent(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as receiver:
            receiver.bind(("127.0.0.1", 0))
            receiver.settimeout(2.0)
            port = receiver.getsockname()[1]

            assert send_control_message("rename-me", port) == len(b"rename-me")
            data, _ = receiver.recvfrom(1024)
        assert data == b"rename-me"
