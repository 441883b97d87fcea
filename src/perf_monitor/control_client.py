"""Sending split/rename requests to a running monitor."""

import socket


def send_control_message(text: str, port: int, host: str = "127.0.0.1") -> int:
    """Send one control datagram.

    Delivery is not confirmed; UDP gives no acknowledgement.

    Returns:
        Number of bytes sent

    Raises:
        OSError: If the datagram could not be sent
    """
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        return sock.sendto(text.encode("utf-8"), (host, port))
