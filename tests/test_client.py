from __future__ import annotations

import os
import socket
import threading
from pathlib import Path
from typing import List

import pytest

from fresnel_comm.core.errors import ClientError
from fresnel_comm.runtime.client import send_command

pytestmark = pytest.mark.skipif(os.name == "nt", reason="unix sockets only")


def _serve_once(server: socket.socket, received: List[bytes]) -> None:
    conn, _ = server.accept()
    with conn:
        chunks = []
        while True:
            data = conn.recv(4096)
            if not data:
                break
            chunks.append(data)
    received.append(b"".join(chunks))


def test_send_command_writes_payload_and_closes(sock_path: Path) -> None:
    received: List[bytes] = []
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as server:
        server.bind(str(sock_path))
        server.listen(1)
        t = threading.Thread(target=_serve_once, args=(server, received), daemon=True)
        t.start()

        n = send_command(sock_path, "echo héllo")
        t.join(timeout=5.0)

    assert received == ["echo héllo".encode("utf-8")]
    assert n == len("echo héllo".encode("utf-8"))


def test_send_command_sends_oversized_payload_unchanged(sock_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    received: List[bytes] = []
    command = "echo " + "b" * 1500
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as server:
        server.bind(str(sock_path))
        server.listen(1)
        t = threading.Thread(target=_serve_once, args=(server, received), daemon=True)
        t.start()

        with caplog.at_level("WARNING", logger="fresnel_comm.runtime.client"):
            n = send_command(sock_path, command)
        t.join(timeout=5.0)

    assert n == len(command)
    assert received == [command.encode("utf-8")]
    assert any("at most 1024 bytes" in r.getMessage() for r in caplog.records)


def test_send_command_without_server_raises_client_error(sock_path: Path) -> None:
    with pytest.raises(ClientError) as ei:
        send_command(sock_path, "echo hello")

    assert ei.value.code == "CLIENT_CONNECT_FAILED"
    assert ei.value.details["socket_path"] == str(sock_path)


def test_send_command_to_regular_file_raises_client_error(sock_path: Path) -> None:
    sock_path.write_text("not a socket", encoding="utf-8")

    with pytest.raises(ClientError):
        send_command(sock_path, "echo hello")
