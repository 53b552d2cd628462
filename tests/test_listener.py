from __future__ import annotations

import os
import socket
import stat
from pathlib import Path

import pytest

from fresnel_comm.core.errors import StartupError
from fresnel_comm.runtime.listener import SocketListener

pytestmark = pytest.mark.skipif(os.name == "nt", reason="unix sockets only")


def _is_socket(p: Path) -> bool:
    return stat.S_ISSOCK(os.stat(p).st_mode)


def _connect_and_send(path: Path, payload: bytes) -> None:
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as c:
        c.connect(str(path))
        if payload:
            c.sendall(payload)


def test_open_replaces_stale_file_and_close_removes_it(sock_path: Path) -> None:
    sock_path.write_text("stale", encoding="utf-8")

    listener = SocketListener(sock_path)
    listener.open()
    try:
        assert _is_socket(sock_path)
        assert stat.S_IMODE(os.stat(sock_path).st_mode) == 0o600
    finally:
        listener.close()

    assert not sock_path.exists()
    # close 可重复调用
    listener.close()


def test_missing_path_before_open_is_not_an_error(sock_path: Path) -> None:
    assert not sock_path.exists()
    with SocketListener(sock_path) as listener:
        assert listener.is_open
    assert not sock_path.exists()


def test_context_manager_cleans_up_on_error(sock_path: Path) -> None:
    with pytest.raises(RuntimeError, match="boom"):
        with SocketListener(sock_path):
            assert sock_path.exists()
            raise RuntimeError("boom")
    assert not sock_path.exists()


def test_unremovable_path_is_startup_error(sock_path: Path) -> None:
    sock_path.mkdir()
    (sock_path / "keep").write_text("x", encoding="utf-8")

    with pytest.raises(StartupError) as ei:
        SocketListener(sock_path).open()
    assert ei.value.code == "SOCKET_REMOVE_FAILED"
    assert ei.value.details["socket_path"] == str(sock_path)


def test_bind_failure_is_startup_error(sock_path: Path) -> None:
    target = sock_path.parent / "missing-dir" / "s.sock"

    with pytest.raises(StartupError) as ei:
        SocketListener(target).open()
    assert ei.value.code == "SOCKET_BIND_FAILED"
    assert not target.exists()


def test_accept_without_client_is_idle(sock_path: Path) -> None:
    with SocketListener(sock_path, accept_poll_sec=0.05) as listener:
        out = listener.accept_message()
    assert out.kind == "idle"


def test_accept_reads_one_message_per_connection(sock_path: Path) -> None:
    with SocketListener(sock_path, accept_poll_sec=1.0) as listener:
        _connect_and_send(sock_path, b"echo one")
        _connect_and_send(sock_path, b"")
        _connect_and_send(sock_path, b"echo two")

        first = listener.accept_message()
        second = listener.accept_message()
        third = listener.accept_message()

    assert (first.kind, first.message) == ("message", "echo one")
    assert second.kind == "empty"
    assert (third.kind, third.message) == ("message", "echo two")


def test_silent_client_times_out_without_breaking_listener(sock_path: Path) -> None:
    with SocketListener(sock_path, accept_poll_sec=1.0, read_timeout_sec=0.05) as listener:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as silent:
            silent.connect(str(sock_path))
            out = listener.accept_message()
        assert out.kind == "error"
        assert out.error_kind == "timeout"

        _connect_and_send(sock_path, b"echo ok")
        nxt = listener.accept_message()
    assert nxt.message == "echo ok"


def test_accept_before_open_raises(sock_path: Path) -> None:
    with pytest.raises(RuntimeError):
        SocketListener(sock_path).accept_message()
