from __future__ import annotations

import os
import queue
import signal
import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import IO, List

import pytest

from fresnel_comm.config.loader import load_config_dicts
from fresnel_comm.runtime.client import send_command
from fresnel_comm.runtime.server import run_server

pytestmark = pytest.mark.skipif(os.name == "nt", reason="posix signals only")

SRC_DIR = Path(__file__).resolve().parents[1] / "src"


def _wait_for_path(path: Path, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not path.exists():
        if time.monotonic() > deadline:
            raise AssertionError(f"{path} did not appear")
        time.sleep(0.02)


def _pump(stream: IO[str], out: "queue.Queue[str]") -> None:
    for line in iter(stream.readline, ""):
        out.put(line.rstrip("\n"))


def _wait_for_line(out: "queue.Queue[str]", expected: str, timeout: float = 10.0) -> List[str]:
    seen: List[str] = []
    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise AssertionError(f"{expected!r} not seen; got {seen!r}")
        try:
            line = out.get(timeout=remaining)
        except queue.Empty:
            continue
        seen.append(line)
        if line == expected:
            return seen


def _spawn_serve(sock_path: Path) -> subprocess.Popen[str]:
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(p for p in (str(SRC_DIR), env.get("PYTHONPATH", "")) if p)
    env.pop("FRESNEL_COMM_SOCKET", None)
    return subprocess.Popen(
        [sys.executable, "-m", "fresnel_comm.cli.main", "serve", "--socket", str(sock_path)],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
        text=True,
        env=env,
    )


def test_sigterm_on_idle_server_removes_socket(sock_path: Path) -> None:
    proc = _spawn_serve(sock_path)
    try:
        _wait_for_path(sock_path)
        proc.send_signal(signal.SIGTERM)
        assert proc.wait(timeout=10.0) == 0
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
    assert not sock_path.exists()


def test_sigterm_during_long_command_stops_server(sock_path: Path) -> None:
    proc = _spawn_serve(sock_path)
    out: "queue.Queue[str]" = queue.Queue()
    try:
        _wait_for_path(sock_path)
        assert proc.stdout is not None
        threading.Thread(target=_pump, args=(proc.stdout, out), daemon=True).start()

        send_command(sock_path, "echo started; sleep 20")
        _wait_for_line(out, "started")

        t0 = time.monotonic()
        proc.send_signal(signal.SIGTERM)
        assert proc.wait(timeout=10.0) == 0
        assert time.monotonic() - t0 < 10
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
    assert not sock_path.exists()
    _wait_for_line(out, str(-signal.SIGTERM), timeout=5.0)


def test_run_server_restores_previous_handlers(sock_path: Path) -> None:
    before_term = signal.getsignal(signal.SIGTERM)
    before_int = signal.getsignal(signal.SIGINT)
    cfg = load_config_dicts([{"server": {"socket_path": str(sock_path), "accept_poll_sec": 0.05}}])

    def _terminate_when_bound() -> None:
        _wait_for_path(sock_path)
        os.kill(os.getpid(), signal.SIGTERM)

    t = threading.Thread(target=_terminate_when_bound, daemon=True)
    t.start()
    run_server(cfg, emit=lambda _line: None)
    t.join(timeout=5.0)

    assert not sock_path.exists()
    assert signal.getsignal(signal.SIGTERM) == before_term
    assert signal.getsignal(signal.SIGINT) == before_int
