from __future__ import annotations

import shutil
import tempfile
from pathlib import Path

import pytest


@pytest.fixture
def sock_path() -> Path:
    """
    短路径 socket 文件位置。

    说明：pytest 的 tmp_path 可能超过 AF_UNIX 路径上限（~104 bytes），这里改用 `mkdtemp` 的短目录。
    """

    d = Path(tempfile.mkdtemp(prefix="fc-"))
    try:
        yield d / ".fresnel.sock"
    finally:
        shutil.rmtree(d, ignore_errors=True)
