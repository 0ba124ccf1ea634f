"""
Shared fixtures: a fake renderer executable, multipart encoding helpers and
process liveness checks.
"""

import os
import stat
import sys
import time
import uuid
from pathlib import Path

import pytest

from html2pdf_service.conversion import ConversionContext, RequestLogger

FAKE_RENDERER = Path(__file__).with_name("fake_renderer.py")


@pytest.fixture
def fake_renderer(tmp_path):
    """Executable wrapper around fake_renderer.py, usable as the renderer binary."""
    wrapper = tmp_path / "bin" / "fake-wkhtmltopdf"
    wrapper.parent.mkdir()
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_RENDERER}" "$@"\n')
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(wrapper)


@pytest.fixture
def work_root(tmp_path):
    root = tmp_path / "work"
    root.mkdir()
    return root


def make_ctx(trace_id: str | None = "test") -> ConversionContext:
    return ConversionContext(logger=RequestLogger.for_request("tests", trace_id))


def encode_multipart(files=(), fields=()):
    """Build a multipart/form-data body from (filename, bytes) and (name, value) pairs."""
    boundary = uuid.uuid4().hex
    chunks = []
    for name, value in fields:
        chunks.append(
            f'--{boundary}\r\nContent-Disposition: form-data; name="{name}"\r\n\r\n'.encode()
            + value.encode()
            + b"\r\n"
        )
    for filename, content in files:
        chunks.append(
            f'--{boundary}\r\nContent-Disposition: form-data; name="file"; filename="{filename}"\r\n'
            f"Content-Type: text/html\r\n\r\n".encode()
            + content
            + b"\r\n"
        )
    chunks.append(f"--{boundary}--\r\n".encode())
    return f"multipart/form-data; boundary={boundary}", b"".join(chunks)


async def byte_stream(body: bytes, size: int = 4096):
    for i in range(0, len(body), size):
        yield body[i:i + size]


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    try:
        with open(f"/proc/{pid}/stat") as f:
            state = f.read().rsplit(")", 1)[1].split()[0]
    except OSError:
        return True
    # Killed grandchildren may linger as zombies until init reaps them.
    return state not in ("Z", "X")


def wait_until_dead(pids, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not any(pid_alive(p) for p in pids):
            return True
        time.sleep(0.05)
    return not any(pid_alive(p) for p in pids)


def read_marker(path: Path) -> list[int]:
    return [int(p) for p in path.read_text().split()]
