import time

import pytest

OPEN_LINE = "Log file open, 11/10/25 20:58:31"


def _wait_until(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def _game_line(n: int, body: str = "LogTemp: tick") -> str:
    return f"[2025.11.10-20.59.{n % 60:02d}:000][{n}]{body} {n}"


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def game_line():
    return _game_line


@pytest.fixture
def write_log():
    """Write a server log: the ``Log file open`` header followed by *lines*."""
    def _write(path, lines, opened=OPEN_LINE, mode="w"):
        with open(path, mode, encoding="utf-8") as f:
            if opened is not None:
                f.write(opened + "\n")
            for line in lines:
                f.write(line + "\n")
        return str(path)
    return _write


@pytest.fixture
def append_lines():
    def _append(path, lines):
        with open(path, "a", encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")
            f.flush()
    return _append
