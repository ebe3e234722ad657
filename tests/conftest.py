"""Pytest bootstrap: import ``mirror_sync`` from the repository root and keep its logger clean."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
PROJECT_ROOT_STR = str(PROJECT_ROOT)

if PROJECT_ROOT_STR not in sys.path:
    sys.path.insert(0, PROJECT_ROOT_STR)

import mirror_sync  # noqa: E402


@pytest.fixture(autouse=True)
def reset_mirror_logger():
    yield
    logger = logging.getLogger(mirror_sync.LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def logger():
    lg = logging.getLogger("tests.mirror_sync")
    lg.setLevel(logging.INFO)
    return lg


@pytest.fixture
def trees(tmp_path):
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    src.mkdir()
    dst.mkdir()
    return src, dst


def write(path: Path, data: str | bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(data, str):
        data = data.encode("utf-8")
    path.write_bytes(data)
    return path


def listing(root: Path) -> dict[str, bytes | None]:
    """Relative path -> bytes for files, None for directories."""
    out: dict[str, bytes | None] = {}
    for p in root.rglob("*"):
        rel = p.relative_to(root).as_posix()
        out[rel] = None if p.is_dir() else p.read_bytes()
    return out
