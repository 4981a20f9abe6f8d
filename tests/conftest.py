"""
tests/conftest.py — Shared fixtures for the DriveSense test suite.

Image payloads are generated in memory with Pillow; controllers run on a
ManualScheduler with a seeded random source so every run is repeatable.
The JSONL logger is pointed at a temporary directory for every test.
"""

from __future__ import annotations

import io
import random
from typing import Callable

import pytest
from PIL import Image

from core.logger import DriveSenseLogger, configure_logger
from pipeline.controller import PipelineController
from pipeline.scheduler import ManualScheduler


def _encode(fmt: str = "PNG", size: tuple[int, int] = (64, 48), colour: str = "red") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, colour).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture(autouse=True)
def log(tmp_path_factory: pytest.TempPathFactory) -> DriveSenseLogger:
    """Fresh structured logger writing under a temp dir."""
    logger = configure_logger(log_dir=tmp_path_factory.mktemp("logs"), level="DEBUG")
    yield logger
    logger.close()


@pytest.fixture()
def make_image() -> Callable[..., bytes]:
    """Factory: ``make_image("JPEG", (32, 32), "blue") -> bytes``."""
    return _encode


@pytest.fixture()
def png_bytes() -> bytes:
    return _encode("PNG", (64, 48), "red")


@pytest.fixture()
def jpeg_bytes() -> bytes:
    return _encode("JPEG", (32, 32), "green")


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture()
def controller(scheduler: ManualScheduler):
    """Controller on a virtual clock with a seeded rng."""
    ctrl = PipelineController(scheduler=scheduler, rng=random.Random(1234))
    yield ctrl
    ctrl.shutdown()
