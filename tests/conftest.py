"""Pytest configuration for ffprog."""

from __future__ import annotations

import os
from typing import Callable, Optional

import pytest

from ffprog.progress import ProgressSample


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    del config
    if os.environ.get("FFPROG_CI") != "1":
        return
    skip_ffmpeg = pytest.mark.skip(reason="Skipping ffmpeg-dependent tests in CI.")
    for item in items:
        if "ffmpeg" in item.keywords:
            item.add_marker(skip_ffmpeg)


def _block(out_time_us: Optional[str] = "0", *, end: bool = False, **fields) -> bytes:
    lines = [f"{key}={value}" for key, value in fields.items()]
    if out_time_us is not None:
        lines.append(f"out_time_us={out_time_us}")
    lines.append("progress=end" if end else "progress=continue")
    return ("\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture
def block() -> Callable[..., bytes]:
    """Build one ``-progress`` block; keyword fields come before out_time_us."""
    return _block


@pytest.fixture
def make_sample() -> Callable[..., ProgressSample]:
    def factory(
        index: int, wall: float, out: float, **kwargs: object
    ) -> ProgressSample:
        return ProgressSample(
            sequence_index=index,
            wall_elapsed=wall,
            output_time_seconds=out,
            **kwargs,  # type: ignore[arg-type]
        )

    return factory
