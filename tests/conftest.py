from pathlib import Path
from typing import Any, Generator
from unittest.mock import patch

import pytest

from coreason_rharness.config import HarnessConfig


@pytest.fixture
def config(tmp_path: Path) -> HarnessConfig:
    return HarnessConfig(
        data_dir=tmp_path / "data",
        work_dir=tmp_path / "work",
        durable_dir=tmp_path / "durable",
    )


@pytest.fixture
def mock_rasterizer() -> Generator[Any, None, None]:
    with patch("coreason_rharness.artifacts.svg_to_png", return_value=b"\x89PNG\r\n\x1a\nfake") as mock:
        yield mock
