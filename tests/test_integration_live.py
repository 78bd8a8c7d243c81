import shutil
from pathlib import Path

import pytest

from coreason_rharness.config import HarnessConfig
from coreason_rharness.harness import HarnessAsync
from coreason_rharness.models import ExecutionRequest

pytestmark = [
    pytest.mark.live,
    pytest.mark.skipif(shutil.which("Rscript") is None, reason="Rscript not available"),
]


@pytest.fixture
def live_config(tmp_path: Path) -> HarnessConfig:
    return HarnessConfig(
        data_dir=tmp_path / "data",
        work_dir=tmp_path / "work",
        durable_dir=tmp_path / "durable",
        preload_packages=[],
        execution_timeout=60,
    )


@pytest.mark.asyncio
async def test_state_persists_between_executions(live_config: HarnessConfig) -> None:
    harness = HarnessAsync(live_config)

    first = await harness.execute(ExecutionRequest(source_code="x <- 5"), "live")
    assert first.error_message is None

    second = await harness.execute(ExecutionRequest(source_code="x", format_tabular=False), "live")
    assert second.error_message is None
    assert "[1] 5" in second.text_output


@pytest.mark.asyncio
async def test_error_then_state_survives(live_config: HarnessConfig) -> None:
    harness = HarnessAsync(live_config)

    await harness.execute(ExecutionRequest(source_code="kept <- 42"), "live")
    failed = await harness.execute(ExecutionRequest(source_code="stop('boom')"), "live")
    assert failed.error_message is not None
    assert "boom" in failed.error_message

    after = await harness.execute(ExecutionRequest(source_code="kept"), "live")
    assert "[1] 42" in after.text_output


@pytest.mark.asyncio
async def test_reset_clears_state(live_config: HarnessConfig) -> None:
    harness = HarnessAsync(live_config)

    await harness.execute(ExecutionRequest(source_code="gone <- 1"), "live")
    await harness.reset("live")
    result = await harness.execute(ExecutionRequest(source_code="exists('gone')"), "live")

    assert "[1] FALSE" in result.text_output


@pytest.mark.asyncio
async def test_modified_dataset_survives(live_config: HarnessConfig) -> None:
    harness = HarnessAsync(live_config)

    await harness.execute(ExecutionRequest(source_code="mtcars$mpg <- 0"), "live")
    result = await harness.execute(ExecutionRequest(source_code="sum(mtcars$mpg)"), "live")

    assert "[1] 0" in result.text_output
