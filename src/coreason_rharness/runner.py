# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rharness

import itertools
import time
from abc import ABC, abstractmethod
from pathlib import Path

import aiofiles  # type: ignore[import-untyped]
from loguru import logger

from coreason_rharness.models import ProcessOutput

_counter = itertools.count()


def unique_stamp() -> str:
    """Collision-resistant token for per-request file names."""
    return f"{time.time_ns()}_{next(_counter)}"


class ProcessRunner(ABC):
    """
    Abstract base class for interpreter runners (e.g., local Rscript, Docker).
    Follows the Strategy Pattern.
    """

    def __init__(self, scripts_dir: Path):
        self.scripts_dir = scripts_dir

    async def run(self, script: str, timeout: float) -> ProcessOutput:
        """Write the script to a transient file and run it.

        The script file is always removed afterwards, whatever the outcome.

        Args:
            script: The complete script text.
            timeout: Execution budget in seconds.

        Returns:
            ProcessOutput: stdout, stderr, exit status and duration.

        Raises:
            ProcessSpawnError: If the interpreter is missing, fails to start or times out.
        """
        self.scripts_dir.mkdir(parents=True, exist_ok=True)
        script_path = self.scripts_dir / f"script_{unique_stamp()}.R"
        async with aiofiles.open(script_path, "w", encoding="utf-8") as f:
            await f.write(script)

        try:
            return await self._invoke(script_path, timeout)
        finally:
            try:
                script_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to remove script file {script_path}: {e}")

    @abstractmethod
    async def _invoke(self, script_path: Path, timeout: float) -> ProcessOutput:
        """Run the interpreter non-interactively on a script file.

        Args:
            script_path: Path of the script to execute.
            timeout: Execution budget in seconds.

        Returns:
            ProcessOutput: The captured output.

        Raises:
            ProcessSpawnError: If the interpreter cannot run the script to completion.
        """
        pass  # pragma: no cover
