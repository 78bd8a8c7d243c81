import asyncio
import time
from pathlib import Path

from loguru import logger

from coreason_rharness.exceptions import ProcessSpawnError
from coreason_rharness.models import ProcessOutput
from coreason_rharness.runner import ProcessRunner


class LocalRunner(ProcessRunner):
    """
    Runs scripts with the host's Rscript binary.
    """

    def __init__(self, scripts_dir: Path, data_dir: Path, rscript_path: str = "Rscript"):
        super().__init__(scripts_dir)
        self.data_dir = data_dir
        self.rscript_path = rscript_path

    async def _invoke(self, script_path: Path, timeout: float) -> ProcessOutput:
        """
        Run Rscript on the script file and capture output.
        """
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create data directory {self.data_dir}: {e}")
            raise ProcessSpawnError(f"Data directory unavailable: {self.data_dir}") from e

        cmd = [self.rscript_path, "--vanilla", str(script_path)]
        logger.info(f"Running {script_path.name} with {self.rscript_path}")

        start_time = time.time()
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.data_dir),
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.error(f"R interpreter not available at {self.rscript_path}: {e}")
            raise ProcessSpawnError(f"R interpreter not available: {e}") from e
        except OSError as e:
            logger.error(f"Failed to start R interpreter: {e}")
            raise ProcessSpawnError(f"Failed to start R interpreter: {e}") from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"Execution timed out ({timeout}s). Killing Rscript process {proc.pid}.")
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            raise ProcessSpawnError(f"Execution exceeded {timeout} seconds limit.") from e

        duration = time.time() - start_time
        exit_code = proc.returncode if proc.returncode is not None else -1
        if exit_code < 0:
            # Negative return codes mean the process was killed by a signal.
            logger.error(f"Rscript process {proc.pid} crashed with signal {-exit_code}")
            raise ProcessSpawnError(f"R interpreter crashed (signal {-exit_code})")

        return ProcessOutput(
            stdout=stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else "",
            stderr=stderr_bytes.decode("utf-8", errors="replace") if stderr_bytes else "",
            exit_code=exit_code,
            duration=duration,
        )
