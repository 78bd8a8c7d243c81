import asyncio
import time
from pathlib import Path

import docker
from docker.errors import DockerException, ImageNotFound
from loguru import logger

from coreason_rharness.exceptions import ProcessSpawnError
from coreason_rharness.models import ProcessOutput
from coreason_rharness.runner import ProcessRunner

# Container exit status for a process killed by signal N is 128 + N.
SIGNAL_EXIT_BASE = 128


class DockerRunner(ProcessRunner):
    """
    Docker-based implementation of the ProcessRunner.

    Each script runs in a fresh container from an R image. The work and data
    directories are bind-mounted at their host paths, so script, snapshot and
    artifact paths mean the same thing on both sides.
    """

    def __init__(
        self,
        scripts_dir: Path,
        data_dir: Path,
        work_dir: Path,
        image: str = "rocker/tidyverse:4.4",
        cpu_limit: float = 1.0,
        mem_limit: str = "1g",
        network_mode: str = "bridge",
    ):
        super().__init__(scripts_dir)
        self.client = docker.from_env()
        self.data_dir = data_dir.resolve()
        self.work_dir = work_dir.resolve()
        self.image = image
        self.cpu_limit = cpu_limit
        self.mem_limit = mem_limit
        self.network_mode = network_mode

    def _volumes(self) -> dict[str, dict[str, str]]:
        return {
            str(self.work_dir): {"bind": str(self.work_dir), "mode": "rw"},
            str(self.data_dir): {"bind": str(self.data_dir), "mode": "rw"},
        }

    async def _invoke(self, script_path: Path, timeout: float) -> ProcessOutput:
        """
        Run Rscript inside a container and capture output.
        """
        script_path = script_path.resolve()
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create data directory {self.data_dir}: {e}")
            raise ProcessSpawnError(f"Data directory unavailable: {self.data_dir}") from e

        logger.info(f"Running {script_path.name} in Docker image {self.image}")

        start_time = time.time()
        try:
            container = await asyncio.to_thread(
                self.client.containers.run,
                self.image,
                command=["Rscript", "--vanilla", str(script_path)],
                detach=True,
                network_mode=self.network_mode,
                mem_limit=self.mem_limit,
                nano_cpus=int(self.cpu_limit * 1e9),
                working_dir=str(self.data_dir),
                volumes=self._volumes(),
            )
        except ImageNotFound as e:
            logger.error(f"Docker image {self.image} not found: {e}")
            raise ProcessSpawnError(f"R image not available: {self.image}") from e
        except DockerException as e:
            logger.error(f"Failed to start Docker container: {e}")
            raise ProcessSpawnError(f"Failed to start R container: {e}") from e

        try:
            try:
                status = await asyncio.wait_for(asyncio.to_thread(container.wait), timeout=timeout)
            except asyncio.TimeoutError as e:
                logger.warning(f"Execution timed out ({timeout}s). Killing container {container.short_id}.")
                try:
                    await asyncio.to_thread(container.kill)
                except DockerException as kill_error:
                    logger.warning(f"Error killing container {container.short_id}: {kill_error}")
                raise ProcessSpawnError(f"Execution exceeded {timeout} seconds limit.") from e

            duration = time.time() - start_time
            stdout_bytes = await asyncio.to_thread(container.logs, stdout=True, stderr=False)
            stderr_bytes = await asyncio.to_thread(container.logs, stdout=False, stderr=True)
            exit_code = int(status.get("StatusCode", -1)) if isinstance(status, dict) else -1
            if exit_code > SIGNAL_EXIT_BASE:
                signal_number = exit_code - SIGNAL_EXIT_BASE
                logger.error(f"Container {container.short_id} was killed by signal {signal_number}")
                raise ProcessSpawnError(f"R interpreter crashed (signal {signal_number})")

            return ProcessOutput(
                stdout=stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else "",
                stderr=stderr_bytes.decode("utf-8", errors="replace") if stderr_bytes else "",
                exit_code=exit_code,
                duration=duration,
            )
        except DockerException as e:
            logger.error(f"Execution failed: {e}")
            raise ProcessSpawnError(f"R container failed: {e}") from e
        finally:
            try:
                await asyncio.to_thread(container.remove, force=True)
            except DockerException as e:
                logger.warning(f"Error removing container {container.short_id}: {e}")
