from coreason_rharness.artifacts import ArtifactExtractor
from coreason_rharness.config import HarnessConfig
from coreason_rharness.runner import ProcessRunner
from coreason_rharness.runtimes.docker import DockerRunner
from coreason_rharness.runtimes.local import LocalRunner
from coreason_rharness.storage import S3Storage


class HarnessFactory:
    """
    Factory to create runners and artifact extractors based on configuration.
    """

    @staticmethod
    def get_runner(config: HarnessConfig) -> ProcessRunner:
        """
        Returns an instance of the configured ProcessRunner.
        """
        if config.runtime == "docker":
            return DockerRunner(
                scripts_dir=config.scripts_dir,
                data_dir=config.data_dir,
                work_dir=config.work_dir,
                image=config.docker_image,
                cpu_limit=config.docker_cpu_limit,
                mem_limit=config.docker_mem_limit,
                network_mode=config.docker_network_mode,
            )
        elif config.runtime == "local":
            return LocalRunner(
                scripts_dir=config.scripts_dir,
                data_dir=config.data_dir,
                rscript_path=config.rscript_path,
            )
        else:
            # This should be unreachable due to Pydantic validation, but for safety:
            raise ValueError(f"Unknown runtime: {config.runtime}")  # pragma: no cover

    @staticmethod
    def get_storage(config: HarnessConfig) -> S3Storage | None:
        return S3Storage.from_config(config)

    @staticmethod
    def get_extractor(config: HarnessConfig) -> ArtifactExtractor:
        """
        Returns an ArtifactExtractor, publishing documents to S3 when a bucket is configured.
        """
        return ArtifactExtractor(config, storage=HarnessFactory.get_storage(config))
