# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rharness

import tempfile
from pathlib import Path
from typing import Literal

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class HarnessConfig(BaseSettings):
    """
    Configuration for the R execution harness.
    """

    runtime: Literal["local", "docker"] = "local"
    rscript_path: str = "Rscript"

    # Docker runtime
    docker_image: str = "rocker/tidyverse:4.4"
    docker_mem_limit: str = "1g"
    docker_cpu_limit: float = 1.0
    docker_network_mode: str = "bridge"

    # Filesystem layout
    data_dir: Path = Path("data")
    work_dir: Path = Path(tempfile.gettempdir()) / "coreason-rharness"
    durable_dir: Path = Path(".rharness") / "workspaces"

    # Applies to every interpreter invocation, introspection included.
    execution_timeout: float = 120.0

    # Idle sessions lose their in-memory record. Snapshots stay on disk.
    idle_timeout: float = 1800.0
    reaper_interval: float = 60.0

    cran_mirror: str = "https://cloud.r-project.org"
    preload_packages: list[str] = ["dplyr", "ggplot2", "tidyr", "maps", "gt"]
    preload_datasets: list[str] = ["mtcars"]

    # Plot capture
    plot_device: Literal["svg", "png"] = "svg"
    plot_width: float = 7.0
    plot_height: float = 5.5
    plot_resolution: int = 96
    min_plot_bytes: int = 100

    # Schema introspection
    categorical_min_levels: int = 2
    categorical_max_levels: int = 250
    default_target_variable: str = "data"

    max_table_rows: int = 1000
    benign_stderr_patterns: list[str] = [
        r"WARNING",
        r"^Attaching package",
        r"^The following objects? (is|are) masked",
        r"^Registered S3 method",
    ]

    # Interactive documents
    document_base_url: str | None = None
    self_contained_documents: bool = False

    enable_audit_logging: bool = True

    # S3 / Object Storage for interactive documents
    s3_bucket: str | None = None
    s3_region: str | None = None
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_endpoint_url: str | None = None

    model_config = SettingsConfigDict(
        env_prefix="COREASON_RHARNESS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("execution_timeout", "idle_timeout", "reaper_interval")
    @classmethod
    def _positive_duration(cls, value: float, info: ValidationInfo) -> float:
        if value <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return value

    @field_validator("categorical_max_levels")
    @classmethod
    def _levels_ordered(cls, value: int, info: ValidationInfo) -> int:
        minimum = info.data.get("categorical_min_levels", 2)
        if value < minimum:
            raise ValueError("categorical_max_levels must be >= categorical_min_levels")
        return value

    @property
    def sessions_dir(self) -> Path:
        return self.work_dir / "sessions"

    @property
    def scripts_dir(self) -> Path:
        return self.work_dir / "scripts"

    @property
    def documents_dir(self) -> Path:
        return self.work_dir / "documents"
