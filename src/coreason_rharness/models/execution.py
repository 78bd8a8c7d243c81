# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rharness

"""Data models for execution requests, results and artifacts."""

import base64
from enum import Enum
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from coreason_rharness.models.schema import Schema


class OutputMode(str, Enum):
    """How the snippet output is captured."""

    PLAIN = "plain"
    PLOT = "plot"


class ExecutionRequest(BaseModel):
    """A single snippet submitted for execution."""

    source_code: str = Field(..., description="The untrusted R snippet to run.")
    output_mode: OutputMode | None = Field(
        default=None,
        description="Declared output mode. Inferred from the snippet when omitted.",
    )
    format_tabular: bool = Field(
        default=True,
        description="Render a visible data frame through the table formatting layer.",
    )
    refresh_schema: bool = Field(
        default=False,
        description="Introspect the target variable after execution.",
    )
    target_variable: str | None = Field(
        default=None,
        description="Fallback variable to introspect when none is assigned in the snippet.",
    )

    @field_validator("source_code")
    @classmethod
    def _require_code(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("R code is required")
        return value


class RasterImage(BaseModel):
    """A bitmap plot."""

    model_config = ConfigDict(ser_json_bytes="base64")

    kind: Literal["raster"] = "raster"
    data: bytes
    media_type: str = "image/png"

    def data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("utf-8")
        return f"data:{self.media_type};base64,{encoded}"


class VectorImage(BaseModel):
    """An SVG plot, with a PNG rendition when rasterization succeeded."""

    model_config = ConfigDict(ser_json_bytes="base64")

    kind: Literal["vector"] = "vector"
    markup: str
    raster: bytes | None = None

    def raster_data_uri(self) -> str | None:
        if self.raster is None:
            return None
        encoded = base64.b64encode(self.raster).decode("utf-8")
        return f"data:image/png;base64,{encoded}"


class InteractiveDocument(BaseModel):
    """An HTML document (widget or formatted table) exposed by reference."""

    kind: Literal["document"] = "document"
    reference: str = Field(..., description="Stable path or URL to the document.")
    path: str = Field(..., description="Local path of the document file.")


Artifact = Annotated[Union[RasterImage, VectorImage, InteractiveDocument], Field(discriminator="kind")]


class ExecutionResult(BaseModel):
    """Uniform result of one snippet execution.

    Attributes:
        text_output: Cleaned stdout, plus stderr unless it only held benign warnings.
        error_message: Script or artifact failure explanation, if any.
        artifacts: Visual outputs in the order they were produced.
        updated_schema: Post-execution schema of the target variable, when requested.
        exit_code: Interpreter exit status.
        execution_duration: Wall time of the main interpreter call in seconds.
    """

    text_output: str = ""
    error_message: str | None = None
    artifacts: list[Artifact] = Field(default_factory=list)
    updated_schema: Schema | None = None
    exit_code: int = 0
    execution_duration: float = 0.0


class ProcessOutput(BaseModel):
    """Raw outcome of one interpreter invocation."""

    stdout: str
    stderr: str
    exit_code: int
    duration: float


class SnapshotBinding(BaseModel):
    """Where a composed script loads session state from and saves it to."""

    load_from: Path | None = None
    save_to: Path


class ArtifactPaths(BaseModel):
    """Per-request output files, uniquely named."""

    plot_path: Path
    document_path: Path
