# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rharness

import base64
import json

import pytest
from pydantic import ValidationError

from coreason_rharness.models import (
    Categorical,
    ColumnDescriptor,
    ExecutionRequest,
    ExecutionResult,
    InteractiveDocument,
    Numeric,
    Other,
    OutputMode,
    RasterImage,
    Schema,
    VectorImage,
)


def test_request_defaults() -> None:
    request = ExecutionRequest(source_code="x <- 1")
    assert request.output_mode is None
    assert request.format_tabular is True
    assert request.refresh_schema is False
    assert request.target_variable is None


@pytest.mark.parametrize("code", ["", "   ", "\n\t"])
def test_request_rejects_blank_code(code: str) -> None:
    with pytest.raises(ValidationError, match="R code is required"):
        ExecutionRequest(source_code=code)


def test_request_accepts_mode_string() -> None:
    request = ExecutionRequest(source_code="plot(1)", output_mode="plot")  # type: ignore[arg-type]
    assert request.output_mode is OutputMode.PLOT


def test_result_defaults() -> None:
    result = ExecutionResult()
    assert result.text_output == ""
    assert result.error_message is None
    assert result.artifacts == []
    assert result.updated_schema is None


def test_artifact_union_round_trips_through_json() -> None:
    result = ExecutionResult(
        artifacts=[
            RasterImage(data=b"\x89PNG"),
            VectorImage(markup="<svg/>", raster=None),
            InteractiveDocument(reference="file:///tmp/w.html", path="/tmp/w.html"),
        ]
    )
    payload = json.loads(result.model_dump_json())
    assert [a["kind"] for a in payload["artifacts"]] == ["raster", "vector", "document"]
    assert payload["artifacts"][0]["data"] == base64.b64encode(b"\x89PNG").decode()

    restored = ExecutionResult.model_validate_json(result.model_dump_json())
    assert isinstance(restored.artifacts[0], RasterImage)
    assert restored.artifacts[0].data == b"\x89PNG"
    assert isinstance(restored.artifacts[1], VectorImage)
    assert isinstance(restored.artifacts[2], InteractiveDocument)


def test_data_uris() -> None:
    assert RasterImage(data=b"abc").data_uri() == "data:image/png;base64,YWJj"
    assert VectorImage(markup="<svg/>").raster_data_uri() is None
    assert VectorImage(markup="<svg/>", raster=b"abc").raster_data_uri() == "data:image/png;base64,YWJj"


def test_schema_lookup() -> None:
    schema = Schema(
        variable="data",
        exists=True,
        nrow=3,
        ncol=3,
        columns=[
            ColumnDescriptor(name="g", kind=Categorical(values=["a", "b"])),
            ColumnDescriptor(name="x", kind=Numeric(min=0, max=1)),
            ColumnDescriptor(name="id", kind=Other()),
        ],
    )
    assert schema.column_names() == ["g", "x", "id"]
    column = schema.get("x")
    assert column is not None and isinstance(column.kind, Numeric)
    assert schema.get("missing") is None


def test_column_kind_discriminator() -> None:
    column = ColumnDescriptor.model_validate({"name": "g", "kind": {"type": "categorical", "values": ["a", "b"]}})
    assert isinstance(column.kind, Categorical)
