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
from contextlib import asynccontextmanager
from typing import AsyncIterator, Literal

from mcp.server.fastmcp import FastMCP
from mcp.types import ImageContent, TextContent

from coreason_rharness.harness import HarnessAsync
from coreason_rharness.models import (
    ExecutionRequest,
    ExecutionResult,
    InteractiveDocument,
    OutputMode,
    RasterImage,
    VectorImage,
)
from coreason_rharness.utils.logger import logger

# Initialize Harness Logic
harness = HarnessAsync()


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Restores durable workspaces on startup and persists them on shutdown."""
    async with harness:
        logger.info("coreason-rharness ready")
        yield


# Initialize MCP Server
mcp = FastMCP("coreason-rharness", lifespan=lifespan)


def render_result(result: ExecutionResult) -> list[TextContent | ImageContent]:
    """Flattens an ExecutionResult into MCP content blocks."""
    output: list[TextContent | ImageContent] = []

    if result.text_output:
        output.append(TextContent(type="text", text=f"OUTPUT:\n{result.text_output}"))

    if result.error_message:
        output.append(TextContent(type="text", text=f"ERROR:\n{result.error_message}"))

    output.append(TextContent(type="text", text=f"Exit Code: {result.exit_code}"))

    if result.execution_duration:
        output.append(TextContent(type="text", text=f"Duration: {result.execution_duration:.4f}s"))

    for artifact in result.artifacts:
        if isinstance(artifact, RasterImage):
            data = base64.b64encode(artifact.data).decode("utf-8")
            output.append(ImageContent(type="image", data=data, mimeType=artifact.media_type))
        elif isinstance(artifact, VectorImage):
            if artifact.raster is not None:
                data = base64.b64encode(artifact.raster).decode("utf-8")
                output.append(ImageContent(type="image", data=data, mimeType="image/png"))
            else:
                output.append(TextContent(type="text", text=f"SVG plot:\n{artifact.markup}"))
        elif isinstance(artifact, InteractiveDocument):
            output.append(TextContent(type="text", text=f"Document: {artifact.reference}"))

    if result.updated_schema is not None:
        output.append(TextContent(type="text", text=f"SCHEMA:\n{result.updated_schema.model_dump_json()}"))

    return output


@mcp.tool()  # type: ignore[misc]
async def execute_r(
    session_id: str,
    code: str,
    format_tabular: bool = True,
    refresh_schema: bool = False,
    target_variable: str | None = None,
    output_mode: Literal["plain", "plot"] | None = None,
) -> list[TextContent | ImageContent]:
    """
    Execute R code against the session's persistent workspace.
    Returns text output, errors, plots and interactive document references.
    """
    try:
        request = ExecutionRequest(
            source_code=code,
            output_mode=OutputMode(output_mode) if output_mode else None,
            format_tabular=format_tabular,
            refresh_schema=refresh_schema,
            target_variable=target_variable,
        )
        result = await harness.execute(request, session_id)
    except Exception as e:
        return [TextContent(type="text", text=f"Error executing R code: {e!s}")]

    return render_result(result)


@mcp.tool()  # type: ignore[misc]
async def clear_workspace(session_id: str) -> str:
    """
    Clear the session's R workspace, including its durable copy.
    """
    try:
        await harness.reset(session_id)
    except Exception as e:
        return f"Error clearing workspace: {e!s}"
    return f"Workspace cleared for session {session_id}."


@mcp.tool()  # type: ignore[misc]
async def describe_dataset(session_id: str, variable: str) -> str:
    """
    Describe a variable in the session's workspace as JSON schema metadata.
    """
    try:
        schema = await harness.describe(variable, session_id)
    except Exception as e:
        return f"Error describing dataset: {e!s}"
    return schema.model_dump_json()


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":  # pragma: no cover
    main()
