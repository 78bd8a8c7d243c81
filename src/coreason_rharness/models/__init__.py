# src/coreason_rharness/models/__init__.py

"""
Data models for the execution harness.
"""

from .execution import (
    Artifact,
    ArtifactPaths,
    ExecutionRequest,
    ExecutionResult,
    InteractiveDocument,
    OutputMode,
    ProcessOutput,
    RasterImage,
    SnapshotBinding,
    VectorImage,
)
from .schema import Categorical, ColumnDescriptor, ColumnKind, Numeric, Other, Schema

__all__ = [
    "Artifact",
    "ArtifactPaths",
    "Categorical",
    "ColumnDescriptor",
    "ColumnKind",
    "ExecutionRequest",
    "ExecutionResult",
    "InteractiveDocument",
    "Numeric",
    "Other",
    "OutputMode",
    "ProcessOutput",
    "RasterImage",
    "Schema",
    "SnapshotBinding",
    "VectorImage",
]
