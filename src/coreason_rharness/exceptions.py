# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rharness

"""Error taxonomy for the execution harness.

Only ProcessSpawnError escapes to callers. The other classes are raised
internally and degraded into a partial ExecutionResult by the harness.
"""


class HarnessError(Exception):
    """Base class for all harness errors."""


class ScriptError(HarnessError):
    """The interpreter ran but the script failed (non-zero exit)."""

    def __init__(self, message: str, exit_code: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class ArtifactMissingError(HarnessError):
    """An expected artifact is absent or below the validity threshold."""


class SchemaParseError(HarnessError):
    """The introspection output could not be parsed into a schema."""

    def __init__(self, message: str, raw_output: str = ""):
        super().__init__(message)
        self.raw_output = raw_output


class ProcessSpawnError(HarnessError, RuntimeError):
    """The interpreter is missing, crashed before running, or timed out."""
