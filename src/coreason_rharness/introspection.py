# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rharness

"""Read-only description of a workspace variable.

A secondary script loads the session snapshot, describes one variable as a
single JSON object and never saves. Interpreter chatter around the JSON is
tolerated; the column classification is decided here, not in R.
"""

import json
import math
from pathlib import Path
from typing import Any

from loguru import logger

from coreason_rharness.composer import RTemplate, r_string
from coreason_rharness.config import HarnessConfig
from coreason_rharness.exceptions import SchemaParseError
from coreason_rharness.heuristics import is_tidy_name
from coreason_rharness.models import Categorical, ColumnDescriptor, Numeric, Other, Schema
from coreason_rharness.runner import ProcessRunner

_INTROSPECT = RTemplate(
    """\
suppressPackageStartupMessages(library(jsonlite))
.rh <- new.env()
.rh$snapshot <- @snapshot
.rh$var <- @variable
.rh$cap <- @level_cap
if (!is.na(.rh$snapshot) && file.exists(.rh$snapshot)) {
  load(.rh$snapshot, envir = globalenv())
}

if (!exists(.rh$var, envir = globalenv(), inherits = FALSE)) {
  .rh$out <- list(exists = FALSE, variable = .rh$var)
} else {
  .rh$obj <- get(.rh$var, envir = globalenv())
  .rh$out <- list(variable = .rh$var, exists = TRUE, isDataFrame = is.data.frame(.rh$obj))
  if (is.data.frame(.rh$obj)) {
    .rh$out$nrow <- nrow(.rh$obj)
    .rh$out$ncol <- ncol(.rh$obj)
    .rh$out$colnames <- I(names(.rh$obj))
    .rh$out$categoricalInfo <- setNames(list(), character(0))
    .rh$out$numericCols <- I(character(0))
    .rh$out$numericInfo <- setNames(list(), character(0))
    for (.rh_col in names(.rh$obj)) {
      tryCatch({
        .rh$x <- .rh$obj[[.rh_col]]
        if (is.numeric(.rh$x)) {
          .rh$out$numericCols <- I(c(.rh$out$numericCols, .rh_col))
          .rh$fin <- .rh$x[is.finite(.rh$x)]
          if (length(.rh$fin) > 0) {
            .rh$out$numericInfo[[.rh_col]] <- list(min = min(.rh$fin), max = max(.rh$fin))
          }
        } else if (is.atomic(.rh$x) || is.factor(.rh$x)) {
          .rh$u <- unique(as.character(.rh$x[!is.na(.rh$x)]))
          .rh$out$categoricalInfo[[.rh_col]] <- I(utils::head(.rh$u, .rh$cap))
        }
      }, error = function(e) NULL)
    }
  } else {
    .rh$out$nrow <- NROW(.rh$obj)
    .rh$out$ncol <- NCOL(.rh$obj)
  }
}
cat("\\n", jsonlite::toJSON(.rh$out, auto_unbox = TRUE, digits = NA, na = "null"), "\\n", sep = "")
"""
)


def extract_json_object(output: str) -> str:
    """Returns the text between the first '{' and the last '}'.

    Raises:
        SchemaParseError: If the output holds no braces in that order.
    """
    start = output.find("{")
    end = output.rfind("}")
    if start == -1 or end <= start:
        raise SchemaParseError("No JSON object found in introspection output", raw_output=output)
    return output[start : end + 1]


def parse_introspection_output(output: str) -> dict[str, Any]:
    """Parses noisy interpreter stdout into the introspection payload."""
    candidate = extract_json_object(output)
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise SchemaParseError(f"Malformed introspection output: {e}", raw_output=output) from e
    if not isinstance(payload, dict):
        raise SchemaParseError("Introspection output is not a JSON object", raw_output=output)
    return payload


def _scalar(value: Any) -> Any:
    # jsonlite leaves length-one vectors boxed unless told otherwise.
    if isinstance(value, list) and len(value) == 1:
        return value[0]
    return value


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _as_mapping(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _finite(value: Any) -> float | None:
    value = _scalar(value)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def classify_columns(payload: dict[str, Any], min_levels: int = 2, max_levels: int = 250) -> list[ColumnDescriptor]:
    """Assigns every column one kind.

    Non-numeric columns with a distinct non-missing count within
    [min_levels, max_levels] are categorical; numeric columns with a finite
    range are numeric; anything else is Other.
    """
    categorical = _as_mapping(payload.get("categoricalInfo"))
    numeric_cols = {str(c) for c in _as_list(payload.get("numericCols"))}
    numeric_info = _as_mapping(payload.get("numericInfo"))

    columns: list[ColumnDescriptor] = []
    for raw_name in _as_list(payload.get("colnames")):
        name = str(raw_name)
        kind: Categorical | Numeric | Other = Other()

        if name in numeric_cols:
            info = _as_mapping(numeric_info.get(name))
            low, high = _finite(info.get("min")), _finite(info.get("max"))
            if low is not None and high is not None:
                kind = Numeric(min=low, max=high)
        elif name in categorical:
            values = sorted({str(v) for v in _as_list(categorical[name]) if v is not None})
            if min_levels <= len(values) <= max_levels:
                kind = Categorical(values=values)

        columns.append(ColumnDescriptor(name=name, kind=kind))
    return columns


def build_schema(payload: dict[str, Any], variable: str, config: HarnessConfig) -> Schema:
    exists = bool(_scalar(payload.get("exists", False)))
    if not exists:
        return Schema(variable=variable, exists=False)

    columns: list[ColumnDescriptor] = []
    if _scalar(payload.get("isDataFrame", False)):
        columns = classify_columns(payload, config.categorical_min_levels, config.categorical_max_levels)

    try:
        nrow = int(_scalar(payload.get("nrow")) or 0)
        ncol = int(_scalar(payload.get("ncol")) or len(columns))
    except (TypeError, ValueError) as e:
        raise SchemaParseError(f"Invalid dimensions in introspection output: {e}") from e

    return Schema(
        variable=variable,
        exists=True,
        nrow=nrow,
        ncol=ncol,
        columns=columns,
        is_active=is_tidy_name(variable),
    )


class SchemaIntrospector:
    """Runs the read-only description script against a session snapshot."""

    def __init__(self, config: HarnessConfig, runner: ProcessRunner):
        self.config = config
        self.runner = runner

    def compose(self, snapshot: Path | None, variable: str) -> str:
        return _INTROSPECT.substitute(
            snapshot=r_string(snapshot) if snapshot else "NA_character_",
            variable=r_string(variable),
            # One past the maximum, so over-populated columns stay detectable.
            level_cap=self.config.categorical_max_levels + 1,
        )

    async def introspect(self, snapshot: Path | None, variable: str) -> Schema:
        """Describe a variable as it exists in the snapshot.

        Args:
            snapshot: The session snapshot, or None if the session has none yet.
            variable: Name of the variable to describe.

        Returns:
            Schema: The variable's schema. exists is False when it is not defined.

        Raises:
            SchemaParseError: If the script fails or its output cannot be parsed.
            ProcessSpawnError: If the interpreter cannot be run.
        """
        output = await self.runner.run(self.compose(snapshot, variable), self.config.execution_timeout)
        if output.exit_code != 0:
            logger.warning(f"Introspection of {variable} exited with {output.exit_code}")
            raise SchemaParseError(
                f"Introspection script failed: {output.stderr.strip()}",
                raw_output=output.stdout,
            )

        payload = parse_introspection_output(output.stdout)
        schema = build_schema(payload, variable, self.config)
        logger.debug(f"Introspected {variable}: exists={schema.exists}, columns={len(schema.columns)}")
        return schema
