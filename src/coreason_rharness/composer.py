# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rharness

"""Builds complete R scripts around caller snippets.

Every value injected into a script (paths, names, the snippet itself) goes
through ``r_string``/``r_vector`` and an ``@``-delimited template, so the
snippet can never break out of the string literal it is parsed from.
"""

import string
from pathlib import Path
from typing import Iterable

from coreason_rharness.config import HarnessConfig
from coreason_rharness.models import ArtifactPaths, ExecutionRequest, OutputMode, SnapshotBinding

PLOT_SENTINEL = "Plot generated successfully"
DOCUMENT_SENTINEL = "HTML_WIDGET_GENERATED"


class RTemplate(string.Template):
    delimiter = "@"


def r_string(value: str | Path) -> str:
    """Renders a Python string as a double-quoted R string literal."""
    text = str(value)
    if isinstance(value, Path):
        text = value.as_posix()
    escaped = (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("\0", "")
    )
    return f'"{escaped}"'


def r_vector(values: Iterable[str]) -> str:
    return "c(" + ", ".join(r_string(v) for v in values) + ")"


def r_bool(value: bool) -> str:
    return "TRUE" if value else "FALSE"


_PREAMBLE = RTemplate(
    """\
options(repos = c(CRAN = @cran_mirror))
setwd(@data_dir)

.rh <- new.env()
.rh$snapshot <- @load_from
if (!is.na(.rh$snapshot) && file.exists(.rh$snapshot)) {
  load(.rh$snapshot, envir = globalenv())
}

invisible(lapply(@packages, function(pkg) {
  tryCatch(
    suppressPackageStartupMessages(library(pkg, character.only = TRUE)),
    error = function(e) NULL
  )
}))
invisible(lapply(@datasets, function(ds) {
  if (exists(ds, envir = globalenv(), inherits = FALSE)) return(NULL)
  tryCatch(data(list = ds, envir = globalenv()), warning = function(w) NULL, error = function(e) NULL)
}))

.rh$error <- NULL
.rh$result <- NULL
.rh$run <- function(code) {
  exprs <- parse(text = code, keep.source = FALSE)
  for (expr in exprs) {
    .rh$result <- withVisible(eval(expr, envir = globalenv()))
  }
}
.rh$code <- @snippet
"""
)

_PLOT_BODY = RTemplate(
    """\
tryCatch({
@open_device
}, error = function(e) {
  .rh$error <- conditionMessage(e)
})
tryCatch({
  .rh$run(.rh$code)
  if (!is.null(.rh$result) && .rh$result$visible) {
    print(.rh$result$value)
  }
}, error = function(e) {
  .rh$error <- conditionMessage(e)
})
if (!is.null(.rh$error)) {
  cat("Error:", .rh$error, "\\n")
}
if (grDevices::dev.cur() > 1) {
  invisible(grDevices::dev.off())
}
"""
)

_SVG_DEVICE = RTemplate(
    """\
if (requireNamespace("svglite", quietly = TRUE)) {
  svglite::svglite(@plot_path, width = @width, height = @height)
} else {
  grDevices::svg(@plot_path, width = @width, height = @height)
}"""
)

_PNG_DEVICE = RTemplate(
    """\
grDevices::png(@plot_path, width = @width, height = @height, units = "in", res = @resolution)"""
)

_PLAIN_BODY = RTemplate(
    """\
grDevices::pdf(NULL)
tryCatch(.rh$run(.rh$code), error = function(e) {
  .rh$error <- conditionMessage(e)
})

tryCatch({
  if (is.null(.rh$error) && !is.null(.rh$result)) {
    .rh$value <- .rh$result$value
    .rh$widget <- NULL
    .rh$is_gt <- FALSE
    if (inherits(.rh$value, "htmlwidget") || any(c("datatables", "DT") %in% class(.rh$value))) {
      .rh$widget <- .rh$value
    } else if (inherits(.rh$value, "formattable")) {
      if (requireNamespace("formattable", quietly = TRUE)) {
        .rh$widget <- formattable::as.htmlwidget(.rh$value)
      }
    } else if (inherits(.rh$value, "gt_tbl")) {
      .rh$is_gt <- TRUE
    } else if (@format_tabular && .rh$result$visible && is.data.frame(.rh$value) &&
               requireNamespace("gt", quietly = TRUE)) {
      .rh$value <- gt::gt(utils::head(as.data.frame(.rh$value), @max_rows))
      .rh$is_gt <- TRUE
    }

    if (.rh$is_gt && requireNamespace("gt", quietly = TRUE)) {
      gt::gtsave(.rh$value, @document_path)
      cat(@document_sentinel, "\\n", sep = "")
    } else if (!is.null(.rh$widget) && requireNamespace("htmlwidgets", quietly = TRUE)) {
      htmlwidgets::saveWidget(.rh$widget, @document_path, selfcontained = @self_contained)
      cat(@document_sentinel, "\\n", sep = "")
    } else if (.rh$result$visible && !is.null(.rh$value)) {
      print(.rh$value)
    }
  }
}, error = function(e) {
  .rh$error <- conditionMessage(e)
})
"""
)

_SAVE = RTemplate(
    """\
save(list = setdiff(ls(globalenv(), all.names = TRUE), ".rh"), file = @save_to, envir = globalenv())
"""
)

_PLOT_EPILOGUE = RTemplate(
    """\
cat(@plot_sentinel, "\\n", sep = "")
"""
)

_PLAIN_EPILOGUE = """\
if (!is.null(.rh$error)) {
  message("Error: ", .rh$error)
  quit(save = "no", status = 1)
}
"""


class ScriptComposer:
    """Wraps caller snippets with the harness preamble for a given output mode."""

    def __init__(self, config: HarnessConfig):
        self.config = config

    def preamble(self, code: str, binding: SnapshotBinding) -> str:
        load_from = r_string(binding.load_from) if binding.load_from else "NA_character_"
        return _PREAMBLE.substitute(
            cran_mirror=r_string(self.config.cran_mirror),
            data_dir=r_string(self.config.data_dir.resolve()),
            load_from=load_from,
            packages=r_vector(self.config.preload_packages),
            datasets=r_vector(self.config.preload_datasets),
            snippet=r_string(code),
        )

    def _open_device(self, plot_path: Path) -> str:
        if self.config.plot_device == "png":
            return _PNG_DEVICE.substitute(
                plot_path=r_string(plot_path),
                width=self.config.plot_width,
                height=self.config.plot_height,
                resolution=self.config.plot_resolution,
            )
        return _SVG_DEVICE.substitute(
            plot_path=r_string(plot_path),
            width=self.config.plot_width,
            height=self.config.plot_height,
        )

    def compose(
        self,
        request: ExecutionRequest,
        mode: OutputMode,
        binding: SnapshotBinding,
        paths: ArtifactPaths,
    ) -> str:
        """Returns the full script text for one request. Never raises."""
        parts = [self.preamble(request.source_code, binding)]

        if mode is OutputMode.PLOT:
            parts.append(_PLOT_BODY.substitute(open_device=self._open_device(paths.plot_path)))
        else:
            parts.append(
                _PLAIN_BODY.substitute(
                    format_tabular=r_bool(request.format_tabular),
                    max_rows=self.config.max_table_rows,
                    document_path=r_string(paths.document_path),
                    document_sentinel=r_string(DOCUMENT_SENTINEL),
                    self_contained=r_bool(self.config.self_contained_documents),
                )
            )

        parts.append(_SAVE.substitute(save_to=r_string(binding.save_to)))

        if mode is OutputMode.PLOT:
            parts.append(_PLOT_EPILOGUE.substitute(plot_sentinel=r_string(PLOT_SENTINEL)))
        else:
            parts.append(_PLAIN_EPILOGUE)

        return "\n".join(parts)
