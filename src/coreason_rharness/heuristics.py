# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rharness

"""Pattern-matching rules that infer structure from snippet text.

The snippets come from a language model and carry no structured metadata,
so these rules are best-effort. Each one is a plain function so it can be
tested and swapped in isolation.
"""

import re

from coreason_rharness.models import OutputMode, Schema

# A syntactic R name: starts with a letter, or a dot not followed by a digit.
R_NAME = r"(?:[A-Za-z]|\.(?![0-9]))[A-Za-z0-9._]*"

_LEFT_ASSIGNMENT = re.compile(
    rf"(?:^|[;\n])[ \t]*(?P<name>{R_NAME})[ \t]*(?:<<-|<-|=(?!=))",
)
_RIGHT_ASSIGNMENT = re.compile(
    rf"(?:->>|->)[ \t]*(?P<name>{R_NAME})[ \t]*(?=$|[;\n])",
    re.MULTILINE,
)
_OPENERS = {"(": ")", "[": "]"}
_FUNCTION_HEAD = re.compile(r"(?:(?<![A-Za-z0-9._])function|\\)$")

PLOT_MARKERS = ("plot(", "ggplot", "hist(", "barplot", "boxplot")

TIDY_SUFFIX = "_tidy"


def _mask(code: str, brackets: bool = True) -> str:
    """Blanks out comments, string literals and (optionally) bracketed text.

    Newlines survive so statement boundaries stay intact. With brackets
    masked, what remains are statement-level tokens, and argument names
    such as `aes(x = year)` are not mistaken for assignments. Function
    bodies are masked too, since their assignments are local.
    """
    out: list[str] = []
    closers: list[str] = []
    quote: str | None = None
    escaped = False
    in_comment = False
    for ch in code:
        if ch == "\n":
            in_comment = False
            out.append(ch)
            continue
        if in_comment:
            out.append(" ")
            continue
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            out.append(" ")
            continue
        if ch in ("\"'`" if brackets else "\"'"):
            quote = ch
            out.append(" ")
        elif ch == "#":
            in_comment = True
            out.append(" ")
        elif brackets and ch in _OPENERS:
            closers.append(_OPENERS[ch])
            out.append(" ")
        elif brackets and ch == "{" and (closers or _FUNCTION_HEAD.search("".join(out).rstrip())):
            closers.append("}")
            out.append(" ")
        elif closers and ch == closers[-1]:
            closers.pop()
            out.append(" ")
        else:
            out.append(" " if closers else ch)
    return "".join(out)


def detect_target_variable(code: str, default: str) -> str:
    """Returns the name assigned by the last top-level assignment in the snippet.

    Falls back to ``default`` when the snippet assigns nothing at a statement
    boundary (e.g. ``head(x)``).
    """
    text = _mask(code)
    candidates: list[tuple[int, str]] = []
    for match in _LEFT_ASSIGNMENT.finditer(text):
        candidates.append((match.start("name"), match.group("name")))
    for match in _RIGHT_ASSIGNMENT.finditer(text):
        candidates.append((match.start("name"), match.group("name")))
    if not candidates:
        return default
    candidates.sort()
    return candidates[-1][1]


def is_tidy_name(name: str) -> bool:
    """Names ending in ``_tidy`` mark the reshaped dataset that becomes active."""
    return len(name) > len(TIDY_SUFFIX) and name.endswith(TIDY_SUFFIX)


def infer_output_mode(code: str) -> OutputMode:
    """Guesses whether a snippet draws a plot from the calls it contains."""
    if any(marker in code for marker in PLOT_MARKERS):
        return OutputMode.PLOT
    return OutputMode.PLAIN


def find_unknown_columns(code: str, variable: str, schema: Schema) -> list[str]:
    """Lists ``variable$column`` references to columns the schema does not know.

    Used to explain failures caused by column names that never existed.
    """
    if not schema.exists or not schema.columns:
        return []
    pattern = re.compile(rf"(?<![A-Za-z0-9._]){re.escape(variable)}\$(?P<col>{R_NAME}|`[^`]+`)")
    known = set(schema.column_names())
    unknown: list[str] = []
    for match in pattern.finditer(_mask(code, brackets=False)):
        column = match.group("col").strip("`")
        if column not in known and column not in unknown:
            unknown.append(column)
    return unknown
