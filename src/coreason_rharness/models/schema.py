# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rharness

"""Data models describing the shape of a workspace variable."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class Categorical(BaseModel):
    type: Literal["categorical"] = "categorical"
    values: list[str]


class Numeric(BaseModel):
    type: Literal["numeric"] = "numeric"
    min: float
    max: float


class Other(BaseModel):
    type: Literal["other"] = "other"


ColumnKind = Annotated[Union[Categorical, Numeric, Other], Field(discriminator="type")]


class ColumnDescriptor(BaseModel):
    name: str
    kind: ColumnKind


class Schema(BaseModel):
    """Schema of a single workspace variable.

    An empty schema (no columns, exists=False) is also what a failed
    introspection degrades to.
    """

    variable: str = ""
    exists: bool = False
    nrow: int = 0
    ncol: int = 0
    columns: list[ColumnDescriptor] = Field(default_factory=list)
    is_active: bool = Field(
        default=False,
        description="Whether the variable should become the active dataset.",
    )

    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def get(self, name: str) -> ColumnDescriptor | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None
