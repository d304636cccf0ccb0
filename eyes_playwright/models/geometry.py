"""Geometry primitives shared by the driver, the orchestrator and the engines."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RectangleSize(BaseModel):
    width: int = Field(ge=0)
    height: int = Field(ge=0)

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


class Location(BaseModel):
    x: int = 0
    y: int = 0


class Region(BaseModel):
    """A rectangle to compare.

    Relative regions are measured on the page and moved into the frame of the
    captured screenshot before matching: unchanged for a full-page capture,
    shifted by the scroll position for a viewport capture. Absolute regions
    are taken as supplied.
    """
    top: int = Field(ge=0)
    left: int = Field(ge=0)
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    is_relative_to_screenshot: bool = False

    @property
    def right(self) -> int:
        return self.left + self.width

    @property
    def bottom(self) -> int:
        return self.top + self.height
