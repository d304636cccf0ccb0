"""Session, checkpoint and result data structures."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .geometry import RectangleSize, Region


class StitchMode(str, Enum):
    # Scrolls the page to reach its different parts.
    SCROLL = "Scroll"
    # Uses CSS transitions to reach the different parts of the page.
    CSS = "CSS"

    @classmethod
    def coerce(cls, value: object) -> "StitchMode":
        """Map any input onto a stitch mode, defaulting to SCROLL."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.SCROLL


class FailureReport(str, Enum):
    IMMEDIATE = "Immediate"
    ON_CLOSE = "OnClose"


class SessionState(str, Enum):
    DISABLED = "disabled"
    CLOSED = "closed"
    OPEN = "open"
    CLOSING = "closing"


class CaptureSettings(BaseModel):
    """Session-wide capture options, read each time a checkpoint captures."""
    force_full_page: bool = False
    hide_scrollbars: bool = False
    image_rotation_degrees: float = 0
    stitch_mode: StitchMode = StitchMode.SCROLL


class SessionStartInfo(BaseModel):
    agent_id: str
    app_id_or_name: str
    scenario_id_or_name: str
    viewport_size: Optional[RectangleSize] = None
    environment: str = ""
    started_at: str = ""  # ISO timestamp


class MatchResult(BaseModel):
    as_expected: bool
    window_id: Optional[int] = None
    tag: Optional[str] = None


class StepResult(BaseModel):
    """Outcome of one checkpoint as recorded by an engine."""
    index: int  # 1-based position within the session
    tag: Optional[str] = None
    as_expected: bool = True
    is_new: bool = False
    region: Optional[Region] = None


class TestResults(BaseModel):
    app_name: str = ""
    test_name: str = ""
    is_passed: bool = True
    is_new: bool = False
    steps: int = 0
    matches: int = 0
    mismatches: int = 0
    missing: int = 0
    url: Optional[str] = None
    step_results: list[StepResult] = Field(default_factory=list)
