"""Configuration model for eyes-playwright."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .geometry import RectangleSize
from .session import FailureReport, StitchMode

DEFAULT_EYES_SERVER = "https://eyessdk.applitools.com"


class EyesConfig(BaseModel):
    # Comparison service
    server_url: str = DEFAULT_EYES_SERVER
    is_disabled: bool = False

    # Session defaults
    app_name: Optional[str] = None
    viewport: Optional[RectangleSize] = None

    # Local baselines
    baselines_dir: str = ".eyes/baselines"

    # Matching
    match_timeout_ms: int = Field(default=2000, ge=0)
    match_retry_interval_ms: int = Field(default=500, gt=0)
    failure_report: FailureReport = FailureReport.ON_CLOSE

    # Element lookup
    implicit_wait_ms: int = Field(default=0, ge=0)

    # Capture
    stitch_mode: StitchMode = StitchMode.SCROLL
    force_full_page: bool = False
    hide_scrollbars: bool = False
    image_rotation_degrees: float = 0

    @field_validator("server_url", mode="before")
    @classmethod
    def resolve_env_server_url(cls, v: str) -> str:
        if isinstance(v, str) and v.startswith("env:"):
            env_var = v[4:]
            resolved = os.environ.get(env_var)
            if resolved is None:
                raise ValueError(f"Environment variable '{env_var}' not set")
            return resolved
        return v

    @field_validator("stitch_mode", mode="before")
    @classmethod
    def default_unknown_stitch_mode(cls, v: object) -> StitchMode:
        return StitchMode.coerce(v)

    @classmethod
    def load(cls, path: str | Path) -> "EyesConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)
