"""Local baseline registry data structures."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class BaselineEntry(BaseModel):
    app_name: str
    test_name: str
    step_index: int  # 1-based checkpoint position within the test
    tag: Optional[str] = None
    width: int
    height: int
    image_path: str  # relative path from baselines_dir to the PNG
    captured_at: str  # ISO timestamp
    image_hash: str  # SHA-256 hex digest of the decoded RGBA pixels


class BaselineRegistry(BaseModel):
    last_updated: str = ""
    baselines: dict[str, BaselineEntry] = Field(default_factory=dict)
    # key format: "{app_key}__{test_key}__{step_index:03d}"
