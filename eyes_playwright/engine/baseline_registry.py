"""Baseline registry — stores and manages checkpoint baselines on disk."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Optional

from eyes_playwright.models.baseline import BaselineEntry, BaselineRegistry
from eyes_playwright.naming import name_key

logger = logging.getLogger(__name__)


class BaselineRegistryManager:
    """Manages baseline images and their JSON registry."""

    def __init__(self, registry_path: Path, baselines_dir: Path):
        self.registry_path = registry_path
        self.baselines_dir = baselines_dir

    def load(self) -> BaselineRegistry:
        """Load registry from disk, or create a new one."""
        if self.registry_path.exists():
            try:
                with open(self.registry_path) as f:
                    data = json.load(f)
                return BaselineRegistry(**data)
            except Exception as e:
                logger.warning("Failed to load baseline registry: %s. Creating new.", e)
        return BaselineRegistry()

    def save(self, registry: BaselineRegistry) -> None:
        """Persist registry to disk."""
        self.registry_path.parent.mkdir(parents=True, exist_ok=True)
        registry.last_updated = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        with open(self.registry_path, "w") as f:
            json.dump(registry.model_dump(), f, indent=2)
        logger.debug("Saved baseline registry to %s", self.registry_path)

    def _test_prefix(self, app_name: str, test_name: str) -> str:
        return f"{name_key(app_name)}__{name_key(test_name)}__"

    def _baseline_key(self, app_name: str, test_name: str, step_index: int) -> str:
        return f"{self._test_prefix(app_name, test_name)}{step_index:03d}"

    def _image_path(self, app_name: str, test_name: str, step_index: int) -> Path:
        return (self.baselines_dir / "images" / name_key(app_name) / name_key(test_name)
                / f"step_{step_index:03d}.png")

    def get_baseline(
        self, registry: BaselineRegistry, app_name: str, test_name: str, step_index: int,
    ) -> Optional[BaselineEntry]:
        """Look up the baseline of one checkpoint position."""
        key = self._baseline_key(app_name, test_name, step_index)
        entry = registry.baselines.get(key)
        if entry is None:
            return None
        # Verify the image file still exists
        abs_path = self.baselines_dir / entry.image_path
        if not abs_path.exists():
            logger.warning("Baseline image missing for %s: %s", key, abs_path)
            return None
        return entry

    def count_steps(self, registry: BaselineRegistry, app_name: str, test_name: str) -> int:
        """Number of checkpoint baselines stored for a test."""
        prefix = self._test_prefix(app_name, test_name)
        return sum(1 for key in registry.baselines if key.startswith(prefix))

    def store_baseline(
        self,
        registry: BaselineRegistry,
        app_name: str,
        test_name: str,
        step_index: int,
        tag: Optional[str],
        png: bytes,
        width: int,
        height: int,
        image_hash: str,
    ) -> BaselineEntry:
        """Write a checkpoint image into the baselines directory and register it."""
        dest = self._image_path(app_name, test_name, step_index)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(png)

        # Relative path from baselines_dir for portability
        rel_path = str(dest.relative_to(self.baselines_dir))

        entry = BaselineEntry(
            app_name=app_name,
            test_name=test_name,
            step_index=step_index,
            tag=tag,
            width=width,
            height=height,
            image_path=rel_path,
            captured_at=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            image_hash=image_hash,
        )

        key = self._baseline_key(app_name, test_name, step_index)
        registry.baselines[key] = entry
        logger.info("Stored baseline for %s (%dx%d)", key, width, height)
        return entry

    def reset(self) -> int:
        """Delete the registry and all baseline images. Returns the number removed."""
        registry = self.load()
        removed = 0
        for entry in registry.baselines.values():
            path = self.baselines_dir / entry.image_path
            if path.exists():
                path.unlink()
                removed += 1
        if self.registry_path.exists():
            self.registry_path.unlink()
        logger.info("Removed %d baseline images from %s", removed, self.baselines_dir)
        return removed
