"""Local comparison engine — matches checkpoints against baselines on disk.

A checkpoint matches when the decoded pixels of the captured region are
identical to the stored baseline (compared by SHA-256 digest). The first run
of a test stores its checkpoints as the new baseline.
"""

from __future__ import annotations

import asyncio
import hashlib
import io
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from PIL import Image

from eyes_playwright.errors import EyesError, UsageError
from eyes_playwright.models.baseline import BaselineRegistry
from eyes_playwright.models.config import EyesConfig
from eyes_playwright.models.geometry import Region
from eyes_playwright.models.session import MatchResult, SessionStartInfo, StepResult, TestResults
from eyes_playwright.naming import name_key

from .base import CaptureFn, ComparisonEngine
from .baseline_registry import BaselineRegistryManager

logger = logging.getLogger(__name__)


def crop_image(png: bytes, region: Optional[Region]) -> Image.Image:
    """Decode a PNG and crop it to ``region`` (clipped to the image bounds)."""
    with Image.open(io.BytesIO(png)) as source:
        image = source.convert("RGBA")
    if region is None:
        return image
    box = (
        min(region.left, image.width),
        min(region.top, image.height),
        min(region.right, image.width),
        min(region.bottom, image.height),
    )
    if box[2] <= box[0] or box[3] <= box[1]:
        raise EyesError(
            f"Region {region.left},{region.top} {region.width}x{region.height} is outside "
            f"the {image.width}x{image.height} screenshot"
        )
    return image.crop(box)


def image_digest(image: Image.Image) -> str:
    digest = hashlib.sha256(f"{image.mode}:{image.width}x{image.height}:".encode())
    digest.update(image.tobytes())
    return digest.hexdigest()


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@dataclass
class _ActiveSession:
    start_info: SessionStartInfo
    registry: BaselineRegistry
    steps: list[StepResult] = field(default_factory=list)
    mismatched_images: dict[int, bytes] = field(default_factory=dict)
    # Baseline PNGs written by this session; the registry only learns of them on close
    stored_images: list[Path] = field(default_factory=list)

    @property
    def app_name(self) -> str:
        return self.start_info.app_id_or_name

    @property
    def test_name(self) -> str:
        return self.start_info.scenario_id_or_name


class LocalComparisonEngine(ComparisonEngine):
    """File-backed comparison engine."""

    def __init__(
        self,
        baselines_dir: Path,
        retry_interval_ms: int = 500,
        default_match_timeout_ms: int = 2000,
    ):
        self.baselines_dir = Path(baselines_dir)
        self.retry_interval_ms = retry_interval_ms
        self.default_match_timeout_ms = default_match_timeout_ms
        self.registry_manager = BaselineRegistryManager(
            registry_path=self.baselines_dir / "registry.json",
            baselines_dir=self.baselines_dir,
        )
        self._session: _ActiveSession | None = None

    @classmethod
    def from_config(cls, config: EyesConfig) -> "LocalComparisonEngine":
        return cls(
            baselines_dir=Path(config.baselines_dir),
            retry_interval_ms=config.match_retry_interval_ms,
            default_match_timeout_ms=config.match_timeout_ms,
        )

    @property
    def is_session_open(self) -> bool:
        return self._session is not None

    async def open_session(self, start_info: SessionStartInfo) -> None:
        if self._session is not None:
            raise UsageError(
                f"A session for '{self._session.test_name}' is already open on this engine"
            )
        registry = self.registry_manager.load()
        self._session = _ActiveSession(start_info=start_info, registry=registry)
        logger.info("Local session opened: '%s' of '%s' (%d baselines known)",
                    start_info.scenario_id_or_name, start_info.app_id_or_name,
                    self.registry_manager.count_steps(
                        registry, start_info.app_id_or_name, start_info.scenario_id_or_name))

    async def match_window(
        self,
        capture: CaptureFn,
        *,
        tag: Optional[str],
        ignore_mismatch: bool,
        match_timeout: Optional[int],
        region: Optional[Region],
    ) -> MatchResult:
        session = self._require_session()
        index = len(session.steps) + 1
        baseline = self.registry_manager.get_baseline(
            session.registry, session.app_name, session.test_name, index,
        )
        timeout_ms = self.default_match_timeout_ms if match_timeout is None else match_timeout
        deadline = time.monotonic() + timeout_ms / 1000

        attempts = 0
        while True:
            attempts += 1
            image = crop_image(await capture(), region)
            digest = image_digest(image)
            if baseline is None or digest == baseline.image_hash:
                break
            if time.monotonic() >= deadline:
                break
            logger.debug("Checkpoint #%d does not match yet (attempt %d), retrying in %dms",
                         index, attempts, self.retry_interval_ms)
            await asyncio.sleep(self.retry_interval_ms / 1000)

        is_new = baseline is None
        as_expected = is_new or digest == baseline.image_hash
        result = MatchResult(as_expected=as_expected, window_id=index, tag=tag)

        if not as_expected and ignore_mismatch:
            logger.info("Checkpoint #%d%s mismatched (ignored)", index, _tag_suffix(tag))
            return result

        if is_new:
            entry = self.registry_manager.store_baseline(
                session.registry, session.app_name, session.test_name, index, tag,
                encode_png(image), image.width, image.height, digest,
            )
            session.stored_images.append(self.baselines_dir / entry.image_path)
        elif not as_expected:
            session.mismatched_images[index] = encode_png(image)

        session.steps.append(StepResult(
            index=index, tag=tag, as_expected=as_expected, is_new=is_new, region=region,
        ))
        logger.info("Checkpoint #%d%s: %s after %d attempt(s)", index, _tag_suffix(tag),
                    "new baseline" if is_new else ("match" if as_expected else "MISMATCH"),
                    attempts)
        return result

    async def close_session(self) -> TestResults:
        session = self._require_session()
        self._session = None
        self.registry_manager.save(session.registry)

        steps = len(session.steps)
        matches = sum(1 for step in session.steps if step.as_expected)
        mismatches = steps - matches
        known = self.registry_manager.count_steps(session.registry, session.app_name, session.test_name)
        missing = max(known - steps, 0)

        url = None
        if session.mismatched_images:
            url = self._write_mismatches(session)

        results = TestResults(
            app_name=session.app_name,
            test_name=session.test_name,
            is_passed=mismatches == 0 and missing == 0,
            is_new=steps > 0 and all(step.is_new for step in session.steps),
            steps=steps,
            matches=matches,
            mismatches=mismatches,
            missing=missing,
            url=url,
            step_results=session.steps,
        )
        logger.info("Local session closed: %d steps, %d matches, %d mismatches, %d missing",
                    steps, matches, mismatches, missing)
        return results

    async def abort_session(self) -> None:
        if self._session is None:
            return
        session = self._session
        self._session = None
        for path in session.stored_images:
            path.unlink(missing_ok=True)
        logger.info("Local session for '%s' aborted, discarded %d new baselines",
                    session.test_name, len(session.stored_images))

    def _require_session(self) -> _ActiveSession:
        if self._session is None:
            raise UsageError("No session is open on this engine")
        return self._session

    def _write_mismatches(self, session: _ActiveSession) -> str:
        out_dir = self.baselines_dir / "mismatches" / name_key(session.app_name) / name_key(session.test_name)
        out_dir.mkdir(parents=True, exist_ok=True)
        for index, png in session.mismatched_images.items():
            (out_dir / f"step_{index:03d}.png").write_bytes(png)
        logger.debug("Wrote %d mismatching captures to %s", len(session.mismatched_images), out_dir)
        return out_dir.resolve().as_uri()


def _tag_suffix(tag: Optional[str]) -> str:
    return f" '{tag}'" if tag else ""
