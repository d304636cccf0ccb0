"""Pytest configuration and shared fixtures."""

import io
from pathlib import Path
from typing import Optional
from unittest.mock import AsyncMock

import pytest
from PIL import Image, ImageDraw
from playwright.async_api import ElementHandle, Page

from eyes_playwright.driver.driver import Driver
from eyes_playwright.engine.base import ComparisonEngine
from eyes_playwright.eyes import Eyes
from eyes_playwright.models.config import EyesConfig
from eyes_playwright.models.geometry import Region
from eyes_playwright.models.session import MatchResult, SessionStartInfo
from eyes_playwright.models.session import TestResults as SessionResults

USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) TestBrowser/1.0"


# ============================================================================
# Image Helpers
# ============================================================================


def make_png(
    width: int = 20,
    height: int = 10,
    color: tuple = (255, 255, 255, 255),
    square: Optional[tuple] = None,
) -> bytes:
    """Create a PNG, optionally with a filled box ``(left, top, right, bottom, color)``."""
    image = Image.new("RGBA", (width, height), color)
    if square is not None:
        left, top, right, bottom, fill = square
        ImageDraw.Draw(image).rectangle((left, top, right - 1, bottom - 1), fill=fill)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def png_size(png: bytes) -> tuple[int, int]:
    with Image.open(io.BytesIO(png)) as image:
        return image.size


@pytest.fixture
def png() -> bytes:
    return make_png()


# ============================================================================
# Playwright Mock Fixtures
# ============================================================================


def _evaluate(script, arg=None):
    if "navigator.userAgent" in script:
        return USER_AGENT
    if "scrollX" in script:
        return [0, 0]
    if "innerWidth" in script:
        return {"width": 1024, "height": 768}
    return None


@pytest.fixture
def mock_page(png: bytes) -> AsyncMock:
    """Create a mock Playwright page."""
    page = AsyncMock(spec=Page)
    page.url = "https://example.com"
    page.viewport_size = {"width": 1280, "height": 720}
    page.title.return_value = "Example Page"
    page.screenshot = AsyncMock(return_value=png)
    page.evaluate = AsyncMock(side_effect=_evaluate)
    page.goto = AsyncMock()
    page.click = AsyncMock()
    page.fill = AsyncMock()
    page.query_selector = AsyncMock(return_value=None)
    page.query_selector_all = AsyncMock(return_value=[])
    page.wait_for_selector = AsyncMock()
    page.set_viewport_size = AsyncMock()
    return page


def make_handle(x: float = 10, y: float = 20, width: float = 100, height: float = 50,
                scroll: tuple = (0, 0)) -> AsyncMock:
    """Create a mock element handle with a bounding box and a page scroll offset."""
    handle = AsyncMock(spec=ElementHandle)
    handle.bounding_box.return_value = {"x": x, "y": y, "width": width, "height": height}
    handle.evaluate.return_value = list(scroll)
    return handle


@pytest.fixture
def driver(mock_page: AsyncMock) -> Driver:
    return Driver(mock_page)


# ============================================================================
# Engine and Eyes Fixtures
# ============================================================================


class RecordingEngine(ComparisonEngine):
    """In-memory engine that records every call it receives."""

    def __init__(self, events: Optional[list] = None):
        self.events = events if events is not None else []
        self.as_expected = True
        self.start_info: Optional[SessionStartInfo] = None
        self.matches: list[dict] = []
        self.aborted = False

    async def open_session(self, start_info: SessionStartInfo) -> None:
        self.events.append("open")
        self.start_info = start_info

    async def match_window(self, capture, *, tag, ignore_mismatch, match_timeout, region: Optional[Region]):
        self.events.append("capture")
        screenshot = await capture()
        self.matches.append({
            "tag": tag,
            "ignore_mismatch": ignore_mismatch,
            "match_timeout": match_timeout,
            "region": region,
            "screenshot": screenshot,
            "as_expected": self.as_expected,
        })
        return MatchResult(as_expected=self.as_expected, window_id=len(self.matches), tag=tag)

    async def close_session(self) -> SessionResults:
        self.events.append("close")
        mismatches = sum(1 for match in self.matches if not match["as_expected"])
        return SessionResults(
            app_name=self.start_info.app_id_or_name,
            test_name=self.start_info.scenario_id_or_name,
            is_passed=mismatches == 0,
            steps=len(self.matches),
            matches=len(self.matches) - mismatches,
            mismatches=mismatches,
        )

    async def abort_session(self) -> None:
        self.events.append("abort")
        self.aborted = True


@pytest.fixture
def engine() -> RecordingEngine:
    return RecordingEngine()


@pytest.fixture
def eyes_config() -> EyesConfig:
    return EyesConfig(match_timeout_ms=0)


@pytest.fixture
def eyes(engine: RecordingEngine, eyes_config: EyesConfig) -> Eyes:
    return Eyes(engine=engine, config=eyes_config)


@pytest.fixture
def baselines_dir(tmp_path: Path) -> Path:
    return tmp_path / "baselines"
