"""Eyes — visual checkpoints scheduled on a Playwright driver's control flow.

An ``Eyes`` instance drives one visual test at a time: ``open`` starts a
session on the comparison engine, each ``check_*`` call submits one
checkpoint, and ``close`` returns the aggregated result. All of these are
units of work on the driver's ``ControlFlow``, so they run in the order they
were issued relative to page actions scheduled on the same driver.
"""

from __future__ import annotations

import asyncio
import logging
import numbers
import time
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from eyes_playwright.capture.screenshot import capture_screenshot
from eyes_playwright.driver.driver import Driver, WebElement
from eyes_playwright.driver.element_finder import ElementFinder
from eyes_playwright.engine.base import ComparisonEngine
from eyes_playwright.engine.local import LocalComparisonEngine
from eyes_playwright.errors import (
    ElementResolutionError,
    EyesError,
    MatchFailure,
    UsageError,
    build_test_error,
)
from eyes_playwright.flow import ControlFlow
from eyes_playwright.models.config import EyesConfig
from eyes_playwright.models.geometry import RectangleSize, Region
from eyes_playwright.models.session import (
    CaptureSettings,
    FailureReport,
    MatchResult,
    SessionStartInfo,
    SessionState,
    StitchMode,
    TestResults,
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"
AGENT_ID = f"eyes-playwright/{VERSION}"


class Eyes:
    """Orchestrates visual test sessions against a comparison engine."""

    def __init__(
        self,
        engine: ComparisonEngine | None = None,
        config: EyesConfig | None = None,
        is_disabled: bool | None = None,
    ):
        self.config = config or EyesConfig()
        self._is_disabled = self.config.is_disabled if is_disabled is None else is_disabled
        if engine is None and not self._is_disabled:
            engine = LocalComparisonEngine.from_config(self.config)
        self._engine = engine

        self.capture_settings = CaptureSettings(
            force_full_page=self.config.force_full_page,
            hide_scrollbars=self.config.hide_scrollbars,
            image_rotation_degrees=self.config.image_rotation_degrees,
            stitch_mode=self.config.stitch_mode,
        )
        self._failure_report = FailureReport.ON_CLOSE
        self._failure_report_overridden = False
        self.set_failure_report(self.config.failure_report)

        self._state = SessionState.DISABLED if self._is_disabled else SessionState.CLOSED
        self._driver: Driver | None = None
        self._flow: ControlFlow | None = None
        self._session: SessionStartInfo | None = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def agent_id(self) -> str:
        return AGENT_ID

    @property
    def server_url(self) -> str:
        return self.config.server_url

    @property
    def is_disabled(self) -> bool:
        return self._is_disabled

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is SessionState.OPEN

    @property
    def engine(self) -> ComparisonEngine | None:
        return self._engine

    @property
    def driver(self) -> Driver | None:
        return self._driver

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def open(
        self,
        driver: Driver,
        app_name: str,
        test_name: str,
        viewport_size: RectangleSize | dict | None = None,
    ) -> asyncio.Future:
        """Start a visual test on ``driver``.

        The driver's control flow is bound right away; the session itself
        starts once the flow reaches this unit.
        """
        self._driver = driver
        self._flow = driver.control_flow()

        if self._is_disabled:
            logger.debug("open(): ignored, Eyes is disabled")
            return self._noop("eyes.open (disabled)")

        if viewport_size is None:
            viewport_size = self.config.viewport
        size = _validate(RectangleSize, viewport_size) if viewport_size is not None else None
        return self._flow.execute(
            partial(self._open_session, app_name, test_name, size), f"eyes.open({test_name})",
        )

    async def _open_session(self, app_name: str, test_name: str, viewport_size: RectangleSize | None) -> None:
        if self._state is not SessionState.CLOSED:
            raise UsageError(
                f"Cannot open '{test_name}': a visual test is already {self._state.value}; close it first"
            )
        if viewport_size is not None:
            await self._driver.set_viewport_size(viewport_size)
        else:
            viewport_size = await self._driver.get_viewport_size()

        start_info = SessionStartInfo(
            agent_id=self.agent_id,
            app_id_or_name=app_name,
            scenario_id_or_name=test_name,
            viewport_size=viewport_size,
            environment=await self.get_inferred_environment(),
            started_at=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        )
        logger.info("Opening visual test '%s' of '%s' (viewport %s)", test_name, app_name, viewport_size)
        await self._engine.open_session(start_info)
        self._session = start_info
        self._state = SessionState.OPEN

    def close(self, throw_ex: bool = True) -> asyncio.Future:
        """Finish the visual test and resolve with its ``TestResults``.

        A result that is not passed raises a ``TestFailure`` unless
        ``throw_ex`` is false.
        """
        if self._is_disabled:
            logger.debug("close(): ignored, Eyes is disabled")
            return self._noop("eyes.close (disabled)")
        return self._schedule(partial(self._close_session, throw_ex), "eyes.close")

    async def _close_session(self, throw_ex: bool) -> TestResults:
        self._ensure_open("close")
        session = self._session
        self._state = SessionState.CLOSING
        try:
            results = await self._engine.close_session()
        finally:
            self._state = SessionState.CLOSED
            self._session = None

        logger.info("Visual test '%s' closed: %s (%d steps, %d mismatches, %d missing)",
                    session.scenario_id_or_name, "passed" if results.is_passed else "FAILED",
                    results.steps, results.mismatches, results.missing)
        if results.is_passed or not throw_ex:
            return results
        raise build_test_error(results, session.scenario_id_or_name, session.app_id_or_name)

    def abort_if_not_closed(self) -> asyncio.Future:
        """Discard the current session if it is still open."""
        if self._is_disabled or self._flow is None:
            return self._noop("eyes.abort_if_not_closed (nothing to abort)")
        return self._flow.execute(self._abort_session, "eyes.abort_if_not_closed")

    async def _abort_session(self) -> None:
        if self._state is not SessionState.OPEN:
            return
        logger.warning("Aborting visual test '%s'", self._session.scenario_id_or_name)
        self._state = SessionState.CLOSING
        try:
            await self._engine.abort_session()
        finally:
            self._state = SessionState.CLOSED
            self._session = None

    # ------------------------------------------------------------------
    # Failure reporting
    # ------------------------------------------------------------------

    def set_failure_report(self, mode: FailureReport | str) -> None:
        """Choose when mismatches raise.

        ``IMMEDIATE`` is kept as ``ON_CLOSE`` plus an override that makes
        every checkpoint raise on mismatch; the engine itself never raises
        on a mismatch.
        """
        mode = FailureReport(mode)
        if mode is FailureReport.IMMEDIATE:
            self._failure_report_overridden = True
            mode = FailureReport.ON_CLOSE
        else:
            self._failure_report_overridden = False
        self._failure_report = mode

    def get_failure_report(self) -> FailureReport:
        return self._failure_report

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def check_window(self, tag: Optional[str] = None, match_timeout: Optional[int] = None) -> asyncio.Future:
        """Visually validate the whole window."""
        if self._is_disabled:
            return self._noop("eyes.check_window (disabled)")
        return self._schedule(
            partial(self._check, tag, match_timeout, None), f"eyes.check_window({tag})",
        )

    def check_region(
        self,
        region: Region | dict,
        tag: Optional[str] = None,
        match_timeout: Optional[int] = None,
    ) -> asyncio.Future:
        """Visually validate a rectangle given in screenshot coordinates.

        ``region`` is a ``Region`` or a mapping with top, left, width and height.
        """
        if self._is_disabled:
            return self._noop("eyes.check_region (disabled)")
        request = _validate(Region, region).model_copy(update={"is_relative_to_screenshot": False})

        async def resolve() -> Region:
            return request

        return self._schedule(
            partial(self._check, tag, match_timeout, resolve), f"eyes.check_region({tag})",
        )

    def check_region_by_element(
        self,
        element: WebElement,
        tag: Optional[str] = None,
        match_timeout: Optional[int] = None,
    ) -> asyncio.Future:
        """Visually validate the region occupied by ``element``."""
        if self._is_disabled:
            return self._noop("eyes.check_region_by_element (disabled)")
        return self._schedule(
            partial(self._check, tag, match_timeout, partial(self._element_region, element)),
            f"eyes.check_region_by_element({tag})",
        )

    def check_region_by(
        self,
        selector: str,
        tag: Optional[str] = None,
        match_timeout: Optional[int] = None,
    ) -> asyncio.Future:
        """Visually validate the region of the element matched by ``selector``.

        Fails with ``ElementResolutionError`` before anything is matched when
        the selector finds no element.
        """
        if self._is_disabled:
            return self._noop("eyes.check_region_by (disabled)")
        return self._schedule(
            partial(self._check, tag, match_timeout, partial(self._selector_region, selector)),
            f"eyes.check_region_by({selector})",
        )

    async def _selector_region(self, selector: str) -> Region:
        element = await self._driver.find_element(selector)
        return await self._element_region(element)

    async def _element_region(self, element: WebElement) -> Region:
        # Size first, then location; both are needed for the rectangle
        size = await element.get_size()
        location = await element.get_location()
        region = _clip_to_origin(location.x, location.y, size.width, size.height)
        if region is None:
            raise ElementResolutionError(
                str(getattr(element, "selector", element)),
                f"element has no visible area ({size} at {location.x},{location.y})",
            )
        return region

    async def _to_capture_frame(self, region: Region) -> Region:
        """Map a page-relative region onto the image the next capture produces."""
        if self.capture_settings.force_full_page:
            return region
        # A viewport capture starts at the current scroll position
        scroll = await self._require_driver().get_scroll_position()
        framed = _clip_to_origin(region.left - scroll.x, region.top - scroll.y, region.width, region.height)
        if framed is None:
            raise EyesError(
                f"Region {region.left},{region.top} {region.width}x{region.height} is scrolled "
                f"out of the viewport (scroll position {scroll.x},{scroll.y})"
            )
        return framed

    async def _check(
        self,
        tag: Optional[str],
        match_timeout: Optional[int],
        resolve_region: Callable[[], Awaitable[Region]] | None,
    ) -> MatchResult:
        self._ensure_open("check")
        region = await resolve_region() if resolve_region is not None else None
        if region is not None and region.is_relative_to_screenshot:
            region = await self._to_capture_frame(region)
        if match_timeout is None:
            match_timeout = self.config.match_timeout_ms

        logger.debug("Checkpoint%s: region=%s timeout=%dms",
                     f" '{tag}'" if tag else "", region, match_timeout)
        result = await self._engine.match_window(
            self.get_screenshot,
            tag=tag,
            ignore_mismatch=False,
            match_timeout=match_timeout,
            region=region,
        )
        if result.as_expected or not self._failure_report_overridden:
            return result
        raise MatchFailure(result, self._session.scenario_id_or_name, self._session.app_id_or_name)

    # ------------------------------------------------------------------
    # Element wrapping
    # ------------------------------------------------------------------

    def element_finder(self, driver: Driver | None = None) -> ElementFinder:
        """Return a finder whose elements can check their own region."""
        driver = driver or self._driver
        if driver is None:
            raise UsageError("No driver: pass one or call open() first")
        return ElementFinder(driver, self)

    # ------------------------------------------------------------------
    # Capture and page information
    # ------------------------------------------------------------------

    async def get_screenshot(self) -> bytes:
        """Capture the page using the current capture settings."""
        return await capture_screenshot(self._require_driver(), self.capture_settings)

    async def get_title(self) -> str:
        return await self._require_driver().get_title()

    async def get_inferred_environment(self) -> str:
        """Describe the browser environment; never fails."""
        prefix = "useragent:"
        try:
            user_agent = await self._require_driver().execute_script("() => navigator.userAgent")
        except Exception as e:
            logger.debug("Could not read the user agent: %s", e)
            return prefix
        return prefix + str(user_agent)

    def get_viewport_size(self) -> asyncio.Future:
        return self._require_driver().get_viewport_size()

    def set_viewport_size(self, size: RectangleSize | dict) -> asyncio.Future:
        return self._require_driver().set_viewport_size(_validate(RectangleSize, size))

    # ------------------------------------------------------------------
    # Capture settings
    # ------------------------------------------------------------------

    def set_force_full_page_screenshot(self, force: bool) -> None:
        self.capture_settings.force_full_page = bool(force)

    def get_force_full_page_screenshot(self) -> bool:
        return self.capture_settings.force_full_page

    def set_hide_scrollbars(self, hide: bool) -> None:
        self.capture_settings.hide_scrollbars = bool(hide)

    def get_hide_scrollbars(self) -> bool:
        return self.capture_settings.hide_scrollbars

    def set_forced_image_rotation(self, degrees: Any) -> None:
        if isinstance(degrees, bool) or not isinstance(degrees, numbers.Real):
            raise UsageError("degrees must be a number! set to 0 to clear")
        self.capture_settings.image_rotation_degrees = degrees

    def get_forced_image_rotation(self) -> float:
        return self.capture_settings.image_rotation_degrees or 0

    def set_stitch_mode(self, mode: StitchMode | str) -> None:
        """Select the full-page stitch mode; unknown values fall back to SCROLL."""
        self.capture_settings.stitch_mode = StitchMode.coerce(mode)

    def get_stitch_mode(self) -> StitchMode:
        return self.capture_settings.stitch_mode

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _schedule(self, fn: Callable[[], Any], description: str) -> asyncio.Future:
        if self._flow is None:
            raise UsageError("Eyes not open: call open() before checking or closing")
        return self._flow.execute(fn, description)

    def _noop(self, description: str) -> asyncio.Future:
        if self._flow is None:
            future = asyncio.get_running_loop().create_future()
            future.set_result(None)
            return future
        return self._flow.execute(lambda: None, description)

    def _ensure_open(self, operation: str) -> None:
        if self._state is not SessionState.OPEN:
            raise UsageError(f"Eyes not open: cannot {operation} while {self._state.value}")

    def _require_driver(self) -> Driver:
        if self._driver is None:
            raise UsageError("No driver bound: call open() first")
        return self._driver


def _clip_to_origin(left: int, top: int, width: int, height: int) -> Region | None:
    """Relative region of the part of a rectangle right of and below the origin."""
    right, bottom = left + width, top + height
    left, top = max(left, 0), max(top, 0)
    if right <= left or bottom <= top:
        return None
    return Region(top=top, left=left, width=right - left, height=bottom - top,
                  is_relative_to_screenshot=True)


def _validate(model: type, value: Any) -> Any:
    try:
        return model.model_validate(value)
    except ValidationError as e:
        raise UsageError(f"Invalid {model.__name__}: {e}") from e
