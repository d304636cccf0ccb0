"""Playwright driver bound to a cooperative control flow.

Each public operation is scheduled as one unit of work on the driver's
``ControlFlow`` and returns an ``asyncio.Future``. Called from inside a
running unit (for example while a checkpoint resolves an element region),
the operation runs immediately as part of that unit.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Callable

from playwright.async_api import ElementHandle, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from eyes_playwright.errors import ElementResolutionError
from eyes_playwright.flow import ControlFlow
from eyes_playwright.models.geometry import Location, RectangleSize

logger = logging.getLogger(__name__)

_VIEWPORT_SIZE_SCRIPT = "() => ({width: window.innerWidth, height: window.innerHeight})"
_SCROLL_OFFSET_SCRIPT = "() => [window.scrollX, window.scrollY]"


class Driver:
    """Schedules Playwright page operations on a shared control flow."""

    def __init__(self, page: Page, flow: ControlFlow | None = None, implicit_wait_ms: int = 0):
        self._page = page
        self._flow = flow or ControlFlow()
        self.implicit_wait_ms = implicit_wait_ms

    @property
    def page(self) -> Page:
        return self._page

    def control_flow(self) -> ControlFlow:
        return self._flow

    def schedule(self, fn: Callable[[], Any], description: str = "") -> asyncio.Future:
        """Schedule an arbitrary unit of work on the driver's flow."""
        return self._flow.execute(fn, description)

    # ------------------------------------------------------------------
    # Native page actions
    # ------------------------------------------------------------------

    def get(self, url: str) -> asyncio.Future:
        return self.schedule(partial(self._page.goto, url), f"driver.get({url})")

    def click(self, selector: str) -> asyncio.Future:
        return self.schedule(partial(self._page.click, selector), f"driver.click({selector})")

    def fill(self, selector: str, text: str) -> asyncio.Future:
        return self.schedule(partial(self._page.fill, selector, text), f"driver.fill({selector})")

    def sleep(self, ms: int) -> asyncio.Future:
        return self._flow.timeout(ms)

    def execute_script(self, script: str, arg: Any = None) -> asyncio.Future:
        return self.schedule(partial(self._page.evaluate, script, arg), "driver.execute_script")

    def get_title(self) -> asyncio.Future:
        return self.schedule(self._page.title, "driver.get_title")

    def take_screenshot(self, full_page: bool = False) -> asyncio.Future:
        return self.schedule(
            partial(self._page.screenshot, full_page=full_page, type="png"),
            f"driver.take_screenshot(full_page={full_page})",
        )

    # ------------------------------------------------------------------
    # Element lookup
    # ------------------------------------------------------------------

    def find_element(self, selector: str) -> asyncio.Future:
        """Resolve ``selector`` to a ``WebElement``.

        Fails with ``ElementResolutionError`` when nothing matches.
        """
        return self.schedule(partial(self._locate, selector), f"driver.find_element({selector})")

    def find_elements(self, selector: str) -> asyncio.Future:
        return self.schedule(partial(self._locate_all, selector), f"driver.find_elements({selector})")

    async def _locate(self, selector: str) -> "WebElement":
        if self.implicit_wait_ms > 0:
            try:
                handle = await self._page.wait_for_selector(
                    selector, timeout=self.implicit_wait_ms, state="attached",
                )
            except PlaywrightTimeoutError as e:
                raise ElementResolutionError(
                    selector, f"not found within {self.implicit_wait_ms}ms",
                ) from e
        else:
            handle = await self._page.query_selector(selector)
        if handle is None:
            raise ElementResolutionError(selector)
        logger.debug("Resolved element '%s'", selector)
        return WebElement(self, handle, selector)

    async def _locate_all(self, selector: str) -> list["WebElement"]:
        handles = await self._page.query_selector_all(selector)
        logger.debug("Resolved %d elements for '%s'", len(handles), selector)
        return [WebElement(self, handle, selector) for handle in handles]

    # ------------------------------------------------------------------
    # Viewport
    # ------------------------------------------------------------------

    def get_viewport_size(self) -> asyncio.Future:
        return self.schedule(self._viewport_size, "driver.get_viewport_size")

    def set_viewport_size(self, size: RectangleSize | dict) -> asyncio.Future:
        size = RectangleSize.model_validate(size)
        return self.schedule(partial(self._resize_viewport, size), f"driver.set_viewport_size({size})")

    def get_scroll_position(self) -> asyncio.Future:
        return self.schedule(self._scroll_position, "driver.get_scroll_position")

    async def _viewport_size(self) -> RectangleSize:
        size = self._page.viewport_size
        if size is None:
            # No fixed viewport (e.g. a persistent headed context)
            size = await self._page.evaluate(_VIEWPORT_SIZE_SCRIPT)
        return RectangleSize(width=int(size["width"]), height=int(size["height"]))

    async def _resize_viewport(self, size: RectangleSize) -> RectangleSize:
        logger.debug("Setting viewport size to %s", size)
        await self._page.set_viewport_size({"width": size.width, "height": size.height})
        return size

    async def _scroll_position(self) -> Location:
        scroll_x, scroll_y = await self._page.evaluate(_SCROLL_OFFSET_SCRIPT)
        return Location(x=round(scroll_x), y=round(scroll_y))


class WebElement:
    """A located element; operations are scheduled on the owning driver's flow."""

    def __init__(self, driver: Driver, handle: ElementHandle, selector: str = ""):
        self._driver = driver
        self._handle = handle
        self.selector = selector

    @property
    def handle(self) -> ElementHandle:
        return self._handle

    @property
    def driver(self) -> Driver:
        return self._driver

    def click(self) -> asyncio.Future:
        return self._driver.schedule(self._handle.click, f"element.click({self.selector})")

    def send_keys(self, text: str) -> asyncio.Future:
        return self._driver.schedule(partial(self._handle.type, text), f"element.send_keys({self.selector})")

    def get_text(self) -> asyncio.Future:
        return self._driver.schedule(self._handle.text_content, f"element.get_text({self.selector})")

    def is_displayed(self) -> asyncio.Future:
        return self._driver.schedule(self._handle.is_visible, f"element.is_displayed({self.selector})")

    def get_size(self) -> asyncio.Future:
        return self._driver.schedule(self._size, f"element.get_size({self.selector})")

    def get_location(self) -> asyncio.Future:
        return self._driver.schedule(self._location, f"element.get_location({self.selector})")

    async def _bounding_box(self) -> dict:
        box = await self._handle.bounding_box()
        if box is None:
            raise ElementResolutionError(self.selector, "element is not rendered")
        return box

    async def _size(self) -> RectangleSize:
        box = await self._bounding_box()
        return RectangleSize(width=round(box["width"]), height=round(box["height"]))

    async def _location(self) -> Location:
        box = await self._bounding_box()
        # bounding_box() is viewport-relative; report page coordinates
        scroll_x, scroll_y = await self._handle.evaluate(_SCROLL_OFFSET_SCRIPT)
        return Location(x=round(box["x"] + scroll_x), y=round(box["y"] + scroll_y))

    def __repr__(self) -> str:
        return f"WebElement({self.selector!r})"
