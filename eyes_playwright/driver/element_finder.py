"""Element lookup that hands out checkpoint-capable elements."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import TYPE_CHECKING, Any, Optional

from .driver import Driver, WebElement

if TYPE_CHECKING:
    from eyes_playwright.eyes import Eyes

logger = logging.getLogger(__name__)


class EyesWebElement:
    """A ``WebElement`` that can also check its own region.

    Every native operation is forwarded untouched to the wrapped element.
    """

    def __init__(self, element: WebElement, eyes: "Eyes"):
        self._element = element
        self._eyes = eyes

    @property
    def element(self) -> WebElement:
        return self._element

    @property
    def eyes(self) -> "Eyes":
        return self._eyes

    def check(self, tag: Optional[str] = None, match_timeout: Optional[int] = None) -> asyncio.Future:
        """Visually validate the region occupied by this element."""
        return self._eyes.check_region_by_element(self._element, tag, match_timeout)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__") or name in ("_element", "_eyes"):
            raise AttributeError(name)
        return getattr(self._element, name)

    def __repr__(self) -> str:
        return f"EyesWebElement({self._element!r})"


def wrap_element(element: WebElement | EyesWebElement, eyes: "Eyes") -> EyesWebElement:
    """Wrap ``element`` for ``eyes``; already wrapped elements are reused."""
    if isinstance(element, EyesWebElement):
        if element.eyes is eyes:
            return element
        element = element.element
    return EyesWebElement(element, eyes)


class ElementFinder:
    """Finds elements through a driver and wraps them for an ``Eyes`` instance."""

    def __init__(self, driver: Driver, eyes: "Eyes"):
        self.driver = driver
        self.eyes = eyes

    def element(self, selector: str) -> asyncio.Future:
        return self.driver.schedule(partial(self._element, selector), f"finder.element({selector})")

    def all(self, selector: str) -> asyncio.Future:
        return self.driver.schedule(partial(self._all, selector), f"finder.all({selector})")

    async def _element(self, selector: str) -> EyesWebElement:
        element = await self.driver.find_element(selector)
        return wrap_element(element, self.eyes)

    async def _all(self, selector: str) -> list[EyesWebElement]:
        elements = await self.driver.find_elements(selector)
        logger.debug("Wrapping %d elements for '%s'", len(elements), selector)
        return [wrap_element(element, self.eyes) for element in elements]
