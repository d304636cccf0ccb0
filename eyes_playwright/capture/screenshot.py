"""Screenshot capture — applies the capture settings around a Playwright screenshot."""

from __future__ import annotations

import io
import logging

from PIL import Image

from eyes_playwright.driver.driver import Driver
from eyes_playwright.models.session import CaptureSettings, StitchMode

logger = logging.getLogger(__name__)

_HIDE_SCROLLBARS_SCRIPT = """() => {
    const root = document.documentElement;
    const previous = root.style.overflow;
    root.style.overflow = 'hidden';
    return previous;
}"""
_RESTORE_OVERFLOW_SCRIPT = "(value) => { document.documentElement.style.overflow = value; }"
_SCROLL_POSITION_SCRIPT = "() => [window.scrollX, window.scrollY]"
_SCROLL_TO_SCRIPT = "([x, y]) => window.scrollTo(x, y)"


async def capture_screenshot(driver: Driver, settings: CaptureSettings) -> bytes:
    """Capture the page as PNG bytes according to ``settings``.

    Page state touched for the capture (overflow style, scroll position) is
    restored afterwards, also when the capture fails.
    """
    full_page = settings.force_full_page
    scroll_position = None
    overflow = None
    if settings.hide_scrollbars:
        overflow = await driver.execute_script(_HIDE_SCROLLBARS_SCRIPT)
    try:
        if full_page and settings.stitch_mode is StitchMode.SCROLL:
            scroll_position = await driver.execute_script(_SCROLL_POSITION_SCRIPT)
            await driver.execute_script(_SCROLL_TO_SCRIPT, [0, 0])
        logger.debug("Capturing screenshot (full_page=%s, stitch_mode=%s)",
                     full_page, settings.stitch_mode.value)
        image = await driver.take_screenshot(full_page=full_page)
    finally:
        if scroll_position is not None:
            await driver.execute_script(_SCROLL_TO_SCRIPT, scroll_position)
        if settings.hide_scrollbars:
            await driver.execute_script(_RESTORE_OVERFLOW_SCRIPT, overflow or "")

    if settings.image_rotation_degrees:
        image = rotate_image(image, settings.image_rotation_degrees)
    return image


def rotate_image(png: bytes, degrees: float) -> bytes:
    """Rotate a PNG clockwise by ``degrees``, growing the canvas to fit."""
    with Image.open(io.BytesIO(png)) as image:
        rotated = image.rotate(-degrees, expand=True)
    buffer = io.BytesIO()
    rotated.save(buffer, format="PNG")
    logger.debug("Rotated screenshot by %s degrees", degrees)
    return buffer.getvalue()
